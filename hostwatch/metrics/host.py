from __future__ import annotations

import socket
from pathlib import Path


def get_hostname() -> str:
    try:
        hostname = socket.gethostname()
    except OSError:
        return "unknown"
    return hostname.strip() or "unknown"


def get_uptime(proc_root: Path = Path("/proc")) -> int:
    parts = (proc_root / "uptime").read_text(encoding="utf-8").split()
    if not parts:
        raise ValueError("unexpected uptime format")
    return max(0, int(float(parts[0])))
