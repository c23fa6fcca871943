from __future__ import annotations

from pathlib import Path
from typing import Dict

from ..snapshot import MemorySummary


def _read_meminfo_kb(proc_root: Path) -> Dict[str, int]:
    values: Dict[str, int] = {}
    for line in (proc_root / "meminfo").read_text(encoding="utf-8").splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        try:
            values[parts[0].rstrip(":")] = int(parts[1])
        except ValueError:
            continue
    return values


def collect_memory(proc_root: Path = Path("/proc")) -> MemorySummary:
    values = _read_meminfo_kb(proc_root)

    total_kb = values.get("MemTotal", 0)
    if total_kb <= 0:
        raise ValueError("MemTotal not found in meminfo")

    if "MemAvailable" in values:
        available_kb = values["MemAvailable"]
    else:
        # Pre-3.14 kernels have no MemAvailable.
        available_kb = values.get("MemFree", 0) + values.get("Buffers", 0) + values.get("Cached", 0)

    swap_used: int | None = None
    swap_total_kb = values.get("SwapTotal", 0)
    if swap_total_kb > 0:
        swap_used = max(0, swap_total_kb - values.get("SwapFree", 0)) * 1024

    return MemorySummary(
        total_bytes=total_kb * 1024,
        available_bytes=max(0, available_kb) * 1024,
        swap_used_bytes=swap_used,
    )
