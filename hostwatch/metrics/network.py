from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

from ..snapshot import NetworkRate


STATE_FILE_NAME = "net_state.json"
MAX_RATE_WINDOW_S = 300

NowFn = Callable[[], float]


@dataclass(frozen=True)
class NetCounters:
    rx_bytes: int
    tx_bytes: int
    timestamp: int


def read_proc_net_dev(proc_root: Path = Path("/proc")) -> tuple[int, int]:
    """Sum rx/tx byte counters over every interface except loopback."""

    rx_total = 0
    tx_total = 0
    for line in (proc_root / "net" / "dev").read_text(encoding="utf-8").splitlines():
        if ":" not in line:
            continue
        iface, _, rest = line.partition(":")
        if iface.strip() == "lo":
            continue
        fields = rest.split()
        if len(fields) < 9:
            continue
        try:
            rx = int(fields[0])
            tx = int(fields[8])
        except ValueError:
            continue
        rx_total += rx
        tx_total += tx
    return rx_total, tx_total


def _load_state(path: Path) -> NetCounters | None:
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(parsed, Mapping):
        return None

    values: list[int] = []
    for key in ("rxBytes", "txBytes", "timestamp"):
        v: Any = parsed.get(key)
        if isinstance(v, bool) or not isinstance(v, int) or v < 0:
            return None
        values.append(v)
    return NetCounters(rx_bytes=values[0], tx_bytes=values[1], timestamp=values[2])


def _save_state(path: Path, counters: NetCounters) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(
        json.dumps(
            {"rxBytes": counters.rx_bytes, "txBytes": counters.tx_bytes, "timestamp": counters.timestamp}
        ),
        encoding="utf-8",
    )
    os.chmod(tmp, 0o600)
    tmp.replace(path)


def collect_network(
    state_dir: str | Path,
    *,
    proc_root: Path = Path("/proc"),
    now_fn: NowFn = time.time,
) -> NetworkRate | None:
    """Bytes/sec since the previous invocation.

    The current counters are always persisted. Returns None on the first run,
    when the saved state is unreadable, when the window is outside
    (0, 300] seconds, or when either counter went backwards.
    """

    rx, tx = read_proc_net_dev(proc_root)
    now = int(now_fn())
    state_path = Path(state_dir) / STATE_FILE_NAME

    prev = _load_state(state_path)
    _save_state(state_path, NetCounters(rx_bytes=rx, tx_bytes=tx, timestamp=now))

    if prev is None:
        return None

    elapsed = now - prev.timestamp
    if elapsed <= 0 or elapsed > MAX_RATE_WINDOW_S:
        return None
    if rx < prev.rx_bytes or tx < prev.tx_bytes:
        return None

    return NetworkRate(
        rx_bytes_per_sec=(rx - prev.rx_bytes) / float(elapsed),
        tx_bytes_per_sec=(tx - prev.tx_bytes) / float(elapsed),
    )
