from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

from ..snapshot import CPUSummary, DiskSummary, MemorySummary, NetworkRate, Snapshot
from .cpu import collect_cpu
from .disk import collect_disk
from .host import get_hostname, get_uptime
from .memory import collect_memory
from .network import collect_network


logger = logging.getLogger("hostwatch.metrics")


def collect_snapshot(
    *,
    state_dir: str | Path,
    proc_root: Path = Path("/proc"),
    disk_path: str = "/",
    now_fn: Callable[[], float] = time.time,
) -> Snapshot:
    """Sample the host once.

    Never raises: a failing reader is logged and its section falls back to
    zeros (cpu, memory, disk) or is left out (network, uptime). Identity
    fields are empty; callers attach them with `Snapshot.with_identity`.
    """

    cpu = CPUSummary()
    try:
        cpu = collect_cpu(proc_root)
    except (OSError, ValueError) as exc:
        logger.warning("cpu collection failed: %r", exc)

    memory = MemorySummary()
    try:
        memory = collect_memory(proc_root)
    except (OSError, ValueError) as exc:
        logger.warning("memory collection failed: %r", exc)

    disk = DiskSummary()
    try:
        disk = collect_disk(disk_path)
    except (OSError, ValueError) as exc:
        logger.warning("disk collection failed: %r", exc)

    network: NetworkRate | None = None
    try:
        network = collect_network(state_dir, proc_root=proc_root, now_fn=now_fn)
    except (OSError, ValueError) as exc:
        logger.warning("network collection failed: %r", exc)

    uptime: int | None = None
    try:
        uptime = get_uptime(proc_root)
    except (OSError, ValueError) as exc:
        logger.warning("uptime collection failed: %r", exc)

    return Snapshot(
        host_id="",
        hostname=get_hostname(),
        agent_version="",
        ts=int(now_fn()),
        cpu=cpu,
        memory=memory,
        disk=disk,
        network=network,
        uptime_seconds=uptime,
    )
