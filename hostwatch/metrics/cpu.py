from __future__ import annotations

import os
from pathlib import Path

from ..snapshot import CPUSummary


def _count_processors(proc_root: Path) -> int:
    try:
        lines = (proc_root / "cpuinfo").read_text(encoding="utf-8").splitlines()
    except OSError:
        return 0
    return sum(1 for line in lines if line.strip().startswith("processor"))


def collect_cpu(proc_root: Path = Path("/proc")) -> CPUSummary:
    """Load averages from loadavg; cores from cpuinfo, then os.cpu_count()."""

    parts = (proc_root / "loadavg").read_text(encoding="utf-8").split()
    if len(parts) < 3:
        raise ValueError("unexpected loadavg format")

    load1, load5, load15 = (float(p) for p in parts[:3])

    cores = _count_processors(proc_root)
    if cores < 1:
        cores = os.cpu_count() or 0
    if cores < 1:
        cores = 1

    return CPUSummary(load1=load1, load5=load5, load15=load15, cores=cores)
