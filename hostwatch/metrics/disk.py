from __future__ import annotations

import os

from ..snapshot import DiskSummary


def collect_disk(path: str = "/") -> DiskSummary:
    st = os.statvfs(path)
    return DiskSummary(
        total_bytes=max(0, int(st.f_blocks) * int(st.f_frsize)),
        free_bytes=max(0, int(st.f_bavail) * int(st.f_frsize)),
    )
