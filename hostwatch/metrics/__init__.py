from .collector import collect_snapshot
from .host import get_hostname

__all__ = [
    "collect_snapshot",
    "get_hostname",
]
