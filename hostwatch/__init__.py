"""hostwatch agent: samples host metrics and ships them to an ingestion server."""

from .buffer import BufferStorageError, SnapshotBuffer
from .client import DeliveryClient, DeliveryError
from .config import AgentConfig, Settings
from .delivery import CycleReport, DeliveryOutcome, OutcomeKind, run_delivery_cycle
from .snapshot import Snapshot
from .version import __version__

__all__ = [
    "AgentConfig",
    "BufferStorageError",
    "CycleReport",
    "DeliveryClient",
    "DeliveryError",
    "DeliveryOutcome",
    "OutcomeKind",
    "Settings",
    "Snapshot",
    "SnapshotBuffer",
    "__version__",
    "run_delivery_cycle",
]
