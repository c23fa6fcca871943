from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol, Sequence

from .buffer import BufferStorageError
from .client import DeliveryError
from .snapshot import Snapshot
from .wire import BatchResponse, IngestResponse


logger = logging.getLogger("hostwatch.delivery")

CLOCK_SKEW_WARNING = "server detected clock skew > 5 minutes. Consider running ntpd/chrony."


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    PARTIAL_REJECTION = "partial_rejection"
    TRANSIENT_FAILURE = "transient_failure"
    FATAL_FAILURE = "fatal_failure"


@dataclass(frozen=True)
class DeliveryOutcome:
    kind: OutcomeKind
    rejected: int = 0
    clock_skew: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


class SnapshotQueue(Protocol):
    def append(self, snapshot: Snapshot) -> None: ...

    def drain_all(self) -> List[Snapshot]: ...

    def count(self) -> int: ...

    def clear_all(self) -> None: ...


class SnapshotSender(Protocol):
    def send_snapshot(self, snapshot: Snapshot) -> IngestResponse: ...

    def send_batch(self, snapshots: Sequence[Snapshot]) -> BatchResponse: ...


@dataclass
class CycleReport:
    snapshot: Snapshot
    backlog: int = 0
    batch: Optional[DeliveryOutcome] = None
    single: Optional[DeliveryOutcome] = None
    buffered: bool = False
    buffer_error: Optional[str] = None
    queue_depth: Optional[int] = None


def classify_error(exc: BaseException) -> DeliveryOutcome:
    if isinstance(exc, DeliveryError) and exc.retryable:
        return DeliveryOutcome(OutcomeKind.TRANSIENT_FAILURE, error=str(exc))
    return DeliveryOutcome(OutcomeKind.FATAL_FAILURE, error=str(exc))


def _buffer_current(queue: SnapshotQueue, report: CycleReport, reason: str) -> None:
    try:
        queue.append(report.snapshot)
    except BufferStorageError as exc:
        report.buffer_error = str(exc)
        logger.warning("%s and buffering the current snapshot failed: %s", reason, exc)
        return
    report.buffered = True
    logger.warning("%s; current snapshot buffered", reason)


def run_delivery_cycle(
    *,
    collect: Callable[[], Snapshot],
    queue: SnapshotQueue,
    client: SnapshotSender,
) -> CycleReport:
    """Run one sample -> reconcile backlog -> send current cycle.

    Never raises for delivery or storage failures. Every failure path ends
    with the current snapshot appended to the queue, and the queue is only
    cleared after a batch the server accepted in full. Draining is
    non-destructive, so a failed batch leaves the backlog on disk.
    """

    report = CycleReport(snapshot=collect())
    _deliver(report, queue, client)

    try:
        report.queue_depth = queue.count()
    except BufferStorageError as exc:
        logger.warning("failed to inspect buffer after delivery: %s", exc)
    return report


def _deliver(report: CycleReport, queue: SnapshotQueue, client: SnapshotSender) -> None:
    try:
        report.backlog = queue.count()
    except BufferStorageError as exc:
        logger.warning("failed to inspect buffer: %s", exc)
        report.backlog = 0

    if report.backlog > 0:
        try:
            pending = queue.drain_all()
        except BufferStorageError as exc:
            logger.warning("failed to read buffer: %s", exc)
            pending = []

        if pending:
            try:
                batch = client.send_batch(pending)
            except Exception as exc:
                report.batch = classify_error(exc)
                _buffer_current(queue, report, f"batch send failed: {exc}")
                return

            if batch.rejected > 0:
                report.batch = DeliveryOutcome(OutcomeKind.PARTIAL_REJECTION, rejected=batch.rejected)
                _buffer_current(
                    queue,
                    report,
                    f"batch send partially rejected ({batch.rejected} rejected, errors={list(batch.errors)}); "
                    "keeping buffered snapshots",
                )
                return

            report.batch = DeliveryOutcome(OutcomeKind.SUCCESS)
            logger.info("flushed %s buffered snapshots (accepted=%s)", len(pending), batch.accepted)
            try:
                queue.clear_all()
            except BufferStorageError as exc:
                logger.warning("flushed buffered snapshots but failed to clear buffer: %s", exc)

    try:
        response = client.send_snapshot(report.snapshot)
    except Exception as exc:
        report.single = classify_error(exc)
        _buffer_current(queue, report, f"send failed: {exc}")
        return

    report.single = DeliveryOutcome(OutcomeKind.SUCCESS, clock_skew=response.clock_skew)
    logger.info("sent snapshot ts=%s host_id=%s", report.snapshot.ts, report.snapshot.host_id)
    if response.clock_skew:
        logger.warning(CLOCK_SKEW_WARNING)
