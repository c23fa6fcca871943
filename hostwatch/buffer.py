from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Sequence

from .snapshot import Snapshot


DEFAULT_MAX_SIZE = 10

logger = logging.getLogger("hostwatch.buffer")


class BufferStorageError(OSError):
    """Raised when the queue file cannot be read, created or written."""


class SnapshotBuffer:
    """Bounded, file-backed FIFO of snapshots awaiting delivery.

    The backing file is newline-delimited JSON, one snapshot per line, oldest
    first. Every write rewrites the whole file through a temp file + fsync +
    rename, so a crash leaves either the old or the new content on disk.
    Single writer only; there is no file locking.
    """

    def __init__(self, path: str | Path, max_size: int = DEFAULT_MAX_SIZE) -> None:
        self.path = Path(path)
        self.max_size = int(max_size) if int(max_size) > 0 else DEFAULT_MAX_SIZE
        self.evictions_total = 0

    def append(self, snapshot: Snapshot) -> None:
        items = self.drain_all()
        items.append(snapshot)

        evicted = len(items) - self.max_size
        if evicted > 0:
            items = items[evicted:]
            self.evictions_total += evicted
            logger.warning(
                "evicted %s buffered snapshots (queue=%s max=%s)",
                evicted,
                len(items),
                self.max_size,
            )

        self._write_all(items)

    def drain_all(self) -> List[Snapshot]:
        """Return every persisted snapshot in insertion order.

        The file is left untouched. Malformed lines are skipped.
        """

        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise BufferStorageError(f"failed to read buffer {self.path}: {exc}") from exc

        items: List[Snapshot] = []
        skipped = 0
        for raw_line in raw.splitlines():
            if not raw_line.strip():
                continue
            try:
                items.append(Snapshot.from_json(raw_line.decode("utf-8")))
            except (ValueError, OverflowError, RecursionError):
                # UnicodeDecodeError and json.JSONDecodeError are ValueErrors.
                skipped += 1

        if skipped:
            logger.debug("skipped %s malformed buffer lines in %s", skipped, self.path)
        return items

    def count(self) -> int:
        return len(self.drain_all())

    def clear_all(self) -> None:
        self._write_all([])

    def size_bytes(self) -> int:
        try:
            return int(self.path.stat().st_size)
        except OSError:
            return 0

    def metrics(self) -> Dict[str, int]:
        try:
            depth = self.count()
        except BufferStorageError:
            depth = 0
        return {
            "buffer_queue_depth": int(depth),
            "buffer_bytes": int(self.size_bytes()),
            "buffer_evictions_total": int(self.evictions_total),
        }

    def _write_all(self, items: Sequence[Snapshot]) -> None:
        content = "".join(item.to_json() + "\n" for item in items)

        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                dir=str(self.path.parent),
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise BufferStorageError(f"failed to write buffer {self.path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

        _fsync_dir(self.path.parent)


def _fsync_dir(directory: Path) -> None:
    try:
        fd = os.open(str(directory), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def migrate_legacy_buffer(current_path: str | Path, legacy_path: str | Path) -> bool:
    """Move a buffer file left at the old default location into place.

    Only runs when the current file does not exist yet. Returns True when a
    file was moved; failures are logged and never raised.
    """

    current = Path(current_path)
    legacy = Path(legacy_path)
    if current == legacy or current.exists() or not legacy.exists():
        return False

    try:
        current.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        legacy.replace(current)
    except OSError as exc:
        logger.warning("failed to migrate legacy buffer file from %s to %s: %r", legacy, current, exc)
        return False

    logger.info("migrated legacy buffer file %s -> %s", legacy, current)
    return True
