"""Per-run accumulator of execution log entries."""

import threading
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from ..models.core import Execution, ExecutionStatus, LogEntry, LogStatus
from .exceptions import ExecutionCancelledError, ExecutionEngineError


def generate_execution_id(started_at: datetime) -> str:
    """Milliseconds since the epoch plus a short random suffix."""
    return f"{int(started_at.timestamp() * 1000)}-{uuid.uuid4().hex[:6]}"


class ExecutionJournal:
    """Ordered, append-only log of a single run.

    A journal belongs to exactly one execution and is written sequentially by
    the run that owns it. ``seal`` hands out an immutable snapshot; anything
    appended afterwards is not visible in that snapshot.
    """

    def __init__(self, started_at: Optional[datetime] = None, execution_id: Optional[str] = None):
        self.started_at = started_at or datetime.now(timezone.utc)
        self.execution_id = execution_id or generate_execution_id(self.started_at)
        self._entries: List[LogEntry] = []
        self._sealed: Optional[Execution] = None

    def append(self, node_id: str, status: LogStatus, message: str) -> LogEntry:
        """Append an entry stamped with the current time.

        Timestamps never go backwards within a journal; a clock step back is
        clamped to the previous entry's timestamp.
        """
        timestamp = datetime.now(timezone.utc)
        if self._entries and timestamp < self._entries[-1].timestamp:
            timestamp = self._entries[-1].timestamp
        elif not self._entries and timestamp < self.started_at:
            timestamp = self.started_at

        entry = LogEntry(node_id=node_id, status=status, message=message, timestamp=timestamp)
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> Tuple[LogEntry, ...]:
        return tuple(self._entries)

    @property
    def is_sealed(self) -> bool:
        return self._sealed is not None

    def __len__(self) -> int:
        return len(self._entries)

    def seal(self, status: ExecutionStatus) -> Execution:
        """Freeze the entries recorded so far into an Execution."""
        if self._sealed is not None:
            raise ExecutionEngineError(
                f"Journal for execution {self.execution_id} is already sealed",
                run_id=self.execution_id
            )
        self._sealed = Execution(
            id=self.execution_id,
            timestamp=self.started_at,
            status=status,
            logs=tuple(self._entries)
        )
        return self._sealed


class CancellationToken:
    """Lets a caller abort an in-flight run from another thread."""

    def __init__(self):
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "Cancelled by user") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or the timeout expires; True if cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self, run_id: Optional[str] = None) -> None:
        if self._event.is_set():
            raise ExecutionCancelledError(
                f"Execution cancelled: {self._reason}",
                run_id=run_id
            )
