"""In-memory execution record store.

Holds the latest published snapshot of every workflow execution until it is
cleared or its retention window elapses. Snapshots are deep copies, so a
reader never observes an execution mid-update and the engine's live record
is never shared.

Locking: readers take no lock (a dict lookup of an immutable snapshot);
writers to one execution serialise on that execution's lock; the global lock
only guards creating and removing per-execution entries.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from flowdesk.workflows.models import WorkflowExecution

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    snapshot: WorkflowExecution
    lock: threading.Lock = field(default_factory=threading.Lock)
    cancel_requested: bool = False


class ExecutionRecordStore:
    """Concurrent map of execution id to the latest execution snapshot."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def _entry_for(self, execution: WorkflowExecution) -> _Entry:
        entry = self._entries.get(execution.id)
        if entry is not None:
            return entry
        with self._lock:
            entry = self._entries.get(execution.id)
            if entry is None:
                entry = _Entry(snapshot=execution.model_copy(deep=True))
                self._entries[execution.id] = entry
        return entry

    def save(self, execution: WorkflowExecution) -> None:
        """Publish a snapshot of *execution*, replacing the previous one."""
        entry = self._entry_for(execution)
        snapshot = execution.model_copy(deep=True)
        with entry.lock:
            entry.snapshot = snapshot

    def get(self, execution_id: str) -> WorkflowExecution | None:
        """Return a copy of the latest snapshot, or ``None`` if unknown."""
        entry = self._entries.get(execution_id)
        if entry is None:
            return None
        return entry.snapshot.model_copy(deep=True)

    def cancel(self, execution_id: str) -> bool:
        """Request cooperative cancellation of a running execution.

        Returns:
            ``True`` if the execution exists and has not yet finished.
        """
        entry = self._entries.get(execution_id)
        if entry is None:
            return False
        with entry.lock:
            if entry.snapshot.is_terminal:
                return False
            entry.cancel_requested = True
        logger.info("Cancellation requested for execution %s", execution_id)
        return True

    def is_cancel_requested(self, execution_id: str) -> bool:
        """Whether :meth:`cancel` has been called for *execution_id*."""
        entry = self._entries.get(execution_id)
        return entry is not None and entry.cancel_requested

    def list_active(self, user_id: str | None = None) -> list[WorkflowExecution]:
        """Non-terminal executions, optionally for one user, oldest first."""
        active = [
            entry.snapshot
            for entry in list(self._entries.values())
            if not entry.snapshot.is_terminal
            and (user_id is None or entry.snapshot.user_id == user_id)
        ]
        active.sort(key=lambda e: e.created_at)
        return [e.model_copy(deep=True) for e in active]

    def cleanup(self, max_age: timedelta, now: datetime | None = None) -> int:
        """Remove finished executions older than *max_age*.

        Running executions are never removed.

        Returns:
            Number of executions removed.
        """
        cutoff = (now or datetime.now(UTC)) - max_age
        with self._lock:
            expired = [
                execution_id
                for execution_id, entry in self._entries.items()
                if entry.snapshot.is_terminal
                and (entry.snapshot.completed_at or entry.snapshot.created_at) < cutoff
            ]
            for execution_id in expired:
                del self._entries[execution_id]

        if expired:
            logger.info("Removed %d expired workflow execution(s)", len(expired))
        return len(expired)

    def clear(self) -> None:
        """Drop every record."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
