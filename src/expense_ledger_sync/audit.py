"""Sync run audit log: one row per run, written at start and finished exactly once."""

from datetime import datetime, timezone
from typing import Callable, Optional
import logging

from .models.sync_run import ReconcileResult, SyncKind, SyncRun, SyncRunStatus
from .store.ledger import LedgerStore
from .utils.exceptions import AuditLogError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncAuditLog:
    """Records the lifecycle of sync runs in the ledger store."""

    def __init__(self, store: LedgerStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock or _utcnow

    def start(self, kind: SyncKind) -> SyncRun:
        """Insert a ``running`` row and return the run."""
        run = SyncRun(kind=kind, started_at=self._clock())
        run.id = self.store.create_sync_run(run)
        logger.info(f"Sync log created with ID: {run.id}")
        return run

    def finish(self, run: SyncRun, fetched: int, result: ReconcileResult) -> SyncRun:
        """
        Close a run with its counts and derived terminal status.

        Args:
            run: Running sync run
            fetched: Size of the deduplicated work set
            result: Engine counters and errors

        Returns:
            The finished run

        Raises:
            AuditLogError: The run was already finished
        """
        self._ensure_running(run)

        run.records_fetched = fetched
        run.records_created = result.created
        run.records_updated = result.updated
        run.errors = [e.to_dict() for e in result.errors]
        run.status = SyncRunStatus.from_counts(len(result.errors), fetched)
        return self._close(run)

    def fail(self, run: SyncRun, message: str) -> SyncRun:
        """Close a run that aborted before reconciliation with a single error entry."""
        self._ensure_running(run)

        run.errors = [{"error": message}]
        run.status = SyncRunStatus.FAILED
        return self._close(run)

    def _ensure_running(self, run: SyncRun) -> None:
        if run.is_finished:
            raise AuditLogError(f"Sync run {run.id} already finished with status {run.status.value}")

    def _close(self, run: SyncRun) -> SyncRun:
        run.completed_at = self._clock()
        self.store.update_sync_run(run)
        logger.info(
            f"Sync run {run.id} finished: status={run.status.value}, "
            f"fetched={run.records_fetched}, created={run.records_created}, "
            f"updated={run.records_updated}, errors={len(run.errors)}"
        )
        return run
