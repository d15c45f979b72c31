"""
Ledger store backed by Supabase (PostgREST).
Holds reconciled expense rows and the sync run audit table.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional
import logging

from supabase import Client, create_client

from ..config import LedgerConfig
from ..models.records import LedgerRecord
from ..models.sync_run import SyncRun, SyncRunStatus
from ..utils.exceptions import ConfigurationError, LedgerStoreError

logger = logging.getLogger(__name__)


class LedgerStore(ABC):
    """Abstract base class for ledger persistence."""

    @abstractmethod
    def fetch_existing_flags(
        self, external_ids: list[str], chunk_size: int = 100
    ) -> dict[str, Optional[str]]:
        """
        Look up the current flag of every already-stored record.

        Args:
            external_ids: Namespaced ids of the run's work set
            chunk_size: Ids per ``IN (...)`` query

        Returns:
            external id -> flag category (None when unflagged); ids not yet
            stored are absent

        Raises:
            LedgerStoreError: Any chunk failed
        """
        pass

    @abstractmethod
    def upsert_record(self, record: LedgerRecord, synced_at: datetime) -> bool:
        """
        Insert or update one record by external id.

        Returns:
            True when the row was inserted, False when an existing row was updated
        """
        pass

    @abstractmethod
    def create_sync_run(self, run: SyncRun) -> Any:
        """Insert a running sync run and return its store id."""
        pass

    @abstractmethod
    def update_sync_run(self, run: SyncRun) -> None:
        pass

    @abstractmethod
    def set_flag(self, external_id: str, flag_category: Optional[str]) -> dict[str, Any]:
        pass

    @abstractmethod
    def set_approval(
        self,
        external_id: str,
        status: Optional[str],
        modified_by: Optional[str],
        modified_at: datetime,
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    def last_successful_sync(self) -> Optional[str]:
        """Completion timestamp of the most recent successful run."""
        pass

    @abstractmethod
    def list_records(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Stored rows, optionally limited to ``[start_date, end_date]`` and a branch."""
        pass


class SupabaseLedgerStore(LedgerStore):
    """LedgerStore implementation over a Supabase client."""

    def __init__(self, client: Client, config: LedgerConfig):
        self.client = client
        self.config = config

    @classmethod
    def from_config(cls, config: LedgerConfig) -> "SupabaseLedgerStore":
        if not config.url or not config.service_role_key:
            raise ConfigurationError(
                "Ledger store is not configured; set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY"
            )
        client = create_client(config.url, config.service_role_key)
        logger.info("Supabase client initialized")
        return cls(client, config)

    def _records(self):
        return self.client.table(self.config.records_table)

    def _runs(self):
        return self.client.table(self.config.sync_runs_table)

    def fetch_existing_flags(
        self, external_ids: list[str], chunk_size: int = 100
    ) -> dict[str, Optional[str]]:
        flags: dict[str, Optional[str]] = {}

        for start in range(0, len(external_ids), chunk_size):
            batch = external_ids[start:start + chunk_size]
            batch_number = start // chunk_size + 1
            try:
                response = (
                    self._records()
                    .select("external_id, flag_category")
                    .in_("external_id", batch)
                    .execute()
                )
            except Exception as e:
                raise LedgerStoreError(
                    f"Failed to fetch existing flags (batch {batch_number}): {e}"
                ) from e

            for row in response.data or []:
                flags[row["external_id"]] = row.get("flag_category")

        logger.info(f"Loaded {len(flags)} existing records into flag map")
        return flags

    def upsert_record(self, record: LedgerRecord, synced_at: datetime) -> bool:
        try:
            response = self.client.rpc(
                self.config.upsert_function, {"record": record.to_row(synced_at)}
            ).execute()
        except Exception as e:
            raise LedgerStoreError(f"Upsert failed for {record.external_id}: {e}") from e

        rows = response.data or []
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            raise LedgerStoreError(f"Upsert returned no result for {record.external_id}")
        return bool(rows[0].get("inserted"))

    def create_sync_run(self, run: SyncRun) -> Any:
        try:
            response = self._runs().insert(run.to_insert_row()).execute()
        except Exception as e:
            raise LedgerStoreError(f"Failed to create sync log: {e}") from e

        if not response.data:
            raise LedgerStoreError("Failed to create sync log: no row returned")
        return response.data[0]["id"]

    def update_sync_run(self, run: SyncRun) -> None:
        try:
            self._runs().update(run.to_update_row()).eq("id", run.id).execute()
        except Exception as e:
            raise LedgerStoreError(f"Failed to update sync log {run.id}: {e}") from e

    def set_flag(self, external_id: str, flag_category: Optional[str]) -> dict[str, Any]:
        return self._update_record(external_id, {"flag_category": flag_category})

    def set_approval(
        self,
        external_id: str,
        status: Optional[str],
        modified_by: Optional[str],
        modified_at: datetime,
    ) -> dict[str, Any]:
        return self._update_record(
            external_id,
            {
                "approval_status": status,
                "approval_modified_by": modified_by,
                "approval_modified_at": modified_at.isoformat(),
            },
        )

    def _update_record(self, external_id: str, values: dict[str, Any]) -> dict[str, Any]:
        try:
            response = (
                self._records().update(values).eq("external_id", external_id).execute()
            )
        except Exception as e:
            raise LedgerStoreError(f"Failed to update {external_id}: {e}") from e

        if not response.data:
            raise LedgerStoreError(f"Record not found: {external_id}")
        return response.data[0]

    def last_successful_sync(self) -> Optional[str]:
        try:
            response = (
                self._runs()
                .select("sync_completed_at")
                .eq("status", SyncRunStatus.SUCCESS.value)
                .order("sync_completed_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise LedgerStoreError(f"Failed to fetch last sync: {e}") from e

        if not response.data:
            return None
        return response.data[0].get("sync_completed_at")

    def list_records(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        query = self._records().select("*")
        if start_date:
            query = query.gte("transaction_date", start_date)
        if end_date:
            query = query.lte("transaction_date", end_date)
        if branch:
            query = query.eq("branch", branch)

        try:
            response = query.execute()
        except Exception as e:
            raise LedgerStoreError(f"Failed to list records: {e}") from e
        return response.data or []
