"""
Sync pipelines.
Fetch, resolve reference data, load existing flags, reconcile and record
the run, for credit cards and for vendor bills.
"""

from datetime import date, datetime, timezone
from typing import Callable, Optional
import logging

from .audit import SyncAuditLog
from .config import SyncConfig
from .models.records import APPROVAL_STATUSES, ExternalRecord, FLAG_CATEGORIES
from .models.sync_run import ReconcileResult, SyncKind, SyncRun, SyncSummary
from .notify import SlackNotifier
from .reconciliation.engine import ReconciliationEngine
from .resolvers import BranchNormalizer, ReferenceResolver
from .sources.bill_spend import BillSpendClient
from .sources.netsuite import NetSuiteClient
from .store.ledger import LedgerStore
from .utils.exceptions import SyncAbortedError, ValidationError

logger = logging.getLogger(__name__)


class SyncService:
    """
    Entry point for sync runs and manual triage actions.

    Failures while fetching, resolving reference data or loading existing
    flags abort the run before any record is written. Failures on a single
    record are reported in the run and do not stop it.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: LedgerStore,
        card_client: Optional[BillSpendClient] = None,
        erp_client: Optional[NetSuiteClient] = None,
        notifier: Optional[SlackNotifier] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.config = config
        self.store = store
        self._card_client = card_client
        self._erp_client = erp_client
        self.notifier = notifier
        self.audit = SyncAuditLog(store)
        self.normalizer = BranchNormalizer.from_config(config.reconciliation)
        self._today = today or date.today

    @property
    def card_client(self) -> BillSpendClient:
        if self._card_client is None:
            self._card_client = BillSpendClient(self.config.card_source)
        return self._card_client

    @property
    def erp_client(self) -> NetSuiteClient:
        if self._erp_client is None:
            self._erp_client = NetSuiteClient(self.config.erp_source)
        return self._erp_client

    def sync_credit_cards(
        self,
        days_back: Optional[int] = None,
        historical: bool = False,
        include_incomplete: bool = True,
    ) -> SyncSummary:
        """
        Sync posted card transactions across every sync-state partition.

        Args:
            days_back: Lookback window; defaults to the routine window, or to
                the historical start date when ``historical`` is set
            historical: Use the historical fetch profile
            include_incomplete: Include transactions still missing receipts/coding

        Returns:
            Run summary

        Raises:
            SyncAbortedError: The run failed before reconciliation
        """
        recon = self.config.reconciliation
        if days_back is None:
            if historical:
                days_back = max((self._today() - recon.historical_start_date).days, 0)
            else:
                days_back = recon.routine_days_back

        kind = SyncKind.CREDIT_CARDS_HISTORICAL if historical else SyncKind.CREDIT_CARDS
        run = self.audit.start(kind)
        logger.info(f"=== Starting {kind.value} sync (last {days_back} days) ===")

        work_set = self._run_stage(
            run,
            "Failed to fetch transactions from Bill.com",
            lambda: self.card_client.fetch_all_partitions(
                days_back, include_incomplete=include_incomplete, historical=historical
            ),
        )
        resolver = self._run_stage(
            run,
            "Failed to load reference data from Bill.com",
            lambda: ReferenceResolver.from_card_client(
                self.card_client, recon.custom_fields, recon.unknown_user
            ),
        )
        return self._reconcile(run, work_set, resolver)

    def sync_vendor_bills(self, from_date: Optional[date] = None) -> SyncSummary:
        """
        Sync ERP vendor bills dated on/after ``from_date``.

        Raises:
            SyncAbortedError: The run failed before reconciliation
        """
        from_date = from_date or self.config.erp_source.from_date
        run = self.audit.start(SyncKind.VENDOR_BILLS)
        logger.info(f"=== Starting vendor bill sync from {from_date.isoformat()} ===")

        vendor_cache: dict[str, str] = {}
        work_set = self._run_stage(
            run,
            "Failed to fetch vendor bills from NetSuite",
            lambda: self.erp_client.fetch_vendor_bills(from_date, vendor_cache),
        )
        return self._reconcile(run, work_set, None)

    def _run_stage(self, run: SyncRun, description: str, stage: Callable):
        try:
            return stage()
        except Exception as e:
            message = f"{description}: {e}"
            logger.error(message)
            self.audit.fail(run, message)
            raise SyncAbortedError(message, run=run) from e

    def _reconcile(
        self,
        run: SyncRun,
        work_set: list[ExternalRecord],
        resolver: Optional[ReferenceResolver],
    ) -> SyncSummary:
        engine = ReconciliationEngine(
            self.config.reconciliation, self.store, resolver, self.normalizer
        )
        external_ids = [engine.external_id(r) for r in work_set]

        existing_flags = self._run_stage(
            run,
            "Failed to load existing flags",
            lambda: self.store.fetch_existing_flags(
                external_ids, self.config.ledger.flag_lookup_chunk_size
            ),
        )
        flagged = sum(1 for f in existing_flags.values() if f)
        logger.info(f"Records with non-null flags: {flagged}")

        result: ReconcileResult = engine.reconcile(work_set, existing_flags)
        self.audit.finish(run, len(work_set), result)

        summary = SyncSummary(run=run, result=result)
        logger.info(f"Sync completed: {summary.message}")

        notifier = self.notifier
        if notifier is not None and notifier.enabled and self.config.slack.notify_on_sync:
            notification = notifier.notify_sync_summary(summary)
            if not notification.success:
                logger.warning(f"Sync summary notification failed: {notification.error}")

        return summary

    def set_flag(self, external_id: str, flag_category: Optional[str]) -> dict:
        """
        Set or clear a record's flag.

        Raises:
            ValidationError: ``flag_category`` is not a known flag
        """
        if flag_category is not None and flag_category not in FLAG_CATEGORIES:
            raise ValidationError(
                f"Invalid flag category {flag_category!r}; expected one of {', '.join(FLAG_CATEGORIES)}"
            )
        logger.info(f"Setting flag on {external_id}: {flag_category}")
        return self.store.set_flag(external_id, flag_category)

    def set_approval(
        self, external_id: str, status: Optional[str], modified_by: Optional[str] = None
    ) -> dict:
        """
        Approve, reject or reset (None) a record.

        Raises:
            ValidationError: ``status`` is not a known approval status
        """
        if status is not None and status not in APPROVAL_STATUSES:
            raise ValidationError(
                f"Invalid approval status {status!r}; expected approved, rejected or null"
            )
        logger.info(f"Setting approval on {external_id}: {status} (by {modified_by})")
        return self.store.set_approval(
            external_id, status, modified_by, datetime.now(timezone.utc)
        )

    def last_successful_sync(self) -> Optional[str]:
        return self.store.last_successful_sync()
