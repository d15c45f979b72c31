"""
Reconciliation engine.
Turns fetched external records into ledger rows and writes them one at a
time, keeping every flag a reviewer has already set.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
import logging

from ..config import ReconciliationConfig
from ..models.records import (
    ExternalRecord,
    FieldSet,
    LedgerRecord,
    RecordSource,
    SyncState,
    TransactionType,
)
from ..models.sync_run import ErrorRecord, ReconcileResult
from ..resolvers import BranchNormalizer, ReferenceResolver
from ..store.ledger import LedgerStore
from ..utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

STORED_SYNC_STATES = (SyncState.SYNCED, SyncState.NOT_SYNCED, SyncState.ERROR)


class ReconciliationEngine:
    """
    Sequential reconcile-and-upsert loop.

    A record that fails to map or write is recorded as an error and the
    loop moves on; nothing here aborts the run.
    """

    def __init__(
        self,
        config: ReconciliationConfig,
        store: LedgerStore,
        resolver: Optional[ReferenceResolver] = None,
        normalizer: Optional[BranchNormalizer] = None,
    ):
        """
        Initialize the reconciliation engine.

        Args:
            config: Reconciliation settings
            store: Ledger store to upsert into
            resolver: Per-run reference data (card runs only)
            normalizer: Branch normalizer; built from ``config`` when omitted
        """
        self.config = config
        self.store = store
        self.resolver = resolver or ReferenceResolver(unknown_user=config.unknown_user)
        self.normalizer = normalizer or BranchNormalizer.from_config(config)

    def external_id(self, record: ExternalRecord) -> str:
        if record.source is RecordSource.CARD:
            return f"{self.config.card_id_prefix}{record.source_id}"
        return f"{self.config.erp_id_prefix}{record.source_id}"

    def reconcile(
        self,
        work_set: list[ExternalRecord],
        existing_flags: dict[str, Optional[str]],
        synced_at: Optional[datetime] = None,
    ) -> ReconcileResult:
        """
        Reconcile a work set into the ledger.

        Args:
            work_set: Deduplicated records fetched for this run
            existing_flags: external id -> current flag for rows already stored
            synced_at: Timestamp written to ``last_synced_at``

        Returns:
            Created/updated/preserved counters and per-record errors
        """
        synced_at = synced_at or datetime.now(timezone.utc)
        result = ReconcileResult()
        interval = self.config.progress_log_interval

        logger.info(
            f"Starting reconciliation: {len(work_set)} records, "
            f"{sum(1 for f in existing_flags.values() if f)} existing flags"
        )

        for index, record in enumerate(work_set, start=1):
            if interval and index % interval == 0:
                logger.info(f"Processing record {index}/{len(work_set)}...")

            try:
                ledger_record, preserved = self.build_ledger_record(record, existing_flags)
                inserted = self.store.upsert_record(ledger_record, synced_at)
            except Exception as e:
                logger.error(f"Error processing {record.source.value} {record.source_id}: {e}")
                result.errors.append(
                    ErrorRecord(
                        record_id=record.source_id,
                        vendor=record.merchant_name,
                        error=str(e),
                    )
                )
                continue

            if inserted:
                result.created += 1
            else:
                result.updated += 1
            if preserved:
                result.flags_preserved += 1
            if ledger_record.sync_status:
                breakdown = result.sync_status_breakdown
                breakdown[ledger_record.sync_status] = breakdown.get(ledger_record.sync_status, 0) + 1

        logger.info(
            f"Reconciliation complete: {result.created} created, {result.updated} updated, "
            f"{result.flags_preserved} flags preserved, {len(result.errors)} errors"
        )
        if result.sync_status_breakdown:
            logger.info(f"Sync status breakdown: {result.sync_status_breakdown}")

        return result

    def build_ledger_record(
        self, record: ExternalRecord, existing_flags: dict[str, Optional[str]]
    ) -> tuple[LedgerRecord, bool]:
        """
        Map one external record to its ledger row.

        Returns:
            Tuple of (ledger record, whether an existing flag was carried forward)

        Raises:
            ValidationError: The record's date cannot be parsed
        """
        external_id = self.external_id(record)
        is_card = record.source is RecordSource.CARD

        if is_card:
            fields = self.resolver.index_fields(record)
            branch = self.normalizer.normalize(fields.branch)
            if not branch and self.normalizer.is_plausible_branch(record.budget_id):
                branch = self.normalizer.normalize(record.budget_id)
        else:
            fields = record.line_fields or FieldSet()
            branch = fields.branch

        flag, preserved = self.resolve_flag(existing_flags.get(external_id), fields.category)

        ledger_record = LedgerRecord(
            external_id=external_id,
            transaction_date=parse_transaction_date(record.occurred),
            vendor_name=record.merchant_name or self.config.unknown_merchant,
            amount=self.normalize_amount(record),
            currency=record.currency or self.config.default_currency,
            transaction_type=(
                TransactionType.CREDIT_CARD if is_card else TransactionType.VENDOR_BILL
            ),
            memo=fields.memo,
            branch=branch,
            department=fields.department,
            category=fields.category,
            cardholder=self.resolver.cardholder(record.user_id) if is_card else None,
            status=self.card_status(record) if is_card else record.status,
            sync_status=resolve_sync_status(record).value if is_card else None,
            flag_category=flag,
        )
        return ledger_record, preserved

    def resolve_flag(
        self, existing_flag: Optional[str], category: Optional[str]
    ) -> tuple[Optional[str], bool]:
        """
        Carry a reviewer's flag forward, or auto-flag an unflagged record.

        Returns:
            Tuple of (flag category, whether it was preserved)
        """
        if existing_flag:
            return existing_flag, True
        if category and self.config.auto_flag_keyword.lower() in category.lower():
            return self.config.auto_flag_category, False
        return None, False

    def normalize_amount(self, record: ExternalRecord) -> Decimal:
        """Card amounts above the cents threshold arrive in cents."""
        amount = record.amount
        if record.source is RecordSource.CARD and amount > Decimal(str(self.config.amount_cents_threshold)):
            amount = amount / 100
        return amount

    @staticmethod
    def card_status(record: ExternalRecord) -> str:
        return "Complete" if record.complete else "Incomplete"


def resolve_sync_status(record: ExternalRecord) -> SyncState:
    """
    Stored sync status for a card record.

    The partition a record came from is authoritative; otherwise the
    embedded integration state decides, defaulting to NOT_SYNCED.
    """
    if record.known_sync_state in STORED_SYNC_STATES:
        return record.known_sync_state

    embedded = SyncState.parse(record.integration_sync_state)
    if embedded is not None and embedded.known_state is not None:
        return embedded.known_state
    return SyncState.NOT_SYNCED


def parse_transaction_date(value: str) -> date:
    """
    Parse an upstream date.

    Accepts ISO dates and timestamps (``2026-01-05``, ``2026-01-05T17:00:00Z``)
    and US-style ``1/5/2026``.
    """
    if not value:
        raise ValidationError("Missing transaction date")

    text = value.strip()
    try:
        return date.fromisoformat(text.split("T")[0])
    except ValueError:
        pass

    try:
        return datetime.strptime(text, "%m/%d/%Y").date()
    except ValueError:
        raise ValidationError(f"Invalid transaction date: {value!r}")
