"""
Bill.com Spend & Expense API client.
Fetches posted credit-card transactions and the reference data needed to
resolve them (users, custom field definitions).
"""

from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional
import logging
import time

import httpx

from ..config import CardSourceConfig, PagingConfig
from ..models.records import CustomFieldValue, ExternalRecord, RecordSource, SyncState
from ..reconciliation.merge import dedupe_partitions
from ..utils.exceptions import SourceAPIError, SourceConnectionError, SourceTimeoutError

logger = logging.getLogger(__name__)

SOURCE_NAME = "Bill.com"

PARTITION_ORDER = (
    SyncState.SYNCED,
    SyncState.MANUAL_SYNCED,
    SyncState.NOT_SYNCED,
    SyncState.ERROR,
)


class BillSpendClient:
    """
    Read-only client for the card spend platform.

    Every list endpoint is cursor paginated through ``nextPage``; the client
    sleeps a fixed delay between pages to stay under upstream throttling.
    """

    def __init__(
        self,
        config: CardSourceConfig,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        today: Optional[Callable[[], date]] = None,
    ):
        """
        Initialize the client.

        Args:
            config: Card source configuration
            client: Optional pre-built httpx client (tests pass a MockTransport)
            sleep: Function used for the inter-page delay
            today: Function returning the current date for window computation
        """
        self.config = config
        self._client = client or httpx.Client(timeout=config.timeout_seconds)
        self._sleep = sleep
        self._today = today or date.today

    def _headers(self) -> dict[str, str]:
        return {"apiToken": self.config.api_token, "Accept": "application/json"}

    def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        url = self.config.base_url.rstrip("/") + path
        try:
            response = self._client.get(
                url,
                params=params,
                headers=self._headers(),
                timeout=self.config.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise SourceTimeoutError(SOURCE_NAME, self.config.timeout_seconds) from e
        except httpx.HTTPError as e:
            raise SourceConnectionError(SOURCE_NAME, str(e)) from e

        if not response.is_success:
            raise SourceAPIError(SOURCE_NAME, response.status_code, response.text)
        try:
            return response.json()
        except ValueError as e:
            raise SourceConnectionError(SOURCE_NAME, f"invalid JSON response from {path}") from e

    def get_transactions(
        self,
        max_results: int,
        filters: Optional[str] = None,
        next_page: Optional[str] = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"max": max_results}
        if next_page:
            params["nextPage"] = next_page
        if filters:
            params["filters"] = filters
        return self._get("/spend/transactions", params)

    def get_users(self, max_results: int, next_page: Optional[str] = None) -> dict[str, Any]:
        params: dict[str, Any] = {"max": max_results}
        if next_page:
            params["nextPage"] = next_page
        return self._get("/spend/users", params)

    def get_custom_fields(
        self, max_results: int, next_page: Optional[str] = None
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"max": max_results}
        if next_page:
            params["nextPage"] = next_page
        return self._get("/spend/custom-fields", params)

    def fetch_transactions_by_sync_state(
        self,
        days_back: int,
        sync_state: SyncState,
        include_incomplete: bool = True,
        historical: bool = False,
    ) -> list[ExternalRecord]:
        """
        Fetch every posted transaction in one sync-state partition.

        Args:
            days_back: Lookback window in days (>= 0)
            sync_state: Upstream accounting-integration state to filter on
            include_incomplete: Include transactions still missing receipts/coding
            historical: Use the larger historical page size and page ceiling

        Returns:
            Posted transactions tagged with the partition's known sync state

        Raises:
            SourceAPIError: Upstream returned a non-2xx response
            SourceTimeoutError: A page request timed out
            SourceConnectionError: Upstream unreachable or answered with a non-JSON body
        """
        if days_back < 0:
            raise ValueError("days_back must be >= 0")

        paging = self.config.historical if historical else self.config.routine
        filters = self.build_filters(days_back, sync_state, include_incomplete)
        logger.info(f"Fetching transactions with syncStatus={sync_state.value}, filters: {filters}")

        raw = self._paginate_transactions(paging, filters, label=sync_state.value)

        posted = [
            t for t in raw
            if t.get("transactionType") == self.config.posted_transaction_type
        ]
        logger.info(
            f"Fetched {len(raw)} total transactions with syncStatus={sync_state.value}, "
            f"filtered to {len(posted)} {self.config.posted_transaction_type} transactions"
        )

        known_state = sync_state.known_state
        return [parse_transaction(t, known_state) for t in posted]

    def fetch_all_partitions(
        self,
        days_back: int,
        include_incomplete: bool = True,
        historical: bool = False,
    ) -> list[ExternalRecord]:
        """
        Fetch every sync-state partition and merge them into one work set.

        A transaction returned by more than one partition keeps the copy
        whose sync state is known.
        """
        partitions = []
        for sync_state in PARTITION_ORDER:
            records = self.fetch_transactions_by_sync_state(
                days_back, sync_state, include_incomplete, historical
            )
            logger.info(f"Found {len(records)} {sync_state.value} transactions")
            partitions.append(records)

        unique = dedupe_partitions(partitions)
        logger.info(f"Total unique transactions after deduplication: {len(unique)}")
        return unique

    def build_filters(
        self, days_back: int, sync_state: SyncState, include_incomplete: bool
    ) -> str:
        floor_date = self._today() - timedelta(days=days_back)
        filters = f"occurredTime:gte:{floor_date.isoformat()},syncStatus:eq:{sync_state.value}"
        if not include_incomplete:
            filters = f"complete:eq:true,{filters}"
        return filters

    def _paginate_transactions(
        self, paging: PagingConfig, filters: str, label: str
    ) -> list[dict[str, Any]]:
        transactions: list[dict[str, Any]] = []
        next_page: Optional[str] = None

        for page_count in range(1, paging.max_pages + 1):
            if page_count % 10 == 0:
                logger.info(f"  Page {page_count} for syncStatus={label}...")

            response = self.get_transactions(paging.page_size, filters, next_page)
            results = response.get("results") or []
            if not results:
                break

            transactions.extend(results)
            next_page = response.get("nextPage")
            if not next_page:
                break
            if page_count < paging.max_pages:
                self._sleep(paging.page_delay_seconds)
        else:
            logger.warning(
                f"Reached max page limit of {paging.max_pages} for syncStatus={label}. "
                "There may be more transactions to fetch."
            )

        return transactions

    def list_users(self) -> list[dict[str, Any]]:
        """Fetch every platform user across all pages."""
        return self._paginate_reference(self.get_users)

    def list_custom_fields(self) -> list[dict[str, Any]]:
        """Fetch every custom field definition across all pages."""
        return self._paginate_reference(self.get_custom_fields)

    def _paginate_reference(self, fetch_page: Callable[..., dict[str, Any]]) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        next_page: Optional[str] = None
        while True:
            response = fetch_page(self.config.reference_page_size, next_page)
            results = response.get("results") or []
            if not results:
                break
            items.extend(results)
            next_page = response.get("nextPage")
            if not next_page:
                break
        return items

    def close(self) -> None:
        self._client.close()


def parse_transaction(
    payload: dict[str, Any], known_state: Optional[SyncState] = None
) -> ExternalRecord:
    """
    Convert a card transaction payload to an ExternalRecord.

    Args:
        payload: Transaction object from ``/spend/transactions``
        known_state: Sync state implied by the partition it came from

    Returns:
        Normalized external record
    """
    integration = (payload.get("accountingIntegrationTransactions") or [{}])[0] or {}

    return ExternalRecord(
        source=RecordSource.CARD,
        source_id=str(payload["id"]),
        occurred=payload.get("occurredTime") or "",
        amount=_to_decimal(payload.get("amount")),
        merchant_name=payload.get("merchantName"),
        user_id=payload.get("userId"),
        custom_fields=[_parse_custom_field(cf) for cf in payload.get("customFields") or []],
        budget_id=payload.get("budgetId"),
        complete=payload.get("complete"),
        known_sync_state=known_state,
        integration_sync_state=integration.get("syncStatus"),
        raw_data=payload,
    )


def _parse_custom_field(payload: dict[str, Any]) -> CustomFieldValue:
    ids = tuple(
        str(payload[key])
        for key in ("customFieldUuid", "uuid")
        if payload.get(key)
    )
    selected = [
        sv["value"] for sv in payload.get("selectedValues") or [] if sv.get("value")
    ]
    return CustomFieldValue(field_ids=ids, note=payload.get("note"), selected_values=selected)


def _to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")
