"""
NetSuite SuiteTalk REST client.
Searches vendor bills through SuiteQL and hydrates each bill with its
detail record, first expense line and vendor name.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
import logging
import re

import httpx

from ..config import ErpSourceConfig
from ..models.records import ExternalRecord, FieldSet, RecordSource
from ..utils.exceptions import (
    LedgerSyncError,
    SourceAPIError,
    SourceConnectionError,
    SourceTimeoutError,
)
from .oauth import OAuthCredentials, authorization_header

logger = logging.getLogger(__name__)

SOURCE_NAME = "NetSuite"

SUITEQL_PATH = "/services/rest/query/v1/suiteql"
RECORD_PATH = "/services/rest/record/v1"


def account_base_url(account_id: str) -> str:
    """REST host for an account; sandbox ``_SB<n>`` suffixes are dropped."""
    clean_account_id = re.sub(r"_SB\d+$", "", account_id)
    return f"https://{clean_account_id}.suitetalk.api.netsuite.com"


class NetSuiteClient:
    """OAuth 1.0a signed client for the ERP's REST and SuiteQL endpoints."""

    def __init__(self, config: ErpSourceConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.credentials = OAuthCredentials(
            account_id=config.account_id,
            consumer_key=config.consumer_key,
            consumer_secret=config.consumer_secret,
            token_id=config.token_id,
            token_secret=config.token_secret,
        )
        self.base_url = account_base_url(config.account_id)
        self._client = client or httpx.Client(timeout=config.timeout_seconds)

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        url = httpx.URL(self.base_url + path, params=params)
        headers = {
            "Authorization": authorization_header(method, str(url), self.credentials),
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Prefer": "transient",
        }
        try:
            response = self._client.request(
                method, url, headers=headers, json=body, timeout=self.config.timeout_seconds
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

    def search_vendor_bills(self, from_date: date) -> list[dict[str, Any]]:
        """
        Return header rows for all vendor bills dated on/after ``from_date``.

        Pages with ``limit``/``offset`` until a short page or the page ceiling.

        Raises:
            SourceAPIError: Upstream returned a non-2xx response
            SourceTimeoutError: A page request timed out
            SourceConnectionError: Upstream unreachable or answered with a non-JSON body
        """
        query = (
            "SELECT id, tranid, trandate, entity FROM transaction "
            "WHERE type = 'VendBill' "
            f"AND trandate >= TO_DATE('{from_date.isoformat()}', 'YYYY-MM-DD') "
            "ORDER BY trandate DESC"
        )
        logger.debug(f"Executing SuiteQL query: {query}")

        page_size = self.config.page_size
        rows: list[dict[str, Any]] = []

        for page in range(self.config.max_pages):
            response = self._request(
                "POST",
                SUITEQL_PATH,
                params={"limit": page_size, "offset": page * page_size},
                body={"q": query},
            )
            items = response.get("items") or []
            rows.extend(items)
            if len(items) < page_size or response.get("hasMore") is False:
                break
        else:
            logger.warning(
                f"Reached max page limit of {self.config.max_pages} for vendor bills. "
                "There may be more bills to fetch."
            )

        logger.info(f"Found {len(rows)} vendor bills since {from_date.isoformat()}")
        return rows

    def get_vendor_bill(self, bill_id: str) -> dict[str, Any]:
        return self._request("GET", f"{RECORD_PATH}/vendorBill/{bill_id}")

    def get_vendor(self, vendor_id: str) -> dict[str, Any]:
        return self._request("GET", f"{RECORD_PATH}/vendor/{vendor_id}")

    def get_vendor_bill_expense_lines(self, bill_id: str) -> list[dict[str, Any]]:
        """
        Fetch the expense sub-list of a bill, following each line's self link.

        A line whose detail request fails is skipped.
        """
        response = self._request("GET", f"{RECORD_PATH}/vendorBill/{bill_id}/expense")
        lines: list[dict[str, Any]] = []

        for item in response.get("items") or []:
            links = item.get("links") or []
            href = links[0].get("href") if links else None
            if not href:
                continue
            try:
                lines.append(self._request("GET", httpx.URL(href).path))
            except LedgerSyncError as e:
                logger.warning(f"Error fetching expense line detail for bill {bill_id}: {e}")

        return lines

    def fetch_vendor_bills(
        self, from_date: date, vendor_cache: Optional[dict[str, str]] = None
    ) -> list[ExternalRecord]:
        """
        Search vendor bills and hydrate each one into an ExternalRecord.

        The header search is all-or-nothing. Detail, expense-line and vendor
        lookups are fetched per bill and degrade to defaults on failure.

        Args:
            from_date: Earliest bill date to include
            vendor_cache: Run-scoped vendor id -> display name cache

        Returns:
            Hydrated vendor bill records
        """
        cache = vendor_cache if vendor_cache is not None else {}
        records: list[ExternalRecord] = []

        for header in self.search_vendor_bills(from_date):
            if header.get("id") is None:
                logger.warning(f"Skipping vendor bill header without id: {header}")
                continue
            records.append(self.hydrate_bill(header, cache))

        return records

    def hydrate_bill(self, header: dict[str, Any], vendor_cache: dict[str, str]) -> ExternalRecord:
        bill_id = str(header["id"])

        details: dict[str, Any] = {}
        lines: list[dict[str, Any]] = []
        try:
            details = self.get_vendor_bill(bill_id)
            lines = self.get_vendor_bill_expense_lines(bill_id)
        except LedgerSyncError as e:
            logger.warning(f"Could not fetch bill/expense details for {bill_id}: {e}")

        vendor_id = str(header.get("entity") or "")
        vendor_name = self.resolve_vendor_name(vendor_id, vendor_cache) if vendor_id else None

        if lines:
            first = lines[0]
            line_fields = FieldSet(
                branch=_ref_name(first.get("location")),
                department=_ref_name(first.get("department")),
                category=_ref_name(first.get("category")) or _ref_name(first.get("account")),
                memo=first.get("memo") or details.get("memo"),
            )
        else:
            line_fields = FieldSet(memo=details.get("memo"))

        status = details.get("status") or {}

        return ExternalRecord(
            source=RecordSource.ERP_BILL,
            source_id=bill_id,
            occurred=str(header.get("trandate") or ""),
            amount=_to_decimal(details.get("total") or details.get("userTotal")),
            merchant_name=vendor_name,
            status=status.get("refName") or status.get("id"),
            currency=_ref_name(details.get("currency")),
            line_fields=line_fields,
            raw_data=header,
        )

    def resolve_vendor_name(self, vendor_id: str, vendor_cache: dict[str, str]) -> str:
        """Vendor display name, cached per run; failures are not cached."""
        if vendor_id in vendor_cache:
            return vendor_cache[vendor_id]

        fallback = f"Vendor ID: {vendor_id}"
        try:
            vendor = self.get_vendor(vendor_id)
        except LedgerSyncError as e:
            logger.warning(f"Could not fetch vendor name for {vendor_id}: {e}")
            return fallback

        name = vendor.get("companyName") or vendor.get("entityId") or vendor.get("altName") or fallback
        vendor_cache[vendor_id] = name
        logger.debug(f"Cached vendor {vendor_id}: {name}")
        return name

    def close(self) -> None:
        self._client.close()


def _ref_name(ref: Optional[dict[str, Any]]) -> Optional[str]:
    if not ref:
        return None
    return ref.get("refName")


def _to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")
