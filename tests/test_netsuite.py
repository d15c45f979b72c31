"""Tests for the NetSuite client using httpx.MockTransport."""

import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from expense_ledger_sync.models.records import RecordSource
from expense_ledger_sync.sources.netsuite import NetSuiteClient
from expense_ledger_sync.utils.exceptions import SourceAPIError, SourceConnectionError

HOST = "https://1234567.suitetalk.api.netsuite.com"

BILL_DETAIL = {
    "id": "501",
    "total": 1250.75,
    "memo": "Header memo",
    "status": {"id": "open", "refName": "Open"},
    "currency": {"id": "1", "refName": "USD"},
}

EXPENSE_LINE = {
    "line": 1,
    "location": {"id": "3", "refName": "Tucson"},
    "department": {"id": "7", "refName": "Fleet Maintenance"},
    "account": {"id": "600", "refName": "6000 Repairs"},
    "memo": "Brake pads",
}


class Router:
    """Dispatches mock requests by path and keeps the request log."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    def count(self, path):
        return sum(1 for r in self.requests if r.url.path == path)


def make_client(config, router):
    return NetSuiteClient(
        config.erp_source, client=httpx.Client(transport=httpx.MockTransport(router))
    )


def test_search_pages_until_short_page(config):
    config.erp_source.page_size = 2
    pages = {
        "0": {"items": [{"id": 1}, {"id": 2}], "hasMore": True},
        "2": {"items": [{"id": 3}], "hasMore": False},
    }

    def suiteql(request):
        return httpx.Response(200, json=pages[request.url.params["offset"]])

    router = Router({"/services/rest/query/v1/suiteql": suiteql})

    rows = make_client(config, router).search_vendor_bills(date(2026, 1, 1))

    assert [r["id"] for r in rows] == [1, 2, 3]
    assert len(router.requests) == 2

    first = router.requests[0]
    assert first.method == "POST"
    assert first.url.host == "1234567.suitetalk.api.netsuite.com"
    assert first.url.params["limit"] == "2"
    assert first.headers["Prefer"] == "transient"
    assert first.headers["Authorization"].startswith('OAuth realm="1234567_SB1"')
    query = json.loads(first.content)["q"]
    assert "type = 'VendBill'" in query
    assert "TO_DATE('2026-01-01', 'YYYY-MM-DD')" in query


def test_search_non_success_raises(config):
    router = Router({"/services/rest/query/v1/suiteql": lambda r: httpx.Response(401, text="Invalid login")})

    with pytest.raises(SourceAPIError) as exc_info:
        make_client(config, router).search_vendor_bills(date(2026, 1, 1))

    assert str(exc_info.value) == "NetSuite API Error: 401 - Invalid login"


def test_fetch_vendor_bills_hydrates_from_first_expense_line(config):
    router = Router(
        {
            "/services/rest/query/v1/suiteql": {
                "items": [{"id": 501, "tranid": "B-501", "trandate": "2026-01-08", "entity": 88}],
                "hasMore": False,
            },
            "/services/rest/record/v1/vendorBill/501": BILL_DETAIL,
            "/services/rest/record/v1/vendorBill/501/expense": {
                "items": [{"links": [{"rel": "self", "href": f"{HOST}/services/rest/record/v1/vendorBill/501/expense/1"}]}]
            },
            "/services/rest/record/v1/vendorBill/501/expense/1": EXPENSE_LINE,
            "/services/rest/record/v1/vendor/88": {"companyName": "Acme Supply"},
        }
    )

    records = make_client(config, router).fetch_vendor_bills(date(2026, 1, 1))

    assert len(records) == 1
    record = records[0]
    assert record.source is RecordSource.ERP_BILL
    assert record.source_id == "501"
    assert record.occurred == "2026-01-08"
    assert record.amount == Decimal("1250.75")
    assert record.merchant_name == "Acme Supply"
    assert record.status == "Open"
    assert record.currency == "USD"
    assert record.line_fields.branch == "Tucson"
    assert record.line_fields.department == "Fleet Maintenance"
    assert record.line_fields.category == "6000 Repairs"
    assert record.line_fields.memo == "Brake pads"


def test_detail_failure_keeps_defaults(config):
    router = Router(
        {
            "/services/rest/query/v1/suiteql": {
                "items": [{"id": 7, "trandate": "2026-01-02", "entity": 88}],
                "hasMore": False,
            },
            "/services/rest/record/v1/vendorBill/7": lambda r: httpx.Response(500, text="boom"),
            "/services/rest/record/v1/vendor/88": {"entityId": "ACME"},
        }
    )

    records = make_client(config, router).fetch_vendor_bills(date(2026, 1, 1))

    record = records[0]
    assert record.amount == Decimal("0")
    assert record.status is None
    assert record.merchant_name == "ACME"
    assert record.line_fields.branch is None
    assert record.line_fields.memo is None


def test_vendor_names_cached_per_run(config):
    router = Router(
        {
            "/services/rest/query/v1/suiteql": {
                "items": [
                    {"id": 1, "trandate": "2026-01-02", "entity": 88},
                    {"id": 2, "trandate": "2026-01-03", "entity": 88},
                ],
                "hasMore": False,
            },
            "/services/rest/record/v1/vendorBill/1": {"total": 10},
            "/services/rest/record/v1/vendorBill/1/expense": {"items": []},
            "/services/rest/record/v1/vendorBill/2": {"total": 20},
            "/services/rest/record/v1/vendorBill/2/expense": {"items": []},
            "/services/rest/record/v1/vendor/88": {"companyName": "Acme Supply"},
        }
    )
    cache = {}

    records = make_client(config, router).fetch_vendor_bills(date(2026, 1, 1), vendor_cache=cache)

    assert [r.merchant_name for r in records] == ["Acme Supply", "Acme Supply"]
    assert router.count("/services/rest/record/v1/vendor/88") == 1
    assert cache == {"88": "Acme Supply"}


def test_vendor_failure_falls_back_without_caching(config):
    router = Router({"/services/rest/record/v1/vendor/99": lambda r: httpx.Response(404, text="gone")})
    client = make_client(config, router)
    cache = {}

    assert client.resolve_vendor_name("99", cache) == "Vendor ID: 99"
    assert client.resolve_vendor_name("99", cache) == "Vendor ID: 99"
    assert cache == {}
    assert router.count("/services/rest/record/v1/vendor/99") == 2


def test_failed_expense_line_is_skipped(config):
    router = Router(
        {
            "/services/rest/record/v1/vendorBill/5/expense": {
                "items": [
                    {"links": [{"href": f"{HOST}/services/rest/record/v1/vendorBill/5/expense/1"}]},
                    {"links": [{"href": f"{HOST}/services/rest/record/v1/vendorBill/5/expense/2"}]},
                    {"links": []},
                ]
            },
            "/services/rest/record/v1/vendorBill/5/expense/1": lambda r: httpx.Response(500, text="x"),
            "/services/rest/record/v1/vendorBill/5/expense/2": EXPENSE_LINE,
        }
    )

    lines = make_client(config, router).get_vendor_bill_expense_lines("5")

    assert lines == [EXPENSE_LINE]


@pytest.mark.parametrize("failure", ["connect_error", "html_body"])
def test_unreachable_or_garbled_bill_detail_keeps_other_bills(config, failure):
    def broken_detail(request):
        if failure == "connect_error":
            raise httpx.ConnectError("connection reset", request=request)
        return httpx.Response(200, text="<html>gateway</html>")

    router = Router(
        {
            "/services/rest/query/v1/suiteql": {
                "items": [
                    {"id": 1, "trandate": "2026-01-02", "entity": 88},
                    {"id": 2, "trandate": "2026-01-03", "entity": 88},
                ],
                "hasMore": False,
            },
            "/services/rest/record/v1/vendorBill/1": broken_detail,
            "/services/rest/record/v1/vendorBill/2": {"total": 20},
            "/services/rest/record/v1/vendorBill/2/expense": {"items": []},
            "/services/rest/record/v1/vendor/88": {"companyName": "Acme Supply"},
        }
    )

    records = make_client(config, router).fetch_vendor_bills(date(2026, 1, 1))

    assert [r.source_id for r in records] == ["1", "2"]
    assert records[0].amount == Decimal("0")
    assert records[0].merchant_name == "Acme Supply"
    assert records[1].amount == Decimal("20")


def test_unreachable_vendor_falls_back(config):
    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    router = Router({"/services/rest/record/v1/vendor/5": refused})

    assert make_client(config, router).resolve_vendor_name("5", {}) == "Vendor ID: 5"


def test_unreachable_search_raises_connection_error(config):
    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    router = Router({"/services/rest/query/v1/suiteql": refused})

    with pytest.raises(SourceConnectionError) as exc_info:
        make_client(config, router).search_vendor_bills(date(2026, 1, 1))

    assert str(exc_info.value) == "NetSuite API request failed: refused"
