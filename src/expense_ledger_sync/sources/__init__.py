"""External source adapters."""

from .bill_spend import BillSpendClient, parse_transaction
from .netsuite import NetSuiteClient
from .oauth import OAuthCredentials, authorization_header

__all__ = [
    "BillSpendClient",
    "parse_transaction",
    "NetSuiteClient",
    "OAuthCredentials",
    "authorization_header",
]
