"""OAuth 1.0a (HMAC-SHA256) request signing for NetSuite token-based auth."""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl, quote, urlsplit
import base64
import hashlib
import hmac
import secrets
import time

SIGNATURE_METHOD = "HMAC-SHA256"
OAUTH_VERSION = "1.0"


@dataclass(frozen=True)
class OAuthCredentials:
    """Token-based authentication credentials for one NetSuite account."""

    account_id: str
    consumer_key: str
    consumer_secret: str
    token_id: str
    token_secret: str


def percent_encode(value: str) -> str:
    """RFC 3986 encoding as required by OAuth 1.0a."""
    return quote(str(value), safe="~")


def signature_base_string(method: str, url: str, params: dict[str, str]) -> str:
    """
    Build the signature base string.

    Args:
        method: HTTP method
        url: Request URL without query string
        params: OAuth parameters merged with the request's query parameters

    Returns:
        ``METHOD&enc(url)&enc(k1=v1&k2=v2...)`` with keys sorted
    """
    param_string = "&".join(
        f"{percent_encode(k)}={percent_encode(params[k])}" for k in sorted(params)
    )
    return "&".join(
        [method.upper(), percent_encode(url), percent_encode(param_string)]
    )


def sign(base_string: str, consumer_secret: str, token_secret: str) -> str:
    key = f"{percent_encode(consumer_secret)}&{percent_encode(token_secret)}"
    digest = hmac.new(key.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def authorization_header(
    method: str,
    url: str,
    credentials: OAuthCredentials,
    timestamp: Optional[str] = None,
    nonce: Optional[str] = None,
) -> str:
    """
    Build the ``Authorization`` header for a signed request.

    Query parameters in ``url`` take part in the signature but are not
    repeated in the header.

    Args:
        method: HTTP method
        url: Full request URL, including any query string
        credentials: Account and token credentials
        timestamp: Fixed timestamp (seconds) for reproducible signatures
        nonce: Fixed nonce for reproducible signatures

    Returns:
        ``OAuth realm="<account>",oauth_consumer_key="...",...`` header value
    """
    parts = urlsplit(url)
    base_url = f"{parts.scheme}://{parts.netloc}{parts.path}"

    oauth_params = {
        "oauth_consumer_key": credentials.consumer_key,
        "oauth_token": credentials.token_id,
        "oauth_signature_method": SIGNATURE_METHOD,
        "oauth_timestamp": timestamp or str(int(time.time())),
        "oauth_nonce": nonce or base64.b64encode(secrets.token_bytes(16)).decode("ascii"),
        "oauth_version": OAUTH_VERSION,
    }

    signed_params = dict(oauth_params)
    signed_params.update(parse_qsl(parts.query, keep_blank_values=True))

    base_string = signature_base_string(method, base_url, signed_params)
    oauth_params["oauth_signature"] = sign(
        base_string, credentials.consumer_secret, credentials.token_secret
    )

    header_params = ",".join(
        f'{percent_encode(k)}="{percent_encode(v)}"' for k, v in oauth_params.items()
    )
    return f'OAuth realm="{credentials.account_id}",{header_params}'
