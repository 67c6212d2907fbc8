"""Veracode HMAC request signing.

The signing key is not the API key itself: it is derived per request by
chaining HMAC-SHA256 over the nonce, the timestamp and the protocol version
string. The final HMAC covers ``id``, ``host``, ``url`` and ``method``.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import secrets
import time

from veracode_mcp.config import AUTH_SCHEME, SIGNING_VERSION
from veracode_mcp.errors import AuthSetupError


def _hmac256(key: bytes, data: bytes) -> bytes:
    return hmac.new(key, data, hashlib.sha256).digest()


def new_nonce() -> str:
    """128-bit random nonce, hex encoded."""
    return secrets.token_hex(16)


def now_millis() -> str:
    return str(int(time.time() * 1000))


def sign(
    api_id: str,
    api_key: str,
    method: str,
    url: str,
    host: str,
    *,
    nonce: str | None = None,
    timestamp: str | None = None,
) -> str:
    """Build the Authorization header value for one request.

    ``url`` is the request path plus query string exactly as sent, and must
    start with ``/``. ``nonce``/``timestamp`` are generated when omitted;
    passing them is only useful for reproducing a known signature.

    Raises AuthSetupError on any malformed input.
    """
    if not api_id:
        raise AuthSetupError("API id is empty.")
    if not url.startswith("/"):
        raise AuthSetupError(f"Request path must start with '/': {url!r}")
    if not host:
        raise AuthSetupError("API host is empty.")

    nonce = nonce or new_nonce()
    timestamp = timestamp or now_millis()
    method = method.upper()

    try:
        key_bytes = bytes.fromhex(api_key)
        nonce_bytes = bytes.fromhex(nonce)
    except (ValueError, TypeError) as exc:
        raise AuthSetupError(f"Failed to generate auth header: key or nonce is not valid hex ({exc})") from exc
    if not key_bytes:
        raise AuthSetupError("Failed to generate auth header: API key is empty.")

    data = f"id={api_id}&host={host}&url={url}&method={method}"
    try:
        hashed_nonce = _hmac256(key_bytes, nonce_bytes)
        hashed_ts = _hmac256(hashed_nonce, timestamp.encode("utf-8"))
        hashed_version = _hmac256(hashed_ts, SIGNING_VERSION.encode("utf-8"))
        signature = binascii.hexlify(_hmac256(hashed_version, data.encode("utf-8"))).decode("ascii")
    except (ValueError, TypeError) as exc:
        raise AuthSetupError(f"Failed to generate auth header: {exc}") from exc

    return f"{AUTH_SCHEME} id={api_id},ts={timestamp},nonce={nonce},sig={signature}"


class RequestSigner:
    """Holds the credential pair; produces a fresh header per call."""

    def __init__(self, api_id: str, api_key: str) -> None:
        self._api_id = api_id
        self._api_key = api_key

    def header(self, method: str, url: str, host: str) -> str:
        return sign(self._api_id, self._api_key, method, url, host)

    def __repr__(self) -> str:
        return "RequestSigner(api_id=<set>, api_key=<redacted>)"
