"""Signed HTTPS transport over requests, with failure classification."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping
from urllib.parse import quote, urlencode, urljoin, urlparse

import requests

from veracode_mcp.config import DEFAULT_API_BASE_URL, DEFAULT_TIMEOUT_SECONDS
from veracode_mcp.errors import (
    AuthSetupError,
    BackendError,
    RateLimitError,
    TransportError,
    VeracodeError,
)
from veracode_mcp.log import get_logger
from veracode_mcp.signer import RequestSigner

log = get_logger(__name__)

USER_AGENT = "veracode-mcp"


@dataclass(frozen=True)
class ResponseMeta:
    status: int
    size: int
    elapsed_ms: int


@dataclass
class Response:
    status: int
    data: dict[str, Any]
    meta: ResponseMeta


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try a request and how long to wait in between.

    The default instance tries once. ``retry_on`` decides per exception
    whether another attempt is allowed; ``backoff`` maps the attempt number
    (1-based) to seconds.
    """

    max_attempts: int = 1
    backoff: Callable[[int], float] = field(default=lambda attempt: 0.0)
    retry_on: Callable[[VeracodeError], bool] = field(default=lambda exc: False)

    def should_retry(self, exc: VeracodeError, attempt: int) -> bool:
        return attempt < self.max_attempts and self.retry_on(exc)


NO_RETRY = RetryPolicy()


def encode_query(query: Mapping[str, Any] | None) -> str:
    """Encode query params with %20 for spaces and repeated keys for lists.

    None values are dropped; booleans become "true"/"false".
    {"name": "My App", "cwe": [79, 89]} -> "name=My%20App&cwe=79&cwe=89"
    """
    if not query:
        return ""
    pairs: list[tuple[str, str]] = []
    for key, value in query.items():
        if value is None:
            continue
        values = value if isinstance(value, (list, tuple)) else [value]
        for v in values:
            if isinstance(v, bool):
                v = "true" if v else "false"
            pairs.append((key, str(v)))
    return urlencode(pairs, quote_via=quote)


def backend_message(response: requests.Response) -> str:
    """Pull the most useful error text out of an error response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error"):
            if body.get(key):
                value = body[key]
                return value if isinstance(value, str) else json.dumps(value)
    if body is not None:
        return json.dumps(body)
    text = (response.text or "").strip()
    if text:
        return text[:500]
    return f"HTTP {response.status_code} {response.reason or ''}".strip()


def classify_status(status: int) -> str:
    if status in (401, 403):
        return "auth"
    if status == 404:
        return "not_found"
    if status == 429:
        return "rate_limit"
    if status >= 500:
        return "server"
    return "client"


class Transport:
    """Issues signed requests against one API base URL.

    Every attempt is signed with a fresh nonce and timestamp. Nothing is
    retried unless a RetryPolicy says so.
    """

    def __init__(
        self,
        signer: RequestSigner,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
        retry_policy: RetryPolicy = NO_RETRY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not base_url.endswith("/"):
            base_url += "/"
        self.base_url = base_url
        self.host = urlparse(base_url).hostname or ""
        self.timeout = timeout
        self.signer = signer
        self.session = session if session is not None else requests.Session()
        self.retry_policy = retry_policy
        self._sleep = sleep

    def build_url(self, path: str, query: Mapping[str, Any] | None = None) -> str:
        url = urljoin(self.base_url, path.lstrip("/"))
        qs = encode_query(query)
        return f"{url}?{qs}" if qs else url

    def send(self, method: str, path: str, query: Mapping[str, Any] | None = None) -> Response:
        """Send one logical request, honouring the retry policy."""
        attempt = 1
        while True:
            try:
                return self._send_once(method, path, query)
            except (TransportError, BackendError) as exc:
                if not self.retry_policy.should_retry(exc, attempt):
                    raise
                delay = self.retry_policy.backoff(attempt)
                log.info(
                    "Retrying %s %s after %s (attempt %d/%d, sleeping %.2fs)",
                    method, path, type(exc).__name__, attempt + 1, self.retry_policy.max_attempts, delay,
                )
                self._sleep(delay)
                attempt += 1

    def get(self, path: str, query: Mapping[str, Any] | None = None) -> Response:
        return self.send("GET", path, query)

    def _send_once(self, method: str, path: str, query: Mapping[str, Any] | None) -> Response:
        method = method.upper()
        url = self.build_url(path, query)
        parsed = urlparse(url)
        signed_path = parsed.path + (f"?{parsed.query}" if parsed.query else "")

        try:
            auth = self.signer.header(method, signed_path, self.host)
        except AuthSetupError:
            raise
        except Exception as exc:
            raise AuthSetupError(f"Authentication failed: {exc}") from exc

        headers = {
            "Authorization": auth,
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

        start = time.monotonic()
        try:
            resp = self.session.request(method, url, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            log.warning("%s %s timed out after %ss", method, signed_path, self.timeout)
            raise TransportError(f"Request timed out after {self.timeout}s: {method} {path}", "network") from exc
        except requests.RequestException as exc:
            log.warning("%s %s failed: %s", method, signed_path, exc)
            raise TransportError(f"Network error on {method} {path}: {exc}", "network") from exc
        elapsed_ms = int((time.monotonic() - start) * 1000)

        size = len(resp.content or b"")
        meta = ResponseMeta(status=resp.status_code, size=size, elapsed_ms=elapsed_ms)

        if resp.status_code >= 400:
            message = backend_message(resp)
            kind = classify_status(resp.status_code)
            log.warning(
                "API request failed: %s %s -> %d (%d bytes, %dms): %s",
                method, signed_path, resp.status_code, size, elapsed_ms, message,
            )
            if kind == "rate_limit":
                raise RateLimitError(
                    f"Rate limited: {message}",
                    resp.status_code,
                    retry_after=resp.headers.get("Retry-After"),
                )
            raise BackendError(message, resp.status_code, kind)

        log.debug(
            "API response: %s %s -> %d (%d bytes, %dms)",
            method, signed_path, resp.status_code, size, elapsed_ms,
        )

        if not resp.content:
            return Response(status=resp.status_code, data={}, meta=meta)
        try:
            data = resp.json()
        except ValueError as exc:
            raise TransportError(f"Malformed response from {method} {path}: body is not JSON", "malformed") from exc
        if not isinstance(data, dict):
            raise TransportError(
                f"Malformed response from {method} {path}: expected a JSON object, got {type(data).__name__}",
                "malformed",
            )
        return Response(status=resp.status_code, data=data, meta=meta)
