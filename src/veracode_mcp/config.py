"""Configuration: credentials, endpoints, paging limits."""

from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import urlparse

from veracode_mcp.log import get_logger

log = get_logger(__name__)

DEFAULT_API_BASE_URL = "https://api.veracode.com/"
DEFAULT_PLATFORM_URL = "https://analysiscenter.veracode.com"
DEFAULT_TIMEOUT_SECONDS = 30.0

AUTH_SCHEME = "VERACODE-HMAC-SHA-256"
SIGNING_VERSION = "vcode_request_version_1"

MAX_PAGE_SIZE = 500
DEFAULT_MAX_PAGES = 50

# API host -> analysis center host
PLATFORM_HOSTS: dict[str, str] = {
    "api.veracode.com": "analysiscenter.veracode.com",  # commercial
    "api.veracode.eu": "analysiscenter.veracode.eu",
    "api.veracode.us": "analysiscenter.veracode.us",  # federal
}


@dataclass(frozen=True)
class Credentials:
    api_id: str
    api_key: str  # hex
    api_base_url: str | None = None
    platform_base_url: str | None = None
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    def __repr__(self) -> str:
        return (
            f"Credentials(api_id=<{len(self.api_id)} chars>, api_key=<redacted>, "
            f"api_base_url={self.api_base_url!r}, platform_base_url={self.platform_base_url!r})"
        )


def load_credentials() -> Credentials:
    """Load credentials from the environment. Fail closed if incomplete."""
    api_id = os.environ.get("VERACODE_API_ID", "")
    api_key = os.environ.get("VERACODE_API_KEY", "")

    missing = [
        name
        for name, value in (("VERACODE_API_ID", api_id), ("VERACODE_API_KEY", api_key))
        if not value
    ]
    if missing:
        raise RuntimeError(
            f"Missing required Veracode credentials: {', '.join(missing)}. "
            "Set them in the environment before starting the server."
        )

    raw_timeout = os.environ.get("VERACODE_TIMEOUT_SECONDS", "")
    try:
        timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT_SECONDS
    except ValueError as exc:
        raise RuntimeError(f"VERACODE_TIMEOUT_SECONDS must be a number, got {raw_timeout!r}") from exc
    if timeout <= 0:
        raise RuntimeError("VERACODE_TIMEOUT_SECONDS must be positive.")

    creds = Credentials(
        api_id=api_id,
        api_key=api_key,
        api_base_url=os.environ.get("VERACODE_API_BASE_URL") or None,
        platform_base_url=os.environ.get("VERACODE_PLATFORM_URL") or None,
        timeout=timeout,
    )
    log.debug(
        "Credentials loaded (has_api_id=%s, has_api_key=%s, api_base_url=%s, platform_base_url=%s)",
        bool(api_id),
        bool(api_key),
        creds.api_base_url or "default",
        creds.platform_base_url or "auto-derived",
    )
    return creds


def derive_platform_url(api_base_url: str) -> str:
    """Map a regional API base URL to its analysis center URL.

    api.veracode.eu -> https://analysiscenter.veracode.eu
    Unknown hosts fall back to the commercial region.
    """
    host = urlparse(api_base_url).hostname or ""
    if not host:
        log.warning("Invalid API base URL %r; using commercial platform URL", api_base_url)
        return DEFAULT_PLATFORM_URL

    platform_host = PLATFORM_HOSTS.get(host)
    if platform_host:
        return f"https://{platform_host}"

    if host.startswith("api.veracode."):
        return f"https://analysiscenter.{host[len('api.'):]}"

    log.warning("Unknown API host %s; using commercial platform URL", host)
    return DEFAULT_PLATFORM_URL


def to_platform_url(platform_base_url: str, relative: str | None) -> str | None:
    """Rewrite a relative platform link into an absolute URL."""
    if not relative:
        return None
    if relative.startswith(("http://", "https://")):
        return relative
    return f"{platform_base_url.rstrip('/')}/auth/index.jsp#{relative}"
