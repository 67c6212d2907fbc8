"""Error taxonomy: client exceptions and structured error/success envelopes."""

from __future__ import annotations

from typing import Any


class VeracodeError(Exception):
    """Base class for every failure raised by the client."""


class AuthSetupError(VeracodeError):
    """Credentials could not be turned into a request signature.

    Raised before any network call is made; never retried.
    """


class TransportError(VeracodeError):
    """The request did not produce a usable response.

    ``kind`` is ``"network"`` (unreachable, DNS, timeout) or ``"malformed"``
    (the body was not the JSON object the API promises).
    """

    def __init__(self, message: str, kind: str = "network") -> None:
        super().__init__(message)
        self.kind = kind


class BackendError(VeracodeError):
    """The API answered with a 4xx/5xx status."""

    def __init__(self, message: str, status: int, kind: str = "client") -> None:
        super().__init__(message)
        self.status = status
        self.kind = kind


class RateLimitError(BackendError):
    """HTTP 429. Surfaced as-is so the caller can choose a backoff."""

    def __init__(self, message: str, status: int = 429, retry_after: str | None = None) -> None:
        super().__init__(message, status, kind="rate_limit")
        self.retry_after = retry_after


class ResolutionError(VeracodeError):
    """An application name matched zero applications."""

    def __init__(self, message: str, name: str) -> None:
        super().__init__(message)
        self.name = name


def with_context(exc: VeracodeError, context: str) -> VeracodeError:
    """Copy of ``exc`` (same class and attributes) with ``context`` prefixed.

    Callers ``raise with_context(exc, "...") from exc`` so the original stays
    reachable as ``__cause__``.
    """
    wrapped = exc.__class__.__new__(exc.__class__)
    wrapped.__dict__.update(exc.__dict__)
    wrapped.args = (f"{context}: {exc}",)
    return wrapped


def err(
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    next_steps: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build a structured error envelope."""
    return {
        "ok": False,
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
            "nextSteps": next_steps or [],
        },
    }


def ok(result: dict[str, Any]) -> dict[str, Any]:
    """Build a structured success envelope."""
    return {"ok": True, "result": result}


def err_from_exception(exc: Exception, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Map a client exception onto an error envelope code."""
    details = dict(details or {})
    if isinstance(exc, AuthSetupError):
        return err("E_AUTH_SETUP", str(exc), details)
    if isinstance(exc, RateLimitError):
        if exc.retry_after:
            details["retryAfter"] = exc.retry_after
        return err(
            "E_RATE_LIMITED",
            str(exc),
            details,
            next_steps=[{"action": "BACKOFF", "hint": "Wait before repeating the same call."}],
        )
    if isinstance(exc, ResolutionError):
        details.setdefault("name", exc.name)
        return err("E_NOT_FOUND", str(exc), details)
    if isinstance(exc, BackendError):
        details["status"] = exc.status
        code = "E_NOT_FOUND" if exc.kind == "not_found" else "E_BACKEND"
        return err(code, str(exc), details)
    if isinstance(exc, TransportError):
        details["kind"] = exc.kind
        return err("E_NETWORK", str(exc), details)
    if isinstance(exc, ValueError):
        return err("E_INVALID_REQUEST", str(exc), details)
    return err("E_INTERNAL", "Unhandled server error.", {**details, "exception": str(exc)})
