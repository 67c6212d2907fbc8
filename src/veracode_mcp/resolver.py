"""Application resolution: free-text name or GUID -> one Application."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from veracode_mcp.errors import BackendError, ResolutionError
from veracode_mcp.log import get_logger
from veracode_mcp.models import Application

log = get_logger(__name__)

GUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


class ApplicationSource(Protocol):
    def search_applications(self, name: str) -> list[Application]: ...

    def get_application(self, app_id: str) -> Application: ...


@dataclass(frozen=True)
class Resolution:
    application: Application
    exact: bool
    resolved_from_name: bool = True
    candidates: int = 1

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.application.guid,
            "name": self.application.name,
            "exact_match": self.exact,
            "resolved_from_name": self.resolved_from_name,
            "candidates": self.candidates,
        }


def is_guid(value: str) -> bool:
    return bool(GUID_RE.match(value.strip()))


def pick_application(name: str, candidates: list[Application]) -> tuple[Application, bool]:
    """Choose among search results.

    A case-insensitive exact name match wins wherever it sits in the list;
    otherwise the first result as ordered by the API is used and the
    selection is reported as inexact.
    """
    if not candidates:
        raise ResolutionError(f"No application found with name: {name}", name)
    wanted = name.lower()
    for app in candidates:
        if app.name.lower() == wanted:
            return app, True
    return candidates[0], False


class ApplicationResolver:
    """Resolves names through a name-filtered list query. No caching."""

    def __init__(self, source: ApplicationSource) -> None:
        self.source = source

    def resolve_by_name(self, name: str) -> Resolution:
        name = validate_identifier(name)
        candidates = self.source.search_applications(name)
        app, exact = pick_application(name, candidates)
        if exact:
            log.debug("Exact application match for %r: %s", name, app.guid)
        else:
            log.warning(
                "No exact match for %r among %d result(s); using first result %r (%s)",
                name, len(candidates), app.name, app.guid,
            )
        return Resolution(application=app, exact=exact, resolved_from_name=True, candidates=len(candidates))

    def resolve(self, identifier: str) -> Resolution:
        """Accept either an application GUID or a name."""
        identifier = validate_identifier(identifier)
        if not is_guid(identifier):
            return self.resolve_by_name(identifier)

        log.debug("Resolving application by GUID %s", identifier)
        try:
            app = self.source.get_application(identifier)
        except BackendError as exc:
            if exc.kind == "not_found":
                raise ResolutionError(f"Application not found with GUID: {identifier}", identifier) from exc
            raise
        return Resolution(application=app, exact=True, resolved_from_name=False)


def validate_identifier(identifier: str | None) -> str:
    if identifier is None or not str(identifier).strip():
        raise ValueError(
            "Missing required application identifier "
            "(application profile ID (GUID) or exact application name)"
        )
    return str(identifier).strip()
