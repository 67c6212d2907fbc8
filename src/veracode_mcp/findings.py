"""Findings retrieval: query filters, single pages, and bounded aggregation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

from veracode_mcp.config import DEFAULT_MAX_PAGES, MAX_PAGE_SIZE
from veracode_mcp.errors import TransportError, VeracodeError, with_context
from veracode_mcp.log import get_logger
from veracode_mcp.models import AggregatedFindings, Finding, FindingsPage, PageCursor, Scan
from veracode_mcp.normalize import normalize_finding
from veracode_mcp.transport import Transport

log = get_logger(__name__)

FINDINGS_PATH = "appsec/v2/applications/{app_id}/findings"

ScanLister = Callable[[str, "str | None", "str | None"], list[Scan]]


@dataclass(frozen=True)
class FindingsQuery:
    """Server-side filters for the findings endpoint. None means unset."""

    scan_type: str | None = None
    severity: int | None = None
    severity_gte: int | None = None
    cvss: float | None = None
    cvss_gte: float | None = None
    cwe: tuple[int, ...] = ()
    cve: str | None = None
    context: str | None = None  # sandbox GUID
    policy_violation: bool | None = None
    new_findings_only: bool | None = None
    finding_category: tuple[int, ...] = ()
    include_annotations: bool | None = None
    include_expiration_date: bool | None = None
    mitigated_after: str | None = None
    sca_dependency_mode: str | None = None  # UNKNOWN | DIRECT | TRANSITIVE | BOTH
    sca_scan_mode: str | None = None  # UPLOAD | AGENT | BOTH

    def __post_init__(self) -> None:
        if self.scan_type is not None:
            object.__setattr__(self, "scan_type", self.scan_type.upper())

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "scan_type": self.scan_type,
            "severity": self.severity,
            "severity_gte": self.severity_gte,
            "cwe": list(self.cwe) or None,
            "cvss": self.cvss,
            "cvss_gte": self.cvss_gte,
            "cve": self.cve,
            "context": self.context,
            "finding_category": list(self.finding_category) or None,
            "include_annot": self.include_annotations,
            "include_exp_date": self.include_expiration_date,
            "mitigated_after": self.mitigated_after,
            "new": self.new_findings_only,
            "sca_dep_mode": self.sca_dependency_mode,
            "sca_scan_mode": self.sca_scan_mode,
            "violates_policy": self.policy_violation,
        }
        return {k: v for k, v in params.items() if v is not None}


def clamp_page_size(size: int | None) -> int:
    if size is None:
        return MAX_PAGE_SIZE
    return max(1, min(int(size), MAX_PAGE_SIZE))


def empty_page(size: int) -> FindingsPage:
    return FindingsPage(
        findings=[],
        cursor=PageCursor(number=0, size=size, total_pages=0, total_elements=0),
        available=False,
    )


def parse_page(data: Mapping[str, Any], page: int, size: int) -> FindingsPage:
    """Turn a findings envelope into normalized findings plus a cursor.

    Raises TransportError("malformed") when the envelope or its page block
    has the wrong shape.
    """
    embedded = data.get("_embedded") or {}
    if not isinstance(embedded, Mapping):
        raise TransportError("Malformed findings response: '_embedded' is not an object", "malformed")
    raw_findings = embedded.get("findings") or []
    if not isinstance(raw_findings, list):
        raise TransportError("Malformed findings response: '_embedded.findings' is not a list", "malformed")
    findings = [normalize_finding(f) for f in raw_findings if isinstance(f, Mapping)]

    meta = data.get("page")
    if isinstance(meta, Mapping):
        try:
            cursor = PageCursor(
                number=int(meta.get("number", page) or 0),
                size=int(meta.get("size", size) or 0),
                total_pages=int(meta.get("total_pages", 0) or 0),
                total_elements=int(meta.get("total_elements", 0) or 0),
            )
        except (TypeError, ValueError) as exc:
            raise TransportError(f"Malformed findings response: bad page block ({exc})", "malformed") from exc
    else:
        # no page block: treat what we got as the whole result
        cursor = PageCursor(
            number=page,
            size=size,
            total_pages=page + 1 if findings else 0,
            total_elements=len(findings),
        )
    return FindingsPage(findings=findings, cursor=cursor)


class FindingsPaginator:
    """Drives the findings endpoint one page at a time.

    Every public call first lists the application's scans; when there are
    none, or none of the requested type, it returns an empty result and the
    findings endpoint is not called.
    """

    def __init__(self, transport: Transport, list_scans: ScanLister) -> None:
        self.transport = transport
        self.list_scans = list_scans

    def scans_available(self, app_id: str, query: FindingsQuery) -> bool:
        scans = self.list_scans(app_id, query.scan_type, query.context)
        if not scans:
            log.warning(
                "No scans found for application %s (scan type %s)",
                app_id, query.scan_type or "any",
            )
            return False
        if query.scan_type:
            available = {s.scan_type for s in scans}
            if query.scan_type not in available:
                log.warning(
                    "Scan type %s not available for application %s (available: %s)",
                    query.scan_type, app_id, ", ".join(sorted(available)),
                )
                return False
        return True

    def get_page(
        self,
        app_id: str,
        query: FindingsQuery | None = None,
        page: int = 0,
        size: int | None = MAX_PAGE_SIZE,
    ) -> FindingsPage:
        """Fetch one page. ``size`` above 500 is clamped, not rejected."""
        query = query or FindingsQuery()
        if page < 0:
            raise ValueError(f"page must be >= 0, got {page}")
        size = clamp_page_size(size)
        if not self.scans_available(app_id, query):
            return empty_page(size)
        return self._fetch(app_id, query, page, size)

    def get_all(
        self,
        app_id: str,
        query: FindingsQuery | None = None,
        max_pages: int = DEFAULT_MAX_PAGES,
        page_size: int | None = MAX_PAGE_SIZE,
    ) -> AggregatedFindings:
        """Collect findings across pages, sequentially, up to ``max_pages``.

        Stops when the reported page count is exhausted, when the ceiling is
        hit, or as soon as a page comes back shorter than ``page_size``. Only
        the ceiling sets ``truncated``.
        """
        query = query or FindingsQuery()
        if max_pages < 1:
            raise ValueError(f"max_pages must be >= 1, got {max_pages}")
        page_size = clamp_page_size(page_size)

        if not self.scans_available(app_id, query):
            return AggregatedFindings(
                findings=[], pages_retrieved=0, truncated=False,
                total_pages=0, total_elements=0, available=False,
            )

        findings: list[Finding] = []
        current = 0
        total_pages = 1
        total_elements = 0
        retrieved = 0
        short_page = False

        while current < total_pages and retrieved < max_pages:
            result = self._fetch(app_id, query, current, page_size)
            findings.extend(result.findings)
            total_pages = result.cursor.total_pages
            total_elements = result.cursor.total_elements
            retrieved += 1
            current += 1
            if len(result.findings) < page_size:
                short_page = True
                break

        truncated = not short_page and retrieved >= max_pages and current < total_pages
        log.debug(
            "Aggregated %d findings for %s over %d page(s) (total_pages=%d, truncated=%s)",
            len(findings), app_id, retrieved, total_pages, truncated,
        )
        return AggregatedFindings(
            findings=findings,
            pages_retrieved=retrieved,
            truncated=truncated,
            total_pages=total_pages,
            total_elements=total_elements,
        )

    def _fetch(self, app_id: str, query: FindingsQuery, page: int, size: int) -> FindingsPage:
        params = query.to_params()
        params["page"] = page
        params["size"] = size
        path = FINDINGS_PATH.format(app_id=app_id)
        try:
            response = self.transport.get(path, params)
            return parse_page(response.data, page, size)
        except VeracodeError as exc:
            raise with_context(exc, f"Failed to fetch findings for application {app_id} (page {page})") from exc
