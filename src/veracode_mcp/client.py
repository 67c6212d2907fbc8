"""VeracodeClient: the read-only operations exposed to tool handlers."""

from __future__ import annotations

from typing import Any

import requests

from veracode_mcp.compliance import ComplianceEvaluator, CompliancePrecedence
from veracode_mcp.config import (
    DEFAULT_API_BASE_URL,
    DEFAULT_MAX_PAGES,
    MAX_PAGE_SIZE,
    Credentials,
    derive_platform_url,
    load_credentials,
    to_platform_url,
)
from veracode_mcp.errors import BackendError, VeracodeError, with_context
from veracode_mcp.findings import FindingsPaginator, FindingsQuery
from veracode_mcp.log import get_logger
from veracode_mcp.models import (
    AggregatedFindings,
    Application,
    ComplianceSummary,
    FindingsPage,
    Sandbox,
    Scan,
)
from veracode_mcp.normalize import parse_application, parse_sandbox, parse_scan
from veracode_mcp.resolver import ApplicationResolver, Resolution
from veracode_mcp.signer import RequestSigner
from veracode_mcp.transport import NO_RETRY, RetryPolicy, Transport

log = get_logger(__name__)

STATIC_FLAW_NOT_FOUND = """Static flaw info not available for issue ID {issue_id}. This could mean:
1. The static_flaw_info endpoint is not available for this finding type
2. The finding is not a static analysis finding with data path information
3. The endpoint may be deprecated or require different permissions
4. Static flaw info is only available for certain types of vulnerabilities

For general flaw information, use get_findings or get_findings_page instead.
Original error: {error}"""


class VeracodeClient:
    """One signed transport shared by every service call.

    Nothing is cached between calls; each operation issues its own
    sequential requests.
    """

    def __init__(
        self,
        credentials: Credentials,
        *,
        session: requests.Session | None = None,
        retry_policy: RetryPolicy = NO_RETRY,
        compliance_precedence: CompliancePrecedence = CompliancePrecedence.BACKEND,
    ) -> None:
        api_base_url = credentials.api_base_url or DEFAULT_API_BASE_URL
        self.platform_base_url = credentials.platform_base_url or derive_platform_url(api_base_url)
        self.transport = Transport(
            RequestSigner(credentials.api_id, credentials.api_key),
            base_url=api_base_url,
            timeout=credentials.timeout,
            session=session,
            retry_policy=retry_policy,
        )
        self.resolver = ApplicationResolver(self)
        self.paginator = FindingsPaginator(self.transport, self.get_scans)
        self.compliance = ComplianceEvaluator(self.get_application, self.paginator, compliance_precedence)
        log.debug(
            "Client initialized (api_base_url=%s, platform_base_url=%s, timeout=%ss)",
            api_base_url, self.platform_base_url, credentials.timeout,
        )

    @classmethod
    def from_environment(cls, **kwargs: Any) -> "VeracodeClient":
        kwargs.setdefault("compliance_precedence", CompliancePrecedence.from_env())
        return cls(load_credentials(), **kwargs)

    def link(self, relative: str | None) -> str | None:
        return to_platform_url(self.platform_base_url, relative)

    def _get(self, path: str, query: dict[str, Any] | None, context: str) -> dict[str, Any]:
        try:
            return self.transport.get(path, query).data
        except VeracodeError as exc:
            raise with_context(exc, context) from exc

    # --- Applications ---

    def list_applications(self, **filters: Any) -> list[Application]:
        """List applications; ``filters`` are passed as query parameters
        (name, business_unit, policy_compliance, scan_type, tag, team, page, size ...)."""
        data = self._get("appsec/v1/applications", filters or None, "Failed to fetch applications")
        raw_apps = (data.get("_embedded") or {}).get("applications") or []
        apps = [parse_application(a, self.link) for a in raw_apps]
        log.debug("Fetched %d application(s) (filters=%s)", len(apps), sorted(filters))
        return apps

    def search_applications(self, name: str) -> list[Application]:
        try:
            return self.list_applications(name=name)
        except VeracodeError as exc:
            raise with_context(exc, f"Failed to search applications for {name!r}") from exc

    def get_application(self, app_id: str) -> Application:
        data = self._get(f"appsec/v1/applications/{app_id}", None, f"Failed to fetch application {app_id}")
        return parse_application(data, self.link)

    def resolve_application_by_name(self, name: str) -> Resolution:
        return self.resolver.resolve_by_name(name)

    def resolve_application(self, identifier: str) -> Resolution:
        return self.resolver.resolve(identifier)

    # --- Scans and sandboxes ---

    def get_scans(self, app_id: str, scan_type: str | None = None, context: str | None = None) -> list[Scan]:
        data = self._get(
            f"appsec/v1/applications/{app_id}/scans",
            {"scan_type": scan_type, "context": context},
            f"Failed to fetch scans for application {app_id}",
        )
        scans = [parse_scan(s, self.link) for s in (data.get("_embedded") or {}).get("scans") or []]
        log.debug(
            "Fetched %d scan(s) for %s (scan_type=%s, context=%s)",
            len(scans), app_id, scan_type or "all", context or "policy",
        )
        return scans

    def get_sandboxes(self, app_id: str) -> list[Sandbox]:
        data = self._get(
            f"appsec/v1/applications/{app_id}/sandboxes",
            None,
            f"Failed to fetch sandboxes for application {app_id}",
        )
        return [parse_sandbox(s) for s in (data.get("_embedded") or {}).get("sandboxes") or []]

    # --- Findings ---

    def get_findings_page(
        self,
        app_id: str,
        query: FindingsQuery | None = None,
        page: int = 0,
        size: int = MAX_PAGE_SIZE,
    ) -> FindingsPage:
        return self.paginator.get_page(app_id, query, page, size)

    def get_all_findings(
        self,
        app_id: str,
        query: FindingsQuery | None = None,
        max_pages: int = DEFAULT_MAX_PAGES,
        page_size: int = MAX_PAGE_SIZE,
    ) -> AggregatedFindings:
        return self.paginator.get_all(app_id, query, max_pages, page_size)

    def get_static_flaw_info(self, app_id: str, issue_id: int | str, context: str | None = None) -> dict[str, Any]:
        """Data paths and call stacks for one static finding."""
        path = f"appsec/v2/applications/{app_id}/findings/{issue_id}/static_flaw_info"
        try:
            return self.transport.get(path, {"context": context}).data
        except BackendError as exc:
            if exc.kind == "not_found":
                raise BackendError(
                    STATIC_FLAW_NOT_FOUND.format(issue_id=issue_id, error=exc), exc.status, exc.kind
                ) from exc
            raise with_context(exc, f"Failed to fetch static flaw info for issue {issue_id}") from exc
        except VeracodeError as exc:
            raise with_context(exc, f"Failed to fetch static flaw info for issue {issue_id}") from exc

    # --- Policy ---

    def get_policy_compliance(self, app_id: str) -> ComplianceSummary:
        try:
            return self.compliance.evaluate(app_id)
        except VeracodeError as exc:
            raise with_context(exc, f"Failed to fetch policy compliance for application {app_id}") from exc

    def get_policies(self, **filters: Any) -> dict[str, Any]:
        """Raw policy list (category, name, name_exact, page, size, public_policy, vendor_policy ...)."""
        return self._get("appsec/v1/policies", filters or None, "Failed to fetch policies")

    def get_policy(self, policy_guid: str) -> dict[str, Any]:
        return self._get(f"appsec/v1/policies/{policy_guid}", None, f"Failed to fetch policy {policy_guid}")

    def get_policy_versions(self, policy_guid: str, page: int | None = None, size: int | None = None) -> dict[str, Any]:
        return self._get(
            f"appsec/v1/policies/{policy_guid}/versions",
            {"page": page, "size": size},
            f"Failed to fetch versions of policy {policy_guid}",
        )

    def get_policy_version(self, policy_guid: str, version: int) -> dict[str, Any]:
        return self._get(
            f"appsec/v1/policies/{policy_guid}/versions/{version}",
            None,
            f"Failed to fetch version {version} of policy {policy_guid}",
        )

    def get_policy_settings(self) -> dict[str, Any]:
        return self._get("appsec/v1/policy_settings", None, "Failed to fetch policy settings")

    def get_sca_licenses(self, page: int | None = None, size: int | None = None, sort: str | None = None) -> dict[str, Any]:
        return self._get(
            "appsec/v1/policy_licenselist",
            {"page": page, "size": size, "sort": sort},
            "Failed to fetch SCA licenses",
        )
