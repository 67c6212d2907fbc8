"""MCP tool handlers: applications, scans, findings, SCA, policy compliance.

Every handler takes the tool arguments and the client and returns an
``ok``/``err`` envelope. Client exceptions are mapped onto error codes by
``err_from_exception``; nothing is retried here.
"""

from __future__ import annotations

import functools
import platform
import time
from collections import Counter
from typing import Any, Callable, Iterable

from veracode_mcp.client import VeracodeClient
from veracode_mcp.config import DEFAULT_MAX_PAGES, MAX_PAGE_SIZE
from veracode_mcp.errors import VeracodeError, err, err_from_exception, ok
from veracode_mcp.findings import FindingsQuery
from veracode_mcp.log import get_logger
from veracode_mcp.models import SCAN_TYPES, Finding, ScaDetails, severity_label
from veracode_mcp.resolver import Resolution
from veracode_mcp.version import SERVER_NAME, __version__

log = get_logger(__name__)

Handler = Callable[[dict[str, Any], VeracodeClient], dict[str, Any]]

SCA_DEPENDENCY_MODES = ("UNKNOWN", "DIRECT", "TRANSITIVE", "BOTH")
SCA_SCAN_MODES = ("UPLOAD", "AGENT", "BOTH")


def tool_handler(fn: Handler) -> Handler:
    """Turn client and validation exceptions into error envelopes."""

    @functools.wraps(fn)
    def wrapper(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
        try:
            return fn(args or {}, client)
        except (VeracodeError, ValueError) as exc:
            log.info("Tool %s failed: %s", fn.__name__, exc)
            return err_from_exception(exc, {"tool": fn.__name__.removeprefix("handle_")})

    return wrapper


# --- Argument helpers ---


def _require_str(args: dict[str, Any], key: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{key}' is required and must be a non-empty string.")
    return value.strip()


def _opt_str(args: dict[str, Any], key: str) -> str | None:
    value = args.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string.")
    return value.strip() or None


def _opt_number(args: dict[str, Any], key: str, lo: float, hi: float, integer: bool = True) -> Any:
    value = args.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' must be a number.")
    if integer and int(value) != value:
        raise ValueError(f"'{key}' must be an integer.")
    if not lo <= value <= hi:
        raise ValueError(f"'{key}' must be between {lo:g} and {hi:g}.")
    return int(value) if integer else float(value)


def _opt_bool(args: dict[str, Any], key: str) -> bool | None:
    value = args.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' must be a boolean.")
    return value


def _opt_enum(args: dict[str, Any], key: str, allowed: Iterable[str]) -> str | None:
    value = _opt_str(args, key)
    if value is None:
        return None
    value = value.upper()
    allowed = tuple(allowed)
    if value not in allowed:
        raise ValueError(f"'{key}' must be one of: {', '.join(allowed)}.")
    return value


def _opt_int_list(args: dict[str, Any], key: str) -> tuple[int, ...]:
    value = args.get(key)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, int) and not isinstance(v, bool) for v in value):
        raise ValueError(f"'{key}' must be a list of integers.")
    return tuple(value)


def _findings_query(args: dict[str, Any], **overrides: Any) -> FindingsQuery:
    fields: dict[str, Any] = {
        "scan_type": _opt_enum(args, "scan_type", SCAN_TYPES),
        "severity": _opt_number(args, "severity", 0, 5),
        "severity_gte": _opt_number(args, "severity_gte", 0, 5),
        "cvss": _opt_number(args, "cvss", 0, 10, integer=False),
        "cvss_gte": _opt_number(args, "cvss_gte", 0, 10, integer=False),
        "cwe": _opt_int_list(args, "cwe"),
        "cve": _opt_str(args, "cve"),
        "context": _opt_str(args, "sandbox_id"),
        "policy_violation": _opt_bool(args, "policy_violations_only"),
        "new_findings_only": _opt_bool(args, "new_findings_only"),
        "include_annotations": _opt_bool(args, "include_annotations"),
        "include_expiration_date": _opt_bool(args, "include_expiration_date"),
        "sca_dependency_mode": _opt_enum(args, "sca_dependency_mode", SCA_DEPENDENCY_MODES),
        "sca_scan_mode": _opt_enum(args, "sca_scan_mode", SCA_SCAN_MODES),
    }
    fields.update(overrides)
    return FindingsQuery(**fields)


# --- Rendering helpers ---


def severity_breakdown(findings: Iterable[Finding]) -> dict[str, int]:
    return dict(Counter(severity_label(f.severity) for f in findings))


def scan_type_breakdown(findings: Iterable[Finding]) -> dict[str, int]:
    return dict(Counter(f.scan_type for f in findings))


def status_breakdown(findings: Iterable[Finding]) -> dict[str, int]:
    return dict(Counter(f.status.status or "Unknown" for f in findings))


def _application_block(resolution: Resolution) -> dict[str, Any]:
    app = resolution.application
    return {
        "name": app.name,
        "id": app.guid,
        "business_criticality": app.business_criticality,
        "app_profile_url": app.app_profile_url,
        "results_url": app.results_url,
        "resolution": resolution.to_dict(),
    }


# --- Application tools ---


@tool_handler
def handle_list_applications(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    """List applications, optionally filtered server-side."""
    filters = {
        "name": _opt_str(args, "name"),
        "business_unit": _opt_str(args, "business_unit"),
        "tag": _opt_str(args, "tag"),
        "team": _opt_str(args, "team"),
        "page": _opt_number(args, "page", 0, 1_000_000),
        "size": _opt_number(args, "size", 1, MAX_PAGE_SIZE),
    }
    apps = client.list_applications(**{k: v for k, v in filters.items() if v is not None})
    return ok({"count": len(apps), "applications": [a.summary() for a in apps]})


@tool_handler
def handle_search_applications(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    """Partial-name search; does not pick a winner."""
    name = _require_str(args, "name")
    apps = client.search_applications(name)
    return ok({"query": name, "count": len(apps), "applications": [a.summary() for a in apps]})


@tool_handler
def handle_get_application_details(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    resolution = client.resolve_application(_require_str(args, "application"))
    app = resolution.application
    if resolution.resolved_from_name:
        # search results carry a reduced profile
        app = client.get_application(app.guid)
    return ok({"application": app.to_dict(), "resolution": resolution.to_dict()})


# --- Scan tools ---


@tool_handler
def handle_get_scans(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    resolution = client.resolve_application(_require_str(args, "application"))
    scan_type = _opt_enum(args, "scan_type", SCAN_TYPES)
    sandbox_id = _opt_str(args, "sandbox_id")
    scans = client.get_scans(resolution.application.guid, scan_type, sandbox_id)
    return ok({
        "application": _application_block(resolution),
        "context": sandbox_id or "policy",
        "count": len(scans),
        "scan_types": sorted({s.scan_type for s in scans}),
        "scans": [s.to_dict() for s in scans],
    })


@tool_handler
def handle_get_sandboxes(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    resolution = client.resolve_application(_require_str(args, "application"))
    sandboxes = client.get_sandboxes(resolution.application.guid)
    return ok({
        "application": _application_block(resolution),
        "count": len(sandboxes),
        "sandboxes": [s.to_dict() for s in sandboxes],
    })


@tool_handler
def handle_get_sandbox_summary(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    """Sandbox names, owners and timestamps for one application."""
    resolution = client.resolve_application(_require_str(args, "application"))
    app = resolution.application
    sandboxes = client.get_sandboxes(app.guid)
    summary: dict[str, Any] = {
        "total_count": len(sandboxes),
        "sandboxes": [
            {
                "name": s.name,
                "guid": s.guid,
                "owner": s.owner,
                "auto_recreate": s.auto_recreate,
                "created": s.created,
                "modified": s.modified,
            }
            for s in sandboxes
        ],
    }
    if not sandboxes:
        summary["message"] = "No sandboxes found for this application"
    result: dict[str, Any] = {
        "application_id": app.guid,
        "application_name": app.name,
        "resolution": resolution.to_dict(),
        "sandbox_summary": summary,
    }
    if resolution.resolved_from_name:
        result["application_details"] = {
            "business_criticality": app.business_criticality,
            "description": app.description,
        }
    return ok(result)


# --- Findings tools ---


@tool_handler
def handle_get_findings(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    """All findings across pages (bounded by max_pages), or the first page only."""
    resolution = client.resolve_application(_require_str(args, "application"))
    query = _findings_query(args)
    page_size = _opt_number(args, "page_size", 1, MAX_PAGE_SIZE) or MAX_PAGE_SIZE
    max_pages = _opt_number(args, "max_pages", 1, 100) or DEFAULT_MAX_PAGES
    single_page = bool(_opt_bool(args, "single_page"))
    app_id = resolution.application.guid

    if single_page:
        page = client.get_findings_page(app_id, query, 0, page_size)
        findings = page.findings
        pages_retrieved = 1 if page.available else 0
        total_pages = page.cursor.total_pages
        total_elements = page.cursor.total_elements
        truncated = page.cursor.has_next
        available = page.available
    else:
        result = client.get_all_findings(app_id, query, max_pages, page_size)
        findings = result.findings
        pages_retrieved = result.pages_retrieved
        total_pages = result.total_pages
        total_elements = result.total_elements
        truncated = result.truncated
        available = result.available

    return ok({
        "application": _application_block(resolution),
        "findings_summary": {
            "total_findings_retrieved": len(findings),
            "total_findings_available": total_elements,
            "pages_retrieved": pages_retrieved,
            "total_pages_available": total_pages,
            "data_truncated": truncated,
            "scans_available": available,
            "policy_violations": sum(1 for f in findings if f.violates_policy),
            "severity_breakdown": severity_breakdown(findings),
            "scan_type_breakdown": scan_type_breakdown(findings),
            "status_breakdown": status_breakdown(findings),
        },
        "filters_applied": query.to_params(),
        "pagination_info": {
            "single_page_mode": single_page,
            "page_size": page_size,
            "max_pages_limit": max_pages,
            "retrieval_complete": not truncated,
        },
        "findings": [f.to_dict() for f in findings],
        "metadata": {
            "retrieval_timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "data_completeness": "truncated" if truncated else "complete",
        },
    })


@tool_handler
def handle_get_findings_page(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    """One page of findings with navigation hints."""
    resolution = client.resolve_application(_require_str(args, "application"))
    page_number = _opt_number(args, "page", 0, 1_000_000) or 0
    page_size = _opt_number(args, "page_size", 1, 10_000) or 100
    query = _findings_query(args)
    page = client.get_findings_page(resolution.application.guid, query, page_number, page_size)
    cursor = page.cursor
    return ok({
        "application": _application_block(resolution),
        "pagination": cursor.to_dict(),
        "scans_available": page.available,
        "findings": [f.to_dict() for f in page.findings],
        "navigation": {
            "next_page": cursor.number + 1 if cursor.has_next else None,
            "previous_page": cursor.number - 1 if cursor.has_previous else None,
            "last_page": max(cursor.total_pages - 1, 0),
        },
    })


@tool_handler
def handle_get_static_flaw_info(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    resolution = client.resolve_application(_require_str(args, "application"))
    issue_id = _opt_number(args, "issue_id", 1, 2**63)
    if issue_id is None:
        raise ValueError("'issue_id' is required.")
    info = client.get_static_flaw_info(resolution.application.guid, issue_id, _opt_str(args, "sandbox_id"))
    return ok({"application": _application_block(resolution), "issue_id": issue_id, "static_flaw_info": info})


# --- SCA tools ---


def sca_analysis(findings: list[Finding]) -> dict[str, Any]:
    """Exploitability, licensing and top-CVE view over SCA findings."""
    sca = [(f, f.details) for f in findings if isinstance(f.details, ScaDetails)]
    top = sorted(
        (
            {
                "cve": d.cve.name,
                "cvss": d.cve.cvss,
                "severity": d.cve.severity,
                "component": d.component_filename,
                "version": d.version,
                "exploitable": d.exploit_observed,
                "epss_score": d.cve.exploitability.epss_score if d.cve.exploitability else None,
            }
            for _, d in sca
            if d.cve and d.cve.cvss is not None
        ),
        key=lambda v: v["cvss"],
        reverse=True,
    )[:10]
    return {
        "total_findings": len(sca),
        "exploitable_findings": sum(1 for _, d in sca if d.exploit_observed),
        "high_risk_components": sum(1 for f, _ in sca if f.severity >= 4),
        "vulnerable_components": len({d.component_id for _, d in sca if d.component_id}),
        "licensing_issues": sum(1 for _, d in sca if any(lic.risk > 2 for lic in d.licenses)),
        "direct_dependencies": sum(1 for _, d in sca if d.metadata and "DIRECT" in d.metadata),
        "transitive_dependencies": sum(1 for _, d in sca if d.metadata and "TRANSITIVE" in d.metadata),
        "severity_breakdown": severity_breakdown(f for f, _ in sca),
        "top_vulnerabilities": top,
    }


@tool_handler
def handle_get_sca_results(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    resolution = client.resolve_application(_require_str(args, "application"))
    only_exploitable = bool(_opt_bool(args, "only_exploitable"))
    query = FindingsQuery(
        scan_type="SCA",
        severity_gte=_opt_number(args, "severity_gte", 0, 5),
        cvss_gte=_opt_number(args, "cvss_gte", 0, 10, integer=False),
        policy_violation=_opt_bool(args, "only_policy_violations"),
        new_findings_only=_opt_bool(args, "only_new_findings"),
        context=_opt_str(args, "sandbox_id"),
    )
    max_pages = _opt_number(args, "max_pages", 1, 100) or DEFAULT_MAX_PAGES
    result = client.get_all_findings(resolution.application.guid, query, max_pages, MAX_PAGE_SIZE)

    findings = result.findings
    if only_exploitable:
        findings = [f for f in findings if isinstance(f.details, ScaDetails) and f.details.exploit_observed]

    return ok({
        "application": _application_block(resolution),
        "scans_available": result.available,
        "analysis": sca_analysis(findings),
        "detailed_findings": [f.to_dict() for f in findings],
        "filters_applied": {**query.to_params(), "only_exploitable": only_exploitable},
        "metadata": {
            "pages_retrieved": result.pages_retrieved,
            "data_truncated": result.truncated,
            "total_findings_available": result.total_elements,
        },
    })


# --- Policy tools ---


@tool_handler
def handle_get_policy_compliance(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    resolution = client.resolve_application(_require_str(args, "application"))
    summary = client.get_policy_compliance(resolution.application.guid)
    return ok({"application": _application_block(resolution), "compliance": summary.to_dict()})


@tool_handler
def handle_get_policies(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    policy_guid = _opt_str(args, "policy_guid")
    if policy_guid:
        return ok({"policy": client.get_policy(policy_guid)})
    filters = {
        "name": _opt_str(args, "name"),
        "category": _opt_enum(args, "category", ("APPLICATION", "COMPONENT")),
        "page": _opt_number(args, "page", 0, 1_000_000),
        "size": _opt_number(args, "size", 1, MAX_PAGE_SIZE),
    }
    data = client.get_policies(**{k: v for k, v in filters.items() if v is not None})
    policies = (data.get("_embedded") or {}).get("policy_versions") or []
    return ok({"count": len(policies), "policies": policies, "page": data.get("page")})


@tool_handler
def handle_get_policy_versions(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    """Version history of a policy, or one version when ``version`` is given."""
    policy_guid = _require_str(args, "policy_guid")
    version = _opt_number(args, "version", 1, 1_000_000)
    if version is not None:
        return ok({"policy_guid": policy_guid, "version": version, "policy": client.get_policy_version(policy_guid, version)})
    data = client.get_policy_versions(
        policy_guid,
        page=_opt_number(args, "page", 0, 1_000_000),
        size=_opt_number(args, "size", 1, MAX_PAGE_SIZE),
    )
    versions = (data.get("_embedded") or {}).get("policy_versions") or []
    return ok({"policy_guid": policy_guid, "count": len(versions), "versions": versions, "page": data.get("page")})


@tool_handler
def handle_get_policy_settings(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    data = client.get_policy_settings()
    settings = (data.get("_embedded") or {}).get("policy_settings") or []
    return ok({"count": len(settings), "policy_settings": settings})


@tool_handler
def handle_get_sca_licenses(args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    """Licenses known to SCA policy evaluation, with their risk ratings."""
    data = client.get_sca_licenses(
        page=_opt_number(args, "page", 0, 1_000_000),
        size=_opt_number(args, "size", 1, MAX_PAGE_SIZE),
        sort=_opt_str(args, "sort"),
    )
    licenses = (data.get("_embedded") or {}).get("sca_license_summaries") or []
    return ok({"count": len(licenses), "licenses": licenses, "page": data.get("page")})


def handle_get_server_info(_args: dict[str, Any], client: VeracodeClient) -> dict[str, Any]:
    """Server metadata for debugging deployments."""
    return ok({
        "name": SERVER_NAME,
        "version": __version__,
        "python": platform.python_version(),
        "apiBaseUrl": client.transport.base_url,
        "platformBaseUrl": client.platform_base_url,
        "timeoutSeconds": client.transport.timeout,
        "maxPageSize": MAX_PAGE_SIZE,
        "defaultMaxPages": DEFAULT_MAX_PAGES,
        "retryAttempts": client.transport.retry_policy.max_attempts,
        "compliancePrecedence": client.compliance.precedence.value,
        "capabilities": {"readOnly": True, "scanTypes": list(SCAN_TYPES)},
    })


def unknown_tool(name: str) -> dict[str, Any]:
    return err("E_INVALID_REQUEST", f"Unknown tool: {name}", {"tool": name})
