"""Normalize raw API records into typed models.

Findings carry a ``finding_details`` object whose shape depends on
``scan_type``. Each known type has one builder that reads only the fields
valid for that type; unknown types get EmptyDetails and keep the common
envelope (severity, status, policy flag).
"""

from __future__ import annotations

from typing import Any, Callable, Mapping

from veracode_mcp.models import (
    Application,
    Cve,
    Cwe,
    DynamicDetails,
    EmptyDetails,
    Exploitability,
    Finding,
    FindingDetails,
    FindingStatus,
    License,
    ManualDetails,
    PolicyAssociation,
    Sandbox,
    ScaDetails,
    Scan,
    StaticDetails,
)


def _int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


# --- Per scan type builders ---


def _static_details(d: Mapping[str, Any]) -> StaticDetails:
    return StaticDetails(
        file_name=_str(d.get("file_name")),
        file_path=_str(d.get("file_path")),
        file_line_number=_int(d.get("file_line_number")),
        module=_str(d.get("module")),
        procedure=_str(d.get("procedure")),
        relative_location=_int(d.get("relative_location")),
        attack_vector=_str(d.get("attack_vector")),
        finding_category=_category(d.get("finding_category")),
        exploitability=_int(d.get("exploitability")),
        cvss=_float(d.get("cvss")),
    )


def _dynamic_details(d: Mapping[str, Any]) -> DynamicDetails:
    return DynamicDetails(
        # the API spells this one in capitals
        url=_str(d.get("URL", d.get("url"))),
        hostname=_str(d.get("hostname")),
        port=_str(d.get("port")),
        path=_str(d.get("path")),
        vulnerable_parameter=_str(d.get("vulnerable_parameter")),
        plugin=_str(d.get("plugin")),
        attack_vector=_str(d.get("attack_vector")),
        discovered_by_vsa=_bool(d.get("discovered_by_vsa")),
        finding_category=_category(d.get("finding_category")),
        cvss=_float(d.get("cvss")),
    )


def _manual_details(d: Mapping[str, Any]) -> ManualDetails:
    return ManualDetails(
        location=_str(d.get("location")),
        module=_str(d.get("module")),
        exploit_desc=_str(d.get("exploit_desc")),
        exploit_difficulty=_str(d.get("exploit_difficulty")),
        input_vector=_str(d.get("input_vector")),
        remediation_desc=_str(d.get("remediation_desc")),
        severity_desc=_str(d.get("severity_desc")),
        capec_id=_str(d.get("capec_id")),
        cvss=_float(d.get("cvss")),
    )


def _exploitability(raw: Any) -> Exploitability | None:
    if not isinstance(raw, Mapping):
        return None
    return Exploitability(
        exploit_observed=_bool(raw.get("exploit_observed")),
        epss_score=_float(raw.get("epss_score")),
        epss_percentile=_float(raw.get("epss_percentile")),
        epss_score_date=_str(raw.get("epss_score_date")),
        epss_status=_str(raw.get("epss_status")),
        exploit_source=_str(raw.get("exploit_source")),
    )


def _cve(raw: Any) -> Cve | None:
    if not isinstance(raw, Mapping):
        return None
    cvss3 = _mapping(raw.get("cvss3"))
    return Cve(
        name=_str(raw.get("name")),
        cvss=_float(raw.get("cvss")),
        severity=_str(raw.get("severity")),
        vector=_str(raw.get("vector")),
        href=_str(raw.get("href")),
        cvss3_score=_float(cvss3.get("score")),
        cvss3_severity=_str(cvss3.get("severity")),
        cvss3_vector=_str(cvss3.get("vector")),
        exploitability=_exploitability(raw.get("exploitability")),
    )


def _licenses(raw: Any) -> tuple[License, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(
        License(license_id=str(item.get("license_id")), risk_rating=_str(item.get("risk_rating")))
        for item in raw
        if isinstance(item, Mapping) and item.get("license_id") is not None
    )


def _component_paths(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    paths: list[str] = []
    for item in raw:
        if isinstance(item, Mapping) and item.get("path"):
            paths.append(str(item["path"]))
        elif isinstance(item, str):
            paths.append(item)
    return tuple(paths)


def _sca_details(d: Mapping[str, Any]) -> ScaDetails:
    return ScaDetails(
        component_id=_str(d.get("component_id")),
        component_filename=_str(d.get("component_filename")),
        version=_str(d.get("version")),
        language=_str(d.get("language")),
        product_id=_str(d.get("product_id")),
        component_paths=_component_paths(d.get("component_path")),
        metadata=_str(d.get("metadata")),
        cve=_cve(d.get("cve")),
        licenses=_licenses(d.get("licenses")),
    )


def _category(raw: Any) -> str | None:
    # finding_category is either a plain string or {"id": .., "name": ..}
    if isinstance(raw, Mapping):
        return _str(raw.get("name", raw.get("id")))
    return _str(raw)


DETAIL_BUILDERS: dict[str, Callable[[Mapping[str, Any]], FindingDetails]] = {
    "STATIC": _static_details,
    "DYNAMIC": _dynamic_details,
    "MANUAL": _manual_details,
    "SCA": _sca_details,
}


def build_details(scan_type: str, raw_details: Mapping[str, Any]) -> FindingDetails:
    """Build the payload for ``scan_type``; EmptyDetails for unknown types."""
    builder = DETAIL_BUILDERS.get(scan_type)
    if builder is None:
        return EmptyDetails()
    return builder(raw_details)


def _cwe(raw: Any) -> Cwe | None:
    if isinstance(raw, Mapping):
        cwe_id = _int(raw.get("id"))
        if cwe_id is None:
            return None
        return Cwe(id=cwe_id, name=_str(raw.get("name")))
    cwe_id = _int(raw)
    return Cwe(id=cwe_id) if cwe_id is not None else None


def _status(raw: Any) -> FindingStatus:
    s = _mapping(raw)
    return FindingStatus(
        status=_str(s.get("status")),
        resolution=_str(s.get("resolution")),
        resolution_status=_str(s.get("resolution_status")),
        new=bool(_bool(s.get("new"))),
        first_found_date=_str(s.get("first_found_date")),
        last_seen_date=_str(s.get("last_seen_date")),
        mitigation_review_status=_str(s.get("mitigation_review_status")),
    )


def normalize_finding(raw: Mapping[str, Any]) -> Finding:
    """Project one raw finding record onto the canonical Finding."""
    scan_type = str(raw.get("scan_type") or "UNKNOWN").upper()
    details_raw = _mapping(raw.get("finding_details"))
    severity = _int(details_raw.get("severity"))
    if severity is None:
        severity = _int(raw.get("severity")) or 0

    return Finding(
        scan_type=scan_type,
        severity=max(0, min(5, severity)),
        violates_policy=bool(_bool(raw.get("violates_policy"))),
        status=_status(raw.get("finding_status")),
        details=build_details(scan_type, details_raw),
        issue_id=_int(raw.get("issue_id")),
        description=_str(raw.get("description")),
        count=_int(raw.get("count")),
        context_type=_str(raw.get("context_type")),
        context_guid=_str(raw.get("context_guid")),
        build_id=_int(raw.get("build_id")),
        cwe=_cwe(details_raw.get("cwe")),
        grace_period_expires_date=_str(raw.get("grace_period_expires_date")),
    )


# --- Applications, scans, sandboxes ---


def parse_scan(raw: Mapping[str, Any], link: Callable[[str | None], str | None]) -> Scan:
    return Scan(
        scan_id=_str(raw.get("scan_id")),
        scan_type=str(raw.get("scan_type") or "UNKNOWN").upper(),
        status=_str(raw.get("status")),
        policy_compliance_status=_str(raw.get("policy_compliance_status")),
        created_date=_str(raw.get("created_date")),
        modified_date=_str(raw.get("modified_date")),
        scan_url=link(raw.get("scan_url")),
    )


def parse_application(raw: Mapping[str, Any], link: Callable[[str | None], str | None]) -> Application:
    """Build an Application; ``link`` turns relative platform URLs absolute."""
    profile = _mapping(raw.get("profile"))
    tags = profile.get("tags") or ""
    policies = [
        PolicyAssociation(
            guid=str(p.get("guid", "")),
            name=str(p.get("name", "")),
            is_default=bool(p.get("is_default")),
            policy_compliance_status=_str(p.get("policy_compliance_status")),
        )
        for p in profile.get("policies") or []
        if isinstance(p, Mapping)
    ]
    return Application(
        guid=str(raw.get("guid", "")),
        id=_int(raw.get("id")),
        name=str(profile.get("name", "")),
        business_criticality=_str(profile.get("business_criticality")),
        description=_str(profile.get("description")),
        tags=[t.strip() for t in str(tags).split(",") if t.strip()],
        teams=[str(t.get("team_name")) for t in profile.get("teams") or [] if isinstance(t, Mapping)],
        policies=policies,
        scans=[parse_scan(s, link) for s in raw.get("scans") or [] if isinstance(s, Mapping)],
        created=_str(raw.get("created")),
        modified=_str(raw.get("modified")),
        last_completed_scan_date=_str(raw.get("last_completed_scan_date")),
        app_profile_url=link(raw.get("app_profile_url")),
        results_url=link(raw.get("results_url")),
        raw=dict(raw),
    )


def parse_sandbox(raw: Mapping[str, Any]) -> Sandbox:
    return Sandbox(
        guid=str(raw.get("guid", "")),
        id=_int(raw.get("id")),
        name=str(raw.get("name", "")),
        created=_str(raw.get("created")),
        modified=_str(raw.get("modified")),
        auto_recreate=_bool(raw.get("auto_recreate")),
        owner=_str(raw.get("owner_username")),
    )
