"""Data models: applications, scans, findings with typed detail payloads."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Union

SCAN_TYPES = ("STATIC", "DYNAMIC", "MANUAL", "SCA")

SEVERITY_LABELS: dict[int, str] = {
    5: "Very High",
    4: "High",
    3: "Medium",
    2: "Low",
    1: "Very Low",
    0: "Informational",
}


def severity_label(severity: int) -> str:
    return SEVERITY_LABELS.get(severity, "Informational")


# --- Applications ---


@dataclass(frozen=True)
class PolicyAssociation:
    guid: str
    name: str
    is_default: bool = False
    policy_compliance_status: str | None = None


@dataclass(frozen=True)
class Scan:
    scan_id: str | None
    scan_type: str
    status: str | None
    policy_compliance_status: str | None = None
    created_date: str | None = None
    modified_date: str | None = None
    scan_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Application:
    guid: str
    id: int | None
    name: str
    business_criticality: str | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    teams: list[str] = field(default_factory=list)
    policies: list[PolicyAssociation] = field(default_factory=list)
    scans: list[Scan] = field(default_factory=list)
    created: str | None = None
    modified: str | None = None
    last_completed_scan_date: str | None = None
    app_profile_url: str | None = None
    results_url: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def primary_policy(self) -> PolicyAssociation | None:
        """The default policy, else the first one, else None."""
        for policy in self.policies:
            if policy.is_default:
                return policy
        return self.policies[0] if self.policies else None

    def summary(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "id": self.guid,
            "legacy_id": self.id,
            "business_criticality": self.business_criticality,
            "teams": list(self.teams),
            "created_date": self.created,
            "modified_date": self.modified,
            "app_profile_url": self.app_profile_url,
            "results_url": self.results_url,
        }

    def to_dict(self) -> dict[str, Any]:
        out = self.summary()
        out.update({
            "description": self.description,
            "tags": list(self.tags),
            "last_completed_scan_date": self.last_completed_scan_date,
            "policies": [asdict(p) for p in self.policies],
            "scans": [s.to_dict() for s in self.scans],
        })
        return out


@dataclass(frozen=True)
class Sandbox:
    guid: str
    id: int | None
    name: str
    created: str | None = None
    modified: str | None = None
    auto_recreate: bool | None = None
    owner: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# --- Finding payloads ---


@dataclass(frozen=True)
class StaticDetails:
    file_name: str | None = None
    file_path: str | None = None
    file_line_number: int | None = None
    module: str | None = None
    procedure: str | None = None
    relative_location: int | None = None
    attack_vector: str | None = None
    finding_category: str | None = None
    exploitability: int | None = None
    cvss: float | None = None


@dataclass(frozen=True)
class DynamicDetails:
    url: str | None = None
    hostname: str | None = None
    port: str | None = None
    path: str | None = None
    vulnerable_parameter: str | None = None
    plugin: str | None = None
    attack_vector: str | None = None
    discovered_by_vsa: bool | None = None
    finding_category: str | None = None
    cvss: float | None = None


@dataclass(frozen=True)
class ManualDetails:
    location: str | None = None
    module: str | None = None
    exploit_desc: str | None = None
    exploit_difficulty: str | None = None
    input_vector: str | None = None
    remediation_desc: str | None = None
    severity_desc: str | None = None
    capec_id: str | None = None
    cvss: float | None = None


@dataclass(frozen=True)
class Exploitability:
    exploit_observed: bool | None = None
    epss_score: float | None = None
    epss_percentile: float | None = None
    epss_score_date: str | None = None
    epss_status: str | None = None
    exploit_source: str | None = None


@dataclass(frozen=True)
class License:
    license_id: str
    risk_rating: str | None = None

    @property
    def risk(self) -> int:
        """Numeric risk rating; 0 when the backend sent nothing usable."""
        try:
            return int(self.risk_rating or 0)
        except ValueError:
            return 0


@dataclass(frozen=True)
class Cve:
    name: str | None = None
    cvss: float | None = None
    severity: str | None = None
    vector: str | None = None
    href: str | None = None
    cvss3_score: float | None = None
    cvss3_severity: str | None = None
    cvss3_vector: str | None = None
    exploitability: Exploitability | None = None


@dataclass(frozen=True)
class ScaDetails:
    component_id: str | None = None
    component_filename: str | None = None
    version: str | None = None
    language: str | None = None
    product_id: str | None = None
    component_paths: tuple[str, ...] = ()
    metadata: str | None = None
    cve: Cve | None = None
    licenses: tuple[License, ...] = ()

    @property
    def exploit_observed(self) -> bool:
        return bool(self.cve and self.cve.exploitability and self.cve.exploitability.exploit_observed)


@dataclass(frozen=True)
class EmptyDetails:
    """Payload for scan types this client does not know about."""


FindingDetails = Union[StaticDetails, DynamicDetails, ManualDetails, ScaDetails, EmptyDetails]


# --- Findings ---


@dataclass(frozen=True)
class Cwe:
    id: int
    name: str | None = None


@dataclass(frozen=True)
class FindingStatus:
    status: str | None = None
    resolution: str | None = None
    resolution_status: str | None = None
    new: bool = False
    first_found_date: str | None = None
    last_seen_date: str | None = None
    mitigation_review_status: str | None = None


@dataclass(frozen=True)
class Finding:
    scan_type: str
    severity: int
    violates_policy: bool
    status: FindingStatus
    details: FindingDetails
    issue_id: int | None = None
    description: str | None = None
    count: int | None = None
    context_type: str | None = None
    context_guid: str | None = None
    build_id: int | None = None
    cwe: Cwe | None = None
    grace_period_expires_date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "issue_id": self.issue_id,
            "scan_type": self.scan_type,
            "severity": self.severity,
            "severity_label": severity_label(self.severity),
            "violates_policy": self.violates_policy,
            "description": self.description,
            "count": self.count,
            "context_type": self.context_type,
            "context_guid": self.context_guid,
            "build_id": self.build_id,
            "cwe": asdict(self.cwe) if self.cwe else None,
            "grace_period_expires_date": self.grace_period_expires_date,
            "finding_status": asdict(self.status),
            "finding_details": asdict(self.details),
        }


# --- Paging ---


@dataclass(frozen=True)
class PageCursor:
    number: int
    size: int
    total_pages: int
    total_elements: int

    @property
    def has_next(self) -> bool:
        return self.number < self.total_pages - 1

    @property
    def has_previous(self) -> bool:
        return self.number > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_page": self.number,
            "page_size": self.size,
            "total_pages": self.total_pages,
            "total_elements": self.total_elements,
            "has_next": self.has_next,
            "has_previous": self.has_previous,
        }


@dataclass(frozen=True)
class FindingsPage:
    findings: list[Finding]
    cursor: PageCursor
    # False when the existence check found no matching scans
    available: bool = True


@dataclass(frozen=True)
class AggregatedFindings:
    findings: list[Finding]
    pages_retrieved: int
    truncated: bool
    total_pages: int
    total_elements: int
    available: bool = True


# --- Compliance ---


@dataclass(frozen=True)
class ComplianceSummary:
    policy_compliance_status: str  # PASS | FAIL | CONDITIONAL_PASS
    status_source: str  # backend | derived
    backend_status: str | None
    policy_name: str | None
    total_findings: int
    policy_violations: int
    findings_by_severity: dict[str, int]
    violations_by_severity: dict[str, int]
    has_critical_violations: bool
    has_high_violations: bool
    total_open_violations: int
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy_compliance_status": self.policy_compliance_status,
            "status_source": self.status_source,
            "backend_status": self.backend_status,
            "policy_name": self.policy_name,
            "total_findings": self.total_findings,
            "policy_violations": self.policy_violations,
            "findings_by_severity": dict(self.findings_by_severity),
            "violations_by_severity": dict(self.violations_by_severity),
            "summary": {
                "has_critical_violations": self.has_critical_violations,
                "has_high_violations": self.has_high_violations,
                "total_open_violations": self.total_open_violations,
            },
            "data_truncated": self.truncated,
        }
