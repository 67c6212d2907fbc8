"""Policy compliance summary derived from policy-violating findings."""

from __future__ import annotations

import enum
import os
from typing import Callable, Iterable

from veracode_mcp.findings import FindingsPaginator, FindingsQuery
from veracode_mcp.log import get_logger
from veracode_mcp.models import Application, ComplianceSummary, Finding

log = get_logger(__name__)

SEVERITY_BUCKETS = ("5", "4", "3", "2", "1")  # 0 (informational) is not bucketed

# Backend policy_compliance_status -> summary status
BACKEND_STATUS_MAP: dict[str, str] = {
    "PASSED": "PASS",
    "DID_NOT_PASS": "FAIL",
    "CONDITIONAL_PASS": "CONDITIONAL_PASS",
}


class CompliancePrecedence(str, enum.Enum):
    """Which status wins when the backend declares one.

    BACKEND: use the policy's declared status when it maps to
    PASS/FAIL/CONDITIONAL_PASS, else fall back to the violation count.
    DERIVED: always use the violation count.
    """

    BACKEND = "backend"
    DERIVED = "derived"

    @classmethod
    def from_env(cls) -> "CompliancePrecedence":
        raw = os.environ.get("VERACODE_COMPLIANCE_PRECEDENCE", "").strip().lower()
        if not raw:
            return cls.BACKEND
        try:
            return cls(raw)
        except ValueError as exc:
            valid = ", ".join(p.value for p in cls)
            raise RuntimeError(
                f"VERACODE_COMPLIANCE_PRECEDENCE must be one of: {valid} (got {raw!r})"
            ) from exc


def severity_histogram(findings: Iterable[Finding]) -> dict[str, int]:
    counts = {bucket: 0 for bucket in SEVERITY_BUCKETS}
    for finding in findings:
        key = str(finding.severity)
        if key in counts:
            counts[key] += 1
    return counts


def derive_status(violations: int) -> str:
    return "PASS" if violations == 0 else "FAIL"


def summarize(
    application: Application,
    findings: list[Finding],
    precedence: CompliancePrecedence = CompliancePrecedence.BACKEND,
    truncated: bool = False,
) -> ComplianceSummary:
    """Build the summary from an application's policies and its findings."""
    violating = [f for f in findings if f.violates_policy]
    by_severity = severity_histogram(findings)
    violations_by_severity = severity_histogram(violating)

    policy = application.primary_policy
    backend_status = policy.policy_compliance_status if policy else None
    mapped = BACKEND_STATUS_MAP.get(backend_status or "")

    if precedence is CompliancePrecedence.BACKEND and mapped:
        status, source = mapped, "backend"
    else:
        status, source = derive_status(len(violating)), "derived"

    if mapped and mapped != derive_status(len(violating)):
        log.info(
            "Policy status for %s is %s but %d violation(s) were found; reporting %s (%s)",
            application.guid, backend_status, len(violating), status, source,
        )

    return ComplianceSummary(
        policy_compliance_status=status,
        status_source=source,
        backend_status=backend_status,
        policy_name=policy.name if policy else None,
        total_findings=len(findings),
        policy_violations=len(violating),
        findings_by_severity=by_severity,
        violations_by_severity=violations_by_severity,
        has_critical_violations=violations_by_severity["5"] > 0,
        has_high_violations=violations_by_severity["4"] > 0,
        total_open_violations=len(violating),
        truncated=truncated,
    )


class ComplianceEvaluator:
    def __init__(
        self,
        get_application: Callable[[str], Application],
        paginator: FindingsPaginator,
        precedence: CompliancePrecedence = CompliancePrecedence.BACKEND,
    ) -> None:
        self.get_application = get_application
        self.paginator = paginator
        self.precedence = precedence

    def evaluate(self, app_id: str) -> ComplianceSummary:
        application = self.get_application(app_id)
        result = self.paginator.get_all(app_id, FindingsQuery(policy_violation=True))
        if result.truncated:
            log.warning(
                "Compliance for %s computed from a truncated finding set (%d pages)",
                app_id, result.pages_retrieved,
            )
        return summarize(application, result.findings, self.precedence, truncated=result.truncated)
