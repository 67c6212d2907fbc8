"""Tests for tool handlers: argument validation, envelopes, error mapping."""

from __future__ import annotations

from fakes import (
    APP_GUID,
    APPS_PATH,
    OTHER_GUID,
    FakeResponse,
    app_path,
    apps_envelope,
    findings_envelope,
    findings_path,
    paged_findings,
    raw_app,
    raw_sca,
    raw_static,
    scans_envelope,
    scans_path,
)
from veracode_mcp.normalize import normalize_finding
from veracode_mcp.tools import (
    handle_get_application_details,
    handle_get_findings,
    handle_get_findings_page,
    handle_get_policies,
    handle_get_policy_compliance,
    handle_get_policy_settings,
    handle_get_policy_versions,
    handle_get_sandbox_summary,
    handle_get_sandboxes,
    handle_get_sca_licenses,
    handle_get_sca_results,
    handle_get_scans,
    handle_get_server_info,
    handle_get_static_flaw_info,
    handle_list_applications,
    handle_search_applications,
    sca_analysis,
)


def _with_app(session):
    session.add(app_path(), FakeResponse(200, raw_app("MyApp")))


def test_missing_application_argument(client, session):
    result = handle_get_findings({}, client)
    assert result["ok"] is False
    assert result["error"]["code"] == "E_INVALID_REQUEST"
    assert result["error"]["details"]["tool"] == "get_findings"
    assert session.calls == []


def test_out_of_range_severity(client, session):
    _with_app(session)
    result = handle_get_findings({"application": APP_GUID, "severity_gte": 7}, client)
    assert result["error"]["code"] == "E_INVALID_REQUEST"
    assert "severity_gte" in result["error"]["message"]


def test_bad_scan_type(client, session):
    _with_app(session)
    result = handle_get_scans({"application": APP_GUID, "scan_type": "FUZZ"}, client)
    assert result["error"]["code"] == "E_INVALID_REQUEST"


def test_unknown_application_name(client, session):
    session.add(APPS_PATH, FakeResponse(200, {}))
    result = handle_get_policy_compliance({"application": "ghost"}, client)
    assert result["error"]["code"] == "E_NOT_FOUND"
    assert result["error"]["details"]["name"] == "ghost"


def test_rate_limit_envelope(client, session):
    session.add(APPS_PATH, FakeResponse(429, {"message": "Too many requests"}, headers={"Retry-After": "10"}))
    result = handle_list_applications({}, client)
    assert result["error"]["code"] == "E_RATE_LIMITED"
    assert result["error"]["details"]["retryAfter"] == "10"
    assert result["error"]["nextSteps"][0]["action"] == "BACKOFF"


def test_backend_error_envelope(client, session):
    session.add(APPS_PATH, FakeResponse(403, {"message": "Forbidden"}))
    result = handle_search_applications({"name": "x"}, client)
    assert result["error"]["code"] == "E_BACKEND"
    assert result["error"]["details"]["status"] == 403


def test_list_applications_filters(client, session):
    session.add(APPS_PATH, FakeResponse(200, apps_envelope(raw_app("MyApp"))))
    result = handle_list_applications({"tag": "web", "size": 10}, client)
    assert result["ok"]
    assert result["result"]["count"] == 1
    assert result["result"]["applications"][0]["id"] == APP_GUID
    assert session.calls[0].query == {"tag": ["web"], "size": ["10"]}


def test_search_returns_all_matches(client, session):
    session.add(APPS_PATH, FakeResponse(200, apps_envelope(raw_app("myapp-prod", OTHER_GUID), raw_app("MyApp"))))
    result = handle_search_applications({"name": "MyApp"}, client)
    assert [a["name"] for a in result["result"]["applications"]] == ["myapp-prod", "MyApp"]


def test_application_details_by_name_refetches(client, session):
    session.add(APPS_PATH, FakeResponse(200, apps_envelope(raw_app("MyApp"))))
    detailed = raw_app("MyApp")
    detailed["profile"]["description"] = "Payments backend"
    session.add(app_path(), FakeResponse(200, detailed))
    result = handle_get_application_details({"application": "MyApp"}, client)
    assert result["result"]["application"]["description"] == "Payments backend"
    assert result["result"]["resolution"]["exact_match"] is True
    assert [c.path for c in session.calls] == [APPS_PATH, app_path()]


def test_get_scans(client, session):
    _with_app(session)
    session.add(scans_path(), FakeResponse(200, scans_envelope("STATIC", "SCA")))
    result = handle_get_scans({"application": APP_GUID}, client)["result"]
    assert result["count"] == 2
    assert result["scan_types"] == ["SCA", "STATIC"]
    assert result["context"] == "policy"


def test_get_sandboxes(client, session):
    _with_app(session)
    session.add(
        f"{APPS_PATH}/{APP_GUID}/sandboxes",
        FakeResponse(200, {"_embedded": {"sandboxes": [{"guid": "sb-1", "id": 3, "name": "feature-x"}]}}),
    )
    result = handle_get_sandboxes({"application": APP_GUID}, client)["result"]
    assert result["sandboxes"][0]["name"] == "feature-x"


def test_get_findings_summary(client, session):
    _with_app(session)
    session.add(scans_path(), FakeResponse(200, scans_envelope("STATIC")))
    session.add(findings_path(), paged_findings([3], 500, make=lambda i: raw_static(i, severity=5, violates=i == 1)))
    result = handle_get_findings({"application": APP_GUID, "scan_type": "static", "cwe": [89]}, client)["result"]
    summary = result["findings_summary"]
    assert summary["total_findings_retrieved"] == 3
    assert summary["policy_violations"] == 1
    assert summary["severity_breakdown"] == {"Very High": 3}
    assert summary["data_truncated"] is False
    assert result["filters_applied"] == {"scan_type": "STATIC", "cwe": [89]}
    assert result["metadata"]["data_completeness"] == "complete"
    assert len(result["findings"]) == 3


def test_get_findings_missing_scan_type(client, session):
    _with_app(session)
    session.add(scans_path(), FakeResponse(200, scans_envelope("STATIC")))
    result = handle_get_findings({"application": APP_GUID, "scan_type": "DYNAMIC"}, client)["result"]
    assert result["findings"] == []
    assert result["findings_summary"]["scans_available"] is False
    assert result["findings_summary"]["total_findings_available"] == 0
    assert session.calls_to(findings_path()) == []


def test_get_findings_single_page(client, session):
    _with_app(session)
    session.add(scans_path(), FakeResponse(200, scans_envelope("STATIC")))
    session.add(findings_path(), paged_findings([2, 2], 2))
    result = handle_get_findings({"application": APP_GUID, "single_page": True, "page_size": 2}, client)["result"]
    assert result["findings_summary"]["pages_retrieved"] == 1
    assert result["findings_summary"]["data_truncated"] is True
    assert len(session.calls_to(findings_path())) == 1


def test_get_findings_page_navigation(client, session):
    _with_app(session)
    session.add(scans_path(), FakeResponse(200, scans_envelope("STATIC")))
    session.add(findings_path(), FakeResponse(200, findings_envelope([raw_static()], 0, 100, 4, 310)))
    result = handle_get_findings_page({"application": APP_GUID}, client)["result"]
    assert result["navigation"] == {"next_page": 1, "previous_page": None, "last_page": 3}
    assert result["pagination"]["total_elements"] == 310
    assert session.calls_to(findings_path())[0].query["size"] == ["100"]


def test_get_findings_page_size_clamped(client, session):
    _with_app(session)
    session.add(scans_path(), FakeResponse(200, scans_envelope("STATIC")))
    session.add(findings_path(), paged_findings([1], 500))
    handle_get_findings_page({"application": APP_GUID, "page_size": 2000}, client)
    assert session.calls_to(findings_path())[0].query["size"] == ["500"]


def test_static_flaw_info(client, session):
    _with_app(session)
    path = f"{findings_path()}/5/static_flaw_info"
    session.add(path, FakeResponse(200, {"issue_summary": {"name": 5}, "data_paths": []}))
    result = handle_get_static_flaw_info({"application": APP_GUID, "issue_id": 5}, client)["result"]
    assert result["static_flaw_info"]["data_paths"] == []


def test_static_flaw_info_not_found(client, session):
    _with_app(session)
    session.add(f"{findings_path()}/5/static_flaw_info", FakeResponse(404, {"message": "Not Found"}))
    result = handle_get_static_flaw_info({"application": APP_GUID, "issue_id": 5}, client)
    assert result["error"]["code"] == "E_NOT_FOUND"
    assert "Static flaw info not available for issue ID 5" in result["error"]["message"]
    assert "get_findings" in result["error"]["message"]


def test_static_flaw_info_requires_issue_id(client, session):
    _with_app(session)
    result = handle_get_static_flaw_info({"application": APP_GUID}, client)
    assert result["error"]["code"] == "E_INVALID_REQUEST"


def test_sca_results_only_exploitable(client, session):
    _with_app(session)
    session.add(scans_path(), FakeResponse(200, scans_envelope("SCA")))
    session.add(findings_path(), paged_findings([3], 500, make=lambda i: raw_sca(i, exploit_observed=i == 2)))
    result = handle_get_sca_results({"application": APP_GUID, "only_exploitable": True}, client)["result"]
    assert [f["issue_id"] for f in result["detailed_findings"]] == [2]
    assert result["analysis"]["exploitable_findings"] == 1
    assert session.calls_to(findings_path())[0].query["scan_type"] == ["SCA"]


def test_sca_analysis():
    findings = [
        normalize_finding(raw_sca(1, cvss=9.8, licenses=[{"license_id": "GPL-3.0", "risk_rating": "4"}])),
        normalize_finding(raw_sca(2, severity=3, exploit_observed=False, cvss=5.0)),
        normalize_finding(raw_static(3)),
    ]
    analysis = sca_analysis(findings)
    assert analysis["total_findings"] == 2
    assert analysis["exploitable_findings"] == 1
    assert analysis["high_risk_components"] == 1
    assert analysis["licensing_issues"] == 1
    assert analysis["direct_dependencies"] == 2
    assert [v["cvss"] for v in analysis["top_vulnerabilities"]] == [9.8, 5.0]


def test_policy_compliance_tool(client, session):
    _with_app(session)
    session.add(scans_path(), FakeResponse(200, scans_envelope("STATIC")))
    session.add(findings_path(), paged_findings([2], 500, make=lambda i: raw_static(i, severity=5, violates=True)))
    result = handle_get_policy_compliance({"application": APP_GUID}, client)["result"]
    assert result["compliance"]["summary"]["has_critical_violations"] is True
    assert result["compliance"]["violations_by_severity"]["5"] == 2
    assert result["application"]["resolution"]["resolved_from_name"] is False


def test_get_policies_list(client, session):
    session.add(
        "/appsec/v1/policies",
        FakeResponse(200, {"_embedded": {"policy_versions": [{"guid": "p1", "name": "Corp"}]}, "page": {"number": 0}}),
    )
    result = handle_get_policies({"category": "application"}, client)["result"]
    assert result["count"] == 1
    assert session.calls[0].query == {"category": ["APPLICATION"]}


def test_get_policy_by_guid(client, session):
    session.add("/appsec/v1/policies/p1", FakeResponse(200, {"guid": "p1", "name": "Corp"}))
    result = handle_get_policies({"policy_guid": "p1"}, client)["result"]
    assert result["policy"]["name"] == "Corp"


def test_server_info(client):
    result = handle_get_server_info({}, client)["result"]
    assert result["name"] == "veracode-mcp"
    assert result["maxPageSize"] == 500
    assert result["retryAttempts"] == 1
    assert result["compliancePrecedence"] == "backend"
    assert result["platformBaseUrl"] == "https://analysiscenter.veracode.com"


def test_policy_settings_and_licenses(client, session):
    session.add("/appsec/v1/policy_settings", FakeResponse(200, {"_embedded": {"policy_settings": []}}))
    session.add("/appsec/v1/policy_licenselist", FakeResponse(200, {"_embedded": {"licenses": [{"name": "MIT"}]}}))
    assert client.get_policy_settings() == {"_embedded": {"policy_settings": []}}
    licenses = client.get_sca_licenses(page=0, size=20)
    assert licenses["_embedded"]["licenses"][0]["name"] == "MIT"
    assert session.calls[-1].query == {"page": ["0"], "size": ["20"]}


def test_get_policy_settings_tool(client, session):
    session.add(
        "/appsec/v1/policy_settings",
        FakeResponse(200, {"_embedded": {"policy_settings": [{"business_criticality": "HIGH", "policy_guid": "p1"}]}}),
    )
    result = handle_get_policy_settings({}, client)["result"]
    assert result["count"] == 1
    assert result["policy_settings"][0]["policy_guid"] == "p1"


def test_get_sca_licenses_tool(client, session):
    session.add(
        "/appsec/v1/policy_licenselist",
        FakeResponse(200, {"_embedded": {"sca_license_summaries": [{"name": "GPL-3.0", "risk": "HIGH"}]}, "page": {"number": 1}}),
    )
    result = handle_get_sca_licenses({"page": 1, "size": 10, "sort": "name"}, client)["result"]
    assert result["count"] == 1
    assert result["licenses"][0]["name"] == "GPL-3.0"
    assert result["page"] == {"number": 1}
    assert session.calls[0].query == {"page": ["1"], "size": ["10"], "sort": ["name"]}


def test_get_sca_licenses_rejects_oversized_page(client, session):
    result = handle_get_sca_licenses({"size": 501}, client)
    assert result["error"]["code"] == "E_INVALID_REQUEST"
    assert session.calls == []


def test_get_policy_versions_list(client, session):
    session.add(
        "/appsec/v1/policies/p1/versions",
        FakeResponse(200, {"_embedded": {"policy_versions": [{"version": 2}, {"version": 1}]}}),
    )
    result = handle_get_policy_versions({"policy_guid": "p1", "size": 20}, client)["result"]
    assert result["policy_guid"] == "p1"
    assert [v["version"] for v in result["versions"]] == [2, 1]
    assert session.calls[0].query == {"size": ["20"]}


def test_get_policy_versions_single(client, session):
    session.add("/appsec/v1/policies/p1/versions/3", FakeResponse(200, {"guid": "p1", "version": 3}))
    result = handle_get_policy_versions({"policy_guid": "p1", "version": 3}, client)["result"]
    assert result["version"] == 3
    assert result["policy"]["version"] == 3


def test_get_policy_versions_requires_guid(client, session):
    result = handle_get_policy_versions({"version": 3}, client)
    assert result["error"]["code"] == "E_INVALID_REQUEST"
    assert session.calls == []


def test_get_policy_versions_not_found(client, session):
    session.add("/appsec/v1/policies/nope/versions", FakeResponse(404, {"message": "Policy not found"}))
    result = handle_get_policy_versions({"policy_guid": "nope"}, client)
    assert result["error"]["code"] == "E_NOT_FOUND"
    assert "Failed to fetch versions of policy nope" in result["error"]["message"]


def test_get_sandbox_summary(client, session):
    _with_app(session)
    session.add(
        f"{APPS_PATH}/{APP_GUID}/sandboxes",
        FakeResponse(200, {"_embedded": {"sandboxes": [
            {"guid": "sb-1", "id": 3, "name": "feature-x", "owner_username": "dev@example.test", "auto_recreate": True},
        ]}}),
    )
    result = handle_get_sandbox_summary({"application": APP_GUID}, client)["result"]
    assert result["application_id"] == APP_GUID
    assert result["application_name"] == "MyApp"
    assert "application_details" not in result
    summary = result["sandbox_summary"]
    assert summary["total_count"] == 1
    assert summary["sandboxes"][0]["owner"] == "dev@example.test"
    assert summary["sandboxes"][0]["auto_recreate"] is True
    assert "message" not in summary


def test_get_sandbox_summary_by_name_without_sandboxes(client, session):
    app = raw_app("MyApp")
    app["profile"]["description"] = "Payments portal"
    session.add(APPS_PATH, FakeResponse(200, apps_envelope(app)))
    session.add(f"{APPS_PATH}/{APP_GUID}/sandboxes", FakeResponse(200, {}))
    result = handle_get_sandbox_summary({"application": "MyApp"}, client)["result"]
    assert result["application_details"] == {"business_criticality": "HIGH", "description": "Payments portal"}
    assert result["sandbox_summary"] == {
        "total_count": 0,
        "sandboxes": [],
        "message": "No sandboxes found for this application",
    }
