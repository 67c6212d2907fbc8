"""Veracode MCP server: stdio JSON-RPC 2.0 loop."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from typing import Any, Callable

from veracode_mcp.client import VeracodeClient
from veracode_mcp.errors import err
from veracode_mcp.log import configure_logging, get_logger
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
    handle_get_scans,
    handle_get_sca_licenses,
    handle_get_sca_results,
    handle_get_server_info,
    handle_get_static_flaw_info,
    handle_list_applications,
    handle_search_applications,
    unknown_tool,
)
from veracode_mcp.version import SERVER_NAME, __version__

log = get_logger(__name__)

PROTOCOL_VERSION = "2024-11-05"

_APPLICATION = {
    "type": "string",
    "description": "Application profile GUID, or application name (exact match preferred, else first search result).",
}
_SCAN_TYPE = {"type": "string", "enum": ["STATIC", "DYNAMIC", "MANUAL", "SCA"]}
_SANDBOX = {"type": "string", "description": "Sandbox GUID; omit for the policy (main) context."}
_SEVERITY = {"type": "integer", "minimum": 0, "maximum": 5}
_CVSS = {"type": "number", "minimum": 0, "maximum": 10}
_READ_ONLY = {"readOnlyHint": True}


def _schema(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": required or [],
        "additionalProperties": False,
    }


# --- MCP tools/list schema ---

TOOL_SPECS: dict[str, dict[str, Any]] = {
    "list_applications": {
        "description": "List applications in the Veracode account, optionally filtered.",
        "inputSchema": _schema({
            "name": {"type": "string"},
            "business_unit": {"type": "string"},
            "tag": {"type": "string"},
            "team": {"type": "string"},
            "page": {"type": "integer", "minimum": 0},
            "size": {"type": "integer", "minimum": 1, "maximum": 500},
        }),
    },
    "search_applications": {
        "description": "Search applications by (partial) name. Returns every match; does not pick one.",
        "inputSchema": _schema({"name": {"type": "string"}}, ["name"]),
    },
    "get_application_details": {
        "description": "Full application profile: policies, teams, tags, scans, platform URLs.",
        "inputSchema": _schema({"application": _APPLICATION}, ["application"]),
    },
    "get_scans": {
        "description": "Scans for an application, optionally by scan type and sandbox.",
        "inputSchema": _schema(
            {"application": _APPLICATION, "scan_type": _SCAN_TYPE, "sandbox_id": _SANDBOX},
            ["application"],
        ),
    },
    "get_sandboxes": {
        "description": "Sandboxes (non-production evaluation branches) of an application.",
        "inputSchema": _schema({"application": _APPLICATION}, ["application"]),
    },
    "get_sandbox_summary": {
        "description": "Sandbox overview for an application: count, names, owners and timestamps.",
        "inputSchema": _schema({"application": _APPLICATION}, ["application"]),
    },
    "get_findings": {
        "description": (
            "Findings for an application with server-side filters. Retrieves all pages up to "
            "max_pages (default 50 x 500); data_truncated tells whether more remain."
        ),
        "inputSchema": _schema(
            {
                "application": _APPLICATION,
                "scan_type": _SCAN_TYPE,
                "severity": _SEVERITY,
                "severity_gte": _SEVERITY,
                "cvss": _CVSS,
                "cvss_gte": _CVSS,
                "cwe": {"type": "array", "items": {"type": "integer"}},
                "cve": {"type": "string"},
                "sandbox_id": _SANDBOX,
                "new_findings_only": {"type": "boolean"},
                "policy_violations_only": {"type": "boolean"},
                "include_annotations": {"type": "boolean"},
                "include_expiration_date": {"type": "boolean"},
                "sca_dependency_mode": {"type": "string", "enum": ["UNKNOWN", "DIRECT", "TRANSITIVE", "BOTH"]},
                "sca_scan_mode": {"type": "string", "enum": ["UPLOAD", "AGENT", "BOTH"]},
                "page_size": {"type": "integer", "minimum": 1, "maximum": 500},
                "max_pages": {"type": "integer", "minimum": 1, "maximum": 100},
                "single_page": {"type": "boolean"},
            },
            ["application"],
        ),
    },
    "get_findings_page": {
        "description": "One page of findings (0-based) with cursor and navigation hints. page_size is capped at 500.",
        "inputSchema": _schema(
            {
                "application": _APPLICATION,
                "page": {"type": "integer", "minimum": 0},
                "page_size": {"type": "integer", "minimum": 1},
                "scan_type": _SCAN_TYPE,
                "severity_gte": _SEVERITY,
                "cvss_gte": _CVSS,
                "sandbox_id": _SANDBOX,
                "include_annotations": {"type": "boolean"},
                "new_findings_only": {"type": "boolean"},
                "policy_violations_only": {"type": "boolean"},
            },
            ["application"],
        ),
    },
    "get_static_flaw_info": {
        "description": "Data paths and call stack for one STATIC finding (by issue_id).",
        "inputSchema": _schema(
            {"application": _APPLICATION, "issue_id": {"type": "integer", "minimum": 1}, "sandbox_id": _SANDBOX},
            ["application", "issue_id"],
        ),
    },
    "get_sca_results": {
        "description": "Software composition analysis findings with exploitability (EPSS), licensing and top-CVE analysis.",
        "inputSchema": _schema(
            {
                "application": _APPLICATION,
                "severity_gte": _SEVERITY,
                "cvss_gte": _CVSS,
                "only_policy_violations": {"type": "boolean"},
                "only_new_findings": {"type": "boolean"},
                "only_exploitable": {"type": "boolean"},
                "sandbox_id": _SANDBOX,
                "max_pages": {"type": "integer", "minimum": 1, "maximum": 100},
            },
            ["application"],
        ),
    },
    "get_policy_compliance": {
        "description": "Policy compliance status with per-severity violation counts.",
        "inputSchema": _schema({"application": _APPLICATION}, ["application"]),
    },
    "get_policies": {
        "description": "List policies, or fetch one by policy_guid.",
        "inputSchema": _schema({
            "policy_guid": {"type": "string"},
            "name": {"type": "string"},
            "category": {"type": "string", "enum": ["APPLICATION", "COMPONENT"]},
            "page": {"type": "integer", "minimum": 0},
            "size": {"type": "integer", "minimum": 1, "maximum": 500},
        }),
    },
    "get_policy_versions": {
        "description": "Version history of a policy, or one specific version when version is given.",
        "inputSchema": _schema(
            {
                "policy_guid": {"type": "string"},
                "version": {"type": "integer", "minimum": 1},
                "page": {"type": "integer", "minimum": 0},
                "size": {"type": "integer", "minimum": 1, "maximum": 500},
            },
            ["policy_guid"],
        ),
    },
    "get_policy_settings": {
        "description": "Default policy assigned to each business criticality level.",
        "inputSchema": _schema({}),
    },
    "get_sca_licenses": {
        "description": "Licenses used by SCA policy evaluation, with risk ratings.",
        "inputSchema": _schema({
            "page": {"type": "integer", "minimum": 0},
            "size": {"type": "integer", "minimum": 1, "maximum": 500},
            "sort": {"type": "string"},
        }),
    },
    "get_server_info": {
        "description": "Server metadata: version, endpoints, paging limits, retry and compliance settings.",
        "inputSchema": _schema({}),
    },
}

TOOL_HANDLERS = {
    "list_applications": handle_list_applications,
    "search_applications": handle_search_applications,
    "get_application_details": handle_get_application_details,
    "get_scans": handle_get_scans,
    "get_sandboxes": handle_get_sandboxes,
    "get_sandbox_summary": handle_get_sandbox_summary,
    "get_findings": handle_get_findings,
    "get_findings_page": handle_get_findings_page,
    "get_static_flaw_info": handle_get_static_flaw_info,
    "get_sca_results": handle_get_sca_results,
    "get_policy_compliance": handle_get_policy_compliance,
    "get_policies": handle_get_policies,
    "get_policy_versions": handle_get_policy_versions,
    "get_policy_settings": handle_get_policy_settings,
    "get_sca_licenses": handle_get_sca_licenses,
    "get_server_info": handle_get_server_info,
}


@dataclass(frozen=True)
class Tool:
    name: str
    spec: dict[str, Any]
    call: Callable[[dict[str, Any]], dict[str, Any]]

    def describe(self) -> dict[str, Any]:
        return {"name": self.name, **self.spec, "annotations": _READ_ONLY}


class ToolRegistry:
    """Name -> Tool map. Built once at startup and handed to the server."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, name: str, spec: dict[str, Any], call: Callable[[dict[str, Any]], dict[str, Any]]) -> None:
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = Tool(name, spec, call)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def describe(self) -> list[dict[str, Any]]:
        return [tool.describe() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def build_registry(client: VeracodeClient) -> ToolRegistry:
    registry = ToolRegistry()
    for name, handler in TOOL_HANDLERS.items():
        registry.register(name, TOOL_SPECS[name], lambda args, h=handler: h(args, client))
    return registry


class VeracodeServer:
    """MCP server with tool routing over stdio JSON-RPC."""

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    def handle_rpc(self, req: dict[str, Any]) -> dict[str, Any] | None:
        """Route a single JSON-RPC request. Notifications get no response."""
        rpc_id = req.get("id")
        method = req.get("method", "")
        if not isinstance(method, str):
            return {
                "jsonrpc": "2.0",
                "id": rpc_id,
                "error": {"code": -32600, "message": "Invalid Request"},
            }
        params = req.get("params") or {}
        if not isinstance(params, dict):
            return {
                "jsonrpc": "2.0",
                "id": rpc_id,
                "error": {"code": -32602, "message": "Invalid params: expected an object"},
            }

        if method.startswith("notifications/"):
            return None

        if method == "initialize":
            return self._rpc_ok(rpc_id, {
                "protocolVersion": params.get("protocolVersion", PROTOCOL_VERSION),
                "capabilities": {"tools": {}},
                "serverInfo": {"name": SERVER_NAME, "version": __version__},
            })

        if method == "ping":
            return self._rpc_ok(rpc_id, {})

        if method == "tools/list":
            return self._rpc_ok(rpc_id, {"tools": self.registry.describe()})

        if method == "tools/call":
            name = params.get("name", "")
            tool = self.registry.get(name) if isinstance(name, str) else None
            if tool is None:
                return self._rpc_ok(rpc_id, self._content(unknown_tool(str(name)), is_error=True))
            result = self._invoke(tool, params.get("arguments") or {})
            return self._rpc_ok(rpc_id, self._content(result, is_error=not result.get("ok", False)))

        # direct invocation by tool name
        tool = self.registry.get(method)
        if tool is None:
            return {
                "jsonrpc": "2.0",
                "id": rpc_id,
                "error": {"code": -32601, "message": f"Method not found: {method}"},
            }
        return self._rpc_ok(rpc_id, self._invoke(tool, params))

    def _invoke(self, tool: Tool, args: dict[str, Any]) -> dict[str, Any]:
        try:
            return tool.call(args)
        except Exception as e:
            log.exception("Unhandled error in tool %s", tool.name)
            return err("E_INTERNAL", "Unhandled server error.", {"exception": str(e), "tool": tool.name})

    def _content(self, result: dict[str, Any], is_error: bool) -> dict[str, Any]:
        return {
            "content": [{"type": "text", "text": json.dumps(result, indent=2)}],
            "isError": is_error,
        }

    def _rpc_ok(self, rpc_id: Any, result: Any) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "id": rpc_id, "result": result}


def main() -> None:
    """Entry point: load config, run stdio JSON-RPC loop."""
    configure_logging()
    try:
        client = VeracodeClient.from_environment()
    except RuntimeError as e:
        log.error("%s", e)
        raise SystemExit(1) from e

    registry = build_registry(client)
    server = VeracodeServer(registry)
    log.info("%s %s ready with %d tools", SERVER_NAME, __version__, len(registry))

    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        try:
            req = json.loads(line)
        except json.JSONDecodeError:
            resp: dict[str, Any] | None = {
                "jsonrpc": "2.0",
                "id": None,
                "error": {"code": -32700, "message": "Parse error"},
            }
        else:
            resp = server.handle_rpc(req) if isinstance(req, dict) else {
                "jsonrpc": "2.0",
                "id": None,
                "error": {"code": -32600, "message": "Invalid Request"},
            }

        if resp is None:
            continue
        sys.stdout.write(json.dumps(resp) + "\n")
        sys.stdout.flush()


if __name__ == "__main__":
    main()
