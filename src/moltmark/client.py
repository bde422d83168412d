"""
moltmark.client — Python SDK for a running moltmark server.

Usage:
    from moltmark.client import MoltmarkClient

    with MoltmarkClient("http://localhost:8080") as client:
        client.report_test_result("agent-1", "code-review", "pass", evidence="PR #12 merged")
        status = client.get_certification("agent-1")
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

__all__ = ["MoltmarkClient", "MoltmarkClientError"]


class MoltmarkClientError(Exception):
    """Raised on HTTP errors and on tool calls that come back with ``isError``."""

    def __init__(self, status: int, code: str, message: str, details: Optional[dict] = None):
        self.status = status
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{status}] {code}: {message}")


@dataclass
class MoltmarkClient:
    """Lightweight client for the moltmark tool server."""

    base_url: str = "http://localhost:8080"
    timeout: float = 10.0
    transport: Optional[httpx.BaseTransport] = None
    _http: httpx.Client = field(init=False, repr=False)

    def __post_init__(self):
        self._http = httpx.Client(base_url=self.base_url, timeout=self.timeout,
                                  transport=self.transport)

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # -- internal --

    def _request(self, method: str, path: str, **kwargs) -> dict:
        r = self._http.request(method, path, **kwargs)
        if r.status_code >= 400:
            if r.headers.get("content-type", "").startswith("application/json"):
                body = r.json()
                if "content" in body:
                    _raise_tool_error(r.status_code, body)
                raise MoltmarkClientError(r.status_code, "http_error", str(body.get("detail", body)))
            raise MoltmarkClientError(r.status_code, "http_error", r.text)
        return r.json()

    def call(self, tool: str, **arguments: Any) -> dict:
        """Call a tool and return its decoded JSON result."""
        envelope = self._request("POST", "/mcp/call", json={
            "name": tool,
            "arguments": {k: v for k, v in arguments.items() if v is not None},
        })
        if envelope.get("isError"):
            _raise_tool_error(200, envelope)
        return json.loads(envelope["content"][0]["text"])

    # -- Server --

    def health(self) -> dict:
        return self._request("GET", "/health")

    def list_tools(self) -> list[dict]:
        return self._request("GET", "/mcp/tools")["tools"]

    # -- Tools --

    def get_certification(self, agent_id: str) -> dict:
        """Status, capabilities, recent tests and summary. ``found`` is False for unknown agents."""
        return self.call("get_certification", agent_id=agent_id)

    def declare_capability(self, agent_id: str, capability_name: str, description: str) -> dict:
        return self.call("declare_capability", agent_id=agent_id,
                         capability_name=capability_name, description=description)

    def report_test_result(self, agent_id: str, capability: str, result: str,
                           evidence: str = "") -> dict:
        return self.call("report_test_result", agent_id=agent_id, capability=capability,
                         result=result, evidence=evidence)

    def verify_agent(self, agent_id: str, min_trust_score: float) -> dict:
        return self.call("verify_agent", agent_id=agent_id, min_trust_score=min_trust_score)

    def list_verified_agents(self, capability_filter: Optional[str] = None) -> dict:
        return self.call("list_verified_agents", capability_filter=capability_filter)


def _raise_tool_error(status: int, envelope: dict) -> None:
    try:
        error = json.loads(envelope["content"][0]["text"])["error"]
    except (KeyError, IndexError, TypeError, ValueError):
        raise MoltmarkClientError(status, "malformed_response", str(envelope)) from None
    raise MoltmarkClientError(status, error.get("code", "unknown"),
                              error.get("message", ""), error.get("details"))
