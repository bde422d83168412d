"""Tests for moltmark MCP tool definitions and dispatch."""

import json

import pytest
import pytest_asyncio

from moltmark.gateway import MOLTMARK_MCP_TOOLS, CertificationGateway, get_mcp_manifest
from moltmark.service import CertificationService
from moltmark.store import MemoryStore


def _payload(envelope):
    return json.loads(envelope["content"][0]["text"])


@pytest_asyncio.fixture
async def gateway(service):
    return CertificationGateway(service)


async def _report(gateway, agent_id, outcomes):
    for outcome in outcomes:
        r = await gateway.call_tool("report_test_result", {
            "agent_id": agent_id, "capability": "code", "result": outcome,
        })
        assert "isError" not in r


class TestManifest:
    def test_structure(self):
        m = get_mcp_manifest()
        assert m["name"] == "moltmark"
        assert len(m["tools"]) == 5

    def test_tool_names(self):
        names = {t["name"] for t in MOLTMARK_MCP_TOOLS}
        assert names == {
            "get_certification", "report_test_result", "declare_capability",
            "verify_agent", "list_verified_agents",
        }

    def test_tools_have_fields(self):
        for t in MOLTMARK_MCP_TOOLS:
            assert "name" in t and "description" in t and "inputSchema" in t

    def test_report_schema_limits_result(self):
        tool = next(t for t in MOLTMARK_MCP_TOOLS if t["name"] == "report_test_result")
        schema = tool["inputSchema"]
        assert schema["properties"]["result"]["enum"] == ["pass", "fail"]
        assert set(schema["required"]) == {"agent_id", "capability", "result"}

    def test_list_tools(self):
        gateway = CertificationGateway(CertificationService(MemoryStore()))
        assert gateway.list_tools() == {"tools": MOLTMARK_MCP_TOOLS}


class TestGetCertification:
    @pytest.mark.asyncio
    async def test_unknown_agent(self, gateway):
        r = _payload(await gateway.call_tool("get_certification", {"agent_id": "a1"}))
        assert r == {"found": False,
                     "message": "Agent 'a1' not found in the certification system"}

    @pytest.mark.asyncio
    async def test_known_agent(self, gateway):
        await _report(gateway, "a1", ["pass"] * 4 + ["fail"])
        r = _payload(await gateway.call_tool("get_certification", {"agent_id": "a1"}))
        assert r["found"] is True
        assert r["agent"]["trust_score"] == 80.0
        assert r["agent"]["certified"] is True
        assert r["summary"] == {"total": 5, "passed": 4, "failed": 1}
        assert len(r["recent_tests"]) == 5


class TestDeclareCapability:
    @pytest.mark.asyncio
    async def test_declares(self, gateway):
        r = _payload(await gateway.call_tool("declare_capability", {
            "agent_id": "a1", "capability_name": "nlp", "description": "parses text",
        }))
        assert r["success"] is True
        assert r["capability"]["name"] == "nlp"
        assert r["message"] == "Capability 'nlp' registered for agent 'a1'"

    @pytest.mark.asyncio
    async def test_missing_description(self, gateway):
        r = await gateway.call_tool("declare_capability", {
            "agent_id": "a1", "capability_name": "nlp",
        })
        assert r["isError"] is True
        err = _payload(r)["error"]
        assert err["code"] == "invalid_input"
        assert err["operation"] == "declare_capability"
        assert err["details"]["errors"][0]["field"] == "description"


class TestReportTestResult:
    @pytest.mark.asyncio
    async def test_reports(self, gateway):
        r = _payload(await gateway.call_tool("report_test_result", {
            "agent_id": "a1", "capability": "code", "result": "pass", "evidence": "ok",
        }))
        assert r["success"] is True
        assert r["agent_status"] == {"trust_score": 100.0, "certified": False}
        assert r["message"].endswith("100.00%")

    @pytest.mark.asyncio
    async def test_bad_outcome(self, gateway):
        r = await gateway.call_tool("report_test_result", {
            "agent_id": "a1", "capability": "code", "result": "maybe",
        })
        assert r["isError"] is True
        assert _payload(r)["error"]["code"] == "invalid_input"
        status = _payload(await gateway.call_tool("get_certification", {"agent_id": "a1"}))
        assert status["found"] is False

    @pytest.mark.asyncio
    async def test_null_bytes_rejected(self, gateway):
        r = await gateway.call_tool("report_test_result", {
            "agent_id": "a\x001", "capability": "code", "result": "pass",
        })
        assert r["isError"] is True


class TestVerifyAgent:
    @pytest.mark.asyncio
    async def test_below_threshold(self, gateway):
        await _report(gateway, "a1", ["pass"] * 4 + ["fail"])
        r = _payload(await gateway.call_tool("verify_agent", {
            "agent_id": "a1", "min_trust_score": 90,
        }))
        assert r["verified"] is False
        assert r["reason"] == "Trust score 80.00 is below threshold 90"
        assert r["threshold_requested"] == 90

    @pytest.mark.asyncio
    async def test_threshold_echoed_as_sent(self, gateway):
        await _report(gateway, "a1", ["pass"] * 5)
        whole = _payload(await gateway.call_tool("verify_agent", {
            "agent_id": "a1", "min_trust_score": 90,
        }))
        fractional = _payload(await gateway.call_tool("verify_agent", {
            "agent_id": "a1", "min_trust_score": 72.5,
        }))
        assert type(whole["threshold_requested"]) is int
        assert fractional["threshold_requested"] == 72.5

    @pytest.mark.asyncio
    async def test_reason_keeps_every_digit(self, gateway):
        await _report(gateway, "a1", ["pass"] * 4 + ["fail"])
        r = _payload(await gateway.call_tool("verify_agent", {
            "agent_id": "a1", "min_trust_score": 80.000001,
        }))
        assert r["verified"] is False
        assert r["reason"] == "Trust score 80.00 is below threshold 80.000001"

    @pytest.mark.asyncio
    async def test_unknown(self, gateway):
        r = _payload(await gateway.call_tool("verify_agent", {
            "agent_id": "ghost", "min_trust_score": 10,
        }))
        assert r == {"verified": False, "reason": "Agent not found",
                     "agent": None, "threshold_requested": 10}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("threshold", [-1, 101, "high"])
    async def test_threshold_out_of_range(self, gateway, threshold):
        r = await gateway.call_tool("verify_agent", {
            "agent_id": "a1", "min_trust_score": threshold,
        })
        assert r["isError"] is True
        assert _payload(r)["error"]["code"] == "invalid_input"


class TestListVerifiedAgents:
    @pytest.mark.asyncio
    async def test_lists(self, gateway):
        await _report(gateway, "a1", ["pass"] * 5)
        await _report(gateway, "a2", ["pass"] * 2)
        r = _payload(await gateway.call_tool("list_verified_agents", {}))
        assert r["count"] == 1
        assert r["filter"] is None
        assert r["agents"][0]["id"] == "a1"
        assert r["agents"][0]["certified_at"] is not None

    @pytest.mark.asyncio
    async def test_filter(self, gateway):
        await _report(gateway, "a1", ["pass"] * 5)
        r = _payload(await gateway.call_tool("list_verified_agents",
                                             {"capability_filter": "code"}))
        assert r["count"] == 0
        assert r["filter"] == "code"

    @pytest.mark.asyncio
    async def test_no_arguments(self, gateway):
        r = _payload(await gateway.call_tool("list_verified_agents"))
        assert r == {"count": 0, "filter": None, "agents": []}


class TestErrors:
    @pytest.mark.asyncio
    async def test_unknown_tool(self, gateway):
        r = await gateway.call_tool("nonexistent", {})
        assert r["isError"] is True
        err = _payload(r)["error"]
        assert err["code"] == "invalid_input"
        assert err["details"] == {"tool": "nonexistent"}

    @pytest.mark.asyncio
    async def test_arguments_must_be_object(self, gateway):
        r = await gateway.call_tool("get_certification", ["a1"])
        assert r["isError"] is True

    @pytest.mark.asyncio
    async def test_storage_unavailable(self, gateway, store):
        await store.close()
        r = await gateway.call_tool("get_certification", {"agent_id": "a1"})
        assert r["isError"] is True
        err = _payload(r)["error"]
        assert err["code"] == "storage_unavailable"
        assert err["operation"] == "query_status"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, gateway, monkeypatch):
        async def explode(agent_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(gateway.service, "query_status", explode)
        r = await gateway.call_tool("get_certification", {"agent_id": "a1"})
        assert r["isError"] is True
        err = _payload(r)["error"]
        assert err["code"] == "internal_error"
        assert "boom" not in err["message"]
