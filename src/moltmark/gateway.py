"""
moltmark.gateway — MCP tool definitions and dispatch for the certification ledger.

Every call returns an MCP content envelope; failures come back as a stable
error payload with ``isError: true`` instead of escaping as exceptions.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from moltmark import __version__
from moltmark.errors import CertificationError, InvalidInputError
from moltmark.schemas import (
    DeclareCapabilityRequest,
    GetCertificationRequest,
    ListVerifiedAgentsRequest,
    ReportTestResultRequest,
    VerifyAgentRequest,
)
from moltmark.service import CertificationService

__all__ = ["MOLTMARK_MCP_TOOLS", "CertificationGateway", "error_envelope", "get_mcp_manifest"]

logger = logging.getLogger(__name__)

_TOOL_MODELS: dict[str, tuple[str, type[BaseModel]]] = {
    "get_certification": (
        "Query the certification status of an agent, including trust score, "
        "capabilities, and test history",
        GetCertificationRequest,
    ),
    "report_test_result": (
        "Submit a test outcome for an agent's capability. This affects the agent's trust score.",
        ReportTestResultRequest,
    ),
    "declare_capability": (
        "Register a new skill or capability for an agent. This declares what the agent can do.",
        DeclareCapabilityRequest,
    ),
    "verify_agent": (
        "Check if an agent meets a minimum trust score threshold for a specific use case",
        VerifyAgentRequest,
    ),
    "list_verified_agents": (
        "List all certified agents, optionally filtered by capability",
        ListVerifiedAgentsRequest,
    ),
}

MOLTMARK_MCP_TOOLS = [
    {
        "name": name,
        "description": description,
        "inputSchema": model.model_json_schema(),
    }
    for name, (description, model) in _TOOL_MODELS.items()
]


def get_mcp_manifest() -> dict:
    """MCP server manifest for tool registration."""
    return {
        "name": "moltmark",
        "version": __version__,
        "description": "Capability certification and trust scoring for autonomous agents.",
        "tools": MOLTMARK_MCP_TOOLS,
    }


class CertificationGateway:
    """Validates tool arguments, calls the service, serializes the outcome."""

    def __init__(self, service: CertificationService):
        self.service = service
        self._handlers = {
            "get_certification": self._get_certification,
            "report_test_result": self._report_test_result,
            "declare_capability": self._declare_capability,
            "verify_agent": self._verify_agent,
            "list_verified_agents": self._list_verified_agents,
        }

    def list_tools(self) -> dict:
        return {"tools": MOLTMARK_MCP_TOOLS}

    async def call_tool(self, name: str, arguments: Optional[dict[str, Any]] = None) -> dict:
        try:
            handler = self._handlers.get(name)
            if handler is None:
                raise InvalidInputError(f"Unknown tool: {name}", details={"tool": name})
            request = _parse(_TOOL_MODELS[name][1], arguments)
            result = await handler(request)
        except CertificationError as e:
            if e.operation is None:
                e.operation = name
            return error_envelope(e.to_dict())
        except Exception:
            logger.exception("Unhandled error in tool %s", name, extra={"tool": name})
            return error_envelope({
                "error": {
                    "code": "internal_error",
                    "message": "Internal server error",
                    "operation": name,
                    "details": {},
                }
            })
        return {"content": [{"type": "text", "text": json.dumps(result, indent=2)}]}

    # -- handlers --

    async def _get_certification(self, req: GetCertificationRequest) -> dict:
        status = await self.service.query_status(req.agent_id)
        return status.to_dict()

    async def _report_test_result(self, req: ReportTestResultRequest) -> dict:
        report = await self.service.report_test_result(
            req.agent_id, req.capability, req.result, req.evidence,
        )
        return report.to_dict()

    async def _declare_capability(self, req: DeclareCapabilityRequest) -> dict:
        capability = await self.service.declare_capability(
            req.agent_id, req.capability_name, req.description,
        )
        return {
            "success": True,
            "capability": capability.to_dict(),
            "message": f"Capability '{capability.name}' registered for agent '{req.agent_id}'",
        }

    async def _verify_agent(self, req: VerifyAgentRequest) -> dict:
        verification = await self.service.verify_agent(req.agent_id, req.min_trust_score)
        return verification.to_dict()

    async def _list_verified_agents(self, req: ListVerifiedAgentsRequest) -> dict:
        agents = await self.service.list_certified_agents(req.capability_filter)
        return {
            "count": len(agents),
            "filter": req.capability_filter or None,
            "agents": [
                {
                    "id": a.id,
                    "trust_score": float(a.trust_score),
                    "certified_at": a.certified_at.isoformat() if a.certified_at else None,
                }
                for a in agents
            ],
        }


def _parse(model: type[BaseModel], arguments: Optional[dict[str, Any]]) -> BaseModel:
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise InvalidInputError("Tool arguments must be an object")
    try:
        return model.model_validate(arguments)
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise InvalidInputError("Invalid tool arguments", details={"errors": errors}) from None


def error_envelope(payload: dict) -> dict:
    return {
        "content": [{"type": "text", "text": json.dumps(payload, indent=2)}],
        "isError": True,
    }
