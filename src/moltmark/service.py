"""
moltmark.service — Certification operations over an injected store.

Five operations, each one store transaction:

    query_status           agent fields, capabilities, recent tests, summary
    declare_capability     upsert a named capability (no scoring side effect)
    report_test_result     append evidence and recompute the trust score
    verify_agent           compare the trust score against a threshold
    list_certified_agents  certified agents, optionally by capability substring

The service keeps no state between calls; the store is the only source of
truth. Store errors propagate with the failing operation name attached and
are never retried here.
"""

from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterator, Optional, Union

from moltmark.errors import (
    CertificationError,
    ConstraintViolationError,
    InvalidInputError,
    StorageUnavailableError,
)
from moltmark.logs import log_context
from moltmark.models import Agent, Capability, ResultCounts, TestOutcome, TestResult
from moltmark.scoring import recompute, stamp_certification
from moltmark.store import CertificationStore, utcnow

__all__ = [
    "RECENT_TESTS_LIMIT",
    "CertificationService",
    "CertificationStatus",
    "TestReport",
    "Verification",
]

logger = logging.getLogger(__name__)

RECENT_TESTS_LIMIT = 10


# ─── Results ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class CertificationStatus:
    agent_id: str
    found: bool
    agent: Optional[Agent] = None
    capabilities: list[Capability] = field(default_factory=list)
    recent_tests: list[TestResult] = field(default_factory=list)
    summary: ResultCounts = field(default_factory=ResultCounts)

    def to_dict(self) -> dict:
        if not self.found:
            return {
                "found": False,
                "message": f"Agent '{self.agent_id}' not found in the certification system",
            }
        return {
            "found": True,
            "agent": self.agent.to_dict(),
            "capabilities": [c.to_dict() for c in self.capabilities],
            "recent_tests": [t.to_dict() for t in self.recent_tests],
            "summary": self.summary.to_dict(),
        }


@dataclass(frozen=True)
class TestReport:
    """A freshly recorded test result and the agent's standing after it."""
    __test__ = False

    test_result: TestResult
    agent: Agent

    def to_dict(self) -> dict:
        return {
            "success": True,
            "test_result": {
                "id": self.test_result.id,
                "capability": self.test_result.capability,
                "result": self.test_result.result.value,
                "tested_at": self.test_result.tested_at.isoformat(),
            },
            "agent_status": {
                "trust_score": float(self.agent.trust_score),
                "certified": self.agent.certified,
            },
            "message": f"Test result recorded. Agent trust score is now {self.agent.trust_score}%",
        }


@dataclass(frozen=True)
class Verification:
    verified: bool
    reason: str
    threshold: Union[int, float, Decimal]
    agent: Optional[Agent] = None

    def to_dict(self) -> dict:
        agent = None
        if self.agent is not None:
            agent = {
                "id": self.agent.id,
                "trust_score": float(self.agent.trust_score),
                "certified": self.agent.certified,
            }
        return {
            "verified": self.verified,
            "reason": self.reason,
            "agent": agent,
            "threshold_requested": (float(self.threshold)
                                    if isinstance(self.threshold, Decimal) else self.threshold),
        }


# ─── Service ───────────────────────────────────────────────────────

class CertificationService:
    """Orchestrates the ledger's operations against a store."""

    def __init__(self, store: CertificationStore,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self._clock = clock

    async def query_status(self, agent_id: str) -> CertificationStatus:
        agent_id = _require_text(agent_id, "agent_id")
        with _operation("query_status", agent_id):
            async with self.store.transaction(readonly=True) as tx:
                agent = await tx.get_agent(agent_id)
                if agent is None:
                    return CertificationStatus(agent_id=agent_id, found=False)
                capabilities = await tx.list_capabilities(agent_id)
                recent = await tx.list_test_results(agent_id, limit=RECENT_TESTS_LIMIT)
                summary = await tx.count_results(agent_id)
        return CertificationStatus(
            agent_id=agent_id,
            found=True,
            agent=agent,
            capabilities=capabilities,
            recent_tests=recent,
            summary=summary,
        )

    async def declare_capability(self, agent_id: str, name: str,
                                 description: str) -> Capability:
        agent_id = _require_text(agent_id, "agent_id")
        name = _require_text(name, "capability_name")
        if not isinstance(description, str):
            raise InvalidInputError("description must be a string",
                                    details={"field": "description"})
        with _operation("declare_capability", agent_id):
            async with self.store.transaction() as tx:
                await tx.ensure_agent(agent_id)
                capability = await tx.upsert_capability(agent_id, name, description)
            logger.info("Capability declared", extra={"capability": name})
        return capability

    async def report_test_result(self, agent_id: str, capability: str,
                                 outcome, evidence: str = "") -> TestReport:
        agent_id = _require_text(agent_id, "agent_id")
        capability = _require_text(capability, "capability")
        outcome = _parse_outcome(outcome)
        if evidence is None:
            evidence = ""
        if not isinstance(evidence, str):
            raise InvalidInputError("evidence must be a string", details={"field": "evidence"})

        with _operation("report_test_result", agent_id):
            async with self.store.transaction() as tx:
                await tx.ensure_agent(agent_id)
                before = await tx.lock_agent(agent_id)
                result = await tx.append_test_result(agent_id, capability, outcome, evidence)
                counts = await tx.count_results(agent_id)
                score = recompute(counts.passed, counts.total)
                certified_at = stamp_certification(before.certified_at, score.certified,
                                                   self._clock())
                after = await tx.update_agent_score(agent_id, score.trust_score,
                                                    score.certified, certified_at)

            logger.info(
                "Test result recorded",
                extra={"capability": capability, "result": outcome.value,
                       "trust_score": str(after.trust_score), "total_tests": counts.total},
            )
            _log_transition(before, after)
        return TestReport(test_result=result, agent=after)

    async def verify_agent(self, agent_id: str, min_trust_score) -> Verification:
        agent_id = _require_text(agent_id, "agent_id")
        threshold = _parse_threshold(min_trust_score)
        with _operation("verify_agent", agent_id):
            async with self.store.transaction(readonly=True) as tx:
                agent = await tx.get_agent(agent_id)

        if agent is None:
            return Verification(verified=False, reason="Agent not found", threshold=threshold)
        if agent.trust_score < Decimal(str(threshold)):
            return Verification(
                verified=False,
                reason=(f"Trust score {agent.trust_score} is below threshold "
                        f"{_format_threshold(threshold)}"),
                threshold=threshold,
                agent=agent,
            )
        return Verification(verified=True, reason="Agent meets trust threshold",
                            threshold=threshold, agent=agent)

    async def list_certified_agents(self, capability_filter: Optional[str] = None) -> list[Agent]:
        if capability_filter is not None and not isinstance(capability_filter, str):
            raise InvalidInputError("capability_filter must be a string",
                                    details={"field": "capability_filter"})
        with _operation("list_certified_agents"):
            async with self.store.transaction(readonly=True) as tx:
                return await tx.list_certified_agents(capability_filter or None)


# ─── Helpers ───────────────────────────────────────────────────────

@contextmanager
def _operation(name: str, agent_id: Optional[str] = None) -> Iterator[None]:
    """Bind the log context and attach the operation name to ledger errors."""
    with log_context(name, agent_id):
        try:
            yield
        except CertificationError as e:
            if e.operation is None:
                e.operation = name
            if isinstance(e, ConstraintViolationError):
                logger.error("Constraint violation in %s: %s", name, e.message,
                             extra={"details": e.details})
            elif isinstance(e, StorageUnavailableError):
                logger.warning("Storage unavailable in %s: %s", name, e.message)
            raise


def _require_text(value, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{field_name} must be a non-empty string",
                                details={"field": field_name})
    return value


def _parse_outcome(value) -> TestOutcome:
    try:
        return TestOutcome(value)
    except ValueError:
        raise InvalidInputError("result must be 'pass' or 'fail'",
                                details={"field": "result", "value": str(value)}) from None


def _parse_threshold(value) -> Union[int, float, Decimal]:
    """Validate a threshold and hand back the caller's own value."""
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise InvalidInputError("min_trust_score must be a number",
                                details={"field": "min_trust_score"})
    as_float = float(value)
    if math.isnan(as_float) or not 0 <= as_float <= 100:
        raise InvalidInputError("min_trust_score must be between 0 and 100",
                                details={"field": "min_trust_score", "value": as_float})
    return value


def _format_threshold(value) -> str:
    # Plain notation with every significant digit: 90.0 -> "90", 80.000001 -> "80.000001"
    return format(Decimal(str(value)).normalize(), "f")


def _log_transition(before: Agent, after: Agent) -> None:
    if after.certified and not before.certified:
        event = "Agent certified" if before.certified_at is None else "Agent re-certified"
        logger.info(event, extra={"trust_score": str(after.trust_score)})
    elif before.certified and not after.certified:
        logger.info("Agent no longer meets certification bar",
                    extra={"trust_score": str(after.trust_score)})
