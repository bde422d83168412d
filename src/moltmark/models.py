"""
moltmark.models — Ledger records: agents, capabilities, test results.

Records are immutable dataclasses; the store hands out fresh instances and
the service never mutates them in place.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

__all__ = [
    "TestOutcome",
    "Agent",
    "Capability",
    "TestResult",
    "ResultCounts",
    "isoformat",
]


class TestOutcome(str, Enum):
    """Outcome of a single capability test."""
    __test__ = False

    PASS = "pass"
    FAIL = "fail"


@dataclass(frozen=True)
class Agent:
    id: str
    created_at: datetime
    trust_score: Decimal = Decimal("0.00")
    certified: bool = False
    certified_at: Optional[datetime] = None

    def with_score(self, trust_score: Decimal, certified: bool,
                   certified_at: Optional[datetime]) -> "Agent":
        return replace(self, trust_score=trust_score, certified=certified,
                       certified_at=certified_at)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trust_score": float(self.trust_score),
            "certified": self.certified,
            "certified_at": isoformat(self.certified_at),
            "created_at": isoformat(self.created_at),
        }


@dataclass(frozen=True)
class Capability:
    agent_id: str
    name: str
    description: str
    declared_at: datetime

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "declared_at": isoformat(self.declared_at),
        }


@dataclass(frozen=True)
class TestResult:
    """Append-only evidence of one capability test."""
    __test__ = False

    id: int
    agent_id: str
    capability: str
    result: TestOutcome
    evidence: str
    tested_at: datetime

    @property
    def passed(self) -> bool:
        return self.result is TestOutcome.PASS

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "capability": self.capability,
            "result": self.result.value,
            "evidence": self.evidence,
            "tested_at": isoformat(self.tested_at),
        }


@dataclass(frozen=True)
class ResultCounts:
    """Aggregate pass/fail tally over an agent's whole history."""
    passed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.passed + self.failed

    def to_dict(self) -> dict:
        return {"total": self.total, "passed": self.passed, "failed": self.failed}


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
