"""
moltmark.store — Pluggable persistence for the certification ledger.

Backends: MemoryStore (below), PostgresStore (moltmark.database)

Every backend hands out unit-of-work transactions. Writes made inside a
transaction become visible to other transactions only when it commits, and
a transaction that raises leaves no trace.
"""

from __future__ import annotations

import asyncio
import itertools
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncIterator, Optional

from moltmark.errors import ConstraintViolationError, StorageUnavailableError
from moltmark.models import Agent, Capability, ResultCounts, TestOutcome, TestResult

__all__ = [
    "StoreTransaction",
    "CertificationStore",
    "MemoryStore",
    "utcnow",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Abstract interface ────────────────────────────────────────────

class StoreTransaction(ABC):
    """Operations available inside one store transaction."""

    @abstractmethod
    async def ensure_agent(self, agent_id: str) -> Agent:
        """Create the agent row if missing. Idempotent and race-safe."""

    @abstractmethod
    async def lock_agent(self, agent_id: str) -> Agent:
        """Lock an existing agent row until the transaction ends."""

    @abstractmethod
    async def get_agent(self, agent_id: str) -> Optional[Agent]: ...

    @abstractmethod
    async def upsert_capability(self, agent_id: str, name: str,
                                description: str) -> Capability: ...

    @abstractmethod
    async def list_capabilities(self, agent_id: str) -> list[Capability]:
        """Capabilities in declaration order (oldest first)."""

    @abstractmethod
    async def append_test_result(self, agent_id: str, capability: str,
                                 outcome: TestOutcome, evidence: str) -> TestResult: ...

    @abstractmethod
    async def list_test_results(self, agent_id: str,
                                limit: Optional[int] = None) -> list[TestResult]:
        """Test results, newest first."""

    @abstractmethod
    async def count_results(self, agent_id: str) -> ResultCounts: ...

    @abstractmethod
    async def update_agent_score(self, agent_id: str, trust_score: Decimal,
                                 certified: bool,
                                 certified_at: Optional[datetime]) -> Agent: ...

    @abstractmethod
    async def list_certified_agents(self, capability_filter: Optional[str] = None) -> list[Agent]:
        """Certified agents by trust score descending.

        With a filter, only agents owning a capability whose name contains it
        (case-insensitive) are returned, each once.
        """


class CertificationStore(ABC):
    """Abstract store with an explicit open/close lifecycle."""

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def health_check(self) -> bool: ...

    @abstractmethod
    def transaction(self, *, readonly: bool = False):
        """Async context manager yielding a :class:`StoreTransaction`."""

    async def __aenter__(self) -> "CertificationStore":
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()



# ─── Memory backend ────────────────────────────────────────────────

class MemoryStore(CertificationStore):
    """In-process store for development and testing. Data is lost on exit.

    Per-agent asyncio locks stand in for row locks; staged writes are applied
    in one synchronous step at commit so no reader sees half a transaction.
    """

    def __init__(self):
        self._agents: dict[str, Agent] = {}
        self._capabilities: dict[str, dict[str, Capability]] = {}
        self._results: dict[str, list[TestResult]] = {}
        self._result_ids = itertools.count(1)
        self._locks: dict[str, asyncio.Lock] = {}
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        self._connected = False

    async def health_check(self) -> bool:
        return self._connected

    @asynccontextmanager
    async def transaction(self, *, readonly: bool = False) -> AsyncIterator["_MemoryTransaction"]:
        if not self._connected:
            raise StorageUnavailableError("Memory store is not connected")
        tx = _MemoryTransaction(self, readonly=readonly)
        try:
            yield tx
            tx.commit()
        finally:
            tx.release_locks()

    def _lock_for(self, agent_id: str) -> asyncio.Lock:
        lock = self._locks.get(agent_id)
        if lock is None:
            lock = self._locks[agent_id] = asyncio.Lock()
        return lock


class _MemoryTransaction(StoreTransaction):

    def __init__(self, store: MemoryStore, readonly: bool = False):
        self._store = store
        self._readonly = readonly
        self._created: dict[str, Agent] = {}
        self._updated: dict[str, Agent] = {}
        self._capabilities: dict[tuple[str, str], Capability] = {}
        self._results: list[TestResult] = []
        self._held: list[asyncio.Lock] = []

    # -- bookkeeping --

    def _check_writable(self) -> None:
        if self._readonly:
            raise StorageUnavailableError("Write attempted in a read-only transaction")

    def _view_agent(self, agent_id: str) -> Optional[Agent]:
        # Committed rows win over rows created here: first reference wins.
        return (self._updated.get(agent_id)
                or self._store._agents.get(agent_id)
                or self._created.get(agent_id))

    def _require_agent(self, agent_id: str) -> Agent:
        agent = self._view_agent(agent_id)
        if agent is None:
            raise ConstraintViolationError(
                f"Agent '{agent_id}' does not exist", details={"agent_id": agent_id},
            )
        return agent

    def release_locks(self) -> None:
        while self._held:
            self._held.pop().release()

    def commit(self) -> None:
        store = self._store
        for agent_id, agent in self._created.items():
            store._agents.setdefault(agent_id, agent)
        for agent_id, agent in self._updated.items():
            base = store._agents[agent_id]
            store._agents[agent_id] = base.with_score(agent.trust_score, agent.certified,
                                                      agent.certified_at)
        for (agent_id, name), cap in self._capabilities.items():
            caps = store._capabilities.setdefault(agent_id, {})
            existing = caps.get(name)
            if existing is not None:
                cap = Capability(agent_id, name, cap.description, existing.declared_at)
            caps[name] = cap
        for result in self._results:
            store._results.setdefault(result.agent_id, []).append(result)

    # -- agents --

    async def ensure_agent(self, agent_id: str) -> Agent:
        self._check_writable()
        agent = self._view_agent(agent_id)
        if agent is None:
            agent = self._created[agent_id] = Agent(id=agent_id, created_at=utcnow())
        return agent

    async def lock_agent(self, agent_id: str) -> Agent:
        self._check_writable()
        self._require_agent(agent_id)
        lock = self._store._lock_for(agent_id)
        if lock not in self._held:
            await lock.acquire()
            self._held.append(lock)
        # Re-read after waiting: the previous holder may have committed.
        return self._require_agent(agent_id)

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        return self._view_agent(agent_id)

    async def update_agent_score(self, agent_id: str, trust_score: Decimal,
                                 certified: bool,
                                 certified_at: Optional[datetime]) -> Agent:
        self._check_writable()
        agent = self._require_agent(agent_id).with_score(trust_score, certified, certified_at)
        self._updated[agent_id] = agent
        return agent

    async def list_certified_agents(self, capability_filter: Optional[str] = None) -> list[Agent]:
        agent_ids = set(self._store._agents) | set(self._created)
        needle = capability_filter.casefold() if capability_filter else None
        matched = []
        for agent_id in agent_ids:
            agent = self._view_agent(agent_id)
            if not agent.certified:
                continue
            if needle is not None and not any(
                needle in cap.name.casefold() for cap in self._all_capabilities(agent_id)
            ):
                continue
            matched.append(agent)
        return sorted(matched, key=lambda a: (-a.trust_score, a.id))

    # -- capabilities --

    def _all_capabilities(self, agent_id: str) -> list[Capability]:
        merged = dict(self._store._capabilities.get(agent_id, {}))
        for (owner, name), cap in self._capabilities.items():
            if owner != agent_id:
                continue
            existing = merged.get(name)
            merged[name] = cap if existing is None else Capability(
                agent_id, name, cap.description, existing.declared_at)
        return list(merged.values())

    async def upsert_capability(self, agent_id: str, name: str,
                                description: str) -> Capability:
        self._check_writable()
        self._require_agent(agent_id)
        self._capabilities[(agent_id, name)] = Capability(agent_id, name, description, utcnow())
        return next(c for c in self._all_capabilities(agent_id) if c.name == name)

    async def list_capabilities(self, agent_id: str) -> list[Capability]:
        return sorted(self._all_capabilities(agent_id), key=lambda c: c.declared_at)

    # -- test results --

    async def append_test_result(self, agent_id: str, capability: str,
                                 outcome: TestOutcome, evidence: str) -> TestResult:
        self._check_writable()
        self._require_agent(agent_id)
        outcome = coerce_outcome(outcome)
        result = TestResult(
            id=next(self._store._result_ids),
            agent_id=agent_id,
            capability=capability,
            result=outcome,
            evidence=evidence,
            tested_at=utcnow(),
        )
        self._results.append(result)
        return result

    def _all_results(self, agent_id: str) -> list[TestResult]:
        own = [r for r in self._results if r.agent_id == agent_id]
        return self._store._results.get(agent_id, []) + own

    async def list_test_results(self, agent_id: str,
                                limit: Optional[int] = None) -> list[TestResult]:
        results = sorted(self._all_results(agent_id),
                         key=lambda r: (r.tested_at, r.id), reverse=True)
        return results[:limit] if limit is not None else results

    async def count_results(self, agent_id: str) -> ResultCounts:
        results = self._all_results(agent_id)
        passed = sum(1 for r in results if r.passed)
        return ResultCounts(passed=passed, failed=len(results) - passed)


def coerce_outcome(value) -> TestOutcome:
    try:
        return TestOutcome(value)
    except ValueError:
        raise ConstraintViolationError(f"Invalid test outcome: {value!r}") from None
