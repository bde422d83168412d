"""Shared fixtures: a connected in-memory store and a service over it."""
import os

import pytest
import pytest_asyncio

# Keep the app factory off PostgreSQL unless a test asks for it explicitly
os.environ.setdefault("MOLTMARK_STORE", "memory")
os.environ.setdefault("MOLTMARK_LOG_LEVEL", "WARNING")

from moltmark.service import CertificationService
from moltmark.store import MemoryStore


@pytest_asyncio.fixture
async def store():
    s = MemoryStore()
    await s.connect()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def service(store):
    return CertificationService(store)


@pytest.fixture
def report_many(service):
    """Report `passes` passing then `fails` failing results for one agent."""
    async def _report(agent_id, passes, fails, capability="code"):
        report = None
        for _ in range(passes):
            report = await service.report_test_result(agent_id, capability, "pass", "ok")
        for _ in range(fails):
            report = await service.report_test_result(agent_id, capability, "fail", "broken")
        return report
    return _report
