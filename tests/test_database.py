"""Tests for PostgresStore connection handling, without a live server."""

import asyncpg
import pytest

from moltmark.database import SCHEMA_SQL, PostgresStore
from moltmark.errors import StorageUnavailableError


class FakeConnection:
    def __init__(self, error=None):
        self.error = error
        self.executed = []

    async def execute(self, sql):
        self.executed.append(sql)
        if self.error is not None:
            raise self.error


class _Acquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, *exc):
        return False


class FakePool:
    def __init__(self, conn):
        self.conn = conn
        self.closed = False

    def acquire(self, timeout=None):
        return _Acquire(self.conn)

    async def close(self):
        self.closed = True


class PoolFactory:
    def __init__(self):
        self.pools = []
        self.error = None

    async def __call__(self, dsn, **options):
        pool = FakePool(FakeConnection(self.error))
        self.pools.append(pool)
        return pool


@pytest.fixture
def fake_pools(monkeypatch):
    """Patch asyncpg.create_pool; records every pool it hands out."""
    factory = PoolFactory()
    monkeypatch.setattr(asyncpg, "create_pool", factory)
    return factory


class TestConnect:
    @pytest.mark.asyncio
    async def test_applies_schema_once(self, fake_pools):
        s = PostgresStore("postgresql://u:p@localhost/db")
        await s.connect()
        await s.connect()
        assert len(fake_pools.pools) == 1
        assert fake_pools.pools[0].conn.executed == [SCHEMA_SQL]
        await s.close()
        assert fake_pools.pools[0].closed is True

    @pytest.mark.asyncio
    async def test_failed_schema_bootstrap_releases_pool(self, fake_pools):
        fake_pools.error = asyncpg.exceptions.InsufficientPrivilegeError(
            "permission denied for schema public")
        s = PostgresStore("postgresql://u:p@localhost/db")

        with pytest.raises(StorageUnavailableError):
            await s.connect()
        assert s._pool is None
        assert fake_pools.pools[0].closed is True

        # a retry really retries instead of trusting the half-open pool
        with pytest.raises(StorageUnavailableError):
            await s.connect()
        assert len(fake_pools.pools) == 2
        assert fake_pools.pools[1].closed is True

    @pytest.mark.asyncio
    async def test_retry_after_failure_connects(self, fake_pools):
        fake_pools.error = asyncpg.exceptions.InsufficientPrivilegeError(
            "permission denied for schema public")
        s = PostgresStore("postgresql://u:p@localhost/db")
        with pytest.raises(StorageUnavailableError):
            await s.connect()

        fake_pools.error = None
        await s.connect()
        assert s._pool is fake_pools.pools[1]
        assert fake_pools.pools[1].closed is False

    @pytest.mark.asyncio
    async def test_unreachable_server(self, monkeypatch):
        async def refuse(dsn, **options):
            raise ConnectionRefusedError("connection refused")

        monkeypatch.setattr(asyncpg, "create_pool", refuse)
        s = PostgresStore("postgresql://u:p@localhost/db")
        with pytest.raises(StorageUnavailableError) as exc:
            await s.connect()
        assert exc.value.details == {"reason": "ConnectionRefusedError"}
        assert s._pool is None
