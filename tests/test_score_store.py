

import pytest

from leadscore.config import Settings
from leadscore.services.score_store import (
    InMemoryScoreStore,
    SQLScoreStore,
    build_score_store,
)


class TestInMemoryScoreStore:
    """Tests for the in-memory store."""

    @pytest.mark.asyncio
    async def test_upsert_overwrites_same_lead(self, make_result):
        store = InMemoryScoreStore()

        await store.upsert(make_result("LEAD1", score=40))
        await store.upsert(make_result("LEAD1", score=75))

        assert len(store) == 1
        assert (await store.get_existing("tenant-1", "LEAD1")).score == 75

    @pytest.mark.asyncio
    async def test_keyed_by_tenant_and_lead(self, make_result):
        store = InMemoryScoreStore()

        await store.upsert_many([
            make_result("LEAD1", tenant_id="tenant-1"),
            make_result("LEAD1", tenant_id="tenant-2"),
        ])

        assert len(store) == 2
        assert await store.get_existing("tenant-3", "LEAD1") is None


class TestSQLScoreStore:
    """Tests for the SQLAlchemy store against SQLite."""

    @pytest.mark.asyncio
    async def test_upsert_and_read_back(self, make_result, tmp_path):
        store = SQLScoreStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'scores.db'}")
        await store.create_tables()

        try:
            await store.upsert_many([make_result("LEAD1", score=40), make_result("LEAD2", score=60)])
            await store.upsert(make_result("LEAD1", score=90))

            first = await store.get_existing("tenant-1", "LEAD1")
            second = await store.get_existing("tenant-1", "LEAD2")

            assert first.score == 90
            assert first.suggested_actions == ["a", "b", "c"]
            assert first.call_talking_points.opening == ""
            assert second.score == 60
            assert await store.get_existing("tenant-1", "LEAD3") is None
        finally:
            await store.engine.dispose()

    @pytest.mark.asyncio
    async def test_repeated_key_in_one_upsert_keeps_last(self, make_result, tmp_path):
        store = SQLScoreStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'scores.db'}")
        await store.create_tables()

        try:
            await store.upsert_many([make_result("LEAD1", score=40), make_result("LEAD1", score=80)])

            assert (await store.get_existing("tenant-1", "LEAD1")).score == 80
        finally:
            await store.engine.dispose()

    @pytest.mark.asyncio
    async def test_empty_upsert_is_noop(self, tmp_path):
        store = SQLScoreStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'scores.db'}")
        await store.create_tables()

        try:
            await store.upsert_many([])
        finally:
            await store.engine.dispose()


class TestBuildScoreStore:
    """Tests for store selection from settings."""

    def test_in_memory_without_database(self):
        assert isinstance(build_score_store(Settings(database_url=None)), InMemoryScoreStore)

    def test_sql_with_database(self, tmp_path):
        store = build_score_store(Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'x.db'}"))
        assert isinstance(store, SQLScoreStore)
