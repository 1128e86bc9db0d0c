

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    select,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from leadscore.api.schemas.lead import ScoringResult
from leadscore.config import Settings
from leadscore.errors import PersistenceFailure

logger = logging.getLogger(__name__)


class ScoreStore(ABC):
    """Persistence for scoring results, keyed on (tenant_id, lead_id)."""

    @abstractmethod
    async def upsert_many(self, results: List[ScoringResult]) -> None:
        """Insert or replace results; raises PersistenceFailure."""

    @abstractmethod
    async def get_existing(self, tenant_id: str, lead_id: str) -> Optional[ScoringResult]:
        """Return the current result for a lead, if any."""

    async def upsert(self, result: ScoringResult) -> None:
        await self.upsert_many([result])


class InMemoryScoreStore(ScoreStore):
    """Process-local store, used when no database is configured."""

    def __init__(self):
        self._rows: Dict[Tuple[str, str], ScoringResult] = {}

    async def upsert_many(self, results: List[ScoringResult]) -> None:
        for result in results:
            self._rows[(result.tenant_id, result.lead_id)] = result.model_copy(deep=True)

    async def get_existing(self, tenant_id: str, lead_id: str) -> Optional[ScoringResult]:
        return self._rows.get((tenant_id, lead_id))

    def __len__(self) -> int:
        return len(self._rows)


metadata = MetaData()

scoring_results = Table(
    "ai_scoring_results",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_id", String(255), nullable=False),
    Column("lead_id", String(255), nullable=False),
    Column("score", Integer, nullable=False),
    Column("tier", String(50), nullable=False),
    Column("reason", Text, nullable=False),
    Column("best_contact_time", DateTime(timezone=True), nullable=False),
    Column("suggested_actions", JSON, nullable=False),
    Column("text_message_points", JSON, nullable=False),
    Column("call_talking_points", JSON, nullable=False),
    Column("scoring_method", String(20), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("tenant_id", "lead_id", name="uq_ai_scoring_results_tenant_lead"),
)

UPSERT_KEY = ["tenant_id", "lead_id"]


class SQLScoreStore(ScoreStore):
    """SQLAlchemy store upserting on the (tenant_id, lead_id) unique key."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> "SQLScoreStore":
        return cls(create_async_engine(database_url, pool_pre_ping=True))

    async def create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    def _insert(self):
        if self.engine.dialect.name == "postgresql":
            return pg_insert(scoring_results)
        if self.engine.dialect.name == "sqlite":
            return sqlite_insert(scoring_results)
        raise PersistenceFailure(f"Unsupported database dialect: {self.engine.dialect.name}")

    @staticmethod
    def _to_row(result: ScoringResult, updated_at: datetime) -> dict:
        data = result.model_dump(mode="json")
        return {
            "tenant_id": result.tenant_id,
            "lead_id": result.lead_id,
            "score": result.score,
            "tier": result.tier,
            "reason": result.reason,
            "best_contact_time": result.best_contact_time,
            "suggested_actions": data["suggested_actions"],
            "text_message_points": data["text_message_points"],
            "call_talking_points": data["call_talking_points"],
            "scoring_method": result.scoring_method,
            "created_at": result.created_at,
            "updated_at": updated_at,
        }

    async def upsert_many(self, results: List[ScoringResult]) -> None:
        if not results:
            return

        updated_at = datetime.now(timezone.utc)
        # one row per key; a statement may not update the same row twice
        latest = {(result.tenant_id, result.lead_id): result for result in results}
        rows = [self._to_row(result, updated_at) for result in latest.values()]

        stmt = self._insert().values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=UPSERT_KEY,
            set_={
                name: stmt.excluded[name]
                for name in rows[0]
                if name not in UPSERT_KEY
            },
        )

        try:
            async with self.engine.begin() as conn:
                await conn.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"Upsert of {len(rows)} scoring results failed: {e}")
            raise PersistenceFailure(
                f"Failed to upsert scoring results: {e}",
                lead_ids=[result.lead_id for result in results]
            ) from e

    async def get_existing(self, tenant_id: str, lead_id: str) -> Optional[ScoringResult]:
        query = select(scoring_results).where(
            scoring_results.c.tenant_id == tenant_id,
            scoring_results.c.lead_id == lead_id,
        )
        try:
            async with self.engine.connect() as conn:
                row = (await conn.execute(query)).mappings().first()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Failed to read scoring result: {e}", lead_ids=[lead_id]) from e

        if row is None:
            return None
        return ScoringResult(
            lead_id=row["lead_id"],
            tenant_id=row["tenant_id"],
            score=row["score"],
            tier=row["tier"],
            reason=row["reason"],
            best_contact_time=row["best_contact_time"],
            suggested_actions=row["suggested_actions"],
            text_message_points=row["text_message_points"],
            call_talking_points=row["call_talking_points"],
            scoring_method=row["scoring_method"],
            created_at=row["created_at"],
        )


def build_score_store(settings: Settings) -> ScoreStore:
    """SQL store when a database URL is configured, in-memory otherwise."""
    if settings.database_url:
        logger.info("Using SQL score store")
        return SQLScoreStore.from_url(settings.database_url)
    logger.info("No database_url configured, using in-memory score store")
    return InMemoryScoreStore()
