

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Collection, List, Optional, Set
from zoneinfo import ZoneInfo

from leadscore.api.schemas.lead import (
    Lead,
    LeadScoringErrorItem,
    ScoringResult,
)
from leadscore.errors import (
    PersistenceFailure,
    ReasoningTimeout,
    ReasoningUnavailable,
    ScoringFailure,
)
from leadscore.services.result_validator import (
    MIN_LEAD_TIME,
    repair_contact_time,
    tier_for_score,
    to_reference_time,
    validate_and_repair,
)
from leadscore.services.score_store import ScoreStore
from reasoning.llm_client import LLMClient
from reasoning.prompts import build_scoring_prompt

logger = logging.getLogger(__name__)


FALLBACK_REASON = "Basic scoring applied due to AI service unavailability. Manual review recommended."


class FallbackScorer:
    """Deterministic scorer used when the reasoning service is unreachable."""

    BASE_SCORE = 30

    FIELD_WEIGHTS = {
        "income_level": 20,
        "email": 10,
        "employment": 15,
        "loan_amount": 15,
        "city": 10,
    }

    def calculate_score(self, lead: Lead) -> int:
        """Base score plus a fixed bonus for each filled-in profile field."""
        score = self.BASE_SCORE
        for field_name, weight in self.FIELD_WEIGHTS.items():
            value = getattr(lead, field_name)
            if value is not None and str(value).strip():
                score += weight
        return min(score, 100)

    def preferred_contact_hour(self, employment: Optional[str]) -> int:
        """Business owners in the morning, salaried in the evening, others after lunch."""
        employment = (employment or "").lower()
        if "business" in employment:
            return 10
        if "salaried" in employment:
            return 18
        return 14

    def contact_time(self, lead: Lead, now: datetime) -> datetime:
        """First preferred slot strictly after now + 2h, kept inside the contact window."""
        wall_now = now.replace(tzinfo=None)
        hour = self.preferred_contact_hour(lead.employment)

        candidate = wall_now.replace(hour=hour, minute=0, second=0, microsecond=0)
        if candidate <= wall_now + MIN_LEAD_TIME:
            candidate += timedelta(days=1)

        return repair_contact_time(candidate, wall_now).replace(tzinfo=now.tzinfo)

    def score(self, lead: Lead, now: datetime) -> ScoringResult:
        """Build a complete ScoringResult without the reasoning service."""
        score = self.calculate_score(lead)
        product = lead.product_interested or "the product"

        return ScoringResult(
            lead_id=lead.id,
            tenant_id=lead.tenant_id,
            score=score,
            tier=tier_for_score(score),
            reason=FALLBACK_REASON,
            best_contact_time=self.contact_time(lead, now),
            suggested_actions=[
                "Review the lead profile manually",
                "Call to confirm income and employment details",
                f"Send a WhatsApp introduction about {product}",
            ],
            scoring_method="fallback",
            created_at=now,
        )


@dataclass
class BatchScoringResult:
    """Outcome of a batch scoring run."""

    results: List[ScoringResult] = field(default_factory=list)
    errors: List[LeadScoringErrorItem] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)


class LeadScoringService:
    """Runs the prompt -> reasoning -> validation pipeline for one or many leads."""

    def __init__(
        self,
        llm_client: Optional[LLMClient],
        store: ScoreStore,
        tz_name: str = "Asia/Kolkata",
        max_concurrency: int = 3,
        fallback_scorer: Optional[FallbackScorer] = None,
    ):
        """Initialize the service with its collaborators."""
        self.llm_client = llm_client
        self.store = store
        self.tz = ZoneInfo(tz_name)
        self.max_concurrency = max(1, max_concurrency)
        self.fallback_scorer = fallback_scorer or FallbackScorer()

    def _local_now(self, now: Optional[datetime]) -> datetime:
        return to_reference_time(now or datetime.now(timezone.utc), self.tz)

    async def score_lead(
        self,
        lead: Lead,
        now: Optional[datetime] = None,
        allow_fallback: bool = False
    ) -> ScoringResult:
        """
        Score a single lead.

        Raises ReasoningUnavailable/ReasoningTimeout unless fallback is
        allowed, and MalformedResponse when the response fails validation.
        """
        local_now = self._local_now(now)

        try:
            if self.llm_client is None:
                raise ReasoningUnavailable("Reasoning service is not configured")
            prompt = build_scoring_prompt(lead, local_now)
            raw = await self.llm_client.invoke(prompt)
        except (ReasoningUnavailable, ReasoningTimeout) as e:
            if not allow_fallback:
                raise
            logger.warning(f"Lead {lead.id}: reasoning failed, falling back to heuristic scoring: {e}")
            return self.fallback_scorer.score(lead, local_now)

        result = validate_and_repair(raw, local_now, lead.id, lead.tenant_id, self.tz)
        logger.info(f"Lead {lead.id} scored: score={result.score}, tier={result.tier}")
        return result

    async def score_and_persist(
        self,
        lead: Lead,
        now: Optional[datetime] = None,
        allow_fallback: bool = False
    ) -> ScoringResult:
        """Score a single lead and upsert the result."""
        result = await self.score_lead(lead, now=now, allow_fallback=allow_fallback)
        await self.store.upsert(result)
        return result

    async def find_already_scored(self, tenant_id: str, leads: Collection[Lead]) -> Set[str]:
        """Ids of leads that already have a non-zero stored score."""
        scored = set()
        for lead in leads:
            existing = await self.store.get_existing(tenant_id, lead.id)
            if existing is not None and existing.score:
                scored.add(lead.id)
        return scored

    async def score_batch(
        self,
        leads: List[Lead],
        now: Optional[datetime] = None,
        already_scored: Collection[str] = (),
        cancel_event: Optional[asyncio.Event] = None,
        allow_fallback: bool = False,
    ) -> BatchScoringResult:
        """
        Score many leads with a bounded number of concurrent reasoning calls.

        A lead id repeated in the batch is scored once; later copies are
        reported as skipped.

        Per-lead scoring failures are collected, never raised. Successful
        results are persisted with a single upsert; a failure there raises
        PersistenceFailure naming the leads that were scored but not stored.
        """
        local_now = self._local_now(now)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        batch = BatchScoringResult()
        already_scored = set(already_scored)

        async def run(lead: Lead) -> None:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    batch.cancelled.append(lead.id)
                    return
                try:
                    result = await self.score_lead(lead, now=local_now, allow_fallback=allow_fallback)
                except ScoringFailure as e:
                    logger.warning(f"Failed to score lead {lead.id}: {e}")
                    batch.errors.append(LeadScoringErrorItem(
                        lead_id=lead.id,
                        error=str(e),
                        error_type=type(e).__name__,
                        details=e.details
                    ))
                    return
                batch.results.append(result)

        pending = []
        seen = set()
        for lead in leads:
            if lead.id in already_scored or lead.id in seen:
                batch.skipped.append(lead.id)
                continue
            seen.add(lead.id)
            pending.append(run(lead))

        await asyncio.gather(*pending)

        logger.info(
            f"Batch scored: {len(batch.results)} succeeded, {len(batch.errors)} failed, "
            f"{len(batch.skipped)} skipped, {len(batch.cancelled)} cancelled"
        )

        if batch.results:
            try:
                await self.store.upsert_many(batch.results)
            except PersistenceFailure as e:
                unpersisted = [result.lead_id for result in batch.results]
                logger.error(f"Failed to persist batch results for leads {unpersisted}: {e}")
                raise PersistenceFailure(
                    f"Scored {len(unpersisted)} leads but could not persist the results: {e}",
                    lead_ids=unpersisted,
                    details=e.details
                ) from e

        return batch
