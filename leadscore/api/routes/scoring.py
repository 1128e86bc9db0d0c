

import logging
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from leadscore.api.schemas.lead import (
    BatchScoringRequest,
    BatchScoringResponse,
    ErrorResponse,
    Lead,
    ScoringResult,
)
from leadscore.config import get_settings
from leadscore.errors import (
    LeadScoreError,
    MalformedResponse,
    PersistenceFailure,
    ReasoningTimeout,
    ReasoningUnavailable,
)
from leadscore.services.lead_scorer import LeadScoringService
from leadscore.services.score_store import build_score_store
from reasoning.llm_client import LLMClient

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["Lead Scoring"])


STATUS_CODES = {
    MalformedResponse: 502,
    ReasoningUnavailable: 503,
    ReasoningTimeout: 504,
    PersistenceFailure: 500,
}


@lru_cache()
def get_scoring_service() -> LeadScoringService:
    """Build the scoring service from settings; without an LLM client it can only fall back."""
    settings = get_settings()

    try:
        llm_client = LLMClient(settings=settings)
        logger.info("Lead scoring service initialized with LLM client")
    except Exception as e:
        logger.warning(f"Could not initialize LLM client: {e}. Only fallback scoring is available.")
        llm_client = None

    return LeadScoringService(
        llm_client=llm_client,
        store=build_score_store(settings),
        tz_name=settings.contact_timezone,
        max_concurrency=settings.batch_max_concurrency,
    )


def _error_response(error: LeadScoreError) -> JSONResponse:
    status_code = STATUS_CODES.get(type(error), 500)
    details = error.details
    if isinstance(error, PersistenceFailure):
        details = {"unpersisted_lead_ids": error.lead_ids}
    payload = ErrorResponse(error=str(error), details=details)
    return JSONResponse(status_code=status_code, content=payload.model_dump(mode="json"))


def _internal_error(e: Exception) -> JSONResponse:
    payload = ErrorResponse(error=f"Internal error: {str(e)}")
    return JSONResponse(status_code=500, content=payload.model_dump(mode="json"))


def _allow_fallback(allow_fallback: Optional[bool]) -> bool:
    if allow_fallback is None:
        return get_settings().fallback_scoring_enabled
    return allow_fallback


@router.post(
    "/score",
    response_model=ScoringResult,
    responses={502: {"model": ErrorResponse}, 503: {"model": ErrorResponse}, 504: {"model": ErrorResponse}}
)
async def score_lead(
    lead: Lead,
    allow_fallback: Optional[bool] = Query(None, description="Use heuristic scoring if the LLM is unreachable"),
    service: LeadScoringService = Depends(get_scoring_service)
):
    """
    Score a single lead and store the result.

    Returns a 0-100 priority score, its tier, a recommended contact time
    between 06:00 and 20:00 at least two hours ahead, and outreach guidance.
    """
    try:
        return await service.score_and_persist(lead, allow_fallback=_allow_fallback(allow_fallback))
    except LeadScoreError as e:
        logger.error(f"Scoring lead {lead.id} failed: {e}")
        return _error_response(e)
    except Exception as e:
        logger.exception(f"Error scoring lead {lead.id}: {e}")
        return _internal_error(e)


@router.post(
    "/score-batch",
    response_model=BatchScoringResponse,
    responses={500: {"model": ErrorResponse}}
)
async def score_batch(
    request: BatchScoringRequest,
    allow_fallback: Optional[bool] = Query(None, description="Use heuristic scoring if the LLM is unreachable"),
    service: LeadScoringService = Depends(get_scoring_service)
):
    """
    Score a batch of leads for one tenant.

    Leads that already have a stored non-zero score are skipped. Per-lead
    failures are reported in ``errors``; only a failure to store the results
    fails the whole request.
    """
    try:
        already_scored = await service.find_already_scored(request.tenant_id, request.leads)
        batch = await service.score_batch(
            request.leads,
            already_scored=already_scored,
            allow_fallback=_allow_fallback(allow_fallback)
        )
    except LeadScoreError as e:
        logger.error(f"Batch scoring for tenant {request.tenant_id} failed: {e}")
        return _error_response(e)
    except Exception as e:
        logger.exception(f"Error batch scoring leads: {e}")
        return _internal_error(e)

    return BatchScoringResponse(
        results=batch.results,
        errors=batch.errors,
        skipped=batch.skipped,
        cancelled=batch.cancelled
    )


@router.get("/score/health")
async def scoring_health(service: LeadScoringService = Depends(get_scoring_service)):
    """Check health of the scoring service."""
    llm_available = False
    if service.llm_client:
        llm_available = await service.llm_client.health_check()

    return {
        "status": "healthy" if llm_available else "degraded",
        "llm_available": llm_available,
        "model": service.llm_client.model_name if service.llm_client else None,
        "fallback_enabled": get_settings().fallback_scoring_enabled
    }
