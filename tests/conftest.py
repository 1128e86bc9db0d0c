

import asyncio
import json
from datetime import datetime
from typing import Any, Callable, List, Optional

import pytest
import sys
import os

from langchain_core.messages import AIMessage


sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from leadscore.api.schemas.lead import Lead, ScoringResult
from leadscore.errors import PersistenceFailure
from leadscore.services.score_store import InMemoryScoreStore
from reasoning.llm_client import LLMClient, RetryPolicy


FAST_POLICY = RetryPolicy(
    max_attempts=3,
    attempt_timeout=1.0,
    deadline=5.0,
    backoff_min=0,
    backoff_max=0
)


class FakeChatModel:
    """Stands in for a LangChain chat model.

    Each response is a string, an exception to raise, or a callable taking
    the messages. The last response repeats once the list is exhausted.
    """

    def __init__(self, responses: List[Any], delay: float = 0.0, on_call: Optional[Callable] = None):
        self.responses = list(responses)
        self.delay = delay
        self.on_call = on_call
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def ainvoke(self, messages):
        self.calls.append(messages)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_call:
                self.on_call(messages)
            if self.delay:
                await asyncio.sleep(self.delay)
            response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
            if callable(response):
                response = response(messages)
            if isinstance(response, BaseException):
                raise response
            return AIMessage(content=response)
        finally:
            self.in_flight -= 1


class FailingStore(InMemoryScoreStore):
    """Store whose writes always fail."""

    async def upsert_many(self, results):
        raise PersistenceFailure("database is down", lead_ids=[r.lead_id for r in results])


@pytest.fixture
def now():
    """Reference-timezone wall clock used across tests."""
    return datetime(2024, 1, 15, 10, 0)


@pytest.fixture
def sample_lead():
    """Sample lead with a complete profile."""
    return {
        "id": "LEAD001",
        "tenant_id": "tenant-1",
        "name": "Priya Sharma",
        "phone": "9876543210",
        "email": "priya.sharma@example.com",
        "address": "12 MG Road, Indiranagar",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560038",
        "product_interested": "Home Loan",
        "income_level": "150000",
        "employment": "Business Owner",
        "loan_amount": "5000000",
        "lead_source": "Referral",
        "contact_method": "Phone",
        "num_past_interactions": 4,
        "last_contacted": "2024-01-10T11:00:00+05:30",
        "status": "contacted",
        "short_notes": "Interested in a top-up loan"
    }


@pytest.fixture
def sparse_lead():
    """Sample lead with only the required fields."""
    return {
        "id": "LEAD002",
        "tenant_id": "tenant-1",
        "name": "Vikram Singh",
        "phone": "9000000001",
        "product_interested": "Insurance",
        "lead_source": "Cold Call"
    }


@pytest.fixture
def valid_payload():
    """A well-formed reasoning response."""
    return {
        "score": 72.4,
        "reason": "Income of ₹1,50,000 as a business owner, four positive interactions and complete contact details.",
        "bestContactTime": "2024-01-15 18:00",
        "suggestedActions": [
            "Call to discuss top-up eligibility",
            "Share the current home loan rates",
            "Schedule a document pickup"
        ],
        "textMessagePoints": {
            "keyPoints": ["Top-up at a lower rate", "Quick disbursal in Bengaluru"],
            "tone": "professional",
            "avoidMentioning": ["competitor offers"],
            "closing": "Reply YES to get a callback today."
        },
        "callTalkingPoints": {
            "opening": "Hello Priya, this is Rahul from the loans team.",
            "keyTopics": ["Current loan balance", "Top-up amount"],
            "objectionHandling": ["We can match your current EMI date."],
            "closing": "I will send the checklist on WhatsApp right away."
        }
    }


@pytest.fixture
def make_llm_client():
    """Factory for an LLMClient backed by a fake chat model."""
    def _make(responses, policy=FAST_POLICY, **kwargs):
        fake = FakeChatModel(responses, **kwargs)
        client = LLMClient(chat_model=fake, policy=policy, model_name="fake-model")
        return client, fake
    return _make


@pytest.fixture
def make_result(now):
    """Factory for stored ScoringResults."""
    def _make(lead_id: str, score: int = 55, tenant_id: str = "tenant-1") -> ScoringResult:
        return ScoringResult(
            lead_id=lead_id,
            tenant_id=tenant_id,
            score=score,
            tier="Medium Priority",
            reason="Stored result",
            best_contact_time=datetime(2024, 1, 15, 14, 0),
            suggested_actions=["a", "b", "c"],
            created_at=now
        )
    return _make


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture
def payload_json(valid_payload):
    """Serialize a payload, optionally with overrides or removed keys."""
    def _dump(remove=(), **overrides):
        data = {**valid_payload, **overrides}
        for key in remove:
            data.pop(key, None)
        return json.dumps(data)
    return _dump
