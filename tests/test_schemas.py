

import pytest
from pydantic import ValidationError

from leadscore.api.schemas.lead import (
    BatchScoringRequest,
    BatchScoringResponse,
    Lead,
    LeadScoringErrorItem,
)


class TestLead:
    """Tests for the lead schema."""

    def test_full_lead(self, sample_lead):
        """Complete lead should be accepted."""
        lead = Lead(**sample_lead)

        assert lead.id == "LEAD001"
        assert lead.num_past_interactions == 4
        assert lead.last_contacted.utcoffset().total_seconds() == 5.5 * 3600

    def test_minimal_lead_defaults(self, sparse_lead):
        """Only required fields; the rest take defaults."""
        lead = Lead(**sparse_lead)

        assert lead.email is None
        assert lead.num_past_interactions == 0
        assert lead.status == "new"
        assert lead.last_contacted is None

    def test_missing_phone(self, sparse_lead):
        """Missing phone should fail."""
        data = dict(sparse_lead)
        del data["phone"]
        with pytest.raises(ValidationError):
            Lead(**data)

    def test_unknown_status(self, sparse_lead):
        with pytest.raises(ValidationError):
            Lead(**{**sparse_lead, "status": "won"})

    def test_negative_interactions(self, sparse_lead):
        with pytest.raises(ValidationError):
            Lead(**{**sparse_lead, "num_past_interactions": -2})


class TestScoringResult:
    """Tests for the scoring result schema."""

    def test_score_bounds(self, make_result):
        with pytest.raises(ValidationError):
            make_result("LEAD1", score=101)

    def test_defaults_for_talking_points(self, make_result):
        result = make_result("LEAD1")

        assert result.scoring_method == "ai"
        assert result.text_message_points.key_points == []
        assert result.call_talking_points.closing == ""

    def test_serialization(self, make_result):
        data = make_result("LEAD1", score=64).model_dump(mode="json")

        assert data["lead_id"] == "LEAD1"
        assert data["score"] == 64
        assert data["best_contact_time"] == "2024-01-15T14:00:00"
        assert set(data["text_message_points"]) == {"key_points", "tone", "avoid_mentioning", "closing"}


class TestBatchScoringRequest:
    """Tests for the batch request schema."""

    def test_valid_batch(self, sample_lead, sparse_lead):
        request = BatchScoringRequest(tenant_id="tenant-1", leads=[sample_lead, sparse_lead])
        assert len(request.leads) == 2

    def test_empty_batch_rejected(self):
        with pytest.raises(ValidationError):
            BatchScoringRequest(tenant_id="tenant-1", leads=[])

    def test_foreign_lead_rejected(self, sample_lead, sparse_lead):
        """Every lead must belong to the requesting tenant."""
        with pytest.raises(ValidationError) as exc_info:
            BatchScoringRequest(
                tenant_id="tenant-1",
                leads=[sample_lead, {**sparse_lead, "tenant_id": "tenant-9"}]
            )

        assert "LEAD002" in str(exc_info.value)


class TestBatchScoringResponse:
    """Tests for the batch response schema."""

    def test_empty_response(self):
        response = BatchScoringResponse()

        assert response.results == []
        assert response.skipped == []

    def test_error_items(self):
        response = BatchScoringResponse(errors=[
            LeadScoringErrorItem(lead_id="LEAD3", error="bad score", error_type="MalformedResponse")
        ])

        assert response.errors[0].details is None
        assert response.model_dump()["errors"][0]["error_type"] == "MalformedResponse"
