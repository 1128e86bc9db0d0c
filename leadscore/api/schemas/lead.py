

from datetime import datetime
from typing import Optional, List, Literal, Any

from pydantic import BaseModel, Field, model_validator


PriorityTier = Literal[
    "Very High Priority",
    "High Priority",
    "Medium Priority",
    "Low Priority",
    "Very Low Priority",
]


class Lead(BaseModel):
    """A prospective customer record as stored by the lead store."""

    id: str = Field(..., description="Lead identifier, unique per tenant")
    tenant_id: str = Field(..., description="Owner of the lead")

    name: str = Field(..., description="Full name")
    phone: str = Field(..., description="Contact phone number")
    email: Optional[str] = Field(None, description="Email address")
    address: Optional[str] = Field(None, description="Street address")
    city: Optional[str] = Field(None, description="City")
    state: Optional[str] = Field(None, description="State")
    pincode: Optional[str] = Field(None, description="Postal code")

    product_interested: str = Field(..., description="Financial product the lead asked about")
    income_level: Optional[str] = Field(None, description="Monthly income, free text or amount in INR")
    employment: Optional[str] = Field(None, description="Employment type: salaried, self-employed, business owner, etc.")
    loan_amount: Optional[str] = Field(None, description="Requested loan amount")

    lead_source: str = Field(..., description="Where the lead came from")
    contact_method: Optional[str] = Field(None, description="Preferred contact method")
    num_past_interactions: int = Field(0, ge=0, description="Number of past interactions")
    last_contacted: Optional[datetime] = Field(None, description="When the lead was last contacted")
    status: Literal["new", "contacted", "dropped"] = Field("new", description="Lead status")
    short_notes: Optional[str] = Field(None, description="Free text notes about the lead")


class TextMessagePoints(BaseModel):
    """Talking points for a text or WhatsApp message."""

    key_points: List[str] = Field(default_factory=list)
    tone: str = ""
    avoid_mentioning: List[str] = Field(default_factory=list)
    closing: str = ""


class CallTalkingPoints(BaseModel):
    """Talking points for a phone call."""

    opening: str = ""
    key_topics: List[str] = Field(default_factory=list)
    objection_handling: List[str] = Field(default_factory=list)
    closing: str = ""


class ScoringResult(BaseModel):
    """Scoring output for a single lead."""

    lead_id: str = Field(..., description="Lead identifier")
    tenant_id: str = Field(..., description="Tenant owning the lead")
    score: int = Field(..., ge=0, le=100, description="Priority score between 0 and 100")
    tier: PriorityTier = Field(..., description="Priority tier derived from the score")
    reason: str = Field(..., min_length=1, description="Explanation of the score")
    best_contact_time: datetime = Field(..., description="Recommended contact time in the reference timezone")
    suggested_actions: List[str] = Field(..., min_length=3, max_length=5, description="Recommended next actions")
    text_message_points: TextMessagePoints = Field(default_factory=TextMessagePoints)
    call_talking_points: CallTalkingPoints = Field(default_factory=CallTalkingPoints)
    scoring_method: Literal["ai", "fallback"] = Field("ai", description="How the score was produced")
    created_at: datetime = Field(..., description="When the result was generated")


class BatchScoringRequest(BaseModel):
    """Request body for the batch scoring endpoint."""

    tenant_id: str = Field(..., description="Tenant whose leads are scored")
    leads: List[Lead] = Field(..., min_length=1, description="Leads to score")

    @model_validator(mode="after")
    def _leads_belong_to_tenant(self) -> "BatchScoringRequest":
        foreign = [lead.id for lead in self.leads if lead.tenant_id != self.tenant_id]
        if foreign:
            raise ValueError(f"Leads do not belong to tenant {self.tenant_id}: {', '.join(foreign)}")
        return self


class LeadScoringErrorItem(BaseModel):
    """A per-lead failure inside a batch."""

    lead_id: str
    error: str
    error_type: str
    details: Optional[Any] = None


class BatchScoringResponse(BaseModel):
    """Response body for the batch scoring endpoint."""

    results: List[ScoringResult] = Field(default_factory=list, description="Successfully scored leads")
    errors: List[LeadScoringErrorItem] = Field(default_factory=list, description="Leads that failed scoring")
    skipped: List[str] = Field(default_factory=list, description="Leads skipped because they were already scored")
    cancelled: List[str] = Field(default_factory=list, description="Leads not started because the batch was cancelled")


class ErrorResponse(BaseModel):
    """Error payload returned by the API."""

    error: str
    details: Optional[Any] = None
