

from typing import Any, List, Optional


class LeadScoreError(Exception):
    """Base class for lead scoring errors carrying optional details."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ScoringFailure(LeadScoreError):
    """Scoring could not produce a result for a single lead."""
    pass


class ReasoningUnavailable(ScoringFailure):
    """The reasoning service errored on every attempt."""
    pass


class ReasoningTimeout(ScoringFailure):
    """The reasoning service did not answer within the deadline."""
    pass


class MalformedResponse(ScoringFailure):
    """The reasoning service answered with a structurally invalid payload."""
    pass


class PersistenceFailure(LeadScoreError):
    """Scoring results could not be written to the store."""

    def __init__(self, message: str, lead_ids: Optional[List[str]] = None, details: Optional[Any] = None):
        super().__init__(message, details=details)
        self.lead_ids = list(lead_ids or [])
