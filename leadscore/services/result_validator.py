

import json
import math
import re
import logging
from datetime import datetime, timedelta, tzinfo
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from leadscore.api.schemas.lead import (
    CallTalkingPoints,
    ScoringResult,
    TextMessagePoints,
)
from leadscore.errors import MalformedResponse

logger = logging.getLogger(__name__)


CONTACT_TIME_FORMAT = "%Y-%m-%d %H:%M"
CONTACT_WINDOW_START_HOUR = 6
CONTACT_WINDOW_END_HOUR = 20
MIN_LEAD_TIME = timedelta(hours=2)
KEY_POINTS_MIN = 2
KEY_POINTS_MAX = 4

TIER_BANDS = [
    (81, "Very High Priority"),
    (61, "High Priority"),
    (41, "Medium Priority"),
    (21, "Low Priority"),
    (0, "Very Low Priority"),
]


def tier_for_score(score: int) -> str:
    """Map a 0-100 score to its priority tier."""
    for floor, tier in TIER_BANDS:
        if score >= floor:
            return tier
    return TIER_BANDS[-1][1]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def to_reference_time(value: datetime, tz: tzinfo) -> datetime:
    """Express a timestamp in the reference timezone; naive values are taken as already local."""
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def _strings(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _string(value: Any) -> str:
    return value if isinstance(value, str) else ""


def soften_text_message_points(value: Any) -> TextMessagePoints:
    """
    Coerce a possibly malformed textMessagePoints object into a well-shaped one.

    Key points are cut to four; fewer than two are dropped.
    """
    if not isinstance(value, dict):
        return TextMessagePoints()
    key_points = _strings(value.get("keyPoints"))
    if len(key_points) < KEY_POINTS_MIN:
        key_points = []
    return TextMessagePoints(
        key_points=key_points[:KEY_POINTS_MAX],
        tone=_string(value.get("tone")),
        avoid_mentioning=_strings(value.get("avoidMentioning")),
        closing=_string(value.get("closing")),
    )


def soften_call_talking_points(value: Any) -> CallTalkingPoints:
    """Coerce a possibly malformed callTalkingPoints object into a well-shaped one."""
    if not isinstance(value, dict):
        return CallTalkingPoints()
    return CallTalkingPoints(
        opening=_string(value.get("opening")),
        key_topics=_strings(value.get("keyTopics")),
        objection_handling=_strings(value.get("objectionHandling")),
        closing=_string(value.get("closing")),
    )


class ScoringPayload(BaseModel):
    """Schema of the JSON object returned by the reasoning service."""

    model_config = ConfigDict(extra="ignore")

    score: float = Field(..., ge=0, le=100)
    reason: str = Field(..., min_length=1)
    best_contact_time: str = Field(..., alias="bestContactTime")
    suggested_actions: List[str] = Field(..., alias="suggestedActions", min_length=3, max_length=5)
    text_message_points: TextMessagePoints = Field(default_factory=TextMessagePoints, alias="textMessagePoints")
    call_talking_points: CallTalkingPoints = Field(default_factory=CallTalkingPoints, alias="callTalkingPoints")

    @field_validator("score", mode="before")
    @classmethod
    def _score_is_number(cls, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("score must be a number")
        if not math.isfinite(value):
            raise ValueError("score must be finite")
        return value

    @field_validator("reason")
    @classmethod
    def _reason_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reason must not be blank")
        return value

    @field_validator("best_contact_time")
    @classmethod
    def _contact_time_format(cls, value: str) -> str:
        if not re.fullmatch(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}", value):
            raise ValueError("bestContactTime must match YYYY-MM-DD HH:mm")
        datetime.strptime(value, CONTACT_TIME_FORMAT)
        return value

    @field_validator("suggested_actions")
    @classmethod
    def _actions_not_blank(cls, value: List[str]) -> List[str]:
        if any(not action.strip() for action in value):
            raise ValueError("suggestedActions must not contain blank entries")
        return value

    @field_validator("text_message_points", mode="before")
    @classmethod
    def _soften_text_points(cls, value: Any) -> TextMessagePoints:
        return soften_text_message_points(value)

    @field_validator("call_talking_points", mode="before")
    @classmethod
    def _soften_call_points(cls, value: Any) -> CallTalkingPoints:
        return soften_call_talking_points(value)

    @property
    def contact_time(self) -> datetime:
        return datetime.strptime(self.best_contact_time, CONTACT_TIME_FORMAT)


def parse_json_object(content: str) -> Dict[str, Any]:
    """Parse a JSON object from a reasoning response, tolerating a fenced code block."""
    if not isinstance(content, str) or not content.strip():
        raise MalformedResponse("Empty response from reasoning service")

    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        fenced = re.search(r'```(?:json)?\s*([\s\S]*?)\s*```', content)
        if not fenced:
            raise MalformedResponse(
                "Could not parse JSON from reasoning response",
                details={"content": content[:200]}
            )
        try:
            data = json.loads(fenced.group(1))
        except json.JSONDecodeError:
            raise MalformedResponse(
                "Could not parse JSON from reasoning response",
                details={"content": content[:200]}
            )

    if not isinstance(data, dict):
        raise MalformedResponse("Reasoning response is not a JSON object")
    return data


def parse_scoring_payload(content: str) -> ScoringPayload:
    """Parse and validate the hard-required fields of a reasoning response."""
    data = parse_json_object(content)
    try:
        return ScoringPayload.model_validate(data)
    except ValidationError as e:
        problems = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in e.errors()
        ]
        raise MalformedResponse("Invalid scoring response from reasoning service", details=problems)


def clamp_to_contact_window(value: datetime) -> datetime:
    """Move a time outside 06:00-20:00 to 06:00 of the same or next day."""
    if value.hour < CONTACT_WINDOW_START_HOUR:
        return value.replace(hour=CONTACT_WINDOW_START_HOUR, minute=0, second=0, microsecond=0)
    if value.hour >= CONTACT_WINDOW_END_HOUR:
        next_day = value + timedelta(days=1)
        return next_day.replace(hour=CONTACT_WINDOW_START_HOUR, minute=0, second=0, microsecond=0)
    return value


def repair_contact_time(candidate: datetime, now: datetime) -> datetime:
    """
    Push a suggested contact time into the future and into the contact window.

    Both arguments are wall-clock times in the same timezone. A time not
    strictly after now + 2h becomes the next whole hour after that bound.
    The window check then runs on the result regardless.
    """
    min_future = now + MIN_LEAD_TIME

    if candidate <= min_future:
        candidate = min_future.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
        candidate = clamp_to_contact_window(candidate)

    return clamp_to_contact_window(candidate)


def validate_and_repair(
    raw: str,
    now: datetime,
    lead_id: str,
    tenant_id: str,
    tz: Optional[tzinfo] = None,
) -> ScoringResult:
    """
    Turn a raw reasoning response into a ScoringResult.

    Hard-required fields are validated and rejected with MalformedResponse;
    the contact time is repaired and the nested talking points are softened.
    """
    payload = parse_scoring_payload(raw)

    local_now = to_reference_time(now, tz) if tz is not None else now
    wall_now = local_now.replace(tzinfo=None)

    suggested = payload.contact_time
    repaired = repair_contact_time(suggested, wall_now)
    if repaired != suggested:
        logger.info(
            f"Lead {lead_id}: repaired contact time {payload.best_contact_time} -> "
            f"{repaired.strftime(CONTACT_TIME_FORMAT)}"
        )

    score = round_half_up(payload.score)

    return ScoringResult(
        lead_id=lead_id,
        tenant_id=tenant_id,
        score=score,
        tier=tier_for_score(score),
        reason=payload.reason,
        best_contact_time=repaired.replace(tzinfo=local_now.tzinfo),
        suggested_actions=payload.suggested_actions,
        text_message_points=payload.text_message_points,
        call_talking_points=payload.call_talking_points,
        scoring_method="ai",
        created_at=local_now,
    )
