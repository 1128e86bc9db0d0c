

from datetime import datetime
from typing import Any

from leadscore.api.schemas.lead import Lead


NOT_PROVIDED = "Not provided"
NEVER_CONTACTED = "Never"
LOCAL_TIME = "local time"


LEAD_SCORING_SYSTEM_PROMPT = """You are an expert lead scoring analyst specializing in financial services in India. Your job is to score leads for sales agents and give them concrete, personalized outreach guidance.

Be objective and consistent. Consider:
- Financial capacity: income level and employment type
- Engagement history and responsiveness
- Completeness and quality of the contact information
- Product interest and source reliability

Best contact times are always in the timezone of the current time given with the lead, between 6:00 AM and 8:00 PM, and at least 2 hours after the current time.

Always respond with valid JSON matching the requested format."""


LEAD_SCORING_PROMPT = """Analyze this lead and provide a priority score with outreach recommendations.

Lead Information:
Name: {name}
Product Interested: {product_interested}
Phone: {phone}
Email: {email}
Address: {address}
City: {city}
State: {state}
Pincode: {pincode}
Income Level: {income_level}
Employment: {employment}
Loan Amount: {loan_amount}
Lead Source: {lead_source}
Last Contacted: {last_contacted}
Contact Method: {contact_method}
Past Interactions: {num_past_interactions}
Status: {status}
Notes: {short_notes}

Current Time: {now}

1. Score the lead from 0 to 100 using this rubric:
   - Financial capacity (~50 points), based on monthly income:
     * ₹1,00,000 and above: 40-50 points
     * ₹25,000 - ₹99,999: 30-40 points
     * Below ₹25,000: 20-35 points
     * Adjust for employment type: business owner > salaried > self-employed > other
   - Engagement history (~20 points):
     * Multiple positive interactions: 15-20 points
     * Some engagement: 8-14 points
     * No engagement: 0-7 points
   - Contact and information completeness (~20 points):
     * Complete contact details (phone, email and address): 15-20 points
     * Partial information: 8-14 points
     * Minimal information: 0-7 points
   The final score is a blended judgment across these factors, not a literal sum.

2. Best time to contact ({timezone}):
   - Must be between 06:00 and 20:00
   - Must be at least 2 hours after the current time
   - Format: "YYYY-MM-DD HH:mm" (24-hour)
   - Business owners: 10:00 - 12:00; salaried professionals: 18:00 - 20:00; others: 14:00 - 16:00

3. A reason for the score that covers income, employment, engagement history and information completeness.

4. 3-5 specific recommended actions for this lead.

5. Text message points: 2-4 personalized, action-oriented message points, a suggested tone, topics to avoid and a closing line.

6. Call talking points: an opening, key topics, objection handling phrases and a closing.

Respond in this exact JSON format:
{{
    "score": <number 0-100>,
    "reason": "<explanation>",
    "bestContactTime": "<YYYY-MM-DD HH:mm>",
    "suggestedActions": ["action1", "action2", "action3"],
    "textMessagePoints": {{
        "keyPoints": ["point1", "point2"],
        "tone": "<friendly/professional/helpful>",
        "avoidMentioning": ["topic1"],
        "closing": "<closing line>"
    }},
    "callTalkingPoints": {{
        "opening": "<opening line>",
        "keyTopics": ["topic1", "topic2"],
        "objectionHandling": ["response1", "response2"],
        "closing": "<closing line>"
    }}
}}
"""


def _field(value: Any, placeholder: str = NOT_PROVIDED) -> str:
    if value is None:
        return placeholder
    text = str(value).strip()
    return text or placeholder


def build_scoring_prompt(lead: Lead, now: datetime) -> str:
    """
    Render the scoring prompt for a lead.

    Every lead field is restated; missing values are replaced by a
    placeholder so the model never has to guess whether a field exists.
    """
    last_contacted = lead.last_contacted.isoformat() if lead.last_contacted else NEVER_CONTACTED

    return LEAD_SCORING_PROMPT.format(
        name=_field(lead.name),
        product_interested=_field(lead.product_interested),
        phone=_field(lead.phone),
        email=_field(lead.email),
        address=_field(lead.address),
        city=_field(lead.city),
        state=_field(lead.state),
        pincode=_field(lead.pincode),
        income_level=_field(lead.income_level),
        employment=_field(lead.employment),
        loan_amount=_field(lead.loan_amount),
        lead_source=_field(lead.lead_source),
        last_contacted=last_contacted,
        contact_method=_field(lead.contact_method),
        num_past_interactions=lead.num_past_interactions,
        status=lead.status,
        short_notes=_field(lead.short_notes),
        now=now.strftime("%Y-%m-%d %H:%M %Z").strip(),
        timezone=now.tzname() or LOCAL_TIME,
    )
