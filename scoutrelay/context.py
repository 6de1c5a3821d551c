"""
Context assembly for coach requests.

Builds the upstream `contents` list in a fixed order:
  1. system instruction (persona, safety rules, scout facts, knowledge base)
  2. a canned model acknowledgement that establishes the persona
  3. up to HISTORY_LIMIT prior turns, role-mapped user->user, assistant->model
  4. the new user message

Scout facts are always computed server-side from the data store
(see ScoutFacts.from_records); nothing in them comes from the request body.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from scoutrelay.errors import InvalidInput
from scoutrelay.knowledge import KNOWLEDGE_BASE

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20
CHAT_MESSAGE_CAP = 2000
FEEDBACK_MESSAGE_CAP = 5000

SIGNED_STATUSES = ("Signed", "In Process", "Placed")

ACKNOWLEDGEMENT = (
    "Understood. I am the Warubi Scout Coach. I will help this scout with their "
    "questions about scouting, recruiting, and Athletes USA."
)


@dataclass
class ScoutFacts:
    """Dynamic facts interpolated into the system instruction."""
    full_name: str = ""
    days_since_join: int = 0
    total_leads: int = 0
    signed_leads: int = 0
    placed_leads: int = 0
    total_commission: float = 0.0
    paid_commission: float = 0.0
    profile_complete: bool = False
    is_verified: bool = False

    @classmethod
    def from_records(
        cls,
        scout: dict | None,
        leads: list[dict] | None,
        commissions: list[dict] | None,
        now: datetime | None = None,
    ) -> "ScoutFacts":
        """Aggregate raw store rows. Missing data yields neutral values."""
        scout = scout or {}
        leads = leads or []
        commissions = commissions or []
        now = now or datetime.now(timezone.utc)

        days = 0
        created_at = scout.get("created_at")
        if created_at:
            try:
                joined = datetime.fromisoformat(created_at)
                if joined.tzinfo is None:
                    joined = joined.replace(tzinfo=timezone.utc)
                days = max(0, (now - joined).days)
            except ValueError:
                logger.debug("Unparseable scout created_at: %r", created_at)

        return cls(
            full_name=scout.get("full_name") or "",
            days_since_join=days,
            total_leads=len(leads),
            signed_leads=sum(1 for l in leads if l.get("process_status") in SIGNED_STATUSES),
            placed_leads=sum(1 for l in leads if l.get("process_status") == "Placed"),
            total_commission=sum(c.get("amount") or 0 for c in commissions),
            paid_commission=sum(c.get("amount") or 0 for c in commissions if c.get("status") == "paid"),
            profile_complete=all(
                scout.get(k) for k in ("full_name", "photo_url", "bio", "location")
            ),
            is_verified=bool(scout.get("is_verified")),
        )


def validate_message(message, cap: int) -> str:
    """Non-empty string no longer than cap, else InvalidInput."""
    if not isinstance(message, str) or not message or len(message) > cap:
        raise InvalidInput("Invalid message")
    return message


def build_system_prompt(facts: ScoutFacts) -> str:
    profile = "Yes" if facts.profile_complete else "No, encourage them to complete it"
    verified = "Yes" if facts.is_verified else "Not yet"
    return f"""You are the Warubi Scout Coach, a friendly, knowledgeable AI assistant embedded in the Athletes USA Scout Portal.

IDENTITY & TONE:
- Motivational, concise and supportive
- Use the scout's first name when natural
- Keep responses under 200 words unless the question needs more detail
- Use bullet points and short paragraphs
- Reply in the language the scout writes in
- Encouraging but honest; never overpromise

SAFETY RULES:
- NEVER share pricing, fees or commission rates; point to athletesusa.org or the AUSA team
- NEVER give legal or immigration advice; suggest the AUSA team or an immigration professional
- NEVER share other scouts' data
- If you don't know, say so and suggest who to ask
- Stay on scouting, recruiting, athletes and AUSA; redirect off-topic questions politely

SCOUT CONTEXT:
- Name: {facts.full_name or 'Scout'}
- Member since: {facts.days_since_join} days ago
- Total leads referred: {facts.total_leads}
- Signed athletes: {facts.signed_leads}
- Placed athletes: {facts.placed_leads}
- Total commission earned: €{facts.total_commission:.0f}
- Commission paid out: €{facts.paid_commission:.0f}
- Profile complete: {profile}
- Verified: {verified}

KNOWLEDGE BASE:
{KNOWLEDGE_BASE}"""


def _turn(role: str, text: str) -> dict:
    return {"role": role, "parts": [{"text": text}]}


def assemble(history: list[dict], facts: ScoutFacts, message: str) -> list[dict]:
    """
    Build the upstream `contents` list.
    History beyond the last HISTORY_LIMIT turns is dropped.
    """
    contents = [
        _turn("user", build_system_prompt(facts)),
        _turn("model", ACKNOWLEDGEMENT),
    ]
    for msg in (history or [])[-HISTORY_LIMIT:]:
        role = "user" if msg.get("role") == "user" else "model"
        contents.append(_turn(role, msg.get("content", "")))
    contents.append(_turn("user", message))
    return contents


def get_starters(facts: ScoutFacts) -> list[dict]:
    """Three conversation starters matched to where the scout is."""
    if facts.total_leads == 0 and facts.days_since_join < 7:
        return [
            {"emoji": "👋", "text": "How does scouting work?"},
            {"emoji": "🎯", "text": "What's my first step as a scout?"},
            {"emoji": "💰", "text": "How do I earn commissions?"},
        ]
    if facts.placed_leads > 0:
        return [
            {"emoji": "📋", "text": "Quick eligibility recap"},
            {"emoji": "⭐", "text": "How do showcases work?"},
            {"emoji": "💸", "text": "Commission payout timeline"},
        ]
    return [
        {"emoji": "💬", "text": "Tips for talking to parents"},
        {"emoji": "📅", "text": "Recruiting timeline overview"},
        {"emoji": "🔍", "text": "How to find more athletes"},
    ]
