"""
Feedback triage: one-shot summary + classification of portal feedback.

Advisory only, so it never fails the caller once input is valid: a
missing key, an unreachable provider or unparseable output all degrade
to a truncated echo of the message classified as "Other".
"""

import logging

from scoutrelay.backends.base import FEEDBACK_GENERATION, BaseUpstream, GenerationConfig
from scoutrelay.context import FEEDBACK_MESSAGE_CAP, validate_message
from scoutrelay.parsing import extract_json_object, truncate
from scoutrelay.ratelimit import FixedWindowRateLimiter
from scoutrelay.wiretap import WireLog

logger = logging.getLogger(__name__)

ENDPOINT = "feedback-analyze"
FEEDBACK_TYPES = ("Bug", "Feature", "Question", "Other", "Unclear")
DEFAULT_PAGE = "Scout Portal"

PROMPT = """Summarize this user feedback in ONE line (max 15 words).
Classify as: Bug | Feature | Question | Other

If the feedback is too vague to understand, return type "Unclear" and include a clarifyingQuestion.

Feedback: "{message}"
Page: {page}

Return ONLY valid JSON: {{ "summary": "...", "type": "Bug|Feature|Question|Other|Unclear", "clarifyingQuestion": "optional - only if Unclear" }}"""


def degraded(message: str) -> dict:
    return {"summary": truncate(message, 100), "type": "Other"}


class FeedbackAnalyzer:
    """Anonymous, IP-rate-limited feedback classifier."""

    def __init__(
        self,
        upstream: BaseUpstream,
        limiter: FixedWindowRateLimiter,
        model: str = "gemini-2.0-flash",
        generation: GenerationConfig = FEEDBACK_GENERATION,
        wire: WireLog | None = None,
    ):
        self.upstream = upstream
        self.limiter = limiter
        self.model = model
        self.generation = generation
        self.wire = wire

    async def analyze(self, client_ip: str, body: dict) -> dict:
        self.limiter.enforce(client_ip)
        message = validate_message(body.get("message"), FEEDBACK_MESSAGE_CAP)
        page = body.get("page")
        if not isinstance(page, str) or not page:
            page = DEFAULT_PAGE

        if not self.upstream.configured:
            return degraded(message)

        try:
            result = await self._classify(message, page)
        except Exception as e:
            logger.warning("Feedback analysis failed, degrading: %s", e)
            result = degraded(message)

        if self.wire:
            self.wire.log("inbound", ENDPOINT, "user", message)
            self.wire.log("outbound", ENDPOINT, "assistant", f"[{result['type']}] {result['summary']}")
        return result

    async def _classify(self, message: str, page: str) -> dict:
        prompt = PROMPT.format(message=message, page=page)
        resp = await self.upstream.generate(
            self.model,
            [{"role": "user", "parts": [{"text": prompt}]}],
            self.generation,
        )
        if not resp.ok:
            logger.warning("Feedback upstream call failed: %s", resp.error)
            return degraded(message)

        parsed = extract_json_object(resp.text)
        if parsed is None:
            return degraded(message)

        summary = parsed.get("summary")
        fb_type = parsed.get("type")
        result = {
            "summary": summary if isinstance(summary, str) and summary else truncate(message, 100),
            "type": fb_type if fb_type in FEEDBACK_TYPES else "Other",
        }
        question = parsed.get("clarifyingQuestion")
        if isinstance(question, str) and question:
            result["clarifyingQuestion"] = question
        return result
