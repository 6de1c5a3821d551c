"""
CV extraction: pull scout profile fields out of an uploaded PDF.

The model's answer is untrusted. Only ALLOWED_FIELDS survive, only as
strings, trimmed and capped at FIELD_CAP characters each.
"""

import logging

from scoutrelay.backends.base import EXTRACT_GENERATION, BaseUpstream, GenerationConfig
from scoutrelay.errors import InvalidInput, ServerMisconfigured, UpstreamError
from scoutrelay.parsing import extract_json_object
from scoutrelay.ratelimit import FixedWindowRateLimiter
from scoutrelay.wiretap import WireLog

logger = logging.getLogger(__name__)

ENDPOINT = "extract-cv"
ALLOWED_FIELDS = ("bio", "education", "achievements", "sport", "linkedin_url", "instagram_url")
FIELD_CAP = 500
# ~5MB of PDF once base64-encoded
MAX_PDF_BASE64 = 7_000_000
NOTHING_FOUND = "No profile data found in CV"

PROMPT = """Extract profile information from this CV/resume. Return ONLY a JSON object with these fields (omit any field not confidently found):

- "bio": Professional summary in 2-4 sentences, English, max 300 characters
- "education": Degree and institution (e.g., "B.S. Sports Science, University of Cologne")
- "achievements": Notable sports or professional achievements, max 300 characters
- "sport": Primary sport mentioned
- "linkedin_url": LinkedIn profile URL if present in contact/header section
- "instagram_url": Instagram profile URL if present in contact/header section

Return ONLY valid JSON, no markdown, no explanation. Example:
{"bio": "...", "education": "...", "sport": "Soccer"}"""


def sanitize(parsed: dict) -> dict:
    """Whitelisted, trimmed, capped string fields only."""
    extracted = {}
    for name in ALLOWED_FIELDS:
        value = parsed.get(name)
        if isinstance(value, str) and value.strip():
            extracted[name] = value.strip()[:FIELD_CAP]
    return extracted


class CVExtractor:
    """Anonymous, IP-rate-limited one-shot extractor."""

    def __init__(
        self,
        upstream: BaseUpstream,
        limiter: FixedWindowRateLimiter,
        model: str = "gemini-2.5-flash",
        generation: GenerationConfig = EXTRACT_GENERATION,
        wire: WireLog | None = None,
    ):
        self.upstream = upstream
        self.limiter = limiter
        self.model = model
        self.generation = generation
        self.wire = wire

    async def extract(self, client_ip: str, body: dict) -> dict:
        self.limiter.enforce(client_ip, "Too many requests. Try again in a minute.")

        pdf_base64 = body.get("pdfBase64")
        if not isinstance(pdf_base64, str) or not pdf_base64:
            raise InvalidInput("Missing pdfBase64")
        if len(pdf_base64) > MAX_PDF_BASE64:
            raise InvalidInput("File too large (max 5MB)")

        if not self.upstream.configured:
            raise ServerMisconfigured()

        contents = [{
            "role": "user",
            "parts": [
                {"inlineData": {"mimeType": "application/pdf", "data": pdf_base64}},
                {"text": PROMPT},
            ],
        }]
        resp = await self.upstream.generate(self.model, contents, self.generation)
        if not resp.ok:
            raise UpstreamError("AI extraction failed", upstream_status=resp.status_code, upstream_body=resp.error)

        parsed = extract_json_object(resp.text)
        if parsed is None:
            return {"extracted": {}, "message": NOTHING_FOUND}

        extracted = sanitize(parsed)
        dropped = set(parsed) - set(ALLOWED_FIELDS)
        if dropped:
            logger.info("CV extraction dropped unexpected fields: %s", sorted(dropped))
        if self.wire:
            self.wire.log("outbound", ENDPOINT, "assistant", ", ".join(sorted(extracted)) or "(nothing)")
        return {"extracted": extracted}
