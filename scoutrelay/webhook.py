"""
Lead intake webhook for website form submissions.

The form plugin POSTs { form_id, fields: {id: {name, value}}, scout_ref? }
plus a shared secret. Name/email/phone/sport are picked out of the
fields by label heuristics and stored as a website lead.
"""

import asyncio
import logging
import re

from scoutrelay.errors import InvalidInput, RelayError, ServerMisconfigured
from scoutrelay.identity import verify_shared_secret
from scoutrelay.ratelimit import FixedWindowRateLimiter
from scoutrelay.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

_PHONE_LABEL = re.compile(r"telefon|phone", re.IGNORECASE)


def field_values(fields) -> dict[str, str]:
    """Flatten {id: {name, value}} (or a list of such) into {name: value}."""
    items = fields.values() if isinstance(fields, dict) else fields if isinstance(fields, list) else []
    values = {}
    for field in items:
        if not isinstance(field, dict):
            continue
        name, value = field.get("name"), field.get("value")
        if name and value:
            values[str(name)] = value
    return values


def extract_contact(values: dict) -> dict:
    """Best-effort name/email/phone/sport from differently-labelled forms."""
    full_name = str(values.get("Name") or "")
    name_parts = full_name.split(" ")
    first_name = values.get("Vorname") or values.get("First Name") or name_parts[0]
    last_name = values.get("Nachname") or values.get("Last Name") or " ".join(name_parts[1:])
    email = values.get("Email") or values.get("E-Mail") or values.get("E-mail") or ""
    # Phone labels vary ("Telefon/WhatsApp #", "Phone number"), so match partially
    phone = next((v for k, v in values.items() if _PHONE_LABEL.search(k)), "")
    sport = values.get("Sportart") or values.get("Sport") or ""
    return {
        "first_name": str(first_name),
        "last_name": str(last_name),
        "email": str(email),
        "phone": str(phone),
        "sport": str(sport),
    }


class LeadIntake:
    """Secret-gated, IP-rate-limited lead receiver."""

    def __init__(
        self,
        store: SQLiteStore,
        limiter: FixedWindowRateLimiter,
        secret: str,
        form_sources: dict | None = None,
    ):
        self.store = store
        self.limiter = limiter
        self.secret = secret or ""
        self.form_sources = {str(k): v for k, v in (form_sources or {}).items()}

    def form_source(self, form_id) -> str:
        return self.form_sources.get(str(form_id)) or f"form_{form_id}"

    async def receive(self, header_secret: str | None, client_ip: str, body: dict) -> dict:
        if not self.secret:
            raise ServerMisconfigured()
        verify_shared_secret(self.secret, header_secret or body.get("secret"))
        self.limiter.enforce(client_ip)

        form_id = body.get("form_id")
        fields = body.get("fields")
        if not form_id or not fields:
            raise InvalidInput("Missing form_id or fields")

        values = field_values(fields)
        contact = extract_contact(values)
        scout_ref = body.get("scout_ref")

        try:
            lead_id = await asyncio.to_thread(
                self.store.insert_website_lead,
                form_source=self.form_source(form_id),
                scout_ref=str(scout_ref) if scout_ref else "",
                raw_fields=values,
                **contact,
            )
        except Exception as e:
            logger.error("Lead insert failed (form=%s): %s", form_id, e)
            raise RelayError("Failed to save lead") from e

        return {"success": True, "lead_id": lead_id}
