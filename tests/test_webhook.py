"""
Tests for website lead intake.
"""

from unittest.mock import MagicMock

import pytest

from scoutrelay.errors import InvalidInput, RelayError, ServerMisconfigured, Unauthorized
from scoutrelay.ratelimit import FixedWindowRateLimiter
from scoutrelay.webhook import LeadIntake, extract_contact, field_values

SECRET = "hook-secret"
SOURCES = {"1260": "sportstipendium", "5187": "showcase"}


def intake(store, limit=30, secret=SECRET):
    return LeadIntake(
        store=store,
        limiter=FixedWindowRateLimiter(limit=limit, window=60),
        secret=secret,
        form_sources=SOURCES,
    )


def form_body(**extra):
    body = {
        "form_id": 5187,
        "fields": {
            "1": {"name": "Vorname", "value": "Anna"},
            "2": {"name": "Nachname", "value": "Schmidt"},
            "3": {"name": "E-Mail", "value": "anna@example.com"},
            "4": {"name": "Telefon/WhatsApp #", "value": "+49 170 000"},
            "5": {"name": "Sportart", "value": "Volleyball"},
            "6": {"name": "Notizen", "value": ""},
        },
    }
    body.update(extra)
    return body


# ---------------------------------------------------------------------------
# Field heuristics
# ---------------------------------------------------------------------------

def test_field_values_from_dict_and_list():
    fields = {"a": {"name": "Name", "value": "X"}, "b": {"name": "Empty", "value": ""}, "c": "junk"}
    assert field_values(fields) == {"Name": "X"}
    assert field_values([{"name": "Sport", "value": "Golf"}]) == {"Sport": "Golf"}
    assert field_values("nonsense") == {}


def test_contact_from_full_name():
    contact = extract_contact({"Name": "Lukas van der Berg", "Email": "l@x.de", "Phone number": "123"})
    assert contact["first_name"] == "Lukas"
    assert contact["last_name"] == "van der Berg"
    assert contact["email"] == "l@x.de"
    assert contact["phone"] == "123"


def test_contact_from_split_names():
    contact = extract_contact({"First Name": "Ella", "Last Name": "Ng", "Sport": "Rowing"})
    assert (contact["first_name"], contact["last_name"], contact["sport"]) == ("Ella", "Ng", "Rowing")


def test_contact_missing_everything():
    assert extract_contact({}) == {"first_name": "", "last_name": "", "email": "", "phone": "", "sport": ""}


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_lead_stored(store):
    result = await intake(store).receive(SECRET, "ip", form_body(scout_ref="scout-7"))

    assert result["success"] is True
    lead = store.get_website_lead(result["lead_id"])
    assert lead["first_name"] == "Anna"
    assert lead["last_name"] == "Schmidt"
    assert lead["email"] == "anna@example.com"
    assert lead["phone"] == "+49 170 000"
    assert lead["sport"] == "Volleyball"
    assert lead["form_source"] == "showcase"
    assert lead["scout_ref"] == "scout-7"
    assert "Notizen" not in lead["raw_fields"]


@pytest.mark.asyncio
async def test_unknown_form_source(store):
    result = await intake(store).receive(SECRET, "ip", form_body(form_id=999))
    assert store.get_website_lead(result["lead_id"])["form_source"] == "form_999"


@pytest.mark.asyncio
async def test_secret_in_body_accepted(store):
    result = await intake(store).receive(None, "ip", form_body(secret=SECRET))
    assert result["success"]


@pytest.mark.asyncio
async def test_wrong_secret_rejected(store):
    with pytest.raises(Unauthorized):
        await intake(store).receive("nope", "ip", form_body())
    with pytest.raises(Unauthorized):
        await intake(store).receive(None, "ip", form_body())
    assert store.get_stats()["website_leads"] == 0


@pytest.mark.asyncio
async def test_no_configured_secret(store):
    with pytest.raises(ServerMisconfigured):
        await intake(store, secret="").receive("anything", "ip", form_body())


@pytest.mark.asyncio
async def test_missing_fields(store):
    with pytest.raises(InvalidInput) as exc:
        await intake(store).receive(SECRET, "ip", {"form_id": 1260})
    assert exc.value.message == "Missing form_id or fields"


@pytest.mark.asyncio
async def test_rate_limited(store):
    hook = intake(store, limit=1)
    await hook.receive(SECRET, "ip", form_body())
    with pytest.raises(RelayError) as exc:
        await hook.receive(SECRET, "ip", form_body())
    assert exc.value.status_code == 429


@pytest.mark.asyncio
async def test_store_failure_is_500():
    broken = MagicMock()
    broken.insert_website_lead.side_effect = RuntimeError("db locked")
    with pytest.raises(RelayError) as exc:
        await intake(broken).receive(SECRET, "ip", form_body())
    assert exc.value.status_code == 500
    assert exc.value.message == "Failed to save lead"
