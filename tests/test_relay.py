"""
Tests for the streaming coach relay.
Upstream is a scripted fake; identity goes through a MockTransport.
"""

import httpx
import pytest

from scoutrelay.backends.base import CHAT_GENERATION
from scoutrelay.errors import InvalidInput, RateLimited, ServerMisconfigured, Unauthorized, UpstreamError
from scoutrelay.identity import IdentityResolver
from scoutrelay.ratelimit import FixedWindowRateLimiter
from scoutrelay.relay import CoachRelay
from scoutrelay.sse import DONE, ERROR, META, TEXT
from scoutrelay.storage.models import Message
from tests.conftest import AUTH, SCOUT_ID, FakeUpstream, ScriptedStream, identity_handler


def make_relay(store, identity, limiter, stream=None, **kwargs):
    upstream = FakeUpstream(stream=stream or ScriptedStream(["Hello ", "scout!"], total_tokens=42), **kwargs)
    return CoachRelay(store=store, upstream=upstream, identity=identity, limiter=limiter), upstream


async def collect(stream):
    return [e async for e in stream.events()]


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stream_event_order(store, identity, limiter):
    """meta first, text deltas in order, a single done last."""
    relay, _ = make_relay(store, identity, limiter)
    stream = await relay.start(AUTH, {"message": "How do I find athletes?"})
    events = await collect(stream)

    assert [e.type for e in events] == [META, TEXT, TEXT, DONE]
    assert events[0].payload["conversationId"] == stream.conversation_id
    assert "".join(e.payload["content"] for e in events if e.type == TEXT) == "Hello scout!"
    assert sum(1 for e in events if e.terminal) == 1


@pytest.mark.asyncio
async def test_both_turns_persisted(store, identity, limiter):
    """User turn before the upstream call, assistant turn after done."""
    relay, _ = make_relay(store, identity, limiter)
    stream = await relay.start(AUTH, {"message": "hi"})

    before = store.get_conversation_messages(stream.conversation_id)
    assert [m["role"] for m in before] == ["user"]

    await collect(stream)
    after = store.get_conversation_messages(stream.conversation_id)
    assert [m["role"] for m in after] == ["user", "assistant"]
    assert after[1]["content"] == "Hello scout!"
    assert after[1]["tokens_used"] == 42
    assert after[1]["latency_ms"] is not None


@pytest.mark.asyncio
async def test_upstream_receives_assembled_context(store, identity, limiter):
    """System turn, acknowledgement, then the new message (not duplicated)."""
    store.upsert_scout(SCOUT_ID, full_name="Lena Vogel")
    relay, upstream = make_relay(store, identity, limiter)
    await collect(await relay.start(AUTH, {"message": "first question"}))

    call = upstream.calls[0]
    contents = call["contents"]
    assert call["generation"] == CHAT_GENERATION
    assert len(contents) == 3
    assert "Name: Lena Vogel" in contents[0]["parts"][0]["text"]
    assert contents[1]["role"] == "model"
    assert contents[2] == {"role": "user", "parts": [{"text": "first question"}]}


@pytest.mark.asyncio
async def test_conversation_continuity(store, identity, limiter):
    """A second message in the same conversation sees the first exchange."""
    relay, upstream = make_relay(store, identity, limiter)
    first = await relay.start(AUTH, {"message": "one"})
    await collect(first)

    upstream.stream = ScriptedStream(["Sure."])
    second = await relay.start(AUTH, {"message": "two", "conversationId": first.conversation_id})
    await collect(second)

    assert second.conversation_id == first.conversation_id
    contents = upstream.calls[1]["contents"]
    assert [c["role"] for c in contents] == ["user", "model", "user", "model", "user"]
    assert contents[2]["parts"][0]["text"] == "one"
    assert contents[3]["parts"][0]["text"] == "Hello scout!"
    assert contents[4]["parts"][0]["text"] == "two"


@pytest.mark.asyncio
async def test_no_conversation_id_reuses_active(store, identity, limiter):
    relay, upstream = make_relay(store, identity, limiter)
    first = await relay.start(AUTH, {"message": "one"})
    await collect(first)
    upstream.stream = ScriptedStream(["again"])
    second = await relay.start(AUTH, {"message": "two"})
    await collect(second)

    assert second.conversation_id == first.conversation_id
    assert store.count_active_conversations(SCOUT_ID) == 1


@pytest.mark.asyncio
async def test_frames_are_sse_encoded(store, identity, limiter):
    relay, _ = make_relay(store, identity, limiter)
    stream = await relay.start(AUTH, {"message": "hi"})
    frames = [f async for f in stream.frames()]

    assert all(f.startswith("data: ") and f.endswith("\n\n") for f in frames)
    assert frames[-1] == 'data: {"type": "done"}\n\n'


# ---------------------------------------------------------------------------
# Failure before the stream starts
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_missing_token_rejected(store, identity, limiter):
    relay, upstream = make_relay(store, identity, limiter)
    with pytest.raises(Unauthorized):
        await relay.start(None, {"message": "hi"})
    with pytest.raises(Unauthorized):
        await relay.start("Token abc", {"message": "hi"})
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_invalid_token_rejected(store, identity, limiter):
    relay, upstream = make_relay(store, identity, limiter)
    with pytest.raises(Unauthorized) as exc:
        await relay.start("Bearer forged", {"message": "hi"})
    assert exc.value.message == "Invalid token"
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_unconfigured_upstream_is_server_error(store, identity, limiter):
    relay, _ = make_relay(store, identity, limiter, configured=False)
    with pytest.raises(ServerMisconfigured):
        await relay.start(AUTH, {"message": "hi"})


@pytest.mark.asyncio
async def test_message_length_bounds(store, identity, limiter):
    """2000 characters pass; 2001 is rejected with nothing called or stored."""
    relay, upstream = make_relay(store, identity, limiter)

    with pytest.raises(InvalidInput):
        await relay.start(AUTH, {"message": "x" * 2001})
    assert upstream.calls == []
    assert store.get_stats()["messages"] == 0

    stream = await relay.start(AUTH, {"message": "x" * 2000})
    await collect(stream)
    assert len(upstream.calls) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("message", [None, "", 42, ["hi"]])
async def test_bad_message_rejected(store, identity, limiter, message):
    relay, upstream = make_relay(store, identity, limiter)
    with pytest.raises(InvalidInput):
        await relay.start(AUTH, {"message": message})
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_bad_conversation_id_rejected(store, identity, limiter):
    relay, _ = make_relay(store, identity, limiter)
    with pytest.raises(InvalidInput) as exc:
        await relay.start(AUTH, {"message": "hi", "conversationId": 123})
    assert exc.value.message == "Invalid conversationId"


@pytest.mark.asyncio
async def test_foreign_conversation_id_rejected(store, identity, limiter):
    """Another scout's conversation is neither read nor written to."""
    other = store.ensure_active_conversation("scout-a")
    store.append_message(Message(conversation_id=other, scout_id="scout-a", role="user", content="private note"))

    relay, upstream = make_relay(store, identity, limiter)
    with pytest.raises(InvalidInput) as exc:
        await relay.start(AUTH, {"message": "what did I say?", "conversationId": other})

    assert exc.value.message == "Invalid conversationId"
    assert upstream.calls == []
    assert [m["content"] for m in store.get_conversation_messages(other)] == ["private note"]
    assert store.get_stats()["messages"] == 1


@pytest.mark.asyncio
async def test_unknown_conversation_id_rejected(store, identity, limiter):
    relay, upstream = make_relay(store, identity, limiter)
    with pytest.raises(InvalidInput):
        await relay.start(AUTH, {"message": "hi", "conversationId": "does-not-exist"})
    assert upstream.calls == []
    assert store.get_stats()["messages"] == 0


@pytest.mark.asyncio
async def test_token_verified_once_per_start(store, limiter):
    seen = []

    def handler(request):
        seen.append(request)
        return identity_handler(request)

    identity = IdentityResolver(auth_url="http://auth.test", anon_key="anon", transport=httpx.MockTransport(handler))
    relay, _ = make_relay(store, identity, limiter)
    await collect(await relay.start(AUTH, {"message": "hi"}))
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_missing_header_checked_before_configuration(store, identity, limiter):
    relay, _ = make_relay(store, identity, limiter, configured=False)
    with pytest.raises(Unauthorized):
        await relay.start(None, {"message": "hi"})


@pytest.mark.asyncio
async def test_unconfigured_identity_is_server_error(store, limiter):
    relay, upstream = make_relay(store, IdentityResolver(auth_url="", anon_key=""), limiter)
    with pytest.raises(ServerMisconfigured):
        await relay.start(AUTH, {"message": "hi"})
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_rate_limit_per_scout(store, identity):
    relay, upstream = make_relay(store, identity, FixedWindowRateLimiter(limit=1, window=60))
    await collect(await relay.start(AUTH, {"message": "one"}))

    with pytest.raises(RateLimited) as exc:
        await relay.start(AUTH, {"message": "two"})
    assert exc.value.status_code == 429
    assert len(upstream.calls) == 1


@pytest.mark.asyncio
async def test_upstream_refusal_raises_before_stream(store, identity, limiter):
    relay, _ = make_relay(store, identity, limiter, raises=UpstreamError(upstream_status=500))
    with pytest.raises(UpstreamError):
        await relay.start(AUTH, {"message": "hi"})


# ---------------------------------------------------------------------------
# Failure mid-stream
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_mid_stream_failure_ends_with_error(store, identity, limiter):
    """An idle timeout after some text yields one error event, no done."""
    scripted = ScriptedStream(["partial "], fail_at=1)
    relay, _ = make_relay(store, identity, limiter, stream=scripted)
    stream = await relay.start(AUTH, {"message": "hi"})
    events = await collect(stream)

    assert [e.type for e in events] == [META, TEXT, ERROR]
    assert events[-1].payload == {"message": "An error occurred"}
    assert scripted.closed == 1
    roles = [m["role"] for m in store.get_conversation_messages(stream.conversation_id)]
    assert roles == ["user"]


@pytest.mark.asyncio
async def test_empty_reply_not_persisted(store, identity, limiter):
    relay, _ = make_relay(store, identity, limiter, stream=ScriptedStream([]))
    stream = await relay.start(AUTH, {"message": "hi"})
    events = await collect(stream)

    assert [e.type for e in events] == [META, DONE]
    roles = [m["role"] for m in store.get_conversation_messages(stream.conversation_id)]
    assert roles == ["user"]


@pytest.mark.asyncio
async def test_client_disconnect_stops_reading(store, identity, limiter):
    scripted = ScriptedStream(["a", "b", "c"])
    relay, _ = make_relay(store, identity, limiter, stream=scripted)

    async def gone():
        return True

    stream = await relay.start(AUTH, {"message": "hi"}, is_disconnected=gone)
    events = await collect(stream)

    assert [e.type for e in events] == [META]
    assert scripted.closed == 1


@pytest.mark.asyncio
async def test_consumer_abandoning_stream_closes_upstream(store, identity, limiter):
    scripted = ScriptedStream(["a", "b", "c"])
    relay, _ = make_relay(store, identity, limiter, stream=scripted)
    stream = await relay.start(AUTH, {"message": "hi"})

    gen = stream.events()
    await gen.__anext__()
    await gen.__anext__()
    await gen.aclose()
    assert scripted.closed == 1


@pytest.mark.asyncio
async def test_assistant_persist_failure_still_done(store, identity, limiter, monkeypatch):
    relay, _ = make_relay(store, identity, limiter)
    stream = await relay.start(AUTH, {"message": "hi"})

    def broken(msg):
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "append_message", broken)
    events = await collect(stream)
    assert events[-1].type == DONE


# ---------------------------------------------------------------------------
# Conversation management
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_active_conversation_empty(store, identity, limiter):
    relay, _ = make_relay(store, identity, limiter)
    assert await relay.active_conversation(AUTH) == {"conversationId": None, "messages": []}


@pytest.mark.asyncio
async def test_active_conversation_lists_messages(store, identity, limiter):
    relay, _ = make_relay(store, identity, limiter)
    stream = await relay.start(AUTH, {"message": "hi"})
    await collect(stream)

    result = await relay.active_conversation(AUTH)
    assert result["conversationId"] == stream.conversation_id
    assert [m["content"] for m in result["messages"]] == ["hi", "Hello scout!"]


@pytest.mark.asyncio
async def test_reset_conversation(store, identity, limiter):
    relay, _ = make_relay(store, identity, limiter)
    stream = await relay.start(AUTH, {"message": "hi"})
    await collect(stream)

    result = await relay.reset_conversation(AUTH)
    assert result["conversationId"] != stream.conversation_id
    assert store.count_active_conversations(SCOUT_ID) == 1
    assert (await relay.active_conversation(AUTH))["messages"] == []


@pytest.mark.asyncio
async def test_starters_for_new_scout(store, identity, limiter):
    relay, _ = make_relay(store, identity, limiter)
    result = await relay.starters(AUTH)
    assert len(result["starters"]) == 3
    assert result["starters"][0]["text"] == "How does scouting work?"
