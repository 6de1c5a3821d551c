"""
CoachRelay: the streaming coach-chat pipeline.

Per request, strictly in order:
  identity -> rate limit -> input validation -> scout facts + conversation
  (fanned out) -> history -> persist user turn -> assemble context ->
  open upstream stream

Everything up to opening the stream happens before any response bytes
are committed, so failures there become ordinary JSON errors. Once
start() returns, CoachStream owns the upstream connection and emits
meta, text..., then exactly one of done/error.
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Awaitable, Callable

from scoutrelay.backends.base import CHAT_GENERATION, BaseUpstream, GenerationConfig, UpstreamStream
from scoutrelay.context import (
    CHAT_MESSAGE_CAP,
    HISTORY_LIMIT,
    ScoutFacts,
    assemble,
    get_starters,
    validate_message,
)
from scoutrelay.errors import InvalidInput, ServerMisconfigured
from scoutrelay.identity import IdentityResolver, bearer_token
from scoutrelay.ratelimit import FixedWindowRateLimiter
from scoutrelay.sse import StreamEvent
from scoutrelay.storage.models import Message
from scoutrelay.storage.sqlite_store import SQLiteStore
from scoutrelay.wiretap import WireLog

logger = logging.getLogger(__name__)

ENDPOINT = "coach-chat"
RATE_LIMIT_MESSAGE = "Too many messages. Please wait a moment."

DisconnectCheck = Callable[[], Awaitable[bool]]


class CoachStream:
    """
    One in-flight relay. A lazy, non-restartable sequence of StreamEvents.
    The upstream connection is released when iteration ends for any
    reason, including the consumer going away.
    """

    def __init__(
        self,
        relay: "CoachRelay",
        upstream: UpstreamStream,
        conversation_id: str,
        scout_id: str,
        started: float,
        is_disconnected: DisconnectCheck | None = None,
    ):
        self.relay = relay
        self.upstream = upstream
        self.conversation_id = conversation_id
        self.scout_id = scout_id
        self.started = started
        self.is_disconnected = is_disconnected

    async def events(self) -> AsyncIterator[StreamEvent]:
        try:
            yield StreamEvent.meta(self.conversation_id)

            full_response: list[str] = []
            try:
                async for text in self.upstream.text_deltas():
                    if self.is_disconnected and await self.is_disconnected():
                        logger.info(
                            "Client left mid-stream (conv=%s), aborting upstream read",
                            self.conversation_id,
                        )
                        return
                    full_response.append(text)
                    yield StreamEvent.text(text)
            except Exception as e:
                logger.error("Coach stream failed mid-read (conv=%s): %s", self.conversation_id, e)
                yield StreamEvent.error()
                return

            latency_ms = int((time.monotonic() - self.started) * 1000)
            await self.relay.persist_assistant_turn(
                self.conversation_id,
                self.scout_id,
                "".join(full_response),
                self.upstream.total_tokens,
                latency_ms,
            )
            yield StreamEvent.done()
        finally:
            await self.upstream.aclose()

    async def frames(self) -> AsyncIterator[str]:
        """events() rendered as SSE frames."""
        async for event in self.events():
            yield event.encode()


class CoachRelay:
    """Authenticated, rate-limited, history-aware streaming relay."""

    def __init__(
        self,
        store: SQLiteStore,
        upstream: BaseUpstream,
        identity: IdentityResolver,
        limiter: FixedWindowRateLimiter,
        model: str = "gemini-2.5-flash",
        generation: GenerationConfig = CHAT_GENERATION,
        wire: WireLog | None = None,
    ):
        self.store = store
        self.upstream = upstream
        self.identity = identity
        self.limiter = limiter
        self.model = model
        self.generation = generation
        self.wire = wire

    async def authenticate(self, authorization: str | None) -> str:
        """Verified scout id for the Authorization header."""
        return await self._verify(bearer_token(authorization))

    async def _verify(self, token: str) -> str:
        if not self.identity.configured:
            raise ServerMisconfigured()
        return await self.identity.verify(token)

    async def _owned_conversation(self, conversation_id, scout_id: str) -> str:
        """The caller's own existing conversation, else InvalidInput."""
        if not isinstance(conversation_id, str) or not conversation_id:
            raise InvalidInput("Invalid conversationId")
        conv = await asyncio.to_thread(self.store.get_conversation, conversation_id)
        if conv is None or conv.scout_id != scout_id:
            logger.warning("Scout %s sent a conversationId it does not own", scout_id)
            raise InvalidInput("Invalid conversationId")
        return conv.id

    async def load_facts(self, scout_id: str) -> ScoutFacts:
        scout, leads, commissions = await asyncio.gather(
            asyncio.to_thread(self.store.get_scout, scout_id),
            asyncio.to_thread(self.store.get_referred_athletes, scout_id),
            asyncio.to_thread(self.store.get_commissions, scout_id),
        )
        return ScoutFacts.from_records(scout, leads, commissions)

    async def start(
        self,
        authorization: str | None,
        body: dict,
        is_disconnected: DisconnectCheck | None = None,
    ) -> CoachStream:
        token = bearer_token(authorization)
        if not self.upstream.configured:
            raise ServerMisconfigured()
        scout_id = await self._verify(token)
        self.limiter.enforce(scout_id, RATE_LIMIT_MESSAGE)

        message = validate_message(body.get("message"), CHAT_MESSAGE_CAP)
        conversation_id = body.get("conversationId")

        if conversation_id is not None:
            facts, conversation_id = await asyncio.gather(
                self.load_facts(scout_id),
                self._owned_conversation(conversation_id, scout_id),
            )
        else:
            facts, conversation_id = await asyncio.gather(
                self.load_facts(scout_id),
                asyncio.to_thread(self.store.ensure_active_conversation, scout_id),
            )

        history = await asyncio.to_thread(self.store.load_recent_history, conversation_id, HISTORY_LIMIT)

        # User turn is stored before the upstream call
        await asyncio.to_thread(
            self.store.append_message,
            Message(conversation_id=conversation_id, scout_id=scout_id, role="user", content=message),
        )
        if self.wire:
            self.wire.log("inbound", ENDPOINT, "user", message, conversation_id=conversation_id)

        contents = assemble(history, facts, message)
        started = time.monotonic()
        upstream = await self.upstream.open_stream(self.model, contents, self.generation)
        logger.debug(
            "Coach stream open (scout=%s, conv=%s, history=%d)",
            scout_id, conversation_id, len(history),
        )
        return CoachStream(self, upstream, conversation_id, scout_id, started, is_disconnected)

    async def persist_assistant_turn(
        self,
        conversation_id: str,
        scout_id: str,
        content: str,
        tokens_used: int | None,
        latency_ms: int,
    ):
        """Store the finished reply. Failures are logged, never raised."""
        if not content:
            return
        try:
            await asyncio.to_thread(
                self.store.append_message,
                Message(
                    conversation_id=conversation_id,
                    scout_id=scout_id,
                    role="assistant",
                    content=content,
                    tokens_used=tokens_used,
                    latency_ms=latency_ms,
                ),
            )
        except Exception as e:
            logger.error("Failed to persist assistant turn (conv=%s): %s", conversation_id, e)
            return
        if self.wire:
            self.wire.log(
                "outbound", ENDPOINT, "assistant", content,
                conversation_id=conversation_id,
                token_count=tokens_used,
                latency_ms=latency_ms,
            )

    # ─ Conversation management ────────────────────────────────────────────

    async def active_conversation(self, authorization: str | None) -> dict:
        scout_id = await self.authenticate(authorization)
        conv = await asyncio.to_thread(self.store.get_active_conversation, scout_id)
        if conv is None:
            return {"conversationId": None, "messages": []}
        messages = await asyncio.to_thread(self.store.get_conversation_messages, conv.id)
        return {"conversationId": conv.id, "messages": messages}

    async def reset_conversation(self, authorization: str | None) -> dict:
        scout_id = await self.authenticate(authorization)
        self.limiter.enforce(scout_id, RATE_LIMIT_MESSAGE)
        conversation_id = await asyncio.to_thread(self.store.start_new_conversation, scout_id)
        return {"conversationId": conversation_id}

    async def starters(self, authorization: str | None) -> dict:
        scout_id = await self.authenticate(authorization)
        facts = await self.load_facts(scout_id)
        return {"starters": get_starters(facts)}
