"""
Client for the coach-chat stream.

CoachClient.stream() yields the relay's StreamEvents as they arrive;
send_message() collects them into the full reply. An `error` envelope
raises RelayStreamError, so a cut-off reply is never mistaken for a
complete one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from scoutrelay.sse import DONE, ERROR, META, TEXT, LineBuffer, StreamEvent, parse_data_line

logger = logging.getLogger(__name__)


class RelayStreamError(Exception):
    """The relay refused the request or reported a failure mid-stream."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class CoachReply:
    text: str
    conversation_id: str | None


class CoachClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}

    async def stream(self, message: str, conversation_id: str | None = None) -> AsyncIterator[StreamEvent]:
        body = {"message": message}
        if conversation_id:
            body["conversationId"] = conversation_id

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            async with client.stream(
                "POST", f"{self.base_url}/coach-chat", headers=self._headers(), json=body,
            ) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    try:
                        error = resp.json().get("error", "")
                    except ValueError:
                        error = ""
                    raise RelayStreamError(
                        error or f"Request failed ({resp.status_code})", status_code=resp.status_code,
                    )

                lines = LineBuffer()
                async for chunk in resp.aiter_bytes():
                    for line in lines.feed(chunk):
                        event = self._event(line)
                        if event is not None:
                            yield event
                for line in lines.flush():
                    event = self._event(line)
                    if event is not None:
                        yield event

    @staticmethod
    def _event(line: str) -> StreamEvent | None:
        payload = parse_data_line(line)
        if payload is None:
            return None
        event = StreamEvent.from_dict(payload)
        if event.type == ERROR:
            raise RelayStreamError(event.payload.get("message") or "An error occurred")
        if event.type not in (META, TEXT, DONE):
            logger.debug("Ignoring unknown stream event %r", event.type)
            return None
        return event

    async def send_message(self, message: str, conversation_id: str | None = None) -> CoachReply:
        parts: list[str] = []
        conv_id = conversation_id
        async for event in self.stream(message, conversation_id):
            if event.type == META:
                conv_id = event.payload.get("conversationId", conv_id)
            elif event.type == TEXT:
                parts.append(event.payload.get("content", ""))
        return CoachReply(text="".join(parts), conversation_id=conv_id)

    async def new_conversation(self) -> str:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(f"{self.base_url}/coach-chat/conversation", headers=self._headers())
        if resp.status_code >= 400:
            raise RelayStreamError(resp.json().get("error", "Request failed"), status_code=resp.status_code)
        return resp.json()["conversationId"]
