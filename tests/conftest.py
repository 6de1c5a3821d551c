"""
Shared test doubles: an in-memory upstream, a scripted stream, and an
httpx MockTransport that plays both the identity provider and the
generative API.
"""

import json

import httpx
import pytest

from scoutrelay.backends.base import BaseUpstream, UpstreamResponse, UpstreamStream
from scoutrelay.identity import IdentityResolver
from scoutrelay.ratelimit import FixedWindowRateLimiter
from scoutrelay.storage.sqlite_store import SQLiteStore

SCOUT_ID = "scout-1"
GOOD_TOKEN = "good-token"
AUTH = f"Bearer {GOOD_TOKEN}"


def gemini_frame(text: str = "", total_tokens: int | None = None) -> str:
    payload = {"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]}
    if total_tokens is not None:
        payload["usageMetadata"] = {"totalTokenCount": total_tokens}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\r\n\r\n"


def gemini_sse(*texts: str, total_tokens: int | None = None) -> bytes:
    frames = [gemini_frame(t) for t in texts]
    if total_tokens is not None:
        frames.append(gemini_frame("", total_tokens))
    return "".join(frames).encode()


def gemini_json(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]}


class ScriptedStream(UpstreamStream):
    """Yields the given chunks; optionally raises once `fail_at` chunks are out."""

    def __init__(self, chunks, total_tokens=None, fail_at=None):
        self.chunks = list(chunks)
        self._tokens = total_tokens
        self.fail_at = fail_at
        self.closed = 0

    async def text_deltas(self):
        for i, chunk in enumerate(self.chunks):
            if self.fail_at is not None and i == self.fail_at:
                raise httpx.ReadTimeout("no chunk within idle timeout")
            yield chunk
        if self.fail_at is not None and self.fail_at >= len(self.chunks):
            raise httpx.ReadTimeout("no chunk within idle timeout")
        self.total_tokens = self._tokens

    async def aclose(self):
        self.closed += 1


class FakeUpstream(BaseUpstream):
    """Records calls; returns a canned stream or one-shot response."""

    def __init__(self, stream=None, response=None, configured=True, raises=None):
        self.stream = stream
        self.response = response
        self.raises = raises
        self._configured = configured
        self.calls = []

    @property
    def configured(self):
        return self._configured

    async def generate(self, model, contents, generation):
        self.calls.append({"model": model, "contents": contents, "generation": generation})
        if self.raises:
            raise self.raises
        return self.response

    async def open_stream(self, model, contents, generation):
        self.calls.append({"model": model, "contents": contents, "generation": generation})
        if self.raises:
            raise self.raises
        return self.stream


def ok_response(text: str) -> UpstreamResponse:
    return UpstreamResponse(ok=True, data=gemini_json(text))


def identity_handler(request: httpx.Request) -> httpx.Response:
    if request.headers.get("authorization") == AUTH and request.headers.get("apikey") == "anon":
        return httpx.Response(200, json={"id": SCOUT_ID, "email": "scout@example.com"})
    return httpx.Response(401, json={"msg": "invalid JWT"})


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(str(tmp_path / "test.db"))


@pytest.fixture
def identity():
    return IdentityResolver(
        auth_url="http://auth.test",
        anon_key="anon",
        transport=httpx.MockTransport(identity_handler),
    )


@pytest.fixture
def limiter():
    return FixedWindowRateLimiter(limit=10, window=60, name="test")
