"""
Gemini backend: generateContent and streamGenerateContent over httpx.

The API key travels as the `key` query parameter. Streaming requests use
`alt=sse`; the body is read as raw bytes and reframed by UpstreamReframer.
The httpx read timeout doubles as the idle-chunk timeout for streams.
"""

from __future__ import annotations

import asyncio
import logging
import time

import httpx

from scoutrelay.backends.base import (
    BaseUpstream,
    GenerationConfig,
    UpstreamResponse,
    UpstreamStream,
)
from scoutrelay.errors import UpstreamError
from scoutrelay.sse import UpstreamReframer

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiStream(UpstreamStream):
    """Owns the httpx client and streaming response until aclose()."""

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response):
        self._client = client
        self._response = response
        self._closed = False
        self.total_tokens: int | None = None

    async def text_deltas(self):
        reframer = UpstreamReframer()
        async for chunk in self._response.aiter_bytes():
            for delta in reframer.feed(chunk):
                if delta.total_tokens is not None:
                    self.total_tokens = delta.total_tokens
                if delta.text:
                    yield delta.text
        for delta in reframer.close():
            if delta.total_tokens is not None:
                self.total_tokens = delta.total_tokens
            if delta.text:
                yield delta.text

    async def aclose(self):
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


class GeminiUpstream(BaseUpstream):
    """Backend for the Gemini generative-language API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        idle_timeout: float = 30.0,
        oneshot_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key or ""
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.idle_timeout = idle_timeout
        self.oneshot_timeout = oneshot_timeout
        self._transport = transport

    @classmethod
    def from_config(cls, cfg: dict, transport: httpx.AsyncBaseTransport | None = None) -> "GeminiUpstream":
        up = cfg.get("upstream", {})
        return cls(
            api_key=up.get("api_key", ""),
            base_url=up.get("base_url", DEFAULT_BASE_URL),
            timeout=float(up.get("timeout", 10)),
            idle_timeout=float(up.get("idle_timeout", 30)),
            oneshot_timeout=float(up.get("oneshot_timeout", 30)),
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _url(self, model: str, method: str) -> str:
        return f"{self.base_url}/models/{model}:{method}"

    @staticmethod
    def _body(contents: list[dict], generation: GenerationConfig) -> dict:
        return {"contents": contents, "generationConfig": generation.to_dict()}

    async def generate(
        self, model: str, contents: list[dict], generation: GenerationConfig
    ) -> UpstreamResponse:
        """One-shot generateContent call bounded by oneshot_timeout."""
        if not self.api_key:
            return UpstreamResponse(ok=False, status_code=0, error="No API key configured")

        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.oneshot_timeout, transport=self._transport) as client:
                # httpx timeouts are per read; wait_for caps the whole call
                resp = await asyncio.wait_for(
                    client.post(
                        self._url(model, "generateContent"),
                        params={"key": self.api_key},
                        json=self._body(contents, generation),
                    ),
                    timeout=self.oneshot_timeout,
                )
                latency = (time.monotonic() - t0) * 1000

                if resp.status_code >= 400:
                    logger.error("Gemini API error: %d %s", resp.status_code, resp.text[:500])
                    return UpstreamResponse(
                        ok=False,
                        status_code=resp.status_code,
                        latency_ms=latency,
                        error=f"HTTP {resp.status_code}",
                    )

                return UpstreamResponse(
                    ok=True,
                    status_code=resp.status_code,
                    data=resp.json(),
                    latency_ms=latency,
                )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            latency = (time.monotonic() - t0) * 1000
            logger.warning("Gemini one-shot call timed out after %.0fms", latency)
            return UpstreamResponse(
                ok=False, status_code=0, latency_ms=latency,
                error=f"Timeout after {self.oneshot_timeout}s",
            )
        except (httpx.HTTPError, ValueError) as e:
            latency = (time.monotonic() - t0) * 1000
            logger.warning("Gemini one-shot call failed: %s", e)
            return UpstreamResponse(ok=False, status_code=0, latency_ms=latency, error=str(e))

    async def open_stream(
        self, model: str, contents: list[dict], generation: GenerationConfig
    ) -> GeminiStream:
        """streamGenerateContent with alt=sse. Caller must aclose() the stream."""
        if not self.api_key:
            raise UpstreamError("AI service not configured")

        client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, read=self.idle_timeout),
            transport=self._transport,
        )
        try:
            request = client.build_request(
                "POST",
                self._url(model, "streamGenerateContent"),
                params={"alt": "sse", "key": self.api_key},
                json=self._body(contents, generation),
            )
            resp = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            await client.aclose()
            logger.error("Gemini stream could not be opened: %s", e)
            raise UpstreamError() from e

        if resp.status_code >= 400:
            body = (await resp.aread()).decode("utf-8", errors="replace")
            await resp.aclose()
            await client.aclose()
            logger.error("Gemini API error: %d %s", resp.status_code, body[:500])
            raise UpstreamError(upstream_status=resp.status_code, upstream_body=body)

        return GeminiStream(client, resp)
