"""
Base upstream abstraction.
The relay, the feedback analyzer and the CV extractor only talk to this
interface, so a different provider (or a test double) can be swapped in.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator

from scoutrelay.sse import candidate_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationConfig:
    """Sampling parameters, fixed per endpoint purpose."""
    temperature: float
    max_output_tokens: int
    top_p: float | None = None

    def to_dict(self) -> dict:
        cfg = {"temperature": self.temperature, "maxOutputTokens": self.max_output_tokens}
        if self.top_p is not None:
            cfg["topP"] = self.top_p
        return cfg


# Open-ended coaching chat
CHAT_GENERATION = GenerationConfig(temperature=0.7, max_output_tokens=1024, top_p=0.9)
# Feedback summary + classification
FEEDBACK_GENERATION = GenerationConfig(temperature=0.3, max_output_tokens=200)
# Structured CV extraction
EXTRACT_GENERATION = GenerationConfig(temperature=0.1, max_output_tokens=1024)


@dataclass
class UpstreamResponse:
    """Standardized one-shot response."""
    ok: bool
    status_code: int = 200
    data: dict = field(default_factory=dict)
    latency_ms: float = 0.0
    error: str = ""

    @property
    def text(self) -> str:
        """First candidate's text, '' when absent."""
        return candidate_text(self.data)


class UpstreamStream(abc.ABC):
    """
    An open streaming response. Yields text deltas once; not restartable.
    total_tokens holds the latest usage count seen so far.
    """

    total_tokens: int | None = None

    @abc.abstractmethod
    def text_deltas(self) -> AsyncIterator[str]:
        ...

    @abc.abstractmethod
    async def aclose(self):
        """Release the upstream connection. Safe to call more than once."""
        ...


class BaseUpstream(abc.ABC):
    """Abstract generative-AI provider."""

    @property
    @abc.abstractmethod
    def configured(self) -> bool:
        """False when a required credential is missing."""
        ...

    @abc.abstractmethod
    async def generate(
        self, model: str, contents: list[dict], generation: GenerationConfig
    ) -> UpstreamResponse:
        """Single buffered request/response. Never raises for HTTP failures."""
        ...

    @abc.abstractmethod
    async def open_stream(
        self, model: str, contents: list[dict], generation: GenerationConfig
    ) -> UpstreamStream:
        """
        Start a streaming request. Raises UpstreamError if the provider
        answers non-2xx or cannot be reached; headers are not yet sent to
        the caller at that point.
        """
        ...
