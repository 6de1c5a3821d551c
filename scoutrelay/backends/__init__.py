"""
Upstream generative-AI backends for scoutrelay.
"""
from scoutrelay.backends.base import (
    BaseUpstream,
    GenerationConfig,
    UpstreamResponse,
    UpstreamStream,
    CHAT_GENERATION,
    FEEDBACK_GENERATION,
    EXTRACT_GENERATION,
)
from scoutrelay.backends.gemini import GeminiUpstream, GeminiStream

__all__ = [
    "BaseUpstream",
    "GenerationConfig",
    "UpstreamResponse",
    "UpstreamStream",
    "CHAT_GENERATION",
    "FEEDBACK_GENERATION",
    "EXTRACT_GENERATION",
    "GeminiUpstream",
    "GeminiStream",
]
