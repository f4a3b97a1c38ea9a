"""Core module for session lifecycle, prefix caching and token streaming."""

from .prefix_cache import PrefixCache, PrefixCacheState
from .prompt_formatter import format_fixed_prefix, format_user_turn
from .session import InferenceSession
from .stop_sequences import StopSequenceMatcher
from .telemetry import GenerationTelemetry
from .token_streamer import AsyncTokenStreamer, StreamingGenerator, TokenSink, TokenStream

__all__ = [
    "InferenceSession",
    "PrefixCache",
    "PrefixCacheState",
    "StreamingGenerator",
    "AsyncTokenStreamer",
    "TokenStream",
    "TokenSink",
    "StopSequenceMatcher",
    "GenerationTelemetry",
    "format_fixed_prefix",
    "format_user_turn",
]
