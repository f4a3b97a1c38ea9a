"""
Host-facing runtime.

Bundles the model manager, the inference session, and the streaming generator
into one owned object. Every boundary operation reports a boolean-plus-kind
OperationResult; none of them raise DocentError to the host.
"""

import logging
from typing import Callable, TypeVar

from .core.prompt_formatter import format_fixed_prefix
from .core.session import InferenceSession
from .core.token_streamer import AsyncTokenStreamer, StreamingGenerator, TokenSink
from .inference.backend import InferenceBackend
from .inference.model_handle import ModelManager
from .observability.metrics import record_error
from .protocol.errors import DocentError
from .protocol.messages import (
    ArtworkMetadata,
    GenerationStats,
    OperationResult,
    SamplingConfig,
    SessionConfig,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DocentRuntime:
    """Owns one model handle, one session and its generator."""

    def __init__(
        self,
        backend: InferenceBackend,
        max_new_tokens: int | None = None,
        stop_sequences: list[str] | None = None,
        stop_window_chars: int | None = None,
    ):
        self.models = ModelManager(backend)
        self.session = InferenceSession(self.models)
        self.generator = StreamingGenerator(
            self.session,
            max_new_tokens=max_new_tokens,
            stop_sequences=stop_sequences,
            stop_window_chars=stop_window_chars,
        )
        self.streamer = AsyncTokenStreamer(self.generator)
        self.artwork: ArtworkMetadata | None = None

        self._session_config: SessionConfig | None = None
        self._sampling: SamplingConfig | None = None

    def _run(self, operation: str, fn: Callable[[], T]) -> tuple[OperationResult, T | None]:
        try:
            value = fn()
        except DocentError as e:
            record_error(e.kind.value)
            logger.warning(f"{operation} failed [{e.kind.value}]: {e.message}")
            return OperationResult.failure(e.kind, e.message), None
        return OperationResult.success(), value

    # -- boundary operations ---------------------------------------------------

    def load_model(self, path: str) -> OperationResult:
        result, _ = self._run("load_model", lambda: self.models.load(path))
        return result

    def init_session(
        self,
        config: SessionConfig | None = None,
        sampling: SamplingConfig | None = None,
    ) -> OperationResult:
        if config is not None:
            self._session_config = config
        if sampling is not None:
            self._sampling = sampling
        result, _ = self._run(
            "init_session",
            lambda: self.session.init(self._session_config, self._sampling),
        )
        return result

    def prime_fixed_prefix(
        self,
        metadata: ArtworkMetadata | dict | None = None,
    ) -> OperationResult:
        if isinstance(metadata, dict):
            metadata = ArtworkMetadata.model_validate(metadata)
        metadata = metadata or ArtworkMetadata()

        result, decoded = self._run(
            "prime_fixed_prefix",
            lambda: self.session.prime_fixed_prefix(format_fixed_prefix(metadata)),
        )
        if decoded:
            self.artwork = metadata
        return result

    def reprime(self, metadata: ArtworkMetadata | dict) -> OperationResult:
        """Recreate the session and cache a new fixed prefix."""
        if isinstance(metadata, dict):
            metadata = ArtworkMetadata.model_validate(metadata)

        result, _ = self._run(
            "reprime",
            lambda: self.session.ensure_not_generating("change the artwork"),
        )
        if not result.ok:
            return result

        self.close_session()
        result = self.init_session()
        if not result.ok:
            return result
        return self.prime_fixed_prefix(metadata)

    def generate(self, question: str, sink: TokenSink | None = None) -> OperationResult:
        result, generation = self._run(
            "generate",
            lambda: self.generator.generate(question, sink),
        )
        if result.ok:
            result.generation = generation
        return result

    def close_session(self) -> None:
        try:
            self.session.close()
        except Exception:
            logger.exception("Error while closing session")
        self.artwork = None

    # -- extras ----------------------------------------------------------------

    def cancel(self) -> bool:
        return self.session.cancel()

    @property
    def last_stats(self) -> GenerationStats | None:
        return self.generator.last_stats

    @property
    def is_ready(self) -> bool:
        """Ready to answer: session initialized and prefix cached."""
        return self.session.prefix_state.valid

    def status(self) -> dict:
        """Get runtime state for monitoring."""
        handle = self.models.current
        return {
            "backend": self.models.backend.name,
            "model": {
                "loaded": handle is not None,
                "path": handle.path if handle else None,
                "generation": handle.generation if handle else None,
            },
            "session": self.session.get_stats(),
            "artwork": self.artwork.title if self.artwork else None,
            "last_stats": self.last_stats.model_dump() if self.last_stats else None,
        }

    def shutdown(self) -> None:
        """Release the session, the model and the streaming executor."""
        self.close_session()
        try:
            self.models.unload()
        except DocentError as e:
            logger.warning(f"Model unload skipped: {e.message}")
        self.streamer.shutdown()


# Global instance (initialized in lifespan)
runtime: DocentRuntime | None = None


def get_runtime() -> DocentRuntime:
    """Get the global runtime instance."""
    if runtime is None:
        raise RuntimeError("Docent runtime not initialized")
    return runtime
