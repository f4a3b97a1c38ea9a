"""
Inference session lifecycle.

Implements:
- Uninitialized -> Ready -> Generating -> Ready state machine
- Scoped acquisition of the execution context and sampler chain
- Fixed-prefix priming through the prefix cache
- Decode/sample mediation for the streaming generator
- Cancellation flag checked once per generated token
"""

import logging
import threading
import time
from contextlib import ExitStack, contextmanager
from typing import Any, Iterator

from ..inference.model_handle import ModelHandle, ModelManager
from ..observability.metrics import record_prefill, update_session_state
from ..protocol.errors import (
    DecodeError,
    InvalidStateError,
    PrefixNotCachedError,
    SessionBusyError,
)
from ..protocol.messages import SamplingConfig, SessionConfig, SessionState
from .prefix_cache import PrefixCache, PrefixCacheState, iter_batches

logger = logging.getLogger(__name__)


class InferenceSession:
    """
    Owns one execution context and one sampler chain over the live model.

    The context and sampler exist exactly while the session is Ready or
    Generating. Only one generation may run at a time; a second request is
    rejected rather than queued.
    """

    def __init__(self, models: ModelManager):
        self.models = models
        self.backend = models.backend

        self._state = SessionState.UNINITIALIZED
        self._state_lock = threading.Lock()
        self._cancel = threading.Event()
        self._close_requested = False

        self._handle: ModelHandle | None = None
        self._ctx: Any = None
        self._sampler: Any = None
        self._capacity = 0
        self._position = 0
        self._prefix_cache = PrefixCache()

        self.config: SessionConfig | None = None
        self.sampling: SamplingConfig | None = None

        models.attach(self)

    # -- properties ------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def prefix_state(self) -> PrefixCacheState:
        return self._prefix_cache.state

    @property
    def position(self) -> int:
        """Next free position in the execution context."""
        return self._position

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def model(self) -> ModelHandle | None:
        return self._handle

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    # -- lifecycle -------------------------------------------------------------

    def init(
        self,
        config: SessionConfig | None = None,
        sampling: SamplingConfig | None = None,
    ) -> None:
        """
        Allocate the execution context and sampler chain.

        No-op when already Ready or Generating.

        Raises:
            InvalidStateError: If no model is loaded
            ContextCreationError: If the context cannot be allocated
            SamplerInitError: If the sampler chain cannot be built
        """
        with self._state_lock:
            if self._state is not SessionState.UNINITIALIZED:
                logger.debug(f"init() ignored: session already {self._state.value}")
                return

            handle = self.models.require("initialize a session")
            config = config or SessionConfig.from_settings()
            sampling = sampling or SamplingConfig.from_settings()

            with ExitStack() as stack:
                ctx = self.backend.create_context(handle.native, config)
                stack.callback(self.backend.free_context, ctx)

                sampler = self.backend.create_sampler(handle.native, sampling)
                stack.callback(self.backend.free_sampler, sampler)

                capacity = self.backend.context_size(ctx)

                # Both resources acquired: keep them
                stack.pop_all()

            self._handle = handle
            self._ctx = ctx
            self._sampler = sampler
            self._capacity = capacity
            self._position = 0
            self._prefix_cache.bind(ctx)
            self._close_requested = False
            self._cancel.clear()
            self.config = config
            self.sampling = sampling
            self._state = SessionState.READY

        update_session_state(self._state)
        logger.info(
            f"Session initialized: n_ctx={capacity} n_batch={config.max_batch_tokens} "
            f"threads={config.decode_threads} seed={sampling.seed}"
        )

    def close(self) -> None:
        """
        Release the sampler chain and context. Safe from any state.

        While Generating, the generation is cancelled and the release happens
        as soon as the loop unwinds.
        """
        with self._state_lock:
            if self._state is SessionState.UNINITIALIZED:
                return
            if self._state is SessionState.GENERATING:
                self._close_requested = True
                self._cancel.set()
                logger.info("Close requested during generation; deferring release")
                return
            self._release()

        update_session_state(self._state)
        logger.info("Session closed")

    def _release(self) -> None:
        sampler, ctx = self._sampler, self._ctx
        self._sampler = None
        self._ctx = None
        self._prefix_cache.unbind()
        self._handle = None
        self._capacity = 0
        self._position = 0
        self._close_requested = False
        self._state = SessionState.UNINITIALIZED

        try:
            if sampler is not None:
                self.backend.free_sampler(sampler)
        finally:
            if ctx is not None:
                self.backend.free_context(ctx)

    def ensure_not_generating(self, operation: str) -> None:
        if self._state is SessionState.GENERATING:
            logger.warning(f"Rejected '{operation}': session is generating")
            raise SessionBusyError()

    def on_model_invalidated(self, handle: ModelHandle) -> None:
        """Close the session if it was built on ``handle``."""
        if self._handle is not None and self._handle.generation == handle.generation:
            logger.info(f"Model generation {handle.generation} replaced; closing session")
            self.close()

    def cancel(self) -> bool:
        """Ask the running generation to stop after its current token."""
        if self._state is not SessionState.GENERATING:
            return False
        self._cancel.set()
        logger.info("Generation cancel requested")
        return True

    # -- prefix cache ----------------------------------------------------------

    def prime_fixed_prefix(self, text: str) -> bool:
        """
        Decode the fixed prefix once. Returns False on a cache hit.

        Raises:
            InvalidStateError: Unless the session is Ready
            TokenizationError: If the prefix cannot be tokenized or does not fit
            DecodeError: If decoding fails (the prefix stays uncached)
        """
        with self._state_lock:
            if self._state is not SessionState.READY:
                raise InvalidStateError("prime the fixed prefix", self._state.value)

            decoded = self._prefix_cache.prime(
                self.backend,
                self._handle.native,
                text,
                self.config.max_batch_tokens,
            )
            self._position = self._prefix_cache.token_count

        update_session_state(self._state, self._prefix_cache.token_count)
        return decoded

    # -- generation ------------------------------------------------------------

    @contextmanager
    def generating(self) -> Iterator["InferenceSession"]:
        """
        Hold the session in the Generating state for one generate() call.

        Raises:
            InvalidStateError: If the session is not initialized
            SessionBusyError: If a generation is already running
            PrefixNotCachedError: If the fixed prefix was never primed
        """
        with self._state_lock:
            if self._state is SessionState.UNINITIALIZED:
                raise InvalidStateError("generate", self._state.value)
            if self._state is SessionState.GENERATING:
                raise SessionBusyError()
            if not self._prefix_cache.valid:
                raise PrefixNotCachedError()
            self._cancel.clear()
            self._state = SessionState.GENERATING

        update_session_state(self._state, self._prefix_cache.token_count)
        try:
            yield self
        finally:
            with self._state_lock:
                if self._close_requested:
                    self._release()
                    logger.info("Session closed after generation")
                else:
                    self._state = SessionState.READY
                self._cancel.clear()
            update_session_state(self._state, self._prefix_cache.token_count)

    def _require_generating(self) -> None:
        if self._state is not SessionState.GENERATING:
            raise InvalidStateError("decode outside a generation", self._state.value)

    def tokenize_continuation(self, text: str) -> list[int]:
        """Tokenize a turn that continues the cached prefix (no begin-of-sequence)."""
        self._require_generating()
        return self.backend.tokenize(
            self._handle.native, text, add_special=False, parse_special=True
        )

    def rollback_to_prefix(self) -> None:
        """Drop everything after the cached prefix from the context."""
        self._require_generating()
        prefix_tokens = self._prefix_cache.token_count
        if self._position != prefix_tokens:
            self.backend.truncate(self._ctx, prefix_tokens)
            self._position = prefix_tokens

    def prefill(self, tokens: list[int]) -> None:
        """
        Decode a prompt continuation in batches from the current position.

        Raises:
            DecodeError: If the tokens do not fit or a decode call fails
        """
        self._require_generating()
        if self._position + len(tokens) > self._capacity:
            raise DecodeError(
                f"{len(tokens)} prompt tokens at position {self._position} "
                f"exceed context capacity {self._capacity}"
            )

        start_time = time.monotonic()
        start = self._position
        for offset, chunk in iter_batches(tokens, self.config.max_batch_tokens):
            self.backend.decode(self._ctx, chunk, start + offset)
            self._position = start + offset + len(chunk)

        record_prefill("user_turn", len(tokens), time.monotonic() - start_time)

    def reset_sampler(self) -> None:
        self._require_generating()
        self.backend.reset_sampler(self._sampler)

    def sample(self) -> int:
        return self.backend.sample(self._sampler, self._ctx)

    def decode_token(self, token: int) -> None:
        """Decode one generated token at the current position."""
        self.backend.decode(self._ctx, [token], self._position)
        self._position += 1

    def is_end_of_generation(self, token: int) -> bool:
        return self.backend.is_end_of_generation(self._handle.native, token)

    def token_to_piece(self, token: int) -> bytes:
        """Output bytes of a generated token; turn markers render as text."""
        return self.backend.token_to_piece(self._handle.native, token, special=True)

    def get_stats(self) -> dict:
        """Get session state for monitoring."""
        prefix = self._prefix_cache.state
        return {
            "state": self._state.value,
            "model_path": self._handle.path if self._handle else None,
            "model_generation": self._handle.generation if self._handle else None,
            "context_capacity": self._capacity,
            "position": self._position,
            "prefix_cache": {
                "valid": self._prefix_cache.valid,
                "token_count": prefix.token_count,
            },
        }
