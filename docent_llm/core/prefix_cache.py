"""
Fixed-prefix caching.

The system turn is decoded into the execution context once; every user turn
afterwards continues from the cached position instead of re-evaluating it.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any

from ..inference.backend import InferenceBackend
from ..observability.metrics import record_prefill, record_prefix_cache
from ..protocol.errors import DecodeError, TokenizationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrefixCacheState:
    """How many prefix tokens sit in the live context, and whether they are usable."""

    token_count: int = 0
    valid: bool = False


def iter_batches(tokens: list[int], batch_size: int):
    """Yield ``(offset, chunk)`` pairs of at most ``batch_size`` tokens."""
    for offset in range(0, len(tokens), batch_size):
        yield offset, tokens[offset:offset + batch_size]


class PrefixCache:
    """
    Tracks the fixed prefix decoded into one execution context.

    The cache is bound to a single context object; binding a new context or
    unbinding resets the state, so a valid state never outlives its context.
    """

    def __init__(self):
        self._ctx: Any = None
        self._state = PrefixCacheState()
        self.text: str | None = None

    @property
    def state(self) -> PrefixCacheState:
        return self._state

    @property
    def valid(self) -> bool:
        return self._state.valid and self._ctx is not None

    @property
    def token_count(self) -> int:
        return self._state.token_count if self.valid else 0

    def bind(self, ctx: Any) -> None:
        self._ctx = ctx
        self._state = PrefixCacheState()
        self.text = None

    def unbind(self) -> None:
        self.bind(None)

    def prime(
        self,
        backend: InferenceBackend,
        model: Any,
        text: str,
        batch_size: int,
    ) -> bool:
        """
        Decode ``text`` into the bound context unless already cached.

        Returns True if the prefix was decoded, False on a cache hit.

        Raises:
            TokenizationError: If the prefix is empty or does not fit the context
            DecodeError: If a decode call fails (the context is cleared)
        """
        if self.valid:
            if text != self.text:
                logger.warning(
                    "Prefix already cached with different text; "
                    "recreate the session to change it"
                )
            record_prefix_cache(True, self._state.token_count)
            return False

        tokens = backend.tokenize(model, text, add_special=True, parse_special=True)
        if not tokens:
            raise TokenizationError("fixed prefix produced no tokens")

        capacity = backend.context_size(self._ctx)
        if len(tokens) >= capacity:
            raise TokenizationError(
                f"fixed prefix of {len(tokens)} tokens does not fit a context of {capacity}"
            )

        start_time = time.monotonic()
        try:
            for offset, chunk in iter_batches(tokens, batch_size):
                backend.decode(self._ctx, chunk, offset)
        except DecodeError:
            backend.truncate(self._ctx, 0)
            logger.error("Prefix decode failed; context cleared")
            raise

        elapsed = time.monotonic() - start_time
        self._state = PrefixCacheState(token_count=len(tokens), valid=True)
        self.text = text

        record_prefill("prefix", len(tokens), elapsed)
        record_prefix_cache(False, len(tokens))
        logger.info(f"Fixed prefix cached: {len(tokens)} tokens in {elapsed:.2f}s")
        return True
