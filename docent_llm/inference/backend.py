"""Abstract interface for the model-execution engine consumed by the session."""

from abc import ABC, abstractmethod
from typing import Any

from ..protocol.messages import SamplingConfig, SessionConfig


class InferenceBackend(ABC):
    """
    Tokenizer, decode and sample primitives of a model-execution engine.

    Native objects (models, contexts, sampler chains) are opaque to callers and
    only ever passed back into the backend that created them. Failures are
    reported by raising the matching ``DocentError`` subclass.
    """

    name: str = "backend"

    # -- model -----------------------------------------------------------------

    @abstractmethod
    def load_model(self, path: str) -> Any:
        """Load weights and vocabulary. Raises ModelLoadError."""

    @abstractmethod
    def free_model(self, model: Any) -> None:
        """Release a loaded model."""

    # -- execution context -----------------------------------------------------

    @abstractmethod
    def create_context(self, model: Any, config: SessionConfig) -> Any:
        """Allocate an execution context. Raises ContextCreationError."""

    @abstractmethod
    def free_context(self, ctx: Any) -> None:
        """Release an execution context."""

    @abstractmethod
    def context_size(self, ctx: Any) -> int:
        """Token capacity of the context."""

    @abstractmethod
    def decode(self, ctx: Any, tokens: list[int], position: int) -> None:
        """
        Evaluate ``tokens`` starting at ``position``.

        Logits are requested for the last token only. Raises DecodeError.
        """

    @abstractmethod
    def truncate(self, ctx: Any, position: int) -> None:
        """Drop every cached position at or after ``position``."""

    # -- sampler chain ---------------------------------------------------------

    @abstractmethod
    def create_sampler(self, model: Any, config: SamplingConfig) -> Any:
        """Build a min-p -> temperature -> seeded draw chain. Raises SamplerInitError."""

    @abstractmethod
    def free_sampler(self, sampler: Any) -> None:
        """Release a sampler chain."""

    @abstractmethod
    def reset_sampler(self, sampler: Any) -> None:
        """Discard per-generation filter state and reseed the draw."""

    @abstractmethod
    def sample(self, sampler: Any, ctx: Any) -> int:
        """Draw one token from the logits of the last decoded position."""

    # -- vocabulary ------------------------------------------------------------

    @abstractmethod
    def tokenize(
        self,
        model: Any,
        text: str,
        *,
        add_special: bool,
        parse_special: bool,
    ) -> list[int]:
        """Tokenize ``text``. Raises TokenizationError."""

    @abstractmethod
    def token_to_piece(self, model: Any, token: int, special: bool) -> bytes:
        """
        Raw bytes of one token (may be a partial UTF-8 sequence).

        With ``special`` set, control tokens such as chat-turn markers are
        rendered as their text instead of as empty bytes.
        """

    @abstractmethod
    def is_end_of_generation(self, model: Any, token: int) -> bool:
        """True for end-of-generation and end-of-sequence tokens."""
