"""
Model handle ownership.

At most one model is live at a time. A failed load never disturbs the
current handle; a successful load invalidates every session attached to
the previous handle before the previous weights are freed.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..observability.metrics import record_model_load
from ..protocol.errors import InvalidStateError, ModelLoadError
from .backend import InferenceBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelHandle:
    """Immutable handle to loaded weights and vocabulary."""

    path: str
    native: Any = field(repr=False, compare=False)
    generation: int
    loaded_at: float = field(default_factory=time.time, compare=False)


class ModelManager:
    """Owns the single live ModelHandle for one backend."""

    def __init__(self, backend: InferenceBackend):
        self.backend = backend
        self._handle: ModelHandle | None = None
        self._generation = 0
        self._sessions: list = []

    @property
    def current(self) -> ModelHandle | None:
        return self._handle

    @property
    def is_loaded(self) -> bool:
        return self._handle is not None

    def require(self, operation: str) -> ModelHandle:
        """Return the live handle or raise InvalidStateError."""
        if self._handle is None:
            raise InvalidStateError(operation, "without a loaded model")
        return self._handle

    def attach(self, session) -> None:
        """Register a session to be closed when its model is replaced or unloaded."""
        self._sessions.append(session)

    def load(self, path: str) -> ModelHandle:
        """
        Load a model, replacing the current one only on success.

        Raises:
            ModelLoadError: If the file is missing, malformed or too large
            SessionBusyError: If an attached session is generating
        """
        for session in self._sessions:
            session.ensure_not_generating("load a model")

        logger.info(f"Loading model from: {path}")
        start_time = time.monotonic()

        try:
            native = self.backend.load_model(path)
        except ModelLoadError:
            record_model_load(False)
            logger.error(f"Model load failed, keeping previous handle: {path}")
            raise
        except Exception as e:
            record_model_load(False)
            logger.exception(f"Unexpected error loading model: {path}")
            raise ModelLoadError(path, str(e)) from e

        self._generation += 1
        new_handle = ModelHandle(path=path, native=native, generation=self._generation)
        previous = self._handle

        if previous is not None:
            self._invalidate(previous)
        self._handle = new_handle
        if previous is not None:
            self.backend.free_model(previous.native)
            logger.info(f"Replaced model generation {previous.generation}")

        record_model_load(True)
        logger.info(
            f"Model loaded in {time.monotonic() - start_time:.2f}s "
            f"(generation {new_handle.generation})"
        )
        return new_handle

    def unload(self) -> None:
        """Invalidate attached sessions and free the live model."""
        if self._handle is None:
            return
        for session in self._sessions:
            session.ensure_not_generating("unload the model")
        handle = self._handle
        self._invalidate(handle)
        self._handle = None
        self.backend.free_model(handle.native)
        logger.info(f"Model unloaded (generation {handle.generation})")

    def _invalidate(self, handle: ModelHandle) -> None:
        for session in self._sessions:
            session.on_model_invalidated(handle)
