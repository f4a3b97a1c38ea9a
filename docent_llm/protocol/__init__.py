"""Protocol models and error types."""

from .errors import (
    ContextCreationError,
    DecodeError,
    DocentError,
    InvalidStateError,
    ModelLoadError,
    PrefixNotCachedError,
    SamplerInitError,
    SessionBusyError,
    SinkError,
    TokenizationError,
)
from .messages import ErrorKind, FinishReason, OperationResult, SessionState

__all__ = [
    "DocentError",
    "ModelLoadError",
    "ContextCreationError",
    "SamplerInitError",
    "InvalidStateError",
    "TokenizationError",
    "DecodeError",
    "PrefixNotCachedError",
    "SessionBusyError",
    "SinkError",
    "ErrorKind",
    "FinishReason",
    "OperationResult",
    "SessionState",
]
