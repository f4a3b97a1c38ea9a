"""Custom exceptions for the docent LLM core."""

from .messages import ErrorKind


class DocentError(Exception):
    """Base exception for inference session errors."""

    def __init__(self, kind: ErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(message)


class ModelLoadError(DocentError):
    """Raised when a model file is missing, malformed or cannot be loaded."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            ErrorKind.MODEL_LOAD_ERROR,
            f"Failed to load model '{path}': {reason}",
        )
        self.path = path


class ContextCreationError(DocentError):
    """Raised when the execution context cannot be allocated."""

    def __init__(self, reason: str):
        super().__init__(
            ErrorKind.CONTEXT_CREATION_ERROR,
            f"Failed to create execution context: {reason}",
        )


class SamplerInitError(DocentError):
    """Raised when the sampler chain cannot be built."""

    def __init__(self, reason: str):
        super().__init__(
            ErrorKind.SAMPLER_INIT_ERROR,
            f"Failed to initialize sampler chain: {reason}",
        )


class InvalidStateError(DocentError):
    """Raised when an operation is called out of lifecycle order."""

    def __init__(self, operation: str, state: str):
        super().__init__(
            ErrorKind.INVALID_STATE_ERROR,
            f"Cannot {operation} while session is {state}",
        )
        self.operation = operation
        self.state = state


class TokenizationError(DocentError):
    """Raised when text cannot be tokenized."""

    def __init__(self, reason: str):
        super().__init__(
            ErrorKind.TOKENIZATION_ERROR,
            f"Tokenization failed: {reason}",
        )


class DecodeError(DocentError):
    """Raised when a decode call fails."""

    def __init__(self, reason: str):
        super().__init__(
            ErrorKind.DECODE_ERROR,
            f"Decode failed: {reason}",
        )


class PrefixNotCachedError(DocentError):
    """Raised when generating before the fixed prefix was primed."""

    def __init__(self):
        super().__init__(
            ErrorKind.PREFIX_NOT_CACHED_ERROR,
            "Fixed prefix has not been cached; call prime_fixed_prefix first",
        )


class SessionBusyError(DocentError):
    """Raised when a generation is requested while another one runs."""

    def __init__(self):
        super().__init__(
            ErrorKind.SESSION_BUSY_ERROR,
            "Session is already generating",
        )


class SinkError(DocentError):
    """Raised when the caller's streaming sink fails."""

    def __init__(self, reason: str):
        super().__init__(
            ErrorKind.SINK_ERROR,
            f"Streaming sink failed: {reason}",
        )
