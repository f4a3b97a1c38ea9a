"""Pydantic models for the session API and the WebSocket protocol."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from ..config import settings


# =============================================================================
# Enums
# =============================================================================


class ErrorKind(str, Enum):
    """Machine-readable failure kinds reported to the host."""

    MODEL_LOAD_ERROR = "MODEL_LOAD_ERROR"
    CONTEXT_CREATION_ERROR = "CONTEXT_CREATION_ERROR"
    SAMPLER_INIT_ERROR = "SAMPLER_INIT_ERROR"
    INVALID_STATE_ERROR = "INVALID_STATE_ERROR"
    TOKENIZATION_ERROR = "TOKENIZATION_ERROR"
    DECODE_ERROR = "DECODE_ERROR"
    PREFIX_NOT_CACHED_ERROR = "PREFIX_NOT_CACHED_ERROR"
    SESSION_BUSY_ERROR = "SESSION_BUSY_ERROR"
    SINK_ERROR = "SINK_ERROR"


class SessionState(str, Enum):
    """Lifecycle states of an inference session."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    GENERATING = "generating"


class FinishReason(str, Enum):
    """Why a generation loop ended without raising."""

    EOS = "eos"
    STOP_SEQUENCE = "stop_sequence"
    MAX_TOKENS = "max_tokens"
    CONTEXT_FULL = "context_full"
    CANCELLED = "cancelled"
    DETOKENIZE_ERROR = "detokenize_error"


class Role(str, Enum):
    """Chat template roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class MessageType(str, Enum):
    """Message types for the WebSocket protocol."""

    # Client -> Server
    ASK = "ask"
    SET_ARTWORK = "set_artwork"

    # Server -> Client
    TOKEN = "token"
    ANSWER_DONE = "answer_done"
    ARTWORK_SET = "artwork_set"
    ERROR = "error"


# =============================================================================
# Session configuration
# =============================================================================


class SessionConfig(BaseModel):
    """Thread and capacity bundle fixed at session init time."""

    max_context_tokens: int = Field(default=2048, ge=1)
    max_batch_tokens: int = Field(default=512, ge=1)
    decode_threads: int = Field(default=4, ge=1)

    @model_validator(mode="after")
    def _batch_fits_context(self) -> "SessionConfig":
        if self.max_batch_tokens > self.max_context_tokens:
            raise ValueError("max_batch_tokens must not exceed max_context_tokens")
        return self

    @classmethod
    def from_settings(cls) -> "SessionConfig":
        return cls(
            max_context_tokens=settings.max_context_tokens,
            max_batch_tokens=min(settings.max_batch_tokens, settings.max_context_tokens),
            decode_threads=settings.decode_threads,
        )


class SamplingConfig(BaseModel):
    """Parameters of the min-p -> temperature -> seeded draw chain."""

    min_p: float = Field(default=0.05, ge=0.0, le=1.0)
    min_keep: int = Field(default=1, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    seed: int = Field(default=42, ge=0)

    @classmethod
    def from_settings(cls) -> "SamplingConfig":
        return cls(
            min_p=settings.min_p,
            min_keep=settings.min_keep,
            temperature=settings.temperature,
            seed=settings.seed,
        )


# =============================================================================
# Prompt inputs
# =============================================================================


class ArtworkMetadata(BaseModel):
    """Structured artwork fields rendered into the system turn."""

    title: str = ""
    author: str = ""
    type: str = ""
    technique: str = ""
    school: str = ""
    date: str = ""
    description: str = ""


class GenerationRequest(BaseModel):
    """A single user question."""

    user_text: str


# =============================================================================
# Generation outputs
# =============================================================================


class TokenEvent(BaseModel):
    """One decoded text fragment, in generation order."""

    index: int = Field(..., ge=0, description="Position of the token in this answer")
    token_id: int
    text: str


class GenerationStats(BaseModel):
    """Wall-clock telemetry for one generate() call."""

    total_tokens: int = 0
    total_time_seconds: float = 0.0
    tokens_per_second: float = 0.0


class GenerationResult(BaseModel):
    """Completed generation."""

    text: str
    finish_reason: FinishReason
    token_ids: list[int] = Field(default_factory=list)
    stats: GenerationStats = Field(default_factory=GenerationStats)


class OperationResult(BaseModel):
    """Boolean-plus-kind result returned by every host boundary operation."""

    ok: bool
    kind: ErrorKind | None = None
    message: str | None = None
    generation: GenerationResult | None = None

    @classmethod
    def success(cls, generation: GenerationResult | None = None) -> "OperationResult":
        return cls(ok=True, generation=generation)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "OperationResult":
        return cls(ok=False, kind=kind, message=message)

    def __bool__(self) -> bool:
        return self.ok


# =============================================================================
# Client -> Server Messages
# =============================================================================


class AskMessage(BaseModel):
    """Question about the current artwork."""

    type: Literal[MessageType.ASK] = MessageType.ASK
    question: str = Field(..., min_length=1, description="User question")


class SetArtworkMessage(BaseModel):
    """Replace the artwork the fixed prefix describes."""

    type: Literal[MessageType.SET_ARTWORK] = MessageType.SET_ARTWORK
    artwork: ArtworkMetadata


# =============================================================================
# Server -> Client Messages
# =============================================================================


class TokenMessage(BaseModel):
    """Streamed answer fragment."""

    type: Literal[MessageType.TOKEN] = MessageType.TOKEN
    text: str
    index: int


class AnswerDoneMessage(BaseModel):
    """Sent once the answer finished streaming."""

    type: Literal[MessageType.ANSWER_DONE] = MessageType.ANSWER_DONE
    finish_reason: FinishReason
    stats: GenerationStats


class ArtworkSetMessage(BaseModel):
    """Sent once the new artwork prefix is cached."""

    type: Literal[MessageType.ARTWORK_SET] = MessageType.ARTWORK_SET
    prefix_tokens: int


class ErrorMessage(BaseModel):
    """Error report."""

    type: Literal[MessageType.ERROR] = MessageType.ERROR
    code: ErrorKind | Literal["INVALID_MESSAGE", "INTERNAL_ERROR"]
    message: str
