"""
Pytest fixtures for docent LLM tests.

The native engine is replaced by ScriptedBackend: characters tokenize to
their code points, and the sampler replays a scripted list of pieces (or
draws seeded random pieces when no script is set).
"""

import random
from dataclasses import dataclass, field
from typing import Callable

import pytest

from docent_llm.inference.backend import InferenceBackend
from docent_llm.protocol.errors import (
    ContextCreationError,
    DecodeError,
    ModelLoadError,
    SamplerInitError,
    TokenizationError,
)
from docent_llm.protocol.messages import ArtworkMetadata, SamplingConfig, SessionConfig
from docent_llm.runtime import DocentRuntime

BOS = 1
EOG = 2
PIECE_BASE = 2_000_000


@dataclass
class FakeModel:
    path: str


@dataclass
class FakeContext:
    n_ctx: int
    tokens: list[int] = field(default_factory=list)


@dataclass
class FakeSampler:
    seed: int
    rng: random.Random = field(init=False)
    cursor: int = 0

    def __post_init__(self):
        self.rng = random.Random(self.seed)


class ScriptedBackend(InferenceBackend):
    """In-memory engine double that records every call."""

    name = "scripted"

    def __init__(self):
        self.pieces: list[bytes] = [b" a", b" b", b" c", b" d", b" e"]
        self.script: list[int] | None = None
        # Piece indexes that are control tokens (rendered only with special=True)
        self.control_pieces: set[int] = set()
        self.on_sample: Callable[[], None] | None = None

        self.fail_load = False
        self.fail_context = False
        self.fail_sampler = False
        self.fail_tokenize = False
        self.fail_decode_when: Callable[[int, list[int]], bool] | None = None

        self.loaded: list[str] = []
        self.freed_models: list[FakeModel] = []
        self.live_contexts: list[FakeContext] = []
        self.live_samplers: list[FakeSampler] = []
        self.decode_calls: list[tuple[int, int]] = []
        self.truncations: list[int] = []
        self.sampler_resets = 0

    def set_script(self, pieces: list[str | bytes]) -> None:
        """Emit ``pieces`` in order on every generation, then end-of-generation."""
        self.pieces = [p.encode("utf-8") if isinstance(p, str) else p for p in pieces]
        self.script = list(range(len(pieces)))

    def piece_token(self, index: int) -> int:
        return PIECE_BASE + index

    # -- model -----------------------------------------------------------------

    def load_model(self, path):
        if self.fail_load or path.endswith(".bad"):
            raise ModelLoadError(path, "scripted failure")
        self.loaded.append(path)
        return FakeModel(path)

    def free_model(self, model):
        self.freed_models.append(model)

    # -- execution context -----------------------------------------------------

    def create_context(self, model, config: SessionConfig):
        if self.fail_context:
            raise ContextCreationError("scripted failure")
        ctx = FakeContext(n_ctx=config.max_context_tokens)
        self.live_contexts.append(ctx)
        return ctx

    def free_context(self, ctx):
        self.live_contexts.remove(ctx)

    def context_size(self, ctx):
        return ctx.n_ctx

    def decode(self, ctx, tokens, position):
        if self.fail_decode_when is not None and self.fail_decode_when(position, tokens):
            raise DecodeError(f"scripted failure at position {position}")
        if position != len(ctx.tokens):
            raise DecodeError(f"non-contiguous decode at {position}, cached {len(ctx.tokens)}")
        if position + len(tokens) > ctx.n_ctx:
            raise DecodeError("context overflow")
        self.decode_calls.append((position, len(tokens)))
        ctx.tokens.extend(tokens)

    def truncate(self, ctx, position):
        self.truncations.append(position)
        del ctx.tokens[position:]

    # -- sampler chain ---------------------------------------------------------

    def create_sampler(self, model, config: SamplingConfig):
        if self.fail_sampler:
            raise SamplerInitError("scripted failure")
        sampler = FakeSampler(seed=config.seed)
        self.live_samplers.append(sampler)
        return sampler

    def free_sampler(self, sampler):
        self.live_samplers.remove(sampler)

    def reset_sampler(self, sampler):
        self.sampler_resets += 1
        sampler.rng = random.Random(sampler.seed)
        sampler.cursor = 0

    def sample(self, sampler, ctx):
        assert ctx.tokens, "sample() before any decode"
        if self.on_sample is not None:
            self.on_sample()
        if self.script is None:
            return self.piece_token(sampler.rng.randrange(len(self.pieces)))
        if sampler.cursor >= len(self.script):
            return EOG
        token = self.piece_token(self.script[sampler.cursor])
        sampler.cursor += 1
        return token

    # -- vocabulary ------------------------------------------------------------

    def tokenize(self, model, text, *, add_special, parse_special):
        if self.fail_tokenize:
            raise TokenizationError("scripted failure")
        tokens = [ord(c) for c in text]
        return [BOS] + tokens if add_special else tokens

    def token_to_piece(self, model, token, special):
        if token >= PIECE_BASE:
            index = token - PIECE_BASE
            if index in self.control_pieces and not special:
                return b""
            return self.pieces[index]
        return chr(token).encode("utf-8")

    def is_end_of_generation(self, model, token):
        return token == EOG


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(max_context_tokens=512, max_batch_tokens=32, decode_threads=1)


@pytest.fixture
def sampling_config() -> SamplingConfig:
    return SamplingConfig(min_p=0.05, min_keep=1, temperature=0.7, seed=7)


@pytest.fixture
def artwork() -> ArtworkMetadata:
    return ArtworkMetadata(
        title="The Starry Night",
        author="Vincent van Gogh",
        type="Painting",
        technique="Oil on canvas",
        school="Post-Impressionism",
        date="1889",
        description="A swirling night sky over a village.",
    )


@pytest.fixture
def runtime(backend):
    rt = DocentRuntime(
        backend,
        max_new_tokens=16,
        stop_sequences=["<|im_start|>", "<|im_end|>"],
        stop_window_chars=64,
    )
    yield rt
    rt.shutdown()


@pytest.fixture
def ready_runtime(runtime, session_config, sampling_config, artwork):
    """Runtime with a model loaded, a session open and the prefix cached."""
    assert runtime.load_model("/models/qwen3-0.6b.gguf").ok
    assert runtime.init_session(session_config, sampling_config).ok
    assert runtime.prime_fixed_prefix(artwork).ok
    return runtime
