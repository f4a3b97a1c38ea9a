"""
llama.cpp backend built on the llama-cpp-python low-level bindings.

Provides:
- GGUF model loading with a magic-byte check
- Context creation from the session bundle (n_ctx, n_batch, n_threads)
- min-p -> temperature -> seeded distribution sampler chain
- Growth-on-demand tokenization and token-to-piece conversion
- Positioned batch decode and KV-cache truncation
"""

import ctypes
import logging
import os
from typing import Any

from ..protocol.errors import (
    ContextCreationError,
    DecodeError,
    ModelLoadError,
    SamplerInitError,
    TokenizationError,
)
from ..protocol.messages import SamplingConfig, SessionConfig
from .backend import InferenceBackend

logger = logging.getLogger(__name__)

GGUF_MAGIC = b"GGUF"


class LlamaCppBackend(InferenceBackend):
    """InferenceBackend over ``llama_cpp`` (one process-wide llama backend)."""

    name = "llama.cpp"

    def __init__(self, gpu_layers: int = 0):
        # Import here to avoid loading the native library at module import time
        import llama_cpp

        self._lib = llama_cpp
        self._gpu_layers = gpu_layers
        self._lib.llama_backend_init()

    # -- model -----------------------------------------------------------------

    def load_model(self, path: str) -> Any:
        if not os.path.isfile(path):
            raise ModelLoadError(path, "file not found")

        with open(path, "rb") as f:
            magic = f.read(4)
        if magic != GGUF_MAGIC:
            raise ModelLoadError(path, "not a GGUF file")

        params = self._lib.llama_model_default_params()
        params.n_gpu_layers = self._gpu_layers
        model = self._lib.llama_model_load_from_file(path.encode("utf-8"), params)
        if not model:
            raise ModelLoadError(path, "llama.cpp rejected the model (malformed or out of memory)")
        return model

    def free_model(self, model: Any) -> None:
        self._lib.llama_model_free(model)

    def _vocab(self, model: Any) -> Any:
        return self._lib.llama_model_get_vocab(model)

    # -- execution context -----------------------------------------------------

    def create_context(self, model: Any, config: SessionConfig) -> Any:
        params = self._lib.llama_context_default_params()
        params.n_ctx = config.max_context_tokens
        params.n_batch = config.max_batch_tokens
        params.n_ubatch = config.max_batch_tokens
        params.n_threads = config.decode_threads
        params.n_threads_batch = config.decode_threads

        ctx = self._lib.llama_init_from_model(model, params)
        if not ctx:
            raise ContextCreationError(
                f"n_ctx={config.max_context_tokens} n_batch={config.max_batch_tokens}"
            )
        return ctx

    def free_context(self, ctx: Any) -> None:
        self._lib.llama_free(ctx)

    def context_size(self, ctx: Any) -> int:
        return int(self._lib.llama_n_ctx(ctx))

    def decode(self, ctx: Any, tokens: list[int], position: int) -> None:
        if not tokens:
            return

        batch = self._lib.llama_batch_init(len(tokens), 0, 1)
        try:
            for i, token in enumerate(tokens):
                batch.token[i] = token
                batch.pos[i] = position + i
                batch.n_seq_id[i] = 1
                batch.seq_id[i][0] = 0
                batch.logits[i] = i == len(tokens) - 1
            batch.n_tokens = len(tokens)

            rc = self._lib.llama_decode(ctx, batch)
        finally:
            self._lib.llama_batch_free(batch)

        if rc != 0:
            raise DecodeError(f"llama_decode returned {rc} at position {position}")

    def truncate(self, ctx: Any, position: int) -> None:
        if hasattr(self._lib, "llama_memory_seq_rm"):
            self._lib.llama_memory_seq_rm(self._lib.llama_get_memory(ctx), 0, position, -1)
        else:
            self._lib.llama_kv_self_seq_rm(ctx, 0, position, -1)

    # -- sampler chain ---------------------------------------------------------

    def create_sampler(self, model: Any, config: SamplingConfig) -> Any:
        chain = self._lib.llama_sampler_chain_init(
            self._lib.llama_sampler_chain_default_params()
        )
        if not chain:
            raise SamplerInitError("llama_sampler_chain_init returned NULL")

        # The chain takes ownership of each stage
        self._lib.llama_sampler_chain_add(
            chain, self._lib.llama_sampler_init_min_p(config.min_p, config.min_keep)
        )
        self._lib.llama_sampler_chain_add(
            chain, self._lib.llama_sampler_init_temp(config.temperature)
        )
        self._lib.llama_sampler_chain_add(
            chain, self._lib.llama_sampler_init_dist(config.seed)
        )
        return chain

    def free_sampler(self, sampler: Any) -> None:
        self._lib.llama_sampler_free(sampler)

    def reset_sampler(self, sampler: Any) -> None:
        self._lib.llama_sampler_reset(sampler)

    def sample(self, sampler: Any, ctx: Any) -> int:
        return int(self._lib.llama_sampler_sample(sampler, ctx, -1))

    # -- vocabulary ------------------------------------------------------------

    def tokenize(
        self,
        model: Any,
        text: str,
        *,
        add_special: bool,
        parse_special: bool,
    ) -> list[int]:
        vocab = self._vocab(model)
        data = text.encode("utf-8")
        capacity = len(data) + 2

        # A negative count reports the capacity actually required
        while True:
            buf = (self._lib.llama_token * capacity)()
            n = self._lib.llama_tokenize(
                vocab, data, len(data), buf, capacity, add_special, parse_special
            )
            if n >= 0:
                return list(buf[:n])
            if -n <= capacity:
                raise TokenizationError(f"llama_tokenize returned {n}")
            capacity = max(-n, capacity * 2)

    def token_to_piece(self, model: Any, token: int, special: bool) -> bytes:
        vocab = self._vocab(model)
        capacity = 32
        while True:
            buf = ctypes.create_string_buffer(capacity)
            n = self._lib.llama_token_to_piece(vocab, token, buf, capacity, 0, special)
            if n >= 0:
                return buf.raw[:n]
            capacity = max(-n, capacity * 2)

    def is_end_of_generation(self, model: Any, token: int) -> bool:
        return bool(self._lib.llama_vocab_is_eog(self._vocab(model), token))
