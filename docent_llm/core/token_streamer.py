"""
Token streaming over an inference session.

Handles:
- Incremental user-turn prefill on top of the cached prefix
- The sample -> emit -> stop-check -> decode loop
- Stop-sequence detection across fragment boundaries
- Async iteration over tokens for event-loop hosts
"""

import asyncio
import codecs
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, TypeVar

from ..config import settings
from ..observability.metrics import record_generation_metrics
from ..protocol.errors import DocentError, SinkError
from ..protocol.messages import (
    FinishReason,
    GenerationRequest,
    GenerationResult,
    GenerationStats,
    TokenEvent,
)
from .prompt_formatter import format_user_turn
from .session import InferenceSession
from .stop_sequences import StopSequenceMatcher
from .telemetry import GenerationTelemetry

logger = logging.getLogger(__name__)

TokenSink = Callable[[TokenEvent], None]
T = TypeVar("T")


class StreamingGenerator:
    """
    Drives token-by-token generation for one user turn at a time.

    Every turn is decoded directly after the cached prefix; earlier turns are
    dropped from the context first, so no conversation history accumulates.
    """

    def __init__(
        self,
        session: InferenceSession,
        max_new_tokens: int | None = None,
        stop_sequences: list[str] | None = None,
        stop_window_chars: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.max_new_tokens = (
            settings.max_new_tokens if max_new_tokens is None else max_new_tokens
        )
        self.stop_sequences = list(
            settings.stop_sequences if stop_sequences is None else stop_sequences
        )
        self.stop_window_chars = (
            settings.stop_window_chars if stop_window_chars is None else stop_window_chars
        )
        self._clock = clock
        self.last_stats: GenerationStats | None = None

    def generate(
        self,
        request: GenerationRequest | str,
        sink: TokenSink | None = None,
    ) -> GenerationResult:
        """
        Answer one user turn, streaming each fragment to ``sink``.

        Blocks until generation completes, is cancelled, or fails.

        Raises:
            InvalidStateError: If the session is not initialized
            SessionBusyError: If another generation is running
            PrefixNotCachedError: If the fixed prefix was never primed
            TokenizationError: If the user turn cannot be tokenized
            DecodeError: If a decode call fails
            SinkError: If ``sink`` raises
        """
        if isinstance(request, str):
            request = GenerationRequest(user_text=request)

        telemetry = GenerationTelemetry(self._clock)
        token_ids: list[int] = []
        text_parts: list[str] = []
        outcome = "error"

        with self.session.generating() as session:
            telemetry.start()
            try:
                prompt_tokens = session.tokenize_continuation(
                    format_user_turn(request.user_text)
                )
                session.rollback_to_prefix()
                session.prefill(prompt_tokens)
                session.reset_sampler()

                logger.debug(
                    f"User turn prefilled: {len(prompt_tokens)} tokens, "
                    f"position {session.position}"
                )

                finish_reason = self._run_loop(
                    session, sink, telemetry, token_ids, text_parts
                )
                outcome = finish_reason.value
            except SinkError:
                outcome = "sink_error"
                raise
            except DocentError as e:
                outcome = e.kind.value.lower()
                raise
            finally:
                stats = telemetry.finish()
                self.last_stats = stats
                record_generation_metrics(
                    finish_reason=outcome,
                    completion_tokens=stats.total_tokens,
                    total_seconds=stats.total_time_seconds,
                    tokens_per_second=stats.tokens_per_second,
                )
                logger.info(
                    f"Generation finished ({outcome}): {stats.total_tokens} tokens in "
                    f"{stats.total_time_seconds:.2f}s ({stats.tokens_per_second:.1f} tok/s)"
                )

        return GenerationResult(
            text="".join(text_parts),
            finish_reason=finish_reason,
            token_ids=token_ids,
            stats=stats,
        )

    def _run_loop(
        self,
        session: InferenceSession,
        sink: TokenSink | None,
        telemetry: GenerationTelemetry,
        token_ids: list[int],
        text_parts: list[str],
    ) -> FinishReason:
        utf8 = codecs.getincrementaldecoder("utf-8")()
        finish_reason = self._sample_tokens(
            session, sink, telemetry, token_ids, text_parts, utf8
        )
        if finish_reason is FinishReason.DETOKENIZE_ERROR:
            return finish_reason

        # Bytes of a character cut off by the end of the loop
        try:
            utf8.decode(b"", final=True)
        except UnicodeDecodeError as e:
            logger.warning(f"Generation ended inside a multi-byte character: {e}")
            return FinishReason.DETOKENIZE_ERROR
        return finish_reason

    def _sample_tokens(
        self,
        session: InferenceSession,
        sink: TokenSink | None,
        telemetry: GenerationTelemetry,
        token_ids: list[int],
        text_parts: list[str],
        utf8: codecs.IncrementalDecoder,
    ) -> FinishReason:
        matcher = StopSequenceMatcher(self.stop_sequences, self.stop_window_chars)

        for index in range(self.max_new_tokens):
            if session.cancel_requested:
                return FinishReason.CANCELLED

            token = session.sample()
            if session.is_end_of_generation(token):
                return FinishReason.EOS

            try:
                fragment = utf8.decode(session.token_to_piece(token))
            except UnicodeDecodeError as e:
                logger.warning(f"Token {token} could not be converted to text: {e}")
                return FinishReason.DETOKENIZE_ERROR

            telemetry.record_token()
            token_ids.append(token)
            text_parts.append(fragment)

            if sink is not None:
                try:
                    sink(TokenEvent(index=index, token_id=token, text=fragment))
                except Exception as e:
                    logger.warning(f"Sink failed at token {index}: {e}")
                    raise SinkError(str(e)) from e

            if matcher.feed(fragment):
                logger.debug(f"Stop sequence {matcher.matched!r} matched")
                return FinishReason.STOP_SEQUENCE

            if session.position >= session.capacity:
                return FinishReason.CONTEXT_FULL

            session.decode_token(token)

        return FinishReason.MAX_TOKENS


_DONE = object()


class TokenStream:
    """
    One question answered through an AsyncTokenStreamer.

    Iterate it for TokenEvents; ``result`` holds the GenerationResult once
    iteration finished. Closing it early, or cancelling the task awaiting
    it, abandons only this stream: a job still queued behind another
    generation is skipped, and a running one cancels itself at its next
    token. Other streams are never touched.
    """

    def __init__(self, streamer: "AsyncTokenStreamer", question: str):
        self._generator = streamer.generator
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._abandoned = threading.Event()
        self._started = threading.Event()
        self._done = False
        self.result: GenerationResult | None = None

        self._future = self._loop.run_in_executor(
            streamer._executor,
            self._job,
            GenerationRequest(user_text=question),
        )
        self._future.add_done_callback(self._on_job_done)

    @property
    def abandoned(self) -> bool:
        return self._abandoned.is_set()

    # Runs on the inference thread
    def _job(self, request: GenerationRequest) -> GenerationResult | None:
        if self._abandoned.is_set():
            logger.debug("Skipping abandoned stream before it started")
            return None
        self._started.set()
        return self._generator.generate(request, self._sink)

    # Runs on the inference thread, inside this stream's own generation
    def _sink(self, event: TokenEvent) -> None:
        if self._abandoned.is_set():
            self._generator.session.cancel()
            return
        asyncio.run_coroutine_threadsafe(self._queue.put(event), self._loop).result()

    def _on_job_done(self, future: asyncio.Future) -> None:
        if self._abandoned.is_set() and not future.cancelled():
            # Nobody reads an abandoned stream
            error = future.exception()
            if error is not None:
                logger.debug(f"Abandoned generation ended with {error!r}")
        self._queue.put_nowait(_DONE)

    def _abandon(self) -> None:
        if not self._abandoned.is_set():
            self._abandoned.set()
            logger.info("Token stream abandoned by its consumer")

    def __aiter__(self) -> "TokenStream":
        return self

    async def __anext__(self) -> TokenEvent:
        if self._done:
            raise StopAsyncIteration

        try:
            item = await self._queue.get()
        except asyncio.CancelledError:
            self._abandon()
            raise

        if item is _DONE:
            self._done = True
            # Re-raises errors from the generator
            self.result = await self._future
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        """Abandon the stream; waits for this stream's job if it is running."""
        if self._done:
            return
        self._done = True
        self._abandon()
        if not self._started.is_set():
            return
        try:
            self.result = await self._future
        except DocentError as e:
            logger.debug(f"Abandoned generation ended with {e.kind.value}")


class AsyncTokenStreamer:
    """
    Async iteration over a blocking StreamingGenerator.

    Generation runs on a single-thread executor so engine calls are never
    concurrent; streams opened while another is running wait their turn.
    Each sink call returns only after its event is queued on the event loop,
    so the next token is not sampled before the previous one was handed over.

    Usage:
        stream = streamer.stream("Who painted this?")
        async with aclosing(stream):
            async for event in stream:
                ...
        result = stream.result
    """

    def __init__(self, generator: StreamingGenerator):
        self.generator = generator
        # Single thread: the engine is not reentrant
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="llm-inference",
        )

    def stream(self, question: str) -> TokenStream:
        """Queue one question; must be called from a running event loop."""
        return TokenStream(self, question)

    async def run_serialized(self, fn: Callable[..., T], *args) -> T:
        """Run a blocking engine call on the inference thread."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
