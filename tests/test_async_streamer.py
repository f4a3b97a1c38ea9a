"""Tests for async iteration over the blocking generator."""

import asyncio
import threading
import time
from contextlib import aclosing

import pytest

from docent_llm.protocol.errors import PrefixNotCachedError
from docent_llm.protocol.messages import FinishReason, SessionState


def wait_until(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        time.sleep(0.001)


@pytest.mark.asyncio
async def test_stream_yields_tokens_in_order(backend, ready_runtime):
    backend.set_script(["The", " night", " sky"])
    stream = ready_runtime.streamer.stream("What is this?")

    texts = [event.text async for event in stream]

    assert texts == ["The", " night", " sky"]
    assert stream.result.finish_reason is FinishReason.EOS
    assert stream.result.text == "The night sky"


@pytest.mark.asyncio
async def test_stream_error_is_raised(runtime, session_config):
    runtime.load_model("/models/qwen3-0.6b.gguf")
    runtime.init_session(session_config)
    stream = runtime.streamer.stream("Hello?")

    with pytest.raises(PrefixNotCachedError):
        async for _ in stream:
            pass
    assert stream.result is None


@pytest.mark.asyncio
async def test_leaving_early_cancels(backend, ready_runtime):
    """Closing the stream after one token cancels its own generation."""
    stream = ready_runtime.streamer.stream("Describe it")
    samples = []

    def hold_second_sample():
        samples.append(1)
        if len(samples) == 2:
            wait_until(lambda: stream.abandoned)

    backend.on_sample = hold_second_sample
    received = []

    async with aclosing(stream):
        async for event in stream:
            received.append(event)
            break

    assert len(received) == 1
    assert stream.result.finish_reason is FinishReason.CANCELLED
    assert stream.result.stats.total_tokens == 2
    assert ready_runtime.session.state is SessionState.READY
    assert ready_runtime.session.cancel_requested is False


@pytest.mark.asyncio
async def test_abandoning_queued_stream_spares_running_one(backend, ready_runtime):
    """Dropping a stream still waiting for the inference thread leaves the running one alone."""
    streamer = ready_runtime.streamer
    release = threading.Event()
    samples = []

    def hold_after_first_sample():
        samples.append(1)
        if len(samples) == 2:
            release.wait(timeout=5)

    backend.on_sample = hold_after_first_sample

    first = streamer.stream("First question")
    received = [await first.__anext__()]

    second = streamer.stream("Second question")
    reader = asyncio.ensure_future(second.__anext__())
    await asyncio.sleep(0)
    reader.cancel()
    with pytest.raises(asyncio.CancelledError):
        await reader
    assert second.abandoned

    release.set()
    received += [event async for event in first]

    assert first.result.finish_reason is FinishReason.MAX_TOKENS
    assert len(received) == 16

    # Drain the inference thread: the abandoned job is skipped, not generated
    await streamer.run_serialized(lambda: None)
    assert second.result is None
    assert backend.sampler_resets == 1
    assert ready_runtime.session.state is SessionState.READY


@pytest.mark.asyncio
async def test_concurrent_streams_keep_their_own_results(backend, ready_runtime):
    backend.set_script(["one", " answer"])
    streamer = ready_runtime.streamer

    async def collect(question):
        stream = streamer.stream(question)
        texts = [event.text async for event in stream]
        return texts, stream.result

    (texts_a, result_a), (texts_b, result_b) = await asyncio.gather(
        collect("First?"), collect("Second?")
    )

    assert result_a is not result_b
    assert "".join(texts_a) == result_a.text == "one answer"
    assert "".join(texts_b) == result_b.text == "one answer"
    assert backend.sampler_resets == 2


@pytest.mark.asyncio
async def test_run_serialized(backend, ready_runtime):
    result = await ready_runtime.streamer.run_serialized(
        ready_runtime.reprime, {"title": "Water Lilies"}
    )

    assert result.ok
    assert ready_runtime.artwork.title == "Water Lilies"
