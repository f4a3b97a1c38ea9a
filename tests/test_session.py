"""Tests for the inference session state machine."""

import pytest

from docent_llm.core.session import InferenceSession
from docent_llm.inference.model_handle import ModelManager
from docent_llm.protocol.errors import (
    ContextCreationError,
    InvalidStateError,
    PrefixNotCachedError,
    SamplerInitError,
    SessionBusyError,
)
from docent_llm.protocol.messages import SessionState


@pytest.fixture
def models(backend):
    manager = ModelManager(backend)
    manager.load("/models/qwen3-0.6b.gguf")
    return manager


@pytest.fixture
def session(models):
    return InferenceSession(models)


def test_init_requires_model(backend):
    session = InferenceSession(ModelManager(backend))

    with pytest.raises(InvalidStateError):
        session.init()
    assert session.state is SessionState.UNINITIALIZED


def test_init_is_idempotent(backend, session, session_config, sampling_config):
    session.init(session_config, sampling_config)
    session.init(session_config, sampling_config)

    assert session.state is SessionState.READY
    assert len(backend.live_contexts) == 1
    assert len(backend.live_samplers) == 1
    assert session.capacity == 512
    assert session.position == 0


def test_context_failure_leaves_uninitialized(backend, session, session_config):
    backend.fail_context = True

    with pytest.raises(ContextCreationError):
        session.init(session_config)

    assert session.state is SessionState.UNINITIALIZED
    assert backend.live_contexts == []


def test_sampler_failure_frees_context(backend, session, session_config):
    """No context leaks when the sampler chain cannot be built."""
    backend.fail_sampler = True

    with pytest.raises(SamplerInitError):
        session.init(session_config)

    assert session.state is SessionState.UNINITIALIZED
    assert backend.live_contexts == []
    assert backend.live_samplers == []


def test_close_is_safe_from_any_state(backend, session, session_config):
    session.close()
    session.init(session_config)
    session.close()
    session.close()

    assert session.state is SessionState.UNINITIALIZED
    assert backend.live_contexts == []
    assert backend.live_samplers == []


def test_prime_requires_ready(session):
    with pytest.raises(InvalidStateError):
        session.prime_fixed_prefix("prefix")


def test_prime_sets_position(session, session_config):
    session.init(session_config)

    assert session.prime_fixed_prefix("prefix") is True
    assert session.prefix_state.valid is True
    assert session.prefix_state.token_count == 7
    assert session.position == 7


def test_generating_before_prime(session, session_config):
    """Generation without a cached prefix fails and keeps the session Ready."""
    session.init(session_config)

    with pytest.raises(PrefixNotCachedError):
        with session.generating():
            pass
    assert session.state is SessionState.READY


def test_generating_after_close(session, session_config):
    session.init(session_config)
    session.prime_fixed_prefix("prefix")
    session.close()

    with pytest.raises(InvalidStateError):
        with session.generating():
            pass


def test_generating_is_exclusive(session, session_config):
    session.init(session_config)
    session.prime_fixed_prefix("prefix")

    with session.generating():
        assert session.state is SessionState.GENERATING
        with pytest.raises(SessionBusyError):
            with session.generating():
                pass

    assert session.state is SessionState.READY


def test_close_during_generation_is_deferred(backend, session, session_config):
    session.init(session_config)
    session.prime_fixed_prefix("prefix")

    with session.generating():
        session.close()
        assert session.cancel_requested is True
        assert session.state is SessionState.GENERATING
        assert len(backend.live_contexts) == 1

    assert session.state is SessionState.UNINITIALIZED
    assert backend.live_contexts == []


def test_cancel_only_while_generating(session, session_config):
    session.init(session_config)
    session.prime_fixed_prefix("prefix")

    assert session.cancel() is False
    with session.generating():
        assert session.cancel() is True
        assert session.cancel_requested is True
    assert session.cancel_requested is False


def test_model_reload_invalidates_prefix(backend, models, session, session_config):
    """Replacing the model closes the session; the next init starts uncached."""
    session.init(session_config)
    session.prime_fixed_prefix("prefix")

    models.load("/models/other.gguf")

    assert session.state is SessionState.UNINITIALIZED
    assert session.prefix_state.valid is False

    session.init(session_config)
    assert session.prefix_state.valid is False
    assert session.model.generation == 2


def test_model_reload_rejected_while_generating(backend, models, session, session_config):
    session.init(session_config)
    session.prime_fixed_prefix("prefix")

    with session.generating():
        with pytest.raises(SessionBusyError):
            models.load("/models/other.gguf")

    assert models.current.generation == 1
    assert backend.loaded == ["/models/qwen3-0.6b.gguf"]


def test_get_stats(session, session_config):
    session.init(session_config)
    session.prime_fixed_prefix("prefix")

    stats = session.get_stats()

    assert stats["state"] == "ready"
    assert stats["model_path"] == "/models/qwen3-0.6b.gguf"
    assert stats["prefix_cache"] == {"valid": True, "token_count": 7}
