"""
Prometheus metrics for the docent LLM core.

Exports:
- Tokens per second and generation duration histograms
- Generation outcomes by finish reason
- Prefix cache hits/misses
- Errors by kind
- Session state gauge
"""

from prometheus_client import Counter, Gauge, Histogram

from ..protocol.messages import SessionState

# =============================================================================
# Latency metrics
# =============================================================================

docent_tokens_per_second = Histogram(
    "docent_tokens_per_second",
    "Token generation rate (tokens per second)",
    buckets=(1, 2, 5, 10, 15, 20, 30, 50, 75, 100),
)

docent_generation_duration = Histogram(
    "docent_generation_duration_seconds",
    "Wall-clock duration of one generate() call",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 300.0),
)

docent_prefill_duration = Histogram(
    "docent_prefill_duration_seconds",
    "Duration of prompt prefill decodes",
    ["phase"],  # prefix, user_turn
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

# =============================================================================
# Throughput metrics
# =============================================================================

docent_generations_total = Counter(
    "docent_generations_total",
    "Completed generations",
    ["finish_reason"],
)

docent_tokens_generated_total = Counter(
    "docent_tokens_generated_total",
    "Total tokens generated",
)

docent_prompt_tokens_total = Counter(
    "docent_prompt_tokens_total",
    "Total prompt tokens decoded",
    ["phase"],
)

docent_prefix_cache_total = Counter(
    "docent_prefix_cache_total",
    "Fixed-prefix priming calls",
    ["result"],  # hit, miss
)

docent_errors_total = Counter(
    "docent_errors_total",
    "Operation failures",
    ["kind"],
)

docent_model_loads_total = Counter(
    "docent_model_loads_total",
    "Model load attempts",
    ["status"],  # success, error
)

# =============================================================================
# State metrics
# =============================================================================

docent_session_state = Gauge(
    "docent_session_state",
    "1 for the current session state, 0 otherwise",
    ["state"],
)

docent_prefix_tokens = Gauge(
    "docent_prefix_tokens",
    "Tokens occupied by the cached fixed prefix (0 when invalid)",
)


# =============================================================================
# Helper functions
# =============================================================================


def record_generation_metrics(
    finish_reason: str,
    completion_tokens: int,
    total_seconds: float,
    tokens_per_second: float,
) -> None:
    """
    Record metrics for a completed generation.

    Args:
        finish_reason: Why the loop ended
        completion_tokens: Number of generated tokens
        total_seconds: Wall-clock duration
        tokens_per_second: Token generation rate
    """
    docent_generations_total.labels(finish_reason=finish_reason).inc()
    docent_tokens_generated_total.inc(completion_tokens)
    docent_generation_duration.observe(total_seconds)
    if completion_tokens > 0:
        docent_tokens_per_second.observe(tokens_per_second)


def record_prefill(phase: str, tokens: int, seconds: float) -> None:
    """Record a prompt prefill decode."""
    docent_prompt_tokens_total.labels(phase=phase).inc(tokens)
    docent_prefill_duration.labels(phase=phase).observe(seconds)


def record_prefix_cache(hit: bool, token_count: int) -> None:
    """Record a priming call and the resulting prefix size."""
    docent_prefix_cache_total.labels(result="hit" if hit else "miss").inc()
    docent_prefix_tokens.set(token_count)


def record_error(kind: str) -> None:
    """Record an operation failure."""
    docent_errors_total.labels(kind=kind).inc()


def record_model_load(success: bool) -> None:
    """Record a model load attempt."""
    docent_model_loads_total.labels(status="success" if success else "error").inc()


def update_session_state(state: SessionState, prefix_tokens: int = 0) -> None:
    """Update session-related gauge metrics."""
    for candidate in SessionState:
        docent_session_state.labels(state=candidate.value).set(
            1 if candidate is state else 0
        )
    docent_prefix_tokens.set(prefix_tokens)
