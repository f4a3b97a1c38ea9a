"""Per-generation wall-clock telemetry."""

import time
from typing import Callable

from ..protocol.messages import GenerationStats


class GenerationTelemetry:
    """
    Measures duration and throughput of one generate() call.

    Read-only observer: nothing in the generation loop branches on it.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._started_at: float | None = None
        self._ended_at: float | None = None
        self.token_count = 0

    def start(self) -> None:
        self._started_at = self._clock()
        self._ended_at = None
        self.token_count = 0

    def record_token(self) -> None:
        self.token_count += 1

    def finish(self) -> GenerationStats:
        self._ended_at = self._clock()
        return self.stats

    @property
    def elapsed_seconds(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._ended_at if self._ended_at is not None else self._clock()
        return max(0.0, end - self._started_at)

    @property
    def stats(self) -> GenerationStats:
        elapsed = self.elapsed_seconds
        return GenerationStats(
            total_tokens=self.token_count,
            total_time_seconds=elapsed,
            tokens_per_second=self.token_count / elapsed if elapsed > 0 else 0.0,
        )
