"""Rolling write round-trip average."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable


class LatencyMonitor:
    """Average of the last ``window`` acknowledged-write round trips.

    Observational only; nothing in the engine depends on its value.
    """

    def __init__(self, window: int = 10, *, clock: Callable[[], float] | None = None) -> None:
        self._samples: deque[float] = deque(maxlen=window)
        self._clock = clock
        self._ping_ms = 0
        self.last_sample_at: float | None = None

    def record(self, rtt_seconds: float) -> int:
        """Add a round-trip sample and return the updated average in ms."""
        self._samples.append(max(0.0, rtt_seconds) * 1000.0)
        self._ping_ms = round(sum(self._samples) / len(self._samples))
        if self._clock is not None:
            self.last_sample_at = self._clock()
        return self._ping_ms

    @property
    def ping_ms(self) -> int:
        return self._ping_ms

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    def reset(self) -> None:
        self._samples.clear()
        self._ping_ms = 0
        self.last_sample_at = None
