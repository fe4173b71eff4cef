"""Run identifier generation."""

import threading
import time
from typing import Callable, Optional


class RunIdGenerator:
    """Builds ``<prefix>-<job_id>-<millis>`` run ids.

    The millisecond component is forced to be strictly increasing per
    generator, so two runs started in the same millisecond still get
    distinct ids. One instance is created at startup and injected into
    every engine.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._last_ms = 0
        self._lock = threading.Lock()

    def _next_ms(self) -> int:
        with self._lock:
            ms = int(self._clock() * 1000)
            if ms <= self._last_ms:
                ms = self._last_ms + 1
            self._last_ms = ms
            return ms

    def new_run_id(self, prefix: str, job_id: str) -> str:
        return f"{prefix}-{job_id}-{self._next_ms()}"
