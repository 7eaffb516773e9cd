"""
Lightweight run statistics.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict


@dataclass
class RunStats:
    submissions: int = 0
    completions: int = 0
    failures: int = 0
    samples: int = 0
    peak_in_flight: int = 0
    events: Dict[str, float] = field(default_factory=dict)


class Profiler:
    """Counters updated from the submitting thread and the completion thread."""

    def __init__(self) -> None:
        self.stats = RunStats()
        self._in_flight = 0
        self._lock = threading.Lock()

    def record_submission(self, samples: int = 1) -> None:
        with self._lock:
            self.stats.submissions += 1
            self.stats.samples += samples
            self._in_flight += 1
            if self._in_flight > self.stats.peak_in_flight:
                self.stats.peak_in_flight = self._in_flight

    def record_completion(self, failed: bool = False) -> None:
        with self._lock:
            self._in_flight -= 1
            self.stats.completions += 1
            if failed:
                self.stats.failures += 1

    def record_event(self, name: str, duration_ms: float) -> None:
        with self._lock:
            self.stats.events[name] = self.stats.events.get(name, 0.0) + duration_ms

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def reset(self) -> None:
        with self._lock:
            self.stats = RunStats()
            self._in_flight = 0

    def snapshot(self) -> RunStats:
        with self._lock:
            return RunStats(
                submissions=self.stats.submissions,
                completions=self.stats.completions,
                failures=self.stats.failures,
                samples=self.stats.samples,
                peak_in_flight=self.stats.peak_in_flight,
                events=dict(self.stats.events),
            )
