"""Metrics collection for recalibration ticks.

Counters used by the orchestrator:
- ticks.completed / ticks.failed / ticks.skipped
- algorithms.skipped, records.malformed
Timings:
- tick.duration_ms
"""

from abc import ABC, abstractmethod
from typing import Dict, List
import threading


class MetricsRecorder(ABC):
    @abstractmethod
    def increment(self, key: str, value: int = 1) -> None:
        pass

    @abstractmethod
    def timing(self, key: str, value_ms: float) -> None:
        pass

    @abstractmethod
    def snapshot(self) -> Dict[str, Dict[str, float]]:
        pass

    @abstractmethod
    def reset(self) -> None:
        pass


class InMemoryMetricsRecorder(MetricsRecorder):
    """Thread-safe recorder; ticks and readers run on different threads."""

    def __init__(self) -> None:
        self._counters: Dict[str, int] = {}
        self._timings: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def increment(self, key: str, value: int = 1) -> None:
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + int(value)

    def timing(self, key: str, value_ms: float) -> None:
        with self._lock:
            self._timings.setdefault(key, []).append(float(value_ms))

    def counter(self, key: str) -> int:
        with self._lock:
            return self._counters.get(key, 0)

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            timing_summary = {}
            for key, values in self._timings.items():
                if not values:
                    continue
                timing_summary[key] = {
                    "count": len(values),
                    "avg_ms": sum(values) / len(values),
                    "max_ms": max(values),
                    "last_ms": values[-1],
                }
            return {
                "counters": dict(self._counters),
                "timings": timing_summary,
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()


_DEFAULT_RECORDER = InMemoryMetricsRecorder()


def get_metrics_recorder() -> MetricsRecorder:
    return _DEFAULT_RECORDER
