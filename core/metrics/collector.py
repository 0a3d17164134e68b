from __future__ import annotations

import time
from collections import defaultdict, deque
from typing import Any, Deque, Dict

# Per-name sample window for timings; older samples are dropped.
MAX_TIMING_SAMPLES = 1000


class MetricsCollector:
    """In-process counters and timings for JSON-RPC methods and tools."""

    def __init__(self):
        self._counters: Dict[str, int] = defaultdict(int)
        self._timers: Dict[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=MAX_TIMING_SAMPLES)
        )
        self._start_time = time.time()

    def increment(self, name: str, value: int = 1) -> None:
        """Increment a counter."""
        self._counters[name] += value

    def timing(self, name: str, duration_ms: float) -> None:
        """Record timing in milliseconds."""
        self._timers[name].append(duration_ms)

    def timer(self, name: str):
        """Context manager for timing."""
        return Timer(self, name)

    def record_call(self, kind: str, name: str, duration_ms: float, error_code: int | None) -> None:
        """Record one dispatched method or tool call."""
        self.increment(f"{kind}.calls.{name}")
        self.timing(f"{kind}.duration_ms.{name}", duration_ms)
        if error_code is not None:
            self.increment(f"{kind}.errors.{name}")
            self.increment(f"rpc.error_code.{error_code}")

    def get_stats(self) -> Dict[str, Any]:
        """Get all stats."""
        uptime = time.time() - self._start_time

        timer_stats = {}
        for name, values in self._timers.items():
            if values:
                ordered = sorted(values)
                timer_stats[name] = {
                    "count": len(values),
                    "avg_ms": sum(values) / len(values),
                    "p95_ms": ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))],
                    "max_ms": ordered[-1],
                }

        return {
            "uptime_seconds": uptime,
            "counters": dict(self._counters),
            "timers": timer_stats,
        }

    def reset(self) -> None:
        """Reset all metrics."""
        self._counters.clear()
        self._timers.clear()


class Timer:
    """Context manager for timing."""

    def __init__(self, collector: MetricsCollector, name: str):
        self._collector = collector
        self._name = name
        self._start = 0.0

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.perf_counter() - self._start) * 1000
        self._collector.timing(self._name, duration_ms)


metrics = MetricsCollector()
