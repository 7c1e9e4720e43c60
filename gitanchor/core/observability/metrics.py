"""
Metrics — lightweight counters and timing histograms.

No external dependencies. In-process only: the helper logs a summary
at session end (store puts/gets/pins, ledger reads/submits, latencies)
and tests use the counters to assert how many network calls happened.
"""

from __future__ import annotations

import builtins
import threading
import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Counter:
    """Monotonically increasing counter."""

    name: str
    value: int = 0
    labels: dict[str, str] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def inc(self, n: int = 1) -> None:
        with self._lock:
            self.value += n

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": "counter", "value": self.value, "labels": self.labels}


@dataclass
class Histogram:
    """Simple histogram tracking min, max, sum, count."""

    name: str
    _values: list[float] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)

    def observe(self, value: float) -> None:
        self._values.append(value)

    @property
    def count(self) -> int:
        return len(self._values)

    @property
    def total(self) -> float:
        return sum(self._values)

    @property
    def mean(self) -> float:
        if not self._values:
            return 0.0
        return self.total / self.count

    @property
    def min(self) -> float:
        return builtins.min(self._values) if self._values else 0.0

    @property
    def max(self) -> float:
        return builtins.max(self._values) if self._values else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": "histogram",
            "count": self.count,
            "total": self.total,
            "mean": round(self.mean, 2),
            "min": self.min,
            "max": self.max,
            "labels": self.labels,
        }


class MetricsRegistry:
    """Central registry for all metrics of one helper session."""

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, **labels: str) -> Counter:
        """Get or create a counter."""
        key = f"{name}:{labels}" if labels else name
        with self._lock:
            if key not in self._counters:
                self._counters[key] = Counter(name=name, labels=labels)
            return self._counters[key]

    def histogram(self, name: str, **labels: str) -> Histogram:
        """Get or create a histogram."""
        key = f"{name}:{labels}" if labels else name
        with self._lock:
            if key not in self._histograms:
                self._histograms[key] = Histogram(name=name, labels=labels)
            return self._histograms[key]

    def timer(self, name: str, **labels: str) -> TimerContext:
        """Create a timer context that records duration to a histogram."""
        return TimerContext(self.histogram(name, **labels))

    def count(self, name: str) -> int:
        """Current value of an unlabelled counter (0 if never touched)."""
        counter = self._counters.get(name)
        return counter.value if counter else 0

    def summary(self) -> str:
        """One-line ``name=value`` rendering of all counters."""
        return " ".join(
            f"{c.name}={c.value}" for c in sorted(self._counters.values(), key=lambda c: c.name)
        )

    def to_dict(self) -> dict[str, list[dict]]:
        return {
            "counters": [c.to_dict() for c in self._counters.values()],
            "histograms": [h.to_dict() for h in self._histograms.values()],
        }

    def reset(self) -> None:
        """Clear all metrics."""
        self._counters.clear()
        self._histograms.clear()


class TimerContext:
    """Context manager for timing operations."""

    def __init__(self, histogram: Histogram):
        self._histogram = histogram
        self._start: float = 0.0

    def __enter__(self) -> TimerContext:
        self._start = time.monotonic()
        return self

    def __exit__(self, *args: Any) -> None:
        elapsed_ms = (time.monotonic() - self._start) * 1000
        self._histogram.observe(elapsed_ms)
