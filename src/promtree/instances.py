# src/promtree/instances.py
"""
Per-label-set accumulators.

Each metric family owns one instance per distinct resolved label set. An
instance guards its state with its own lock, so every update is atomic with
respect to other updates and to the serializer, which reads instances
through ``snapshot()``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from promtree.buckets import bucket_index
from promtree.labels import LabelSet


@dataclass(frozen=True)
class HistogramSnapshot:
    """Consistent copy of a histogram instance."""

    bounds: Tuple[float, ...]
    buckets: Tuple[int, ...]  # cumulative, one per bound, +Inf excluded
    sum: float
    count: int


class MetricInstance:
    """Base class holding the resolved labels and the instance lock."""

    __slots__ = ("labels", "_lock")

    def __init__(self, labels: LabelSet):
        self.labels = labels
        self._lock = threading.Lock()


class CounterInstance(MetricInstance):
    """
    Monotonically non-decreasing accumulator.

    Values are doubles: integers stay exact up to 2**53 - 1, beyond which
    increments may lose precision.
    """

    __slots__ = ("_value",)

    def __init__(self, labels: LabelSet):
        super().__init__(labels)
        self._value = 0.0

    def add(self, value: float) -> None:
        with self._lock:
            self._value += value

    def snapshot(self) -> float:
        with self._lock:
            return self._value


class GaugeInstance(MetricInstance):
    """
    Last-written value with optional expiry.

    ``last_write`` holds the clock reading of the latest write, or None once
    the value has expired (or was never written).
    """

    __slots__ = ("_value", "last_write", "default_value", "expiry_period")

    def __init__(
        self,
        labels: LabelSet,
        default_value: float = 0.0,
        expiry_period: Optional[float] = None,
    ):
        super().__init__(labels)
        self._value = default_value
        self.default_value = default_value
        self.expiry_period = expiry_period
        self.last_write: Optional[float] = None

    def set(self, value: float, now: float) -> None:
        with self._lock:
            self._value = value
            self.last_write = now

    def add(self, delta: float, now: float) -> None:
        with self._lock:
            self._value += delta
            self.last_write = now

    def expire(self, now: float) -> bool:
        """
        Reset to the default value if the last write is older than the
        expiry period.

        Returns:
            True if the value was reset by this call.
        """
        if self.expiry_period is None:
            return False
        with self._lock:
            if self.last_write is None or now - self.last_write <= self.expiry_period:
                return False
            self._value = self.default_value
            self.last_write = None
            return True

    def snapshot(self) -> float:
        with self._lock:
            return self._value


class HistogramInstance(MetricInstance):
    """Cumulative bucket counts with running sum and count."""

    __slots__ = ("bounds", "_buckets", "_sum", "_count")

    def __init__(self, labels: LabelSet, bounds: Sequence[float]):
        super().__init__(labels)
        self.bounds = tuple(bounds)
        self._buckets = [0] * len(self.bounds)
        self._sum = 0.0
        self._count = 0

    def observe(self, value: float) -> None:
        start = bucket_index(self.bounds, value)
        with self._lock:
            self._count += 1
            self._sum += value
            for i in range(start, len(self._buckets)):
                self._buckets[i] += 1

    def snapshot(self) -> HistogramSnapshot:
        with self._lock:
            return HistogramSnapshot(
                bounds=self.bounds,
                buckets=tuple(self._buckets),
                sum=self._sum,
                count=self._count,
            )
