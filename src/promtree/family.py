# src/promtree/family.py
"""
Metric families.

A family is the named, typed group of instances that differ only by label
set. Families are leaf nodes of the collector tree: they inherit the
namespace, labels, precedence policy and clock of the root that created them
(copied once, at creation time) and cannot create families of their own.

Architecture:
    - MetricFamily: label resolution and the instance map
    - Counter: monotonically increasing values
    - Gauge: last-written values with optional expiry
    - Histogram: cumulative bucket counts
    - Timer: context manager observing elapsed seconds into a Histogram

Usage:
    >>> root = create_collector(namespace="app", labels={"service": "api"})
    >>> requests = root.counter("requests", help="Handled requests")
    >>> requests.increment(labels={"method": "GET"})
    >>> latency = root.histogram("latency_seconds", buckets=[0.1, 0.5, 1])
    >>> with latency.time(labels={"method": "GET"}):
    ...     handle()
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Type

from promtree.collector import CollectorNode, build_full_name
from promtree.config import CounterConfig, GaugeConfig, HistogramConfig, MetricConfig
from promtree.exceptions import ConfigurationError, ValidationError
from promtree.instances import (
    CounterInstance,
    GaugeInstance,
    HistogramInstance,
    HistogramSnapshot,
    MetricInstance,
)
from promtree.labels import LabelSet, LabelsLike

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

# Label reserved for histogram bucket bounds
BUCKET_LABEL = "le"


def _as_float(value: Any, what: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{what} must be a number, got {type(value).__name__}")
    return float(value)


class MetricFamily(CollectorNode):
    """
    Base class for all metric families.

    Args:
        parent: The root collector registering this family.
        config: Validated family configuration.
    """

    type_name = "untyped"
    config_model: Type[MetricConfig] = MetricConfig

    def __init__(self, parent: CollectorNode, config: MetricConfig):
        declared = LabelSet(config.labels)
        super().__init__(
            namespace=parent.namespace,
            subsystem=config.subsystem,
            labels=LabelSet.merge(parent.labels, declared, parent.label_precedence),
            label_precedence=parent.label_precedence,
            clock=parent.clock,
            root=False,
        )
        self.name = config.name
        self.help = config.help
        self.declared_labels = declared
        self.full_name = build_full_name(self.namespace, self.subsystem, self.name)
        self._instances: Dict[str, MetricInstance] = {}
        self._instances_lock = threading.Lock()

    def _new_instance(self, labels: LabelSet) -> MetricInstance:
        raise NotImplementedError

    def _resolve(self, labels: LabelsLike) -> LabelSet:
        if labels is None:
            return self.labels
        try:
            return LabelSet.merge(self.labels, labels, self.label_precedence)
        except ConfigurationError as e:
            raise ValidationError(f"Invalid labels for '{self.full_name}': {e}") from e

    def _instance(self, labels: LabelsLike) -> MetricInstance:
        resolved = self._resolve(labels)
        key = resolved.canonical_key()
        instance = self._instances.get(key)
        if instance is None:
            with self._instances_lock:
                instance = self._instances.get(key)
                if instance is None:
                    instance = self._new_instance(resolved)
                    self._instances[key] = instance
        return instance

    def _lookup(self, labels: LabelsLike) -> Optional[MetricInstance]:
        return self._instances.get(self._resolve(labels).canonical_key())

    def instances(self) -> List[MetricInstance]:
        """All instances, ordered by canonical label key."""
        with self._instances_lock:
            items = sorted(self._instances.items())
        return [instance for _, instance in items]

    def check_compatible(self, config: MetricConfig) -> None:
        """
        Verify that a repeated registration describes this family.

        Raises:
            ConfigurationError: If the declared labels differ.
        """
        if LabelSet(config.labels) != self.declared_labels:
            raise ConfigurationError(
                f"Metric '{self.full_name}' is already registered with labels "
                f"{dict(self.declared_labels)}, got {config.labels}"
            )
        if config.help and config.help != self.help:
            logger.debug(f"Ignoring new help text for already registered metric '{self.full_name}'")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.full_name!r})"


# =============================================================================
# COUNTER
# =============================================================================


class Counter(MetricFamily):
    """
    A monotonically increasing counter.

    Counters only go up (and reset to zero when the process restarts).
    Use for counting requests, errors, bytes, etc.
    """

    type_name = "counter"
    config_model = CounterConfig

    def _new_instance(self, labels: LabelSet) -> CounterInstance:
        return CounterInstance(labels)

    def increment(self, value: float = 1, labels: LabelsLike = None) -> None:
        """Increment the counter.

        Args:
            value: Amount to increment (default: 1).
            labels: Optional call-site labels for this observation.

        Raises:
            ValidationError: If the amount is negative or not finite.
        """
        amount = _as_float(value, "Counter increment")
        if not math.isfinite(amount) or amount < 0:
            raise ValidationError(
                f"Counter '{self.full_name}' cannot be incremented by {value}"
            )
        self._instance(labels).add(amount)

    def add(self, value: float, labels: LabelsLike = None) -> None:
        """Alias for increment() with an explicit amount."""
        self.increment(value, labels)

    def get(self, labels: LabelsLike = None) -> float:
        """Get the current value (0.0 for an untouched label set)."""
        instance = self._lookup(labels)
        return instance.snapshot() if instance else 0.0


# =============================================================================
# GAUGE
# =============================================================================


class Gauge(MetricFamily):
    """
    A gauge that can go up or down.

    Use for current values like queue depth or memory usage. A gauge
    configured with ``expires=True`` falls back to its default value when it
    has not been written for ``expiry_period`` seconds; the reset happens
    lazily, during collection.
    """

    type_name = "gauge"
    config_model = GaugeConfig

    def __init__(self, parent: CollectorNode, config: GaugeConfig):
        super().__init__(parent, config)
        self.expires = config.expires
        self.expiry_period = config.expiry_period
        self.default_value = config.default_value

    def _new_instance(self, labels: LabelSet) -> GaugeInstance:
        return GaugeInstance(
            labels,
            default_value=self.default_value,
            expiry_period=self.expiry_period if self.expires else None,
        )

    def set(self, value: float, labels: LabelsLike = None) -> None:
        """Set the gauge value.

        Args:
            value: New value.
            labels: Optional call-site labels for this observation.
        """
        self._instance(labels).set(_as_float(value, "Gauge value"), self.clock())

    def add(self, value: float, labels: LabelsLike = None) -> None:
        """Add a (possibly negative) delta to the gauge."""
        self._instance(labels).add(_as_float(value, "Gauge delta"), self.clock())

    def get(self, labels: LabelsLike = None) -> float:
        """Get the current value (the default value for an untouched label set)."""
        instance = self._lookup(labels)
        return instance.snapshot() if instance else self.default_value

    def expire(self, now: float) -> int:
        """Reset stale instances.

        Returns:
            Number of instances reset.
        """
        if not self.expires:
            return 0
        return sum(1 for instance in self.instances() if instance.expire(now))

    def check_compatible(self, config: GaugeConfig) -> None:
        super().check_compatible(config)
        settings = (config.expires, config.expiry_period, config.default_value)
        if settings != (self.expires, self.expiry_period, self.default_value):
            raise ConfigurationError(
                f"Gauge '{self.full_name}' is already registered with different expiry settings"
            )


# =============================================================================
# HISTOGRAM
# =============================================================================


class Histogram(MetricFamily):
    """
    A cumulative histogram.

    Each bucket counts every observation less than or equal to its bound;
    the implicit +Inf bucket always equals the observation count.
    """

    type_name = "histogram"
    config_model = HistogramConfig

    def __init__(self, parent: CollectorNode, config: HistogramConfig):
        super().__init__(parent, config)
        if BUCKET_LABEL in self.labels:
            raise ConfigurationError(
                f"Histogram '{self.full_name}' cannot use reserved label '{BUCKET_LABEL}'"
            )
        self.bounds = tuple(config.bounds())

    def _new_instance(self, labels: LabelSet) -> HistogramInstance:
        return HistogramInstance(labels, self.bounds)

    def _resolve(self, labels: LabelsLike) -> LabelSet:
        resolved = super()._resolve(labels)
        if BUCKET_LABEL in resolved:
            raise ValidationError(
                f"Histogram '{self.full_name}' cannot use reserved label '{BUCKET_LABEL}'"
            )
        return resolved

    def observe(self, value: float, labels: LabelsLike = None) -> None:
        """Record an observation.

        Args:
            value: Observed value.
            labels: Optional call-site labels for this observation.

        Raises:
            ValidationError: If the value is NaN.
        """
        observed = _as_float(value, "Histogram observation")
        if math.isnan(observed):
            raise ValidationError(f"Histogram '{self.full_name}' cannot observe NaN")
        self._instance(labels).observe(observed)

    def get(self, labels: LabelsLike = None) -> Optional[HistogramSnapshot]:
        """Get a snapshot of the instance, or None for an untouched label set."""
        instance = self._lookup(labels)
        return instance.snapshot() if instance else None

    def time(self, labels: LabelsLike = None) -> "Timer":
        """Return a Timer observing elapsed seconds into this histogram."""
        return Timer(self, labels)

    def check_compatible(self, config: HistogramConfig) -> None:
        super().check_compatible(config)
        if tuple(config.bounds()) != self.bounds:
            raise ConfigurationError(
                f"Histogram '{self.full_name}' is already registered with different buckets"
            )


# =============================================================================
# TIMER CONTEXT MANAGER
# =============================================================================


class Timer:
    """
    Context manager for timing operations.

    Usage:
        >>> with Timer(histogram):
        ...     do_something()

        >>> # Or with labels
        >>> with latency.time(labels={"operation": "query"}):
        ...     run_query()
    """

    def __init__(
        self,
        histogram: Histogram,
        labels: LabelsLike = None,
        unit_multiplier: float = 1.0,
    ):
        """
        Initialize timer.

        Args:
            histogram: Histogram to record timing to.
            labels: Optional labels for the observation.
            unit_multiplier: Multiplier applied to elapsed seconds.
        """
        self.histogram = histogram
        self.labels = labels
        self.unit_multiplier = unit_multiplier
        self._start_time: Optional[float] = None
        self._elapsed: Optional[float] = None

    @property
    def elapsed(self) -> Optional[float]:
        """Recorded duration, once the timer has stopped."""
        return self._elapsed

    def __enter__(self) -> "Timer":
        self._start_time = time.perf_counter()
        return self

    def __exit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional["TracebackType"],
    ) -> None:
        if self._start_time is not None:
            self._elapsed = (time.perf_counter() - self._start_time) * self.unit_multiplier
            self.histogram.observe(self._elapsed, self.labels)
