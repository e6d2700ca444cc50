# src/promtree/collector.py
"""
Collector Tree for promtree.

The collector tree is the single place where metric families are created
and from which they are collected:

- The root node, returned by ``create_collector()``, carries the namespace,
  the base labels, the label precedence policy, the clock and the registry
  of triggered metrics.
- Every family created through ``counter()``, ``gauge()`` or ``histogram()``
  is a leaf node of the same type. Its namespace and labels are copied from
  the root at creation time; leaves never reach back to the root.

Collection:
    ``collect()`` is a coroutine that (1) runs the due triggered producers
    concurrently, each isolated from the others, (2) resets expired gauges,
    and (3) renders the tree into the exposition format.

Usage:
    >>> root = create_collector(namespace="app", labels={"service": "api"})
    >>> hits = root.counter("cache_hits", subsystem="cache", help="Cache hits")
    >>> hits.increment()
    >>> result = await root.collect()
    >>> print(result.text)
    # HELP app_cache_cache_hits Cache hits
    # TYPE app_cache_cache_hits counter
    app_cache_cache_hits{service="api"} 1.0
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Type,
    TypeVar,
    Union,
)

from promtree.config import CollectorConfig, MetricConfig, build_config
from promtree.exceptions import (
    CollectionError,
    ConfigurationError,
    ProducerError,
    SerializationError,
)
from promtree.exposition import ExpositionFormat, render
from promtree.labels import LabelPrecedence, LabelSet, LabelsLike
from promtree.triggers import (
    DEFAULT_PRODUCER_TIMEOUT,
    Interval,
    Producer,
    TriggeredMetric,
    TriggerRegistry,
)

if TYPE_CHECKING:
    from promtree.family import Counter, Gauge, Histogram, MetricFamily

logger = logging.getLogger(__name__)

F = TypeVar("F", bound="MetricFamily")
Clock = Callable[[], float]
CollectCallback = Callable[[Optional[Exception], Optional[str]], None]


def build_full_name(*segments: str) -> str:
    """Join non-empty name segments with underscores."""
    return "_".join(s for s in segments if s)


@dataclass
class CollectionResult:
    """Outcome of one collection pass."""

    text: str
    errors: List[ProducerError] = field(default_factory=list)
    expired: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def error(self) -> Optional[CollectionError]:
        """Aggregate error for the failed producers, if any."""
        return CollectionError(self.errors) if self.errors else None


class CollectorNode:
    """
    A node of the collector tree.

    Args:
        namespace: First segment of every metric name.
        subsystem: Middle name segment (families only).
        labels: Fully resolved base labels of this node.
        label_precedence: Collision policy for label merges.
        clock: Monotonic clock used for gauge expiry and trigger intervals.
        root: Whether this node may create families.
        producer_timeout: Default per-run timeout of triggered producers.
    """

    def __init__(
        self,
        namespace: str = "",
        subsystem: str = "",
        labels: LabelsLike = None,
        label_precedence: LabelPrecedence = LabelPrecedence.OVERRIDE,
        clock: Optional[Clock] = None,
        root: bool = True,
        producer_timeout: Optional[float] = DEFAULT_PRODUCER_TIMEOUT,
    ):
        self.namespace = namespace
        self.subsystem = subsystem
        self.labels = LabelSet.of(labels)
        self.label_precedence = label_precedence
        self.clock: Clock = clock or time.monotonic
        self._root = root
        self._families: Dict[str, "MetricFamily"] = {}
        self._registry_lock = threading.Lock()
        self.triggers: Optional[TriggerRegistry] = (
            TriggerRegistry(default_timeout=producer_timeout) if root else None
        )

    @property
    def is_root(self) -> bool:
        return self._root

    def _require_root(self, operation: str) -> None:
        if not self._root:
            raise ConfigurationError(
                f"'{operation}' is only available on a root collector"
            )

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def counter(self, name: Union[str, MetricConfig, Dict[str, Any]], **options: Any) -> "Counter":
        """Get or create a counter family.

        Args:
            name: Metric name, or a CounterConfig / dict describing the family.
            **options: help, subsystem, labels.

        Returns:
            Counter family.
        """
        from promtree.family import Counter

        return self._get_or_create(Counter, name, options)

    def gauge(self, name: Union[str, MetricConfig, Dict[str, Any]], **options: Any) -> "Gauge":
        """Get or create a gauge family.

        Args:
            name: Metric name, or a GaugeConfig / dict describing the family.
            **options: help, subsystem, labels, expires, expiry_period,
                default_value.
        """
        from promtree.family import Gauge

        return self._get_or_create(Gauge, name, options)

    def histogram(self, name: Union[str, MetricConfig, Dict[str, Any]], **options: Any) -> "Histogram":
        """Get or create a histogram family.

        Args:
            name: Metric name, or a HistogramConfig / dict describing the family.
            **options: help, subsystem, labels, buckets.
        """
        from promtree.family import Histogram

        return self._get_or_create(Histogram, name, options)

    def _get_or_create(
        self,
        family_cls: Type[F],
        name: Union[str, MetricConfig, Dict[str, Any]],
        options: Dict[str, Any],
    ) -> F:
        self._require_root(family_cls.type_name)

        if isinstance(name, str):
            data: Any = {"name": name, **options}
        elif options:
            raise ConfigurationError("Options cannot be combined with a config object")
        else:
            data = name
        config = build_config(family_cls.config_model, data)

        full_name = build_full_name(self.namespace, config.subsystem, config.name)

        with self._registry_lock:
            existing = self._families.get(full_name)
            if existing is not None:
                if type(existing) is not family_cls:
                    raise ConfigurationError(
                        f"Metric '{full_name}' is already registered as a "
                        f"{existing.type_name}, not a {family_cls.type_name}"
                    )
                existing.check_compatible(config)
                return existing

            family = family_cls(self, config)
            self._families[full_name] = family

        logger.debug(
            f"Registered {family.type_name}: {full_name}",
            extra={"labels": dict(family.labels)},
        )
        return family

    def get_family(self, full_name: str) -> Optional["MetricFamily"]:
        """Look up a registered family by its full name."""
        return self._families.get(full_name)

    def families(self) -> List["MetricFamily"]:
        """Directly owned families, ordered by full name."""
        with self._registry_lock:
            return [self._families[name] for name in sorted(self._families)]

    def walk(self) -> Iterator["MetricFamily"]:
        """Depth-first traversal yielding every family of the tree once."""
        seen: set[str] = set()
        stack: List[CollectorNode] = [self]
        while stack:
            node = stack.pop()
            children = node.families()
            for family in children:
                if family.full_name not in seen:
                    seen.add(family.full_name)
                    yield family
            stack.extend(reversed(children))

    # -------------------------------------------------------------------------
    # Triggered metrics
    # -------------------------------------------------------------------------

    def add_triggered_metric(
        self,
        family: "MetricFamily",
        producer: Producer,
        interval: Interval = None,
        timeout: Optional[float] = None,
    ) -> TriggeredMetric:
        """
        Register a producer that fills ``family`` during collection.

        Args:
            family: A family registered on this collector.
            producer: Producer callable (see promtree.triggers).
            interval: Minimum time between runs, as timedelta or seconds.
            timeout: Per-run timeout in seconds (default: the collector's
                producer_timeout).

        Raises:
            ConfigurationError: If the family belongs to another collector.
        """
        self._require_root("add_triggered_metric")
        if self._families.get(family.full_name) is not family:
            raise ConfigurationError(
                f"Metric '{family.full_name}' is not registered on this collector"
            )
        return self.triggers.register(family, producer, interval=interval, timeout=timeout)

    # -------------------------------------------------------------------------
    # Collection
    # -------------------------------------------------------------------------

    def expire_gauges(self, now: Optional[float] = None) -> int:
        """Reset gauges that have not been written within their expiry period.

        Returns:
            Number of gauge instances reset.
        """
        from promtree.family import Gauge

        now = self.clock() if now is None else now
        return sum(
            family.expire(now) for family in self.walk() if isinstance(family, Gauge)
        )

    async def collect(
        self,
        fmt: Union[ExpositionFormat, str] = ExpositionFormat.PROMETHEUS,
        callback: Optional[CollectCallback] = None,
    ) -> Optional[CollectionResult]:
        """
        Run triggered producers, expire gauges and render the tree.

        Args:
            fmt: Output format.
            callback: Optional ``callback(error, text)``. When given, errors
                are delivered through it instead of being raised: ``error``
                is None, a CollectionError for failed producers (``text`` is
                still valid) or a SerializationError (``text`` is None).

        Returns:
            CollectionResult, or None when serialization failed and the
            error went to ``callback``.

        Raises:
            ConfigurationError: For an unsupported format or a leaf node.
            SerializationError: If rendering fails and no callback is given.
        """
        self._require_root("collect")
        try:
            fmt = ExpositionFormat(fmt)
        except ValueError as e:
            raise ConfigurationError(f"Unsupported exposition format: {fmt!r}") from e

        errors = await self.triggers.run_all(self.clock())
        expired = self.expire_gauges()

        try:
            text = render(self.walk(), skip={error.family_name for error in errors})
        except SerializationError as e:
            logger.error(f"Metrics collection failed: {e}")
            if callback is None:
                raise
            callback(e, None)
            return None

        result = CollectionResult(text=text, errors=errors, expired=expired)
        logger.debug(
            "Metrics collection finished",
            extra={"failed_producers": len(errors), "expired_gauges": expired},
        )
        if callback is not None:
            callback(result.error, text)
        return result


def create_collector(
    config: Union[CollectorConfig, Dict[str, Any], None] = None,
    *,
    namespace: Optional[str] = None,
    labels: Optional[Dict[str, Any]] = None,
    label_precedence: Union[LabelPrecedence, str, None] = None,
    producer_timeout: Optional[float] = None,
    clock: Optional[Clock] = None,
) -> CollectorNode:
    """
    Create a root collector.

    Keyword arguments override the matching fields of ``config``.

    Args:
        config: CollectorConfig or dict.
        namespace: Prefix of every metric name.
        labels: Labels inherited by every family.
        label_precedence: Label collision policy.
        producer_timeout: Default per-run timeout of triggered producers.
        clock: Monotonic clock (default: time.monotonic).

    Raises:
        ConfigurationError: If the configuration or labels are invalid.
    """
    base = build_config(CollectorConfig, config or {})
    overrides = {
        key: value
        for key, value in (
            ("namespace", namespace),
            ("labels", labels),
            ("label_precedence", label_precedence),
            ("producer_timeout", producer_timeout),
        )
        if value is not None
    }
    if overrides:
        base = build_config(CollectorConfig, {**base.model_dump(), **overrides})

    return CollectorNode(
        namespace=base.namespace,
        labels=LabelSet(base.labels),
        label_precedence=base.label_precedence,
        clock=clock,
        producer_timeout=base.producer_timeout,
    )
