# src/promtree/__init__.py
"""
promtree: Prometheus client-side instrumentation with a collector tree.

Applications create a root collector, register counter, gauge and histogram
families on it, record observations with optional dynamic labels, and call
``collect()`` to render the Prometheus text exposition format.

Components:
    Collector tree (collector.py, family.py):
        - create_collector: Build a root collector
        - CollectorNode: Root and leaf nodes of the tree
        - Counter, Gauge, Histogram: Metric families
        - Timer: Histogram timing context manager

    Labels (labels.py):
        - LabelSet: Immutable, canonically ordered label mapping
        - LabelPrecedence: Label collision policy

    Collection (triggers.py, exposition.py):
        - TriggerRegistry: Producers run during collection
        - callback_producer: Adapter for callback-style producers
        - render: Text exposition serializer

    Buckets (buckets.py):
        - linear_buckets, exponential_buckets, log_linear_buckets

Usage:
    >>> from promtree import create_collector
    >>>
    >>> root = create_collector(namespace="app", labels={"service": "api"})
    >>> requests = root.counter("requests", help="Handled requests")
    >>> requests.increment(labels={"method": "GET"})
    >>>
    >>> result = await root.collect()
    >>> body = result.text
"""

from promtree.buckets import (
    exponential_buckets,
    linear_buckets,
    log_linear_buckets,
)
from promtree.collector import (
    CollectionResult,
    CollectorNode,
    create_collector,
)
from promtree.config import (
    CollectorConfig,
    CounterConfig,
    ExponentialBuckets,
    GaugeConfig,
    HistogramConfig,
    LinearBuckets,
    LogLinearBuckets,
    load_collector_config,
    load_collector_config_file,
)
from promtree.exceptions import (
    CollectionError,
    ConfigurationError,
    ProducerError,
    PromTreeError,
    SerializationError,
    ValidationError,
)
from promtree.exposition import CONTENT_TYPE_LATEST, ExpositionFormat, render
from promtree.family import Counter, Gauge, Histogram, MetricFamily, Timer
from promtree.labels import LabelPrecedence, LabelSet
from promtree.process import register_process_metrics
from promtree.triggers import TriggeredMetric, TriggerRegistry, callback_producer

__version__ = "0.1.0"

__all__ = [
    # Collector tree
    "create_collector",
    "CollectorNode",
    "CollectionResult",
    "MetricFamily",
    "Counter",
    "Gauge",
    "Histogram",
    "Timer",
    # Labels
    "LabelSet",
    "LabelPrecedence",
    # Collection
    "TriggerRegistry",
    "TriggeredMetric",
    "callback_producer",
    "ExpositionFormat",
    "CONTENT_TYPE_LATEST",
    "render",
    "register_process_metrics",
    # Buckets
    "linear_buckets",
    "exponential_buckets",
    "log_linear_buckets",
    # Configuration
    "CollectorConfig",
    "CounterConfig",
    "GaugeConfig",
    "HistogramConfig",
    "LinearBuckets",
    "ExponentialBuckets",
    "LogLinearBuckets",
    "load_collector_config",
    "load_collector_config_file",
    # Exceptions
    "PromTreeError",
    "ConfigurationError",
    "ValidationError",
    "ProducerError",
    "CollectionError",
    "SerializationError",
]
