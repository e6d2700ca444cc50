# src/promtree/config.py
"""
Configuration Models for promtree.

This module provides Pydantic models describing collectors and the metric
families registered on them. They can be built directly, passed as plain
dicts to the registration API, or loaded from the ``[metrics]`` section of a
TOML configuration file.

Configuration Structure:
    [metrics]
    namespace = "myapp"
    label_precedence = "override"
    producer_timeout = 10.0

    [metrics.labels]
    service = "api"
    zone = "eu-west-1"

Usage:
    >>> from promtree.config import CollectorConfig, load_collector_config
    >>>
    >>> config = load_collector_config({"metrics": {"namespace": "myapp"}})
    >>> config.namespace
    'myapp'
    >>>
    >>> # Bucket layouts are discriminated by "kind"
    >>> HistogramConfig(name="latency", buckets={"kind": "linear", "start": 0, "width": 5, "count": 4})
"""

from __future__ import annotations

import logging
import re
import tomllib
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from promtree.buckets import (
    DEFAULT_BUCKETS_PER_MAGNITUDE,
    DEFAULT_HIGH_POWER,
    DEFAULT_LOG_BASE,
    DEFAULT_LOW_POWER,
    exponential_buckets,
    linear_buckets,
    log_linear_buckets,
    validate_bounds,
)
from promtree.exceptions import ConfigurationError
from promtree.labels import LabelPrecedence, is_valid_label_name
from promtree.triggers import DEFAULT_PRODUCER_TIMEOUT

logger = logging.getLogger(__name__)

NAME_SEGMENT_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")

# Default expiry period for gauges, in seconds
DEFAULT_EXPIRY_PERIOD = 300.0


def _check_labels(labels: Dict[str, Any]) -> Dict[str, Any]:
    for name in labels:
        if not is_valid_label_name(name):
            raise ValueError(f"Invalid label name: {name!r}")
    return labels


# =============================================================================
# BUCKET LAYOUTS
# =============================================================================


class LinearBuckets(BaseModel):
    """Fixed-stride buckets: ``start, start + width, ...``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["linear"] = "linear"
    start: float = Field(default=0.0, description="First upper bound")
    width: float = Field(gt=0, description="Distance between bounds")
    count: int = Field(ge=1, description="Number of bounds")

    def bounds(self) -> List[float]:
        return linear_buckets(self.start, self.width, self.count)


class ExponentialBuckets(BaseModel):
    """Geometric buckets: ``start, start * factor, ...``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["exponential"] = "exponential"
    start: float = Field(gt=0, description="First upper bound")
    factor: float = Field(gt=1, description="Ratio between consecutive bounds")
    count: int = Field(ge=1, description="Number of bounds")

    def bounds(self) -> List[float]:
        return exponential_buckets(self.start, self.factor, self.count)


class LogLinearBuckets(BaseModel):
    """Buckets linear within a magnitude and logarithmic across magnitudes."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["log"] = "log"
    base: float = Field(default=DEFAULT_LOG_BASE, gt=1, description="Logarithm base")
    low_power: int = Field(default=DEFAULT_LOW_POWER, description="Lowest magnitude exponent")
    high_power: int = Field(default=DEFAULT_HIGH_POWER, description="Highest magnitude exponent")
    buckets_per_magnitude: int = Field(
        default=DEFAULT_BUCKETS_PER_MAGNITUDE, ge=1, description="Bounds per magnitude"
    )

    def bounds(self) -> List[float]:
        return log_linear_buckets(
            self.base, self.low_power, self.high_power, self.buckets_per_magnitude
        )


BucketSpec = Annotated[
    Union[LinearBuckets, ExponentialBuckets, LogLinearBuckets],
    Field(discriminator="kind"),
]


# =============================================================================
# METRIC CONFIG MODELS
# =============================================================================


class MetricConfig(BaseModel):
    """
    Common settings of every metric family.

    The full metric name is ``namespace_subsystem_name`` with empty segments
    left out; the namespace comes from the collector.
    """

    name: str = Field(description="Metric name, without namespace or subsystem")
    help: str = Field(default="", description="Help text emitted on the HELP line")
    subsystem: str = Field(default="", description="Optional middle name segment")
    labels: Dict[str, Any] = Field(
        default_factory=dict, description="Static labels applied to every instance"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not NAME_SEGMENT_RE.match(v):
            raise ValueError(f"Invalid metric name: {v!r}")
        return v

    @field_validator("subsystem")
    @classmethod
    def validate_subsystem(cls, v: str) -> str:
        if v and not NAME_SEGMENT_RE.match(v):
            raise ValueError(f"Invalid subsystem: {v!r}")
        return v

    @field_validator("labels")
    @classmethod
    def validate_labels(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        return _check_labels(v)


class CounterConfig(MetricConfig):
    """Configuration for a counter family."""


class GaugeConfig(MetricConfig):
    """
    Configuration for a gauge family.

    When ``expires`` is set, an instance not written for longer than
    ``expiry_period`` seconds is reset to ``default_value`` at the next
    collection.
    """

    expires: bool = Field(default=False, description="Reset stale values at collection")
    expiry_period: float = Field(
        default=DEFAULT_EXPIRY_PERIOD, gt=0, description="Seconds without writes before reset"
    )
    default_value: float = Field(default=0.0, description="Value restored on expiry")


class HistogramConfig(MetricConfig):
    """Configuration for a histogram family."""

    buckets: Optional[Union[BucketSpec, List[float]]] = Field(
        default=None, description="Bucket layout or explicit upper bounds (default: log-linear)"
    )

    def bounds(self) -> List[float]:
        """Resolve the configured layout into finite upper bounds."""
        if self.buckets is None:
            return LogLinearBuckets().bounds()
        if isinstance(self.buckets, list):
            return validate_bounds(self.buckets)
        return self.buckets.bounds()


class CollectorConfig(BaseModel):
    """
    Configuration of a root collector.

    Maps to: [metrics]

    Example:
        >>> config = CollectorConfig(namespace="myapp", labels={"zone": "eu"})
        >>> config.label_precedence
        <LabelPrecedence.OVERRIDE: 'override'>
    """

    namespace: str = Field(default="", description="Prefix of every metric name")
    labels: Dict[str, Any] = Field(
        default_factory=dict, description="Labels inherited by every family"
    )
    label_precedence: LabelPrecedence = Field(
        default=LabelPrecedence.OVERRIDE, description="Label collision policy"
    )
    producer_timeout: Optional[float] = Field(
        default=DEFAULT_PRODUCER_TIMEOUT,
        gt=0,
        description="Per-run timeout of triggered producers registered without one (None = no limit)",
    )

    @field_validator("namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        if v and not NAME_SEGMENT_RE.match(v):
            raise ValueError(f"Invalid namespace: {v!r}")
        return v

    @field_validator("labels")
    @classmethod
    def validate_labels(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        return _check_labels(v)

    @field_validator("label_precedence", mode="before")
    @classmethod
    def validate_precedence(cls, v: Any) -> LabelPrecedence:
        if isinstance(v, str):
            return LabelPrecedence(v.lower())
        return v


# =============================================================================
# LOADING FUNCTIONS
# =============================================================================


def build_config(model: type[BaseModel], data: Union[BaseModel, Dict[str, Any]]) -> Any:
    """
    Validate ``data`` against ``model``.

    Raises:
        ConfigurationError: If validation fails.
    """
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid {model.__name__}: {e}") from e


def load_collector_config(
    config_dict: dict[str, Any] | None = None,
    section_path: str = "metrics",
) -> CollectorConfig:
    """
    Load collector configuration from a config dictionary.

    Args:
        config_dict: Configuration dictionary. If None, returns defaults.
        section_path: Dot-separated path to the collector section.

    Returns:
        CollectorConfig instance.

    Raises:
        ConfigurationError: If the section exists but is invalid.
    """
    if config_dict is None:
        return CollectorConfig()

    section: Any = config_dict
    for part in section_path.split("."):
        if not isinstance(section, dict) or part not in section:
            logger.warning(f"Config path '{section_path}' not found, using defaults")
            return CollectorConfig()
        section = section[part]

    if not isinstance(section, dict):
        raise ConfigurationError(f"Config section '{section_path}' is not a table")

    return build_config(CollectorConfig, section)


def load_collector_config_file(
    path: str | Path,
    section_path: str = "metrics",
) -> CollectorConfig:
    """
    Load collector configuration from a TOML file.

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
    """
    path = Path(path).expanduser()
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Cannot load metrics config from {path}: {e}") from e
    return load_collector_config(data, section_path)
