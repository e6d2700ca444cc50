# src/promtree/buckets.py
"""
Histogram bucket generators.

Histograms keep cumulative counts against an ordered list of finite upper
bounds; the implicit +Inf bucket is never part of these lists. Generated
bounds are rounded to 12 significant digits so that values such as
``0.1 * 3`` render as ``0.3`` in the exposition output.
"""

from __future__ import annotations

import math
from bisect import bisect_left
from typing import Iterable, List, Sequence

from promtree.exceptions import ConfigurationError

# Default bucket layout: log-linear, base 10, powers 0..3, 5 per magnitude
DEFAULT_LOG_BASE = 10
DEFAULT_LOW_POWER = 0
DEFAULT_HIGH_POWER = 3
DEFAULT_BUCKETS_PER_MAGNITUDE = 5

_SIGNIFICANT_DIGITS = 12


def _clean(value: float) -> float:
    return float(f"{value:.{_SIGNIFICANT_DIGITS}g}")


def validate_bounds(bounds: Iterable[float]) -> List[float]:
    """
    Validate an explicit list of bucket upper bounds.

    A trailing +Inf is accepted and dropped, since the overflow bucket is
    always implied.

    Raises:
        ConfigurationError: If the list is empty, contains non-finite values
            or is not strictly increasing.
    """
    try:
        values = [float(b) for b in bounds]
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Bucket bounds must be numbers: {e}") from e

    if values and values[-1] == math.inf:
        values.pop()
    if not values:
        raise ConfigurationError("At least one finite bucket bound is required")

    for i, value in enumerate(values):
        if not math.isfinite(value):
            raise ConfigurationError(f"Bucket bound {value} is not finite")
        if i > 0 and value <= values[i - 1]:
            raise ConfigurationError(
                f"Bucket bounds must be strictly increasing: {values[i - 1]} >= {value}"
            )
    return values


def linear_buckets(start: float, width: float, count: int) -> List[float]:
    """
    Generate ``count`` bounds spaced ``width`` apart, beginning at ``start``.

    >>> linear_buckets(0, 5, 4)
    [0.0, 5.0, 10.0, 15.0]
    """
    if count < 1:
        raise ConfigurationError(f"Linear bucket count must be >= 1, got {count}")
    if width <= 0:
        raise ConfigurationError(f"Linear bucket width must be > 0, got {width}")
    return validate_bounds(_clean(start + i * width) for i in range(count))


def exponential_buckets(start: float, factor: float, count: int) -> List[float]:
    """
    Generate ``count`` bounds where each bound is ``factor`` times the previous.

    >>> exponential_buckets(1, 2, 4)
    [1.0, 2.0, 4.0, 8.0]
    """
    if count < 1:
        raise ConfigurationError(f"Exponential bucket count must be >= 1, got {count}")
    if start <= 0:
        raise ConfigurationError(f"Exponential bucket start must be > 0, got {start}")
    if factor <= 1:
        raise ConfigurationError(f"Exponential bucket factor must be > 1, got {factor}")
    return validate_bounds(_clean(start * factor**i) for i in range(count))


def log_linear_buckets(
    base: float,
    low_power: int,
    high_power: int,
    buckets_per_magnitude: int,
) -> List[float]:
    """
    Generate bounds that are linear within each magnitude and logarithmic
    across magnitudes.

    The first bound is ``base ** low_power``. Each magnitude ``p`` in
    ``[low_power, high_power)`` then contributes ``buckets_per_magnitude``
    evenly spaced bounds ending at ``base ** (p + 1)``; those not above the
    start of the magnitude are skipped.

    >>> log_linear_buckets(10, 0, 2, 5)
    [1.0, 2.0, 4.0, 6.0, 8.0, 10.0, 20.0, 40.0, 60.0, 80.0, 100.0]
    """
    if base <= 1:
        raise ConfigurationError(f"Log bucket base must be > 1, got {base}")
    if low_power >= high_power:
        raise ConfigurationError(
            f"Log bucket low power ({low_power}) must be below high power ({high_power})"
        )
    if buckets_per_magnitude < 1:
        raise ConfigurationError(
            f"Buckets per magnitude must be >= 1, got {buckets_per_magnitude}"
        )

    bounds = [_clean(base**low_power)]
    for power in range(low_power, high_power):
        lower = base**power
        upper = base ** (power + 1)
        for i in range(1, buckets_per_magnitude + 1):
            bound = _clean(upper * i / buckets_per_magnitude)
            if bound > lower and bound > bounds[-1]:
                bounds.append(bound)
    return validate_bounds(bounds)


def default_buckets() -> List[float]:
    """Bounds used when a histogram is declared without a bucket layout."""
    return log_linear_buckets(
        DEFAULT_LOG_BASE,
        DEFAULT_LOW_POWER,
        DEFAULT_HIGH_POWER,
        DEFAULT_BUCKETS_PER_MAGNITUDE,
    )


def bucket_index(bounds: Sequence[float], value: float) -> int:
    """Index of the first bound >= value, or ``len(bounds)`` for overflow."""
    return bisect_left(bounds, value)
