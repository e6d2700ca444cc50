# src/promtree/exposition.py
"""
Prometheus text exposition (format version 0.0.4).

Rendering rules:
    - families in full-name order, each emitted once
    - ``# HELP`` only when help text is set, then ``# TYPE``
    - instances in canonical label order
    - histograms emit ``_bucket`` lines (with ``le``), ``_sum`` and ``_count``
    - numbers rendered the way the Go client does (``+Inf``, ``1e+07``)

The output of a fixed tree is byte-identical across calls.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Collection, Iterable, List

from prometheus_client.utils import floatToGoString

from promtree.exceptions import SerializationError
from promtree.instances import HistogramSnapshot
from promtree.labels import escape_label_value

if TYPE_CHECKING:
    from promtree.family import MetricFamily

logger = logging.getLogger(__name__)

CONTENT_TYPE_LATEST = "text/plain; version=0.0.4; charset=utf-8"


class ExpositionFormat(str, Enum):
    """Supported output formats."""

    PROMETHEUS = "prometheus"  # Text format 0.0.4


def escape_help(text: str) -> str:
    """Escape HELP text (backslash and newline)."""
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def format_value(value: float) -> str:
    """Render a sample value or bucket bound."""
    return floatToGoString(value)


def _sample(name: str, label_body: str, value: float) -> str:
    if label_body:
        return f"{name}{{{label_body}}} {format_value(value)}"
    return f"{name} {format_value(value)}"


def _join_labels(label_body: str, extra: str) -> str:
    return f"{label_body},{extra}" if label_body else extra


def _render_histogram(name: str, label_body: str, snap: HistogramSnapshot, lines: List[str]) -> None:
    for bound, count in zip(snap.bounds, snap.buckets):
        le = f'le="{escape_label_value(format_value(bound))}"'
        lines.append(_sample(f"{name}_bucket", _join_labels(label_body, le), count))
    lines.append(_sample(f"{name}_bucket", _join_labels(label_body, 'le="+Inf"'), snap.count))
    lines.append(_sample(f"{name}_sum", label_body, snap.sum))
    lines.append(_sample(f"{name}_count", label_body, snap.count))


def render_family(family: "MetricFamily", lines: List[str]) -> None:
    """Append the exposition lines of one family to ``lines``."""
    name = family.full_name
    if family.help:
        lines.append(f"# HELP {name} {escape_help(family.help)}")
    lines.append(f"# TYPE {name} {family.type_name}")

    for instance in family.instances():
        label_body = instance.labels.canonical_key()
        snap = instance.snapshot()
        if isinstance(snap, HistogramSnapshot):
            _render_histogram(name, label_body, snap, lines)
        else:
            lines.append(_sample(name, label_body, snap))


def render(families: Iterable["MetricFamily"], skip: Collection[str] = ()) -> str:
    """
    Render families into exposition text.

    Args:
        families: Families to render, in output order.
        skip: Full names of families to leave out.

    Returns:
        The exposition text, newline-terminated when non-empty.

    Raises:
        SerializationError: If a family cannot be rendered.
    """
    lines: List[str] = []
    for family in families:
        if family.full_name in skip:
            logger.debug(f"Skipping metric '{family.full_name}' in this collection")
            continue
        try:
            render_family(family, lines)
        except (TypeError, ValueError, OverflowError) as e:
            raise SerializationError(f"Cannot render metric '{family.full_name}': {e}") from e

    if not lines:
        return ""
    return "\n".join(lines) + "\n"
