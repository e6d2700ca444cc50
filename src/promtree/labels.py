# src/promtree/labels.py
"""
Label sets for dimensional metrics.

A LabelSet is an immutable mapping from label name to label value. Its
canonical form orders pairs by name, and the canonical key built from that
form is what identifies a metric instance inside its family.

Label sets are combined along the collector tree (collector labels, then
family labels, then call-site labels). When two sets define the same name the
outcome is governed by a LabelPrecedence policy:

    - OVERRIDE: the set applied later wins (default)
    - INHERITED: the set applied earlier wins
    - STRICT: differing values for the same name are rejected

Usage:
    >>> base = LabelSet(service="api", zone="eu")
    >>> call = LabelSet({"zone": "us", "method": "GET"})
    >>> merged = LabelSet.merge(base, call)
    >>> merged.canonical_key()
    'method="GET",service="api",zone="us"'
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple, Union

from promtree.exceptions import ConfigurationError

LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

LabelValue = Union[str, int, float, bool]
LabelsLike = Union["LabelSet", Mapping, None]


class LabelPrecedence(str, Enum):
    """Resolution policy for label name collisions during a merge."""

    OVERRIDE = "override"  # Later-applied set wins
    INHERITED = "inherited"  # Earlier-applied set wins
    STRICT = "strict"  # Collisions with differing values are errors


def is_valid_label_name(name: Any) -> bool:
    """Check a label name against the exposition grammar."""
    if not isinstance(name, str) or not LABEL_NAME_RE.match(name):
        return False
    # Names starting with a double underscore are reserved for internal use
    return not name.startswith("__")


def escape_label_value(value: str) -> str:
    """Escape a label value for use between double quotes."""
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _coerce_value(name: str, value: Any) -> str:
    # bool is checked first since it is a subclass of int
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ConfigurationError(
        f"Label '{name}' has unsupported value type {type(value).__name__}"
    )


class LabelSet(Mapping):
    """
    Immutable mapping of label names to string values.

    Args:
        labels: Optional mapping (or LabelSet) of initial labels.
        **kwargs: Additional labels given as keyword arguments.

    Raises:
        ConfigurationError: If a name is invalid or a value has an
            unsupported type.
    """

    __slots__ = ("_pairs", "_key")

    def __init__(self, labels: LabelsLike = None, **kwargs: LabelValue):
        if labels is not None and not isinstance(labels, Mapping):
            raise ConfigurationError(
                f"Labels must be a mapping of names to values, got {type(labels).__name__}"
            )
        merged: Dict[str, str] = {}
        for source in (labels or {}, kwargs):
            for name, value in source.items():
                if not is_valid_label_name(name):
                    raise ConfigurationError(f"Invalid label name: {name!r}")
                merged[name] = _coerce_value(name, value)

        self._pairs: Tuple[Tuple[str, str], ...] = tuple(sorted(merged.items()))
        self._key: Optional[str] = None

    @classmethod
    def of(cls, labels: LabelsLike) -> "LabelSet":
        """Return labels as a LabelSet, reusing the instance when possible."""
        if isinstance(labels, LabelSet):
            return labels
        return cls(labels)

    @staticmethod
    def merge(
        parent: LabelsLike,
        override: LabelsLike,
        precedence: LabelPrecedence = LabelPrecedence.OVERRIDE,
    ) -> "LabelSet":
        """
        Merge two label sets into a new one.

        Args:
            parent: The earlier-applied (inherited) labels.
            override: The later-applied (more specific) labels.
            precedence: Collision policy.

        Returns:
            A new LabelSet containing the pairs of both inputs.

        Raises:
            ConfigurationError: On a collision under STRICT precedence.
        """
        base = LabelSet.of(parent)
        extra = LabelSet.of(override)
        if not extra:
            return base
        if not base:
            return extra

        merged = dict(base.items())
        for name, value in extra.items():
            if name in merged and merged[name] != value:
                if precedence == LabelPrecedence.STRICT:
                    raise ConfigurationError(
                        f"Label '{name}' is already set to {merged[name]!r}, "
                        f"cannot override with {value!r}"
                    )
                if precedence == LabelPrecedence.INHERITED:
                    continue
            merged[name] = value
        return LabelSet(merged)

    def canonical_key(self) -> str:
        """
        Build the canonical instance key.

        Pairs are rendered in name order as ``name="escaped value"`` and
        joined with commas, so the key doubles as the label body of an
        exposition line. Escaping keeps it collision-free.
        """
        if self._key is None:
            self._key = ",".join(
                f'{name}="{escape_label_value(value)}"' for name, value in self._pairs
            )
        return self._key

    def pairs(self) -> Tuple[Tuple[str, str], ...]:
        """Label pairs in canonical order."""
        return self._pairs

    def __getitem__(self, name: str) -> str:
        for key, value in self._pairs:
            if key == name:
                return value
        raise KeyError(name)

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, LabelSet):
            return self._pairs == other._pairs
        return super().__eq__(other)

    def __hash__(self) -> int:
        return hash(self._pairs)

    def __repr__(self) -> str:
        return f"LabelSet({dict(self._pairs)!r})"


EMPTY_LABELS = LabelSet()
