"""
Field Merges — pure conflict-resolution functions.

One function per field type. Each takes the inherited value and one
layer's value and returns a new value; nothing is mutated, so every
rule can be tested on its own.

Bounds are applied here, at the point an override is applied.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, TypeVar

from asobible.errors import OverrideOutOfBounds
from asobible.relevance import clamp_relevance

K = TypeVar("K")
V = TypeVar("V")


@dataclass(frozen=True)
class RuleSetWarning:
    """Non-fatal problem found while merging a layer."""
    type: str           # "override_out_of_bounds", "unknown_key", "invalid_document", "invalid_template"
    layer: str
    key: str
    message: str
    value: Optional[float] = None
    clamped_to: Optional[float] = None


def merge_scalar_override(
    inherited: Mapping[K, V], layer: Optional[Mapping[K, V]],
) -> dict[K, V]:
    """Per key, the layer's value replaces the inherited one."""
    merged = dict(inherited)
    if layer:
        merged.update(layer)
    return merged


def merge_list_union(inherited: Iterable[str], layer: Optional[Iterable[str]]) -> tuple[str, ...]:
    """Sorted union of both lists."""
    return tuple(sorted(set(inherited) | set(layer or ())))


def merge_list_override(
    inherited: tuple[V, ...], layer: Optional[Iterable[V]],
) -> tuple[V, ...]:
    """The layer's list replaces the inherited one if present (even if empty)."""
    if layer is None:
        return tuple(inherited)
    return tuple(layer)


def merge_token_relevance(
    inherited: Mapping[str, int], layer: Optional[Mapping[str, float]],
) -> dict[str, int]:
    """Union of token maps, later relevance wins, levels floored into 0..3."""
    if not layer:
        return dict(inherited)
    return merge_scalar_override(
        inherited, {token: clamp_relevance(v) for token, v in layer.items()},
    )


def clamp_override(
    key: str, value: float, bounds: tuple[float, float], layer: str,
) -> tuple[float, Optional[RuleSetWarning]]:
    """Clamp value into bounds. Returns (value, warning-if-clamped)."""
    low, high = bounds
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return low, RuleSetWarning(
            type="override_out_of_bounds", layer=layer, key=key,
            message=f"{layer}: {key} is not a number, using {low}",
            value=None, clamped_to=low,
        )
    if low <= value <= high:
        return value, None
    clamped = min(high, max(low, value))
    error = OverrideOutOfBounds(key, value, low, high)
    return clamped, RuleSetWarning(
        type="override_out_of_bounds", layer=layer, key=key,
        message=f"{layer}: {error}, clamped to {clamped}",
        value=value, clamped_to=clamped,
    )
