"""
Weights — bounded multipliers and renormalized weighted sums.

Shared by rule, KPI and formula scoring so a weight override is
applied the same way everywhere: base weight x clamped multiplier,
then renormalized so the weights still sum to 1.
"""

from __future__ import annotations

from typing import Mapping, Optional

from asobible.ruleset.base import MULTIPLIER_BOUNDS

WEIGHT_TOLERANCE = 1e-9


def clamp_multiplier(value: float, bounds: tuple[float, float] = MULTIPLIER_BOUNDS) -> float:
    low, high = bounds
    return min(high, max(low, value))


def resolve_weights(
    base: Mapping[str, float],
    multipliers: Optional[Mapping[str, float]] = None,
) -> dict[str, float]:
    """Scale each base weight by its (clamped) multiplier and renormalize to sum 1."""
    multipliers = multipliers or {}
    scaled = {
        k: w * clamp_multiplier(multipliers.get(k, 1.0)) for k, w in base.items()
    }
    total = sum(scaled.values())
    if total <= 0:
        return {k: 0.0 for k in base}
    return {k: w / total for k, w in scaled.items()}


def weighted_sum(
    values: Mapping[str, float],
    base: Mapping[str, float],
    multipliers: Optional[Mapping[str, float]] = None,
) -> float:
    """Weighted sum of values under resolved weights, bounded to 0..100."""
    weights = resolve_weights(base, multipliers)
    total = sum(values.get(k, 0.0) * w for k, w in weights.items())
    return max(0.0, min(100.0, total))


def weights_sum_to_one(weights: Mapping[str, float]) -> bool:
    return abs(sum(weights.values()) - 1.0) <= WEIGHT_TOLERANCE
