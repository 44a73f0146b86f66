"""Deterministic percentage helpers shared by the store, engine and client view."""

from __future__ import annotations

from collections.abc import Iterable


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def in_bounds(value: float, lower: float, upper: float) -> bool:
    """Inclusive range check; both bounds are legal values."""
    return lower <= value <= upper


def total_of(values: Iterable[float]) -> float:
    """Fresh sum rounded to remove float noise from many small contributions."""
    return round(sum(float(v) for v in values), 6)


def is_consensus_total(total: float, tolerance: float) -> bool:
    return abs(total - 100.0) < tolerance


def equal_split(count: int, precision: int = 1) -> list[float]:
    """Split 100 into ``count`` shares at ``precision`` decimals summing to exactly 100.

    The rounding remainder goes to the first share, e.g. 3 -> [33.4, 33.3, 33.3].
    """
    if count <= 0:
        return []
    unit = 10**precision
    base, remainder = divmod(100 * unit, count)
    shares = [base] * count
    shares[0] += remainder
    return [share / unit for share in shares]
