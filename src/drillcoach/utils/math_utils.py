"""Numeric helpers shared by the planning modules."""

import math


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def clamp(value: int, low: int, high: int) -> int:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def ceil_div(numerator: int, denominator: int) -> int:
    """Integer ceiling division for positive denominators."""
    return -(-numerator // denominator)
