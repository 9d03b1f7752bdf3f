"""
Interpolation.py
----------------
Scalar helpers shared by the range mapper, the scorer and the allocator.
"""

import math


def clamp(value: float, min_value: float, max_value: float) -> float:
    if value < min_value:
        return min_value
    if value > max_value:
        return max_value
    return value


def clamp01(value: float) -> float:
    """Clamp value into [0, 1]."""
    return clamp(value, 0.0, 1.0)


# Lerp: weighted form so t=0 returns a and t=1 returns b bit-for-bit
def lerp(a: float, b: float, t: float) -> float:
    return a * (1.0 - t) + b * t


# Inverse Lerp: position of value between a and b; 0.0 when the span is empty
def inverse_lerp(a: float, b: float, value: float) -> float:
    span = b - a
    if span == 0.0:
        return 0.0
    return (value - a) / span


# Smoothstep: cubic Hermite ease t^2 (3 - 2t) with t clamped to [0, 1]
# A zero-width band degrades to a step at edge1.
def smoothstep(edge0: float, edge1: float, x: float) -> float:
    if edge1 <= edge0:
        return 1.0 if x >= edge1 else 0.0
    t = clamp01((x - edge0) / (edge1 - edge0))
    return t * t * (3.0 - 2.0 * t)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
