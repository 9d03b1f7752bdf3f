"""
RangeMapper.py
--------------
Converts a normalized difficulty position (0 = easiest, 1 = hardest) into
the absolute parameter value the host applies, for the current arousal.

Bounds are interpolated per dimension across the operational arousal band.
Easiest may be numerically greater than hardest (inverted dimensions such
as response time); mapping always runs from easiest towards hardest.
"""

from ADM_Bases.Dimensions import DifficultyDimension, DimensionVector
from ADM_Bases.Interpolation import clamp01, inverse_lerp, lerp, round_half_up
from adm_config import RANGE_EPSILON, DimensionRanges


class RangeMapper:

    __slots__ = ("_ranges", "_arousal_min", "_arousal_max", "_epsilon")

    def __init__(
        self,
        ranges: DimensionRanges,
        arousal_min: float,
        arousal_max: float,
        epsilon: float = RANGE_EPSILON,
    ):
        self._ranges = ranges
        self._arousal_min = arousal_min
        self._arousal_max = arousal_max
        self._epsilon = epsilon

    # Normalized Arousal: position of arousal inside the operational band, clamped to [0, 1]
    # A zero-width band degrades to a step at its upper edge.
    def normalized_arousal(self, arousal: float) -> float:
        span = self._arousal_max - self._arousal_min
        if span <= 0.0:
            return 1.0 if arousal >= self._arousal_max else 0.0
        return clamp01((arousal - self._arousal_min) / span)

    def easiest(self, dimension: DifficultyDimension, arousal: float) -> float:
        setting = self._ranges.get(dimension)
        t = self.normalized_arousal(arousal)
        return lerp(setting.easiest_at_min_arousal, setting.easiest_at_max_arousal, t)

    def hardest(self, dimension: DifficultyDimension, arousal: float) -> float:
        setting = self._ranges.get(dimension)
        t = self.normalized_arousal(arousal)
        return lerp(setting.hardest_at_min_arousal, setting.hardest_at_max_arousal, t)

    def bounds(self, dimension: DifficultyDimension, arousal: float) -> tuple[float, float]:
        return self.easiest(dimension, arousal), self.hardest(dimension, arousal)

    def has_range(self, dimension: DifficultyDimension, arousal: float) -> bool:
        easiest, hardest = self.bounds(dimension, arousal)
        return abs(hardest - easiest) >= self._epsilon

    def absolute(self, dimension: DifficultyDimension, position: float, arousal: float) -> float:
        """Absolute value for a normalized position; target count is rounded to an int."""
        easiest, hardest = self.bounds(dimension, arousal)
        value = lerp(easiest, hardest, clamp01(position))
        if dimension.is_integral:
            return round_half_up(value)
        return value

    def normalize(self, dimension: DifficultyDimension, value: float, arousal: float) -> float:
        """Inverse of absolute(); returns 0.0 when the dimension has no usable range."""
        easiest, hardest = self.bounds(dimension, arousal)
        if abs(hardest - easiest) < self._epsilon:
            return 0.0
        return clamp01(inverse_lerp(easiest, hardest, value))

    def absolute_values(self, positions: DimensionVector, arousal: float) -> DimensionVector:
        return DimensionVector.build(
            lambda dimension: self.absolute(dimension, positions.get(dimension), arousal)
        )
