"""
Dimensions.py
-------------
Closed sets used across the controller (difficulty dimensions, KPI kinds,
adaptation directions) and the fixed-field vectors keyed by them.

Vectors carry one named field per enum member instead of a dict, so a
lookup can never miss a key.
"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, ClassVar, Iterator


def _lookup_key(text: str) -> str:
    return text.strip().replace("_", "").replace("-", "").replace(" ", "").lower()


class DifficultyDimension(str, Enum):
    DISCRIMINATORY_LOAD = "discriminatoryLoad"
    MEAN_SPEED = "meanSpeed"
    SPEED_VARIANCE = "speedVariance"
    RESPONSE_TIME = "responseTime"
    TARGET_COUNT = "targetCount"

    @property
    def field_name(self) -> str:
        return self.name.lower()

    @property
    def is_integral(self) -> bool:
        return self is DifficultyDimension.TARGET_COUNT

    @classmethod
    def parse(cls, key: Any) -> "DifficultyDimension | None":
        """Resolve a stored key (current, legacy or differently cased); None if unknown."""
        if isinstance(key, cls):
            return key
        if not isinstance(key, str):
            return None
        return _DIMENSION_ALIASES.get(_lookup_key(key))


class KPIKind(str, Enum):
    TASK_SUCCESS = "taskSuccess"
    FIND_RATIO = "findRatio"
    REACTION_TIME = "reactionTime"
    RESPONSE_DURATION = "responseDuration"
    TAP_ACCURACY = "tapAccuracy"

    @property
    def field_name(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, key: Any) -> "KPIKind | None":
        if isinstance(key, cls):
            return key
        if not isinstance(key, str):
            return None
        return _KPI_ALIASES.get(_lookup_key(key))


class AdaptationDirection(str, Enum):
    EASE = "ease"
    HARDEN = "harden"
    NONE = "none"

    @classmethod
    def from_budget(cls, budget: float) -> "AdaptationDirection":
        if budget > 0.0:
            return cls.HARDEN
        if budget < 0.0:
            return cls.EASE
        return cls.NONE

    @classmethod
    def parse(cls, value: Any) -> "AdaptationDirection":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return _DIRECTION_ALIASES.get(_lookup_key(value), cls.NONE)
        return cls.NONE


_DIMENSION_ALIASES = {_lookup_key(d.value): d for d in DifficultyDimension}
_DIMENSION_ALIASES.update({
    "meanballspeed": DifficultyDimension.MEAN_SPEED,
    "ballspeedsd": DifficultyDimension.SPEED_VARIANCE,
    "discriminabilityfactor": DifficultyDimension.DISCRIMINATORY_LOAD,
})

_KPI_ALIASES = {_lookup_key(k.value): k for k in KPIKind}
_KPI_ALIASES["tfttfratio"] = KPIKind.FIND_RATIO

_DIRECTION_ALIASES = {d.value: d for d in AdaptationDirection}
_DIRECTION_ALIASES.update({
    "increasing": AdaptationDirection.HARDEN,
    "decreasing": AdaptationDirection.EASE,
    "stable": AdaptationDirection.NONE,
})


class KeyedFields:
    """Shared accessors for dataclasses with one field per enum member."""

    _keys: ClassVar[type]

    def get(self, key):
        return getattr(self, key.field_name)

    def with_value(self, key, value):
        return replace(self, **{key.field_name: value})

    def items(self) -> Iterator[tuple]:
        for key in self._keys:
            yield key, getattr(self, key.field_name)

    def values(self) -> list:
        return [getattr(self, key.field_name) for key in self._keys]

    @classmethod
    def build(cls, factory: Callable):
        return cls(**{key.field_name: factory(key) for key in cls._keys})

    @classmethod
    def filled(cls, value):
        return cls.build(lambda _key: value)

    def to_json(self) -> dict:
        return {key.value: getattr(self, key.field_name) for key in self._keys}


@dataclass(frozen=True)
class DimensionVector(KeyedFields):
    _keys: ClassVar[type] = DifficultyDimension

    discriminatory_load: float = 0.0
    mean_speed: float = 0.0
    speed_variance: float = 0.0
    response_time: float = 0.0
    target_count: float = 0.0


@dataclass(frozen=True)
class KPIVector(KeyedFields):
    _keys: ClassVar[type] = KPIKind

    task_success: float = 0.0
    find_ratio: float = 0.0
    reaction_time: float = 0.0
    response_duration: float = 0.0
    tap_accuracy: float = 0.0

    def weighted_sum(self, weights: "KPIVector") -> float:
        return math.fsum(self.get(kind) * weights.get(kind) for kind in KPIKind)
