"""
ADM_Persistence.py
------------------
Versioned persistence of the adaptive difficulty state, one JSON file per
user.

Records are decoded by looking at the version discriminant first:
  - no version       -> SchemaV1 (no performance profiles)
  - version 2        -> AdaptiveDifficultyState (current)
  - newer than 2     -> decoded permissively as current, never overwritten
Stale records are lifted by pure migration steps and re-persisted at once.
Unknown dimension keys and malformed history entries are dropped; load
failures resolve to "no prior state" and are logged, never raised.
"""

import json
import logging
import math
import os
import re
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from threading import Lock
from typing import Any, ClassVar, Union

from ADM_Bases.Dimensions import (
    AdaptationDirection,
    DifficultyDimension,
    DimensionVector,
    KeyedFields,
    KPIKind,
    KPIVector,
)
from ADM_Bases.History import PerformanceHistoryEntry
from ADM_Bases.Interpolation import clamp01
from adm_config import (
    CURRENT_SCHEMA_VERSION,
    DEFAULT_NORMALIZED_POSITION,
    MAX_HISTORY_SIZE,
    STATE_DIR_DEFAULT,
    ADMConfig,
)

logger = logging.getLogger(__name__)

LEGACY_SCHEMA_VERSION = 1

# Serializes writers inside this process; os.replace keeps files whole across processes
_store_lock = Lock()


# Performance Profiles: per-dimension samples of (value, position, performance)

@dataclass(frozen=True)
class DomPerformanceSample:
    timestamp: float
    value: float
    normalized_position: float
    performance: float


@dataclass(frozen=True)
class DomPerformanceProfile:
    samples: tuple[DomPerformanceSample, ...] = ()

    def with_sample(self, sample: DomPerformanceSample, max_samples: int) -> "DomPerformanceProfile":
        samples = self.samples + (sample,)
        if len(samples) > max_samples:
            samples = samples[-max_samples:]
        return DomPerformanceProfile(samples=samples)

    def performance_slope(self) -> float:
        """Least-squares slope of performance against normalized position (0.0 if flat or too few)."""
        n = len(self.samples)
        if n < 2:
            return 0.0
        mean_x = sum(s.normalized_position for s in self.samples) / n
        mean_y = sum(s.performance for s in self.samples) / n
        numerator = 0.0
        denominator = 0.0
        for s in self.samples:
            dx = s.normalized_position - mean_x
            numerator += dx * (s.performance - mean_y)
            denominator += dx * dx
        if denominator <= 0.0:
            return 0.0
        return numerator / denominator


_EMPTY_PROFILE = DomPerformanceProfile()


@dataclass(frozen=True)
class ProfileSet(KeyedFields):
    _keys: ClassVar[type] = DifficultyDimension

    discriminatory_load: DomPerformanceProfile = _EMPTY_PROFILE
    mean_speed: DomPerformanceProfile = _EMPTY_PROFILE
    speed_variance: DomPerformanceProfile = _EMPTY_PROFILE
    response_time: DomPerformanceProfile = _EMPTY_PROFILE
    target_count: DomPerformanceProfile = _EMPTY_PROFILE


# Schemas

@dataclass(frozen=True)
class AdaptiveDifficultyState:
    """Current schema (version 2) and the unit of persistence."""

    history: tuple[PerformanceHistoryEntry, ...] = ()
    last_adaptation_direction: AdaptationDirection = AdaptationDirection.NONE
    direction_stable_count: int = 0
    normalized_positions: DimensionVector = field(
        default_factory=lambda: DimensionVector.filled(DEFAULT_NORMALIZED_POSITION)
    )
    performance_profiles: ProfileSet | None = None
    schema_version: int = CURRENT_SCHEMA_VERSION


@dataclass(frozen=True)
class SchemaV1:
    history: tuple[PerformanceHistoryEntry, ...]
    last_adaptation_direction: AdaptationDirection
    direction_stable_count: int
    normalized_positions: DimensionVector


StoredRecord = Union[SchemaV1, AdaptiveDifficultyState]


# Migration: each step is total and pure

def migrate_v1_to_v2(record: SchemaV1) -> AdaptiveDifficultyState:
    return AdaptiveDifficultyState(
        history=record.history,
        last_adaptation_direction=record.last_adaptation_direction,
        direction_stable_count=record.direction_stable_count,
        normalized_positions=record.normalized_positions,
        performance_profiles=ProfileSet(),
        schema_version=2,
    )


def migrate(record: StoredRecord) -> AdaptiveDifficultyState:
    """Lift any supported record to the current schema; current or newer records pass through."""
    if isinstance(record, SchemaV1):
        record = migrate_v1_to_v2(record)
    if record.schema_version < CURRENT_SCHEMA_VERSION:
        record = replace(
            record,
            performance_profiles=record.performance_profiles or ProfileSet(),
            schema_version=CURRENT_SCHEMA_VERSION,
        )
    return record


# Decoding helpers

def _as_float(value: Any, default: float | None = None) -> float | None:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default
    return default


def _as_int(value: Any, default: int = 0) -> int:
    number = _as_float(value)
    if number is None or math.isnan(number) or math.isinf(number):
        return default
    return int(number)


def _pairs(raw: Any) -> list[tuple[Any, Any]]:
    # Maps arrive either as JSON objects or as flat [key, value, key, value] arrays
    if isinstance(raw, dict):
        return list(raw.items())
    if isinstance(raw, list) and len(raw) % 2 == 0:
        return [(raw[i], raw[i + 1]) for i in range(0, len(raw), 2)]
    return []


def _decode_dimension_map(raw: Any) -> dict[DifficultyDimension, Any]:
    decoded = {}
    for key, value in _pairs(raw):
        dimension = DifficultyDimension.parse(key)
        if dimension is None:
            logger.debug({"event": "adm_state_unknown_dimension", "key": str(key)})
            continue
        decoded[dimension] = value
    return decoded


def _decode_dimension_vector(raw: Any, default: float) -> DimensionVector:
    values = {}
    for dimension, value in _decode_dimension_map(raw).items():
        number = _as_float(value)
        if number is not None and not math.isnan(number):
            values[dimension] = number
    return DimensionVector.build(lambda dimension: values.get(dimension, default))


def _decode_positions(raw: Any, default_position: float) -> DimensionVector:
    positions = _decode_dimension_vector(raw, default_position)
    return DimensionVector.build(lambda dimension: clamp01(positions.get(dimension)))


def _decode_kpis(raw: Any) -> KPIVector:
    values = {}
    for key, value in _pairs(raw):
        kind = KPIKind.parse(key)
        number = _as_float(value)
        if kind is not None and number is not None:
            values[kind] = number
    return KPIVector.build(lambda kind: values.get(kind, 0.0))


def _decode_entry(raw: Any) -> PerformanceHistoryEntry | None:
    if not isinstance(raw, dict):
        return None
    score = _as_float(raw.get("overallScore"))
    if score is None or math.isnan(score):
        return None
    dimension_values = raw.get("dimensionValues", raw.get("currentDOMValues"))
    return PerformanceHistoryEntry(
        timestamp=_as_float(raw.get("timestamp"), 0.0),
        overall_score=score,
        normalized_kpis=_decode_kpis(raw.get("normalizedKPIs")),
        arousal_level=_as_float(raw.get("arousalLevel"), 0.0),
        dimension_values=_decode_dimension_vector(dimension_values, 0.0),
    )


def _decode_history(raw: Any, max_history_size: int) -> tuple[PerformanceHistoryEntry, ...]:
    if not isinstance(raw, list):
        return ()
    entries = [entry for entry in (_decode_entry(item) for item in raw) if entry is not None]
    entries.sort(key=lambda entry: entry.timestamp)
    return tuple(entries[-max_history_size:])


def _decode_sample(raw: Any) -> DomPerformanceSample | None:
    if not isinstance(raw, dict):
        return None
    performance = _as_float(raw.get("performance"))
    value = _as_float(raw.get("value"))
    if performance is None or value is None:
        return None
    return DomPerformanceSample(
        timestamp=_as_float(raw.get("timestamp"), 0.0),
        value=value,
        normalized_position=clamp01(_as_float(raw.get("normalizedPosition"), 0.0)),
        performance=performance,
    )


def _decode_profiles(raw: Any) -> ProfileSet | None:
    if raw is None:
        return None
    profiles = {}
    for dimension, body in _decode_dimension_map(raw).items():
        items = body.get("performanceByValue") if isinstance(body, dict) else body
        if not isinstance(items, list):
            continue
        samples = tuple(s for s in (_decode_sample(item) for item in items) if s is not None)
        profiles[dimension] = DomPerformanceProfile(samples=samples)
    return ProfileSet.build(lambda dimension: profiles.get(dimension, _EMPTY_PROFILE))


def peek_version(payload: dict) -> int:
    """Schema version of a raw record without decoding the rest; absent means version 1."""
    version = payload.get("version")
    if version is None:
        return LEGACY_SCHEMA_VERSION
    return _as_int(version, LEGACY_SCHEMA_VERSION)


def decode_record(
    payload: dict,
    max_history_size: int = MAX_HISTORY_SIZE,
    default_position: float = DEFAULT_NORMALIZED_POSITION,
) -> StoredRecord:
    if not isinstance(payload, dict):
        raise TypeError("state record must be a JSON object")
    version = peek_version(payload)
    history = _decode_history(payload.get("performanceHistory"), max_history_size)
    direction = AdaptationDirection.parse(payload.get("lastAdaptationDirection"))
    stable_count = max(0, _as_int(payload.get("directionStableCount"), 0))
    positions = _decode_positions(payload.get("normalizedPositions"), default_position)
    if version <= LEGACY_SCHEMA_VERSION:
        return SchemaV1(
            history=history,
            last_adaptation_direction=direction,
            direction_stable_count=stable_count,
            normalized_positions=positions,
        )
    return AdaptiveDifficultyState(
        history=history,
        last_adaptation_direction=direction,
        direction_stable_count=stable_count,
        normalized_positions=positions,
        performance_profiles=_decode_profiles(payload.get("domPerformanceProfiles")),
        schema_version=version,
    )


# Encoding

def _encode_entry(entry: PerformanceHistoryEntry) -> dict:
    return {
        "timestamp": entry.timestamp,
        "overallScore": entry.overall_score,
        "normalizedKPIs": entry.normalized_kpis.to_json(),
        "arousalLevel": entry.arousal_level,
        "dimensionValues": entry.dimension_values.to_json(),
    }


def _encode_profiles(profiles: ProfileSet) -> dict:
    return {
        dimension.value: {
            "performanceByValue": [
                {
                    "timestamp": s.timestamp,
                    "value": s.value,
                    "normalizedPosition": s.normalized_position,
                    "performance": s.performance,
                }
                for s in profile.samples
            ]
        }
        for dimension, profile in profiles.items()
    }


def encode_state(state: AdaptiveDifficultyState, include_profiles: bool = True) -> dict:
    payload = {
        "version": state.schema_version,
        "performanceHistory": [_encode_entry(entry) for entry in state.history],
        "lastAdaptationDirection": state.last_adaptation_direction.value,
        "directionStableCount": state.direction_stable_count,
        "normalizedPositions": state.normalized_positions.to_json(),
    }
    if include_profiles and state.performance_profiles is not None:
        payload["domPerformanceProfiles"] = _encode_profiles(state.performance_profiles)
    return payload


# State Store

class StateStore:

    FILE_PREFIX = "adm_state_"
    FILE_SUFFIX = ".json"
    _UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")

    def __init__(
        self,
        directory: str | os.PathLike = STATE_DIR_DEFAULT,
        max_history_size: int = MAX_HISTORY_SIZE,
        include_profiles: bool = True,
        default_position: float = DEFAULT_NORMALIZED_POSITION,
    ):
        self.directory = Path(directory)
        self.max_history_size = max_history_size
        self.include_profiles = include_profiles
        self.default_position = default_position

    @classmethod
    def from_config(cls, config: ADMConfig) -> "StateStore":
        return cls(
            directory=config.state_directory,
            max_history_size=config.max_history_size,
            include_profiles=config.persist_dom_performance_profiles,
            default_position=config.default_normalized_position,
        )

    def path_for(self, user_id: str) -> Path:
        safe_id = self._UNSAFE_CHARS.sub("_", str(user_id).strip()) or "default_user"
        return self.directory / f"{self.FILE_PREFIX}{safe_id}{self.FILE_SUFFIX}"

    def save(self, state: AdaptiveDifficultyState, user_id: str) -> bool:
        """Overwrite the user's record atomically; returns False (and logs) on failure."""
        if state.schema_version > CURRENT_SCHEMA_VERSION:
            logger.warning(
                {
                    "event": "adm_state_save_skipped",
                    "user_id": user_id,
                    "reason": "record uses a newer schema",
                    "schema_version": state.schema_version,
                }
            )
            return False
        path = self.path_for(user_id)
        try:
            payload = encode_state(state, include_profiles=self.include_profiles)
            body = json.dumps(payload, indent=2)
            with _store_lock:
                self.directory.mkdir(parents=True, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(
                    prefix=path.name, suffix=".tmp", dir=str(self.directory)
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as handle:
                        handle.write(body)
                    os.replace(tmp_path, path)
                except BaseException:
                    if os.path.exists(tmp_path):
                        os.remove(tmp_path)
                    raise
        except (OSError, TypeError, ValueError) as exc:
            logger.error(
                {"event": "adm_state_save_failed", "user_id": user_id, "path": str(path), "error": str(exc)}
            )
            return False
        logger.info(
            {
                "event": "adm_state_saved",
                "user_id": user_id,
                "history_entries": len(state.history),
                "direction": state.last_adaptation_direction.value,
                "bytes": len(body),
            }
        )
        return True

    def load(self, user_id: str) -> AdaptiveDifficultyState | None:
        path = self.path_for(user_id)
        if not path.exists():
            logger.info({"event": "adm_state_missing", "user_id": user_id, "path": str(path)})
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise TypeError("state record must be a JSON object")
            stored_version = peek_version(payload)
            record = decode_record(payload, self.max_history_size, self.default_position)
        except (OSError, TypeError, ValueError, KeyError, RecursionError) as exc:
            logger.warning(
                {"event": "adm_state_load_failed", "user_id": user_id, "path": str(path), "error": str(exc)}
            )
            return None

        if stored_version > CURRENT_SCHEMA_VERSION:
            logger.warning(
                {
                    "event": "adm_state_newer_schema",
                    "user_id": user_id,
                    "schema_version": stored_version,
                    "supported_version": CURRENT_SCHEMA_VERSION,
                }
            )
            return record

        state = migrate(record)
        if stored_version < CURRENT_SCHEMA_VERSION:
            logger.info(
                {
                    "event": "adm_state_migrated",
                    "user_id": user_id,
                    "from_version": stored_version,
                    "to_version": state.schema_version,
                }
            )
            self.save(state, user_id)
        return state

    def clear(self, user_id: str) -> bool:
        path = self.path_for(user_id)
        try:
            with _store_lock:
                if not path.exists():
                    return False
                path.unlink()
        except OSError as exc:
            logger.error({"event": "adm_state_clear_failed", "user_id": user_id, "error": str(exc)})
            return False
        logger.info({"event": "adm_state_cleared", "user_id": user_id})
        return True

    def list_saved_states(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        user_ids = []
        for path in sorted(self.directory.glob(f"{self.FILE_PREFIX}*{self.FILE_SUFFIX}")):
            name = path.name
            user_ids.append(name[len(self.FILE_PREFIX):-len(self.FILE_SUFFIX)])
        return user_ids
