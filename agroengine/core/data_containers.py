"""
Core containers for field state, sensor inputs and calculator outputs.

This module defines the immutable data structures exchanged between the
three calculators and their callers.

Classes
-------
FieldState
    Per-field configuration and GDD progress (frozen).
FieldPatch
    Partial update of a :class:`FieldState` with present/absent semantics.
DailyTemperatureObservation
    Aggregated air temperature of one calendar day.
SensorSnapshot
    Latest soil-sensor reading, clamped to plausible bounds.
WeatherOutlook
    Forecast rain over a look-ahead window.
GDDResult, GDDStatus, BatchOutcome, DailyCalculation
    Outputs of :class:`agroengine.core.gdd.GDDTracker`.
FieldConditions, SubScores, CropScore, CropRecommendation
    Inputs and outputs of the suitability scorer.
SoilWaterBalance, IrrigationDecision, IrrigationBatch
    Outputs of the irrigation engine.

Notes
-----
- Every output container exposes ``to_dict()`` returning plain Python
  values (ISO dates, enum values as strings) for the caller to serialize.
- ``SensorSnapshot`` clamps instead of raising: VWC to [0, 100] % and soil
  temperature to [-10, 70] °C.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any

from agroengine.core.crops import GrowthStage, Season, normalize_crop_name
from agroengine.core.soils import SoilTexture

VWC_BOUNDS = (0.0, 100.0)
SOIL_TEMP_BOUNDS = (-10.0, 70.0)


def _clamp(x: float, bounds: tuple[float, float]) -> float:
    lo, hi = bounds
    return min(max(float(x), lo), hi)


def _plain(value: Any) -> Any:
    """Convert a value to something ``json.dumps`` accepts."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


class _DictMixin:
    __slots__ = ()

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _plain(getattr(self, f.name)) for f in fields(self)}


class _Unset:
    """Marker for a :class:`FieldPatch` attribute that was not given."""

    __slots__ = ()
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


# -------------------------
# Field state
# -------------------------


@dataclass(frozen=True, slots=True)
class FieldState(_DictMixin):
    """
    Configuration and GDD progress of one field.

    Parameters
    ----------
    field_id : str
        Field identifier.
    soil_texture : SoilTexture
        Texture class of the field soil.
    crop_name : str or None
        Currently planted crop.
    sowing_date : date or None
        Sowing date of the current crop.
    crop_confirmed : bool, default=False
        Whether the farmer confirmed the crop. GDD tracking only runs for
        confirmed crops.
    accumulated_gdd : float, default=0.0
        Cumulative GDD since sowing. Must be ≥ 0.
    growth_stage : GrowthStage or None
        Stage derived from ``accumulated_gdd``.
    base_temp_override : float or None
        Base temperature replacing the crop default for this field [°C].
    latitude, longitude : float or None
        Coordinates used for weather lookups.
    last_updated : datetime or None
        Time of the last GDD update.
    """

    field_id: str
    soil_texture: SoilTexture
    crop_name: str | None = None
    sowing_date: dt.date | None = None
    crop_confirmed: bool = False
    accumulated_gdd: float = 0.0
    growth_stage: GrowthStage | None = None
    base_temp_override: float | None = None
    latitude: float | None = None
    longitude: float | None = None
    last_updated: dt.datetime | None = None

    def __post_init__(self):
        object.__setattr__(
            self, "soil_texture", SoilTexture.parse(self.soil_texture)
        )
        if self.crop_name is not None:
            object.__setattr__(
                self, "crop_name", normalize_crop_name(self.crop_name)
            )
        if self.growth_stage is not None and not isinstance(
            self.growth_stage, GrowthStage
        ):
            object.__setattr__(
                self, "growth_stage", GrowthStage(self.growth_stage)
            )
        if self.accumulated_gdd < 0.0:
            raise ValueError("accumulated_gdd must be ≥ 0.")

    @property
    def is_tracking(self) -> bool:
        """True when GDD can be tracked (confirmed crop and sowing date)."""
        return bool(
            self.crop_confirmed and self.crop_name and self.sowing_date
        )


@dataclass(frozen=True, slots=True)
class FieldPatch:
    """
    Partial update of a :class:`FieldState`.

    Attributes left at :data:`UNSET` are not touched by :meth:`apply`;
    attributes explicitly set to ``None`` clear the field value.

    Examples
    --------
    >>> patch = FieldPatch(accumulated_gdd=120.5)
    >>> patch.changes()
    {'accumulated_gdd': 120.5}
    """

    crop_name: Any = UNSET
    sowing_date: Any = UNSET
    crop_confirmed: Any = UNSET
    accumulated_gdd: Any = UNSET
    growth_stage: Any = UNSET
    base_temp_override: Any = UNSET
    soil_texture: Any = UNSET
    last_updated: Any = UNSET

    def changes(self) -> dict[str, Any]:
        """Only the attributes that were given."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    def is_empty(self) -> bool:
        return not self.changes()

    def apply(self, state: FieldState) -> FieldState:
        """Return a new :class:`FieldState` with the given attributes set."""
        changes = self.changes()
        if not changes:
            return state
        return replace(state, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {k: _plain(v) for k, v in self.changes().items()}


# -------------------------
# Inputs
# -------------------------


@dataclass(frozen=True, slots=True)
class DailyTemperatureObservation(_DictMixin):
    """Aggregated air temperature of one calendar day [°C]."""

    date: dt.date
    min_temp: float
    max_temp: float
    avg_temp: float
    readings_count: int = 0

    def __post_init__(self):
        if self.min_temp > self.max_temp:
            raise ValueError(
                f"min_temp ({self.min_temp}) exceeds max_temp "
                f"({self.max_temp}) on {self.date}."
            )
        if self.readings_count < 0:
            raise ValueError("readings_count must be ≥ 0.")


@dataclass(frozen=True, slots=True)
class SensorSnapshot(_DictMixin):
    """
    Latest soil-sensor reading of a field.

    ``vwc`` is clamped to [0, 100] % and ``soil_temp`` to [-10, 70] °C on
    construction. ``air_temp`` is kept as given.
    """

    vwc: float
    soil_temp: float
    air_temp: float | None = None
    timestamp: dt.datetime | None = None

    def __post_init__(self):
        object.__setattr__(self, "vwc", _clamp(self.vwc, VWC_BOUNDS))
        object.__setattr__(
            self, "soil_temp", _clamp(self.soil_temp, SOIL_TEMP_BOUNDS)
        )


@dataclass(frozen=True, slots=True)
class WeatherOutlook(_DictMixin):
    """
    Forecast rain over the look-ahead window.

    Parameters
    ----------
    rain_expected : bool
        True if ``total_rain_mm`` reaches the configured threshold.
    total_rain_mm : float
        Forecast precipitation summed over the window [mm].
    description : str
        Human-readable summary, used as the decision's weather adjustment.
    hours_ahead : int
        Length of the window [h].
    et0_mm : float or None
        Reference evapotranspiration estimate for today [mm/day].
    """

    rain_expected: bool
    total_rain_mm: float
    description: str
    hours_ahead: int = 48
    et0_mm: float | None = None


# -------------------------
# GDD outputs
# -------------------------


@dataclass(frozen=True, slots=True)
class GDDResult(_DictMixin):
    """Immutable GDD record of one field and date."""

    field_id: str
    date: dt.date
    daily_gdd: float
    cumulative_gdd: float
    avg_air_temp: float
    min_air_temp: float
    max_air_temp: float
    growth_stage: GrowthStage
    readings_count: int
    crop_name: str
    base_temp: float

    def __post_init__(self):
        if self.daily_gdd < 0.0 or self.cumulative_gdd < 0.0:
            raise ValueError("GDD values must be ≥ 0.")


@dataclass(frozen=True, slots=True)
class DailyCalculation:
    """A GDD record with the field state after computing it."""

    record: GDDResult
    field: FieldState
    created: bool
    patch: FieldPatch = field(default_factory=FieldPatch)


@dataclass(frozen=True, slots=True)
class BatchOutcome(_DictMixin):
    """Counts of a range recalculation or gap fill."""

    field: FieldState
    calculated: int = 0
    skipped: int = 0
    failed: int = 0
    deleted: int = 0


@dataclass(frozen=True, slots=True)
class GDDStatus(_DictMixin):
    """Progress of a field towards harvest."""

    field_id: str
    crop_name: str
    sowing_date: dt.date
    accumulated_gdd: float
    expected_total_gdd: float
    progress_percent: float
    growth_stage: GrowthStage
    days_from_sowing: int
    estimated_days_to_harvest: int | None


# -------------------------
# Suitability inputs/outputs
# -------------------------


@dataclass(frozen=True, slots=True)
class FieldConditions(_DictMixin):
    """
    Current field conditions used to score crops.

    Parameters
    ----------
    vwc : float
        Soil moisture [%].
    soil_temp : float
        Soil temperature [°C].
    soil_texture : SoilTexture
        Field soil texture.
    accumulated_gdd : float, default=0.0
        GDD already accumulated on the field by a previous crop.
    """

    vwc: float
    soil_temp: float
    soil_texture: SoilTexture
    accumulated_gdd: float = 0.0

    def __post_init__(self):
        object.__setattr__(
            self, "soil_texture", SoilTexture.parse(self.soil_texture)
        )
        object.__setattr__(self, "vwc", _clamp(self.vwc, VWC_BOUNDS))
        object.__setattr__(
            self, "soil_temp", _clamp(self.soil_temp, SOIL_TEMP_BOUNDS)
        )
        if self.accumulated_gdd < 0.0:
            raise ValueError("accumulated_gdd must be ≥ 0.")

    @classmethod
    def from_snapshot(
        cls,
        snapshot: SensorSnapshot,
        soil_texture: SoilTexture | str,
        accumulated_gdd: float = 0.0,
    ) -> "FieldConditions":
        return cls(
            vwc=snapshot.vwc,
            soil_temp=snapshot.soil_temp,
            soil_texture=soil_texture,
            accumulated_gdd=accumulated_gdd,
        )


@dataclass(frozen=True, slots=True)
class SubScores(_DictMixin):
    """Points per criterion, each rounded to one decimal."""

    moisture: float
    temperature: float
    season: float
    soil: float
    gdd_feasibility: float

    @property
    def total(self) -> float:
        return round(
            self.moisture
            + self.temperature
            + self.season
            + self.soil
            + self.gdd_feasibility,
            1,
        )


@dataclass(frozen=True, slots=True)
class CropScore(_DictMixin):
    """Suitability of one crop. ``rank`` is 0 until the list is ranked."""

    crop_name: str
    total_score: float
    sub_scores: SubScores
    explanation: str
    suitable: bool
    season: Season
    rank: int = 0


@dataclass(frozen=True, slots=True)
class CropRecommendation(_DictMixin):
    """Ranked suitability list with the conditions it was computed from."""

    recommended_crop: str | None
    ranked_scores: tuple[CropScore, ...]
    current_season: Season
    conditions: FieldConditions
    date: dt.date

    @property
    def suitable_crops(self) -> tuple[CropScore, ...]:
        return tuple(s for s in self.ranked_scores if s.suitable)


# -------------------------
# Irrigation outputs
# -------------------------


class Urgency(str, Enum):
    NONE = "NONE"
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Decision(str, Enum):
    IRRIGATE_NOW = "irrigate_now"
    IRRIGATE_SOON = "irrigate_soon"
    DO_NOT_IRRIGATE = "do_not_irrigate"


class StressLevel(str, Enum):
    NONE = "none"
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


@dataclass(frozen=True, slots=True)
class SoilWaterBalance(_DictMixin):
    """FAO-56 root-zone water balance; depths in mm, VWC in %."""

    soil_texture: SoilTexture
    root_depth_cm: float
    field_capacity: float
    wilting_point: float
    saturation: float
    taw_mm: float
    raw_mm: float
    mad: float
    current_vwc: float
    current_depth_mm: float
    fc_depth_mm: float
    depletion_mm: float
    depletion_percent: float
    stress_level: StressLevel


@dataclass(frozen=True, slots=True)
class IrrigationDecision(_DictMixin):
    """
    Irrigation recommendation for one field.

    ``suggested_depth_mm`` is 0 when ``decision`` is ``do_not_irrigate``
    and lies within the configured depth window otherwise.
    """

    field_id: str
    crop_name: str
    decision: Decision
    urgency: Urgency
    urgency_score: float
    base_urgency: Urgency
    reason: str
    score_basis: str
    current_vwc: float
    target_vwc: float
    deficit: float
    deficit_percent_of_target: float
    suggested_depth_mm: float
    suggested_duration_min: int
    application_rate_mm_per_hour: float
    weather_adjustment: str | None
    next_check_hours: int
    growth_stage: GrowthStage
    current_kc: float
    etc_mm: float | None
    water_balance: SoilWaterBalance


@dataclass(frozen=True, slots=True)
class IrrigationBatch(_DictMixin):
    """Decisions for many fields, most urgent first, and the failures."""

    decisions: tuple[IrrigationDecision, ...]
    failed: int = 0
    failures: dict[str, str] = field(default_factory=dict)
