"""
Engine configuration and the injected agronomy context.

:class:`EngineConfig` gathers every tunable constant of the three
calculators (GDD ceiling, scoring weights, irrigation limits). It is frozen
and validated once; calculators receive it through :class:`AgronomyContext`
together with the crop store and soil table.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Mapping

from agroengine.core.crops import CropParameterStore
from agroengine.core.errors import ValidationError
from agroengine.core.soils import SoilConstantTable


@dataclass(frozen=True, slots=True)
class ScoreWeights:
    """
    Maximum points per suitability criterion. Must add up to 100.

    Parameters
    ----------
    moisture, temperature, season, soil, gdd_feasibility : float
        Criterion weights in points.
    """

    moisture: float = 30.0
    temperature: float = 25.0
    season: float = 20.0
    soil: float = 15.0
    gdd_feasibility: float = 10.0

    def __post_init__(self):
        values = [float(getattr(self, f.name)) for f in fields(self)]
        if any(v < 0.0 for v in values):
            raise ValueError("Score weights must be non-negative.")
        if abs(sum(values) - 100.0) > 1e-9:
            raise ValueError(
                f"Score weights must sum to 100, got {sum(values):g}."
            )

    @property
    def total(self) -> float:
        return sum(float(getattr(self, f.name)) for f in fields(self))


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Tunable constants of the decision engine.

    Parameters
    ----------
    gdd_upper_ceiling : float, default=30.0
        Maximum air temperature counted towards GDD [°C].
    weights : ScoreWeights
        Suitability criterion weights.
    suitability_threshold : float, default=60.0
        Minimum total score for a crop to be marked suitable.
    assumed_gdd_per_day : float, default=15.0
        Mean GDD/day used to turn a crop's GDD requirement into days.
    late_planting_fraction : float, default=0.25
        Fraction of the late-season threshold already accumulated past which
        planting counts as late.
    rain_threshold_mm : float, default=5.0
        Forecast rain at or above which urgency is softened [mm].
    rain_lookahead_hours : int, default=48
        Forecast window for the rain check [h].
    min_irrigation_depth_mm, max_irrigation_depth_mm : float
        Depth clamp applied when irrigating [mm].
    application_rate_mm_per_hour : float, default=5.0
        Drip application rate used for the duration [mm/h].
    next_check_hours : tuple of int, default=(6, 12, 24)
        Re-check interval for CRITICAL/HIGH, MODERATE and LOW/NONE urgency.

    Raises
    ------
    ValueError
        If any value is out of range.
    """

    gdd_upper_ceiling: float = 30.0
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    suitability_threshold: float = 60.0
    assumed_gdd_per_day: float = 15.0
    late_planting_fraction: float = 0.25
    rain_threshold_mm: float = 5.0
    rain_lookahead_hours: int = 48
    min_irrigation_depth_mm: float = 15.0
    max_irrigation_depth_mm: float = 75.0
    application_rate_mm_per_hour: float = 5.0
    next_check_hours: tuple[int, int, int] = (6, 12, 24)

    def __post_init__(self):
        if isinstance(self.weights, Mapping):
            object.__setattr__(self, "weights", ScoreWeights(**self.weights))
        object.__setattr__(
            self, "next_check_hours", tuple(int(h) for h in self.next_check_hours)
        )
        if len(self.next_check_hours) != 3:
            raise ValueError("next_check_hours needs exactly three values.")
        if not (0.0 <= self.suitability_threshold <= 100.0):
            raise ValueError("suitability_threshold must be in [0, 100].")
        if self.assumed_gdd_per_day <= 0.0:
            raise ValueError("assumed_gdd_per_day must be positive.")
        if not (0.0 < self.late_planting_fraction < 1.0):
            raise ValueError("late_planting_fraction must be in (0, 1).")
        if self.rain_threshold_mm < 0.0 or self.rain_lookahead_hours <= 0:
            raise ValueError("Rain threshold and look-ahead must be positive.")
        if not (
            0.0 < self.min_irrigation_depth_mm <= self.max_irrigation_depth_mm
        ):
            raise ValueError(
                "Irrigation depths must satisfy 0 < min ≤ max."
            )
        if self.application_rate_mm_per_hour <= 0.0:
            raise ValueError("application_rate_mm_per_hour must be positive.")

    @classmethod
    def from_mapping(cls, overrides: Mapping[str, Any]) -> "EngineConfig":
        """
        Default configuration with selected values overridden.

        Raises
        ------
        ValidationError
            If ``overrides`` names an unknown setting or an invalid value.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValidationError(
                f"Unknown configuration keys: {unknown}",
                {"unknown": unknown, "known": sorted(known)},
            )
        try:
            return replace(cls(), **dict(overrides))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid configuration: {e}") from e


@dataclass(frozen=True, slots=True)
class AgronomyContext:
    """Read-only constants shared by the calculators."""

    crops: CropParameterStore
    soils: SoilConstantTable
    config: EngineConfig = field(default_factory=EngineConfig)

    @classmethod
    def default(cls, config: EngineConfig | None = None) -> "AgronomyContext":
        return cls(
            crops=CropParameterStore.default(),
            soils=SoilConstantTable.default(),
            config=config or EngineConfig(),
        )
