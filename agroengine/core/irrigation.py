"""
FAO-56 irrigation decisions from soil moisture and the rain forecast.

The decision for one field is built in four steps:

1. Root-zone water balance (TAW, RAW, depletion, stress) from the soil
   constants of the field texture and the crop root depth and MAD.
2. Base urgency from a priority ladder (first matching rule wins):
   excess moisture, deficit below the crop minimum, position inside the
   crop band, depletion against MAD.
3. Rain softening: when the forecast reaches the rain threshold the urgency
   drops exactly one step. ``CRITICAL`` is never downgraded and a failed
   forecast lookup leaves the base urgency untouched.
4. Decision, depth (clamped to the configured window when irrigating),
   duration at the application rate, and the next check interval.

Notes
-----
Inside the crop VWC band the two outer sub-bands both map to ``LOW``
(scores 25 and 35); only the score tells them apart.

References
----------
Allen, R.G., Pereira, L.S., Raes, D., Smith, M. (1998). Crop
evapotranspiration. FAO Irrigation and Drainage Paper 56.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Protocol

import numpy as np

from agroengine.core.config import AgronomyContext
from agroengine.core.crops import CropParameters, GrowthStage
from agroengine.core.data_containers import (
    Decision,
    FieldState,
    IrrigationBatch,
    IrrigationDecision,
    SensorSnapshot,
    SoilWaterBalance,
    StressLevel,
    Urgency,
    WeatherOutlook,
)
from agroengine.core.errors import ValidationError
from agroengine.core.gdd import growth_stage
from agroengine.core.soils import SoilConstants
from agroengine.library import hydrology

logger = logging.getLogger(__name__)

_STRESS = tuple(StressLevel)

_SCORE_BASIS = {
    Urgency.NONE: "Soil moisture within ideal or acceptable range for the crop.",
    Urgency.LOW: (
        "Soil moisture within crop range but near the edge of the optimal "
        "band, low urgency threshold."
    ),
    Urgency.MODERATE: (
        "Moisture or depletion near management allowed depletion (MAD) "
        "threshold, moderate urgency."
    ),
    Urgency.HIGH: (
        "Depletion clearly beyond MAD or VWC below crop minimum, high "
        "urgency for irrigation."
    ),
    Urgency.CRITICAL: (
        "Severe deficit well below crop minimum moisture or very high "
        "depletion, critical urgency."
    ),
}


class OutlookProvider(Protocol):
    """Source of a rain outlook for a location."""

    def outlook(
        self,
        latitude: float | None,
        longitude: float | None,
        hours_ahead: int,
        threshold_mm: float,
    ) -> WeatherOutlook: ...


# -------------------------
# Pure steps
# -------------------------


def water_balance(
    soil: SoilConstants,
    current_vwc: float,
    root_depth_cm: float,
    mad: float,
) -> SoilWaterBalance:
    """
    Root-zone water balance of a field.

    Examples
    --------
    >>> from agroengine.core.soils import SoilConstantTable
    >>> loam = SoilConstantTable.default().lookup("LOAM")
    >>> b = water_balance(loam, 25.0, root_depth_cm=100, mad=0.5)
    >>> b.taw_mm, b.raw_mm
    (160.0, 80.0)
    """
    taw = float(
        hydrology.total_available_water(
            soil.field_capacity, soil.wilting_point, root_depth_cm
        )
    )
    raw = float(hydrology.readily_available_water(taw, mad))
    current_depth = float(hydrology.vwc_to_depth_mm(current_vwc, root_depth_cm))
    fc_depth = float(
        hydrology.vwc_to_depth_mm(soil.field_capacity, root_depth_cm)
    )
    depletion = max(0.0, fc_depth - current_depth)
    dep_pct = float(hydrology.depletion_percent(depletion, taw))
    stress = _STRESS[
        int(
            hydrology.stress_level(
                dep_pct, mad, current_vwc >= soil.field_capacity
            )
        )
    ]
    return SoilWaterBalance(
        soil_texture=soil.texture,
        root_depth_cm=float(root_depth_cm),
        field_capacity=soil.field_capacity,
        wilting_point=soil.wilting_point,
        saturation=soil.saturation,
        taw_mm=round(taw, 2),
        raw_mm=round(raw, 2),
        mad=float(mad),
        current_vwc=float(current_vwc),
        current_depth_mm=round(current_depth, 2),
        fc_depth_mm=round(fc_depth, 2),
        depletion_mm=round(depletion, 2),
        depletion_percent=round(dep_pct, 2),
        stress_level=stress,
    )


def current_kc(
    crop: CropParameters,
    stage: GrowthStage | None,
    cumulative_gdd: float,
) -> float:
    """
    Crop coefficient for the current stage.

    ``INITIAL`` (or unknown stage) uses ``kc_ini`` and ``MID_SEASON`` uses
    ``kc_mid``. ``DEVELOPMENT`` interpolates ini to mid between the initial
    and development thresholds; ``LATE_SEASON`` and ``HARVEST_READY``
    interpolate mid to end between the mid-season and late-season
    thresholds. The interpolation fraction is clipped to [0, 1].
    """
    if stage is None or stage is GrowthStage.INITIAL:
        return crop.kc_ini
    if stage is GrowthStage.MID_SEASON:
        return crop.kc_mid
    if stage is GrowthStage.DEVELOPMENT:
        lo, hi = crop.initial_stage_gdd, crop.development_stage_gdd
        k0, k1 = crop.kc_ini, crop.kc_mid
    else:
        lo, hi = crop.mid_season_gdd, crop.late_season_gdd
        k0, k1 = crop.kc_mid, crop.kc_end
    frac = float(np.clip((cumulative_gdd - lo) / (hi - lo), 0.0, 1.0))
    return k0 + (k1 - k0) * frac


def determine_urgency(
    current_vwc: float, balance: SoilWaterBalance, crop: CropParameters
) -> tuple[Urgency, float]:
    """Base urgency and its score (0-100), first matching rule wins."""
    # excess water overrides everything else
    if current_vwc >= balance.saturation or current_vwc > crop.vwc_max:
        return Urgency.NONE, 0.0

    if current_vwc < crop.vwc_min:
        deficit = crop.vwc_min - current_vwc
        if deficit > 5:
            return Urgency.CRITICAL, 95.0
        if deficit > 3:
            return Urgency.HIGH, 80.0
        return Urgency.MODERATE, 60.0

    if crop.vwc_min <= current_vwc <= crop.vwc_max:
        distance = abs(current_vwc - crop.vwc_optimal)
        half_range = (crop.vwc_max - crop.vwc_min) / 2.0
        if distance < half_range * 0.3:
            return Urgency.NONE, 0.0
        if distance < half_range * 0.7:
            return Urgency.LOW, 25.0
        return Urgency.LOW, 35.0

    # depletion fallback, not reached while vwc_min <= vwc_max
    mad_pct = balance.mad * 100.0
    if balance.depletion_percent > mad_pct * 1.3:
        return Urgency.HIGH, 75.0
    if balance.depletion_percent > mad_pct * 1.1:
        return Urgency.MODERATE, 55.0
    if balance.depletion_percent > mad_pct * 0.8:
        return Urgency.LOW, 30.0
    return Urgency.NONE, 0.0


def adjust_for_rain(urgency: Urgency, score: float) -> tuple[Urgency, float]:
    """One-step downgrade for forecast rain. ``CRITICAL`` is kept."""
    if urgency is Urgency.HIGH:
        return Urgency.MODERATE, max(50.0, score - 25.0)
    if urgency is Urgency.MODERATE:
        return Urgency.LOW, max(20.0, score - 30.0)
    if urgency is Urgency.LOW:
        return Urgency.NONE, 0.0
    return urgency, score


def decision_for(urgency: Urgency) -> Decision:
    if urgency in (Urgency.CRITICAL, Urgency.HIGH):
        return Decision.IRRIGATE_NOW
    if urgency is Urgency.MODERATE:
        return Decision.IRRIGATE_SOON
    return Decision.DO_NOT_IRRIGATE


# -------------------------
# Engine
# -------------------------


class IrrigationDecisionEngine:
    """
    Irrigation decisions for fields with a confirmed crop.

    Parameters
    ----------
    context : AgronomyContext
        Crop store, soil table and irrigation settings.
    weather : OutlookProvider, optional
        Rain forecast source. Without one, decisions are never softened.
    """

    def __init__(
        self,
        context: AgronomyContext,
        weather: OutlookProvider | None = None,
    ) -> None:
        self.context = context
        self.weather = weather

    def outlook(self, field: FieldState) -> WeatherOutlook | None:
        """Rain outlook for the field, ``None`` if unavailable."""
        if self.weather is None:
            return None
        cfg = self.context.config
        try:
            return self.weather.outlook(
                field.latitude,
                field.longitude,
                cfg.rain_lookahead_hours,
                cfg.rain_threshold_mm,
            )
        except Exception:
            logger.warning(
                "Field %s: weather check failed, no forecast adjustment",
                field.field_id, exc_info=True,
            )
            return None

    def suggested_depth(
        self, balance: SoilWaterBalance, target_vwc: float
    ) -> float:
        """Depth to bring the root zone to ``target_vwc``, clamped [mm]."""
        cfg = self.context.config
        target_depth = float(
            hydrology.vwc_to_depth_mm(target_vwc, balance.root_depth_cm)
        )
        needed = target_depth - balance.current_depth_mm
        depth = min(
            max(needed, cfg.min_irrigation_depth_mm),
            cfg.max_irrigation_depth_mm,
        )
        return round(depth, 1)

    def decide(
        self, field: FieldState, snapshot: SensorSnapshot
    ) -> IrrigationDecision:
        """
        Irrigation decision for ``field`` given its latest sensor reading.

        Raises
        ------
        ValidationError
            If the field has no confirmed crop.
        NotFoundError
            If the crop is not in the crop store.
        """
        if not (field.crop_confirmed and field.crop_name):
            raise ValidationError(
                "Field must have confirmed crop for irrigation decisions",
                {"field_id": field.field_id, "crop_name": field.crop_name},
            )
        cfg = self.context.config
        crop = self.context.crops.lookup(field.crop_name)
        soil = self.context.soils.lookup(field.soil_texture)
        vwc = snapshot.vwc

        # stage follows cumulative GDD, never the stored flag
        stage = growth_stage(field.accumulated_gdd, crop)
        kc = current_kc(crop, stage, field.accumulated_gdd)

        balance = water_balance(soil, vwc, crop.root_depth_cm, crop.mad)
        logger.debug(
            "Field %s: TAW %.1f mm, RAW %.1f mm, depletion %.1f%% (%s), Kc %.2f",
            field.field_id, balance.taw_mm, balance.raw_mm,
            balance.depletion_percent, balance.stress_level.value, kc,
        )

        base_urgency, base_score = determine_urgency(vwc, balance, crop)
        urgency, score = base_urgency, base_score
        weather_adjustment = None
        forecast = self.outlook(field)
        if forecast is not None and forecast.rain_expected:
            weather_adjustment = forecast.description
            urgency, score = adjust_for_rain(base_urgency, base_score)
            logger.info(
                "Field %s: urgency %s -> %s for forecast rain (%s)",
                field.field_id, base_urgency.value, urgency.value,
                forecast.description,
            )

        decision = decision_for(urgency)
        target = crop.vwc_optimal
        deficit = max(0.0, target - vwc)
        deficit_pct = deficit / target * 100.0 if target > 0 else 0.0

        irrigating = decision is not Decision.DO_NOT_IRRIGATE
        depth = self.suggested_depth(balance, target) if irrigating else 0.0
        rate = cfg.application_rate_mm_per_hour
        duration = math.ceil(depth / rate * 60.0) if depth > 0 else 0

        now_h, soon_h, later_h = cfg.next_check_hours
        next_check = {
            Decision.IRRIGATE_NOW: now_h,
            Decision.IRRIGATE_SOON: soon_h,
        }.get(decision, later_h)

        etc = None
        if forecast is not None and forecast.et0_mm is not None:
            etc = round(kc * forecast.et0_mm, 2)

        result = IrrigationDecision(
            field_id=field.field_id,
            crop_name=crop.name,
            decision=decision,
            urgency=urgency,
            urgency_score=score,
            base_urgency=base_urgency,
            reason=self.reason(
                decision, vwc, target, balance, crop, weather_adjustment
            ),
            score_basis=_SCORE_BASIS[urgency],
            current_vwc=round(vwc, 1),
            target_vwc=round(target, 1),
            deficit=round(deficit, 1),
            deficit_percent_of_target=round(deficit_pct, 1),
            suggested_depth_mm=depth,
            suggested_duration_min=duration,
            application_rate_mm_per_hour=rate,
            weather_adjustment=weather_adjustment,
            next_check_hours=next_check,
            growth_stage=stage,
            current_kc=round(kc, 3),
            etc_mm=etc,
            water_balance=balance,
        )
        logger.info(
            "Field %s: %s (%s, score %.0f), depth %.1f mm, %d min",
            field.field_id, decision.value, urgency.value, score, depth,
            duration,
        )
        return result

    @staticmethod
    def reason(
        decision: Decision,
        vwc: float,
        target: float,
        balance: SoilWaterBalance,
        crop: CropParameters,
        weather_adjustment: str | None,
    ) -> str:
        """Human-readable explanation, sentences joined by ``". "``."""
        parts = []
        if decision is Decision.IRRIGATE_NOW:
            if vwc < crop.vwc_min:
                parts.append(
                    "Critical moisture deficit detected: "
                    f"{crop.vwc_min - vwc:.1f}% below crop minimum"
                )
                parts.append(
                    f"Current VWC {vwc:.1f}% vs minimum {crop.vwc_min:g}%"
                )
            elif balance.depletion_percent > balance.mad * 100 * 1.2:
                parts.append(
                    f"Soil depletion {balance.depletion_percent:.0f}% exceeded "
                    f"MAD threshold ({balance.mad * 100:.0f}%)"
                )
                parts.append(f"Water stress risk for {crop.name}")
            else:
                parts.append("Immediate irrigation required to prevent crop stress")
        elif decision is Decision.IRRIGATE_SOON:
            parts.append("Soil moisture approaching stress level")
            parts.append(f"Current {vwc:.1f}% vs optimal {target:.1f}%")
            parts.append(f"Depletion at {balance.depletion_percent:.0f}% of TAW")
        elif vwc >= balance.saturation:
            parts.append("Soil saturated - no irrigation needed")
        elif crop.vwc_min <= vwc <= crop.vwc_max:
            parts.append(f"Soil moisture optimal for {crop.name}")
            parts.append(
                f"Current {vwc:.1f}% within range "
                f"{crop.vwc_min:g}-{crop.vwc_max:g}%"
            )
        elif vwc > crop.vwc_max:
            parts.append("Soil moisture exceeds optimal range - risk of waterlogging")
            parts.append(
                f"Avoid irrigation until moisture depletes to {crop.vwc_max:g}%"
            )
        else:
            parts.append(f"Soil moisture adequate at {vwc:.1f}% VWC")

        if weather_adjustment:
            parts.append(weather_adjustment)
        return ". ".join(parts)

    def recommend_many(
        self, requests: Iterable[tuple[FieldState, SensorSnapshot]]
    ) -> IrrigationBatch:
        """
        Decide for many fields, most urgent first.

        A failure on one field is logged and counted; the others proceed.
        """
        decisions = []
        failures: dict[str, str] = {}
        for field, snapshot in requests:
            try:
                decisions.append(self.decide(field, snapshot))
            except Exception as e:
                failures[field.field_id] = str(e)
                logger.warning(
                    "Field %s: irrigation decision failed",
                    field.field_id, exc_info=True,
                )
        decisions.sort(key=lambda d: d.urgency_score, reverse=True)
        logger.info(
            "Irrigation batch: %d decisions, %d failures",
            len(decisions), len(failures),
        )
        return IrrigationBatch(tuple(decisions), len(failures), failures)
