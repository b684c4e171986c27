"""
Multi-criteria crop suitability scoring.

Five independently weighted criteria add up to at most 100 points:

==================  ======  ==============================================
criterion           points  rule
==================  ======  ==============================================
moisture            30      VWC against the crop band and soil FC/WP
temperature         25      soil temperature against the crop band
season              20      crop season matches (perennials always do)
soil                15      preferred texture, half for an adjacent one
GDD feasibility     10      time left in the season vs crop duration
==================  ======  ==============================================

Scores are pure functions of the crop, the field conditions and the date.
Each sub-score is rounded to one decimal and the total is the sum of the
rounded sub-scores, so ``total_score == sum(sub_scores)`` holds exactly as
displayed.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import replace

from agroengine.core.config import AgronomyContext
from agroengine.core.crops import CropParameters, Season
from agroengine.core.data_containers import (
    CropRecommendation,
    CropScore,
    FieldConditions,
    SubScores,
)
from agroengine.core.seasons import current_season, days_remaining_in_season
from agroengine.core.soils import SoilConstants, SoilTexture, SoilConstantTable

logger = logging.getLogger(__name__)


def _normalized_distance(x: float, optimal: float, lo: float, hi: float) -> float:
    span = max(optimal - lo, hi - optimal)
    return abs(x - optimal) / span if span > 0 else 0.0


class CropSuitabilityScorer:
    """
    Scores and ranks the enabled crops for the current field conditions.

    Parameters
    ----------
    context : AgronomyContext
        Crop store (crop universe), soil table and weights.
    """

    def __init__(self, context: AgronomyContext) -> None:
        self.context = context
        self.weights = context.config.weights

    # -------------------------
    # Criteria
    # -------------------------
    def moisture_score(
        self, vwc: float, crop: CropParameters, soil: SoilConstants
    ) -> float:
        """
        Moisture points.

        Above field capacity the score is waterlogged: at most 20 % of the
        weight, reaching 0 at 10 points over FC. Below wilting point it is 0.
        Within 1 point of the crop optimum it is the full weight; inside the
        crop band it falls linearly to a 60 % floor at the edges; outside the
        band it is at most 30 %, reaching 0 at 10 points outside.
        """
        w = self.weights.moisture
        if vwc > soil.field_capacity:
            excess = min((vwc - soil.field_capacity) / 10.0, 1.0)
            return w * (1.0 - excess) * 0.2
        if vwc < soil.wilting_point:
            return 0.0
        if abs(vwc - crop.vwc_optimal) < 1.0:
            return w
        if crop.vwc_min <= vwc <= crop.vwc_max:
            nd = _normalized_distance(
                vwc, crop.vwc_optimal, crop.vwc_min, crop.vwc_max
            )
            return max(w * (1.0 - nd * 0.4), w * 0.6)
        outside = crop.vwc_min - vwc if vwc < crop.vwc_min else vwc - crop.vwc_max
        return w * (1.0 - min(outside / 10.0, 1.0)) * 0.3

    def temperature_score(self, soil_temp: float, crop: CropParameters) -> float:
        """
        Soil temperature points.

        Inside the crop band: full weight at the optimum, 85 % at the edges.
        Outside: at most 40 %, decaying to 0 at 15 °C outside the band.
        """
        w = self.weights.temperature
        if crop.soil_temp_min <= soil_temp <= crop.soil_temp_max:
            nd = _normalized_distance(
                soil_temp,
                crop.soil_temp_optimal,
                crop.soil_temp_min,
                crop.soil_temp_max,
            )
            return w * (1.0 - nd * 0.15)
        if soil_temp < crop.soil_temp_min:
            outside = crop.soil_temp_min - soil_temp
        else:
            outside = soil_temp - crop.soil_temp_max
        if outside > 15.0:
            return 0.0
        return w * (1.0 - min(outside / 15.0, 1.0)) * 0.4

    def season_score(self, crop: CropParameters, season: Season) -> float:
        if crop.is_perennial or crop.season is season:
            return self.weights.season
        return 0.0

    def soil_score(self, crop: CropParameters, texture: SoilTexture) -> float:
        if texture in crop.preferred_soils:
            return self.weights.soil
        if any(
            adj in crop.preferred_soils
            for adj in SoilConstantTable.adjacent(texture)
        ):
            return self.weights.soil * 0.5
        return 0.0

    def feasibility_score(
        self,
        crop: CropParameters,
        accumulated_gdd: float,
        season: Season,
        day: dt.date,
    ) -> float:
        """
        GDD feasibility points.

        Zero out of season. Late planting (field already past the configured
        fraction of the crop's total GDD) earns 20 %. Otherwise the days left
        in the season are compared to the crop duration at the assumed GDD
        per day: below 80 % earns 0, below 110 % earns 60 %, else full.
        """
        cfg = self.context.config
        w = self.weights.gdd_feasibility
        if not crop.is_perennial and crop.season is not season:
            return 0.0
        total = crop.late_season_gdd
        if accumulated_gdd > total * cfg.late_planting_fraction:
            return w * 0.2

        remaining = days_remaining_in_season(season, day)
        duration = total / cfg.assumed_gdd_per_day
        if remaining < duration * 0.8:
            return 0.0
        if remaining < duration * 1.1:
            return w * 0.6
        return w

    # -------------------------
    # Explanation
    # -------------------------
    def explain(
        self,
        crop: CropParameters,
        raw: dict[str, float],
        conditions: FieldConditions,
        season: Season,
    ) -> str:
        """Short human-readable summary of the five criteria."""
        w = self.weights
        reasons = []

        m = raw["moisture"]
        if m >= w.moisture * 0.8:
            reasons.append("excellent soil moisture match")
        elif m >= w.moisture * 0.5:
            reasons.append("acceptable soil moisture")
        elif m > 0:
            status = "too dry" if conditions.vwc < crop.vwc_min else "too wet"
            reasons.append(
                f"soil moisture {status} (current: {conditions.vwc:.1f}%, "
                f"optimal: {crop.vwc_min:g}-{crop.vwc_max:g}%)"
            )
        else:
            reasons.append("critical soil moisture deficit")

        t = raw["temperature"]
        if t >= w.temperature * 0.8:
            reasons.append("optimal soil temperature")
        elif t >= w.temperature * 0.5:
            reasons.append("acceptable soil temperature")
        elif t > 0:
            status = (
                "too cool" if conditions.soil_temp < crop.soil_temp_min
                else "too hot"
            )
            reasons.append(
                f"soil temperature {status} "
                f"(current: {conditions.soil_temp:.1f}°C, "
                f"optimal: {crop.soil_temp_min:g}-{crop.soil_temp_max:g}°C)"
            )
        else:
            reasons.append("soil temperature unsuitable")

        if raw["season"] > 0:
            reasons.append(f"{crop.season.value.lower()} season crop")
        else:
            reasons.append(
                f"wrong season ({crop.season.value.lower()} crop in "
                f"{season.value.lower()} season)"
            )

        if raw["soil"] >= w.soil:
            reasons.append("ideal soil texture")
        elif raw["soil"] > 0:
            reasons.append("acceptable soil texture")
        else:
            prefers = "/".join(s.value for s in crop.preferred_soils)
            reasons.append(f"soil not optimal (prefers {prefers})")

        if raw["gdd_feasibility"] == 0 and not crop.is_perennial:
            reasons.append("insufficient time to complete growth cycle")

        return "; ".join(reasons)

    # -------------------------
    # Scoring and ranking
    # -------------------------
    def score(
        self,
        crop: CropParameters,
        conditions: FieldConditions,
        on: dt.date | None = None,
    ) -> CropScore:
        """Score one crop. The returned ``rank`` is 0 (unranked)."""
        day = on or dt.date.today()
        season = current_season(day)
        soil = self.context.soils.lookup(conditions.soil_texture)
        raw = {
            "moisture": self.moisture_score(conditions.vwc, crop, soil),
            "temperature": self.temperature_score(conditions.soil_temp, crop),
            "season": self.season_score(crop, season),
            "soil": self.soil_score(crop, conditions.soil_texture),
            "gdd_feasibility": self.feasibility_score(
                crop, conditions.accumulated_gdd, season, day
            ),
        }
        sub = SubScores(**{k: round(v, 1) for k, v in raw.items()})
        total = sub.total
        return CropScore(
            crop_name=crop.name,
            total_score=total,
            sub_scores=sub,
            explanation=self.explain(crop, raw, conditions, season),
            suitable=total >= self.context.config.suitability_threshold,
            season=crop.season,
        )

    def rank(
        self, conditions: FieldConditions, on: dt.date | None = None
    ) -> tuple[CropScore, ...]:
        """
        Score every enabled crop and rank them.

        Sorted by ``total_score`` descending (ties keep catalog order);
        ``rank`` runs 1..N.
        """
        scores = [self.score(c, conditions, on) for c in self.context.crops]
        scores.sort(key=lambda s: s.total_score, reverse=True)
        return tuple(
            replace(s, rank=i) for i, s in enumerate(scores, start=1)
        )

    def recommend(
        self, conditions: FieldConditions, on: dt.date | None = None
    ) -> CropRecommendation:
        """Ranked list with the top crop as the recommendation."""
        day = on or dt.date.today()
        ranked = self.rank(conditions, day)
        top = ranked[0] if ranked else None
        if top is not None:
            logger.info(
                "Recommended %s (%.1f points, suitable=%s) among %d crops",
                top.crop_name, top.total_score, top.suitable, len(ranked),
            )
        else:
            logger.warning("No enabled crops to score")
        return CropRecommendation(
            recommended_crop=top.crop_name if top else None,
            ranked_scores=ranked,
            current_season=current_season(day),
            conditions=conditions,
            date=day,
        )
