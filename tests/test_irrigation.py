# tests/test_irrigation.py
from __future__ import annotations

import datetime as dt

import numpy as np
import pytest

from agroengine.core.config import AgronomyContext, EngineConfig
from agroengine.core.crops import CropParameters, GrowthStage
from agroengine.core.data_containers import (
    Decision,
    FieldState,
    SensorSnapshot,
    StressLevel,
    Urgency,
    WeatherOutlook,
)
from agroengine.core.errors import NotFoundError, ValidationError
from agroengine.core.gdd import growth_stage
from agroengine.core.irrigation import (
    IrrigationDecisionEngine,
    adjust_for_rain,
    current_kc,
    decision_for,
    determine_urgency,
    water_balance,
)
from agroengine.core.soils import SoilConstantTable, SoilTexture
from agroengine.library.weather import ForecastOutlookProvider

SOILS = SoilConstantTable.default()
WHEAT = CropParameters.from_preset("wheat")

RAIN = WeatherOutlook(
    rain_expected=True,
    total_rain_mm=12.0,
    description="12.0mm rain expected in next 48h",
    et0_mm=4.0,
)
DRY = WeatherOutlook(
    rain_expected=False,
    total_rain_mm=0.5,
    description="No significant rain expected (0.5mm)",
    et0_mm=5.0,
)


class _FixedOutlook:
    def __init__(self, outlook):
        self._outlook = outlook
        self.calls = []

    def outlook(self, latitude, longitude, hours_ahead, threshold_mm):
        self.calls.append((latitude, longitude, hours_ahead, threshold_mm))
        return self._outlook


def _unavailable(latitude, longitude):
    raise TimeoutError("forecast service timed out")


def _field(**overrides) -> FieldState:
    kwargs = dict(
        field_id="f-001",
        soil_texture="LOAM",
        crop_name="wheat",
        sowing_date=dt.date(2025, 11, 1),
        crop_confirmed=True,
        latitude=26.85,
        longitude=80.95,
    )
    kwargs.update(overrides)
    return FieldState(**kwargs)


def _engine(weather=None, **config) -> IrrigationDecisionEngine:
    cfg = EngineConfig.from_mapping(config) if config else EngineConfig()
    return IrrigationDecisionEngine(AgronomyContext.default(cfg), weather)


def _balance(vwc, texture="LOAM", crop=WHEAT):
    return water_balance(SOILS.lookup(texture), vwc, crop.root_depth_cm, crop.mad)


# -------------------------
# Water balance
# -------------------------


def test_loam_reference_balance():
    b = water_balance(SOILS.lookup("LOAM"), 25.0, root_depth_cm=100, mad=0.5)
    assert b.taw_mm == 160.0
    assert b.raw_mm == 80.0
    assert b.current_depth_mm == 250.0
    assert b.fc_depth_mm == 310.0
    assert b.depletion_mm == 60.0
    assert b.depletion_percent == 37.5
    assert b.stress_level is StressLevel.NONE


@pytest.mark.parametrize(
    "vwc, stress",
    [
        (31.0, StressLevel.NONE),  # at field capacity
        (22.0, StressLevel.MILD),  # 56.25 % depleted
        (20.0, StressLevel.MODERATE),  # 68.75 % depleted
        (19.0, StressLevel.MODERATE),  # 75 % depleted, the 1.5x bound
        (18.0, StressLevel.SEVERE),  # 81.25 % depleted
    ],
)
def test_stress_levels(vwc, stress):
    b = water_balance(SOILS.lookup("LOAM"), vwc, root_depth_cm=100, mad=0.5)
    assert b.stress_level is stress


def test_no_depletion_above_field_capacity():
    b = _balance(40.0)
    assert b.depletion_mm == 0.0
    assert b.depletion_percent == 0.0


# -------------------------
# Kc
# -------------------------


@pytest.mark.parametrize(
    "stage, gdd, kc",
    [
        (None, 0.0, 0.3),
        (GrowthStage.INITIAL, 100.0, 0.3),
        (GrowthStage.DEVELOPMENT, 400.0, 0.725),  # halfway ini -> mid
        (GrowthStage.MID_SEASON, 1000.0, 1.15),
        (GrowthStage.LATE_SEASON, 1725.0, 0.775),  # halfway mid -> end
        (GrowthStage.HARVEST_READY, 3000.0, 0.4),  # clipped at the end
    ],
)
def test_current_kc_for_wheat(stage, gdd, kc):
    assert current_kc(WHEAT, stage, gdd) == pytest.approx(kc)


# -------------------------
# Urgency
# -------------------------


@pytest.mark.parametrize(
    "vwc, urgency, score",
    [
        (47.0, Urgency.NONE, 0.0),  # saturation
        (41.0, Urgency.NONE, 0.0),  # above crop max
        (14.0, Urgency.CRITICAL, 95.0),
        (16.0, Urgency.HIGH, 80.0),
        (18.0, Urgency.MODERATE, 60.0),
        (30.0, Urgency.NONE, 0.0),  # at optimum
        (25.0, Urgency.LOW, 25.0),
        (21.0, Urgency.LOW, 35.0),  # near the band edge, still LOW
        (39.0, Urgency.LOW, 35.0),
    ],
)
def test_urgency_ladder_for_wheat_on_loam(vwc, urgency, score):
    assert determine_urgency(vwc, _balance(vwc), WHEAT) == (urgency, score)


def test_saturation_always_means_no_urgency():
    for crop in AgronomyContext.default().crops:
        for soil in SOILS:
            b = water_balance(soil, soil.saturation, crop.root_depth_cm, crop.mad)
            assert determine_urgency(soil.saturation, b, crop)[0] is Urgency.NONE


def test_rice_saturation_overrides_crop_range():
    rice = CropParameters.from_preset("rice")
    # 47 % is inside rice's 35-60 % band but saturates loam
    assert determine_urgency(47.0, _balance(47.0, crop=rice), rice) == (
        Urgency.NONE, 0.0,
    )


@pytest.mark.parametrize(
    "base, expected",
    [
        ((Urgency.HIGH, 80.0), (Urgency.MODERATE, 55.0)),
        ((Urgency.HIGH, 75.0), (Urgency.MODERATE, 50.0)),
        ((Urgency.MODERATE, 60.0), (Urgency.LOW, 30.0)),
        ((Urgency.MODERATE, 45.0), (Urgency.LOW, 20.0)),
        ((Urgency.LOW, 35.0), (Urgency.NONE, 0.0)),
        ((Urgency.NONE, 0.0), (Urgency.NONE, 0.0)),
        ((Urgency.CRITICAL, 95.0), (Urgency.CRITICAL, 95.0)),
    ],
)
def test_rain_downgrades_exactly_one_step(base, expected):
    assert adjust_for_rain(*base) == expected


def test_decision_mapping():
    assert decision_for(Urgency.CRITICAL) is Decision.IRRIGATE_NOW
    assert decision_for(Urgency.HIGH) is Decision.IRRIGATE_NOW
    assert decision_for(Urgency.MODERATE) is Decision.IRRIGATE_SOON
    assert decision_for(Urgency.LOW) is Decision.DO_NOT_IRRIGATE
    assert decision_for(Urgency.NONE) is Decision.DO_NOT_IRRIGATE


# -------------------------
# Engine
# -------------------------


def test_critical_deficit_irrigates_now_with_clamped_depth():
    d = _engine().decide(_field(), SensorSnapshot(vwc=14.0, soil_temp=20.0))

    assert d.decision is Decision.IRRIGATE_NOW
    assert (d.urgency, d.urgency_score) == (Urgency.CRITICAL, 95.0)
    # 360 mm target - 168 mm held = 192 mm, clamped to 75
    assert d.suggested_depth_mm == 75.0
    assert d.suggested_duration_min == 900
    assert d.next_check_hours == 6
    assert (d.current_vwc, d.target_vwc, d.deficit) == (14.0, 30.0, 16.0)
    assert d.deficit_percent_of_target == 53.3
    assert d.weather_adjustment is None
    assert d.reason.startswith(
        "Critical moisture deficit detected: 6.0% below crop minimum"
    )


def test_rain_softens_high_to_moderate():
    weather = _FixedOutlook(RAIN)
    d = _engine(weather).decide(_field(), SensorSnapshot(vwc=16.0, soil_temp=20.0))

    assert d.base_urgency is Urgency.HIGH
    assert (d.urgency, d.urgency_score) == (Urgency.MODERATE, 55.0)
    assert d.decision is Decision.IRRIGATE_SOON
    assert d.next_check_hours == 12
    assert d.weather_adjustment == RAIN.description
    assert d.reason.endswith(RAIN.description)
    assert weather.calls == [(26.85, 80.95, 48, 5.0)]


def test_rain_never_softens_critical():
    d = _engine(_FixedOutlook(RAIN)).decide(
        _field(), SensorSnapshot(vwc=12.0, soil_temp=20.0)
    )
    assert d.urgency is Urgency.CRITICAL
    assert d.decision is Decision.IRRIGATE_NOW
    assert d.weather_adjustment == RAIN.description


def test_dry_forecast_records_no_adjustment():
    d = _engine(_FixedOutlook(DRY)).decide(
        _field(), SensorSnapshot(vwc=16.0, soil_temp=20.0)
    )
    assert d.urgency is Urgency.HIGH
    assert d.weather_adjustment is None


def test_weather_failure_falls_back_to_base_urgency():
    engine = _engine(ForecastOutlookProvider(_unavailable))
    d = engine.decide(_field(), SensorSnapshot(vwc=16.0, soil_temp=20.0))
    assert (d.urgency, d.urgency_score) == (Urgency.HIGH, 80.0)
    assert d.weather_adjustment is None
    assert d.etc_mm is None


def test_missing_coordinates_fall_back_to_base_urgency():
    engine = _engine(ForecastOutlookProvider(lambda lat, lon: []))
    d = engine.decide(
        _field(latitude=None, longitude=None),
        SensorSnapshot(vwc=16.0, soil_temp=20.0),
    )
    assert d.urgency is Urgency.HIGH


def test_no_irrigation_in_optimal_range():
    d = _engine().decide(_field(), SensorSnapshot(vwc=30.0, soil_temp=20.0))
    assert d.decision is Decision.DO_NOT_IRRIGATE
    assert (d.suggested_depth_mm, d.suggested_duration_min) == (0.0, 0)
    assert d.next_check_hours == 24
    assert d.reason == (
        "Soil moisture optimal for wheat. Current 30.0% within range 20-40%"
    )


def test_saturated_and_waterlogged_reasons():
    engine = _engine()
    saturated = engine.decide(_field(), SensorSnapshot(vwc=47.0, soil_temp=20.0))
    assert saturated.reason == "Soil saturated - no irrigation needed"
    wet = engine.decide(_field(), SensorSnapshot(vwc=41.0, soil_temp=20.0))
    assert wet.reason == (
        "Soil moisture exceeds optimal range - risk of waterlogging. "
        "Avoid irrigation until moisture depletes to 40%"
    )


def test_depth_is_zero_or_within_window():
    engine = _engine(_FixedOutlook(RAIN))
    for crop in engine.context.crops:
        for texture in SoilTexture:
            for vwc in np.arange(0.0, 60.0, 1.5):
                d = engine.decide(
                    _field(crop_name=crop.name, soil_texture=texture),
                    SensorSnapshot(vwc=vwc, soil_temp=22.0),
                )
                if d.decision is Decision.DO_NOT_IRRIGATE:
                    assert d.suggested_depth_mm == 0.0
                    assert d.suggested_duration_min == 0
                else:
                    assert 15.0 <= d.suggested_depth_mm <= 75.0
                    assert d.suggested_duration_min > 0


def test_configured_depth_window_and_rate():
    engine = _engine(
        max_irrigation_depth_mm=40.0, application_rate_mm_per_hour=8.0
    )
    d = engine.decide(_field(), SensorSnapshot(vwc=14.0, soil_temp=20.0))
    assert d.suggested_depth_mm == 40.0
    assert d.suggested_duration_min == 300
    assert d.application_rate_mm_per_hour == 8.0


def test_kc_and_etc_follow_field_stage():
    field = _field(accumulated_gdd=1000.0, growth_stage=GrowthStage.MID_SEASON)
    d = _engine(_FixedOutlook(DRY)).decide(
        field, SensorSnapshot(vwc=30.0, soil_temp=20.0)
    )
    assert d.current_kc == 1.15
    assert d.etc_mm == pytest.approx(5.75)
    assert d.growth_stage is GrowthStage.MID_SEASON


def test_stale_stored_stage_is_ignored():
    # 1400 GDD is LATE_SEASON for wheat whatever the stored stage says
    field = _field(accumulated_gdd=1400.0, growth_stage=GrowthStage.INITIAL)
    d = _engine(_FixedOutlook(DRY)).decide(
        field, SensorSnapshot(vwc=30.0, soil_temp=20.0)
    )
    assert d.growth_stage is growth_stage(1400.0, WHEAT)
    assert d.growth_stage is GrowthStage.LATE_SEASON
    assert d.current_kc == pytest.approx(1.1)
    assert d.etc_mm == pytest.approx(5.5)


def test_fresh_field_uses_initial_stage():
    d = _engine().decide(_field(), SensorSnapshot(vwc=30.0, soil_temp=20.0))
    assert d.growth_stage is GrowthStage.INITIAL
    assert d.current_kc == 0.3


def test_unconfirmed_crop_is_rejected():
    with pytest.raises(ValidationError):
        _engine().decide(
            _field(crop_confirmed=False), SensorSnapshot(vwc=20.0, soil_temp=20.0)
        )


def test_unknown_crop_is_not_found():
    with pytest.raises(NotFoundError):
        _engine().decide(
            _field(crop_name="quinoa"), SensorSnapshot(vwc=20.0, soil_temp=20.0)
        )


def test_recommend_many_sorts_by_urgency_and_counts_failures():
    engine = _engine()
    batch = engine.recommend_many(
        [
            (_field(field_id="calm"), SensorSnapshot(vwc=30.0, soil_temp=20.0)),
            (_field(field_id="dry"), SensorSnapshot(vwc=12.0, soil_temp=20.0)),
            (
                _field(field_id="broken", crop_confirmed=False),
                SensorSnapshot(vwc=12.0, soil_temp=20.0),
            ),
            (_field(field_id="edge"), SensorSnapshot(vwc=21.0, soil_temp=20.0)),
        ]
    )
    assert [d.field_id for d in batch.decisions] == ["dry", "edge", "calm"]
    assert batch.failed == 1
    assert set(batch.failures) == {"broken"}


def test_decision_serializes_to_plain_values():
    payload = _engine(_FixedOutlook(RAIN)).decide(
        _field(), SensorSnapshot(vwc=16.0, soil_temp=20.0)
    ).to_dict()
    assert payload["decision"] == "irrigate_soon"
    assert payload["urgency"] == "MODERATE"
    assert payload["water_balance"]["soil_texture"] == "LOAM"
    assert payload["water_balance"]["stress_level"] == "severe"


def test_sensor_snapshot_is_clamped():
    s = SensorSnapshot(vwc=120.0, soil_temp=90.0)
    assert (s.vwc, s.soil_temp) == (100.0, 70.0)
    s = SensorSnapshot(vwc=-3.0, soil_temp=-25.0)
    assert (s.vwc, s.soil_temp) == (0.0, -10.0)
