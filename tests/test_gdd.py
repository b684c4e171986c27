# tests/test_gdd.py
from __future__ import annotations

import datetime as dt
import logging

import numpy as np
import numpy.testing as npt
import pytest

from agroengine.core.config import AgronomyContext
from agroengine.core.crops import CropParameters, GrowthStage
from agroengine.core.data_containers import (
    DailyTemperatureObservation,
    FieldState,
)
from agroengine.core.errors import NotFoundError, PersistenceError, ValidationError
from agroengine.core.gdd import (
    GDDTracker,
    InMemoryGDDRecordStore,
    cumulative_series,
    daily_gdd,
    growth_stage,
)
from agroengine.library.aggregation import FrameTemperatureSource

SOWING = dt.date(2025, 11, 1)
NOW = dt.datetime(2025, 11, 20, 8, 0)
# wheat has base 0 °C: min 10 / max 24 gives 17 GDD per day
DAILY_WHEAT_GDD = 17.0


def _field(**overrides) -> FieldState:
    kwargs = dict(
        field_id="f-001",
        soil_texture="LOAM",
        crop_name="wheat",
        sowing_date=SOWING,
        crop_confirmed=True,
    )
    kwargs.update(overrides)
    return FieldState(**kwargs)


def _observations(start: dt.date, n_days: int, skip=()):
    return [
        DailyTemperatureObservation(
            date=start + dt.timedelta(days=i),
            min_temp=10.0,
            max_temp=24.0,
            avg_temp=17.0,
            readings_count=96,
        )
        for i in range(n_days)
        if start + dt.timedelta(days=i) not in skip
    ]


def _tracker(observations, records=None) -> GDDTracker:
    return GDDTracker(
        AgronomyContext.default(),
        records if records is not None else InMemoryGDDRecordStore(),
        FrameTemperatureSource.from_observations("f-001", observations),
        clock=lambda: NOW,
    )


class _FlakySource:
    """Temperature source that fails on one date."""

    def __init__(self, inner, bad_day):
        self.inner = inner
        self.bad_day = bad_day

    def observation(self, field, day):
        if day == self.bad_day:
            raise OSError("sensor database unavailable")
        return self.inner.observation(field, day)


# -------------------------
# daily_gdd / growth_stage
# -------------------------


def test_daily_gdd_reference_example():
    # min raised to base (10), max capped at ceiling (30)
    assert daily_gdd(5.0, 32.0, base_temp=10.0, upper_ceiling=30.0) == 10.0


def test_daily_gdd_is_zero_at_base():
    assert daily_gdd(10.0, 10.0, base_temp=10.0) == 0.0


def test_daily_gdd_never_negative_over_grid():
    tmin, tmax = np.meshgrid(np.arange(-20, 45, 2.5), np.arange(-20, 50, 2.5))
    for base in (0.0, 4.0, 10.0, 12.0):
        gdd = daily_gdd(tmin, tmax, base_temp=base)
        assert gdd.shape == tmin.shape
        assert np.all(gdd >= 0.0)


def test_daily_gdd_ignores_heat_above_ceiling():
    npt.assert_allclose(
        daily_gdd([15.0, 15.0], [30.0, 42.0], base_temp=10.0), [12.5, 12.5]
    )


def test_cumulative_series_is_non_decreasing():
    rng = np.random.default_rng(7)
    tmin = rng.uniform(-5, 25, size=120)
    tmax = tmin + rng.uniform(0, 15, size=120)
    cum = cumulative_series(tmin, tmax, base_temp=10.0)
    assert cum.shape == (120,)
    assert np.all(np.diff(cum) >= 0.0)
    npt.assert_allclose(cum[-1], daily_gdd(tmin, tmax, 10.0).sum())


@pytest.mark.parametrize(
    "cumulative, stage",
    [
        (0.0, GrowthStage.INITIAL),
        (149.9, GrowthStage.INITIAL),
        (150.0, GrowthStage.DEVELOPMENT),
        (649.0, GrowthStage.DEVELOPMENT),
        (650.0, GrowthStage.MID_SEASON),
        (1400.0, GrowthStage.LATE_SEASON),
        (2100.0, GrowthStage.HARVEST_READY),
        (5000.0, GrowthStage.HARVEST_READY),
    ],
)
def test_growth_stage_thresholds_for_wheat(cumulative, stage):
    assert growth_stage(cumulative, CropParameters.from_preset("wheat")) is stage


def test_growth_stage_never_regresses_as_gdd_grows():
    for crop in AgronomyContext.default().crops:
        orders = [
            growth_stage(g, crop).order
            for g in np.linspace(0, crop.late_season_gdd * 1.2, 400)
        ]
        assert orders == sorted(orders)
        assert orders[0] == 0 and orders[-1] == 4


# -------------------------
# GDDTracker
# -------------------------


def test_daily_record_is_created_and_field_updated():
    tracker = _tracker(_observations(SOWING, 5))
    calc = tracker.calculate_daily_record(_field(), SOWING)

    assert calc.created
    rec = calc.record
    assert rec.daily_gdd == DAILY_WHEAT_GDD
    assert rec.cumulative_gdd == DAILY_WHEAT_GDD
    assert rec.growth_stage is GrowthStage.INITIAL
    assert rec.readings_count == 96
    assert rec.base_temp == 0.0
    assert calc.field.accumulated_gdd == DAILY_WHEAT_GDD
    assert calc.field.growth_stage is GrowthStage.INITIAL
    assert calc.field.last_updated == NOW
    assert calc.patch.changes()["accumulated_gdd"] == DAILY_WHEAT_GDD


def test_existing_record_is_returned_unchanged():
    tracker = _tracker(_observations(SOWING, 5))
    field = _field()
    first = tracker.calculate_daily_record(field, SOWING)
    again = tracker.calculate_daily_record(first.field, SOWING)
    assert not again.created
    assert again.record == first.record
    assert len(tracker.records) == 1


def test_day_before_sowing_or_without_data_is_not_applicable():
    tracker = _tracker(_observations(SOWING, 2))
    field = _field()
    assert tracker.calculate_daily_record(field, SOWING - dt.timedelta(days=1)) is None
    assert tracker.calculate_daily_record(field, SOWING + dt.timedelta(days=5)) is None
    assert len(tracker.records) == 0


@pytest.mark.parametrize(
    "overrides",
    [{"crop_confirmed": False}, {"sowing_date": None}, {"crop_name": None}],
)
def test_unconfigured_field_is_rejected(overrides):
    tracker = _tracker(_observations(SOWING, 2))
    with pytest.raises(ValidationError):
        tracker.calculate_daily_record(_field(**overrides), SOWING)


def test_unknown_crop_is_not_found():
    tracker = _tracker(_observations(SOWING, 2))
    with pytest.raises(NotFoundError):
        tracker.calculate_daily_record(_field(crop_name="quinoa"), SOWING)


def test_base_temperature_override():
    tracker = _tracker(_observations(SOWING, 1))
    calc = tracker.calculate_daily_record(_field(base_temp_override=10.0), SOWING)
    # (24 + 10) / 2 - 10
    assert calc.record.daily_gdd == 7.0
    assert calc.record.base_temp == 10.0


def test_cumulative_builds_on_previous_day():
    tracker = _tracker(_observations(SOWING, 3))
    field = _field()
    for i in range(3):
        calc = tracker.calculate_daily_record(field, SOWING + dt.timedelta(days=i))
        field = calc.field
    assert [r.cumulative_gdd for r in tracker.records.records("f-001")] == [
        17.0, 34.0, 51.0,
    ]
    assert field.accumulated_gdd == 51.0


def test_back_filled_day_leaves_field_state_alone():
    tracker = _tracker(_observations(SOWING, 2))
    field = _field()
    later = tracker.calculate_daily_record(field, SOWING + dt.timedelta(days=1))
    earlier = tracker.calculate_daily_record(later.field, SOWING)
    assert earlier.created
    assert earlier.patch.is_empty()
    assert earlier.field == later.field


def test_back_filled_day_warns_about_stale_later_records(caplog):
    tracker = _tracker(_observations(SOWING, 3))
    field = _field()
    for offset in (0, 2):
        field = tracker.calculate_daily_record(
            field, SOWING + dt.timedelta(days=offset)
        ).field
    assert not [r for r in caplog.records if r.levelno == logging.WARNING]

    with caplog.at_level(logging.WARNING, logger="agroengine.core.gdd"):
        tracker.calculate_daily_record(field, SOWING + dt.timedelta(days=1))
    (warning,) = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert "recalculate_range" in warning.getMessage()

    # the later record keeps its old cumulative until recalculated
    cumulative = [r.cumulative_gdd for r in tracker.records.records("f-001")]
    assert cumulative == [17.0, 34.0, 34.0]
    tracker.recalculate_range(
        field, SOWING + dt.timedelta(days=2), SOWING + dt.timedelta(days=2)
    )
    cumulative = [r.cumulative_gdd for r in tracker.records.records("f-001")]
    assert cumulative == [17.0, 34.0, 51.0]


def test_record_store_rejects_overwrites():
    tracker = _tracker(_observations(SOWING, 1))
    calc = tracker.calculate_daily_record(_field(), SOWING)
    with pytest.raises(PersistenceError):
        tracker.records.add(calc.record)


def test_fill_gaps_twice_creates_nothing_the_second_time():
    tracker = _tracker(_observations(SOWING, 10))
    today = SOWING + dt.timedelta(days=10)

    first = tracker.fill_gaps(_field(), today=today)
    assert first.calculated == 10
    assert first.failed == 0
    assert first.field.accumulated_gdd == pytest.approx(170.0)

    second = tracker.fill_gaps(first.field, today=today)
    assert second.calculated == 0
    assert len(tracker.records) == 10


def test_fill_gaps_skips_days_without_data_and_stays_idempotent():
    missing = SOWING + dt.timedelta(days=4)
    tracker = _tracker(_observations(SOWING, 10, skip={missing}))
    today = SOWING + dt.timedelta(days=10)

    first = tracker.fill_gaps(_field(), today=today)
    assert (first.calculated, first.skipped) == (9, 1)
    assert tracker.records.get("f-001", missing) is None

    second = tracker.fill_gaps(first.field, today=today)
    assert (second.calculated, second.skipped) == (0, 1)


def test_fill_gaps_cumulative_is_non_decreasing():
    tracker = _tracker(_observations(SOWING, 30))
    tracker.fill_gaps(_field(), today=SOWING + dt.timedelta(days=30))
    cum = np.array([r.cumulative_gdd for r in tracker.records.records("f-001")])
    assert np.all(np.diff(cum) >= 0.0)


def test_fill_gaps_on_unconfigured_field_is_empty():
    tracker = _tracker(_observations(SOWING, 5))
    outcome = tracker.fill_gaps(_field(crop_confirmed=False), today=NOW.date())
    assert (outcome.calculated, outcome.skipped, outcome.failed) == (0, 0, 0)


def test_fill_gaps_counts_failures_and_continues():
    bad = SOWING + dt.timedelta(days=2)
    inner = FrameTemperatureSource.from_observations(
        "f-001", _observations(SOWING, 5)
    )
    tracker = GDDTracker(
        AgronomyContext.default(),
        InMemoryGDDRecordStore(),
        _FlakySource(inner, bad),
        clock=lambda: NOW,
    )
    outcome = tracker.fill_gaps(_field(), today=SOWING + dt.timedelta(days=5))
    assert (outcome.calculated, outcome.failed) == (4, 1)


def test_recalculate_range_rebuilds_records():
    tracker = _tracker(_observations(SOWING, 10))
    filled = tracker.fill_gaps(_field(), today=SOWING + dt.timedelta(days=10))

    start = SOWING + dt.timedelta(days=2)
    end = SOWING + dt.timedelta(days=4)
    outcome = tracker.recalculate_range(filled.field, start, end)

    assert outcome.deleted == 3
    assert outcome.calculated == 3
    assert tracker.records.get("f-001", end).cumulative_gdd == 85.0
    assert len(tracker.records) == 10


def test_recalculate_range_skips_days_without_data():
    missing = SOWING + dt.timedelta(days=1)
    tracker = _tracker(_observations(SOWING, 3, skip={missing}))
    outcome = tracker.recalculate_range(
        _field(), SOWING, SOWING + dt.timedelta(days=2)
    )
    assert (outcome.calculated, outcome.skipped, outcome.failed) == (2, 1, 0)


def test_recalculate_range_rejects_inverted_range():
    tracker = _tracker(_observations(SOWING, 3))
    with pytest.raises(ValidationError):
        tracker.recalculate_range(
            _field(), SOWING + dt.timedelta(days=2), SOWING
        )


def test_status_estimates_days_to_harvest():
    tracker = _tracker([])
    field = _field(accumulated_gdd=1050.0)
    status = tracker.status(field, today=SOWING + dt.timedelta(days=40))

    assert status.expected_total_gdd == 2100.0
    assert status.progress_percent == 50.0
    assert status.growth_stage is GrowthStage.MID_SEASON
    assert status.days_from_sowing == 40
    # 1050 GDD in 40 days -> 26.25 GDD/day -> 40 more days
    assert status.estimated_days_to_harvest == 40


def test_status_after_harvest_threshold():
    tracker = _tracker([])
    status = tracker.status(_field(accumulated_gdd=2300.0), today=NOW.date())
    assert status.progress_percent == 100.0
    assert status.estimated_days_to_harvest == 0
    assert status.growth_stage is GrowthStage.HARVEST_READY


def test_status_without_accumulation_has_no_estimate():
    tracker = _tracker([])
    status = tracker.status(_field(), today=SOWING)
    assert status.estimated_days_to_harvest is None
    assert status.to_dict()["growth_stage"] == "INITIAL"
