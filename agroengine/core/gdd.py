"""
Growing degree days and growth-stage tracking.

Functions
---------
daily_gdd
    Method 2 daily GDD; scalar or array inputs.
cumulative_series
    Cumulative GDD of a whole temperature series.
growth_stage
    Stage of a crop from its cumulative GDD.

Classes
-------
GDDRecordStore, TemperatureSource
    Collaborator interfaces (storage of GDD records, daily temperatures).
InMemoryGDDRecordStore
    Dict-backed :class:`GDDRecordStore`.
GDDTracker
    Daily record calculation, range recalculation, gap filling and progress
    status for one field at a time.

Notes
-----
Cumulative GDD on day N is the cumulative value of the latest record
strictly before N plus the daily GDD of N, so records of one field must be
computed in ascending date order. Records are immutable once stored;
:meth:`GDDTracker.recalculate_range` deletes before recomputing.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
from typing import Callable, Iterator, Protocol

import numpy as np

from agroengine.core.config import AgronomyContext
from agroengine.core.crops import CropParameters, GrowthStage
from agroengine.core.data_containers import (
    BatchOutcome,
    DailyCalculation,
    DailyTemperatureObservation,
    FieldPatch,
    FieldState,
    GDDResult,
    GDDStatus,
)
from agroengine.core.errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

Array = np.ndarray

_STAGES = tuple(GrowthStage)


# -------------------------
# Pure functions
# -------------------------


def daily_gdd(
    min_temp: Array | float,
    max_temp: Array | float,
    base_temp: float,
    upper_ceiling: float = 30.0,
) -> Array | float:
    """
    Daily growing degree days, Method 2.

    The minimum is raised to ``base_temp``; the maximum is raised to
    ``base_temp`` and capped at ``upper_ceiling``. Never negative.

    Parameters
    ----------
    min_temp, max_temp : float or array-like
        Daily air temperature extremes [°C]. Broadcast together.
    base_temp : float
        Crop base temperature [°C].
    upper_ceiling : float, default=30.0
        Temperature above which heat does not accelerate growth [°C].

    Returns
    -------
    float or ndarray
        GDD [°C·day]; a float for scalar inputs.

    Examples
    --------
    >>> daily_gdd(5.0, 32.0, base_temp=10.0)
    10.0
    """
    tmin = np.maximum(np.asarray(min_temp, dtype=float), base_temp)
    tmax = np.minimum(
        np.maximum(np.asarray(max_temp, dtype=float), base_temp),
        upper_ceiling,
    )
    gdd = np.maximum(0.0, (tmax + tmin) / 2.0 - base_temp)
    if gdd.ndim == 0:
        return float(gdd)
    return gdd


def cumulative_series(
    min_temps: Array,
    max_temps: Array,
    base_temp: float,
    upper_ceiling: float = 30.0,
) -> Array:
    """Running sum of :func:`daily_gdd` over a chronological series."""
    daily = daily_gdd(
        np.atleast_1d(min_temps), np.atleast_1d(max_temps), base_temp,
        upper_ceiling,
    )
    return np.cumsum(daily)


def stage_index(cumulative_gdd: Array | float, thresholds: Array) -> Array:
    """Index into :class:`GrowthStage` order for each cumulative GDD value."""
    return np.searchsorted(
        np.asarray(thresholds, dtype=float),
        np.asarray(cumulative_gdd, dtype=float),
        side="right",
    )


def growth_stage(cumulative_gdd: float, crop: CropParameters) -> GrowthStage:
    """
    Growth stage reached with ``cumulative_gdd``.

    A stage starts when its threshold is reached: exactly
    ``initial_stage_gdd`` is already ``DEVELOPMENT`` and
    ``late_season_gdd`` or more is ``HARVEST_READY``.
    """
    return _STAGES[int(stage_index(cumulative_gdd, crop.stage_thresholds))]


# -------------------------
# Collaborators
# -------------------------


class GDDRecordStore(Protocol):
    """Storage of immutable GDD records keyed by (field, date)."""

    def get(self, field_id: str, day: dt.date) -> GDDResult | None: ...

    def latest_before(
        self, field_id: str, day: dt.date
    ) -> GDDResult | None: ...

    def latest(self, field_id: str) -> GDDResult | None: ...

    def dates_between(
        self, field_id: str, start: dt.date, end: dt.date
    ) -> set[dt.date]: ...

    def add(self, record: GDDResult) -> None: ...

    def delete_range(
        self, field_id: str, start: dt.date, end: dt.date
    ) -> int: ...

    def records(self, field_id: str) -> list[GDDResult]: ...


class TemperatureSource(Protocol):
    """Daily aggregated air temperature per field."""

    def observation(
        self, field: FieldState, day: dt.date
    ) -> DailyTemperatureObservation | None: ...


class InMemoryGDDRecordStore:
    """:class:`GDDRecordStore` backed by nested dicts."""

    def __init__(self, records: list[GDDResult] | None = None) -> None:
        self._records: dict[str, dict[dt.date, GDDResult]] = {}
        for r in records or ():
            self.add(r)

    def get(self, field_id, day):
        return self._records.get(field_id, {}).get(day)

    def latest_before(self, field_id, day):
        by_date = self._records.get(field_id, {})
        earlier = [d for d in by_date if d < day]
        return by_date[max(earlier)] if earlier else None

    def latest(self, field_id):
        by_date = self._records.get(field_id, {})
        return by_date[max(by_date)] if by_date else None

    def dates_between(self, field_id, start, end):
        return {
            d for d in self._records.get(field_id, {}) if start <= d <= end
        }

    def add(self, record: GDDResult) -> None:
        by_date = self._records.setdefault(record.field_id, {})
        if record.date in by_date:
            raise PersistenceError(
                "add_gdd_record",
                ValueError(
                    f"record for {record.field_id} on {record.date} "
                    "already exists"
                ),
            )
        by_date[record.date] = record

    def delete_range(self, field_id, start, end):
        by_date = self._records.get(field_id, {})
        doomed = [d for d in by_date if start <= d <= end]
        for d in doomed:
            del by_date[d]
        return len(doomed)

    def records(self, field_id):
        by_date = self._records.get(field_id, {})
        return [by_date[d] for d in sorted(by_date)]

    def __len__(self) -> int:
        return sum(len(v) for v in self._records.values())


def _days(start: dt.date, end: dt.date) -> Iterator[dt.date]:
    """Inclusive ascending date range."""
    for i in range((end - start).days + 1):
        yield start + dt.timedelta(days=i)


# -------------------------
# Tracker
# -------------------------


class GDDTracker:
    """
    Computes and stores daily GDD records for fields with a confirmed crop.

    Parameters
    ----------
    context : AgronomyContext
        Crop store and configuration (GDD upper ceiling).
    records : GDDRecordStore
        Where records are read from and written to.
    temperatures : TemperatureSource
        Daily aggregated air temperatures.
    clock : callable, optional
        Returns the current datetime. Defaults to :meth:`datetime.now`.

    Notes
    -----
    The tracker does not persist field state. Each daily step returns the
    updated :class:`FieldState` and the :class:`FieldPatch` that produced
    it; the caller stores whichever it prefers.
    """

    def __init__(
        self,
        context: AgronomyContext,
        records: GDDRecordStore,
        temperatures: TemperatureSource,
        clock: Callable[[], dt.datetime] = dt.datetime.now,
    ) -> None:
        self.context = context
        self.records = records
        self.temperatures = temperatures
        self.clock = clock

    def _require_crop(self, field: FieldState) -> CropParameters:
        if not field.is_tracking:
            raise ValidationError(
                f"Field {field.field_id} has no confirmed crop or sowing date",
                {
                    "field_id": field.field_id,
                    "crop_name": field.crop_name,
                    "sowing_date": field.sowing_date,
                },
            )
        return self.context.crops.lookup(field.crop_name)

    @staticmethod
    def base_temp(field: FieldState, crop: CropParameters) -> float:
        """Field override if set, else the crop base temperature."""
        if field.base_temp_override is not None:
            return float(field.base_temp_override)
        return crop.base_temp

    def calculate_daily_record(
        self, field: FieldState, day: dt.date
    ) -> DailyCalculation | None:
        """
        Compute and store the GDD record of ``field`` for ``day``.

        Returns
        -------
        DailyCalculation or None
            ``None`` when ``day`` precedes sowing or no temperature
            observation exists for it. When a record already exists it is
            returned unchanged with ``created=False``.

        Raises
        ------
        ValidationError
            If the field has no confirmed crop or sowing date.
        NotFoundError
            If the field's crop is not in the crop store.
        """
        crop = self._require_crop(field)
        if day < field.sowing_date:
            logger.debug(
                "Field %s: %s precedes sowing (%s)",
                field.field_id, day, field.sowing_date,
            )
            return None

        existing = self.records.get(field.field_id, day)
        if existing is not None:
            return DailyCalculation(existing, field, created=False)

        obs = self.temperatures.observation(field, day)
        if obs is None:
            logger.warning(
                "Field %s: no temperature data on %s", field.field_id, day
            )
            return None

        base = self.base_temp(field, crop)
        gdd = round(
            daily_gdd(
                obs.min_temp, obs.max_temp, base,
                self.context.config.gdd_upper_ceiling,
            ),
            2,
        )
        previous = self.records.latest_before(field.field_id, day)
        cumulative = round(
            (previous.cumulative_gdd if previous else 0.0) + gdd, 2
        )
        stage = growth_stage(cumulative, crop)

        record = GDDResult(
            field_id=field.field_id,
            date=day,
            daily_gdd=gdd,
            cumulative_gdd=cumulative,
            avg_air_temp=round(obs.avg_temp, 2),
            min_air_temp=round(obs.min_temp, 2),
            max_air_temp=round(obs.max_temp, 2),
            growth_stage=stage,
            readings_count=obs.readings_count,
            crop_name=crop.name,
            base_temp=base,
        )
        self.records.add(record)

        # Field state follows the newest record only; back-filled days
        # leave it untouched.
        latest = self.records.latest(field.field_id)
        if latest is not None and latest.date == day:
            patch = FieldPatch(
                accumulated_gdd=cumulative,
                growth_stage=stage,
                last_updated=self.clock(),
            )
        else:
            patch = FieldPatch()
            logger.warning(
                "Field %s: back-filled %s before newer records up to %s; "
                "their cumulative GDD is stale until recalculate_range "
                "covers [%s, %s]",
                field.field_id, day, latest.date, day, latest.date,
            )

        logger.info(
            "Field %s: GDD %.2f on %s (cumulative %.2f, %s)",
            field.field_id, gdd, day, cumulative, stage.value,
        )
        return DailyCalculation(record, patch.apply(field), True, patch)

    def recalculate_range(
        self, field: FieldState, start: dt.date, end: dt.date
    ) -> BatchOutcome:
        """
        Delete the records of ``[start, end]`` and recompute them in order.

        Days without temperature data (or before sowing) are skipped.
        Per-day failures are logged and counted; they do not stop the range.

        Raises
        ------
        ValidationError
            If ``end`` precedes ``start`` or the field is not tracking.
        """
        self._require_crop(field)
        if end < start:
            raise ValidationError(
                f"Invalid range: {start} to {end}",
                {"start": start, "end": end},
            )
        deleted = self.records.delete_range(field.field_id, start, end)
        logger.info(
            "Field %s: deleted %d records in [%s, %s]",
            field.field_id, deleted, start, end,
        )
        return self._run(field, _days(start, end), deleted=deleted)

    def fill_gaps(
        self, field: FieldState, today: dt.date | None = None
    ) -> BatchOutcome:
        """
        Compute every missing record between sowing and yesterday.

        A field that is not tracking yields an empty outcome. Running it
        twice in a row creates no records the second time.
        """
        if not field.is_tracking:
            logger.debug("Field %s: not tracking, no gaps to fill", field.field_id)
            return BatchOutcome(field)
        today = today or self.clock().date()
        yesterday = today - dt.timedelta(days=1)
        if yesterday < field.sowing_date:
            return BatchOutcome(field)

        existing = self.records.dates_between(
            field.field_id, field.sowing_date, yesterday
        )
        missing = [
            d for d in _days(field.sowing_date, yesterday) if d not in existing
        ]
        if not missing:
            logger.debug("Field %s: no gaps", field.field_id)
            return BatchOutcome(field)
        return self._run(field, missing)

    def _run(self, field, days, deleted=0) -> BatchOutcome:
        calculated = skipped = failed = 0
        for day in days:
            try:
                result = self.calculate_daily_record(field, day)
            except Exception:
                failed += 1
                logger.warning(
                    "Field %s: GDD calculation failed for %s",
                    field.field_id, day, exc_info=True,
                )
                continue
            if result is None or not result.created:
                skipped += 1
                continue
            calculated += 1
            field = result.field

        logger.info(
            "Field %s: batch done (calculated=%d, skipped=%d, failed=%d)",
            field.field_id, calculated, skipped, failed,
        )
        return BatchOutcome(field, calculated, skipped, failed, deleted)

    def status(
        self, field: FieldState, today: dt.date | None = None
    ) -> GDDStatus:
        """
        Progress of ``field`` towards harvest.

        The estimate of days to harvest extrapolates the mean daily GDD since
        sowing; it is ``None`` before any GDD accumulates and 0 once
        progress reaches 100 %.
        """
        crop = self._require_crop(field)
        today = today or self.clock().date()
        accumulated = field.accumulated_gdd
        total = crop.late_season_gdd
        progress = accumulated / total * 100.0
        days = max((today - field.sowing_date).days, 0)

        if progress >= 100.0:
            remaining_days: int | None = 0
        elif accumulated > 0.0 and days > 0:
            remaining_days = math.ceil((total - accumulated) / (accumulated / days))
        else:
            remaining_days = None

        return GDDStatus(
            field_id=field.field_id,
            crop_name=crop.name,
            sowing_date=field.sowing_date,
            accumulated_gdd=round(accumulated, 2),
            expected_total_gdd=total,
            progress_percent=round(min(progress, 100.0), 1),
            growth_stage=growth_stage(accumulated, crop),
            days_from_sowing=days,
            estimated_days_to_harvest=remaining_days,
        )
