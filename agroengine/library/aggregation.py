"""
Daily air-temperature aggregation of raw sensor readings.

Readings arrive as a long table, one row per sensor message::

    field_id   timestamp             air_temp
    f-001      2025-11-02 06:15:00   14.2
    f-001      2025-11-02 12:15:00   27.9
    ...

:func:`aggregate_daily_temperatures` collapses them to one row per field and
calendar day with ``avg_temp``, ``min_temp``, ``max_temp`` (rounded to 2
decimals) and ``readings_count``. Missing temperatures are dropped before
aggregating, so a day with only missing values has no row.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Iterable

import pandas as pd

from agroengine.core.data_containers import (
    DailyTemperatureObservation,
    FieldState,
)

logger = logging.getLogger(__name__)

DAILY_COLUMNS = ["avg_temp", "min_temp", "max_temp", "readings_count"]


def aggregate_daily_temperatures(
    readings: pd.DataFrame,
    timestamp_col: str = "timestamp",
    temp_col: str = "air_temp",
    field_col: str | None = "field_id",
) -> pd.DataFrame:
    """
    Aggregate raw readings to daily temperature statistics.

    Parameters
    ----------
    readings : DataFrame
        Raw readings with a timestamp column and a temperature column.
    timestamp_col, temp_col : str
        Column names of the timestamp and the air temperature [°C].
    field_col : str or None, default="field_id"
        Column identifying the field. ``None`` treats all rows as one field.

    Returns
    -------
    DataFrame
        Indexed by ``(field_id, date)`` (or ``date`` when ``field_col`` is
        ``None``), with columns :data:`DAILY_COLUMNS`.
    """
    df = readings.copy()
    df[timestamp_col] = pd.to_datetime(df[timestamp_col])
    df = df.dropna(subset=[temp_col])
    df["date"] = df[timestamp_col].dt.date
    keys = ["date"] if field_col is None else [field_col, "date"]

    daily = (
        df.groupby(keys)[temp_col]
        .agg(avg_temp="mean", min_temp="min", max_temp="max", readings_count="count")
        .sort_index()
    )
    daily[["avg_temp", "min_temp", "max_temp"]] = daily[
        ["avg_temp", "min_temp", "max_temp"]
    ].round(2)
    daily["readings_count"] = daily["readings_count"].astype(int)
    logger.debug(
        "Aggregated %d readings into %d daily rows", len(df), len(daily)
    )
    return daily


def observations_from_frame(
    daily: pd.DataFrame,
) -> list[DailyTemperatureObservation]:
    """Rows of a single-field daily table as observations, oldest first."""
    return [
        DailyTemperatureObservation(
            date=pd.Timestamp(day).date(),
            min_temp=float(row.min_temp),
            max_temp=float(row.max_temp),
            avg_temp=float(row.avg_temp),
            readings_count=int(row.readings_count),
        )
        for day, row in daily.sort_index().iterrows()
    ]


class FrameTemperatureSource:
    """
    Temperature source backed by a daily table per field.

    Parameters
    ----------
    daily : DataFrame
        Output of :func:`aggregate_daily_temperatures` indexed by
        ``(field_id, date)``.
    """

    def __init__(self, daily: pd.DataFrame) -> None:
        missing = [c for c in DAILY_COLUMNS if c not in daily.columns]
        if missing:
            raise ValueError(f"Daily table is missing columns: {missing}")
        self._daily = daily

    @classmethod
    def from_readings(cls, readings: pd.DataFrame, **kwargs):
        return cls(aggregate_daily_temperatures(readings, **kwargs))

    @classmethod
    def from_observations(
        cls, field_id: str, observations: Iterable[DailyTemperatureObservation]
    ) -> "FrameTemperatureSource":
        rows = [
            {"field_id": field_id, "date": o.date}
            | {c: getattr(o, c) for c in DAILY_COLUMNS}
            for o in observations
        ]
        frame = pd.DataFrame(rows, columns=["field_id", "date", *DAILY_COLUMNS])
        return cls(frame.set_index(["field_id", "date"]).sort_index())

    def observation(
        self, field: FieldState, day: dt.date
    ) -> DailyTemperatureObservation | None:
        key = (field.field_id, day)
        if key not in self._daily.index:
            return None
        row = self._daily.loc[key]
        return DailyTemperatureObservation(
            date=day,
            min_temp=float(row["min_temp"]),
            max_temp=float(row["max_temp"]),
            avg_temp=float(row["avg_temp"]),
            readings_count=int(row["readings_count"]),
        )

    def __len__(self) -> int:
        return len(self._daily)
