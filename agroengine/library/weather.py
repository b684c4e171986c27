"""
Daily weather forecast, rain outlook and a simplified ET0 estimate.

The forecast transport (HTTP client, cache) belongs to the caller. This
module turns sub-daily forecast entries into :class:`ForecastDay` rows,
summarizes rain over a look-ahead window and adapts a fetch function into
the outlook provider used by
:class:`agroengine.core.irrigation.IrrigationDecisionEngine`.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Callable, Sequence

import pandas as pd

from agroengine.core.data_containers import WeatherOutlook, _DictMixin
from agroengine.core.errors import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

FORECAST_DAYS = 5
DEFAULT_ET0_MM = 4.0
MIN_ET0_MM = 1.0


@dataclass(frozen=True, slots=True)
class ForecastDay(_DictMixin):
    """One forecast day; temperatures in °C, precipitation in mm."""

    date: dt.date
    temp_max: float
    temp_min: float
    temp_avg: float
    humidity: float
    precipitation: float
    description: str = "Clear"


def daily_forecast(
    entries: pd.DataFrame, days: int = FORECAST_DAYS
) -> list[ForecastDay]:
    """
    Collapse sub-daily forecast entries into daily rows.

    Parameters
    ----------
    entries : DataFrame
        Columns ``timestamp``, ``temp``, ``humidity``, ``rain_mm`` (rain of
        the entry's interval, may be missing) and optionally ``description``.
    days : int, default=5
        Maximum number of days returned, earliest first.

    Returns
    -------
    list of ForecastDay
        Max/min/mean temperature and precipitation rounded to 1 decimal,
        mean humidity rounded to an integer, first description of the day.
    """
    df = entries.copy()
    df["date"] = pd.to_datetime(df["timestamp"]).dt.date
    df["rain_mm"] = df.get("rain_mm", pd.Series(0.0, index=df.index)).fillna(0.0)
    if "description" not in df:
        df["description"] = "Clear"

    grouped = df.groupby("date").agg(
        temp_max=("temp", "max"),
        temp_min=("temp", "min"),
        temp_avg=("temp", "mean"),
        humidity=("humidity", "mean"),
        precipitation=("rain_mm", "sum"),
        description=("description", "first"),
    ).sort_index().head(days)

    return [
        ForecastDay(
            date=day,
            temp_max=round(float(row.temp_max), 1),
            temp_min=round(float(row.temp_min), 1),
            temp_avg=round(float(row.temp_avg), 1),
            humidity=float(round(row.humidity)),
            precipitation=round(float(row.precipitation), 1),
            description=str(row.description),
        )
        for day, row in grouped.iterrows()
    ]


def estimate_daily_et0(day: ForecastDay) -> float:
    """
    Simplified Hargreaves reference evapotranspiration [mm/day].

    ``0.0135 * (T_avg + 17.8) * max(T_max - T_min, 1)``, at least 1 mm.
    """
    spread = max(day.temp_max - day.temp_min, 1.0)
    et0 = 0.0135 * (day.temp_avg + 17.8) * spread
    return round(max(et0, MIN_ET0_MM), 2)


def summarize_rain(
    forecast: Sequence[ForecastDay],
    now: dt.datetime,
    hours_ahead: int = 48,
    threshold_mm: float = 5.0,
) -> WeatherOutlook:
    """
    Rain outlook over the next ``hours_ahead`` hours.

    Whole forecast days up to the date of ``now + hours_ahead`` are summed.
    Rain is expected when the total reaches ``threshold_mm``. The ET0 of
    the first forecast day (or 4 mm/day without a forecast) is attached.
    """
    cutoff = (now + dt.timedelta(hours=hours_ahead)).date()
    total = round(sum(d.precipitation for d in forecast if d.date <= cutoff), 1)
    expected = total >= threshold_mm
    if expected:
        description = f"{total:.1f}mm rain expected in next {hours_ahead}h"
    else:
        description = f"No significant rain expected ({total:.1f}mm)"
    et0 = estimate_daily_et0(forecast[0]) if forecast else DEFAULT_ET0_MM
    return WeatherOutlook(
        rain_expected=expected,
        total_rain_mm=total,
        description=description,
        hours_ahead=hours_ahead,
        et0_mm=et0,
    )


class ForecastOutlookProvider:
    """
    Outlook provider over a forecast fetch function.

    Parameters
    ----------
    fetch : callable
        ``fetch(latitude, longitude) -> sequence of ForecastDay``.
    clock : callable, optional
        Returns the current datetime.
    service : str, default="weather"
        Service name reported in :class:`ExternalServiceError`.
    """

    def __init__(
        self,
        fetch: Callable[[float, float], Sequence[ForecastDay]],
        clock: Callable[[], dt.datetime] = dt.datetime.now,
        service: str = "weather",
    ) -> None:
        self.fetch = fetch
        self.clock = clock
        self.service = service

    def outlook(
        self,
        latitude: float | None,
        longitude: float | None,
        hours_ahead: int = 48,
        threshold_mm: float = 5.0,
    ) -> WeatherOutlook:
        """
        Raises
        ------
        ValidationError
            If the coordinates are missing.
        ExternalServiceError
            If the fetch function fails.
        """
        if latitude is None or longitude is None:
            raise ValidationError(
                "Coordinates are required for a weather outlook",
                {"latitude": latitude, "longitude": longitude},
            )
        try:
            forecast = list(self.fetch(latitude, longitude))
        except Exception as e:
            raise ExternalServiceError(self.service, e) from e
        logger.debug(
            "Forecast for (%.4f, %.4f): %d days", latitude, longitude,
            len(forecast),
        )
        return summarize_rain(forecast, self.clock(), hours_ahead, threshold_mm)
