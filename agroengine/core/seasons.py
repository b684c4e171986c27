"""Calendar helpers for the Indian cropping seasons."""

from __future__ import annotations

import datetime as dt

from agroengine.core.crops import Season

# Months are 1-based. RABI wraps the year end (Nov-Feb).
KHARIF_MONTHS = range(6, 11)
ZAID_MONTHS = range(3, 6)


def current_season(day: dt.date) -> Season:
    """
    Season a calendar day falls in.

    Jun-Oct is KHARIF, Mar-May is ZAID, everything else (Nov-Feb) is RABI.
    """
    if day.month in KHARIF_MONTHS:
        return Season.KHARIF
    if day.month in ZAID_MONTHS:
        return Season.ZAID
    return Season.RABI


def days_remaining_in_season(season: Season, day: dt.date) -> int:
    """
    Approximate days left in ``season`` as of ``day``.

    The estimate counts whole 30-day months from the start of the season
    (RABI 120 days from November, KHARIF 150 days from June, ZAID 90 days
    from March) and subtracts the months already elapsed. PERENNIAL crops
    always get a full year. The result can be negative when ``day`` lies
    outside ``season``.
    """
    m = day.month
    if season is Season.PERENNIAL:
        return 365
    if season is Season.RABI:
        # Nov/Dec count from November, Jan/Feb from January
        if m >= 11:
            return 120 - (m - 11) * 30
        return 90 - (m - 1) * 30
    if season is Season.KHARIF:
        return 150 - (m - 6) * 30
    return 90 - (m - 3) * 30
