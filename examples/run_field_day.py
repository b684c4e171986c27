from pathlib import Path
from pprint import pprint
from typing import Sequence
from datetime import date, datetime, timedelta

import logging

import numpy as np
import pandas as pd

from agroengine.core.config import AgronomyContext, EngineConfig
from agroengine.core.data_containers import FieldConditions, FieldState
from agroengine.core.gdd import GDDTracker, InMemoryGDDRecordStore
from agroengine.core.irrigation import IrrigationDecisionEngine
from agroengine.core.suitability import CropSuitabilityScorer
from agroengine.library.aggregation import FrameTemperatureSource
from agroengine.library.calibration import snapshot_from_raw
from agroengine.library.io_hdf5 import save_gdd_history_hdf5
from agroengine.library.weather import (
    ForecastDay,
    ForecastOutlookProvider,
    daily_forecast,
)

Array = np.ndarray

DATA_PATH = Path(Path(__file__).parent.parent, "data")
READINGS_CSV_PATH = Path(DATA_PATH, "Sensors", "readings.csv")

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")


# -----------------------------
# Synthetic inputs
# -----------------------------
def synthetic_readings(
    field_ids: Sequence[str], start: date, n_days: int, seed: int = 0
) -> pd.DataFrame:
    """Four air-temperature readings per day with a diurnal cycle."""
    rng = np.random.default_rng(seed)
    hours = np.array([6, 10, 14, 20])
    shape = np.array([0.0, 0.6, 1.0, 0.4])
    rows = []
    for field_id in field_ids:
        lows = 8.0 + 3.0 * rng.standard_normal(n_days)
        spans = rng.uniform(8.0, 15.0, n_days)
        for i in range(n_days):
            day = pd.Timestamp(start + timedelta(days=i))
            temps: Array = lows[i] + spans[i] * shape
            for h, t in zip(hours, temps):
                rows.append((field_id, day + pd.Timedelta(hours=int(h)), t))
    return pd.DataFrame(rows, columns=["field_id", "timestamp", "air_temp"])


def load_readings(path: Path, start: date, n_days: int) -> pd.DataFrame:
    if path.exists():
        df = pd.read_csv(path)
        df["timestamp"] = pd.to_datetime(df["timestamp"])
        return df
    return synthetic_readings(["f-001", "f-002"], start, n_days)


def fake_forecast(latitude: float, longitude: float) -> list[ForecastDay]:
    entries = pd.DataFrame(
        {
            "timestamp": pd.date_range(datetime.now().date(), periods=40, freq="3h"),
            "temp": np.tile([12.0, 16.0, 24.0, 27.0, 25.0, 20.0, 16.0, 13.0], 5),
            "humidity": 55.0,
            "rain_mm": np.r_[np.zeros(8), np.full(4, 1.5), np.zeros(28)],
        }
    )
    return daily_forecast(entries)


# -----------------------------
# Set up fields and context
# -----------------------------
sowing = date(2025, 11, 1)
today = date(2025, 12, 15)
n_days = (today - sowing).days

context = AgronomyContext.default(EngineConfig.from_mapping({"rain_threshold_mm": 5.0}))

fields = {
    "f-001": FieldState(
        "f-001", "LOAM", "wheat", sowing, crop_confirmed=True,
        latitude=26.85, longitude=80.95,
    ),
    "f-002": FieldState(
        "f-002", "SANDY_LOAM", "mustard", sowing, crop_confirmed=True,
        latitude=26.91, longitude=81.02,
    ),
}

# -----------------------------
# GDD tracking
# -----------------------------
readings = load_readings(READINGS_CSV_PATH, sowing, n_days)
records = InMemoryGDDRecordStore()
tracker = GDDTracker(
    context,
    records,
    FrameTemperatureSource.from_readings(readings),
    clock=lambda: datetime.combine(today, datetime.min.time()),
)

for field_id, field in fields.items():
    outcome = tracker.fill_gaps(field, today)
    fields[field_id] = outcome.field
    pprint(tracker.status(outcome.field, today).to_dict())

# -----------------------------
# Crop suitability for a fallow plot
# -----------------------------
scorer = CropSuitabilityScorer(context)
raw = snapshot_from_raw(smu=610, soil_temp=21.5, texture="LOAM", air_temp=24.0)
recommendation = scorer.recommend(FieldConditions.from_snapshot(raw, "LOAM"), on=today)
print(f"Recommended crop: {recommendation.recommended_crop}")
for s in recommendation.ranked_scores[:5]:
    print(f"  {s.rank:>2}. {s.crop_name:<14} {s.total_score:5.1f}  {s.explanation}")

# -----------------------------
# Irrigation decisions
# -----------------------------
engine = IrrigationDecisionEngine(
    context, ForecastOutlookProvider(fake_forecast, clock=datetime.now)
)
batch = engine.recommend_many(
    [
        (fields["f-001"], snapshot_from_raw(430, 18.0, "LOAM")),
        (fields["f-002"], snapshot_from_raw(520, 19.5, "SANDY_LOAM")),
    ]
)
for d in batch.decisions:
    print(
        f"{d.field_id}: {d.decision.value} ({d.urgency.value}), "
        f"{d.suggested_depth_mm:.1f} mm over {d.suggested_duration_min} min"
    )
    print(f"  {d.reason}")

# -----------------------------
# Save GDD history
# -----------------------------
SNAPSHOT = Path(Path(__file__).parent, "output", "gdd_history.h5")
save_gdd_history_hdf5(
    [r for field_id in fields for r in records.records(field_id)],
    SNAPSHOT,
    extra_meta={"scenario": "rabi_2025_demo"},
)
print(f"Saved GDD history to {SNAPSHOT}")
