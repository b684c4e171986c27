"""
Crop parameter presets, dataclass container and read-only store.

This module provides the concrete dataclass :class:`CropParameters` that
encapsulates the agronomic constants shared by the growth-stage tracker, the
suitability scorer and the irrigation engine. The class is **frozen**
(immutable) and uses **slots**. The canonical catalog is the stage-threshold
schema: four cumulative-GDD thresholds per crop, FAO-56 crop coefficients,
root depth and management-allowed depletion.

Classes
-------
Season
    Cropping season of a crop (``KHARIF``, ``RABI``, ``ZAID``) or
    ``PERENNIAL``.
GrowthStage
    ``INITIAL`` through ``HARVEST_READY``.
CropParameters
    Immutable container for one crop's constants, validated on construction.
CropParameterStore
    Read-only lookup of enabled crops, built once at process start.

Notes
-----
- **Scope**: soil constants (field capacity, wilting point, saturation)
  belong to :mod:`agroengine.core.soils`, not here.
- **Schema**: catalogs written against the legacy single ``total_gdd`` field
  are rejected by :meth:`CropParameterStore.from_records`; the two schemas
  are never merged.
- **Sources**: FAO-56 (root depths, MAD, Kc), Paredes et al. (2025) base
  temperatures and GDD, ICAR recommendations for Uttar Pradesh.

Examples
--------
>>> from agroengine.core.crops import CropParameterStore
>>> store = CropParameterStore.default()
>>> wheat = store.lookup("wheat")
>>> wheat.late_season_gdd
2100.0

See Also
--------
agroengine.core.soils : Soil constants by texture.
agroengine.core.gdd : Growth stage from cumulative GDD.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

import numpy as np
import pandas as pd

from agroengine.core.errors import NotFoundError, ValidationError
from agroengine.core.soils import SoilTexture

logger = logging.getLogger(__name__)

Array = np.ndarray


class Season(str, Enum):
    """Cropping seasons of the Indo-Gangetic plain, plus year-round crops."""

    KHARIF = "KHARIF"  # Jun-Oct, monsoon
    RABI = "RABI"  # Nov-Feb, winter
    ZAID = "ZAID"  # Mar-May, summer
    PERENNIAL = "PERENNIAL"


class GrowthStage(str, Enum):
    """Phenological stages, in the order a crop goes through them."""

    INITIAL = "INITIAL"
    DEVELOPMENT = "DEVELOPMENT"
    MID_SEASON = "MID_SEASON"
    LATE_SEASON = "LATE_SEASON"
    HARVEST_READY = "HARVEST_READY"

    @property
    def order(self) -> int:
        return _STAGE_SEQUENCE.index(self)


_STAGE_SEQUENCE = tuple(GrowthStage)


def normalize_crop_name(name: str) -> str:
    """Lower-case, trimmed, underscore-separated crop key."""
    return str(name).strip().lower().replace(" ", "_").replace("-", "_")


@dataclass(frozen=True, slots=True)
class CropParameters:
    """
    Agronomic constants for one crop.

    Parameters
    ----------
    name : str
        Crop identifier (normalized key, e.g. ``"musk_melon"``).
    season : Season
        Season classification; ``PERENNIAL`` matches every season.
    base_temp : float
        Base temperature for GDD accumulation [°C].
    soil_temp_min, soil_temp_optimal, soil_temp_max : float
        Soil temperature band [°C].
    vwc_min, vwc_optimal, vwc_max : float
        Volumetric water content band [%]. Must satisfy
        ``vwc_min ≤ vwc_optimal ≤ vwc_max``.
    root_depth_cm : float
        Effective root zone depth [cm].
    mad : float
        Management allowed depletion, fraction of TAW in ``(0, 1)``.
    kc_ini, kc_mid, kc_end : float
        FAO-56 crop coefficients for the initial, mid-season and end stages.
    initial_stage_gdd, development_stage_gdd, mid_season_gdd, late_season_gdd : float
        Cumulative GDD at the end of each stage. Strictly increasing;
        ``late_season_gdd`` is the total requirement to harvest.
    preferred_soils : tuple of SoilTexture
        Textures on which the crop performs best.
    scientific_name : str, optional
        Botanical name, informational only.

    Raises
    ------
    ValueError
        If any invariant fails (threshold ordering, VWC band ordering, MAD
        bounds, non-positive root depth, soil temperature ordering).
    """

    name: str
    season: Season
    base_temp: float
    soil_temp_min: float
    soil_temp_optimal: float
    soil_temp_max: float
    vwc_min: float
    vwc_optimal: float
    vwc_max: float
    root_depth_cm: float
    mad: float
    kc_ini: float
    kc_mid: float
    kc_end: float
    initial_stage_gdd: float
    development_stage_gdd: float
    mid_season_gdd: float
    late_season_gdd: float
    preferred_soils: tuple[SoilTexture, ...] = ()
    scientific_name: str = ""

    def __post_init__(self):
        # Normalize loosely typed inputs; frozen, hence object.__setattr__
        object.__setattr__(self, "name", normalize_crop_name(self.name))
        if not isinstance(self.season, Season):
            object.__setattr__(
                self, "season", Season(str(self.season).strip().upper())
            )
        object.__setattr__(
            self,
            "preferred_soils",
            tuple(SoilTexture.parse(s) for s in self.preferred_soils),
        )
        for f in fields(self):
            if f.name in (
                "name",
                "season",
                "preferred_soils",
                "scientific_name",
            ):
                continue
            object.__setattr__(self, f.name, float(getattr(self, f.name)))

        if not (
            self.initial_stage_gdd
            < self.development_stage_gdd
            < self.mid_season_gdd
            < self.late_season_gdd
        ):
            raise ValueError(
                f"{self.name}: stage thresholds must satisfy initial < "
                "development < mid_season < late_season."
            )
        if self.initial_stage_gdd <= 0.0:
            raise ValueError(f"{self.name}: initial_stage_gdd must be > 0.")
        if not (self.vwc_min <= self.vwc_optimal <= self.vwc_max):
            raise ValueError(
                f"{self.name}: VWC band must satisfy min ≤ optimal ≤ max."
            )
        if not (
            self.soil_temp_min <= self.soil_temp_optimal <= self.soil_temp_max
        ):
            raise ValueError(
                f"{self.name}: soil temperature band must satisfy "
                "min ≤ optimal ≤ max."
            )
        if not (0.0 < self.mad < 1.0):
            raise ValueError(f"{self.name}: mad must be in (0, 1).")
        if self.root_depth_cm <= 0.0:
            raise ValueError(f"{self.name}: root_depth_cm must be positive.")
        if min(self.kc_ini, self.kc_mid, self.kc_end) <= 0.0:
            raise ValueError(f"{self.name}: Kc values must be positive.")

    @property
    def kc(self) -> tuple[float, float, float]:
        """Crop coefficient triple ``(ini, mid, end)``."""
        return (self.kc_ini, self.kc_mid, self.kc_end)

    @property
    def stage_thresholds(self) -> Array:
        """Cumulative-GDD stage thresholds as a float array of shape (4,)."""
        return np.array(
            [
                self.initial_stage_gdd,
                self.development_stage_gdd,
                self.mid_season_gdd,
                self.late_season_gdd,
            ],
            dtype=float,
        )

    @property
    def total_gdd(self) -> float:
        """GDD required from sowing to harvest."""
        return self.late_season_gdd

    @property
    def is_perennial(self) -> bool:
        return self.season is Season.PERENNIAL

    @classmethod
    def from_preset(cls, name: str) -> "CropParameters":
        """
        Instantiate from the built-in catalog.

        Raises
        ------
        NotFoundError
            If ``name`` is not a known preset.
        """
        key = normalize_crop_name(name)
        try:
            return cls(name=key, **CROP_PRESETS[key])
        except KeyError as e:
            raise NotFoundError("Crop", name) from e


def _preset(
    scientific_name: str,
    season: str,
    base_temp: float,
    soil_temp: tuple[float, float, float],
    vwc: tuple[float, float, float],
    root_depth_cm: float,
    mad: float,
    kc: tuple[float, float, float],
    stages: tuple[float, float, float, float],
    soils: tuple[str, ...],
) -> dict[str, Any]:
    return dict(
        scientific_name=scientific_name,
        season=season,
        base_temp=base_temp,
        soil_temp_min=soil_temp[0],
        soil_temp_optimal=soil_temp[1],
        soil_temp_max=soil_temp[2],
        vwc_min=vwc[0],
        vwc_optimal=vwc[1],
        vwc_max=vwc[2],
        root_depth_cm=root_depth_cm,
        mad=mad,
        kc_ini=kc[0],
        kc_mid=kc[1],
        kc_end=kc[2],
        initial_stage_gdd=stages[0],
        development_stage_gdd=stages[1],
        mid_season_gdd=stages[2],
        late_season_gdd=stages[3],
        preferred_soils=soils,
    )


# Canonical catalog, stage-threshold schema. Insertion order is the catalog
# order used for ranking ties.
CROP_PRESETS: Mapping[str, dict[str, Any]] = {
    # --- field crops / staples ---
    "wheat": _preset(
        "Triticum aestivum", "RABI", 0, (4, 25, 35), (20, 30, 40), 120,
        0.55, (0.3, 1.15, 0.4), (150, 650, 1350, 2100),
        ("LOAM", "CLAY_LOAM", "SANDY_LOAM"),
    ),
    "rice": _preset(
        "Oryza sativa", "KHARIF", 10, (16, 30, 42), (35, 50, 60), 50,
        0.20, (1.05, 1.2, 0.75), (180, 800, 1700, 2500),
        ("CLAY_LOAM", "CLAY", "LOAM"),
    ),
    "maize": _preset(
        "Zea mays", "KHARIF", 10, (15, 30, 40), (22, 32, 42), 120,
        0.55, (0.3, 1.2, 0.6), (120, 650, 1400, 2100),
        ("LOAM", "SANDY_LOAM", "CLAY_LOAM"),
    ),
    "chickpea": _preset(
        "Cicer arietinum", "RABI", 0, (10, 25, 35), (18, 28, 38), 100,
        0.50, (0.4, 1.0, 0.35), (100, 500, 1100, 1700),
        ("LOAM", "CLAY_LOAM", "SANDY_LOAM"),
    ),
    "lentil": _preset(
        "Lens culinaris", "RABI", 0, (8, 22, 32), (17, 27, 37), 90,
        0.50, (0.4, 1.05, 0.3), (90, 450, 1000, 1550),
        ("LOAM", "SANDY_LOAM"),
    ),
    "pea": _preset(
        "Pisum sativum", "RABI", 0, (5, 20, 30), (20, 30, 40), 80,
        0.45, (0.5, 1.15, 0.35), (80, 400, 900, 1400),
        ("LOAM", "CLAY_LOAM"),
    ),
    "mustard": _preset(
        "Brassica juncea", "RABI", 0, (10, 25, 35), (22, 32, 42), 100,
        0.45, (0.35, 1.1, 0.35), (100, 500, 1050, 1600),
        ("LOAM", "CLAY_LOAM", "SANDY_LOAM"),
    ),
    "sugarcane": _preset(
        "Saccharum officinarum", "PERENNIAL", 10, (20, 32, 40),
        (28, 38, 48), 120, 0.65, (0.4, 1.25, 0.75),
        (300, 1500, 4000, 6500), ("LOAM", "CLAY_LOAM"),
    ),
    "potato": _preset(
        "Solanum tuberosum", "RABI", 7, (10, 20, 30), (25, 35, 45), 50,
        0.35, (0.5, 1.15, 0.75), (120, 600, 1200, 1800),
        ("SANDY_LOAM", "LOAM"),
    ),
    # --- vegetables / leafy / cucurbits ---
    "radish": _preset(
        "Raphanus sativus", "RABI", 4, (8, 20, 30), (22, 32, 42), 40,
        0.40, (0.5, 0.9, 0.85), (50, 200, 400, 600),
        ("SANDY_LOAM", "LOAM"),
    ),
    "carrot": _preset(
        "Daucus carota", "RABI", 4, (8, 22, 32), (23, 33, 43), 60,
        0.35, (0.35, 1.0, 0.9), (80, 400, 900, 1400),
        ("SANDY_LOAM", "LOAM"),
    ),
    "tomato": _preset(
        "Solanum lycopersicum", "RABI", 10, (15, 26, 35), (25, 35, 45), 70,
        0.40, (0.6, 1.15, 0.8), (150, 700, 1500, 2300),
        ("LOAM", "SANDY_LOAM"),
    ),
    "spinach": _preset(
        "Spinacia oleracea", "RABI", 5, (8, 20, 30), (20, 30, 40), 40,
        0.35, (0.5, 1.0, 0.95), (60, 250, 500, 750),
        ("LOAM", "SANDY_LOAM"),
    ),
    "mint": _preset(
        "Mentha spicata", "PERENNIAL", 5, (10, 25, 35), (28, 38, 48), 40,
        0.40, (0.6, 1.15, 1.1), (80, 350, 800, 1250),
        ("LOAM", "SANDY_LOAM"),
    ),
    "cucumber": _preset(
        "Cucumis sativus", "ZAID", 12, (18, 28, 38), (24, 34, 44), 70,
        0.50, (0.6, 1.0, 0.75), (100, 450, 900, 1300),
        ("SANDY_LOAM", "LOAM"),
    ),
    "watermelon": _preset(
        "Citrullus lanatus", "ZAID", 12, (18, 30, 40), (22, 32, 42), 100,
        0.40, (0.4, 1.0, 0.75), (120, 550, 1150, 1700),
        ("SANDY_LOAM", "LOAM"),
    ),
    "musk_melon": _preset(
        "Cucumis melo", "ZAID", 12, (18, 28, 38), (23, 33, 43), 90,
        0.45, (0.5, 1.05, 0.75), (110, 500, 1050, 1550),
        ("SANDY_LOAM", "LOAM"),
    ),
    "bottle_gourd": _preset(
        "Lagenaria siceraria", "ZAID", 12, (18, 30, 40), (24, 34, 44), 80,
        0.50, (0.5, 1.0, 0.8), (100, 480, 1000, 1500),
        ("SANDY_LOAM", "LOAM"),
    ),
    "bitter_gourd": _preset(
        "Momordica charantia", "ZAID", 12, (20, 30, 40), (24, 34, 44), 75,
        0.50, (0.5, 1.05, 0.85), (110, 500, 1050, 1600),
        ("SANDY_LOAM", "LOAM"),
    ),
}

# Columns a flat (CSV/DataFrame) catalog must provide.
_REQUIRED_COLUMNS = tuple(
    f.name
    for f in fields(CropParameters)
    if f.name not in ("preferred_soils", "scientific_name")
)
_LEGACY_COLUMNS = ("total_gdd", "totalGDD")


class CropParameterStore:
    """
    Read-only lookup of :class:`CropParameters` for the enabled crop universe.

    Parameters
    ----------
    crops : iterable of CropParameters
        Catalog entries. Order is preserved and defines ranking ties.
    enabled : iterable of str, optional
        Crop names that form the current universe. Defaults to every crop in
        ``crops``. Names not present in ``crops`` raise ``ValidationError``.

    Notes
    -----
    The store is built once at process start and never mutated; it is safe
    to share between threads.
    """

    __slots__ = ("_crops", "_enabled")

    def __init__(
        self,
        crops: Iterable[CropParameters],
        enabled: Iterable[str] | None = None,
    ) -> None:
        catalog: dict[str, CropParameters] = {}
        for crop in crops:
            if crop.name in catalog:
                raise ValidationError(
                    f"Duplicate crop in catalog: {crop.name}",
                    {"crop": crop.name},
                )
            catalog[crop.name] = crop
        self._crops = catalog

        if enabled is None:
            self._enabled = tuple(catalog)
        else:
            wanted = [normalize_crop_name(n) for n in enabled]
            unknown = sorted(set(wanted) - set(catalog))
            if unknown:
                raise ValidationError(
                    f"Enabled crops missing from catalog: {unknown}",
                    {"unknown": unknown},
                )
            # keep catalog order
            self._enabled = tuple(n for n in catalog if n in set(wanted))

    # -------------------------
    # Constructors
    # -------------------------
    @classmethod
    def default(cls, enabled: Iterable[str] | None = None):
        """Store backed by the built-in :data:`CROP_PRESETS` catalog."""
        return cls(
            (CropParameters.from_preset(n) for n in CROP_PRESETS),
            enabled=enabled,
        )

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        enabled: Iterable[str] | None = None,
    ) -> "CropParameterStore":
        """
        Build a store from flat records (one mapping per crop).

        Each record provides every :class:`CropParameters` field.
        ``preferred_soils`` may be a sequence or a ``"|"``-separated string.

        Raises
        ------
        ValidationError
            If a record uses the legacy ``total_gdd`` schema, misses required
            fields, or violates a parameter invariant.
        """
        crops = []
        for i, record in enumerate(records):
            legacy = [c for c in _LEGACY_COLUMNS if c in record]
            if legacy:
                raise ValidationError(
                    "Legacy crop schema (single total GDD) is not supported; "
                    "provide the four stage thresholds instead.",
                    {"record": i, "legacy_fields": legacy},
                )
            missing = [c for c in _REQUIRED_COLUMNS if c not in record]
            if missing:
                raise ValidationError(
                    f"Crop record {i} is missing fields: {missing}",
                    {"record": i, "missing": missing},
                )
            kwargs = {k: record[k] for k in _REQUIRED_COLUMNS}
            soils = record.get("preferred_soils", ())
            if isinstance(soils, str):
                soils = tuple(s for s in soils.split("|") if s.strip())
            kwargs["preferred_soils"] = tuple(soils)
            sci = record.get("scientific_name", "")
            kwargs["scientific_name"] = "" if pd.isna(sci) else str(sci)
            try:
                crops.append(CropParameters(**kwargs))
            except ValueError as e:
                raise ValidationError(
                    f"Invalid crop record {i}: {e}", {"record": i}
                ) from e
        logger.debug("Loaded %d crop records", len(crops))
        return cls(crops, enabled=enabled)

    @classmethod
    def from_frame(
        cls, df: pd.DataFrame, enabled: Iterable[str] | None = None
    ) -> "CropParameterStore":
        """Build a store from a DataFrame with one row per crop."""
        return cls.from_records(df.to_dict(orient="records"), enabled)

    @classmethod
    def from_csv(
        cls, path: str | Path, enabled: Iterable[str] | None = None
    ) -> "CropParameterStore":
        """Build a store from a CSV catalog (``preferred_soils`` as ``A|B``)."""
        df = pd.read_csv(path)
        return cls.from_frame(df, enabled)

    def to_frame(self) -> pd.DataFrame:
        """Enabled catalog as a DataFrame, round-trippable via from_frame."""
        rows = []
        for crop in self:
            row = {f.name: getattr(crop, f.name) for f in fields(crop)}
            row["season"] = crop.season.value
            row["preferred_soils"] = "|".join(
                s.value for s in crop.preferred_soils
            )
            rows.append(row)
        return pd.DataFrame(rows)

    # -------------------------
    # Lookup
    # -------------------------
    def lookup(self, crop_name: str) -> CropParameters:
        """
        Return the parameters of an enabled crop.

        Raises
        ------
        NotFoundError
            If the crop is unknown or not enabled.
        """
        key = normalize_crop_name(crop_name)
        if key not in self._enabled:
            raise NotFoundError("Crop", crop_name)
        return self._crops[key]

    def names(self) -> tuple[str, ...]:
        """Enabled crop names in catalog order."""
        return self._enabled

    def __contains__(self, crop_name: object) -> bool:
        return normalize_crop_name(str(crop_name)) in self._enabled

    def __iter__(self) -> Iterator[CropParameters]:
        return (self._crops[n] for n in self._enabled)

    def __len__(self) -> int:
        return len(self._enabled)
