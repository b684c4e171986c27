"""Raw soil-moisture sensor units (SMU) to volumetric water content."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Mapping

import numpy as np

from agroengine.core.data_containers import SensorSnapshot
from agroengine.core.errors import SensorDataError
from agroengine.core.soils import SoilConstantTable, SoilTexture

Array = np.ndarray

SMU_RANGE = (0, 1023)  # 10-bit ADC
VALID_SOIL_TEMP = (-10.0, 60.0)


@dataclass(frozen=True, slots=True)
class CalibrationCurve:
    """SMU readings at wilting point, field capacity and saturation."""

    smu_at_wp: float
    smu_at_fc: float
    smu_at_sat: float

    def __post_init__(self):
        if not (0 < self.smu_at_wp < self.smu_at_fc < self.smu_at_sat):
            raise ValueError("Calibration anchors must be strictly increasing.")


CALIBRATION_CURVES: Mapping[SoilTexture, CalibrationCurve] = {
    SoilTexture.SANDY: CalibrationCurve(200, 600, 850),
    SoilTexture.SANDY_LOAM: CalibrationCurve(250, 680, 900),
    SoilTexture.LOAM: CalibrationCurve(280, 720, 920),
    SoilTexture.CLAY_LOAM: CalibrationCurve(350, 800, 950),
    SoilTexture.CLAY: CalibrationCurve(400, 850, 980),
}


def smu_to_vwc(
    smu: Array | float,
    texture: SoilTexture | str,
    soils: SoilConstantTable | None = None,
) -> Array | float:
    """
    Convert SMU to VWC [%] for a soil texture.

    Piecewise linear through ``(0, 0)``, ``(smu_at_wp, WP)``,
    ``(smu_at_fc, FC)`` and ``(smu_at_sat, SAT)``; constant at saturation
    above the last anchor. Inputs are clamped to 0..1023 first and the
    result is rounded to 2 decimals.

    Examples
    --------
    >>> smu_to_vwc(720, "LOAM")
    31.0
    """
    key = SoilTexture.parse(texture)
    soil = (soils or SoilConstantTable.default()).lookup(key)
    curve = CALIBRATION_CURVES[key]
    x = np.clip(np.asarray(smu, dtype=float), *SMU_RANGE)
    vwc = np.round(
        np.interp(
            x,
            [0.0, curve.smu_at_wp, curve.smu_at_fc, curve.smu_at_sat],
            [0.0, soil.wilting_point, soil.field_capacity, soil.saturation],
        ),
        2,
    )
    return float(vwc) if vwc.ndim == 0 else vwc


def is_valid_smu(smu: float) -> bool:
    return SMU_RANGE[0] <= smu <= SMU_RANGE[1]


def is_valid_soil_temp(temp: float) -> bool:
    return VALID_SOIL_TEMP[0] <= temp <= VALID_SOIL_TEMP[1]


def snapshot_from_raw(
    smu: float,
    soil_temp: float,
    texture: SoilTexture | str,
    air_temp: float | None = None,
    timestamp: dt.datetime | None = None,
    soils: SoilConstantTable | None = None,
) -> SensorSnapshot:
    """
    Build a :class:`SensorSnapshot` from a raw sensor payload.

    Raises
    ------
    SensorDataError
        If ``smu`` is outside 0..1023 or ``soil_temp`` outside -10..60 °C.
    """
    if not is_valid_smu(smu):
        raise SensorDataError(
            f"Soil moisture reading out of range: {smu}",
            {"smu": smu, "valid": SMU_RANGE},
        )
    if not is_valid_soil_temp(soil_temp):
        raise SensorDataError(
            f"Soil temperature reading out of range: {soil_temp}",
            {"soil_temp": soil_temp, "valid": VALID_SOIL_TEMP},
        )
    return SensorSnapshot(
        vwc=smu_to_vwc(smu, texture, soils),
        soil_temp=round(float(soil_temp), 2),
        air_temp=air_temp,
        timestamp=timestamp,
    )
