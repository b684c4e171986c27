"""
Soil texture constants (field capacity, wilting point, saturation).

The table is the single source of soil hydraulic constants for the three
calculators. Values are volumetric water content in percent, adapted from
FAO-56 Table 19 for alluvial soils.

Classes
-------
SoilTexture
    The five texture classes, ordered from sandy to clay.
SoilConstants
    Frozen per-texture constants with ordering validation.
SoilConstantTable
    Read-only lookup keyed by texture, with the adjacency relation used by
    crop suitability scoring.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Mapping

from agroengine.core.errors import ValidationError


class SoilTexture(str, Enum):
    """Soil texture classes, listed from coarsest to finest."""

    SANDY = "SANDY"
    SANDY_LOAM = "SANDY_LOAM"
    LOAM = "LOAM"
    CLAY_LOAM = "CLAY_LOAM"
    CLAY = "CLAY"

    @classmethod
    def parse(cls, value: "SoilTexture | str") -> "SoilTexture":
        """
        Coerce a texture name to :class:`SoilTexture`.

        Raises
        ------
        ValidationError
            If ``value`` does not name a known texture.
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().upper().replace(" ", "_").replace("-", "_")
        try:
            return cls(key)
        except ValueError as e:
            raise ValidationError(
                f"Invalid soil texture: {value}",
                {"soil_texture": value, "known": [t.value for t in cls]},
            ) from e


# Sandy -> clay sequence; each texture is adjacent to its direct neighbours.
_TEXTURE_SEQUENCE = tuple(SoilTexture)


@dataclass(frozen=True, slots=True)
class SoilConstants:
    """
    Hydraulic constants for one soil texture.

    Parameters
    ----------
    texture : SoilTexture
        Texture class these constants describe.
    field_capacity : float
        VWC [%] held after free drainage.
    wilting_point : float
        VWC [%] below which plants cannot extract water.
    saturation : float
        VWC [%] with all pores filled.

    Raises
    ------
    ValueError
        If ``wilting_point < field_capacity < saturation`` does not hold.
    """

    texture: SoilTexture
    field_capacity: float
    wilting_point: float
    saturation: float

    def __post_init__(self):
        if not (
            0.0 <= self.wilting_point < self.field_capacity < self.saturation
        ):
            raise ValueError(
                "Soil constants must satisfy "
                "0 ≤ wilting_point < field_capacity < saturation."
            )

    @property
    def available_water_percent(self) -> float:
        """Plant-available water FC − WP in VWC percentage points."""
        return self.field_capacity - self.wilting_point


DEFAULT_SOIL_CONSTANTS: Mapping[SoilTexture, SoilConstants] = {
    SoilTexture.SANDY: SoilConstants(SoilTexture.SANDY, 15.0, 6.0, 43.0),
    SoilTexture.SANDY_LOAM: SoilConstants(
        SoilTexture.SANDY_LOAM, 22.0, 10.0, 45.0
    ),
    SoilTexture.LOAM: SoilConstants(SoilTexture.LOAM, 31.0, 15.0, 47.0),
    SoilTexture.CLAY_LOAM: SoilConstants(
        SoilTexture.CLAY_LOAM, 35.0, 20.0, 49.0
    ),
    SoilTexture.CLAY: SoilConstants(SoilTexture.CLAY, 39.0, 27.0, 51.0),
}


class SoilConstantTable:
    """
    Immutable lookup of :class:`SoilConstants` by texture.

    Parameters
    ----------
    constants : mapping, optional
        Texture to constants. Defaults to :data:`DEFAULT_SOIL_CONSTANTS`.

    Examples
    --------
    >>> table = SoilConstantTable.default()
    >>> table.lookup("LOAM").field_capacity
    31.0
    """

    __slots__ = ("_constants",)

    def __init__(
        self, constants: Mapping[SoilTexture, SoilConstants] | None = None
    ) -> None:
        source = DEFAULT_SOIL_CONSTANTS if constants is None else constants
        self._constants = {
            SoilTexture.parse(k): v for k, v in source.items()
        }

    @classmethod
    def default(cls) -> "SoilConstantTable":
        return cls(DEFAULT_SOIL_CONSTANTS)

    def lookup(self, texture: SoilTexture | str) -> SoilConstants:
        """
        Return the constants for ``texture``.

        Raises
        ------
        ValidationError
            If the texture is unknown or missing from this table.
        """
        key = SoilTexture.parse(texture)
        try:
            return self._constants[key]
        except KeyError as e:
            raise ValidationError(
                f"Invalid soil texture: {texture}",
                {"soil_texture": str(texture)},
            ) from e

    def __contains__(self, texture: object) -> bool:
        try:
            return SoilTexture.parse(texture) in self._constants  # type: ignore[arg-type]
        except ValidationError:
            return False

    def __iter__(self) -> Iterator[SoilConstants]:
        return iter(self._constants.values())

    def __len__(self) -> int:
        return len(self._constants)

    @staticmethod
    def adjacent(texture: SoilTexture | str) -> tuple[SoilTexture, ...]:
        """Textures immediately next to ``texture`` in the sandy→clay order."""
        key = SoilTexture.parse(texture)
        i = _TEXTURE_SEQUENCE.index(key)
        return tuple(
            _TEXTURE_SEQUENCE[j]
            for j in (i - 1, i + 1)
            if 0 <= j < len(_TEXTURE_SEQUENCE)
        )
