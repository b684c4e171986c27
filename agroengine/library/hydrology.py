from __future__ import annotations
import numpy as np
Array = np.ndarray

# Stress bands as multiples of the MAD threshold (upper bounds).
STRESS_LEVELS = ("none", "mild", "moderate", "severe")
_STRESS_FACTORS = (1.0, 1.2, 1.5)


def vwc_to_depth_mm(vwc: Array | float, root_depth_cm: Array | float) -> Array:
    """
    Water held in the root zone at a given volumetric water content.

    Parameters
    ----------
    vwc : ndarray or scalar
        Volumetric water content [%].
    root_depth_cm : ndarray or scalar
        Root zone depth [cm].

    Returns
    -------
    ndarray
        Equivalent water depth [mm], ``vwc/100 * root_depth_cm * 10``.
    """
    vwc = np.asarray(vwc, dtype=float)
    return vwc / 100.0 * np.asarray(root_depth_cm, dtype=float) * 10.0


def total_available_water(
    field_capacity: Array | float,
    wilting_point: Array | float,
    root_depth_cm: Array | float,
) -> Array:
    """FAO-56 TAW [mm] between field capacity and wilting point (VWC %)."""
    return vwc_to_depth_mm(
        np.asarray(field_capacity, dtype=float)
        - np.asarray(wilting_point, dtype=float),
        root_depth_cm,
    )


def readily_available_water(taw: Array | float, mad: Array | float) -> Array:
    """FAO-56 RAW [mm], the fraction ``mad`` of TAW."""
    return np.asarray(mad, dtype=float) * np.asarray(taw, dtype=float)


def root_zone_depletion(
    vwc: Array | float,
    field_capacity: Array | float,
    root_depth_cm: Array | float,
) -> Array:
    """Depletion below field capacity [mm]; 0 at or above FC."""
    return np.maximum(
        0.0,
        vwc_to_depth_mm(field_capacity, root_depth_cm)
        - vwc_to_depth_mm(vwc, root_depth_cm),
    )


def depletion_percent(depletion: Array | float, taw: Array | float) -> Array:
    """Depletion as % of TAW; 0 where TAW is 0."""
    depletion = np.asarray(depletion, dtype=float)
    taw = np.asarray(taw, dtype=float)
    safe = np.where(taw > 0, taw, 1.0)
    return np.where(taw > 0, depletion / safe * 100.0, 0.0)


def stress_level(
    depletion_pct: Array | float,
    mad: Array | float,
    at_or_above_fc: Array | bool = False,
) -> Array:
    """
    Water stress class from depletion, as indices into :data:`STRESS_LEVELS`.

    ``none`` at or above field capacity or up to the MAD threshold
    (``mad * 100`` %), ``mild`` up to 1.2x, ``moderate`` up to 1.5x,
    ``severe`` beyond.
    """
    dep, threshold = np.broadcast_arrays(
        np.asarray(depletion_pct, dtype=float),
        np.asarray(mad, dtype=float) * 100.0,
    )
    bounds = np.multiply.outer(np.asarray(_STRESS_FACTORS), threshold)
    # count how many band upper bounds are exceeded
    idx = np.sum(dep > bounds, axis=0)
    return np.where(np.asarray(at_or_above_fc, dtype=bool), 0, idx)
