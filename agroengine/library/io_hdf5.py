"""Module to save/load GDD record histories to/from HDF5 files."""

from __future__ import annotations

import json
import logging
import platform
import subprocess
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence

import h5py

import numpy as np

import agroengine
from agroengine.core.crops import GrowthStage
from agroengine.core.data_containers import GDDResult
from agroengine.core.errors import PersistenceError

logger = logging.getLogger(__name__)

_STAGES = tuple(GrowthStage)

# Per-field series persisted (explicit is safer than introspecting records)
GDD_ARRAY_FIELDS = [
    "date",
    "daily_gdd",
    "cumulative_gdd",
    "avg_air_temp",
    "min_air_temp",
    "max_air_temp",
    "stage_index",
    "readings_count",
    "base_temp",
]


def _git_commit_or_none() -> Optional[str]:
    try:
        return subprocess.check_output(
            ["git", "rev-parse", "HEAD"], text=True, stderr=subprocess.DEVNULL
        ).strip()
    except (OSError, subprocess.CalledProcessError):
        return None


def _suggest_chunks(shape: tuple[int, ...]) -> Optional[tuple[int, ...]]:
    """
    Chunk 1D daily series by year for efficient season slicing.

    Parameters
    ----------
    shape : tuple of int
        Dataset shape.

    Returns
    -------
    tuple of int or None
        ``(min(T, 366),)`` for non-empty 1D series, else ``None``.
    """
    if len(shape) == 1 and shape[0] > 0:
        return (min(shape[0], 366),)
    return None


def _write_dataset(g: h5py.Group, name: str, arr: np.ndarray) -> None:
    arr = np.asarray(arr)
    # datetime64 is stored as epoch days int64
    if np.issubdtype(arr.dtype, np.datetime64):
        arr = arr.astype("datetime64[D]").astype(np.int64)
        dset = g.create_dataset(
            name,
            data=arr,
            compression="gzip",
            compression_opts=4,
            shuffle=True,
            chunks=_suggest_chunks(arr.shape),
        )
        dset.attrs["logical_dtype"] = "datetime64[D]"
        return

    dset = g.create_dataset(
        name,
        data=arr,
        compression="gzip",
        compression_opts=4,
        shuffle=True,
        chunks=_suggest_chunks(arr.shape),
    )
    dset.attrs["shape"] = arr.shape
    dset.attrs["dtype"] = str(arr.dtype)


def _records_to_arrays(records: Sequence[GDDResult]) -> Dict[str, np.ndarray]:
    return {
        "date": np.array([r.date for r in records], dtype="datetime64[D]"),
        "daily_gdd": np.array([r.daily_gdd for r in records], dtype=float),
        "cumulative_gdd": np.array(
            [r.cumulative_gdd for r in records], dtype=float
        ),
        "avg_air_temp": np.array([r.avg_air_temp for r in records], dtype=float),
        "min_air_temp": np.array([r.min_air_temp for r in records], dtype=float),
        "max_air_temp": np.array([r.max_air_temp for r in records], dtype=float),
        "stage_index": np.array(
            [r.growth_stage.order for r in records], dtype=np.int8
        ),
        "readings_count": np.array(
            [r.readings_count for r in records], dtype=np.int32
        ),
        "base_temp": np.array([r.base_temp for r in records], dtype=float),
    }


def save_gdd_history_hdf5(
    records: Iterable[GDDResult],
    path: Path,
    extra_meta: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Persist GDD records to HDF5, one group per field under ``/gdd``.

    Records are sorted by date within each field. The crop name of the
    latest record is stored as the group's ``crop_name`` attribute.

    Raises
    ------
    PersistenceError
        If the file cannot be written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    by_field: Dict[str, list[GDDResult]] = {}
    for r in records:
        by_field.setdefault(r.field_id, []).append(r)

    meta = {
        "schema_version": 1,
        "python": platform.python_version(),
        "numpy": np.__version__,
        "agroengine": agroengine.__version__,
        "git_commit": _git_commit_or_none(),
        "notes": "GDD history snapshot for agroengine",
    }
    if extra_meta:
        meta.update(extra_meta)

    try:
        with h5py.File(path, "w") as f:
            for k, v in meta.items():
                f.attrs[k] = (
                    json.dumps(v)
                    if isinstance(v, (dict, list))
                    else ("" if v is None else v)
                )

            root = f.create_group("gdd")
            for field_id, recs in by_field.items():
                recs = sorted(recs, key=lambda r: r.date)
                g = root.create_group(field_id)
                g.attrs["crop_name"] = recs[-1].crop_name
                for name, arr in _records_to_arrays(recs).items():
                    _write_dataset(g, name, arr)
    except OSError as e:
        raise PersistenceError("save_gdd_history_hdf5", e) from e

    logger.info(
        "Wrote HDF5 snapshot with %d fields: %s", len(by_field), path.resolve()
    )


def list_fields_hdf5(path: Path) -> list[str]:
    """Field ids stored in a snapshot."""
    with h5py.File(path, "r") as f:
        return sorted(f["gdd"].keys())


def load_gdd_vars_hdf5(
    path: Path, field_id: str, names: Iterable[str]
) -> Dict[str, np.ndarray]:
    """
    Load only selected series of one field from the HDF5 snapshot.

    Returns
    -------
    dict
        Mapping of series name to array.
    """
    out: Dict[str, np.ndarray] = {}
    with h5py.File(path, "r") as f:
        if field_id not in f["gdd"]:
            raise KeyError(f"Field '{field_id}' not found in HDF5 file.")
        g = f["gdd"][field_id]
        for name in names:
            if name not in g:
                raise KeyError(f"Variable '{name}' not found in HDF5 file.")
            out[name] = g[name][...]  # load only this variable
            if g[name].attrs.get("logical_dtype", "").startswith("datetime64"):
                out[name] = out[name].astype("datetime64[D]")
    return out


def load_gdd_history_hdf5(path: Path, field_id: str) -> list[GDDResult]:
    """
    Load the full GDD record history of one field.

    Parameters
    ----------
    path : pathlib.Path
        HDF5 file path.
    field_id : str
        Field whose group is read.

    Returns
    -------
    list of GDDResult
        Records in ascending date order.
    """
    with h5py.File(path, "r") as f:
        crop_name = str(f["gdd"][field_id].attrs["crop_name"])
    arrs = load_gdd_vars_hdf5(path, field_id, GDD_ARRAY_FIELDS)
    return [
        GDDResult(
            field_id=field_id,
            date=arrs["date"][i].astype(object),
            daily_gdd=float(arrs["daily_gdd"][i]),
            cumulative_gdd=float(arrs["cumulative_gdd"][i]),
            avg_air_temp=float(arrs["avg_air_temp"][i]),
            min_air_temp=float(arrs["min_air_temp"][i]),
            max_air_temp=float(arrs["max_air_temp"][i]),
            growth_stage=_STAGES[int(arrs["stage_index"][i])],
            readings_count=int(arrs["readings_count"][i]),
            crop_name=crop_name,
            base_temp=float(arrs["base_temp"][i]),
        )
        for i in range(arrs["date"].shape[0])
    ]


# # Note on the choice of HDF5: a season slice of one series can be read
# # without loading the whole file, e.g.:
# with h5py.File("tests/fixtures/gdd_history.h5") as f:
#     last_week = f["gdd/f-001/cumulative_gdd"][-7:]
