"""Correct stage: digital numbers → surface reflectance.

Two methods, selected by ``PipelineConfig.correction_method``:

- ``scale``: the Sentinel-2 L2A convention
  ``reflectance = (DN + offset) / 10000``.  Products from processing
  baseline 04.00 (acquired on or after 2022-01-25) carry a radiometric
  offset of -1000; older products carry none.
- ``dos``: ``scale`` followed by dark-object subtraction: each band's
  1st-percentile value is treated as path radiance and removed.

DN 0 is the Sentinel-2 nodata value and becomes NaN.  Reflectance is
clipped at 0.  Class-coded bands (SCL) are never corrected and are not
written to the reflectance stack.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import numpy as np
from rasterio.errors import RasterioError

from terrascan.analysis.raster_io import read_bands, write_stack
from terrascan.core.constants import CLASSIFICATION_BANDS, STAGE_CORRECT
from terrascan.core.exceptions import StageError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

logger = logging.getLogger("terrascan.activities.correct_atmosphere")

REFLECTANCE_SCALE = 10_000.0
BOA_OFFSET = -1000.0
BOA_OFFSET_START = datetime(2022, 1, 25, tzinfo=UTC)
DOS_PERCENTILE = 1.0
NODATA_DN = 0

METHOD_SCALE = "scale"
METHOD_DOS = "dos"


def radiometric_offset(acquired_at: datetime) -> float:
    """Return the L2A BOA offset that applies to a scene acquired at *acquired_at*."""
    moment = acquired_at if acquired_at.tzinfo else acquired_at.replace(tzinfo=UTC)
    return BOA_OFFSET if moment >= BOA_OFFSET_START else 0.0


def to_reflectance(dn: np.ndarray, *, offset: float = 0.0) -> np.ndarray:
    """Convert one band of DNs to float32 reflectance (NaN where DN is nodata)."""
    values = np.asarray(dn, dtype=np.float64)
    out = np.clip((values + offset) / REFLECTANCE_SCALE, 0.0, None)
    out[values == NODATA_DN] = np.nan
    return out.astype(np.float32)


def dark_object_subtract(band: np.ndarray, *, percentile: float = DOS_PERCENTILE) -> np.ndarray:
    """Subtract the band's dark-object value (its *percentile*-th finite value)."""
    finite = band[np.isfinite(band)]
    if finite.size == 0:
        return band
    dark = float(np.percentile(finite, percentile))
    return np.clip(band - dark, 0.0, None).astype(np.float32)


def correct_bands(
    bands: Mapping[str, np.ndarray],
    *,
    method: str = METHOD_SCALE,
    acquired_at: datetime,
) -> dict[str, np.ndarray]:
    """Correct every reflectance band in *bands* (class-coded bands are dropped)."""
    if method not in (METHOD_SCALE, METHOD_DOS):
        msg = f"unknown correction method {method!r}"
        raise StageError(STAGE_CORRECT, msg)

    offset = radiometric_offset(acquired_at)
    corrected: dict[str, np.ndarray] = {}
    for name, dn in bands.items():
        if name in CLASSIFICATION_BANDS:
            continue
        reflectance = to_reflectance(dn, offset=offset)
        if method == METHOD_DOS:
            reflectance = dark_object_subtract(reflectance)
        corrected[name] = reflectance
    return corrected


def correct_scene(
    band_paths: Mapping[str, Path],
    dest: Path,
    *,
    method: str = METHOD_SCALE,
    acquired_at: datetime,
) -> Path:
    """Read downloaded bands onto one grid, correct them and write a float32 stack.

    Raises:
        StageError: If no reflectance band is present or the rasters
            cannot be read or written (not retryable).
    """
    reflectance_paths = {k: v for k, v in band_paths.items() if k not in CLASSIFICATION_BANDS}
    if not reflectance_paths:
        msg = "no reflectance bands to correct"
        raise StageError(STAGE_CORRECT, msg)

    try:
        arrays, profile = read_bands(reflectance_paths)
        corrected = correct_bands(arrays, method=method, acquired_at=acquired_at)
        write_stack(dest, corrected, profile)
    except RasterioError as exc:
        msg = f"raster I/O failed: {exc}"
        raise StageError(STAGE_CORRECT, msg) from exc

    logger.info(
        "correct_atmosphere completed | bands=%s | method=%s | offset=%.0f | size=%dx%d",
        ",".join(corrected),
        method,
        radiometric_offset(acquired_at),
        profile["width"],
        profile["height"],
    )
    return dest
