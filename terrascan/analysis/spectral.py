"""Spectral index engine.

One pure NumPy definition per index serves both execution forms:

- ``compute_index`` / ``preview_index``: whole arrays in memory, for
  small tiles and quick-look previews.
- ``compute_index_windowed``: streams a multi-band raster window by
  window with rasterio and writes the index raster, for full scenes.

Degenerate pixels (a denominator within ``EPSILON`` of zero) produce
NaN, never an exception.  Normalised-difference outputs are clipped to
[-1, 1]; NaN is preserved.  Arithmetic runs in float64 and results are
returned as float32.

Indices:

    ndvi  (nir - red) / (nir + red)
    ndwi  (green - nir) / (green + nir)
    ndbi  (swir16 - nir) / (swir16 + nir)
    nbr   (nir - swir22) / (nir + swir22)
    ndmi  (nir - swir16) / (nir + swir16)
    evi   2.5 * (nir - red) / (nir + 6 * red - 7.5 * blue + 1)
    savi  (1 + L) * (nir - red) / (nir + red + L),  L = 0.5
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from terrascan.core.exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from pathlib import Path

    from numpy.typing import ArrayLike

logger = logging.getLogger("terrascan.analysis.spectral")

EPSILON = 1e-10
SAVI_L = 0.5
DEFAULT_PREVIEW_SIZE = 256


class SpectralIndexError(ValidationError):
    """Missing band, unknown index or malformed band arrays."""

    default_stage = "spectral_index"
    default_code = "SPECTRAL_INDEX_INVALID"


class SpectralIndex(enum.Enum):
    NDVI = "ndvi"
    NDWI = "ndwi"
    NDBI = "ndbi"
    NBR = "nbr"
    NDMI = "ndmi"
    EVI = "evi"
    SAVI = "savi"


# ---------------------------------------------------------------------------
# Band math
# ---------------------------------------------------------------------------


def safe_divide(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    """Elementwise division returning NaN where ``|denominator| < EPSILON``."""
    degenerate = np.abs(denominator) < EPSILON
    out = np.full(np.broadcast(numerator, denominator).shape, np.nan, dtype=np.float64)
    np.divide(numerator, denominator, out=out, where=~degenerate)
    return out


def normalized_difference(a: ArrayLike, b: ArrayLike) -> np.ndarray:
    """``(a - b) / (a + b)`` clipped to [-1, 1], NaN where ``a + b`` is ~0."""
    a64 = np.asarray(a, dtype=np.float64)
    b64 = np.asarray(b, dtype=np.float64)
    return np.clip(safe_divide(a64 - b64, a64 + b64), -1.0, 1.0)


def _evi(b: Mapping[str, np.ndarray]) -> np.ndarray:
    nir, red, blue = b["nir"], b["red"], b["blue"]
    return 2.5 * safe_divide(nir - red, nir + 6.0 * red - 7.5 * blue + 1.0)


def _savi(b: Mapping[str, np.ndarray]) -> np.ndarray:
    nir, red = b["nir"], b["red"]
    return (1.0 + SAVI_L) * safe_divide(nir - red, nir + red + SAVI_L)


@dataclass(frozen=True, slots=True)
class IndexDefinition:
    index: SpectralIndex
    bands: tuple[str, ...]
    formula: Callable[[Mapping[str, np.ndarray]], np.ndarray]
    description: str


def _nd(a: str, b: str) -> Callable[[Mapping[str, np.ndarray]], np.ndarray]:
    return lambda bands: normalized_difference(bands[a], bands[b])


INDEX_DEFINITIONS: dict[SpectralIndex, IndexDefinition] = {
    SpectralIndex.NDVI: IndexDefinition(
        SpectralIndex.NDVI, ("nir", "red"), _nd("nir", "red"), "vegetation"
    ),
    SpectralIndex.NDWI: IndexDefinition(
        SpectralIndex.NDWI, ("green", "nir"), _nd("green", "nir"), "open water"
    ),
    SpectralIndex.NDBI: IndexDefinition(
        SpectralIndex.NDBI, ("swir16", "nir"), _nd("swir16", "nir"), "built-up area"
    ),
    SpectralIndex.NBR: IndexDefinition(
        SpectralIndex.NBR, ("nir", "swir22"), _nd("nir", "swir22"), "burn severity"
    ),
    SpectralIndex.NDMI: IndexDefinition(
        SpectralIndex.NDMI, ("nir", "swir16"), _nd("nir", "swir16"), "canopy moisture"
    ),
    SpectralIndex.EVI: IndexDefinition(
        SpectralIndex.EVI, ("nir", "red", "blue"), _evi, "enhanced vegetation"
    ),
    SpectralIndex.SAVI: IndexDefinition(
        SpectralIndex.SAVI, ("nir", "red"), _savi, "soil-adjusted vegetation"
    ),
}


def resolve_index(index: str | SpectralIndex) -> IndexDefinition:
    """Look up an index by enum or case-insensitive name.

    Raises:
        SpectralIndexError: If the index is unknown.
    """
    if isinstance(index, SpectralIndex):
        return INDEX_DEFINITIONS[index]
    try:
        return INDEX_DEFINITIONS[SpectralIndex(str(index).strip().lower())]
    except ValueError as exc:
        known = ", ".join(i.value for i in SpectralIndex)
        msg = f"Unknown spectral index {index!r}; expected one of: {known}"
        raise SpectralIndexError(msg) from exc


def list_indices() -> list[str]:
    return [i.value for i in SpectralIndex]


# ---------------------------------------------------------------------------
# In-memory form
# ---------------------------------------------------------------------------


def compute_index(
    bands: Mapping[str, ArrayLike],
    index: str | SpectralIndex,
) -> np.ndarray:
    """Compute *index* over a band collection.

    Args:
        bands: Band name → 2-D array (reflectance).  Extra bands are ignored.
        index: Index selector (``"ndvi"``, ``SpectralIndex.EVI``, ...).

    Returns:
        float32 array with the shape of the input bands.

    Raises:
        SpectralIndexError: On an unknown index, a missing band, or
            bands that are not 2-D arrays of one shape.
    """
    definition = resolve_index(index)
    missing = [b for b in definition.bands if b not in bands]
    if missing:
        msg = (
            f"{definition.index.value} needs band(s) {', '.join(definition.bands)}; "
            f"missing: {', '.join(missing)}"
        )
        raise SpectralIndexError(msg)

    arrays = {b: np.asarray(bands[b], dtype=np.float64) for b in definition.bands}
    shapes = {a.shape for a in arrays.values()}
    if len(shapes) != 1:
        msg = f"{definition.index.value}: band shapes differ: {sorted(shapes)}"
        raise SpectralIndexError(msg)
    (shape,) = shapes
    if len(shape) != 2:
        msg = f"{definition.index.value}: bands must be 2-D, got shape {shape}"
        raise SpectralIndexError(msg)

    return definition.formula(arrays).astype(np.float32)


def preview_index(
    bands: Mapping[str, ArrayLike],
    index: str | SpectralIndex,
    *,
    max_size: int = DEFAULT_PREVIEW_SIZE,
) -> np.ndarray:
    """Compute *index* on a strided decimation of the bands.

    The longer edge of the result is at most *max_size* pixels; values
    are exact samples of the full-resolution result, not averages.
    """
    if max_size < 1:
        msg = f"max_size must be >= 1, got {max_size}"
        raise SpectralIndexError(msg)
    definition = resolve_index(index)
    present = {b: np.asarray(bands[b]) for b in definition.bands if b in bands}
    longest = max((max(a.shape) for a in present.values() if a.ndim == 2), default=0)
    step = max(1, math.ceil(longest / max_size))
    decimated = {
        name: (arr[::step, ::step] if arr.ndim == 2 else arr) for name, arr in present.items()
    }
    return compute_index(decimated, definition.index)


# ---------------------------------------------------------------------------
# Windowed (batch) form
# ---------------------------------------------------------------------------


def compute_index_windowed(
    src_path: Path,
    dst_path: Path,
    index: str | SpectralIndex,
    *,
    band_map: Mapping[str, int] | None = None,
) -> dict[str, float | int | None]:
    """Stream *src_path* block by block and write the index raster to *dst_path*.

    Args:
        src_path: Multi-band raster (band names in descriptions unless
            *band_map* is given).
        dst_path: Output single-band float32 GeoTIFF (nodata NaN).
        index: Index selector.
        band_map: Band name → 1-based band index override.

    Returns:
        Summary statistics over finite output pixels:
        ``min``, ``max``, ``mean`` (``None`` when no pixel is finite) and
        ``valid_pixels``.
    """
    import rasterio

    from terrascan.analysis.raster_io import band_index_map

    definition = resolve_index(index)
    count = 0
    total = 0.0
    lo = math.inf
    hi = -math.inf

    with rasterio.open(src_path) as src:
        mapping = dict(band_map) if band_map is not None else band_index_map(src)
        missing = [b for b in definition.bands if b not in mapping]
        if missing:
            msg = (
                f"{definition.index.value} needs band(s) {', '.join(definition.bands)}; "
                f"{src_path.name} lacks: {', '.join(missing)}"
            )
            raise SpectralIndexError(msg)

        profile = src.profile.copy()
        profile.update(driver="GTiff", count=1, dtype="float32", nodata=float("nan"))
        profile.pop("photometric", None)

        with rasterio.open(dst_path, "w", **profile) as dst:
            dst.set_band_description(1, definition.index.value)
            for _, window in src.block_windows(1):
                block = {b: src.read(mapping[b], window=window) for b in definition.bands}
                result = compute_index(block, definition.index)
                dst.write(result, 1, window=window)

                finite = result[np.isfinite(result)]
                if finite.size:
                    count += int(finite.size)
                    total += float(finite.sum(dtype=np.float64))
                    lo = min(lo, float(finite.min()))
                    hi = max(hi, float(finite.max()))

    logger.info(
        "Index raster written | index=%s | src=%s | dst=%s | valid_pixels=%d",
        definition.index.value,
        src_path.name,
        dst_path.name,
        count,
    )
    return {
        "min": lo if count else None,
        "max": hi if count else None,
        "mean": total / count if count else None,
        "valid_pixels": count,
    }
