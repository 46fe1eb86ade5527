"""Raster read/write helpers shared by preprocessing and analysis.

Multi-band stacks carry their band names as GDAL band descriptions and
as a ``bands`` dataset tag, so any stage can address bands by name.

All functions raise ``rasterio.errors.RasterioIOError`` (or other
``rasterio`` errors) on I/O failure; callers translate them into their
own stage errors.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np
import rasterio
from rasterio.enums import Resampling
from rasterio.transform import Affine

from terrascan.core.constants import CLASSIFICATION_BANDS

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping
    from pathlib import Path

logger = logging.getLogger("terrascan.analysis.raster_io")

BANDS_TAG = "bands"

# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


def read_bands(
    paths: Mapping[str, Path],
    *,
    reference: str | None = None,
) -> tuple[dict[str, np.ndarray], dict[str, Any]]:
    """Read single-band files onto one common pixel grid.

    Sentinel-2 bands come at 10, 20 and 60 m over the same tile extent.
    Every band is resampled on read to the grid of *reference* (default:
    the band with the most pixels) with bilinear resampling, or nearest
    neighbour for class-coded bands such as ``scl``.

    Returns:
        ``(arrays, profile)`` where *profile* describes the reference grid.
    """
    if not paths:
        msg = "read_bands: no band paths given"
        raise ValueError(msg)

    if reference is None:
        reference = _largest_band(paths)

    with rasterio.open(paths[reference]) as ref:
        height, width = ref.height, ref.width
        profile = {
            "crs": ref.crs,
            "transform": ref.transform,
            "width": width,
            "height": height,
        }

    arrays: dict[str, np.ndarray] = {}
    for name, path in paths.items():
        resampling = Resampling.nearest if name in CLASSIFICATION_BANDS else Resampling.bilinear
        with rasterio.open(path) as src:
            arrays[name] = src.read(1, out_shape=(height, width), resampling=resampling)
    return arrays, profile


def read_stack(
    path: Path,
    *,
    out_shape: tuple[int, int] | None = None,
) -> tuple[dict[str, np.ndarray], dict[str, Any]]:
    """Read a named multi-band stack into ``{band_name: array}``.

    Args:
        path: Stack written by ``write_stack`` (or a COG converted from one).
        out_shape: Optional ``(height, width)`` to resample to.
    """
    with rasterio.open(path) as src:
        names = band_names(src)
        height, width = out_shape or (src.height, src.width)
        data = src.read(out_shape=(src.count, height, width), resampling=Resampling.bilinear)
        transform = src.transform
        if out_shape is not None:
            transform = src.transform * Affine.scale(src.width / width, src.height / height)
        profile = {"crs": src.crs, "transform": transform, "width": width, "height": height}
    return {name: data[i] for i, name in enumerate(names)}, profile


def band_names(src: rasterio.io.DatasetReader) -> list[str]:
    """Return band names from descriptions, falling back to the ``bands`` tag."""
    descriptions = list(src.descriptions)
    if all(descriptions):
        return [str(d) for d in descriptions]
    tagged = src.tags().get(BANDS_TAG, "")
    names = [n for n in tagged.split(",") if n]
    if len(names) == src.count:
        return names
    return [f"band{i}" for i in range(1, src.count + 1)]


def band_index_map(src: rasterio.io.DatasetReader) -> dict[str, int]:
    """Return band name → 1-based band index."""
    return {name: i for i, name in enumerate(band_names(src), 1)}


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


def write_stack(
    path: Path,
    arrays: Mapping[str, np.ndarray],
    profile: Mapping[str, Any],
    *,
    dtype: str = "float32",
    nodata: float | None = float("nan"),
) -> Path:
    """Write ``{band_name: array}`` as a multi-band GeoTIFF with band descriptions."""
    names = list(arrays)
    first = arrays[names[0]]
    out_profile = {
        "driver": "GTiff",
        "dtype": dtype,
        "count": len(names),
        "height": first.shape[0],
        "width": first.shape[1],
        "crs": profile.get("crs"),
        "transform": profile.get("transform"),
        "nodata": nodata,
        "compress": "deflate",
    }
    with rasterio.open(path, "w", **out_profile) as dst:
        for i, name in enumerate(names, 1):
            dst.write(np.asarray(arrays[name], dtype=dtype), i)
            dst.set_band_description(i, name)
        dst.update_tags(**{BANDS_TAG: ",".join(names)})
    return path


def write_cog(
    src_path: Path,
    dst_path: Path,
    *,
    blocksize: int = 512,
    compress: str = "DEFLATE",
    overview_resampling: str = "AVERAGE",
) -> Path:
    """Copy *src_path* to a tiled, internally overviewed Cloud Optimized GeoTIFF.

    Band descriptions and dataset tags are carried over by GDAL's COG
    driver.
    """
    from rasterio.shutil import copy as rio_copy

    rio_copy(
        src_path,
        dst_path,
        driver="COG",
        BLOCKSIZE=blocksize,
        COMPRESS=compress,
        OVERVIEW_RESAMPLING=overview_resampling,
    )
    return dst_path


# ---------------------------------------------------------------------------
# Vectorisation
# ---------------------------------------------------------------------------


def vectorize_mask(
    mask: np.ndarray,
    profile: Mapping[str, Any],
    *,
    min_pixels: int = 1,
    limit: int | None = None,
) -> Iterator[dict[str, Any]]:
    """Yield EPSG:4326 GeoJSON polygons for connected ``True`` regions of *mask*.

    Regions smaller than *min_pixels* are skipped; at most *limit*
    polygons are produced.
    """
    from rasterio.features import shapes
    from rasterio.warp import transform_geom

    transform = profile["transform"]
    crs = profile.get("crs")
    pixel_area = abs(transform.a * transform.e)
    emitted = 0
    source = mask.astype(np.uint8)
    for geom, value in shapes(source, mask=mask.astype(bool), transform=transform):
        if value != 1:
            continue
        if _ring_area(geom) < min_pixels * pixel_area:
            continue
        if crs is not None and str(crs) != "EPSG:4326":
            geom = transform_geom(crs, "EPSG:4326", geom)
        yield geom
        emitted += 1
        if limit is not None and emitted >= limit:
            return


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _largest_band(paths: Mapping[str, Path]) -> str:
    best, best_pixels = "", -1
    for name, path in paths.items():
        if name in CLASSIFICATION_BANDS:
            continue
        with rasterio.open(path) as src:
            pixels = src.width * src.height
        if pixels > best_pixels:
            best, best_pixels = name, pixels
    return best or next(iter(paths))


def _ring_area(geom: Mapping[str, Any]) -> float:
    from shapely.geometry import shape

    return float(shape(geom).area)
