"""Convert stage: masked reflectance stack → Cloud Optimized GeoTIFF."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rasterio.errors import RasterioError

from terrascan.analysis.raster_io import write_cog
from terrascan.core.constants import STAGE_CONVERT
from terrascan.core.exceptions import StageError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger("terrascan.activities.convert_cog")

DEFAULT_BLOCKSIZE = 512


def convert_to_cog(src: Path, dest: Path, *, blocksize: int = DEFAULT_BLOCKSIZE) -> Path:
    """Write *src* as a tiled, overviewed COG at *dest*.

    Raises:
        StageError: If GDAL cannot translate the raster (not retryable).
    """
    try:
        write_cog(src, dest, blocksize=blocksize)
    except RasterioError as exc:
        msg = f"COG conversion failed: {exc}"
        raise StageError(STAGE_CONVERT, msg) from exc

    logger.info(
        "convert_cog completed | src=%s | dst=%s | blocksize=%d | bytes=%d",
        src.name,
        dest.name,
        blocksize,
        dest.stat().st_size,
    )
    return dest
