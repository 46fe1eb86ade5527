"""Mask stage: set cloudy pixels of the reflectance stack to NaN.

The cloud mask comes from the external inference service when one is
configured.  Otherwise, if the scene was downloaded with its SCL band,
the Sentinel-2 scene classes for cloud shadow, medium/high cloud
probability and thin cirrus are masked.  With neither, the stack passes
through unmasked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import rasterio
from rasterio.enums import Resampling
from rasterio.errors import RasterioError

from terrascan.analysis.raster_io import read_stack, write_stack
from terrascan.core.constants import SCL_CLOUD_CLASSES, STAGE_MASK
from terrascan.core.exceptions import StageError

if TYPE_CHECKING:
    from pathlib import Path

    from terrascan.services.inference import InferenceClient

logger = logging.getLogger("terrascan.activities.mask_clouds")

SOURCE_INFERENCE = "inference"
SOURCE_SCL = "scl"
SOURCE_NONE = "none"


@dataclass(frozen=True, slots=True)
class CloudMaskResult:
    """Outcome of the mask stage.

    Attributes:
        path: Masked reflectance stack.
        cloud_fraction: Fraction of pixels masked (0-1).
        source: Where the mask came from (``inference``, ``scl`` or ``none``).
    """

    path: Path
    cloud_fraction: float
    source: str


def scl_cloud_mask(scl: np.ndarray) -> np.ndarray:
    """Return ``True`` where the SCL class is a cloud class."""
    return np.isin(scl, sorted(SCL_CLOUD_CLASSES))


def mask_clouds(
    stack_path: Path,
    dest: Path,
    *,
    inference: InferenceClient | None = None,
    scl_path: Path | None = None,
) -> CloudMaskResult:
    """Mask clouds in *stack_path* and write the result to *dest*.

    Raises:
        InferenceError: If the inference service fails (retryable on
            transient failures).
        StageError: If the rasters cannot be read or written.
    """
    try:
        bands, profile = read_stack(stack_path)
        shape = (profile["height"], profile["width"])

        if inference is not None:
            stack = np.stack([np.nan_to_num(b, nan=0.0) for b in bands.values()])
            mask = inference.cloud_mask(stack.astype(np.float32))
            source = SOURCE_INFERENCE
        elif scl_path is not None:
            with rasterio.open(scl_path) as src:
                scl = src.read(1, out_shape=shape, resampling=Resampling.nearest)
            mask = scl_cloud_mask(scl)
            source = SOURCE_SCL
        else:
            mask = np.zeros(shape, dtype=bool)
            source = SOURCE_NONE

        masked = {}
        for name, band in bands.items():
            out = band.astype(np.float32, copy=True)
            out[mask] = np.nan
            masked[name] = out
        write_stack(dest, masked, profile)
    except RasterioError as exc:
        msg = f"raster I/O failed: {exc}"
        raise StageError(STAGE_MASK, msg) from exc

    cloud_fraction = float(mask.sum()) / mask.size if mask.size else 0.0
    if source == SOURCE_NONE:
        logger.warning(
            "mask_clouds skipped | stack=%s | reason=no inference service and no SCL band",
            stack_path.name,
        )
    else:
        logger.info(
            "mask_clouds completed | source=%s | cloud_fraction=%.3f",
            source,
            cloud_fraction,
        )
    return CloudMaskResult(path=dest, cloud_fraction=cloud_fraction, source=source)
