"""Raster analysis.

- spectral: Spectral index engine (NDVI, NDWI, NDBI, NBR, NDMI, EVI, SAVI)
- change: Index-difference and change-vector detection with Otsu thresholds
- raster_io: Named band stacks, COG writing and mask vectorisation
"""

from terrascan.analysis.change import (
    ChangeDetectionError,
    ChangeMethod,
    ChangeResult,
    detect_change,
    otsu_threshold,
)
from terrascan.analysis.spectral import (
    SpectralIndex,
    SpectralIndexError,
    compute_index,
    compute_index_windowed,
    list_indices,
    preview_index,
)

__all__ = [
    "ChangeDetectionError",
    "ChangeMethod",
    "ChangeResult",
    "SpectralIndex",
    "SpectralIndexError",
    "compute_index",
    "compute_index_windowed",
    "detect_change",
    "list_indices",
    "otsu_threshold",
    "preview_index",
]
