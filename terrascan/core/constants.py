"""Shared pipeline constants: single source of truth.

Centralises container names, stage names, and band aliases that are
used across activities, providers, storage, and the orchestrators.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Blob container names
# ---------------------------------------------------------------------------

DEFAULT_RAW_CONTAINER: str = "imagery-raw"
"""Blob container for downloaded, unprocessed band assets."""

DEFAULT_COG_CONTAINER: str = "imagery-cog"
"""Blob container for analysis-ready COGs and their sidecar metadata."""

DEFAULT_ANALYSIS_CONTAINER: str = "analysis-output"
"""Blob container for index rasters, change masks and job summaries."""

DEFAULT_CATALOG_CONTAINER: str = "catalog"
"""Blob container holding one JSON document per catalog record."""

# ---------------------------------------------------------------------------
# Preprocessing stages (in execution order)
# ---------------------------------------------------------------------------

STAGE_DOWNLOAD = "download"
STAGE_CORRECT = "correct"
STAGE_MASK = "mask"
STAGE_CONVERT = "convert"
STAGE_UPLOAD = "upload"

PREPROCESS_STAGES: tuple[str, ...] = (
    STAGE_DOWNLOAD,
    STAGE_CORRECT,
    STAGE_MASK,
    STAGE_CONVERT,
    STAGE_UPLOAD,
)

# ---------------------------------------------------------------------------
# Band naming
# ---------------------------------------------------------------------------

SENTINEL2_BAND_ASSETS: dict[str, str] = {
    "blue": "B02",
    "green": "B03",
    "red": "B04",
    "nir": "B08",
    "swir16": "B11",
    "swir22": "B12",
    "scl": "SCL",
}
"""Common band name → Sentinel-2 L2A STAC asset key."""

DEFAULT_BANDS: tuple[str, ...] = ("blue", "green", "red", "nir", "swir16", "swir22", "scl")

CLASSIFICATION_BANDS: frozenset[str] = frozenset({"scl"})
"""Bands that carry class codes rather than reflectance (never corrected)."""

SCL_CLOUD_CLASSES: frozenset[int] = frozenset({3, 8, 9, 10})
"""SCL classes treated as cloud: shadow, medium/high probability, cirrus."""
