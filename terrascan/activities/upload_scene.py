"""Upload stage: store the COG and its sidecar metadata JSON.

Both objects go to the COG container at paths derived from the scene
(see ``utils.blob_paths``), so re-uploading a scene overwrites it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import rasterio
from rasterio.errors import RasterioError

from terrascan.analysis.raster_io import band_names
from terrascan.core.constants import DEFAULT_COG_CONTAINER, STAGE_UPLOAD
from terrascan.core.exceptions import StageError
from terrascan.models.metadata import ProcessingMetadata, SceneMetadataRecord
from terrascan.utils.blob_paths import build_cog_path, build_sidecar_path

if TYPE_CHECKING:
    from pathlib import Path

    from terrascan.models.imagery import BlobReference
    from terrascan.models.scene import ImageryScene
    from terrascan.storage.base import RasterStorage

logger = logging.getLogger("terrascan.activities.upload_scene")


def build_scene_metadata(
    scene: ImageryScene,
    cog_path: Path,
    *,
    cog_uri: str,
    processing: ProcessingMetadata | None = None,
) -> SceneMetadataRecord:
    """Describe the stored COG (CRS and band layout are read from the file)."""
    try:
        with rasterio.open(cog_path) as src:
            crs = src.crs.to_string() if src.crs else ""
            names = band_names(src)
    except RasterioError as exc:
        msg = f"cannot read COG for metadata: {exc}"
        raise StageError(STAGE_UPLOAD, msg) from exc

    return SceneMetadataRecord.from_scene(
        scene, cog_path=cog_uri, crs=crs, bands=names, processing=processing
    )


def upload_scene(
    scene: ImageryScene,
    cog_path: Path,
    *,
    storage: RasterStorage,
    container: str = DEFAULT_COG_CONTAINER,
    processing: ProcessingMetadata | None = None,
) -> BlobReference:
    """Upload the COG, then its sidecar; return the COG reference.

    Raises:
        StorageError: If either upload fails (retryable on transient errors).
        StageError: If the COG cannot be read for its metadata.
    """
    blob_path = build_cog_path(scene.provider, scene.scene_id, acquired_at=scene.acquired_at)
    ref = storage.upload_file(container, blob_path, cog_path, content_type="image/tiff")

    record = build_scene_metadata(scene, cog_path, cog_uri=ref.uri, processing=processing)
    storage.upload_bytes(
        container,
        build_sidecar_path(blob_path),
        record.to_json().encode("utf-8"),
        content_type="application/json",
    )

    logger.info(
        "upload_scene completed | scene=%s | cog=%s | bytes=%d",
        scene.scene_id,
        ref.uri,
        ref.size_bytes,
    )
    return ref
