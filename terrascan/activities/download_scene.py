"""Download stage: fetch a scene's band assets and archive them.

The provider adapter streams each band to a local file.  When a raster
store is given, every raw band is also archived to the raw container at
a deterministic path, so a re-run overwrites rather than duplicates.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from terrascan.core.constants import DEFAULT_BANDS, DEFAULT_RAW_CONTAINER, STAGE_DOWNLOAD
from terrascan.core.exceptions import StageError
from terrascan.utils.blob_paths import build_raw_band_path

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from terrascan.models.scene import ImageryScene
    from terrascan.providers.base import ImageryProvider
    from terrascan.storage.base import RasterStorage

logger = logging.getLogger("terrascan.activities.download_scene")


def select_bands(scene: ImageryScene, bands: Sequence[str] | None = None) -> list[str]:
    """Return the bands to fetch for *scene*.

    Defaults to every standard band the scene has an asset for.

    Raises:
        StageError: If no requested band is available.
    """
    wanted = list(bands) if bands is not None else list(DEFAULT_BANDS)
    if bands is None:
        wanted = [b for b in wanted if b in scene.asset_urls]
    if not wanted:
        msg = f"scene {scene.scene_id} exposes none of the bands {', '.join(DEFAULT_BANDS)}"
        raise StageError(STAGE_DOWNLOAD, msg)
    return wanted


def download_scene(
    scene: ImageryScene,
    provider: ImageryProvider,
    dest_dir: Path,
    *,
    bands: Sequence[str] | None = None,
    storage: RasterStorage | None = None,
    raw_container: str = DEFAULT_RAW_CONTAINER,
) -> dict[str, Path]:
    """Download band assets of *scene* into *dest_dir*.

    Returns:
        Band name → local GeoTIFF path.

    Raises:
        ProviderDownloadError: From the adapter (retryable on transient
            transport failures).
        StorageError: If archiving a raw band fails.
        StageError: If the scene has no usable bands.
    """
    selected = select_bands(scene, bands)
    start = time.monotonic()
    logger.info(
        "download_scene started | scene=%s | bands=%s | provider=%s",
        scene.scene_id,
        ",".join(selected),
        provider.name,
    )

    paths = provider.download(scene, selected, dest_dir)

    if storage is not None:
        for band, path in paths.items():
            blob_path = build_raw_band_path(
                scene.provider, scene.scene_id, band, acquired_at=scene.acquired_at
            )
            storage.upload_file(raw_container, blob_path, path)

    logger.info(
        "download_scene completed | scene=%s | bands=%d | archived=%s | duration=%.1fs",
        scene.scene_id,
        len(paths),
        storage is not None,
        time.monotonic() - start,
    )
    return paths
