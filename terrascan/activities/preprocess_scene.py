"""Preprocess one scene: download → correct → mask → convert → upload.

The stages share intermediate files in a temporary working directory,
so they run inside a single activity; each stage is retried on its own
through ``run_with_retry``.  The catalog record is advanced as the
stages complete:

    raw ──(correct)──► corrected ──(upload)──► ready

A terminal failure in any stage marks the scene ``failed`` with the
error message and the stage name.  It never raises to the caller: the
orchestrator fans this activity out over many scenes and one bad scene
must not abort the others.

Scenes that are already ``ready`` or ``failed`` are returned unchanged.
A ``corrected`` scene (left behind by an interrupted run) is processed
again from download, because intermediate files do not survive the run.
"""

from __future__ import annotations

import logging
import tempfile
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from terrascan.activities.convert_cog import convert_to_cog
from terrascan.activities.correct_atmosphere import correct_scene
from terrascan.activities.download_scene import download_scene
from terrascan.activities.mask_clouds import mask_clouds
from terrascan.activities.upload_scene import upload_scene
from terrascan.core.constants import (
    STAGE_CONVERT,
    STAGE_CORRECT,
    STAGE_DOWNLOAD,
    STAGE_MASK,
    STAGE_UPLOAD,
)
from terrascan.core.exceptions import PipelineError
from terrascan.core.retry import run_with_retry
from terrascan.models.metadata import ProcessingMetadata
from terrascan.models.payloads import PreprocessSceneOutput
from terrascan.models.scene import PreprocessingStatus
from terrascan.providers.factory import provider_from_payload

if TYPE_CHECKING:
    from collections.abc import Callable

    from terrascan.catalog.base import CatalogRepository
    from terrascan.core.config import PipelineConfig
    from terrascan.models.scene import ImageryScene
    from terrascan.providers.base import ImageryProvider
    from terrascan.services.inference import InferenceClient
    from terrascan.storage.base import RasterStorage

logger = logging.getLogger("terrascan.activities.preprocess_scene")

T = TypeVar("T")


def preprocess_scene(
    scene_id: str,
    *,
    catalog: CatalogRepository,
    storage: RasterStorage,
    config: PipelineConfig,
    provider: ImageryProvider | None = None,
    inference: InferenceClient | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> PreprocessSceneOutput:
    """Run every preprocessing stage for *scene_id*.

    Args:
        scene_id: Catalog id of the scene.
        catalog: Scene catalog.
        storage: Raster store for raw bands, the COG and its sidecar.
        config: Pipeline configuration (containers, retry policy,
            correction method, COG block size).
        provider: Adapter override; defaults to the scene's provider.
        inference: Cloud-mask service client (``None`` = SCL fallback).
        sleep: Backoff sleep (injected by tests).

    Returns:
        ``PreprocessSceneOutput`` describing the scene's final state.

    Raises:
        RecordNotFoundError: If *scene_id* is not in the catalog.
    """
    scene = catalog.get_scene(scene_id)
    if scene.status in (PreprocessingStatus.READY, PreprocessingStatus.FAILED):
        logger.info(
            "preprocess_scene skipped | scene=%s | status=%s", scene.scene_id, scene.status.value
        )
        return _output(scene, retries=0, duration=0.0)

    start = time.monotonic()
    retries = 0
    stage = STAGE_DOWNLOAD

    def attempt(label: str, operation: Callable[[], T]) -> T:
        nonlocal retries
        result, used = run_with_retry(
            operation,
            label=f"{label} {scene.scene_id}",
            max_retries=config.stage_max_retries,
            retry_base_seconds=config.retry_base_seconds,
            sleep=sleep,
        )
        retries += used
        return result

    logger.info(
        "preprocess_scene started | scene=%s | id=%s | status=%s",
        scene.scene_id,
        scene.id,
        scene.status.value,
    )

    try:
        if provider is None:
            provider = provider_from_payload(scene.provider)
        adapter = provider

        with tempfile.TemporaryDirectory(prefix="terrascan-") as tmp:
            workdir = Path(tmp)
            band_dir = workdir / "bands"
            band_dir.mkdir()

            stage = STAGE_DOWNLOAD
            band_paths = attempt(
                stage,
                lambda: download_scene(
                    scene,
                    adapter,
                    band_dir,
                    storage=storage,
                    raw_container=config.raw_container,
                ),
            )

            stage = STAGE_CORRECT
            corrected = attempt(
                stage,
                lambda: correct_scene(
                    band_paths,
                    workdir / "corrected.tif",
                    method=config.correction_method,
                    acquired_at=scene.acquired_at,
                ),
            )
            scene = _mark_corrected(catalog, scene.id)

            stage = STAGE_MASK
            masked = attempt(
                stage,
                lambda: mask_clouds(
                    corrected,
                    workdir / "masked.tif",
                    inference=inference,
                    scl_path=band_paths.get("scl"),
                ),
            )

            stage = STAGE_CONVERT
            cog = attempt(
                stage,
                lambda: convert_to_cog(
                    masked.path,
                    workdir / "scene.tif",
                    blocksize=config.cog_blocksize,
                ),
            )

            stage = STAGE_UPLOAD
            processing = ProcessingMetadata(
                correction_method=config.correction_method,
                cloud_mask_source=masked.source,
                cloud_fraction=masked.cloud_fraction,
                retries=retries,
                timestamp=datetime.now(UTC).isoformat(),
                duration_s=round(time.monotonic() - start, 3),
            )
            current = scene
            ref = attempt(
                stage,
                lambda: upload_scene(
                    current,
                    cog,
                    storage=storage,
                    container=config.cog_container,
                    processing=processing,
                ),
            )

        scene = _mark_ready(catalog, scene.id, ref.uri)
    except PipelineError as exc:
        logger.error(
            "preprocess_scene failed | scene=%s | stage=%s | retries=%d | error=%s",
            scene.scene_id,
            stage,
            retries,
            exc,
        )
        scene = _mark_failed(catalog, scene.id, str(exc), stage)
    except Exception as exc:
        logger.exception(
            "preprocess_scene failed unexpectedly | scene=%s | stage=%s", scene.scene_id, stage
        )
        scene = _mark_failed(catalog, scene.id, f"{type(exc).__name__}: {exc}", stage)

    duration = time.monotonic() - start
    if scene.is_ready:
        logger.info(
            "preprocess_scene completed | scene=%s | location=%s | retries=%d | duration=%.1fs",
            scene.scene_id,
            scene.storage_location,
            retries,
            duration,
        )
    return _output(scene, retries=retries, duration=duration)


# The status writers below decide against the stored record, not the copy
# read at entry: overlapping ingestions may run this activity for the same
# scene at once, and whichever worker gets there first wins each step.


def _mark_corrected(catalog: CatalogRepository, scene_id: str) -> ImageryScene:
    def mutate(current: ImageryScene) -> ImageryScene:
        if current.status is not PreprocessingStatus.RAW:
            return current
        return current.advance_to(PreprocessingStatus.CORRECTED)

    return catalog.update_scene(scene_id, mutate)


def _mark_ready(catalog: CatalogRepository, scene_id: str, location: str) -> ImageryScene:
    def mutate(current: ImageryScene) -> ImageryScene:
        if current.status in (PreprocessingStatus.READY, PreprocessingStatus.FAILED):
            return current
        return current.advance_to(PreprocessingStatus.READY, storage_location=location)

    scene = catalog.update_scene(scene_id, mutate)
    if scene.status is PreprocessingStatus.FAILED:
        logger.warning(
            "preprocess_scene result discarded | scene=%s | failed_stage=%s",
            scene.scene_id,
            scene.failed_stage,
        )
    return scene


def _mark_failed(
    catalog: CatalogRepository,
    scene_id: str,
    error: str,
    stage: str,
) -> ImageryScene:
    def mutate(current: ImageryScene) -> ImageryScene:
        # A concurrent run already produced a COG, or already failed it.
        if current.status in (PreprocessingStatus.READY, PreprocessingStatus.FAILED):
            return current
        return current.mark_failed(error, stage=stage)

    return catalog.update_scene(scene_id, mutate)


def _output(scene: ImageryScene, *, retries: int, duration: float) -> PreprocessSceneOutput:
    return PreprocessSceneOutput(
        scene_id=scene.id,
        status=scene.status.value,
        storage_location=scene.storage_location,
        error=scene.error,
        failed_stage=scene.failed_stage,
        retries=retries,
        duration_seconds=round(duration, 3),
    )
