"""Run analysis activity: execute one ``AnalysisJob`` end to end.

    start ─► load scenes ─► compute ─► persist outputs ─► complete

The job's ``CancellationToken`` is checked before loading, after
loading, after compute and before persisting; a cancellation observed
at any checkpoint records the job ``cancelled`` and nothing further is
written.  Any ``PipelineError`` (or unexpected exception) records the
job ``failed`` with the error message.  The activity itself only raises
when the catalog is unreachable.

Job types:

- ``spectral_index``: stream the index over each scene's COG.
- ``change_detection``: compare the two scenes (``before``, ``after``);
  write magnitude, mask and difference rasters and vectorise the change
  mask into features.
- ``classification`` / ``object_detection``: post each scene to the
  inference service and store the returned features.

Outputs land in the analysis container under ``jobs/{job-id}/`` together
with a ``result.json`` summary (``AnalysisResultRecord``).
"""

from __future__ import annotations

import json
import logging
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np

from terrascan.analysis.change import detect_change
from terrascan.analysis.raster_io import read_stack, vectorize_mask, write_stack
from terrascan.analysis.spectral import compute_index_windowed
from terrascan.core.exceptions import PipelineError, StatusTransitionError
from terrascan.core.retry import run_with_retry
from terrascan.jobs.service import JobCancelledError, JobError, JobService
from terrascan.models.feature import VectorFeature
from terrascan.models.imagery import BlobReference, ModelValidationError
from terrascan.models.job import JobType
from terrascan.models.metadata import AnalysisResultRecord, IndexStatistics
from terrascan.utils.blob_paths import (
    FEATURES_FILENAME,
    RESULT_FILENAME,
    build_job_output_path,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from terrascan.catalog.base import CatalogRepository
    from terrascan.core.config import PipelineConfig
    from terrascan.models.job import AnalysisJob
    from terrascan.services.inference import InferenceClient
    from terrascan.storage.base import RasterStorage

logger = logging.getLogger("terrascan.activities.run_analysis")

#: Upper bound on change polygons written per job.
MAX_CHANGE_FEATURES = 10_000

CHECKPOINT_BEFORE_LOAD = "before_load"
CHECKPOINT_AFTER_LOAD = "after_load"
CHECKPOINT_AFTER_COMPUTE = "after_compute"
CHECKPOINT_BEFORE_PERSIST = "before_persist"


@dataclass
class AnalysisOutcome:
    """What a job handler produced, before anything is persisted."""

    files: dict[str, Path] = field(default_factory=dict)
    statistics: dict[str, dict[str, Any]] = field(default_factory=dict)
    change: dict[str, float] = field(default_factory=dict)
    features: list[VectorFeature] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def execute_job(
    job_id: str,
    *,
    catalog: CatalogRepository,
    storage: RasterStorage,
    config: PipelineConfig,
    inference: InferenceClient | None = None,
) -> dict[str, Any]:
    """Run *job_id* to a terminal state and return the job record dict.

    Raises:
        RecordNotFoundError: If the job does not exist.
        CatalogError: If the catalog cannot record the outcome.
    """
    service = JobService(catalog)
    token = service.token(job_id)

    try:
        job = service.start(job_id)
    except JobError as exc:
        return service.fail(job_id, str(exc)).to_dict()
    except StatusTransitionError:
        job = service.get(job_id)
        logger.warning(
            "run_analysis skipped | job=%s | status=%s | reason=not pending",
            job_id,
            job.status.value,
        )
        return job.to_dict()

    start = time.monotonic()
    logger.info(
        "run_analysis started | job=%s | type=%s | scenes=%s",
        job.id,
        job.job_type.value,
        ",".join(job.scene_ids),
    )

    try:
        with tempfile.TemporaryDirectory(prefix="terrascan-job-") as tmp:
            workdir = Path(tmp)

            token.raise_if_cancelled(CHECKPOINT_BEFORE_LOAD)
            inputs = _load_scenes(job, catalog, storage, workdir)
            token.raise_if_cancelled(CHECKPOINT_AFTER_LOAD)

            handler = _HANDLERS[job.job_type]
            outcome = handler(job, inputs, workdir, inference=inference, config=config)
            token.raise_if_cancelled(CHECKPOINT_AFTER_COMPUTE)

            if job.job_type is JobType.CHANGE_DETECTION:
                outcome.features = _change_features(job, outcome)
            token.raise_if_cancelled(CHECKPOINT_BEFORE_PERSIST)

            result = _persist(job, outcome, catalog=catalog, storage=storage, config=config)

        job = service.complete(job_id, result)
    except JobCancelledError:
        job = service.mark_cancelled(job_id)
    except PipelineError as exc:
        job = service.fail(job_id, str(exc))
    except Exception as exc:
        logger.exception("run_analysis failed unexpectedly | job=%s", job_id)
        job = service.fail(job_id, f"{type(exc).__name__}: {exc}")

    logger.info(
        "run_analysis finished | job=%s | status=%s | duration=%.1fs",
        job_id,
        job.status.value,
        time.monotonic() - start,
    )
    return job.to_dict()


def mark_job_failed(job_id: str, error: str, *, catalog: CatalogRepository) -> dict[str, Any]:
    """Record *job_id* as failed (no-op when already terminal)."""
    return JobService(catalog).fail(job_id, error).to_dict()


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _load_scenes(
    job: AnalysisJob,
    catalog: CatalogRepository,
    storage: RasterStorage,
    workdir: Path,
) -> list[tuple[str, Path]]:
    """Download each scene's COG; return ``[(scene_id, local_path), ...]`` in job order."""
    inputs: list[tuple[str, Path]] = []
    for position, scene_id in enumerate(job.scene_ids):
        scene = catalog.get_scene(scene_id)
        if not scene.storage_location:
            msg = f"scene {scene_id} has no stored COG"
            raise JobError(msg, code="SCENE_NOT_STORED")
        ref = BlobReference.from_uri(scene.storage_location)
        local = storage.download_file(ref, workdir / f"scene-{position}.tif")
        inputs.append((scene_id, local))
    return inputs


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _run_spectral_index(
    job: AnalysisJob,
    inputs: list[tuple[str, Path]],
    workdir: Path,
    **_: Any,
) -> AnalysisOutcome:
    index = str(job.parameters.get("index", "ndvi"))
    outcome = AnalysisOutcome()
    for position, (scene_id, path) in enumerate(inputs):
        name = index if len(inputs) == 1 else f"{index}-{position}"
        dst = workdir / f"{name}.tif"
        stats = compute_index_windowed(path, dst, index)
        outcome.files[name] = dst
        outcome.statistics[name] = {**stats}
        logger.info(
            "Index computed | job=%s | scene=%s | index=%s | mean=%s",
            job.id,
            scene_id,
            index,
            stats["mean"],
        )
    return outcome


def _run_change_detection(
    job: AnalysisJob,
    inputs: list[tuple[str, Path]],
    workdir: Path,
    **_: Any,
) -> AnalysisOutcome:
    (_, before_path), (_, after_path) = inputs
    before, profile = read_stack(before_path)
    after, _after_profile = read_stack(after_path)

    threshold = job.parameters.get("threshold")
    result = detect_change(
        before,
        after,
        method=str(job.parameters.get("method", "difference")),
        index=str(job.parameters.get("index", "ndvi")),
        threshold=float(threshold) if threshold is not None else None,
    )

    outcome = AnalysisOutcome()
    outcome.files["magnitude"] = write_stack(
        workdir / "magnitude.tif", {"magnitude": result.magnitude}, profile
    )
    outcome.files["mask"] = write_stack(
        workdir / "mask.tif",
        {"change": result.mask.astype(np.uint8)},
        profile,
        dtype="uint8",
        nodata=None,
    )
    outcome.statistics["magnitude"] = _array_statistics(result.magnitude)
    if result.difference is not None:
        outcome.files["difference"] = write_stack(
            workdir / "difference.tif", {"difference": result.difference}, profile
        )
        outcome.statistics["difference"] = _array_statistics(result.difference)

    outcome.change = {
        "threshold": result.threshold,
        "changed_pixels": float(result.changed_pixels),
        "valid_pixels": float(result.valid_pixels),
        "changed_fraction": result.changed_fraction,
    }
    return outcome


def _run_inference(
    job: AnalysisJob,
    inputs: list[tuple[str, Path]],
    workdir: Path,
    *,
    inference: InferenceClient | None = None,
    config: PipelineConfig,
    **_: Any,
) -> AnalysisOutcome:
    if inference is None:
        msg = f"{job.job_type.value} needs an inference service (INFERENCE_URL is not set)"
        raise JobError(msg, code="INFERENCE_UNAVAILABLE")

    client = inference
    outcome = AnalysisOutcome()
    for scene_id, path in inputs:
        bands, profile = read_stack(path)
        stack = np.stack([np.nan_to_num(b, nan=0.0) for b in bands.values()]).astype(np.float32)
        call = client.classify if job.job_type is JobType.CLASSIFICATION else client.detect
        transform = tuple(profile["transform"])[:6]
        crs = profile["crs"].to_string() if profile["crs"] else ""

        raw_features, _retries = run_with_retry(
            lambda call=call, stack=stack, transform=transform, crs=crs: call(
                stack, transform=transform, crs=crs, parameters=job.parameters
            ),
            label=f"{job.job_type.value} {scene_id}",
            max_retries=config.stage_max_retries,
            retry_base_seconds=config.retry_base_seconds,
        )

        kept = 0
        for raw in raw_features:
            properties = dict(raw.get("properties") or {})
            properties["scene_id"] = scene_id
            try:
                feature = VectorFeature.new(job.id, raw.get("geometry") or {}, properties)
            except ModelValidationError as exc:
                logger.warning("Skipping invalid feature | job=%s | error=%s", job.id, exc)
                continue
            outcome.features.append(feature)
            kept += 1

        logger.info(
            "Inference features | job=%s | scene=%s | received=%d | kept=%d",
            job.id,
            scene_id,
            len(raw_features),
            kept,
        )
    return outcome


_HANDLERS: dict[JobType, Callable[..., AnalysisOutcome]] = {
    JobType.SPECTRAL_INDEX: _run_spectral_index,
    JobType.CHANGE_DETECTION: _run_change_detection,
    JobType.CLASSIFICATION: _run_inference,
    JobType.OBJECT_DETECTION: _run_inference,
}


# ---------------------------------------------------------------------------
# Persisting
# ---------------------------------------------------------------------------


def _change_features(job: AnalysisJob, outcome: AnalysisOutcome) -> list[VectorFeature]:
    """Vectorise the written change mask into features."""
    import rasterio

    min_pixels = int(job.parameters.get("min_pixels", 1))
    with rasterio.open(outcome.files["mask"]) as src:
        mask = src.read(1).astype(bool)
        profile = {"crs": src.crs, "transform": src.transform}

    features: list[VectorFeature] = []
    for geom in vectorize_mask(mask, profile, min_pixels=min_pixels, limit=MAX_CHANGE_FEATURES):
        try:
            features.append(
                VectorFeature.new(
                    job.id,
                    geom,
                    {"kind": "change", "method": job.parameters.get("method", "difference")},
                )
            )
        except ModelValidationError as exc:
            logger.warning("Skipping invalid change polygon | job=%s | error=%s", job.id, exc)
    return features


def _persist(
    job: AnalysisJob,
    outcome: AnalysisOutcome,
    *,
    catalog: CatalogRepository,
    storage: RasterStorage,
    config: PipelineConfig,
) -> dict[str, Any]:
    container = config.analysis_container
    outputs: dict[str, str] = {}

    for name, path in outcome.files.items():
        ref = storage.upload_file(
            container, build_job_output_path(job.id, f"{name}.tif"), path
        )
        outputs[name] = ref.uri

    if outcome.features:
        collection = {
            "type": "FeatureCollection",
            "features": [f.to_geojson() for f in outcome.features],
        }
        ref = storage.upload_bytes(
            container,
            build_job_output_path(job.id, FEATURES_FILENAME),
            json.dumps(collection).encode("utf-8"),
            content_type="application/geo+json",
        )
        outputs["features"] = ref.uri

    record = AnalysisResultRecord.for_job(
        job,
        outputs=outputs,
        statistics={k: IndexStatistics(**v) for k, v in outcome.statistics.items()},
        change=outcome.change,
        feature_count=len(outcome.features),
    )
    ref = storage.upload_bytes(
        container,
        build_job_output_path(job.id, RESULT_FILENAME),
        record.to_json().encode("utf-8"),
    )
    # Catalog rows last, so a failed upload leaves no features behind.
    if outcome.features:
        catalog.add_features(outcome.features)

    result = record.to_dict()
    result["result_uri"] = ref.uri
    logger.info(
        "Outputs persisted | job=%s | outputs=%d | features=%d | result=%s",
        job.id,
        len(outputs),
        len(outcome.features),
        ref.uri,
    )
    return result


def _array_statistics(values: np.ndarray) -> dict[str, Any]:
    finite = values[np.isfinite(values)]
    if finite.size == 0:
        return {"min": None, "max": None, "mean": None, "valid_pixels": 0}
    return {
        "min": float(finite.min()),
        "max": float(finite.max()),
        "mean": float(finite.mean(dtype=np.float64)),
        "valid_pixels": int(finite.size),
    }
