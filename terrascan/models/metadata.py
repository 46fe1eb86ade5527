"""Pydantic documents persisted next to the data they describe.

- ``SceneMetadataRecord``: STAC-like sidecar JSON written beside each
  analysis-ready COG by the ``upload`` stage.
- ``AnalysisResultRecord``: per-job summary written beside the job's
  output rasters and feature collection.

Both carry a ``$schema`` version string so readers can detect drift.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from terrascan.models.job import AnalysisJob
    from terrascan.models.scene import ImageryScene

SCENE_SCHEMA_VERSION = "scene-metadata-v1"
ANALYSIS_SCHEMA_VERSION = "analysis-result-v1"


class BandMetadata(BaseModel):
    """One band of the stored COG.

    Attributes:
        name: Common band name (``"red"``, ``"nir"``, ...).
        index: 1-based band index in the COG.
        nodata: Nodata value, if any.
    """

    name: str
    index: int
    nodata: float | None = None


class ProcessingMetadata(BaseModel):
    """How the scene was turned into an analysis-ready COG.

    Attributes:
        correction_method: ``"scale"`` or ``"dos"``.
        cloud_mask_source: ``"inference"``, ``"scl"`` or ``"none"``.
        cloud_fraction: Fraction of pixels masked as cloud (0-1).
        retries: Total retry attempts across all stages.
        timestamp: Processing timestamp (ISO 8601).
        duration_s: Wall-clock duration of the preprocessing run.
    """

    correction_method: str = ""
    cloud_mask_source: str = "none"
    cloud_fraction: float = 0.0
    retries: int = 0
    timestamp: str = ""
    duration_s: float = 0.0


class SceneMetadataRecord(BaseModel):
    """Sidecar JSON for a ready scene."""

    schema_version: str = Field(default=SCENE_SCHEMA_VERSION, alias="$schema")
    id: str
    provider: str = ""
    scene_id: str = ""
    collection: str = ""
    acquired_at: str = ""
    cloud_cover_pct: float = 0.0
    bbox: list[float] = Field(default_factory=list)
    footprint: dict[str, Any] = Field(default_factory=dict)
    crs: str = ""
    resolution_m: float = 0.0
    bands: list[BandMetadata] = Field(default_factory=list)
    cog_path: str = ""
    processing: ProcessingMetadata = Field(default_factory=ProcessingMetadata)

    model_config = {"populate_by_name": True}

    @classmethod
    def from_scene(
        cls,
        scene: ImageryScene,
        *,
        cog_path: str,
        crs: str = "",
        bands: list[str] | None = None,
        processing: ProcessingMetadata | None = None,
    ) -> SceneMetadataRecord:
        """Build the sidecar for *scene* stored at *cog_path*."""
        band_names = bands if bands is not None else list(scene.bands)
        return cls(
            id=scene.id,
            provider=scene.provider,
            scene_id=scene.scene_id,
            collection=scene.collection,
            acquired_at=scene.acquired_at.isoformat(),
            cloud_cover_pct=scene.cloud_cover_pct,
            bbox=list(scene.bbox),
            footprint=dict(scene.footprint),
            crs=crs,
            resolution_m=scene.resolution_m,
            bands=[BandMetadata(name=name, index=i) for i, name in enumerate(band_names, 1)],
            cog_path=cog_path,
            processing=processing or ProcessingMetadata(timestamp=datetime.now(UTC).isoformat()),
        )

    def to_json(self, *, indent: int = 2) -> str:
        return self.model_dump_json(indent=indent, by_alias=True)

    def to_dict(self) -> dict[str, object]:
        return self.model_dump(by_alias=True)  # type: ignore[return-value]


class IndexStatistics(BaseModel):
    """Summary statistics over the finite pixels of an output raster."""

    min: float | None = None
    max: float | None = None
    mean: float | None = None
    valid_pixels: int = 0


class AnalysisResultRecord(BaseModel):
    """Per-job result summary.

    Attributes:
        job_id: The job this record describes.
        job_type: ``AnalysisJob.job_type`` value.
        scene_ids: Input scenes (ordered).
        parameters: Job parameters as submitted.
        outputs: Output name -> ``container/path`` URI.
        statistics: Output name -> summary statistics.
        change: Threshold / pixel counts for change detection jobs.
        feature_count: Number of ``VectorFeature`` records written.
        completed_at: Completion timestamp (ISO 8601).
    """

    schema_version: str = Field(default=ANALYSIS_SCHEMA_VERSION, alias="$schema")
    job_id: str
    job_type: str
    scene_ids: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, str] = Field(default_factory=dict)
    statistics: dict[str, IndexStatistics] = Field(default_factory=dict)
    change: dict[str, float] = Field(default_factory=dict)
    feature_count: int = 0
    completed_at: str = ""

    model_config = {"populate_by_name": True}

    @classmethod
    def for_job(cls, job: AnalysisJob, **fields: Any) -> AnalysisResultRecord:
        fields.setdefault("completed_at", datetime.now(UTC).isoformat())
        return cls(
            job_id=job.id,
            job_type=job.job_type.value,
            scene_ids=list(job.scene_ids),
            parameters=dict(job.parameters),
            **fields,
        )

    def to_json(self, *, indent: int = 2) -> str:
        return self.model_dump_json(indent=indent, by_alias=True)

    def to_dict(self) -> dict[str, object]:
        return self.model_dump(by_alias=True)  # type: ignore[return-value]
