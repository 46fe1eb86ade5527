"""Data models and schemas.

Defines the data structures used throughout the pipeline:
- ImageryScene: Catalog record for a discovered scene and its preprocessing state
- AnalysisJob: Requested analysis work and its lifecycle
- VectorFeature: Geometry produced by an analysis job
- Imagery models: Provider search filters, results and storage references
- Metadata records: Pydantic documents persisted beside COGs and job outputs
"""

from terrascan.models.feature import VectorFeature
from terrascan.models.imagery import (
    BlobReference,
    ImageryFilters,
    ModelValidationError,
    ProviderConfig,
    SearchResult,
)
from terrascan.models.job import AnalysisJob, JobStatus, JobType
from terrascan.models.scene import ImageryScene, PreprocessingStatus, scene_record_id

__all__ = [
    "AnalysisJob",
    "BlobReference",
    "ImageryFilters",
    "ImageryScene",
    "JobStatus",
    "JobType",
    "ModelValidationError",
    "PreprocessingStatus",
    "ProviderConfig",
    "SearchResult",
    "VectorFeature",
    "scene_record_id",
]
