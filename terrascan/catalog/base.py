"""CatalogRepository abstract base class and catalog exceptions.

The catalog is the only state shared between scenes and jobs.  Every
write is a read-modify-write of a single record through
``update_scene`` / ``update_job``, which implementations make atomic
for that record (a lock in memory, ETag conditional writes in blob
storage).  Records are keyed by id, so concurrent jobs touching
disjoint records never contend.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING, Any

from terrascan.core.exceptions import PipelineError

if TYPE_CHECKING:
    from collections.abc import Callable

    from terrascan.models.feature import VectorFeature
    from terrascan.models.job import AnalysisJob, JobStatus
    from terrascan.models.scene import ImageryScene, PreprocessingStatus


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class CatalogError(PipelineError):
    """Catalog read or write failed."""

    default_stage = "catalog"
    default_code = "CATALOG_ERROR"


class RecordNotFoundError(CatalogError):
    """The requested scene, job or feature does not exist."""

    default_code = "RECORD_NOT_FOUND"

    def __init__(self, record: str, record_id: str) -> None:
        self.record = record
        self.record_id = record_id
        super().__init__(f"{record} not found: {record_id}", retryable=False)


class ConcurrencyError(CatalogError):
    """A conditional write kept losing to concurrent writers."""

    default_code = "CATALOG_CONFLICT"

    def __init__(self, record: str, record_id: str, attempts: int) -> None:
        self.record = record
        self.record_id = record_id
        super().__init__(
            f"{record} {record_id}: write conflict persisted after {attempts} attempts",
            retryable=True,
        )


# ---------------------------------------------------------------------------
# Repository interface
# ---------------------------------------------------------------------------


class CatalogRepository(abc.ABC):
    """Persistence boundary for scenes, jobs and vector features."""

    # -- scenes ---------------------------------------------------------

    @abc.abstractmethod
    def register_scene(self, scene: ImageryScene) -> tuple[ImageryScene, bool]:
        """Insert *scene* unless a record with the same id exists.

        Returns:
            ``(stored_record, created)``. When the scene was already
            registered the existing record is returned unchanged.
        """

    @abc.abstractmethod
    def get_scene(self, scene_id: str) -> ImageryScene:
        """Return the scene record.

        Raises:
            RecordNotFoundError: If no such scene exists.
        """

    @abc.abstractmethod
    def update_scene(
        self,
        scene_id: str,
        mutate: Callable[[ImageryScene], ImageryScene],
    ) -> ImageryScene:
        """Atomically replace the scene with ``mutate(current)``.

        *mutate* may be called more than once when a concurrent writer
        wins; it must be a pure function of its argument.
        """

    @abc.abstractmethod
    def list_scenes(self, *, status: PreprocessingStatus | None = None) -> list[ImageryScene]:
        """Return all scenes, optionally filtered by status."""

    # -- jobs -----------------------------------------------------------

    @abc.abstractmethod
    def add_job(self, job: AnalysisJob) -> None:
        """Insert a new job.

        Raises:
            CatalogError: If a job with the same id exists.
        """

    @abc.abstractmethod
    def get_job(self, job_id: str) -> AnalysisJob:
        """Return the job record.

        Raises:
            RecordNotFoundError: If no such job exists.
        """

    @abc.abstractmethod
    def update_job(
        self,
        job_id: str,
        mutate: Callable[[AnalysisJob], AnalysisJob],
    ) -> AnalysisJob:
        """Atomically replace the job with ``mutate(current)``."""

    @abc.abstractmethod
    def list_jobs(self, *, status: JobStatus | None = None) -> list[AnalysisJob]:
        """Return all jobs, optionally filtered by status."""

    # -- features -------------------------------------------------------

    @abc.abstractmethod
    def add_features(self, features: list[VectorFeature]) -> None:
        """Persist newly created features (never overwrites)."""

    @abc.abstractmethod
    def list_features(self, job_id: str) -> list[VectorFeature]:
        """Return the features produced by *job_id*."""

    # -- convenience ----------------------------------------------------

    def advance_scene(
        self,
        scene_id: str,
        status: PreprocessingStatus,
        **changes: Any,
    ) -> ImageryScene:
        """Move a scene along its state machine.

        Raises:
            StatusTransitionError: If the edge is not allowed.
        """
        return self.update_scene(scene_id, lambda s: s.advance_to(status, **changes))

    def transition_job(
        self,
        job_id: str,
        status: JobStatus,
        **changes: Any,
    ) -> AnalysisJob:
        """Move a job along its state machine.

        Raises:
            StatusTransitionError: If the edge is not allowed.
        """
        return self.update_job(job_id, lambda j: j.transition(status, **changes))
