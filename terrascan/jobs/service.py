"""Job lifecycle service.

``JobService`` is the only code that moves jobs along their state
machine.  Submission validates the job type, its parameters and that
every referenced scene is ``ready``; the check is repeated when the job
starts, since a scene can fail between submission and start.

Cancellation is cooperative:

- a ``pending`` job is cancelled immediately,
- a ``running`` job gets ``cancel_requested`` set; the worker observes
  it through a ``CancellationToken`` at its next checkpoint and records
  the job ``cancelled``,
- a terminal job is left unchanged.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from terrascan.analysis.change import ChangeMethod
from terrascan.analysis.spectral import SpectralIndexError, resolve_index
from terrascan.catalog.base import RecordNotFoundError
from terrascan.core.exceptions import PipelineError, ValidationError
from terrascan.models.job import AnalysisJob, JobStatus, JobType
from terrascan.models.scene import PreprocessingStatus

if TYPE_CHECKING:
    from terrascan.catalog.base import CatalogRepository

logger = logging.getLogger("terrascan.jobs.service")

DEFAULT_INDEX = "ndvi"


class JobError(ValidationError):
    """A job request is invalid or references scenes that are not ready."""

    default_stage = "job"
    default_code = "JOB_INVALID"


class JobCancelledError(PipelineError):
    """Raised at a checkpoint when the job's cancellation was requested."""

    default_stage = "job"
    default_code = "JOB_CANCELLED"

    def __init__(self, job_id: str, checkpoint: str = "") -> None:
        self.job_id = job_id
        self.checkpoint = checkpoint
        where = f" at {checkpoint}" if checkpoint else ""
        super().__init__(f"job {job_id} cancelled{where}", retryable=False)


class CancellationToken:
    """Reads a job's ``cancel_requested`` flag from the catalog on demand."""

    def __init__(self, catalog: CatalogRepository, job_id: str) -> None:
        self._catalog = catalog
        self._job_id = job_id

    @property
    def job_id(self) -> str:
        return self._job_id

    @property
    def cancelled(self) -> bool:
        return self._catalog.get_job(self._job_id).cancel_requested

    def raise_if_cancelled(self, checkpoint: str = "") -> None:
        """Raise ``JobCancelledError`` if cancellation has been requested."""
        if self.cancelled:
            logger.info("Cancellation observed | job=%s | checkpoint=%s", self._job_id, checkpoint)
            raise JobCancelledError(self._job_id, checkpoint)


# ---------------------------------------------------------------------------
# Parameter validation
# ---------------------------------------------------------------------------


def parse_job_type(value: str | JobType) -> JobType:
    if isinstance(value, JobType):
        return value
    try:
        return JobType(str(value).strip().lower())
    except ValueError as exc:
        known = ", ".join(t.value for t in JobType)
        msg = f"Unknown job type {value!r}; expected one of: {known}"
        raise JobError(msg, code="UNKNOWN_JOB_TYPE") from exc


def validate_parameters(job_type: JobType, parameters: dict[str, Any]) -> dict[str, Any]:
    """Return *parameters* normalised for *job_type*.

    Raises:
        JobError: On an unknown index or change method, or a
            non-numeric threshold.
    """
    params = dict(parameters)

    if job_type in (JobType.SPECTRAL_INDEX, JobType.CHANGE_DETECTION):
        try:
            params["index"] = resolve_index(params.get("index", DEFAULT_INDEX)).index.value
        except SpectralIndexError as exc:
            raise JobError(exc.message, code="INVALID_PARAMETERS") from exc

    if job_type is JobType.CHANGE_DETECTION:
        method = str(params.get("method", ChangeMethod.DIFFERENCE.value))
        if method not in {m.value for m in ChangeMethod}:
            msg = f"Unknown change method {method!r}"
            raise JobError(msg, code="INVALID_PARAMETERS")
        params["method"] = method

        threshold = params.get("threshold")
        if threshold is not None:
            if isinstance(threshold, bool) or not isinstance(threshold, int | float):
                msg = f"threshold must be a number, got {threshold!r}"
                raise JobError(msg, code="INVALID_PARAMETERS")
            params["threshold"] = float(threshold)

    return params


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class JobService:
    def __init__(self, catalog: CatalogRepository) -> None:
        self._catalog = catalog

    @property
    def catalog(self) -> CatalogRepository:
        return self._catalog

    def submit(
        self,
        job_type: str | JobType,
        scene_ids: list[str],
        *,
        owner: str = "",
        parameters: dict[str, Any] | None = None,
    ) -> AnalysisJob:
        """Validate and persist a new ``pending`` job.

        Raises:
            JobError: On an unknown type, invalid parameters, a wrong
                number of scenes, or a scene that is missing or not ready.
        """
        kind = parse_job_type(job_type)
        params = validate_parameters(kind, parameters or {})
        if not scene_ids:
            msg = "a job needs at least one scene"
            raise JobError(msg, code="NO_SCENES")
        if kind is JobType.CHANGE_DETECTION and len(scene_ids) != 2:
            msg = f"change detection needs exactly two scenes, got {len(scene_ids)}"
            raise JobError(msg, code="INVALID_SCENES")
        self._require_ready(scene_ids)

        job = AnalysisJob.new(kind, scene_ids, owner=owner, parameters=params)
        self._catalog.add_job(job)
        logger.info(
            "Job submitted | job=%s | type=%s | scenes=%s | owner=%s",
            job.id,
            kind.value,
            ",".join(scene_ids),
            owner,
        )
        return job

    def get(self, job_id: str) -> AnalysisJob:
        return self._catalog.get_job(job_id)

    def list_jobs(self, *, status: JobStatus | None = None) -> list[AnalysisJob]:
        return self._catalog.list_jobs(status=status)

    def token(self, job_id: str) -> CancellationToken:
        return CancellationToken(self._catalog, job_id)

    def start(self, job_id: str) -> AnalysisJob:
        """Move a pending job to ``running`` after re-checking its scenes.

        Raises:
            JobError: If a scene is no longer ready (the job is not moved).
            StatusTransitionError: If the job is not ``pending``.
        """
        job = self._catalog.get_job(job_id)
        self._require_ready(job.scene_ids)
        job = self._catalog.transition_job(job_id, JobStatus.RUNNING)
        logger.info("Job started | job=%s | type=%s", job.id, job.job_type.value)
        return job

    def complete(self, job_id: str, result: dict[str, Any]) -> AnalysisJob:
        job = self._catalog.transition_job(job_id, JobStatus.COMPLETED, result=result)
        logger.info("Job completed | job=%s", job_id)
        return job

    def fail(self, job_id: str, error: str) -> AnalysisJob:
        """Record the job ``failed``; a job already terminal is returned unchanged."""

        def mutate(job: AnalysisJob) -> AnalysisJob:
            if job.status.is_terminal:
                return job
            return job.transition(JobStatus.FAILED, error=error)

        job = self._catalog.update_job(job_id, mutate)
        if job.status is JobStatus.FAILED and job.error == error:
            logger.warning("Job failed | job=%s | error=%s", job_id, error)
        else:
            logger.warning(
                "Job already terminal, failure not recorded | job=%s | status=%s | error=%s",
                job_id,
                job.status.value,
                error,
            )
        return job

    def cancel(self, job_id: str) -> AnalysisJob:
        """Request cancellation (see module docstring for the rules)."""

        def mutate(job: AnalysisJob) -> AnalysisJob:
            if job.status is JobStatus.PENDING:
                return job.transition(JobStatus.CANCELLED)
            if job.status is JobStatus.RUNNING:
                return job.with_cancel_requested()
            return job

        job = self._catalog.update_job(job_id, mutate)
        logger.info(
            "Job cancel requested | job=%s | status=%s | cancel_requested=%s",
            job_id,
            job.status.value,
            job.cancel_requested,
        )
        return job

    def mark_cancelled(self, job_id: str) -> AnalysisJob:
        """Record a running job as ``cancelled`` once the worker has stopped."""

        def mutate(job: AnalysisJob) -> AnalysisJob:
            if job.status.is_terminal:
                return job
            return job.transition(JobStatus.CANCELLED)

        job = self._catalog.update_job(job_id, mutate)
        logger.info("Job cancelled | job=%s", job_id)
        return job

    # ------------------------------------------------------------------

    def _require_ready(self, scene_ids: list[str]) -> None:
        for scene_id in scene_ids:
            try:
                scene = self._catalog.get_scene(scene_id)
            except RecordNotFoundError as exc:
                msg = f"scene {scene_id} does not exist"
                raise JobError(msg, code="SCENE_NOT_FOUND") from exc
            if scene.status is not PreprocessingStatus.READY:
                msg = f"scene {scene_id} is {scene.status.value}, not ready"
                raise JobError(msg, code="SCENE_NOT_READY")
