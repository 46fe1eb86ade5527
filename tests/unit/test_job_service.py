"""Tests for job submission, lifecycle and cancellation."""

from __future__ import annotations

import pytest

from terrascan.catalog.memory import InMemoryCatalog
from terrascan.core.exceptions import StatusTransitionError
from terrascan.jobs.service import (
    JobCancelledError,
    JobError,
    JobService,
    parse_job_type,
    validate_parameters,
)
from terrascan.models.job import JobStatus, JobType
from terrascan.models.scene import PreprocessingStatus


@pytest.fixture()
def service(catalog: InMemoryCatalog) -> JobService:
    return JobService(catalog)


@pytest.fixture()
def ready_ids(catalog: InMemoryCatalog, make_scene) -> list[str]:
    ids = []
    for name in ("before", "after"):
        scene, _ = catalog.register_scene(
            make_scene(name, status=PreprocessingStatus.READY, storage_location=f"c/{name}.tif")
        )
        ids.append(scene.id)
    return ids


class TestParameters:
    def test_job_type_case_insensitive(self) -> None:
        assert parse_job_type(" Change_Detection ") is JobType.CHANGE_DETECTION

    def test_unknown_job_type(self) -> None:
        with pytest.raises(JobError) as exc_info:
            parse_job_type("segmentation")
        assert exc_info.value.code == "UNKNOWN_JOB_TYPE"

    def test_index_defaults_to_ndvi(self) -> None:
        assert validate_parameters(JobType.SPECTRAL_INDEX, {}) == {"index": "ndvi"}

    def test_change_defaults(self) -> None:
        params = validate_parameters(JobType.CHANGE_DETECTION, {"threshold": 1})
        assert params == {"index": "ndvi", "method": "difference", "threshold": 1.0}

    @pytest.mark.parametrize(
        "params",
        [{"index": "magic"}, {"method": "pca"}, {"threshold": "high"}, {"threshold": True}],
    )
    def test_invalid_change_parameters(self, params: dict) -> None:
        with pytest.raises(JobError) as exc_info:
            validate_parameters(JobType.CHANGE_DETECTION, params)
        assert exc_info.value.code == "INVALID_PARAMETERS"

    def test_inference_jobs_keep_parameters(self) -> None:
        assert validate_parameters(JobType.CLASSIFICATION, {"model": "lc-v2"}) == {
            "model": "lc-v2"
        }


class TestSubmit:
    def test_pending_job_persisted(self, service: JobService, ready_ids: list[str]) -> None:
        job = service.submit("spectral_index", ready_ids[:1], owner="analyst")
        assert job.status is JobStatus.PENDING
        assert job.parameters == {"index": "ndvi"}
        assert service.get(job.id) == job

    def test_no_scenes(self, service: JobService) -> None:
        with pytest.raises(JobError) as exc_info:
            service.submit("spectral_index", [])
        assert exc_info.value.code == "NO_SCENES"

    def test_change_detection_needs_two(self, service: JobService, ready_ids: list[str]) -> None:
        with pytest.raises(JobError) as exc_info:
            service.submit("change_detection", ready_ids[:1])
        assert exc_info.value.code == "INVALID_SCENES"

    def test_unknown_scene(self, service: JobService) -> None:
        with pytest.raises(JobError) as exc_info:
            service.submit("spectral_index", ["nope"])
        assert exc_info.value.code == "SCENE_NOT_FOUND"

    def test_scene_not_ready(
        self, service: JobService, catalog: InMemoryCatalog, make_scene
    ) -> None:
        scene, _ = catalog.register_scene(make_scene("raw"))
        with pytest.raises(JobError) as exc_info:
            service.submit("spectral_index", [scene.id])
        assert exc_info.value.code == "SCENE_NOT_READY"
        assert not exc_info.value.retryable
        assert service.list_jobs() == []


class TestLifecycle:
    def test_start_complete(self, service: JobService, ready_ids: list[str]) -> None:
        job = service.submit("spectral_index", ready_ids[:1])
        assert service.start(job.id).status is JobStatus.RUNNING
        done = service.complete(job.id, {"outputs": {}})
        assert done.status is JobStatus.COMPLETED
        assert done.result == {"outputs": {}}

    def test_start_rechecks_scenes(
        self, service: JobService, catalog: InMemoryCatalog, ready_ids: list[str]
    ) -> None:
        job = service.submit("spectral_index", ready_ids[:1])
        catalog.update_scene(ready_ids[0], lambda s: s.mark_failed("disk", stage="upload"))
        with pytest.raises(JobError):
            service.start(job.id)
        assert service.get(job.id).status is JobStatus.PENDING

    def test_start_twice(self, service: JobService, ready_ids: list[str]) -> None:
        job = service.submit("spectral_index", ready_ids[:1])
        service.start(job.id)
        with pytest.raises(StatusTransitionError):
            service.start(job.id)

    def test_fail_is_idempotent_on_terminal(
        self, service: JobService, ready_ids: list[str]
    ) -> None:
        job = service.submit("spectral_index", ready_ids[:1])
        service.start(job.id)
        service.complete(job.id, {})
        assert service.fail(job.id, "late").status is JobStatus.COMPLETED

    def test_list_by_status(self, service: JobService, ready_ids: list[str]) -> None:
        a = service.submit("spectral_index", ready_ids[:1])
        service.submit("spectral_index", ready_ids[1:])
        service.start(a.id)
        assert [j.id for j in service.list_jobs(status=JobStatus.RUNNING)] == [a.id]


class TestCancellation:
    def test_pending_cancelled_immediately(
        self, service: JobService, ready_ids: list[str]
    ) -> None:
        job = service.submit("spectral_index", ready_ids[:1])
        assert service.cancel(job.id).status is JobStatus.CANCELLED

    def test_running_gets_flag(self, service: JobService, ready_ids: list[str]) -> None:
        job = service.submit("spectral_index", ready_ids[:1])
        service.start(job.id)
        token = service.token(job.id)
        assert not token.cancelled

        requested = service.cancel(job.id)

        assert requested.status is JobStatus.RUNNING
        assert token.cancelled
        with pytest.raises(JobCancelledError, match="at after_load"):
            token.raise_if_cancelled("after_load")
        assert service.mark_cancelled(job.id).status is JobStatus.CANCELLED

    def test_terminal_job_unchanged(self, service: JobService, ready_ids: list[str]) -> None:
        job = service.submit("spectral_index", ready_ids[:1])
        service.start(job.id)
        service.fail(job.id, "boom")
        cancelled = service.cancel(job.id)
        assert cancelled.status is JobStatus.FAILED
        assert not cancelled.cancel_requested
