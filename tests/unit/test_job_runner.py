"""Tests for the local thread-pool job runner."""

from __future__ import annotations

import threading
import time

import pytest

from terrascan.catalog.memory import InMemoryCatalog
from terrascan.core.config import PipelineConfig
from terrascan.jobs import runner as runner_module
from terrascan.jobs.runner import LocalJobRunner
from terrascan.jobs.service import JobError
from terrascan.models.job import JobStatus
from terrascan.models.scene import PreprocessingStatus
from terrascan.storage.local import LocalRasterStorage

_PAYLOAD = {
    "bbox": [14.9, 45.1, 15.1, 45.2],
    "date_start": "2024-06-01",
    "date_end": "2024-06-30",
    "correlation_id": "corr-1",
}


@pytest.fixture()
def runner(catalog: InMemoryCatalog, storage: LocalRasterStorage, config: PipelineConfig):
    with LocalJobRunner(catalog, storage, config, max_workers=2) as runner:
        yield runner


class TestJobs:
    def test_submit_and_wait(self, runner: LocalJobRunner, add_ready_scene, reflectance) -> None:
        scene = add_ready_scene("scene", reflectance)

        job = runner.submit("spectral_index", [scene.id], parameters={"index": "ndvi"})
        final = runner.wait(job.id, timeout=60)

        assert final.status is JobStatus.COMPLETED
        assert "ndvi" in final.result["outputs"]

    def test_concurrent_jobs_independent(
        self, runner: LocalJobRunner, add_ready_scene, reflectance
    ) -> None:
        scene = add_ready_scene("scene", reflectance)
        good = runner.submit("spectral_index", [scene.id])
        bad = runner.submit("classification", [scene.id])

        runner.wait_all(timeout=60)

        assert runner.service.get(good.id).status is JobStatus.COMPLETED
        assert runner.service.get(bad.id).status is JobStatus.FAILED

    def test_start_returns_same_future_while_running(
        self,
        monkeypatch: pytest.MonkeyPatch,
        runner: LocalJobRunner,
        add_ready_scene,
        reflectance,
    ) -> None:
        release = threading.Event()

        def blocked(job_id, **kwargs):
            release.wait(timeout=30)
            return {}

        monkeypatch.setattr(runner_module, "execute_job", blocked)
        scene = add_ready_scene("scene", reflectance)
        job = runner.submit("spectral_index", [scene.id])

        assert runner.start(job.id) is runner.start(job.id)
        assert runner.active_jobs == [job.id]
        release.set()

    def test_finished_jobs_forgotten(
        self, runner: LocalJobRunner, add_ready_scene, reflectance
    ) -> None:
        scene = add_ready_scene("scene", reflectance)
        for _ in range(3):
            runner.submit("spectral_index", [scene.id])

        runner.wait_all(timeout=60)

        # Done-callbacks run just after waiters wake.
        deadline = time.monotonic() + 5
        while runner.active_jobs and time.monotonic() < deadline:
            time.sleep(0.01)
        assert runner.active_jobs == []

    def test_invalid_submission_not_scheduled(self, runner: LocalJobRunner) -> None:
        with pytest.raises(JobError):
            runner.submit("spectral_index", ["missing"])
        assert runner.service.list_jobs() == []

    def test_cancel_pending_job(self, runner: LocalJobRunner, add_ready_scene, reflectance) -> None:
        scene = add_ready_scene("scene", reflectance)
        job = runner.service.submit("spectral_index", [scene.id])

        runner.cancel(job.id)
        runner.start(job.id)

        assert runner.wait(job.id, timeout=60).status is JobStatus.CANCELLED

    def test_wait_without_future_reads_catalog(
        self, runner: LocalJobRunner, add_ready_scene, reflectance
    ) -> None:
        scene = add_ready_scene("scene", reflectance)
        job = runner.service.submit("spectral_index", [scene.id])
        assert runner.wait(job.id).status is JobStatus.PENDING


class TestIngest:
    def test_scenes_preprocessed(
        self, runner: LocalJobRunner, catalog: InMemoryCatalog, fake_provider
    ) -> None:
        outputs = runner.ingest(dict(_PAYLOAD), provider=fake_provider)

        assert [o["status"] for o in outputs] == ["ready"]
        (scene,) = catalog.list_scenes()
        assert scene.status is PreprocessingStatus.READY

    def test_second_ingest_skips_ready_scenes(self, runner: LocalJobRunner, fake_provider) -> None:
        runner.ingest(dict(_PAYLOAD), provider=fake_provider)
        assert runner.ingest(dict(_PAYLOAD), provider=fake_provider) == []
        assert fake_provider.download_calls == 1
