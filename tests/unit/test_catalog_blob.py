"""Tests for the blob-backed catalog (mocked Azure SDK)."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from azure.core import MatchConditions
from azure.core.exceptions import (
    HttpResponseError,
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)

from terrascan.catalog.base import CatalogError, ConcurrencyError, RecordNotFoundError
from terrascan.catalog.blob import BlobCatalog
from terrascan.models.job import AnalysisJob, JobStatus, JobType
from terrascan.models.scene import PreprocessingStatus


def _downloader(data: dict, etag: str = '"0x1"') -> MagicMock:
    downloader = MagicMock()
    downloader.readall.return_value = json.dumps(data).encode()
    downloader.properties.etag = etag
    return downloader


@pytest.fixture()
def blob() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def container(blob: MagicMock) -> MagicMock:
    container = MagicMock()
    container.get_blob_client.return_value = blob
    return container


@pytest.fixture()
def blob_catalog(container: MagicMock) -> BlobCatalog:
    service = MagicMock()
    service.get_container_client.return_value = container
    return BlobCatalog(service, container="catalog", max_attempts=3)


class TestRegisterScene:
    def test_new_scene_uses_create_only_write(
        self, blob_catalog: BlobCatalog, container: MagicMock, blob: MagicMock, make_scene
    ) -> None:
        scene = make_scene()
        stored, created = blob_catalog.register_scene(scene)
        assert created
        assert stored == scene
        container.get_blob_client.assert_called_with(f"scenes/{scene.id}.json")
        assert blob.upload_blob.call_args.kwargs["overwrite"] is False

    def test_existing_scene_is_returned(
        self, blob_catalog: BlobCatalog, blob: MagicMock, make_scene
    ) -> None:
        existing = make_scene().advance_to(PreprocessingStatus.CORRECTED)
        blob.upload_blob.side_effect = ResourceExistsError("exists")
        blob.download_blob.return_value = _downloader(existing.to_dict())
        stored, created = blob_catalog.register_scene(make_scene())
        assert not created
        assert stored.status is PreprocessingStatus.CORRECTED

    def test_transport_failure_is_retryable(
        self, blob_catalog: BlobCatalog, blob: MagicMock, make_scene
    ) -> None:
        blob.upload_blob.side_effect = HttpResponseError("throttled")
        with pytest.raises(CatalogError) as exc_info:
            blob_catalog.register_scene(make_scene())
        assert exc_info.value.retryable


class TestRead:
    def test_missing_job(self, blob_catalog: BlobCatalog, blob: MagicMock) -> None:
        blob.download_blob.side_effect = ResourceNotFoundError("missing")
        with pytest.raises(RecordNotFoundError, match="job not found: j1"):
            blob_catalog.get_job("j1")

    def test_get_scene(self, blob_catalog: BlobCatalog, blob: MagicMock, make_scene) -> None:
        scene = make_scene()
        blob.download_blob.return_value = _downloader(scene.to_dict())
        assert blob_catalog.get_scene(scene.id) == scene


class TestOptimisticUpdate:
    def test_write_is_conditional_on_etag(self, blob_catalog: BlobCatalog, blob: MagicMock) -> None:
        job = AnalysisJob.new(JobType.SPECTRAL_INDEX, ["s1"])
        blob.download_blob.return_value = _downloader(job.to_dict(), etag='"0xABC"')
        updated = blob_catalog.transition_job(job.id, JobStatus.RUNNING)
        assert updated.status is JobStatus.RUNNING
        kwargs = blob.upload_blob.call_args.kwargs
        assert kwargs["etag"] == '"0xABC"'
        assert kwargs["match_condition"] is MatchConditions.IfNotModified
        assert kwargs["overwrite"] is True

    def test_conflict_rereads_and_retries(self, blob_catalog: BlobCatalog, blob: MagicMock) -> None:
        job = AnalysisJob.new(JobType.SPECTRAL_INDEX, ["s1"])
        cancelled_meanwhile = job.with_cancel_requested()
        blob.download_blob.side_effect = [
            _downloader(job.to_dict(), etag='"1"'),
            _downloader(cancelled_meanwhile.to_dict(), etag='"2"'),
        ]
        blob.upload_blob.side_effect = [ResourceModifiedError("412"), None]

        updated = blob_catalog.transition_job(job.id, JobStatus.RUNNING)

        assert updated.cancel_requested
        assert blob.upload_blob.call_count == 2
        assert blob.upload_blob.call_args.kwargs["etag"] == '"2"'

    def test_persistent_conflict_raises(self, blob_catalog: BlobCatalog, blob: MagicMock) -> None:
        job = AnalysisJob.new(JobType.SPECTRAL_INDEX, ["s1"])
        blob.download_blob.side_effect = lambda: _downloader(job.to_dict())
        blob.upload_blob.side_effect = ResourceModifiedError("412")
        with pytest.raises(ConcurrencyError) as exc_info:
            blob_catalog.transition_job(job.id, JobStatus.RUNNING)
        assert exc_info.value.retryable
        assert blob.upload_blob.call_count == 3

    def test_illegal_transition_does_not_write(
        self, blob_catalog: BlobCatalog, blob: MagicMock
    ) -> None:
        job = AnalysisJob.new(JobType.SPECTRAL_INDEX, ["s1"])
        blob.download_blob.return_value = _downloader(job.to_dict())
        with pytest.raises(Exception, match="pending -> completed"):
            blob_catalog.transition_job(job.id, JobStatus.COMPLETED)
        blob.upload_blob.assert_not_called()


class TestListing:
    def test_list_jobs_filters_status(
        self, blob_catalog: BlobCatalog, container: MagicMock, blob: MagicMock
    ) -> None:
        pending = AnalysisJob.new(JobType.SPECTRAL_INDEX, ["s1"])
        running = AnalysisJob.new(JobType.SPECTRAL_INDEX, ["s1"]).transition(JobStatus.RUNNING)
        listed = [MagicMock(), MagicMock()]
        listed[0].name = f"jobs/{pending.id}.json"
        listed[1].name = f"jobs/{running.id}.json"
        container.list_blobs.return_value = listed
        blob.download_blob.side_effect = [
            _downloader(pending.to_dict()),
            _downloader(running.to_dict()),
        ]

        jobs = blob_catalog.list_jobs(status=JobStatus.RUNNING)

        container.list_blobs.assert_called_once_with(name_starts_with="jobs/")
        assert [j.id for j in jobs] == [running.id]

    def test_ensure_container_tolerates_existing(
        self, blob_catalog: BlobCatalog, container: MagicMock
    ) -> None:
        container.create_container.side_effect = ResourceExistsError("exists")
        blob_catalog.ensure_container()
