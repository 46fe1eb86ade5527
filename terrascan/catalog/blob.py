"""Blob-backed catalog: one JSON document per record.

Layout inside the catalog container::

    scenes/{scene_id}.json
    jobs/{job_id}.json
    features/{job_id}/{feature_id}.json

Updates are optimistic: read the document and its ETag, apply the
mutation, and write back with ``match_condition=IfNotModified``.  On a
412 the cycle repeats up to ``max_attempts`` times before raising
``ConcurrencyError``.  Inserts use ``overwrite=False`` so two searches
racing to register the same scene cannot clobber each other.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from azure.core import MatchConditions
from azure.core.exceptions import (
    AzureError,
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)

from terrascan.catalog.base import (
    CatalogError,
    CatalogRepository,
    ConcurrencyError,
    RecordNotFoundError,
)
from terrascan.core.constants import DEFAULT_CATALOG_CONTAINER
from terrascan.models.feature import VectorFeature
from terrascan.models.job import AnalysisJob
from terrascan.models.scene import ImageryScene

if TYPE_CHECKING:
    from collections.abc import Callable

    from azure.storage.blob import BlobServiceClient

    from terrascan.models.job import JobStatus
    from terrascan.models.scene import PreprocessingStatus

logger = logging.getLogger("terrascan.catalog.blob")

SCENES_PREFIX = "scenes"
JOBS_PREFIX = "jobs"
FEATURES_PREFIX = "features"

DEFAULT_MAX_ATTEMPTS = 5

_R = TypeVar("_R", ImageryScene, AnalysisJob)


class BlobCatalog(CatalogRepository):
    """Catalog stored as JSON blobs with ETag optimistic concurrency."""

    def __init__(
        self,
        blob_service_client: BlobServiceClient,
        *,
        container: str = DEFAULT_CATALOG_CONTAINER,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self._container = blob_service_client.get_container_client(container)
        self._max_attempts = max_attempts

    def ensure_container(self) -> None:
        """Create the catalog container if it does not exist."""
        try:
            self._container.create_container()
        except ResourceExistsError:
            pass

    # -- scenes ---------------------------------------------------------

    def register_scene(self, scene: ImageryScene) -> tuple[ImageryScene, bool]:
        path = _scene_path(scene.id)
        try:
            self._insert(path, scene.to_dict())
        except ResourceExistsError:
            existing, _etag = self._read(path, "scene", scene.id)
            return ImageryScene.from_dict(existing), False
        return scene, True

    def get_scene(self, scene_id: str) -> ImageryScene:
        data, _etag = self._read(_scene_path(scene_id), "scene", scene_id)
        return ImageryScene.from_dict(data)

    def update_scene(
        self,
        scene_id: str,
        mutate: Callable[[ImageryScene], ImageryScene],
    ) -> ImageryScene:
        return self._update(
            _scene_path(scene_id), "scene", scene_id, ImageryScene.from_dict, mutate
        )

    def list_scenes(self, *, status: PreprocessingStatus | None = None) -> list[ImageryScene]:
        records = [ImageryScene.from_dict(d) for d in self._list(f"{SCENES_PREFIX}/")]
        if status is None:
            return records
        return [s for s in records if s.status is status]

    # -- jobs -----------------------------------------------------------

    def add_job(self, job: AnalysisJob) -> None:
        try:
            self._insert(_job_path(job.id), job.to_dict())
        except ResourceExistsError as exc:
            msg = f"job already exists: {job.id}"
            raise CatalogError(msg, code="RECORD_EXISTS") from exc

    def get_job(self, job_id: str) -> AnalysisJob:
        data, _etag = self._read(_job_path(job_id), "job", job_id)
        return AnalysisJob.from_dict(data)

    def update_job(
        self,
        job_id: str,
        mutate: Callable[[AnalysisJob], AnalysisJob],
    ) -> AnalysisJob:
        return self._update(_job_path(job_id), "job", job_id, AnalysisJob.from_dict, mutate)

    def list_jobs(self, *, status: JobStatus | None = None) -> list[AnalysisJob]:
        records = [AnalysisJob.from_dict(d) for d in self._list(f"{JOBS_PREFIX}/")]
        if status is None:
            return records
        return [j for j in records if j.status is status]

    # -- features -------------------------------------------------------

    def add_features(self, features: list[VectorFeature]) -> None:
        for feature in features:
            try:
                self._insert(_feature_path(feature.job_id, feature.id), feature.to_dict())
            except ResourceExistsError as exc:
                msg = f"feature already exists: {feature.id}"
                raise CatalogError(msg, code="RECORD_EXISTS") from exc

    def list_features(self, job_id: str) -> list[VectorFeature]:
        return [VectorFeature.from_dict(d) for d in self._list(f"{FEATURES_PREFIX}/{job_id}/")]

    # -- blob plumbing --------------------------------------------------

    def _insert(self, path: str, data: dict[str, Any]) -> None:
        """Create *path*; raises ``ResourceExistsError`` if it exists."""
        try:
            self._container.get_blob_client(path).upload_blob(
                _encode(data), overwrite=False
            )
        except ResourceExistsError:
            raise
        except AzureError as exc:
            msg = f"Catalog write failed for {path}: {exc}"
            raise CatalogError(msg, retryable=True) from exc

    def _read(self, path: str, record: str, record_id: str) -> tuple[dict[str, Any], str]:
        try:
            downloader = self._container.get_blob_client(path).download_blob()
            payload = downloader.readall()
        except ResourceNotFoundError as exc:
            raise RecordNotFoundError(record, record_id) from exc
        except AzureError as exc:
            msg = f"Catalog read failed for {path}: {exc}"
            raise CatalogError(msg, retryable=True) from exc
        return json.loads(payload), str(downloader.properties.etag)

    def _update(
        self,
        path: str,
        record: str,
        record_id: str,
        parse: Callable[[dict[str, Any]], _R],
        mutate: Callable[[_R], _R],
    ) -> _R:
        blob = self._container.get_blob_client(path)
        for attempt in range(1, self._max_attempts + 1):
            data, etag = self._read(path, record, record_id)
            updated = mutate(parse(data))
            try:
                blob.upload_blob(
                    _encode(updated.to_dict()),
                    overwrite=True,
                    etag=etag,
                    match_condition=MatchConditions.IfNotModified,
                )
            except ResourceModifiedError:
                logger.warning(
                    "Catalog write conflict | record=%s | id=%s | attempt=%d/%d",
                    record,
                    record_id,
                    attempt,
                    self._max_attempts,
                )
                continue
            except AzureError as exc:
                msg = f"Catalog write failed for {path}: {exc}"
                raise CatalogError(msg, retryable=True) from exc
            return updated
        raise ConcurrencyError(record, record_id, self._max_attempts)

    def _list(self, prefix: str) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        try:
            for props in self._container.list_blobs(name_starts_with=prefix):
                payload = self._container.get_blob_client(props.name).download_blob().readall()
                records.append(json.loads(payload))
        except AzureError as exc:
            msg = f"Catalog listing failed for {prefix}: {exc}"
            raise CatalogError(msg, retryable=True) from exc
        return records


def _scene_path(scene_id: str) -> str:
    return f"{SCENES_PREFIX}/{scene_id}.json"


def _job_path(job_id: str) -> str:
    return f"{JOBS_PREFIX}/{job_id}.json"


def _feature_path(job_id: str, feature_id: str) -> str:
    return f"{FEATURES_PREFIX}/{job_id}/{feature_id}.json"


def _encode(data: dict[str, Any]) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode("utf-8")
