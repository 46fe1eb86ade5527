"""In-process catalog for local runs and tests.

Records are held as serialised dicts behind a single ``threading.Lock``;
every read deserialises a fresh copy, so callers can never mutate
shared state by accident.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

from terrascan.catalog.base import CatalogError, CatalogRepository, RecordNotFoundError
from terrascan.models.feature import VectorFeature
from terrascan.models.job import AnalysisJob
from terrascan.models.scene import ImageryScene

if TYPE_CHECKING:
    from collections.abc import Callable

    from terrascan.models.job import JobStatus
    from terrascan.models.scene import PreprocessingStatus


class InMemoryCatalog(CatalogRepository):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._scenes: dict[str, dict[str, Any]] = {}
        self._jobs: dict[str, dict[str, Any]] = {}
        self._features: dict[str, list[dict[str, Any]]] = {}

    # -- scenes ---------------------------------------------------------

    def register_scene(self, scene: ImageryScene) -> tuple[ImageryScene, bool]:
        with self._lock:
            existing = self._scenes.get(scene.id)
            if existing is not None:
                return ImageryScene.from_dict(existing), False
            self._scenes[scene.id] = scene.to_dict()
            return ImageryScene.from_dict(self._scenes[scene.id]), True

    def get_scene(self, scene_id: str) -> ImageryScene:
        with self._lock:
            data = self._scenes.get(scene_id)
        if data is None:
            raise RecordNotFoundError("scene", scene_id)
        return ImageryScene.from_dict(data)

    def update_scene(
        self,
        scene_id: str,
        mutate: Callable[[ImageryScene], ImageryScene],
    ) -> ImageryScene:
        with self._lock:
            data = self._scenes.get(scene_id)
            if data is None:
                raise RecordNotFoundError("scene", scene_id)
            updated = mutate(ImageryScene.from_dict(data))
            self._scenes[scene_id] = updated.to_dict()
        return updated

    def list_scenes(self, *, status: PreprocessingStatus | None = None) -> list[ImageryScene]:
        with self._lock:
            records = [ImageryScene.from_dict(d) for d in self._scenes.values()]
        if status is None:
            return records
        return [s for s in records if s.status is status]

    # -- jobs -----------------------------------------------------------

    def add_job(self, job: AnalysisJob) -> None:
        with self._lock:
            if job.id in self._jobs:
                msg = f"job already exists: {job.id}"
                raise CatalogError(msg, code="RECORD_EXISTS")
            self._jobs[job.id] = job.to_dict()

    def get_job(self, job_id: str) -> AnalysisJob:
        with self._lock:
            data = self._jobs.get(job_id)
        if data is None:
            raise RecordNotFoundError("job", job_id)
        return AnalysisJob.from_dict(data)

    def update_job(
        self,
        job_id: str,
        mutate: Callable[[AnalysisJob], AnalysisJob],
    ) -> AnalysisJob:
        with self._lock:
            data = self._jobs.get(job_id)
            if data is None:
                raise RecordNotFoundError("job", job_id)
            updated = mutate(AnalysisJob.from_dict(data))
            self._jobs[job_id] = updated.to_dict()
        return updated

    def list_jobs(self, *, status: JobStatus | None = None) -> list[AnalysisJob]:
        with self._lock:
            records = [AnalysisJob.from_dict(d) for d in self._jobs.values()]
        if status is None:
            return records
        return [j for j in records if j.status is status]

    # -- features -------------------------------------------------------

    def add_features(self, features: list[VectorFeature]) -> None:
        with self._lock:
            for feature in features:
                self._features.setdefault(feature.job_id, []).append(feature.to_dict())

    def list_features(self, job_id: str) -> list[VectorFeature]:
        with self._lock:
            records = list(self._features.get(job_id, []))
        return [VectorFeature.from_dict(d) for d in records]
