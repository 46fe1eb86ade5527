"""In-process job runner for local development and tests.

Each submitted job runs as an independent task on a
``ThreadPoolExecutor``.  Jobs share nothing but the catalog, so any
number may run at once up to the pool size; cancellation goes through
``JobService.cancel`` and is observed by the running task at its next
checkpoint.

The runner can also drive a whole ingestion locally: one search, then
every scene preprocessed on the same pool.
"""

from __future__ import annotations

import functools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import TYPE_CHECKING, Any

from terrascan.activities.preprocess_scene import preprocess_scene
from terrascan.activities.run_analysis import execute_job
from terrascan.activities.search_scenes import search_scenes
from terrascan.jobs.service import JobService

if TYPE_CHECKING:
    from terrascan.catalog.base import CatalogRepository
    from terrascan.core.config import PipelineConfig
    from terrascan.models.job import AnalysisJob, JobType
    from terrascan.models.payloads import PreprocessSceneOutput
    from terrascan.providers.base import ImageryProvider
    from terrascan.services.inference import InferenceClient
    from terrascan.storage.base import RasterStorage

logger = logging.getLogger("terrascan.jobs.runner")


class LocalJobRunner:
    """Submit, run and cancel analysis jobs on a local thread pool.

    Usage::

        with LocalJobRunner(catalog, storage, config) as runner:
            job = runner.submit("spectral_index", [scene_id], parameters={"index": "ndvi"})
            final = runner.wait(job.id)
    """

    def __init__(
        self,
        catalog: CatalogRepository,
        storage: RasterStorage,
        config: PipelineConfig,
        *,
        inference: InferenceClient | None = None,
        max_workers: int | None = None,
    ) -> None:
        self._catalog = catalog
        self._storage = storage
        self._config = config
        self._inference = inference
        self._service = JobService(catalog)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or config.job_max_workers,
            thread_name_prefix="terrascan-job",
        )
        self._futures: dict[str, Future[dict[str, Any]]] = {}
        self._lock = threading.Lock()

    @property
    def service(self) -> JobService:
        return self._service

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def submit(
        self,
        job_type: str | JobType,
        scene_ids: list[str],
        *,
        owner: str = "",
        parameters: dict[str, Any] | None = None,
    ) -> AnalysisJob:
        """Validate and persist a job, then start it in the background."""
        job = self._service.submit(job_type, scene_ids, owner=owner, parameters=parameters)
        self.start(job.id)
        return job

    def start(self, job_id: str) -> Future[dict[str, Any]]:
        """Schedule an already-submitted job; return its future."""
        with self._lock:
            existing = self._futures.get(job_id)
            if existing is not None:
                return existing
            future = self._executor.submit(
                execute_job,
                job_id,
                catalog=self._catalog,
                storage=self._storage,
                config=self._config,
                inference=self._inference,
            )
            self._futures[job_id] = future
        # Registered outside the lock: an already-finished future runs the
        # callback in this thread.
        future.add_done_callback(functools.partial(self._forget, job_id))
        logger.info("Job scheduled | job=%s", job_id)
        return future

    def _forget(self, job_id: str, future: Future[dict[str, Any]]) -> None:
        with self._lock:
            if self._futures.get(job_id) is future:
                del self._futures[job_id]

    @property
    def active_jobs(self) -> list[str]:
        """Ids of jobs whose task has not finished yet."""
        with self._lock:
            return sorted(self._futures)

    def cancel(self, job_id: str) -> AnalysisJob:
        return self._service.cancel(job_id)

    def wait(self, job_id: str, timeout: float | None = None) -> AnalysisJob:
        """Block until the job's task finishes; return the stored job.

        Raises:
            TimeoutError: If *timeout* elapses first.
        """
        with self._lock:
            future = self._futures.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
        return self._service.get(job_id)

    def wait_all(self, timeout: float | None = None) -> None:
        with self._lock:
            futures = list(self._futures.values())
        wait_futures(futures, timeout=timeout)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(
        self,
        payload: dict[str, Any],
        *,
        provider: ImageryProvider | None = None,
    ) -> list[PreprocessSceneOutput]:
        """Search, then preprocess every scene needing it on the pool.

        Returns:
            One ``PreprocessSceneOutput`` per scene in ``to_process``.
        """
        found = search_scenes(payload, catalog=self._catalog, config=self._config, provider=provider)
        futures = [
            self._executor.submit(
                preprocess_scene,
                scene_id,
                catalog=self._catalog,
                storage=self._storage,
                config=self._config,
                provider=provider,
                inference=self._inference,
            )
            for scene_id in found["to_process"]
        ]
        outputs = [f.result() for f in futures]
        logger.info(
            "Local ingestion finished | processed=%d | ready=%d | already_ready=%d",
            len(outputs),
            sum(1 for o in outputs if o["status"] == "ready"),
            len(found["ready"]),
        )
        return outputs

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> LocalJobRunner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
