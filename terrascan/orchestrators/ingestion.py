"""Durable Functions orchestrator for scene ingestion.

    search_scenes ─► preprocess_scene × N (bounded batches) ─► summary

Input is the ``IngestionInput`` built by ``core.ingress`` from
``POST /api/ingest``.  ``preprocess_scene`` never raises for a scene
failure (it records the failure on the scene), so a failing
``task_all`` batch means the activity host itself failed; every scene
of that batch is reported failed with the batch error and the
remaining batches still run.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypedDict

if TYPE_CHECKING:
    from collections.abc import Generator

    import azure.durable_functions as df

logger = logging.getLogger("terrascan.orchestrators.ingestion")

#: Max concurrent preprocess_scene activities per batch.
DEFAULT_PREPROCESS_BATCH_SIZE = 10


class IngestionSummary(TypedDict):
    """Output contract of the ingestion orchestrator."""

    status: str
    instance_id: str
    discovered: int
    registered: int
    ready: list[str]
    failed: list[dict[str, str]]
    ready_count: int
    failed_count: int
    batches: int
    duration_seconds: float


def orchestrator_function(
    context: df.DurableOrchestrationContext,
) -> Generator[Any, Any, IngestionSummary]:
    """Search for scenes and preprocess them in bounded parallel batches.

    Input (via ``context.get_input``):
        ``IngestionInput`` dict; optional ``preprocess_batch_size``.

    Returns:
        ``IngestionSummary`` with ready scene ids and failed scenes
        (``scene_id``, ``error``, ``failed_stage``).
    """
    payload: dict[str, Any] = context.get_input() or {}
    instance_id = context.instance_id
    correlation_id = str(payload.get("correlation_id", ""))
    start = context.current_utc_datetime

    if not context.is_replaying:
        logger.info(
            "Ingestion started | instance=%s | bbox=%s | dates=%s/%s | correlation_id=%s",
            instance_id,
            payload.get("bbox"),
            payload.get("date_start"),
            payload.get("date_end"),
            correlation_id,
        )

    # Step 1: search and register scenes
    found = yield context.call_activity("search_scenes", payload)
    found = found if isinstance(found, dict) else {}
    to_process: list[str] = [str(s) for s in found.get("to_process", [])]
    ready: list[str] = [str(s) for s in found.get("ready", [])]
    failed: list[dict[str, str]] = list(found.get("failed", []))

    if not context.is_replaying:
        logger.info(
            "step=search_scenes | instance=%s | discovered=%d | to_process=%d | "
            "already_ready=%d | already_failed=%d",
            instance_id,
            int(found.get("discovered", 0)),
            len(to_process),
            len(ready),
            len(failed),
        )

    # Step 2: fan-out preprocess_scene in bounded batches
    batch_size = _batch_size(payload)
    batches = 0
    for batch_start in range(0, len(to_process), batch_size):
        batch = to_process[batch_start : batch_start + batch_size]
        batches += 1
        tasks = [
            context.call_activity(
                "preprocess_scene",
                {
                    "scene_id": scene_id,
                    "provider_name": payload.get("provider_name", ""),
                    "provider_config": payload.get("provider_config"),
                    "correlation_id": correlation_id,
                },
            )
            for scene_id in batch
        ]

        try:
            results = yield context.task_all(tasks)
        except Exception as exc:
            if not context.is_replaying:
                logger.exception(
                    "step=preprocess_scene | instance=%s | batch_error=%s | batch_size=%d",
                    instance_id,
                    exc,
                    len(batch),
                )
            failed.extend(
                {"scene_id": scene_id, "error": str(exc), "failed_stage": "orchestration"}
                for scene_id in batch
            )
            continue

        results_list = results if isinstance(results, list) else [results]
        for scene_id, result in zip(batch, results_list, strict=False):
            if not isinstance(result, dict):
                failed.append(
                    {
                        "scene_id": scene_id,
                        "error": f"Unexpected non-dict result: {result!r}",
                        "failed_stage": "orchestration",
                    }
                )
            elif result.get("status") == "ready":
                ready.append(str(result.get("scene_id", scene_id)))
            else:
                failed.append(
                    {
                        "scene_id": str(result.get("scene_id", scene_id)),
                        "error": str(result.get("error", "")),
                        "failed_stage": str(result.get("failed_stage", "")),
                    }
                )

    duration = (context.current_utc_datetime - start).total_seconds()
    if not failed:
        status = "completed"
    elif ready:
        status = "partial_success"
    else:
        status = "failed"

    if not context.is_replaying:
        logger.info(
            "Ingestion completed | instance=%s | status=%s | ready=%d | failed=%d | "
            "batches=%d | duration=%.1fs",
            instance_id,
            status,
            len(ready),
            len(failed),
            batches,
            duration,
        )

    return IngestionSummary(
        status=status,
        instance_id=instance_id,
        discovered=int(found.get("discovered", 0)),
        registered=int(found.get("registered", 0)),
        ready=ready,
        failed=failed,
        ready_count=len(ready),
        failed_count=len(failed),
        batches=batches,
        duration_seconds=duration,
    )


def _batch_size(payload: dict[str, Any]) -> int:
    raw = payload.get("preprocess_batch_size", DEFAULT_PREPROCESS_BATCH_SIZE)
    try:
        size = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_PREPROCESS_BATCH_SIZE
    return size if size > 0 else DEFAULT_PREPROCESS_BATCH_SIZE
