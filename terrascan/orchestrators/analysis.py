"""Durable Functions orchestrator for one analysis job.

``run_analysis`` records every job outcome itself (completed, failed or
cancelled).  If the activity raises anyway, for example because the
worker crashed, the orchestrator calls ``mark_job_failed`` so the job
never stays ``running``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Generator

    import azure.durable_functions as df

logger = logging.getLogger("terrascan.orchestrators.analysis")


def orchestrator_function(
    context: df.DurableOrchestrationContext,
) -> Generator[Any, Any, dict[str, Any]]:
    """Run one job and return its terminal record.

    Input (via ``context.get_input``):
        ``{"job_id": str, "correlation_id": str}``
    """
    payload: dict[str, Any] = context.get_input() or {}
    job_id = str(payload.get("job_id", ""))
    instance_id = context.instance_id

    if not context.is_replaying:
        logger.info("Analysis started | instance=%s | job=%s", instance_id, job_id)

    try:
        job = yield context.call_activity("run_analysis", payload)
    except Exception as exc:
        if not context.is_replaying:
            logger.exception(
                "step=run_analysis | instance=%s | job=%s | error=%s", instance_id, job_id, exc
            )
        job = yield context.call_activity(
            "mark_job_failed", {"job_id": job_id, "error": f"run_analysis failed: {exc}"}
        )

    job = job if isinstance(job, dict) else {"id": job_id, "status": "unknown"}
    if not context.is_replaying:
        logger.info(
            "Analysis finished | instance=%s | job=%s | status=%s",
            instance_id,
            job_id,
            job.get("status"),
        )
    return job
