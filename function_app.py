"""Azure Functions entry point: TerraScan imagery pipeline.

This module registers all Azure Functions (HTTP triggers, orchestrators,
activities) using the Python v2 programming model.

All business logic lives in the terrascan package. This file is purely
the wiring layer between Azure Functions bindings and application code.
"""

from __future__ import annotations

import functools
import json
import logging
from typing import Any

import azure.durable_functions as df
import azure.functions as func

from terrascan.catalog.base import RecordNotFoundError
from terrascan.core.config import PipelineConfig
from terrascan.core.exceptions import PipelineError
from terrascan.core.ingress import (
    build_ingestion_input,
    deserialize_activity_input,
    get_catalog,
    get_raster_storage,
)
from terrascan.models.payloads import (
    MarkJobFailedInput,
    PreprocessSceneInput,
    RunAnalysisInput,
    SearchScenesInput,
    SubmitJobInput,
    validate_payload,
)

app = func.FunctionApp()

logger = logging.getLogger("terrascan.function_app")

INGESTION_ORCHESTRATOR = "ingestion_orchestrator"
ANALYSIS_ORCHESTRATOR = "analysis_orchestrator"


@functools.cache
def _config() -> PipelineConfig:
    """Load configuration once per worker process."""
    return PipelineConfig.from_env()


def _json_response(body: object, status_code: int = 200) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(body), status_code=status_code, mimetype="application/json"
    )


def _error_response(exc: PipelineError, status_code: int) -> func.HttpResponse:
    return _json_response({"error": exc.to_error_dict()}, status_code)


def _request_json(req: func.HttpRequest) -> dict[str, Any] | None:
    try:
        body = req.get_json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


# ---------------------------------------------------------------------------
# HTTP: Ingestion
# ---------------------------------------------------------------------------


@app.function_name("ingest")
@app.route(route="ingest", methods=["POST"])
@app.durable_client_input(client_name="client")
async def ingest(
    req: func.HttpRequest,
    client: df.DurableOrchestrationClient,
) -> func.HttpResponse:
    """Start an ingestion run for a bbox / date range / cloud ceiling.

    Body: ``{"bbox": [...], "date_start": "...", "date_end": "...",
    "max_cloud_cover_pct": 20}``.  Returns the Durable Functions
    check-status response.
    """
    body = _request_json(req)
    if body is None:
        return _json_response({"error": "Request body must be a JSON object"}, 400)

    config = _config()
    try:
        orchestrator_input = build_ingestion_input(
            body,
            default_max_cloud_cover_pct=config.max_cloud_cover_pct,
            correlation_id=req.headers.get("x-correlation-id", ""),
        )
    except PipelineError as exc:
        return _error_response(exc, 400)

    client_input: dict[str, Any] = {
        **orchestrator_input,
        "preprocess_batch_size": config.preprocess_batch_size,
    }
    instance_id = await client.start_new(INGESTION_ORCHESTRATOR, client_input=client_input)

    logger.info(
        "Ingestion requested | instance_id=%s | bbox=%s | correlation_id=%s",
        instance_id,
        orchestrator_input["bbox"],
        orchestrator_input["correlation_id"],
    )
    return client.create_check_status_response(req, instance_id)


# ---------------------------------------------------------------------------
# HTTP: Jobs
# ---------------------------------------------------------------------------


@app.function_name("submit_job")
@app.route(route="jobs", methods=["POST"])
@app.durable_client_input(client_name="client")
async def submit_job(
    req: func.HttpRequest,
    client: df.DurableOrchestrationClient,
) -> func.HttpResponse:
    """Submit an analysis job and start its orchestrator.

    Body: ``{"job_type": "spectral_index", "scene_ids": [...],
    "parameters": {"index": "ndvi"}, "owner": "..."}``.
    """
    from terrascan.jobs.service import JobService

    body = _request_json(req)
    if body is None:
        return _json_response({"error": "Request body must be a JSON object"}, 400)

    try:
        validate_payload(body, SubmitJobInput, activity="submit_job")
        scene_ids = body["scene_ids"]
        if not isinstance(scene_ids, list):
            return _json_response({"error": "scene_ids must be a list"}, 400)
        job = JobService(get_catalog(_config())).submit(
            str(body["job_type"]),
            [str(s) for s in scene_ids],
            owner=str(body.get("owner", "")),
            parameters=body.get("parameters") if isinstance(body.get("parameters"), dict) else {},
        )
    except PipelineError as exc:
        status = 500 if exc.retryable else 400
        return _error_response(exc, status)

    instance_id = await client.start_new(
        ANALYSIS_ORCHESTRATOR,
        instance_id=f"job-{job.id}",
        client_input={"job_id": job.id, "correlation_id": req.headers.get("x-correlation-id", "")},
    )
    logger.info("Job accepted | job=%s | instance_id=%s", job.id, instance_id)
    return _json_response({"job": job.to_dict(), "instance_id": instance_id}, 202)


@app.function_name("get_job")
@app.route(route="jobs/{job_id}", methods=["GET"])
def get_job(req: func.HttpRequest) -> func.HttpResponse:
    """Return the current job record."""
    job_id = req.route_params.get("job_id", "")
    try:
        job = get_catalog(_config()).get_job(job_id)
    except RecordNotFoundError as exc:
        return _error_response(exc, 404)
    return _json_response(job.to_dict())


@app.function_name("cancel_job")
@app.route(route="jobs/{job_id}/cancel", methods=["POST"])
def cancel_job(req: func.HttpRequest) -> func.HttpResponse:
    """Cancel a pending job, or request cancellation of a running one."""
    from terrascan.jobs.service import JobService

    job_id = req.route_params.get("job_id", "")
    try:
        job = JobService(get_catalog(_config())).cancel(job_id)
    except RecordNotFoundError as exc:
        return _error_response(exc, 404)
    return _json_response(job.to_dict())


# ---------------------------------------------------------------------------
# HTTP: Scenes
# ---------------------------------------------------------------------------


@app.function_name("get_scene")
@app.route(route="scenes/{scene_id}", methods=["GET"])
def get_scene(req: func.HttpRequest) -> func.HttpResponse:
    """Return a scene record with its preprocessing status."""
    scene_id = req.route_params.get("scene_id", "")
    try:
        scene = get_catalog(_config()).get_scene(scene_id)
    except RecordNotFoundError as exc:
        return _error_response(exc, 404)
    return _json_response(scene.to_dict())


# ---------------------------------------------------------------------------
# HTTP: Orchestrator Status Endpoint (convenience for local debugging)
# ---------------------------------------------------------------------------


@app.function_name("orchestrator_status")
@app.route(route="orchestrator/{instance_id}", methods=["GET"])
@app.durable_client_input(client_name="client")
async def orchestrator_status(
    req: func.HttpRequest,
    client: df.DurableOrchestrationClient,
) -> func.HttpResponse:
    """Return the status of a specific orchestrator instance."""
    instance_id = req.route_params.get("instance_id", "")
    if not instance_id:
        return func.HttpResponse("Missing instance_id", status_code=400)

    status = await client.get_status(instance_id)
    if not status:
        return func.HttpResponse("Instance not found", status_code=404)

    return client.create_check_status_response(req, instance_id)


# ---------------------------------------------------------------------------
# Orchestrators
# ---------------------------------------------------------------------------


@app.function_name(INGESTION_ORCHESTRATOR)
@app.orchestration_trigger(context_name="context")
def ingestion_orchestrator(context: df.DurableOrchestrationContext) -> object:
    """Search → bounded fan-out of preprocess_scene → summary.

    See ``terrascan.orchestrators.ingestion`` for implementation.
    """
    from terrascan.orchestrators.ingestion import orchestrator_function

    return orchestrator_function(context)


@app.function_name(ANALYSIS_ORCHESTRATOR)
@app.orchestration_trigger(context_name="context")
def analysis_orchestrator(context: df.DurableOrchestrationContext) -> object:
    """Run one analysis job to a terminal state.

    See ``terrascan.orchestrators.analysis`` for implementation.
    """
    from terrascan.orchestrators.analysis import orchestrator_function

    return orchestrator_function(context)


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------


@app.function_name("search_scenes")
@app.activity_trigger(input_name="activityInput")
def search_scenes_activity(activityInput: str) -> dict[str, object]:  # noqa: N803
    """Durable Functions activity: search the provider and register scenes.

    Returns:
        ``SearchScenesOutput`` dict.
    """
    from terrascan.activities.search_scenes import search_scenes

    payload = deserialize_activity_input(activityInput)
    validate_payload(payload, SearchScenesInput, activity="search_scenes")

    config = _config()
    return dict(search_scenes(payload, catalog=get_catalog(config), config=config))


@app.function_name("preprocess_scene")
@app.activity_trigger(input_name="activityInput")
def preprocess_scene_activity(activityInput: str) -> dict[str, object]:  # noqa: N803
    """Durable Functions activity: run all preprocessing stages for one scene.

    Returns:
        ``PreprocessSceneOutput`` dict (the scene's final status).
    """
    from terrascan.activities.preprocess_scene import preprocess_scene
    from terrascan.providers.factory import provider_from_payload
    from terrascan.services.inference import get_inference_client

    payload = deserialize_activity_input(activityInput)
    validate_payload(payload, PreprocessSceneInput, activity="preprocess_scene")

    config = _config()
    provider = None
    # No name: preprocess_scene uses the provider recorded on the scene.
    if payload.get("provider_name"):
        provider = provider_from_payload(payload["provider_name"], payload.get("provider_config"))

    inference = get_inference_client(config)
    try:
        result = preprocess_scene(
            str(payload["scene_id"]),
            catalog=get_catalog(config),
            storage=get_raster_storage(config),
            config=config,
            provider=provider,
            inference=inference,
        )
    finally:
        if inference is not None:
            inference.close()
    return dict(result)


@app.function_name("run_analysis")
@app.activity_trigger(input_name="activityInput")
def run_analysis_activity(activityInput: str) -> dict[str, object]:  # noqa: N803
    """Durable Functions activity: execute one analysis job end to end.

    Returns:
        The job record dict in its terminal state.
    """
    from terrascan.activities.run_analysis import execute_job
    from terrascan.services.inference import get_inference_client

    payload = deserialize_activity_input(activityInput)
    validate_payload(payload, RunAnalysisInput, activity="run_analysis")

    config = _config()
    inference = get_inference_client(config)
    try:
        return execute_job(
            str(payload["job_id"]),
            catalog=get_catalog(config),
            storage=get_raster_storage(config),
            config=config,
            inference=inference,
        )
    finally:
        if inference is not None:
            inference.close()


@app.function_name("mark_job_failed")
@app.activity_trigger(input_name="activityInput")
def mark_job_failed_activity(activityInput: str) -> dict[str, object]:  # noqa: N803
    """Durable Functions activity: record a job as failed."""
    from terrascan.activities.run_analysis import mark_job_failed

    payload = deserialize_activity_input(activityInput)
    validate_payload(payload, MarkJobFailedInput, activity="mark_job_failed")

    return mark_job_failed(
        str(payload["job_id"]), str(payload["error"]), catalog=get_catalog(_config())
    )
