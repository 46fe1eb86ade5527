"""Thin ingress boundary helpers for Azure Functions entrypoints.

Centralises the transport concerns so that ``function_app.py`` contains
only trigger bindings and handoff:

- **deserialize_activity_input**: normalises the JSON-string-or-dict
  payload that Durable Functions passes to activities (idempotent on
  replays).
- **build_ingestion_input**: validates an ``POST /api/ingest`` body
  and turns it into the canonical ``IngestionInput`` dict.
- **get_blob_service_client**: creates an ``azure.storage.blob``
  client from the ``AzureWebJobsStorage`` environment variable.
- **get_catalog** / **get_raster_storage**: build the catalog and
  raster store for the current configuration.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

from terrascan.core.exceptions import ContractError

if TYPE_CHECKING:
    from azure.storage.blob import BlobServiceClient

    from terrascan.catalog.base import CatalogRepository
    from terrascan.core.config import PipelineConfig
    from terrascan.storage.base import RasterStorage

logger = logging.getLogger("terrascan.core.ingress")


# ---------------------------------------------------------------------------
# Canonical orchestrator input schema
# ---------------------------------------------------------------------------


class IngestionInput(TypedDict):
    """Canonical payload for ingestion orchestrator starts."""

    bbox: list[float]
    date_start: str
    date_end: str
    max_cloud_cover_pct: float
    correlation_id: str
    collections: NotRequired[list[str]]
    provider_name: NotRequired[str]
    provider_config: NotRequired[dict[str, Any] | None]


# ---------------------------------------------------------------------------
# Activity input deserialisation
# ---------------------------------------------------------------------------


def deserialize_activity_input(raw: str | dict[str, Any] | object) -> dict[str, Any]:
    """Normalise Durable Functions activity input to a plain dict.

    During initial execution the activity input arrives as a JSON
    string; on orchestrator replay it may already be a ``dict``.

    Raises:
        ContractError: If *raw* is neither a JSON string nor a dict.
    """
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, ValueError) as exc:
            msg = f"Activity input is not valid JSON: {exc}"
            raise ContractError(msg, stage="ingress", code="INVALID_JSON") from exc
        if not isinstance(parsed, dict):
            msg = f"Activity input JSON must be an object, got {type(parsed).__name__}"
            raise ContractError(msg, stage="ingress", code="INVALID_INPUT_TYPE")
        return parsed
    if isinstance(raw, dict):
        return raw
    msg = f"Unexpected activity input type: {type(raw).__name__}"
    raise ContractError(msg, stage="ingress", code="INVALID_INPUT_TYPE")


# ---------------------------------------------------------------------------
# Ingestion request → orchestrator input
# ---------------------------------------------------------------------------


def build_ingestion_input(
    body: dict[str, Any],
    *,
    default_max_cloud_cover_pct: float = 20.0,
    correlation_id: str = "",
) -> IngestionInput:
    """Validate an ingestion request body and build the orchestrator input.

    Args:
        body: Parsed JSON request body with ``bbox``, ``date_start``,
            ``date_end`` and optionally ``max_cloud_cover_pct``,
            ``collections``, ``provider_name``, ``provider_config``.
        default_max_cloud_cover_pct: Used when the body omits a ceiling.
        correlation_id: Caller-supplied correlation ID (generated if empty).

    Raises:
        ContractError: On a missing or malformed field.
    """
    bbox_raw = body.get("bbox")
    if not isinstance(bbox_raw, list) or len(bbox_raw) != 4:
        msg = "Ingestion request: bbox must be a list of four numbers"
        raise ContractError(msg, stage="ingress", code="INVALID_BBOX")
    try:
        bbox = [float(v) for v in bbox_raw]
    except (TypeError, ValueError) as exc:
        msg = f"Ingestion request: bbox values must be numeric: {exc}"
        raise ContractError(msg, stage="ingress", code="INVALID_BBOX") from exc
    if bbox[0] > bbox[2] or bbox[1] > bbox[3]:
        msg = f"Ingestion request: bbox min must not exceed max: {bbox}"
        raise ContractError(msg, stage="ingress", code="INVALID_BBOX")

    dates: dict[str, str] = {}
    parsed: dict[str, datetime] = {}
    for key in ("date_start", "date_end"):
        value = str(body.get(key, "")).strip()
        if not value:
            msg = f"Ingestion request: {key} is required"
            raise ContractError(msg, stage="ingress", code="MISSING_DATE")
        try:
            moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            msg = f"Ingestion request: {key} is not ISO 8601: {value!r}"
            raise ContractError(msg, stage="ingress", code="INVALID_DATE") from exc
        dates[key] = value
        parsed[key] = moment if moment.tzinfo else moment.replace(tzinfo=UTC)

    if parsed["date_start"] > parsed["date_end"]:
        msg = "Ingestion request: date_start must not be after date_end"
        raise ContractError(msg, stage="ingress", code="INVALID_DATE")

    try:
        cloud = float(body.get("max_cloud_cover_pct", default_max_cloud_cover_pct))
    except (TypeError, ValueError) as exc:
        msg = f"Ingestion request: max_cloud_cover_pct must be numeric: {exc}"
        raise ContractError(msg, stage="ingress", code="INVALID_CLOUD_COVER") from exc
    if not 0.0 <= cloud <= 100.0:
        msg = f"Ingestion request: max_cloud_cover_pct must be 0-100, got {cloud}"
        raise ContractError(msg, stage="ingress", code="INVALID_CLOUD_COVER")

    payload: IngestionInput = {
        "bbox": bbox,
        "date_start": dates["date_start"],
        "date_end": dates["date_end"],
        "max_cloud_cover_pct": cloud,
        "correlation_id": correlation_id or str(uuid.uuid4()),
    }
    collections = body.get("collections")
    if isinstance(collections, list) and collections:
        payload["collections"] = [str(c) for c in collections]
    if body.get("provider_name"):
        payload["provider_name"] = str(body["provider_name"])
    if isinstance(body.get("provider_config"), dict):
        payload["provider_config"] = body["provider_config"]

    logger.debug(
        "Built ingestion input | bbox=%s | dates=%s/%s | correlation_id=%s",
        bbox,
        payload["date_start"],
        payload["date_end"],
        payload["correlation_id"],
    )
    return payload


# ---------------------------------------------------------------------------
# Client factories
# ---------------------------------------------------------------------------


def get_blob_service_client() -> BlobServiceClient:
    """Create a ``BlobServiceClient`` from the ``AzureWebJobsStorage`` env var.

    Raises:
        ContractError: If the environment variable is not set.
    """
    from azure.storage.blob import BlobServiceClient

    connection_string = os.environ.get("AzureWebJobsStorage", "")  # noqa: SIM112
    if not connection_string:
        msg = "AzureWebJobsStorage environment variable is not set"
        raise ContractError(msg, stage="ingress", code="MISSING_CONNECTION_STRING")

    return BlobServiceClient.from_connection_string(connection_string)


def get_catalog(config: PipelineConfig) -> CatalogRepository:
    """Return the blob-backed catalog for *config*."""
    from terrascan.catalog.blob import BlobCatalog

    return BlobCatalog(get_blob_service_client(), container=config.catalog_container)


def get_raster_storage(config: PipelineConfig) -> RasterStorage:
    """Return the raster store: local directory if configured, else Blob Storage."""
    if config.local_storage_root:
        from terrascan.storage.local import LocalRasterStorage

        return LocalRasterStorage(config.local_storage_root)

    from terrascan.storage.blob import BlobRasterStorage

    return BlobRasterStorage(get_blob_service_client())
