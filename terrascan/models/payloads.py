"""Typed payload schemas for Durable Functions activity contracts.

Every activity in the pipeline receives and returns a JSON-serialisable
dict.  These ``TypedDict`` definitions make the contracts explicit so
that pyright catches key mismatches at analysis time and
``validate_payload`` catches them at runtime.

Usage::

    from terrascan.models.payloads import PreprocessSceneInput, validate_payload

    def preprocess_scene_activity(raw: dict) -> ...:
        validate_payload(raw, PreprocessSceneInput, activity="preprocess_scene")
"""

from __future__ import annotations

from typing import Any, NotRequired, TypedDict

from terrascan.core.exceptions import ContractError

# ---------------------------------------------------------------------------
# Search scenes (ingestion step 1)
# ---------------------------------------------------------------------------


class SearchScenesInput(TypedDict):
    """Orchestrator → ``search_scenes`` activity."""

    bbox: list[float]
    date_start: str
    date_end: str
    max_cloud_cover_pct: NotRequired[float]
    collections: NotRequired[list[str]]
    provider_name: NotRequired[str]
    provider_config: NotRequired[dict[str, Any] | None]
    correlation_id: NotRequired[str]


class SearchScenesOutput(TypedDict):
    """``search_scenes`` activity → orchestrator.

    ``to_process`` holds catalog ids of ``raw``/``corrected`` scenes;
    ``ready`` and ``failed`` are reported as-is and not reprocessed.
    """

    to_process: list[str]
    ready: list[str]
    failed: list[dict[str, str]]
    discovered: int
    registered: int


# ---------------------------------------------------------------------------
# Preprocess scene (ingestion step 2, fanned out per scene)
# ---------------------------------------------------------------------------


class PreprocessSceneInput(TypedDict):
    """Orchestrator → ``preprocess_scene`` activity."""

    scene_id: str
    provider_name: NotRequired[str]
    provider_config: NotRequired[dict[str, Any] | None]
    correlation_id: NotRequired[str]


class PreprocessSceneOutput(TypedDict):
    """``preprocess_scene`` activity → orchestrator."""

    scene_id: str
    status: str
    storage_location: str
    error: str
    failed_stage: str
    retries: int
    duration_seconds: float


# ---------------------------------------------------------------------------
# Analysis jobs
# ---------------------------------------------------------------------------


class RunAnalysisInput(TypedDict):
    """Orchestrator → ``run_analysis`` activity."""

    job_id: str
    correlation_id: NotRequired[str]


class MarkJobFailedInput(TypedDict):
    """Orchestrator → ``mark_job_failed`` activity."""

    job_id: str
    error: str


class SubmitJobInput(TypedDict):
    """HTTP body of ``POST /api/jobs``."""

    job_type: str
    scene_ids: list[str]
    owner: NotRequired[str]
    parameters: NotRequired[dict[str, Any]]


# ---------------------------------------------------------------------------
# Required-key registrations (used by validate_payload)
# ---------------------------------------------------------------------------

_REQUIRED_KEYS: dict[type, frozenset[str]] = {
    SearchScenesInput: frozenset({"bbox", "date_start", "date_end"}),
    PreprocessSceneInput: frozenset({"scene_id"}),
    RunAnalysisInput: frozenset({"job_id"}),
    MarkJobFailedInput: frozenset({"job_id", "error"}),
    SubmitJobInput: frozenset({"job_type", "scene_ids"}),
}


# ---------------------------------------------------------------------------
# Runtime validation
# ---------------------------------------------------------------------------


def validate_payload(
    raw: dict[str, Any],
    schema: type,
    *,
    activity: str,
) -> None:
    """Validate that *raw* contains the required keys for *schema*.

    Raises:
        ContractError: If required keys are missing from the payload.
    """
    required = _REQUIRED_KEYS.get(schema)
    if required is None:
        return

    missing = required - raw.keys()
    if missing:
        msg = f"{activity}: missing required payload key(s): {', '.join(sorted(missing))}"
        raise ContractError(msg, stage=activity, code="PAYLOAD_MISSING_KEYS")
