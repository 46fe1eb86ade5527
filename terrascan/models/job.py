"""Analysis job record and its status state machine.

    pending ──► running ──► completed | failed | cancelled
       │
       └──► cancelled | failed   (cancelled before start / rejected at start)

Terminal states have no outgoing edges.  A job only ever references
scenes that were ``ready`` when it was submitted; the job service
re-checks this when the job starts.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from terrascan.core.exceptions import StatusTransitionError
from terrascan.models.imagery import ModelValidationError
from terrascan.utils.helpers import parse_timestamp


class JobStatus(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class JobType(enum.Enum):
    SPECTRAL_INDEX = "spectral_index"
    CHANGE_DETECTION = "change_detection"
    CLASSIFICATION = "classification"
    OBJECT_DETECTION = "object_detection"


@dataclass(frozen=True, slots=True)
class AnalysisJob:
    """A unit of requested analysis work.

    Attributes:
        id: Job identifier (UUID4 string).
        job_type: Kind of analysis.
        scene_ids: Catalog ids of the input scenes (before, after for change detection).
        owner: Requesting user or system.
        parameters: Job-type specific parameters (e.g. ``{"index": "ndvi"}``).
        status: Current lifecycle state.
        error: Failure message (empty unless failed).
        result: Output references and summary statistics.
        cancel_requested: Cooperative cancellation flag observed by the worker.
        created_at: Submission time.
        started_at: When the job moved to ``running``.
        finished_at: When the job reached a terminal state.
    """

    id: str
    job_type: JobType
    scene_ids: list[str]
    owner: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    error: str = ""
    result: dict[str, Any] = field(default_factory=dict)
    cancel_requested: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.scene_ids:
            raise ModelValidationError(
                "AnalysisJob", "scene_ids", self.scene_ids, "must reference at least one scene"
            )
        if self.job_type is JobType.CHANGE_DETECTION and len(self.scene_ids) != 2:
            raise ModelValidationError(
                "AnalysisJob",
                "scene_ids",
                self.scene_ids,
                "change detection needs exactly two scenes (before, after)",
            )

    @classmethod
    def new(
        cls,
        job_type: JobType,
        scene_ids: list[str],
        *,
        owner: str = "",
        parameters: dict[str, Any] | None = None,
    ) -> AnalysisJob:
        """Create a fresh ``pending`` job with a random id."""
        return cls(
            id=str(uuid.uuid4()),
            job_type=job_type,
            scene_ids=list(scene_ids),
            owner=owner,
            parameters=dict(parameters or {}),
        )

    def transition(
        self,
        status: JobStatus,
        *,
        error: str = "",
        result: dict[str, Any] | None = None,
    ) -> AnalysisJob:
        """Return a copy of this job moved to *status*.

        Raises:
            StatusTransitionError: If the edge is not in the state machine.
        """
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise StatusTransitionError("job", self.id, self.status.value, status.value)

        now = datetime.now(UTC)
        changes: dict[str, Any] = {"status": status}
        if status is JobStatus.RUNNING:
            changes["started_at"] = now
        if status.is_terminal:
            changes["finished_at"] = now
        if status is JobStatus.FAILED:
            changes["error"] = error
        if result is not None:
            changes["result"] = dict(result)
        return replace(self, **changes)

    def with_cancel_requested(self) -> AnalysisJob:
        return replace(self, cancel_requested=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_type": self.job_type.value,
            "scene_ids": list(self.scene_ids),
            "owner": self.owner,
            "parameters": dict(self.parameters),
            "status": self.status.value,
            "error": self.error,
            "result": dict(self.result),
            "cancel_requested": self.cancel_requested,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalysisJob:
        """Deserialise from a transport/catalog dict.

        Raises:
            ValueError: On an unknown ``job_type`` or ``status``.
            TypeError: If ``scene_ids`` is not a list.
        """
        scene_ids = data.get("scene_ids", [])
        if not isinstance(scene_ids, list):
            msg = f"scene_ids must be a list, got {type(scene_ids).__name__}"
            raise TypeError(msg)
        started = data.get("started_at")
        finished = data.get("finished_at")
        return cls(
            id=str(data["id"]),
            job_type=JobType(str(data["job_type"])),
            scene_ids=[str(s) for s in scene_ids],
            owner=str(data.get("owner", "")),
            parameters=dict(data.get("parameters") or {}),
            status=JobStatus(str(data.get("status", "pending"))),
            error=str(data.get("error", "")),
            result=dict(data.get("result") or {}),
            cancel_requested=bool(data.get("cancel_requested", False)),
            created_at=parse_timestamp(str(data.get("created_at", ""))),
            started_at=parse_timestamp(str(started)) if started else None,
            finished_at=parse_timestamp(str(finished)) if finished else None,
        )
