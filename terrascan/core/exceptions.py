"""Unified pipeline exception taxonomy.

Provides a shared base exception hierarchy for the ingestion stages,
analysis jobs, providers and the catalog. Every domain exception
inherits from ``PipelineError`` and carries structured context fields
that drive retry decisions and the error strings recorded on scene and
job records.

Taxonomy categories
-------------------
- ``ValidationError``  : input/contract violations, never retryable.
- ``TransientError``   : temporary failures (network, throttle), retryable.
- ``PermanentError``   : unrecoverable domain failures, not retryable.
- ``ContractError``    : payload/schema drift between stages, never retryable.

Every exception exposes ``to_error_dict()`` for a stable structured
error payload suitable for orchestrator history and logging.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for all pipeline-domain errors.

    Attributes:
        message: Human-readable error description.
        stage: Pipeline stage where the error occurred
            (e.g. ``"download"``, ``"run_analysis"``).
        code: Machine-readable error code (e.g. ``"STAGE_FAILED"``).
        retryable: Whether the caller should retry the operation.
        correlation_id: Request/orchestration correlation identifier.
    """

    #: Default stage for subclasses (override via class attribute or kwarg).
    default_stage: str = ""
    #: Default code for subclasses (override via class attribute or kwarg).
    default_code: str = ""

    def __init__(
        self,
        message: str = "",
        *,
        stage: str = "",
        code: str = "",
        retryable: bool = False,
        correlation_id: str = "",
    ) -> None:
        self.message = message
        self.stage = stage or self.default_stage
        self.code = code or self.default_code
        self.retryable = retryable
        self.correlation_id = correlation_id
        super().__init__(message)

    @property
    def category(self) -> str:
        """Return the error category based on concrete class."""
        if isinstance(self, ContractError):
            return "contract"
        if isinstance(self, ValidationError):
            return "validation"
        if isinstance(self, TransientError):
            return "transient"
        if isinstance(self, PermanentError):
            return "permanent"
        return "transient" if self.retryable else "permanent"

    def to_error_dict(self) -> dict[str, object]:
        """Return a structured error payload with stable keys."""
        return {
            "category": self.category,
            "code": self.code,
            "stage": self.stage,
            "message": self.message,
            "retryable": self.retryable,
            "correlation_id": self.correlation_id,
        }


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class ValidationError(PipelineError):
    """Input or domain-model validation failure. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class TransientError(PipelineError):
    """Temporary failure that may succeed on retry."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class PermanentError(PipelineError):
    """Unrecoverable domain failure. Not retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class ContractError(PipelineError):
    """Payload or schema drift between pipeline stages. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class StatusTransitionError(ValidationError):
    """A record was asked to move along an edge its state machine forbids.

    Attributes:
        record: Kind of record (``"scene"`` or ``"job"``).
        current: Status the record is in.
        requested: Status that was requested.
    """

    default_code = "INVALID_STATUS_TRANSITION"

    def __init__(self, record: str, record_id: str, current: str, requested: str) -> None:
        self.record = record
        self.current = current
        self.requested = requested
        super().__init__(
            f"{record} {record_id}: cannot transition {current} -> {requested}",
            stage="catalog",
        )


# ---------------------------------------------------------------------------
# Preprocessing stage failures
# ---------------------------------------------------------------------------


class StageError(PipelineError):
    """A single preprocessing stage failed for one scene.

    The ``stage`` attribute names the stage (``download``, ``correct``,
    ``mask``, ``convert``, ``upload``) and is recorded on the scene as
    ``failed_stage`` when the failure is terminal.
    """

    default_code = "STAGE_FAILED"

    def __init__(self, stage: str, message: str, *, retryable: bool = False) -> None:
        super().__init__(message, stage=stage, retryable=retryable)

    def __str__(self) -> str:
        return f"{self.stage}: {self.message}"
