"""Catalog record for a discovered satellite scene.

An ``ImageryScene`` is created in ``raw`` state when a catalogue search
discovers a new scene, and is advanced by the preprocessing stages:

    raw ──► corrected ──► ready
     │          │           │
     └──────────┴───────────┴──► failed   (terminal)

Records are never deleted; a scene that cannot be processed is marked
``failed`` with the error string and the stage that failed.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from terrascan.core.exceptions import StatusTransitionError
from terrascan.utils.helpers import parse_timestamp

_SCENE_NAMESPACE = uuid.UUID("6f1c2b9e-3d4a-5e8f-9a0b-1c2d3e4f5a6b")


class PreprocessingStatus(enum.Enum):
    """Lifecycle state of a scene in the preprocessing pipeline."""

    RAW = "raw"
    CORRECTED = "corrected"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is PreprocessingStatus.FAILED


_ALLOWED_TRANSITIONS: dict[PreprocessingStatus, frozenset[PreprocessingStatus]] = {
    PreprocessingStatus.RAW: frozenset(
        {PreprocessingStatus.CORRECTED, PreprocessingStatus.FAILED}
    ),
    PreprocessingStatus.CORRECTED: frozenset(
        {PreprocessingStatus.READY, PreprocessingStatus.FAILED}
    ),
    PreprocessingStatus.READY: frozenset({PreprocessingStatus.FAILED}),
    PreprocessingStatus.FAILED: frozenset(),
}


def scene_record_id(provider: str, scene_id: str) -> str:
    """Return the deterministic catalog id for a provider scene.

    The same provider scene always maps to the same record, so repeated
    searches over the same area never register a scene twice.
    """
    return str(uuid.uuid5(_SCENE_NAMESPACE, f"{provider}:{scene_id}"))


def can_transition(current: PreprocessingStatus, requested: PreprocessingStatus) -> bool:
    """Return ``True`` if *current* → *requested* is a legal edge."""
    return requested in _ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True, slots=True)
class ImageryScene:
    """A satellite scene known to the catalog.

    Attributes:
        id: Deterministic record id (see ``scene_record_id``).
        provider: Imagery provider name.
        scene_id: Provider-specific scene identifier.
        collection: STAC collection the scene belongs to.
        acquired_at: Acquisition timestamp (UTC).
        cloud_cover_pct: Scene cloud cover percentage (0-100).
        footprint: GeoJSON geometry of the scene footprint (EPSG:4326).
        bbox: ``(min_lon, min_lat, max_lon, max_lat)``.
        resolution_m: Ground sample distance in metres.
        bands: Band names available for the scene.
        asset_urls: Band name → source asset URL.
        storage_location: ``container/path`` of the ready COG (empty until ready).
        status: Preprocessing status.
        error: Error message recorded when the scene failed.
        failed_stage: Stage that failed (empty unless ``status == FAILED``).
        created_at: When the record was registered.
        updated_at: Last status change.
    """

    id: str
    provider: str
    scene_id: str
    acquired_at: datetime
    collection: str = ""
    cloud_cover_pct: float = 0.0
    footprint: dict[str, object] = field(default_factory=dict)
    bbox: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
    resolution_m: float = 0.0
    bands: list[str] = field(default_factory=list)
    asset_urls: dict[str, str] = field(default_factory=dict)
    storage_location: str = ""
    status: PreprocessingStatus = PreprocessingStatus.RAW
    error: str = ""
    failed_stage: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_ready(self) -> bool:
        return self.status is PreprocessingStatus.READY

    def advance_to(
        self,
        status: PreprocessingStatus,
        *,
        storage_location: str = "",
        error: str = "",
        failed_stage: str = "",
    ) -> ImageryScene:
        """Return a copy of this scene moved to *status*.

        Raises:
            StatusTransitionError: If the edge is not in the state machine.
        """
        if not can_transition(self.status, status):
            raise StatusTransitionError("scene", self.id, self.status.value, status.value)

        changes: dict[str, object] = {"status": status, "updated_at": datetime.now(UTC)}
        if status is PreprocessingStatus.READY:
            changes["storage_location"] = storage_location or self.storage_location
        if status is PreprocessingStatus.FAILED:
            changes["error"] = error
            changes["failed_stage"] = failed_stage
        return replace(self, **changes)

    def mark_failed(self, error: str, *, stage: str = "") -> ImageryScene:
        """Shorthand for ``advance_to(FAILED, ...)``."""
        return self.advance_to(PreprocessingStatus.FAILED, error=error, failed_stage=stage)

    def to_dict(self) -> dict[str, object]:
        """Serialise for Durable Functions transport and catalog storage."""
        return {
            "id": self.id,
            "provider": self.provider,
            "scene_id": self.scene_id,
            "collection": self.collection,
            "acquired_at": self.acquired_at.isoformat(),
            "cloud_cover_pct": self.cloud_cover_pct,
            "footprint": dict(self.footprint),
            "bbox": list(self.bbox),
            "resolution_m": self.resolution_m,
            "bands": list(self.bands),
            "asset_urls": dict(self.asset_urls),
            "storage_location": self.storage_location,
            "status": self.status.value,
            "error": self.error,
            "failed_stage": self.failed_stage,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> ImageryScene:
        """Deserialise from a transport/catalog dict.

        Raises:
            TypeError: If a collection field has an unexpected type.
            ValueError: If ``status`` is not a known value.
        """
        bbox_raw = data.get("bbox", [0.0, 0.0, 0.0, 0.0])
        if not isinstance(bbox_raw, list | tuple):
            msg = f"bbox must be a list, got {type(bbox_raw).__name__}"
            raise TypeError(msg)
        bands_raw = data.get("bands", [])
        if not isinstance(bands_raw, list):
            msg = f"bands must be a list, got {type(bands_raw).__name__}"
            raise TypeError(msg)
        assets_raw = data.get("asset_urls", {})
        if not isinstance(assets_raw, dict):
            msg = f"asset_urls must be a dict, got {type(assets_raw).__name__}"
            raise TypeError(msg)
        footprint_raw = data.get("footprint", {})
        if not isinstance(footprint_raw, dict):
            msg = f"footprint must be a dict, got {type(footprint_raw).__name__}"
            raise TypeError(msg)

        return cls(
            id=str(data["id"]),
            provider=str(data.get("provider", "")),
            scene_id=str(data.get("scene_id", "")),
            collection=str(data.get("collection", "")),
            acquired_at=parse_timestamp(str(data.get("acquired_at", ""))),
            cloud_cover_pct=float(data.get("cloud_cover_pct", 0.0)),  # type: ignore[arg-type]
            footprint=footprint_raw,
            bbox=tuple(float(v) for v in bbox_raw),  # type: ignore[arg-type]
            resolution_m=float(data.get("resolution_m", 0.0)),  # type: ignore[arg-type]
            bands=[str(b) for b in bands_raw],
            asset_urls={str(k): str(v) for k, v in assets_raw.items()},
            storage_location=str(data.get("storage_location", "")),
            status=PreprocessingStatus(str(data.get("status", "raw"))),
            error=str(data.get("error", "")),
            failed_stage=str(data.get("failed_stage", "")),
            created_at=parse_timestamp(str(data.get("created_at", ""))),
            updated_at=parse_timestamp(str(data.get("updated_at", ""))),
        )
