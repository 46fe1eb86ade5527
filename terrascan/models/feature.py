"""Data model for a vector feature produced by an analysis job.

A ``VectorFeature`` is a detected or derived geometry (building footprint,
land-cover polygon, change patch) with a property bag.  Features are
immutable once created; a job that re-runs writes new features rather
than editing old ones.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from terrascan.models.imagery import ModelValidationError
from terrascan.utils.helpers import parse_timestamp

SQ_METRES_PER_HECTARE = 10_000.0


@dataclass(frozen=True, slots=True)
class VectorFeature:
    """A GeoJSON geometry attached to the job that produced it.

    Attributes:
        id: Feature identifier (UUID4 string).
        job_id: Id of the ``AnalysisJob`` that produced the feature.
        geometry: GeoJSON geometry dict in EPSG:4326.
        properties: Free-form attributes (class label, score, ...).
        created_at: Creation timestamp.
    """

    id: str
    job_id: str
    geometry: dict[str, Any]
    properties: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if not self.job_id:
            raise ModelValidationError("VectorFeature", "job_id", self.job_id, "must not be empty")
        _validate_geometry(self.geometry)

    @classmethod
    def new(
        cls,
        job_id: str,
        geometry: dict[str, Any],
        properties: dict[str, Any] | None = None,
    ) -> VectorFeature:
        return cls(
            id=str(uuid.uuid4()),
            job_id=job_id,
            geometry=dict(geometry),
            properties=dict(properties or {}),
        )

    @property
    def area_ha(self) -> float:
        """Geodesic area on the WGS 84 ellipsoid, in hectares.

        Zero for point and line geometries.
        """
        from pyproj import Geod
        from shapely.geometry import shape

        geom = shape(self.geometry)
        if geom.geom_type not in ("Polygon", "MultiPolygon"):
            return 0.0
        area_m2, _perimeter = Geod(ellps="WGS84").geometry_area_perimeter(geom)
        return abs(area_m2) / SQ_METRES_PER_HECTARE

    def to_geojson(self) -> dict[str, Any]:
        """Return the feature as a GeoJSON ``Feature`` object."""
        return {
            "type": "Feature",
            "id": self.id,
            "geometry": dict(self.geometry),
            "properties": {**self.properties, "job_id": self.job_id},
        }

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "geometry": dict(self.geometry),
            "properties": dict(self.properties),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> VectorFeature:
        """Deserialise from a catalog dict.

        Raises:
            TypeError: If ``geometry`` or ``properties`` is not a dict.
        """
        geometry = data.get("geometry", {})
        if not isinstance(geometry, dict):
            msg = f"geometry must be a dict, got {type(geometry).__name__}"
            raise TypeError(msg)
        properties = data.get("properties", {})
        if not isinstance(properties, dict):
            msg = f"properties must be a dict, got {type(properties).__name__}"
            raise TypeError(msg)
        return cls(
            id=str(data["id"]),
            job_id=str(data.get("job_id", "")),
            geometry=geometry,
            properties=properties,
            created_at=parse_timestamp(str(data.get("created_at", ""))),
        )


def _validate_geometry(geometry: dict[str, Any]) -> None:
    """Raise ``ModelValidationError`` unless *geometry* is a usable GeoJSON geometry."""
    from shapely.errors import ShapelyError
    from shapely.geometry import shape

    if not isinstance(geometry, dict) or "type" not in geometry:
        raise ModelValidationError(
            "VectorFeature", "geometry", geometry, "must be a GeoJSON geometry object"
        )
    try:
        geom = shape(geometry)
    except (ShapelyError, ValueError, TypeError, KeyError, AttributeError, IndexError) as exc:
        raise ModelValidationError(
            "VectorFeature", "geometry", geometry.get("type"), f"unparseable geometry: {exc}"
        ) from exc
    if geom.is_empty:
        raise ModelValidationError("VectorFeature", "geometry", geom.geom_type, "is empty")
    if not geom.is_valid:
        raise ModelValidationError(
            "VectorFeature", "geometry", geom.geom_type, "is not a valid geometry"
        )
