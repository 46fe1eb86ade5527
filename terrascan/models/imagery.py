"""Typed models for the imagery provider adapter layer.

Defines the data structures exchanged between activities and provider
adapters:

- ``ImageryFilters``: Search criteria (date range, cloud cover, collections)
- ``SearchResult``: A single scene returned by a provider search
- ``BlobReference``: Pointer to a stored object (container + path)
- ``ProviderConfig``: Configuration for a specific imagery provider

All models are frozen dataclasses; numeric fields carry their unit in
the name.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from terrascan.core.exceptions import PipelineError

if TYPE_CHECKING:
    from datetime import datetime


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ModelValidationError(ValueError, PipelineError):
    """Raised when a domain model is constructed with invalid field values.

    Attributes:
        model: Name of the model class that failed validation.
        field_name: The field that violated the invariant.
        value: The invalid value.
    """

    default_stage = "model_validation"
    default_code = "MODEL_VALIDATION_FAILED"

    def __init__(self, model: str, field_name: str, value: object, message: str) -> None:
        self.model = model
        self.field_name = field_name
        self.value = value
        formatted = f"{model}.{field_name}={value!r}: {message}"
        PipelineError.__init__(self, formatted)


# ---------------------------------------------------------------------------
# Search models
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ImageryFilters:
    """Criteria for searching a provider's imagery archive.

    Attributes:
        bbox: Search extent as ``(min_lon, min_lat, max_lon, max_lat)``.
        max_cloud_cover_pct: Maximum acceptable cloud cover (0-100).
        date_start: Earliest acceptable acquisition date (inclusive).
        date_end: Latest acceptable acquisition date (inclusive).
        collections: Provider-specific collection identifiers to search.
        max_items: Upper bound on returned scenes.
    """

    bbox: tuple[float, float, float, float]
    max_cloud_cover_pct: float = 20.0
    date_start: datetime | None = None
    date_end: datetime | None = None
    collections: list[str] = field(default_factory=list)
    max_items: int = 50

    def __post_init__(self) -> None:
        if len(self.bbox) != 4:
            raise ModelValidationError("ImageryFilters", "bbox", self.bbox, "must have 4 values")
        min_lon, min_lat, max_lon, max_lat = self.bbox
        if min_lon > max_lon or min_lat > max_lat:
            raise ModelValidationError(
                "ImageryFilters", "bbox", self.bbox, "min must not exceed max"
            )
        _check_range("ImageryFilters", "min_lon", min_lon, -180, 180)
        _check_range("ImageryFilters", "max_lon", max_lon, -180, 180)
        _check_range("ImageryFilters", "min_lat", min_lat, -90, 90)
        _check_range("ImageryFilters", "max_lat", max_lat, -90, 90)
        _check_range("ImageryFilters", "max_cloud_cover_pct", self.max_cloud_cover_pct, 0, 100)
        _check_min("ImageryFilters", "max_items", self.max_items, 1)
        if (
            self.date_start is not None
            and self.date_end is not None
            and self.date_start > self.date_end
        ):
            raise ModelValidationError(
                "ImageryFilters",
                "date_start",
                self.date_start,
                f"must be <= date_end ({self.date_end})",
            )


@dataclass(frozen=True, slots=True)
class SearchResult:
    """A single scene returned by a provider search.

    Attributes:
        scene_id: Provider-specific unique identifier for the scene.
        provider: Name of the imagery provider (e.g. ``"planetary_computer"``).
        acquisition_date: Date/time the scene was captured.
        cloud_cover_pct: Cloud cover percentage for the scene (0-100).
        spatial_resolution_m: Ground sample distance in metres.
        collection: Collection the scene belongs to.
        crs: Native coordinate reference system (e.g. ``"EPSG:32610"``).
        bbox: Scene bounding box as ``(min_lon, min_lat, max_lon, max_lat)``.
        footprint: GeoJSON geometry of the scene footprint.
        asset_urls: Band name → downloadable asset URL.
        extra: Provider-specific additional metadata.
    """

    scene_id: str
    provider: str
    acquisition_date: datetime
    cloud_cover_pct: float = 0.0
    spatial_resolution_m: float = 0.0
    collection: str = ""
    crs: str = "EPSG:4326"
    bbox: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
    footprint: dict[str, object] = field(default_factory=dict)
    asset_urls: dict[str, str] = field(default_factory=dict)
    extra: dict[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_non_empty("SearchResult", "scene_id", self.scene_id)
        _check_non_empty("SearchResult", "provider", self.provider)
        _check_range("SearchResult", "cloud_cover_pct", self.cloud_cover_pct, 0, 100)
        _check_min("SearchResult", "spatial_resolution_m", self.spatial_resolution_m, 0)


# ---------------------------------------------------------------------------
# Storage references
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BlobReference:
    """Pointer to an object in Blob Storage (or the local raster store).

    Attributes:
        container: Blob container name.
        blob_path: Full path within the container.
        size_bytes: Size of the stored object in bytes.
        content_type: MIME content type (e.g. ``"image/tiff"``).
    """

    container: str
    blob_path: str
    size_bytes: int = 0
    content_type: str = "image/tiff"

    def __post_init__(self) -> None:
        _check_non_empty("BlobReference", "container", self.container)
        _check_non_empty("BlobReference", "blob_path", self.blob_path)
        _check_min("BlobReference", "size_bytes", self.size_bytes, 0)

    @property
    def uri(self) -> str:
        """Return ``"{container}/{blob_path}"``, the form stored on catalog records."""
        return f"{self.container}/{self.blob_path}"

    @classmethod
    def from_uri(cls, uri: str) -> BlobReference:
        """Parse a ``"{container}/{blob_path}"`` URI.

        Raises:
            ModelValidationError: If the URI has no path component.
        """
        container, _, blob_path = uri.partition("/")
        return cls(container=container, blob_path=blob_path)


# ---------------------------------------------------------------------------
# Provider configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Configuration for a specific imagery provider.

    Attributes:
        name: Provider identifier (must match the adapter registry key).
        api_base_url: Base URL for the provider's API.
        extra_params: Provider-specific configuration parameters.
    """

    name: str
    api_base_url: str = ""
    extra_params: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_non_empty("ProviderConfig", "name", self.name)


# ---------------------------------------------------------------------------
# Validation helpers (module-private)
# ---------------------------------------------------------------------------


def _check_range(model: str, field_name: str, value: float, lo: float, hi: float) -> None:
    """Raise `ModelValidationError` if *value* falls outside [lo, hi]."""
    if value < lo or value > hi:
        raise ModelValidationError(model, field_name, value, f"must be between {lo} and {hi}")


def _check_min(model: str, field_name: str, value: float | int, lo: float | int) -> None:
    """Raise `ModelValidationError` if *value* is below *lo*."""
    if value < lo:
        raise ModelValidationError(model, field_name, value, f"must be >= {lo}")


def _check_non_empty(model: str, field_name: str, value: str) -> None:
    """Raise `ModelValidationError` if *value* is empty or blank."""
    if not value or not value.strip():
        raise ModelValidationError(model, field_name, value, "must not be empty")
