"""Pipeline configuration loaded from environment variables.

All configuration values have sensible defaults. Azure Functions app
settings (or ``local.settings.json`` for local dev) are the source of
truth.

``from_env()`` raises ``ConfigValidationError`` if any numeric value is
out of its valid range, so bad configuration surfaces at startup rather
than halfway through a scene.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from terrascan.core.constants import (
    DEFAULT_ANALYSIS_CONTAINER,
    DEFAULT_CATALOG_CONTAINER,
    DEFAULT_COG_CONTAINER,
    DEFAULT_RAW_CONTAINER,
)
from terrascan.core.exceptions import PipelineError

_CORRECTION_METHODS = frozenset({"scale", "dos"})


class ConfigValidationError(PipelineError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
        message: Human-readable description of the valid range.
    """

    default_stage = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Immutable pipeline configuration.

    Loaded once at function startup and threaded through activities.

    Attributes:
        raw_container: Blob container for downloaded band assets.
        cog_container: Blob container for analysis-ready COGs.
        analysis_container: Blob container for analysis outputs.
        catalog_container: Blob container backing the metadata catalog.
        imagery_provider: Active imagery provider name.
        stac_collections: STAC collections searched by default.
        max_cloud_cover_pct: Default maximum scene cloud cover (0-100).
        search_max_items: Upper bound on scenes returned by one search.
        stage_max_retries: Extra attempts per preprocessing stage.
        retry_base_seconds: Exponential backoff base between attempts.
        inference_url: Base URL of the model-serving service (empty = disabled).
        inference_timeout_s: HTTP timeout for inference calls.
        correction_method: Atmospheric correction (``scale`` or ``dos``).
        cog_blocksize: Internal tile size of written COGs (pixels).
        preprocess_batch_size: Scenes preprocessed concurrently per batch.
        job_max_workers: Worker threads for the local job runner.
        local_storage_root: Directory for the local raster store (empty = blob).
    """

    raw_container: str = DEFAULT_RAW_CONTAINER
    cog_container: str = DEFAULT_COG_CONTAINER
    analysis_container: str = DEFAULT_ANALYSIS_CONTAINER
    catalog_container: str = DEFAULT_CATALOG_CONTAINER
    imagery_provider: str = "planetary_computer"
    stac_collections: tuple[str, ...] = field(default=("sentinel-2-l2a",))
    max_cloud_cover_pct: float = 20.0
    search_max_items: int = 50
    stage_max_retries: int = 3
    retry_base_seconds: float = 2.0
    inference_url: str = ""
    inference_timeout_s: float = 60.0
    correction_method: str = "scale"
    cog_blocksize: int = 512
    preprocess_batch_size: int = 10
    job_max_workers: int = 4
    local_storage_root: str = ""

    @classmethod
    def from_env(cls) -> PipelineConfig:
        """Load and validate configuration from environment variables.

        Raises:
            ConfigValidationError: If a value is out of range or a
                required string value is empty.
            ValueError: If a numeric environment variable cannot be
                parsed (e.g. ``STAGE_MAX_RETRIES=abc``).
        """
        collections_raw = os.getenv("STAC_COLLECTIONS", "sentinel-2-l2a")
        config = cls(
            raw_container=os.getenv("RAW_CONTAINER", DEFAULT_RAW_CONTAINER),
            cog_container=os.getenv("COG_CONTAINER", DEFAULT_COG_CONTAINER),
            analysis_container=os.getenv("ANALYSIS_CONTAINER", DEFAULT_ANALYSIS_CONTAINER),
            catalog_container=os.getenv("CATALOG_CONTAINER", DEFAULT_CATALOG_CONTAINER),
            imagery_provider=os.getenv("IMAGERY_PROVIDER", "planetary_computer"),
            stac_collections=tuple(c.strip() for c in collections_raw.split(",") if c.strip()),
            max_cloud_cover_pct=float(os.getenv("IMAGERY_MAX_CLOUD_COVER_PCT", "20")),
            search_max_items=int(os.getenv("SEARCH_MAX_ITEMS", "50")),
            stage_max_retries=int(os.getenv("STAGE_MAX_RETRIES", "3")),
            retry_base_seconds=float(os.getenv("RETRY_BASE_SECONDS", "2")),
            inference_url=os.getenv("INFERENCE_URL", ""),
            inference_timeout_s=float(os.getenv("INFERENCE_TIMEOUT_S", "60")),
            correction_method=os.getenv("CORRECTION_METHOD", "scale"),
            cog_blocksize=int(os.getenv("COG_BLOCKSIZE", "512")),
            preprocess_batch_size=int(os.getenv("PREPROCESS_BATCH_SIZE", "10")),
            job_max_workers=int(os.getenv("JOB_MAX_WORKERS", "4")),
            local_storage_root=os.getenv("LOCAL_STORAGE_ROOT", ""),
        )
        _validate(config)
        return config


def _validate(config: PipelineConfig) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    if not 0.0 <= config.max_cloud_cover_pct <= 100.0:
        raise ConfigValidationError(
            "IMAGERY_MAX_CLOUD_COVER_PCT",
            config.max_cloud_cover_pct,
            "must be between 0 and 100 (percentage)",
        )

    if config.search_max_items <= 0:
        raise ConfigValidationError(
            "SEARCH_MAX_ITEMS", config.search_max_items, "must be > 0"
        )

    if config.stage_max_retries < 0:
        raise ConfigValidationError(
            "STAGE_MAX_RETRIES", config.stage_max_retries, "must be >= 0"
        )

    if config.retry_base_seconds < 0:
        raise ConfigValidationError(
            "RETRY_BASE_SECONDS", config.retry_base_seconds, "must be >= 0 (seconds)"
        )

    if config.inference_timeout_s <= 0:
        raise ConfigValidationError(
            "INFERENCE_TIMEOUT_S", config.inference_timeout_s, "must be > 0 (seconds)"
        )

    if config.correction_method not in _CORRECTION_METHODS:
        raise ConfigValidationError(
            "CORRECTION_METHOD",
            config.correction_method,
            f"must be one of {', '.join(sorted(_CORRECTION_METHODS))}",
        )

    # GDAL requires COG block sizes to be a multiple of 16.
    if config.cog_blocksize <= 0 or config.cog_blocksize % 16:
        raise ConfigValidationError(
            "COG_BLOCKSIZE", config.cog_blocksize, "must be a positive multiple of 16"
        )

    if config.preprocess_batch_size <= 0:
        raise ConfigValidationError(
            "PREPROCESS_BATCH_SIZE", config.preprocess_batch_size, "must be > 0"
        )

    if config.job_max_workers <= 0:
        raise ConfigValidationError("JOB_MAX_WORKERS", config.job_max_workers, "must be > 0")

    if not config.stac_collections:
        raise ConfigValidationError(
            "STAC_COLLECTIONS", config.stac_collections, "must list at least one collection"
        )

    for key, value in (
        ("RAW_CONTAINER", config.raw_container),
        ("COG_CONTAINER", config.cog_container),
        ("ANALYSIS_CONTAINER", config.analysis_container),
        ("CATALOG_CONTAINER", config.catalog_container),
    ):
        if not value:
            raise ConfigValidationError(key, value, "must not be empty")
