"""Search stage: discover scenes and register them in the catalog.

Registration is idempotent.  Each provider scene maps to a
deterministic catalog id (``scene_record_id``), so a repeated search
finds the existing record instead of creating a second one:

- ``raw`` / ``corrected`` records are returned for (re)processing,
- ``ready`` records are reported and left alone,
- ``failed`` records are reported with their error and stay failed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from terrascan.core.retry import run_with_retry
from terrascan.models.imagery import ImageryFilters
from terrascan.models.payloads import SearchScenesInput, SearchScenesOutput, validate_payload
from terrascan.models.scene import ImageryScene, PreprocessingStatus, scene_record_id
from terrascan.providers.factory import provider_from_payload
from terrascan.utils.helpers import parse_timestamp

if TYPE_CHECKING:
    from terrascan.catalog.base import CatalogRepository
    from terrascan.core.config import PipelineConfig
    from terrascan.models.imagery import SearchResult
    from terrascan.providers.base import ImageryProvider

logger = logging.getLogger("terrascan.activities.search_scenes")


def build_filters(payload: dict[str, Any], config: PipelineConfig) -> ImageryFilters:
    """Build ``ImageryFilters`` from a search payload, defaulting from *config*.

    Raises:
        ModelValidationError: If the bbox, dates or cloud ceiling are invalid.
    """
    bbox = tuple(float(v) for v in payload["bbox"])
    collections = payload.get("collections") or list(config.stac_collections)
    return ImageryFilters(
        bbox=bbox,  # type: ignore[arg-type]
        max_cloud_cover_pct=float(payload.get("max_cloud_cover_pct", config.max_cloud_cover_pct)),
        date_start=parse_timestamp(str(payload["date_start"])),
        date_end=parse_timestamp(str(payload["date_end"])),
        collections=[str(c) for c in collections],
        max_items=config.search_max_items,
    )


def scene_from_result(result: SearchResult) -> ImageryScene:
    """Build a fresh ``raw`` scene record from a provider search result."""
    return ImageryScene(
        id=scene_record_id(result.provider, result.scene_id),
        provider=result.provider,
        scene_id=result.scene_id,
        acquired_at=result.acquisition_date,
        collection=result.collection,
        cloud_cover_pct=result.cloud_cover_pct,
        footprint=dict(result.footprint),
        bbox=result.bbox,
        resolution_m=result.spatial_resolution_m,
        bands=sorted(result.asset_urls),
        asset_urls=dict(result.asset_urls),
    )


def search_scenes(
    payload: dict[str, Any],
    *,
    catalog: CatalogRepository,
    config: PipelineConfig,
    provider: ImageryProvider | None = None,
) -> SearchScenesOutput:
    """Search the provider and register discovered scenes.

    Args:
        payload: ``SearchScenesInput`` dict.
        catalog: Scene catalog.
        config: Pipeline configuration (defaults, retry policy).
        provider: Adapter override (tests); otherwise built from the
            payload's ``provider_name`` / ``provider_config``.

    Raises:
        ContractError: If required payload keys are missing.
        ProviderSearchError: If the search still fails after retries.
    """
    validate_payload(payload, SearchScenesInput, activity="search_scenes")
    filters = build_filters(payload, config)

    if provider is None:
        provider = provider_from_payload(
            payload.get("provider_name"),
            payload.get("provider_config"),
            default=config.imagery_provider,
        )

    logger.info(
        "search_scenes started | bbox=%s | collections=%s | max_cloud=%.1f | correlation_id=%s",
        filters.bbox,
        filters.collections,
        filters.max_cloud_cover_pct,
        payload.get("correlation_id", ""),
    )

    adapter = provider
    results, retries = run_with_retry(
        lambda: adapter.search(filters),
        label=f"search {adapter.name}",
        max_retries=config.stage_max_retries,
        retry_base_seconds=config.retry_base_seconds,
    )

    to_process: list[str] = []
    ready: list[str] = []
    failed: list[dict[str, str]] = []
    seen: set[str] = set()
    registered = 0

    for result in results:
        scene, created = catalog.register_scene(scene_from_result(result))
        if scene.id in seen:
            continue
        seen.add(scene.id)
        registered += int(created)

        if scene.status is PreprocessingStatus.READY:
            ready.append(scene.id)
        elif scene.status is PreprocessingStatus.FAILED:
            failed.append(
                {"scene_id": scene.id, "error": scene.error, "failed_stage": scene.failed_stage}
            )
        else:
            to_process.append(scene.id)

    logger.info(
        "search_scenes completed | discovered=%d | registered=%d | to_process=%d | "
        "ready=%d | failed=%d | retries=%d",
        len(results),
        registered,
        len(to_process),
        len(ready),
        len(failed),
        retries,
    )
    return SearchScenesOutput(
        to_process=to_process,
        ready=ready,
        failed=failed,
        discovered=len(results),
        registered=registered,
    )
