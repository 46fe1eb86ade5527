"""Microsoft Planetary Computer adapter (STAC API).

Concrete ``ImageryProvider`` implementation using the free Microsoft
Planetary Computer STAC API, defaulting to the Sentinel-2 L2A
collection.  Search goes through ``pystac-client``; band assets are
streamed to local files with ``httpx``.

Asset hrefs on Planetary Computer live in Azure Blob Storage and need a
short-lived SAS token.  Tokens are fetched per collection from the
Planetary Computer SAS endpoint and cached on the adapter instance.

Configuration:
    The STAC catalogue URL defaults to
    ``https://planetarycomputer.microsoft.com/api/stac/v1``.
    Override via ``ProviderConfig.api_base_url`` if needed.
    ``extra_params["sign_assets"] = "false"`` disables SAS signing
    (for mirrors that serve public hrefs).
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx
import pystac_client

from terrascan.core.constants import SENTINEL2_BAND_ASSETS
from terrascan.models.imagery import ImageryFilters, SearchResult
from terrascan.providers.base import (
    ImageryProvider,
    ProviderDownloadError,
    ProviderSearchError,
)

if TYPE_CHECKING:
    from pathlib import Path

    import pystac

    from terrascan.models.imagery import ProviderConfig
    from terrascan.models.scene import ImageryScene

logger = logging.getLogger("terrascan.providers.planetary_computer")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_DEFAULT_STAC_URL = "https://planetarycomputer.microsoft.com/api/stac/v1"
_SAS_TOKEN_URL = "https://planetarycomputer.microsoft.com/api/sas/v1/token/{collection}"

_DEFAULT_COLLECTIONS = ["sentinel-2-l2a"]

# Sentinel-2 native resolution when the item carries no ``gsd``.
_DEFAULT_GSD_M = 10.0

_HTTP_TIMEOUT_S = 60.0

# HTTP statuses worth retrying.
_RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})


class PlanetaryComputerAdapter(ImageryProvider):
    """Planetary Computer STAC adapter.

    Uses ``pystac-client`` for catalogue search and ``httpx`` for asset
    download.  An ``httpx.Client`` can be injected for tests; otherwise
    one is created per download call.
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        http_client: httpx.Client | None = None,
    ) -> None:
        super().__init__(config)
        self._stac_url = config.api_base_url or _DEFAULT_STAC_URL
        self._http_client = http_client
        self._sign_assets = config.extra_params.get("sign_assets", "true").lower() != "false"
        # collection → SAS token
        self._tokens: dict[str, str] = {}
        self._token_lock = threading.Lock()

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------

    def search(self, filters: ImageryFilters) -> list[SearchResult]:
        """Search the Planetary Computer STAC catalogue.

        Returns:
            List of ``SearchResult`` sorted by cloud cover (ascending).

        Raises:
            ProviderSearchError: On STAC API errors (retryable).
        """
        collections = filters.collections or list(_DEFAULT_COLLECTIONS)
        date_range = _build_date_range(filters)

        query_params: dict[str, Any] = {}
        if filters.max_cloud_cover_pct < 100.0:
            query_params["eo:cloud_cover"] = {"lte": filters.max_cloud_cover_pct}

        try:
            catalogue = pystac_client.Client.open(self._stac_url)
            stac_search = catalogue.search(
                bbox=list(filters.bbox),
                collections=collections,
                datetime=date_range,
                query=query_params if query_params else None,
                max_items=filters.max_items,
            )
            items = list(stac_search.items())
        except Exception as exc:
            msg = f"STAC search failed: {exc}"
            raise ProviderSearchError(provider=self.name, message=msg, retryable=True) from exc

        results: list[SearchResult] = []
        for item in items:
            result = self._item_to_search_result(item)
            if result is not None:
                results.append(result)

        results.sort(key=lambda r: r.cloud_cover_pct)

        logger.info(
            "Planetary Computer search | items=%d | bbox=%s | collections=%s | datetime=%s",
            len(results),
            filters.bbox,
            collections,
            date_range,
        )
        return results

    # ------------------------------------------------------------------
    # download
    # ------------------------------------------------------------------

    def download(
        self,
        scene: ImageryScene,
        bands: list[str],
        dest_dir: Path,
    ) -> dict[str, Path]:
        """Stream each requested band asset to ``dest_dir/{band}.tif``.

        Raises:
            ProviderDownloadError: Non-retryable when an asset is missing
                or the server answers 4xx; retryable on transport errors
                and 408/429/5xx.
        """
        missing = [b for b in bands if b not in scene.asset_urls]
        if missing:
            msg = f"Scene {scene.scene_id} has no asset for band(s): {', '.join(missing)}"
            raise ProviderDownloadError(provider=self.name, message=msg)

        paths: dict[str, Path] = {}
        client = self._http_client or httpx.Client(
            timeout=_HTTP_TIMEOUT_S, follow_redirects=True
        )
        try:
            for band in bands:
                href = self._sign(scene.asset_urls[band], scene.collection, client)
                dest = dest_dir / f"{band}.tif"
                size = self._stream_to_file(client, href, dest, scene_id=scene.scene_id)
                logger.debug(
                    "Band downloaded | scene=%s | band=%s | bytes=%d", scene.scene_id, band, size
                )
                paths[band] = dest
        finally:
            if self._http_client is None:
                client.close()

        logger.info(
            "Planetary Computer download | scene=%s | bands=%s", scene.scene_id, ",".join(bands)
        )
        return paths

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _stream_to_file(self, client: httpx.Client, url: str, dest: Path, *, scene_id: str) -> int:
        size = 0
        try:
            with client.stream("GET", url) as response:
                response.raise_for_status()
                with dest.open("wb") as fh:
                    for chunk in response.iter_bytes():
                        fh.write(chunk)
                        size += len(chunk)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            msg = f"Asset download for {scene_id} returned HTTP {status}"
            raise ProviderDownloadError(
                provider=self.name, message=msg, retryable=status in _RETRYABLE_STATUS
            ) from exc
        except httpx.TransportError as exc:
            msg = f"Asset download for {scene_id} failed: {exc}"
            raise ProviderDownloadError(provider=self.name, message=msg, retryable=True) from exc

        if size == 0:
            msg = f"Asset download for {scene_id} returned an empty body"
            raise ProviderDownloadError(provider=self.name, message=msg, retryable=True)
        return size

    def _sign(self, href: str, collection: str, client: httpx.Client) -> str:
        """Append a SAS token to Azure Blob hrefs (no-op elsewhere)."""
        if not self._sign_assets or not collection:
            return href
        if not urlparse(href).netloc.endswith(".blob.core.windows.net"):
            return href

        with self._token_lock:
            token = self._tokens.get(collection)
        if token is None:
            try:
                response = client.get(_SAS_TOKEN_URL.format(collection=collection))
                response.raise_for_status()
                token = str(response.json()["token"])
            except (httpx.HTTPError, KeyError, ValueError) as exc:
                msg = f"Failed to obtain SAS token for collection {collection}: {exc}"
                raise ProviderDownloadError(
                    provider=self.name, message=msg, retryable=True
                ) from exc
            with self._token_lock:
                self._tokens[collection] = token

        separator = "&" if "?" in href else "?"
        return f"{href}{separator}{token}"

    def _item_to_search_result(self, item: pystac.Item) -> SearchResult | None:
        """Convert a STAC item to a ``SearchResult``, or ``None`` if unusable."""
        try:
            properties = item.properties or {}

            dt_str = properties.get("datetime") or ""
            if dt_str:
                acquisition_date = datetime.fromisoformat(dt_str.replace("Z", "+00:00"))
            else:
                acquisition_date = datetime.now(UTC)

            cloud_cover = float(properties.get("eo:cloud_cover", 0.0))
            gsd = float(properties.get("gsd", _DEFAULT_GSD_M))

            crs = properties.get("proj:epsg")
            crs_str = f"EPSG:{crs}" if crs else "EPSG:4326"

            bbox_raw = item.bbox or [0.0, 0.0, 0.0, 0.0]
            bbox = (
                float(bbox_raw[0]),
                float(bbox_raw[1]),
                float(bbox_raw[2]),
                float(bbox_raw[3]),
            )

            return SearchResult(
                scene_id=item.id,
                provider=self.name,
                acquisition_date=acquisition_date,
                cloud_cover_pct=cloud_cover,
                spatial_resolution_m=gsd,
                collection=str(getattr(item, "collection_id", "") or ""),
                crs=crs_str,
                bbox=bbox,
                footprint=dict(item.geometry or {}),
                asset_urls=_band_asset_urls(item),
                extra={
                    "platform": properties.get("platform", ""),
                    "constellation": properties.get("constellation", ""),
                },
            )
        except (KeyError, ValueError, TypeError, AttributeError, IndexError):
            logger.warning(
                "Skipping unparseable STAC item: %s",
                getattr(item, "id", "?"),
                exc_info=True,
            )
            return None


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def _build_date_range(filters: ImageryFilters) -> str | None:
    """Convert filter dates to a STAC datetime range string.

    Returns ``None`` if no date constraints are set.

    Examples:
        - ``"2025-01-01T00:00:00+00:00/2025-12-31T23:59:59+00:00"``
        - ``"2025-01-01T00:00:00+00:00/.."``  (open end)
    """
    if filters.date_start is None and filters.date_end is None:
        return None

    start = filters.date_start.isoformat() if filters.date_start else ".."
    end = filters.date_end.isoformat() if filters.date_end else ".."
    return f"{start}/{end}"


def _band_asset_urls(item: pystac.Item) -> dict[str, str]:
    """Map common band names to the item's asset hrefs (missing bands omitted)."""
    assets = getattr(item, "assets", {}) or {}
    urls: dict[str, str] = {}
    for band, asset_key in SENTINEL2_BAND_ASSETS.items():
        asset = assets.get(asset_key)
        if asset is not None and getattr(asset, "href", ""):
            urls[band] = str(asset.href)
    return urls
