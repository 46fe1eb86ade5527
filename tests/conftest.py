"""Shared pytest fixtures for the TerraScan test suite."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import numpy as np
import pytest
import rasterio
from rasterio.crs import CRS
from rasterio.transform import from_origin

from terrascan.analysis.raster_io import write_stack
from terrascan.catalog.memory import InMemoryCatalog
from terrascan.core.config import PipelineConfig
from terrascan.models.imagery import ProviderConfig, SearchResult
from terrascan.models.scene import ImageryScene, PreprocessingStatus, scene_record_id
from terrascan.providers.base import ImageryProvider, ProviderDownloadError
from terrascan.storage.local import LocalRasterStorage

# ---------------------------------------------------------------------------
# Raster grid used by every synthetic scene
# ---------------------------------------------------------------------------

GRID_CRS = CRS.from_epsg(32633)
GRID_SIZE = 32
GRID_PIXEL_M = 10.0
GRID_TRANSFORM = from_origin(500_000.0, 5_000_000.0, GRID_PIXEL_M, GRID_PIXEL_M)

ACQUIRED_AT = datetime(2024, 6, 10, 10, 15, tzinfo=UTC)

# Sentinel-2 DNs (offset -1000 applies after 2022-01-25): red 0.1, nir 0.4.
BAND_DN: dict[str, int] = {
    "blue": 1500,
    "green": 1800,
    "red": 2000,
    "nir": 5000,
    "swir16": 3000,
    "swir22": 2500,
}

# 20 m bands are delivered on a coarser grid.
COARSE_BANDS = frozenset({"swir16", "swir22", "scl"})

SCL_VEGETATION = 4
SCL_CLOUD_HIGH = 9
CLOUD_BLOCK = 4  # top-left CLOUD_BLOCK x CLOUD_BLOCK pixels (10 m grid) are cloud


def grid_profile() -> dict[str, Any]:
    return {
        "crs": GRID_CRS,
        "transform": GRID_TRANSFORM,
        "width": GRID_SIZE,
        "height": GRID_SIZE,
    }


def write_single_band(
    path: Path,
    array: np.ndarray,
    *,
    pixel_m: float = GRID_PIXEL_M,
    nodata: float | None = None,
) -> Path:
    """Write a one-band GeoTIFF on the test grid (scaled to *pixel_m*)."""
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=array.shape[0],
        width=array.shape[1],
        count=1,
        dtype=str(array.dtype),
        crs=GRID_CRS,
        transform=from_origin(500_000.0, 5_000_000.0, pixel_m, pixel_m),
        nodata=nodata,
    ) as dst:
        dst.write(array, 1)
    return path


def synthetic_band(band: str) -> np.ndarray:
    """DN array for *band*; coarse bands come at half resolution."""
    size = GRID_SIZE // 2 if band in COARSE_BANDS else GRID_SIZE
    if band == "scl":
        scl = np.full((size, size), SCL_VEGETATION, dtype=np.uint8)
        scl[: CLOUD_BLOCK // 2, : CLOUD_BLOCK // 2] = SCL_CLOUD_HIGH
        return scl
    return np.full((size, size), BAND_DN[band], dtype=np.uint16)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeProvider(ImageryProvider):
    """In-process provider writing synthetic Sentinel-2 bands.

    Attributes:
        results: Returned by ``search``.
        download_failures: Number of leading ``download`` calls that
            raise a retryable ``ProviderDownloadError``.
        permanent_failure: If set, every ``download`` raises a
            non-retryable error with this message.
    """

    def __init__(self, results: list[SearchResult] | None = None) -> None:
        super().__init__(ProviderConfig(name="fake"))
        self.results = list(results or [])
        self.download_failures = 0
        self.permanent_failure = ""
        self.search_calls = 0
        self.download_calls = 0

    def search(self, filters: Any) -> list[SearchResult]:
        self.search_calls += 1
        return list(self.results)

    def download(self, scene: ImageryScene, bands: list[str], dest_dir: Path) -> dict[str, Path]:
        self.download_calls += 1
        if self.permanent_failure:
            raise ProviderDownloadError(self.name, self.permanent_failure)
        if self.download_calls <= self.download_failures:
            raise ProviderDownloadError(self.name, "connection reset", retryable=True)
        paths: dict[str, Path] = {}
        for band in bands:
            pixel_m = GRID_PIXEL_M * 2 if band in COARSE_BANDS else GRID_PIXEL_M
            paths[band] = write_single_band(
                dest_dir / f"{band}.tif", synthetic_band(band), pixel_m=pixel_m
            )
        return paths


def _search_result(
    scene_id: str = "S2A_MSIL2A_20240610T101559_T33UUP", **overrides: Any
) -> SearchResult:
    values: dict[str, Any] = {
        "scene_id": scene_id,
        "provider": "fake",
        "acquisition_date": ACQUIRED_AT,
        "cloud_cover_pct": 4.5,
        "spatial_resolution_m": 10.0,
        "collection": "sentinel-2-l2a",
        "bbox": (14.9, 45.1, 15.1, 45.2),
        "footprint": {"type": "Polygon", "coordinates": []},
        "asset_urls": {b: f"https://example.test/{scene_id}/{b}.tif" for b in [*BAND_DN, "scl"]},
    }
    values.update(overrides)
    return SearchResult(**values)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def config() -> PipelineConfig:
    """Configuration with instant retries."""
    return PipelineConfig(stage_max_retries=2, retry_base_seconds=0.0, cog_blocksize=256)


@pytest.fixture()
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog()


@pytest.fixture()
def storage(tmp_path: Path) -> LocalRasterStorage:
    return LocalRasterStorage(tmp_path / "store")


@pytest.fixture()
def make_search_result():
    """Factory for provider ``SearchResult`` objects."""
    return _search_result


@pytest.fixture()
def provider_cls() -> type[FakeProvider]:
    return FakeProvider


@pytest.fixture()
def fake_provider() -> FakeProvider:
    return FakeProvider([_search_result()])


@pytest.fixture()
def write_band():
    """Factory writing one-band GeoTIFFs on the test grid."""
    return write_single_band


@pytest.fixture()
def band_dn():
    """Factory for the synthetic DN array of a named band."""
    return synthetic_band


@pytest.fixture()
def make_scene():
    """Factory for ``ImageryScene`` records with realistic defaults."""

    def _make(
        scene_id: str = "S2A_MSIL2A_20240610T101559_T33UUP", **overrides: Any
    ) -> ImageryScene:
        values: dict[str, Any] = {
            "id": scene_record_id("fake", scene_id),
            "provider": "fake",
            "scene_id": scene_id,
            "acquired_at": ACQUIRED_AT,
            "collection": "sentinel-2-l2a",
            "cloud_cover_pct": 4.5,
            "bbox": (14.9, 45.1, 15.1, 45.2),
            "resolution_m": 10.0,
            "bands": sorted([*BAND_DN, "scl"]),
            "asset_urls": {
                b: f"https://example.test/{scene_id}/{b}.tif" for b in [*BAND_DN, "scl"]
            },
        }
        values.update(overrides)
        return ImageryScene(**values)

    return _make


@pytest.fixture()
def add_ready_scene(
    catalog: InMemoryCatalog,
    storage: LocalRasterStorage,
    config: PipelineConfig,
    tmp_path: Path,
    make_scene,
):
    """Store a reflectance stack and register it as a ``ready`` scene.

    Usage::

        scene = add_ready_scene("before", {"red": red, "nir": nir})
    """
    stacks = tmp_path / "stacks"
    stacks.mkdir(exist_ok=True)

    def _add(scene_id: str, bands: dict[str, np.ndarray]) -> ImageryScene:
        local = write_stack(stacks / f"{scene_id}.tif", bands, grid_profile())
        ref = storage.upload_file(config.cog_container, f"cog/{scene_id}.tif", local)
        scene = make_scene(
            scene_id,
            status=PreprocessingStatus.READY,
            storage_location=ref.uri,
            bands=list(bands),
        )
        stored, _created = catalog.register_scene(scene)
        return stored

    return _add


@pytest.fixture()
def reflectance() -> dict[str, np.ndarray]:
    """Uniform reflectance bands on the test grid (NDVI 0.6)."""
    shape = (GRID_SIZE, GRID_SIZE)
    return {
        "blue": np.full(shape, 0.05, dtype=np.float32),
        "green": np.full(shape, 0.08, dtype=np.float32),
        "red": np.full(shape, 0.1, dtype=np.float32),
        "nir": np.full(shape, 0.4, dtype=np.float32),
        "swir16": np.full(shape, 0.2, dtype=np.float32),
        "swir22": np.full(shape, 0.15, dtype=np.float32),
    }


@pytest.fixture()
def raster_profile() -> dict[str, Any]:
    """CRS, transform and size of the test grid."""
    return grid_profile()
