"""Tests for named band stacks, COG writing and mask vectorisation."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import rasterio
from rasterio.crs import CRS
from rasterio.transform import from_origin
from shapely.geometry import shape

from terrascan.analysis.raster_io import (
    band_index_map,
    band_names,
    read_bands,
    read_stack,
    vectorize_mask,
    write_cog,
    write_stack,
)

_CRS = CRS.from_epsg(32633)
_TRANSFORM = from_origin(500_000.0, 5_000_000.0, 10.0, 10.0)
_PROFILE = {"crs": _CRS, "transform": _TRANSFORM}


class TestStacks:
    def test_round_trip_keeps_band_names(self, tmp_path: Path) -> None:
        arrays = {"red": np.full((4, 4), 0.1), "nir": np.full((4, 4), 0.4)}
        path = write_stack(tmp_path / "s.tif", arrays, _PROFILE)

        bands, profile = read_stack(path)

        assert list(bands) == ["red", "nir"]
        assert bands["nir"][0, 0] == pytest.approx(0.4)
        assert profile["crs"] == _CRS
        assert (profile["height"], profile["width"]) == (4, 4)

    def test_read_stack_resamples(self, tmp_path: Path) -> None:
        path = write_stack(tmp_path / "s.tif", {"red": np.ones((8, 8))}, _PROFILE)
        bands, profile = read_stack(path, out_shape=(4, 4))
        assert bands["red"].shape == (4, 4)
        assert profile["transform"].a == pytest.approx(20.0)

    def test_band_names_from_tag_fallback(self, tmp_path: Path) -> None:
        path = tmp_path / "tagged.tif"
        with rasterio.open(
            path, "w", driver="GTiff", height=2, width=2, count=2, dtype="uint8",
            crs=_CRS, transform=_TRANSFORM,
        ) as dst:
            dst.write(np.zeros((2, 2, 2), dtype=np.uint8))
            dst.update_tags(bands="red,nir")
        with rasterio.open(path) as src:
            assert band_names(src) == ["red", "nir"]
            assert band_index_map(src) == {"red": 1, "nir": 2}

    def test_band_names_generic_fallback(self, tmp_path: Path) -> None:
        path = tmp_path / "plain.tif"
        with rasterio.open(
            path, "w", driver="GTiff", height=2, width=2, count=2, dtype="uint8",
            crs=_CRS, transform=_TRANSFORM,
        ) as dst:
            dst.write(np.zeros((2, 2, 2), dtype=np.uint8))
        with rasterio.open(path) as src:
            assert band_names(src) == ["band1", "band2"]


class TestReadBands:
    def test_coarse_bands_resampled_to_finest_grid(self, tmp_path: Path, write_band) -> None:
        paths = {
            "red": write_band(tmp_path / "red.tif", np.full((8, 8), 100, dtype=np.uint16)),
            "swir16": write_band(
                tmp_path / "swir16.tif", np.full((4, 4), 200, dtype=np.uint16), pixel_m=20.0
            ),
            "scl": write_band(
                tmp_path / "scl.tif", np.full((4, 4), 9, dtype=np.uint8), pixel_m=20.0
            ),
        }

        arrays, profile = read_bands(paths)

        assert {a.shape for a in arrays.values()} == {(8, 8)}
        assert profile["width"] == 8
        # Class codes are never interpolated.
        assert set(np.unique(arrays["scl"])) == {9}

    def test_empty_input(self) -> None:
        with pytest.raises(ValueError, match="no band paths"):
            read_bands({})


class TestCog:
    def test_write_cog_is_tiled_and_keeps_descriptions(self, tmp_path: Path) -> None:
        src = write_stack(
            tmp_path / "s.tif",
            {"red": np.ones((64, 64)), "nir": np.ones((64, 64))},
            _PROFILE,
        )
        dst = write_cog(src, tmp_path / "cog.tif", blocksize=32)

        with rasterio.open(dst) as cog:
            assert cog.driver == "GTiff"
            assert cog.profile.get("tiled") is True
            assert cog.block_shapes[0] == (32, 32)
            assert band_names(cog) == ["red", "nir"]


class TestVectorizeMask:
    def test_square_patch_becomes_polygon_in_wgs84(self) -> None:
        mask = np.zeros((10, 10), dtype=bool)
        mask[2:5, 2:5] = True

        polygons = list(vectorize_mask(mask, _PROFILE))

        assert len(polygons) == 1
        geom = shape(polygons[0])
        assert geom.geom_type == "Polygon"
        lon, lat = geom.centroid.x, geom.centroid.y
        assert 10.0 < lon < 20.0
        assert 40.0 < lat < 50.0

    def test_min_pixels_filters_small_regions(self) -> None:
        mask = np.zeros((10, 10), dtype=bool)
        mask[0, 0] = True
        mask[5:8, 5:8] = True
        polygons = list(vectorize_mask(mask, _PROFILE, min_pixels=4))
        assert len(polygons) == 1

    def test_limit(self) -> None:
        mask = np.zeros((10, 10), dtype=bool)
        mask[0, 0] = mask[0, 5] = mask[5, 0] = True
        assert len(list(vectorize_mask(mask, _PROFILE, limit=2))) == 2

    def test_empty_mask(self) -> None:
        assert list(vectorize_mask(np.zeros((4, 4), dtype=bool), _PROFILE)) == []
