"""Tests for DN → reflectance correction."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import numpy as np
import pytest

from terrascan.activities.correct_atmosphere import (
    correct_bands,
    correct_scene,
    dark_object_subtract,
    radiometric_offset,
    to_reflectance,
)
from terrascan.analysis.raster_io import read_stack
from terrascan.core.exceptions import StageError

_NEW = datetime(2024, 6, 10, tzinfo=UTC)
_OLD = datetime(2021, 6, 10, tzinfo=UTC)


class TestRadiometricOffset:
    def test_after_baseline_change(self) -> None:
        assert radiometric_offset(_NEW) == -1000.0

    def test_before_baseline_change(self) -> None:
        assert radiometric_offset(_OLD) == 0.0

    def test_naive_treated_as_utc(self) -> None:
        assert radiometric_offset(datetime(2022, 1, 25)) == -1000.0


class TestToReflectance:
    def test_scale_and_offset(self) -> None:
        out = to_reflectance(np.array([[2000, 5000]], dtype=np.uint16), offset=-1000.0)
        assert out.dtype == np.float32
        np.testing.assert_allclose(out, [[0.1, 0.4]], rtol=1e-6)

    def test_nodata_becomes_nan(self) -> None:
        out = to_reflectance(np.array([0, 1500], dtype=np.uint16))
        assert np.isnan(out[0])
        assert out[1] == pytest.approx(0.15)

    def test_clipped_at_zero(self) -> None:
        out = to_reflectance(np.array([500], dtype=np.uint16), offset=-1000.0)
        assert out[0] == 0.0


class TestDarkObjectSubtract:
    def test_removes_dark_value(self) -> None:
        band = np.linspace(0.05, 0.5, 101, dtype=np.float32)
        out = dark_object_subtract(band, percentile=0.0)
        assert out.min() == pytest.approx(0.0)
        assert out.max() == pytest.approx(0.45)

    def test_all_nan_passthrough(self) -> None:
        band = np.full(4, np.nan, dtype=np.float32)
        assert dark_object_subtract(band) is band


class TestCorrectBands:
    def test_drops_classification_band(self) -> None:
        bands = {"red": np.full((2, 2), 2000), "scl": np.full((2, 2), 4)}
        assert list(correct_bands(bands, acquired_at=_NEW)) == ["red"]

    def test_unknown_method(self) -> None:
        with pytest.raises(StageError, match="unknown correction method"):
            correct_bands({"red": np.ones((2, 2))}, method="sen2cor", acquired_at=_NEW)

    def test_dos_darkens(self) -> None:
        red = np.array([[1500, 2000], [2500, 3000]])
        scale = correct_bands({"red": red}, acquired_at=_NEW)["red"]
        dos = correct_bands({"red": red}, method="dos", acquired_at=_NEW)["red"]
        assert np.all(dos <= scale)


class TestCorrectScene:
    def test_writes_common_grid_stack(
        self, tmp_path: Path, write_band, band_dn
    ) -> None:
        paths = {
            "red": write_band(tmp_path / "red.tif", band_dn("red")),
            "nir": write_band(tmp_path / "nir.tif", band_dn("nir")),
            "swir16": write_band(tmp_path / "swir16.tif", band_dn("swir16"), pixel_m=20.0),
            "scl": write_band(tmp_path / "scl.tif", band_dn("scl"), pixel_m=20.0),
        }

        out = correct_scene(paths, tmp_path / "corrected.tif", acquired_at=_NEW)
        bands, profile = read_stack(out)

        assert list(bands) == ["red", "nir", "swir16"]
        assert (profile["height"], profile["width"]) == (32, 32)
        assert float(np.nanmean(bands["red"])) == pytest.approx(0.1, rel=1e-5)
        assert float(np.nanmean(bands["swir16"])) == pytest.approx(0.2, rel=1e-5)

    def test_only_classification_bands(self, tmp_path: Path, write_band, band_dn) -> None:
        paths = {"scl": write_band(tmp_path / "scl.tif", band_dn("scl"), pixel_m=20.0)}
        with pytest.raises(StageError, match="no reflectance bands"):
            correct_scene(paths, tmp_path / "out.tif", acquired_at=_NEW)

    def test_unreadable_raster(self, tmp_path: Path) -> None:
        bogus = tmp_path / "red.tif"
        bogus.write_bytes(b"not a tiff")
        with pytest.raises(StageError) as exc_info:
            correct_scene({"red": bogus}, tmp_path / "out.tif", acquired_at=_NEW)
        assert exc_info.value.stage == "correct"
