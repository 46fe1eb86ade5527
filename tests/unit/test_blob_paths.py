"""Tests for deterministic blob path generation."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from terrascan.utils.blob_paths import (
    build_cog_path,
    build_job_output_path,
    build_raw_band_path,
    build_sidecar_path,
    sanitise_slug,
)

_ACQ = datetime(2024, 6, 10, 10, 15, tzinfo=UTC)


class TestSanitiseSlug:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("S2A_MSIL2A_20240610T101559", "s2a_msil2a_20240610t101559"),
            ("Planetary Computer", "planetary-computer"),
            ("a.b..c", "a-b-c"),
            ("../../etc", "etc"),
            ("***", "unknown"),
        ],
    )
    def test_slug(self, raw: str, expected: str) -> None:
        assert sanitise_slug(raw) == expected


class TestScenePaths:
    def test_raw_band(self) -> None:
        path = build_raw_band_path("planetary_computer", "S2A_X", "red", acquired_at=_ACQ)
        assert path == "raw/2024/06/planetary_computer/s2a_x/red.tif"

    def test_cog_and_sidecar(self) -> None:
        cog = build_cog_path("planetary_computer", "S2A_X", acquired_at=_ACQ)
        assert cog == "cog/2024/06/planetary_computer/s2a_x.tif"
        assert build_sidecar_path(cog) == "cog/2024/06/planetary_computer/s2a_x.json"

    def test_paths_are_deterministic(self) -> None:
        assert build_cog_path("pc", "A", acquired_at=_ACQ) == build_cog_path(
            "pc", "A", acquired_at=_ACQ
        )


class TestJobOutputPath:
    def test_keeps_extension(self) -> None:
        assert build_job_output_path("Job-1", "NDVI.TIF") == "jobs/job-1/ndvi.tif"

    def test_geojson(self) -> None:
        assert build_job_output_path("j", "features.geojson") == "jobs/j/features.geojson"

    def test_no_extension(self) -> None:
        assert build_job_output_path("j", "summary") == "jobs/j/summary"
