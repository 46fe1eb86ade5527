"""Tests for environment-driven pipeline configuration."""

from __future__ import annotations

import pytest

from terrascan.core.config import ConfigValidationError, PipelineConfig


class TestDefaults:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for key in ("STAGE_MAX_RETRIES", "STAC_COLLECTIONS", "COG_BLOCKSIZE", "INFERENCE_URL"):
            monkeypatch.delenv(key, raising=False)
        config = PipelineConfig.from_env()
        assert config.stage_max_retries == 3
        assert config.stac_collections == ("sentinel-2-l2a",)
        assert config.cog_blocksize == 512
        assert config.inference_url == ""
        assert config.cog_container == "imagery-cog"

    def test_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STAC_COLLECTIONS", "sentinel-2-l2a, landsat-c2-l2 ,")
        monkeypatch.setenv("STAGE_MAX_RETRIES", "0")
        monkeypatch.setenv("CORRECTION_METHOD", "dos")
        monkeypatch.setenv("LOCAL_STORAGE_ROOT", "/tmp/terrascan")
        config = PipelineConfig.from_env()
        assert config.stac_collections == ("sentinel-2-l2a", "landsat-c2-l2")
        assert config.stage_max_retries == 0
        assert config.correction_method == "dos"
        assert config.local_storage_root == "/tmp/terrascan"

    def test_unparseable_number(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SEARCH_MAX_ITEMS", "lots")
        with pytest.raises(ValueError):
            PipelineConfig.from_env()


class TestValidation:
    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("IMAGERY_MAX_CLOUD_COVER_PCT", "101"),
            ("SEARCH_MAX_ITEMS", "0"),
            ("STAGE_MAX_RETRIES", "-1"),
            ("RETRY_BASE_SECONDS", "-0.5"),
            ("INFERENCE_TIMEOUT_S", "0"),
            ("CORRECTION_METHOD", "sen2cor"),
            ("COG_BLOCKSIZE", "500"),
            ("PREPROCESS_BATCH_SIZE", "0"),
            ("JOB_MAX_WORKERS", "0"),
            ("STAC_COLLECTIONS", " , "),
            ("COG_CONTAINER", ""),
        ],
    )
    def test_out_of_range(self, monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
        monkeypatch.setenv(key, value)
        with pytest.raises(ConfigValidationError) as exc_info:
            PipelineConfig.from_env()
        assert exc_info.value.key == key
        assert exc_info.value.code == "CONFIG_VALIDATION_FAILED"
        assert not exc_info.value.retryable

    def test_config_is_frozen(self) -> None:
        config = PipelineConfig()
        with pytest.raises(AttributeError):
            config.cog_blocksize = 16  # type: ignore[misc]
