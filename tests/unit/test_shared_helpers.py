"""Tests for shared helpers and activity payload validation."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from terrascan.core.exceptions import ContractError
from terrascan.models.imagery import ProviderConfig
from terrascan.models.payloads import (
    MarkJobFailedInput,
    PreprocessSceneInput,
    SubmitJobInput,
    validate_payload,
)
from terrascan.utils.helpers import build_provider_config, parse_timestamp


class TestBuildProviderConfig:
    def test_unknown_keys_ignored(self) -> None:
        config = build_provider_config("planetary_computer", {"auth_mechanism": "oauth2"})
        assert config == ProviderConfig(name="planetary_computer")

    def test_name_only(self) -> None:
        config = build_provider_config("planetary_computer", None)
        assert config.name == "planetary_computer"
        assert config.extra_params == {}

    def test_overrides(self) -> None:
        config = build_provider_config(
            "planetary_computer",
            {"api_base_url": "https://stac.test", "extra_params": {"sign_assets": False}},
        )
        assert config.api_base_url == "https://stac.test"
        assert config.extra_params == {"sign_assets": "False"}


class TestParseTimestamp:
    def test_zulu(self) -> None:
        assert parse_timestamp("2024-06-10T10:15:00Z") == datetime(
            2024, 6, 10, 10, 15, tzinfo=UTC
        )

    def test_naive_is_utc(self) -> None:
        assert parse_timestamp("2024-06-10T10:15:00").tzinfo is UTC

    @pytest.mark.parametrize("raw", ["", "not a date"])
    def test_fallback_to_now(self, raw: str) -> None:
        before = datetime.now(UTC)
        assert parse_timestamp(raw) >= before


class TestValidatePayload:
    def test_ok(self) -> None:
        validate_payload({"scene_id": "a"}, PreprocessSceneInput, activity="preprocess_scene")

    def test_missing_keys_sorted(self) -> None:
        with pytest.raises(ContractError, match="error, job_id") as exc_info:
            validate_payload({}, MarkJobFailedInput, activity="mark_job_failed")
        assert exc_info.value.code == "PAYLOAD_MISSING_KEYS"
        assert exc_info.value.stage == "mark_job_failed"

    def test_submit_job(self) -> None:
        with pytest.raises(ContractError, match="scene_ids"):
            validate_payload({"job_type": "spectral_index"}, SubmitJobInput, activity="submit_job")

    def test_unregistered_schema_is_noop(self) -> None:
        validate_payload({}, dict, activity="x")
