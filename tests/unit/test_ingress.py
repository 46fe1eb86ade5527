"""Tests for the Functions ingress helpers."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from terrascan.core.config import PipelineConfig
from terrascan.core.exceptions import ContractError
from terrascan.core.ingress import (
    build_ingestion_input,
    deserialize_activity_input,
    get_blob_service_client,
    get_raster_storage,
)
from terrascan.storage.local import LocalRasterStorage


def _body(**overrides: object) -> dict[str, object]:
    body: dict[str, object] = {
        "bbox": [14.9, 45.1, 15.1, 45.2],
        "date_start": "2024-06-01",
        "date_end": "2024-06-30T23:59:59Z",
    }
    body.update(overrides)
    return body


class TestDeserializeActivityInput:
    def test_json_string(self) -> None:
        assert deserialize_activity_input('{"scene_id": "a"}') == {"scene_id": "a"}

    def test_dict_passthrough(self) -> None:
        payload = {"scene_id": "a"}
        assert deserialize_activity_input(payload) is payload

    def test_invalid_json(self) -> None:
        with pytest.raises(ContractError) as exc_info:
            deserialize_activity_input("{not json")
        assert exc_info.value.code == "INVALID_JSON"

    @pytest.mark.parametrize("raw", ['["a"]', 42, None])
    def test_non_object(self, raw: object) -> None:
        with pytest.raises(ContractError) as exc_info:
            deserialize_activity_input(raw)
        assert exc_info.value.code == "INVALID_INPUT_TYPE"


class TestBuildIngestionInput:
    def test_minimal_body(self) -> None:
        payload = build_ingestion_input(_body(), correlation_id="corr-1")
        assert payload == {
            "bbox": [14.9, 45.1, 15.1, 45.2],
            "date_start": "2024-06-01",
            "date_end": "2024-06-30T23:59:59Z",
            "max_cloud_cover_pct": 20.0,
            "correlation_id": "corr-1",
        }

    def test_generates_correlation_id(self) -> None:
        assert len(build_ingestion_input(_body())["correlation_id"]) == 36

    def test_optional_fields(self) -> None:
        payload = build_ingestion_input(
            _body(
                max_cloud_cover_pct="35",
                collections=["sentinel-2-l2a"],
                provider_name="planetary_computer",
                provider_config={"extra_params": {"sign_assets": "false"}},
            )
        )
        assert payload["max_cloud_cover_pct"] == 35.0
        assert payload["collections"] == ["sentinel-2-l2a"]
        assert payload["provider_name"] == "planetary_computer"
        assert payload["provider_config"] == {"extra_params": {"sign_assets": "false"}}

    @pytest.mark.parametrize(
        ("overrides", "code"),
        [
            ({"bbox": [1, 2, 3]}, "INVALID_BBOX"),
            ({"bbox": "14,45,15,46"}, "INVALID_BBOX"),
            ({"bbox": [1, 2, "x", 4]}, "INVALID_BBOX"),
            ({"bbox": [15.0, 45.0, 14.0, 46.0]}, "INVALID_BBOX"),
            ({"date_start": ""}, "MISSING_DATE"),
            ({"date_end": "June"}, "INVALID_DATE"),
            ({"date_start": "2024-07-01"}, "INVALID_DATE"),
            ({"max_cloud_cover_pct": "lots"}, "INVALID_CLOUD_COVER"),
            ({"max_cloud_cover_pct": 120}, "INVALID_CLOUD_COVER"),
        ],
    )
    def test_rejects_bad_body(self, overrides: dict[str, object], code: str) -> None:
        with pytest.raises(ContractError) as exc_info:
            build_ingestion_input(_body(**overrides))
        assert exc_info.value.code == code
        assert exc_info.value.stage == "ingress"

    def test_mixed_naive_and_aware_dates_compare(self) -> None:
        payload = build_ingestion_input(
            _body(date_start="2024-06-01T00:00:00", date_end="2024-06-01T00:00:00+00:00")
        )
        assert payload["date_start"] == "2024-06-01T00:00:00"


class TestClientFactories:
    def test_missing_connection_string(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("AzureWebJobsStorage", raising=False)
        with pytest.raises(ContractError) as exc_info:
            get_blob_service_client()
        assert exc_info.value.code == "MISSING_CONNECTION_STRING"

    def test_connection_string_used(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AzureWebJobsStorage", "UseDevelopmentStorage=true")
        with patch("azure.storage.blob.BlobServiceClient.from_connection_string") as factory:
            get_blob_service_client()
        factory.assert_called_once_with("UseDevelopmentStorage=true")

    def test_local_raster_storage(self, tmp_path: Path) -> None:
        storage = get_raster_storage(PipelineConfig(local_storage_root=str(tmp_path)))
        assert isinstance(storage, LocalRasterStorage)
        assert storage.root == tmp_path
