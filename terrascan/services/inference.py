"""HTTP client for the external model-serving (inference) service.

Endpoints (all ``POST``, relative to the configured base URL):

    /cloud-mask   body: ``.npy`` float32 stack (bands, rows, cols)
                  reply: ``.npy`` boolean/uint8 mask (rows, cols)
    /detect       body: ``.npy`` stack; query: ``crs``, ``transform``
                  reply: GeoJSON FeatureCollection (EPSG:4326)
    /classify     same as ``/detect``; features carry a ``class`` property

Raster payloads are serialised with ``numpy.save`` and never pickled.
Transport errors and 408/429/5xx replies are raised as retryable
``InferenceError``s; anything else the service answers is final.
"""

from __future__ import annotations

import io
import json
import logging
from typing import TYPE_CHECKING, Any

import httpx
import numpy as np

from terrascan.core.exceptions import PipelineError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from terrascan.core.config import PipelineConfig

logger = logging.getLogger("terrascan.services.inference")

NPY_CONTENT_TYPE = "application/x-npy"

_RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})


class InferenceError(PipelineError):
    """The inference service could not be reached or gave an unusable answer."""

    default_stage = "inference"
    default_code = "INFERENCE_FAILED"

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message, retryable=retryable)


class InferenceClient:
    """Thin synchronous client over ``httpx``.

    Use as a context manager, or call ``close()``; an injected
    ``httpx.Client`` is left open for its owner.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not base_url:
            msg = "InferenceClient: base_url must not be empty"
            raise ValueError(msg)
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout_s)

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> InferenceClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def cloud_mask(self, stack: np.ndarray) -> np.ndarray:
        """Return a boolean cloud mask for a ``(bands, rows, cols)`` stack.

        Raises:
            InferenceError: On transport/HTTP failure, an unreadable
                reply, or a mask whose shape is not ``(rows, cols)``.
        """
        if stack.ndim != 3:
            msg = f"cloud_mask expects a (bands, rows, cols) stack, got shape {stack.shape}"
            raise InferenceError(msg)

        response = self._post("/cloud-mask", content=_to_npy(stack))
        try:
            mask = np.load(io.BytesIO(response.content), allow_pickle=False)
        except (ValueError, OSError) as exc:
            msg = f"cloud-mask reply is not a valid .npy array: {exc}"
            raise InferenceError(msg) from exc

        expected = stack.shape[1:]
        if mask.shape != expected:
            msg = f"cloud-mask reply has shape {mask.shape}, expected {expected}"
            raise InferenceError(msg)
        return mask.astype(bool)

    def detect(
        self,
        stack: np.ndarray,
        *,
        transform: Sequence[float],
        crs: str,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Run object detection; return GeoJSON features."""
        return self._features("/detect", stack, transform=transform, crs=crs, parameters=parameters)

    def classify(
        self,
        stack: np.ndarray,
        *,
        transform: Sequence[float],
        crs: str,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Run land-cover classification; return GeoJSON features."""
        return self._features(
            "/classify", stack, transform=transform, crs=crs, parameters=parameters
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _features(
        self,
        path: str,
        stack: np.ndarray,
        *,
        transform: Sequence[float],
        crs: str,
        parameters: dict[str, Any] | None,
    ) -> list[dict[str, Any]]:
        params: dict[str, str] = {
            "crs": crs,
            "transform": ",".join(repr(float(v)) for v in transform),
        }
        if parameters:
            params["parameters"] = json.dumps(parameters, sort_keys=True)

        response = self._post(path, content=_to_npy(stack), params=params)
        try:
            body = response.json()
        except ValueError as exc:
            msg = f"{path} reply is not JSON: {exc}"
            raise InferenceError(msg) from exc

        if not isinstance(body, dict) or body.get("type") != "FeatureCollection":
            msg = f"{path} reply is not a GeoJSON FeatureCollection"
            raise InferenceError(msg)
        features = body.get("features")
        if not isinstance(features, list):
            msg = f"{path} reply has no 'features' list"
            raise InferenceError(msg)
        return [f for f in features if isinstance(f, dict)]

    def _post(
        self,
        path: str,
        *,
        content: bytes,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        try:
            response = self._client.post(
                url,
                content=content,
                params=params,
                headers={"Content-Type": NPY_CONTENT_TYPE},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            msg = f"Inference {path} returned HTTP {status}"
            raise InferenceError(msg, retryable=status in _RETRYABLE_STATUS) from exc
        except httpx.TransportError as exc:
            msg = f"Inference {path} request failed: {exc}"
            raise InferenceError(msg, retryable=True) from exc

        logger.debug(
            "Inference call | path=%s | request_bytes=%d | response_bytes=%d",
            path,
            len(content),
            len(response.content),
        )
        return response


def _to_npy(array: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    np.save(buffer, np.ascontiguousarray(array), allow_pickle=False)
    return buffer.getvalue()


def get_inference_client(config: PipelineConfig) -> InferenceClient | None:
    """Return a client for ``config.inference_url``, or ``None`` when unset."""
    if not config.inference_url:
        return None
    return InferenceClient(config.inference_url, timeout_s=config.inference_timeout_s)
