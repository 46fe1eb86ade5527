"""Azure Blob Storage raster store."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import ContentSettings

from terrascan.models.imagery import BlobReference
from terrascan.storage.base import RasterStorage, StorageError

if TYPE_CHECKING:
    from pathlib import Path

    from azure.storage.blob import BlobServiceClient

logger = logging.getLogger("terrascan.storage.blob")


class BlobRasterStorage(RasterStorage):
    """Stores objects as block blobs; all writes overwrite (idempotent)."""

    def __init__(self, blob_service_client: BlobServiceClient) -> None:
        self._client = blob_service_client

    def upload_file(
        self,
        container: str,
        blob_path: str,
        local_path: Path,
        *,
        content_type: str = "image/tiff",
    ) -> BlobReference:
        blob_client = self._client.get_blob_client(container=container, blob=blob_path)
        size = local_path.stat().st_size
        try:
            with local_path.open("rb") as fh:
                blob_client.upload_blob(
                    fh,
                    overwrite=True,
                    content_settings=ContentSettings(content_type=content_type),
                )
        except AzureError as exc:
            msg = f"Upload to {container}/{blob_path} failed: {exc}"
            raise StorageError(msg, retryable=True) from exc

        logger.info(
            "Blob uploaded | container=%s | path=%s | bytes=%d", container, blob_path, size
        )
        return BlobReference(
            container=container, blob_path=blob_path, size_bytes=size, content_type=content_type
        )

    def upload_bytes(
        self,
        container: str,
        blob_path: str,
        data: bytes,
        *,
        content_type: str = "application/json",
    ) -> BlobReference:
        blob_client = self._client.get_blob_client(container=container, blob=blob_path)
        try:
            blob_client.upload_blob(
                data,
                overwrite=True,
                content_settings=ContentSettings(content_type=content_type),
            )
        except AzureError as exc:
            msg = f"Upload to {container}/{blob_path} failed: {exc}"
            raise StorageError(msg, retryable=True) from exc
        return BlobReference(
            container=container,
            blob_path=blob_path,
            size_bytes=len(data),
            content_type=content_type,
        )

    def download_file(self, ref: BlobReference, dest: Path) -> Path:
        blob_client = self._client.get_blob_client(container=ref.container, blob=ref.blob_path)
        try:
            with dest.open("wb") as fh:
                blob_client.download_blob().readinto(fh)
        except ResourceNotFoundError as exc:
            msg = f"Blob not found: {ref.uri}"
            raise StorageError(msg, code="BLOB_NOT_FOUND", retryable=False) from exc
        except AzureError as exc:
            msg = f"Download of {ref.uri} failed: {exc}"
            raise StorageError(msg, retryable=True) from exc
        return dest

    def exists(self, ref: BlobReference) -> bool:
        blob_client = self._client.get_blob_client(container=ref.container, blob=ref.blob_path)
        return bool(blob_client.exists())
