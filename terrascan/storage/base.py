"""RasterStorage abstract base class.

Raw band assets, analysis-ready COGs, sidecar JSON and analysis outputs
all go through this interface, addressed by ``(container, blob_path)``.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

from terrascan.core.exceptions import PipelineError

if TYPE_CHECKING:
    from pathlib import Path

    from terrascan.models.imagery import BlobReference


class StorageError(PipelineError):
    """Raster store read or write failed."""

    default_stage = "storage"
    default_code = "STORAGE_ERROR"


class RasterStorage(abc.ABC):
    @abc.abstractmethod
    def upload_file(
        self,
        container: str,
        blob_path: str,
        local_path: Path,
        *,
        content_type: str = "image/tiff",
    ) -> BlobReference:
        """Store *local_path* at ``container/blob_path`` (overwriting)."""

    @abc.abstractmethod
    def upload_bytes(
        self,
        container: str,
        blob_path: str,
        data: bytes,
        *,
        content_type: str = "application/json",
    ) -> BlobReference:
        """Store *data* at ``container/blob_path`` (overwriting)."""

    @abc.abstractmethod
    def download_file(self, ref: BlobReference, dest: Path) -> Path:
        """Copy the stored object to *dest* and return it.

        Raises:
            StorageError: If the object does not exist (not retryable) or
                the transfer fails (retryable).
        """

    @abc.abstractmethod
    def exists(self, ref: BlobReference) -> bool:
        """Return ``True`` if the referenced object is stored."""
