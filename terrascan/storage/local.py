"""Filesystem raster store for local development and tests.

Objects live at ``{root}/{container}/{blob_path}``.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from terrascan.models.imagery import BlobReference
from terrascan.storage.base import RasterStorage, StorageError


class LocalRasterStorage(RasterStorage):
    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, ref: BlobReference) -> Path:
        """Return the on-disk path of *ref* (whether or not it exists)."""
        return self._root / ref.container / ref.blob_path

    def upload_file(
        self,
        container: str,
        blob_path: str,
        local_path: Path,
        *,
        content_type: str = "image/tiff",
    ) -> BlobReference:
        ref = BlobReference(
            container=container,
            blob_path=blob_path,
            size_bytes=local_path.stat().st_size,
            content_type=content_type,
        )
        target = self.path_for(ref)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(local_path, target)
        return ref

    def upload_bytes(
        self,
        container: str,
        blob_path: str,
        data: bytes,
        *,
        content_type: str = "application/json",
    ) -> BlobReference:
        ref = BlobReference(
            container=container,
            blob_path=blob_path,
            size_bytes=len(data),
            content_type=content_type,
        )
        target = self.path_for(ref)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return ref

    def download_file(self, ref: BlobReference, dest: Path) -> Path:
        source = self.path_for(ref)
        if not source.is_file():
            msg = f"Blob not found: {ref.uri}"
            raise StorageError(msg, code="BLOB_NOT_FOUND", retryable=False)
        shutil.copyfile(source, dest)
        return dest

    def exists(self, ref: BlobReference) -> bool:
        return self.path_for(ref).is_file()
