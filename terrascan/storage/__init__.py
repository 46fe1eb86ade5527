"""Raster storage backends (Azure Blob Storage and local filesystem)."""

from terrascan.storage.base import RasterStorage, StorageError
from terrascan.storage.local import LocalRasterStorage

__all__ = ["LocalRasterStorage", "RasterStorage", "StorageError"]
