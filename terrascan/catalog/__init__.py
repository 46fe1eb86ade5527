"""Metadata catalog for scenes, jobs and vector features.

- CatalogRepository: Abstract repository interface
- InMemoryCatalog: Lock-guarded in-process implementation
- BlobCatalog: JSON documents in Blob Storage with ETag concurrency
"""

from terrascan.catalog.base import (
    CatalogError,
    CatalogRepository,
    ConcurrencyError,
    RecordNotFoundError,
)
from terrascan.catalog.memory import InMemoryCatalog

__all__ = [
    "CatalogError",
    "CatalogRepository",
    "ConcurrencyError",
    "InMemoryCatalog",
    "RecordNotFoundError",
]
