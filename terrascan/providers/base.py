"""ImageryProvider abstract base class.

Defines the contract that every imagery provider adapter must implement.
Activities interact exclusively with this interface and never know
which concrete provider is behind it.

Lifecycle:
    1. ``search(filters)``                  : find scenes in a bbox / date range.
    2. ``download(scene, bands, dest_dir)`` : fetch band assets to local files.

STAC providers expose assets for immediate download, so there is no
order / poll step.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

from terrascan.core.exceptions import PipelineError

if TYPE_CHECKING:
    from pathlib import Path

    from terrascan.models.imagery import ImageryFilters, ProviderConfig, SearchResult
    from terrascan.models.scene import ImageryScene


class ImageryProvider(abc.ABC):
    """Abstract base class for imagery provider adapters.

    Concrete implementations must override ``search`` and ``download``.
    The constructor receives a ``ProviderConfig`` which carries the API
    URL and provider-specific parameters.

    Example usage::

        provider = get_provider("planetary_computer")
        results = provider.search(filters)
        paths = provider.download(scene, ["red", "nir"], tmp_dir)
    """

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config

    @property
    def name(self) -> str:
        """Return the provider name from configuration."""
        return self._config.name

    @property
    def config(self) -> ProviderConfig:
        """Return the provider configuration (read-only)."""
        return self._config

    # ------------------------------------------------------------------
    # Abstract methods: every adapter must implement these
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def search(self, filters: ImageryFilters) -> list[SearchResult]:
        """Search the provider's archive.

        Args:
            filters: Bounding box, date range, cloud ceiling and collections.

        Returns:
            A list of ``SearchResult`` objects, best match first.
            Empty list when no scenes match.

        Raises:
            ProviderSearchError: On transient or permanent API errors.
        """

    @abc.abstractmethod
    def download(
        self,
        scene: ImageryScene,
        bands: list[str],
        dest_dir: Path,
    ) -> dict[str, Path]:
        """Download the requested band assets of *scene* into *dest_dir*.

        Args:
            scene: Catalog record carrying the asset URLs.
            bands: Common band names to fetch (``"red"``, ``"nir"``, ...).
            dest_dir: Existing local directory to write the files into.

        Returns:
            Band name → local file path.

        Raises:
            ProviderDownloadError: If an asset is missing or the transfer fails.
        """


# ---------------------------------------------------------------------------
# Provider exceptions
# ---------------------------------------------------------------------------


class ProviderError(PipelineError):
    """Base exception for provider adapter errors.

    Attributes:
        provider: Name of the provider that raised the error.
        message: Human-readable error description.
        retryable: Whether the caller should retry the operation.
    """

    default_stage = "provider"
    default_code = "PROVIDER_ERROR"

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        retryable: bool = False,
    ) -> None:
        self.provider = provider
        super().__init__(
            message,
            retryable=retryable,
            code=self.default_code,
            stage=self.default_stage,
        )

    def __str__(self) -> str:
        return f"[{self.provider}] {self.message}"


class ProviderSearchError(ProviderError):
    """Error during imagery archive search."""

    default_stage = "search"
    default_code = "PROVIDER_SEARCH_FAILED"


class ProviderDownloadError(ProviderError):
    """Error during band asset download."""

    default_stage = "download"
    default_code = "PROVIDER_DOWNLOAD_FAILED"
