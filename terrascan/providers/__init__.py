"""Imagery provider adapters.

Implements the provider-agnostic adapter pattern:
- ImageryProvider: Abstract base class defining the interface
- PlanetaryComputerAdapter: Microsoft Planetary Computer (STAC, Sentinel-2 L2A)

The active provider is selected via configuration.
"""

from terrascan.providers.base import (
    ImageryProvider,
    ProviderDownloadError,
    ProviderError,
    ProviderSearchError,
)
from terrascan.providers.factory import (
    PLANETARY_COMPUTER,
    get_provider,
    list_providers,
    provider_from_payload,
    register_provider,
)

__all__ = [
    "PLANETARY_COMPUTER",
    "ImageryProvider",
    "ProviderDownloadError",
    "ProviderError",
    "ProviderSearchError",
    "get_provider",
    "list_providers",
    "provider_from_payload",
    "register_provider",
]
