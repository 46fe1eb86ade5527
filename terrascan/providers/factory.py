"""Imagery provider lookup by name.

Built-in adapters are listed in ``_BUILTIN_ADAPTERS`` as dotted import
paths and imported on first use, so pystac-client is only loaded when
the Planetary Computer adapter is actually selected.  Extra adapters
(test doubles, commercial catalogues) go through ``register_provider``.

Usage::

    provider = provider_from_payload(payload.get("provider_name"), payload.get("provider_config"))
    results = provider.search(filters)
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Any

from terrascan.models.imagery import ProviderConfig
from terrascan.providers.base import ImageryProvider, ProviderError
from terrascan.utils.helpers import build_provider_config

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

logger = logging.getLogger("terrascan.providers.factory")

PLANETARY_COMPUTER = "planetary_computer"

_BUILTIN_ADAPTERS: dict[str, str] = {
    PLANETARY_COMPUTER: "terrascan.providers.planetary_computer:PlanetaryComputerAdapter",
}

_ADAPTER_REGISTRY: dict[str, Callable[[], type[ImageryProvider]]] = {}


def _import_adapter(target: str) -> Callable[[], type[ImageryProvider]]:
    module_name, _, attr = target.partition(":")

    def _load() -> type[ImageryProvider]:
        return getattr(importlib.import_module(module_name), attr)

    return _load


def _ensure_registry() -> None:
    if not _ADAPTER_REGISTRY:
        for name, target in _BUILTIN_ADAPTERS.items():
            _ADAPTER_REGISTRY[name] = _import_adapter(target)


def register_provider(name: str, loader: Callable[[], type[ImageryProvider]]) -> None:
    """Register an adapter under *name*; *loader* returns the adapter class.

    Raises:
        ValueError: If the name is empty.
    """
    if not name:
        msg = "Provider name must be non-empty"
        raise ValueError(msg)
    _ensure_registry()
    _ADAPTER_REGISTRY[name] = loader
    logger.debug("Provider registered | name=%s", name)


def list_providers() -> list[str]:
    _ensure_registry()
    return sorted(_ADAPTER_REGISTRY)


def get_provider(name: str, config: ProviderConfig | None = None) -> ImageryProvider:
    """Instantiate the adapter registered as *name*.

    Raises:
        ProviderError: If *name* is not registered, or *config* names a
            different provider.
    """
    _ensure_registry()
    loader = _ADAPTER_REGISTRY.get(name)
    if loader is None:
        msg = f"Unknown imagery provider: {name!r}. Available: {', '.join(list_providers())}"
        raise ProviderError(provider=name, message=msg)

    if config is None:
        config = ProviderConfig(name=name)
    elif config.name != name:
        msg = f"ProviderConfig.name {config.name!r} does not match requested provider {name!r}"
        raise ProviderError(provider=name, message=msg)

    logger.info("Imagery provider created | name=%s", name)
    return loader()(config)


def provider_from_payload(
    name: str | None,
    overrides: Mapping[str, Any] | None = None,
    *,
    default: str = PLANETARY_COMPUTER,
) -> ImageryProvider:
    """Build the provider an ingestion request or scene record asks for.

    An empty *name* falls back to *default* (normally
    ``PipelineConfig.imagery_provider``).
    """
    resolved = name or default
    return get_provider(resolved, build_provider_config(resolved, overrides))
