"""Helpers shared by the activities, the models and the provider factory."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from terrascan.models.imagery import ProviderConfig


def build_provider_config(
    provider_name: str,
    overrides: Mapping[str, Any] | None,
) -> ProviderConfig:
    """Build a ``ProviderConfig`` from a request's ``provider_config`` block.

    Unknown keys are ignored; ``extra_params`` values are stringified.
    """
    # Deferred: terrascan.models imports parse_timestamp from this module.
    from terrascan.models.imagery import ProviderConfig

    if not overrides:
        return ProviderConfig(name=provider_name)

    extra = overrides.get("extra_params") or {}
    return ProviderConfig(
        name=provider_name,
        api_base_url=str(overrides.get("api_base_url", "")),
        extra_params={str(k): str(v) for k, v in extra.items()},
    )


def parse_timestamp(timestamp: str) -> datetime:
    """Parse an ISO 8601 timestamp string, defaulting to current UTC time.

    A trailing ``Z`` is accepted and naive values are assumed to be UTC.

    Returns:
        A timezone-aware ``datetime``. Falls back to ``datetime.now(UTC)``
        if the input is empty or unparseable.
    """
    if not timestamp:
        return datetime.now(UTC)
    try:
        parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return datetime.now(UTC)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
