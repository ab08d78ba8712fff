"""
Provider registry — maps a service provider type to its capabilities.

The table is static and read-only after import.
"""

from __future__ import annotations

from typing import Dict, List

from connectors.base import ProviderDefinition, ProviderEndpoint
from connectors.github import GITHUB
from connectors.quay import QUAY
from utils.errors import UnsupportedProvider


# ── Known providers ─────────────────────────────────────────────────────

_PROVIDERS: Dict[str, ProviderDefinition] = {
    p.provider_type.lower(): p
    for p in (
        GITHUB,
        QUAY,
    )
}


def get_definition(provider_type: str) -> ProviderDefinition:
    """Look up a built-in provider by type tag (case-insensitive)."""
    definition = _PROVIDERS.get((provider_type or "").lower())
    if definition is None:
        raise UnsupportedProvider(f"service provider type '{provider_type}' is not supported")
    return definition


def resolve_endpoint(provider_type: str, base_url: str = "") -> ProviderEndpoint:
    """
    Return the endpoints for ``provider_type``.

    ``base_url`` points the endpoints at a self-hosted instance; empty
    means the provider's public host.
    """
    return get_definition(provider_type).endpoint(base_url)


def is_supported(provider_type: str) -> bool:
    return (provider_type or "").lower() in _PROVIDERS


def list_provider_types() -> List[str]:
    return [p.provider_type for p in _PROVIDERS.values()]
