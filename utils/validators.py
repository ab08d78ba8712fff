"""
Runtime validators used at startup.
"""

from __future__ import annotations

import logging
from typing import List

from config.settings import ServiceProviderConfiguration
from connectors.registry import is_supported, list_provider_types

logger = logging.getLogger(__name__)


def validate_service_providers(providers: List[ServiceProviderConfiguration]) -> None:
    """
    Called once at startup.  Every configured provider must be a known
    type and carry OAuth client credentials.
    """
    if not providers:
        logger.warning("No service providers configured — only token upload will work")

    for sp in providers:
        if not is_supported(sp.service_provider_type):
            raise RuntimeError(
                f"Startup validation failed — service provider type "
                f"'{sp.service_provider_type}' is not supported "
                f"(known: {', '.join(list_provider_types())})"
            )
        if not sp.client_id or not sp.client_secret:
            raise RuntimeError(
                f"Startup validation failed — service provider "
                f"'{sp.service_provider_type}' is missing clientId/clientSecret"
            )

    logger.info("Service provider configuration validated (%d providers)", len(providers))
