"""
Provider capabilities — the data every service provider contributes.

A provider is pure data (where its OAuth endpoints live) plus one
function that turns a fresh access token into ``TokenMetadata``.
Adding a provider means adding one ``ProviderDefinition`` to the
registry, not subclassing anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from utils.schemas import Token, TokenMetadata

# (http client, provider base url, token) -> metadata
MetadataRetriever = Callable[[httpx.AsyncClient, str, Token], Awaitable[TokenMetadata]]


@dataclass(frozen=True)
class ProviderEndpoint:
    """OAuth endpoints of one concrete provider instance."""

    provider_type: str
    base_url: str
    auth_url: str
    token_url: str
    metadata_retriever: MetadataRetriever

    async def retrieve_user_metadata(
        self, client: httpx.AsyncClient, token: Token
    ) -> TokenMetadata:
        return await self.metadata_retriever(client, self.base_url, token)


@dataclass(frozen=True)
class ProviderDefinition:
    """Built-in provider: default host plus endpoint paths relative to it."""

    provider_type: str
    default_base_url: str
    auth_path: str
    token_path: str
    metadata_retriever: MetadataRetriever

    def endpoint(self, base_url: str = "") -> ProviderEndpoint:
        """
        Resolve the endpoints, optionally against a self-hosted instance.

        Parameters
        ----------
        base_url : str
            Overrides ``default_base_url`` (e.g. GitHub Enterprise host).
        """
        base = (base_url or self.default_base_url).rstrip("/")
        return ProviderEndpoint(
            provider_type=self.provider_type,
            base_url=base,
            auth_url=base + self.auth_path,
            token_url=base + self.token_path,
            metadata_retriever=self.metadata_retriever,
        )
