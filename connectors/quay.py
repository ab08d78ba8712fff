"""
Quay — OAuth endpoints and user lookup.

Quay wants the requested scopes repeated on the code exchange; the flow
controller passes ``scope`` through for every provider and the others
ignore it.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from connectors.base import ProviderDefinition
from utils.errors import MetadataFailed
from utils.schemas import Token, TokenMetadata

logger = logging.getLogger(__name__)

_QUAY_BASE = "https://quay.io"


async def retrieve_user_metadata(
    client: httpx.AsyncClient, base_url: str, token: Token
) -> TokenMetadata:
    """Fetch the Quay user owning the token (requires ``user:read``)."""
    try:
        resp = await client.get(
            f"{base_url.rstrip('/')}/api/v1/user",
            headers={"Authorization": f"Bearer {token.access_token}"},
        )
        resp.raise_for_status()
        user = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise MetadataFailed(f"Quay user lookup failed: {exc}") from exc
    if not isinstance(user, dict):
        raise MetadataFailed("Quay user lookup returned a non-object body")

    # Quay has no numeric user id in this API; the username is the identity.
    username = user.get("username") or ""
    try:
        return TokenMetadata(user_id=username, username=username)
    except ValidationError as exc:
        raise MetadataFailed(f"unexpected Quay user: {exc}") from exc


QUAY = ProviderDefinition(
    provider_type="Quay",
    default_base_url=_QUAY_BASE,
    auth_path="/oauth/authorize",
    token_path="/oauth/token",
    metadata_retriever=retrieve_user_metadata,
)
