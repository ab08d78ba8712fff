"""
GitHub — OAuth endpoints and user lookup.

Works for github.com and GitHub Enterprise Server; the latter serves its
REST API under ``{base}/api/v3``.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from connectors.base import ProviderDefinition
from utils.errors import MetadataFailed
from utils.schemas import Token, TokenMetadata

logger = logging.getLogger(__name__)

# GitHub OAuth2 endpoints
_GH_BASE = "https://github.com"
_GH_AUTH_PATH = "/login/oauth/authorize"
_GH_TOKEN_PATH = "/login/oauth/access_token"
_GH_API = "https://api.github.com"


def _api_url(base_url: str) -> str:
    if base_url.rstrip("/") == _GH_BASE:
        return _GH_API
    return base_url.rstrip("/") + "/api/v3"


async def retrieve_user_metadata(
    client: httpx.AsyncClient, base_url: str, token: Token
) -> TokenMetadata:
    """Fetch the authenticated user's id and login."""
    try:
        resp = await client.get(
            f"{_api_url(base_url)}/user",
            headers={
                "Authorization": f"Bearer {token.access_token}",
                "Accept": "application/vnd.github+json",
            },
        )
        resp.raise_for_status()
        user = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise MetadataFailed(f"GitHub user lookup failed: {exc}") from exc
    if not isinstance(user, dict):
        raise MetadataFailed("GitHub user lookup returned a non-object body")

    try:
        metadata = TokenMetadata(
            user_id=str(user.get("id") or ""),
            username=user.get("login") or "",
        )
    except ValidationError as exc:
        raise MetadataFailed(f"unexpected GitHub user: {exc}") from exc

    logger.debug("GitHub user resolved: %s", metadata.username)
    return metadata


GITHUB = ProviderDefinition(
    provider_type="GitHub",
    default_base_url=_GH_BASE,
    auth_path=_GH_AUTH_PATH,
    token_path=_GH_TOKEN_PATH,
    metadata_retriever=retrieve_user_metadata,
)
