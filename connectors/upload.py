"""
Direct token upload — store a token without the OAuth redirect dance.

Used by operators and by providers without an OAuth app, who already
hold a token and just need it in the token storage.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from auth.authenticator import Authenticator
from connectors.token_manager import NotifyingTokenStore
from database.helpers import get_access_token_record
from utils.errors import MalformedTokenPayload, PersistFailed, UnauthenticatedCaller
from utils.schemas import Token

logger = logging.getLogger(__name__)


class TokenUploader:
    def __init__(
        self,
        authenticator: Authenticator,
        token_store: NotifyingTokenStore,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._authenticator = authenticator
        self._token_store = token_store
        self._session_factory = session_factory

    async def handle(self, namespace: str, name: str, body: bytes, credential: str) -> None:
        """
        Store the JSON token in ``body`` for the record ``namespace/name``.

        Raises ``UnauthenticatedCaller``, ``RecordNotFound``,
        ``MalformedTokenPayload`` or ``PersistFailed``.
        """
        if not credential:
            raise UnauthenticatedCaller("missing Bearer token")
        identity = await self._authenticator.authenticate(credential)
        if identity is None:
            raise UnauthenticatedCaller("the token was rejected by the cluster")

        try:
            owner = await get_access_token_record(self._session_factory, namespace, name)
        except SQLAlchemyError as exc:
            raise PersistFailed(f"failed to read {namespace}/{name}: {exc}") from exc

        try:
            token = Token.model_validate_json(body)
        except ValidationError as exc:
            raise MalformedTokenPayload(str(exc)) from exc

        await self._token_store.store(owner, token)
        logger.info("Token uploaded for %s by %s", owner.owner_key, identity.name)
