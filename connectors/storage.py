"""
Token storage — the opaque key/value store holding token material.

Addressed by the owner record's ``(namespace, name)``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.encryption import TokenCipher
from database.models import AccessTokenRecord, StoredToken
from utils.schemas import Token

logger = logging.getLogger(__name__)


class TokenStorage(ABC):
    """Abstract backing store for token data."""

    @abstractmethod
    async def store(self, owner: AccessTokenRecord, token: Token) -> None:
        """Durably write ``token`` for ``owner``, replacing any previous data."""
        ...

    @abstractmethod
    async def get(self, owner: AccessTokenRecord) -> Optional[Token]:
        """Return the stored token, or None when nothing was stored yet."""
        ...


class DatabaseTokenStorage(TokenStorage):
    """Stores one encrypted row per owner record."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: TokenCipher,
    ) -> None:
        self._session_factory = session_factory
        self._cipher = cipher

    async def store(self, owner: AccessTokenRecord, token: Token) -> None:
        async with self._session_factory() as session:
            row = await session.get(StoredToken, (owner.namespace, owner.name))
            if row is None:
                row = StoredToken(namespace=owner.namespace, name=owner.name)
                session.add(row)
            row.access_token = self._cipher.encrypt(token.access_token)
            row.refresh_token = self._cipher.encrypt(token.refresh_token)
            row.token_type = token.token_type
            row.expiry = token.expiry
            row.updated_at = datetime.now(timezone.utc)
            await session.commit()
        logger.debug("Stored token data for %s", owner.owner_key)

    async def get(self, owner: AccessTokenRecord) -> Optional[Token]:
        async with self._session_factory() as session:
            row = await session.get(StoredToken, (owner.namespace, owner.name))
        if row is None:
            return None
        return Token(
            access_token=self._cipher.decrypt(row.access_token),
            refresh_token=self._cipher.decrypt(row.refresh_token),
            token_type=row.token_type,
            expiry=row.expiry,
        )
