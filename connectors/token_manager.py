"""
Notifying token store — writes token data, then tells the cluster.

After every successful write to the backing ``TokenStorage`` the owner
record's ``data_revision`` is bumped so that the operator watching the
record sees exactly one change per store call.  Writes and notifications
for the same owner are serialized, so revisions follow write order.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.storage import TokenStorage
from database.helpers import bump_data_revision
from database.models import AccessTokenRecord
from utils.errors import BrokerError, PersistFailed
from utils.schemas import Token

logger = logging.getLogger(__name__)


class NotifyingTokenStore:
    """Wraps a ``TokenStorage`` and touches the owner record after each write."""

    def __init__(
        self,
        storage: TokenStorage,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._storage = storage
        self._session_factory = session_factory
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, owner: AccessTokenRecord) -> asyncio.Lock:
        key = (owner.namespace, owner.name)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def store(self, owner: AccessTokenRecord, token: Token) -> int:
        """
        Persist ``token`` for ``owner`` and notify watchers.

        Returns
        -------
        The data revision the owner record was bumped to.

        Raises ``PersistFailed`` if either step fails.  A failed write
        never produces a notification.
        """
        async with self._lock_for(owner):
            try:
                await self._storage.store(owner, token)
            except Exception as exc:
                raise PersistFailed(f"token storage write failed for {owner.owner_key}: {exc}") from exc

            try:
                revision = await bump_data_revision(
                    self._session_factory, owner.namespace, owner.name
                )
            except PersistFailed:
                raise
            except (BrokerError, SQLAlchemyError) as exc:
                raise PersistFailed(
                    f"token stored but notifying {owner.owner_key} failed: {exc}"
                ) from exc

        logger.info("Token data for %s stored (revision %d)", owner.owner_key, revision)
        return revision

    async def get(self, owner: AccessTokenRecord) -> Token | None:
        return await self._storage.get(owner)
