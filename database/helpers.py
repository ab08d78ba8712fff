"""
Database helper functions — owner record lookup and optimistic updates.

The owner record can be modified concurrently by the reconciling
operator, so every write here is a compare-and-set on
``resource_version`` with a bounded number of re-reads.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import AccessTokenRecord
from utils.errors import RecordConflict, RecordNotFound
from utils.schemas import TokenMetadata

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_ATTEMPTS = 5

SessionFactory = async_sessionmaker[AsyncSession]


async def _find_record(
    session: AsyncSession, namespace: str, name: str
) -> Optional[AccessTokenRecord]:
    result = await session.execute(
        select(AccessTokenRecord).where(
            AccessTokenRecord.namespace == namespace,
            AccessTokenRecord.name == name,
        )
    )
    return result.scalar_one_or_none()


async def get_access_token_record(
    session_factory: SessionFactory, namespace: str, name: str
) -> AccessTokenRecord:
    """Return the owner record or raise ``RecordNotFound``."""
    async with session_factory() as session:
        record = await _find_record(session, namespace, name)
    if record is None:
        raise RecordNotFound(f"SPIAccessToken {namespace}/{name} not found")
    return record


async def create_access_token_record(
    session_factory: SessionFactory,
    namespace: str,
    name: str,
    service_provider_url: str = "",
) -> AccessTokenRecord:
    """Insert a fresh owner record (normally done by the operator)."""
    async with session_factory() as session:
        record = AccessTokenRecord(
            namespace=namespace,
            name=name,
            service_provider_url=service_provider_url,
            data_revision=0,
            resource_version=1,
        )
        session.add(record)
        await session.commit()
    logger.info("Created access token record %s/%s", namespace, name)
    return record


async def update_access_token_record(
    session_factory: SessionFactory,
    namespace: str,
    name: str,
    mutate: Callable[[AccessTokenRecord], Dict[str, Any]],
    *,
    attempts: int = DEFAULT_UPDATE_ATTEMPTS,
) -> Dict[str, Any]:
    """
    Apply ``mutate`` to the current record with compare-and-set semantics.

    ``mutate`` receives the freshly read record and returns the column
    values to write.  On a version conflict the record is re-read and
    ``mutate`` is called again.

    Returns
    -------
    The values that were written.
    """
    for attempt in range(1, attempts + 1):
        async with session_factory() as session:
            record = await _find_record(session, namespace, name)
            if record is None:
                raise RecordNotFound(f"SPIAccessToken {namespace}/{name} not found")

            values = mutate(record)
            current_version = record.resource_version
            result = await session.execute(
                update(AccessTokenRecord)
                .where(
                    AccessTokenRecord.record_id == record.record_id,
                    AccessTokenRecord.resource_version == current_version,
                )
                .values(**values, resource_version=current_version + 1)
            )
            if result.rowcount == 1:
                await session.commit()
                return values

            await session.rollback()
            logger.debug(
                "Conflict updating %s/%s at version %d (attempt %d/%d)",
                namespace, name, current_version, attempt, attempts,
            )

    raise RecordConflict(
        f"SPIAccessToken {namespace}/{name} kept changing, gave up after {attempts} attempts"
    )


async def set_token_metadata(
    session_factory: SessionFactory,
    namespace: str,
    name: str,
    metadata: TokenMetadata,
) -> None:
    """Write ``TokenMetadata`` into the record status."""
    await update_access_token_record(
        session_factory,
        namespace,
        name,
        lambda _record: {"token_metadata": metadata.model_dump()},
    )


async def bump_data_revision(
    session_factory: SessionFactory, namespace: str, name: str
) -> int:
    """Signal watchers that new token data is available; returns the new revision."""
    values = await update_access_token_record(
        session_factory,
        namespace,
        name,
        lambda record: {
            "data_revision": (record.data_revision or 0) + 1,
            "data_updated_at": datetime.now(timezone.utc),
        },
    )
    return values["data_revision"]
