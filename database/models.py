"""
SQLAlchemy ORM models.

``AccessTokenRecord`` is the owner record: created by the operator before a
flow starts, read and touched by this service.  ``StoredToken`` is the
row-per-owner backing table of ``DatabaseTokenStorage``.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class AccessTokenRecord(Base):
    __tablename__ = "spi_access_tokens"

    record_id = Column(Integer, primary_key=True, autoincrement=True)
    namespace = Column(String(253), nullable=False)
    name = Column(String(253), nullable=False)
    service_provider_url = Column(String(512), nullable=False, default="")

    # status
    token_metadata = Column(JSON, nullable=True)

    # bumped after every successful token write; watchers key off this
    data_revision = Column(Integer, nullable=False, default=0)
    data_updated_at = Column(DateTime(timezone=True), nullable=True)

    # optimistic concurrency: every update must match and increment it
    resource_version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("namespace", "name", name="uq_spi_access_tokens_namespace_name"),
    )

    @property
    def owner_key(self) -> str:
        return f"{self.namespace}/{self.name}"


class StoredToken(Base):
    __tablename__ = "spi_token_data"

    namespace = Column(String(253), primary_key=True)
    name = Column(String(253), primary_key=True)
    access_token = Column(Text, nullable=False)
    token_type = Column(String(64), nullable=False, default="")
    refresh_token = Column(Text, nullable=False, default="")
    expiry = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
