"""
Tests for the notifying token store, the database token storage and the
optimistic owner record updates underneath them.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from cryptography.fernet import Fernet

from connectors.encryption import TokenCipher
from connectors.storage import DatabaseTokenStorage
from connectors.token_manager import NotifyingTokenStore
from database.helpers import get_access_token_record, update_access_token_record
from database.models import AccessTokenRecord, StoredToken
from utils.errors import PersistFailed, RecordConflict
from utils.schemas import Token

from conftest import RecordingTokenStorage


class YieldingTokenStorage(RecordingTokenStorage):
    """Gives other tasks a chance to run in the middle of every write."""

    async def store(self, owner, token):
        await asyncio.sleep(0)
        await super().store(owner, token)


class TestNotifyingTokenStore:
    @pytest.mark.asyncio
    async def test_store_bumps_revision(self, token_store, owner, storage, session_factory):
        assert await token_store.store(owner, Token(access_token="one")) == 1
        assert await token_store.store(owner, Token(access_token="two")) == 2

        record = await get_access_token_record(session_factory, "default", "mytoken")
        assert record.data_revision == 2
        assert record.data_updated_at is not None
        assert (await token_store.get(owner)).access_token == "two"

    @pytest.mark.asyncio
    async def test_failed_write_does_not_notify(self, token_store, owner, storage, session_factory):
        storage.fail_with = RuntimeError("disk full")
        with pytest.raises(PersistFailed):
            await token_store.store(owner, Token(access_token="one"))

        record = await get_access_token_record(session_factory, "default", "mytoken")
        assert record.data_revision == 0

    @pytest.mark.asyncio
    async def test_missing_owner_record(self, token_store, session_factory, storage):
        ghost = AccessTokenRecord(namespace="default", name="ghost")
        with pytest.raises(PersistFailed):
            await token_store.store(ghost, Token(access_token="one"))
        assert storage.writes == [("default/ghost", Token(access_token="one"))]

    @pytest.mark.asyncio
    async def test_same_owner_writes_are_serialized(self, owner, session_factory):
        storage = YieldingTokenStorage()
        store = NotifyingTokenStore(storage, session_factory)
        tokens = [Token(access_token=f"t{i}") for i in range(5)]

        revisions = await asyncio.gather(*(store.store(owner, t) for t in tokens))

        assert revisions == [1, 2, 3, 4, 5]
        assert [t.access_token for _, t in storage.writes] == ["t0", "t1", "t2", "t3", "t4"]
        assert storage.data["default/mytoken"].access_token == "t4"


class TestDatabaseTokenStorage:
    @pytest.mark.asyncio
    async def test_tokens_are_encrypted_at_rest(self, session_factory, owner):
        storage = DatabaseTokenStorage(session_factory, TokenCipher(Fernet.generate_key().decode()))
        token = Token(access_token="secret-token", refresh_token="refresh", token_type="bearer", expiry=10)

        await storage.store(owner, token)

        async with session_factory() as session:
            row = await session.get(StoredToken, ("default", "mytoken"))
        assert row.access_token != "secret-token"
        assert row.refresh_token != "refresh"
        assert await storage.get(owner) == token

    @pytest.mark.asyncio
    async def test_store_overwrites(self, session_factory, owner):
        storage = DatabaseTokenStorage(session_factory, TokenCipher())
        await storage.store(owner, Token(access_token="first"))
        await storage.store(owner, Token(access_token="second", expiry=99))

        stored = await storage.get(owner)
        assert stored.access_token == "second"
        assert stored.expiry == 99

    @pytest.mark.asyncio
    async def test_nothing_stored_yet(self, session_factory, owner):
        storage = DatabaseTokenStorage(session_factory, TokenCipher())
        assert await storage.get(owner) is None


class TestTokenCipher:
    def test_disabled_without_key(self):
        cipher = TokenCipher()
        assert not cipher.enabled
        assert cipher.encrypt("abc") == "abc"

    def test_round_trip(self):
        cipher = TokenCipher(Fernet.generate_key())
        assert cipher.enabled
        assert cipher.decrypt(cipher.encrypt("abc")) == "abc"
        assert cipher.encrypt("") == ""

    def test_legacy_plaintext_is_returned_as_is(self):
        cipher = TokenCipher(Fernet.generate_key())
        assert cipher.decrypt("gho_plaintext") == "gho_plaintext"

    def test_invalid_key(self):
        with pytest.raises(ValueError):
            TokenCipher("not-a-fernet-key")


def _mock_factory(*execute_results):
    session = MagicMock()
    session.execute = AsyncMock(side_effect=list(execute_results))
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session
    factory.return_value.__aexit__.return_value = False
    return factory, session


def _select_result(record):
    result = MagicMock()
    result.scalar_one_or_none.return_value = record
    return result


class TestOptimisticUpdate:
    @pytest.mark.asyncio
    async def test_conflict_is_retried(self):
        record = SimpleNamespace(record_id=1, resource_version=3, data_revision=0)
        factory, session = _mock_factory(
            _select_result(record),
            MagicMock(rowcount=0),
            _select_result(record),
            MagicMock(rowcount=1),
        )
        calls = []

        def mutate(rec):
            calls.append(rec)
            return {"data_revision": rec.data_revision + 1}

        values = await update_access_token_record(factory, "default", "mytoken", mutate)

        assert values == {"data_revision": 1}
        assert len(calls) == 2
        session.rollback.assert_awaited_once()
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self):
        record = SimpleNamespace(record_id=1, resource_version=3, data_revision=0)
        factory, session = _mock_factory(
            _select_result(record),
            MagicMock(rowcount=0),
            _select_result(record),
            MagicMock(rowcount=0),
        )

        with pytest.raises(RecordConflict):
            await update_access_token_record(
                factory, "default", "mytoken", lambda r: {"data_revision": 1}, attempts=2
            )
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_conflict_is_a_persist_failure(self):
        assert issubclass(RecordConflict, PersistFailed)
