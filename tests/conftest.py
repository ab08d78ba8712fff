"""
Shared fixtures: in-memory database, fake cluster authentication,
recording token storage and a mocked service provider.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl

import httpx
import pytest
import pytest_asyncio

from auth.authenticator import Authenticator
from config.settings import ServiceProviderConfiguration
from connectors.registry import resolve_endpoint
from connectors.state import StateCodec
from connectors.storage import TokenStorage
from connectors.token_manager import NotifyingTokenStore
from database.helpers import create_access_token_record
from database.models import AccessTokenRecord
from database.session import build_engine, build_session_factory, create_schema
from utils.schemas import AnonymousFlowState, CallerIdentity, Token

SECRET = b"secret"
SP_BASE = "https://special.sp"
SERVICE_BASE = "https://spi.on.my.machine"

ALICE = CallerIdentity(
    name="alice",
    uid="uid-alice",
    groups=["system:authenticated", "devs"],
    extra={"scopes": ["a", "b"]},
)
BOB = CallerIdentity(name="bob", uid="uid-bob", groups=["system:authenticated"])


class FakeAuthenticator(Authenticator):
    """Maps known bearer tokens to identities; everything else is rejected."""

    def __init__(self, identities: Dict[str, CallerIdentity]) -> None:
        self.identities = identities
        self.calls: List[str] = []

    async def authenticate(self, token: str) -> Optional[CallerIdentity]:
        self.calls.append(token)
        return self.identities.get(token)


class RecordingTokenStorage(TokenStorage):
    """In-memory storage that remembers every write."""

    def __init__(self) -> None:
        self.writes: List[Tuple[str, Token]] = []
        self.data: Dict[str, Token] = {}
        self.fail_with: Optional[Exception] = None

    async def store(self, owner: AccessTokenRecord, token: Token) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.writes.append((owner.owner_key, token))
        self.data[owner.owner_key] = token

    async def get(self, owner: AccessTokenRecord) -> Optional[Token]:
        return self.data.get(owner.owner_key)


class FakeProvider:
    """
    Service provider behind ``httpx.MockTransport``.

    Answers the token endpoint and the GitHub Enterprise user API of
    ``SP_BASE``; any other URL is a test failure.
    """

    def __init__(self) -> None:
        self.token_response: Callable[[], httpx.Response] = lambda: httpx.Response(
            200,
            json={"access_token": "tok", "token_type": "bearer", "expires_in": 3600},
        )
        self.user_response: Callable[[], httpx.Response] = lambda: httpx.Response(
            200, json={"id": 42, "login": "octocat"}
        )
        self.token_requests: List[Dict[str, str]] = []
        self.user_requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == f"{SP_BASE}/login/oauth/access_token":
            self.token_requests.append(dict(parse_qsl(request.content.decode())))
            return self.token_response()
        if url == f"{SP_BASE}/api/v3/user":
            self.user_requests.append(request)
            return self.user_response()
        raise AssertionError(f"unexpected request to: {url}")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def anonymous_state(**overrides) -> AnonymousFlowState:
    defaults = dict(
        token_name="mytoken",
        token_namespace="default",
        scopes=["a", "b"],
        service_provider_type="GitHub",
        service_provider_url=SP_BASE,
    )
    defaults.update(overrides)
    return AnonymousFlowState(**defaults)


def github_config() -> ServiceProviderConfiguration:
    return ServiceProviderConfiguration(
        client_id="clientId",
        client_secret="clientSecret",
        service_provider_type="GitHub",
        service_provider_base_url=SP_BASE,
    )


# ── Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def codec() -> StateCodec:
    return StateCodec(SECRET, max_age_seconds=900)


@pytest.fixture
def authenticator() -> FakeAuthenticator:
    return FakeAuthenticator({"alice-token": ALICE, "bob-token": BOB})


@pytest.fixture
def storage() -> RecordingTokenStorage:
    return RecordingTokenStorage()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def endpoint():
    return resolve_endpoint("GitHub", SP_BASE)


@pytest_asyncio.fixture
async def session_factory():
    engine = build_engine("sqlite+aiosqlite://")
    await create_schema(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def owner(session_factory) -> AccessTokenRecord:
    return await create_access_token_record(session_factory, "default", "mytoken", SP_BASE)


@pytest.fixture
def token_store(storage, session_factory) -> NotifyingTokenStore:
    return NotifyingTokenStore(storage, session_factory)


@pytest_asyncio.fixture
async def http_client(provider):
    async with provider.client() as client:
        yield client
