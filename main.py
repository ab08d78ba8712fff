"""
SPI OAuth service — application entry point.
"""

from __future__ import annotations

import logging
import os
import ssl
import sys
from contextlib import asynccontextmanager
from typing import List, Optional

import httpx
import uvicorn
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.middleware import register_middleware
from api.routes import router as service_router
from auth.authenticator import Authenticator, TokenReviewAuthenticator
from config.settings import Settings, config
from connectors.controller import build_controllers
from connectors.encryption import TokenCipher
from connectors.routes import router as oauth_router
from connectors.state import StateCodec
from connectors.storage import DatabaseTokenStorage, TokenStorage
from connectors.token_manager import NotifyingTokenStore
from connectors.upload import TokenUploader
from database.session import build_engine, build_session_factory, create_schema
from utils.validators import validate_service_providers

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "hpack"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def _kube_client(settings: Settings) -> httpx.AsyncClient:
    verify: ssl.SSLContext | bool = True
    if settings.kube_ca_path and os.path.exists(settings.kube_ca_path):
        verify = ssl.create_default_context(cafile=settings.kube_ca_path)
    return httpx.AsyncClient(timeout=settings.http_timeout_seconds, verify=verify)


def create_app(
    settings: Optional[Settings] = None,
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    authenticator: Optional[Authenticator] = None,
    token_storage: Optional[TokenStorage] = None,
) -> FastAPI:
    """
    Build the application.

    Collaborators not passed in are created from ``settings``; those are
    also the ones closed on shutdown.
    """
    settings = settings or config
    validate_service_providers(settings.all_service_providers())

    engine = None
    if session_factory is None:
        engine = build_engine(settings.database_url)
        session_factory = build_session_factory(engine)

    owned_clients: List[httpx.AsyncClient] = []
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        owned_clients.append(http_client)
    if authenticator is None:
        kube_client = _kube_client(settings)
        owned_clients.append(kube_client)
        authenticator = TokenReviewAuthenticator(
            kube_client,
            settings.kube_api_server,
            settings.kube_service_account_token_path,
            settings.kubernetes_auth_audiences,
        )

    codec = StateCodec(settings.signing_secret(), settings.oauth_state_max_age_seconds)
    if token_storage is None:
        token_storage = DatabaseTokenStorage(
            session_factory, TokenCipher(settings.token_encryption_key)
        )
    token_store = NotifyingTokenStore(token_storage, session_factory)
    controllers = build_controllers(
        settings,
        codec=codec,
        authenticator=authenticator,
        token_store=token_store,
        session_factory=session_factory,
        http_client=http_client,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if engine is not None and settings.auto_create_schema:
            logger.info("Creating database schema…")
            await create_schema(engine)
        logger.info(
            "Application ready — providers: %s",
            ", ".join(sorted(controllers)) or "none",
        )
        yield
        for client in owned_clients:
            await client.aclose()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(
        title="SPI OAuth Service",
        version="1.0.0",
        description="Brokers OAuth2 flows and stores the tokens for SPIAccessTokens.",
        lifespan=lifespan,
    )

    register_middleware(app, settings.cors_origins)

    app.include_router(service_router)
    app.include_router(oauth_router)

    app.state.settings = settings
    app.state.codec = codec
    app.state.token_store = token_store
    app.state.controllers = controllers
    app.state.uploader = TokenUploader(authenticator, token_store, session_factory)

    return app


if __name__ == "__main__":
    uvicorn.run(
        "main:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
