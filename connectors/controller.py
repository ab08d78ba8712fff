"""
FlowController — the authorization-code flow for one service provider.

Two entry points:

``authenticate``
    anonymous state + caller credential  →  provider authorization URL
    carrying a signed authenticated state.

``callback``
    authenticated state + code  →  token exchange, user metadata lookup,
    persistence through the notifying store  →  final redirect location.

Every failure is raised as a ``BrokerError`` subclass; translating them
into HTTP responses is the route layer's job.  Nothing here retries.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from auth.authenticator import Authenticator
from auth.dependencies import extract_token_from_authorization_header
from config.settings import ServiceProviderConfiguration, Settings
from connectors.base import ProviderEndpoint
from connectors.registry import resolve_endpoint
from connectors.state import StateCodec
from connectors.token_manager import NotifyingTokenStore
from database.helpers import get_access_token_record, set_token_metadata
from utils.errors import (
    BrokerError,
    ExchangeFailed,
    IdentityMismatch,
    PersistFailed,
    UnauthenticatedCaller,
)
from utils.schemas import AuthenticatedFlowState, Token, TokenMetadata

logger = logging.getLogger(__name__)

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "text/plain")
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class FlowController:
    """OAuth authorization-code flow bound to one provider configuration."""

    def __init__(
        self,
        sp_config: ServiceProviderConfiguration,
        endpoint: ProviderEndpoint,
        *,
        codec: StateCodec,
        authenticator: Authenticator,
        token_store: NotifyingTokenStore,
        session_factory: async_sessionmaker[AsyncSession],
        http_client: httpx.AsyncClient,
        base_url: str,
        strict_identity_check: bool = True,
    ) -> None:
        self._config = sp_config
        self._endpoint = endpoint
        self._codec = codec
        self._authenticator = authenticator
        self._token_store = token_store
        self._session_factory = session_factory
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._strict = strict_identity_check

    @property
    def provider_type(self) -> str:
        return self._config.service_provider_type

    # ── URLs ────────────────────────────────────────────────────────────

    def redirect_url(self) -> str:
        """Callback URL registered with the provider for this controller."""
        return f"{self._base_url}/{self.provider_type.lower()}/callback"

    def success_location(self) -> str:
        return f"{self._base_url}/callback_success"

    def error_location(self, error: str, description: str = "") -> str:
        params = {"error": error}
        if description:
            params["error_description"] = description
        return f"{self._base_url}/callback_error?{urlencode(params)}"

    def _authorization_url(self, scopes: List[str], state: str) -> str:
        params = {
            "client_id": self._config.client_id,
            "redirect_uri": self.redirect_url(),
            "response_type": "code",
            "scope": " ".join(scopes),
            "state": state,
        }
        sep = "&" if "?" in self._endpoint.auth_url else "?"
        return f"{self._endpoint.auth_url}{sep}{urlencode(params)}"

    # ── Authenticate ────────────────────────────────────────────────────

    async def authenticate(self, state_string: str, credential: str) -> str:
        """
        Start the flow and return the provider URL to redirect the browser to.

        Raises ``InvalidState`` (400), ``UnauthenticatedCaller`` (401) or
        ``EncodingError`` (500).
        """
        state = self._codec.decode_anonymous(state_string)
        if state.service_provider_type.lower() != self.provider_type.lower():
            logger.debug(
                "State for %s names provider %r, handled by the %s controller",
                state.owner_key, state.service_provider_type, self.provider_type,
            )

        if not credential:
            raise UnauthenticatedCaller(
                "failed extract authorization info either from headers or form parameters"
            )
        identity = await self._authenticator.authenticate(credential)
        if identity is None:
            raise UnauthenticatedCaller("the token was rejected by the cluster")

        authed = AuthenticatedFlowState.from_anonymous(
            state, identity, f"Bearer {credential}"
        )
        encoded = self._codec.encode_authenticated(authed)

        logger.info(
            "OAuth flow started: provider=%s owner=%s user=%s",
            self.provider_type, state.owner_key, identity.name,
        )
        return self._authorization_url(list(state.scopes), encoded)

    # ── Callback ────────────────────────────────────────────────────────

    async def callback(
        self,
        state_string: str,
        code: str,
        *,
        scope: str = "",
        credential: str = "",
        redirect_after_login: str = "",
    ) -> str:
        """
        Finish the flow and return the location to redirect the browser to.

        Raises ``InvalidState``, ``IdentityMismatch``, ``ExchangeFailed``,
        ``MetadataFailed``, ``RecordNotFound`` or ``PersistFailed``.
        """
        state = self._codec.decode_authenticated(state_string)

        try:
            if self._strict:
                await self._verify_caller(state, credential)

            token = await self.exchange_code(code, scope)
            metadata = await self._endpoint.retrieve_user_metadata(self._http, token)
            await self._sync_token_data(state, token, metadata)
        except BrokerError as exc:
            exc.owner = state.owner_key
            raise

        logger.info(
            "OAuth flow finished: provider=%s owner=%s sp_user=%s",
            self.provider_type, state.owner_key, metadata.username,
        )
        return redirect_after_login or self.success_location()

    async def _verify_caller(self, state: AuthenticatedFlowState, credential: str) -> None:
        """Make sure the caller finishing the flow is the one who started it."""
        token = credential or extract_token_from_authorization_header(state.authorization_header)
        if not token:
            raise IdentityMismatch("no Kubernetes credential to re-validate")

        try:
            identity = await self._authenticator.authenticate(token)
        except UnauthenticatedCaller as exc:
            raise IdentityMismatch(str(exc)) from exc

        if identity is None or not state.caller_identity.matches(identity):
            raise IdentityMismatch(
                "kubernetes identity doesn't match after completing the OAuth flow"
            )

    # ── Token exchange ──────────────────────────────────────────────────

    async def exchange_code(self, code: str, scope: str = "") -> Token:
        """Trade the authorization code for a token at the provider."""
        if not code:
            raise ExchangeFailed("missing authorization code")

        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_url(),
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
        }
        # not part of RFC 6749, but Quay wants the scopes again; others ignore it
        if scope:
            data["scope"] = scope

        try:
            resp = await self._http.post(
                self._endpoint.token_url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise ExchangeFailed(f"token endpoint unreachable: {exc}") from exc

        if resp.status_code >= 400:
            raise ExchangeFailed(
                f"token endpoint returned {resp.status_code}: {resp.text[:200]}"
            )

        payload = _parse_token_response(resp)
        if payload.get("error"):
            raise ExchangeFailed(payload.get("error_description") or str(payload["error"]))
        if not payload.get("access_token"):
            raise ExchangeFailed("server response missing access_token")

        return Token(
            access_token=str(payload["access_token"]),
            token_type=str(payload.get("token_type") or ""),
            refresh_token=str(payload.get("refresh_token") or ""),
            expiry=_token_expiry(payload),
        )

    # ── Persistence ─────────────────────────────────────────────────────

    async def _sync_token_data(
        self,
        state: AuthenticatedFlowState,
        token: Token,
        metadata: TokenMetadata,
    ) -> None:
        try:
            owner = await get_access_token_record(
                self._session_factory, state.token_namespace, state.token_name
            )
        except SQLAlchemyError as exc:
            raise PersistFailed(f"failed to read {state.owner_key}: {exc}") from exc

        await self._token_store.store(owner, token)

        # the token is durable at this point; metadata is re-derived on the next flow
        try:
            await set_token_metadata(
                self._session_factory, owner.namespace, owner.name, metadata
            )
        except PersistFailed:
            raise
        except (BrokerError, SQLAlchemyError) as exc:
            raise PersistFailed(
                f"token stored but updating the status of {owner.owner_key} failed: {exc}"
            ) from exc


def _parse_token_response(resp: httpx.Response) -> Dict[str, Any]:
    content_type = resp.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type in _FORM_CONTENT_TYPES:
        return dict(parse_qsl(resp.text))
    try:
        payload = resp.json()
    except ValueError as exc:
        raise ExchangeFailed(f"cannot parse token response: {exc}") from exc
    if not isinstance(payload, dict):
        raise ExchangeFailed("token response is not an object")
    return payload


def _token_expiry(payload: Dict[str, Any], now: Optional[float] = None) -> int:
    """Unix expiry from ``expires_in`` or ``expiry``; 0 when unknown."""
    now = time.time() if now is None else now

    expires_in = payload.get("expires_in")
    if expires_in not in (None, ""):
        try:
            seconds = int(float(expires_in))
        except (TypeError, ValueError, OverflowError):
            seconds = 0
        if seconds > 0:
            return int(now) + seconds

    expiry = payload.get("expiry")
    if isinstance(expiry, (int, float)) and not isinstance(expiry, bool):
        try:
            return max(int(expiry), 0)
        except (ValueError, OverflowError):
            logger.debug("Ignoring non-finite token expiry %r", expiry)
            return 0
    if isinstance(expiry, str) and expiry:
        if expiry.isdigit():
            return int(expiry)
        try:
            parsed = datetime.fromisoformat(
                _FRACTION_RE.sub(r"\1", expiry.replace("Z", "+00:00"))
            )
        except ValueError:
            logger.debug("Ignoring unparseable token expiry %r", expiry)
            return 0
        return max(int(parsed.timestamp()), 0)
    return 0


def build_controllers(
    settings: Settings,
    *,
    codec: StateCodec,
    authenticator: Authenticator,
    token_store: NotifyingTokenStore,
    session_factory: async_sessionmaker[AsyncSession],
    http_client: httpx.AsyncClient,
) -> Dict[str, FlowController]:
    """One controller per configured provider, keyed by lowercase type."""
    controllers: Dict[str, FlowController] = {}
    base_url = settings.effective_base_url()
    for sp_config in settings.all_service_providers():
        key = sp_config.service_provider_type.lower()
        if key in controllers:
            logger.warning(
                "Service provider %s configured more than once, using the first entry",
                sp_config.service_provider_type,
            )
            continue
        endpoint = resolve_endpoint(
            sp_config.service_provider_type, sp_config.service_provider_base_url
        )
        controllers[key] = FlowController(
            sp_config,
            endpoint,
            codec=codec,
            authenticator=authenticator,
            token_store=token_store,
            session_factory=session_factory,
            http_client=http_client,
            base_url=base_url,
            strict_identity_check=settings.strict_identity_check,
        )
        logger.info("OAuth controller registered: %s (%s)", key, endpoint.auth_url)
    return controllers
