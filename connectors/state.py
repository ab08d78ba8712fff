"""
OAuth state codec — signs and verifies the ``state`` parameter.

The envelope is ``base64url(payload) + "." + hex(HMAC-SHA256(payload))``.
The payload is JSON with a ``typ`` discriminator so that an anonymous
state can never be accepted where an authenticated one is expected (and
vice versa), plus the camelCase fields of the flow state itself.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import json
import time
from base64 import b64decode, urlsafe_b64encode
from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ValidationError

from utils.errors import (
    EncodingError,
    InvalidSignature,
    MalformedState,
    StateExpired,
    StateVariantMismatch,
)
from utils.schemas import AnonymousFlowState, AuthenticatedFlowState

_ANONYMOUS = "anonymous"
_AUTHENTICATED = "authenticated"

_StateT = TypeVar("_StateT", bound=BaseModel)


class StateCodec:
    """Encodes and decodes the two flow-state variants."""

    def __init__(
        self,
        secret: bytes,
        max_age_seconds: int = 900,
        *,
        clock=time.time,
    ) -> None:
        if not secret:
            raise ValueError("state signing secret must not be empty")
        self._secret = secret
        self._max_age = max_age_seconds
        self._clock = clock

    # ── Public API ──────────────────────────────────────────────────────

    def encode_anonymous(self, state: AnonymousFlowState) -> str:
        return self._encode(_ANONYMOUS, state)

    def decode_anonymous(self, value: str) -> AnonymousFlowState:
        return self._decode(value, _ANONYMOUS, AnonymousFlowState)

    def encode_authenticated(self, state: AuthenticatedFlowState) -> str:
        return self._encode(_AUTHENTICATED, state)

    def decode_authenticated(self, value: str) -> AuthenticatedFlowState:
        return self._decode(value, _AUTHENTICATED, AuthenticatedFlowState)

    # ── Envelope ────────────────────────────────────────────────────────

    def _sign(self, raw: bytes) -> str:
        return hmac.new(self._secret, raw, hashlib.sha256).hexdigest()

    def _encode(self, variant: str, state: BaseModel) -> str:
        try:
            payload: Dict[str, Any] = {"typ": variant}
            payload.update(state.model_dump(mode="json", by_alias=True))
            raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
        except (TypeError, ValueError) as exc:
            raise EncodingError(str(exc)) from exc
        return urlsafe_b64encode(raw).decode().rstrip("=") + "." + self._sign(raw)

    def _decode(self, value: str, variant: str, model: Type[_StateT]) -> _StateT:
        encoded, sep, signature = (value or "").partition(".")
        if not sep or not encoded or not signature:
            raise MalformedState("state is not a signed envelope")

        try:
            raw = b64decode(encoded + "=" * (-len(encoded) % 4), altchars=b"-_", validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedState(f"bad payload encoding: {exc}") from exc

        if not hmac.compare_digest(signature.encode(), self._sign(raw).encode()):
            raise InvalidSignature("bad signature")

        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise MalformedState(f"bad payload: {exc}") from exc
        if not isinstance(payload, dict):
            raise MalformedState("payload is not an object")

        found = payload.pop("typ", None)
        if found != variant:
            raise StateVariantMismatch(f"expected {variant} state, got {found!r}")

        try:
            state = model.model_validate(payload)
        except ValidationError as exc:
            raise MalformedState(str(exc)) from exc

        self._check_age(state.issued_at)
        return state

    def _check_age(self, issued_at: int) -> None:
        age = self._clock() - issued_at
        if age > self._max_age:
            raise StateExpired(f"state issued {int(age)}s ago, max is {self._max_age}s")
