"""
Pydantic schemas shared by the OAuth broker.
"""

from __future__ import annotations

import time
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ═══════════════════════════════════════════════════════════════════════════════
# Token material
# ═══════════════════════════════════════════════════════════════════════════════


class Token(BaseModel):
    """OAuth credential as persisted in the token storage."""

    access_token: str = Field(..., min_length=1)
    token_type: str = ""
    refresh_token: str = ""
    expiry: int = 0  # unix seconds, 0 when the provider did not say


class TokenMetadata(BaseModel):
    """Service provider user facts attached to the access token record status."""

    user_id: str = ""
    username: str = ""
    last_refresh_time: int = Field(default_factory=lambda: int(time.time()))


# ═══════════════════════════════════════════════════════════════════════════════
# Caller identity
# ═══════════════════════════════════════════════════════════════════════════════


class CallerIdentity(BaseModel):
    """Kubernetes user info of whoever presented a credential."""

    name: str = ""
    uid: str = ""
    groups: List[str] = Field(default_factory=list)
    extra: Dict[str, List[str]] = Field(default_factory=dict)

    def matches(self, other: "CallerIdentity") -> bool:
        """Same user, ignoring the ordering of groups and extra values."""
        if self.name != other.name or self.uid != other.uid:
            return False
        if set(self.groups) != set(other.groups):
            return False
        if set(self.extra) != set(other.extra):
            return False
        return all(set(v) == set(other.extra[k]) for k, v in self.extra.items())


# ═══════════════════════════════════════════════════════════════════════════════
# OAuth flow state, carried through the provider redirect in ``state``
# ═══════════════════════════════════════════════════════════════════════════════


class AnonymousFlowState(BaseModel):
    """
    Flow context created before the initiating caller is bound to it.

    Serialized with camelCase keys (``tokenName``, ``issuedAt``, …).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    token_name: str
    token_namespace: str
    issued_at: int = Field(default_factory=lambda: int(time.time()))
    scopes: List[str] = Field(default_factory=list)
    service_provider_type: str = ""
    service_provider_url: str = ""

    @property
    def owner_key(self) -> str:
        return f"{self.token_namespace}/{self.token_name}"


class AuthenticatedFlowState(AnonymousFlowState):
    """Anonymous state plus the identity captured at Authenticate time."""

    caller_identity: CallerIdentity = Field(default_factory=CallerIdentity)
    authorization_header: str = ""

    @classmethod
    def from_anonymous(
        cls,
        state: AnonymousFlowState,
        identity: CallerIdentity,
        authorization_header: str,
    ) -> "AuthenticatedFlowState":
        return cls(
            **state.model_dump(),
            caller_identity=identity,
            authorization_header=authorization_header,
        )

    def anonymous(self) -> AnonymousFlowState:
        return AnonymousFlowState(
            **self.model_dump(exclude={"caller_identity", "authorization_header"})
        )
