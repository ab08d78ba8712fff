"""
Exception hierarchy for the OAuth broker.

Every failure carries the HTTP status it maps to by default.  Handlers
translate these at the route boundary; nothing below the routes knows
about responses.
"""

from __future__ import annotations

from fastapi import status


class BrokerError(Exception):
    """Base class for all broker failures."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "OAuth broker failure"
    owner: str = ""  # namespace/name of the affected record, when known

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.message)
        self.detail = detail


# ── State codec ─────────────────────────────────────────────────────────


class InvalidState(BrokerError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "failed to decode the OAuth state"


class MalformedState(InvalidState):
    pass


class InvalidSignature(InvalidState):
    pass


class StateExpired(InvalidState):
    pass


class StateVariantMismatch(InvalidState):
    pass


class EncodingError(BrokerError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "failed to encode OAuth state"


# ── Caller identity ─────────────────────────────────────────────────────


class UnauthenticatedCaller(BrokerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "failed to authenticate the request in Kubernetes"


class IdentityMismatch(BrokerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "could not authenticate to Kubernetes"


# ── Provider interaction ────────────────────────────────────────────────


class UnsupportedProvider(BrokerError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "unsupported service provider"


class ExchangeFailed(BrokerError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "error in Service Provider token exchange"


class MetadataFailed(BrokerError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "failed to get Service Provider user"


# ── Persistence ─────────────────────────────────────────────────────────


class RecordNotFound(BrokerError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "access token record not found"


class PersistFailed(BrokerError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "failed to store token data to cluster"


class RecordConflict(PersistFailed):
    """Optimistic update of the owner record kept losing to concurrent writers."""


class MalformedTokenPayload(BrokerError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "failed to decode the token data"
