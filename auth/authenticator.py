"""
Caller authentication against the Kubernetes API.

The broker never decides access itself; it asks the cluster who a bearer
token belongs to (TokenReview) and remembers the answer.
"""

from __future__ import annotations

import logging
import pathlib
from abc import ABC, abstractmethod
from typing import List, Optional

import httpx

from utils.errors import UnauthenticatedCaller
from utils.schemas import CallerIdentity

logger = logging.getLogger(__name__)

_TOKEN_REVIEW_PATH = "/apis/authentication.k8s.io/v1/tokenreviews"


class Authenticator(ABC):
    """Resolves a bearer credential into a ``CallerIdentity``."""

    @abstractmethod
    async def authenticate(self, token: str) -> Optional[CallerIdentity]:
        """
        Return the identity behind ``token``, or None if the cluster does
        not recognise it.  Raises ``UnauthenticatedCaller`` when the
        cluster could not be asked.
        """
        ...


class TokenReviewAuthenticator(Authenticator):
    """Authenticates tokens with a ``TokenReview`` against the API server."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_server: str,
        service_account_token_path: str,
        audiences: Optional[List[str]] = None,
    ) -> None:
        self._client = client
        self._url = api_server.rstrip("/") + _TOKEN_REVIEW_PATH
        self._sa_token_path = pathlib.Path(service_account_token_path)
        self._audiences = list(audiences or [])

    def _service_account_token(self) -> str:
        # projected tokens rotate, so read on every review
        try:
            return self._sa_token_path.read_text().strip()
        except OSError as exc:
            raise UnauthenticatedCaller(
                f"cannot read service account token {self._sa_token_path}: {exc}"
            ) from exc

    async def authenticate(self, token: str) -> Optional[CallerIdentity]:
        spec: dict = {"token": token}
        if self._audiences:
            spec["audiences"] = self._audiences
        review = {
            "apiVersion": "authentication.k8s.io/v1",
            "kind": "TokenReview",
            "spec": spec,
        }

        try:
            resp = await self._client.post(
                self._url,
                json=review,
                headers={"Authorization": f"Bearer {self._service_account_token()}"},
            )
            resp.raise_for_status()
            result = resp.json().get("status", {})
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "TokenReview failed — check that KUBE_API_SERVER points at the "
                "cluster (or its API proxy): %s",
                exc,
            )
            raise UnauthenticatedCaller(f"token review failed: {exc}") from exc

        if not result.get("authenticated"):
            logger.debug("TokenReview rejected the token: %s", result.get("error", ""))
            return None

        user = result.get("user", {})
        return CallerIdentity(
            name=user.get("username", ""),
            uid=user.get("uid", ""),
            groups=user.get("groups") or [],
            extra=user.get("extra") or {},
        )
