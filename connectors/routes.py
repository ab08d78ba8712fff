"""
OAuth broker routes — authenticate, callback, direct token upload.

    GET|POST /{provider}/authenticate   start the flow, 302 to the provider
    GET      /{provider}/callback       finish the flow, 302 to the UI
    POST     /token/{namespace}/{name}  store a token directly, 204
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import PlainTextResponse, RedirectResponse

from api.dependencies import form_values, get_controller, get_uploader
from auth.dependencies import extract_token_from_authorization_header, request_credential
from utils.errors import BrokerError, RecordNotFound

logger = logging.getLogger(__name__)

router = APIRouter(tags=["oauth"])


def _error_response(
    exc: BrokerError,
    *,
    provider: str,
    status_code: Optional[int] = None,
) -> PlainTextResponse:
    code = status_code or exc.status_code
    logger.error(
        "%s: %s (provider=%s owner=%s status=%d)",
        exc.message, exc, provider, exc.owner or "-", code,
    )
    return PlainTextResponse(f"{exc.message}: {exc}", status_code=code)


# ── Routes ─────────────────────────────────────────────────────────────


@router.api_route("/{provider}/authenticate", methods=["GET", "POST"])
async def oauth_authenticate(provider: str, request: Request) -> Response:
    """
    Start the OAuth flow.

    Expects ``state`` (signed anonymous state) and the caller's Kubernetes
    token as ``k8s_token`` or ``Authorization: Bearer``.
    """
    form = await form_values(request)
    try:
        controller = get_controller(provider, request)
        url = await controller.authenticate(
            form.get("state", ""), request_credential(request, form)
        )
    except BrokerError as exc:
        return _error_response(exc, provider=provider)

    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get("/{provider}/callback")
async def oauth_callback(provider: str, request: Request) -> Response:
    """
    Provider redirects here after consent.

    Exchanges the code, stores the token and redirects to
    ``redirect_after_login`` or the success page.
    """
    form = await form_values(request)
    try:
        controller = get_controller(provider, request)
    except BrokerError as exc:
        return _error_response(exc, provider=provider)

    if form.get("error") and not form.get("code"):
        logger.warning(
            "Provider %s reported an error: %s (%s)",
            provider, form["error"], form.get("error_description", ""),
        )
        return RedirectResponse(
            controller.error_location(form["error"], form.get("error_description", "")),
            status_code=status.HTTP_302_FOUND,
        )

    try:
        location = await controller.callback(
            form.get("state", ""),
            form.get("code", ""),
            scope=form.get("scope", ""),
            credential=request_credential(request, form),
            redirect_after_login=form.get("redirect_after_login", ""),
        )
    except RecordNotFound as exc:
        # the record must exist before a flow starts, so this is our fault
        return _error_response(
            exc, provider=provider, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    except BrokerError as exc:
        return _error_response(exc, provider=provider)

    return RedirectResponse(location, status_code=status.HTTP_302_FOUND)


@router.post("/token/{namespace}/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def upload_token(namespace: str, name: str, request: Request) -> Response:
    """Store a JSON token body for ``namespace/name`` without an OAuth flow."""
    uploader = get_uploader(request)
    body = await request.body()
    try:
        await uploader.handle(
            namespace,
            name,
            body,
            extract_token_from_authorization_header(request.headers.get("Authorization")),
        )
    except BrokerError as exc:
        exc.owner = exc.owner or f"{namespace}/{name}"
        return _error_response(exc, provider="-")

    return Response(status_code=status.HTTP_204_NO_CONTENT)
