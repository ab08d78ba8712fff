"""
FastAPI dependencies (shared across routes).
"""

from __future__ import annotations

from typing import Dict

from fastapi import Request

from connectors.controller import FlowController
from connectors.upload import TokenUploader
from utils.errors import UnsupportedProvider

_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


async def form_values(request: Request) -> Dict[str, str]:
    """Query parameters overlaid with an urlencoded POST body, if any."""
    values: Dict[str, str] = dict(request.query_params)
    if request.method == "POST" and request.headers.get("content-type", "").startswith(
        _FORM_CONTENT_TYPE
    ):
        form = await request.form()
        values.update({k: v for k, v in form.items() if isinstance(v, str)})
    return values


def get_controller(provider: str, request: Request) -> FlowController:
    """Controller registered for ``provider`` (lowercase type in the path)."""
    controller = request.app.state.controllers.get(provider.lower())
    if controller is None:
        raise UnsupportedProvider(f"service provider '{provider}' is not configured")
    return controller


def get_uploader(request: Request) -> TokenUploader:
    return request.app.state.uploader
