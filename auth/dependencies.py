"""
Credential extraction for broker endpoints.

A caller may present its Kubernetes token either as the ``k8s_token``
form/query field (browser POSTs) or as ``Authorization: Bearer <token>``.
"""

from __future__ import annotations

from typing import Mapping, Optional

from fastapi import Request

_BEARER_PREFIX = "bearer "


def extract_token_from_authorization_header(header: Optional[str]) -> str:
    """Return the token from a ``Bearer`` header, or "" if there is none."""
    if not header:
        return ""
    if header[: len(_BEARER_PREFIX)].lower() != _BEARER_PREFIX:
        return ""
    return header[len(_BEARER_PREFIX):].strip()


def request_credential(request: Request, form: Mapping[str, str]) -> str:
    """Token presented with this request, form field first, then header."""
    token = form.get("k8s_token", "")
    if not token:
        token = extract_token_from_authorization_header(request.headers.get("Authorization"))
    return token
