"""
Service routes — probes and the pages the browser lands on after a flow.
"""

from __future__ import annotations

import html
import json
import logging
from typing import Dict

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check() -> Dict[str, str]:
    return {"status": "ok"}


@router.get("/ready")
async def ready_check() -> Dict[str, str]:
    return {"status": "ok"}


@router.get("/callback_success")
async def callback_success() -> HTMLResponse:
    return HTMLResponse(
        content=_callback_html(
            success=True,
            message="The token was stored. You can close this window.",
        ),
        status_code=200,
    )


@router.get("/callback_error")
async def callback_error(request: Request) -> HTMLResponse:
    error = request.query_params.get("error", "unknown_error")
    description = request.query_params.get("error_description", "")
    return HTMLResponse(
        content=_callback_html(
            success=False,
            message=f"{error}: {description}" if description else error,
        ),
        status_code=200,
    )


# ── Callback HTML template ─────────────────────────────────────────────


def _callback_html(success: bool, message: str) -> str:
    """
    Small HTML page shown after the OAuth redirect.
    Sends a postMessage to the opener and auto-closes.
    """
    status_text = "Connected!" if success else "Failed"
    color = "#00d992" if success else "#ef4444"
    notice = json.dumps({"type": "oauth-callback", "success": success, "message": message})

    return f"""<!DOCTYPE html>
<html>
<head>
    <title>SPI OAuth — {status_text}</title>
    <style>
        body {{
            font-family: system-ui, sans-serif;
            background: #0b0d11; color: #e4e7ee;
            display: flex; align-items: center; justify-content: center;
            height: 100vh; margin: 0;
        }}
        .card {{
            text-align: center; padding: 40px;
            background: #12151b; border: 1px solid #1f2330;
            border-radius: 12px; max-width: 400px;
        }}
        h2 {{ color: {color}; margin: 16px 0 8px; }}
        p {{ color: #a0a6b8; font-size: 0.85rem; }}
    </style>
</head>
<body>
    <div class="card">
        <h2>{status_text}</h2>
        <p>{html.escape(message)}</p>
    </div>
    <script>
        if (window.opener) {{
            window.opener.postMessage({html.escape(notice, quote=False)}, '*');
        }}
        setTimeout(() => window.close(), 2000);
    </script>
</body>
</html>"""
