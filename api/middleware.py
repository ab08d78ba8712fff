"""
Global middleware.
"""

from __future__ import annotations

import logging
import time
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

logger = logging.getLogger(__name__)


def register_middleware(app: FastAPI, cors_origins: List[str]) -> None:
    """Attach CORS and the request timer."""

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        # never log the query string, it carries state and codes
        logger.debug(
            "%s %s -> %d — %.3fs",
            request.method, request.url.path, response.status_code, elapsed,
        )
        return response
