"""Admin guard for the backup API.

Backup create, delete, cleanup and settings writes are admin operations. When
STRONGBOX_API_KEY is set, every /api/* request must present the admin key,
either as ``Authorization: Bearer <key>`` or as ``X-Admin-Key: <key>``.
Without a key the guard is off and access control is left to the deployment.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse, Response

from ..config import settings

logger = logging.getLogger(__name__)

API_PREFIX = "/api"
ADMIN_KEY_HEADER = "X-Admin-Key"


def _presented_key(request: Request) -> str:
    auth = request.headers.get("Authorization", "")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return request.headers.get(ADMIN_KEY_HEADER, "")


class AdminKeyMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, api_key: str | None = None) -> None:  # noqa: ANN001
        super().__init__(app)
        self._api_key = api_key if api_key is not None else settings.api_key

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if not self._api_key or not (path == API_PREFIX or path.startswith(API_PREFIX + "/")):
            return await call_next(request)

        presented = _presented_key(request)
        if presented and hmac.compare_digest(presented.encode(), self._api_key.encode()):
            return await call_next(request)

        logger.warning("Rejected unauthenticated %s %s", request.method, path)
        return JSONResponse(
            status_code=401,
            content={"success": False, "error": "Admin API key required"},
        )
