from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import os

from kubeprov.config import Config

OPEN_PATHS = ("/docs", "/openapi.json", "/health")


class AuthMiddleware(BaseHTTPMiddleware):
    """Require the X-API-Key header on every route except docs and health."""

    def __init__(self, app, token: str = None):
        super().__init__(app)
        self.token = token

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(OPEN_PATHS):
            return await call_next(request)

        token = self.token or os.getenv("KUBEPROV_API_KEY", Config.API_KEY)
        if request.headers.get("X-API-Key") != token:
            return JSONResponse(status_code=403, content={"detail": "Unauthorized"})
        return await call_next(request)
