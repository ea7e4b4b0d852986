"""
AEGIS Shell Cache — Request Interception

Every request outside the API prefixes is answered by the ShellController.
A request nobody can answer gets an empty 504, never an error page.
"""
import logging
from typing import Sequence

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .models import ShellRequest
from .worker import ShellController

logger = logging.getLogger("aegis.assets.middleware")

_FORWARD_HEADERS = ("accept", "accept-language", "if-none-match", "if-modified-since")


def _fetch_mode(request: Request) -> str:
    mode = request.headers.get("sec-fetch-mode")
    if mode:
        return mode
    if request.method == "GET" and "text/html" in request.headers.get("accept", ""):
        return "navigate"
    return "no-cors"


class ShellCacheMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, controller: ShellController, passthrough: Sequence[str] = ("/api",)):
        super().__init__(app)
        self.controller = controller
        self.passthrough = tuple(passthrough)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path.startswith(self.passthrough):
            return await call_next(request)

        url = self.controller.origin.rstrip("/") + path
        if request.url.query:
            url += "?" + request.url.query

        shell_request = ShellRequest(
            url=url,
            method=request.method,
            mode=_fetch_mode(request),
            headers={k: v for k, v in request.headers.items() if k.lower() in _FORWARD_HEADERS},
        )

        response = await run_in_threadpool(self.controller.fetch, shell_request)
        if response is None:
            return Response(status_code=504)

        return Response(
            content=response.body,
            status_code=response.status,
            headers=response.headers,
        )
