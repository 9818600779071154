"""Cross-origin handling for the browser-facing checkout endpoints.

The checkout page posts from another origin. Any ``OPTIONS`` request to one
of those paths is answered here with 200 and an empty body, whether or not
it is a well-formed preflight, and the same headers are added to the real
responses.
"""

from __future__ import annotations

from collections.abc import Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp


class CrossOriginMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        paths: Iterable[str],
        origins: Iterable[str] = ("*",),
        allow_headers: str = "Content-Type",
        allow_methods: str = "POST, OPTIONS",
    ) -> None:
        super().__init__(app)
        self.paths = frozenset(p.rstrip("/") for p in paths)
        self.origins = [o for o in origins if o]
        self.allow_headers = allow_headers
        self.allow_methods = allow_methods

    def _allow_origin(self, request: Request) -> str | None:
        if not self.origins or "*" in self.origins:
            return "*"
        origin = request.headers.get("origin")
        if origin in self.origins:
            return origin
        return None

    def _headers(self, request: Request) -> dict[str, str]:
        origin = self._allow_origin(request)
        if origin is None:
            return {}
        headers = {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Headers": self.allow_headers,
            "Access-Control-Allow-Methods": self.allow_methods,
        }
        if origin != "*":
            headers["Vary"] = "Origin"
        return headers

    async def dispatch(self, request: Request, call_next: object) -> Response:
        if request.url.path.rstrip("/") not in self.paths:
            return await call_next(request)  # type: ignore[call-arg]

        if request.method == "OPTIONS":
            return Response(status_code=200, headers=self._headers(request))

        response: Response = await call_next(request)  # type: ignore[call-arg]
        for key, value in self._headers(request).items():
            response.headers[key] = value
        return response
