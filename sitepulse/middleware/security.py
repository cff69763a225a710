from fastapi import Request, Response
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

# Called from third-party pages: no frame or referrer restrictions.
EMBEDDED_PREFIXES = ("/api/track", "/api/script/")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)

        if "server" in response.headers:
            del response.headers["server"]
        if "X-Powered-By" in response.headers:
            del response.headers["X-Powered-By"]

        path = request.url.path
        embedded = path.startswith(EMBEDDED_PREFIXES)

        # The tracking script sets its own public Cache-Control
        if path.startswith("/api/") and "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"

        if not embedded:
            response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
            response.headers["X-Frame-Options"] = "DENY"
            if "Content-Security-Policy" not in response.headers:
                response.headers["Content-Security-Policy"] = "frame-ancestors 'none'"

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


class DashboardCORSMiddleware(CORSMiddleware):
    """CORS for the dashboard API. Embedded endpoints answer CORS themselves."""

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope["path"].startswith(EMBEDDED_PREFIXES):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)
