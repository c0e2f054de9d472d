"""Response hardening headers."""
from __future__ import annotations

from typing import Dict, Optional

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

DEFAULT_SECURITY_HEADERS: Dict[str, str] = {
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "DENY",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}

# Headers that advertise the server technology.
SUPPRESSED_HEADERS = ("server", "x-powered-by")


class SecurityHeadersMiddleware:
    """Apply hardening headers to every HTTP response.

    ``Content-Security-Policy`` is only sent when a policy string is supplied;
    without one the header is left off entirely.
    """

    def __init__(self, app: ASGIApp, content_security_policy: Optional[str] = None) -> None:
        self.app = app
        self.headers = dict(DEFAULT_SECURITY_HEADERS)
        if content_security_policy:
            self.headers["Content-Security-Policy"] = content_security_policy

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name in SUPPRESSED_HEADERS:
                    del headers[name]
                for name, value in self.headers.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_headers)


__all__ = ["DEFAULT_SECURITY_HEADERS", "SecurityHeadersMiddleware"]
