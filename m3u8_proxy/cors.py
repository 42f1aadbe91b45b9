"""CORS and origin policy for proxy responses."""

from typing import Iterable, Optional

# Sent when no origin is configured at all; browsers never match it
UNUSABLE_ORIGIN = "null"

DEFAULT_METHODS = ("GET", "OPTIONS")


class CorsPolicy:
    """Computes per-request CORS headers from a static allow-list."""

    def __init__(self, allowed_origins: Iterable[str]):
        self._allowed = tuple(allowed_origins)

    @property
    def allowed_origins(self) -> tuple[str, ...]:
        return self._allowed

    def is_allowed(self, origin: Optional[str]) -> bool:
        """Exact membership check; a missing origin is never allowed."""
        return bool(origin) and origin in self._allowed

    def allow_origin(self, origin: Optional[str]) -> str:
        """Origin to echo back: the caller's if allowed, else the first configured one."""
        if self.is_allowed(origin):
            return origin
        if self._allowed:
            return self._allowed[0]
        return UNUSABLE_ORIGIN

    def headers(self, origin: Optional[str], methods: Iterable[str] = DEFAULT_METHODS) -> dict[str, str]:
        """
        Build the CORS header set for a response.

        Args:
            origin: Value of the request's Origin header, if any
            methods: Methods the route accepts

        Returns:
            Header dictionary to merge into the response
        """
        return {
            "Access-Control-Allow-Origin": self.allow_origin(origin),
            "Access-Control-Allow-Methods": ", ".join(methods),
            "Access-Control-Allow-Headers": "Content-Type, Range",
            "Access-Control-Max-Age": "86400",
            "Access-Control-Expose-Headers": "Content-Length, Content-Type, Content-Range, Accept-Ranges",
            "Vary": "Origin",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "no-referrer",
        }
