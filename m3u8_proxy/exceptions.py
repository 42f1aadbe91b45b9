"""Custom exceptions for the proxy server."""

from typing import Optional

from fastapi import HTTPException, status

USAGE_HINT = "Request /proxy?url=<url-encoded stream URL>&token=<token from /token>"


class ProxyError(HTTPException):
    """Base class for errors rendered as a JSON ``{error, help, details}`` body."""

    def __init__(
        self,
        status_code: int,
        error: str,
        hint: Optional[str] = None,
        details: Optional[str] = None,
    ):
        super().__init__(status_code=status_code, detail=error)
        self.error = error
        self.hint = hint
        self.details = details


class MissingUrlError(ProxyError):
    """Raised when the target url parameter is absent."""

    def __init__(self):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Missing url parameter",
            hint=USAGE_HINT,
        )


class InvalidTargetUrlError(ProxyError):
    """Raised when the target is not an absolute http(s) URL."""

    def __init__(self, details: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Invalid url parameter: expected an absolute http(s) URL",
            hint=USAGE_HINT,
            details=details,
        )


class MissingTokenError(ProxyError):
    """Raised when no token accompanies a proxy request."""

    def __init__(self):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="Missing token parameter",
            hint="Obtain a token for this url from the /token endpoint",
        )


class InvalidTokenError(ProxyError):
    """Raised when a token does not match the url or has expired."""

    def __init__(self):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="Invalid or expired token",
            hint="Tokens are bound to one url and expire after a few minutes; request a fresh one",
        )


class OriginNotAllowedError(ProxyError):
    """Raised when the caller's Origin is not in the allow-list."""

    def __init__(self):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="Unauthorized origin",
        )


class UpstreamStatusError(ProxyError):
    """Raised when the upstream origin answers with a non-2xx status."""

    def __init__(self, status_code: int, details: Optional[str] = None):
        super().__init__(
            status_code=status_code,
            error=f"Stream unavailable: upstream returned {status_code}",
            details=details,
        )


class UpstreamTimeoutError(ProxyError):
    """Raised when the upstream fetch exceeds the configured timeout."""

    def __init__(self, timeout_seconds: float, details: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error=f"Upstream request timed out after {timeout_seconds:g}s",
            details=details,
        )


class UpstreamConnectionError(ProxyError):
    """Raised on DNS, connection or protocol failures talking to upstream."""

    def __init__(self, details: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="Proxy failed to fetch stream",
            details=details,
        )
