"""Data models for the proxy server."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from m3u8_proxy.url_resolver import attach_referer, is_absolute_http_url

# Option key in "<url>|Referer=<value>" channel-list entries
PIPE_REFERER_KEY = "referer"


class StreamReference(BaseModel):
    """A stream the client asks the proxy to fetch, with an optional upstream Referer."""

    model_config = ConfigDict(frozen=True)

    target_url: str = Field(..., description="Absolute http(s) URL of the stream")
    referer: Optional[str] = Field(None, description="Referer required by the upstream origin")

    @field_validator("target_url")
    @classmethod
    def validate_target_url(cls, v: str) -> str:
        """Ensure target_url is an absolute http(s) URL."""
        v = v.strip()
        if not is_absolute_http_url(v):
            raise ValueError("target_url must be an absolute http(s) URL")
        return v

    @field_validator("referer")
    @classmethod
    def normalize_referer(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank referers as absent."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @classmethod
    def parse(cls, text: str, referer: Optional[str] = None) -> "StreamReference":
        """
        Parse a channel-list entry.

        Accepts a bare URL or the ``<url>|Referer=<value>`` convention used by
        IPTV lists. Unknown ``|Key=Value`` options are ignored; an explicit
        ``referer`` argument wins over one embedded in the text.
        """
        url, *options = text.split("|")
        embedded = None
        for option in options:
            key, sep, value = option.partition("=")
            if sep and key.strip().lower() == PIPE_REFERER_KEY:
                embedded = value
        return cls(target_url=url, referer=referer or embedded)

    @property
    def proxied_url(self) -> str:
        """Target URL with the referer annotation attached."""
        return attach_referer(self.target_url, self.referer)


class TokenRequest(BaseModel):
    """Request body for issuing a proxy token."""

    url: str = Field(..., description="Stream URL, optionally in '<url>|Referer=<value>' form")
    referer: Optional[str] = Field(None, description="Referer required by the upstream origin")


class TokenResponse(BaseModel):
    """Response for token issuance."""

    token: str = Field(..., description="Token bound to url")
    url: str = Field(..., description="Exact url the token is bound to")
    proxy_url: str = Field(..., description="Ready-to-play proxy URL")
    expires_in: int = Field(..., description="Seconds the token stays valid at most")


class ErrorResponse(BaseModel):
    """JSON body of every error response."""

    error: str
    help: Optional[str] = None
    details: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for the health check."""

    status: str
    version: str
