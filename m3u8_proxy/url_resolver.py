"""Resolution of playlist references against the playlist's own location."""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl, quote, urlsplit, urlunsplit

# Reserved query parameter carrying the upstream Referer across proxy hops
REFERER_PARAM = "__referer"

ABSOLUTE_SCHEMES = ("http://", "https://")


@dataclass(frozen=True)
class BaseUrl:
    """Scheme, host and path of the URL a playlist was served from."""

    scheme: str
    host: str
    path: str

    @classmethod
    def from_url(cls, url: str) -> "BaseUrl":
        """
        Build a base from a URL.

        Args:
            url: The URL the upstream actually responded from (after redirects)

        Returns:
            BaseUrl with the query string and fragment dropped
        """
        parts = urlsplit(url)
        return cls(scheme=parts.scheme, host=parts.netloc, path=parts.path or "/")

    @property
    def origin(self) -> str:
        return f"{self.scheme}://{self.host}"

    @property
    def directory(self) -> str:
        """Path truncated after its last slash."""
        return self.path[: self.path.rfind("/") + 1] or "/"


def is_absolute_http_url(url: str) -> bool:
    """Return True for http(s) URLs that carry a host."""
    if not url.lower().startswith(ABSOLUTE_SCHEMES):
        return False
    return bool(urlsplit(url).netloc)


def resolve(reference: str, base: BaseUrl) -> str:
    """
    Turn a playlist reference into a fully qualified URL.

    Args:
        reference: Absolute, scheme-relative, absolute-path or relative reference
        base: Location of the playlist containing the reference

    Returns:
        Absolute URL
    """
    if reference.lower().startswith(ABSOLUTE_SCHEMES):
        return reference

    if reference.startswith("//"):
        return f"{base.scheme}:{reference}"

    if reference.startswith("/"):
        return f"{base.origin}{reference}"

    return f"{base.origin}{base.directory}{reference}"


def origin_of(url: str) -> str:
    """Return ``scheme://host`` for a URL."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def attach_referer(url: str, referer: Optional[str]) -> str:
    """Append the referer annotation to ``url`` (no-op without a referer)."""
    if not referer:
        return url

    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{REFERER_PARAM}={quote(referer, safe='')}"


def split_referer(url: str) -> tuple[str, Optional[str]]:
    """
    Separate the referer annotation from a URL.

    Other query parameters are kept byte-for-byte so signed upstream URLs
    still match what the origin issued.

    Returns:
        Tuple of (URL to fetch upstream, referer or None)
    """
    parts = urlsplit(url)
    if not parts.query:
        return url, None

    pairs = parts.query.split("&")
    referer = None
    kept = []
    for pair in pairs:
        if pair.split("=", 1)[0] != REFERER_PARAM:
            kept.append(pair)
            continue
        parsed = parse_qsl(pair, keep_blank_values=True)
        if parsed:
            referer = parsed[0][1] or None

    if len(kept) == len(pairs):
        return url, None

    fetch_url = urlunsplit(
        (parts.scheme, parts.netloc, parts.path, "&".join(kept), parts.fragment)
    )
    return fetch_url, referer
