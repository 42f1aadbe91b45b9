"""HLS M3U8 manifest rewriter for token-based authentication."""

import re
from typing import Optional
from urllib.parse import quote

from m3u8_proxy.token_codec import TokenCodec
from m3u8_proxy.url_resolver import BaseUrl, attach_referer, resolve

# Schemes the proxy cannot fetch (FairPlay key URIs, inline data)
UNPROXIABLE_PREFIXES = ("skd://", "data:")


def build_proxy_url(proxy_url: str, url: str, token: str) -> str:
    """Format ``<proxy_url>?url=<encoded url>&token=<token>``."""
    return f"{proxy_url}?url={quote(url, safe='')}&token={token}"


class M3U8Rewriter:
    """Rewrites M3U8 playlists to route URLs through the proxy with per-URL tokens."""

    # Pattern to match URI attributes (#EXT-X-KEY, #EXT-X-MAP, #EXT-X-MEDIA, ...)
    URI_PATTERN = re.compile(r'(?<![A-Z-])URI="([^"]*)"')

    def __init__(self, token_codec: TokenCodec, proxy_url: str, referer: Optional[str] = None):
        """
        Initialize the rewriter.

        Args:
            token_codec: Codec used to mint a token for every rewritten URL
            proxy_url: Absolute URL of the proxy endpoint (e.g., "https://edge.example.com/proxy")
            referer: Referer annotation to carry onto every resolved URL
        """
        self.token_codec = token_codec
        self.proxy_url = proxy_url
        self.referer = referer

    def rewrite_manifest(self, content: str, base_url: str) -> str:
        """
        Rewrite all URLs in an M3U8 manifest to proxy through this server.

        The output has exactly as many lines as the input.

        Args:
            content: Original M3U8 manifest content
            base_url: URL the manifest was served from, after redirects

        Returns:
            Rewritten M3U8 manifest with proxied URLs
        """
        base = BaseUrl.from_url(base_url)
        return "\n".join(self._rewrite_line(line, base) for line in content.split("\n"))

    def proxied(self, url: str) -> str:
        """Build the proxy URL for an absolute target URL."""
        return build_proxy_url(self.proxy_url, url, self.token_codec.issue(url))

    def _rewrite_line(self, line: str, base: BaseUrl) -> str:
        stripped = line.strip()

        if not stripped:
            return line

        if stripped.startswith("#"):
            if "URI=" in line:
                return self._rewrite_tag_uris(line, base)
            return line

        # Non-comment, non-empty lines are segment or playlist references
        line_ending = "\r" if line.endswith("\r") else ""
        return self._rewrite_reference(stripped, base) + line_ending

    def _rewrite_tag_uris(self, line: str, base: BaseUrl) -> str:
        """Replace only the quoted URI value(s) of a tag line."""

        def replace_uri(match: re.Match) -> str:
            original_uri = match.group(1)
            if not original_uri.strip():
                return match.group(0)
            return f'URI="{self._rewrite_reference(original_uri.strip(), base)}"'

        return self.URI_PATTERN.sub(replace_uri, line)

    def _rewrite_reference(self, reference: str, base: BaseUrl) -> str:
        if reference.lower().startswith(UNPROXIABLE_PREFIXES):
            return reference

        absolute_url = attach_referer(resolve(reference, base), self.referer)
        return self.proxied(absolute_url)
