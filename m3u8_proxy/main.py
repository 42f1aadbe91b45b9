"""Main FastAPI application for the M3U8 playlist-rewriting proxy."""

import logging
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncGenerator, AsyncIterator, Iterable, Iterator, Optional
from urllib.parse import urlsplit

import httpx
import uvicorn
from fastapi import FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from m3u8_proxy.config import DEFAULT_PROXY_SECRET, settings
from m3u8_proxy.cors import DEFAULT_METHODS, CorsPolicy
from m3u8_proxy.exceptions import (
    InvalidTargetUrlError,
    InvalidTokenError,
    MissingTokenError,
    MissingUrlError,
    OriginNotAllowedError,
    ProxyError,
    UpstreamConnectionError,
    UpstreamStatusError,
    UpstreamTimeoutError,
)
from m3u8_proxy.logging_config import configure_logging
from m3u8_proxy.m3u8_rewriter import M3U8Rewriter, build_proxy_url
from m3u8_proxy.models import (
    ErrorResponse,
    HealthResponse,
    StreamReference,
    TokenRequest,
    TokenResponse,
)
from m3u8_proxy.token_codec import TokenCodec
from m3u8_proxy.url_resolver import is_absolute_http_url, origin_of, split_referer

VERSION = "0.1.0"

PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
PLAYLIST_CONTENT_TYPE_MARKERS = ("mpegurl", "m3u")
PLAYLIST_EXTENSIONS = (".m3u8", ".m3u")

# Upstream response headers copied onto pass-through responses
FORWARDED_HEADERS = ("Content-Length", "Content-Range", "Accept-Ranges", "Content-Encoding")

TOKEN_PATH = "/token"
TOKEN_METHODS = ("POST", "OPTIONS")

# Configure logging
configure_logging(settings.log_level, redact=not settings.dev_mode)
logger = logging.getLogger(__name__)

# Global HTTP client for upstream requests
http_client: httpx.AsyncClient | None = None

token_codec = TokenCodec(
    settings.proxy_secret,
    bucket_seconds=settings.token_bucket_seconds,
    skew_buckets=settings.token_skew_buckets,
)
cors_policy = CorsPolicy(settings.allowed_origins_list)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifespan (startup and shutdown)."""
    global http_client

    # Startup
    logger.info("Starting M3U8 proxy")
    http_client = httpx.AsyncClient(
        limits=httpx.Limits(
            max_keepalive_connections=settings.http_max_keepalive_connections,
            max_connections=settings.http_max_connections,
        ),
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        follow_redirects=True,
    )
    logger.info(f"HTTP client initialized with timeout={settings.http_timeout_seconds}s")
    logger.info(
        f"Allowed origins: {list(cors_policy.allowed_origins)}, "
        f"origin gating={'on' if settings.origin_gating_enabled else 'off'}"
    )
    if settings.proxy_secret == DEFAULT_PROXY_SECRET:
        logger.warning("PROXY_SECRET is not set; tokens are signed with the default secret")

    yield

    # Shutdown
    logger.info("Shutting down M3U8 proxy")
    if http_client:
        await http_client.aclose()
        logger.info("HTTP client closed")


# Initialize FastAPI app
app = FastAPI(
    title="M3U8 Proxy",
    description="Token-gated proxy that rewrites HLS playlists and streams segments",
    version=VERSION,
    lifespan=lifespan,
)


def _cors_headers(request: Request, methods: Optional[Iterable[str]] = None) -> dict[str, str]:
    """CORS headers for the route being served."""
    if methods is None:
        methods = TOKEN_METHODS if request.url.path == TOKEN_PATH else DEFAULT_METHODS
    return cors_policy.headers(request.headers.get("origin"), methods)


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    hint: Optional[str] = None,
    details: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """
    Build a JSON error response.

    Details may carry upstream URLs, so they are only exposed in dev mode.
    """
    body = ErrorResponse(
        error=error,
        help=hint,
        details=details if settings.dev_mode else None,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers={**_cors_headers(request), **(headers or {})},
    )


@app.exception_handler(ProxyError)
async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    """Render proxy errors as JSON with CORS headers."""
    return _error_response(request, exc.status_code, exc.error, exc.hint, exc.details)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render framework errors (unknown route, wrong method) in the same JSON shape."""
    # Keeps headers such as Allow on 405
    return _error_response(request, exc.status_code, str(exc.detail), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request body validation errors in the same JSON shape."""
    return _error_response(
        request,
        422,
        "Invalid request body",
        details=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: never answer with a bare 500."""
    logger.exception(f"[PROXY] Unhandled error: {request.url.path}")
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal proxy error",
        details=repr(exc),
    )


def is_playlist(content_type: str, requested_url: str) -> bool:
    """
    Decide whether an upstream response is an HLS playlist.

    Some origins mislabel playlists, so the requested URL's extension counts
    as a second signal next to the Content-Type.
    """
    content_type = content_type.lower()
    if any(marker in content_type for marker in PLAYLIST_CONTENT_TYPE_MARKERS):
        return True
    return _has_playlist_extension(requested_url)


def _has_playlist_extension(url: str) -> bool:
    return urlsplit(url).path.lower().endswith(PLAYLIST_EXTENSIONS)


def _get_content_type(url: str) -> str:
    """
    Determine Content-Type based on file extension.

    Args:
        url: Upstream URL

    Returns:
        Appropriate Content-Type header value
    """
    path_lower = urlsplit(url).path.lower()

    if path_lower.endswith(".ts"):
        return "video/MP2T"
    elif path_lower.endswith(".m4s"):
        return "video/iso.segment"
    elif path_lower.endswith(".mp4"):
        return "video/mp4"
    elif path_lower.endswith(".aac"):
        return "audio/aac"
    else:
        return "application/octet-stream"


def _proxy_endpoint_url(request: Request) -> str:
    """Absolute URL of the proxy endpoint as seen by clients."""
    base = settings.public_base_url.rstrip("/") or str(request.base_url).rstrip("/")
    return f"{base}{settings.proxy_path}"


def _upstream_headers(fetch_url: str, referer: Optional[str], range_header: Optional[str]) -> dict[str, str]:
    """
    Build headers for the upstream fetch.

    Args:
        fetch_url: URL requested from the origin
        referer: Referer annotation carried by the proxy URL, if any
        range_header: Client's Range header, forwarded verbatim

    Returns:
        Header dictionary
    """
    # Bodies are relayed raw, so the origin must not compress them
    headers = {
        "User-Agent": settings.upstream_user_agent,
        "Accept": "*/*",
        "Accept-Encoding": "identity",
    }

    if referer:
        headers["Referer"] = referer
        if is_absolute_http_url(referer):
            headers["Origin"] = origin_of(referer)
    else:
        target_origin = origin_of(fetch_url)
        headers["Referer"] = f"{target_origin}/"
        headers["Origin"] = target_origin

    if range_header:
        headers["Range"] = range_header

    return headers


@contextmanager
def _upstream_errors(url: str) -> Iterator[None]:
    """Translate httpx failures into proxy errors."""
    try:
        yield
    except httpx.TimeoutException as e:
        logger.error(f"[PROXY] Timeout fetching upstream: {url}")
        raise UpstreamTimeoutError(settings.http_timeout_seconds, details=f"{url}: {e!r}") from e
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.error(f"[PROXY] HTTP error fetching upstream {url}: {e!r}")
        raise UpstreamConnectionError(details=f"{url}: {e!r}") from e


async def _open_upstream(url: str, headers: dict[str, str]) -> httpx.Response:
    """Send the upstream request and return the response with its body unread."""
    with _upstream_errors(url):
        upstream_request = http_client.build_request("GET", url, headers=headers)
        return await http_client.send(upstream_request, stream=True)


async def _fetch_upstream(url: str, headers: dict[str, str]) -> httpx.Response:
    """Open the upstream response, raising for non-2xx statuses."""
    upstream = await _open_upstream(url, headers)
    logger.info(f"[PROXY] Upstream response: status={upstream.status_code}, final_url={upstream.url}")

    if not upstream.is_success:
        await upstream.aclose()
        logger.error(f"[PROXY] Upstream error: status={upstream.status_code}, url={url}")
        raise UpstreamStatusError(upstream.status_code, details=url)

    return upstream


async def _stream_body(upstream: httpx.Response, url: str) -> AsyncIterator[bytes]:
    """Yield the upstream body unmodified and release the connection afterwards."""
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        # Headers are already sent; the client sees a truncated body
        logger.warning(f"[PROXY] Upstream stream interrupted {url}: {e!r}")
        raise
    finally:
        await upstream.aclose()


async def _playlist_response(
    request: Request,
    upstream: httpx.Response,
    referer: Optional[str],
) -> Response:
    """Buffer the playlist, rewrite it against its final URL and return it."""
    final_url = str(upstream.url)
    try:
        with _upstream_errors(final_url):
            manifest_content = await upstream.aread()
    finally:
        await upstream.aclose()

    logger.info(f"[PROXY] Manifest size: {len(manifest_content)} bytes, url={final_url}")
    manifest_text = manifest_content.decode("utf-8-sig", errors="replace")

    rewriter = M3U8Rewriter(
        token_codec=token_codec,
        proxy_url=_proxy_endpoint_url(request),
        referer=referer,
    )
    rewritten_manifest = rewriter.rewrite_manifest(manifest_text, base_url=final_url)
    logger.info(f"[PROXY] Manifest rewritten: {len(rewritten_manifest)} bytes")

    headers = {
        **_cors_headers(request),
        "Cache-Control": settings.playlist_cache_control,
    }
    if settings.dev_mode:
        headers["X-Original-URL"] = final_url

    return Response(
        content=rewritten_manifest,
        media_type=PLAYLIST_CONTENT_TYPE,
        headers=headers,
    )


def _passthrough_response(request: Request, upstream: httpx.Response, fetch_url: str) -> StreamingResponse:
    """Stream a segment, key or other binary body straight through."""
    response_headers = _cors_headers(request)
    for name in FORWARDED_HEADERS:
        value = upstream.headers.get(name)
        if value:
            response_headers[name] = value
    response_headers["Cache-Control"] = settings.segment_cache_control

    content_type = upstream.headers.get("Content-Type") or _get_content_type(fetch_url)
    logger.info(
        f"[PROXY] Streaming: status={upstream.status_code}, content_type={content_type}, "
        f"content_range={upstream.headers.get('Content-Range')}"
    )

    return StreamingResponse(
        _stream_body(upstream, fetch_url),
        status_code=upstream.status_code,
        media_type=content_type,
        headers=response_headers,
    )


@app.options(settings.proxy_path, include_in_schema=False)
async def proxy_preflight(request: Request) -> Response:
    """CORS preflight for the proxy endpoint."""
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=_cors_headers(request))


@app.get(
    settings.proxy_path,
    summary="Proxy HLS content",
    description="Fetch a playlist or segment upstream; playlists are rewritten to route through the proxy",
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def proxy_stream(
    request: Request,
    url: Optional[str] = Query(None, description="URL-encoded upstream target"),
    token: Optional[str] = Query(None, description="Token bound to url"),
) -> Response:
    """
    Proxy HLS content from the upstream origin to the browser.

    This endpoint:
    1. Applies the origin gate (when enabled) and validates the url parameter
    2. Verifies the token against the exact url requested
    3. Fetches upstream with browser-like headers, the carried referer and Range
    4. For playlists: rewrites every URI to a fresh proxy URL with its own token
    5. For everything else: streams the body through with long-lived caching
    """
    origin = request.headers.get("origin")
    if settings.origin_gating_enabled and not cors_policy.is_allowed(origin):
        logger.warning(f"[PROXY] Rejected origin: {origin}")
        raise OriginNotAllowedError()

    if not url:
        raise MissingUrlError()
    if not is_absolute_http_url(url):
        raise InvalidTargetUrlError(details=url)

    if not token:
        raise MissingTokenError()
    if not token_codec.verify(token, url):
        logger.warning(f"[PROXY] Token rejected: token={token[:8]}..., url={url}")
        raise InvalidTokenError()

    fetch_url, referer = split_referer(url)
    # Playlists are rewritten whole, so byte ranges only apply to binary bodies
    range_header = None if _has_playlist_extension(fetch_url) else request.headers.get("Range")
    headers = _upstream_headers(fetch_url, referer, range_header)

    logger.info(
        f"[PROXY] Request: url={fetch_url}, token={token[:8]}..., "
        f"referer={'yes' if referer else 'no'}, range={range_header}, "
        f"client_ip={request.client.host if request.client else 'unknown'}"
    )

    upstream = await _fetch_upstream(fetch_url, headers)

    if is_playlist(upstream.headers.get("Content-Type", ""), fetch_url):
        if upstream.status_code == status.HTTP_206_PARTIAL_CONTENT:
            # A partial manifest cannot be rewritten; fetch it whole
            await upstream.aclose()
            logger.info(f"[PROXY] Partial playlist, refetching without Range: {fetch_url}")
            headers.pop("Range", None)
            upstream = await _fetch_upstream(fetch_url, headers)
        return await _playlist_response(request, upstream, referer)

    return _passthrough_response(request, upstream, fetch_url)


@app.options(TOKEN_PATH, include_in_schema=False)
async def token_preflight(request: Request) -> Response:
    """CORS preflight for the token endpoint."""
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=_cors_headers(request))


@app.post(
    TOKEN_PATH,
    response_model=TokenResponse,
    summary="Issue proxy token",
    description="Mint a short-lived token bound to a stream URL (allowed origins only)",
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def issue_token(request: Request, body: TokenRequest) -> JSONResponse:
    """
    Issue a token for a stream URL.

    The referer, if any, is embedded in the bound URL so the proxy can apply
    it upstream on every hop.
    """
    origin = request.headers.get("origin")
    if not cors_policy.is_allowed(origin):
        logger.warning(f"[TOKEN] Rejected origin: {origin}")
        raise OriginNotAllowedError()

    try:
        reference = StreamReference.parse(body.url, referer=body.referer)
    except ValidationError as e:
        raise InvalidTargetUrlError(details=str(e)) from e

    bound_url = reference.proxied_url
    token = token_codec.issue(bound_url)
    logger.info(f"[TOKEN] Issued token for url={reference.target_url}, origin={origin}")

    response = TokenResponse(
        token=token,
        url=bound_url,
        proxy_url=build_proxy_url(_proxy_endpoint_url(request), bound_url, token),
        expires_in=settings.token_lifetime_seconds,
    )
    return JSONResponse(
        content=response.model_dump(),
        headers={**_cors_headers(request), "Cache-Control": "no-store"},
    )


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Liveness probe",
)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=VERSION)


def run() -> None:
    """Serve the app with uvicorn using the configured host and port."""
    uvicorn.run(
        "m3u8_proxy.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    run()
