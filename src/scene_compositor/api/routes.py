"""FastAPI route handlers — media proxies and the export endpoint."""

from __future__ import annotations

from urllib.parse import urlparse

import httpx
import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, Response

from scene_compositor.api.dependencies import get_engine, get_http_client
from scene_compositor.compose.compositor import export_video
from scene_compositor.config import settings
from scene_compositor.errors import ConfigurationError, EncodingError, RequiredAssetFetchError
from scene_compositor.models.export import ExportRequest
from scene_compositor.tools.ffmpeg_engine import SharedEngine

logger = structlog.get_logger()

router = APIRouter(prefix="/api")

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}
_CACHE_FOREVER = "public, max-age=31536000"
_MAX_REDIRECTS = 5


def is_allowed_media_url(url: str) -> bool:
    """True when *url* is http(s) and its hostname contains an allowed domain."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return False
    return any(domain in parsed.hostname for domain in settings.allowed_media_domains)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _get_allowed(client: httpx.AsyncClient, url: str) -> httpx.Response | None:
    """GET *url*, following redirects only while every hop stays on the allowlist.

    Returns ``None`` when a redirect points outside the allowlist.
    """
    response = await client.get(url, follow_redirects=False)
    for _ in range(_MAX_REDIRECTS):
        if not response.is_redirect or response.next_request is None:
            return response
        target = str(response.next_request.url)
        if not is_allowed_media_url(target):
            logger.warning("proxy.redirect_blocked", url=url, target=target)
            return None
        response = await client.get(target, follow_redirects=False)
    return response


async def _proxy(client: httpx.AsyncClient, url: str | None, default_type: str) -> Response:
    if not url:
        return _error(400, "Missing url parameter")
    try:
        parsed = urlparse(url)
    except ValueError:
        return _error(400, "Invalid URL format")
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return _error(400, "Invalid URL format")
    if not is_allowed_media_url(url):
        logger.warning("proxy.blocked", host=parsed.hostname)
        return _error(403, "Invalid media URL domain")

    try:
        upstream = await _get_allowed(client, url)
    except httpx.InvalidURL:
        return _error(400, "Invalid URL format")
    except httpx.HTTPError:
        logger.exception("proxy.failed", url=url)
        return _error(500, "Proxy failed")

    if upstream is None:
        return _error(403, "Invalid media URL domain")
    if upstream.is_redirect:
        logger.warning("proxy.too_many_redirects", url=url)
        return _error(502, "Too many redirects")
    if upstream.is_error:
        logger.warning("proxy.upstream_error", url=url, status=upstream.status_code)
        return _error(upstream.status_code, "Failed to fetch media")

    return Response(
        content=upstream.content,
        media_type=upstream.headers.get("content-type", default_type),
        headers={**_CORS_HEADERS, "Cache-Control": _CACHE_FOREVER},
    )


@router.get("/proxy-video")
async def proxy_video(
    url: str | None = Query(default=None),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """Stream a clip from an allowed origin with permissive CORS headers."""
    return await _proxy(client, url, "video/mp4")


@router.get("/proxy-image")
async def proxy_image(
    url: str | None = Query(default=None),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    return await _proxy(client, url, "image/png")


@router.get("/proxy-font")
async def proxy_font(client: httpx.AsyncClient = Depends(get_http_client)):
    """Serve the caption font so browsers can load it cross-origin."""
    try:
        upstream = await client.get(settings.caption_font_url)
    except httpx.HTTPError:
        logger.exception("proxy.font_failed")
        return _error(500, "Proxy failed")
    if upstream.is_error:
        return _error(upstream.status_code, "Failed to fetch font")
    return Response(
        content=upstream.content,
        media_type="font/ttf",
        headers={**_CORS_HEADERS, "Cache-Control": _CACHE_FOREVER},
    )


@router.post("/v1/export")
async def export(
    request: ExportRequest,
    client: httpx.AsyncClient = Depends(get_http_client),
    engine: SharedEngine = Depends(get_engine),
):
    """Compose the request's clips and return the MP4 bytes."""

    def on_progress(message: str) -> None:
        logger.info("export.progress", message=message)

    try:
        result = await export_video(request, on_progress, http_client=client, engine=engine)
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except RequiredAssetFetchError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except EncodingError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return Response(
        content=result.data,
        media_type=result.mime_type,
        headers={
            "Content-Disposition": 'attachment; filename="export.mp4"',
            "X-Video-Duration": f"{result.duration_sec:.3f}",
        },
    )
