"""FastAPI dependency injection — outbound HTTP client and FFmpeg engine."""

from __future__ import annotations

from typing import AsyncIterator

import httpx

from scene_compositor.config import settings
from scene_compositor.tools.ffmpeg_engine import SharedEngine, shared_engine


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """Per-request client for proxying and asset downloads."""
    async with httpx.AsyncClient(timeout=settings.download_timeout_sec, follow_redirects=True) as client:
        yield client


def get_engine() -> SharedEngine:
    return shared_engine
