"""Asset downloader — fetches clips, narration, music and font into a run store."""

from __future__ import annotations

from typing import Callable, Optional

import httpx
import structlog
from typing_extensions import TypedDict

from scene_compositor.compose.timeline import TimelineEntry
from scene_compositor.config import settings
from scene_compositor.errors import OptionalAssetFetchError, RequiredAssetFetchError
from scene_compositor.tools.ffmpeg_engine import WorkingStore

logger = structlog.get_logger()

VOICEOVER_FILE = "voiceover.mp3"
MUSIC_FILE = "music.mp3"
FONT_FILE = "font.ttf"

# InvalidURL is raised before any request is sent and is not an HTTPError
_FETCH_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


def clip_file_name(index: int) -> str:
    return f"video_{index}.mp4"


class DownloadedAssets(TypedDict):
    clip_files: list[str]
    has_voiceover: bool
    has_music: bool
    has_font: bool


async def _fetch(client: httpx.AsyncClient, url: str, params: dict | None = None) -> bytes:
    resp = await client.get(url, params=params)
    resp.raise_for_status()
    return resp.content


async def fetch_clip(client: httpx.AsyncClient, clip_url: str) -> bytes:
    """Fetch a clip through the media proxy (or directly when none is set)."""
    if settings.media_proxy_url:
        return await _fetch(client, settings.media_proxy_url, params={"url": clip_url})
    return await _fetch(client, clip_url)


async def _fetch_optional(
    client: httpx.AsyncClient,
    store: WorkingStore,
    asset: str,
    url: Optional[str],
    file_name: str,
) -> bool:
    """Download an optional asset; return whether it is now in the store."""
    if not url:
        return False
    try:
        data = await _fetch(client, url)
    except _FETCH_ERRORS as exc:
        err = OptionalAssetFetchError(asset, str(exc))
        logger.warning("download.optional.failed", asset=asset, url=url, error=str(err))
        return False

    store.write(file_name, data)
    logger.info("download.optional.done", asset=asset, bytes_written=len(data))
    return True


async def download_assets(
    client: httpx.AsyncClient,
    store: WorkingStore,
    entries: list[TimelineEntry],
    on_progress: Callable[[str], None],
    voiceover_url: Optional[str] = None,
    music_url: Optional[str] = None,
    font_url: Optional[str] = None,
) -> DownloadedAssets:
    """Populate *store* with every asset the export needs.

    Clips are fetched one by one in timeline order and written as
    ``video_<index>.mp4``. A clip failure aborts the export; voiceover, music
    and font failures only clear the matching capability flag.

    Raises:
        RequiredAssetFetchError: If any clip cannot be downloaded.
    """
    clip_files: list[str] = []
    total = len(entries)

    for entry in entries:
        scene_id = entry["scene"].id
        on_progress(f"Downloading video {entry['index'] + 1}/{total}...")
        try:
            data = await fetch_clip(client, entry["clip_url"])
        except _FETCH_ERRORS as exc:
            logger.error("download.clip.failed", scene_id=scene_id, url=entry["clip_url"], error=str(exc))
            raise RequiredAssetFetchError(scene_id, str(exc)) from exc

        name = clip_file_name(entry["index"])
        store.write(name, data)
        clip_files.append(name)
        logger.info("download.clip.done", scene_id=scene_id, file=name, bytes_written=len(data))

    if voiceover_url:
        on_progress("Downloading voiceover...")
    has_voiceover = await _fetch_optional(client, store, "voiceover", voiceover_url, VOICEOVER_FILE)
    if voiceover_url and not has_voiceover:
        on_progress("Voiceover unavailable, continuing without it")

    if music_url:
        on_progress("Downloading background music...")
    has_music = await _fetch_optional(client, store, "music", music_url, MUSIC_FILE)
    if music_url and not has_music:
        on_progress("Background music unavailable, continuing without it")

    if font_url:
        on_progress("Loading caption font...")
    has_font = await _fetch_optional(client, store, "font", font_url, FONT_FILE)
    if font_url and not has_font:
        on_progress("Caption font unavailable, exporting without captions")

    return {
        "clip_files": clip_files,
        "has_voiceover": has_voiceover,
        "has_music": has_music,
        "has_font": has_font,
    }
