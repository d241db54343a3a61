"""Composition engine — drives download, concat, encode and finalize for one export."""

from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

import httpx
import structlog
from moviepy import VideoFileClip

from scene_compositor.compose.captions import build_caption_cues, build_caption_filters, captions_to_srt
from scene_compositor.compose.filter_graph import (
    build_audio_fragment,
    build_caption_fragment,
    build_final_pass,
    final_pass_command,
)
from scene_compositor.compose.timeline import Timeline, build_timeline
from scene_compositor.config import settings
from scene_compositor.models.export import (
    AspectRatio,
    ExportedVideo,
    ExportRequest,
    VideoModel,
    clip_duration as resolve_clip_duration,
    frame_size,
)
from scene_compositor.models.scene import Scene
from scene_compositor.tools.downloader import FONT_FILE, MUSIC_FILE, VOICEOVER_FILE, download_assets
from scene_compositor.tools.ffmpeg_engine import FFmpegEngine, SharedEngine, WorkingStore, shared_engine

logger = structlog.get_logger()

ProgressCallback = Callable[[str], None]

CONCAT_LIST_FILE = "concat.txt"
CONCAT_OUTPUT_FILE = "concatenated.mp4"
OUTPUT_FILE = "output.mp4"

CAPTIONS_UNSUPPORTED_MESSAGE = "Caption rendering unavailable in this FFmpeg build, exporting without captions"


class ExportState(str, Enum):
    IDLE = "idle"
    LOADING_ENGINE = "loading_engine"
    DOWNLOADING = "downloading"
    CONCATENATING = "concatenating"
    ENCODING = "encoding"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class _ExportRun:
    """State tracker for a single export; every transition is logged."""

    def __init__(self, on_progress: ProgressCallback):
        self.run_id = uuid.uuid4().hex[:12]
        self.state = ExportState.IDLE
        self.log = logger.bind(run_id=self.run_id)
        self._on_progress = on_progress

    def progress(self, message: str) -> None:
        self._on_progress(message)

    def advance(self, state: ExportState, message: Optional[str] = None) -> None:
        self.log.info("compose.state", from_state=self.state.value, to_state=state.value)
        self.state = state
        if message:
            self.progress(message)

    def encode_progress(self, total_duration: float) -> Callable[[float], None]:
        """Callback for FFmpeg output time → non-decreasing ``Encoding: N%``."""
        last = -1

        def on_time(seconds: float) -> None:
            nonlocal last
            if total_duration <= 0:
                return
            percent = int(min(max(seconds / total_duration, 0.0), 1.0) * 100)
            if percent > last:
                last = percent
                self.progress(f"Encoding: {percent}%")

        return on_time


@asynccontextmanager
async def _client_scope(client: Optional[httpx.AsyncClient]) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=settings.download_timeout_sec, follow_redirects=True) as owned:
        yield owned


def probe_duration(path: Path) -> float:
    """Read the container duration of *path* via MoviePy."""
    clip = VideoFileClip(str(path), audio=False)
    try:
        return float(clip.duration or 0.0)
    finally:
        clip.close()


async def _concatenate(ffmpeg: FFmpegEngine, store: WorkingStore, clip_files: list[str]) -> None:
    listing = "".join(f"file '{name}'\n" for name in clip_files)
    store.write(CONCAT_LIST_FILE, listing)
    store.claim(CONCAT_OUTPUT_FILE)
    await ffmpeg.run(
        ["-f", "concat", "-safe", "0", "-i", CONCAT_LIST_FILE, "-c", "copy", CONCAT_OUTPUT_FILE],
        cwd=store.root,
    )


async def compose_and_export_video(
    scenes: list[Scene],
    video_urls: dict[int, str],
    voiceover_url: Optional[str],
    music_url: Optional[str],
    on_progress: ProgressCallback,
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE,
    video_model: VideoModel = VideoModel.SEEDANCE_1_5,
    include_music: bool = True,
    clip_duration: Optional[float] = None,
    enable_captions: bool = False,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    engine: Optional[SharedEngine] = None,
) -> ExportedVideo:
    """Compose the ready clips of *scenes* into one MP4.

    Scenes without an entry in *video_urls* are skipped entirely. Voiceover,
    music and caption font are optional: if any of them cannot be fetched
    the export continues without that feature.

    Raises:
        ConfigurationError: If no scene has a ready clip.
        RequiredAssetFetchError: If a clip cannot be downloaded.
        EncodingError: If FFmpeg fails to load, concatenate or encode.
    """
    run = _ExportRun(on_progress)
    try:
        duration = resolve_clip_duration(video_model, clip_duration)
        timeline: Timeline = build_timeline(scenes, video_urls, duration)
        width, height = frame_size(aspect_ratio)
        run.log.info(
            "compose.start",
            scenes=len(scenes),
            clips=len(timeline["entries"]),
            clip_duration=duration,
            total_duration=timeline["total_duration"],
            aspect_ratio=AspectRatio(aspect_ratio).value,
            captions=enable_captions,
        )

        run.advance(ExportState.LOADING_ENGINE, "Loading FFmpeg...")
        ffmpeg = await (engine or shared_engine).get()

        burn_captions = enable_captions and ffmpeg.has_drawtext
        if enable_captions and not ffmpeg.has_drawtext:
            run.log.warning("compose.captions_unsupported", binary=ffmpeg.binary)
            run.progress(CAPTIONS_UNSUPPORTED_MESSAGE)

        with ffmpeg.open_store() as store:
            run.advance(ExportState.DOWNLOADING, "Downloading assets...")
            async with _client_scope(http_client) as client:
                assets = await download_assets(
                    client,
                    store,
                    timeline["entries"],
                    run.progress,
                    voiceover_url=voiceover_url,
                    music_url=music_url if include_music else None,
                    font_url=settings.caption_font_url if burn_captions else None,
                )

            cues = build_caption_cues([e["scene"] for e in timeline["entries"]], duration)
            overlays = build_caption_filters(cues, width, height, FONT_FILE) if assets["has_font"] else []

            run.advance(ExportState.CONCATENATING, "Concatenating videos...")
            await _concatenate(ffmpeg, store, assets["clip_files"])

            run.advance(ExportState.ENCODING, "Encoding final video...")
            audio = build_audio_fragment(
                assets["has_voiceover"],
                assets["has_music"],
                timeline["total_duration"],
                voiceover_file=VOICEOVER_FILE,
                music_file=MUSIC_FILE,
            )
            caption = build_caption_fragment(overlays, burn_captions, assets["has_font"])
            final_pass = build_final_pass(CONCAT_OUTPUT_FILE, audio, caption)
            run.log.info("compose.final_pass", mode=final_pass["mode"].value, audio_mix=final_pass["audio_mix"].value)

            store.claim(OUTPUT_FILE)
            await ffmpeg.run(
                final_pass_command(final_pass, OUTPUT_FILE),
                cwd=store.root,
                on_time=run.encode_progress(timeline["total_duration"]),
            )

            run.advance(ExportState.FINALIZING, "Finalizing file...")
            data = store.read(OUTPUT_FILE)
            try:
                duration_sec = await asyncio.to_thread(probe_duration, store.path(OUTPUT_FILE))
            except (OSError, KeyError, ValueError):
                logger.exception("compose.probe_failed", run_id=run.run_id)
                duration_sec = 0.0

        result = ExportedVideo(
            data=data,
            duration_sec=duration_sec,
            captions_srt=captions_to_srt(cues) if caption is not None else None,
        )
        run.advance(ExportState.DONE, "Export complete!")
        run.log.info("compose.done", bytes=len(data), duration_sec=duration_sec)
        return result

    except Exception as exc:
        run.log.error("compose.failed", state=run.state.value, error=str(exc))
        run.advance(ExportState.FAILED)
        raise


async def export_video(
    request: ExportRequest,
    on_progress: Optional[ProgressCallback] = None,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    engine: Optional[SharedEngine] = None,
) -> ExportedVideo:
    """``compose_and_export_video`` for a validated ``ExportRequest``."""
    return await compose_and_export_video(
        request.scenes,
        request.video_urls,
        request.voiceover_url,
        request.music_url,
        on_progress or (lambda message: None),
        aspect_ratio=request.aspect_ratio,
        video_model=request.video_model,
        include_music=request.include_music,
        clip_duration=request.clip_duration,
        enable_captions=request.enable_captions,
        http_client=http_client,
        engine=engine,
    )
