"""Pydantic models for export requests and results."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from scene_compositor.models.scene import Scene

MP4_MIME_TYPE = "video/mp4"


class VideoModel(str, Enum):
    VEO_3_1 = "veo-3.1"
    SEEDANCE_1_5 = "seedance-1.5"


class AspectRatio(str, Enum):
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"


_CLIP_DURATIONS: dict[VideoModel, float] = {
    VideoModel.VEO_3_1: 8,
    VideoModel.SEEDANCE_1_5: 4,
}

_FRAME_SIZES: dict[AspectRatio, tuple[int, int]] = {
    AspectRatio.LANDSCAPE: (1280, 720),
    AspectRatio.PORTRAIT: (720, 1280),
}


def clip_duration(model: VideoModel, override: float | None = None) -> float:
    """Return the per-clip duration in seconds; a positive *override* wins."""
    if override is not None and override > 0:
        return override
    return _CLIP_DURATIONS[VideoModel(model)]


def frame_size(aspect_ratio: AspectRatio) -> tuple[int, int]:
    """Return ``(width, height)`` in pixels for *aspect_ratio*."""
    return _FRAME_SIZES[AspectRatio(aspect_ratio)]


class ExportRequest(BaseModel):
    scenes: list[Scene]
    video_urls: dict[int, str] = Field(
        default_factory=dict, description="Sparse mapping of scene id → clip URL"
    )
    voiceover_url: Optional[str] = None
    music_url: Optional[str] = None
    include_music: bool = True
    enable_captions: bool = False
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    video_model: VideoModel = VideoModel.SEEDANCE_1_5
    clip_duration: Optional[float] = Field(default=None, gt=0)


class ExportedVideo(BaseModel):
    data: bytes
    mime_type: str = MP4_MIME_TYPE
    duration_sec: float = 0.0
    captions_srt: Optional[str] = None
