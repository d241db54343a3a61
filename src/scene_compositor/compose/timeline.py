"""Timeline derivation — which scenes make it into the export, and when."""

from __future__ import annotations

from typing_extensions import TypedDict

from scene_compositor.errors import ConfigurationError
from scene_compositor.models.scene import Scene


class TimelineEntry(TypedDict):
    index: int  # position after filtering, 0-based
    scene: Scene
    clip_url: str


class Timeline(TypedDict):
    entries: list[TimelineEntry]
    clip_duration: float
    total_duration: float


def build_timeline(
    scenes: list[Scene],
    video_urls: dict[int, str],
    clip_duration: float,
) -> Timeline:
    """Keep only scenes with a ready clip URL, renumbered in scene order.

    Raises ``ConfigurationError`` on duplicate scene ids or when no scene has
    a clip.
    """
    seen: set[int] = set()
    entries: list[TimelineEntry] = []
    for scene in scenes:
        if scene.id in seen:
            raise ConfigurationError(f"Duplicate scene id {scene.id} in export request")
        seen.add(scene.id)

        url = video_urls.get(scene.id)
        if not url:
            continue
        entries.append({"index": len(entries), "scene": scene, "clip_url": url})

    if not entries:
        raise ConfigurationError("No videos to export")

    return {
        "entries": entries,
        "clip_duration": clip_duration,
        "total_duration": clip_duration * len(entries),
    }
