"""Caption rendering — per-scene caption cues and FFmpeg ``drawtext`` overlays.

Overlay text crosses three parsers before it reaches the screen: the filter
graph parser, the filter option parser, and drawtext's own text expansion.
``escape_drawtext`` handles the last one; ``escape_filter_option`` and
``escape_filter_graph`` wrap the result for the outer two.
"""

from __future__ import annotations

import io
import re
import textwrap
from typing import Optional

import pysrt
from typing_extensions import TypedDict

from scene_compositor.compose.filter_graph import format_number
from scene_compositor.models.scene import Scene

CAPTION_BOTTOM_MARGIN = 30
CAPTION_FONT_RATIO = 0.025
LABEL_FONT_RATIO = 0.75

# Fixed order: backslash must go first so later escapes are not re-escaped
_DRAWTEXT_SPECIALS = ("\\", "'", ":", "[", "]", "%")
_UNESCAPE = re.compile(r"\\(.)", re.DOTALL)


class CaptionCue(TypedDict):
    index: int
    start: float
    end: float
    text: str
    speaker: Optional[str]


def caption_text(scene: Scene) -> str:
    """Dialogue texts joined by spaces, or the voiceover text without dialogue."""
    if scene.dialogue:
        return " ".join(line.text for line in scene.dialogue)
    return scene.voiceover_text or ""


def speaker_label(scene: Scene) -> Optional[str]:
    """Speaker name for a single non-narrator dialogue line, else ``None``."""
    if scene.dialogue and len(scene.dialogue) == 1 and not scene.dialogue[0].is_narrator:
        return scene.dialogue[0].speaker
    return None


def build_caption_cues(scenes: list[Scene], clip_duration: float) -> list[CaptionCue]:
    """One cue per captionable scene; position ``i`` covers ``[i*D, (i+1)*D)``.

    *scenes* must already be the filtered, renumbered timeline order.
    """
    cues: list[CaptionCue] = []
    for i, scene in enumerate(scenes):
        text = caption_text(scene).strip()
        if not text:
            continue
        cues.append(
            {
                "index": i,
                "start": i * clip_duration,
                "end": (i + 1) * clip_duration,
                "text": text,
                "speaker": speaker_label(scene),
            }
        )
    return cues


# ---------------------------------------------------------------------------
# Escaping
# ---------------------------------------------------------------------------


def escape_drawtext(text: str) -> str:
    for char in _DRAWTEXT_SPECIALS:
        text = text.replace(char, "\\" + char)
    return text


def unescape_drawtext(text: str) -> str:
    return _UNESCAPE.sub(r"\1", text)


def escape_filter_option(value: str) -> str:
    """Escape a value for the ``key=value:key=value`` option parser."""
    return re.sub(r"([\\':])", r"\\\1", value)


def escape_filter_graph(value: str) -> str:
    """Escape a filter description for the filter graph parser."""
    return re.sub(r"([\\'\[\],;])", r"\\\1", value)


# ---------------------------------------------------------------------------
# drawtext overlays
# ---------------------------------------------------------------------------


def caption_font_size(frame_height: int) -> int:
    return round(CAPTION_FONT_RATIO * frame_height)


def _wrap(text: str, frame_width: int, font_size: float) -> str:
    # Average glyph is roughly half the font size wide
    max_chars = max(10, int(frame_width * 0.9 / (font_size * 0.5)))
    return "\n".join(textwrap.wrap(text, width=max_chars)) or text


def filter_expression(name: str, options: list[tuple[str, str]]) -> str:
    """``name=key=value:...`` escaped for both the option and graph parsers."""
    body = ":".join(f"{key}={escape_filter_option(value)}" for key, value in options)
    return escape_filter_graph(f"{name}={body}")


def _drawtext(options: list[tuple[str, str]]) -> str:
    return filter_expression("drawtext", options)


def build_caption_filters(
    cues: list[CaptionCue],
    frame_width: int,
    frame_height: int,
    font_file: str,
) -> list[str]:
    """Turn cues into graph-ready ``drawtext`` filters (label, then text)."""
    font_size = caption_font_size(frame_height)
    label_size = LABEL_FONT_RATIO * font_size
    text_y = CAPTION_BOTTOM_MARGIN + 2 * font_size
    label_y = text_y + round(1.5 * label_size)

    filters: list[str] = []
    for cue in cues:
        enable = f"gte(t,{format_number(cue['start'])})*lt(t,{format_number(cue['end'])})"
        if cue["speaker"]:
            filters.append(
                _drawtext(
                    [
                        ("fontfile", font_file),
                        ("text", escape_drawtext(cue["speaker"])),
                        ("fontsize", format_number(label_size)),
                        ("fontcolor", "yellow"),
                        ("borderw", "2"),
                        ("bordercolor", "black"),
                        ("x", "(w-text_w)/2"),
                        ("y", f"h-{label_y}"),
                        ("enable", enable),
                    ]
                )
            )
        filters.append(
            _drawtext(
                [
                    ("fontfile", font_file),
                    ("text", escape_drawtext(_wrap(cue["text"], frame_width, font_size))),
                    ("fontsize", str(font_size)),
                    ("fontcolor", "white"),
                    ("borderw", "2"),
                    ("bordercolor", "black"),
                    ("x", "(w-text_w)/2"),
                    ("y", f"h-{text_y}"),
                    ("enable", enable),
                ]
            )
        )
    return filters


def render_captions(
    scenes: list[Scene],
    clip_duration: float,
    frame_width: int,
    frame_height: int,
    font_file: str,
) -> list[str]:
    """Overlay expressions for the timeline, or ``[]`` if nothing is captionable."""
    cues = build_caption_cues(scenes, clip_duration)
    return build_caption_filters(cues, frame_width, frame_height, font_file)


def captions_to_srt(cues: list[CaptionCue]) -> str:
    """Render cues as a SubRip document (speaker prefixed when labelled)."""
    subs = pysrt.SubRipFile()
    for n, cue in enumerate(cues, start=1):
        text = f"{cue['speaker']}: {cue['text']}" if cue["speaker"] else cue["text"]
        subs.append(
            pysrt.SubRipItem(
                index=n,
                start=pysrt.SubRipTime.from_ordinal(round(cue["start"] * 1000)),
                end=pysrt.SubRipTime.from_ordinal(round(cue["end"] * 1000)),
                text=text,
            )
        )
    buf = io.StringIO()
    subs.write_into(buf)
    return buf.getvalue()
