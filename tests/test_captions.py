"""Tests for caption text, timing, escaping and drawtext overlays."""

import re
import subprocess

import pysrt
import pytest

from scene_compositor.compose.captions import (
    build_caption_cues,
    build_caption_filters,
    caption_font_size,
    caption_text,
    captions_to_srt,
    escape_drawtext,
    escape_filter_graph,
    escape_filter_option,
    filter_expression,
    render_captions,
    speaker_label,
    unescape_drawtext,
)
from scene_compositor.compose.filter_graph import build_caption_fragment
from scene_compositor.models.scene import DialogueLine, Scene

from conftest import FFMPEG


def _scene(scene_id=1, voiceover="", dialogue=None):
    return Scene(id=scene_id, voiceover_text=voiceover, dialogue=dialogue)


class TestCaptionText:
    def test_dialogue_joined_with_spaces(self):
        scene = _scene(
            voiceover="ignored",
            dialogue=[
                DialogueLine(speaker="Mia", text="Hi."),
                DialogueLine(speaker="Leo", text="Hello!"),
            ],
        )
        assert caption_text(scene) == "Hi. Hello!"

    def test_falls_back_to_voiceover(self):
        assert caption_text(_scene(voiceover="Once upon a time")) == "Once upon a time"

    def test_empty_dialogue_list_uses_voiceover(self):
        assert caption_text(_scene(voiceover="Narration", dialogue=[])) == "Narration"


class TestSpeakerLabel:
    def test_single_named_speaker(self):
        scene = _scene(dialogue=[DialogueLine(speaker="Mia", text="Hi")])
        assert speaker_label(scene) == "Mia"

    def test_single_narrator_line_has_no_label(self):
        scene = _scene(dialogue=[DialogueLine(speaker="Narrator", text="Meanwhile")])
        assert speaker_label(scene) is None

    def test_multiple_lines_have_no_label(self):
        scene = _scene(
            dialogue=[
                DialogueLine(speaker="Mia", text="Hi"),
                DialogueLine(speaker="Mia", text="again"),
            ]
        )
        assert speaker_label(scene) is None

    def test_voiceover_only_has_no_label(self):
        assert speaker_label(_scene(voiceover="text")) is None


class TestCaptionCues:
    def test_intervals_follow_filtered_position(self):
        scenes = [_scene(i, voiceover=f"line {i}") for i in (4, 7, 9)]
        cues = build_caption_cues(scenes, 8)

        assert [(c["start"], c["end"]) for c in cues] == [(0, 8), (8, 16), (16, 24)]

    def test_blank_scene_skipped_without_shifting_others(self):
        scenes = [_scene(1, voiceover="first"), _scene(2, voiceover="   "), _scene(3, voiceover="third")]
        cues = build_caption_cues(scenes, 4)

        assert [c["index"] for c in cues] == [0, 2]
        assert (cues[1]["start"], cues[1]["end"]) == (8, 12)

    def test_no_captionable_text(self):
        assert build_caption_cues([_scene(voiceover="")], 8) == []
        assert render_captions([_scene(voiceover=" ")], 8, 1280, 720, "font.ttf") == []


class TestEscaping:
    SPECIALS = "back\\slash it's a: [tag] 100%"

    def test_each_special_gets_one_backslash(self):
        assert escape_drawtext("\\") == "\\\\"
        assert escape_drawtext("'") == "\\'"
        assert escape_drawtext(":") == "\\:"
        assert escape_drawtext("[]") == "\\[\\]"
        assert escape_drawtext("%") == "\\%"

    def test_backslash_escaped_before_others(self):
        # A naive order would turn "\:" into "\\\\:" or "\\\\\\:"
        assert escape_drawtext("\\:") == "\\\\\\:"

    def test_round_trip_is_lossless(self):
        assert unescape_drawtext(escape_drawtext(self.SPECIALS)) == self.SPECIALS

    def test_no_double_escaping(self):
        escaped = escape_drawtext(self.SPECIALS)
        # One extra character per special, nothing more
        specials = sum(self.SPECIALS.count(c) for c in "\\':[]%")
        assert len(escaped) == len(self.SPECIALS) + specials

    def test_plain_text_untouched(self):
        assert escape_drawtext("Hello world") == "Hello world"

    def test_option_and_graph_layers(self):
        assert escape_filter_option("a:b'c") == "a\\:b\\'c"
        assert escape_filter_graph("gte(t,0);[x]") == "gte(t\\,0)\\;\\[x\\]"


class TestCaptionFilters:
    def test_font_size_from_frame_height(self):
        assert caption_font_size(720) == 18
        assert caption_font_size(1280) == 32

    def test_text_overlay_position_and_timing(self):
        cues = build_caption_cues([_scene(voiceover="Hello")], 8)
        (overlay,) = build_caption_filters(cues, 1280, 720, "font.ttf")

        assert overlay.startswith("drawtext=fontfile=font.ttf:text=Hello:fontsize=18:")
        assert "x=(w-text_w)/2" in overlay
        # bottom margin 30 plus twice the font size
        assert "y=h-66" in overlay
        assert "enable=gte(t\\,0)*lt(t\\,8)" in overlay

    def test_label_precedes_text(self):
        scene = _scene(dialogue=[DialogueLine(speaker="Mia", text="Hi")])
        label, text = build_caption_filters(build_caption_cues([scene], 4), 720, 1280, "font.ttf")

        assert ":text=Mia:" in label
        assert "fontsize=24:" in label  # 0.75 * 32
        assert ":text=Hi:" in text
        assert "fontsize=32:" in text

    def test_special_characters_escaped_through_every_layer(self):
        cues = build_caption_cues([_scene(voiceover="a:b")], 4)
        (overlay,) = build_caption_filters(cues, 1280, 720, "font.ttf")

        # drawtext "\:" -> option "\\\:" -> graph "\\\\\\:"
        assert "text=a\\\\\\\\\\\\:b" in overlay

    def test_second_scene_window(self):
        scenes = [_scene(1, voiceover="one"), _scene(2, voiceover="two")]
        overlays = render_captions(scenes, 2.5, 1280, 720, "font.ttf")

        assert "gte(t\\,2.5)*lt(t\\,5)" in overlays[1]


class TestCaptionsToSrt:
    def test_srt_timing_and_labels(self):
        scenes = [
            _scene(1, voiceover="Opening"),
            _scene(2, dialogue=[DialogueLine(speaker="Mia", text="Hi")]),
        ]
        srt = captions_to_srt(build_caption_cues(scenes, 8))
        subs = pysrt.from_string(srt)

        assert len(subs) == 2
        assert subs[0].text == "Opening"
        assert subs[1].text == "Mia: Hi"
        assert subs[1].start.ordinal == 8000
        assert subs[1].end.ordinal == 16000

    @pytest.mark.parametrize("duration", [4, 8])
    def test_srt_windows_are_contiguous(self, duration):
        scenes = [_scene(i, voiceover=f"s{i}") for i in range(3)]
        subs = pysrt.from_string(captions_to_srt(build_caption_cues(scenes, duration)))
        for prev, cur in zip(subs, subs[1:]):
            assert prev.end == cur.start


class TestFilterGraphParsing:
    """The escaped overlay text must survive FFmpeg's own graph and option parsers."""

    @pytest.mark.parametrize(
        "text",
        [
            "It's 100% [real]: see C:\\path",
            "Hi, you; there",
            "quote ' colon : comma , semi ; brackets [] percent %",
        ],
    )
    def test_value_reaches_filter_unchanged(self, text):
        tagged = filter_expression(
            "metadata",
            [("mode", "add"), ("key", "caption"), ("value", escape_drawtext(text))],
        )
        graph = build_caption_fragment([tagged, "metadata=mode=print"], True, True)

        result = subprocess.run(
            [
                FFMPEG, "-hide_banner", "-nostdin",
                "-f", "lavfi", "-i", "color=c=black:s=32x32:d=0.1:r=10",
                "-filter_complex", graph,
                "-map", "[vout]", "-frames:v", "1", "-f", "null", "-",
            ],
            capture_output=True,
            text=True,
        )

        assert result.returncode == 0, result.stderr
        match = re.search(r"caption=(.*)$", result.stderr, re.MULTILINE)
        assert match is not None, result.stderr
        # Both outer parsers are undone; only the drawtext layer remains
        assert match.group(1) == escape_drawtext(text)
        assert unescape_drawtext(match.group(1)) == text
