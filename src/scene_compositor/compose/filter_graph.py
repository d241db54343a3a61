"""Filter graph builder — audio-mix and caption fragments → final FFmpeg pass.

Input 0 is always the concatenated clip. Voiceover and music, when present,
follow as inputs 1 and 2 (music is input 1 without a voiceover).
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from typing_extensions import TypedDict

from scene_compositor.config import settings

VOICE_LABEL = "voice"
MUSIC_LABEL = "music"
AUDIO_OUT = "aout"
VIDEO_OUT = "vout"

# Large enough that aloop never runs dry before atrim cuts it
_LOOP_SIZE = "2e+09"


class AudioMix(str, Enum):
    VOICE_AND_MUSIC = "voice_and_music"
    VOICE_ONLY = "voice_only"
    MUSIC_ONLY = "music_only"
    PASSTHROUGH = "passthrough"


class FinalPassMode(str, Enum):
    VIDEO_AND_AUDIO = "video_and_audio"
    VIDEO_ONLY = "video_only"
    AUDIO_ONLY = "audio_only"
    STREAM_COPY = "stream_copy"


class AudioFragment(TypedDict):
    mix: AudioMix
    inputs: list[str]  # extra input files, in input-index order
    graph: str  # empty for PASSTHROUGH


class FinalPass(TypedDict):
    mode: FinalPassMode
    audio_mix: AudioMix
    inputs: list[str]  # every input file, concatenated clip first
    args: list[str]  # everything between the inputs and the output name


def format_number(value: float) -> str:
    """Up to three decimals, trailing zeros dropped (``4.0`` -> ``4``)."""
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return text or "0"


def _music_chain(input_index: int, total_duration: float, out_label: str) -> str:
    return (
        f"[{input_index}:a]aloop=loop=-1:size={_LOOP_SIZE},"
        f"atrim=end={format_number(total_duration)},asetpts=PTS-STARTPTS,"
        f"volume={settings.music_gain}[{out_label}]"
    )


def _voice_and_music(voice: str, music: str, total: float) -> AudioFragment:
    graph = ";".join(
        [
            f"[1:a]volume=1.0[{VOICE_LABEL}]",
            _music_chain(2, total, MUSIC_LABEL),
            f"[{VOICE_LABEL}][{MUSIC_LABEL}]amix=inputs=2:duration=longest:normalize=0[{AUDIO_OUT}]",
        ]
    )
    return {"mix": AudioMix.VOICE_AND_MUSIC, "inputs": [voice, music], "graph": graph}


def _voice_only(voice: str, music: str, total: float) -> AudioFragment:
    return {"mix": AudioMix.VOICE_ONLY, "inputs": [voice], "graph": f"[1:a]volume=1.0[{AUDIO_OUT}]"}


def _music_only(voice: str, music: str, total: float) -> AudioFragment:
    return {"mix": AudioMix.MUSIC_ONLY, "inputs": [music], "graph": _music_chain(1, total, AUDIO_OUT)}


def _passthrough(voice: str, music: str, total: float) -> AudioFragment:
    return {"mix": AudioMix.PASSTHROUGH, "inputs": [], "graph": ""}


# (has_voiceover, has_music) -> fragment builder
_AUDIO_TABLE = {
    (True, True): _voice_and_music,
    (True, False): _voice_only,
    (False, True): _music_only,
    (False, False): _passthrough,
}


def build_audio_fragment(
    has_voiceover: bool,
    has_music: bool,
    total_duration: float,
    voiceover_file: str = "voiceover.mp3",
    music_file: str = "music.mp3",
) -> AudioFragment:
    builder = _AUDIO_TABLE[(bool(has_voiceover), bool(has_music))]
    return builder(voiceover_file, music_file, total_duration)


def build_caption_fragment(
    overlays: list[str],
    enable_captions: bool,
    has_font: bool,
) -> Optional[str]:
    """``[0:v]<overlays>[vout]``, or ``None`` when captions cannot be drawn."""
    if not (enable_captions and has_font and overlays):
        return None
    return f"[0:v]{','.join(overlays)}[{VIDEO_OUT}]"


def _video_codec_args() -> list[str]:
    return [
        "-c:v", settings.video_codec,
        "-preset", settings.video_preset,
        "-crf", str(settings.video_crf),
        "-pix_fmt", "yuv420p",
    ]


def _audio_codec_args() -> list[str]:
    return ["-c:a", settings.audio_codec, "-b:a", settings.audio_bitrate]


def _both(caption: str, audio: AudioFragment) -> list[str]:
    return [
        "-filter_complex", f"{caption};{audio['graph']}",
        "-map", f"[{VIDEO_OUT}]",
        "-map", f"[{AUDIO_OUT}]",
        *_video_codec_args(),
        *_audio_codec_args(),
    ]


def _captions_only(caption: str, audio: AudioFragment) -> list[str]:
    return [
        "-filter_complex", caption,
        "-map", f"[{VIDEO_OUT}]",
        "-map", "0:a?",
        *_video_codec_args(),
        "-c:a", "copy",
    ]


def _audio_only(caption: Optional[str], audio: AudioFragment) -> list[str]:
    return [
        "-filter_complex", audio["graph"],
        "-map", "0:v",
        "-map", f"[{AUDIO_OUT}]",
        "-c:v", "copy",
        *_audio_codec_args(),
    ]


def _stream_copy(caption: Optional[str], audio: AudioFragment) -> list[str]:
    return ["-map", "0", "-c", "copy"]


# (has caption fragment, has audio fragment) -> (mode, argument builder)
_COMBINATIONS = {
    (True, True): (FinalPassMode.VIDEO_AND_AUDIO, _both),
    (True, False): (FinalPassMode.VIDEO_ONLY, _captions_only),
    (False, True): (FinalPassMode.AUDIO_ONLY, _audio_only),
    (False, False): (FinalPassMode.STREAM_COPY, _stream_copy),
}


def build_final_pass(
    concatenated_file: str,
    audio: AudioFragment,
    caption: Optional[str],
) -> FinalPass:
    """Pick the final pass from the combination table."""
    has_audio = audio["mix"] is not AudioMix.PASSTHROUGH
    mode, builder = _COMBINATIONS[(caption is not None, has_audio)]
    return {
        "mode": mode,
        "audio_mix": audio["mix"],
        "inputs": [concatenated_file, *audio["inputs"]],
        "args": [*builder(caption, audio), "-movflags", "+faststart"],
    }


def final_pass_command(final_pass: FinalPass, output_file: str) -> list[str]:
    """FFmpeg arguments (without the binary) for *final_pass*."""
    args: list[str] = []
    for name in final_pass["inputs"]:
        args += ["-i", name]
    return [*args, *final_pass["args"], output_file]
