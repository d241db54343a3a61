"""Shared test fixtures for scene_compositor tests."""

import subprocess
from pathlib import Path

import httpx
import imageio_ffmpeg
import pytest

from scene_compositor.config import settings
from scene_compositor.models.scene import DialogueLine, Scene
from scene_compositor.tools.ffmpeg_engine import FFmpegEngine, SharedEngine

FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()

_FONT_CANDIDATES = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/TTF/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/System/Library/Fonts/Supplemental/Arial.ttf",
    "/Library/Fonts/Arial.ttf",
]

CLIP_SECONDS = 1


def _ffmpeg(*args: str) -> None:
    subprocess.run([FFMPEG, "-y", *args], check=True, capture_output=True)


def find_test_font() -> Path | None:
    for candidate in _FONT_CANDIDATES:
        if Path(candidate).is_file():
            return Path(candidate)
    return None


@pytest.fixture(scope="session")
def clip_bytes(tmp_path_factory):
    """A 1-second 160x90 10fps clip with a silent AAC track."""
    out = tmp_path_factory.mktemp("media") / "clip.mp4"
    _ffmpeg(
        "-f", "lavfi", "-i", f"color=c=blue:s=160x90:d={CLIP_SECONDS}:r=10",
        "-f", "lavfi", "-i", "anullsrc=r=44100:cl=mono",
        "-shortest",
        "-c:v", "libx264", "-crf", "30", "-pix_fmt", "yuv420p",
        "-c:a", "aac", "-b:a", "32k",
        str(out),
    )
    return out.read_bytes()


@pytest.fixture(scope="session")
def tone_bytes(tmp_path_factory):
    """A half-second sine tone (WAV) used as both narration and music."""
    out = tmp_path_factory.mktemp("media") / "tone.wav"
    _ffmpeg("-f", "lavfi", "-i", "sine=frequency=440:duration=0.5", "-ac", "1", str(out))
    return out.read_bytes()


class FakeMediaHost:
    """In-memory origin for httpx.MockTransport.

    Requests through the media proxy are resolved to the proxied URL, so
    tests can register assets by their public URL.
    """

    def __init__(self):
        self.assets: dict[str, bytes] = {}
        self.failures: dict[str, int] = {}
        self.redirects: dict[str, str] = {}
        self.requests: list[str] = []

    def add(self, url: str, data: bytes) -> None:
        self.assets[url] = data

    def fail(self, url: str, status: int = 500) -> None:
        self.failures[url] = status

    def redirect(self, url: str, location: str) -> None:
        self.redirects[url] = location

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if settings.media_proxy_url and url.startswith(settings.media_proxy_url):
            url = request.url.params["url"]
        self.requests.append(url)
        if url in self.redirects:
            return httpx.Response(302, headers={"Location": self.redirects[url]})
        if url in self.failures:
            return httpx.Response(self.failures[url])
        if url not in self.assets:
            return httpx.Response(404)
        return httpx.Response(200, content=self.assets[url])

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def media_host():
    return FakeMediaHost()


@pytest.fixture
def work_dir(tmp_path):
    return tmp_path / "work"


@pytest.fixture
def engine(work_dir):
    """A fresh shared-engine handle rooted in the test's tmp dir."""
    return SharedEngine(factory=lambda: FFmpegEngine.load(work_dir=str(work_dir)))


@pytest.fixture
def scenes():
    return [
        Scene(id=1, time_range="00:00 - 00:04", voiceover_text="Hello there"),
        Scene(
            id=2,
            time_range="00:04 - 00:08",
            dialogue=[DialogueLine(speaker="Mia", text="Where are we?")],
        ),
        Scene(id=3, time_range="00:08 - 00:12", voiceover_text="The end"),
    ]
