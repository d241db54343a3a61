"""FFmpeg engine — process-wide binary handle and per-run working stores."""

from __future__ import annotations

import asyncio
import re
import shutil
import tempfile
from pathlib import Path
from typing import Awaitable, Callable, Optional

import imageio_ffmpeg
import structlog

from scene_compositor.config import settings
from scene_compositor.errors import CleanupError, EncodingError, EngineLoadError

logger = structlog.get_logger()

_STDERR_TAIL_CHARS = 600
_PROGRESS_TIME = re.compile(r"^out_time_(?:us|ms)=(\d+)$")


class WorkingStore:
    """Scratch directory owned by a single export run.

    Every name written (or claimed as an FFmpeg output) is remembered so that
    ``cleanup`` can remove it however the run ended. Use as a context manager.
    """

    def __init__(self, root: Path):
        self.root = root
        self.written: list[str] = []

    def __enter__(self) -> WorkingStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()

    def path(self, name: str) -> Path:
        return self.root / name

    def claim(self, name: str) -> Path:
        """Register *name* for cleanup without writing it (FFmpeg will)."""
        if name not in self.written:
            self.written.append(name)
        return self.path(name)

    def write(self, name: str, data: bytes | str) -> Path:
        path = self.claim(name)
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_bytes(data)
        return path

    def read(self, name: str) -> bytes:
        return self.path(name).read_bytes()

    def delete(self, name: str) -> None:
        self.path(name).unlink()

    def cleanup(self) -> None:
        """Best-effort removal of every tracked file, then the directory."""
        for name in self.written:
            try:
                self.delete(name)
            except FileNotFoundError:
                # Claimed output that FFmpeg never produced
                logger.debug("store.cleanup.missing", name=name)
            except OSError as exc:
                logger.warning("store.cleanup.failed", error=str(CleanupError(name, str(exc))))

        try:
            self.root.rmdir()
        except OSError as exc:
            logger.warning("store.cleanup.dir_failed", root=str(self.root), error=str(exc))

        logger.info("store.cleanup.done", root=str(self.root), files=len(self.written))


async def _query(binary: str, flag: str) -> str:
    """Run ``binary -hide_banner <flag>`` and return its stdout."""
    try:
        proc = await asyncio.create_subprocess_exec(
            binary,
            "-hide_banner",
            flag,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
    except OSError as exc:
        raise EngineLoadError(f"FFmpeg is not available at {binary}: {exc}") from exc

    if proc.returncode != 0:
        raise EngineLoadError(
            f"FFmpeg {flag} exited with code {proc.returncode}: "
            f"{stderr.decode(errors='replace')[-_STDERR_TAIL_CHARS:]}"
        )
    return stdout.decode(errors="replace")


async def probe_binary(binary: str) -> tuple[str, bool]:
    """Return ``(version line, has drawtext)`` for an FFmpeg binary.

    Raises:
        EngineLoadError: If the binary cannot be executed.
    """
    lines = (await _query(binary, "-version")).splitlines()
    version = lines[0] if lines else "unknown"
    filters = await _query(binary, "-filters")
    has_drawtext = any(
        len(fields) > 1 and fields[1] == "drawtext"
        for fields in (line.split() for line in filters.splitlines())
    )
    return version, has_drawtext


async def _discover_binary() -> tuple[str, str, bool]:
    """Pick a system ffmpeg with drawtext, else the imageio-ffmpeg build."""
    system = shutil.which("ffmpeg")
    if system:
        try:
            version, has_drawtext = await probe_binary(system)
        except EngineLoadError as exc:
            logger.warning("ffmpeg.system_unusable", binary=system, error=str(exc))
            system = None
        else:
            if has_drawtext:
                return system, version, has_drawtext

    try:
        bundled = await asyncio.to_thread(imageio_ffmpeg.get_ffmpeg_exe)
        bundled_version, bundled_drawtext = await probe_binary(bundled)
    except (RuntimeError, EngineLoadError) as exc:
        if system is None:
            raise EngineLoadError(f"FFmpeg is not available: {exc}") from exc
        logger.warning("ffmpeg.bundled_unusable", error=str(exc))
        return system, version, has_drawtext
    return bundled, bundled_version, bundled_drawtext


class FFmpegEngine:
    """A verified FFmpeg binary plus the root under which run stores live.

    ``has_drawtext`` records whether the build can burn in captions; the
    static imageio-ffmpeg builds ship without it.
    """

    def __init__(self, binary: str, version: str, work_root: Path, has_drawtext: bool = False):
        self.binary = binary
        self.version = version
        self.work_root = work_root
        self.has_drawtext = has_drawtext

    @classmethod
    async def load(cls, binary: str | None = None, work_dir: str | None = None) -> FFmpegEngine:
        """Resolve the FFmpeg binary, check that it runs and probe its filters.

        An explicit *binary* (or ``settings.ffmpeg_binary``) is used as is.
        Otherwise a system ``ffmpeg`` with ``drawtext`` is preferred over the
        imageio-ffmpeg build.

        Raises:
            EngineLoadError: If no usable binary can be found or executed.
        """
        binary = binary or settings.ffmpeg_binary
        if binary:
            version, has_drawtext = await probe_binary(binary)
        else:
            binary, version, has_drawtext = await _discover_binary()

        work_root = Path(work_dir or settings.work_dir or Path(tempfile.gettempdir()) / "scene_compositor")
        work_root.mkdir(parents=True, exist_ok=True)

        logger.info(
            "ffmpeg.loaded",
            binary=binary,
            version=version,
            has_drawtext=has_drawtext,
            work_root=str(work_root),
        )
        if not has_drawtext:
            logger.warning("ffmpeg.no_drawtext", binary=binary)
        return cls(binary, version, work_root, has_drawtext)

    def open_store(self) -> WorkingStore:
        root = Path(tempfile.mkdtemp(prefix="export_", dir=self.work_root))
        return WorkingStore(root)

    async def run(
        self,
        args: list[str],
        cwd: Path,
        on_time: Optional[Callable[[float], None]] = None,
    ) -> None:
        """Run FFmpeg with *args* inside *cwd*.

        *on_time* receives the output timestamp (seconds) reported on the
        ``-progress`` channel.

        Raises:
            EncodingError: On a non-zero exit, with the tail of stderr.
        """
        cmd = [self.binary, "-hide_banner", "-nostdin", "-y"]
        if on_time is not None:
            cmd += ["-progress", "pipe:1", "-nostats"]
        cmd += args

        logger.debug("ffmpeg.run", args=args, cwd=str(cwd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise EncodingError(f"Failed to start FFmpeg: {exc}") from exc

        # Drain stderr concurrently so a chatty run cannot fill the pipe
        stderr_task = asyncio.ensure_future(proc.stderr.read())
        async for raw in proc.stdout:
            match = _PROGRESS_TIME.match(raw.decode(errors="replace").strip())
            if match and on_time is not None:
                on_time(int(match.group(1)) / 1_000_000)

        stderr = await stderr_task
        returncode = await proc.wait()
        if returncode != 0:
            tail = stderr.decode(errors="replace")[-_STDERR_TAIL_CHARS:]
            raise EncodingError(f"FFmpeg exited with code {returncode}: {tail}")


class SharedEngine:
    """Process-wide ``FFmpegEngine`` with single-flight lazy initialization.

    Concurrent callers that arrive while initialization is running await the
    same in-flight load; a failed load is not cached.
    """

    def __init__(self, factory: Callable[[], Awaitable[FFmpegEngine]] = FFmpegEngine.load):
        self._factory = factory
        self._engine: FFmpegEngine | None = None
        self._pending: asyncio.Future | None = None

    @property
    def loaded(self) -> bool:
        return self._engine is not None

    async def get(self) -> FFmpegEngine:
        if self._engine is not None:
            return self._engine
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._load())
        return await asyncio.shield(self._pending)

    async def _load(self) -> FFmpegEngine:
        try:
            engine = await self._factory()
        finally:
            self._pending = None
        self._engine = engine
        return engine

    def reset(self) -> None:
        """Forget the current engine (tests, or after a binary change)."""
        self._engine = None
        self._pending = None


shared_engine = SharedEngine()
