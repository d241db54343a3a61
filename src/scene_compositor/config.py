"""Application configuration loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # FFmpeg engine (empty -> system ffmpeg with drawtext, else the imageio-ffmpeg build)
    ffmpeg_binary: str = ""
    work_dir: str = ""

    # Asset fetching
    media_proxy_url: str = "http://localhost:8000/api/proxy-video"
    caption_font_url: str = "https://fonts.gstatic.com/s/roboto/v30/KFOmCnqEu92Fr1Mu4mxP.ttf"
    download_timeout_sec: float = 120.0

    # Hostnames the media proxy may fetch from (substring match)
    allowed_media_domains: list[str] = [
        "video-studio.jarwater.com",
        "kieai.erweima.ai",
        "api.klingai.com",
        "cdn.klingai.com",
        "volces.com",
    ]

    # Final encode
    video_codec: str = "libx264"
    video_preset: str = "fast"
    video_crf: int = 23
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"
    music_gain: float = 0.2

    # CORS (comma separated, in addition to localhost)
    allowed_origins: str = ""


settings = Settings()
