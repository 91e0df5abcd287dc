import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="LYRICFRAME_", extra="ignore"
    )

    # Application
    app_name: str = "LyricFrame Export Server"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:5173,http://localhost:3000"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Render settings
    render_fps: int = 30
    render_landscape_size: tuple[int, int] = (1920, 1080)
    render_portrait_size: tuple[int, int] = (1080, 1920)
    render_jpeg_quality: int = 90
    # Threads used to composite frames of one batch in parallel (1 = sequential)
    render_workers: int = 1
    render_worker_batch: int = 30

    # Mux (shared by the export server and the local encoder)
    mux_preset: str = "veryfast"
    mux_crf: int = 23
    mux_audio_bitrate: str = "192k"

    # Audio analysis
    analysis_sample_rate: int = 44100
    analysis_fft_size: int = 256

    # Remote session encoder (client side)
    encoder_server_url: str = "http://localhost:3001"
    encoder_batch_size: int = 60  # ~2s at 30fps
    request_timeout: float = 120.0
    upload_timeout: float = 300.0

    # Export sessions (server side)
    session_root: str = "/tmp/lyricframe-sessions"
    session_ttl_seconds: int = 3600
    max_upload_size_mb: int = 50

    # Video assets are decoded once at preload; clips longer than this are truncated
    video_asset_max_seconds: float = 30.0

    # Fonts tried in order, Pillow default font is the last resort
    font_candidates: list[str] = [
        "/usr/share/fonts/truetype/noto/NotoSans-Bold.ttf",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/TTF/DejaVuSans-Bold.ttf",
        "/System/Library/Fonts/Helvetica.ttc",
    ]
    translation_font_candidates: list[str] = [
        "/usr/share/fonts/truetype/noto/NotoSans-Italic.ttf",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Oblique.ttf",
        "/usr/share/fonts/TTF/DejaVuSans-Oblique.ttf",
        "/System/Library/Fonts/Helvetica.ttc",
    ]


@lru_cache
def get_settings() -> Settings:
    return Settings()
