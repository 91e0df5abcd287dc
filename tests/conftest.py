"""
Pytest fixtures for lyricframe tests.

CI/CD Note:
Tests that run a real ffmpeg/ffprobe binary are marked with @requires_ffmpeg
and skipped when the binaries are not on PATH.
"""

import io
import math
import shutil
import struct
import wave
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from lyricframe.config import get_settings
from lyricframe.render.asset_loader import LoadedAsset
from lyricframe.render.layer_compositor import Slide
from lyricframe.render.timeline import RenderConfig, SubtitleLine, VisualizerConfig


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring ffmpeg/ffprobe binaries (skipped when absent)",
    )


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


# Skip decorator for tests requiring ffmpeg
requires_ffmpeg = pytest.mark.skipif(
    not _ffmpeg_available(),
    reason="ffmpeg/ffprobe not available",
)


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch, tmp_path):
    """Isolate settings per test (session root in tmp, cache cleared)."""
    monkeypatch.setenv("LYRICFRAME_SESSION_ROOT", str(tmp_path / "sessions"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def solid_image(color: tuple[int, int, int], size: tuple[int, int] = (320, 180)) -> Image.Image:
    return Image.new("RGB", size, color)


def solid_png(color: tuple[int, int, int], size: tuple[int, int] = (64, 36)) -> bytes:
    buffer = io.BytesIO()
    solid_image(color, size).save(buffer, format="PNG")
    return buffer.getvalue()


def sine_wav(seconds: float = 1.0, frequency: float = 440.0, sample_rate: int = 44100) -> bytes:
    """Mono 16-bit PCM WAV with a sine tone."""
    buffer = io.BytesIO()
    n = int(seconds * sample_rate)
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(
            b"".join(
                struct.pack("<h", int(12000 * math.sin(2 * math.pi * frequency * i / sample_rate)))
                for i in range(n)
            )
        )
    return buffer.getvalue()


@pytest.fixture
def red_blue_slides() -> list[Slide]:
    """Two solid-color slides: red at 0s, blue at 10s."""
    return [
        Slide(0.0, LoadedAsset.from_image(solid_image((255, 0, 0)))),
        Slide(10.0, LoadedAsset.from_image(solid_image((0, 0, 255)))),
    ]


@pytest.fixture
def plain_config() -> RenderConfig:
    """Landscape config with the visualizer off (pixels depend only on assets/text)."""
    return RenderConfig(visualizer=VisualizerConfig(enabled=False))


@pytest.fixture
def hello_world_line() -> SubtitleLine:
    return SubtitleLine(id=1, start_time=1.0, end_time=2.0, text="Hello world")


@pytest.fixture
def loud_frequency_frames() -> list[np.ndarray]:
    return [np.full(128, 200, dtype=np.uint8) for _ in range(4)]


@pytest.fixture
def audio_wav() -> bytes:
    return sine_wav(1.0)


@pytest.fixture
def png_file(tmp_path) -> Path:
    path = tmp_path / "slide.png"
    path.write_bytes(solid_png((0, 255, 0)))
    return path
