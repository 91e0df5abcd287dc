"""Audio decoding and per-frame frequency envelope extraction.

The envelope mimics a browser AnalyserNode: a Blackman-windowed FFT over the
most recent ``fft_size`` samples at each output frame, magnitudes converted
to dB and mapped from [-100, -30] dB onto 0-255. Magnitudes are smoothed
across frames with a 0.8 time constant before the dB step. Frame 0 is silent.
"""

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from lyricframe.config import get_settings
from lyricframe.exceptions import AudioDecodeError
from lyricframe.render.timeline import frame_count_for
from lyricframe.utils.media_info import get_media_duration

logger = logging.getLogger(__name__)

MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0
SMOOTHING_TIME_CONSTANT = 0.8


@dataclass
class DecodedAudio:
    """Source audio bytes plus decoded mono PCM."""

    data: bytes
    filename: str
    samples: np.ndarray
    sample_rate: int
    duration: float


async def _decode_pcm(path: str, sample_rate: int) -> np.ndarray:
    settings = get_settings()
    cmd = [
        settings.ffmpeg_path,
        "-i", path,
        "-ac", "1",  # mono
        "-ar", str(sample_rate),
        "-f", "f32le",
        "-acodec", "pcm_f32le",
        "-v", "error",
        "-",
    ]
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()

    if process.returncode != 0:
        raise AudioDecodeError(stderr.decode(errors="replace").strip()[:500] or "ffmpeg failed")
    if len(stdout) < 4:
        raise AudioDecodeError("no audio samples decoded")

    usable = len(stdout) - len(stdout) % 4
    return np.frombuffer(stdout[:usable], dtype="<f4").astype(np.float32)


async def decode_audio(data: bytes, filename: str = "audio.mp3") -> DecodedAudio:
    """Decode audio bytes to mono float PCM and read the exact duration.

    Raises:
        AudioDecodeError: If ffmpeg/ffprobe cannot decode the input
    """
    settings = get_settings()
    if not data:
        raise AudioDecodeError("empty audio input")

    suffix = Path(filename).suffix or ".audio"
    fd, tmp_path = tempfile.mkstemp(suffix=suffix)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)

        try:
            samples = await _decode_pcm(tmp_path, settings.analysis_sample_rate)
        except FileNotFoundError as e:
            raise AudioDecodeError(f"ffmpeg not found at {settings.ffmpeg_path}") from e

        try:
            duration = await asyncio.to_thread(get_media_duration, tmp_path)
        except RuntimeError as e:
            logger.warning(f"[AUDIO] ffprobe duration unavailable, using sample count: {e}")
            duration = len(samples) / settings.analysis_sample_rate
    finally:
        os.unlink(tmp_path)

    if duration <= 0:
        raise AudioDecodeError("audio has zero duration")

    logger.info(f"[AUDIO] Decoded {filename}: {duration:.2f}s, {len(samples)} samples")
    return DecodedAudio(
        data=data,
        filename=filename,
        samples=samples,
        sample_rate=settings.analysis_sample_rate,
        duration=duration,
    )


def extract_frequency_frames(
    samples: np.ndarray,
    sample_rate: int,
    duration: float,
    fps: int,
    fft_size: int | None = None,
) -> list[np.ndarray]:
    """One uint8 array of ``fft_size // 2`` bins per output frame.

    Returns ``ceil(duration * fps)`` frames; frame 0 is all zeros.
    """
    fft_size = fft_size or get_settings().analysis_fft_size
    bin_count = fft_size // 2
    frame_count = frame_count_for(duration, fps)
    if frame_count <= 0:
        return []

    # Leading zeros so every window ending at a frame time has fft_size samples
    padded = np.concatenate([np.zeros(fft_size, dtype=np.float32), np.asarray(samples, dtype=np.float32)])
    window = np.blackman(fft_size).astype(np.float32)
    offsets = np.arange(fft_size)

    frames = [np.zeros(bin_count, dtype=np.uint8)]
    if frame_count == 1:
        return frames

    ends = (np.arange(1, frame_count) * sample_rate / fps).astype(np.int64) + fft_size
    ends = np.minimum(ends, len(padded))
    windows = padded[(ends - fft_size)[:, None] + offsets[None, :]] * window

    magnitudes = np.abs(np.fft.rfft(windows, axis=1))[:, :bin_count] / fft_size

    # Running average in linear magnitude, seeded from the silent frame 0
    smoothed = np.empty_like(magnitudes)
    previous = np.zeros(bin_count, dtype=magnitudes.dtype)
    for i, magnitude in enumerate(magnitudes):
        previous = SMOOTHING_TIME_CONSTANT * previous + (1.0 - SMOOTHING_TIME_CONSTANT) * magnitude
        smoothed[i] = previous

    decibels = 20.0 * np.log10(np.maximum(smoothed, 1e-12))
    scaled = (decibels - MIN_DECIBELS) / (MAX_DECIBELS - MIN_DECIBELS) * 255.0
    values = np.clip(scaled, 0, 255).astype(np.uint8)

    frames.extend(values[i] for i in range(len(values)))
    return frames
