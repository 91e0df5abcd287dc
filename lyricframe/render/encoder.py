"""Encoder backend interface and the shared ffmpeg mux invocation.

A backend receives an ordered stream of JPEG frames plus one audio track and
returns a single MP4 blob. Both the remote session encoder (via the export
server) and the local encoder end in the same ffmpeg command.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from lyricframe.config import Settings, get_settings
from lyricframe.exceptions import EncodeError

logger = logging.getLogger(__name__)

FRAME_PATTERN = "frame%06d.jpg"


def frame_filename(number: int) -> str:
    """1-based frame file name matching FRAME_PATTERN."""
    return f"frame{number:06d}.jpg"


def audio_filename(filename: Optional[str]) -> str:
    """Stored audio name keeps the extension so ffmpeg can probe the container."""
    suffix = Path(filename).suffix.lower() if filename else ""
    if not suffix or not suffix[1:].isalnum():
        suffix = ".mp3"
    return f"audio{suffix}"


def build_mux_command(
    frame_pattern: str,
    audio_path: str,
    output_path: str,
    fps: int,
    settings: Optional[Settings] = None,
) -> list[str]:
    """ffmpeg arguments for image sequence + audio -> H.264/AAC MP4."""
    settings = settings or get_settings()
    return [
        settings.ffmpeg_path,
        "-framerate", str(fps),
        "-i", frame_pattern,
        "-i", audio_path,
        "-c:v", "libx264",
        "-preset", settings.mux_preset,
        "-crf", str(settings.mux_crf),
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", settings.mux_audio_bitrate,
        "-shortest",
        "-movflags", "+faststart",
        "-y",
        output_path,
    ]


async def run_mux(
    directory: Path,
    audio_path: Path,
    fps: int,
    output_name: str = "output.mp4",
    settings: Optional[Settings] = None,
) -> Path:
    """Run the mux command inside ``directory`` and return the output path.

    Raises:
        EncodeError: If ffmpeg is missing or exits non-zero
    """
    settings = settings or get_settings()
    output_path = directory / output_name
    cmd = build_mux_command(
        str(directory / FRAME_PATTERN),
        str(audio_path),
        str(output_path),
        fps,
        settings,
    )
    logger.info(f"[MUX] Encoding {directory.name} at {fps}fps")

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise EncodeError(f"ffmpeg not found at {settings.ffmpeg_path}") from e

    _, stderr = await process.communicate()
    if process.returncode != 0:
        detail = stderr.decode(errors="replace").strip()[-1000:]
        logger.error(f"[MUX] ffmpeg exited with {process.returncode}: {detail}")
        raise EncodeError(f"ffmpeg exited with code {process.returncode}: {detail}")

    if not output_path.exists() or output_path.stat().st_size == 0:
        raise EncodeError("ffmpeg produced no output")

    logger.info(f"[MUX] Wrote {output_path.stat().st_size} bytes to {output_path}")
    return output_path


class EncoderBackend(ABC):
    """Ordered frame stream + one audio track in, one MP4 blob out.

    Call order: load -> init -> add_frame* -> finalize. ``abort`` releases
    local resources after a failure and is safe to call at any point.
    """

    @abstractmethod
    async def load(self) -> None:
        """Prepare the backend (loading stage)."""

    @abstractmethod
    async def init(self, audio: bytes, filename: str) -> None:
        """Accept the audio track before any frame."""

    @abstractmethod
    async def add_frame(self, jpeg: bytes) -> None:
        """Append the next frame in index order."""

    @abstractmethod
    async def finalize(self, fps: int) -> bytes:
        """Mux everything received so far and return the MP4 bytes."""

    async def abort(self) -> None:
        """Release resources after a failed export."""
