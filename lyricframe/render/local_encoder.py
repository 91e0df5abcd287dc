"""Encoder backend that muxes in-process with a local ffmpeg binary.

Each instance owns a private temporary directory that plays the role of the
encoder's virtual filesystem: the audio and every frame are written there as
they arrive, one ffmpeg run happens at finalize, and the directory is
removed afterwards. No network access is involved.
"""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from lyricframe.config import get_settings
from lyricframe.exceptions import EncodeError
from lyricframe.render.encoder import EncoderBackend, audio_filename, frame_filename, run_mux

logger = logging.getLogger(__name__)


class LocalEncoder(EncoderBackend):
    """Image sequence + audio -> MP4 with a local ffmpeg."""

    def __init__(self):
        self.settings = get_settings()
        self.ffmpeg_binary: Optional[str] = None
        self._workdir: Optional[tempfile.TemporaryDirectory] = None
        self._audio_path: Optional[Path] = None
        self.frame_count = 0

    @property
    def directory(self) -> Optional[Path]:
        return Path(self._workdir.name) if self._workdir else None

    async def load(self) -> None:
        binary = shutil.which(self.settings.ffmpeg_path)
        if binary is None:
            raise EncodeError(f"ffmpeg not found: {self.settings.ffmpeg_path}")
        self.ffmpeg_binary = binary
        logger.info(f"[LOCAL] Using ffmpeg at {binary}")

    async def init(self, audio: bytes, filename: str) -> None:
        if self.ffmpeg_binary is None:
            await self.load()
        self._workdir = tempfile.TemporaryDirectory(prefix="lyricframe-local-")
        self._audio_path = self.directory / audio_filename(filename)
        await asyncio.to_thread(self._audio_path.write_bytes, audio)
        self.frame_count = 0

    async def add_frame(self, jpeg: bytes) -> None:
        if self._workdir is None:
            raise EncodeError("Frames added before the encoder was initialized")
        self.frame_count += 1
        await asyncio.to_thread((self.directory / frame_filename(self.frame_count)).write_bytes, jpeg)

    async def finalize(self, fps: int) -> bytes:
        if self._workdir is None or self._audio_path is None:
            raise EncodeError("Finalize called before the encoder was initialized")
        if self.frame_count == 0:
            raise EncodeError("No frames to encode")

        settings = self.settings.model_copy(update={"ffmpeg_path": self.ffmpeg_binary})
        try:
            output = await run_mux(self.directory, self._audio_path, fps, settings=settings)
            return await asyncio.to_thread(output.read_bytes)
        finally:
            self._cleanup()

    async def abort(self) -> None:
        self._cleanup()

    def _cleanup(self) -> None:
        if self._workdir is not None:
            self._workdir.cleanup()
            self._workdir = None
            self._audio_path = None
