"""
Export pipeline: timeline + audio in, one MP4 out.

This module drives a whole export through a fixed set of stages:
1. LOADING    - prepare the encoder backend
2. PREPARING  - decode audio, extract the frequency envelope, preload assets,
                hand the audio track to the backend
3. RENDERING  - composite every frame in order and stream it to the backend
4. ENCODING   - mux frames + audio into the final video
5. COMPLETE   - return the video bytes

Any failure moves the pipeline to ERROR and surfaces exactly one ExportError.
Nothing is retried here; callers restart the whole export to retry.
"""

import asyncio
import io
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

import httpx

from lyricframe.config import get_settings
from lyricframe.exceptions import ExportError, InvalidStageTransitionError, LyricFrameError, NetworkError
from lyricframe.render.asset_loader import fetch_source, preload_assets
from lyricframe.render.audio_analysis import decode_audio, extract_frequency_frames
from lyricframe.render.encoder import EncoderBackend
from lyricframe.render.layer_compositor import FrameCompositor, Slide
from lyricframe.render.timeline import Timeline

logger = logging.getLogger(__name__)


class ExportStage(Enum):
    """Export pipeline stage."""

    LOADING = "loading"
    PREPARING = "preparing"
    RENDERING = "rendering"
    ENCODING = "encoding"
    COMPLETE = "complete"
    ERROR = "error"


_TRANSITIONS: dict[Optional[ExportStage], set[ExportStage]] = {
    None: {ExportStage.LOADING},
    ExportStage.LOADING: {ExportStage.PREPARING, ExportStage.ERROR},
    ExportStage.PREPARING: {ExportStage.RENDERING, ExportStage.ERROR},
    ExportStage.RENDERING: {ExportStage.ENCODING, ExportStage.ERROR},
    ExportStage.ENCODING: {ExportStage.COMPLETE, ExportStage.ERROR},
    ExportStage.COMPLETE: set(),
    ExportStage.ERROR: set(),
}

# Overall percent at which each stage starts; rendering spans 10-90
_STAGE_PERCENT = {
    ExportStage.LOADING: 0.0,
    ExportStage.PREPARING: 5.0,
    ExportStage.RENDERING: 10.0,
    ExportStage.ENCODING: 90.0,
    ExportStage.COMPLETE: 100.0,
}


# ============================================================================
# Dataclasses
# ============================================================================


@dataclass
class ExportProgress:
    """Progress notification for an export."""

    stage: ExportStage
    progress: float = 0.0
    message: Optional[str] = None
    frame: Optional[int] = None
    total_frames: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "stage": self.stage.value,
            "progress": self.progress,
            "message": self.message,
            "frame": self.frame,
            "total_frames": self.total_frames,
        }


@dataclass
class ExportResult:
    """Finished export."""

    video: bytes
    frame_count: int
    fps: int
    duration: float
    elapsed_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary (without the video bytes)."""
        return {
            "size": len(self.video),
            "frame_count": self.frame_count,
            "fps": self.fps,
            "duration": self.duration,
            "elapsed_ms": self.elapsed_ms,
        }


AudioSource = bytes | str | Path


class ExportPipeline:
    """
    Drives one export from timeline to video.

    Handles:
    - Stage state machine with progress notifications
    - Audio decode and frequency envelope extraction
    - Asset preload (all-or-nothing)
    - In-order frame streaming to an EncoderBackend
    - Optional multi-threaded frame compositing
    """

    def __init__(
        self,
        backend: EncoderBackend,
        compositor: Optional[FrameCompositor] = None,
        workers: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = get_settings()
        self.backend = backend
        self.compositor = compositor or FrameCompositor()
        self.workers = workers or self.settings.render_workers
        self.batch_size = self.settings.render_worker_batch
        self.jpeg_quality = self.settings.render_jpeg_quality
        self.http_client = http_client

        self.stage: Optional[ExportStage] = None
        self.last_progress: Optional[ExportProgress] = None
        self._progress_callback: Optional[Callable[[ExportProgress], Any]] = None

    def set_progress_callback(self, callback: Optional[Callable[[ExportProgress], Any]]) -> None:
        """Set callback for progress updates."""
        self._progress_callback = callback

    def _update_progress(self, progress: float, message: str, **extra) -> None:
        """Record and publish progress; a failing callback never breaks the export."""
        self.last_progress = ExportProgress(self.stage, round(progress, 2), message, **extra)
        if not self._progress_callback:
            return
        try:
            self._progress_callback(self.last_progress)
        except Exception as e:
            logger.warning(f"[EXPORT] Progress callback raised, ignoring: {e}")

    def _enter(self, stage: ExportStage, message: str) -> None:
        if stage not in _TRANSITIONS[self.stage]:
            raise InvalidStageTransitionError(
                self.stage.value if self.stage else "idle",
                stage.value,
            )
        self.stage = stage
        if stage is not ExportStage.ERROR:
            self._update_progress(_STAGE_PERCENT[stage], message)

    async def run(
        self,
        timeline: Timeline,
        audio: AudioSource,
        audio_filename: Optional[str] = None,
    ) -> ExportResult:
        """
        Execute the full export.

        Args:
            timeline: Normalized timeline (duration is taken from the audio)
            audio: Audio bytes, local path or http(s) URL
            audio_filename: Name used for the stored audio track

        Returns:
            ExportResult with the MP4 bytes

        Raises:
            ExportError: On any failure (the pipeline ends in ERROR)
            InvalidStageTransitionError: If this pipeline already ran
        """
        started = time.monotonic()
        self._enter(ExportStage.LOADING, "Loading encoder")

        try:
            await self.backend.load()

            self._enter(ExportStage.PREPARING, "Decoding audio")
            timeline, slides = await self._prepare(timeline, audio, audio_filename)

            self._enter(ExportStage.RENDERING, "Rendering frames")
            frame_count = await self._render_frames(timeline, slides)

            self._enter(ExportStage.ENCODING, "Encoding video")
            video = await self.backend.finalize(timeline.fps)

            self._enter(ExportStage.COMPLETE, "Complete")
        except Exception as e:
            error = self._as_export_error(e)
            await self._fail(error)
            if error is e:
                raise
            raise error from e

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"[EXPORT] Complete: {frame_count} frames, {timeline.duration:.2f}s, "
            f"{len(video)} bytes in {elapsed_ms}ms"
        )
        return ExportResult(
            video=video,
            frame_count=frame_count,
            fps=timeline.fps,
            duration=timeline.duration,
            elapsed_ms=elapsed_ms,
        )

    async def _prepare(
        self,
        timeline: Timeline,
        audio: AudioSource,
        audio_filename: Optional[str],
    ) -> tuple[Timeline, list[Slide]]:
        audio_data, filename = await self._fetch_audio(audio, audio_filename)
        decoded = await decode_audio(audio_data, filename)

        frequency_frames = None
        if timeline.frequency_frames is None:
            self._update_progress(6.0, "Analyzing audio")
            frequency_frames = await asyncio.to_thread(
                extract_frequency_frames,
                decoded.samples,
                decoded.sample_rate,
                decoded.duration,
                timeline.fps,
            )
        timeline = timeline.with_audio(decoded.duration, frequency_frames)

        self._update_progress(7.0, f"Loading {len(timeline.assets)} assets")
        loaded = await preload_assets(
            timeline.assets,
            timeline.config.canvas_size,
            timeline.fps,
            client=self.http_client,
        )
        slides = [Slide(asset.start_time, item) for asset, item in zip(timeline.assets, loaded)]

        await self.backend.init(decoded.data, decoded.filename)
        return timeline, slides

    async def _fetch_audio(self, audio: AudioSource, filename: Optional[str]) -> tuple[bytes, str]:
        if isinstance(audio, Path):
            audio = str(audio)
        if isinstance(audio, str):
            filename = filename or Path(audio.split("?", 1)[0]).name or "audio.mp3"
            if self.http_client is not None:
                return await fetch_source(audio, self.http_client), filename
            async with httpx.AsyncClient(timeout=self.settings.request_timeout, follow_redirects=True) as client:
                return await fetch_source(audio, client), filename
        return audio, filename or "audio.mp3"

    def _render_frame(self, timeline: Timeline, slides: Sequence[Slide], index: int) -> bytes:
        """Composite frame ``index`` and encode it as JPEG."""
        image = self.compositor.render(
            index / timeline.fps,
            slides,
            timeline.subtitles,
            timeline.frequency_at(index),
            timeline.frequency_at(index - 1),
            timeline.config,
            timeline_end=timeline.duration,
        )
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=self.jpeg_quality)
        return buffer.getvalue()

    def _report_frame(self, index: int, total: int, fps: int) -> None:
        if index % fps != 0:
            return
        percent = 10.0 + 80.0 * index / total
        self._update_progress(
            percent,
            f"Rendering {index // fps}s / {total / fps:.0f}s",
            frame=index,
            total_frames=total,
        )

    async def _render_frames(self, timeline: Timeline, slides: Sequence[Slide]) -> int:
        """Render and submit every frame in index order; returns the frame count."""
        total = timeline.frame_count
        fps = timeline.fps
        logger.info(f"[EXPORT] Rendering {total} frames at {fps}fps with {self.workers} worker(s)")

        if self.workers <= 1:
            for index in range(total):
                self._report_frame(index, total, fps)
                jpeg = await asyncio.to_thread(self._render_frame, timeline, slides, index)
                await self.backend.add_frame(jpeg)
            return total

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="lyricframe-render") as executor:
            for batch_start in range(0, total, self.batch_size):
                indices = range(batch_start, min(batch_start + self.batch_size, total))
                # executor.map yields results in submission order
                jpegs = await asyncio.to_thread(
                    lambda: list(executor.map(lambda i: self._render_frame(timeline, slides, i), indices))
                )
                for index, jpeg in zip(indices, jpegs):
                    self._report_frame(index, total, fps)
                    await self.backend.add_frame(jpeg)
        return total

    def _as_export_error(self, error: Exception) -> LyricFrameError:
        if isinstance(error, LyricFrameError):
            return error
        if isinstance(error, httpx.HTTPError):
            return NetworkError(f"Network failure during {self._stage_name()}: {error}")
        return ExportError(f"Export failed during {self._stage_name()}: {error}")

    def _stage_name(self) -> str:
        return self.stage.value if self.stage else "idle"

    async def _fail(self, error: LyricFrameError) -> None:
        failed_stage = self._stage_name()
        logger.error(f"[EXPORT] Failed during {failed_stage}: [{error.code}] {error.message}")
        if self.stage not in (ExportStage.COMPLETE, ExportStage.ERROR):
            self._enter(ExportStage.ERROR, error.message)
            self._update_progress(
                self.last_progress.progress if self.last_progress else 0.0,
                f"Export failed during {failed_stage}: {error.message}",
            )
        try:
            await self.backend.abort()
        except Exception as e:
            logger.warning(f"[EXPORT] Backend abort failed: {e}")
