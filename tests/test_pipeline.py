"""Tests for the export pipeline stage machine and frame streaming."""

import httpx
import numpy as np
import pytest

from lyricframe.config import get_settings
from lyricframe.exceptions import (
    AssetLoadError,
    ExportError,
    InvalidStageTransitionError,
    LyricFrameError,
    NetworkError,
)
from lyricframe.render import pipeline as pipeline_module
from lyricframe.render.asset_loader import LoadedAsset
from lyricframe.render.audio_analysis import DecodedAudio
from lyricframe.render.encoder import EncoderBackend
from lyricframe.render.pipeline import ExportPipeline, ExportProgress, ExportResult, ExportStage
from lyricframe.render.timeline import Asset, AssetKind, SubtitleLine, Timeline

from conftest import solid_image


class RecordingBackend(EncoderBackend):
    """In-memory backend that records every call."""

    def __init__(self, fail_on_frame=None):
        self.calls = []
        self.frames = []
        self.audio = None
        self.fail_on_frame = fail_on_frame

    async def load(self):
        self.calls.append("load")

    async def init(self, audio, filename):
        self.calls.append("init")
        self.audio = (audio, filename)

    async def add_frame(self, jpeg):
        if self.fail_on_frame is not None and len(self.frames) == self.fail_on_frame:
            raise RuntimeError("disk full")
        self.frames.append(jpeg)

    async def finalize(self, fps):
        self.calls.append(f"finalize:{fps}")
        return b"MP4" + bytes(len(self.frames))

    async def abort(self):
        self.calls.append("abort")


@pytest.fixture(autouse=True)
def small_canvas(monkeypatch):
    monkeypatch.setenv("LYRICFRAME_RENDER_LANDSCAPE_SIZE", "[160, 90]")
    monkeypatch.setenv("LYRICFRAME_RENDER_WORKER_BATCH", "4")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_media(monkeypatch):
    """Replace ffmpeg-backed audio decode and asset preload."""
    decoded = {"duration": 1.05}

    async def fake_decode_audio(data, filename="audio.mp3"):
        return DecodedAudio(
            data=data,
            filename=filename,
            samples=np.zeros(44100, dtype=np.float32),
            sample_rate=44100,
            duration=decoded["duration"],
        )

    async def fake_preload(assets, canvas_size, fps, client=None):
        return [LoadedAsset.from_image(solid_image((255, 0, 0))) for _ in assets]

    monkeypatch.setattr(pipeline_module, "decode_audio", fake_decode_audio)
    monkeypatch.setattr(pipeline_module, "preload_assets", fake_preload)
    return decoded


@pytest.fixture
def timeline():
    return Timeline.build(
        assets=[Asset(0.0, AssetKind.IMAGE, "red.png")],
        subtitles=[SubtitleLine(id=1, start_time=0.2, end_time=0.9, text="Hello world")],
        fps=10,
    )


class TestExportProgress:
    """Tests for progress/result serialization."""

    def test_progress_to_dict(self):
        progress = ExportProgress(ExportStage.RENDERING, 50.0, "Rendering", frame=5, total_frames=10)
        assert progress.to_dict() == {
            "stage": "rendering",
            "progress": 50.0,
            "message": "Rendering",
            "frame": 5,
            "total_frames": 10,
        }

    def test_result_to_dict_omits_video(self):
        result = ExportResult(video=b"1234", frame_count=3, fps=30, duration=0.1)
        assert result.to_dict()["size"] == 4
        assert "video" not in result.to_dict()


class TestExportPipeline:
    """Tests for a full export against an in-memory backend."""

    @pytest.mark.asyncio
    async def test_stages_in_order(self, fake_media, timeline):
        backend = RecordingBackend()
        pipeline = ExportPipeline(backend)
        events = []
        pipeline.set_progress_callback(events.append)

        result = await pipeline.run(timeline, b"audio-bytes", "song.mp3")

        stages = []
        for event in events:
            if not stages or stages[-1] is not event.stage:
                stages.append(event.stage)
        assert stages == [
            ExportStage.LOADING,
            ExportStage.PREPARING,
            ExportStage.RENDERING,
            ExportStage.ENCODING,
            ExportStage.COMPLETE,
        ]
        assert events[-1].progress == 100.0
        assert result.video.startswith(b"MP4")
        assert backend.calls == ["load", "init", "finalize:10"]
        assert backend.audio == (b"audio-bytes", "song.mp3")

    @pytest.mark.asyncio
    async def test_frame_count_is_ceil_of_duration(self, fake_media, timeline):
        backend = RecordingBackend()
        result = await ExportPipeline(backend).run(timeline, b"audio")
        assert result.frame_count == 11
        assert len(backend.frames) == 11
        assert all(frame[:2] == b"\xff\xd8" for frame in backend.frames)
        assert result.duration == 1.05

    @pytest.mark.asyncio
    async def test_progress_monotonic(self, fake_media, timeline):
        events = []
        pipeline = ExportPipeline(RecordingBackend())
        pipeline.set_progress_callback(events.append)
        await pipeline.run(timeline, b"audio")
        percents = [e.progress for e in events]
        assert percents == sorted(percents)
        rendering = [e for e in events if e.frame is not None]
        assert [e.frame for e in rendering] == [0, 10]
        assert all(e.total_frames == 11 for e in rendering)

    @pytest.mark.asyncio
    async def test_parallel_workers_match_sequential(self, fake_media, timeline):
        sequential = RecordingBackend()
        parallel = RecordingBackend()
        await ExportPipeline(sequential, workers=1).run(timeline, b"audio")
        await ExportPipeline(parallel, workers=3).run(timeline, b"audio")
        assert parallel.frames == sequential.frames

    @pytest.mark.asyncio
    async def test_callback_exception_ignored(self, fake_media, timeline):
        def broken(progress):
            raise ValueError("ui went away")

        pipeline = ExportPipeline(RecordingBackend())
        pipeline.set_progress_callback(broken)
        result = await pipeline.run(timeline, b"audio")
        assert result.frame_count == 11
        assert pipeline.stage is ExportStage.COMPLETE

    @pytest.mark.asyncio
    async def test_backend_failure_surfaces_single_error(self, fake_media, timeline):
        backend = RecordingBackend(fail_on_frame=3)
        pipeline = ExportPipeline(backend)
        events = []
        pipeline.set_progress_callback(events.append)

        with pytest.raises(ExportError) as exc_info:
            await pipeline.run(timeline, b"audio")

        assert "disk full" in exc_info.value.message
        assert "rendering" in exc_info.value.message
        assert pipeline.stage is ExportStage.ERROR
        assert [e.stage for e in events].count(ExportStage.ERROR) == 1
        assert backend.calls[-1] == "abort"
        assert not any(c.startswith("finalize") for c in backend.calls)

    @pytest.mark.asyncio
    async def test_asset_failure_passes_through(self, monkeypatch, fake_media, timeline):
        async def failing_preload(assets, canvas_size, fps, client=None):
            raise AssetLoadError("red.png", index=0, reason="404")

        monkeypatch.setattr(pipeline_module, "preload_assets", failing_preload)
        pipeline = ExportPipeline(RecordingBackend())

        with pytest.raises(AssetLoadError) as exc_info:
            await pipeline.run(timeline, b"audio")
        assert exc_info.value.location.asset_index == 0
        assert pipeline.last_progress.stage is ExportStage.ERROR

    @pytest.mark.asyncio
    async def test_network_failure_mapped(self, fake_media, timeline):
        class OfflineBackend(RecordingBackend):
            async def finalize(self, fps):
                raise httpx.ConnectError("connection refused")

        with pytest.raises(NetworkError):
            await ExportPipeline(OfflineBackend()).run(timeline, b"audio")

    @pytest.mark.asyncio
    async def test_pipeline_runs_once(self, fake_media, timeline):
        pipeline = ExportPipeline(RecordingBackend())
        await pipeline.run(timeline, b"audio")
        with pytest.raises(InvalidStageTransitionError):
            await pipeline.run(timeline, b"audio")

    @pytest.mark.asyncio
    async def test_errors_are_lyricframe_errors(self, fake_media, timeline):
        with pytest.raises(LyricFrameError):
            await ExportPipeline(RecordingBackend(fail_on_frame=0)).run(timeline, b"audio")
