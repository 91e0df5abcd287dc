"""Fetch and decode every timeline asset before rendering starts.

Images are decoded once to RGB. Video assets are decoded through an ffmpeg
rawvideo pipe at the export frame rate, cover-fitted to the canvas, and kept
as JPEG-compressed frames so a clip does not hold raw RGB in memory. Video
playback loops from the slide start.
"""

import asyncio
import base64
import io
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

import httpx
from PIL import Image, UnidentifiedImageError

from lyricframe.config import get_settings
from lyricframe.exceptions import AssetLoadError
from lyricframe.render.timeline import Asset, AssetKind
from lyricframe.utils.media_info import get_media_info

logger = logging.getLogger(__name__)

VIDEO_FRAME_QUALITY = 85


@dataclass
class LoadedAsset:
    """A decoded asset ready for the compositor."""

    kind: AssetKind
    size: tuple[int, int]
    image: Optional[Image.Image] = None
    frames: list[bytes] = field(default_factory=list)
    fps: int = 30

    @classmethod
    def from_image(cls, image: Image.Image) -> "LoadedAsset":
        rgb = image.convert("RGB")
        return cls(kind=AssetKind.IMAGE, size=rgb.size, image=rgb)

    @property
    def frame_count(self) -> int:
        return len(self.frames) if self.kind is AssetKind.VIDEO else 1

    def frame_at(self, local_time: float) -> Image.Image:
        """Frame shown ``local_time`` seconds after the slide started."""
        if self.kind is AssetKind.IMAGE:
            return self.image
        index = int(max(local_time, 0.0) * self.fps) % len(self.frames)
        return Image.open(io.BytesIO(self.frames[index])).convert("RGB")


def describe_source(source: str | bytes) -> str:
    if isinstance(source, bytes):
        return f"<{len(source)} bytes>"
    if source.startswith("data:"):
        return source[:32] + "..."
    return source


async def fetch_source(source: str | bytes, client: httpx.AsyncClient) -> bytes:
    """Resolve an asset source (bytes, data URL, http(s) URL or path) to bytes."""
    if isinstance(source, bytes):
        return source
    if source.startswith("data:"):
        _, _, payload = source.partition(",")
        return base64.b64decode(payload)
    if source.startswith(("http://", "https://")):
        resp = await client.get(source)
        resp.raise_for_status()
        return resp.content
    return await asyncio.to_thread(Path(source).read_bytes)


def decode_image(data: bytes) -> LoadedAsset:
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        return LoadedAsset.from_image(img)


async def decode_video(
    path: str,
    canvas_size: tuple[int, int],
    fps: int,
    max_seconds: Optional[float] = None,
) -> LoadedAsset:
    """Decode a video file into cover-fitted JPEG frames at ``fps``."""
    settings = get_settings()
    max_seconds = max_seconds or settings.video_asset_max_seconds
    width, height = canvas_size

    info = await asyncio.to_thread(get_media_info, path)
    if not info.has_video:
        raise RuntimeError("no video stream")

    max_frames = max(1, int(max_seconds * fps))
    cmd = [
        settings.ffmpeg_path,
        "-v", "error",
        "-i", path,
        "-vf", f"scale={width}:{height}:force_original_aspect_ratio=increase,crop={width}:{height}",
        "-r", str(fps),
        "-f", "rawvideo",
        "-pix_fmt", "rgb24",
        "-frames:v", str(max_frames),
        "-",
    ]
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    frame_size = width * height * 3
    frames: list[bytes] = []
    try:
        while len(frames) < max_frames:
            try:
                raw = await process.stdout.readexactly(frame_size)
            except asyncio.IncompleteReadError:
                break
            frame = Image.frombytes("RGB", (width, height), raw)
            buffer = io.BytesIO()
            frame.save(buffer, format="JPEG", quality=VIDEO_FRAME_QUALITY)
            frames.append(buffer.getvalue())
    finally:
        if process.returncode is None:
            process.kill()
        _, stderr = await process.communicate()

    if not frames:
        detail = stderr.decode(errors="replace").strip()[:500] if stderr else "no frames decoded"
        raise RuntimeError(detail)

    logger.info(f"[ASSET] Decoded video {path}: {len(frames)} frames at {fps}fps")
    return LoadedAsset(kind=AssetKind.VIDEO, size=(width, height), frames=frames, fps=fps)


async def _load_one(
    asset: Asset,
    client: httpx.AsyncClient,
    canvas_size: tuple[int, int],
    fps: int,
) -> LoadedAsset:
    source = asset.source
    if asset.kind is AssetKind.VIDEO and isinstance(source, str) and _is_local_path(source):
        return await decode_video(source, canvas_size, fps)

    data = await fetch_source(source, client)
    if asset.kind is AssetKind.IMAGE:
        return await asyncio.to_thread(decode_image, data)

    # ffmpeg needs a seekable file for most containers
    fd, tmp_path = tempfile.mkstemp(suffix=".video")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        return await decode_video(tmp_path, canvas_size, fps)
    finally:
        os.unlink(tmp_path)


def _is_local_path(source: str) -> bool:
    return not source.startswith(("http://", "https://", "data:"))


async def preload_assets(
    assets: Sequence[Asset],
    canvas_size: tuple[int, int],
    fps: int,
    client: Optional[httpx.AsyncClient] = None,
) -> list[LoadedAsset]:
    """Load every unique asset; the result is aligned with ``assets``.

    Any single failure aborts the whole preload with AssetLoadError.
    """
    settings = get_settings()
    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(timeout=settings.request_timeout, follow_redirects=True)

    unique: dict[tuple[AssetKind, str | bytes], int] = {}
    for index, asset in enumerate(assets):
        unique.setdefault((asset.kind, asset.source), index)

    async def load(index: int) -> LoadedAsset:
        asset = assets[index]
        try:
            return await _load_one(asset, client, canvas_size, fps)
        except (httpx.HTTPError, OSError, UnidentifiedImageError, RuntimeError, ValueError) as e:
            logger.error(f"[ASSET] Failed to load asset {index} ({describe_source(asset.source)}): {e}")
            raise AssetLoadError(describe_source(asset.source), index=index, reason=str(e)) from e

    try:
        loaded = await asyncio.gather(*(load(index) for index in unique.values()))
    finally:
        if own_client:
            await client.aclose()

    by_key = dict(zip(unique.keys(), loaded))
    logger.info(f"[ASSET] Preloaded {len(by_key)} unique assets for {len(assets)} slides")
    return [by_key[(asset.kind, asset.source)] for asset in assets]
