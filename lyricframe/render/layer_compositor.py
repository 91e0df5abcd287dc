"""Per-frame layer compositing with Pillow.

Layer structure (bottom to top):
L1: Background (black)
L2: Asset - current slide with Ken Burns zoom, next slide blended in during a transition
L3: Visualizer - mirrored spectrum bars (music mode only)
L4: Gradient - bottom readability band (+ top vignette with modern effects)
L5: Subtitle - karaoke lyric line
L6: Translation

``FrameCompositor.render`` is a pure function of its arguments: the same
time, assets, subtitles, frequency data and config always give the same
pixels. The only cross-frame input (previous frequency frame) is passed in.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from functools import lru_cache
from typing import Optional, Sequence

import numpy as np
from PIL import Image

from lyricframe.render.asset_loader import LoadedAsset
from lyricframe.render.motion import (
    compute_transition,
    cover_fit,
    ken_burns_scale,
    slide_progress,
    slide_window,
)
from lyricframe.render.text_renderer import TextRenderer
from lyricframe.render.timeline import RenderConfig, SubtitleLine
from lyricframe.render.typography import active_subtitle, adjusted_time, fade_before_cut_opacity
from lyricframe.render.visualizer import is_visualizer_active, render_visualizer

logger = logging.getLogger(__name__)

GRADIENT_HEIGHT = 250
GRADIENT_MAX_ALPHA = 0.8
VIGNETTE_RATIO = 0.15
VIGNETTE_MAX_ALPHA = 0.35


class LayerType(IntEnum):
    """Layer types ordered from bottom to top."""

    BACKGROUND = 1
    ASSET = 2
    VISUALIZER = 3
    GRADIENT = 4
    SUBTITLE = 5
    TRANSLATION = 6


@dataclass(frozen=True)
class Slide:
    """A decoded asset placed at its timeline start time."""

    start_time: float
    asset: LoadedAsset


@dataclass(frozen=True)
class CompositeOptions:
    """Layer toggles; every layer is drawn by default."""

    disabled: frozenset[LayerType] = field(default_factory=frozenset)

    def enabled(self, layer: LayerType) -> bool:
        return layer not in self.disabled


@lru_cache(maxsize=8)
def gradient_overlay(width: int, height: int, vignette: bool) -> Image.Image:
    """Black RGBA overlay: bottom band fading to 0.8 alpha, optional top vignette."""
    alpha = np.zeros(height, dtype=np.float32)

    band = min(GRADIENT_HEIGHT, height)
    alpha[height - band:] = np.linspace(0.0, GRADIENT_MAX_ALPHA, band, dtype=np.float32)

    if vignette:
        top = max(1, round(height * VIGNETTE_RATIO))
        alpha[:top] = np.maximum(alpha[:top], np.linspace(VIGNETTE_MAX_ALPHA, 0.0, top, dtype=np.float32))

    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[:, :, 3] = (alpha * 255).round().astype(np.uint8)[:, None]
    return Image.fromarray(pixels, "RGBA")


class FrameCompositor:
    """Composites one output frame from the timeline state at a given time."""

    def __init__(self, options: Optional[CompositeOptions] = None):
        self.options = options or CompositeOptions()
        self._text_renderers: dict[tuple[int, int], TextRenderer] = {}

    def _text_renderer(self, size: tuple[int, int]) -> TextRenderer:
        renderer = self._text_renderers.get(size)
        if renderer is None:
            renderer = TextRenderer(*size)
            self._text_renderers[size] = renderer
        return renderer

    def render(
        self,
        time: float,
        slides: Sequence[Slide],
        subtitles: Sequence[SubtitleLine],
        freq: Optional[np.ndarray],
        prev_freq: Optional[np.ndarray],
        config: RenderConfig,
        timeline_end: Optional[float] = None,
    ) -> Image.Image:
        """Render the frame at ``time`` seconds.

        Args:
            time: Playback time in seconds
            slides: Decoded assets sorted by start time
            subtitles: Subtitle track
            freq: Frequency bins for this frame, or None
            prev_freq: Frequency bins for the previous frame, or None
            config: Render configuration
            timeline_end: Audio duration, used as the end of the last slide

        Returns:
            RGB image of the canvas size for ``config.orientation``
        """
        width, height = config.canvas_size
        canvas = Image.new("RGBA", (width, height), (0, 0, 0, 255))

        start_times = [s.start_time for s in slides]
        window = slide_window(start_times, time, timeline_end)

        if window is not None and self.options.enabled(LayerType.ASSET):
            current = slides[window.current_index]
            zoom = ken_burns_scale(slide_progress(window, time), config.ken_burns_zoom_max)
            self._draw_asset(canvas, current.asset.frame_at(time - current.start_time), zoom)

            transition = compute_transition(
                window,
                time,
                config.transition_type,
                config.transition_duration,
                width,
                config.ken_burns_zoom_max,
            )
            if transition.active and transition.next_opacity > 0:
                upcoming = slides[window.next_index]
                self._draw_asset(
                    canvas,
                    upcoming.asset.frame_at(time - upcoming.start_time),
                    transition.next_scale,
                    opacity=transition.next_opacity,
                    offset_x=transition.next_offset_x,
                )

        if (
            freq is not None
            and self.options.enabled(LayerType.VISUALIZER)
            and is_visualizer_active(config)
        ):
            canvas.alpha_composite(render_visualizer(freq, prev_freq, width, height, config.visualizer))

        if self.options.enabled(LayerType.GRADIENT):
            canvas.alpha_composite(gradient_overlay(width, height, config.use_modern_effects))

        draw_lyric = self.options.enabled(LayerType.SUBTITLE)
        draw_translation = self.options.enabled(LayerType.TRANSLATION)
        if draw_lyric or draw_translation:
            lyric_time = adjusted_time(time, config.sync_offset_ms)
            line = active_subtitle(subtitles, lyric_time)
            if line is not None:
                cut_time = window.end if window is not None and window.next_index is not None else None
                self._text_renderer((width, height)).render(
                    canvas,
                    line,
                    lyric_time,
                    config,
                    opacity=fade_before_cut_opacity(time, cut_time, config.fade_out_before_cut),
                    draw_lyric=draw_lyric,
                    draw_translation=draw_translation,
                )

        return canvas.convert("RGB")

    def _draw_asset(
        self,
        canvas: Image.Image,
        image: Image.Image,
        scale: float,
        opacity: float = 1.0,
        offset_x: int = 0,
    ) -> None:
        """Cover-fit ``image`` (times ``scale``), centered, and composite it."""
        canvas_width, canvas_height = canvas.size
        fit = cover_fit(image.width, image.height, canvas_width, canvas_height, scale)
        left = fit.x + offset_x
        top = fit.y

        # Visible part of the scaled image, in scaled-image coordinates
        box = (
            max(0, -left),
            max(0, -top),
            min(fit.width, canvas_width - left),
            min(fit.height, canvas_height - top),
        )
        if box[2] <= box[0] or box[3] <= box[1]:
            return

        resized = image.resize((fit.width, fit.height), Image.Resampling.BILINEAR)
        region = resized.crop(box).convert("RGBA")
        if opacity < 1.0:
            region.putalpha(round(255 * max(opacity, 0.0)))
        canvas.alpha_composite(region, (max(0, left), max(0, top)))
