"""Mirrored bar-spectrum visualizer.

Bars grow up from the bottom edge inside a band of ``max_height_ratio`` of the
canvas height, mirrored left and right of the horizontal center. Each bin is
averaged with the previous frame's bin to reduce flicker; the previous frame
is passed in explicitly so frames can be rendered out of order.
"""

import colorsys
from dataclasses import dataclass
from typing import Optional

import numpy as np
from PIL import Image, ImageDraw

from lyricframe.render.timeline import ColorScheme, ContentMode, RenderConfig, VisualizerConfig

CYAN = (34, 211, 238)
PURPLE = (167, 139, 250)
WHITE = (255, 255, 255)


@dataclass(frozen=True)
class Bar:
    bin_index: int
    x0: int
    y0: int
    x1: int
    y1: int


def smooth_bins(freq: np.ndarray, prev: Optional[np.ndarray] = None) -> np.ndarray:
    """Average each bin with the same bin of the previous frame."""
    current = np.asarray(freq, dtype=np.float32)
    if prev is None:
        return current
    previous = np.asarray(prev, dtype=np.float32)
    if previous.shape != current.shape:
        return current
    return (current + previous) / 2.0


def is_visualizer_active(config: RenderConfig) -> bool:
    return config.content_mode is ContentMode.MUSIC and config.visualizer.enabled


def bar_geometry(
    values: np.ndarray,
    canvas_width: int,
    canvas_height: int,
    visualizer: VisualizerConfig,
) -> list[Bar]:
    """Mirrored bar rectangles (inclusive pixel bounds) for smoothed bin values."""
    band_height = visualizer.max_height_ratio * canvas_height
    step = visualizer.bar_width + visualizer.bar_gap
    center = canvas_width / 2
    bottom = canvas_height - 1

    bars: list[Bar] = []
    for i, value in enumerate(values):
        height = round(min(max(float(value), 0.0), 255.0) / 255.0 * band_height)
        if height <= 0:
            continue
        offset = visualizer.bar_gap / 2 + i * step
        right_x0 = round(center + offset)
        left_x1 = round(center - offset) - 1
        if right_x0 + visualizer.bar_width > canvas_width or left_x1 - visualizer.bar_width + 1 < 0:
            break
        top = bottom - height + 1
        bars.append(Bar(i, right_x0, top, right_x0 + visualizer.bar_width - 1, bottom))
        bars.append(Bar(i, left_x1 - visualizer.bar_width + 1, top, left_x1, bottom))
    return bars


def _vertical_gradient(width: int, height: int, top: tuple, bottom: tuple) -> Image.Image:
    ramp = np.linspace(0.0, 1.0, height, dtype=np.float32)[:, None]
    top_rgb = np.array(top, dtype=np.float32)
    bottom_rgb = np.array(bottom, dtype=np.float32)
    column = top_rgb * (1 - ramp) + bottom_rgb * ramp
    pixels = np.repeat(column[:, None, :], width, axis=1).round().astype(np.uint8)
    return Image.fromarray(pixels, "RGB")


def _rainbow(bin_index: int, bin_count: int) -> tuple[int, int, int]:
    r, g, b = colorsys.hsv_to_rgb(bin_index / max(bin_count, 1), 0.75, 1.0)
    return round(r * 255), round(g * 255), round(b * 255)


def render_visualizer(
    freq: np.ndarray,
    prev_freq: Optional[np.ndarray],
    canvas_width: int,
    canvas_height: int,
    visualizer: VisualizerConfig,
) -> Image.Image:
    """Transparent RGBA layer with the spectrum drawn at ``visualizer.opacity``."""
    size = (canvas_width, canvas_height)
    values = smooth_bins(freq, prev_freq)
    bars = bar_geometry(values, canvas_width, canvas_height, visualizer)

    mask = Image.new("L", size, 0)
    mask_draw = ImageDraw.Draw(mask)
    alpha = round(255 * min(max(visualizer.opacity, 0.0), 1.0))
    for bar in bars:
        mask_draw.rectangle((bar.x0, bar.y0, bar.x1, bar.y1), fill=alpha)

    match visualizer.color_scheme:
        case ColorScheme.CYAN_PURPLE:
            band_height = max(1, round(visualizer.max_height_ratio * canvas_height))
            colors = Image.new("RGB", size, CYAN)
            colors.paste(
                _vertical_gradient(canvas_width, band_height, PURPLE, CYAN),
                (0, canvas_height - band_height),
            )
        case ColorScheme.MONOCHROME:
            colors = Image.new("RGB", size, WHITE)
        case ColorScheme.RAINBOW:
            colors = Image.new("RGB", size, WHITE)
            color_draw = ImageDraw.Draw(colors)
            for bar in bars:
                color_draw.rectangle(
                    (bar.x0, bar.y0, bar.x1, bar.y1), fill=_rainbow(bar.bin_index, len(values))
                )
        case _:
            raise ValueError(f"Unhandled color scheme: {visualizer.color_scheme}")

    layer = colors.convert("RGBA")
    layer.putalpha(mask)
    return layer
