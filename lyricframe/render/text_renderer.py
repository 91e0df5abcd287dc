"""Karaoke subtitle rendering with Pillow.

Features:
- Word wrap inside the orientation's text zone
- Per-word hard-edged reveal wipe (ltr / rtl / center-out / center-in)
- RTL scripts laid out right to left with mirrored wipes
- Glow and emphasis for long words (modern effects)
- Translation line under the lyric
- Fade-out before a visual cut
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Sequence

from PIL import Image, ImageChops, ImageDraw, ImageFilter, ImageFont, features

from lyricframe.config import get_settings
from lyricframe.render.timeline import (
    LAYOUT_PRESETS,
    Orientation,
    RenderConfig,
    SubtitleLine,
)
from lyricframe.render.typography import (
    GLOW_RADIUS,
    Emphasis,
    TextDirection,
    effective_reveal_direction,
    emphasis,
    layout_lines,
    max_text_width,
    text_direction,
    wipe_spans,
    word_progress,
    wrap_words,
)

logger = logging.getLogger(__name__)

TEXT_FONT_SIZES = {Orientation.LANDSCAPE: 42, Orientation.PORTRAIT: 56}
TRANSLATION_FONT_SIZE = 28
LINE_HEIGHT_RATIO = 1.3

TEXT_COLOR = (255, 255, 255)
UNREVEALED_ALPHA = 89  # 35%
SHADOW_COLOR = (0, 0, 0, 200)
SHADOW_BLUR = 6
GLOW_COLOR = (34, 211, 238)
TRANSLATION_COLOR = (34, 211, 238)


@lru_cache(maxsize=64)
def load_font(candidates: tuple[str, ...], size: int) -> ImageFont.FreeTypeFont:
    """First loadable TrueType font from ``candidates``, else Pillow's default."""
    for path in candidates:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    logger.warning(f"[FONT] No TrueType font found in {len(candidates)} candidates, using default")
    return ImageFont.load_default(size=size)


@dataclass
class TextFrame:
    """What was drawn for one frame (used by tests and progress logs)."""

    line_id: Optional[int] = None
    direction: Optional[TextDirection] = None
    line_count: int = 0
    translation_line_count: int = 0
    opacity: float = 0.0


class TextRenderer:
    """Draws the active subtitle line onto an RGBA canvas."""

    def __init__(self, canvas_width: int, canvas_height: int):
        self.settings = get_settings()
        self.width = canvas_width
        self.height = canvas_height
        self._has_raqm = features.check_feature("raqm")
        self._warned_unshaped_rtl = False

    def _font(self, size: int) -> ImageFont.FreeTypeFont:
        return load_font(tuple(self.settings.font_candidates), size)

    def _translation_font(self) -> ImageFont.FreeTypeFont:
        return load_font(tuple(self.settings.translation_font_candidates), TRANSLATION_FONT_SIZE)

    def _text_kwargs(self, direction: TextDirection) -> dict:
        if direction is not TextDirection.RTL:
            return {}
        if self._has_raqm:
            return {"direction": "rtl"}
        # Basic layout keeps glyphs in logical order and unshaped
        if not self._warned_unshaped_rtl:
            logger.warning("[FONT] libraqm not available, RTL text is drawn without shaping")
            self._warned_unshaped_rtl = True
        return {}

    def render(
        self,
        canvas: Image.Image,
        line: SubtitleLine,
        time: float,
        config: RenderConfig,
        opacity: float = 1.0,
        draw_lyric: bool = True,
        draw_translation: bool = True,
    ) -> TextFrame:
        """Draw ``line`` as it appears at sync-adjusted ``time``.

        Args:
            canvas: RGBA image, modified in place
            line: Active subtitle line
            time: Playback time with the sync offset already applied
            config: Render configuration
            opacity: Overall opacity (fade-before-cut), 0-1
            draw_lyric: Draw the karaoke lyric
            draw_translation: Draw the translation line (when the line has one)

        Returns:
            TextFrame describing the drawn text
        """
        frame = TextFrame(line_id=line.id, direction=text_direction(line.text), opacity=max(opacity, 0.0))
        if opacity <= 0:
            return frame

        layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        if draw_lyric:
            frame.line_count = self._draw_lyric(layer, line, time, config, frame.direction)
        if draw_translation and line.translation:
            frame.translation_line_count = self._draw_translation(layer, line.translation, config)

        if opacity < 1.0:
            alpha = layer.getchannel("A").point(lambda a: round(a * opacity))
            layer.putalpha(alpha)

        canvas.alpha_composite(layer)
        return frame

    def _draw_lyric(
        self,
        layer: Image.Image,
        line: SubtitleLine,
        time: float,
        config: RenderConfig,
        direction: TextDirection,
    ) -> int:
        """Draw the wrapped, revealed lyric; returns the number of wrapped lines."""
        states = word_progress(line, time, config.text_animation, config.word_level_highlight)
        if not states:
            return 0

        text_kwargs = self._text_kwargs(direction)
        font_size = TEXT_FONT_SIZES[config.orientation]
        font = self._font(font_size)
        words = [s.word for s in states]
        widths = [font.getlength(w, **text_kwargs) for w in words]
        space_width = font.getlength(" ")

        lines = wrap_words(
            words,
            lambda s: font.getlength(s, **text_kwargs),
            max_text_width(self.width, config.orientation),
        )
        placed = layout_lines(lines, widths, space_width, self.width, direction)

        line_height = round(font_size * LINE_HEIGHT_RATIO)
        zone = LAYOUT_PRESETS[config.orientation].text.to_pixels(self.width, self.height)
        block_top = (zone[1] + zone[3]) / 2 - len(lines) * line_height / 2

        reveal = effective_reveal_direction(config.text_animation.reveal_direction, direction)

        for word in placed:
            state = states[word.index]
            boost = emphasis(state) if config.use_modern_effects else Emphasis()
            tile = self._word_tile(
                state.word,
                self._font(round(font_size * boost.scale)),
                wipe_spans(state.progress, reveal, word.width * boost.scale),
                boost.glow_radius if config.use_modern_effects else 0,
                text_kwargs,
            )
            center_x = word.x + word.width / 2
            center_y = block_top + word.line * line_height + line_height / 2
            _composite_clipped(
                layer,
                tile,
                round(center_x - tile.width / 2),
                round(center_y - tile.height / 2),
            )
        return len(lines)

    def _word_tile(
        self,
        word: str,
        font: ImageFont.FreeTypeFont,
        spans: Sequence[tuple[float, float]],
        glow_radius: int,
        text_kwargs: dict,
    ) -> Image.Image:
        """Render one word: shadow, dim base, then the revealed part with glow."""
        pad = max(SHADOW_BLUR, glow_radius, GLOW_RADIUS) * 2
        text_width = round(font.getlength(word, **text_kwargs))
        ascent, descent = font.getmetrics()
        size = (text_width + pad * 2, ascent + descent + pad * 2)

        # Full-strength glyph mask shared by every sub-layer
        mask = Image.new("L", size, 0)
        ImageDraw.Draw(mask).text((pad, pad), word, font=font, fill=255, **text_kwargs)

        tile = Image.new("RGBA", size, (0, 0, 0, 0))

        shadow = Image.new("RGBA", size, SHADOW_COLOR)
        shadow.putalpha(ImageChops.multiply(mask, Image.new("L", size, SHADOW_COLOR[3])))
        tile.alpha_composite(shadow.filter(ImageFilter.GaussianBlur(SHADOW_BLUR)))

        base = Image.new("RGBA", size, TEXT_COLOR + (0,))
        base.putalpha(ImageChops.multiply(mask, Image.new("L", size, UNREVEALED_ALPHA)))
        tile.alpha_composite(base)

        if not spans:
            return tile

        wipe = Image.new("L", size, 0)
        wipe_draw = ImageDraw.Draw(wipe)
        for x0, x1 in spans:
            left, right = pad + round(x0), pad + round(x1)
            if right > left:
                wipe_draw.rectangle((left, 0, right - 1, size[1]), fill=255)
        revealed_mask = ImageChops.multiply(mask, wipe)

        if glow_radius > 0:
            glow = Image.new("RGBA", size, GLOW_COLOR + (0,))
            glow.putalpha(revealed_mask.filter(ImageFilter.GaussianBlur(glow_radius)))
            tile.alpha_composite(glow)

        revealed = Image.new("RGBA", size, TEXT_COLOR + (0,))
        revealed.putalpha(revealed_mask)
        tile.alpha_composite(revealed)
        return tile

    def _draw_translation(self, layer: Image.Image, text: str, config: RenderConfig) -> int:
        """Draw the wrapped translation centered in its zone; returns the number of lines."""
        font = self._translation_font()
        text_kwargs = self._text_kwargs(text_direction(text))
        left, top, right, bottom = LAYOUT_PRESETS[config.orientation].translation.to_pixels(self.width, self.height)

        words = text.split()
        if not words:
            return 0
        lines = wrap_words(words, lambda s: font.getlength(s, **text_kwargs), right - left)

        line_height = round(TRANSLATION_FONT_SIZE * LINE_HEIGHT_RATIO)
        first_center = (top + bottom) / 2 - (len(lines) - 1) * line_height / 2
        draw = ImageDraw.Draw(layer)
        for row, indices in enumerate(lines):
            draw.text(
                ((left + right) / 2, first_center + row * line_height),
                " ".join(words[i] for i in indices),
                font=font,
                fill=TRANSLATION_COLOR + (255,),
                anchor="mm",
                stroke_width=1,
                stroke_fill=(0, 0, 0, 160),
                **text_kwargs,
            )
        return len(lines)


def _composite_clipped(layer: Image.Image, tile: Image.Image, x: int, y: int) -> None:
    """alpha_composite that tolerates tiles hanging off the layer edge."""
    box = (max(0, -x), max(0, -y), min(tile.width, layer.width - x), min(tile.height, layer.height - y))
    if box[2] <= box[0] or box[3] <= box[1]:
        return
    layer.alpha_composite(tile.crop(box), (max(0, x), max(0, y)))
