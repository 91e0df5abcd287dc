"""Karaoke typography math: word timing, wrapping, RTL layout and reveal wipes.

Nothing in here touches a drawing surface. Text measurement is injected as a
callable so wrapping and layout can be exercised without fonts; the Pillow
side lives in ``text_renderer``.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from lyricframe.render.timeline import (
    LAYOUT_PRESETS,
    Orientation,
    RevealDirection,
    SubtitleLine,
    TextAnimationConfig,
)
from lyricframe.utils.interpolation import clamp, progress_between, pulse

# Arabic (incl. supplements and presentation forms), Hebrew, Syriac, Thaana, N'Ko
RTL_PATTERN = re.compile(
    "[\u0590-\u05FF\uFB1D-\uFB4F"
    "\u0600-\u06FF\u0750-\u077F\u08A0-\u08FF\uFB50-\uFDFF\uFE70-\uFEFF"
    "\u0700-\u074F\u0780-\u07BF\u07C0-\u07FF]"
)

FADE_BEFORE_CUT_WINDOW = 0.3
EMPHASIS_MIN_DURATION = 0.5
EMPHASIS_MAX_SCALE_BOOST = 0.08
GLOW_RADIUS = 6
EMPHASIS_GLOW_RADIUS = 12


class TextDirection(Enum):
    LTR = "ltr"
    RTL = "rtl"


@dataclass(frozen=True)
class WordState:
    """Timing and reveal progress of one displayed word."""

    word: str
    start: float
    end: float
    progress: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def emphasized(self) -> bool:
        """Long words get a boost while they are being revealed."""
        return self.duration > EMPHASIS_MIN_DURATION and 0.0 < self.progress < 1.0


@dataclass(frozen=True)
class Emphasis:
    scale: float = 1.0
    glow_radius: int = GLOW_RADIUS


@dataclass(frozen=True)
class PlacedWord:
    """Word box on the canvas, relative to the text block's left edge."""

    index: int
    line: int
    x: float
    width: float


def is_rtl(text: str) -> bool:
    if not text:
        return False
    return RTL_PATTERN.search(text) is not None


def text_direction(text: str) -> TextDirection:
    return TextDirection.RTL if is_rtl(text) else TextDirection.LTR


def adjusted_time(time: float, sync_offset_ms: int) -> float:
    return time + sync_offset_ms / 1000.0


def active_subtitle(subtitles: Sequence[SubtitleLine], time: float) -> Optional[SubtitleLine]:
    """First line whose [start_time, end_time] contains ``time``."""
    for line in subtitles:
        if line.start_time <= time <= line.end_time:
            return line
    return None


# ============================================================================
# Word timing
# ============================================================================


def _proportional_spans(text: str, start: float, end: float) -> list[tuple[str, float, float]]:
    """Approximate word timings from each word's character offset in the line."""
    tokens = [(m.group(0), m.start(), m.end()) for m in re.finditer(r"\S+", text)]
    total_chars = len(text.rstrip())
    if not tokens or total_chars == 0:
        return []
    span = end - start
    return [
        (token, start + span * (first / total_chars), start + span * (last / total_chars))
        for token, first, last in tokens
    ]


def word_progress(
    line: SubtitleLine,
    time: float,
    text_animation: TextAnimationConfig,
    word_level: bool = True,
) -> list[WordState]:
    """Reveal state of every word of ``line`` at ``time`` (already sync-adjusted).

    Explicit word timings are used when there are at least two of them and
    word-level reveal is on. Otherwise each word's window is derived from its
    character offset within the line, which also yields a continuous line
    wipe when ``word_reveal`` is off. The configured per-word reveal duration
    acts as a minimum span so very short words still wipe visibly.
    """
    per_word = word_level and text_animation.word_reveal
    if per_word and line.words and len(line.words) >= 2:
        spans = [(w.word, w.start_time, w.end_time) for w in line.words]
    else:
        spans = _proportional_spans(line.text, line.start_time, line.end_time)

    if not per_word:
        return [
            WordState(word, start, end, progress_between(time, start, end))
            for word, start, end in spans
        ]

    states = []
    for word, start, end in spans:
        reveal_span = max(end - start, text_animation.reveal_duration_per_word)
        states.append(WordState(word, start, end, progress_between(time, start, start + reveal_span)))
    return states


def emphasis(state: WordState) -> Emphasis:
    if not state.emphasized:
        return Emphasis()
    scale = 1.0 + EMPHASIS_MAX_SCALE_BOOST * pulse(state.progress)
    return Emphasis(scale=min(scale, 1.0 + EMPHASIS_MAX_SCALE_BOOST), glow_radius=EMPHASIS_GLOW_RADIUS)


def fade_before_cut_opacity(time: float, slide_end: Optional[float], enabled: bool) -> float:
    """Subtitle opacity ramp 1 -> 0 over the final 300ms before a cut."""
    if not enabled or slide_end is None:
        return 1.0
    remaining = slide_end - time
    if 0.0 <= remaining < FADE_BEFORE_CUT_WINDOW:
        return clamp(remaining / FADE_BEFORE_CUT_WINDOW)
    return 1.0


# ============================================================================
# Layout
# ============================================================================


def text_margins(canvas_width: int, orientation: Orientation) -> tuple[int, int]:
    """(left, right) pixel margins of the lyric text zone."""
    zone = LAYOUT_PRESETS[orientation].text
    left = round(zone.x * canvas_width)
    right = canvas_width - round((zone.x + zone.width) * canvas_width)
    return left, right


def max_text_width(canvas_width: int, orientation: Orientation) -> int:
    left, right = text_margins(canvas_width, orientation)
    return canvas_width - left - right


def wrap_words(
    words: Sequence[str],
    measure: Callable[[str], float],
    max_width: float,
) -> list[list[int]]:
    """Greedy word wrap; returns word indices per line.

    A word wider than ``max_width`` on its own still gets a line.
    """
    lines: list[list[int]] = []
    current: list[int] = []
    for index, word in enumerate(words):
        candidate = " ".join(words[i] for i in current + [index])
        if current and measure(candidate) > max_width:
            lines.append(current)
            current = [index]
        else:
            current.append(index)
    if current:
        lines.append(current)
    return lines


def layout_lines(
    lines: Sequence[Sequence[int]],
    widths: Sequence[float],
    space_width: float,
    block_width: float,
    direction: TextDirection,
) -> list[PlacedWord]:
    """Center each line in the block; RTL lines run from right to left."""
    placed: list[PlacedWord] = []
    for line_number, indices in enumerate(lines):
        line_width = sum(widths[i] for i in indices) + space_width * max(0, len(indices) - 1)
        left = (block_width - line_width) / 2

        match direction:
            case TextDirection.LTR:
                cursor = left
                for i in indices:
                    placed.append(PlacedWord(i, line_number, cursor, widths[i]))
                    cursor += widths[i] + space_width
            case TextDirection.RTL:
                cursor = left + line_width
                for i in indices:
                    cursor -= widths[i]
                    placed.append(PlacedWord(i, line_number, cursor, widths[i]))
                    cursor -= space_width
    return placed


def effective_reveal_direction(configured: RevealDirection, direction: TextDirection) -> RevealDirection:
    """Mirror horizontal wipes for RTL scripts; centered wipes are symmetric."""
    if direction is TextDirection.LTR:
        return configured
    match configured:
        case RevealDirection.LTR:
            return RevealDirection.RTL
        case RevealDirection.RTL:
            return RevealDirection.LTR
        case RevealDirection.CENTER_OUT | RevealDirection.CENTER_IN:
            return configured
    raise ValueError(f"Unhandled reveal direction: {configured}")


def wipe_spans(progress: float, direction: RevealDirection, width: float) -> list[tuple[float, float]]:
    """Revealed horizontal spans [x0, x1) within a box of ``width`` at ``progress``."""
    p = clamp(progress)
    if p <= 0.0:
        return []
    if p >= 1.0:
        return [(0.0, width)]

    revealed = p * width
    match direction:
        case RevealDirection.LTR:
            return [(0.0, revealed)]
        case RevealDirection.RTL:
            return [(width - revealed, width)]
        case RevealDirection.CENTER_OUT:
            half = revealed / 2
            return [(width / 2 - half, width / 2 + half)]
        case RevealDirection.CENTER_IN:
            half = revealed / 2
            return [(0.0, half), (width - half, width)]
    raise ValueError(f"Unhandled reveal direction: {direction}")
