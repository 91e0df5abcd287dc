"""Timeline model: the read-only description of one export.

A timeline bundles the visual assets, the subtitle track, the optional
per-frame frequency envelope and the render configuration. Everything here is
immutable once built; builders validate the ordering invariants so the
renderer can rely on them without re-checking.
"""

import math
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Optional, Sequence

import numpy as np

from lyricframe.config import get_settings
from lyricframe.exceptions import InvalidTimelineError

# Transcription services round word timestamps; allow this much slack when
# checking that words sit inside their line.
WORD_TIMING_TOLERANCE = 0.05


# ============================================================================
# Enums
# ============================================================================


class AssetKind(Enum):
    IMAGE = "image"
    VIDEO = "video"


class Orientation(Enum):
    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"


class ContentMode(Enum):
    MUSIC = "music"
    STORY = "story"


class TransitionType(Enum):
    NONE = "none"  # Hard cut
    FADE = "fade"
    DISSOLVE = "dissolve"
    ZOOM = "zoom"
    SLIDE = "slide"


class ColorScheme(Enum):
    CYAN_PURPLE = "cyan-purple"
    RAINBOW = "rainbow"
    MONOCHROME = "monochrome"


class RevealDirection(Enum):
    LTR = "ltr"
    RTL = "rtl"
    CENTER_OUT = "center-out"
    CENTER_IN = "center-in"


# ============================================================================
# Timeline items
# ============================================================================


@dataclass(frozen=True)
class Asset:
    """A visual asset placed on the timeline (not yet decoded)."""

    start_time: float
    kind: AssetKind
    source: str | bytes


@dataclass(frozen=True)
class WordTiming:
    word: str
    start_time: float
    end_time: float


@dataclass(frozen=True)
class SubtitleLine:
    id: int
    start_time: float
    end_time: float
    text: str
    translation: Optional[str] = None
    words: Optional[tuple[WordTiming, ...]] = None

    def __post_init__(self):
        if not self.start_time < self.end_time:
            raise InvalidTimelineError(
                f"Subtitle {self.id}: start_time {self.start_time} must be before end_time {self.end_time}",
                field="subtitles",
            )
        if self.words:
            _validate_words(self)


def _validate_words(line: SubtitleLine) -> None:
    previous_end = line.start_time - WORD_TIMING_TOLERANCE
    for word in line.words:
        if word.end_time < word.start_time:
            raise InvalidTimelineError(
                f"Subtitle {line.id}: word '{word.word}' ends before it starts", field="words"
            )
        if word.start_time < previous_end - WORD_TIMING_TOLERANCE:
            raise InvalidTimelineError(
                f"Subtitle {line.id}: word '{word.word}' overlaps the previous word", field="words"
            )
        previous_end = word.end_time
    if previous_end > line.end_time + WORD_TIMING_TOLERANCE:
        raise InvalidTimelineError(
            f"Subtitle {line.id}: words extend past the end of the line", field="words"
        )


# ============================================================================
# Render configuration
# ============================================================================


@dataclass(frozen=True)
class VisualizerConfig:
    enabled: bool = True
    opacity: float = 0.15
    max_height_ratio: float = 0.25
    bar_width: int = 3
    bar_gap: int = 2
    color_scheme: ColorScheme = ColorScheme.CYAN_PURPLE


@dataclass(frozen=True)
class TextAnimationConfig:
    reveal_direction: RevealDirection = RevealDirection.LTR
    reveal_duration_per_word: float = 0.3
    word_reveal: bool = True


@dataclass(frozen=True)
class RenderConfig:
    """Per-export render settings. Defaults match the cloud export preset."""

    orientation: Orientation = Orientation.LANDSCAPE
    use_modern_effects: bool = True
    sync_offset_ms: int = -50
    fade_out_before_cut: bool = True
    word_level_highlight: bool = True
    content_mode: ContentMode = ContentMode.MUSIC
    transition_type: TransitionType = TransitionType.DISSOLVE
    transition_duration: float = 1.5
    ken_burns_zoom_max: float = 0.15
    visualizer: VisualizerConfig = field(default_factory=VisualizerConfig)
    text_animation: TextAnimationConfig = field(default_factory=TextAnimationConfig)

    @property
    def canvas_size(self) -> tuple[int, int]:
        settings = get_settings()
        match self.orientation:
            case Orientation.LANDSCAPE:
                return tuple(settings.render_landscape_size)
            case Orientation.PORTRAIT:
                return tuple(settings.render_portrait_size)
        raise ValueError(f"Unhandled orientation: {self.orientation}")


DEFAULT_RENDER_CONFIG = RenderConfig()

# camelCase payload key -> (dataclass field, enum type or None)
_CONFIG_KEYS: dict[str, tuple[str, Optional[type[Enum]]]] = {
    "orientation": ("orientation", Orientation),
    "useModernEffects": ("use_modern_effects", None),
    "syncOffsetMs": ("sync_offset_ms", None),
    "fadeOutBeforeCut": ("fade_out_before_cut", None),
    "wordLevelHighlight": ("word_level_highlight", None),
    "contentMode": ("content_mode", ContentMode),
    "transitionType": ("transition_type", TransitionType),
    "transitionDuration": ("transition_duration", None),
    "kenBurnsZoomMax": ("ken_burns_zoom_max", None),
}
_VISUALIZER_KEYS: dict[str, tuple[str, Optional[type[Enum]]]] = {
    "enabled": ("enabled", None),
    "opacity": ("opacity", None),
    "maxHeightRatio": ("max_height_ratio", None),
    "barWidth": ("bar_width", None),
    "barGap": ("bar_gap", None),
    "colorScheme": ("color_scheme", ColorScheme),
}
_TEXT_ANIMATION_KEYS: dict[str, tuple[str, Optional[type[Enum]]]] = {
    "revealDirection": ("reveal_direction", RevealDirection),
    "revealDuration": ("reveal_duration_per_word", None),
    "wordReveal": ("word_reveal", None),
}


def _apply_overrides(base, overrides: dict[str, Any], key_map) -> Any:
    changes = {}
    known = {f.name for f in fields(base)}
    by_field = {name: (name, enum_type) for name, enum_type in key_map.values()}
    for key, value in overrides.items():
        if key in key_map:
            name, enum_type = key_map[key]
        elif key in by_field:
            name, enum_type = by_field[key]
        elif key in known:
            name, enum_type = key, None
        else:
            continue  # UI-only keys such as zIndex
        if enum_type is not None and not isinstance(value, enum_type):
            try:
                value = enum_type(value)
            except ValueError as e:
                raise InvalidTimelineError(f"Unknown {key}: {value!r}", field=key) from e
        changes[name] = value
    return replace(base, **changes)


def merge_render_config(
    overrides: Optional[dict[str, Any]] = None,
    base: RenderConfig = DEFAULT_RENDER_CONFIG,
) -> RenderConfig:
    """Merge a partial (camelCase or snake_case) config over ``base``.

    Nested ``visualizerConfig`` / ``textAnimationConfig`` blocks are merged
    key by key rather than replaced wholesale.
    """
    if not overrides:
        return base

    top_level = {
        k: v for k, v in overrides.items()
        if k not in ("visualizerConfig", "visualizer", "textAnimationConfig", "text_animation")
    }
    config = _apply_overrides(base, top_level, _CONFIG_KEYS)

    visualizer = overrides.get("visualizerConfig", overrides.get("visualizer"))
    if visualizer:
        config = replace(config, visualizer=_apply_overrides(config.visualizer, visualizer, _VISUALIZER_KEYS))

    text_animation = overrides.get("textAnimationConfig", overrides.get("text_animation"))
    if text_animation:
        config = replace(
            config,
            text_animation=_apply_overrides(config.text_animation, text_animation, _TEXT_ANIMATION_KEYS),
        )

    return config


# ============================================================================
# Layout zones
# ============================================================================


@dataclass(frozen=True)
class LayoutZone:
    """Normalized (0-1) rectangle on the canvas."""

    x: float
    y: float
    width: float
    height: float

    def to_pixels(self, canvas_width: int, canvas_height: int) -> tuple[int, int, int, int]:
        """Return (left, top, right, bottom) in pixels."""
        left = round(self.x * canvas_width)
        top = round(self.y * canvas_height)
        return (
            left,
            top,
            left + round(self.width * canvas_width),
            top + round(self.height * canvas_height),
        )


@dataclass(frozen=True)
class Layout:
    visualizer: LayoutZone
    text: LayoutZone
    translation: LayoutZone


LAYOUT_PRESETS: dict[Orientation, Layout] = {
    Orientation.LANDSCAPE: Layout(
        visualizer=LayoutZone(0, 0.75, 1, 0.25),
        text=LayoutZone(0.1, 0.35, 0.8, 0.3),
        translation=LayoutZone(0.1, 0.65, 0.8, 0.1),
    ),
    Orientation.PORTRAIT: Layout(
        visualizer=LayoutZone(0, 0.85, 1, 0.15),
        text=LayoutZone(0.05, 0.25, 0.9, 0.4),
        translation=LayoutZone(0.05, 0.65, 0.9, 0.15),
    ),
}


# ============================================================================
# Timeline
# ============================================================================


@dataclass(frozen=True)
class Timeline:
    """Normalized, read-only export description."""

    assets: tuple[Asset, ...]
    subtitles: tuple[SubtitleLine, ...]
    config: RenderConfig = DEFAULT_RENDER_CONFIG
    frequency_frames: Optional[tuple[np.ndarray, ...]] = None
    duration: Optional[float] = None
    fps: int = 30

    def __post_init__(self):
        for previous, current in zip(self.assets, self.assets[1:]):
            if current.start_time <= previous.start_time:
                raise InvalidTimelineError(
                    f"Asset start times must be strictly increasing "
                    f"({previous.start_time} then {current.start_time})",
                    field="assets",
                )
        if self.fps <= 0:
            raise InvalidTimelineError("fps must be positive", field="fps")

    @classmethod
    def build(
        cls,
        assets: Sequence[Asset],
        subtitles: Sequence[SubtitleLine],
        config: RenderConfig = DEFAULT_RENDER_CONFIG,
        frequency_frames: Optional[Sequence[Any]] = None,
        duration: Optional[float] = None,
        fps: int = 30,
    ) -> "Timeline":
        """Sort inputs and coerce the frequency envelope to uint8 arrays."""
        frames = None
        if frequency_frames is not None:
            frames = tuple(np.asarray(f, dtype=np.uint8) for f in frequency_frames)
        return cls(
            assets=tuple(sorted(assets, key=lambda a: a.start_time)),
            subtitles=tuple(sorted(subtitles, key=lambda s: (s.start_time, s.id))),
            config=config,
            frequency_frames=frames,
            duration=duration,
            fps=fps,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Timeline":
        """Build a timeline from the collaborator JSON payload."""
        try:
            assets = [
                Asset(
                    start_time=float(item.get("timestampSeconds", item.get("time", 0)) or 0),
                    kind=AssetKind(item.get("type", "image")),
                    source=item["source"],
                )
                for item in data.get("assets", [])
            ]
            subtitles = [
                SubtitleLine(
                    id=int(item.get("id", index)),
                    start_time=float(item["startTime"]),
                    end_time=float(item["endTime"]),
                    text=item.get("text", ""),
                    translation=item.get("translation") or None,
                    words=tuple(
                        WordTiming(
                            word=w["word"],
                            start_time=float(w["startTime"]),
                            end_time=float(w["endTime"]),
                        )
                        for w in item["words"]
                    ) if item.get("words") else None,
                )
                for index, item in enumerate(data.get("subtitles", []))
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidTimelineError(f"Malformed timeline payload: {e}") from e

        duration = data.get("duration")
        return cls.build(
            assets=assets,
            subtitles=subtitles,
            config=merge_render_config(data.get("config")),
            frequency_frames=data.get("frequencyData"),
            duration=float(duration) if duration is not None else None,
            fps=int(data.get("fps", get_settings().render_fps)),
        )

    def with_audio(self, duration: float, frequency_frames: Optional[Sequence[np.ndarray]] = None) -> "Timeline":
        """Return a copy carrying the decoded audio duration (and envelope if none was given)."""
        frames = self.frequency_frames
        if frames is None and frequency_frames is not None:
            frames = tuple(np.asarray(f, dtype=np.uint8) for f in frequency_frames)
        return replace(self, duration=duration, frequency_frames=frames)

    @property
    def frame_count(self) -> int:
        if self.duration is None:
            raise InvalidTimelineError("Timeline duration is unknown", field="duration")
        return frame_count_for(self.duration, self.fps)

    def frequency_at(self, frame_index: int) -> Optional[np.ndarray]:
        """Frequency frame for an output frame index, or None outside the envelope."""
        if self.frequency_frames is None or frame_index < 0:
            return None
        if frame_index >= len(self.frequency_frames):
            return None
        return self.frequency_frames[frame_index]


def frame_count_for(duration: float, fps: int) -> int:
    """ceil(duration * fps), tolerant of float noise such as 25.0 * 30 = 750.0000001."""
    return math.ceil(round(duration * fps, 6))
