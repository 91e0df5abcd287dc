"""Ken Burns motion and slide-to-slide transition math.

Pure geometry only; the compositor applies the results to Pillow images.
"""

from bisect import bisect_right
from dataclasses import dataclass
from typing import Optional, Sequence

from lyricframe.render.timeline import TransitionType
from lyricframe.utils.interpolation import clamp, progress_between

# Slide length used for the last asset when the timeline duration is unknown
DEFAULT_SLIDE_DURATION = 5.0


@dataclass(frozen=True)
class SlideWindow:
    """Active window [start, end) of the current asset."""

    current_index: int
    next_index: Optional[int]
    start: float
    end: float


@dataclass(frozen=True)
class CoverFit:
    """Placement of a source image scaled to cover the canvas."""

    width: int
    height: int
    x: int
    y: int


@dataclass(frozen=True)
class TransitionState:
    active: bool = False
    progress: float = 0.0
    next_opacity: float = 0.0
    next_offset_x: int = 0
    next_scale: float = 1.0


NO_TRANSITION = TransitionState()


def select_asset_index(start_times: Sequence[float], time: float) -> Optional[int]:
    """Index of the last asset with start_time <= time.

    Before the first asset starts, the first asset is shown.
    """
    if not start_times:
        return None
    return max(0, bisect_right(start_times, time) - 1)


def slide_window(
    start_times: Sequence[float],
    time: float,
    timeline_end: Optional[float] = None,
) -> Optional[SlideWindow]:
    """Resolve the current/next asset pair and the active window for ``time``."""
    index = select_asset_index(start_times, time)
    if index is None:
        return None

    start = start_times[index]
    if index + 1 < len(start_times):
        return SlideWindow(index, index + 1, start, start_times[index + 1])

    if timeline_end is not None and timeline_end > start:
        end = timeline_end
    else:
        end = start + DEFAULT_SLIDE_DURATION
    return SlideWindow(index, None, start, end)


def slide_progress(window: SlideWindow, time: float) -> float:
    return progress_between(time, window.start, window.end)


def ken_burns_scale(progress: float, zoom_max: float) -> float:
    """Linear zoom from 1.0 at slide start to 1.0 + zoom_max at slide end."""
    return 1.0 + zoom_max * clamp(progress)


def cover_fit(
    src_width: int,
    src_height: int,
    canvas_width: int,
    canvas_height: int,
    scale: float = 1.0,
) -> CoverFit:
    """Scale the source to fully cover the canvas (times ``scale``), centered."""
    cover = max(canvas_width / src_width, canvas_height / src_height) * scale
    width = max(1, round(src_width * cover))
    height = max(1, round(src_height * cover))
    return CoverFit(
        width=width,
        height=height,
        x=(canvas_width - width) // 2,
        y=(canvas_height - height) // 2,
    )


def compute_transition(
    window: SlideWindow,
    time: float,
    transition_type: TransitionType,
    transition_duration: float,
    canvas_width: int,
    zoom_max: float,
) -> TransitionState:
    """Blend state for the incoming asset during the last ``transition_duration`` seconds."""
    if window.next_index is None or transition_duration <= 0:
        return NO_TRANSITION

    time_until_next = window.end - time
    if time_until_next < 0 or time_until_next >= transition_duration:
        return NO_TRANSITION

    progress = clamp(1.0 - time_until_next / transition_duration)

    match transition_type:
        case TransitionType.NONE:
            return NO_TRANSITION
        case TransitionType.FADE | TransitionType.DISSOLVE:
            return TransitionState(True, progress, next_opacity=progress)
        case TransitionType.SLIDE:
            return TransitionState(
                True,
                progress,
                next_opacity=1.0,
                next_offset_x=round((1.0 - progress) * canvas_width),
            )
        case TransitionType.ZOOM:
            return TransitionState(
                True,
                progress,
                next_opacity=progress,
                next_scale=1.0 + (1.0 - progress) * zoom_max,
            )
    raise ValueError(f"Unhandled transition type: {transition_type}")
