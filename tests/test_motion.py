"""Tests for Ken Burns motion and slide transitions."""

import pytest

from lyricframe.render.motion import (
    DEFAULT_SLIDE_DURATION,
    NO_TRANSITION,
    SlideWindow,
    compute_transition,
    cover_fit,
    ken_burns_scale,
    select_asset_index,
    slide_progress,
    slide_window,
)
from lyricframe.render.timeline import TransitionType


class TestAssetSelection:
    """Tests for picking the current asset."""

    def test_last_started_asset_wins(self):
        assert select_asset_index([0.0, 10.0, 20.0], 15.0) == 1
        assert select_asset_index([0.0, 10.0, 20.0], 10.0) == 1

    def test_first_asset_before_start(self):
        assert select_asset_index([2.0, 10.0], 0.5) == 0

    def test_no_assets(self):
        assert select_asset_index([], 1.0) is None
        assert slide_window([], 1.0) is None

    def test_window_with_next(self):
        window = slide_window([0.0, 10.0], 3.0)
        assert window == SlideWindow(0, 1, 0.0, 10.0)

    def test_last_slide_ends_at_timeline_end(self):
        window = slide_window([0.0, 10.0], 12.0, timeline_end=25.0)
        assert window.next_index is None
        assert window.end == 25.0

    def test_last_slide_default_duration(self):
        window = slide_window([0.0, 10.0], 12.0)
        assert window.end == 10.0 + DEFAULT_SLIDE_DURATION


class TestKenBurns:
    """Tests for the slow zoom."""

    def test_scale_range(self):
        assert ken_burns_scale(0.0, 0.15) == 1.0
        assert ken_burns_scale(1.0, 0.15) == pytest.approx(1.15)
        assert ken_burns_scale(2.0, 0.15) == pytest.approx(1.15)

    def test_progress_across_window(self):
        window = SlideWindow(0, 1, 0.0, 10.0)
        assert slide_progress(window, 2.5) == pytest.approx(0.25)

    def test_cover_fit_wider_source(self):
        fit = cover_fit(400, 100, 1920, 1080)
        assert fit.height == 1080
        assert fit.width == 4320
        assert fit.x == (1920 - 4320) // 2
        assert fit.y == 0

    def test_cover_fit_scaled(self):
        fit = cover_fit(1920, 1080, 1920, 1080, scale=1.1)
        assert (fit.width, fit.height) == (2112, 1188)
        assert fit.x < 0 and fit.y < 0


class TestTransitions:
    """Tests for transition blending into the next slide."""

    window = SlideWindow(0, 1, 0.0, 10.0)

    def _state(self, time, transition_type, duration=1.5):
        return compute_transition(self.window, time, transition_type, duration, 1920, 0.15)

    def test_inactive_before_window(self):
        assert self._state(8.0, TransitionType.DISSOLVE) is NO_TRANSITION

    def test_dissolve_progress(self):
        """0.2s before the cut of a 1.5s dissolve is ~86.7% through."""
        state = self._state(9.8, TransitionType.DISSOLVE)
        assert state.active
        assert state.progress == pytest.approx(1 - 0.2 / 1.5)
        assert state.next_opacity == pytest.approx(state.progress)

    def test_hard_cut(self):
        assert self._state(9.8, TransitionType.NONE) is NO_TRANSITION

    def test_slide_offsets_next_asset(self):
        state = self._state(9.25, TransitionType.SLIDE)
        assert state.next_opacity == 1.0
        assert state.next_offset_x == round(0.5 * 1920)

    def test_zoom_settles_to_unit_scale(self):
        early = self._state(8.6, TransitionType.ZOOM)
        late = self._state(9.99, TransitionType.ZOOM)
        assert early.next_scale > late.next_scale >= 1.0

    def test_last_slide_has_no_transition(self):
        window = SlideWindow(1, None, 10.0, 20.0)
        state = compute_transition(window, 19.9, TransitionType.DISSOLVE, 1.5, 1920, 0.15)
        assert state is NO_TRANSITION

    def test_zero_duration_disables(self):
        assert self._state(9.9, TransitionType.FADE, duration=0) is NO_TRANSITION
