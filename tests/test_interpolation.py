"""Tests for the shared interpolation helpers."""

import pytest

from lyricframe.utils.interpolation import clamp, progress_between, pulse


class TestProgressBetween:
    """Tests for clamped progress through a time window."""

    def test_midpoint(self):
        assert progress_between(1.5, 1.0, 2.0) == pytest.approx(0.5)

    def test_clamped_outside_window(self):
        assert progress_between(0.0, 1.0, 2.0) == 0.0
        assert progress_between(3.0, 1.0, 2.0) == 1.0

    def test_zero_span_is_a_step(self):
        """A zero-length window jumps from 0 to 1 at its start."""
        assert progress_between(0.99, 1.0, 1.0) == 0.0
        assert progress_between(1.0, 1.0, 1.0) == 1.0


class TestPulse:
    """Tests for the emphasis bump."""

    def test_pulse_peaks_in_the_middle(self):
        assert pulse(0.0) == pytest.approx(0.0)
        assert pulse(0.5) == pytest.approx(1.0)
        assert pulse(1.0) == pytest.approx(0.0, abs=1e-9)

    def test_pulse_clamps_input(self):
        assert pulse(-1.0) == pytest.approx(0.0)
        assert pulse(2.0) == pytest.approx(0.0, abs=1e-9)

    def test_clamp(self):
        assert clamp(1.5) == 1.0
        assert clamp(-2, -1, 1) == -1
