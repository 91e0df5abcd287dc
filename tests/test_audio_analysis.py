"""Tests for audio decoding and the per-frame frequency envelope."""

import numpy as np
import pytest

from lyricframe.exceptions import AudioDecodeError
from lyricframe.render.audio_analysis import decode_audio, extract_frequency_frames

from conftest import requires_ffmpeg, sine_wav

SAMPLE_RATE = 44100
FFT_SIZE = 256


def _sine(frequency, seconds=1.0, amplitude=0.5):
    t = np.arange(int(SAMPLE_RATE * seconds)) / SAMPLE_RATE
    return (amplitude * np.sin(2 * np.pi * frequency * t)).astype(np.float32)


class TestExtractFrequencyFrames:
    """Tests for the AnalyserNode-style envelope."""

    def test_frame_count_and_shape(self):
        frames = extract_frequency_frames(_sine(1000), SAMPLE_RATE, 1.0, 30, FFT_SIZE)
        assert len(frames) == 30
        assert all(f.shape == (128,) and f.dtype == np.uint8 for f in frames)

    def test_first_frame_silent(self):
        frames = extract_frequency_frames(_sine(1000), SAMPLE_RATE, 1.0, 30, FFT_SIZE)
        assert not frames[0].any()

    def test_partial_frame_rounds_up(self):
        frames = extract_frequency_frames(_sine(1000, 0.51), SAMPLE_RATE, 0.51, 10, FFT_SIZE)
        assert len(frames) == 6

    def test_peak_at_tone_bin(self):
        """A tone centered on bin 10 saturates that bin once smoothing settles, far bins stay low."""
        bin_hz = SAMPLE_RATE / FFT_SIZE
        frames = extract_frequency_frames(_sine(10 * bin_hz), SAMPLE_RATE, 1.0, 30, FFT_SIZE)
        for frame in frames[5:]:
            assert frame[10] == 255
            assert frame[80:].max() < 255

    def test_tone_fades_in_over_several_frames(self):
        bin_hz = SAMPLE_RATE / FFT_SIZE
        frames = extract_frequency_frames(_sine(10 * bin_hz), SAMPLE_RATE, 1.0, 30, FFT_SIZE)
        assert 0 < frames[1][10] < 255

    def test_step_to_silence_decays(self):
        """After the tone stops the bin falls gradually instead of dropping to zero."""
        bin_hz = SAMPLE_RATE / FFT_SIZE
        samples = np.concatenate([_sine(10 * bin_hz, 0.5), np.zeros(SAMPLE_RATE, dtype=np.float32)])
        frames = extract_frequency_frames(samples, SAMPLE_RATE, 1.5, 30, FFT_SIZE)
        assert len(frames) == 45

        # Frame 16 is the first window of pure silence
        assert frames[16][10] > 200
        tail = [int(frame[10]) for frame in frames[24:]]
        assert all(later < earlier for earlier, later in zip(tail, tail[1:]))
        assert tail[-1] > 0

    def test_silence_maps_to_zero(self):
        frames = extract_frequency_frames(np.zeros(SAMPLE_RATE, dtype=np.float32), SAMPLE_RATE, 1.0, 30, FFT_SIZE)
        assert all(not f.any() for f in frames)

    def test_samples_shorter_than_duration(self):
        """Frames past the end of the samples reuse the last full window."""
        frames = extract_frequency_frames(_sine(2000, 0.5), SAMPLE_RATE, 1.0, 30, FFT_SIZE)
        assert len(frames) == 30
        assert frames[-1].any()

    def test_zero_duration(self):
        assert extract_frequency_frames(np.zeros(10, dtype=np.float32), SAMPLE_RATE, 0.0, 30) == []


class TestDecodeAudio:
    """Tests for ffmpeg-backed decoding."""

    @pytest.mark.asyncio
    async def test_empty_input(self):
        with pytest.raises(AudioDecodeError):
            await decode_audio(b"", "song.mp3")

    @requires_ffmpeg
    @pytest.mark.asyncio
    async def test_decode_wav(self):
        decoded = await decode_audio(sine_wav(1.0), "tone.wav")
        assert decoded.duration == pytest.approx(1.0, abs=0.05)
        assert decoded.sample_rate == 44100
        assert abs(len(decoded.samples) - 44100) < 2048
        assert decoded.filename == "tone.wav"

    @requires_ffmpeg
    @pytest.mark.asyncio
    async def test_garbage_input(self):
        with pytest.raises(AudioDecodeError):
            await decode_audio(b"this is not audio at all", "song.mp3")
