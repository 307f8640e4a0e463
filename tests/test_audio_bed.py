"""Unit tests for the sine audio bed."""

from __future__ import annotations

import numpy as np
import pytest

from domain.short_video import (
    PIPELINE_STATE_CODE,
    RenderPipelineError,
    ShortVideoValidationError,
)
from service.audio_bed import AudioBed

SAMPLE_RATE = 8000


def test_render_until_emits_samples_for_elapsed_time() -> None:
    """Emit one 16-bit sample per tick of the sample clock."""
    bed = AudioBed(220.0, 0.02, SAMPLE_RATE)
    bed.start()
    pcm = bed.render_until(1000)
    assert len(pcm) == SAMPLE_RATE * 2
    assert bed.samples_rendered == SAMPLE_RATE
    assert bed.render_until(1000) == b""
    assert bed.render_until(500) == b""


def test_chunks_join_without_discontinuity() -> None:
    """Chunked rendering matches a single render of the same span."""
    chunked = AudioBed(220.0, 0.02, SAMPLE_RATE)
    chunked.start()
    pieces = chunked.render_until(333) + chunked.render_until(700) + chunked.render_until(1000)

    whole = AudioBed(220.0, 0.02, SAMPLE_RATE)
    whole.start()
    assert pieces == whole.render_until(1000)


def test_gain_bounds_amplitude() -> None:
    """Keep the tone at the configured low level."""
    bed = AudioBed(220.0, 0.02, SAMPLE_RATE)
    bed.start()
    samples = np.frombuffer(bed.render_until(1000), dtype="<i2")
    peak = int(np.abs(samples).max())
    assert 600 <= peak <= int(round(0.02 * 32767))


def test_tone_frequency() -> None:
    """Produce the configured frequency."""
    bed = AudioBed(220.0, 0.5, SAMPLE_RATE)
    bed.start()
    samples = np.frombuffer(bed.render_until(1000), dtype="<i2").astype(np.float64)
    spectrum = np.abs(np.fft.rfft(samples))
    frequencies = np.fft.rfftfreq(len(samples), d=1.0 / SAMPLE_RATE)
    assert frequencies[int(np.argmax(spectrum))] == pytest.approx(220.0, abs=1.0)


def test_stop_renders_tail_and_ends_source() -> None:
    """Render the remaining samples on stop and refuse further rendering."""
    bed = AudioBed(220.0, 0.02, SAMPLE_RATE)
    bed.start()
    bed.render_until(250)
    tail = bed.stop(1000)
    assert len(tail) == (SAMPLE_RATE - SAMPLE_RATE // 4) * 2
    assert not bed.is_running
    assert bed.stop(2000) == b""
    with pytest.raises(RenderPipelineError) as excinfo:
        bed.render_until(1500)
    assert excinfo.value.code == PIPELINE_STATE_CODE


def test_lifecycle_errors() -> None:
    """Reject rendering before start and restarting after stop."""
    bed = AudioBed(220.0, 0.02, SAMPLE_RATE)
    with pytest.raises(RenderPipelineError):
        bed.render_until(10)
    bed.start()
    with pytest.raises(RenderPipelineError):
        bed.start()
    bed.release()
    with pytest.raises(RenderPipelineError):
        bed.start()


def test_invalid_parameters() -> None:
    """Reject non-positive frequency and out-of-range gain."""
    with pytest.raises(ShortVideoValidationError):
        AudioBed(0.0, 0.02, SAMPLE_RATE)
    with pytest.raises(ShortVideoValidationError):
        AudioBed(220.0, 1.5, SAMPLE_RATE)
