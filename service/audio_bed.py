"""Low-level sine tone used as the placeholder soundtrack."""

from __future__ import annotations

import math

import numpy as np

from domain.short_video import (
    INVALID_CONFIG_CODE,
    PIPELINE_STATE_CODE,
    RenderPipelineError,
    ShortVideoValidationError,
)

PCM_MAX = 32767
PCM_DTYPE = "<i2"
BYTES_PER_SAMPLE = 2


class AudioBed:
    """Mono 16-bit sine generator rendered on demand up to a point in time.

    Samples are a function of their absolute index, so consecutive chunks
    join without phase discontinuity.
    """

    def __init__(self, frequency_hz: float, gain: float, sample_rate: int) -> None:
        if frequency_hz <= 0 or sample_rate <= 0:
            raise ShortVideoValidationError(
                INVALID_CONFIG_CODE, "audio frequency and sample rate must be positive"
            )
        if not 0.0 <= gain <= 1.0:
            raise ShortVideoValidationError(
                INVALID_CONFIG_CODE, "audio gain must be between 0 and 1"
            )
        self.frequency_hz = frequency_hz
        self.gain = gain
        self.sample_rate = sample_rate
        self._cursor = 0
        self._running = False
        self._stopped = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def samples_rendered(self) -> int:
        return self._cursor

    def start(self) -> None:
        if self._running or self._stopped:
            raise RenderPipelineError(
                PIPELINE_STATE_CODE, "audio bed can only be started once"
            )
        self._running = True

    def sample_index_at(self, elapsed_ms: float) -> int:
        return int(math.floor(max(0.0, elapsed_ms) * self.sample_rate / 1000.0))

    def render_until(self, elapsed_ms: float) -> bytes:
        """Render PCM for every sample not yet emitted before elapsed_ms."""
        if not self._running:
            raise RenderPipelineError(
                PIPELINE_STATE_CODE, "audio bed is not running"
            )
        end_index = self.sample_index_at(elapsed_ms)
        if end_index <= self._cursor:
            return b""
        indices = np.arange(self._cursor, end_index, dtype=np.float64)
        samples = self.gain * np.sin(
            2.0 * np.pi * self.frequency_hz * indices / self.sample_rate
        )
        self._cursor = end_index
        return np.rint(samples * PCM_MAX).astype(PCM_DTYPE).tobytes()

    def stop(self, elapsed_ms: float) -> bytes:
        """Render the remaining tail and stop the source."""
        if not self._running:
            return b""
        tail = self.render_until(elapsed_ms)
        self._running = False
        self._stopped = True
        return tail

    def release(self) -> None:
        """Stop without rendering a tail."""
        self._running = False
        self._stopped = True
