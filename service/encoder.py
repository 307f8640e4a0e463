"""Incremental ffmpeg encoder sink that muxes video and audio into one MP4."""

from __future__ import annotations

import logging
import math
import os
import shutil
import subprocess
import tempfile
import wave
from typing import Sequence

from PIL import Image

from domain.short_video import RenderConfig, RenderPipelineError

FFMPEG_NOT_FOUND_CODE = "render_short_video.ffmpeg.not_found"
FFMPEG_EXEC_CODE = "render_short_video.ffmpeg.exec_error"
FFMPEG_PROCESS_CODE = "render_short_video.ffmpeg.process_failed"
FFMPEG_MUX_CODE = "render_short_video.ffmpeg.mux_failed"
ENCODER_WRITE_CODE = "render_short_video.encoder.write_failed"
ENCODER_EMPTY_CODE = "render_short_video.encoder.no_frames"
ENCODER_CLOSED_CODE = "render_short_video.encoder.closed"
H264_CODEC = "libx264"
H264_PIXEL_FORMAT = "yuv420p"
H264_CRF = "20"
H264_PRESET = "veryfast"
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "192k"
AUDIO_PAD_FILTER = "apad"
AUDIO_CHANNELS = 1
AUDIO_SAMPLE_WIDTH = 2

LOGGER = logging.getLogger("render_short_video")


def ensure_ffmpeg_available(ffmpeg_path: str) -> str:
    """Ensure ffmpeg is installed and executable, returning its resolved path."""
    resolved_path = shutil.which(ffmpeg_path)
    if not resolved_path:
        raise RenderPipelineError(FFMPEG_NOT_FOUND_CODE, f"{ffmpeg_path} not on PATH")
    try:
        subprocess.run(
            [resolved_path, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except Exception as exc:
        raise RenderPipelineError(
            FFMPEG_EXEC_CODE, "ffmpeg exists but could not be executed"
        ) from exc
    return resolved_path


def build_video_encoder_command(
    ffmpeg_path: str, config: RenderConfig, video_path: str
) -> list[str]:
    """Build the ffmpeg command for the raw RGBA frame stream."""
    return [
        ffmpeg_path,
        "-y",
        "-loglevel",
        "error",
        "-f",
        "rawvideo",
        "-pix_fmt",
        "rgba",
        "-s",
        f"{config.width}x{config.height}",
        "-r",
        str(config.fps),
        "-i",
        "-",
        "-an",
        "-c:v",
        H264_CODEC,
        "-crf",
        H264_CRF,
        "-preset",
        H264_PRESET,
        "-pix_fmt",
        H264_PIXEL_FORMAT,
        video_path,
    ]


def build_mux_command(
    ffmpeg_path: str, video_path: str, audio_path: str, output_path: str
) -> list[str]:
    """Build the ffmpeg command combining the video and audio tracks."""
    return [
        ffmpeg_path,
        "-y",
        "-loglevel",
        "error",
        "-i",
        video_path,
        "-i",
        audio_path,
        "-map",
        "0:v:0",
        "-map",
        "1:a:0",
        "-c:v",
        "copy",
        "-c:a",
        AUDIO_CODEC,
        "-b:a",
        AUDIO_BITRATE,
        "-af",
        AUDIO_PAD_FILTER,
        "-shortest",
        "-movflags",
        "+faststart",
        output_path,
    ]


def frame_slot_at(elapsed_ms: float, fps: int) -> int:
    """Index of the frame slot covering the elapsed time."""
    return int(math.floor(max(0.0, elapsed_ms) * fps / 1000.0))


def total_frames_for(elapsed_ms: float, fps: int) -> int:
    """Frame count of a stream ending at the elapsed time."""
    return max(1, int(round(elapsed_ms * fps / 1000.0)))


def run_ffmpeg(command: Sequence[str], code: str) -> None:
    """Run a one-shot ffmpeg command and raise with its stderr on failure."""
    result = subprocess.run(
        list(command),
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        check=False,
    )
    if result.returncode != 0:
        stderr_text = result.stderr.decode("utf-8", errors="replace").strip()
        raise RenderPipelineError(
            code,
            f"ffmpeg failed with exit code {result.returncode}. {stderr_text}",
        )


class FfmpegEncoderSink:
    """Accumulates frames and PCM audio, then produces one MP4 container.

    Video frames stream into a live ffmpeg process; audio is buffered in a
    WAV file and muxed with the encoded video on finalize.
    """

    def __init__(self, config: RenderConfig) -> None:
        self._config = config
        self._ffmpeg_path = ensure_ffmpeg_available(config.ffmpeg_path)
        self._work_dir = tempfile.mkdtemp(prefix="render_short_video-")
        self._video_path = os.path.join(self._work_dir, "video.mp4")
        self._audio_path = os.path.join(self._work_dir, "audio.wav")
        self._output_path = os.path.join(self._work_dir, "short.mp4")
        self._frames_written = 0
        self._last_frame: bytes | None = None
        self._closed = False
        self._wav_file: wave.Wave_write | None = None
        self._process: subprocess.Popen[bytes] | None = None
        try:
            self._wav_file = wave.open(self._audio_path, "wb")
            self._wav_file.setnchannels(AUDIO_CHANNELS)
            self._wav_file.setsampwidth(AUDIO_SAMPLE_WIDTH)
            self._wav_file.setframerate(config.sample_rate)
            self._process = subprocess.Popen(
                build_video_encoder_command(
                    self._ffmpeg_path, config, self._video_path
                ),
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            self.abort()
            raise RenderPipelineError(
                FFMPEG_PROCESS_CODE, f"failed to start encoder: {exc}"
            ) from exc
        if not self._process.stdin:
            self.abort()
            raise RenderPipelineError(FFMPEG_PROCESS_CODE, "ffmpeg stdin unavailable")

    @property
    def frames_written(self) -> int:
        return self._frames_written

    def _write_frame_bytes(self, frame_bytes: bytes) -> None:
        if self._process is None or self._process.stdin is None:
            raise RenderPipelineError(ENCODER_CLOSED_CODE, "encoder is closed")
        try:
            self._process.stdin.write(frame_bytes)
        except (BrokenPipeError, OSError) as exc:
            raise RenderPipelineError(
                ENCODER_WRITE_CODE, f"encoder rejected frame {self._frames_written}"
            ) from exc
        self._frames_written += 1

    def write_video_frame(self, surface: Image.Image, elapsed_ms: float) -> None:
        """Fill every frame slot up to the elapsed time with the surface."""
        if self._closed:
            raise RenderPipelineError(ENCODER_CLOSED_CODE, "encoder is closed")
        target_slot = frame_slot_at(elapsed_ms, self._config.fps)
        if target_slot < self._frames_written:
            return
        frame_bytes = surface.tobytes()
        self._last_frame = frame_bytes
        while self._frames_written <= target_slot:
            self._write_frame_bytes(frame_bytes)

    def write_audio(self, pcm_bytes: bytes) -> None:
        if self._closed or self._wav_file is None:
            raise RenderPipelineError(ENCODER_CLOSED_CODE, "encoder is closed")
        if pcm_bytes:
            self._wav_file.writeframes(pcm_bytes)

    def finalize(self, elapsed_ms: float) -> bytes:
        """Close both tracks, mux them and return the container bytes."""
        if self._closed:
            raise RenderPipelineError(ENCODER_CLOSED_CODE, "encoder is closed")
        try:
            if self._last_frame is None:
                raise RenderPipelineError(ENCODER_EMPTY_CODE, "no frames were rendered")
            total_frames = total_frames_for(elapsed_ms, self._config.fps)
            while self._frames_written < total_frames:
                self._write_frame_bytes(self._last_frame)

            process = self._process
            if process is None or process.stdin is None:
                raise RenderPipelineError(ENCODER_CLOSED_CODE, "encoder is closed")
            try:
                process.stdin.close()
            except OSError as exc:
                raise RenderPipelineError(
                    ENCODER_WRITE_CODE, "encoder rejected buffered frames"
                ) from exc
            stderr_bytes = process.stderr.read() if process.stderr else b""
            return_code = process.wait()
            if return_code != 0:
                stderr_text = stderr_bytes.decode("utf-8", errors="replace").strip()
                raise RenderPipelineError(
                    FFMPEG_PROCESS_CODE,
                    f"ffmpeg failed with exit code {return_code}. {stderr_text}",
                )
            if self._wav_file is not None:
                self._wav_file.close()
                self._wav_file = None

            run_ffmpeg(
                build_mux_command(
                    self._ffmpeg_path,
                    self._video_path,
                    self._audio_path,
                    self._output_path,
                ),
                FFMPEG_MUX_CODE,
            )
            with open(self._output_path, "rb") as file_handle:
                container_bytes = file_handle.read()
            LOGGER.debug(
                "render_short_video.encoder.finalized: %d frames, %d bytes",
                self._frames_written,
                len(container_bytes),
            )
            return container_bytes
        finally:
            self.abort()

    def abort(self) -> None:
        """Release the encoder process, audio buffer and work directory."""
        self._closed = True
        process = self._process
        if process is not None:
            try:
                if process.stdin and not process.stdin.closed:
                    process.stdin.close()
            except OSError:
                pass
            if process.poll() is None:
                process.kill()
                process.wait()
            if process.stderr and not process.stderr.closed:
                process.stderr.close()
        if self._wav_file is not None:
            try:
                self._wav_file.close()
            except (OSError, wave.Error):
                pass
            self._wav_file = None
        shutil.rmtree(self._work_dir, ignore_errors=True)
