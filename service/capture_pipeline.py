"""Capture and mux state machine driving one short-video render."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Callable

from PIL import Image

from domain.short_video import (
    INVALID_SCRIPT_CODE,
    PIPELINE_STATE_CODE,
    RenderConfig,
    RenderPipelineError,
    Script,
    ShortVideoValidationError,
)
from service.audio_bed import AudioBed
from service.background_images import ImageLoader, load_background_images
from service.encoder import FfmpegEncoderSink
from service.frame_compositor import (
    FrameAssets,
    FrameFonts,
    build_frame_assets,
    compose_frame,
    extract_thumbnail,
    load_frame_fonts,
    new_surface,
)
from service.scheduling import FrameScheduler, MonotonicClock

FRAME_RENDER_CODE = "render_short_video.pipeline.frame_failed"
PRIMING_CODE = "render_short_video.pipeline.priming_failed"

LOGGER = logging.getLogger("render_short_video")

EncoderFactory = Callable[[RenderConfig], FfmpegEncoderSink]


class PipelineState(str, Enum):
    """Lifecycle states of a capture pipeline."""

    IDLE = "idle"
    PRIMING = "priming"
    RUNNING = "running"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class EncodedArtifact:
    """Finalized container plus a PNG still of the last frame."""

    video_bytes: bytes
    thumbnail_png: bytes
    duration_ms: float
    frames_rendered: int


@dataclass
class RenderSession:
    """Mutable per-render resources owned by the pipeline."""

    script: Script
    origin_ms: float
    duration_ms: int
    assets: FrameAssets
    surface: Image.Image
    encoder: FfmpegEncoderSink
    audio_bed: AudioBed
    frames_rendered: int = 0


class CapturePipeline:
    """Render one script: Idle -> Priming -> Running -> Finalizing -> Complete.

    Any encoder or asset-pipeline error moves the pipeline to Failed,
    releases the session resources and propagates. Image load failures
    are absorbed by placeholder substitution during priming.
    """

    def __init__(
        self,
        config: RenderConfig,
        clock: MonotonicClock | None = None,
        scheduler: FrameScheduler | None = None,
        image_loader: ImageLoader | None = None,
        encoder_factory: EncoderFactory = FfmpegEncoderSink,
        fonts: FrameFonts | None = None,
    ) -> None:
        self.config = config
        self._clock = clock if clock is not None else MonotonicClock()
        self._scheduler = (
            scheduler if scheduler is not None else FrameScheduler(config.fps, self._clock)
        )
        self._image_loader = image_loader
        self._encoder_factory = encoder_factory
        self._fonts = fonts
        self.state = PipelineState.IDLE
        self.session: RenderSession | None = None
        self.artifact: EncodedArtifact | None = None
        self.failure_code: str | None = None
        self.failure_reason: str | None = None

    def _transition(self, state: PipelineState) -> None:
        LOGGER.debug(
            "render_short_video.pipeline.state: %s -> %s",
            self.state.value,
            state.value,
        )
        self.state = state

    def _require_state(self, expected: PipelineState) -> None:
        if self.state != expected:
            raise RenderPipelineError(
                PIPELINE_STATE_CODE,
                f"pipeline is {self.state.value}, expected {expected.value}",
            )

    def start(self, script: Script) -> None:
        """Prime assets, encoder and audio, then schedule the first tick."""
        self._require_state(PipelineState.IDLE)
        if not isinstance(script, Script):
            raise ShortVideoValidationError(
                INVALID_SCRIPT_CODE, "start requires a parsed Script"
            )
        self._transition(PipelineState.PRIMING)

        encoder: FfmpegEncoderSink | None = None
        try:
            fonts = self._fonts if self._fonts is not None else load_frame_fonts(
                self.config.fonts_dir
            )
            images = load_background_images(
                script.active_visuals,
                self._image_loader,
                self.config.width,
                self.config.height,
                fonts.label,
            )
            assets = build_frame_assets(
                self.config.width, self.config.height, images, fonts
            )
            audio_bed = AudioBed(
                self.config.tone_frequency_hz,
                self.config.tone_gain,
                self.config.sample_rate,
            )
            encoder = self._encoder_factory(self.config)
            audio_bed.start()
        except RenderPipelineError as exc:
            if encoder is not None:
                encoder.abort()
            self._fail(exc)
            raise
        except ShortVideoValidationError as exc:
            if encoder is not None:
                encoder.abort()
            error = RenderPipelineError(PRIMING_CODE, f"{exc.code}: {exc}")
            self._fail(error)
            raise error from exc
        except Exception as exc:
            if encoder is not None:
                encoder.abort()
            error = RenderPipelineError(PRIMING_CODE, str(exc).strip())
            self._fail(error)
            raise error from exc

        self.session = RenderSession(
            script=script,
            origin_ms=self._clock.now_ms(),
            duration_ms=script.duration_ms,
            assets=assets,
            surface=new_surface(self.config.width, self.config.height),
            encoder=encoder,
            audio_bed=audio_bed,
        )
        self._transition(PipelineState.RUNNING)
        LOGGER.info(
            "render_short_video.render.started: %d ms, %d background image(s)",
            self.session.duration_ms,
            len(assets.images),
        )
        self._scheduler.schedule(self._tick)

    def _render_frame(self, session: RenderSession, elapsed_ms: float) -> None:
        compose_frame(
            session.surface,
            session.assets,
            session.script,
            elapsed_ms,
            session.duration_ms,
        )
        session.encoder.write_video_frame(session.surface, elapsed_ms)
        session.encoder.write_audio(session.audio_bed.render_until(elapsed_ms))
        session.frames_rendered += 1

    def _guarded(self, action: Callable[[], None]) -> None:
        try:
            action()
        except RenderPipelineError as exc:
            self._fail(exc)
            raise
        except Exception as exc:
            error = RenderPipelineError(FRAME_RENDER_CODE, str(exc).strip())
            self._fail(error)
            raise error from exc

    def _tick(self) -> None:
        session = self.session
        if self.state != PipelineState.RUNNING or session is None:
            return
        elapsed_ms = self._clock.now_ms() - session.origin_ms
        if elapsed_ms >= session.duration_ms:
            self._finalize(session, float(session.duration_ms))
            return
        self._guarded(lambda: self._render_frame(session, elapsed_ms))
        self._scheduler.schedule(self._tick)

    def stop(self) -> EncodedArtifact:
        """Cancel a running render; the container is still finalized."""
        if self.state == PipelineState.COMPLETE and self.artifact is not None:
            return self.artifact
        self._require_state(PipelineState.RUNNING)
        session = self.session
        if session is None:
            raise RenderPipelineError(PIPELINE_STATE_CODE, "no active render session")
        elapsed_ms = min(
            max(0.0, self._clock.now_ms() - session.origin_ms),
            float(session.duration_ms),
        )
        LOGGER.info("render_short_video.render.stopped: at %.0f ms", elapsed_ms)
        self._finalize(session, elapsed_ms)
        if self.artifact is None:
            raise RenderPipelineError(PIPELINE_STATE_CODE, "render produced no artifact")
        return self.artifact

    def _finalize(self, session: RenderSession, end_ms: float) -> None:
        self._transition(PipelineState.FINALIZING)

        def flush() -> None:
            if session.frames_rendered == 0:
                self._render_frame(
                    session, max(0.0, min(end_ms, session.duration_ms - 1.0))
                )
            session.encoder.write_audio(session.audio_bed.stop(end_ms))
            video_bytes = session.encoder.finalize(end_ms)
            self.artifact = EncodedArtifact(
                video_bytes=video_bytes,
                thumbnail_png=extract_thumbnail(session.surface),
                duration_ms=end_ms,
                frames_rendered=session.frames_rendered,
            )

        self._guarded(flush)
        self._release(session)
        self._transition(PipelineState.COMPLETE)
        LOGGER.info(
            "render_short_video.render.complete: %d frames in %.0f ms, %d bytes",
            session.frames_rendered,
            end_ms,
            len(self.artifact.video_bytes) if self.artifact else 0,
        )

    def _release(self, session: RenderSession) -> None:
        session.audio_bed.release()
        session.encoder.abort()
        self.session = None

    def _fail(self, error: RenderPipelineError) -> None:
        self.failure_code = error.code
        self.failure_reason = str(error).strip()
        self.artifact = None
        if self.session is not None:
            self._release(self.session)
        self._transition(PipelineState.FAILED)

    def run(self, script: Script) -> EncodedArtifact:
        """Start a render and drive the scheduler until it completes."""
        self.start(script)
        try:
            self._scheduler.run()
        except KeyboardInterrupt:
            if self.state == PipelineState.RUNNING:
                return self.stop()
            raise
        if self.state != PipelineState.COMPLETE or self.artifact is None:
            raise RenderPipelineError(
                PIPELINE_STATE_CODE,
                f"render ended in state {self.state.value}",
            )
        return self.artifact
