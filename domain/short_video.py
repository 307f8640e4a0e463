"""Domain types and parsing for render_short_video."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any, Mapping, Sequence, Tuple

INVALID_CONFIG_CODE = "render_short_video.input.invalid_config"
INVALID_SCRIPT_CODE = "render_short_video.input.invalid_script"
EMPTY_LINES_CODE = "render_short_video.input.empty_lines"
INVALID_CAPTION_CODE = "render_short_video.input.invalid_caption"
INPUT_FILE_CODE = "render_short_video.input.file_error"
FONT_DIR_CODE = "render_short_video.input.fonts_missing"
FONT_LOAD_CODE = "render_short_video.input.fonts_unloadable"
PIPELINE_STATE_CODE = "render_short_video.pipeline.invalid_state"

MIN_DURATION_SECONDS = 15.0
MAX_DURATION_SECONDS = 60.0
MAX_VISUALS = 3
DEFAULT_WIDTH = 720
DEFAULT_HEIGHT = 1280
DEFAULT_FPS = 30
DEFAULT_TONE_HZ = 220.0
DEFAULT_TONE_GAIN = 0.02
DEFAULT_SAMPLE_RATE = 48000
DEFAULT_IMAGE_TIMEOUT_SECONDS = 10.0


class ShortVideoValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class RenderPipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class CaptionLine:
    """Caption text bound to a [start, end) interval in seconds."""

    text: str
    start: float
    end: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.start) or not math.isfinite(self.end):
            raise ShortVideoValidationError(
                INVALID_CAPTION_CODE, "caption times must be finite"
            )
        if self.end <= self.start:
            raise ShortVideoValidationError(
                INVALID_CAPTION_CODE,
                f"caption end must be after start: {self.text!r}",
            )


@dataclass(frozen=True)
class Keywords:
    """SEO metadata attached to a script for presentation."""

    title: str
    tags: Tuple[str, ...]
    description: str


@dataclass(frozen=True)
class Script:
    """Timed short-video script."""

    hook: str
    lines: Tuple[CaptionLine, ...]
    cta: str
    visuals: Tuple[str, ...]
    duration_seconds: float
    keywords: Keywords | None = None

    def __post_init__(self) -> None:
        if not self.lines:
            raise ShortVideoValidationError(
                EMPTY_LINES_CODE, "script contains no caption lines"
            )
        if not math.isfinite(self.duration_seconds):
            raise ShortVideoValidationError(
                INVALID_SCRIPT_CODE, "durationSec must be finite"
            )

    @property
    def duration_ms(self) -> int:
        """Target render duration after clamping."""
        return compute_duration_ms(self.duration_seconds)

    @property
    def active_visuals(self) -> Tuple[str, ...]:
        """Visual queries used for background images."""
        return self.visuals[:MAX_VISUALS]


@dataclass(frozen=True)
class RenderConfig:
    """Validated configuration for render_short_video."""

    output_video_file: str
    thumbnail_file: str
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    fps: int = DEFAULT_FPS
    fonts_dir: str | None = None
    ffmpeg_path: str = "ffmpeg"
    tone_frequency_hz: float = DEFAULT_TONE_HZ
    tone_gain: float = DEFAULT_TONE_GAIN
    sample_rate: int = DEFAULT_SAMPLE_RATE
    image_timeout_seconds: float = DEFAULT_IMAGE_TIMEOUT_SECONDS
    pexels_api_key: str | None = None

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ShortVideoValidationError(
                INVALID_CONFIG_CODE, "width and height must be positive"
            )
        if self.width % 2 or self.height % 2:
            raise ShortVideoValidationError(
                INVALID_CONFIG_CODE, "width and height must be even"
            )
        if self.fps <= 0:
            raise ShortVideoValidationError(INVALID_CONFIG_CODE, "fps must be positive")
        if not self.output_video_file.lower().endswith(".mp4"):
            raise ShortVideoValidationError(
                INVALID_CONFIG_CODE, "output_video_file must end with .mp4"
            )
        if not self.thumbnail_file.lower().endswith(".png"):
            raise ShortVideoValidationError(
                INVALID_CONFIG_CODE, "thumbnail_file must end with .png"
            )
        if self.fonts_dir is not None and not self.fonts_dir.strip():
            raise ShortVideoValidationError(
                INVALID_CONFIG_CODE, "fonts_dir must be non-empty"
            )
        if not self.ffmpeg_path.strip():
            raise ShortVideoValidationError(
                INVALID_CONFIG_CODE, "ffmpeg_path must be non-empty"
            )
        if self.tone_frequency_hz <= 0:
            raise ShortVideoValidationError(
                INVALID_CONFIG_CODE, "tone_frequency_hz must be positive"
            )
        if not 0.0 <= self.tone_gain <= 1.0:
            raise ShortVideoValidationError(
                INVALID_CONFIG_CODE, "tone_gain must be between 0 and 1"
            )
        if self.sample_rate <= 0:
            raise ShortVideoValidationError(
                INVALID_CONFIG_CODE, "sample_rate must be positive"
            )
        if self.image_timeout_seconds <= 0:
            raise ShortVideoValidationError(
                INVALID_CONFIG_CODE, "image_timeout_seconds must be positive"
            )


def clamp_duration_seconds(duration_seconds: float) -> float:
    """Clamp a script duration into the supported range."""
    return max(MIN_DURATION_SECONDS, min(MAX_DURATION_SECONDS, duration_seconds))


def compute_duration_ms(duration_seconds: float) -> int:
    """Convert a script duration to clamped milliseconds."""
    return int(round(clamp_duration_seconds(duration_seconds) * 1000))


def select_active_caption(
    lines: Sequence[CaptionLine], elapsed_ms: float
) -> CaptionLine:
    """Return the first line covering the elapsed time, else the first line."""
    if not lines:
        raise ShortVideoValidationError(
            EMPTY_LINES_CODE, "script contains no caption lines"
        )
    seconds = elapsed_ms / 1000.0
    for line in lines:
        if line.start <= seconds < line.end:
            return line
    return lines[0]


def select_segment_index(elapsed_ms: float, duration_ms: float, image_count: int) -> int:
    """Select the background image index for the elapsed time."""
    if image_count <= 0:
        raise ShortVideoValidationError(
            INVALID_CONFIG_CODE, "image_count must be positive"
        )
    if duration_ms <= 0:
        raise ShortVideoValidationError(
            INVALID_CONFIG_CODE, "duration_ms must be positive"
        )
    segment = int(math.floor((elapsed_ms / duration_ms) * image_count))
    return max(0, min(image_count - 1, segment))


def _require_text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise ShortVideoValidationError(
            INVALID_SCRIPT_CODE, f"script field {key!r} must be a string"
        )
    return value


def _require_number(payload: Mapping[str, Any], key: str, label: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ShortVideoValidationError(
            INVALID_SCRIPT_CODE, f"{label} field {key!r} must be a number"
        )
    return float(value)


def _optional_text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    return "" if value is None else str(value)


def parse_caption_line(payload: Any) -> CaptionLine:
    """Parse a caption line mapping."""
    if not isinstance(payload, Mapping):
        raise ShortVideoValidationError(
            INVALID_CAPTION_CODE, "caption line must be an object"
        )
    text_value = payload.get("text")
    if not isinstance(text_value, str):
        raise ShortVideoValidationError(
            INVALID_CAPTION_CODE, "caption field 'text' must be a string"
        )
    return CaptionLine(
        text=text_value,
        start=_require_number(payload, "start", "caption"),
        end=_require_number(payload, "end", "caption"),
    )


def parse_keywords(payload: Any) -> Keywords | None:
    """Parse optional keyword metadata."""
    if payload is None:
        return None
    if not isinstance(payload, Mapping):
        raise ShortVideoValidationError(
            INVALID_SCRIPT_CODE, "keywords must be an object"
        )
    tags = payload.get("tags")
    if tags is None:
        tags = []
    if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
        raise ShortVideoValidationError(
            INVALID_SCRIPT_CODE, "keywords.tags must be a list of strings"
        )
    return Keywords(
        title=_optional_text(payload, "title"),
        tags=tuple(tags),
        description=_optional_text(payload, "description"),
    )


def parse_script(payload: Any) -> Script:
    """Parse a script mapping into a validated Script."""
    if not isinstance(payload, Mapping):
        raise ShortVideoValidationError(INVALID_SCRIPT_CODE, "script must be an object")
    raw_lines = payload.get("lines")
    if not isinstance(raw_lines, list):
        raise ShortVideoValidationError(
            INVALID_SCRIPT_CODE, "script field 'lines' must be a list"
        )
    raw_visuals = payload.get("visuals", [])
    if not isinstance(raw_visuals, list) or not all(
        isinstance(query, str) for query in raw_visuals
    ):
        raise ShortVideoValidationError(
            INVALID_SCRIPT_CODE, "script field 'visuals' must be a list of strings"
        )
    return Script(
        hook=_require_text(payload, "hook"),
        lines=tuple(parse_caption_line(line) for line in raw_lines),
        cta=_require_text(payload, "cta"),
        visuals=tuple(raw_visuals),
        duration_seconds=_require_number(payload, "durationSec", "script"),
        keywords=parse_keywords(payload.get("keywords")),
    )


def parse_scripts_payload(payload: Any) -> Tuple[Script, ...]:
    """Parse a single script, a list of scripts, or an {"items": [...]} wrapper."""
    if isinstance(payload, Mapping) and "items" in payload:
        payload = payload["items"]
    if isinstance(payload, list):
        if not payload:
            raise ShortVideoValidationError(
                INVALID_SCRIPT_CODE, "script input contains no scripts"
            )
        return tuple(parse_script(item) for item in payload)
    return (parse_script(payload),)


def script_to_payload(script: Script) -> dict[str, Any]:
    """Serialize a script back to its JSON shape."""
    payload: dict[str, Any] = {
        "hook": script.hook,
        "lines": [
            {"text": line.text, "start": line.start, "end": line.end}
            for line in script.lines
        ],
        "cta": script.cta,
        "visuals": list(script.visuals),
        "durationSec": script.duration_seconds,
    }
    if script.keywords is not None:
        payload["keywords"] = {
            "title": script.keywords.title,
            "tags": list(script.keywords.tags),
            "description": script.keywords.description,
        }
    return payload
