"""Per-frame compositing of backgrounds, banners and timed captions."""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from io import BytesIO
import logging
import math
import os
from typing import Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from domain.short_video import (
    FONT_DIR_CODE,
    FONT_LOAD_CODE,
    INVALID_CONFIG_CODE,
    Script,
    ShortVideoValidationError,
    select_active_caption,
    select_segment_index,
)
from service.background_images import (
    ASSET_FALLBACK_CODE,
    PLACEHOLDER_LABEL,
    build_placeholder_image,
)
from service.text_layout import LaidOutLine, layout_centered, wrap_text

FRAME_BACKGROUND_RGBA = (0x0B, 0x0F, 0x14, 255)
BANNER_RGBA = (0, 0, 0, 128)
TEXT_RGBA = (0xE6, 0xED, 0xF3, 255)
CAPTION_BOX_RGBA = (0x11, 0x18, 0x27, 255)
CTA_RGBA = (0x93, 0xC5, 0xFD, 255)

IMAGE_OPACITY = 0.95
IMAGE_ALPHA_LUT = [int(round(value * IMAGE_OPACITY)) for value in range(256)]
ZOOM_BASE = 1.05
ZOOM_AMPLITUDE = 0.05
ZOOM_PERIOD_MS = 1000.0
PAN_AMPLITUDE_PX = 10.0
PAN_X_PERIOD_MS = 1200.0
PAN_Y_PERIOD_MS = 1300.0

OVERLAY_START_RATIO = 0.6
OVERLAY_MAX_ALPHA = 0.6

BANNER_MARGIN = 24
TOP_BANNER_HEIGHT = 56
BOTTOM_BAND_OFFSET = 120
BOTTOM_BAND_HEIGHT = 96
HOOK_BASELINE_Y = 60
HOOK_FONT_SIZE = 26
CAPTION_FONT_SIZE = 34
CAPTION_SIDE_MARGIN = 60
CAPTION_BASE_OFFSET = 80
CAPTION_LINE_HEIGHT = 38
CAPTION_BOX_HEIGHT = 42
CAPTION_BOX_ASCENT = 28
CAPTION_BOX_RADIUS = 8
CTA_FONT_SIZE = 22
CTA_BASELINE_OFFSET = 24
LABEL_FONT_SIZE = 32

Font = ImageFont.FreeTypeFont

LOGGER = logging.getLogger("render_short_video")


@dataclass(frozen=True)
class FrameFonts:
    """Fonts used by each text layer."""

    hook: Font
    caption: Font
    cta: Font
    label: Font


@dataclass(frozen=True)
class KenBurnsTransform:
    """Zoom and pan applied to the background at a point in time."""

    zoom: float
    offset_x: float
    offset_y: float


@dataclass(frozen=True)
class FrameAssets:
    """Resolved assets shared by every frame of a render."""

    width: int
    height: int
    images: Tuple[Image.Image, ...]
    fonts: FrameFonts
    overlay: Image.Image

    def __post_init__(self) -> None:
        if not self.images:
            raise ShortVideoValidationError(
                INVALID_CONFIG_CODE, "frame assets require at least one image"
            )


def list_font_files(fonts_dir: str) -> list[str]:
    """List font files from the fonts directory."""
    if not os.path.isdir(fonts_dir):
        raise ShortVideoValidationError(
            FONT_DIR_CODE, f"fonts directory does not exist: {fonts_dir}"
        )

    font_files: list[str] = []
    for entry_name in sorted(os.listdir(fonts_dir)):
        lower_name = entry_name.lower()
        if lower_name.endswith(".ttf") or lower_name.endswith(".otf"):
            font_files.append(os.path.join(fonts_dir, entry_name))

    if not font_files:
        raise ShortVideoValidationError(
            FONT_DIR_CODE,
            f"no font files found in {fonts_dir}",
        )
    return font_files


def select_loadable_font(font_files: Sequence[str], sample_size: int) -> str:
    """Return the first font file loadable at the sample size."""
    for font_file_path in font_files:
        try:
            ImageFont.truetype(font_file_path, size=sample_size)
        except Exception as exc:
            LOGGER.warning(
                "%s: skipped font %s (%s)",
                FONT_LOAD_CODE,
                font_file_path,
                str(exc).strip(),
            )
            continue
        return font_file_path
    raise ShortVideoValidationError(
        FONT_LOAD_CODE, "failed to load any fonts from fonts directory"
    )


def load_frame_fonts(fonts_dir: str | None) -> FrameFonts:
    """Load layer fonts from a directory, or Pillow's bundled font."""
    if fonts_dir is None:
        return FrameFonts(
            hook=ImageFont.load_default(size=HOOK_FONT_SIZE),
            caption=ImageFont.load_default(size=CAPTION_FONT_SIZE),
            cta=ImageFont.load_default(size=CTA_FONT_SIZE),
            label=ImageFont.load_default(size=LABEL_FONT_SIZE),
        )
    font_file_path = select_loadable_font(list_font_files(fonts_dir), CAPTION_FONT_SIZE)
    load = partial(ImageFont.truetype, font_file_path)
    return FrameFonts(
        hook=load(size=HOOK_FONT_SIZE),
        caption=load(size=CAPTION_FONT_SIZE),
        cta=load(size=CTA_FONT_SIZE),
        label=load(size=LABEL_FONT_SIZE),
    )


def measure_text_width(
    draw_context: ImageDraw.ImageDraw,
    text_value: str,
    font: Font,
) -> float:
    """Measure text width using font metrics."""
    if not text_value:
        return 0.0
    return float(draw_context.textlength(text_value, font=font))


def build_gradient_overlay(width: int, height: int) -> Image.Image:
    """Build the bottom legibility gradient: clear above 60%, 60% black at the bottom."""
    start_y = height * OVERLAY_START_RATIO
    span = max(height - start_y, 1.0)
    rows = np.arange(height, dtype=np.float32)
    ramp = np.clip((rows - start_y) / span, 0.0, 1.0) * OVERLAY_MAX_ALPHA * 255.0
    overlay_array = np.zeros((height, width, 4), dtype=np.uint8)
    overlay_array[:, :, 3] = np.rint(ramp).astype(np.uint8)[:, np.newaxis]
    return Image.fromarray(overlay_array, "RGBA")


def build_frame_assets(
    width: int,
    height: int,
    images: Sequence[Image.Image],
    fonts: FrameFonts,
) -> FrameAssets:
    """Resolve frame assets, substituting the placeholder for zero images."""
    resolved = tuple(
        image if image.mode == "RGBA" else image.convert("RGBA") for image in images
    )
    if not resolved:
        LOGGER.warning(
            "%s: no background images loaded, using placeholder", ASSET_FALLBACK_CODE
        )
        resolved = (
            build_placeholder_image(width, height, PLACEHOLDER_LABEL, fonts.label),
        )
    return FrameAssets(
        width=width,
        height=height,
        images=resolved,
        fonts=fonts,
        overlay=build_gradient_overlay(width, height),
    )


def compute_ken_burns(elapsed_ms: float) -> KenBurnsTransform:
    """Compute the breathing zoom and drifting pan for a point in time."""
    return KenBurnsTransform(
        zoom=ZOOM_BASE + ZOOM_AMPLITUDE * math.sin(elapsed_ms / ZOOM_PERIOD_MS),
        offset_x=PAN_AMPLITUDE_PX * math.sin(elapsed_ms / PAN_X_PERIOD_MS),
        offset_y=PAN_AMPLITUDE_PX * math.cos(elapsed_ms / PAN_Y_PERIOD_MS),
    )


def compute_image_placement(
    image_size: Tuple[int, int],
    frame_size: Tuple[int, int],
    transform: KenBurnsTransform,
) -> Tuple[float, float, float, float]:
    """Return (x, y, width, height) of the zoomed image centered on the frame."""
    scaled_width = image_size[0] * transform.zoom
    scaled_height = image_size[1] * transform.zoom
    x_value = (frame_size[0] - scaled_width) / 2.0 + transform.offset_x
    y_value = (frame_size[1] - scaled_height) / 2.0 + transform.offset_y
    return (x_value, y_value, scaled_width, scaled_height)


def draw_background_image(
    surface: Image.Image, image: Image.Image, transform: KenBurnsTransform
) -> None:
    """Draw the visible part of the zoomed image onto the surface."""
    x_value, y_value, scaled_width, scaled_height = compute_image_placement(
        image.size, surface.size, transform
    )
    left = max(0, int(math.floor(x_value)))
    top = max(0, int(math.floor(y_value)))
    right = min(surface.width, int(math.ceil(x_value + scaled_width)))
    bottom = min(surface.height, int(math.ceil(y_value + scaled_height)))
    if right <= left or bottom <= top:
        return

    zoom = transform.zoom
    source_box = (
        min(max((left - x_value) / zoom, 0.0), image.width),
        min(max((top - y_value) / zoom, 0.0), image.height),
        min(max((right - x_value) / zoom, 0.0), image.width),
        min(max((bottom - y_value) / zoom, 0.0), image.height),
    )
    visible = image.resize(
        (right - left, bottom - top),
        Image.Resampling.BILINEAR,
        box=source_box,
    )
    visible.putalpha(visible.getchannel("A").point(IMAGE_ALPHA_LUT))
    surface.alpha_composite(visible, dest=(left, top))


def layout_caption(
    draw_context: ImageDraw.ImageDraw, text_value: str, assets: FrameAssets
) -> Tuple[LaidOutLine, ...]:
    """Wrap and position the active caption in the bottom band."""
    font = assets.fonts.caption
    rows = wrap_text(
        text_value,
        assets.width - 2 * CAPTION_SIDE_MARGIN,
        lambda candidate: measure_text_width(draw_context, candidate, font),
    )
    return layout_centered(
        rows,
        center_x=assets.width / 2.0,
        base_y=assets.height - CAPTION_BASE_OFFSET,
        line_height=CAPTION_LINE_HEIGHT,
        box_width=assets.width - 2 * CAPTION_SIDE_MARGIN,
        box_height=CAPTION_BOX_HEIGHT,
        box_ascent=CAPTION_BOX_ASCENT,
    )


def compose_frame(
    surface: Image.Image,
    assets: FrameAssets,
    script: Script,
    elapsed_ms: float,
    duration_ms: float,
) -> None:
    """Render one complete frame for the elapsed time into the surface.

    Layer order is fixed: clear, background, gradient, banners, hook,
    caption, CTA. Output depends only on the arguments.
    """
    width, height = assets.width, assets.height
    surface.paste(FRAME_BACKGROUND_RGBA, (0, 0, width, height))

    segment = select_segment_index(elapsed_ms, duration_ms, len(assets.images))
    draw_background_image(
        surface, assets.images[segment], compute_ken_burns(elapsed_ms)
    )
    surface.alpha_composite(assets.overlay)

    draw = ImageDraw.Draw(surface, "RGBA")
    draw.rectangle(
        (
            BANNER_MARGIN,
            BANNER_MARGIN,
            width - BANNER_MARGIN,
            BANNER_MARGIN + TOP_BANNER_HEIGHT,
        ),
        fill=BANNER_RGBA,
    )
    draw.rectangle(
        (
            BANNER_MARGIN,
            height - BOTTOM_BAND_OFFSET,
            width - BANNER_MARGIN,
            height - BOTTOM_BAND_OFFSET + BOTTOM_BAND_HEIGHT,
        ),
        fill=BANNER_RGBA,
    )

    draw.text(
        (width / 2.0, HOOK_BASELINE_Y),
        script.hook,
        font=assets.fonts.hook,
        fill=TEXT_RGBA,
        anchor="ms",
    )

    active = select_active_caption(script.lines, elapsed_ms)
    for row in layout_caption(draw, active.text, assets):
        draw.rounded_rectangle(
            tuple(int(round(value)) for value in row.box),
            radius=CAPTION_BOX_RADIUS,
            fill=CAPTION_BOX_RGBA,
        )
        draw.text(
            (row.x, row.y),
            row.text,
            font=assets.fonts.caption,
            fill=TEXT_RGBA,
            anchor="ms",
        )

    draw.text(
        (width / 2.0, height - CTA_BASELINE_OFFSET),
        script.cta,
        font=assets.fonts.cta,
        fill=CTA_RGBA,
        anchor="ms",
    )


def new_surface(width: int, height: int) -> Image.Image:
    """Create an output surface cleared to the frame background."""
    return Image.new("RGBA", (width, height), FRAME_BACKGROUND_RGBA)


def extract_thumbnail(surface: Image.Image) -> bytes:
    """Encode the current surface as a PNG still."""
    buffer = BytesIO()
    surface.convert("RGB").save(buffer, format="PNG")
    return buffer.getvalue()
