"""Background image acquisition and placeholder generation."""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Callable, Sequence, Tuple

import httpx
import numpy as np
from PIL import Image, ImageDraw, ImageFont

ASSET_LOAD_CODE = "render_short_video.assets.load_failed"
ASSET_FALLBACK_CODE = "render_short_video.assets.fallback"

PEXELS_ENDPOINT = "https://api.pexels.com/v1/search"
PEXELS_SOURCE_KEYS = ("large2x", "large", "medium")
PLACEHOLDER_LABEL = "abstract background"
PLACEHOLDER_TOP_RGB = (0x1D, 0x2A, 0x3A)
PLACEHOLDER_BOTTOM_RGB = (0x0B, 0x0F, 0x14)
PLACEHOLDER_LABEL_RGBA = (0x94, 0xA3, 0xB8, 255)
PLACEHOLDER_LABEL_Y_RATIO = 0.9

LOGGER = logging.getLogger("render_short_video")

ImageLoader = Callable[[str], Image.Image]


class AssetLoadError(RuntimeError):
    """Asset failure with a stable error code; always recovered locally."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


def decode_image_bytes(image_bytes: bytes, source: str) -> Image.Image:
    """Decode image bytes into an RGBA image."""
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except Exception as exc:
        raise AssetLoadError(
            ASSET_LOAD_CODE, f"failed to decode image from {source}"
        ) from exc
    if image.mode != "RGBA":
        image = image.convert("RGBA")
    return image


def load_background_image(image_path: str) -> Image.Image:
    """Load a background image from disk as RGBA."""
    try:
        with open(image_path, "rb") as file_handle:
            image_bytes = file_handle.read()
    except OSError as exc:
        raise AssetLoadError(
            ASSET_LOAD_CODE, f"background image not readable: {image_path}"
        ) from exc
    return decode_image_bytes(image_bytes, image_path)


def get_checked(
    client: httpx.Client,
    url: str,
    params: dict[str, str | int] | None = None,
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    """GET a URL, mapping transport and status failures to AssetLoadError."""
    try:
        response = client.get(url, params=params, headers=headers)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise AssetLoadError(
            ASSET_LOAD_CODE,
            f"image request failed with HTTP {exc.response.status_code}",
        ) from exc
    except httpx.HTTPError as exc:
        raise AssetLoadError(ASSET_LOAD_CODE, f"image request failed: {exc}") from exc
    return response


def select_photo_url(search_payload: object) -> str:
    """Pick the best available source URL from a Pexels search payload."""
    photos = search_payload.get("photos") if isinstance(search_payload, dict) else None
    if not isinstance(photos, list) or not photos:
        raise AssetLoadError(ASSET_LOAD_CODE, "image search returned no photos")
    sources = photos[0].get("src") if isinstance(photos[0], dict) else None
    if isinstance(sources, dict):
        for key in PEXELS_SOURCE_KEYS:
            url = sources.get(key)
            if isinstance(url, str) and url:
                return url
    raise AssetLoadError(ASSET_LOAD_CODE, "image search result has no source url")


def fetch_background_image(
    query: str,
    api_key: str | None,
    timeout_seconds: float,
    transport: httpx.BaseTransport | None = None,
) -> Image.Image:
    """Fetch the first stock photo for a visual query.

    The search request carries the api key; the photo download does not.
    """
    if not api_key:
        raise AssetLoadError(ASSET_LOAD_CODE, "no image search api key configured")
    with httpx.Client(
        timeout=timeout_seconds, transport=transport, follow_redirects=True
    ) as client:
        search_response = get_checked(
            client,
            PEXELS_ENDPOINT,
            params={"query": query, "per_page": 1},
            headers={"Authorization": api_key},
        )
        try:
            search_payload = search_response.json()
        except ValueError as exc:
            raise AssetLoadError(
                ASSET_LOAD_CODE, "image search returned invalid json"
            ) from exc
        photo_url = select_photo_url(search_payload)
        photo_response = get_checked(client, photo_url)
    return decode_image_bytes(photo_response.content, photo_url)


def build_pexels_loader(
    api_key: str | None,
    timeout_seconds: float,
    transport: httpx.BaseTransport | None = None,
) -> ImageLoader:
    """Bind the stock photo fetcher to its credentials."""

    def load(query: str) -> Image.Image:
        return fetch_background_image(query, api_key, timeout_seconds, transport)

    return load


def generate_vertical_gradient(
    top_rgb: Tuple[int, int, int],
    bottom_rgb: Tuple[int, int, int],
    width: int,
    height: int,
) -> Image.Image:
    """Generate an opaque top-to-bottom gradient."""
    denom = max(height - 1, 1)
    ramp = (np.arange(height, dtype=np.float32) / denom)[:, np.newaxis, np.newaxis]
    top_color = np.array(top_rgb, dtype=np.float32)
    bottom_color = np.array(bottom_rgb, dtype=np.float32)
    column = (1.0 - ramp) * top_color + ramp * bottom_color
    gradient_array = np.broadcast_to(column, (height, width, 3))
    final_array = np.clip(np.rint(gradient_array), 0, 255).astype(np.uint8)
    return Image.fromarray(final_array, "RGB").convert("RGBA")


def build_placeholder_image(
    width: int,
    height: int,
    label: str,
    font: ImageFont.ImageFont | ImageFont.FreeTypeFont,
) -> Image.Image:
    """Build a gradient placeholder with the label centered near the bottom."""
    image = generate_vertical_gradient(
        PLACEHOLDER_TOP_RGB, PLACEHOLDER_BOTTOM_RGB, width, height
    )
    draw = ImageDraw.Draw(image)
    draw.text(
        (width / 2.0, height * PLACEHOLDER_LABEL_Y_RATIO),
        label,
        font=font,
        fill=PLACEHOLDER_LABEL_RGBA,
        anchor="ms",
    )
    return image


def load_background_images(
    queries: Sequence[str],
    loader: ImageLoader | None,
    width: int,
    height: int,
    font: ImageFont.ImageFont | ImageFont.FreeTypeFont,
) -> list[Image.Image]:
    """Load one image per query in order.

    A query whose load fails, or any query when no loader is configured,
    gets a placeholder labelled with the query.
    """
    images: list[Image.Image] = []
    for query in queries:
        if loader is not None:
            try:
                images.append(loader(query))
                continue
            except AssetLoadError as exc:
                LOGGER.warning("%s: %s (%s)", exc.code, query, str(exc).strip())
        LOGGER.warning("%s: placeholder for %s", ASSET_FALLBACK_CODE, query)
        images.append(build_placeholder_image(width, height, query, font))
    return images
