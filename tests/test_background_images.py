"""Unit tests for background image loading and placeholders."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path

import httpx
import pytest
from PIL import Image, ImageFont

from service.background_images import (
    ASSET_LOAD_CODE,
    PEXELS_ENDPOINT,
    AssetLoadError,
    build_pexels_loader,
    build_placeholder_image,
    fetch_background_image,
    generate_vertical_gradient,
    load_background_image,
    load_background_images,
    select_photo_url,
)

PHOTO_URL = "https://images.example/photo-large2x.png"


def png_bytes(size: tuple[int, int] = (8, 8)) -> bytes:
    """Encode a small solid PNG."""
    buffer = BytesIO()
    Image.new("RGB", size, (10, 200, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


def test_fetch_requires_api_key() -> None:
    """Fail locally when no search credentials are configured."""
    with pytest.raises(AssetLoadError) as excinfo:
        fetch_background_image("ocean", None, 1.0)
    assert excinfo.value.code == ASSET_LOAD_CODE


def test_fetch_searches_then_downloads() -> None:
    """Search with the api key and download the preferred source."""
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if str(request.url) == PHOTO_URL:
            return httpx.Response(200, content=png_bytes())
        return httpx.Response(
            200,
            json={
                "photos": [
                    {"src": {"large2x": PHOTO_URL, "medium": "https://images.example/m.png"}}
                ]
            },
        )

    loader = build_pexels_loader("secret", 2.5, httpx.MockTransport(handler))
    image = loader("calm ocean")

    assert image.mode == "RGBA"
    assert image.size == (8, 8)
    search_request, photo_request = requests
    assert str(search_request.url).startswith(PEXELS_ENDPOINT)
    assert search_request.url.params["query"] == "calm ocean"
    assert search_request.url.params["per_page"] == "1"
    assert search_request.headers["Authorization"] == "secret"
    assert str(photo_request.url) == PHOTO_URL
    assert "Authorization" not in photo_request.headers


def test_fetch_maps_http_errors() -> None:
    """Report HTTP failures as asset load errors."""
    transport = httpx.MockTransport(lambda request: httpx.Response(401))
    with pytest.raises(AssetLoadError) as excinfo:
        fetch_background_image("ocean", "bad-key", 1.0, transport)
    assert "401" in str(excinfo.value)


def test_fetch_maps_transport_errors() -> None:
    """Report connection failures as asset load errors."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    with pytest.raises(AssetLoadError) as excinfo:
        fetch_background_image("ocean", "key", 1.0, httpx.MockTransport(handler))
    assert excinfo.value.code == ASSET_LOAD_CODE


def test_fetch_rejects_invalid_payloads() -> None:
    """Report malformed search results and undecodable downloads."""
    bad_json = httpx.MockTransport(lambda request: httpx.Response(200, content=b"{nope"))
    with pytest.raises(AssetLoadError):
        fetch_background_image("ocean", "key", 1.0, bad_json)

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == PHOTO_URL:
            return httpx.Response(200, content=b"not an image")
        return httpx.Response(200, json={"photos": [{"src": {"large": PHOTO_URL}}]})

    with pytest.raises(AssetLoadError):
        fetch_background_image("ocean", "key", 1.0, httpx.MockTransport(handler))


def test_select_photo_url_fallbacks() -> None:
    """Prefer large2x, then large, then medium."""
    assert select_photo_url({"photos": [{"src": {"medium": "m", "large": "l"}}]}) == "l"
    assert select_photo_url({"photos": [{"src": {"medium": "m"}}]}) == "m"
    with pytest.raises(AssetLoadError):
        select_photo_url({"photos": []})
    with pytest.raises(AssetLoadError):
        select_photo_url({"photos": [{"src": {}}]})


def test_load_background_image_from_disk(tmp_path: Path) -> None:
    """Load a local image and report missing files."""
    image_path = tmp_path / "bg.png"
    image_path.write_bytes(png_bytes((4, 6)))
    assert load_background_image(str(image_path)).size == (4, 6)
    with pytest.raises(AssetLoadError):
        load_background_image(str(tmp_path / "missing.png"))


def test_load_background_images_substitutes_failures(
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Keep one image per query, using a labelled placeholder for failures."""
    font = ImageFont.load_default(size=32)

    def loader(query: str) -> Image.Image:
        if query == "bad":
            raise AssetLoadError(ASSET_LOAD_CODE, "boom")
        return Image.new("RGBA", (2, 2), (len(query), 0, 0, 255))

    with caplog.at_level("WARNING", logger="render_short_video"):
        images = load_background_images(["a", "bad", "ccc"], loader, 120, 200, font)

    assert len(images) == 3
    assert images[0].getpixel((0, 0))[0] == 1
    assert images[1].tobytes() == build_placeholder_image(120, 200, "bad", font).tobytes()
    assert images[2].getpixel((0, 0))[0] == 3
    assert "render_short_video.assets.load_failed: bad" in caplog.text
    assert "render_short_video.assets.fallback: placeholder for bad" in caplog.text


def test_load_background_images_without_loader() -> None:
    """Label one placeholder per query when no loader is configured."""
    font = ImageFont.load_default(size=32)
    images = load_background_images(["ocean", "forest"], None, 120, 200, font)
    assert [image.size for image in images] == [(120, 200), (120, 200)]
    assert images[0].tobytes() == build_placeholder_image(120, 200, "ocean", font).tobytes()
    assert images[0].tobytes() != images[1].tobytes()
    assert load_background_images([], None, 120, 200, font) == []


def test_vertical_gradient_endpoints() -> None:
    """Blend from the top color to the bottom color."""
    gradient = generate_vertical_gradient((0x1D, 0x2A, 0x3A), (0x0B, 0x0F, 0x14), 3, 10)
    assert gradient.getpixel((0, 0)) == (0x1D, 0x2A, 0x3A, 255)
    assert gradient.getpixel((2, 9)) == (0x0B, 0x0F, 0x14, 255)


def test_placeholder_has_label() -> None:
    """Draw the label over the gradient."""
    font = ImageFont.load_default(size=32)
    labeled = build_placeholder_image(300, 200, "abstract background", font)
    plain = generate_vertical_gradient((0x1D, 0x2A, 0x3A), (0x0B, 0x0F, 0x14), 300, 200)
    assert labeled.size == (300, 200)
    assert labeled.tobytes() != plain.tobytes()


def test_placeholder_label_sits_near_bottom() -> None:
    """Draw the label around ninety percent of the height."""
    font = ImageFont.load_default(size=32)
    labeled = build_placeholder_image(300, 400, "ocean", font)
    plain = generate_vertical_gradient((0x1D, 0x2A, 0x3A), (0x0B, 0x0F, 0x14), 300, 400)
    upper_box = (0, 0, 300, 300)
    assert labeled.crop(upper_box).tobytes() == plain.crop(upper_box).tobytes()
