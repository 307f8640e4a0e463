#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10.1",
#   "numpy>=1.26",
#   "httpx>=0.27"
# ]
# ///
"""Render timed short-video scripts into MP4 files with PNG thumbnails."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
import sys
from typing import Mapping, Sequence, Tuple

from domain.short_video import (
    DEFAULT_FPS,
    DEFAULT_HEIGHT,
    DEFAULT_IMAGE_TIMEOUT_SECONDS,
    DEFAULT_WIDTH,
    INPUT_FILE_CODE,
    INVALID_CONFIG_CODE,
    INVALID_SCRIPT_CODE,
    RenderConfig,
    RenderPipelineError,
    Script,
    ShortVideoValidationError,
    parse_scripts_payload,
    script_to_payload,
)
from service.background_images import build_pexels_loader
from service.capture_pipeline import CapturePipeline, EncodedArtifact
from service.keywords import optimize_keywords

LOGGER = logging.getLogger("render_short_video")

FFMPEG_PATH_ENV = "SHORT_VIDEO_FFMPEG_PATH"
FONTS_DIR_ENV = "SHORT_VIDEO_FONTS_DIR"
LOG_LEVEL_ENV = "SHORT_VIDEO_LOG_LEVEL"
IMAGE_TIMEOUT_ENV = "SHORT_VIDEO_IMAGE_TIMEOUT_SECONDS"
PEXELS_API_KEY_ENV = "PEXELS_API_KEY"
OUTPUT_WRITE_CODE = "render_short_video.output.write_failed"


def configure_logging(env: Mapping[str, str]) -> None:
    """Configure logging from environment."""
    level_name = env.get(LOG_LEVEL_ENV, "INFO").strip().upper()
    level = logging.INFO
    if level_name == "DEBUG":
        level = logging.DEBUG
    elif level_name == "WARNING":
        level = logging.WARNING
    elif level_name == "ERROR":
        level = logging.ERROR
    logging.basicConfig(level=level, format="%(message)s")


def read_utf8_text_strict(file_path: str) -> str:
    """Read a UTF-8 file with strict decoding."""
    try:
        with open(file_path, "rb") as file_handle:
            file_bytes = file_handle.read()
    except FileNotFoundError as exc:
        raise ShortVideoValidationError(
            INPUT_FILE_CODE, f"script file not found: {file_path}"
        ) from exc

    try:
        return file_bytes.decode("utf-8", errors="strict")
    except UnicodeDecodeError as exc:
        raise ShortVideoValidationError(
            INPUT_FILE_CODE,
            f"script file is not valid UTF-8 at byte offset {exc.start}",
        ) from exc


def load_scripts(file_path: str) -> Tuple[Script, ...]:
    """Load one or more scripts from a JSON file."""
    text_value = read_utf8_text_strict(file_path)
    try:
        payload = json.loads(text_value)
    except json.JSONDecodeError as exc:
        raise ShortVideoValidationError(
            INVALID_SCRIPT_CODE,
            f"script file is not valid JSON at line {exc.lineno}",
        ) from exc
    return parse_scripts_payload(payload)


def read_env_float(env: Mapping[str, str], key: str, label: str, fallback: float) -> float:
    """Read a positive float from the environment."""
    raw_value = env.get(key, "").strip()
    if not raw_value:
        return fallback
    try:
        value = float(raw_value)
    except ValueError as exc:
        raise ShortVideoValidationError(
            INVALID_CONFIG_CODE, f"{label} must be a number"
        ) from exc
    if value <= 0:
        raise ShortVideoValidationError(INVALID_CONFIG_CODE, f"{label} must be positive")
    return value


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(prog="render_short_video.py", add_help=True)
    parser.add_argument("--script-file", required=True)
    parser.add_argument("--output-video-file", default="short.mp4")
    parser.add_argument("--thumbnail-file", default=None)
    parser.add_argument("--width", type=int, default=DEFAULT_WIDTH)
    parser.add_argument("--height", type=int, default=DEFAULT_HEIGHT)
    parser.add_argument("--fps", type=int, default=DEFAULT_FPS)
    parser.add_argument("--fonts-dir", default=None)
    parser.add_argument("--ffmpeg-path", default=None)
    parser.add_argument("--image-timeout-seconds", type=float, default=None)
    parser.add_argument("--emit-keywords", action="store_true")
    return parser.parse_args(list(argv))


def load_config(args: argparse.Namespace, env: Mapping[str, str]) -> RenderConfig:
    """Build render configuration from args and environment."""
    fonts_dir = env.get(FONTS_DIR_ENV, "").strip() or None
    if args.fonts_dir is not None:
        fonts_dir = args.fonts_dir
    ffmpeg_path = env.get(FFMPEG_PATH_ENV, "").strip() or "ffmpeg"
    if args.ffmpeg_path is not None:
        ffmpeg_path = args.ffmpeg_path
    image_timeout = read_env_float(
        env,
        IMAGE_TIMEOUT_ENV,
        "image-timeout-seconds",
        DEFAULT_IMAGE_TIMEOUT_SECONDS,
    )
    if args.image_timeout_seconds is not None:
        image_timeout = args.image_timeout_seconds
    thumbnail_file = args.thumbnail_file
    if thumbnail_file is None:
        thumbnail_file = os.path.splitext(args.output_video_file)[0] + ".png"
    return RenderConfig(
        output_video_file=args.output_video_file,
        thumbnail_file=thumbnail_file,
        width=args.width,
        height=args.height,
        fps=args.fps,
        fonts_dir=fonts_dir,
        ffmpeg_path=ffmpeg_path,
        image_timeout_seconds=float(image_timeout),
        pexels_api_key=env.get(PEXELS_API_KEY_ENV, "").strip() or None,
    )


def indexed_path(file_path: str, index_value: int, count: int) -> str:
    """Suffix a path with a 1-based index when rendering several scripts."""
    if count <= 1:
        return file_path
    stem, extension = os.path.splitext(file_path)
    return f"{stem}-{index_value + 1}{extension}"


def write_artifact(artifact: EncodedArtifact, config: RenderConfig) -> None:
    """Persist the container and thumbnail."""
    try:
        with open(config.output_video_file, "wb") as file_handle:
            file_handle.write(artifact.video_bytes)
        with open(config.thumbnail_file, "wb") as file_handle:
            file_handle.write(artifact.thumbnail_png)
    except OSError as exc:
        raise RenderPipelineError(
            OUTPUT_WRITE_CODE, f"failed to write output: {exc}"
        ) from exc


def render_scripts(scripts: Sequence[Script], config: RenderConfig) -> None:
    """Render each script in order with its own pipeline."""
    image_loader = None
    if config.pexels_api_key:
        image_loader = build_pexels_loader(
            config.pexels_api_key, config.image_timeout_seconds
        )
    for index_value, script in enumerate(scripts):
        script_config = dataclasses.replace(
            config,
            output_video_file=indexed_path(
                config.output_video_file, index_value, len(scripts)
            ),
            thumbnail_file=indexed_path(config.thumbnail_file, index_value, len(scripts)),
        )
        pipeline = CapturePipeline(script_config, image_loader=image_loader)
        artifact = pipeline.run(script)
        write_artifact(artifact, script_config)
        LOGGER.info(
            "render_short_video.output.written: %s",
            script_config.output_video_file,
        )


def emit_keywords(scripts: Sequence[Script]) -> None:
    """Emit scripts with keyword metadata to stdout."""
    payload = {"items": [script_to_payload(script) for script in optimize_keywords(scripts)]}
    sys.stdout.write(json.dumps(payload, ensure_ascii=True))


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""
    env = dict(os.environ)
    configure_logging(env)

    try:
        args = parse_args(list(argv) if argv is not None else sys.argv[1:])
        config = load_config(args, env)
        scripts = load_scripts(args.script_file)
        if args.emit_keywords:
            emit_keywords(scripts)
            return 0
        render_scripts(scripts, config)
        return 0
    except ShortVideoValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except RenderPipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("render_short_video.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
