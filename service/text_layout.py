"""Greedy word wrap and centered multi-line layout for captions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence, Tuple

from domain.short_video import INVALID_CONFIG_CODE, ShortVideoValidationError


@dataclass(frozen=True)
class LaidOutLine:
    """Caption row placed on the frame with its background box."""

    text: str
    x: float
    y: float
    box: Tuple[float, float, float, float]


def wrap_text(
    text_value: str, max_width: float, measure: Callable[[str], float]
) -> Tuple[str, ...]:
    """Wrap words greedily so each line fits max_width when possible.

    A single word wider than max_width is kept whole on its own line.
    """
    lines: list[str] = []
    current = ""
    for word in text_value.split():
        candidate = f"{current} {word}" if current else word
        if measure(candidate) > max_width and current:
            lines.append(current)
            current = word
        else:
            current = candidate
    if current:
        lines.append(current)
    return tuple(lines)


def layout_centered(
    lines: Sequence[str],
    center_x: float,
    base_y: float,
    line_height: float,
    box_width: float,
    box_height: float,
    box_ascent: float,
) -> Tuple[LaidOutLine, ...]:
    """Center a block of lines vertically around base_y.

    Each row baseline starts at ``base_y - len(lines) * line_height / 2`` and
    advances by ``line_height``. Boxes have a constant size, are centered on
    ``center_x`` and start ``box_ascent`` pixels above the baseline.
    """
    if line_height <= 0 or box_width <= 0 or box_height <= 0:
        raise ShortVideoValidationError(
            INVALID_CONFIG_CODE, "line and box dimensions must be positive"
        )
    total_height = len(lines) * line_height
    y_value = base_y - total_height / 2.0
    box_left = center_x - box_width / 2.0
    laid_out: list[LaidOutLine] = []
    for line in lines:
        box_top = y_value - box_ascent
        laid_out.append(
            LaidOutLine(
                text=line,
                x=center_x,
                y=y_value,
                box=(box_left, box_top, box_left + box_width, box_top + box_height),
            )
        )
        y_value += line_height
    return tuple(laid_out)
