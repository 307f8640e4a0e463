"""Offline title/tag/description suggestions for rendered shorts."""

from __future__ import annotations

from dataclasses import replace
from typing import Sequence, Tuple

from domain.short_video import Keywords, Script

TITLE_MAX_CHARS = 70
DESCRIPTION_MAX_CHARS = 4000
TITLE_SUFFIX = " #shorts"
DEFAULT_TAGS = ("shorts", "viral", "tips")


def build_keywords(script: Script) -> Keywords:
    """Derive keyword metadata from the hook and call-to-action."""
    title = f"{script.hook}{TITLE_SUFFIX}".replace(".", "")[:TITLE_MAX_CHARS]
    description = f"{script.hook} ? {script.cta}"[:DESCRIPTION_MAX_CHARS]
    return Keywords(title=title, tags=DEFAULT_TAGS, description=description)


def optimize_keywords(scripts: Sequence[Script]) -> Tuple[Script, ...]:
    """Attach keywords to every script, preserving order."""
    return tuple(replace(script, keywords=build_keywords(script)) for script in scripts)
