"""Normalization helpers for loosely-typed request fields."""

from __future__ import annotations

import json
import re
from typing import Any

from devevent.errors import InvalidInput
from devevent.models import EventMode

_DELIMITERS = re.compile(r"[,;|]")
_NON_SLUG = re.compile(r"[^a-z0-9]+")


def normalize_slug(value: Any) -> str:
    """Trim and lower-case *value*, rejecting anything that ends up empty."""
    if not value or not isinstance(value, str):
        raise InvalidInput(
            "Slug must be a non-empty string", message="Invalid slug parameter"
        )
    slug = value.strip().lower()
    if not slug:
        raise InvalidInput(
            "Slug cannot be empty after sanitization", message="Invalid slug"
        )
    return slug


def slugify(title: str) -> str:
    """Derive a URL-safe slug from an event title."""
    return _NON_SLUG.sub("-", title.strip().lower()).strip("-")


def to_array(value: Any) -> list[str]:
    """Coerce a JSON list, a delimited/JSON string, or a scalar to a list of strings.

    Form submissions send ``agenda`` and ``tags`` as flat strings while JSON
    bodies send real lists; both end up here.
    """
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item]
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return []
        try:
            parsed = json.loads(s)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [str(item) for item in parsed]
        parts = [p.strip() for p in _DELIMITERS.split(s) if p.strip()]
        if len(parts) > 1:
            return parts
        return [s]
    if value is None:
        return []
    return [str(value)]


def normalize_mode(value: Any) -> str:
    """Lower-case *value* and fall back to ``hybrid`` when it is not a known mode."""
    mode = str(value or "").strip().lower()
    if mode in {m.value for m in EventMode}:
        return mode
    return EventMode.HYBRID.value
