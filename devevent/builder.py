"""Assemble an event record from a JSON body or form fields."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from devevent.errors import MissingRequired
from devevent.fields import normalize_mode, slugify, to_array

SCALAR_FIELDS = (
    "title",
    "slug",
    "description",
    "overview",
    "venue",
    "location",
    "date",
    "time",
    "audience",
    "organizer",
)
LIST_FIELDS = ("agenda", "tags")


def _to_str(value: Any) -> str:
    return "" if value is None else str(value)


def build_event_record(raw: Mapping[str, Any], image: str) -> dict[str, Any]:
    """Normalize *raw* into a record ready for the event store.

    *image* is the already-resolved image URL; it replaces whatever the raw
    payload carried under ``image``.
    """
    record: dict[str, Any] = {name: _to_str(raw.get(name)) for name in SCALAR_FIELDS}
    for name in LIST_FIELDS:
        value = raw.get(name)
        # Repeated form keys (agenda=a&agenda=b) arrive as a multi-dict
        if hasattr(raw, "getlist") and len(raw.getlist(name)) > 1:
            value = raw.getlist(name)
        record[name] = to_array(value)
    record["mode"] = normalize_mode(raw.get("mode"))

    record["title"] = record["title"].strip()
    slug = record["slug"].strip().lower()
    record["slug"] = slug or slugify(record["title"])

    if not image:
        raise MissingRequired(
            "Provide an image file, a data URL, an http(s) URL or a local path"
        )
    record["image"] = image
    return record
