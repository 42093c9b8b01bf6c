"""Ingest curated event JSON files into the event store."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from devevent.fields import normalize_mode, slugify, to_array
from devevent.models import Event

from .database import Database, EventStore

log = logging.getLogger(__name__)

DEFAULT_SEED_DIR = Path(__file__).parent.parent / "data"


def _normalize(raw: dict) -> dict:
    """Apply the same field rules as the create endpoint to a seed entry."""
    data = dict(raw)
    data["slug"] = str(data.get("slug") or slugify(str(data.get("title", "")))).strip().lower()
    data["mode"] = normalize_mode(data.get("mode"))
    for name in ("agenda", "tags"):
        data[name] = to_array(data.get(name))
    return data


async def ingest_events(db: Database, directory: Path = DEFAULT_SEED_DIR) -> int:
    """Read JSON files from *directory* and upsert them by slug.

    Returns the number of events processed.
    """
    directory = Path(directory)
    if not directory.exists():
        log.info("Seed directory %s does not exist; nothing to ingest", directory)
        return 0

    events: list[Event] = []
    for json_file in sorted(directory.glob("*.json")):
        with open(json_file, encoding="utf-8") as f:
            data = json.load(f)

        entries = data if isinstance(data, list) else [data]

        for raw in entries:
            try:
                events.append(Event(**_normalize(raw)))
            except ValidationError as exc:
                log.warning("Skipping invalid entry in %s: %s", json_file.name, exc)

    await EventStore(db).upsert_many(events)
    log.info("Ingested %d event(s) from %s", len(events), directory)
    return len(events)
