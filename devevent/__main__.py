"""CLI entry-point: python -m devevent [serve|seed|list]."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from api.database import Database, EventStore
from api.ingest import DEFAULT_SEED_DIR, ingest_events
from devevent.config import get_settings

app = typer.Typer(help="DevEvent – conference listings API")


def _configure_logging() -> None:
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind."),
    port: int = typer.Option(8000, help="Port to listen on."),
    reload: bool = typer.Option(False, help="Reload on code changes."),
) -> None:
    """Run the API under uvicorn."""
    import uvicorn

    _configure_logging()
    uvicorn.run("api.main:create_app", factory=True, host=host, port=port, reload=reload)


@app.command()
def seed(
    directory: Path | None = typer.Argument(
        None, help="Directory of JSON event files. Defaults to ./data."
    ),
) -> None:
    """Upsert events from JSON files into the database."""
    _configure_logging()

    async def _run() -> int:
        db = Database(get_settings().database_path)
        try:
            await db.init_db()
            return await ingest_events(db, directory or DEFAULT_SEED_DIR)
        finally:
            await db.close()

    count = asyncio.run(_run())
    typer.echo(f"Ingested {count} event(s).")


@app.command(name="list")
def list_events() -> None:
    """List stored events."""
    async def _run():
        db = Database(get_settings().database_path)
        try:
            await db.init_db()
            return await EventStore(db).list_all()
        finally:
            await db.close()

    events = asyncio.run(_run())
    if not events:
        typer.echo("No events stored.")
        raise typer.Exit()
    for event in events:
        typer.echo(f"  {event.slug:<40} {event.date:<12} {event.mode.value:<8} {event.title}")


if __name__ == "__main__":
    app()
