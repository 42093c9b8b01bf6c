"""DevEvent API."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from devevent.builder import build_event_record
from devevent.config import Settings, get_settings
from devevent.errors import (
    DevEventError,
    DuplicateKey,
    InvalidInput,
    NotFound,
    PersistenceFailure,
    Unavailable,
    UnsupportedMediaType,
)
from devevent.fields import normalize_slug
from devevent.images import ImageResolver
from devevent.media import CloudinaryBackend
from devevent.models import BookingRequest, Event
from devevent.notifier import RevalidationNotifier

from .database import (
    BookingStore,
    Database,
    DuplicateKeyError,
    EventStore,
    MalformedQueryError,
    MissingReferenceError,
    RecordValidationError,
    StoreUnavailableError,
)
from .ingest import ingest_events

log = logging.getLogger(__name__)

FORM_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")

router = APIRouter()


# ------------------------------------------------------------------
# Dependencies
# ------------------------------------------------------------------


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_event_store(db: Database = Depends(get_database)) -> EventStore:
    return EventStore(db)


def get_booking_store(db: Database = Depends(get_database)) -> BookingStore:
    return BookingStore(db)


def get_resolver(request: Request) -> ImageResolver:
    return request.app.state.resolver


def get_notifier(request: Request) -> RevalidationNotifier:
    return request.app.state.notifier


# ------------------------------------------------------------------
# Error translation
# ------------------------------------------------------------------


def _read_failure(exc: Exception, message: str) -> DevEventError:
    log.error("%s: %s", message, exc)
    if isinstance(exc, MalformedQueryError):
        return InvalidInput("Malformed slug format", message="Invalid query parameter")
    if isinstance(exc, StoreUnavailableError):
        return Unavailable("Unable to connect to the database. Please try again later.")
    return PersistenceFailure(str(exc) or "An unexpected error occurred", message=message)


async def _lookup(store: EventStore, slug: str) -> Event:
    try:
        event = await store.get_by_slug(slug)
    except Exception as exc:
        raise _read_failure(exc, "Failed to fetch event") from exc
    if event is None:
        raise NotFound(f"No event exists with slug: {slug}", message="Event not found")
    return event


async def _read_payload(request: Request) -> tuple[Mapping[str, Any], Any]:
    """Parse the body by content type, returning the fields and the raw image."""
    content_type = request.headers.get("content-type", "")
    if any(t in content_type for t in FORM_TYPES):
        form = await request.form()
        return form, form.get("image")
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError as exc:
            raise InvalidInput(
                f"Request body is not valid JSON: {exc}", message="Invalid JSON body"
            ) from exc
        if not isinstance(body, dict):
            raise InvalidInput("JSON body must be an object", message="Invalid JSON body")
        return body, body.get("image")
    raise UnsupportedMediaType(
        "Send application/json, multipart/form-data or "
        f"application/x-www-form-urlencoded, not {content_type or 'an empty type'!r}"
    )


# ------------------------------------------------------------------
# Routes
# ------------------------------------------------------------------


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.options("/events")
async def events_preflight():
    return Response(status_code=204)


@router.get("/events")
async def list_events(store: EventStore = Depends(get_event_store)):
    """List every event in insertion order."""
    try:
        events = await store.list_all()
    except Exception as exc:
        raise _read_failure(exc, "Failed to fetch events") from exc
    return {"events": [e.model_dump(mode="json") for e in events]}


@router.post("/events", status_code=201)
async def create_event(
    request: Request,
    store: EventStore = Depends(get_event_store),
    resolver: ImageResolver = Depends(get_resolver),
    notifier: RevalidationNotifier = Depends(get_notifier),
):
    """Create an event from a JSON body or a form with an optional file upload."""
    try:
        raw, image_value = await _read_payload(request)
        image = await resolver.resolve(image_value)
        record = build_event_record(raw, image)
        event = await store.insert(record)
    except DevEventError:
        raise
    except DuplicateKeyError as exc:
        if exc.field != "slug":
            raise PersistenceFailure(str(exc)) from exc
        raise DuplicateKey("Change title or provide a unique slug") from exc
    except RecordValidationError as exc:
        raise PersistenceFailure(str(exc), validation=exc.errors) from exc
    except Exception as exc:
        log.exception("Event creation error")
        raise PersistenceFailure(str(exc) or repr(exc)) from exc

    notifier.emit("/")
    return {"message": "Event Created successfully", "event": event.model_dump(mode="json")}


@router.get("/events/{slug}")
async def get_event(slug: str, store: EventStore = Depends(get_event_store)):
    """Get a single event by slug."""
    event = await _lookup(store, normalize_slug(slug))
    return {"event": event.model_dump(mode="json"), "message": "Event fetched successfully"}


@router.get("/events/{slug}/similar")
async def similar_events(
    slug: str, limit: int = 3, store: EventStore = Depends(get_event_store)
):
    """Events that share at least one tag with the given one."""
    event = await _lookup(store, normalize_slug(slug))
    try:
        similar = await store.similar_to(event, limit=max(limit, 0))
    except Exception as exc:
        raise _read_failure(exc, "Failed to fetch similar events") from exc
    return {"events": [e.model_dump(mode="json") for e in similar]}


@router.get("/events/{slug}/bookings/count")
async def booking_count(
    slug: str,
    store: EventStore = Depends(get_event_store),
    bookings: BookingStore = Depends(get_booking_store),
):
    event = await _lookup(store, normalize_slug(slug))
    try:
        count = await bookings.count_for_event(event.id)
    except Exception as exc:
        raise _read_failure(exc, "Failed to count bookings") from exc
    return {"slug": event.slug, "bookings": count}


@router.post("/bookings", status_code=201)
async def create_booking(
    payload: BookingRequest,
    store: EventStore = Depends(get_event_store),
    bookings: BookingStore = Depends(get_booking_store),
):
    """Sign an email address up for an event named by id or slug."""
    event_id = payload.event_id
    if event_id is None:
        if not payload.slug:
            raise InvalidInput(
                "Provide an event_id or a slug", message="Missing event reference"
            )
        event_id = (await _lookup(store, normalize_slug(payload.slug))).id

    try:
        booking = await bookings.create(event_id, payload.email)
    except RecordValidationError as exc:
        raise InvalidInput(
            str(exc), message="Booking validation failed", validation=exc.errors
        ) from exc
    except MissingReferenceError as exc:
        raise NotFound(str(exc), message="Event not found") from exc
    except Exception as exc:
        raise _read_failure(exc, "Booking Failed") from exc
    return {"message": "Booking created successfully", "booking": booking.model_dump(mode="json")}


# ------------------------------------------------------------------
# Application factory
# ------------------------------------------------------------------


async def _handle_error(request: Request, exc: DevEventError) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def _handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    validation = {
        ".".join(str(p) for p in err["loc"] if p != "body"): err["msg"]
        for err in exc.errors()
    }
    body = InvalidInput(
        "Request validation failed", message="Invalid request", validation=validation
    ).to_dict()
    return JSONResponse(body, status_code=400)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the app; a missing ``DATABASE_URL`` fails here, at startup."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db: Database = app.state.database
        await db.init_db()
        if settings.seed_dir:
            await ingest_events(db, settings.seed_dir)
        yield
        await app.state.notifier.aclose()
        if app.state.media_backend is not None:
            await app.state.media_backend.aclose()
        await db.close()

    app = FastAPI(title="DevEvent", version="0.1.0", lifespan=lifespan)

    backend = CloudinaryBackend.from_settings(settings)
    app.state.settings = settings
    app.state.database = Database(settings.database_path)
    app.state.media_backend = backend
    app.state.resolver = ImageResolver(
        backend,
        settings.uploads_dir,
        url_path=settings.uploads_url_path,
        home=settings.home_dir,
    )
    app.state.notifier = RevalidationNotifier(
        settings.public_base_url, timeout=settings.revalidate_timeout
    )
    if backend is None:
        log.info("No media host configured; images are stored in %s", settings.uploads_dir)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(DevEventError, _handle_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)

    settings.uploads_dir.mkdir(parents=True, exist_ok=True)
    app.mount(
        settings.uploads_url_path,
        StaticFiles(directory=settings.uploads_dir),
        name="uploads",
    )
    app.include_router(router)
    return app
