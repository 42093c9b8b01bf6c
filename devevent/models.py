"""Shared Pydantic models for the DevEvent API."""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class EventMode(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    HYBRID = "hybrid"


class Event(BaseModel):
    """A developer conference as stored and served by the API."""

    id: int | None = None
    title: str
    slug: str
    description: str = ""
    overview: str = ""
    image: str
    venue: str = ""
    location: str = ""
    date: str = ""
    time: str = ""
    mode: EventMode = EventMode.HYBRID
    audience: str = ""
    agenda: list[str] = Field(default_factory=list)
    organizer: str = ""
    tags: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("title", "slug", "image")
    @classmethod
    def _required(cls, value: str, info) -> str:
        value = value.strip()
        if not value:
            raise ValueError(f"{info.field_name.capitalize()} is required")
        return value


class Booking(BaseModel):
    """An email sign-up for a single event."""

    id: int | None = None
    event_id: int
    email: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("email")
    @classmethod
    def _valid_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("Email is required")
        if not EMAIL_RE.match(value):
            raise ValueError("Please provide a valid email address")
        return value


class BookingRequest(BaseModel):
    """Body of ``POST /bookings``; the event is named by id or slug."""

    event_id: int | None = None
    slug: str | None = None
    email: str
