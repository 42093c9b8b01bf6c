"""Endpoint tests for the DevEvent API."""

import json
import re
from unittest.mock import patch

from api.database import EventStore, MalformedQueryError, StoreUnavailableError
from devevent.media import MediaUploadError

UPLOAD_URL = re.compile(r"^/uploads/[0-9a-f]{32}\.\w+$")


def create(client, **fields):
    body = {"title": "T", "slug": "t-1", "image": "https://x/y.png"}
    body.update(fields)
    return client.post("/events", json=body)


class HostedBackend:
    def __init__(self, fail=False):
        self.fail = fail

    async def upload_bytes(self, data, filename="upload"):
        if self.fail:
            raise MediaUploadError("Cloudinary upload failed (401): Invalid Signature")
        return "https://res.cloudinary.com/demo/image/upload/DevEvent/bytes.png"

    async def upload_url(self, url):
        if self.fail:
            raise MediaUploadError("Cloudinary upload failed (401): Invalid Signature")
        return "https://res.cloudinary.com/demo/image/upload/DevEvent/url.png"


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_event_json_end_to_end(client, notifier):
    response = client.post(
        "/events",
        json={
            "title": "T",
            "slug": "t-1",
            "image": "https://x/y.png",
            "date": "2025-01-01",
            "time": "10:00",
            "agenda": ["a", "b"],
            "tags": "x,y",
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Event Created successfully"
    event = body["event"]
    assert event["image"] == "https://x/y.png"
    assert event["agenda"] == ["a", "b"]
    assert event["tags"] == ["x", "y"]
    assert event["mode"] == "hybrid"
    assert event["id"] is not None
    assert event["created_at"]

    stored = client.get("/events/t-1").json()["event"]
    assert stored == event
    assert notifier.paths == ["/"]


def test_list_events(client):
    create(client, slug="first")
    create(client, slug="second")

    response = client.get("/events")
    assert response.status_code == 200
    assert [e["slug"] for e in response.json()["events"]] == ["first", "second"]


def test_options_preflight(client):
    response = client.options("/events")
    assert response.status_code == 204
    assert response.content == b""


def test_duplicate_slug(client, notifier):
    assert create(client).status_code == 201
    response = create(client, title="Other")

    assert response.status_code == 409
    assert response.json() == {
        "message": "Duplicate slug",
        "error": "Change title or provide a unique slug",
    }
    assert notifier.paths == ["/"]


def test_mode_normalization(client):
    assert create(client, slug="a", mode="Online").json()["event"]["mode"] == "online"
    assert create(client, slug="b", mode="foo").json()["event"]["mode"] == "hybrid"


def test_missing_image(client, notifier):
    response = client.post("/events", json={"title": "T", "slug": "t-1"})

    assert response.status_code == 400
    assert response.json()["message"] == "Image is required"
    assert client.get("/events").json() == {"events": []}
    assert notifier.paths == []


def test_missing_local_image_path(client, tmp_path):
    with patch.object(EventStore, "insert") as insert:
        response = create(client, image="~/does-not-exist.png")

    assert response.status_code == 400
    assert response.json()["error"] == f"File not found: {tmp_path}/does-not-exist.png"
    insert.assert_not_called()


def test_invalid_image_field(client):
    response = create(client, image="banner.png")
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid image field"


def test_local_path_image_is_copied_and_served(client, tmp_path):
    (tmp_path / "poster.png").write_bytes(b"poster-bytes")

    response = create(client, image="~/poster.png")

    assert response.status_code == 201
    url = response.json()["event"]["image"]
    assert UPLOAD_URL.match(url)
    assert client.get(url).content == b"poster-bytes"


def test_multipart_upload(client, settings):
    response = client.post(
        "/events",
        data={
            "title": "Form Conf",
            "slug": "form-conf",
            "mode": "OFFLINE",
            "agenda": "Doors|Talks|Drinks",
            "tags": json.dumps(["forms", "web"]),
        },
        files={"image": ("banner.jpg", b"jpeg-bytes", "image/jpeg")},
    )

    assert response.status_code == 201
    event = response.json()["event"]
    assert event["image"].endswith(".jpg")
    assert UPLOAD_URL.match(event["image"])
    assert event["mode"] == "offline"
    assert event["agenda"] == ["Doors", "Talks", "Drinks"]
    assert event["tags"] == ["forms", "web"]
    stored = settings.uploads_dir / event["image"].rsplit("/", 1)[-1]
    assert stored.read_bytes() == b"jpeg-bytes"


def test_urlencoded_form(client):
    response = client.post(
        "/events",
        data={"title": "Url Conf", "image": "https://x/banner.png", "tags": "a;b"},
    )

    assert response.status_code == 201
    event = response.json()["event"]
    assert event["slug"] == "url-conf"
    assert event["image"] == "https://x/banner.png"
    assert event["tags"] == ["a", "b"]


def test_unsupported_content_type(client):
    response = client.post("/events", content=b"title=T", headers={"content-type": "text/plain"})
    assert response.status_code == 415
    assert response.json()["message"] == "Unsupported Content-Type"


def test_malformed_json(client):
    response = client.post(
        "/events", content=b"{not json", headers={"content-type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid JSON body"


def test_validation_failure_reports_fields(client):
    response = client.post("/events", json={"image": "https://x/y.png"})

    assert response.status_code == 500
    body = response.json()
    assert body["message"] == "Event Creation Failed"
    assert body["validation"]["title"] == "Title is required"
    assert body["validation"]["slug"] == "Slug is required"


def test_media_backend_used_when_configured(client):
    client.app.state.resolver.backend = HostedBackend()
    response = create(client)
    assert response.json()["event"]["image"].endswith("/DevEvent/url.png")


def test_media_backend_failure_is_generic_500(client, notifier):
    client.app.state.resolver.backend = HostedBackend(fail=True)
    response = client.post(
        "/events",
        data={"title": "T"},
        files={"image": ("a.png", b"png", "image/png")},
    )

    assert response.status_code == 500
    assert "Invalid Signature" in response.json()["error"]
    assert notifier.paths == []


def test_get_event_normalizes_slug(client):
    create(client)
    response = client.get("/events/T-1")
    assert response.status_code == 200
    assert response.json()["message"] == "Event fetched successfully"
    assert response.json()["event"]["slug"] == "t-1"


def test_get_unknown_event(client):
    response = client.get("/events/nope")
    assert response.status_code == 404
    assert response.json() == {
        "message": "Event not found",
        "error": "No event exists with slug: nope",
    }


def test_get_blank_slug(client):
    response = client.get("/events/%20%20")
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid slug"


def test_get_event_store_unavailable(client):
    with patch.object(
        EventStore, "get_by_slug", side_effect=StoreUnavailableError("unable to open database file")
    ):
        response = client.get("/events/t-1")
    assert response.status_code == 503
    assert response.json()["message"] == "Database connection failed"


def test_get_event_malformed_query(client):
    with patch.object(EventStore, "get_by_slug", side_effect=MalformedQueryError("bad binding")):
        response = client.get("/events/t-1")
    assert response.status_code == 400
    assert response.json()["error"] == "Malformed slug format"


def test_get_event_unexpected_failure(client):
    with patch.object(EventStore, "get_by_slug", side_effect=RuntimeError("boom")):
        response = client.get("/events/t-1")
    assert response.status_code == 500
    assert response.json() == {"message": "Failed to fetch event", "error": "boom"}


def test_similar_events(client):
    create(client, slug="base", tags=["python", "web"])
    create(client, slug="other", tags=["web"])
    create(client, slug="unrelated", tags=["rust"])

    response = client.get("/events/base/similar")
    assert [e["slug"] for e in response.json()["events"]] == ["other"]


def test_booking_flow(client):
    event = create(client).json()["event"]

    response = client.post("/bookings", json={"event_id": event["id"], "email": "Dev@Example.com"})
    assert response.status_code == 201
    assert response.json()["booking"]["email"] == "dev@example.com"

    response = client.post("/bookings", json={"slug": "T-1", "email": "other@example.com"})
    assert response.status_code == 201

    assert client.get("/events/t-1/bookings/count").json() == {"slug": "t-1", "bookings": 2}


def test_booking_unknown_event(client):
    response = client.post("/bookings", json={"event_id": 42, "email": "dev@example.com"})
    assert response.status_code == 404
    assert response.json()["error"] == "Event with ID 42 does not exist"


def test_booking_invalid_email(client):
    event = create(client).json()["event"]
    response = client.post("/bookings", json={"event_id": event["id"], "email": "nope"})
    assert response.status_code == 400
    assert response.json()["validation"] == {"email": "Please provide a valid email address"}


def test_booking_requires_event_reference(client):
    response = client.post("/bookings", json={"email": "dev@example.com"})
    assert response.status_code == 400
    assert response.json()["message"] == "Missing event reference"


def test_booking_body_validation(client):
    response = client.post("/bookings", json={"event_id": 1})
    assert response.status_code == 400
    assert "email" in response.json()["validation"]
