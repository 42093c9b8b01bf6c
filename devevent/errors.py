"""API-level error taxonomy.

Every failure a request can hit is raised as one of these. The FastAPI app
renders them as ``{"message": ..., "error": ...}`` with the class's status,
plus a ``validation`` map of per-field messages when one is attached.
"""

from __future__ import annotations


class DevEventError(Exception):
    """Base class: a short ``message`` plus a more specific ``error``."""

    status_code: int = 500
    default_message: str = "Request failed"

    def __init__(
        self,
        error: str,
        *,
        message: str | None = None,
        validation: dict[str, str] | None = None,
    ) -> None:
        super().__init__(error)
        self.error = error
        self.message = message or self.default_message
        self.validation = validation or {}

    def to_dict(self) -> dict:
        body: dict = {"message": self.message, "error": self.error}
        if self.validation:
            body["validation"] = self.validation
        return body


class InvalidInput(DevEventError):
    status_code = 400
    default_message = "Invalid input"


class MissingRequired(DevEventError):
    status_code = 400
    default_message = "Image is required"


class NotFound(DevEventError):
    status_code = 404
    default_message = "Not found"


class ImageNotFound(NotFound):
    """A local image path that does not exist; reported as a bad request."""

    status_code = 400
    default_message = "Image file not found"


class UnsupportedMediaType(DevEventError):
    status_code = 415
    default_message = "Unsupported Content-Type"


class DuplicateKey(DevEventError):
    status_code = 409
    default_message = "Duplicate slug"


class Unavailable(DevEventError):
    status_code = 503
    default_message = "Database connection failed"


class PersistenceFailure(DevEventError):
    default_message = "Event Creation Failed"
