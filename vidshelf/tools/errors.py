"""Error kinds raised by the vidshelf tools.

Each carries the HTTP status it maps to; server.py turns them into
``{"error": ..., "details": ...}`` JSON bodies.
"""


class VidshelfError(Exception):
    """Base class. ``error`` is the client-facing message."""

    status_code = 500
    default_error = "Internal server error"

    def __init__(self, error: str | None = None, details: str | None = None):
        self.error = error or self.default_error
        self.details = details
        super().__init__(self.error if details is None else f"{self.error}: {details}")

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


class AccessDenied(VidshelfError):
    """Path resolves outside the sandbox root."""

    status_code = 403
    default_error = "Access denied"


class NotFound(VidshelfError):
    status_code = 404
    default_error = "Not found"


class BadRequest(VidshelfError):
    status_code = 400
    default_error = "Invalid request"


class RangeNotSatisfiable(VidshelfError):
    status_code = 416
    default_error = "Range not satisfiable"

    def __init__(self, size: int, details: str | None = None):
        super().__init__(details=details)
        self.size = size


class InternalFailure(VidshelfError):
    status_code = 500


class EngineError(InternalFailure):
    """The media engine ran and reported failure. ``details`` is its message."""

    default_error = "Failed to process video"
