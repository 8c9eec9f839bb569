import sqlite3


class ClassificationError(Exception):
    """Base class for failures of a single classification call."""

    kind = "error"


class RateLimited(ClassificationError):
    """The classification service answered 429; the caller decides when to retry."""

    kind = "rate_limited"

    def __init__(self, retry_after_seconds: float, message: str = "AI API rate limited") -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"{message} (retry after {retry_after_seconds:g}s)")


class MalformedResponse(ClassificationError):
    """The response could not be parsed into a suggestion, even after repair."""

    kind = "malformed"


class NotJsonResponse(MalformedResponse):
    """The endpoint returned HTML or another non-JSON body; usually a wrong base URL."""

    kind = "not_json"


class TransportError(ClassificationError):
    """The classification service could not be reached or failed with a non-429 status."""

    kind = "transport"


class PersistenceError(Exception):
    """The store rejected a write, e.g. a duplicate list name."""


# What a list store may raise for a single write; callers log these and move on.
STORE_ERRORS = (PersistenceError, sqlite3.Error)
