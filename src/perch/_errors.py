"""Perch error hierarchy.

All perch-specific errors inherit from PerchError for easy catching.

Load-time errors (``ConfigError``, ``RouteLoadError``) abort startup.
Request-time errors (``RouteError`` and subclasses) never escape the
request pipeline; they carry an ``http_error`` status used when the
pipeline reports them.
"""

from pathlib import Path


class PerchError(Exception):
    """Base error for all perch operations."""


class ConfigError(PerchError):
    """Invalid or missing configuration."""


class RouteLoadError(ConfigError):
    """A route module or descriptor could not be turned into a route.

    Attributes:
        field: Name of the missing or invalid descriptor field, if any.
        source: File the descriptor came from, if known.

    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        source: Path | str | None = None,
    ) -> None:
        super().__init__(message)
        self.field = field
        self.source = source


class RouteError(PerchError):
    """A request failed inside the route pipeline.

    ``http_error`` is the status code reported to the client.
    """

    http_error: int = 500

    def __init__(self, message: str = "", *, http_error: int | None = None) -> None:
        super().__init__(message)
        if http_error is not None:
            self.http_error = http_error


class ValidationError(RouteError):
    """The request body did not satisfy the route's validation schema."""

    http_error = 400

    def __init__(
        self,
        message: str = "",
        *,
        errors: dict[str, list[str]] | None = None,
        http_error: int | None = None,
    ) -> None:
        super().__init__(message, http_error=http_error)
        self.errors: dict[str, list[str]] = dict(errors or {})


class UnauthorizedError(RouteError):
    """The current user may not access the route."""

    http_error = 401


class ResponseAlreadySent(PerchError):  # noqa: N818
    """A terminal operation was attempted on a finished response."""


def status_for(error: BaseException, default: int = 500) -> int:
    """Return the HTTP status an error should be reported with.

    Reads ``http_error`` first, then ``status`` (Chirp's ``HTTPError``),
    falling back to *default*.
    """
    for attr in ("http_error", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            return value
    return default
