"""Per-request objects shared by the pipeline and the host binding.

``RouteRequest`` and ``RouteResponse`` are host-agnostic: the Chirp binding
builds them from a Chirp ``Request`` and turns the finished
``RouteResponse`` back into a Chirp ``Response``.  Tests build them
directly.

Both are created per request and never shared between requests.
"""

import json
from collections.abc import Callable, Mapping, MutableMapping
from dataclasses import dataclass, field
from typing import Any

from perch._errors import ResponseAlreadySent

# Host hook: render(template_name, context) -> host response object
type Renderer = Callable[[str, dict[str, Any]], Any]


@dataclass
class RouteRequest:
    """An incoming request as seen by route authors.

    Not frozen: a route's ``set_params`` step may attach derived
    attributes (``request.start = ...``) for later stages to read.

    Attributes:
        method: Upper-case HTTP method.
        path: Request path without query string.
        url: Path plus query string (what the sign-in redirect remembers).
        headers: Request headers with lower-case names.
        query: Query string parameters.
        params: Path parameters matched by the router.
        body: Parsed request body (JSON, form fields, or *None*).
        session: Mutable session mapping (empty dict without sessions).
        raw: The host request object, if any.

    """

    method: str = "GET"
    path: str = "/"
    url: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    session: MutableMapping[str, Any] = field(default_factory=dict)
    raw: Any = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if not self.url:
            self.url = self.path


class RouteResponse:
    """Mutable response builder written to by endpoints.

    Exactly one terminal operation (``render``, ``redirect``, ``send``,
    ``end``) may run per response; a second raises ``ResponseAlreadySent``.
    ``redirected`` is the marker the pipeline checks before rendering.
    """

    __slots__ = (
        "body",
        "content_type",
        "context",
        "headers",
        "locals",
        "redirect_url",
        "renderer",
        "rendered",
        "status",
        "template",
        "_finished",
    )

    def __init__(self, *, renderer: Renderer | None = None) -> None:
        self.status: int = 200
        self.headers: dict[str, str] = {}
        self.locals: dict[str, Any] = {}
        self.body: str | bytes = ""
        self.content_type: str = "text/html; charset=utf-8"
        self.template: str | None = None
        self.context: dict[str, Any] | None = None
        self.rendered: Any = None
        self.redirect_url: str | None = None
        self.renderer = renderer
        self._finished = False

    # -- headers --

    def set_header(self, name: str, value: str) -> None:
        """Set a header, replacing any value under the same name (case-insensitive)."""
        for existing in list(self.headers):
            if existing.lower() == name.lower():
                del self.headers[existing]
        self.headers[name] = value

    def get_header(self, name: str) -> str | None:
        """Return a header value by case-insensitive name."""
        for existing, value in self.headers.items():
            if existing.lower() == name.lower():
                return value
        return None

    # -- state --

    @property
    def finished(self) -> bool:
        """True once a terminal operation has run."""
        return self._finished

    @property
    def redirected(self) -> bool:
        """True once ``redirect()`` has run."""
        return self.redirect_url is not None

    # -- terminal operations --

    def render(self, template: str, context: Mapping[str, Any] | None = None) -> None:
        """Render *template* with ``locals`` overlaid by *context*.

        Delegates to the host renderer when one is attached.  Renderer
        errors propagate and leave the response unfinished.
        """
        self._check_open("render")
        merged = {**self.locals, **(context or {})}
        if self.renderer is not None:
            self.rendered = self.renderer(template, merged)
        self.template = template
        self.context = merged
        self._finished = True

    def redirect(self, url: str, status: int = 302) -> None:
        """Redirect the client to *url*."""
        self._check_open("redirect")
        self.status = status
        self.redirect_url = url
        self.set_header("Location", url)
        self._finished = True

    def send(self, body: Any = None, status: int | None = None) -> None:
        """Send *body* as the response.

        ``str`` and ``bytes`` are sent as-is, *None* as an empty body, and
        anything else is serialized to JSON.
        """
        self._check_open("send")
        if status is not None:
            self.status = status
        if body is None:
            self.body = ""
        elif isinstance(body, (str, bytes)):
            self.body = body
        else:
            self.body = json.dumps(body, default=str)
            self.content_type = "application/json"
        self._finished = True

    def end(self, status: int | None = None) -> None:
        """Finish the response without a body."""
        self.send(None, status)

    def _check_open(self, operation: str) -> None:
        if self._finished:
            msg = f"Cannot {operation}: response already finished"
            raise ResponseAlreadySent(msg)
