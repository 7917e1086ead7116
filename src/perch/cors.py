"""Per-route CORS on top of Chirp's ``CORSMiddleware``.

Routes that declare ``cors = True`` (or ``enable_cors = True``) get a
responder bound ahead of their pipeline, and on the ``OPTIONS`` verb of
the same path for pre-flight requests.  The header rules are Chirp's;
this module maps a route's ``cors`` export onto a ``CORSConfig`` with the
permissive defaults route modules expect (any origin, the common verbs)
and runs the middleware as a chain endpoint.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import fields
from typing import TYPE_CHECKING, Any

from chirp.http.response import Response
from chirp.middleware import CORSConfig, CORSMiddleware

from perch._errors import RouteLoadError

if TYPE_CHECKING:
    from perch._types import Endpoint, Next
    from perch.http import RouteRequest, RouteResponse

_DEFAULT_ORIGINS = ("*",)
_DEFAULT_METHODS = ("GET", "HEAD", "PUT", "PATCH", "POST", "DELETE", "OPTIONS")
_LIST_FIELDS = frozenset({"allow_origins", "allow_methods", "allow_headers", "expose_headers"})


def cors_config(value: object) -> CORSConfig:
    """Build a Chirp ``CORSConfig`` from a route's ``cors`` export.

    Accepts ``True``, an existing ``CORSConfig``, or a mapping of
    ``CORSConfig`` field names.  ``origin`` (string or list) is accepted
    as an alias for ``allow_origins``; list fields may also be given as
    comma-separated strings.

    Raises:
        RouteLoadError: On unknown keys or an unsupported value type.

    """
    if isinstance(value, CORSConfig):
        return value
    if value is True:
        return CORSConfig(allow_origins=_DEFAULT_ORIGINS, allow_methods=_DEFAULT_METHODS)
    if not isinstance(value, Mapping):
        msg = f"'cors' must be a bool or a mapping, got {type(value).__name__}"
        raise RouteLoadError(msg, field="cors")

    known = {f.name for f in fields(CORSConfig)}
    kwargs: dict[str, Any] = {
        "allow_origins": _DEFAULT_ORIGINS,
        "allow_methods": _DEFAULT_METHODS,
    }
    for key, raw in value.items():
        name = "allow_origins" if key == "origin" else key
        if name not in known:
            msg = f"Unknown CORS option {key!r}"
            raise RouteLoadError(msg, field="cors")
        kwargs[name] = _as_tuple(raw) if name in _LIST_FIELDS else raw
    kwargs["allow_methods"] = tuple(m.upper() for m in kwargs["allow_methods"])
    return CORSConfig(**kwargs)


def _as_tuple(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if isinstance(value, Iterable):
        return tuple(str(v) for v in value)
    msg = f"Expected a string or list in CORS options, got {type(value).__name__}"
    raise RouteLoadError(msg, field="cors")


def cors_responder(config: CORSConfig | None = None) -> Endpoint:
    """Return an endpoint running Chirp's ``CORSMiddleware`` for one route.

    Pre-flight requests are answered by the middleware and end the
    response with its status (204).  Every other request continues down
    the chain; the headers the middleware adds are copied onto the route
    response.
    """
    middleware = CORSMiddleware(config or cors_config(True))

    async def responder(request: RouteRequest, response: RouteResponse, next: Next) -> None:
        continued = False

        async def downstream(_request: Any) -> Response:
            nonlocal continued
            continued = True
            await next()
            return Response()

        answer = await middleware(request, downstream)
        for name, value in answer.headers:
            response.set_header(name, value)
        if not continued:
            response.end(answer.status)

    return responder
