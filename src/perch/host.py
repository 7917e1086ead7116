"""Chirp host binding — a ``Router`` that registers bindings on a Chirp App.

Each distinct ``(verb, path)`` becomes one Chirp route.  Its handler builds
a ``RouteRequest`` / ``RouteResponse`` pair, runs every chain bound to the
key in registration order, and converts the finished ``RouteResponse``
into a Chirp ``Response``.

Must be used before the Chirp app is frozen (before the first request).
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from chirp import HTTPError, NotFound, Response, Template
from chirp.middleware.sessions import get_session
from chirp.server.negotiation import negotiate

from perch._errors import PerchError, status_for
from perch.chain import run_chain
from perch.http import RouteRequest, RouteResponse

if TYPE_CHECKING:
    from chirp import App

    from perch._types import Endpoint
    from perch.http import Renderer

logger = logging.getLogger("perch.host")

_JSON_TYPES = frozenset({"application/json"})
_FORM_TYPES = frozenset({"application/x-www-form-urlencoded", "multipart/form-data"})


async def read_body(request: Any) -> Any:
    """Parse a Chirp request body by content type.

    JSON bodies are decoded, form bodies become a plain dict of first
    values, anything else (including an empty body) is *None*.

    Raises:
        HTTPError: 400 if a JSON body cannot be decoded.

    """
    content_type = (request.content_type or "").split(";", 1)[0].strip().lower()
    if content_type in _JSON_TYPES:
        raw = await request.body()
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise HTTPError(400, f"Malformed JSON body: {exc}") from exc
    if content_type in _FORM_TYPES:
        form = await request.form()
        return {key: form.get(key) for key in form}
    return None


def current_session() -> dict[str, Any]:
    """Return the active Chirp session, or a throwaway dict without sessions."""
    try:
        return get_session()
    except LookupError:
        return {}


async def build_request(request: Any) -> RouteRequest:
    """Build a ``RouteRequest`` from a Chirp ``Request``."""
    return RouteRequest(
        method=request.method,
        path=request.path,
        url=request.url,
        headers={name.lower(): value for name, value in request.headers.items()},
        query=dict(request.query.items()),
        params=dict(request.path_params),
        body=await read_body(request),
        session=current_session(),
        raw=request,
    )


def to_chirp_response(response: RouteResponse) -> Any:
    """Convert a finished ``RouteResponse`` into a Chirp response."""
    rendered = response.rendered
    if isinstance(rendered, Response):
        out = rendered if response.status == 200 else rendered.with_status(response.status)
    elif rendered is not None:
        # streaming and SSE responses pass through untouched
        return rendered
    else:
        out = Response(
            body=response.body,
            status=response.status,
            content_type=response.content_type,
        )
    if response.headers:
        out = out.with_headers(response.headers)
    return out


class ChirpRouter:
    """Bind perch endpoints on a Chirp ``App``.

    Args:
        app: The (unfrozen) Chirp application.
        logger: Logger for binding messages.

    """

    __slots__ = ("_app", "_bindings", "_logger")

    def __init__(self, app: App, *, logger: logging.Logger | None = None) -> None:
        self._app = app
        self._logger = logger or globals()["logger"]
        self._bindings: dict[tuple[str, str], list[tuple[Endpoint, ...]]] = {}

    def add(self, verb: str, path: str, *endpoints: Endpoint) -> None:
        """Append a chain of *endpoints* for *verb* and *path*."""
        key = (verb.upper(), path)
        chains = self._bindings.get(key)
        if chains is None:
            chains = self._bindings[key] = []
            self._app.route(path, methods=[key[0]], name=f"{key[0]} {path}")(
                self._make_handler(chains),
            )
            self._logger.debug("bound chirp route %s %s", key[0], path)
        chains.append(tuple(endpoints))

    @property
    def bindings(self) -> dict[tuple[str, str], int]:
        """Number of chains bound per ``(VERB, path)``."""
        return {key: len(chains) for key, chains in self._bindings.items()}

    def _renderer(self, request: Any) -> Renderer:
        app = self._app

        def render(template: str, context: dict[str, Any]) -> Any:
            return negotiate(
                Template(template, **context),
                kida_env=app._kida_env,
                request=request,
            )

        return render

    def _make_handler(self, chains: list[tuple[Endpoint, ...]]) -> Any:
        router = self

        async def perch_handler(request: Any) -> Any:
            route_request = await build_request(request)
            response = RouteResponse(renderer=router._renderer(request))

            for endpoints in chains:
                result = await run_chain(endpoints, route_request, response)
                if result.error is not None:
                    raise _as_http_error(result.error)
                if not result.exhausted:
                    break
            else:
                if not response.finished:
                    raise NotFound()

            return to_chirp_response(response)

        return perch_handler


def _as_http_error(error: BaseException) -> BaseException:
    """Map perch errors carrying a status onto Chirp's ``HTTPError``."""
    if isinstance(error, PerchError):
        converted = HTTPError(status_for(error), str(error))
        converted.__cause__ = error
        return converted
    return error
