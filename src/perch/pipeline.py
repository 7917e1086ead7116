"""Route pipeline — the per-request stages wrapped around a route handler.

Stages run strictly in order and each is optional::

    set_params -> validation -> authorization -> handler -> render
                      \\              \\            \\          \\
                       +--------------+------------+----------+--> error

The first failure short-circuits to the error stage; no stage runs twice
for one request.  A handler returning ``False`` opts out of everything
after it (it has produced its own response, e.g. a redirect).

Error stage contracts (``PipelinePolicy.error_policy``):

``"respond"``
    Authorization failures (anything raised by ``authorization`` and any
    ``UnauthorizedError``) store the URL-encoded request URL in the session
    and redirect to the sign-in path.  Other errors are logged and sent with
    the status from their ``http_error`` attribute (default 500).

``"forward"``
    Every error is forwarded unchanged with ``await next(error)`` so a
    shared downstream handler decides status and redirects.

Thread Safety:
    A pipeline closes over one immutable ``RouteDescriptor`` and keeps no
    per-request state; all request data lives on the request and response
    objects.  One instance serves all requests to its route.

"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from perch._errors import ConfigError, UnauthorizedError, status_for
from perch.observability.events import RequestHandled, now_ns
from perch.validation import validate_body

if TYPE_CHECKING:
    from perch._types import ErrorPolicy, LocalsPolicy, Next
    from perch.config import PerchConfig
    from perch.http import RouteRequest, RouteResponse
    from perch.observability.events import Outcome
    from perch.observability.log import EventLog
    from perch.routes.descriptor import RouteDescriptor

logger = logging.getLogger("perch.pipeline")

_ERROR_POLICIES = ("respond", "forward")
_LOCALS_POLICIES = ("merge", "response")

# Punctuation kept unescaped in the remembered redirect URL
_URI_COMPONENT_SAFE = "!~*'()"


@dataclass(frozen=True, slots=True)
class PipelinePolicy:
    """How the pipeline treats authorization, errors and static locals.

    Attributes:
        error_policy: ``"respond"`` handles errors in place, ``"forward"``
            passes them to ``next(error)``.
        locals_policy: ``"merge"`` merges static locals into the render
            payload (declared values win, collisions are logged);
            ``"response"`` applies them onto ``response.locals``.
        signin_path: Where unauthorized requests are redirected.
        signin_status: Status code of the sign-in redirect.
        redirect_key: Session key remembering the URL-encoded request URL.
        session_locals: Session keys defaulted into the render payload.

    """

    error_policy: ErrorPolicy = "respond"
    locals_policy: LocalsPolicy = "merge"
    signin_path: str = "/user"
    signin_status: int = 307
    redirect_key: str = "redirectTo"
    session_locals: tuple[str, ...] = ("email",)

    def __post_init__(self) -> None:
        if self.error_policy not in _ERROR_POLICIES:
            msg = (
                f"error_policy must be one of {', '.join(_ERROR_POLICIES)}, "
                f"got {self.error_policy!r}"
            )
            raise ConfigError(msg)
        if self.locals_policy not in _LOCALS_POLICIES:
            msg = (
                f"locals_policy must be one of {', '.join(_LOCALS_POLICIES)}, "
                f"got {self.locals_policy!r}"
            )
            raise ConfigError(msg)

    @classmethod
    def from_config(cls, config: PerchConfig) -> PipelinePolicy:
        """Build a policy from the application configuration."""
        return cls(
            error_policy=config.error_policy,
            locals_policy=config.locals_policy,
            signin_path=config.signin_path,
            signin_status=config.signin_status,
            redirect_key=config.redirect_key,
            session_locals=tuple(config.session_locals),
        )


async def _call(func: Any, *args: Any) -> Any:
    """Call a sync or async callable and return its (awaited) result."""
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _finished_outcome(response: RouteResponse) -> Outcome:
    if response.redirected:
        return "redirected"
    if response.template is not None:
        return "rendered"
    return "sent"


class RoutePipeline:
    """Async endpoint running one route's stages for each request.

    Args:
        route: The descriptor this pipeline serves.
        policy: Error/locals policy (defaults to ``PipelinePolicy()``).
        logger: Logger for warnings and error reports.
        event_log: Optional log receiving a ``RequestHandled`` per request.

    """

    __slots__ = ("_event_log", "_logger", "policy", "route")

    def __init__(
        self,
        route: RouteDescriptor,
        *,
        policy: PipelinePolicy | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        event_log: EventLog | None = None,
    ) -> None:
        self.route = route
        self.policy = policy or PipelinePolicy()
        self._logger = logger or globals()["logger"]
        self._event_log = event_log

    async def __call__(
        self,
        request: RouteRequest,
        response: RouteResponse,
        next: Next,
    ) -> None:
        t0 = time.perf_counter()
        outcome = await self._run(request, response, next)
        if self._event_log is not None:
            self._event_log.append(RequestHandled(
                verb=self.route.verb.upper(),
                path=self.route.path,
                url=request.url,
                outcome=outcome,
                status=response.status if response.finished else 0,
                duration_ms=(time.perf_counter() - t0) * 1000,
                timestamp_ns=now_ns(),
            ))

    async def _run(
        self,
        request: RouteRequest,
        response: RouteResponse,
        next: Next,
    ) -> Outcome:
        route = self.route

        try:
            if route.set_params is not None:
                await _call(route.set_params, request)
            if route.validation is not None:
                request.body = await validate_body(request.body, route.validation)
        except Exception as exc:
            return await self._fail(exc, request, response, next)

        try:
            await self._authorize(request)
        except Exception as exc:
            return await self._fail(exc, request, response, next, unauthorized=True)

        forwarded = False

        async def handler_next(error: BaseException | None = None) -> None:
            nonlocal forwarded
            forwarded = True
            await next(error)

        try:
            result = await self._invoke(request, response, handler_next)
            if forwarded:
                return "forwarded"
            # explicit opt out: the handler produced its own response
            if result is False:
                return "opted_out"
            return self._render(request, response, result)
        except Exception as exc:
            return await self._fail(exc, request, response, next)

    async def _authorize(self, request: RouteRequest) -> None:
        authorization = self.route.authorization
        if authorization is None:
            self._logger.warning("no authorization function set for: `%s`", request.url)
            return
        if await _call(authorization, request) is False:
            raise UnauthorizedError("not authorized")

    async def _invoke(
        self,
        request: RouteRequest,
        response: RouteResponse,
        next: Next,
    ) -> Any:
        args = (request, response, next)[: self.route.handler_arity]
        result = await _call(self.route.handler, *args)
        if isinstance(result, Exception):
            raise result
        return result

    def _render(self, request: RouteRequest, response: RouteResponse, result: Any) -> Outcome:
        route = self.route

        if route.template is None:
            if result is not None and not response.finished:
                response.send(result)
            return _finished_outcome(response)

        # the handler redirected or answered on its own
        if response.finished:
            return _finished_outcome(response)

        if result is None:
            result = {}
        if not isinstance(result, Mapping):
            msg = (
                f"{route.name}: handler returned {type(result).__name__}, "
                f"expected a mapping to render {route.template!r}"
            )
            raise TypeError(msg)
        payload = dict(result)

        for key in self.policy.session_locals:
            if not payload.get(key) and request.session.get(key):
                payload[key] = request.session[key]

        if route.locals:
            if self.policy.locals_policy == "merge":
                for key, value in route.locals.items():
                    if key in payload:
                        self._logger.warning(
                            "%s: route declares static local `%s`, "
                            "the handler's value is ignored",
                            request.url,
                            key,
                        )
                    payload[key] = value
            else:
                response.locals.update(route.locals)

        response.render(route.template, payload)
        return "rendered"

    async def _fail(
        self,
        error: Exception,
        request: RouteRequest,
        response: RouteResponse,
        next: Next,
        *,
        unauthorized: bool = False,
    ) -> Outcome:
        if self.policy.error_policy == "forward":
            await next(error)
            return "forwarded"

        if (unauthorized or isinstance(error, UnauthorizedError)) and not response.finished:
            # user is not authenticated, send them to sign in
            redirect_to = quote(request.url, safe=_URI_COMPONENT_SAFE)
            request.session[self.policy.redirect_key] = redirect_to
            response.redirect(self.policy.signin_path, self.policy.signin_status)
            return "unauthorized"

        status = status_for(error)
        self._logger.error(
            "%s(%s): %s",
            request.url,
            status,
            error,
            exc_info=error if status >= 500 else None,
        )
        if not response.finished:
            response.send(str(error) or type(error).__name__, status)
        return "failed"
