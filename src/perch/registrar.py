"""Route registrar — binds descriptors and their pipelines on a router.

The registrar is host-agnostic: anything implementing ``Router.add`` can
receive routes.  ``perch.host.ChirpRouter`` is the Chirp binding.

Binding layout for one descriptor::

    (verb, path)     -> [cors responder,] pipeline
    ("options", path) -> cors responder          (once per path, CORS only)

Registering the same descriptor twice creates two bindings on the same key.
The first one answers; the second runs only when the first calls ``next()``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any, Protocol

from perch.cors import cors_responder
from perch.observability.events import RouteRegistered, now_ns
from perch.pipeline import PipelinePolicy, RoutePipeline
from perch.routes.descriptor import RouteDescriptor, check_authorization

if TYPE_CHECKING:
    from perch._types import Endpoint
    from perch.observability.log import EventLog

logger = logging.getLogger("perch.registrar")


class Router(Protocol):
    """Anything routes can be bound on."""

    def add(self, verb: str, path: str, *endpoints: Endpoint) -> None: ...


class Registrar:
    """Register route descriptors on a router.

    Args:
        router: The router receiving bindings.
        policy: Pipeline policy shared by every registered route.
        logger: Logger for registration messages (also passed to pipelines).
        event_log: Optional log receiving registration and request events.

    """

    __slots__ = (
        "_event_log",
        "_logger",
        "_preflight_paths",
        "policy",
        "require_authorization",
        "router",
    )

    def __init__(
        self,
        router: Router,
        *,
        policy: PipelinePolicy | None = None,
        require_authorization: bool = True,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        event_log: EventLog | None = None,
    ) -> None:
        self.router = router
        self.policy = policy or PipelinePolicy()
        self.require_authorization = require_authorization
        self._logger = logger or globals()["logger"]
        self._event_log = event_log
        self._preflight_paths: set[str] = set()

    def register(self, route: RouteDescriptor | Mapping[str, Any]) -> RouteDescriptor:
        """Bind *route* on the router and return its descriptor.

        Mappings are resolved into a descriptor first.  An invalid mapping, or
        a descriptor without ``authorization`` while ``require_authorization``
        is set, raises ``RouteLoadError`` and leaves the router untouched.
        """
        if not isinstance(route, RouteDescriptor):
            route = RouteDescriptor.from_exports(
                route, require_authorization=self.require_authorization,
            )
        elif self.require_authorization:
            check_authorization(route)

        pipeline = RoutePipeline(
            route,
            policy=self.policy,
            logger=self._logger,
            event_log=self._event_log,
        )

        if route.cors is not None:
            responder = cors_responder(route.cors)
            self.router.add(route.verb, route.path, responder, pipeline)
            if route.verb != "options" and route.path not in self._preflight_paths:
                self._preflight_paths.add(route.path)
                self.router.add("options", route.path, responder)
        else:
            self.router.add(route.verb, route.path, pipeline)

        self._logger.debug(
            "registered %s %s%s",
            route.verb.upper(),
            route.path,
            " (cors)" if route.cors is not None else "",
        )
        if self._event_log is not None:
            self._event_log.append(RouteRegistered(
                verb=route.verb.upper(),
                path=route.path,
                source=str(route.source) if route.source else "",
                cors=route.cors is not None,
                timestamp_ns=now_ns(),
            ))
        return route

    def register_all(self, routes: Iterable[RouteDescriptor | Mapping[str, Any]]) -> int:
        """Register every route in *routes* and return how many were bound."""
        count = 0
        for route in routes:
            self.register(route)
            count += 1
        return count
