"""Shared type definitions for perch."""

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from perch.http import RouteRequest, RouteResponse

# Lower-case HTTP verb as written in route modules ("get", "post", ...)
type Verb = str

# Router path pattern (e.g., "/search", "/users/{id}")
type RoutePath = str

# Continuation handed to endpoints: ``await next()`` or ``await next(error)``
type Next = Callable[..., Awaitable[None]]

# A bound unit of the per-path chain (CORS responder, route pipeline, ...)
type Endpoint = Callable[[RouteRequest, RouteResponse, Next], Awaitable[None]]

# Route author callables
type HandlerFunc = Callable[..., Any]
type AuthorizeFunc = Callable[[RouteRequest], Any]
type ParamsFunc = Callable[[RouteRequest], Any]

# How the pipeline reports failures
type ErrorPolicy = Literal["respond", "forward"]

# Where declared static locals go
type LocalsPolicy = Literal["merge", "response"]
