"""Route descriptors — the uniform record every route module resolves to.

A route module exports plain attributes (or a factory returning a
mapping) using these names::

    verb / method   get, post, put, patch, delete, options, head
    path            router pattern, e.g. "/users/{id}"
    handler         handler(request, response, next)
    validation      body schema (Chirp rules mapping or a callable)
    authorization   authorization(request); raise to deny
    template        template rendered with the handler's result
    locals          static template locals
    cors            True or a mapping of CORS options (alias: enable_cors)
    set_params      set_params(request); runs before everything else

``RouteDescriptor.from_exports`` resolves aliases and validates the
required fields once, at load time.
"""

import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from chirp.middleware import CORSConfig

from perch._errors import RouteLoadError
from perch.cors import cors_config

VERBS: frozenset[str] = frozenset({
    "get",
    "post",
    "put",
    "patch",
    "delete",
    "options",
    "head",
})

# Export name -> descriptor field
_ALIASES: dict[str, str] = {
    "method": "verb",
    "enable_cors": "cors",
    "setParams": "set_params",
}

# Handlers are called with (request, response, next), truncated to arity
_MAX_HANDLER_ARGS = 3


def _describe(source: Path | None) -> str:
    return str(source) if source is not None else "<route definition>"


def _handler_arity(func: Callable[..., Any], source: Path | None) -> int:
    """Count how many of (request, response, next) *func* accepts positionally.

    Raises:
        RouteLoadError: If the handler accepts no positional parameters.

    """
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        return _MAX_HANDLER_ARGS

    count = 0
    for param in sig.parameters.values():
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            return _MAX_HANDLER_ARGS
        if param.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            count += 1

    if count == 0:
        msg = (
            f"Route handler in {_describe(source)} must accept at least one "
            f"parameter (the request)."
        )
        raise RouteLoadError(msg, field="handler", source=source)
    return min(count, _MAX_HANDLER_ARGS)


@dataclass(frozen=True, slots=True)
class RouteDescriptor:
    """One endpoint: verb, path and the behavior wrapped around its handler.

    Attributes:
        verb: Lower-case HTTP verb.
        path: Router path pattern.
        handler: Callable invoked with ``(request, response, next)``.
        validation: Optional schema validated against the request body.
        authorization: Optional callable invoked with the request.
        template: Optional template rendered with the handler's result.
        locals: Static template locals (read-only).
        cors: Chirp CORS configuration, or *None* when CORS is disabled.
        set_params: Optional parameter-setup callable.
        source: Filesystem path of the originating module.
        name: Route name for logging and the Chirp route table.
        handler_arity: Positional arguments passed to ``handler`` (1-3).

    """

    verb: str
    path: str
    handler: Callable[..., Any]
    validation: Any = None
    authorization: Callable[..., Any] | None = None
    template: str | None = None
    locals: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    cors: CORSConfig | None = None
    set_params: Callable[..., Any] | None = None
    source: Path | None = None
    name: str = ""
    handler_arity: int = _MAX_HANDLER_ARGS

    def __post_init__(self) -> None:
        where = _describe(self.source)
        if not self.verb:
            msg = f"missing `verb` in route definition {where}"
            raise RouteLoadError(msg, field="verb", source=self.source)
        if not self.path:
            msg = f"missing `path` in route definition {where}"
            raise RouteLoadError(msg, field="path", source=self.source)
        if self.handler is None:
            msg = f"missing `handler` in route definition {where}"
            raise RouteLoadError(msg, field="handler", source=self.source)
        if self.verb not in VERBS:
            msg = f"unknown verb {self.verb!r} in route definition {where}"
            raise RouteLoadError(msg, field="verb", source=self.source)
        if not self.path.startswith("/"):
            msg = f"`path` must start with '/', got {self.path!r} in {where}"
            raise RouteLoadError(msg, field="path", source=self.source)
        if not callable(self.handler):
            msg = f"`handler` must be callable in route definition {where}"
            raise RouteLoadError(msg, field="handler", source=self.source)
        for name in ("authorization", "set_params"):
            value = getattr(self, name)
            if value is not None and not callable(value):
                msg = f"`{name}` must be callable in route definition {where}"
                raise RouteLoadError(msg, field=name, source=self.source)
        if not self.name:
            object.__setattr__(self, "name", f"{self.verb.upper()} {self.path}")

    @classmethod
    def from_exports(
        cls,
        exports: Mapping[str, Any],
        *,
        source: Path | None = None,
        name: str | None = None,
        require_authorization: bool = True,
    ) -> RouteDescriptor:
        """Build a descriptor from a route module's exports.

        Args:
            exports: Exported names (module attributes or a factory's mapping).
            source: File the exports came from, for error messages.
            name: Route name; defaults to ``"<VERB> <path>"``.
            require_authorization: Reject exports without ``authorization``.

        Raises:
            RouteLoadError: When a required field is missing or invalid.

        """
        values: dict[str, Any] = {}
        for key, value in exports.items():
            values[_ALIASES.get(key, key)] = value

        where = _describe(source)
        required = ["handler", "verb", "path"]
        if require_authorization:
            required.insert(0, "authorization")
        for field_name in required:
            if not values.get(field_name):
                wire = "method" if field_name == "verb" else field_name
                msg = f"missing `{wire}` in route definition {where}"
                raise RouteLoadError(msg, field=field_name, source=source)

        verb = values["verb"]
        if not isinstance(verb, str):
            msg = f"`method` must be a string in route definition {where}"
            raise RouteLoadError(msg, field="verb", source=source)

        static_locals = values.get("locals") or {}
        if not isinstance(static_locals, Mapping):
            msg = f"`locals` must be a mapping in route definition {where}"
            raise RouteLoadError(msg, field="locals", source=source)

        cors_value = values.get("cors")
        try:
            cors = cors_config(cors_value) if cors_value else None
        except RouteLoadError as exc:
            msg = f"{exc} in route definition {where}"
            raise RouteLoadError(msg, field="cors", source=source) from exc

        handler = values["handler"]
        arity = _handler_arity(handler, source) if callable(handler) else _MAX_HANDLER_ARGS

        return cls(
            verb=verb.lower(),
            path=values["path"],
            handler=handler,
            validation=values.get("validation"),
            authorization=values.get("authorization"),
            template=values.get("template"),
            locals=MappingProxyType(dict(static_locals)),
            cors=cors,
            set_params=values.get("set_params"),
            source=source,
            name=name or "",
            handler_arity=arity,
        )


def check_authorization(
    route: RouteDescriptor,
    *,
    source: Path | None = None,
) -> RouteDescriptor:
    """Return *route* if it carries an ``authorization`` function.

    Descriptors built directly (or returned from a ``route`` factory) skip
    ``from_exports``; strict registration runs them through here instead.

    Raises:
        RouteLoadError: If ``route.authorization`` is *None*.

    """
    if route.authorization is None:
        where = source or route.source
        msg = f"missing `authorization` in route definition {_describe(where)}"
        raise RouteLoadError(msg, field="authorization", source=where)
    return route
