"""Route loader — discover and import route modules.

Scans a ``routes/`` directory for Python modules and turns each into a
``RouteDescriptor``.  A module either exports descriptor fields as plain
module attributes::

    # routes/GET-search.py
    method = "get"
    path = "/search"
    template = "search.html"

    def authorization(request):
        return True

    async def handler(request):
        return {"results": []}

or a ``route`` factory called with the route's merged configuration::

    # routes/GET-report.py
    def route(config):
        return {
            "method": "get",
            "path": "/report",
            "authorization": lambda request: True,
            "handler": lambda request: {"key": config["key"]},
        }

Route configuration is keyed by route name (the module path relative to
``routes/`` without ``.py``).  The ``"*"`` entry applies to every route;
name-specific keys win.
"""

import importlib.util
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from perch._errors import RouteLoadError
from perch.routes.descriptor import RouteDescriptor, check_authorization

# Module attribute holding a factory (or a ready-made mapping)
_FACTORY_NAME = "route"

# Route-config key applied to every route
WILDCARD = "*"


def discover_routes(
    routes_dir: Path,
    route_config: Mapping[str, Mapping[str, Any]] | None = None,
    *,
    require_authorization: bool = True,
) -> tuple[RouteDescriptor, ...]:
    """Scan *routes_dir* for route modules and return their descriptors.

    Skips ``__init__.py``, ``__pycache__`` directories, and files whose names
    start with ``_``.  Returns an empty tuple when *routes_dir* does not exist
    or contains no route modules.  Order follows sorted file paths; callers
    must not attach meaning to it.

    Raises:
        RouteLoadError: When a module fails to import or a descriptor is
            missing a required field.

    """
    if not routes_dir.is_dir():
        return ()

    config = route_config or {}
    descriptors: list[RouteDescriptor] = []

    for py_file in sorted(routes_dir.rglob("*.py")):
        if py_file.name.startswith("_"):
            continue
        if "__pycache__" in py_file.parts:
            continue

        name = route_name(py_file, routes_dir)
        module = _load_module(py_file, routes_dir)
        exports = _resolve_exports(module, name, py_file, config)
        if isinstance(exports, RouteDescriptor):
            if require_authorization:
                check_authorization(exports, source=py_file)
            descriptors.append(exports)
            continue
        descriptors.append(RouteDescriptor.from_exports(
            exports,
            source=py_file,
            name=name,
            require_authorization=require_authorization,
        ))

    return tuple(descriptors)


def route_name(py_file: Path, routes_dir: Path) -> str:
    """Return the route name for a module file.

    ``routes/GET-cors.py``   -> ``GET-cors``
    ``routes/api/users.py``  -> ``api/users``

    """
    relative = py_file.relative_to(routes_dir).with_suffix("")
    return "/".join(relative.parts)


def merge_route_config(
    route_config: Mapping[str, Mapping[str, Any]],
    name: str,
) -> dict[str, Any]:
    """Merge the wildcard entry with the entry for *name* (name wins)."""
    return {
        **dict(route_config.get(WILDCARD) or {}),
        **dict(route_config.get(name) or {}),
    }


def _load_module(py_file: Path, routes_dir: Path) -> object:
    """Import a Python file as a module without touching ``sys.path``.

    Raises:
        RouteLoadError: If the file cannot be imported.

    """
    relative = py_file.relative_to(routes_dir)
    parts = list(relative.with_suffix("").parts)
    module_name = "perch_routes." + ".".join(parts)

    spec = importlib.util.spec_from_file_location(module_name, py_file)
    if spec is None or spec.loader is None:
        msg = f"Cannot import route module {py_file}"
        raise RouteLoadError(msg, source=py_file)

    try:
        module = importlib.util.module_from_spec(spec)
        # Register in sys.modules so relative imports within route files work
        sys.modules[module_name] = module
        spec.loader.exec_module(module)  # type: ignore[union-attr]
    except Exception as exc:
        sys.modules.pop(module_name, None)
        msg = f"Failed to load route module {py_file}: {exc}"
        raise RouteLoadError(msg, source=py_file) from exc

    return module


def _resolve_exports(
    module: object,
    name: str,
    py_file: Path,
    route_config: Mapping[str, Mapping[str, Any]],
) -> Mapping[str, Any] | RouteDescriptor:
    """Return a module's exports, calling its ``route`` factory if it has one."""
    factory = getattr(module, _FACTORY_NAME, None)

    if factory is None:
        return {
            key: value
            for key, value in vars(module).items()
            if not key.startswith("_")
        }

    if isinstance(factory, (Mapping, RouteDescriptor)):
        return factory

    if not callable(factory):
        msg = (
            f"Route module {py_file}: '{_FACTORY_NAME}' must be a mapping or a "
            f"factory function, got {type(factory).__name__}"
        )
        raise RouteLoadError(msg, field=_FACTORY_NAME, source=py_file)

    try:
        exports = factory(merge_route_config(route_config, name))
    except RouteLoadError:
        raise
    except Exception as exc:
        msg = f"Route factory in {py_file} failed: {exc}"
        raise RouteLoadError(msg, field=_FACTORY_NAME, source=py_file) from exc

    if not isinstance(exports, (Mapping, RouteDescriptor)):
        msg = (
            f"Route factory in {py_file} must return a mapping, "
            f"got {type(exports).__name__}"
        )
        raise RouteLoadError(msg, field=_FACTORY_NAME, source=py_file)
    return exports
