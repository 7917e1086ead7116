"""Route descriptors and discovery.

Scans a ``routes/`` directory for Python modules, imports them, and resolves
each into an immutable ``RouteDescriptor``.

Public API::

    from perch.routes import discover_routes

    descriptors = discover_routes(Path("my-app/routes"), {"*": {"debug": True}})
"""

from perch.routes.descriptor import VERBS, RouteDescriptor
from perch.routes.loader import discover_routes, merge_route_config, route_name

__all__ = [
    "VERBS",
    "RouteDescriptor",
    "discover_routes",
    "merge_route_config",
    "route_name",
]
