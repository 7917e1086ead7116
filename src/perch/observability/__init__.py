"""Route observability — registration and request events.

Quick Start:
    >>> from perch.observability import EventLog
    >>> log = EventLog()
    >>> # Pass to Registrar(router, event_log=log); every registration and
    >>> # every pipeline run is recorded.
    >>> log.routes()
    ()

"""

from perch.observability.events import (
    Outcome,
    RequestHandled,
    RouteEvent,
    RouteRegistered,
    now_ns,
)
from perch.observability.log import EventLog, RouteStats

__all__ = [
    "EventLog",
    "Outcome",
    "RequestHandled",
    "RouteEvent",
    "RouteRegistered",
    "RouteStats",
    "now_ns",
]
