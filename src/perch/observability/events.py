"""Route events for observability.

All events are frozen dataclasses with:
- ``timestamp_ns``: Monotonic nanosecond timestamp
- Descriptive fields for the specific event type

Thread Safety:
    All events are frozen (immutable) and safe to share across threads.

"""

import time
from dataclasses import dataclass
from typing import Literal

# How a request left the pipeline
type Outcome = Literal[
    "rendered",
    "sent",
    "redirected",
    "unauthorized",
    "opted_out",
    "failed",
    "forwarded",
]


@dataclass(frozen=True, slots=True)
class RouteRegistered:
    """A route was bound on the router.

    Attributes:
        verb: Upper-case HTTP verb.
        path: Router path pattern.
        source: Module the route came from (empty if built in code).
        cors: True if a CORS responder was bound ahead of the pipeline.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    verb: str
    path: str
    source: str
    cors: bool
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class RequestHandled:
    """A request finished the route pipeline.

    Attributes:
        verb: Upper-case HTTP verb of the route.
        path: Router path pattern of the route.
        url: Request URL (path + query string).
        outcome: Terminal stage the request reached.
        status: Response status, or 0 when the pipeline produced no response.
        duration_ms: Time spent in the pipeline in milliseconds.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    verb: str
    path: str
    url: str
    outcome: Outcome
    status: int
    duration_ms: float
    timestamp_ns: int


type RouteEvent = RouteRegistered | RequestHandled


def now_ns() -> int:
    """Return the current monotonic clock value in nanoseconds."""
    return time.monotonic_ns()
