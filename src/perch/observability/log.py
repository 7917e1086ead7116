"""Route event log — registrations and handled requests, per route.

Keeps a bounded ring buffer of ``RouteRegistered`` and ``RequestHandled``
events.  Queries are keyed the way routes are: by verb and router path
pattern, plus request outcome.  ``routes()`` replays registrations (the
``perch routes`` listing is built from it) and ``route_stats()`` folds
handled requests into per-route counters.

Thread Safety:
    All methods are protected by a ``threading.Lock``.  Safe for
    concurrent reads and writes from multiple threads.

"""

import threading
from collections import deque
from dataclasses import dataclass, field

from perch.observability.events import RequestHandled, RouteEvent, RouteRegistered


@dataclass(slots=True)
class RouteStats:
    """Handled-request counters for one ``(verb, path)``.

    Attributes:
        requests: Requests that ran the route's pipeline.
        by_outcome: Request count per pipeline outcome.
        total_ms: Summed pipeline time in milliseconds.

    """

    requests: int = 0
    by_outcome: dict[str, int] = field(default_factory=dict)
    total_ms: float = 0.0

    @property
    def mean_ms(self) -> float:
        """Mean pipeline time, 0.0 before the first request."""
        return self.total_ms / self.requests if self.requests else 0.0


class EventLog:
    """Bounded route event store.

    When the buffer is full the oldest events are discarded.

    Args:
        max_events: Maximum number of events to retain.

    """

    __slots__ = ("_events", "_lock")

    def __init__(self, max_events: int = 10_000) -> None:
        self._events: deque[RouteEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def append(self, event: RouteEvent) -> None:
        """Record an event."""
        with self._lock:
            self._events.append(event)

    def query(
        self,
        *,
        event_type: type | None = None,
        verb: str | None = None,
        path: str | None = None,
        outcome: str | None = None,
        since_ns: int = 0,
        limit: int = 100,
    ) -> list[RouteEvent]:
        """Return matching events, most recent first.

        Args:
            event_type: Only events of this type.
            verb: Only events for this HTTP verb (case-insensitive).
            path: Only events for this router path pattern (exact).
            outcome: Only ``RequestHandled`` events with this outcome.
            since_ns: Only events at or after this timestamp.
            limit: Maximum number of events to return.

        """
        wanted_verb = verb.upper() if verb is not None else None
        with self._lock:
            results: list[RouteEvent] = []
            for event in reversed(self._events):
                if len(results) >= limit:
                    break
                if event_type is not None and not isinstance(event, event_type):
                    continue
                if wanted_verb is not None and event.verb != wanted_verb:
                    continue
                if path is not None and event.path != path:
                    continue
                if outcome is not None and getattr(event, "outcome", None) != outcome:
                    continue
                if event.timestamp_ns < since_ns:
                    continue
                results.append(event)
            return results

    def routes(self) -> tuple[RouteRegistered, ...]:
        """Return registrations in the order routes were bound."""
        with self._lock:
            return tuple(e for e in self._events if isinstance(e, RouteRegistered))

    def route_stats(self) -> dict[tuple[str, str], RouteStats]:
        """Fold handled requests into counters keyed by ``(VERB, path)``."""
        with self._lock:
            handled = [e for e in self._events if isinstance(e, RequestHandled)]

        stats: dict[tuple[str, str], RouteStats] = {}
        for event in handled:
            entry = stats.setdefault((event.verb, event.path), RouteStats())
            entry.requests += 1
            entry.by_outcome[event.outcome] = entry.by_outcome.get(event.outcome, 0) + 1
            entry.total_ms += event.duration_ms
        return stats

    def clear(self) -> int:
        """Drop all events and return how many were dropped."""
        with self._lock:
            count = len(self._events)
            self._events.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
