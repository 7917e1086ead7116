"""Endpoint chains — run the endpoints bound to one verb and path.

Each endpoint receives ``(request, response, next)`` and either finishes
the response, continues with ``await next()``, or forwards an error with
``await next(error)``.  A forwarded error stops the chain.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from perch._types import Endpoint
    from perch.http import RouteRequest, RouteResponse


@dataclass(frozen=True, slots=True)
class ChainResult:
    """Outcome of running a chain.

    Attributes:
        error: Error forwarded with ``next(error)``, or *None*.
        exhausted: True if the last endpoint called ``next()`` without error,
            i.e. nothing in the chain claimed the request.

    """

    error: BaseException | None = None
    exhausted: bool = False


async def run_chain(
    endpoints: Sequence[Endpoint],
    request: RouteRequest,
    response: RouteResponse,
) -> ChainResult:
    """Run *endpoints* in order for one request."""
    state: dict[str, object] = {"error": None, "exhausted": False}

    async def step(index: int) -> None:
        if index >= len(endpoints):
            state["exhausted"] = True
            return

        called = False

        async def next_(error: BaseException | None = None) -> None:
            nonlocal called
            # A continuation resumes the chain at most once
            if called:
                return
            called = True
            if error is not None:
                state["error"] = error
                return
            await step(index + 1)

        await endpoints[index](request, response, next_)

    await step(0)
    error = state["error"]
    return ChainResult(
        error=error if isinstance(error, BaseException) else None,
        exhausted=bool(state["exhausted"]),
    )
