"""Shared test fixtures for perch."""

import logging
from pathlib import Path
from typing import Any

import pytest

from perch.chain import ChainResult, run_chain
from perch.http import RouteRequest, RouteResponse


class FakeRouter:
    """In-memory router recording bindings and dispatching like a host would."""

    def __init__(self) -> None:
        self.bindings: dict[tuple[str, str], list[tuple[Any, ...]]] = {}

    def add(self, verb: str, path: str, *endpoints: Any) -> None:
        self.bindings.setdefault((verb, path), []).append(endpoints)

    async def dispatch(
        self,
        verb: str,
        path: str,
        request: RouteRequest,
        response: RouteResponse | None = None,
    ) -> tuple[RouteResponse, ChainResult]:
        response = response or RouteResponse()
        result = ChainResult(exhausted=True)
        for endpoints in self.bindings.get((verb, path), []):
            result = await run_chain(endpoints, request, response)
            if result.error is not None or not result.exhausted:
                break
        return response, result


class RecordingRenderer:
    """Renderer double capturing every (template, context) call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, template: str, context: dict[str, Any]) -> str:
        self.calls.append((template, context))
        return f"<{template}>"


@pytest.fixture
def router() -> FakeRouter:
    return FakeRouter()


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def response(renderer: RecordingRenderer) -> RouteResponse:
    return RouteResponse(renderer=renderer)


@pytest.fixture
def routes_dir(tmp_path: Path) -> Path:
    """Create a routes/ directory for testing."""
    d = tmp_path / "routes"
    d.mkdir()
    return d


@pytest.fixture
def test_logger() -> logging.Logger:
    """A dedicated logger so caplog assertions see only pipeline output."""
    logger = logging.getLogger("perch.tests")
    logger.setLevel(logging.DEBUG)
    return logger


def write_route(routes_dir: Path, name: str, content: str) -> Path:
    """Write a route module and return its path."""
    p = routes_dir / name
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(content)
    return p


def make_request(**kwargs: Any) -> RouteRequest:
    return RouteRequest(**kwargs)
