"""Startup banner — route summary printed before serving.

Detects ``NO_COLOR`` / ``TERM`` for safe fallback.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from perch.config import PerchConfig


def _supports_color() -> bool:
    """Return True if the terminal supports ANSI colors."""
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("TERM") == "dumb":
        return False
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()


_COLOR = _supports_color()

_RESET = "\033[0m" if _COLOR else ""
_BOLD = "\033[1m" if _COLOR else ""
_DIM = "\033[2m" if _COLOR else ""
_CYAN = "\033[36m" if _COLOR else ""
_YELLOW = "\033[33m" if _COLOR else ""


def _clickable_url(url: str) -> str:
    """Wrap *url* in an OSC 8 hyperlink escape if the terminal supports it."""
    if not _COLOR:
        return url
    return f"\033]8;;{url}\033\\{_BOLD}{_CYAN}{url}{_RESET}\033]8;;\033\\"


def format_banner(
    config: PerchConfig,
    *,
    route_count: int = 0,
    cors_count: int = 0,
    load_ms: float = 0.0,
    warnings: list[str] | None = None,
) -> str:
    """Return the startup banner text."""
    from perch import __version__

    lines: list[str] = [
        "",
        f"  {_BOLD}Perch{_RESET} {_DIM}v{__version__}{_RESET}",
        f"  {_DIM}{'─' * 43}{_RESET}",
    ]

    routes_label = "route" if route_count == 1 else "routes"
    timing = f" {_DIM}in {load_ms:.0f}ms{_RESET}" if load_ms > 0 else ""
    lines.append(f"  {_DIM}├─{_RESET} {route_count} {routes_label} loaded{timing}")
    if cors_count:
        lines.append(f"  {_DIM}├─{_RESET} {cors_count} with CORS")
    lines.append(f"  {_DIM}├─{_RESET} routes: {_DIM}{config.routes_path}{_RESET}")
    lines.append(f"  {_DIM}├─{_RESET} templates: {_DIM}{config.templates_path}{_RESET}")
    lines.append(f"  {_DIM}├─{_RESET} errors: {config.error_policy}")

    workers_label = str(config.workers) if config.workers > 0 else "auto"
    lines.append(f"  {_DIM}└─{_RESET} workers: {workers_label}")

    lines.append("")
    lines.append(f"  {_clickable_url(f'http://{config.host}:{config.port}')}")

    if warnings:
        lines.append("")
        lines.extend(f"  {_YELLOW}!{_RESET} {w}" for w in warnings)

    lines.append("")
    return "\n".join(lines)


def print_banner(config: PerchConfig, **kwargs: object) -> None:
    """Print the startup banner to stderr."""
    print(format_banner(config, **kwargs), file=sys.stderr)  # type: ignore[arg-type]
