"""Perch CLI — perch serve / perch routes.

Entry point for the ``perch`` command-line interface.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from perch._errors import PerchError


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the perch CLI."""
    parser = argparse.ArgumentParser(
        prog="perch",
        description="Route modules and request pipelines for Chirp apps.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # perch serve
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the project's routes under Pounce",
    )
    serve_parser.add_argument("root", nargs="?", default=".", help="Project root directory")
    serve_parser.add_argument("--host", default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port")
    serve_parser.add_argument("--workers", type=int, default=None, help="Worker count (0=auto)")

    # perch routes
    routes_parser = subparsers.add_parser(
        "routes",
        help="List the routes discovered under routes/",
    )
    routes_parser.add_argument("root", nargs="?", default=".", help="Project root directory")

    return parser


def _get_version() -> str:
    """Get the package version."""
    from perch import __version__

    return __version__


class _ListingRouter:
    """Router that accepts bindings without serving them."""

    def add(self, verb: str, path: str, *endpoints: object) -> None:
        pass


def list_routes(root: str) -> int:
    """Register every discovered route and print it as ``VERB path  source``.

    Routes are bound on a router that serves nothing, so the listing goes
    through the same checks ``serve`` applies.  Returns the count.
    """
    from perch.config_loader import load_config
    from perch.observability import EventLog
    from perch.pipeline import PipelinePolicy
    from perch.registrar import Registrar
    from perch.routes.loader import discover_routes

    config = load_config(root)
    log = EventLog()
    registrar = Registrar(
        _ListingRouter(),
        policy=PipelinePolicy.from_config(config),
        require_authorization=config.require_authorization,
        event_log=log,
    )
    registrar.register_all(discover_routes(
        config.routes_path,
        config.route_config,
        require_authorization=config.require_authorization,
    ))

    routes = log.routes()
    if not routes:
        print(f"No routes found in {config.routes_path}")
        return 0

    width = max(len(r.path) for r in routes)
    for route in routes:
        source: Path | str = Path(route.source) if route.source else ""
        if isinstance(source, Path) and source.is_relative_to(config.root):
            source = source.relative_to(config.root)
        flag = "  [cors]" if route.cors else ""
        print(f"{route.verb:<7} {route.path:<{width}}  {source}{flag}")
    return len(routes)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        if args.command == "serve":
            from perch.app import serve

            serve(root=args.root, host=args.host, port=args.port, workers=args.workers)
        elif args.command == "routes":
            list_routes(args.root)
    except PerchError as exc:
        print(f"perch: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
