"""Perch application — route modules mounted on a Chirp App.

The public functions are the primary entry points:

    create_app(root)       build a Chirp App with every route mounted
    mount_routes(app, cfg) discover + register routes on an existing App
    serve(root)            create the app and run it under Pounce
"""

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from perch._errors import ConfigError
from perch.config_loader import load_config

if TYPE_CHECKING:
    from chirp import App

    from perch.config import PerchConfig
    from perch.observability.log import EventLog
    from perch.routes.descriptor import RouteDescriptor


def _create_chirp_app(config: PerchConfig) -> App:
    """Create a Chirp App rendering templates from ``config.templates_path``."""
    from chirp import App, AppConfig

    app_config = AppConfig(
        template_dir=config.templates_path,
        debug=config.debug,
        host=config.host,
        port=config.port,
    )
    return App(config=app_config)


def _wire_sessions(app: App, config: PerchConfig) -> None:
    """Add signed cookie sessions when ``session_secret`` is configured."""
    if not config.session_secret:
        return
    try:
        from chirp.middleware.sessions import SessionConfig, SessionMiddleware
    except ImportError as exc:
        msg = (
            "session_secret requires itsdangerous. "
            "Install with: pip install itsdangerous"
        )
        raise ConfigError(msg) from exc
    app.add_middleware(SessionMiddleware(SessionConfig(secret_key=config.session_secret)))


def mount_routes(
    app: App,
    config: PerchConfig,
    *,
    event_log: EventLog | None = None,
    logger: logging.Logger | None = None,
) -> tuple[RouteDescriptor, ...]:
    """Discover route modules under ``config.routes_path`` and register them on *app*.

    Returns the registered descriptors (empty if the directory is missing).

    Raises:
        RouteLoadError: If a route module cannot be loaded.

    """
    from perch.host import ChirpRouter
    from perch.pipeline import PipelinePolicy
    from perch.registrar import Registrar
    from perch.routes.loader import discover_routes

    routes = discover_routes(
        config.routes_path,
        config.route_config,
        require_authorization=config.require_authorization,
    )
    registrar = Registrar(
        ChirpRouter(app),
        policy=PipelinePolicy.from_config(config),
        require_authorization=config.require_authorization,
        logger=logger,
        event_log=event_log,
    )
    registrar.register_all(routes)
    return routes


def create_app(
    root: str | Path = ".",
    *,
    event_log: EventLog | None = None,
    **kwargs: Any,
) -> App:
    """Build a Chirp App with every route under ``<root>/routes`` mounted.

    Args:
        root: Project root directory.
        event_log: Optional log receiving route and request events.
        **kwargs: Override PerchConfig fields.

    """
    config = load_config(Path(root), **kwargs)
    app, _routes = _build(config, event_log=event_log)
    return app


def _build(
    config: PerchConfig,
    *,
    event_log: EventLog | None = None,
) -> tuple[App, tuple[RouteDescriptor, ...]]:
    app = _create_chirp_app(config)
    _wire_sessions(app, config)
    routes = mount_routes(app, config, event_log=event_log)
    return app, routes


def serve(root: str | Path = ".", **kwargs: Any) -> None:
    """Run the project's routes under Pounce.

    Args:
        root: Project root directory.
        **kwargs: Override PerchConfig fields.

    """
    from pounce.config import ServerConfig
    from pounce.server import Server

    from perch.banner import print_banner

    config = load_config(Path(root), **kwargs)
    t0 = time.perf_counter()
    app, routes = _build(config)
    load_ms = (time.perf_counter() - t0) * 1000

    warnings: list[str] = []
    if not config.routes_path.is_dir():
        warnings.append(f"no routes directory at {config.routes_path}")
    if not config.session_secret:
        warnings.append("sessions are off; sign-in redirects cannot remember the URL")

    print_banner(
        config,
        route_count=len(routes),
        cors_count=sum(1 for r in routes if r.cors is not None),
        load_ms=load_ms,
        warnings=warnings,
    )

    server_config = ServerConfig(
        host=config.host,
        port=config.port,
        workers=config.workers,  # 0 = auto-detect via Pounce
    )
    Server(server_config, app).run()
