"""Perch configuration.

PerchConfig is the central configuration object, frozen after creation.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from perch._errors import ConfigError

_ERROR_POLICIES = ("respond", "forward")
_LOCALS_POLICIES = ("merge", "response")


@dataclass(frozen=True, slots=True)
class PerchConfig:
    """Configuration for a Perch application.

    Attributes:
        root: Path to the project root (contains routes/, templates/).
              Always resolved to an absolute path on construction.
        host: Bind address for ``serve``.
        port: Bind port for ``serve``.
        workers: Number of Pounce workers (0 = auto-detect).
        routes_dir: Directory containing route modules.
        templates_dir: Directory containing Kida templates.
        route_config: Per-route factory options keyed by route name;
            the ``"*"`` entry applies to every route.
        require_authorization: Refuse route modules without an
            ``authorization`` function.
        error_policy: ``"respond"`` or ``"forward"``.
        locals_policy: ``"merge"`` or ``"response"``.
        signin_path: Redirect target for unauthorized requests.
        signin_status: Status code of the sign-in redirect.
        redirect_key: Session key remembering the original request URL.
        session_locals: Session keys defaulted into template payloads.
        session_secret: Secret for signed cookie sessions; sessions are
            off when unset.
        debug: Run Chirp in debug mode.

    """

    root: Path = field(default_factory=Path.cwd)
    host: str = "127.0.0.1"
    port: int = 3000
    workers: int = 0
    routes_dir: str = "routes"
    templates_dir: str = "templates"
    route_config: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    require_authorization: bool = True
    error_policy: str = "respond"
    locals_policy: str = "merge"
    signin_path: str = "/user"
    signin_status: int = 307
    redirect_key: str = "redirectTo"
    session_locals: tuple[str, ...] = ("email",)
    session_secret: str | None = None
    debug: bool = False

    def __post_init__(self) -> None:
        root = Path(self.root)
        if not root.is_absolute():
            root = root.resolve()
        object.__setattr__(self, "root", root)

        if self.error_policy not in _ERROR_POLICIES:
            msg = f"error_policy must be 'respond' or 'forward', got {self.error_policy!r}"
            raise ConfigError(msg)
        if self.locals_policy not in _LOCALS_POLICIES:
            msg = f"locals_policy must be 'merge' or 'response', got {self.locals_policy!r}"
            raise ConfigError(msg)
        if not self.signin_path.startswith("/"):
            msg = f"signin_path must start with '/', got {self.signin_path!r}"
            raise ConfigError(msg)
        if not 300 <= self.signin_status < 400:
            msg = f"signin_status must be a 3xx status, got {self.signin_status}"
            raise ConfigError(msg)

        if not isinstance(self.route_config, Mapping):
            msg = f"route_config must be a mapping, got {type(self.route_config).__name__}"
            raise ConfigError(msg)
        for name, options in self.route_config.items():
            if not isinstance(options, Mapping):
                msg = f"route_config[{name!r}] must be a mapping"
                raise ConfigError(msg)
        object.__setattr__(self, "route_config", MappingProxyType(dict(self.route_config)))

        if isinstance(self.session_locals, str):
            object.__setattr__(self, "session_locals", (self.session_locals,))
        else:
            object.__setattr__(self, "session_locals", tuple(self.session_locals))

    @property
    def routes_path(self) -> Path:
        """Absolute path to the route modules directory."""
        return self.root / self.routes_dir

    @property
    def templates_path(self) -> Path:
        """Absolute path to the templates directory."""
        return self.root / self.templates_dir
