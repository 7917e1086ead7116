"""Load PerchConfig from perch.yaml / perch.toml if present.

Merges file config with keyword overrides.  Overrides win.
"""

from __future__ import annotations

import tomllib
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from perch._errors import ConfigError
from perch.config import PerchConfig

_FIELDS = frozenset(f.name for f in fields(PerchConfig)) - {"root"}


def load_config(root: str | Path = ".", **overrides: Any) -> PerchConfig:
    """Load PerchConfig from *root*, merging perch.yaml/perch.yml/perch.toml.

    Raises:
        ConfigError: If the config file is malformed or names unknown keys.

    """
    root = Path(root)
    file_config = _read_perch_config(root)
    merged = {**file_config, **{k: v for k, v in overrides.items() if v is not None}}
    unknown = sorted(set(merged) - _FIELDS)
    if unknown:
        msg = f"Unknown config keys: {', '.join(unknown)}"
        raise ConfigError(msg)
    return PerchConfig(root=root, **merged)


def _read_perch_config(root: Path) -> dict[str, Any]:
    """Read perch config from yaml/toml if present.  Empty dict otherwise."""
    for name in ("perch.yaml", "perch.yml"):
        path = root / name
        if path.is_file():
            return _flatten_perch_section(_parse_yaml(path), path)
    toml_path = root / "perch.toml"
    if toml_path.is_file():
        return _flatten_perch_section(_parse_toml(toml_path), toml_path)
    return {}


def _parse_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        msg = f"Invalid YAML in {path}: {exc}"
        raise ConfigError(msg) from exc


def _parse_toml(path: Path) -> Any:
    try:
        return tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {path}: {exc}"
        raise ConfigError(msg) from exc


def _flatten_perch_section(data: Any, path: Path) -> dict[str, Any]:
    """Collect settings from the ``perch`` section and the top level.

    A ``routes`` table becomes ``route_config``.
    """
    if not isinstance(data, dict):
        msg = f"{path} must contain a mapping at the top level"
        raise ConfigError(msg)

    result: dict[str, Any] = {k: v for k, v in data.items() if k in _FIELDS}
    section = data.get("perch")
    if isinstance(section, dict):
        result.update(section)

    routes = result.pop("routes", None)
    if routes is None:
        routes = data.get("routes")
    if routes is not None:
        result["route_config"] = routes
    return result
