"""
crossrepo — runtime config loader.

Purpose
- Load effective runtime config from defaults, TOML file, env vars, and CLI overrides.

What should be included in this file
- Precedence logic: CLI > env (CROSSREPO_) > file > defaults.
- TOML loading via ``tomllib``.
- Env var coercion driven by the type of each default value.
- Path normalization relative to the config file location.

Non-functional requirements
- Keep loading deterministic and reproducible.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from crossrepo.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    dump_redacted,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "crossrepo.toml"
ENV_PREFIX: Final[str] = "CROSSREPO_"

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with precedence CLI > env > file > defaults.

    ``cli_overrides`` keys are dotted paths (``"workspace.dir"``); ``None``
    values are ignored so argparse defaults can be passed straight through.
    A missing file is an error only when ``config_path`` was given explicitly.
    """

    resolved_path = _resolve_config_path(config_path)
    env_map = dict(os.environ if environ is None else environ)

    file_payload = _load_toml_file(resolved_path, required=config_path is not None)
    merged = assert_valid_config(merge_config(default_config(), file_payload))
    merged = normalize_paths(merged, base_dir=resolved_path.parent)

    merged = merge_config(merged, _collect_env_overrides(merged, env_map))
    merged = merge_config(merged, _materialize_cli_overrides(cli_overrides or {}))
    return assert_valid_config(normalize_paths(merged, base_dir=Path.cwd()))


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Make every configured path field absolute, resolving relatives against ``base_dir``."""

    materialized = merge_config({}, config)
    for field_path in PATH_FIELDS:
        section, key = field_path
        node = materialized.get(section)
        if isinstance(node, dict) and isinstance(node.get(key), str):
            node[key] = _normalize_one_path(node[key], base_dir)
    return materialized


def resolve_github_token(config: Mapping[str, Any], environ: Mapping[str, str] | None = None) -> str | None:
    """Read the token from the env var named by ``github.token_env``; blank means anonymous."""

    env_map = os.environ if environ is None else environ
    token = env_map.get(str(config["github"]["token_env"]), "").strip()
    return token or None


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return a deterministic JSON dump of the redacted effective config."""

    return json.dumps(dump_redacted(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _load_toml_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _collect_env_overrides(
    config: Mapping[str, object], environ: Mapping[str, str]
) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for section in sorted(config):
        values = config[section]
        if not isinstance(values, Mapping):
            continue
        for key in sorted(values):
            env_name = f"{ENV_PREFIX}{section.upper()}_{key.upper()}"
            raw = environ.get(env_name)
            if raw is None:
                continue
            overrides.setdefault(section, {})[key] = _coerce_env(raw, values[key], env_name)
    return overrides


def _coerce_env(raw: str, default: object, env_name: str) -> object:
    value = raw.strip()
    if isinstance(default, bool):
        lowered = value.lower()
        if lowered in _BOOLEAN_TRUE:
            return True
        if lowered in _BOOLEAN_FALSE:
            return False
        raise ConfigLoadError(f"{env_name} must be a boolean (true/false/1/0/yes/no/on/off)")
    if isinstance(default, int):
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} must be an integer") from exc
    return value


def _materialize_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key in sorted(cli_overrides):
        value = cli_overrides[key]
        if value is None:
            continue
        path = tuple(part for part in key.split(".") if part)
        if len(path) != 2:
            raise ConfigLoadError(f"invalid CLI override key {key!r}; expected 'section.field'")
        payload.setdefault(path[0], {})[path[1]] = value
    return payload


def _normalize_one_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(str(candidate))).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "load_config",
    "normalize_paths",
    "resolve_github_token",
]
