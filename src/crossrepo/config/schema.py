"""
crossrepo — configuration schema and validation.

Purpose
- Define built-in defaults and strict validation rules for ``crossrepo.toml``.

What should be included in this file
- TypedDict shapes for each section.
- Validation returning structured issues (field path + message).
- Deterministic deep-merge and redaction helpers.

Functional requirements
- Reject unknown fields and embedded secrets; tokens are referenced by env var name only.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, TypedDict

from crossrepo.constants import (
    DEFAULT_GITHUB_API_URL,
    FS_CONCURRENCY_PRESET,
    GITHUB_CONCURRENCY_PRESET,
    NPM_PUBLISH_CONCURRENCY_PRESET,
)

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "credential", "credentials", "auth", "pat"}
)
_LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

# Config paths normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("workspace", "dir"),
    ("observability", "log_dir"),
)


class WorkspaceConfig(TypedDict):
    dir: str


class GitHubConfig(TypedDict):
    api_url: str
    token_env: str


class ConcurrencyConfig(TypedDict):
    filesystem: int
    github: int
    npm_publish: int


class ObservabilityConfig(TypedDict):
    log_level: str
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class CrossrepoConfig(TypedDict):
    workspace: WorkspaceConfig
    github: GitHubConfig
    concurrency: ConcurrencyConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[CrossrepoConfig] = {
    "workspace": {"dir": "workspace"},
    "github": {"api_url": DEFAULT_GITHUB_API_URL, "token_env": "GITHUB_TOKEN"},
    "concurrency": {
        "filesystem": FS_CONCURRENCY_PRESET,
        "github": GITHUB_CONCURRENCY_PRESET,
        "npm_publish": NPM_PUBLISH_CONCURRENCY_PRESET,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs",
        "log_to_stdout": False,
        "redact_secrets": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered or '- <root>: unknown validation failure'}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)


_Validator = Callable[[Mapping[str, object], str, _IssueCollector], dict[str, Any]]


def default_config() -> CrossrepoConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; nested mappings merge key by key."""

    merged = copy.deepcopy(dict(base))
    _merge_into(merged, overlay)
    return merged


def validate_config(config: object) -> tuple[dict[str, Any] | None, tuple[ConfigValidationIssue, ...]]:
    """Validate a complete config; return ``(normalized, issues)``.

    ``normalized`` is ``None`` whenever any issue was found.
    """

    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        issues.add("<root>", f"expected object, got {type(config).__name__}")
        return None, issues.items()

    sections: dict[str, _Validator] = {
        "workspace": _validate_workspace,
        "github": _validate_github,
        "concurrency": _validate_concurrency,
        "observability": _validate_observability,
    }
    _reject_unknown_keys(config, set(sections), "", issues)

    out: dict[str, Any] = {}
    for key, validator in sections.items():
        raw = config.get(key)
        if not isinstance(raw, Mapping):
            issues.add(key, f"expected object, got {type(raw).__name__}")
            continue
        out[key] = validator(raw, key, issues)

    found = issues.items()
    return (None if found else out), found


def assert_valid_config(config: object) -> dict[str, Any]:
    """Validate config and raise :class:`ConfigValidationError` on failure."""

    normalized, issues = validate_config(config)
    if normalized is None:
        raise ConfigValidationError(issues)
    return normalized


def dump_redacted(config: Mapping[str, object]) -> dict[str, Any]:
    """Return a sorted copy with env-var indirections and secret-looking keys masked."""

    redacted = _redact_value(config, parent_key=None)
    return redacted if isinstance(redacted, dict) else {}


def _validate_workspace(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"dir"}, path, issues)
    out: dict[str, Any] = {}
    parsed = _as_path_text(payload.get("dir"), _join(path, "dir"), issues)
    if parsed is not None:
        out["dir"] = parsed
    return out


def _validate_github(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"api_url", "token_env"}, path, issues)
    out: dict[str, Any] = {}

    api_url = _as_str(payload.get("api_url"), _join(path, "api_url"), issues)
    if api_url is not None:
        if not api_url.startswith(("https://", "http://")):
            issues.add(_join(path, "api_url"), "must be an http(s) URL")
        else:
            out["api_url"] = api_url.rstrip("/")

    token_env = _as_str(payload.get("token_env"), _join(path, "token_env"), issues)
    if token_env is not None:
        if _ENV_NAME_PATTERN.fullmatch(token_env):
            out["token_env"] = token_env
        else:
            issues.add(_join(path, "token_env"), "must be an env var name (example: GITHUB_TOKEN)")
    return out


def _validate_concurrency(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"filesystem", "github", "npm_publish"}
    _reject_unknown_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    for key in sorted(allowed):
        parsed = _as_int(payload.get(key), _join(path, key), issues, minimum=1)
        if parsed is not None:
            out[key] = parsed
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(
        payload, {"log_level", "log_dir", "log_to_stdout", "redact_secrets"}, path, issues
    )
    out: dict[str, Any] = {}

    level = _as_str(payload.get("log_level"), _join(path, "log_level"), issues)
    if level is not None:
        if level.upper() in _LOG_LEVELS:
            out["log_level"] = level.upper()
        else:
            expected = ", ".join(_LOG_LEVELS)
            issues.add(_join(path, "log_level"), f"invalid value {level!r}; expected one of: {expected}")

    log_dir = _as_path_text(payload.get("log_dir"), _join(path, "log_dir"), issues)
    if log_dir is not None:
        out["log_dir"] = log_dir

    for key in ("log_to_stdout", "redact_secrets"):
        value = payload.get(key)
        if isinstance(value, bool):
            out[key] = value
        else:
            issues.add(_join(path, key), f"expected boolean, got {type(value).__name__}")
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is not None and "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(str(item) for item in payload):
        if key in allowed:
            continue
        if _looks_sensitive_key(key):
            issues.add(
                _join(path, key),
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            issues.add(_join(path, key), "unknown field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _NON_ALNUM.sub("_", key.strip().lower()).strip("_")
    if normalized.endswith("_env"):
        return False
    return any(token in _SENSITIVE_KEY_TOKENS for token in normalized.split("_") if token)


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        existing = target.get(key)
        if isinstance(value, Mapping):
            nested = existing if isinstance(existing, dict) else {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        return {
            key: "<redacted>" if _redact_key(key) else _redact_value(value[key], key)
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


def _redact_key(key: str) -> bool:
    return key.lower().endswith("_env") or _looks_sensitive_key(key)


__all__ = [
    "ConcurrencyConfig",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "CrossrepoConfig",
    "DEFAULT_CONFIG",
    "GitHubConfig",
    "ObservabilityConfig",
    "PATH_FIELDS",
    "WorkspaceConfig",
    "assert_valid_config",
    "default_config",
    "dump_redacted",
    "merge_config",
    "validate_config",
]
