"""
crossrepo config package public API.

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``crossrepo.toml`` + ``CROSSREPO_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from crossrepo.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
    normalize_paths,
    resolve_github_token,
)
from crossrepo.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigValidationError,
    ConfigValidationIssue,
    CrossrepoConfig,
    assert_valid_config,
    default_config,
    dump_redacted,
    merge_config,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "CrossrepoConfig",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PATH_FIELDS",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "dump_redacted",
    "load_config",
    "normalize_paths",
    "resolve_github_token",
    "validate_config",
]
