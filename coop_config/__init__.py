"""
coop_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits above ``coop_kernel`` and below
    ``coop_services``.  The kernel MUST NEVER import from ``coop_config``;
    the facade translates the config into constructor arguments.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - A profile is validated before it is returned.
    - Same source data and overrides always produce the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- no profile with the requested name.
    - ``KeyError`` -- a required key is missing.
    - ``ConfigValidationError`` -- the profile failed validation.

Audit relevance:
    Every successful call logs ``config_loaded`` with the config_id,
    version and checksum.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from coop_config.loader import (
    compute_checksum,
    load_yaml_file,
    merge_overrides,
    parse_configuration,
)
from coop_config.schema import (
    BulkOrderPolicy,
    CoordinationConfig,
    DatabaseConfig,
    LoggingConfig,
    OrderPolicy,
)
from coop_config.validator import ConfigValidationError, validate_configuration

_logger = logging.getLogger("coop_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

DATABASE_URL_ENV = "COOP_DATABASE_URL"


def get_active_config(
    profile: str = "default",
    config_dir: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> CoordinationConfig:
    """The ONLY public configuration entrypoint.

    Loads ``<config_dir>/<profile>.yaml``, deep-merges ``overrides`` and
    the ``COOP_DATABASE_URL`` environment variable on top, then parses and
    validates the result.

    Args:
        profile: Profile name, the YAML file stem.
        config_dir: Directory holding the profiles.  Defaults to
            coop_config/sets/.
        overrides: Nested dict merged over the file contents.

    Raises:
        FileNotFoundError: If the profile does not exist.
        ConfigValidationError: If validation fails.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{profile}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"Configuration profile not found: {path}")

    data = merge_overrides(load_yaml_file(path), overrides)

    env_url = os.environ.get(DATABASE_URL_ENV)
    if env_url:
        data = merge_overrides(data, {"database": {"url": env_url}})

    checksum = compute_checksum(data)
    config = parse_configuration(data, checksum=checksum)

    validation = validate_configuration(config)
    for warning in validation.warnings:
        _logger.warning("config_warning", extra={"config_id": config.config_id, "warning": warning})
    if not validation.is_valid:
        raise ConfigValidationError(config.config_id, validation.errors)

    _logger.info(
        "config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": checksum,
            "profile": profile,
            "dialect": config.database.url.split(":", 1)[0],
        },
    )
    return config


__all__ = [
    "BulkOrderPolicy",
    "ConfigValidationError",
    "CoordinationConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "OrderPolicy",
    "get_active_config",
]
