"""
Configuration Validator (``coop_config.validator``).

Responsibility
--------------
Checks a parsed ``CoordinationConfig`` before it is handed to the engine.
All problems are collected, not just the first one.

Failure modes
-------------
* Errors (``ConfigValidationResult.errors``) -> ``get_active_config``
  raises ``ConfigValidationError`` carrying all of them.
* Warnings are logged and do not block loading.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from coop_config.schema import CoordinationConfig

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigValidationError(ValueError):
    """A configuration profile failed validation."""

    def __init__(self, config_id: str, errors: list[str]):
        self.config_id = config_id
        self.errors = errors
        super().__init__(
            f"Configuration {config_id!r} failed validation:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


@dataclass
class ConfigValidationResult:
    """``is_valid`` is True only when ``errors`` is empty."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def _positive_int(result: ConfigValidationResult, name: str, value: object) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        result.add_error(f"{name} must be a positive integer, got {value!r}")


def validate_configuration(config: CoordinationConfig) -> ConfigValidationResult:
    result = ConfigValidationResult()

    url = config.database.url
    if not url:
        result.add_error("database.url is required")
    elif not (url.startswith("postgresql") or url.startswith("sqlite")):
        result.add_error(f"database.url must be a PostgreSQL or SQLite URL, got {url!r}")
    elif url.startswith("sqlite") and ":memory:" in url:
        result.add_error("in-memory SQLite is not supported; use a file-backed database")

    _positive_int(result, "database.pool_size", config.database.pool_size)
    if isinstance(config.database.max_overflow, bool) or not isinstance(config.database.max_overflow, int) \
            or config.database.max_overflow < 0:
        result.add_error(
            f"database.max_overflow must be a non-negative integer, got {config.database.max_overflow!r}"
        )
    _positive_int(result, "database.pool_timeout", config.database.pool_timeout)
    _positive_int(result, "database.pool_recycle", config.database.pool_recycle)

    _positive_int(result, "bulk_orders.default_deadline_days", config.bulk_orders.default_deadline_days)
    _positive_int(result, "bulk_orders.default_member_limit", config.bulk_orders.default_member_limit)

    _positive_int(result, "orders.default_page_size", config.orders.default_page_size)
    _positive_int(result, "orders.max_page_size", config.orders.max_page_size)
    if result.is_valid and config.orders.default_page_size > config.orders.max_page_size:
        result.add_error("orders.default_page_size must not exceed orders.max_page_size")

    if config.logging.level not in _LEVELS:
        result.add_error(f"logging.level must be one of {', '.join(_LEVELS)}, got {config.logging.level!r}")

    if config.database.echo:
        result.add_warning("database.echo is on; every SQL statement will be logged")

    return result


def log_level(config: CoordinationConfig) -> int:
    """The stdlib logging level for ``config.logging.level``."""
    return logging.getLevelName(config.logging.level)
