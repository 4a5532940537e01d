"""
CoordinationConfig schema.

The runtime configuration of the coordination engine as frozen
dataclasses.  YAML profiles under ``coop_config/sets/`` are parsed into
these types by the loader and checked by the validator before
``get_active_config()`` hands them out.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DatabaseConfig:
    """Engine settings passed to ``coop_kernel.db.init_engine_from_url``."""

    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class BulkOrderPolicy:
    """Defaults applied when a caller leaves them out."""

    default_deadline_days: int = 7
    default_member_limit: int = 50


@dataclass(frozen=True)
class OrderPolicy:
    default_page_size: int = 50
    max_page_size: int = 200


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class CoordinationConfig:
    """
    One resolved configuration profile.

    ``checksum`` is the SHA-256 of the merged source data, so two processes
    can tell whether they run under the same settings.
    """

    config_id: str
    version: int
    database: DatabaseConfig
    bulk_orders: BulkOrderPolicy
    orders: OrderPolicy
    logging: LoggingConfig
    checksum: str = ""
