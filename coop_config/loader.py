"""
Configuration Loader (``coop_config.loader``).

Responsibility
--------------
Loads a YAML profile and parses it into typed ``coop_config.schema``
dataclasses.  Runtime callers go through
``coop_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Missing optional sections fall back to the dataclass defaults; a
  missing ``database.url`` is a ``KeyError``.
* ``compute_checksum`` is deterministic for identical data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import copy
import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from coop_config.schema import (
    BulkOrderPolicy,
    CoordinationConfig,
    DatabaseConfig,
    LoggingConfig,
    OrderPolicy,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def merge_overrides(data: dict[str, Any], overrides: dict[str, Any] | None) -> dict[str, Any]:
    """Deep-merge ``overrides`` into a copy of ``data``.  Nested dicts merge; other values replace."""
    merged = copy.deepcopy(data)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_overrides(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(
        url=data["url"],
        echo=bool(data.get("echo", False)),
        pool_size=data.get("pool_size", 20),
        max_overflow=data.get("max_overflow", 10),
        pool_timeout=data.get("pool_timeout", 30),
        pool_recycle=data.get("pool_recycle", 1800),
    )


def parse_bulk_order_policy(data: dict[str, Any]) -> BulkOrderPolicy:
    return BulkOrderPolicy(
        default_deadline_days=data.get("default_deadline_days", 7),
        default_member_limit=data.get("default_member_limit", 50),
    )


def parse_order_policy(data: dict[str, Any]) -> OrderPolicy:
    return OrderPolicy(
        default_page_size=data.get("default_page_size", 50),
        max_page_size=data.get("max_page_size", 200),
    )


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    return LoggingConfig(level=str(data.get("level", "INFO")).upper())


def parse_configuration(data: dict[str, Any], checksum: str = "") -> CoordinationConfig:
    """
    Parse a whole profile.

    Raises:
        KeyError: if ``config_id`` or ``database.url`` is missing.
    """
    return CoordinationConfig(
        config_id=data["config_id"],
        version=data.get("version", 1),
        database=parse_database(data["database"]),
        bulk_orders=parse_bulk_order_policy(data.get("bulk_orders") or {}),
        orders=parse_order_policy(data.get("orders") or {}),
        logging=parse_logging(data.get("logging") or {}),
        checksum=checksum,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
