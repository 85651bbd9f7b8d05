"""
Configuration Loader (``fulfillment_config.loader``).

Responsibility
--------------
Loads a YAML file and parses it into the typed ``fulfillment_config.schema``
dataclasses.  The single public entry point for runtime config is
``fulfillment_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown keys are rejected with ``ValueError`` so typos never fall back to
  a default silently.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys / invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from fulfillment_config.schema import (
    BulkConfig,
    DatabaseConfig,
    FulfillmentConfig,
    NotesConfig,
    TaskTemplateConfig,
)

_SECTIONS: dict[str, type] = {
    "database": DatabaseConfig,
    "bulk": BulkConfig,
    "notes": NotesConfig,
    "install_task": TaskTemplateConfig,
}
_TOP_LEVEL_SCALARS = {"conflict_retries", "log_level", "site_timezone"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _parse_section(name: str, cls: type, data: Any) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"{name} must be a mapping, got {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"{name}: unknown key(s) {', '.join(sorted(unknown))}")
    return cls(**data)


def parse_config(data: dict[str, Any]) -> FulfillmentConfig:
    """Build a FulfillmentConfig from a parsed YAML mapping."""
    unknown = set(data) - set(_SECTIONS) - _TOP_LEVEL_SCALARS
    if unknown:
        raise ValueError(f"unknown configuration key(s) {', '.join(sorted(unknown))}")

    sections = {
        name: _parse_section(name, cls, data.get(name))
        for name, cls in _SECTIONS.items()
    }
    scalars = {k: data[k] for k in _TOP_LEVEL_SCALARS if k in data}
    return FulfillmentConfig(checksum=compute_checksum(data), **sections, **scalars)


def merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Section-wise merge: keys in ``override`` win, nested one level deep."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
