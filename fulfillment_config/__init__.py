"""
fulfillment_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``FulfillmentConfig``.

Architecture position:
    Configuration -- sits above ``fulfillment_kernel`` and below
    ``fulfillment_services``.  The kernel MUST NEVER import from
    ``fulfillment_config``; ``fulfillment_services.bootstrap`` translates
    the config into kernel constructor arguments.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - The packaged ``defaults.yaml`` is always the base layer; a caller file
      only overrides the keys it names.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.
"""

from __future__ import annotations

import logging
from pathlib import Path

from fulfillment_config.loader import load_yaml_file, merge, parse_config
from fulfillment_config.schema import (
    BulkConfig,
    DatabaseConfig,
    FulfillmentConfig,
    NotesConfig,
    TaskTemplateConfig,
)

_logger = logging.getLogger("fulfillment_kernel.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> FulfillmentConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Optional YAML file layered over the packaged defaults.

    Returns:
        A validated, frozen FulfillmentConfig.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        ValueError: If the merged configuration is invalid.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if config_path is not None:
        data = merge(data, load_yaml_file(Path(config_path)))

    config = parse_config(data)

    _logger.info(
        "FULFILLMENT_CONFIG_TRACE",
        extra={
            "trace_type": "FULFILLMENT_CONFIG_TRACE",
            "config_source": str(config_path) if config_path else "defaults",
            "checksum": config.checksum,
            "dialect": config.database.url.split(":", 1)[0],
            "bulk_max_workers": config.bulk.max_workers,
        },
    )
    return config


__all__ = [
    "BulkConfig",
    "DatabaseConfig",
    "FulfillmentConfig",
    "NotesConfig",
    "TaskTemplateConfig",
    "get_active_config",
]
