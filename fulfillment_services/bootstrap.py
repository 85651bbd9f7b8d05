"""
Config -> Service wiring.

Turns a FulfillmentConfig into a ready FulfillmentService: initializes the
engine, registers the ORM immutability listeners, configures structured
logging and maps the wording settings onto kernel LifecycleTexts.  Lives in
the service layer because the kernel must NEVER import fulfillment_config.

Usage:
    from fulfillment_services.bootstrap import build_fulfillment_service

    service = build_fulfillment_service(config_path="fulfillment.yaml")
"""

from __future__ import annotations

import logging
from pathlib import Path

from fulfillment_config import FulfillmentConfig, get_active_config
from fulfillment_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from fulfillment_kernel.db.immutability import register_immutability_listeners
from fulfillment_kernel.domain.clock import Clock, SystemClock, site_zone
from fulfillment_kernel.domain.collaborators import (
    Directory,
    Notifier,
    StaticDirectory,
    TaskCreator,
)
from fulfillment_kernel.domain.lifecycle import LifecycleTexts
from fulfillment_kernel.logging_config import configure_logging, get_logger
from fulfillment_services.fulfillment_service import FulfillmentService

logger = get_logger("services.bootstrap")


def texts_from_config(config: FulfillmentConfig) -> LifecycleTexts:
    """Map note prefixes and install-task templates onto LifecycleTexts."""
    return LifecycleTexts(
        order_note_prefix=config.notes.order_prefix,
        location_note_prefix=config.notes.location_prefix,
        task_title_template=config.install_task.title,
        task_description_template=config.install_task.description,
        task_status=config.install_task.status,
        task_priority=config.install_task.priority,
    )


def init_persistence(config: FulfillmentConfig, create_schema: bool = False) -> None:
    """Initialize the engine from ``config.database`` and guard the ORM."""
    db = config.database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        sqlite_busy_timeout=db.sqlite_busy_timeout,
    )
    register_immutability_listeners()
    if create_schema:
        create_tables()


def build_fulfillment_service(
    config: FulfillmentConfig | None = None,
    *,
    config_path: Path | str | None = None,
    directory: Directory | None = None,
    task_creator: TaskCreator | None = None,
    notifier: Notifier | None = None,
    clock: Clock | None = None,
    create_schema: bool = False,
) -> FulfillmentService:
    """
    Build a FulfillmentService from configuration.

    Args:
        config: An already-loaded config.  Loaded via ``get_active_config``
            when omitted.
        config_path: YAML file layered over the defaults (ignored when
            ``config`` is given).
        directory: Installer directory.  An empty StaticDirectory is used
            when omitted, so names fall back to e-mails.
        create_schema: Create missing tables (local SQLite setups).
    """
    if config is None:
        config = get_active_config(config_path)

    configure_logging(level=logging.getLevelName(config.log_level.upper()))
    init_persistence(config, create_schema=create_schema)

    service = FulfillmentService(
        get_session_factory(),
        directory=directory or StaticDirectory(),
        task_creator=task_creator,
        notifier=notifier,
        clock=clock or SystemClock(site_zone(config.site_timezone)),
        texts=texts_from_config(config),
        conflict_retries=config.conflict_retries,
        bulk_max_workers=config.bulk.max_workers,
        delete_pacing_seconds=config.bulk.delete_pacing_seconds,
        bulk_transient_retries=config.bulk.transient_retries,
    )

    logger.info(
        "fulfillment_service_ready",
        extra={
            "config_checksum": config.checksum,
            "conflict_retries": config.conflict_retries,
            "bulk_max_workers": config.bulk.max_workers,
        },
    )
    return service
