"""
Configuration Schema (``fulfillment_config.schema``).

Responsibility
--------------
Typed, frozen dataclasses for every runtime setting of the fulfillment
core.  Values are validated at construction; an invalid value raises
``ValueError`` naming the setting.

Architecture position
---------------------
**Config layer** -- pure data.  No dependency on the kernel or services.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


@dataclass(frozen=True)
class DatabaseConfig:
    """Engine settings passed to ``init_engine_from_url``."""

    url: str = "sqlite:///fulfillment.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10
    pool_timeout: int = 30
    sqlite_busy_timeout: float = 30.0

    def __post_init__(self):
        if not self.url:
            raise ValueError("database.url is required")
        if self.pool_size < 1:
            raise ValueError(f"database.pool_size must be >= 1, got {self.pool_size}")
        if self.max_overflow < 0:
            raise ValueError(f"database.max_overflow must be >= 0, got {self.max_overflow}")
        if self.pool_timeout < 1:
            raise ValueError(f"database.pool_timeout must be >= 1, got {self.pool_timeout}")
        if self.sqlite_busy_timeout < 0:
            raise ValueError("database.sqlite_busy_timeout must be >= 0")


@dataclass(frozen=True)
class BulkConfig:
    """Bulk operation coordinator settings."""

    max_workers: int = 4
    delete_pacing_seconds: float = 0.2  # minimum gap between delete starts (rate limits)
    transient_retries: int = 1

    def __post_init__(self):
        if self.max_workers < 1:
            raise ValueError(f"bulk.max_workers must be >= 1, got {self.max_workers}")
        if self.delete_pacing_seconds < 0:
            raise ValueError(
                f"bulk.delete_pacing_seconds must be >= 0, got {self.delete_pacing_seconds}"
            )
        if self.transient_retries < 0:
            raise ValueError(
                f"bulk.transient_retries must be >= 0, got {self.transient_retries}"
            )


@dataclass(frozen=True)
class NotesConfig:
    """Prefixes used when transitions append to part notes."""

    order_prefix: str = "Order notes: "
    location_prefix: str = "Location: "


@dataclass(frozen=True)
class TaskTemplateConfig:
    """Install task wording.  ``{name}`` and ``{part_number_suffix}`` expand."""

    title: str = "Install: {name}"
    description: str = "Install part{part_number_suffix}"
    status: str = "todo"
    priority: str = "medium"

    def __post_init__(self):
        if "{name}" not in self.title:
            raise ValueError("install_task.title must contain '{name}'")


@dataclass(frozen=True)
class FulfillmentConfig:
    """Root configuration object returned by ``get_active_config()``."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    bulk: BulkConfig = field(default_factory=BulkConfig)
    notes: NotesConfig = field(default_factory=NotesConfig)
    install_task: TaskTemplateConfig = field(default_factory=TaskTemplateConfig)
    conflict_retries: int = 1
    log_level: str = "INFO"
    site_timezone: str = "UTC"  # zone for order/received/installed dates
    checksum: str = ""

    def __post_init__(self):
        if self.conflict_retries < 0:
            raise ValueError(
                f"conflict_retries must be >= 0, got {self.conflict_retries}"
            )
        if self.log_level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"log_level {self.log_level!r} is not a logging level")
        if self.site_timezone.upper() != "UTC":
            try:
                ZoneInfo(self.site_timezone)
            except (ZoneInfoNotFoundError, ValueError):
                raise ValueError(f"site_timezone {self.site_timezone!r} is not a known zone")
