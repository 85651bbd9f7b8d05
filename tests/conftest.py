"""
Pytest fixtures for the fulfillment test suite.

Provides:
- In-memory SQLite sessions for fast kernel tests
- A temporary SQLite file database for tests that cross threads
  (bulk coordinator, concurrency, Fulfillment Service)
- Deterministic clock, fake directory / task creator / notifier
- Structured log capture
"""

import json
import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy.orm import Session, sessionmaker

from fulfillment_kernel.db.engine import build_engine, create_tables
from fulfillment_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from fulfillment_kernel.domain.clock import DeterministicClock
from fulfillment_kernel.domain.collaborators import StaticDirectory
from fulfillment_kernel.domain.dtos import StatusChangeNotice, TaskRequest
from fulfillment_kernel.domain.lifecycle import LifecycleEngine
from fulfillment_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from fulfillment_kernel.services.part_lifecycle_service import PartLifecycleService
from fulfillment_kernel.services.stock_ledger_service import StockLedgerService
from fulfillment_services.fulfillment_service import FulfillmentService

TEST_PROJECT_ID = "proj-1"
TEST_USER = "tech@example.com"

DIRECTORY_MEMBERS = {
    "alice@x.com": "Alice Installer",
    "bob@x.com": "Bob Builder",
}


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture fulfillment_kernel logs as parsed JSON dicts.

    The fulfillment_kernel logger does not propagate, so pytest's caplog
    never sees these records; a handler is attached directly instead.

    Usage::

        def test_something(captured_logs, stock_service):
            stock_service.checkout(...)
            logs = captured_logs()
            assert any(r["message"] == "stock_checkout_recorded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("fulfillment_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    """ORM guards are global; register them once for the whole suite."""
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    eng = build_engine("sqlite://")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine) -> Session:
    """A session whose flushed work is discarded after the test."""
    sess = Session(bind=engine, expire_on_commit=False)
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def file_engine(tmp_path):
    """SQLite file database shared by worker threads."""
    eng = build_engine(
        f"sqlite:///{tmp_path / 'fulfillment.db'}",
        sqlite_busy_timeout=30.0,
    )
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(file_engine) -> sessionmaker[Session]:
    return sessionmaker(bind=file_engine, expire_on_commit=False)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def directory() -> StaticDirectory:
    return StaticDirectory(DIRECTORY_MEMBERS)


@pytest.fixture
def lifecycle_engine(directory) -> LifecycleEngine:
    return LifecycleEngine(directory)


@pytest.fixture
def part_service(session, lifecycle_engine, deterministic_clock) -> PartLifecycleService:
    return PartLifecycleService(session, lifecycle_engine, deterministic_clock)


@pytest.fixture
def stock_service(session, deterministic_clock) -> StockLedgerService:
    return StockLedgerService(session, deterministic_clock)


@pytest.fixture
def make_part(part_service):
    """Create a part in ``needed`` status (flushed, not committed)."""

    def _make(name: str = "Breaker panel", **fields):
        fields.setdefault("quantity", 3)
        fields.setdefault("unit_cost", Decimal("10"))
        return part_service.create_part(TEST_PROJECT_ID, name, **fields)

    return _make


@pytest.fixture
def make_item(stock_service):
    """Create an inventory item with an opening balance."""

    def _make(name: str = "Cable tie", opening_quantity: int = 10, **fields):
        return stock_service.create_item(
            name, TEST_USER, opening_quantity=opening_quantity, **fields
        )

    return _make


# =============================================================================
# Collaborator fakes
# =============================================================================


class FakeTaskCreator:
    """Records task requests; optionally fails every call."""

    def __init__(self, fail_with: Exception | None = None):
        self.requests: list[TaskRequest] = []
        self.fail_with = fail_with

    def create_task(self, request: TaskRequest) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.requests.append(request)
        return f"task-{len(self.requests)}"


class FakeNotifier:
    """Records status change notices; optionally fails every call."""

    def __init__(self, fail_with: Exception | None = None):
        self.notices: list[StatusChangeNotice] = []
        self.fail_with = fail_with

    def notify_status_change(self, notice: StatusChangeNotice) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.notices.append(notice)


class RecordingSleep:
    """
    Stands in for time.sleep and time.monotonic together: sleeping is
    instant but moves the fake monotonic clock forward, so pacing is
    observable as timestamps.
    """

    def __init__(self):
        self.calls: list[float] = []
        self.now = 0.0
        self._lock = threading.Lock()

    def __call__(self, seconds: float) -> None:
        with self._lock:
            self.calls.append(seconds)
            self.now += seconds

    def monotonic(self) -> float:
        with self._lock:
            return self.now


@pytest.fixture
def task_creator() -> FakeTaskCreator:
    return FakeTaskCreator()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fulfillment_service(
    session_factory, directory, task_creator, notifier, deterministic_clock, recording_sleep
) -> FulfillmentService:
    return FulfillmentService(
        session_factory,
        directory=directory,
        task_creator=task_creator,
        notifier=notifier,
        clock=deterministic_clock,
        conflict_retries=3,
        bulk_max_workers=4,
        delete_pacing_seconds=0.2,
        sleep=recording_sleep,
        monotonic=recording_sleep.monotonic,
    )
