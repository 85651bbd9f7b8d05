"""
Tests for the part lifecycle engine (pure planning, no database).

Covers the guided transition table, write-once dates, note synthesis,
installer name resolution, install task requests, the status override and
the already-applied no-op.
"""

from datetime import date
from decimal import Decimal

import pytest

from fulfillment_kernel.domain.collaborators import StaticDirectory
from fulfillment_kernel.domain.dtos import PartRecord
from fulfillment_kernel.domain.lifecycle import (
    PART_LIFECYCLE,
    AssignInstaller,
    LifecycleEngine,
    LifecycleTexts,
    MarkInstalled,
    Order,
    Receive,
    ReceiveAndAssignInstaller,
    SetStatusOverride,
    append_note,
)
from fulfillment_kernel.domain.values import PART_STATUS_VALUES, PartStatus
from fulfillment_kernel.exceptions import InvalidTransitionError, ValidationError

TODAY = date(2024, 3, 1)


def _part(status: str = "needed", **fields) -> PartRecord:
    defaults = dict(
        id="part-1",
        project_id="proj-1",
        name="Breaker panel",
        status=status,
        quantity=3,
        unit_cost=Decimal("10"),
    )
    defaults.update(fields)
    return PartRecord(**defaults)


@pytest.fixture
def engine():
    return LifecycleEngine(StaticDirectory({"alice@x.com": "Alice Installer"}))


# Every (status, command) pair a guided command accepts, and its target.
ALLOWED = {
    ("needed", "order"): "ordered",
    ("ordered", "receive"): "received",
    ("ordered", "receive_and_assign_installer"): "ready_to_install",
    ("received", "assign_installer"): "ready_to_install",
    ("received", "mark_installed"): "installed",
    ("ready_to_install", "mark_installed"): "installed",
}

COMMANDS = {
    "order": Order(),
    "receive": Receive(),
    "receive_and_assign_installer": ReceiveAndAssignInstaller(installer_email="alice@x.com"),
    "assign_installer": AssignInstaller(installer_email="alice@x.com"),
    "mark_installed": MarkInstalled(),
}


class TestTransitionTable:
    """Guided commands follow PART_LIFECYCLE exactly."""

    @pytest.mark.parametrize("status", PART_STATUS_VALUES)
    @pytest.mark.parametrize("action", sorted(COMMANDS))
    def test_guided_command_matrix(self, engine, status, action):
        command = COMMANDS[action]
        target = PART_LIFECYCLE.target_of(action)

        if (status, action) in ALLOWED:
            plan = engine.plan(_part(status), command, TODAY)
            assert plan.to_status == ALLOWED[(status, action)]
            assert plan.patch["status"] == plan.to_status
            assert not plan.already_applied
        elif status == target:
            settled = _part(
                status,
                order_date=date(2024, 1, 2),
                received_date=date(2024, 1, 9),
                installed_date=date(2024, 1, 20),
                installer_email="bob@x.com",
            )
            plan = engine.plan(settled, command, TODAY)
            assert plan.already_applied
            assert plan.patch == {}
        else:
            with pytest.raises(InvalidTransitionError) as exc_info:
                engine.plan(_part(status), command, TODAY)
            assert exc_info.value.current_status == status
            assert exc_info.value.action == action
            assert set(exc_info.value.allowed_from) == PART_LIFECYCLE.allowed_from(action)

    def test_invalid_transition_names_allowed_sources(self, engine):
        with pytest.raises(InvalidTransitionError) as exc_info:
            engine.plan(_part("needed"), MarkInstalled(), TODAY)

        err = exc_info.value
        assert err.code == "INVALID_TRANSITION"
        assert err.allowed_from == ("ready_to_install", "received")
        assert "needed" in str(err)


class TestOrder:

    def test_sets_order_date_proof_eta_and_notes(self, engine):
        plan = engine.plan(
            _part("needed", notes="Existing"),
            Order(proof="https://blob/proof.pdf", eta=date(2024, 3, 15), notes="  rush  "),
            TODAY,
        )

        assert plan.patch == {
            "status": "ordered",
            "order_date": TODAY,
            "order_proof": "https://blob/proof.pdf",
            "est_delivery_date": date(2024, 3, 15),
            "notes": "Existing\nOrder notes: rush",
        }

    def test_keeps_existing_order_date(self, engine):
        plan = engine.plan(_part("needed", order_date=date(2024, 1, 2)), Order(), TODAY)
        assert "order_date" not in plan.patch

    def test_blank_notes_are_ignored(self, engine):
        plan = engine.plan(_part("needed"), Order(notes="   "), TODAY)
        assert "notes" not in plan.patch


class TestReceive:

    def test_sets_received_date_and_location(self, engine):
        plan = engine.plan(_part("ordered"), Receive(location_note="Shelf B2"), TODAY)

        assert plan.patch["received_date"] == TODAY
        assert plan.patch["notes"] == "Location: Shelf B2"

    def test_no_location_leaves_notes_alone(self, engine):
        plan = engine.plan(_part("ordered", notes="keep"), Receive(), TODAY)
        assert "notes" not in plan.patch


class TestInstallerAssignment:

    def test_receive_and_assign_backfills_received_date(self, engine):
        plan = engine.plan(
            _part("ordered"),
            ReceiveAndAssignInstaller(installer_email=" alice@x.com "),
            TODAY,
        )

        assert plan.to_status == "ready_to_install"
        assert plan.patch["received_date"] == TODAY
        assert plan.patch["installer_email"] == "alice@x.com"
        assert plan.patch["installer_name"] == "Alice Installer"

    def test_assign_keeps_existing_received_date(self, engine):
        plan = engine.plan(
            _part("received", received_date=date(2024, 2, 1)),
            AssignInstaller(installer_email="alice@x.com"),
            TODAY,
        )
        assert "received_date" not in plan.patch

    def test_unknown_installer_name_falls_back_to_email(self, engine):
        plan = engine.plan(
            _part("received"), AssignInstaller(installer_email="zed@x.com"), TODAY
        )
        assert plan.patch["installer_name"] == "zed@x.com"

    @pytest.mark.parametrize("email", ["", "   "])
    def test_missing_installer_is_rejected(self, engine, email):
        with pytest.raises(ValidationError) as exc_info:
            engine.plan(_part("ordered"), ReceiveAndAssignInstaller(installer_email=email), TODAY)
        assert exc_info.value.field == "installer_email"

    def test_missing_installer_rejected_even_when_already_ready(self, engine):
        with pytest.raises(ValidationError):
            engine.plan(_part("ready_to_install"), AssignInstaller(installer_email=""), TODAY)

    def test_task_request_only_when_asked(self, engine):
        without = engine.plan(
            _part("received"), AssignInstaller(installer_email="alice@x.com"), TODAY
        )
        assert without.task_request is None

        with_task = engine.plan(
            _part("received", part_number="BP-100"),
            AssignInstaller(
                installer_email="alice@x.com", location_note="Bay 4", create_task=True
            ),
            TODAY,
        )
        request = with_task.task_request
        assert request.title == "Install: Breaker panel"
        assert request.description == "Install part #BP-100\nLocation: Bay 4"
        assert request.assignee == "alice@x.com"
        assert request.project_id == "proj-1"
        assert (request.status, request.priority) == ("todo", "medium")

    def test_task_description_without_part_number(self, engine):
        plan = engine.plan(
            _part("ordered"),
            ReceiveAndAssignInstaller(installer_email="alice@x.com", create_task=True),
            TODAY,
        )
        assert plan.task_request.description == "Install part"

    def test_custom_texts(self):
        texts = LifecycleTexts(
            location_note_prefix="Stored at: ",
            task_title_template="Fit {name}",
        )
        engine = LifecycleEngine(StaticDirectory(), texts)
        plan = engine.plan(
            _part("received"),
            AssignInstaller(installer_email="a@x.com", location_note="Van", create_task=True),
            TODAY,
        )
        assert plan.patch["notes"] == "Stored at: Van"
        assert plan.task_request.title == "Fit Breaker panel"


class TestMarkInstalled:

    @pytest.mark.parametrize("status", ["received", "ready_to_install"])
    def test_sets_installed_date(self, engine, status):
        plan = engine.plan(_part(status), MarkInstalled(), TODAY)
        assert plan.patch == {"status": "installed", "installed_date": TODAY}

    def test_already_installed_is_noop(self, engine):
        plan = engine.plan(
            _part("installed", installed_date=date(2024, 1, 1)), MarkInstalled(), TODAY
        )
        assert plan.already_applied
        assert plan.patch == {}
        assert not plan.status_changed


class TestOverride:

    @pytest.mark.parametrize("source", PART_STATUS_VALUES)
    @pytest.mark.parametrize("target", PART_STATUS_VALUES)
    def test_any_status_to_any_status(self, engine, source, target):
        plan = engine.plan(_part(source), SetStatusOverride(target=target), TODAY)

        assert plan.is_override
        assert plan.to_status == target
        if source == target:
            assert plan.already_applied
            assert plan.patch == {}
        else:
            # status only: no dates, no assignees, no notes
            assert plan.patch == {"status": target}

    def test_accepts_enum_member(self, engine):
        plan = engine.plan(_part("needed"), SetStatusOverride(target=PartStatus.INSTALLED), TODAY)
        assert plan.to_status == "installed"

    def test_unknown_status_rejected(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            engine.plan(_part("needed"), SetStatusOverride(target="shipped"), TODAY)
        assert exc_info.value.field == "status"


class TestGuidedReentry:
    """A guided command on a part already at its target fills only what is empty."""

    def test_order_after_override_fills_order_metadata(self, engine):
        override = engine.plan(_part("needed"), SetStatusOverride(target="ordered"), TODAY)
        assert override.patch == {"status": "ordered"}

        plan = engine.plan(
            _part("ordered", notes="Existing"),
            Order(proof="https://x/proof.png", eta=date(2024, 3, 20), notes="rush"),
            TODAY,
        )

        assert not plan.already_applied
        assert not plan.status_changed
        assert plan.patch == {
            "order_date": TODAY,
            "order_proof": "https://x/proof.png",
            "est_delivery_date": date(2024, 3, 20),
        }
        assert plan.task_request is None

    def test_set_fields_are_not_overwritten(self, engine):
        plan = engine.plan(
            _part(
                "ordered",
                order_date=date(2024, 2, 1),
                order_proof="https://x/first.png",
                est_delivery_date=date(2024, 2, 10),
            ),
            Order(proof="https://x/second.png", eta=date(2024, 3, 20)),
            TODAY,
        )
        assert plan.already_applied
        assert plan.patch == {}

    def test_partial_fill_keeps_existing_date(self, engine):
        plan = engine.plan(
            _part("ordered", order_date=date(2024, 2, 1)),
            Order(proof="https://x/proof.png"),
            TODAY,
        )
        assert plan.patch == {"order_proof": "https://x/proof.png"}

    def test_assign_after_override_fills_installer_and_received_date(self, engine):
        plan = engine.plan(
            _part("ready_to_install"),
            AssignInstaller(installer_email="alice@x.com", create_task=True),
            TODAY,
        )

        assert not plan.already_applied
        assert plan.patch == {
            "received_date": TODAY,
            "installer_email": "alice@x.com",
            "installer_name": "Alice Installer",
        }
        assert plan.task_request is None

    def test_existing_installer_kept(self, engine):
        plan = engine.plan(
            _part(
                "ready_to_install",
                received_date=date(2024, 2, 1),
                installer_email="bob@x.com",
                installer_name="Bob",
            ),
            AssignInstaller(installer_email="alice@x.com"),
            TODAY,
        )
        assert plan.already_applied
        assert plan.patch == {}

    def test_installed_after_override_gets_installed_date(self, engine):
        plan = engine.plan(_part("installed"), MarkInstalled(), TODAY)
        assert plan.patch == {"installed_date": TODAY}


class TestAppendNote:

    def test_appends_on_new_line(self):
        assert append_note("first", "second") == "first\nsecond"

    def test_empty_existing(self):
        assert append_note(None, "only") == "only"
