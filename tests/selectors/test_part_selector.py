"""
Part selector tests.

Verifies:
- Project lists are filtered by status and searched by name / part number.
- status_counts reports every status, zero where unused.
- Valuation prefers sell_price and falls back to unit_cost per part.
"""

from decimal import Decimal

import pytest

from fulfillment_kernel.domain.bulk import AssignmentRole
from fulfillment_kernel.domain.values import PART_STATUS_VALUES, PartStatus
from fulfillment_kernel.exceptions import PartNotFoundError, ValidationError
from fulfillment_kernel.selectors.part_selector import PartSelector

TEST_PROJECT_ID = "proj-1"


@pytest.fixture
def selector(session) -> PartSelector:
    return PartSelector(session)


class TestLookup:

    def test_get_returns_record(self, selector, make_part):
        part = make_part("Conduit")
        assert selector.get(part.id).name == "Conduit"

    def test_get_unknown_raises(self, selector):
        with pytest.raises(PartNotFoundError):
            selector.get("missing")

    def test_find_unknown_returns_none(self, selector):
        assert selector.find("missing") is None


class TestProjectLists:

    def test_status_filter(self, selector, make_part, part_service):
        ordered = make_part("Switch")
        make_part("Outlet")
        part_service.order(ordered.id)

        result = selector.list_for_project(TEST_PROJECT_ID, status=PartStatus.ORDERED)
        assert [p.id for p in result] == [ordered.id]

    def test_unknown_status_filter_rejected(self, selector):
        with pytest.raises(ValidationError):
            selector.list_for_project(TEST_PROJECT_ID, status="lost")

    def test_search_matches_name_and_part_number(self, selector, make_part):
        make_part("Breaker panel", part_number="BP-200")
        make_part("Junction box", part_number="JB-7")
        make_part("Wire nut")

        assert [p.name for p in selector.list_for_project(TEST_PROJECT_ID, search="BREAKER")] == [
            "Breaker panel"
        ]
        assert [p.name for p in selector.list_for_project(TEST_PROJECT_ID, search="jb-")] == [
            "Junction box"
        ]

    def test_ordered_by_name(self, selector, make_part):
        make_part("Zip tie")
        make_part("Anchor")
        names = [p.name for p in selector.list_for_project(TEST_PROJECT_ID)]
        assert names == ["Anchor", "Zip tie"]

    def test_other_projects_excluded(self, selector, make_part, part_service):
        make_part("Mine")
        part_service.create_part("proj-2", "Theirs")
        assert [p.name for p in selector.list_for_project(TEST_PROJECT_ID)] == ["Mine"]

    def test_list_active_excludes_installed(self, selector, make_part, part_service):
        done = make_part("Done")
        make_part("Pending")
        part_service.set_status(done.id, PartStatus.INSTALLED)
        assert [p.name for p in selector.list_active(TEST_PROJECT_ID)] == ["Pending"]

    def test_list_for_installer_case_insensitive(self, selector, make_part, part_service):
        part = make_part()
        part_service.assign_owner(part.id, "alice@x.com", AssignmentRole.INSTALLER)
        assert [p.id for p in selector.list_for_installer("ALICE@X.COM")] == [part.id]


class TestAggregates:

    def test_status_counts_include_every_status(self, selector, make_part, part_service):
        first = make_part("A")
        make_part("B")
        part_service.order(first.id)

        counts = selector.status_counts(TEST_PROJECT_ID)
        assert set(counts) == set(PART_STATUS_VALUES)
        assert counts["needed"] == 1
        assert counts["ordered"] == 1
        assert counts["installed"] == 0

    def test_valuation_prefers_sell_price(self, selector, make_part):
        make_part("Priced", quantity=2, unit_cost=Decimal("10"), sell_price=Decimal("15.50"))
        make_part("Cost only", quantity=3, unit_cost=Decimal("4.25"))

        assert selector.project_valuation(TEST_PROJECT_ID) == Decimal("43.75")
        assert selector.project_cost(TEST_PROJECT_ID) == Decimal("32.75")

    def test_empty_project_valuation_is_zero(self, selector):
        assert selector.project_valuation("empty") == Decimal("0")
