"""Tests for checklist templates, repair and progress."""

from types import SimpleNamespace

import pytest

from immotrack.checklist import (
    STATUS_ACCEPTED,
    STATUS_CORRECTION,
    STATUS_REJECTED,
    build_checklist,
    calculate_progress,
    checklist_stats,
    next_task,
    progress_status,
    repair_checklist,
    template_items,
)

HEATING_RETURN = "Heating cost statement returned"
OWNER_APPROVAL = "Approval received from owner"


def _record(type="MV", has_heating=True, checklist=None):
    return SimpleNamespace(type=type, has_heating=has_heating,
                           checklist=checklist if checklist is not None else {},
                           name="test")


class TestTemplates:

    @pytest.mark.parametrize("type_, heating", [
        ("MV", True), ("MV", False), ("WEG", True), ("WEG", False),
    ])
    def test_every_template_builds(self, type_, heating):
        checklist = build_checklist(type_, heating)
        assert checklist
        assert list(checklist) == template_items(type_, heating)
        for state in checklist.values():
            assert state["completed"] is False
            assert state["specialOptionChecked"] is False

    def test_unknown_type(self):
        assert template_items("XYZ", False) is None
        assert build_checklist("XYZ", False) == {}

    def test_status_fields_only_on_status_items(self):
        checklist = build_checklist("MV", True)
        assert checklist[HEATING_RETURN]["heatingStatus"] == []
        assert checklist[HEATING_RETURN]["ownerApprovalStatus"] is None
        assert checklist[OWNER_APPROVAL]["ownerApprovalStatus"] == []
        assert checklist["Bookings completed"]["heatingStatus"] is None
        assert checklist["Bookings completed"]["hasSpecialOption"] is False
        assert checklist[HEATING_RETURN]["hasSpecialOption"] is True

    def test_heating_items_only_with_heating(self):
        assert HEATING_RETURN in build_checklist("MV", True)
        assert HEATING_RETURN not in build_checklist("MV", False)


class TestRepairChecklist:
    """Checklists are brought in line with the record's type."""

    def test_matching_checklist_returned_as_is(self):
        checklist = build_checklist("WEG", False)
        assert repair_checklist(_record("WEG", False, checklist)) is checklist

    def test_empty_checklist_gets_template(self):
        repaired = repair_checklist(_record("MV", False, {}))
        assert list(repaired) == template_items("MV", False)

    def test_state_carried_over_on_type_change(self):
        old = build_checklist("MV", False)
        old["Utility invoices available"]["completed"] = True
        old["Bookings completed"]["completed"] = True
        repaired = repair_checklist(_record("WEG", True, old))
        assert list(repaired) == template_items("WEG", True)
        assert repaired["Utility invoices available"]["completed"] is True
        assert "Bookings completed" not in repaired

    def test_bare_booleans_become_states(self):
        old = {"Utility invoices available": True, "Service invoice available": False}
        repaired = repair_checklist(_record("MV", False, old))
        assert repaired["Utility invoices available"]["completed"] is True
        assert repaired["Service invoice available"]["completed"] is False

    def test_status_lists_carried_over(self):
        old = {HEATING_RETURN: {"completed": False, "heatingStatus": [STATUS_CORRECTION]}}
        repaired = repair_checklist(_record("MV", True, old))
        assert repaired[HEATING_RETURN]["heatingStatus"] == [STATUS_CORRECTION]

    def test_unknown_type_untouched(self):
        checklist = {"custom": {"completed": True}}
        assert repair_checklist(_record("XYZ", False, checklist)) is checklist

    def test_idempotent(self):
        once = repair_checklist(_record("MV", True, {"Statement sent": True}))
        twice = repair_checklist(_record("MV", True, once))
        assert twice == once


class TestProgress:
    """Progress scoring over a checklist."""

    def test_empty_is_zero(self):
        assert calculate_progress({}) == 0

    def test_all_completed(self):
        checklist = build_checklist("MV", False)
        for state in checklist.values():
            state["completed"] = True
        checklist[OWNER_APPROVAL]["ownerApprovalStatus"] = [STATUS_ACCEPTED]
        assert calculate_progress(checklist) == 100

    def test_status_item_needs_accepted(self):
        """A status task is complete only when accepted, whatever 'completed' says."""
        checklist = {
            HEATING_RETURN: {"completed": True, "heatingStatus": []},
            "Bookings completed": {"completed": False},
        }
        assert calculate_progress(checklist) == 0

    def test_partial_scores(self):
        checklist = {
            HEATING_RETURN: {"heatingStatus": [STATUS_CORRECTION]},
            OWNER_APPROVAL: {"ownerApprovalStatus": [STATUS_REJECTED]},
            "Bookings completed": {"completed": True},
            "Statement sent": {"completed": False},
        }
        # (0.7 + 0.3 + 1.0) / 4
        assert calculate_progress(checklist) == 50

    def test_accepted_bonus(self):
        checklist = {
            HEATING_RETURN: {"heatingStatus": [STATUS_ACCEPTED]},
            "Bookings completed": {"completed": False},
            "Statement sent": {"completed": False},
            "Statement prepared": {"completed": False},
        }
        # (1.0 + 0.1 * 0.5) / 4
        assert calculate_progress(checklist) == 26

    def test_status_labels(self):
        assert progress_status(0) == "notStarted"
        assert progress_status(40) == "inProgress"
        assert progress_status(100) == "completed"

    def test_next_task_in_order(self):
        checklist = build_checklist("MV", False)
        first = list(checklist)[0]
        assert next_task(checklist) == first
        checklist[first]["completed"] = True
        assert next_task(checklist) == list(checklist)[1]

    def test_stats(self):
        checklist = build_checklist("WEG", False)
        checklist["Utility invoices available"]["completed"] = True
        stats = checklist_stats(checklist)
        assert stats["total"] == len(checklist)
        assert stats["completed"] == 1
        assert stats["remaining"] == len(checklist) - 1
        assert stats["status"] == "inProgress"
        assert stats["nextTask"] == "Service invoice available"
