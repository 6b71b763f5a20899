"""
Unit tests for appointment status transitions.
"""

import pytest

from core.constants import APPOINTMENT_STATUSES, TERMINAL_APPOINTMENT_STATUSES
from services.appointment_service import STATUS_TRANSITIONS, can_transition


class TestCanTransition:
    """Test the appointment state machine."""

    @pytest.mark.parametrize("current,new", [
        ("scheduled", "confirmed"),
        ("confirmed", "checked_in"),
        ("checked_in", "in_progress"),
        ("in_progress", "completed"),
    ])
    def test_forward_path(self, current, new):
        assert can_transition(current, new)

    @pytest.mark.parametrize("current", ["scheduled", "confirmed", "checked_in", "in_progress"])
    @pytest.mark.parametrize("new", ["cancelled", "no_show"])
    def test_release_from_any_open_status(self, current, new):
        assert can_transition(current, new)

    @pytest.mark.parametrize("current,new", [
        ("scheduled", "completed"),
        ("scheduled", "in_progress"),
        ("confirmed", "scheduled"),
        ("in_progress", "checked_in"),
        ("scheduled", "scheduled"),
    ])
    def test_skipping_or_going_back_is_rejected(self, current, new):
        assert not can_transition(current, new)

    @pytest.mark.parametrize("current", TERMINAL_APPOINTMENT_STATUSES)
    @pytest.mark.parametrize("new", APPOINTMENT_STATUSES)
    def test_terminal_statuses_are_final(self, current, new):
        assert not can_transition(current, new)

    def test_transition_table_uses_known_statuses(self):
        for current, targets in STATUS_TRANSITIONS.items():
            assert current in APPOINTMENT_STATUSES
            assert set(targets) <= set(APPOINTMENT_STATUSES)
