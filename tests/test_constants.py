from bookings_crm.core.constants import (
    ALLOWED_TRANSITIONS,
    ATTENDED_BOOKING_STATUSES,
    CALL_STATUSES,
    CALLBACK_TRIGGER_CALL_STATUSES,
    CLOSE_TRIGGER_CALL_STATUSES,
    EMAIL_TRIGGER_CALL_STATUSES,
    LEAD_STATUSES,
    NO_ANSWER_ESCALATION,
    QUICK_STATUS_MAPPINGS,
    check_clause,
)
from bookings_crm.schemas.common import (
    BookingStatus,
    CallStatus,
    LeadStatus,
    QuickStatusButton,
)


class TestConstantsConsistency:
    """Verify that constants, enums, and tables stay in sync."""

    def test_lead_statuses_match_enum(self):
        for member in LeadStatus:
            assert member.value in LEAD_STATUSES

    def test_call_statuses_match_enum(self):
        for member in CallStatus:
            assert member.value in CALL_STATUSES

    def test_all_statuses_have_transition_entry(self):
        """Every lead status must have an entry in ALLOWED_TRANSITIONS."""
        for status in LeadStatus:
            assert status in ALLOWED_TRANSITIONS

    def test_cancel_and_reject_reachable_from_everywhere(self):
        for status, targets in ALLOWED_TRANSITIONS.items():
            if status != LeadStatus.CANCELLED:
                assert LeadStatus.CANCELLED in targets
            if status != LeadStatus.REJECTED:
                assert LeadStatus.REJECTED in targets

    def test_no_edge_back_to_new_from_active_statuses(self):
        for status in (LeadStatus.ASSIGNED, LeadStatus.BOOKED, LeadStatus.ATTENDED):
            assert LeadStatus.NEW not in ALLOWED_TRANSITIONS[status]

    def test_every_quick_status_button_is_mapped(self):
        for button in QuickStatusButton:
            assert button in QUICK_STATUS_MAPPINGS

    def test_quick_status_sub_statuses_count_as_attended(self):
        for mapping in QUICK_STATUS_MAPPINGS.values():
            booking_status = mapping.get("booking_status")
            if booking_status is not None:
                assert booking_status in ATTENDED_BOOKING_STATUSES

    def test_reschedule_is_not_attended(self):
        assert BookingStatus.RESCHEDULE not in ATTENDED_BOOKING_STATUSES

    def test_escalation_ends_at_ceiling(self):
        assert NO_ANSWER_ESCALATION[CallStatus.NO_ANSWER_X3] == CallStatus.NO_ANSWER_X3

    def test_workflow_triggers_do_not_overlap(self):
        assert not EMAIL_TRIGGER_CALL_STATUSES & CLOSE_TRIGGER_CALL_STATUSES
        assert not EMAIL_TRIGGER_CALL_STATUSES & CALLBACK_TRIGGER_CALL_STATUSES
        assert not CLOSE_TRIGGER_CALL_STATUSES & CALLBACK_TRIGGER_CALL_STATUSES


class TestCheckClause:
    def test_values_are_sorted_and_quoted(self):
        assert check_clause("status", frozenset({"b", "a"})) == "status IN ('a', 'b')"

    def test_nullable(self):
        assert check_clause("call_status", frozenset({"x"}), nullable=True) == (
            "call_status IN ('x') OR call_status IS NULL"
        )
