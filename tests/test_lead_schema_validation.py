from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from bookings_crm.schemas.filters import DateRange, FilterRequest
from bookings_crm.schemas.lead import (
    CallStatusRequest,
    LeadCreateRequest,
    RejectRequest,
    StatusUpdateRequest,
)

_VALID_LEAD_KWARGS = {
    "name": "Jane Doe",
    "phone": "07700 900000",
    "email": "jane@example.com",
}


def _lead(**overrides) -> LeadCreateRequest:
    return LeadCreateRequest(**{**_VALID_LEAD_KWARGS, **overrides})


class TestLeadCreateRequest:
    def test_minimal_lead(self):
        lead = LeadCreateRequest(name="Jane Doe")
        assert lead.phone is None
        assert lead.send_email is False

    def test_name_is_stripped(self):
        assert _lead(name="  Jane Doe ").name == "Jane Doe"

    def test_blank_name_raises(self):
        with pytest.raises(ValidationError, match="must not be blank"):
            _lead(name="   ")

    def test_invalid_email_raises(self):
        with pytest.raises(ValidationError):
            _lead(email="not-an-email")

    def test_negative_slot_raises(self):
        with pytest.raises(ValidationError):
            _lead(booking_slot=-1)


class TestStatusUpdateRequest:
    def test_to_change_keeps_only_sent_fields(self):
        change = StatusUpdateRequest(status="Booked", date_booked="2025-01-10T14:00:00Z").to_change()
        assert change.status == "Booked"
        assert change.date_booked == datetime(2025, 1, 10, 14, tzinfo=timezone.utc)
        assert change.booker_id is None
        assert change.call_status is None

    def test_unknown_status_raises(self):
        with pytest.raises(ValidationError):
            StatusUpdateRequest(status="Sold")


class TestCallStatusRequest:
    def test_wall_clock_callback_time_is_kept_as_text(self):
        request = CallStatusRequest(call_status="Call back", callback_time="15:30")
        assert request.callback_time == "15:30"

    def test_unknown_call_status_raises(self):
        with pytest.raises(ValidationError):
            CallStatusRequest(call_status="Maybe later")


class TestRejectRequest:
    def test_reason_required(self):
        with pytest.raises(ValidationError):
            RejectRequest(reason="")


class TestFilterRequest:
    @pytest.mark.parametrize("status", ["all", "Sales", "Ever Booked", "Booked", "No answer"])
    def test_known_filters(self, status):
        assert FilterRequest(status=status).status == status

    def test_unknown_filter_raises(self):
        with pytest.raises(ValidationError, match="Unknown status filter"):
            FilterRequest(status="Sold")

    def test_blank_search_is_dropped(self):
        assert FilterRequest(search="   ").search is None

    def test_unknown_sort_field_raises(self):
        with pytest.raises(ValidationError):
            FilterRequest(sort_by="phone")


class TestDateRange:
    def test_inverted_range_raises(self):
        with pytest.raises(ValidationError, match="must not be after"):
            DateRange(
                start=datetime(2025, 2, 1, tzinfo=timezone.utc),
                end=datetime(2025, 1, 1, tzinfo=timezone.utc),
            )

    def test_bounds_are_inclusive(self):
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        end = datetime(2025, 1, 31, tzinfo=timezone.utc)
        date_range = DateRange(start=start, end=end)
        assert date_range.contains(start)
        assert date_range.contains(end)
        assert not date_range.contains(None)
