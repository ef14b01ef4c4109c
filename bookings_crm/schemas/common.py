from enum import Enum
from pydantic import BaseModel


class LeadStatus(str, Enum):
    NEW = "New"
    ASSIGNED = "Assigned"
    BOOKED = "Booked"
    ATTENDED = "Attended"
    NO_SHOW = "No Show"
    CANCELLED = "Cancelled"
    REJECTED = "Rejected"


class BookingStatus(str, Enum):
    RESCHEDULE = "Reschedule"
    CANCEL = "Cancel"
    ARRIVED = "Arrived"
    LEFT = "Left"
    NO_SALE = "No Sale"
    COMPLETE = "Complete"
    REVIEW = "Review"


class CallStatus(str, Enum):
    NO_ANSWER = "No answer"
    NO_ANSWER_X2 = "No Answer x2"
    NO_ANSWER_X3 = "No Answer x3"
    NO_PHOTO = "No photo"
    LEFT_MESSAGE = "Left Message"
    NOT_INTERESTED = "Not interested"
    CALL_BACK = "Call back"
    WRONG_NUMBER = "Wrong number"
    SALES_CONVERTED = "Sales/converted - purchased"
    NOT_QUALIFIED = "Not Qualified"


class QuickStatusButton(str, Enum):
    CONFIRM = "Confirm"
    UNCONFIRMED = "Unconfirmed"
    ARRIVED = "Arrived"
    LEFT = "Left"
    NO_SALE = "No Sale"
    NO_SHOW = "No Show"
    CANCEL = "Cancel"
    COMPLETE = "Complete"
    REJECT_LEAD = "Reject Lead"


class UserRole(str, Enum):
    ADMIN = "admin"
    BOOKER = "booker"
    VIEWER = "viewer"
    PHOTOGRAPHER = "photographer"


class AuditAction(str, Enum):
    INITIAL_BOOKING = "INITIAL_BOOKING"
    RESCHEDULE = "RESCHEDULE"
    CANCELLATION = "CANCELLATION"
    STATUS_CHANGE = "STATUS_CHANGE"
    BOOKING_STATUS_UPDATE = "BOOKING_STATUS_UPDATE"
    CALL_STATUS_UPDATE = "CALL_STATUS_UPDATE"
    LEAD_ASSIGNED = "LEAD_ASSIGNED"
    NOTES_UPDATED = "NOTES_UPDATED"
    TAG_ADDED = "TAG_ADDED"
    TAG_REMOVED = "TAG_REMOVED"
    SMS_SENT = "SMS_SENT"
    SMS_RECEIVED = "SMS_RECEIVED"
    EMAIL_SENT = "EMAIL_SENT"
    EMAIL_RECEIVED = "EMAIL_RECEIVED"
    BOOKING_CONFIRMATION_SENT = "BOOKING_CONFIRMATION_SENT"
    LEAD_REJECTED = "LEAD_REJECTED"
    QUICK_STATUS_UPDATE = "QUICK_STATUS_UPDATE"


class SideEffectKind(str, Enum):
    NOTIFY_WORKFLOW = "NOTIFY_WORKFLOW"
    UPDATE_STATS = "UPDATE_STATS"
    SEND_BOOKING_CONFIRMATION = "SEND_BOOKING_CONFIRMATION"


class WorkflowChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    CALLBACK = "callback"
    CLOSE = "close"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class ReminderStatus(str, Enum):
    PENDING = "pending"
    NOTIFIED = "notified"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SuccessResponse(BaseModel):
    """Generic success response base."""

    success: bool = True
