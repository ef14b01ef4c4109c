from datetime import datetime, timezone

from sqlalchemy import event

from bookings_crm.models.callback_reminder import CallbackReminder
from bookings_crm.models.lead import Lead
from bookings_crm.models.user import User


# Auto updated_at
@event.listens_for(Lead, "before_update")
@event.listens_for(User, "before_update")
@event.listens_for(CallbackReminder, "before_update")
def update_timestamp(mapper, connection, target):
    target.updated_at = datetime.now(timezone.utc)
