from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from bookings_crm.models.base import Base


class CallbackReminder(Base):
    """Scheduled future contact owned by one user for one lead."""

    __tablename__ = "callback_reminders"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    lead_id = Column(
        UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    callback_time = Column(DateTime(timezone=True), nullable=False)
    callback_note = Column(Text)
    status = Column(String(20), nullable=False, server_default="pending")
    notified_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    lead = relationship("Lead", back_populates="callback_reminders")
    user = relationship("User", back_populates="callback_reminders")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'notified', 'completed', 'cancelled')",
            name="ck_callback_status",
        ),
        Index(
            "idx_callback_user_status_time",
            "user_id",
            "status",
            "callback_time",
            postgresql_where="status = 'pending'",
        ),
    )
