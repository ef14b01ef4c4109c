from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from bookings_crm.models.base import Base


class Message(Base):
    """SMS or email recorded by the messaging path.

    The same real-world message can also appear as an audit entry; the
    two sources are merged and deduplicated for display.
    """

    __tablename__ = "messages"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    lead_id = Column(
        UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    type = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False)
    subject = Column(String(500))
    body = Column(Text)
    sent_by = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    provider_id = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    lead = relationship("Lead", back_populates="messages")

    __table_args__ = (
        CheckConstraint("type IN ('sms', 'email')", name="ck_message_type"),
        CheckConstraint(
            "status IN ('pending', 'sent', 'received', 'failed')",
            name="ck_message_status",
        ),
        Index("idx_messages_lead_created", "lead_id", "created_at"),
    )
