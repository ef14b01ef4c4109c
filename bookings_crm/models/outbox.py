from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.sql import func

from bookings_crm.models.base import Base


class SideEffectOutbox(Base):
    """Side-effect intent written in the same transaction as a lead change.

    The dispatcher worker drains ``pending`` rows, so notification latency
    and provider failures never touch the lead write.
    """

    __tablename__ = "side_effect_outbox"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    lead_id = Column(
        UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    kind = Column(String(40), nullable=False)
    channel = Column(String(20))
    payload = Column(JSONB, nullable=False, server_default="{}")
    status = Column(String(20), nullable=False, server_default="pending")
    attempts = Column(Integer, nullable=False, server_default=text("0"))
    last_error = Column(Text)
    next_attempt_at = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'done', 'failed')", name="ck_outbox_status"
        ),
        Index(
            "idx_outbox_pending",
            "next_attempt_at",
            postgresql_where="status = 'pending'",
        ),
    )
