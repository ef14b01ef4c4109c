from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Identity,
    Index,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from bookings_crm.models.base import Base


class LeadAuditEntry(Base):
    """Append-only booking-history event for a lead.

    ``details`` holds the action-specific payload and ``lead_snapshot``
    a denormalised copy of the lead at event time.  ``sequence`` records
    arrival order; consumers order by ``timestamp`` first.
    """

    __tablename__ = "lead_audit_entries"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    sequence = Column(BigInteger, Identity(always=True), nullable=False)
    lead_id = Column(
        UUID(as_uuid=True),
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
    )
    action = Column(String(40), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    performed_by = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    performed_by_name = Column(String(200))
    details = Column(JSONB, nullable=False, server_default="{}")
    lead_snapshot = Column(JSONB, nullable=False, server_default="{}")

    lead = relationship("Lead", back_populates="audit_entries")

    __table_args__ = (
        Index("idx_audit_lead_timestamp", "lead_id", "timestamp"),
        Index("idx_audit_action_timestamp", "action", "timestamp"),
    )
