from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from bookings_crm.core.constants import (
    BOOKING_STATUSES,
    CALL_STATUSES,
    LEAD_STATUSES,
    check_clause,
)
from bookings_crm.models.base import Base


class Lead(Base):
    """Prospective or converted customer moving through the booking pipeline.

    Three independent axes describe where the lead is: the primary
    ``status``, the ``booking_status`` sub-status of the current
    appointment, and the ``call_status`` of the latest contact attempt.
    The row only holds the *current* value of each temporal marker; the
    audit entries are the record of when each change happened.

    ``version`` is the optimistic-concurrency counter: every UPDATE
    checks and bumps it, so two racing writers cannot silently overwrite
    each other.
    """

    __tablename__ = "leads"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    name = Column(String(200), nullable=False)
    phone = Column(String(40))
    email = Column(String(255))
    postcode = Column(String(20))
    notes = Column(Text)
    tags = Column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))

    status = Column(String(20), nullable=False, server_default="New")
    booking_status = Column(String(20))
    call_status = Column(String(40))

    booker_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    date_booked = Column(DateTime(timezone=True))
    time_booked = Column(String(10))
    booking_slot = Column(Integer)
    is_confirmed = Column(Boolean)
    has_sale = Column(Integer, nullable=False, server_default=text("0"))
    ever_booked = Column(Boolean, nullable=False, server_default=text("false"))
    reject_reason = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    assigned_at = Column(DateTime(timezone=True))
    booked_at = Column(DateTime(timezone=True))
    rejected_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    version = Column(Integer, nullable=False, server_default=text("1"))

    booker = relationship("User", back_populates="leads")
    audit_entries = relationship(
        "LeadAuditEntry", back_populates="lead", cascade="all, delete-orphan"
    )
    messages = relationship(
        "Message", back_populates="lead", cascade="all, delete-orphan"
    )
    callback_reminders = relationship(
        "CallbackReminder", back_populates="lead", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        # No UNIQUE constraint on phone/email: duplicates are resolved at
        # the application level (merge-as-booking or 409).
        Index("idx_leads_phone", "phone"),
        Index("idx_leads_email", "email"),
        Index("idx_leads_booker_status", "booker_id", "status"),
        Index("idx_leads_created_at", "created_at"),
        Index("idx_leads_assigned_at", "assigned_at"),
        CheckConstraint(check_clause("status", LEAD_STATUSES), name="ck_lead_status"),
        CheckConstraint(
            check_clause("booking_status", BOOKING_STATUSES, nullable=True),
            name="ck_lead_booking_status",
        ),
        CheckConstraint(
            check_clause("call_status", CALL_STATUSES, nullable=True),
            name="ck_lead_call_status",
        ),
    )
