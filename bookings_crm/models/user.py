from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from bookings_crm.models.base import Base


class User(Base):
    """Staff account: admins, bookers who work leads, viewers and photographers.

    ``bookings_made`` and ``show_ups`` are maintained by the stats
    aggregator from status-change side effects.
    """

    __tablename__ = "users"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(String(20), nullable=False, server_default="booker")
    bookings_made = Column(Integer, nullable=False, server_default=text("0"))
    show_ups = Column(Integer, nullable=False, server_default=text("0"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    leads = relationship("Lead", back_populates="booker")
    callback_reminders = relationship(
        "CallbackReminder", back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'booker', 'viewer', 'photographer')", name="ck_user_role"
        ),
        CheckConstraint("bookings_made >= 0", name="ck_bookings_made_nonneg"),
        CheckConstraint("show_ups >= 0", name="ck_show_ups_nonneg"),
    )
