import re
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict

from bookings_crm.core.exceptions import DuplicateLeadError

_NON_DIGITS = re.compile(r"\D")


class CollisionStrength(str, Enum):
    PHONE = "phone"
    EMAIL = "email"
    NAME_AND_PHONE = "name_and_phone"


class IntakeAction(str, Enum):
    CREATE = "create"
    MERGE_AS_BOOKING = "merge_as_booking"


class IdentityCandidate(BaseModel):
    """Identity surface of an incoming lead."""

    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    date_booked: Optional[datetime] = None


class Collision(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    existing: Any
    strength: CollisionStrength


class Resolution(BaseModel):
    action: IntakeAction
    collision: Optional[Collision] = None


def normalize_phone(phone: Optional[str]) -> str:
    """Digits only: spaces, dashes, parentheses and ``+`` are dropped."""
    return _NON_DIGITS.sub("", phone or "")


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def normalize_name(name: Optional[str]) -> str:
    return " ".join((name or "").split()).lower()


class DuplicateResolver:
    """Decides whether an incoming lead collides with an existing one.

    Strategies in order of precedence: phone digits, email, then
    name + phone.  A phone match whose name also matches is reported
    with the stronger ``NAME_AND_PHONE`` strength.
    """

    def find_collision(
        self, candidate: IdentityCandidate, existing: Iterable[Any]
    ) -> Optional[Collision]:
        existing = list(existing)
        phone = normalize_phone(candidate.phone)
        email = normalize_email(candidate.email)
        name = normalize_name(candidate.name)

        if phone:
            for lead in existing:
                if normalize_phone(lead.phone) == phone:
                    strength = CollisionStrength.PHONE
                    if name and normalize_name(lead.name) == name:
                        strength = CollisionStrength.NAME_AND_PHONE
                    return Collision(existing=lead, strength=strength)

        if email:
            for lead in existing:
                if normalize_email(lead.email) == email:
                    return Collision(existing=lead, strength=CollisionStrength.EMAIL)

        return None

    def resolve(
        self, candidate: IdentityCandidate, existing: Iterable[Any]
    ) -> Resolution:
        """Pick the intake action for *candidate*.

        A colliding booking request updates the existing lead; any other
        collision is left to a human and raises ``DuplicateLeadError``.
        """
        collision = self.find_collision(candidate, existing)
        if collision is None:
            return Resolution(action=IntakeAction.CREATE)
        if candidate.date_booked is not None:
            return Resolution(action=IntakeAction.MERGE_AS_BOOKING, collision=collision)
        raise DuplicateLeadError(
            f"Lead already exists (matched on {collision.strength.value}): "
            f"{collision.existing.id}"
        )
