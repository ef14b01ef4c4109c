class BookingsCrmError(Exception):
    """Base class for all bookings CRM domain exceptions.

    Every custom exception in this module inherits from here so that a
    single ``except BookingsCrmError`` clause can catch any domain
    error.
    """

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(detail)


class LeadValidationError(BookingsCrmError):
    """Raised when a requested change is malformed or misses required input.

    Examples: booking without ``date_booked``, assignment without a
    booker, an edge that the state machine does not allow.
    """

    def __init__(self, detail: str = "Invalid lead change"):
        super().__init__(detail)


class LeadPermissionError(BookingsCrmError):
    """Raised when the actor lacks the role or ownership for a change."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(detail)


class LeadNotFoundError(BookingsCrmError):
    """Raised when a requested lead does not exist."""

    def __init__(self, detail: str = "Lead not found"):
        super().__init__(detail)


class UserNotFoundError(BookingsCrmError):
    """Raised when a referenced user does not exist."""

    def __init__(self, detail: str = "User not found"):
        super().__init__(detail)


class DuplicateLeadError(BookingsCrmError):
    """Raised when a create request collides with an existing lead.

    Only non-booking creates end up here; a colliding booking request is
    merged into the existing record instead.
    """

    def __init__(self, detail: str = "Duplicate lead detected"):
        super().__init__(detail)


class TransientStoreError(BookingsCrmError):
    """Raised by repositories for failures worth retrying (timeouts, dropped connections)."""

    def __init__(self, detail: str = "Transient storage failure"):
        super().__init__(detail)


class DegradedServiceError(BookingsCrmError):
    """Raised when storage retries are exhausted.

    Callers present this as "temporarily unavailable", which is distinct
    from an empty result.
    """

    def __init__(self, detail: str = "Lead storage temporarily unavailable"):
        super().__init__(detail)


class ConcurrentUpdateError(BookingsCrmError):
    """Raised when a lead keeps changing underneath a transition.

    The read, transition, write cycle is retried on a stale version; this
    surfaces once the retries are used up.
    """

    def __init__(self, detail: str = "Lead was modified concurrently, please retry"):
        super().__init__(detail)
