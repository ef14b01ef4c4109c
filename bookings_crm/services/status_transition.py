import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

from bookings_crm.core.config import settings
from bookings_crm.core.constants import (
    ALLOWED_TRANSITIONS,
    CALLBACK_TRIGGER_CALL_STATUSES,
    CLOSE_TRIGGER_CALL_STATUSES,
    EMAIL_TRIGGER_CALL_STATUSES,
    NO_ANSWER_ESCALATION,
    NO_ANSWER_VARIANTS,
    QUICK_STATUS_MAPPINGS,
    REJECT_ROLES,
)
from bookings_crm.core.exceptions import LeadPermissionError, LeadValidationError
from bookings_crm.schemas.audit import (
    AuditEntry,
    BookingStatusUpdateDetails,
    CallStatusUpdateDetails,
    CancellationDetails,
    InitialBookingDetails,
    LeadAssignedDetails,
    LeadRejectedDetails,
    LeadSnapshot,
    NotesUpdatedDetails,
    QuickStatusUpdateDetails,
    RescheduleDetails,
    StatusChangeDetails,
    TagDetails,
)
from bookings_crm.schemas.common import (
    AuditAction,
    BookingStatus,
    CallStatus,
    LeadStatus,
    SideEffectKind,
    UserRole,
    WorkflowChannel,
)
from bookings_crm.schemas.lead import Actor, LeadChange, LeadState
from bookings_crm.services.audit_log import AuditLog

logger = logging.getLogger(__name__)

_HH_MM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

# Statuses whose entry wipes the current appointment
_CLEARING_STATUSES = frozenset({LeadStatus.CANCELLED, LeadStatus.REJECTED})

# Which entry best describes a transition, most significant first
_KIND_PRECEDENCE = (
    AuditAction.INITIAL_BOOKING,
    AuditAction.RESCHEDULE,
    AuditAction.CANCELLATION,
    AuditAction.LEAD_REJECTED,
    AuditAction.QUICK_STATUS_UPDATE,
    AuditAction.STATUS_CHANGE,
    AuditAction.BOOKING_STATUS_UPDATE,
    AuditAction.LEAD_ASSIGNED,
    AuditAction.CALL_STATUS_UPDATE,
    AuditAction.NOTES_UPDATED,
    AuditAction.TAG_ADDED,
    AuditAction.TAG_REMOVED,
)


class SideEffect(BaseModel):
    """Intent for work outside the lead row; performed by the outbox worker."""

    kind: SideEffectKind
    channel: Optional[WorkflowChannel] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class TransitionResult(BaseModel):
    lead: LeadState
    audit_entries: List[AuditEntry] = Field(default_factory=list)
    side_effects: List[SideEffect] = Field(default_factory=list)

    @property
    def kind(self) -> Optional[AuditAction]:
        actions = {entry.action for entry in self.audit_entries}
        for action in _KIND_PRECEDENCE:
            if action in actions:
                return action
        return None

    def has_effect(self, kind: SideEffectKind, channel: Optional[WorkflowChannel] = None) -> bool:
        return any(
            effect.kind == kind and (channel is None or effect.channel == channel)
            for effect in self.side_effects
        )


def snapshot_of(lead: LeadState) -> LeadSnapshot:
    return LeadSnapshot(
        name=lead.name,
        phone=lead.phone,
        email=lead.email,
        status=lead.status,
        date_booked=lead.date_booked,
        time_booked=lead.time_booked,
        booking_slot=lead.booking_slot,
        is_confirmed=lead.is_confirmed,
        booking_status=lead.booking_status,
    )


def resolve_callback_time(
    value: Union[datetime, str], now: datetime, tz: ZoneInfo
) -> datetime:
    """Turn a callback time into a UTC instant.

    Absolute datetimes are taken as given (naive ones as UTC).  ``HH:MM``
    strings are read in *tz* and rolled over to tomorrow when that time
    has already passed today.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    match = _HH_MM.match(value.strip())
    if not match:
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise LeadValidationError(
                f"Invalid callback time {value!r}; expected an ISO instant or HH:MM"
            )
        return resolve_callback_time(parsed, now, tz)
    local_now = now.astimezone(tz)
    candidate = local_now.replace(
        hour=int(match.group(1)), minute=int(match.group(2)), second=0, microsecond=0
    )
    if candidate <= local_now:
        # Add a calendar day in local time, then re-attach the zone so a
        # DST change overnight does not shift the wall-clock time.
        candidate = (candidate.replace(tzinfo=None) + timedelta(days=1)).replace(tzinfo=tz)
    return candidate.astimezone(timezone.utc)


class StatusTransitionEngine:
    """Computes the next state of a lead for a requested change.

    Pure: reads the current lead, its audit history and the actor,
    and returns the new lead state, the audit entries to append and the
    side-effect intents to enqueue.  Validation and permission failures
    are raised before anything is computed, so a failed call never
    yields a partial result.
    """

    def __init__(self, callback_timezone: Optional[str] = None) -> None:
        self._tz = ZoneInfo(callback_timezone or settings.CALLBACK_TIMEZONE)

    def transition(
        self,
        lead: LeadState,
        change: LeadChange,
        actor: Actor,
        history: Optional[AuditLog] = None,
        now: Optional[datetime] = None,
        enforce_permissions: bool = True,
    ) -> TransitionResult:
        now = now or datetime.now(timezone.utc)
        history = history or AuditLog()
        quick = change.quick_status is not None
        change = self._expand_quick_status(change)
        target = self._target_status(lead, change)

        if enforce_permissions:
            self._check_permissions(lead, change, target, actor)

        new = lead.model_copy(deep=True)
        # (details, snapshot the lead before the change) pairs
        pending: List[Tuple[Any, bool]] = []
        effects: List[SideEffect] = []

        if change.booker_id is not None and change.booker_id != lead.booker_id:
            new.booker_id = change.booker_id
            if new.assigned_at is None:
                new.assigned_at = now
            pending.append(
                (
                    LeadAssignedDetails(
                        old_booker_id=lead.booker_id, new_booker_id=change.booker_id
                    ),
                    False,
                )
            )

        if target is not None:
            self._apply_status(lead, new, target, change, now, pending, quick)

        if change.booking_status is not None and new.status not in _CLEARING_STATUSES:
            self._apply_booking_status(lead, new, change.booking_status, now, pending, quick)

        if change.has_sale is not None and new.status not in _CLEARING_STATUSES:
            new.has_sale = change.has_sale
        if change.is_confirmed is not None and new.status not in _CLEARING_STATUSES:
            new.is_confirmed = change.is_confirmed

        if quick and self._state_changed(lead, new):
            pending.append(
                (
                    QuickStatusUpdateDetails(
                        old_status=lead.status,
                        new_status=new.status,
                        button=change.quick_status,
                    ),
                    False,
                )
            )

        if change.call_status is not None:
            self._apply_call_status(lead, new, change, actor, history, now, pending, effects)

        if change.notes is not None and change.notes != lead.notes:
            new.notes = change.notes
            pending.append((NotesUpdatedDetails(notes=change.notes), False))

        if change.tags is not None or change.add_tags or change.remove_tags:
            self._apply_tags(new, change, pending)

        if not pending and not self._state_changed(lead, new):
            raise LeadValidationError("No changes requested")

        if new.status != lead.status and new.booker_id is not None:
            effects.append(
                SideEffect(
                    kind=SideEffectKind.UPDATE_STATS,
                    payload={
                        "booker_id": str(new.booker_id),
                        "from": lead.status.value,
                        "to": new.status.value,
                    },
                )
            )

        if (
            (change.send_email or change.send_sms)
            and new.status == LeadStatus.BOOKED
            and new.date_booked is not None
        ):
            effects.append(
                SideEffect(
                    kind=SideEffectKind.SEND_BOOKING_CONFIRMATION,
                    channel=WorkflowChannel.EMAIL if change.send_email else WorkflowChannel.SMS,
                    payload={
                        "via_email": change.send_email,
                        "via_sms": change.send_sms,
                        "template_id": change.template_id,
                        "date_booked": new.date_booked.isoformat(),
                    },
                )
            )

        new.updated_at = now
        before, after = snapshot_of(lead), snapshot_of(new)
        entries = [
            AuditEntry(
                lead_id=lead.id,
                timestamp=now,
                performed_by=actor.id,
                performed_by_name=actor.name,
                details=details,
                lead_snapshot=before if use_before else after,
            )
            for details, use_before in pending
        ]
        return TransitionResult(lead=new, audit_entries=entries, side_effects=effects)

    # ------------------------------------------------------------------
    # Request interpretation
    # ------------------------------------------------------------------

    @staticmethod
    def _expand_quick_status(change: LeadChange) -> LeadChange:
        if change.quick_status is None:
            return change
        mapping = QUICK_STATUS_MAPPINGS[change.quick_status]
        return change.model_copy(update=mapping)

    @staticmethod
    def _target_status(lead: LeadState, change: LeadChange) -> Optional[LeadStatus]:
        if change.status is not None:
            return change.status
        # Assigning a booker to a fresh lead moves it to Assigned
        if (
            change.booker_id is not None
            and change.booker_id != lead.booker_id
            and lead.status == LeadStatus.NEW
        ):
            return LeadStatus.ASSIGNED
        # A new date on a booked lead is a reschedule
        if change.date_booked is not None and lead.status == LeadStatus.BOOKED:
            return LeadStatus.BOOKED
        return None

    @staticmethod
    def _check_permissions(
        lead: LeadState,
        change: LeadChange,
        target: Optional[LeadStatus],
        actor: Actor,
    ) -> None:
        if actor.role == UserRole.ADMIN:
            return
        if actor.role == UserRole.PHOTOGRAPHER:
            raise LeadPermissionError("Photographers cannot modify leads")
        if change.booker_id is not None and change.booker_id != lead.booker_id:
            raise LeadPermissionError("Only admins can assign leads")
        if target == LeadStatus.REJECTED and actor.role not in REJECT_ROLES:
            raise LeadPermissionError("Only admins and bookers can reject leads")
        if actor.role == UserRole.VIEWER and change.call_status is not None:
            raise LeadPermissionError("Viewers cannot record call outcomes")
        if lead.booker_id != actor.id:
            raise LeadPermissionError("You can only modify leads assigned to you")

    @staticmethod
    def _apply_tags(
        new: LeadState, change: LeadChange, pending: List[Tuple[Any, bool]]
    ) -> None:
        """Apply a tag replacement or tag additions and removals.

        A replacement is recorded as the removals and additions it implies,
        one entry per tag.
        """
        tags = list(new.tags)
        if change.tags is not None:
            removed = [tag for tag in tags if tag not in change.tags]
            added = change.tags
        else:
            removed = change.remove_tags or []
            added = change.add_tags or []

        for tag in removed:
            if tag in tags:
                tags.remove(tag)
                pending.append((TagDetails(action="TAG_REMOVED", tag=tag), False))
        for tag in added:
            if tag not in tags:
                tags.append(tag)
                pending.append((TagDetails(action="TAG_ADDED", tag=tag), False))
        new.tags = tags

    @staticmethod
    def _state_changed(old: LeadState, new: LeadState) -> bool:
        return old.model_dump(exclude={"updated_at"}) != new.model_dump(exclude={"updated_at"})

    # ------------------------------------------------------------------
    # Primary status
    # ------------------------------------------------------------------

    def _apply_status(
        self,
        lead: LeadState,
        new: LeadState,
        target: LeadStatus,
        change: LeadChange,
        now: datetime,
        pending: List[Tuple[Any, bool]],
        quick: bool,
    ) -> None:
        old = lead.status
        if target == old and target not in (LeadStatus.BOOKED, LeadStatus.ASSIGNED):
            # Nothing to move; sub-fields are applied by the caller
            return
        if target not in ALLOWED_TRANSITIONS[old]:
            raise LeadValidationError(f"Cannot transition from {old.value} to {target.value}")

        if target == LeadStatus.ASSIGNED:
            self._assign(lead, new, now, pending, quick)
        elif target == LeadStatus.BOOKED:
            self._book(lead, new, change, now, pending, quick)
        elif target == LeadStatus.ATTENDED:
            if lead.date_booked is None:
                raise LeadValidationError("Cannot mark a lead attended without an appointment")
            new.status = LeadStatus.ATTENDED
            self._record_status_change(old, target, pending, quick)
        elif target == LeadStatus.NO_SHOW:
            if lead.date_booked is None:
                raise LeadValidationError("Cannot mark a no-show without an appointment")
            # date_booked is kept for display
            new.status = LeadStatus.NO_SHOW
            self._record_status_change(old, target, pending, quick)
        elif target == LeadStatus.CANCELLED:
            self._clear_appointment(new)
            new.status = LeadStatus.CANCELLED
            new.cancelled_at = now
            pending.append(
                (
                    CancellationDetails(
                        previous_status=old,
                        previous_date_booked=lead.date_booked,
                        reason=change.reason,
                    ),
                    True,
                )
            )
        elif target == LeadStatus.REJECTED:
            reason = (change.reason or "").strip()
            if not reason:
                raise LeadValidationError("A reason is required to reject a lead")
            self._clear_appointment(new)
            new.status = LeadStatus.REJECTED
            new.rejected_at = now
            new.reject_reason = reason
            pending.append(
                (
                    LeadRejectedDetails(
                        reason=reason,
                        previous_status=old,
                        previous_date_booked=lead.date_booked,
                    ),
                    True,
                )
            )
        else:
            new.status = target
            self._record_status_change(old, target, pending, quick)

    def _assign(
        self,
        lead: LeadState,
        new: LeadState,
        now: datetime,
        pending: List[Tuple[Any, bool]],
        quick: bool,
    ) -> None:
        if new.booker_id is None:
            raise LeadValidationError("A booker is required to assign a lead")
        if lead.status == LeadStatus.ASSIGNED and new.booker_id == lead.booker_id:
            raise LeadValidationError("Lead is already assigned to this booker")
        if new.assigned_at is None:
            new.assigned_at = now
        new.status = LeadStatus.ASSIGNED
        if lead.status != LeadStatus.ASSIGNED:
            self._record_status_change(lead.status, LeadStatus.ASSIGNED, pending, quick)

    def _book(
        self,
        lead: LeadState,
        new: LeadState,
        change: LeadChange,
        now: datetime,
        pending: List[Tuple[Any, bool]],
        quick: bool,
    ) -> None:
        old_status = lead.status
        old_date = lead.date_booked
        new_date = change.date_booked or old_date
        if new_date is None:
            raise LeadValidationError("date_booked is required to book a lead")

        date_changed = change.date_booked is not None and change.date_booked != old_date
        if old_status == LeadStatus.BOOKED and change.date_booked is not None and not date_changed:
            raise LeadValidationError("Lead is already booked for that time")

        new.status = LeadStatus.BOOKED
        new.date_booked = new_date
        if change.time_booked is not None:
            new.time_booked = change.time_booked
        if change.booking_slot is not None:
            new.booking_slot = change.booking_slot
        new.ever_booked = True

        if old_status != LeadStatus.BOOKED:
            # New episode
            new.booked_at = now
            new.booking_status = None
            new.is_confirmed = change.is_confirmed if change.is_confirmed is not None else False
        elif new.booked_at is None:
            new.booked_at = now

        if old_status in (LeadStatus.NEW, LeadStatus.ASSIGNED) or old_date is None:
            pending.append(
                (
                    InitialBookingDetails(
                        date_booked=new_date,
                        time_booked=new.time_booked,
                        booking_slot=new.booking_slot,
                    ),
                    False,
                )
            )
        elif date_changed:
            if old_status == LeadStatus.BOOKED:
                new.booking_status = BookingStatus.RESCHEDULE
            pending.append(
                (
                    RescheduleDetails(
                        old_date_booked=old_date,
                        new_date_booked=new_date,
                        reason=change.reason,
                    ),
                    False,
                )
            )
        elif old_status != LeadStatus.BOOKED:
            # Back into Booked for the appointment that was already on file
            self._record_status_change(old_status, LeadStatus.BOOKED, pending, quick)

    @staticmethod
    def _clear_appointment(new: LeadState) -> None:
        new.date_booked = None
        new.time_booked = None
        new.booking_slot = None
        new.is_confirmed = None
        new.booking_status = None

    @staticmethod
    def _record_status_change(
        old: LeadStatus,
        new: LeadStatus,
        pending: List[Tuple[Any, bool]],
        quick: bool,
    ) -> None:
        # Quick-status buttons record a single QUICK_STATUS_UPDATE instead
        if quick:
            return
        pending.append((StatusChangeDetails(old_status=old, new_status=new), False))

    # ------------------------------------------------------------------
    # Booking sub-status
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_booking_status(
        lead: LeadState,
        new: LeadState,
        booking_status: BookingStatus,
        now: datetime,
        pending: List[Tuple[Any, bool]],
        quick: bool,
    ) -> None:
        if new.date_booked is None:
            raise LeadValidationError("Booking status requires an appointment")
        if booking_status == new.booking_status:
            return
        new.booking_status = booking_status
        if booking_status == BookingStatus.COMPLETE:
            new.completed_at = now
            new.has_sale = 1
        if not quick:
            pending.append(
                (
                    BookingStatusUpdateDetails(
                        old_booking_status=lead.booking_status,
                        booking_status=booking_status,
                    ),
                    False,
                )
            )

    # ------------------------------------------------------------------
    # Call status
    # ------------------------------------------------------------------

    def _apply_call_status(
        self,
        lead: LeadState,
        new: LeadState,
        change: LeadChange,
        actor: Actor,
        history: AuditLog,
        now: datetime,
        pending: List[Tuple[Any, bool]],
        effects: List[SideEffect],
    ) -> None:
        requested = change.call_status
        current = self._current_call_status(lead, history)
        resolved = requested
        if requested == CallStatus.NO_ANSWER and current in NO_ANSWER_VARIANTS:
            resolved = NO_ANSWER_ESCALATION[current]
        new.call_status = resolved

        trigger: Optional[WorkflowChannel] = None
        if resolved in EMAIL_TRIGGER_CALL_STATUSES:
            if self._should_email(lead, resolved, history):
                trigger = WorkflowChannel.EMAIL
                effects.append(
                    SideEffect(
                        kind=SideEffectKind.NOTIFY_WORKFLOW,
                        channel=WorkflowChannel.EMAIL,
                        payload={
                            "call_status": resolved.value,
                            "email": lead.email,
                            "name": lead.name,
                        },
                    )
                )
        elif resolved in CLOSE_TRIGGER_CALL_STATUSES:
            trigger = WorkflowChannel.CLOSE
            effects.append(
                SideEffect(
                    kind=SideEffectKind.NOTIFY_WORKFLOW,
                    channel=WorkflowChannel.CLOSE,
                    payload={"call_status": resolved.value},
                )
            )
        elif resolved in CALLBACK_TRIGGER_CALL_STATUSES and change.callback_time is not None:
            when = resolve_callback_time(change.callback_time, now, self._tz)
            trigger = WorkflowChannel.CALLBACK
            effects.append(
                SideEffect(
                    kind=SideEffectKind.NOTIFY_WORKFLOW,
                    channel=WorkflowChannel.CALLBACK,
                    payload={
                        "call_status": resolved.value,
                        "user_id": str(actor.id),
                        "callback_time": when.isoformat(),
                        "note": change.callback_note,
                    },
                )
            )

        pending.append(
            (
                CallStatusUpdateDetails(
                    requested_call_status=requested,
                    call_status=resolved,
                    previous_call_status=current,
                    workflow_trigger=trigger,
                ),
                False,
            )
        )

    @staticmethod
    def _current_call_status(lead: LeadState, history: AuditLog) -> Optional[CallStatus]:
        if lead.call_status is not None:
            return lead.call_status
        latest = history.find_latest(
            lead.id, lambda e: e.action == AuditAction.CALL_STATUS_UPDATE
        )
        return latest.details.call_status if latest else None

    @staticmethod
    def _should_email(lead: LeadState, resolved: CallStatus, history: AuditLog) -> bool:
        if not lead.email:
            logger.info("Lead %s has no email; skipping %s email", lead.id, resolved.value)
            return False
        if resolved != CallStatus.NO_ANSWER:
            return True
        # "No answer" emails go out on the first occurrence only
        return not history.any_entry(
            lead.id,
            lambda e: e.action == AuditAction.CALL_STATUS_UPDATE
            and (
                e.details.call_status in NO_ANSWER_VARIANTS
                or e.details.requested_call_status in NO_ANSWER_VARIANTS
            ),
        )
