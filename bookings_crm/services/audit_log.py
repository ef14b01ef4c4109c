import itertools
import logging
from collections import defaultdict
from datetime import timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from bookings_crm.core.constants import DEDUP_BODY_PREFIX, DEDUP_SUBJECT_PREFIX
from bookings_crm.schemas.audit import AuditEntry, MessageDetails
from bookings_crm.schemas.common import AuditAction

logger = logging.getLogger(__name__)

EntryPredicate = Callable[[AuditEntry], bool]

# Message rows (type, status) -> audit action they describe
_MESSAGE_ACTIONS: Dict[Tuple[str, str], AuditAction] = {
    ("sms", "sent"): AuditAction.SMS_SENT,
    ("sms", "received"): AuditAction.SMS_RECEIVED,
    ("email", "sent"): AuditAction.EMAIL_SENT,
    ("email", "received"): AuditAction.EMAIL_RECEIVED,
}


def _order_key(entry: AuditEntry) -> Tuple[Any, int]:
    return entry.timestamp, entry.sequence or 0


class AuditLog:
    """In-memory append-only booking history, keyed by lead.

    Entries are never edited after :meth:`append`, except for the
    ``read`` flag on inbound message entries (see
    :meth:`mark_received_as_read`).  Consumers sort by timestamp, not by
    arrival order, so entries appended out of order still replay
    correctly.
    """

    def __init__(self) -> None:
        self._entries: Dict[UUID, List[AuditEntry]] = defaultdict(list)
        self._sequence = itertools.count(1)

    @classmethod
    def from_entries(cls, lead_id: UUID, entries: Iterable[AuditEntry]) -> "AuditLog":
        log = cls()
        for entry in entries:
            log.append(lead_id, entry)
        return log

    def append(self, lead_id: UUID, entry: AuditEntry) -> AuditEntry:
        """Add *entry* to the history of *lead_id* and return it.

        Entries without a sequence number get the next local one so that
        two entries sharing a timestamp keep their append order.
        """
        update: Dict[str, Any] = {}
        if entry.sequence is None:
            update["sequence"] = next(self._sequence)
        if entry.lead_id is None:
            update["lead_id"] = lead_id
        if update:
            entry = entry.model_copy(update=update)
        self._entries[lead_id].append(entry)
        return entry

    def query(self, lead_id: UUID, newest_first: bool = True) -> List[AuditEntry]:
        """Return the entries for *lead_id*: newest first for display,
        oldest first for replay."""
        return sorted(self._entries.get(lead_id, []), key=_order_key, reverse=newest_first)

    def replay(self, lead_id: UUID) -> List[AuditEntry]:
        return self.query(lead_id, newest_first=False)

    def find_latest(
        self, lead_id: UUID, predicate: EntryPredicate
    ) -> Optional[AuditEntry]:
        for entry in self.query(lead_id, newest_first=True):
            if predicate(entry):
                return entry
        return None

    def any_entry(self, lead_id: UUID, predicate: EntryPredicate) -> bool:
        return self.find_latest(lead_id, predicate) is not None

    def mark_received_as_read(self, lead_id: UUID) -> int:
        """Flip ``read`` on every unread inbound message entry.

        Returns how many entries changed.
        """
        changed = 0
        for entry in self._entries.get(lead_id, []):
            details = entry.details
            if isinstance(details, MessageDetails) and details.is_inbound and not details.read:
                details.read = True
                changed += 1
        return changed

    def unread_count(self, lead_id: UUID) -> int:
        return sum(
            1
            for entry in self._entries.get(lead_id, [])
            if isinstance(entry.details, MessageDetails)
            and entry.details.is_inbound
            and not entry.details.read
        )

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())


# ---------------------------------------------------------------------------
# Merging message records into the displayed history
# ---------------------------------------------------------------------------


def dedup_key(entry: AuditEntry) -> Tuple[Any, ...]:
    """Composite identity of a real-world event across recording paths.

    Two records with the same action, minute, performer, subject prefix
    and normalised body prefix describe the same event.
    """
    timestamp = entry.timestamp
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc)
    minute = timestamp.replace(second=0, microsecond=0)
    subject = body = ""
    if isinstance(entry.details, MessageDetails):
        subject = (entry.details.subject or "")[:DEDUP_SUBJECT_PREFIX]
        body = (entry.details.body or "").strip().lower()[:DEDUP_BODY_PREFIX]
    performer = str(entry.performed_by) if entry.performed_by else None
    return entry.action.value, minute, performer, subject, body


def entry_from_message(message: Any) -> Optional[AuditEntry]:
    """Describe a ``Message`` row as an audit entry, or ``None`` if its
    status (pending, failed) has no history counterpart."""
    action = _MESSAGE_ACTIONS.get((message.type, message.status))
    if action is None:
        return None
    return AuditEntry(
        lead_id=message.lead_id,
        timestamp=message.created_at,
        performed_by=message.sent_by,
        details={
            "action": action.value,
            "body": message.body or "",
            "subject": message.subject or "",
            "status": message.status,
            "read": True,
        },
    )


def merge_messages(
    entries: Iterable[AuditEntry], messages: Iterable[Any]
) -> List[AuditEntry]:
    """Merge history entries with message rows, dropping duplicates.

    History entries win over message rows for the same event.  The
    result is newest first.
    """
    merged: List[AuditEntry] = []
    seen = set()
    message_entries = (entry_from_message(m) for m in messages)
    for entry in itertools.chain(entries, message_entries):
        if entry is None:
            continue
        key = dedup_key(entry)
        if key in seen:
            logger.debug("Dropping duplicate %s entry at %s", entry.action.value, key[1])
            continue
        seen.add(key)
        merged.append(entry)
    merged.sort(key=_order_key, reverse=True)
    return merged
