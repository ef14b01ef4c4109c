import logging
import time
from datetime import datetime
from typing import Callable, Dict, Optional
from uuid import UUID

from bookings_crm.core.cache import CacheService
from bookings_crm.core.config import settings

logger = logging.getLogger(__name__)

DUPLICATE_REQUEST_MESSAGE = "Request already being processed"


class RequestGuard:
    """Collapses double-submitted create requests.

    A fingerprint claimed less than ``window_seconds`` ago is reported
    as a duplicate.  Redis ``SET NX EX`` is used when a cache is
    available so the guard holds across workers; otherwise an
    in-process map is used, with entries forgotten after
    ``retention_seconds`` regardless of hits.

    One instance lives on the application state for the lifetime of
    the process.
    """

    KEY_PREFIX = "request_guard:"

    def __init__(
        self,
        window_seconds: Optional[int] = None,
        retention_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window_seconds or settings.REQUEST_GUARD_WINDOW_SECONDS
        self._retention = retention_seconds or settings.REQUEST_GUARD_RETENTION_SECONDS
        self._clock = clock
        self._recent: Dict[str, float] = {}

    @staticmethod
    def fingerprint(
        actor_id: Optional[UUID],
        name: Optional[str],
        phone: Optional[str],
        date_booked: Optional[datetime],
    ) -> str:
        return "_".join(
            [
                str(actor_id) if actor_id else "anonymous",
                (name or "").strip().lower(),
                (phone or "").strip(),
                date_booked.isoformat() if date_booked else "",
            ]
        )

    async def claim(self, fingerprint: str, cache: Optional[CacheService] = None) -> bool:
        """Return ``True`` if the request may proceed, ``False`` if it
        repeats one seen within the window."""
        if cache is not None and cache.is_available:
            claimed = await cache.set_if_absent(
                self.KEY_PREFIX + fingerprint, "1", self._window
            )
            if claimed is not None:
                if not claimed:
                    logger.info("Duplicate request suppressed: %s", fingerprint)
                return claimed
        return self._claim_locally(fingerprint)

    def _claim_locally(self, fingerprint: str) -> bool:
        now = self._clock()
        self._purge(now)
        seen_at = self._recent.get(fingerprint)
        if seen_at is not None and now - seen_at < self._window:
            logger.info("Duplicate request suppressed: %s", fingerprint)
            return False
        self._recent[fingerprint] = now
        return True

    def _purge(self, now: float) -> None:
        expired = [fp for fp, seen_at in self._recent.items() if now - seen_at > self._retention]
        for fp in expired:
            del self._recent[fp]

    def __len__(self) -> int:
        return len(self._recent)
