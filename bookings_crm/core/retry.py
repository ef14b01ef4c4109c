import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from bookings_crm.core.config import settings
from bookings_crm.core.exceptions import DegradedServiceError, TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_store_call(
    operation: Callable[[], Awaitable[T]],
    *,
    description: str,
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    timeout: Optional[float] = None,
) -> T:
    """Run a storage call with a per-attempt timeout and exponential backoff.

    Only ``TransientStoreError`` and timeouts are retried; every other
    exception propagates immediately.  When the attempts are exhausted a
    ``DegradedServiceError`` is raised so the caller can tell "storage is
    down" apart from "no matching rows".
    """
    attempts = attempts if attempts is not None else settings.STORE_RETRY_ATTEMPTS
    base_delay = base_delay if base_delay is not None else settings.STORE_RETRY_BASE_DELAY
    max_delay = max_delay if max_delay is not None else settings.STORE_RETRY_MAX_DELAY
    timeout = timeout if timeout is not None else settings.STORE_QUERY_TIMEOUT_SECONDS

    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except (TransientStoreError, asyncio.TimeoutError) as exc:
            if attempt >= attempts:
                logger.error(
                    "%s failed after %d attempt(s): %s", description, attempts, exc
                )
                raise DegradedServiceError(
                    f"{description} unavailable after {attempts} attempts"
                ) from exc
            delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                description,
                attempt,
                attempts,
                delay,
                exc,
            )
            await asyncio.sleep(delay)

    # attempts < 1
    raise DegradedServiceError(f"{description} was not attempted")
