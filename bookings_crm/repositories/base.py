import logging
from typing import Any

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from bookings_crm.core.exceptions import TransientStoreError

logger = logging.getLogger(__name__)


class BaseRepository:
    """Thin base class that holds the database session.

    Every concrete repository receives an ``AsyncSession`` at
    construction time so that multiple repositories can share the same
    unit-of-work within a single request.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _execute(self, statement: Any) -> Any:
        """Execute *statement*, reporting connection-level failures as
        ``TransientStoreError`` so callers can retry them."""
        try:
            return await self._db.execute(statement)
        except (OperationalError, InterfaceError) as exc:
            await self._db.rollback()
            logger.warning("Transient database error: %s", exc.orig)
            raise TransientStoreError(str(exc.orig)) from exc
        except DBAPIError as exc:
            if not exc.connection_invalidated:
                raise
            await self._db.rollback()
            logger.warning("Database connection invalidated: %s", exc.orig)
            raise TransientStoreError("Database connection lost") from exc

    async def commit(self) -> None:
        """Commit the current transaction."""
        await self._db.commit()

    async def rollback(self) -> None:
        """Roll back the current transaction."""
        await self._db.rollback()
