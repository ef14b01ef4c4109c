from fastapi import APIRouter

from bookings_crm.api.v1.endpoints import callbacks, health, history, leads

router = APIRouter(prefix="/api/v1")

router.include_router(leads.router)
router.include_router(history.router)
router.include_router(callbacks.router)
router.include_router(health.router)
