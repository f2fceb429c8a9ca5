from fastapi import APIRouter
from utils import log

from .admin import router as admin_router
from .listings import router as listings_router
from .orders import router as orders_router

logger = log.get_logger(__name__)

router = APIRouter(prefix="/api")
router.include_router(listings_router)
router.include_router(orders_router)
router.include_router(admin_router)


@router.get("/health", tags=["health"])
async def route_health():
    return {"status": "ok"}
