from fastapi import APIRouter

from backend.app.api.v1.endpoints.health import router as health_router
from backend.app.api.v1.endpoints.purchase_lists import router as purchase_lists_router
from backend.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from backend.app.api.v1.endpoints.transfers import router as transfers_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(purchase_lists_router, tags=["purchase_lists"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(transfers_router, tags=["transfers"])
