"""API v1 router aggregation."""

from fastapi import APIRouter

from portal.api.v1.listings import router as listings_router
from portal.api.v1.interactions import router as interactions_router
from portal.api.v1.activity import router as activity_router
from portal.api.v1.analytics import router as analytics_router
from portal.api.v1.presence import router as presence_router

router = APIRouter(prefix="/api/v1")

router.include_router(listings_router)
router.include_router(interactions_router)
router.include_router(activity_router)
router.include_router(analytics_router)
router.include_router(presence_router)
