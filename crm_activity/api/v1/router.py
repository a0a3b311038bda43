from fastapi import APIRouter

from crm_activity.api.v1.endpoints import activities, health, history, panels, summary

router = APIRouter(prefix="/api/v1")

router.include_router(panels.router)
router.include_router(history.router)
router.include_router(activities.router)
router.include_router(summary.router)
router.include_router(health.router)
