from fastapi import APIRouter

from grievance_engine.api.v1.endpoints import attachments, grievances, maintenance

router = APIRouter()

router.include_router(grievances.router, prefix="/grievances", tags=["grievances"])
router.include_router(attachments.router, prefix="/attachments", tags=["attachments"])
router.include_router(maintenance.router, prefix="/maintenance", tags=["maintenance"])
