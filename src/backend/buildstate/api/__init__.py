"""API Routes Module."""

from fastapi import APIRouter

from buildstate.api import inspection_insights, inspections

router = APIRouter()

# Static paths must be registered before /inspections/{inspection_id}
router.include_router(inspection_insights.router, prefix="/inspections", tags=["Inspections"])
router.include_router(inspections.router, prefix="/inspections", tags=["Inspections"])
