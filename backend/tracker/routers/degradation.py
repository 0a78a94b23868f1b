"""
Degradation API Routes

Exposes the current feature-flag bundle so the frontend can gray out
features before the backend has to refuse them.
"""
from fastapi import APIRouter, Depends, Response

from ..dependencies import get_degradation_state
from ..services.capacity import DegradationState

router = APIRouter(tags=["capacity"])


@router.get("/degradation")
async def get_degradation(
    response: Response,
    state: DegradationState = Depends(get_degradation_state),
):
    """Current level, flags, message and next UTC reset."""
    response.headers["Cache-Control"] = "no-store"
    return {"success": True, "data": state.to_dict()}
