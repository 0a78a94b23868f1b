"""
Privacy API Routes

Owner-initiated data erasure. The client token is the only credential:
whoever holds it owns the row.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import get_db
from ..dependencies import get_settings, get_statistics
from ..errors import ValidationError
from ..services.identity import validate_client_token
from ..services.predictions import PredictionService
from ..services.statistics import StatisticsService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["privacy"])

MAX_REASON_LENGTH = 500


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class DeletionRequest(BaseModel):
    """Request to erase the caller's prediction."""
    cookie_id: Optional[str] = Field(None, description="Client token shown on the privacy page")
    reason: Optional[str] = Field(None, description="Optional free-text reason")
    confirm: bool = Field(default=False, description="Must be true")


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/delete")
def delete_my_data(
    body: DeletionRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    statistics: StatisticsService = Depends(get_statistics),
):
    """
    Erase the prediction owned by `cookie_id`.

    `confirm` must be true; an unknown token returns NOT_FOUND.
    """
    if not body.cookie_id or not validate_client_token(body.cookie_id):
        raise ValidationError("Invalid Cookie ID format", field="cookie_id")
    if body.confirm is not True:
        raise ValidationError("You must confirm deletion", field="confirm")
    if body.reason and len(body.reason) > MAX_REASON_LENGTH:
        raise ValidationError(
            f"Reason must be at most {MAX_REASON_LENGTH} characters", field="reason"
        )

    PredictionService(db, settings.reference_date).delete(body.cookie_id.lower(), reason=body.reason)
    statistics.invalidate_all()

    return {"success": True, "message": "Your data has been deleted successfully."}
