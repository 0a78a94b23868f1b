"""
Validation Rules Export

The client-side pre-check is generated from this payload, so the date
bounds, pattern and messages have exactly one source.
"""
from fastapi import APIRouter, Depends, Response

from ..dependencies import get_validator
from ..services.validation import SubmissionValidator

router = APIRouter(tags=["validation"])


@router.get("/validation-rules")
async def get_validation_rules(
    response: Response,
    validator: SubmissionValidator = Depends(get_validator),
):
    response.headers["Cache-Control"] = "public, max-age=3600"
    return validator.export_rules()
