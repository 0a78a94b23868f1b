"""
Prediction API Routes

Submit, update and read the caller's own prediction.

Identity is the client token cookie (primary) plus the salted network hash
(secondary). Duplicate detection happens at the storage layer; this module
only maps results to responses.

Handlers are plain functions so FastAPI runs them in its threadpool; the
bot-verification call and database writes block a worker thread, not the
event loop.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import get_db
from ..dependencies import (
    get_bot_verifier,
    get_degradation_state,
    get_network_hash,
    get_settings,
    get_statistics,
    get_validator,
    rate_limit,
)
from ..errors import BotDetectedError, CapacityExceededError, ValidationError
from ..services.bot_verification import BotVerifier
from ..services.capacity import DegradationState
from ..services.identity import COOKIE_MAX_AGE, COOKIE_NAME, resolve_client_token, validate_client_token
from ..services.predictions import PredictionService, comparison_block
from ..services.statistics import StatisticsService
from ..services.validation import MAX_METADATA_LENGTH, Submission, SubmissionValidator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/predict", tags=["predictions"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class PredictionRequest(BaseModel):
    """Body for POST and PUT /predict."""
    predicted_date: Optional[str] = Field(None, description="ISO calendar date, YYYY-MM-DD")
    metadata_token: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("metadata_token", "turnstile_token"),
        description="Bot-verification challenge token",
    )


# =============================================================================
# HELPERS
# =============================================================================

def set_client_cookie(response: Response, cookie_id: str) -> None:
    response.set_cookie(
        key=COOKIE_NAME,
        value=cookie_id,
        max_age=COOKIE_MAX_AGE,
        path="/",
        secure=True,
        httponly=False,
        samesite="strict",
    )


def _require_submissions(state: DegradationState) -> None:
    if not state.features.submissions_enabled:
        logger.warning(f"Submission refused at capacity level {state.level.value}")
        raise CapacityExceededError(
            state.message or "We've reached capacity for today. Please try again tomorrow.",
            retry_after=state.seconds_until_reset,
        )


def _validated_submission(
    body: PredictionRequest,
    request: Request,
    validator: SubmissionValidator,
    verifier: BotVerifier,
    ip_hash: str,
) -> Submission:
    user_agent = request.headers.get("user-agent")
    if user_agent:
        user_agent = user_agent[:MAX_METADATA_LENGTH]

    result = validator.validate(
        body.predicted_date,
        body.metadata_token,
        user_agent=user_agent,
        verification_degraded=verifier.degraded,
    )
    if not result.is_valid:
        logger.info(f"Submission rejected: rule={result.rule.value} field={result.field}")
        raise ValidationError.from_result(result)

    submission: Submission = result.value
    verification = verifier.verify(submission.verification_token, remote_ip_hash=ip_hash)
    if not verification.passed:
        raise BotDetectedError("Bot verification failed. Please try again.")
    return submission


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", status_code=201, dependencies=[Depends(rate_limit("submit"))])
def submit_prediction(
    body: PredictionRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    state: DegradationState = Depends(get_degradation_state),
    validator: SubmissionValidator = Depends(get_validator),
    verifier: BotVerifier = Depends(get_bot_verifier),
    statistics: StatisticsService = Depends(get_statistics),
    ip_hash: str = Depends(get_network_hash),
):
    """
    Record a new prediction.

    Rejected with CONFLICT_SAME_IDENTITY when this browser already has one,
    CONFLICT_SAME_NETWORK when another browser on this network does.
    """
    _require_submissions(state)
    submission = _validated_submission(body, request, validator, verifier, ip_hash)

    cookie_id, is_new = resolve_client_token(request.cookies.get(COOKIE_NAME))
    service = PredictionService(db, settings.reference_date)
    row = service.submit(cookie_id, ip_hash, submission.predicted_date, submission.user_agent)
    statistics.invalidate_all()

    if is_new:
        set_client_cookie(response, cookie_id)

    return {
        "success": True,
        "data": {
            "prediction_id": row.id,
            **row.to_dict(),
            **comparison_block(row.predicted_date, service.aggregate()),
        },
        "message": "Your prediction has been recorded!",
    }


@router.put("", dependencies=[Depends(rate_limit("update"))])
def update_prediction(
    body: PredictionRequest,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    state: DegradationState = Depends(get_degradation_state),
    validator: SubmissionValidator = Depends(get_validator),
    verifier: BotVerifier = Depends(get_bot_verifier),
    statistics: StatisticsService = Depends(get_statistics),
    ip_hash: str = Depends(get_network_hash),
):
    """
    Change the caller's prediction. Same date twice is a no-op.
    """
    _require_submissions(state)
    submission = _validated_submission(body, request, validator, verifier, ip_hash)

    cookie_id = request.cookies.get(COOKIE_NAME)
    if cookie_id and not validate_client_token(cookie_id):
        cookie_id = None

    service = PredictionService(db, settings.reference_date)
    row, changed = service.update(
        cookie_id.lower() if cookie_id else None,
        ip_hash,
        submission.predicted_date,
        submission.user_agent,
    )
    if changed:
        statistics.invalidate_all()

    return {
        "success": True,
        "data": {
            "prediction_id": row.id,
            **row.to_dict(),
            **comparison_block(row.predicted_date, service.aggregate()),
        },
        "message": "Your prediction has been updated!" if changed else "Your prediction is unchanged.",
    }


@router.get("")
def get_my_prediction(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """The caller's stored prediction, or NOT_FOUND."""
    cookie_id = request.cookies.get(COOKIE_NAME)
    if cookie_id and not validate_client_token(cookie_id):
        cookie_id = None

    service = PredictionService(db, settings.reference_date)
    row = service.get_own(cookie_id.lower() if cookie_id else None)
    return {"success": True, "data": {"prediction_id": row.id, **row.to_dict()}}
