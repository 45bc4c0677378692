"""
Validation Router - Submission intake gate and validation config
"""
import logging
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from visit_trust.dependencies import verify_api_key
from visit_trust.schemas.submission import Submission, Challenge, UserSubmissionHistory, ProofSubmission
from visit_trust.schemas.validation import ValidationResult, ValidationConfig
from visit_trust.services.submission_validation_service import submission_validation_service

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================
# REQUEST MODELS
# ============================================
class ValidateSubmissionRequest(BaseModel):
    submission: Submission
    challenge: Challenge
    history: Optional[UserSubmissionHistory] = None
    proof_submission: ProofSubmission

    class Config:
        json_schema_extra = {
            "example": {
                "submission": {
                    "id": "sub_123",
                    "challenge_id": "ch_42",
                    "user_id": "user_7",
                    "proof_type": "gps_checkin",
                    "gps_coordinates": {
                        "latitude": 42.3317,
                        "longitude": -83.0460,
                        "accuracy": 12.0,
                        "timestamp": "2024-05-01T14:00:00Z"
                    },
                    "submitted_at": "2024-05-01T14:00:05Z"
                },
                "challenge": {
                    "id": "ch_42",
                    "title": "Visit the Corner Cafe",
                    "start_date": "2024-04-01T00:00:00Z",
                    "end_date": "2024-06-01T00:00:00Z",
                    "location": {
                        "business_name": "Corner Cafe",
                        "coordinates": {"latitude": 42.3315, "longitude": -83.0458},
                        "verification_radius": 100
                    }
                },
                "proof_submission": {
                    "type": "gps_checkin",
                    "data": {
                        "coordinates": {"latitude": 42.3317, "longitude": -83.0460, "accuracy": 12.0},
                        "check_in_time": "2024-05-01T14:00:00Z"
                    }
                }
            }
        }


# ============================================
# ENDPOINTS
# ============================================
@router.post("/submissions", response_model=ValidationResult)
async def validate_submission(request: ValidateSubmissionRequest):
    """
    Validate a proof-of-visit submission.

    Always answers 200 with a ValidationResult; rejected submissions carry
    coded errors and decision "reject".
    """
    history = request.history or UserSubmissionHistory(user_id=request.submission.user_id)
    return submission_validation_service.validate(
        request.submission,
        request.challenge,
        history,
        request.proof_submission
    )


@router.get("/config", response_model=ValidationConfig)
async def get_validation_config():
    """Current validation config snapshot"""
    return submission_validation_service.get_config()


@router.patch("/config", response_model=ValidationConfig)
async def update_validation_config(
    changes: Dict[str, Any],
    api_key: str = Depends(verify_api_key)
):
    """Publish a new config snapshot with the given keys changed"""
    try:
        return submission_validation_service.update_config(changes)
    except ValueError as e:
        logger.warning(f"Rejected validation config update: {e}")
        raise HTTPException(status_code=422, detail=str(e))
