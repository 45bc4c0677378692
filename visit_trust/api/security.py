"""
Security Router - Review queue, security events, alerts and metrics

All endpoints are internal and require the API key.
"""
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from visit_trust.dependencies import verify_api_key
from visit_trust.schemas.security import (
    ReviewStatus, TERMINAL_REVIEW_STATUSES, Timeframe,
    SecurityEvent, FlaggedSubmission, SecurityAlert, SecurityMetrics
)
from visit_trust.services.security_monitoring_service import security_monitoring_service

router = APIRouter(dependencies=[Depends(verify_api_key)])


class ReviewRequest(BaseModel):
    reviewer_id: str
    decision: ReviewStatus
    notes: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "reviewer_id": "mod_1",
                "decision": "rejected",
                "notes": "Coordinates match a known emulator default"
            }
        }


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str


class ResolveRequest(BaseModel):
    resolved_by: str
    resolution_notes: Optional[str] = None


# ============================================
# METRICS
# ============================================
@router.get("/metrics", response_model=SecurityMetrics)
async def get_security_metrics(timeframe: Timeframe = Timeframe.day):
    """Aggregated security metrics for the trailing timeframe"""
    return security_monitoring_service.get_security_metrics(timeframe)


# ============================================
# REVIEW QUEUE
# ============================================
@router.get("/flagged", response_model=List[FlaggedSubmission])
async def get_flagged_submissions(
    status: str = Query("pending", description="pending, approved, rejected, escalated or all"),
    limit: int = Query(50, ge=1, le=500)
):
    """Flagged submissions, newest first"""
    try:
        return security_monitoring_service.get_flagged_submissions(status=status, limit=limit)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown review status '{status}'")


@router.post("/flagged/{submission_id}/review")
async def review_flagged_submission(submission_id: str, request: ReviewRequest):
    """Record the terminal review decision for a flagged submission"""
    if request.decision not in TERMINAL_REVIEW_STATUSES:
        raise HTTPException(status_code=422, detail="Review decision must be approved, rejected or escalated")

    reviewed = security_monitoring_service.review_flagged_submission(
        submission_id, request.reviewer_id, request.decision, request.notes
    )
    if not reviewed:
        if security_monitoring_service.get_flagged_submission(submission_id) is None:
            raise HTTPException(status_code=404, detail="Flagged submission not found")
        raise HTTPException(status_code=409, detail="Flagged submission was already reviewed")

    return {
        "success": True,
        "submission_id": submission_id,
        "review_status": request.decision.value
    }


# ============================================
# EVENTS
# ============================================
@router.get("/users/{user_id}/events", response_model=List[SecurityEvent])
async def get_user_security_events(user_id: str, limit: int = Query(20, ge=1, le=500)):
    """A user's security events, newest first"""
    return security_monitoring_service.get_user_security_events(user_id, limit=limit)


@router.post("/events/{event_id}/resolve")
async def resolve_security_event(event_id: str, request: ResolveRequest):
    """Mark a security event as resolved"""
    resolved = security_monitoring_service.resolve_security_event(
        event_id, request.resolved_by, request.resolution_notes
    )
    if not resolved:
        if security_monitoring_service.get_security_event(event_id) is None:
            raise HTTPException(status_code=404, detail="Security event not found")
        raise HTTPException(status_code=409, detail="Security event was already resolved")

    return {"success": True, "event_id": event_id}


# ============================================
# ALERTS
# ============================================
@router.get("/alerts", response_model=List[SecurityAlert])
async def get_active_alerts():
    """Unacknowledged alerts, most severe first"""
    return security_monitoring_service.get_active_alerts()


@router.post("/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(alert_id: str, request: AcknowledgeRequest):
    """Acknowledge an active alert"""
    acknowledged = security_monitoring_service.acknowledge_alert(alert_id, request.acknowledged_by)
    if not acknowledged:
        if security_monitoring_service.get_alert(alert_id) is None:
            raise HTTPException(status_code=404, detail="Alert not found")
        raise HTTPException(status_code=409, detail="Alert was already acknowledged")

    return {"success": True, "alert_id": alert_id}
