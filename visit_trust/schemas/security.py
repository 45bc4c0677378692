"""
Pydantic schemas for the security monitor: events, review queue, alerts and metrics.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, field_validator

from visit_trust.config import settings
from visit_trust.schemas.submission import ensure_utc


# ============================================
# ENUMS
# ============================================
class SecurityEventType(str, Enum):
    FRAUD_DETECTED = "FRAUD_DETECTED"
    GPS_SPOOFING = "GPS_SPOOFING"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    DUPLICATE_SUBMISSION = "DUPLICATE_SUBMISSION"
    SUSPICIOUS_PATTERN = "SUSPICIOUS_PATTERN"
    VALIDATION_FAILURE = "VALIDATION_FAILURE"
    IMPOSSIBLE_TRAVEL = "IMPOSSIBLE_TRAVEL"
    POOR_GPS_ACCURACY = "POOR_GPS_ACCURACY"
    RAPID_SUBMISSIONS = "RAPID_SUBMISSIONS"
    AUTOMATED_BEHAVIOR = "AUTOMATED_BEHAVIOR"
    PHOTO_VALIDATION_FAILED = "PHOTO_VALIDATION_FAILED"
    LOCATION_VERIFICATION_FAILED = "LOCATION_VERIFICATION_FAILED"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class Severity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK = {
    Severity.low: 1,
    Severity.medium: 2,
    Severity.high: 3,
    Severity.critical: 4,
}


class ReviewStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    escalated = "escalated"


TERMINAL_REVIEW_STATUSES = (ReviewStatus.approved, ReviewStatus.rejected, ReviewStatus.escalated)


class AlertType(str, Enum):
    threshold_exceeded = "threshold_exceeded"
    pattern_detected = "pattern_detected"
    critical_event = "critical_event"


class Timeframe(str, Enum):
    hour = "hour"
    day = "day"
    week = "week"
    month = "month"


# ============================================
# RECORDS
# ============================================
class SecurityEvent(BaseModel):
    """Append-only log entry; only the resolution fields ever change."""
    id: str
    type: SecurityEventType
    severity: Severity
    user_id: str
    challenge_id: Optional[str] = None
    submission_id: Optional[str] = None
    timestamp: datetime
    description: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    resolved: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None

    class Config:
        frozen = True

    @field_validator("timestamp", "resolved_at")
    @classmethod
    def normalize_times(cls, value):
        return ensure_utc(value)


class FlaggedSubmission(BaseModel):
    submission_id: str
    user_id: str
    challenge_id: str
    flagged_at: datetime
    flag_reason: str
    severity: Severity
    review_status: ReviewStatus = ReviewStatus.pending
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    automatic_flags: List[str] = Field(default_factory=list)
    manual_flags: List[str] = Field(default_factory=list)
    fraud_score: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True

    @field_validator("flagged_at", "reviewed_at")
    @classmethod
    def normalize_times(cls, value):
        return ensure_utc(value)


class SecurityAlert(BaseModel):
    id: str
    alert_type: AlertType
    title: str
    description: str
    severity: Severity
    triggered_at: datetime
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    related_events: List[str] = Field(default_factory=list)
    action_required: bool = True
    suggested_actions: List[str] = Field(default_factory=list)

    class Config:
        frozen = True

    @field_validator("triggered_at", "acknowledged_at")
    @classmethod
    def normalize_times(cls, value):
        return ensure_utc(value)


# ============================================
# METRICS
# ============================================
class OffendingUser(BaseModel):
    user_id: str
    event_count: int
    last_event: datetime


class TrendPoint(BaseModel):
    date: str = Field(..., description="UTC calendar day, YYYY-MM-DD")
    event_count: int = 0
    fraud_attempts: int = 0


class SecurityMetrics(BaseModel):
    timeframe: Timeframe
    total_events: int = 0
    events_by_type: Dict[str, int] = Field(default_factory=dict)
    events_by_severity: Dict[str, int] = Field(default_factory=dict)
    unique_users_affected: int = 0
    resolved_events: int = 0
    resolution_rate: float = 0.0
    pending_review: int = 0
    average_resolution_time: float = Field(0.0, description="Hours from event to resolution")
    top_offending_users: List[OffendingUser] = Field(default_factory=list)
    recent_trends: List[TrendPoint] = Field(default_factory=list)


class AlertThresholds(BaseModel):
    """Sliding-window alert thresholds; counts at or above a value trigger an alert."""
    fraud_events_per_hour: int = Field(
        default_factory=lambda: settings.ALERT_FRAUD_EVENTS_PER_HOUR, ge=1
    )
    gps_spoofing_events_per_hour: int = Field(
        default_factory=lambda: settings.ALERT_GPS_SPOOFING_EVENTS_PER_HOUR, ge=1
    )
    rate_limit_violations_per_hour: int = Field(
        default_factory=lambda: settings.ALERT_RATE_LIMIT_VIOLATIONS_PER_HOUR, ge=1
    )
    high_severity_events_per_hour: int = Field(
        default_factory=lambda: settings.ALERT_HIGH_SEVERITY_EVENTS_PER_HOUR, ge=1
    )
    unique_users_with_fraud_per_day: int = Field(
        default_factory=lambda: settings.ALERT_UNIQUE_USERS_WITH_FRAUD_PER_DAY, ge=1
    )

    class Config:
        frozen = True
