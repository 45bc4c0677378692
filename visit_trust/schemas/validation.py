"""
Pydantic schemas for submission validation: coded issues, results, and the
runtime-tunable policy snapshot.
"""
from enum import Enum
from typing import Optional, List, Tuple

from pydantic import BaseModel, Field

from visit_trust.config import settings
from visit_trust.schemas.fraud import FraudDetectionResult


class Decision(str, Enum):
    approve = "approve"
    review = "review"
    reject = "reject"


class IssueSource(str, Enum):
    structure = "structure"
    policy = "policy"
    location = "location"
    fraud = "fraud"
    system = "system"


class ValidationIssue(BaseModel):
    """A blocking error or non-blocking warning with a stable code."""
    field: str
    code: str
    message: str
    source: IssueSource = IssueSource.structure

    class Config:
        frozen = True


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    decision: Decision
    fraud_result: Optional[FraudDetectionResult] = None
    config_version: Optional[int] = None

    class Config:
        frozen = True

    def error_codes(self) -> List[str]:
        return [error.code for error in self.errors]

    def warning_codes(self) -> List[str]:
        return [warning.code for warning in self.warnings]


# Widely used default/test locations that emulators and mock-location apps report
DEFAULT_SPOOF_COORDINATES: List[Tuple[float, float]] = [
    (0.0, 0.0),             # Null Island
    (37.7749, -122.4194),   # San Francisco
    (40.7128, -74.0060),    # New York
    (51.5074, -0.1278),     # London
]


class ValidationConfig(BaseModel):
    """
    Immutable, versioned policy snapshot read by the validator and the
    fraud detector on every call.

    Defaults come from Settings; runtime changes publish a new snapshot
    through SubmissionValidationService.update_config().
    """
    version: int = 1

    # Rate limiting / duplicate policy
    max_daily_submissions: int = Field(
        default_factory=lambda: settings.VALIDATION_MAX_DAILY_SUBMISSIONS, ge=1
    )
    min_submission_interval: float = Field(
        default_factory=lambda: settings.VALIDATION_MIN_SUBMISSION_INTERVAL_SEC, ge=0,
        description="Seconds required between two submissions"
    )
    duplicate_prevention_enabled: bool = Field(
        default_factory=lambda: settings.VALIDATION_DUPLICATE_PREVENTION_ENABLED
    )
    rate_limiting_enabled: bool = Field(
        default_factory=lambda: settings.VALIDATION_RATE_LIMITING_ENABLED
    )

    # Proof checks
    photo_validation_enabled: bool = Field(
        default_factory=lambda: settings.VALIDATION_PHOTO_VALIDATION_ENABLED
    )
    max_photo_size: int = Field(
        default_factory=lambda: settings.VALIDATION_MAX_PHOTO_SIZE_BYTES, gt=0
    )
    allowed_image_types: List[str] = Field(
        default_factory=lambda: list(settings.VALIDATION_ALLOWED_IMAGE_TYPES)
    )
    receipt_max_age_hours: float = Field(
        default_factory=lambda: settings.VALIDATION_RECEIPT_MAX_AGE_HOURS, gt=0
    )
    min_answer_length: int = Field(
        default_factory=lambda: settings.VALIDATION_MIN_ANSWER_LENGTH, ge=1
    )

    # GPS accuracy (meters)
    gps_accuracy_threshold: float = Field(
        default_factory=lambda: settings.FRAUD_GPS_ACCURACY_THRESHOLD_M, gt=0
    )
    good_gps_accuracy: float = Field(
        default_factory=lambda: settings.FRAUD_GOOD_GPS_ACCURACY_M, gt=0
    )
    min_realistic_accuracy: float = Field(
        default_factory=lambda: settings.FRAUD_MIN_REALISTIC_ACCURACY_M, ge=0
    )

    # Travel speed (meters per second)
    max_travel_speed: float = Field(
        default_factory=lambda: settings.FRAUD_MAX_TRAVEL_SPEED_MPS, gt=0
    )
    suspicious_travel_speed: float = Field(
        default_factory=lambda: settings.FRAUD_SUSPICIOUS_TRAVEL_SPEED_MPS, gt=0
    )

    # Behavioral patterns
    regular_interval_tolerance: float = Field(
        default_factory=lambda: settings.FRAUD_REGULAR_INTERVAL_TOLERANCE_SEC, ge=0
    )
    min_completion_time: float = Field(
        default_factory=lambda: settings.FRAUD_MIN_COMPLETION_TIME_SEC, ge=0
    )
    min_history_for_low_risk: int = Field(
        default_factory=lambda: settings.FRAUD_MIN_HISTORY_FOR_LOW_RISK, ge=0
    )
    spoof_coordinates: List[Tuple[float, float]] = Field(
        default_factory=lambda: list(DEFAULT_SPOOF_COORDINATES)
    )
    spoof_coordinate_tolerance: float = Field(
        default_factory=lambda: settings.FRAUD_SPOOF_COORDINATE_TOLERANCE_DEG, ge=0
    )

    class Config:
        frozen = True
        extra = "forbid"
