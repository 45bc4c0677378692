"""
Pydantic schemas for submissions, challenges and proof payloads.
"""
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, field_validator


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Interpret naive datetimes as UTC and normalize aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================
# ENUMS
# ============================================
class ProofType(str, Enum):
    photo = "photo"
    receipt = "receipt"
    gps_checkin = "gps_checkin"
    location_question = "location_question"


class VerificationStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class ChallengeStatus(str, Enum):
    draft = "draft"
    active = "active"
    expired = "expired"
    completed = "completed"


# ============================================
# GPS
# ============================================
class GPSCoordinate(BaseModel):
    """
    A GPS fix as reported by the device.

    Latitude and longitude are optional so malformed client input can be
    represented and judged instead of failing at parse time.
    """
    latitude: Optional[float] = Field(None, description="Latitude in degrees")
    longitude: Optional[float] = Field(None, description="Longitude in degrees")
    accuracy: Optional[float] = Field(None, description="Reported radius of uncertainty in meters")
    timestamp: Optional[datetime] = Field(None, description="Capture time of the fix")

    class Config:
        frozen = True

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value):
        return ensure_utc(value)

    def validation_errors(self) -> List[str]:
        errors = []
        lat, lon = self.latitude, self.longitude

        if lat is None or lon is None:
            errors.append("Latitude and longitude are required")
            return errors

        if not math.isfinite(lat) or not math.isfinite(lon):
            errors.append("Coordinates must be valid numbers")
            return errors

        if lat < -90 or lat > 90:
            errors.append("Latitude must be between -90 and 90 degrees")
        if lon < -180 or lon > 180:
            errors.append("Longitude must be between -180 and 180 degrees")

        if self.accuracy is not None:
            if not math.isfinite(self.accuracy) or self.accuracy < 0:
                errors.append("GPS accuracy must be a non-negative number")

        return errors

    def is_valid(self) -> bool:
        return not self.validation_errors()


# ============================================
# SUBMISSIONS
# ============================================
class Submission(BaseModel):
    """A proof-of-visit submission as created by the intake flow."""
    id: str
    challenge_id: str = ""
    user_id: str = ""
    proof_type: Optional[ProofType] = None
    proof_data: Dict[str, Any] = Field(default_factory=dict)
    gps_coordinates: Optional[GPSCoordinate] = None
    submitted_at: datetime
    verification_status: VerificationStatus = VerificationStatus.pending
    verification_notes: Optional[str] = None
    fraud_risk_score: float = 0.0
    external_post_url: Optional[str] = None
    external_comment_url: Optional[str] = None
    challenge_viewed_at: Optional[datetime] = Field(
        None, description="When the user opened the challenge, if known"
    )
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    class Config:
        frozen = True

    @field_validator("submitted_at", "challenge_viewed_at", "reviewed_at")
    @classmethod
    def normalize_times(cls, value):
        return ensure_utc(value)


class UserSubmissionHistory(BaseModel):
    """Per-user rolling view of past submissions, fetched fresh per call."""
    user_id: str
    submissions: List[Submission] = Field(default_factory=list)
    last_submission_at: Optional[datetime] = None
    total_submissions: int = 0
    suspicious_activity_count: int = 0

    class Config:
        frozen = True

    @field_validator("last_submission_at")
    @classmethod
    def normalize_last_submission(cls, value):
        return ensure_utc(value)

    def prior_to(self, submission: Submission) -> List[Submission]:
        """History without the submission under evaluation, oldest first."""
        prior = [s for s in self.submissions if s.id != submission.id]
        return sorted(prior, key=lambda s: s.submitted_at)

    def preceding(self, submission: Submission) -> List[Submission]:
        """Prior submissions made at or before `submission`, oldest first."""
        return [s for s in self.prior_to(submission) if s.submitted_at <= submission.submitted_at]

    def last_activity_at(self, submission: Submission) -> Optional[datetime]:
        candidates = [s.submitted_at for s in self.preceding(submission)]
        # last_submission_at may already reflect the submission under evaluation
        if self.last_submission_at is not None and self.last_submission_at < submission.submitted_at:
            candidates.append(self.last_submission_at)
        return max(candidates) if candidates else None

    def depth(self, submission: Submission) -> int:
        """Number of earlier submissions, counting those outside the supplied window."""
        outside_window = max(0, self.total_submissions - len(self.submissions))
        return len(self.prior_to(submission)) + outside_window


# ============================================
# CHALLENGES
# ============================================
class ChallengeLocation(BaseModel):
    business_name: str
    coordinates: GPSCoordinate
    verification_radius: float = Field(100.0, gt=0, description="Allowed distance in meters")
    address: Optional[str] = None


class ProofRequirements(BaseModel):
    types: List[ProofType] = Field(default_factory=lambda: list(ProofType))
    instructions: str = ""


class Challenge(BaseModel):
    """Challenge as supplied by the catalog service."""
    id: str
    title: str = ""
    partner_id: Optional[str] = None
    status: ChallengeStatus = ChallengeStatus.active
    start_date: datetime
    end_date: datetime
    points: int = 0
    location: ChallengeLocation
    proof_requirements: ProofRequirements = Field(default_factory=ProofRequirements)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_window(cls, value):
        return ensure_utc(value)


# ============================================
# PROOF PAYLOADS
# ============================================
class PhotoProof(BaseModel):
    image_url: Optional[str] = None
    has_business_signage: bool = False
    has_interior_view: bool = False
    gps_embedded: bool = False
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None


class ReceiptProof(BaseModel):
    image_url: Optional[str] = None
    business_name: Optional[str] = None
    timestamp: Optional[datetime] = None
    amount: Optional[float] = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value):
        return ensure_utc(value)


class GPSProof(BaseModel):
    coordinates: Optional[GPSCoordinate] = None
    verification_radius: Optional[float] = None
    check_in_time: Optional[datetime] = None

    @field_validator("check_in_time")
    @classmethod
    def normalize_check_in(cls, value):
        return ensure_utc(value)


class QuestionProof(BaseModel):
    question: Optional[str] = None
    answer: Optional[str] = None
    correct_answer: Optional[str] = None


class ProofMetadata(BaseModel):
    timestamp: Optional[datetime] = None
    location: Optional[GPSCoordinate] = None
    device_info: Optional[str] = None


class ProofSubmission(BaseModel):
    """Proof payload; `data` is parsed per proof type by the validator."""
    type: ProofType
    data: Dict[str, Any] = Field(default_factory=dict)
    metadata: Optional[ProofMetadata] = None
