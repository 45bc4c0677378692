"""
Pydantic schemas for fraud detection results.
"""
from enum import Enum
from typing import List, Dict, Any

from pydantic import BaseModel, Field


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class RecommendedAction(str, Enum):
    approve = "approve"
    review = "review"
    reject = "reject"


class FraudSignalCode(str, Enum):
    """Stable identifiers for every fraud heuristic."""
    INVALID_COORDINATES = "INVALID_COORDINATES"
    EXACT_TARGET_MATCH = "EXACT_TARGET_MATCH"
    UNREALISTIC_ACCURACY = "UNREALISTIC_ACCURACY"
    KNOWN_SPOOF_COORDINATE = "KNOWN_SPOOF_COORDINATE"
    POOR_ACCURACY = "POOR_ACCURACY"
    ACCURACY_UNREPORTED = "ACCURACY_UNREPORTED"
    IMPOSSIBLE_TRAVEL = "IMPOSSIBLE_TRAVEL"
    HIGH_TRAVEL_SPEED = "HIGH_TRAVEL_SPEED"
    TRAVEL_UNVERIFIED = "TRAVEL_UNVERIFIED"
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    RAPID_SUBMISSION = "RAPID_SUBMISSION"
    REGULAR_INTERVALS = "REGULAR_INTERVALS"
    BURST_PATTERN = "BURST_PATTERN"
    DUPLICATE_CHALLENGE = "DUPLICATE_CHALLENGE"
    PROOF_TYPE_HOMOGENEITY = "PROOF_TYPE_HOMOGENEITY"
    FAST_COMPLETION = "FAST_COMPLETION"
    LIMITED_HISTORY = "LIMITED_HISTORY"
    PRIOR_SUSPICIOUS_ACTIVITY = "PRIOR_SUSPICIOUS_ACTIVITY"


class FraudSignal(BaseModel):
    """One triggered heuristic: stable code, readable message, and the metrics behind it."""
    code: FraudSignalCode
    message: str
    risk: RiskLevel
    confidence: float = Field(..., ge=0.0, le=1.0)
    details: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True


class FraudDetectionResult(BaseModel):
    is_valid: bool
    fraud_risk: RiskLevel
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasons: List[str] = Field(default_factory=list)
    recommended_action: RecommendedAction
    signals: List[FraudSignal] = Field(default_factory=list)
    risk_score: float = Field(0.0, ge=0.0, le=1.0)

    class Config:
        frozen = True

    def signal_codes(self) -> List[FraudSignalCode]:
        return [signal.code for signal in self.signals]
