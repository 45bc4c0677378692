"""
Schemas package - Pydantic data contracts
"""
from visit_trust.schemas.submission import (
    ensure_utc,
    ProofType,
    VerificationStatus,
    ChallengeStatus,
    GPSCoordinate,
    Submission,
    UserSubmissionHistory,
    ChallengeLocation,
    ProofRequirements,
    Challenge,
    PhotoProof,
    ReceiptProof,
    GPSProof,
    QuestionProof,
    ProofMetadata,
    ProofSubmission,
)
from visit_trust.schemas.fraud import (
    RiskLevel,
    RecommendedAction,
    FraudSignalCode,
    FraudSignal,
    FraudDetectionResult,
)
from visit_trust.schemas.validation import (
    Decision,
    IssueSource,
    ValidationIssue,
    ValidationResult,
    ValidationConfig,
)
from visit_trust.schemas.security import (
    SecurityEventType,
    Severity,
    ReviewStatus,
    AlertType,
    Timeframe,
    SecurityEvent,
    FlaggedSubmission,
    SecurityAlert,
    OffendingUser,
    TrendPoint,
    SecurityMetrics,
    AlertThresholds,
)

__all__ = [
    "ensure_utc",
    "ProofType",
    "VerificationStatus",
    "ChallengeStatus",
    "GPSCoordinate",
    "Submission",
    "UserSubmissionHistory",
    "ChallengeLocation",
    "ProofRequirements",
    "Challenge",
    "PhotoProof",
    "ReceiptProof",
    "GPSProof",
    "QuestionProof",
    "ProofMetadata",
    "ProofSubmission",
    "RiskLevel",
    "RecommendedAction",
    "FraudSignalCode",
    "FraudSignal",
    "FraudDetectionResult",
    "Decision",
    "IssueSource",
    "ValidationIssue",
    "ValidationResult",
    "ValidationConfig",
    "SecurityEventType",
    "Severity",
    "ReviewStatus",
    "AlertType",
    "Timeframe",
    "SecurityEvent",
    "FlaggedSubmission",
    "SecurityAlert",
    "OffendingUser",
    "TrendPoint",
    "SecurityMetrics",
    "AlertThresholds",
]
