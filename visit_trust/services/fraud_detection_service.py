"""
GPS Fraud Detection - Spoofing & Abuse Signals

Judges one proof-of-visit submission against:
- The target business location (spoofing, exact matches, accuracy)
- The user's preceding submission (impossible travel)
- The user's recent cadence (daily cap, rapid fire, scripted intervals)
- The user's history (duplicates, homogeneity, completion speed, depth)

Pure decision logic: no I/O, never raises for malformed input.
Malformed GPS is itself a high-confidence fraud signal.
"""
import logging
from datetime import timedelta
from typing import Dict, Any, Optional, List, Union

import numpy as np

from visit_trust.schemas.submission import (
    GPSCoordinate, Submission, UserSubmissionHistory, ChallengeLocation
)
from visit_trust.schemas.fraud import (
    RiskLevel, RecommendedAction, FraudSignalCode, FraudSignal, FraudDetectionResult
)
from visit_trust.schemas.validation import ValidationConfig
from visit_trust.services.geo import distance_between, travel_speed, bearing

logger = logging.getLogger(__name__)

# Signal weights for risk score calculation
SIGNAL_WEIGHTS = {
    FraudSignalCode.INVALID_COORDINATES: 0.60,
    FraudSignalCode.EXACT_TARGET_MATCH: 0.55,
    FraudSignalCode.UNREALISTIC_ACCURACY: 0.45,
    FraudSignalCode.KNOWN_SPOOF_COORDINATE: 0.60,
    FraudSignalCode.POOR_ACCURACY: 0.15,
    FraudSignalCode.ACCURACY_UNREPORTED: 0.10,
    FraudSignalCode.IMPOSSIBLE_TRAVEL: 0.60,
    FraudSignalCode.HIGH_TRAVEL_SPEED: 0.20,
    FraudSignalCode.TRAVEL_UNVERIFIED: 0.10,
    FraudSignalCode.DAILY_LIMIT_EXCEEDED: 0.40,
    FraudSignalCode.RAPID_SUBMISSION: 0.35,
    FraudSignalCode.REGULAR_INTERVALS: 0.25,
    FraudSignalCode.BURST_PATTERN: 0.20,
    FraudSignalCode.DUPLICATE_CHALLENGE: 0.50,
    FraudSignalCode.PROOF_TYPE_HOMOGENEITY: 0.15,
    FraudSignalCode.FAST_COMPLETION: 0.15,
    FraudSignalCode.LIMITED_HISTORY: 0.05,
    FraudSignalCode.PRIOR_SUSPICIOUS_ACTIVITY: 0.20,
}

# Pattern checks need at least this many intervals to say anything
MIN_PATTERN_INTERVALS = 3
REGULAR_INTERVAL_RATIO = 0.7
BURST_INTERVAL_RATIO = 0.5
HOMOGENEITY_MIN_SUBMISSIONS = 10
HOMOGENEITY_RATIO = 0.9
MIN_COMPLETION_SAMPLES = 3

# History depth at which confidence is no longer discounted
FULL_CONFIDENCE_HISTORY = 10
CORROBORATION_BONUS = 0.05


class FraudDetectionService:
    """
    Rule-based fraud detector.

    Every rule returns a check dict:
        {"confidence": 0.8, "signals": [FraudSignal, ...], "details": {...}}
    Skipped rules return None and do not contribute to confidence.
    """

    def assess(
        self,
        submission: Submission,
        history: UserSubmissionHistory,
        challenge_location: Union[ChallengeLocation, GPSCoordinate],
        policy: Optional[ValidationConfig] = None
    ) -> FraudDetectionResult:
        """
        Assess one submission.

        Args:
            submission: Submission under evaluation; its submitted_at is "now"
            history: User's recent submissions (the submission itself is ignored if present)
            challenge_location: Business location or its coordinate
            policy: Config snapshot; defaults from settings

        Returns:
            FraudDetectionResult with one reason and one tagged signal per triggered rule
        """
        policy = policy or ValidationConfig()
        target = getattr(challenge_location, "coordinates", challenge_location)
        coords = submission.gps_coordinates or GPSCoordinate()

        checks = [
            self._check_gps_location(coords, target, policy),
            self._check_gps_accuracy(coords, policy),
            self._check_travel_speed(submission, coords, history, policy),
            self._check_submission_timing(submission, history, policy),
            self._check_submission_pattern(submission, history, policy),
            self._check_history(submission, history, policy),
        ]
        checks = [check for check in checks if check is not None]

        result = self._aggregate(checks, history.depth(submission))

        if result.fraud_risk == RiskLevel.high:
            logger.info(
                f"Submission {submission.id} by {submission.user_id} assessed high risk: "
                f"{[code.value for code in result.signal_codes()]}"
            )
        return result

    # ============================================
    # LOCATION
    # ============================================
    def _check_gps_location(
        self,
        coords: GPSCoordinate,
        target: GPSCoordinate,
        policy: ValidationConfig
    ) -> Dict[str, Any]:
        """Check coordinates against spoofing patterns."""
        errors = coords.validation_errors()
        if errors:
            return {
                "confidence": 0.95,
                "signals": [self._signal(
                    FraudSignalCode.INVALID_COORDINATES, "Invalid GPS coordinates",
                    RiskLevel.high, 0.95, errors=errors
                )],
                "details": {"errors": errors},
            }

        signals = []
        details: Dict[str, Any] = {"accuracy": coords.accuracy}

        if target is not None and target.is_valid():
            details["distance_m"] = round(distance_between(coords, target), 2)
            if coords.latitude == target.latitude and coords.longitude == target.longitude:
                signals.append(self._signal(
                    FraudSignalCode.EXACT_TARGET_MATCH,
                    "Exact coordinate match suggests GPS spoofing",
                    RiskLevel.high, 0.9, distance_m=0.0
                ))

        if coords.accuracy is not None and coords.accuracy < policy.min_realistic_accuracy:
            signals.append(self._signal(
                FraudSignalCode.UNREALISTIC_ACCURACY,
                "Unrealistically high GPS accuracy",
                RiskLevel.high, 0.8,
                accuracy=coords.accuracy, floor=policy.min_realistic_accuracy
            ))

        spoof = self._match_spoof_coordinate(coords, policy)
        if spoof is not None:
            signals.append(self._signal(
                FraudSignalCode.KNOWN_SPOOF_COORDINATE,
                "Common GPS spoofing coordinate detected",
                RiskLevel.high, 0.95,
                matched=list(spoof), tolerance=policy.spoof_coordinate_tolerance
            ))

        return {
            "confidence": max((s.confidence for s in signals), default=0.8),
            "signals": signals,
            "details": details,
        }

    def _check_gps_accuracy(
        self,
        coords: GPSCoordinate,
        policy: ValidationConfig
    ) -> Optional[Dict[str, Any]]:
        """Grade the reported accuracy radius."""
        if not coords.is_valid():
            return None

        if coords.accuracy is None:
            return {
                "confidence": 0.3,
                "signals": [self._signal(
                    FraudSignalCode.ACCURACY_UNREPORTED,
                    "No GPS accuracy information provided",
                    RiskLevel.medium, 0.3
                )],
                "details": {},
            }

        if coords.accuracy > policy.gps_accuracy_threshold:
            return {
                "confidence": 0.4,
                "signals": [self._signal(
                    FraudSignalCode.POOR_ACCURACY, "Poor GPS accuracy",
                    RiskLevel.medium, 0.4,
                    accuracy=coords.accuracy, threshold=policy.gps_accuracy_threshold
                )],
                "details": {"accuracy": coords.accuracy},
            }

        # Good accuracy increases confidence
        confidence = 0.9 if coords.accuracy <= policy.good_gps_accuracy else 0.7
        return {"confidence": confidence, "signals": [], "details": {"accuracy": coords.accuracy}}

    # ============================================
    # TRAVEL
    # ============================================
    def _check_travel_speed(
        self,
        submission: Submission,
        coords: GPSCoordinate,
        history: UserSubmissionHistory,
        policy: ValidationConfig
    ) -> Optional[Dict[str, Any]]:
        """Detect impossible travel from the immediately preceding submission."""
        if not coords.is_valid():
            return None

        preceding = history.preceding(submission)
        if not preceding:
            return {"confidence": 0.5, "signals": [], "details": {"reason": "no previous submission"}}

        previous = preceding[-1]
        prev_coords = previous.gps_coordinates
        if prev_coords is None or not prev_coords.is_valid():
            return {
                "confidence": 0.3,
                "signals": [self._signal(
                    FraudSignalCode.TRAVEL_UNVERIFIED,
                    "Previous location unavailable, travel speed could not be verified",
                    RiskLevel.medium, 0.3, previous_submission_id=previous.id
                )],
                "details": {},
            }

        # GPS capture times, falling back to submission times
        current_fix = self._with_timestamp(coords, submission)
        previous_fix = self._with_timestamp(prev_coords, previous)

        distance = distance_between(previous_fix, current_fix)
        elapsed = abs((current_fix.timestamp - previous_fix.timestamp).total_seconds())
        speed = travel_speed(previous_fix, current_fix)
        details = {
            "previous_submission_id": previous.id,
            "distance_m": round(distance, 2),
            "elapsed_sec": elapsed,
        }

        if speed is None:
            if distance == 0:
                return {"confidence": 0.5, "signals": [], "details": details}
            return {
                "confidence": 0.3,
                "signals": [self._signal(
                    FraudSignalCode.TRAVEL_UNVERIFIED,
                    "Missing time difference, travel speed could not be verified",
                    RiskLevel.medium, 0.3, **details
                )],
                "details": details,
            }

        details["speed_mps"] = round(speed, 2)
        details["bearing_deg"] = round(bearing(previous_fix, current_fix))

        if speed > policy.max_travel_speed:
            return {
                "confidence": 0.95,
                "signals": [self._signal(
                    FraudSignalCode.IMPOSSIBLE_TRAVEL, "Impossible travel speed detected",
                    RiskLevel.high, 0.95, max_speed_mps=policy.max_travel_speed, **details
                )],
                "details": details,
            }

        if speed > policy.suspicious_travel_speed:
            return {
                "confidence": 0.4,
                "signals": [self._signal(
                    FraudSignalCode.HIGH_TRAVEL_SPEED, "High travel speed detected",
                    RiskLevel.medium, 0.4,
                    suspicious_speed_mps=policy.suspicious_travel_speed, **details
                )],
                "details": details,
            }

        return {"confidence": 0.8, "signals": [], "details": details}

    # ============================================
    # CADENCE
    # ============================================
    def _check_submission_timing(
        self,
        submission: Submission,
        history: UserSubmissionHistory,
        policy: ValidationConfig
    ) -> Optional[Dict[str, Any]]:
        """Daily cap, rapid fire and scripted-interval detection."""
        if not policy.rate_limiting_enabled:
            return None

        now = submission.submitted_at
        preceding = history.preceding(submission)
        signals = []

        window_start = now - timedelta(hours=24)
        daily_count = sum(1 for s in preceding if s.submitted_at >= window_start)
        if daily_count >= policy.max_daily_submissions:
            signals.append(self._signal(
                FraudSignalCode.DAILY_LIMIT_EXCEEDED, "Exceeded maximum daily submissions",
                RiskLevel.high, 0.9,
                daily_submissions=daily_count, max_allowed=policy.max_daily_submissions
            ))

        last_activity = history.last_activity_at(submission)
        time_since_last = None
        if last_activity is not None:
            time_since_last = (now - last_activity).total_seconds()
            if time_since_last < policy.min_submission_interval:
                signals.append(self._signal(
                    FraudSignalCode.RAPID_SUBMISSION, "Submissions too close together",
                    RiskLevel.high, 0.8,
                    time_since_last_sec=time_since_last,
                    min_interval_sec=policy.min_submission_interval
                ))

        intervals = self._submission_intervals([s.submitted_at for s in preceding] + [now])
        if len(intervals) >= MIN_PATTERN_INTERVALS:
            deltas = np.abs(np.diff(intervals))
            regular = int(np.sum(deltas < policy.regular_interval_tolerance))
            if regular > len(intervals) * REGULAR_INTERVAL_RATIO:
                signals.append(self._signal(
                    FraudSignalCode.REGULAR_INTERVALS,
                    "Regular interval pattern suggests automation",
                    RiskLevel.medium, 0.4,
                    regular_intervals=regular, intervals=len(intervals)
                ))

            short = int(np.sum(intervals < policy.min_submission_interval))
            if short > len(intervals) * BURST_INTERVAL_RATIO:
                signals.append(self._signal(
                    FraudSignalCode.BURST_PATTERN, "Many rapid submissions detected",
                    RiskLevel.medium, 0.4,
                    short_intervals=short, intervals=len(intervals)
                ))

        return {
            "confidence": max((s.confidence for s in signals), default=0.8),
            "signals": signals,
            "details": {"daily_submissions": daily_count, "time_since_last_sec": time_since_last},
        }

    @staticmethod
    def _submission_intervals(times) -> np.ndarray:
        """Seconds between consecutive submissions, oldest first."""
        if len(times) < 2:
            return np.array([])
        stamps = np.array(sorted(t.timestamp() for t in times))
        return np.diff(stamps)

    # ============================================
    # HISTORY PATTERNS
    # ============================================
    def _check_submission_pattern(
        self,
        submission: Submission,
        history: UserSubmissionHistory,
        policy: ValidationConfig
    ) -> Dict[str, Any]:
        """Duplicates, proof-type homogeneity and completion speed."""
        prior = history.prior_to(submission)
        signals = []

        duplicates = [s.id for s in prior if submission.challenge_id and s.challenge_id == submission.challenge_id]
        if duplicates and policy.duplicate_prevention_enabled:
            signals.append(self._signal(
                FraudSignalCode.DUPLICATE_CHALLENGE, "Duplicate challenge submission detected",
                RiskLevel.high, 0.9,
                duplicate_attempts=len(duplicates), previous_submission_ids=duplicates
            ))

        total = max(history.total_submissions, len(prior))
        same_type = sum(1 for s in prior if s.proof_type == submission.proof_type)
        ratio = same_type / total if total > 0 else 0.0
        if total > HOMOGENEITY_MIN_SUBMISSIONS and ratio > HOMOGENEITY_RATIO:
            signals.append(self._signal(
                FraudSignalCode.PROOF_TYPE_HOMOGENEITY, "Suspicious proof type pattern",
                RiskLevel.medium, 0.5,
                proof_type_ratio=round(ratio, 4), same_proof_type_count=same_type,
                total_submissions=total
            ))

        completion_times = [
            (s.submitted_at - s.challenge_viewed_at).total_seconds()
            for s in prior + [submission]
            if s.challenge_viewed_at is not None and s.challenge_viewed_at <= s.submitted_at
        ]
        avg_completion = float(np.mean(completion_times)) if completion_times else None
        if len(completion_times) >= MIN_COMPLETION_SAMPLES and avg_completion < policy.min_completion_time:
            signals.append(self._signal(
                FraudSignalCode.FAST_COMPLETION, "Unusually fast completion times",
                RiskLevel.medium, 0.4,
                avg_completion_sec=round(avg_completion, 2), samples=len(completion_times)
            ))

        return {
            "confidence": max((s.confidence for s in signals), default=0.8),
            "signals": signals,
            "details": {
                "duplicate_attempts": len(duplicates),
                "proof_type_ratio": ratio,
                "avg_completion_sec": avg_completion,
            },
        }

    def _check_history(
        self,
        submission: Submission,
        history: UserSubmissionHistory,
        policy: ValidationConfig
    ) -> Dict[str, Any]:
        """New users and users with a record are never low risk."""
        depth = history.depth(submission)
        signals = []

        if depth < policy.min_history_for_low_risk:
            signals.append(self._signal(
                FraudSignalCode.LIMITED_HISTORY, "Limited submission history",
                RiskLevel.medium, 0.5,
                prior_submissions=depth, required=policy.min_history_for_low_risk
            ))

        if history.suspicious_activity_count > 0:
            signals.append(self._signal(
                FraudSignalCode.PRIOR_SUSPICIOUS_ACTIVITY, "Previous suspicious activity on record",
                RiskLevel.medium, 0.6,
                suspicious_activity_count=history.suspicious_activity_count
            ))

        return {
            "confidence": max((s.confidence for s in signals), default=0.8),
            "signals": signals,
            "details": {"prior_submissions": depth},
        }

    # ============================================
    # AGGREGATION
    # ============================================
    def _aggregate(self, checks: List[Dict[str, Any]], history_depth: int) -> FraudDetectionResult:
        """Combine all checks into one result."""
        signals = [signal for check in checks for signal in check["signals"]]

        if any(s.risk == RiskLevel.high for s in signals):
            fraud_risk, action = RiskLevel.high, RecommendedAction.reject
        elif signals:
            fraud_risk, action = RiskLevel.medium, RecommendedAction.review
        else:
            fraud_risk, action = RiskLevel.low, RecommendedAction.approve

        return FraudDetectionResult(
            is_valid=fraud_risk != RiskLevel.high,
            fraud_risk=fraud_risk,
            confidence=self._calculate_confidence(checks, signals, history_depth),
            reasons=[s.message for s in signals],
            recommended_action=action,
            signals=signals,
            risk_score=self._calculate_risk_score(signals),
        )

    @staticmethod
    def _calculate_confidence(
        checks: List[Dict[str, Any]],
        signals: List[FraudSignal],
        history_depth: int
    ) -> float:
        if not checks:
            return 0.0

        mean_confidence = sum(check["confidence"] for check in checks) / len(checks)

        # Richer history means a better-founded verdict
        depth_factor = 0.8 + 0.2 * min(history_depth, FULL_CONFIDENCE_HISTORY) / FULL_CONFIDENCE_HISTORY
        corroboration = CORROBORATION_BONUS * max(len(signals) - 1, 0)

        confidence = mean_confidence * depth_factor + corroboration
        return round(min(max(confidence, 0.0), 1.0), 4)

    @staticmethod
    def _calculate_risk_score(signals: List[FraudSignal]) -> float:
        """Weighted sum of triggered signals, capped at 1."""
        weighted_sum = sum(SIGNAL_WEIGHTS.get(s.code, 0.2) for s in signals)
        return round(min(weighted_sum, 1.0), 4)

    # ============================================
    # HELPERS
    # ============================================
    @staticmethod
    def _signal(
        code: FraudSignalCode,
        message: str,
        risk: RiskLevel,
        confidence: float,
        **details: Any
    ) -> FraudSignal:
        return FraudSignal(code=code, message=message, risk=risk, confidence=confidence, details=details)

    @staticmethod
    def _with_timestamp(coords: GPSCoordinate, submission: Submission) -> GPSCoordinate:
        if coords.timestamp is not None:
            return coords
        return coords.model_copy(update={"timestamp": submission.submitted_at})

    @staticmethod
    def _match_spoof_coordinate(coords: GPSCoordinate, policy: ValidationConfig):
        """Return the denylisted coordinate within tolerance, if any."""
        tolerance = policy.spoof_coordinate_tolerance
        for lat, lon in policy.spoof_coordinates:
            if abs(coords.latitude - lat) < tolerance and abs(coords.longitude - lon) < tolerance:
                return lat, lon
        return None


# Singleton instance
fraud_detection_service = FraudDetectionService()
