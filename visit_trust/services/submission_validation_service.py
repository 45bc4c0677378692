"""
Submission Validation - the single gate in front of submission intake.

Combines:
1. Structural checks (identity fields, challenge window, proof payloads)
2. Policy checks (rate limiting, duplicate prevention)
3. Location check (verification radius, distinct from fraud)
4. Fraud detection (tagged signals translated to coded errors/warnings)

Fails closed: any unexpected failure becomes a single VALIDATION_SYSTEM_ERROR.
"""
import logging
import threading
from datetime import timedelta
from typing import Dict, Any, Optional, List, Tuple

from pydantic import ValidationError

from visit_trust.schemas.submission import (
    ProofType, ChallengeStatus, Submission, UserSubmissionHistory, Challenge, ProofSubmission,
    PhotoProof, ReceiptProof, GPSProof, QuestionProof
)
from visit_trust.schemas.fraud import RiskLevel, FraudSignalCode, FraudDetectionResult
from visit_trust.schemas.validation import (
    Decision, IssueSource, ValidationIssue, ValidationResult, ValidationConfig
)
from visit_trust.services.fraud_detection_service import FraudDetectionService, fraud_detection_service
from visit_trust.services.security_monitoring_service import security_monitoring_service
from visit_trust.services.geo import distance_between, is_within_radius, format_distance

logger = logging.getLogger(__name__)

SYSTEM_ERROR_CODE = "VALIDATION_SYSTEM_ERROR"

# High-risk fraud signals become blocking errors
SIGNAL_ERROR_CODES = {
    FraudSignalCode.INVALID_COORDINATES: "INVALID_GPS_COORDINATES",
    FraudSignalCode.EXACT_TARGET_MATCH: "GPS_SPOOFING_DETECTED",
    FraudSignalCode.UNREALISTIC_ACCURACY: "GPS_SPOOFING_DETECTED",
    FraudSignalCode.KNOWN_SPOOF_COORDINATE: "GPS_SPOOFING_DETECTED",
    FraudSignalCode.IMPOSSIBLE_TRAVEL: "IMPOSSIBLE_TRAVEL",
    FraudSignalCode.DAILY_LIMIT_EXCEEDED: "RATE_LIMIT_EXCEEDED",
    FraudSignalCode.RAPID_SUBMISSION: "RATE_LIMIT_EXCEEDED",
    FraudSignalCode.DUPLICATE_CHALLENGE: "DUPLICATE_SUBMISSION",
}

# Medium-risk fraud signals become warnings
SIGNAL_WARNING_CODES = {
    FraudSignalCode.POOR_ACCURACY: "POOR_GPS_ACCURACY",
    FraudSignalCode.ACCURACY_UNREPORTED: "POOR_GPS_ACCURACY",
    FraudSignalCode.REGULAR_INTERVALS: "AUTOMATION_SUSPECTED",
    FraudSignalCode.BURST_PATTERN: "AUTOMATION_SUSPECTED",
    FraudSignalCode.PROOF_TYPE_HOMOGENEITY: "AUTOMATION_SUSPECTED",
    FraudSignalCode.FAST_COMPLETION: "AUTOMATION_SUSPECTED",
}

GPS_SIGNALS = {
    FraudSignalCode.INVALID_COORDINATES,
    FraudSignalCode.EXACT_TARGET_MATCH,
    FraudSignalCode.UNREALISTIC_ACCURACY,
    FraudSignalCode.KNOWN_SPOOF_COORDINATE,
    FraudSignalCode.POOR_ACCURACY,
    FraudSignalCode.ACCURACY_UNREPORTED,
}

PROOF_MODELS = {
    ProofType.photo: PhotoProof,
    ProofType.receipt: ReceiptProof,
    ProofType.gps_checkin: GPSProof,
    ProofType.location_question: QuestionProof,
}

Issues = List[ValidationIssue]


class SubmissionValidationService:
    """
    Validates submissions against a versioned, immutable config snapshot.

    The snapshot reference is read once per call; update_config() swaps it
    under a lock, so a validation never observes a half-applied update.
    """

    def __init__(
        self,
        fraud_detector: Optional[FraudDetectionService] = None,
        config: Optional[ValidationConfig] = None,
        security_monitor=None
    ):
        self.fraud_detector = fraud_detector or FraudDetectionService()
        self.security_monitor = security_monitor
        self._config = config or ValidationConfig()
        self._config_lock = threading.Lock()

    # ============================================
    # CONFIGURATION
    # ============================================
    def get_config(self) -> ValidationConfig:
        return self._config

    def update_config(self, changes: Dict[str, Any]) -> ValidationConfig:
        """
        Publish a new snapshot with `changes` applied and version + 1.

        Raises:
            ValueError: unknown keys or values that fail validation
        """
        allowed = set(ValidationConfig.model_fields) - {"version"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        with self._config_lock:
            current = self._config
            data = current.model_dump()
            data.update(changes)
            data["version"] = current.version + 1
            # pydantic's ValidationError is a ValueError
            updated = ValidationConfig(**data)
            self._config = updated

        logger.info(f"Validation config updated to version {updated.version}: {sorted(changes)}")
        return updated

    # ============================================
    # VALIDATION
    # ============================================
    def validate(
        self,
        submission: Submission,
        challenge: Challenge,
        history: UserSubmissionHistory,
        proof_submission: ProofSubmission
    ) -> ValidationResult:
        """
        Validate one submission.

        Returns:
            ValidationResult; never raises
        """
        config = self._config

        try:
            result = self._run_validation(submission, challenge, history, proof_submission, config)
        except Exception as e:
            logger.error(f"Submission validation error for {submission.id}: {e}")
            result = self._system_error_result(config)

        self._report(submission, result, proof_submission)
        return result

    def _run_validation(
        self,
        submission: Submission,
        challenge: Challenge,
        history: UserSubmissionHistory,
        proof_submission: ProofSubmission,
        config: ValidationConfig
    ) -> ValidationResult:
        errors, warnings = self._check_structure(submission, challenge, proof_submission, config)
        structural_failure = bool(errors)

        errors.extend(self._check_policy(submission, history, config))

        if structural_failure:
            return self._build_result(errors, warnings, None, config)

        errors.extend(self._check_location(submission, challenge))

        try:
            fraud_result = self.fraud_detector.assess(submission, history, challenge.location, config)
        except Exception as e:
            # Fail closed, no retry
            logger.error(f"Fraud detector failed for submission {submission.id}: {e}")
            return self._system_error_result(config)

        fraud_errors, fraud_warnings = self._translate_fraud_result(fraud_result, errors, warnings)
        errors.extend(fraud_errors)
        warnings.extend(fraud_warnings)

        return self._build_result(errors, warnings, fraud_result, config)

    # ============================================
    # STRUCTURE
    # ============================================
    def _check_structure(
        self,
        submission: Submission,
        challenge: Challenge,
        proof_submission: ProofSubmission,
        config: ValidationConfig
    ) -> Tuple[Issues, Issues]:
        """Identity fields, challenge window, allowed proof type and payload."""
        errors: Issues = []

        if not submission.challenge_id:
            errors.append(self._issue("challenge_id", "MISSING_CHALLENGE_ID", "Challenge ID is required"))
        if not submission.user_id:
            errors.append(self._issue("user_id", "MISSING_USER", "User authentication required"))
        if submission.proof_type is None:
            errors.append(self._issue("proof_type", "MISSING_PROOF_TYPE", "Proof type is required"))
        if submission.gps_coordinates is None:
            errors.append(self._issue("gps_coordinates", "MISSING_GPS", "GPS coordinates are required"))

        # Window is judged at submission time, not processing time
        now = submission.submitted_at
        if challenge.status != ChallengeStatus.active:
            errors.append(self._issue("challenge", "CHALLENGE_INACTIVE", "Challenge is not active"))
        if challenge.end_date < now:
            errors.append(self._issue("challenge", "CHALLENGE_EXPIRED", "Challenge has expired"))
        if challenge.start_date > now:
            errors.append(self._issue("challenge", "CHALLENGE_NOT_STARTED", "Challenge has not started yet"))

        if proof_submission.type not in challenge.proof_requirements.types:
            errors.append(self._issue(
                "proof_type", "INVALID_PROOF_TYPE",
                f"Proof type '{proof_submission.type.value}' is not allowed for this challenge"
            ))
        if submission.proof_type is not None and submission.proof_type != proof_submission.type:
            errors.append(self._issue(
                "proof_type", "PROOF_TYPE_MISMATCH",
                "Proof payload type does not match the submission's proof type"
            ))

        proof_errors, warnings = self._check_proof_data(submission, challenge, proof_submission, config)
        errors.extend(proof_errors)
        return errors, warnings

    def _check_proof_data(
        self,
        submission: Submission,
        challenge: Challenge,
        proof_submission: ProofSubmission,
        config: ValidationConfig
    ) -> Tuple[Issues, Issues]:
        model = PROOF_MODELS[proof_submission.type]
        try:
            proof = model.model_validate(proof_submission.data)
        except ValidationError as e:
            return [self._issue(
                "proof_data", "INVALID_PROOF_DATA",
                f"Proof data could not be read: {e.error_count()} invalid field(s)"
            )], []

        if proof_submission.type == ProofType.photo:
            return self._validate_photo_proof(proof, config)
        if proof_submission.type == ProofType.receipt:
            return self._validate_receipt_proof(proof, submission, challenge, config)
        if proof_submission.type == ProofType.gps_checkin:
            return self._validate_gps_proof(proof), []
        return self._validate_question_proof(proof, config), []

    def _validate_photo_proof(self, photo: PhotoProof, config: ValidationConfig) -> Tuple[Issues, Issues]:
        errors: Issues = []
        warnings: Issues = []

        if not photo.image_url:
            return [self._issue("image_url", "MISSING_PHOTO", "Photo is required")], []

        if not config.photo_validation_enabled:
            return errors, warnings

        if len(photo.image_url) < 10:
            errors.append(self._issue("image_url", "INVALID_PHOTO_DATA", "Invalid photo data"))

        if photo.content_type and photo.content_type not in config.allowed_image_types:
            errors.append(self._issue(
                "content_type", "UNSUPPORTED_IMAGE_TYPE",
                f"Image type '{photo.content_type}' is not supported"
            ))

        if photo.size_bytes is not None and photo.size_bytes > config.max_photo_size:
            errors.append(self._issue(
                "size_bytes", "PHOTO_TOO_LARGE",
                f"Photo exceeds the maximum size of {config.max_photo_size // (1024 * 1024)}MB"
            ))

        if not photo.has_business_signage and not photo.has_interior_view:
            warnings.append(self._issue(
                "photo", "NO_BUSINESS_INDICATORS",
                "Photo should show business signage or interior for verification"
            ))

        if not photo.gps_embedded:
            warnings.append(self._issue("photo", "NO_GPS_METADATA", "Photo does not contain GPS metadata"))

        return errors, warnings

    def _validate_receipt_proof(
        self,
        receipt: ReceiptProof,
        submission: Submission,
        challenge: Challenge,
        config: ValidationConfig
    ) -> Tuple[Issues, Issues]:
        errors: Issues = []
        warnings: Issues = []

        if not receipt.image_url:
            errors.append(self._issue("image_url", "MISSING_RECEIPT_PHOTO", "Receipt photo is required"))

        business_name = (receipt.business_name or "").strip()
        if len(business_name) < 2:
            errors.append(self._issue("business_name", "MISSING_BUSINESS_NAME", "Business name is required"))
        elif not self._names_match(business_name, challenge.location.business_name):
            warnings.append(self._issue(
                "business_name", "RECEIPT_BUSINESS_MISMATCH",
                f"Receipt business name does not match {challenge.location.business_name}"
            ))

        if receipt.timestamp is None:
            errors.append(self._issue("timestamp", "MISSING_RECEIPT_TIMESTAMP", "Receipt timestamp is required"))
        else:
            age_hours = (submission.submitted_at - receipt.timestamp).total_seconds() / 3600
            if age_hours > config.receipt_max_age_hours:
                errors.append(self._issue(
                    "timestamp", "RECEIPT_TOO_OLD",
                    f"Receipt must be from within the last {config.receipt_max_age_hours:g} hours"
                ))

        return errors, warnings

    def _validate_gps_proof(self, gps: GPSProof) -> Issues:
        errors: Issues = []
        if gps.coordinates is None:
            errors.append(self._issue(
                "coordinates", "MISSING_GPS_COORDINATES", "GPS coordinates are required for check-in"
            ))
        if gps.check_in_time is None:
            errors.append(self._issue("check_in_time", "MISSING_CHECKIN_TIME", "Check-in timestamp is required"))
        return errors

    def _validate_question_proof(self, question: QuestionProof, config: ValidationConfig) -> Issues:
        errors: Issues = []
        answer = (question.answer or "").strip()

        if len(answer) < config.min_answer_length:
            errors.append(self._issue(
                "answer", "INVALID_ANSWER",
                f"Answer is required and must be at least {config.min_answer_length} characters"
            ))

        if not question.question:
            errors.append(self._issue("question", "MISSING_QUESTION", "Question is required"))

        if answer and question.correct_answer:
            if answer.casefold() != question.correct_answer.strip().casefold():
                errors.append(self._issue(
                    "answer", "INCORRECT_ANSWER",
                    "Incorrect answer. Please visit the location to find the correct answer."
                ))

        return errors

    @staticmethod
    def _names_match(a: str, b: str) -> bool:
        a, b = a.casefold(), b.strip().casefold()
        return a in b or b in a

    # ============================================
    # POLICY
    # ============================================
    def _check_policy(
        self,
        submission: Submission,
        history: UserSubmissionHistory,
        config: ValidationConfig
    ) -> Issues:
        """Rate limiting and duplicate prevention; run even after structural failures."""
        errors: Issues = []
        now = submission.submitted_at

        if config.rate_limiting_enabled:
            next_allowed = None
            recent = [
                s for s in history.preceding(submission)
                if s.submitted_at >= now - timedelta(hours=24)
            ]
            last_activity = history.last_activity_at(submission)

            if len(recent) >= config.max_daily_submissions:
                # the window drops below the cap once this submission ages out
                next_allowed = recent[len(recent) - config.max_daily_submissions].submitted_at + timedelta(hours=24)
            elif last_activity is not None and (now - last_activity).total_seconds() < config.min_submission_interval:
                next_allowed = last_activity + timedelta(seconds=config.min_submission_interval)

            if next_allowed is not None:
                errors.append(self._issue(
                    "submission", "RATE_LIMIT_EXCEEDED",
                    f"Rate limit exceeded. Next submission allowed at {next_allowed.isoformat()}",
                    IssueSource.policy
                ))

        if config.duplicate_prevention_enabled and submission.challenge_id:
            existing = next(
                (s for s in history.prior_to(submission) if s.challenge_id == submission.challenge_id),
                None
            )
            if existing is not None:
                errors.append(self._issue(
                    "challenge_id", "DUPLICATE_SUBMISSION",
                    f"You have already submitted this challenge on {existing.submitted_at.date().isoformat()}",
                    IssueSource.policy
                ))

        return errors

    # ============================================
    # LOCATION
    # ============================================
    def _check_location(self, submission: Submission, challenge: Challenge) -> Issues:
        coords = submission.gps_coordinates
        problems = coords.validation_errors()
        if problems:
            return [self._issue(
                "gps_coordinates", "INVALID_GPS_COORDINATES",
                f"Valid GPS coordinates are required: {'; '.join(problems)}",
                IssueSource.location
            )]

        location = challenge.location
        if not location.coordinates.is_valid():
            logger.warning(f"Challenge {challenge.id} has invalid coordinates, skipping radius check")
            return []

        if not is_within_radius(coords, location.coordinates, location.verification_radius):
            distance = distance_between(coords, location.coordinates)
            return [self._issue(
                "gps_coordinates", "LOCATION_TOO_FAR",
                f"You must be within {location.verification_radius:g}m of {location.business_name}. "
                f"You are {format_distance(distance)} away.",
                IssueSource.location
            )]
        return []

    # ============================================
    # FRAUD TRANSLATION
    # ============================================
    def _translate_fraud_result(
        self,
        fraud_result: FraudDetectionResult,
        errors: Issues,
        warnings: Issues
    ) -> Tuple[Issues, Issues]:
        """Map tagged signals to error/warning codes, skipping codes already present."""
        seen_errors = {e.code for e in errors}
        seen_warnings = {w.code for w in warnings}
        new_errors: Issues = []
        new_warnings: Issues = []

        for signal in fraud_result.signals:
            field = "gps_coordinates" if signal.code in GPS_SIGNALS else "submission"

            if signal.risk == RiskLevel.high:
                code = SIGNAL_ERROR_CODES.get(signal.code, "FRAUD_DETECTED")
                if code in seen_errors:
                    continue
                seen_errors.add(code)
                new_errors.append(self._issue(
                    field, code, f"Fraud detected: {signal.message}", IssueSource.fraud
                ))
            else:
                code = SIGNAL_WARNING_CODES.get(signal.code, "FRAUD_WARNING")
                if code in seen_warnings:
                    continue
                seen_warnings.add(code)
                new_warnings.append(self._issue(
                    field, code, f"Submission flagged for review: {signal.message}", IssueSource.fraud
                ))

        return new_errors, new_warnings

    # ============================================
    # RESULT / REPORTING
    # ============================================
    @staticmethod
    def _build_result(
        errors: Issues,
        warnings: Issues,
        fraud_result: Optional[FraudDetectionResult],
        config: ValidationConfig
    ) -> ValidationResult:
        if errors:
            decision = Decision.reject
        elif warnings or (fraud_result is not None and fraud_result.fraud_risk != RiskLevel.low):
            decision = Decision.review
        else:
            decision = Decision.approve

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            decision=decision,
            fraud_result=fraud_result,
            config_version=config.version,
        )

    def _system_error_result(self, config: ValidationConfig) -> ValidationResult:
        return ValidationResult(
            is_valid=False,
            errors=[self._issue(
                "submission", SYSTEM_ERROR_CODE,
                "Validation system error. Please try again.", IssueSource.system
            )],
            warnings=[],
            decision=Decision.reject,
            fraud_result=None,
            config_version=config.version,
        )

    def _report(
        self,
        submission: Submission,
        result: ValidationResult,
        proof_submission: Optional[ProofSubmission] = None
    ) -> None:
        """Feed the security monitor; never changes the returned result."""
        monitor = self.security_monitor
        if monitor is None:
            return

        try:
            fraud_result = result.fraud_result
            if fraud_result is not None:
                monitor.log_fraud_detection(
                    submission.user_id, submission.challenge_id, submission.id, fraud_result
                )

            # Fraud-sourced errors are already covered by log_fraud_detection
            non_fraud_errors = [e for e in result.errors if e.source != IssueSource.fraud]
            if non_fraud_errors:
                monitor.log_validation_failure(
                    submission.user_id, submission.challenge_id, submission.id,
                    result.model_copy(update={"errors": non_fraud_errors})
                )

            high_risk = fraud_result is not None and fraud_result.fraud_risk == RiskLevel.high
            if result.decision == Decision.review or high_risk:
                self._flag(monitor, submission, result, proof_submission)
        except Exception as e:
            logger.error(f"Failed to report validation of submission {submission.id}: {e}")

    @staticmethod
    def _flag(
        monitor,
        submission: Submission,
        result: ValidationResult,
        proof_submission: Optional[ProofSubmission] = None
    ) -> None:
        fraud_result = result.fraud_result
        if fraud_result is not None and fraud_result.fraud_risk == RiskLevel.high:
            severity = "high"
        elif fraud_result is not None and fraud_result.fraud_risk == RiskLevel.medium:
            severity = "medium"
        else:
            severity = "low"

        automatic_flags = list(dict.fromkeys(
            result.warning_codes()
            + ([code.value for code in fraud_result.signal_codes()] if fraud_result else [])
        ))
        reasons = fraud_result.reasons if fraud_result and fraud_result.reasons else [
            w.message for w in result.warnings
        ]
        metadata = {"decision": result.decision.value, "config_version": result.config_version}
        proof_metadata = proof_submission.metadata if proof_submission is not None else None
        if proof_metadata is not None and proof_metadata.device_info:
            metadata["device_info"] = proof_metadata.device_info

        monitor.flag_submission_for_review(
            submission_id=submission.id,
            user_id=submission.user_id,
            challenge_id=submission.challenge_id,
            flag_reason="; ".join(reasons) or "Flagged by validation",
            severity=severity,
            automatic_flags=automatic_flags,
            fraud_score=fraud_result.risk_score if fraud_result else 0.0,
            metadata=metadata,
        )

    @staticmethod
    def _issue(
        field: str,
        code: str,
        message: str,
        source: IssueSource = IssueSource.structure
    ) -> ValidationIssue:
        return ValidationIssue(field=field, code=code, message=message, source=source)


# Singleton instance
submission_validation_service = SubmissionValidationService(
    fraud_detector=fraud_detection_service,
    security_monitor=security_monitoring_service,
)
