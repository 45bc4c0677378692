"""
Security Monitoring - event log, review queue, metrics and alerting.

Fed by the submission validator. Logging paths never raise: a failure to
record an event is logged and swallowed so it cannot reject or corrupt an
otherwise valid submission.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional, List, Callable, Iterable

from visit_trust.config import settings
from visit_trust.db.repository import SecurityRepository, InMemorySecurityRepository, build_security_repository
from visit_trust.schemas.fraud import RiskLevel, FraudSignalCode, FraudDetectionResult
from visit_trust.schemas.security import (
    SecurityEvent, SecurityEventType, Severity, ReviewStatus, TERMINAL_REVIEW_STATUSES,
    FlaggedSubmission, SecurityAlert, AlertThresholds, SecurityMetrics, Timeframe
)
from visit_trust.schemas.validation import ValidationResult
from visit_trust.worker.tasks import queue_alert_delivery
from visit_trust.services.security_analytics import (
    compute_security_metrics, evaluate_alert_thresholds, metrics_since
)

logger = logging.getLogger(__name__)

# Fraud signal -> (event type, severity); signals not listed are not logged individually
SIGNAL_EVENTS = {
    FraudSignalCode.INVALID_COORDINATES: (SecurityEventType.GPS_SPOOFING, Severity.high),
    FraudSignalCode.EXACT_TARGET_MATCH: (SecurityEventType.GPS_SPOOFING, Severity.high),
    FraudSignalCode.UNREALISTIC_ACCURACY: (SecurityEventType.GPS_SPOOFING, Severity.high),
    FraudSignalCode.KNOWN_SPOOF_COORDINATE: (SecurityEventType.GPS_SPOOFING, Severity.high),
    FraudSignalCode.IMPOSSIBLE_TRAVEL: (SecurityEventType.IMPOSSIBLE_TRAVEL, Severity.high),
    FraudSignalCode.HIGH_TRAVEL_SPEED: (SecurityEventType.SUSPICIOUS_PATTERN, Severity.medium),
    FraudSignalCode.TRAVEL_UNVERIFIED: (SecurityEventType.SUSPICIOUS_PATTERN, Severity.low),
    FraudSignalCode.DAILY_LIMIT_EXCEEDED: (SecurityEventType.RATE_LIMIT_EXCEEDED, Severity.medium),
    FraudSignalCode.RAPID_SUBMISSION: (SecurityEventType.RAPID_SUBMISSIONS, Severity.medium),
    FraudSignalCode.BURST_PATTERN: (SecurityEventType.RAPID_SUBMISSIONS, Severity.medium),
    FraudSignalCode.REGULAR_INTERVALS: (SecurityEventType.AUTOMATED_BEHAVIOR, Severity.medium),
    FraudSignalCode.DUPLICATE_CHALLENGE: (SecurityEventType.DUPLICATE_SUBMISSION, Severity.medium),
    FraudSignalCode.POOR_ACCURACY: (SecurityEventType.POOR_GPS_ACCURACY, Severity.low),
    FraudSignalCode.ACCURACY_UNREPORTED: (SecurityEventType.POOR_GPS_ACCURACY, Severity.low),
    FraudSignalCode.PROOF_TYPE_HOMOGENEITY: (SecurityEventType.AUTOMATED_BEHAVIOR, Severity.low),
    FraudSignalCode.FAST_COMPLETION: (SecurityEventType.AUTOMATED_BEHAVIOR, Severity.low),
    FraudSignalCode.PRIOR_SUSPICIOUS_ACTIVITY: (SecurityEventType.SUSPICIOUS_PATTERN, Severity.low),
}

# Validation error code -> (event type, severity)
ERROR_EVENTS = {
    "FRAUD_DETECTED": (SecurityEventType.FRAUD_DETECTED, Severity.high),
    "GPS_SPOOFING_DETECTED": (SecurityEventType.GPS_SPOOFING, Severity.high),
    "IMPOSSIBLE_TRAVEL": (SecurityEventType.IMPOSSIBLE_TRAVEL, Severity.high),
    "RATE_LIMIT_EXCEEDED": (SecurityEventType.RATE_LIMIT_EXCEEDED, Severity.medium),
    "DUPLICATE_SUBMISSION": (SecurityEventType.DUPLICATE_SUBMISSION, Severity.medium),
    "LOCATION_TOO_FAR": (SecurityEventType.LOCATION_VERIFICATION_FAILED, Severity.low),
    "INVALID_GPS_COORDINATES": (SecurityEventType.LOCATION_VERIFICATION_FAILED, Severity.low),
    "POOR_GPS_ACCURACY": (SecurityEventType.POOR_GPS_ACCURACY, Severity.low),
    "MISSING_PHOTO": (SecurityEventType.PHOTO_VALIDATION_FAILED, Severity.low),
    "INVALID_PHOTO_DATA": (SecurityEventType.PHOTO_VALIDATION_FAILED, Severity.low),
    "UNSUPPORTED_IMAGE_TYPE": (SecurityEventType.PHOTO_VALIDATION_FAILED, Severity.low),
    "PHOTO_TOO_LARGE": (SecurityEventType.PHOTO_VALIDATION_FAILED, Severity.low),
    "VALIDATION_SYSTEM_ERROR": (SecurityEventType.SYSTEM_ERROR, Severity.critical),
}
DEFAULT_ERROR_EVENT = (SecurityEventType.VALIDATION_FAILURE, Severity.low)

AlertHandler = Callable[[SecurityAlert], Any]


class SecurityMonitoringService:
    """
    Security monitor over a SecurityRepository.

    Args:
        repository: Storage for events, flags and alerts (in-memory by default)
        thresholds: Alert thresholds (defaults from settings)
        clock: Callable returning the current UTC datetime
        alert_handlers: Callables invoked with every new alert
        top_users: Size of the top offending users list in metrics
    """

    def __init__(
        self,
        repository: Optional[SecurityRepository] = None,
        thresholds: Optional[AlertThresholds] = None,
        clock: Optional[Callable[[], datetime]] = None,
        alert_handlers: Optional[Iterable[AlertHandler]] = None,
        top_users: Optional[int] = None
    ):
        self.repository = repository or InMemorySecurityRepository()
        self.thresholds = thresholds or AlertThresholds()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.alert_handlers: List[AlertHandler] = list(alert_handlers or [])
        self.top_users = top_users or settings.METRICS_TOP_USERS

    # ============================================
    # EVENT LOGGING
    # ============================================
    def log_security_event(
        self,
        event_type: SecurityEventType,
        severity: Severity,
        user_id: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        challenge_id: Optional[str] = None,
        submission_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> str:
        """
        Append a security event and re-evaluate alert thresholds.

        Returns:
            The new event id. Always returned, even if storing the event failed.
        """
        event_id = f"sec_{uuid.uuid4().hex}"

        try:
            event = SecurityEvent(
                id=event_id,
                type=event_type,
                severity=severity,
                user_id=user_id or "unknown",
                challenge_id=challenge_id or None,
                submission_id=submission_id or None,
                timestamp=self.clock(),
                description=description,
                metadata=metadata or {},
                ip_address=ip_address,
                user_agent=user_agent,
            )
            self.repository.add_event(event)
        except Exception as e:
            logger.error(f"Failed to record security event {event_type}: {e}")
            return event_id

        log = logger.warning if event.severity.rank >= Severity.high.rank else logger.info
        log(
            f"[SECURITY] {event.severity.value.upper()}: {event.type.value} - {description} "
            f"(user={event.user_id}, challenge={challenge_id}, submission={submission_id})"
        )

        self._check_alert_thresholds(event)
        return event_id

    def log_fraud_detection(
        self,
        user_id: str,
        challenge_id: str,
        submission_id: str,
        fraud_result: FraudDetectionResult
    ) -> List[str]:
        """Log a fraud assessment: one FRAUD_DETECTED summary plus one event per mapped signal."""
        event_ids = []
        context = {"submission_id": submission_id, "challenge_id": challenge_id}

        try:
            if not fraud_result.is_valid or fraud_result.fraud_risk == RiskLevel.high:
                event_ids.append(self.log_security_event(
                    SecurityEventType.FRAUD_DETECTED,
                    Severity.high if fraud_result.fraud_risk == RiskLevel.high else Severity.medium,
                    user_id,
                    f"Fraud detection: {', '.join(fraud_result.reasons)}",
                    {
                        "fraud_risk": fraud_result.fraud_risk.value,
                        "confidence": fraud_result.confidence,
                        "risk_score": fraud_result.risk_score,
                        "recommendation": fraud_result.recommended_action.value,
                        "signals": [code.value for code in fraud_result.signal_codes()],
                    },
                    **context
                ))

            for signal in fraud_result.signals:
                mapping = SIGNAL_EVENTS.get(signal.code)
                if mapping is None:
                    continue
                event_type, severity = mapping
                event_ids.append(self.log_security_event(
                    event_type, severity, user_id, signal.message,
                    {
                        "signal": signal.code.value,
                        "confidence": signal.confidence,
                        "details": signal.details,
                        "fraud_score": fraud_result.risk_score,
                    },
                    **context
                ))
        except Exception as e:
            logger.error(f"Failed to log fraud detection for submission {submission_id}: {e}")

        return event_ids

    def log_validation_failure(
        self,
        user_id: str,
        challenge_id: str,
        submission_id: str,
        validation_result: ValidationResult
    ) -> List[str]:
        """Log one event per validation error, keyed by error code."""
        event_ids = []

        try:
            for error in validation_result.errors:
                event_type, severity = ERROR_EVENTS.get(error.code, DEFAULT_ERROR_EVENT)
                event_ids.append(self.log_security_event(
                    event_type, severity, user_id, error.message,
                    {
                        "error_code": error.code,
                        "error_field": error.field,
                        "error_source": error.source.value,
                        "validation_context": "submission_validation",
                    },
                    challenge_id=challenge_id,
                    submission_id=submission_id
                ))
        except Exception as e:
            logger.error(f"Failed to log validation failure for submission {submission_id}: {e}")

        return event_ids

    # ============================================
    # REVIEW QUEUE
    # ============================================
    def flag_submission_for_review(
        self,
        submission_id: str,
        user_id: str,
        challenge_id: str,
        flag_reason: str,
        severity: Severity = Severity.medium,
        automatic_flags: Optional[List[str]] = None,
        fraud_score: float = 0.0,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[FlaggedSubmission]:
        """
        Put a submission in the human review queue.

        Re-flagging returns the existing record unchanged and logs nothing.
        """
        try:
            flag = FlaggedSubmission(
                submission_id=submission_id,
                user_id=user_id,
                challenge_id=challenge_id,
                flagged_at=self.clock(),
                flag_reason=flag_reason,
                severity=severity,
                automatic_flags=automatic_flags or [],
                fraud_score=fraud_score,
                metadata=metadata or {},
            )
            stored = self.repository.add_flag(flag)
        except Exception as e:
            logger.error(f"Failed to flag submission {submission_id}: {e}")
            return None

        if stored is not flag:
            logger.info(f"Submission {submission_id} already flagged, keeping existing record")
            return stored

        # Flag bookkeeping, kept out of the high-severity counts
        self.log_security_event(
            SecurityEventType.SUSPICIOUS_PATTERN,
            Severity.low,
            user_id,
            f"Submission flagged for review: {flag_reason}",
            {
                "flag_reason": flag_reason,
                "flag_severity": stored.severity.value,
                "automatic_flags": stored.automatic_flags,
                "fraud_score": fraud_score,
                **stored.metadata,
            },
            challenge_id=challenge_id,
            submission_id=submission_id
        )
        logger.info(f"[SECURITY] Submission {submission_id} flagged for review: {flag_reason}")
        return stored

    def review_flagged_submission(
        self,
        submission_id: str,
        reviewer_id: str,
        decision: ReviewStatus,
        notes: Optional[str] = None
    ) -> bool:
        """
        Move a pending flag to a terminal status exactly once.

        Returns False for unknown ids, non-terminal decisions and flags
        that were already reviewed.
        """
        try:
            decision = ReviewStatus(decision)
        except ValueError:
            logger.warning(f"Invalid review decision '{decision}' for submission {submission_id}")
            return False

        if decision not in TERMINAL_REVIEW_STATUSES:
            logger.warning(f"Review decision must be terminal, got '{decision.value}'")
            return False

        reviewed = self.repository.review_flag(submission_id, decision, reviewer_id, self.clock(), notes)
        if reviewed is None:
            if self.repository.get_flag(submission_id) is None:
                logger.error(f"Flagged submission {submission_id} not found")
            else:
                logger.warning(f"Flagged submission {submission_id} was already reviewed")
            return False

        self.log_security_event(
            SecurityEventType.SUSPICIOUS_PATTERN,
            Severity.low,
            reviewed.user_id,
            f"Flagged submission reviewed: {decision.value}",
            {
                "reviewer_id": reviewer_id,
                "decision": decision.value,
                "review_notes": notes,
                "original_flag_reason": reviewed.flag_reason,
            },
            challenge_id=reviewed.challenge_id,
            submission_id=submission_id
        )
        logger.info(f"[SECURITY] Submission {submission_id} reviewed by {reviewer_id}: {decision.value}")
        return True

    def get_flagged_submissions(self, status: str = "pending", limit: int = 50) -> List[FlaggedSubmission]:
        """Flags newest first; status "all" disables filtering."""
        review_status = None if status == "all" else ReviewStatus(status)
        return self.repository.list_flags(status=review_status, limit=limit)

    # ============================================
    # QUERIES / METRICS
    # ============================================
    def get_user_security_events(self, user_id: str, limit: int = 20) -> List[SecurityEvent]:
        return self.repository.list_events(user_id=user_id, limit=limit)

    def get_security_event(self, event_id: str) -> Optional[SecurityEvent]:
        return self.repository.get_event(event_id)

    def get_flagged_submission(self, submission_id: str) -> Optional[FlaggedSubmission]:
        return self.repository.get_flag(submission_id)

    def get_alert(self, alert_id: str) -> Optional[SecurityAlert]:
        return self.repository.get_alert(alert_id)

    def get_security_metrics(self, timeframe: Timeframe = Timeframe.day) -> SecurityMetrics:
        """Read-only aggregation over the trailing timeframe."""
        timeframe = Timeframe(timeframe)
        now = self.clock()
        events = self.repository.list_events(since=metrics_since(timeframe, now))
        pending = self.repository.list_flags(status=ReviewStatus.pending)
        return compute_security_metrics(events, pending, timeframe, now, top_n=self.top_users)

    # ============================================
    # ALERTS
    # ============================================
    def _check_alert_thresholds(self, trigger_event: SecurityEvent) -> List[str]:
        """Create alerts for every threshold currently exceeded."""
        alert_ids = []
        try:
            now = self.clock()
            events = self.repository.list_events(since=now - timedelta(days=1))
            for fields in evaluate_alert_thresholds(events, self.thresholds, now, trigger_event):
                alert_ids.append(self._create_alert(**fields))
        except Exception as e:
            logger.error(f"Alert threshold evaluation failed: {e}")
        return alert_ids

    def _create_alert(self, **fields) -> str:
        alert = SecurityAlert(
            id=f"alert_{uuid.uuid4().hex}",
            triggered_at=self.clock(),
            **fields
        )
        self.repository.add_alert(alert)
        logger.warning(f"[SECURITY ALERT] {alert.severity.value.upper()}: {alert.title} - {alert.description}")

        for handler in self.alert_handlers:
            try:
                handler(alert)
            except Exception as e:
                logger.error(f"Alert handler {getattr(handler, '__name__', handler)} failed for {alert.id}: {e}")

        return alert.id

    def get_active_alerts(self) -> List[SecurityAlert]:
        """Unacknowledged alerts, most severe first, then newest first."""
        alerts = self.repository.list_alerts(active_only=True)
        return sorted(alerts, key=lambda a: (-a.severity.rank, -a.triggered_at.timestamp()))

    def acknowledge_alert(self, alert_id: str, acknowledged_by: str) -> bool:
        alert = self.repository.acknowledge_alert(alert_id, acknowledged_by, self.clock())
        if alert is None:
            logger.warning(f"Alert {alert_id} not found or already acknowledged")
            return False
        logger.info(f"[SECURITY] Alert {alert_id} acknowledged by {acknowledged_by}")
        return True

    def resolve_security_event(
        self,
        event_id: str,
        resolved_by: str,
        resolution_notes: Optional[str] = None
    ) -> bool:
        event = self.repository.resolve_event(event_id, resolved_by, self.clock(), resolution_notes)
        if event is None:
            logger.warning(f"Security event {event_id} not found or already resolved")
            return False
        logger.info(f"[SECURITY] Event {event_id} resolved by {resolved_by}")
        return True


# Singleton instance
security_monitoring_service = SecurityMonitoringService(
    repository=build_security_repository(),
    alert_handlers=[queue_alert_delivery],
)
