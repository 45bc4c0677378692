"""
Tests for the security monitor: event log, review queue and alerts
"""
from datetime import datetime, timezone

import pytest

from visit_trust.db.repository import InMemorySecurityRepository
from visit_trust.schemas.fraud import (
    RiskLevel, RecommendedAction, FraudSignal, FraudSignalCode, FraudDetectionResult
)
from visit_trust.schemas.security import (
    SecurityEventType, Severity, ReviewStatus, AlertType, AlertThresholds, Timeframe
)
from visit_trust.schemas.validation import (
    Decision, IssueSource, ValidationIssue, ValidationResult
)
from visit_trust.services.security_monitoring_service import SecurityMonitoringService


def _log(monitor, event_type=SecurityEventType.SUSPICIOUS_PATTERN, severity=Severity.low, user_id="user_1"):
    return monitor.log_security_event(event_type, severity, user_id, "test event")


class TestEventLog:
    def test_event_is_recorded(self, monitor):
        event_id = monitor.log_security_event(
            SecurityEventType.GPS_SPOOFING, Severity.high, "user_1", "Spoofed fix",
            {"accuracy": 0.1}, challenge_id="ch_1", submission_id="sub_1"
        )

        assert event_id.startswith("sec_")
        event = monitor.get_security_event(event_id)
        assert event.type == SecurityEventType.GPS_SPOOFING
        assert event.metadata == {"accuracy": 0.1}
        assert event.submission_id == "sub_1"
        assert not event.resolved

    def test_event_ids_are_unique(self, monitor):
        ids = {_log(monitor) for _ in range(100)}
        assert len(ids) == 100

    def test_storage_failure_is_swallowed(self, clock):
        class FailingRepository(InMemorySecurityRepository):
            def add_event(self, event):
                raise RuntimeError("disk full")

        monitor = SecurityMonitoringService(repository=FailingRepository(), clock=clock)
        assert _log(monitor).startswith("sec_")

    def test_user_events_newest_first(self, monitor, clock):
        first = _log(monitor)
        clock.advance(minutes=1)
        second = _log(monitor)
        clock.advance(minutes=1)
        _log(monitor, user_id="user_2")

        events = monitor.get_user_security_events("user_1")
        assert [e.id for e in events] == [second, first]
        assert len(monitor.get_user_security_events("user_1", limit=1)) == 1

    def test_log_fraud_detection(self, monitor):
        result = FraudDetectionResult(
            is_valid=False,
            fraud_risk=RiskLevel.high,
            confidence=0.9,
            reasons=["Impossible travel speed detected", "Limited submission history"],
            recommended_action=RecommendedAction.reject,
            signals=[
                FraudSignal(
                    code=FraudSignalCode.IMPOSSIBLE_TRAVEL, message="Impossible travel speed detected",
                    risk=RiskLevel.high, confidence=0.95
                ),
                FraudSignal(
                    code=FraudSignalCode.LIMITED_HISTORY, message="Limited submission history",
                    risk=RiskLevel.medium, confidence=0.5
                ),
            ],
            risk_score=0.65,
        )
        event_ids = monitor.log_fraud_detection("user_1", "ch_1", "sub_1", result)

        events = [monitor.get_security_event(i) for i in event_ids]
        assert [e.type for e in events] == [SecurityEventType.FRAUD_DETECTED, SecurityEventType.IMPOSSIBLE_TRAVEL]
        assert events[0].severity == Severity.high
        assert events[0].metadata["signals"] == ["IMPOSSIBLE_TRAVEL", "LIMITED_HISTORY"]

    def test_log_validation_failure_maps_error_codes(self, monitor):
        result = ValidationResult(
            is_valid=False,
            decision=Decision.reject,
            errors=[
                ValidationIssue(field="gps_coordinates", code="LOCATION_TOO_FAR",
                                message="Too far", source=IssueSource.location),
                ValidationIssue(field="answer", code="INCORRECT_ANSWER", message="Wrong"),
            ],
        )
        event_ids = monitor.log_validation_failure("user_1", "ch_1", "sub_1", result)

        events = [monitor.get_security_event(i) for i in event_ids]
        assert [e.type for e in events] == [
            SecurityEventType.LOCATION_VERIFICATION_FAILED,
            SecurityEventType.VALIDATION_FAILURE,
        ]
        assert events[1].metadata["error_code"] == "INCORRECT_ANSWER"


class TestReviewQueue:
    def test_flag_logs_event(self, monitor):
        flag = monitor.flag_submission_for_review(
            "sub_1", "user_1", "ch_1", "Impossible travel", severity=Severity.high,
            automatic_flags=["IMPOSSIBLE_TRAVEL"], fraud_score=0.6
        )

        assert flag.review_status == ReviewStatus.pending
        events = monitor.get_user_security_events("user_1")
        assert len(events) == 1
        assert events[0].type == SecurityEventType.SUSPICIOUS_PATTERN
        assert events[0].severity == Severity.low
        assert events[0].metadata["flag_severity"] == "high"

    def test_high_severity_flag_does_not_count_toward_alerts(self, monitor):
        _log(monitor, SecurityEventType.GPS_SPOOFING, Severity.high)
        _log(monitor, SecurityEventType.FRAUD_DETECTED, Severity.high)
        monitor.flag_submission_for_review("sub_1", "user_1", "ch_1", "Spoofed fix", severity=Severity.high)

        assert monitor.get_active_alerts() == []

    def test_reflagging_keeps_first_record(self, monitor, clock):
        first = monitor.flag_submission_for_review("sub_1", "user_1", "ch_1", "First reason")
        clock.advance(minutes=5)
        second = monitor.flag_submission_for_review("sub_1", "user_1", "ch_1", "Second reason")

        assert second.flag_reason == "First reason"
        assert second.flagged_at == first.flagged_at
        assert len(monitor.get_user_security_events("user_1")) == 1

    def test_review_is_terminal(self, monitor):
        monitor.flag_submission_for_review("sub_1", "user_1", "ch_1", "Check me")

        assert monitor.review_flagged_submission("sub_1", "mod_1", ReviewStatus.rejected, "Spoofed")
        assert not monitor.review_flagged_submission("sub_1", "mod_2", ReviewStatus.approved)

        flag = monitor.get_flagged_submission("sub_1")
        assert flag.review_status == ReviewStatus.rejected
        assert flag.reviewed_by == "mod_1"
        assert flag.review_notes == "Spoofed"

    def test_review_unknown_submission(self, monitor):
        assert not monitor.review_flagged_submission("missing", "mod_1", ReviewStatus.approved)

    @pytest.mark.parametrize("decision", [ReviewStatus.pending, "bogus"])
    def test_review_requires_terminal_decision(self, monitor, decision):
        monitor.flag_submission_for_review("sub_1", "user_1", "ch_1", "Check me")
        assert not monitor.review_flagged_submission("sub_1", "mod_1", decision)
        assert monitor.get_flagged_submission("sub_1").review_status == ReviewStatus.pending

    def test_get_flagged_submissions_filters(self, monitor, clock):
        monitor.flag_submission_for_review("sub_1", "user_1", "ch_1", "One")
        clock.advance(minutes=1)
        monitor.flag_submission_for_review("sub_2", "user_2", "ch_1", "Two")
        monitor.review_flagged_submission("sub_1", "mod_1", ReviewStatus.approved)

        assert [f.submission_id for f in monitor.get_flagged_submissions()] == ["sub_2"]
        assert [f.submission_id for f in monitor.get_flagged_submissions(status="approved")] == ["sub_1"]
        assert [f.submission_id for f in monitor.get_flagged_submissions(status="all")] == ["sub_2", "sub_1"]

    def test_get_flagged_submissions_rejects_unknown_status(self, monitor):
        with pytest.raises(ValueError):
            monitor.get_flagged_submissions(status="closed")


class TestAlerts:
    def test_high_severity_spike(self, monitor):
        for _ in range(3):
            _log(monitor, SecurityEventType.SUSPICIOUS_PATTERN, Severity.high)

        alerts = monitor.get_active_alerts()
        assert len(alerts) == 1
        assert alerts[0].title == "Multiple High Severity Security Events"
        assert alerts[0].severity == Severity.critical
        assert len(alerts[0].related_events) == 3

    def test_sustained_condition_alerts_again(self, monitor):
        for _ in range(4):
            _log(monitor, SecurityEventType.SUSPICIOUS_PATTERN, Severity.high)
        assert len(monitor.get_active_alerts()) == 2

    def test_events_outside_window_do_not_count(self, monitor, clock):
        _log(monitor, severity=Severity.high)
        _log(monitor, severity=Severity.high)
        clock.advance(hours=2)
        _log(monitor, severity=Severity.high)

        assert monitor.get_active_alerts() == []

    def test_critical_event_alerts_immediately(self, monitor):
        _log(monitor, SecurityEventType.SYSTEM_ERROR, Severity.critical)

        alerts = monitor.get_active_alerts()
        assert [a.alert_type for a in alerts] == [AlertType.critical_event]

    def test_custom_thresholds(self, clock):
        monitor = SecurityMonitoringService(
            thresholds=AlertThresholds(gps_spoofing_events_per_hour=2), clock=clock
        )
        _log(monitor, SecurityEventType.GPS_SPOOFING, Severity.medium)
        _log(monitor, SecurityEventType.GPS_SPOOFING, Severity.medium)

        assert [a.title for a in monitor.get_active_alerts()] == ["GPS Spoofing Spike Detected"]

    def test_active_alerts_most_severe_first(self, clock):
        monitor = SecurityMonitoringService(
            thresholds=AlertThresholds(gps_spoofing_events_per_hour=1), clock=clock
        )
        _log(monitor, SecurityEventType.GPS_SPOOFING, Severity.low)
        clock.advance(minutes=1)
        _log(monitor, SecurityEventType.SYSTEM_ERROR, Severity.critical)
        clock.advance(minutes=1)
        _log(monitor, SecurityEventType.GPS_SPOOFING, Severity.low)

        severities = [a.severity for a in monitor.get_active_alerts()]
        assert severities[0] == Severity.critical
        assert set(severities[1:]) == {Severity.high}

    def test_acknowledge_once(self, monitor):
        _log(monitor, SecurityEventType.SYSTEM_ERROR, Severity.critical)
        alert = monitor.get_active_alerts()[0]

        assert monitor.acknowledge_alert(alert.id, "ops_1")
        assert not monitor.acknowledge_alert(alert.id, "ops_2")
        assert monitor.get_active_alerts() == []
        assert monitor.get_alert(alert.id).acknowledged_by == "ops_1"

    def test_acknowledge_unknown(self, monitor):
        assert not monitor.acknowledge_alert("alert_missing", "ops_1")

    def test_handlers_receive_alerts(self, clock):
        received = []
        monitor = SecurityMonitoringService(clock=clock, alert_handlers=[received.append])
        _log(monitor, SecurityEventType.SYSTEM_ERROR, Severity.critical)

        assert len(received) == 1
        assert received[0].alert_type == AlertType.critical_event

    def test_handler_failure_is_swallowed(self, clock):
        def broken(alert):
            raise RuntimeError("webhook down")

        monitor = SecurityMonitoringService(clock=clock, alert_handlers=[broken])
        _log(monitor, SecurityEventType.SYSTEM_ERROR, Severity.critical)
        assert len(monitor.get_active_alerts()) == 1


class TestResolutionAndMetrics:
    def test_resolve_once(self, monitor):
        event_id = _log(monitor)

        assert monitor.resolve_security_event(event_id, "ops_1", "False positive")
        assert not monitor.resolve_security_event(event_id, "ops_2")
        event = monitor.get_security_event(event_id)
        assert event.resolved_by == "ops_1"
        assert event.resolution_notes == "False positive"

    def test_resolve_unknown(self, monitor):
        assert not monitor.resolve_security_event("sec_missing", "ops_1")

    def test_metrics(self, monitor, clock):
        first = _log(monitor, SecurityEventType.GPS_SPOOFING, Severity.medium, "user_1")
        _log(monitor, SecurityEventType.FRAUD_DETECTED, Severity.medium, "user_1")
        _log(monitor, SecurityEventType.RATE_LIMIT_EXCEEDED, Severity.low, "user_2")
        monitor.flag_submission_for_review("sub_1", "user_3", "ch_1", "Check me", severity=Severity.low)
        clock.advance(hours=2)
        monitor.resolve_security_event(first, "ops_1")

        metrics = monitor.get_security_metrics(Timeframe.day)

        assert metrics.total_events == 4
        assert metrics.events_by_type["GPS_SPOOFING"] == 1
        assert metrics.events_by_severity == {"low": 2, "medium": 2, "high": 0, "critical": 0}
        assert metrics.unique_users_affected == 3
        assert metrics.resolved_events == 1
        assert metrics.resolution_rate == 0.25
        assert metrics.average_resolution_time == 2.0
        assert metrics.pending_review == 1
        assert metrics.top_offending_users[0].user_id == "user_1"
        assert metrics.top_offending_users[0].event_count == 2
        assert len(metrics.recent_trends) == 7
        assert metrics.recent_trends[-1].fraud_attempts == 2

    def test_weekly_metrics_follow_daily_fraud_counts(self, monitor, clock):
        for day in range(7):
            clock.now = datetime(2024, 5, 1 + day, 12, tzinfo=timezone.utc)
            for _ in range(day + 1):
                _log(monitor, SecurityEventType.FRAUD_DETECTED, Severity.medium)
        clock.now = datetime(2024, 5, 7, 15, 30, tzinfo=timezone.utc)

        metrics = monitor.get_security_metrics(Timeframe.week)

        assert metrics.total_events == 28
        assert [p.date for p in metrics.recent_trends] == [f"2024-05-0{d}" for d in range(1, 8)]
        assert [p.fraud_attempts for p in metrics.recent_trends] == [1, 2, 3, 4, 5, 6, 7]
        assert sum(p.event_count for p in metrics.recent_trends) == 28

    def test_metrics_on_empty_log(self, monitor):
        metrics = monitor.get_security_metrics(Timeframe.hour)

        assert metrics.total_events == 0
        assert metrics.resolution_rate == 0.0
        assert metrics.average_resolution_time == 0.0
        assert metrics.top_offending_users == []
        assert len(metrics.recent_trends) == 1

    def test_metrics_window_excludes_old_events(self, monitor, clock):
        _log(monitor)
        clock.advance(hours=3)
        _log(monitor)

        assert monitor.get_security_metrics(Timeframe.hour).total_events == 1
        assert monitor.get_security_metrics(Timeframe.day).total_events == 2

    def test_alert_thresholds_reach_back_one_day(self, monitor, clock):
        for i in range(5):
            _log(monitor, SecurityEventType.FRAUD_DETECTED, Severity.medium, f"user_{i}")
            clock.advance(hours=3)

        titles = [a.title for a in monitor.get_active_alerts()]
        assert titles == ["Widespread Fraud Activity"]

    def test_timestamps_come_from_clock(self, monitor, clock):
        event_id = _log(monitor)
        assert monitor.get_security_event(event_id).timestamp == clock.now
        assert clock.now.tzinfo is not None
