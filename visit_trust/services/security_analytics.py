"""
Security analytics - pure functions over a supplied slice of the event log.

Metrics and alert-threshold evaluation never touch storage, so they can be
exercised with plain lists of events and a fixed clock.
"""
from collections import Counter
from datetime import datetime, timedelta, time, timezone
from typing import Dict, Any, Optional, List, Iterable

from visit_trust.schemas.security import (
    SecurityEvent, SecurityEventType, Severity, Timeframe, FlaggedSubmission,
    ReviewStatus, AlertType, AlertThresholds, SecurityMetrics, OffendingUser, TrendPoint
)

TIMEFRAME_WINDOWS = {
    Timeframe.hour: timedelta(hours=1),
    Timeframe.day: timedelta(days=1),
    Timeframe.week: timedelta(days=7),
    Timeframe.month: timedelta(days=30),
}

# Days shown in the trend series per timeframe
TREND_DAYS = {
    Timeframe.hour: 1,
    Timeframe.day: 7,
    Timeframe.week: 7,
    Timeframe.month: 30,
}

FRAUD_ATTEMPT_TYPES = {SecurityEventType.FRAUD_DETECTED, SecurityEventType.GPS_SPOOFING}
HIGH_SEVERITIES = {Severity.high, Severity.critical}


def timeframe_start(timeframe: Timeframe, now: datetime) -> datetime:
    return now - TIMEFRAME_WINDOWS[Timeframe(timeframe)]


def trend_start(timeframe: Timeframe, now: datetime) -> datetime:
    """Midnight UTC of the first day in the trend series."""
    days = TREND_DAYS[Timeframe(timeframe)]
    first_day = now.astimezone(timezone.utc).date() - timedelta(days=days - 1)
    return datetime.combine(first_day, time.min, tzinfo=timezone.utc)


def metrics_since(timeframe: Timeframe, now: datetime) -> datetime:
    """Earliest timestamp compute_security_metrics needs to see."""
    return min(timeframe_start(timeframe, now), trend_start(timeframe, now))


def compute_security_metrics(
    events: Iterable[SecurityEvent],
    flags: Iterable[FlaggedSubmission],
    timeframe: Timeframe,
    now: datetime,
    top_n: int = 10
) -> SecurityMetrics:
    """
    Aggregate metrics for the trailing `timeframe` window ending at `now`.

    Counts cover the window; the trend series covers whole UTC calendar days
    ending today, so `events` should reach back to metrics_since().
    """
    timeframe = Timeframe(timeframe)
    events = list(events)
    start = timeframe_start(timeframe, now)
    window = [e for e in events if start <= e.timestamp <= now]

    events_by_type = Counter(e.type.value for e in window)
    events_by_severity = {severity.value: 0 for severity in Severity}
    for event in window:
        events_by_severity[event.severity.value] += 1

    resolved = [e for e in window if e.resolved]
    resolution_hours = [
        (e.resolved_at - e.timestamp).total_seconds() / 3600
        for e in resolved if e.resolved_at is not None
    ]
    average_resolution = sum(resolution_hours) / len(resolution_hours) if resolution_hours else 0.0

    pending_review = sum(1 for f in flags if f.review_status == ReviewStatus.pending)

    return SecurityMetrics(
        timeframe=timeframe,
        total_events=len(window),
        events_by_type=dict(events_by_type),
        events_by_severity=events_by_severity,
        unique_users_affected=len({e.user_id for e in window}),
        resolved_events=len(resolved),
        resolution_rate=round(len(resolved) / len(window), 4) if window else 0.0,
        pending_review=pending_review,
        average_resolution_time=round(average_resolution, 4),
        top_offending_users=_top_offending_users(window, top_n),
        recent_trends=_daily_trends(events, timeframe, now),
    )


def _top_offending_users(events: List[SecurityEvent], top_n: int) -> List[OffendingUser]:
    counts: Dict[str, int] = Counter(e.user_id for e in events)
    last_seen: Dict[str, datetime] = {}
    for event in events:
        if event.user_id not in last_seen or event.timestamp > last_seen[event.user_id]:
            last_seen[event.user_id] = event.timestamp

    ranked = sorted(counts, key=lambda user: (-counts[user], -last_seen[user].timestamp()))
    return [
        OffendingUser(user_id=user, event_count=counts[user], last_event=last_seen[user])
        for user in ranked[:top_n]
    ]


def _daily_trends(events: List[SecurityEvent], timeframe: Timeframe, now: datetime) -> List[TrendPoint]:
    first_day = trend_start(timeframe, now)
    trends = []
    for offset in range(TREND_DAYS[timeframe]):
        day_start = first_day + timedelta(days=offset)
        day_end = day_start + timedelta(days=1)
        day_events = [e for e in events if day_start <= e.timestamp < day_end]
        trends.append(TrendPoint(
            date=day_start.date().isoformat(),
            event_count=len(day_events),
            fraud_attempts=sum(1 for e in day_events if e.type in FRAUD_ATTEMPT_TYPES),
        ))
    return trends


def evaluate_alert_thresholds(
    events: Iterable[SecurityEvent],
    thresholds: AlertThresholds,
    now: datetime,
    trigger_event: Optional[SecurityEvent] = None
) -> List[Dict[str, Any]]:
    """
    Evaluate sliding 1-hour and 1-day windows against thresholds.

    Returns alert field dicts for every condition currently met. The same
    sustained condition yields an alert on every evaluation.
    """
    events = list(events)
    hour_ago = now - timedelta(hours=1)
    day_ago = now - timedelta(days=1)
    recent = [e for e in events if e.timestamp >= hour_ago]
    alerts = []

    fraud_events = [e for e in recent if e.type == SecurityEventType.FRAUD_DETECTED]
    if len(fraud_events) >= thresholds.fraud_events_per_hour:
        alerts.append(_alert_fields(
            AlertType.threshold_exceeded,
            "High Fraud Activity Detected",
            f"{len(fraud_events)} fraud events detected in the last hour",
            Severity.high,
            fraud_events,
            ["Review flagged submissions", "Investigate user patterns", "Consider temporary restrictions"],
        ))

    spoofing_events = [e for e in recent if e.type == SecurityEventType.GPS_SPOOFING]
    if len(spoofing_events) >= thresholds.gps_spoofing_events_per_hour:
        alerts.append(_alert_fields(
            AlertType.threshold_exceeded,
            "GPS Spoofing Spike Detected",
            f"{len(spoofing_events)} GPS spoofing events detected in the last hour",
            Severity.high,
            spoofing_events,
            ["Review GPS validation logic", "Check for coordinated attacks", "Update fraud detection rules"],
        ))

    rate_limit_events = [e for e in recent if e.type == SecurityEventType.RATE_LIMIT_EXCEEDED]
    if len(rate_limit_events) >= thresholds.rate_limit_violations_per_hour:
        alerts.append(_alert_fields(
            AlertType.threshold_exceeded,
            "Rate Limit Violations Spike",
            f"{len(rate_limit_events)} rate limit violations in the last hour",
            Severity.medium,
            rate_limit_events,
            ["Check for automated submission scripts", "Review rate limiting configuration",
             "Consider temporary user restrictions"],
        ))

    high_events = [e for e in recent if e.severity in HIGH_SEVERITIES]
    if len(high_events) >= thresholds.high_severity_events_per_hour:
        alerts.append(_alert_fields(
            AlertType.threshold_exceeded,
            "Multiple High Severity Security Events",
            f"{len(high_events)} high/critical severity events in the last hour",
            Severity.critical,
            high_events,
            ["Immediate investigation required", "Review all recent submissions", "Consider system lockdown"],
        ))

    daily_fraud = [
        e for e in events
        if e.timestamp >= day_ago and e.type == SecurityEventType.FRAUD_DETECTED
    ]
    fraud_users = {e.user_id for e in daily_fraud}
    if len(fraud_users) >= thresholds.unique_users_with_fraud_per_day:
        alerts.append(_alert_fields(
            AlertType.pattern_detected,
            "Widespread Fraud Activity",
            f"{len(fraud_users)} unique users involved in fraud attempts today",
            Severity.critical,
            daily_fraud,
            ["Investigate for coordinated attack", "Review user registration patterns",
             "Implement additional verification"],
        ))

    if trigger_event is not None and trigger_event.severity == Severity.critical:
        alerts.append(_alert_fields(
            AlertType.critical_event,
            "Critical Security Event",
            f"{trigger_event.type.value}: {trigger_event.description}",
            Severity.critical,
            [trigger_event],
            ["Investigate the event immediately", "Check system health", "Review affected submissions"],
        ))

    return alerts


def _alert_fields(
    alert_type: AlertType,
    title: str,
    description: str,
    severity: Severity,
    related: List[SecurityEvent],
    suggested_actions: List[str]
) -> Dict[str, Any]:
    return {
        "alert_type": alert_type,
        "title": title,
        "description": description,
        "severity": severity,
        "related_events": [e.id for e in related],
        "action_required": True,
        "suggested_actions": suggested_actions,
    }
