"""
Security repository - storage seam for events, flagged submissions and alerts.

Terminal transitions (resolve, review, acknowledge) are compare-and-set:
they succeed once and return None afterwards.
"""
import bisect
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, Optional, List, Tuple

from sqlalchemy.exc import IntegrityError

from visit_trust.config import settings
from visit_trust.db.models import SecurityEventRecord, FlaggedSubmissionRecord, SecurityAlertRecord
from visit_trust.schemas.security import (
    SecurityEvent, FlaggedSubmission, SecurityAlert, ReviewStatus
)

logger = logging.getLogger(__name__)


class SecurityRepository(ABC):
    """Narrow storage interface used by SecurityMonitoringService."""

    # Events
    @abstractmethod
    def add_event(self, event: SecurityEvent) -> None: ...

    @abstractmethod
    def get_event(self, event_id: str) -> Optional[SecurityEvent]: ...

    @abstractmethod
    def list_events(
        self,
        since: Optional[datetime] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[SecurityEvent]:
        """Events newest first."""

    @abstractmethod
    def resolve_event(
        self, event_id: str, resolved_by: str, resolved_at: datetime, notes: Optional[str]
    ) -> Optional[SecurityEvent]: ...

    # Flagged submissions
    @abstractmethod
    def add_flag(self, flag: FlaggedSubmission) -> FlaggedSubmission:
        """Insert unless a flag exists for the submission; return the stored record."""

    @abstractmethod
    def get_flag(self, submission_id: str) -> Optional[FlaggedSubmission]: ...

    @abstractmethod
    def list_flags(
        self, status: Optional[ReviewStatus] = None, limit: Optional[int] = None
    ) -> List[FlaggedSubmission]:
        """Flags newest first."""

    @abstractmethod
    def review_flag(
        self,
        submission_id: str,
        status: ReviewStatus,
        reviewed_by: str,
        reviewed_at: datetime,
        notes: Optional[str]
    ) -> Optional[FlaggedSubmission]: ...

    # Alerts
    @abstractmethod
    def add_alert(self, alert: SecurityAlert) -> None: ...

    @abstractmethod
    def get_alert(self, alert_id: str) -> Optional[SecurityAlert]: ...

    @abstractmethod
    def list_alerts(self, active_only: bool = True) -> List[SecurityAlert]:
        """Alerts newest first."""

    @abstractmethod
    def acknowledge_alert(
        self, alert_id: str, acknowledged_by: str, acknowledged_at: datetime
    ) -> Optional[SecurityAlert]: ...


# ============================================
# IN-MEMORY
# ============================================
class InMemorySecurityRepository(SecurityRepository):
    """
    Process-local store. One lock per table; records are immutable models
    replaced wholesale, so readers always see complete records.

    Events are indexed by timestamp so windowed reads only touch the window,
    and events older than `retention` (relative to the newest event) are
    dropped on insert.
    """

    def __init__(self, retention: Optional[timedelta] = None):
        self.retention = retention or timedelta(days=settings.SECURITY_EVENT_RETENTION_DAYS)
        self._events: Dict[str, SecurityEvent] = {}
        self._timeline: List[Tuple[datetime, str]] = []
        self._flags: Dict[str, FlaggedSubmission] = {}
        self._alerts: Dict[str, SecurityAlert] = {}
        self._events_lock = threading.Lock()
        self._flags_lock = threading.Lock()
        self._alerts_lock = threading.Lock()

    def add_event(self, event: SecurityEvent) -> None:
        with self._events_lock:
            if event.id in self._events:
                raise ValueError(f"Duplicate security event id {event.id}")
            self._events[event.id] = event
            bisect.insort(self._timeline, (event.timestamp, event.id))
            self._prune_events()

    def _prune_events(self) -> None:
        # caller holds _events_lock
        cutoff = self._timeline[-1][0] - self.retention
        expired = bisect.bisect_left(self._timeline, (cutoff, ""))
        if not expired:
            return
        for _, event_id in self._timeline[:expired]:
            del self._events[event_id]
        del self._timeline[:expired]
        logger.debug(f"Pruned {expired} security events older than {cutoff.isoformat()}")

    def get_event(self, event_id: str) -> Optional[SecurityEvent]:
        with self._events_lock:
            return self._events.get(event_id)

    def list_events(self, since=None, user_id=None, limit=None) -> List[SecurityEvent]:
        with self._events_lock:
            if since is not None:
                start = bisect.bisect_left(self._timeline, (since, ""))
                events = [self._events[event_id] for _, event_id in self._timeline[start:]]
            else:
                events = list(self._events.values())

        if user_id is not None:
            events = [e for e in events if e.user_id == user_id]

        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit] if limit is not None else events

    def resolve_event(self, event_id, resolved_by, resolved_at, notes) -> Optional[SecurityEvent]:
        with self._events_lock:
            event = self._events.get(event_id)
            if event is None or event.resolved:
                return None
            updated = event.model_copy(update={
                "resolved": True,
                "resolved_by": resolved_by,
                "resolved_at": resolved_at,
                "resolution_notes": notes,
            })
            self._events[event_id] = updated
            return updated

    def add_flag(self, flag: FlaggedSubmission) -> FlaggedSubmission:
        with self._flags_lock:
            existing = self._flags.get(flag.submission_id)
            if existing is not None:
                return existing
            self._flags[flag.submission_id] = flag
            return flag

    def get_flag(self, submission_id: str) -> Optional[FlaggedSubmission]:
        with self._flags_lock:
            return self._flags.get(submission_id)

    def list_flags(self, status=None, limit=None) -> List[FlaggedSubmission]:
        with self._flags_lock:
            flags = list(self._flags.values())

        if status is not None:
            flags = [f for f in flags if f.review_status == status]

        flags.sort(key=lambda f: f.flagged_at, reverse=True)
        return flags[:limit] if limit is not None else flags

    def review_flag(self, submission_id, status, reviewed_by, reviewed_at, notes) -> Optional[FlaggedSubmission]:
        with self._flags_lock:
            flag = self._flags.get(submission_id)
            if flag is None or flag.review_status != ReviewStatus.pending:
                return None
            updated = flag.model_copy(update={
                "review_status": status,
                "reviewed_by": reviewed_by,
                "reviewed_at": reviewed_at,
                "review_notes": notes,
            })
            self._flags[submission_id] = updated
            return updated

    def add_alert(self, alert: SecurityAlert) -> None:
        with self._alerts_lock:
            self._alerts[alert.id] = alert

    def get_alert(self, alert_id: str) -> Optional[SecurityAlert]:
        with self._alerts_lock:
            return self._alerts.get(alert_id)

    def list_alerts(self, active_only: bool = True) -> List[SecurityAlert]:
        with self._alerts_lock:
            alerts = list(self._alerts.values())

        if active_only:
            alerts = [a for a in alerts if not a.acknowledged]

        alerts.sort(key=lambda a: a.triggered_at, reverse=True)
        return alerts

    def acknowledge_alert(self, alert_id, acknowledged_by, acknowledged_at) -> Optional[SecurityAlert]:
        with self._alerts_lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.acknowledged:
                return None
            updated = alert.model_copy(update={
                "acknowledged": True,
                "acknowledged_by": acknowledged_by,
                "acknowledged_at": acknowledged_at,
            })
            self._alerts[alert_id] = updated
            return updated


# ============================================
# SQL
# ============================================
class SqlSecurityRepository(SecurityRepository):
    """SQLAlchemy-backed store; one transaction per write."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # Events
    def add_event(self, event: SecurityEvent) -> None:
        with self._session() as db:
            db.add(SecurityEventRecord(
                id=event.id,
                type=event.type.value,
                severity=event.severity.value,
                user_id=event.user_id,
                challenge_id=event.challenge_id,
                submission_id=event.submission_id,
                timestamp=event.timestamp,
                description=event.description,
                event_metadata=event.model_dump(mode="json")["metadata"],
                ip_address=event.ip_address,
                user_agent=event.user_agent,
                resolved=event.resolved,
                resolved_by=event.resolved_by,
                resolved_at=event.resolved_at,
                resolution_notes=event.resolution_notes,
            ))

    def get_event(self, event_id: str) -> Optional[SecurityEvent]:
        with self._session() as db:
            record = db.get(SecurityEventRecord, event_id)
            return self._to_event(record) if record else None

    def list_events(self, since=None, user_id=None, limit=None) -> List[SecurityEvent]:
        with self._session() as db:
            query = db.query(SecurityEventRecord)
            if since is not None:
                query = query.filter(SecurityEventRecord.timestamp >= since)
            if user_id is not None:
                query = query.filter(SecurityEventRecord.user_id == user_id)
            query = query.order_by(SecurityEventRecord.timestamp.desc())
            if limit is not None:
                query = query.limit(limit)
            return [self._to_event(r) for r in query.all()]

    def resolve_event(self, event_id, resolved_by, resolved_at, notes) -> Optional[SecurityEvent]:
        with self._session() as db:
            updated = db.query(SecurityEventRecord).filter(
                SecurityEventRecord.id == event_id,
                SecurityEventRecord.resolved == False  # noqa: E712
            ).update({
                "resolved": True,
                "resolved_by": resolved_by,
                "resolved_at": resolved_at,
                "resolution_notes": notes,
            }, synchronize_session=False)
            if updated != 1:
                return None
            db.expire_all()
            return self._to_event(db.get(SecurityEventRecord, event_id))

    # Flagged submissions
    def add_flag(self, flag: FlaggedSubmission) -> FlaggedSubmission:
        existing = self.get_flag(flag.submission_id)
        if existing is not None:
            return existing
        try:
            with self._session() as db:
                db.add(FlaggedSubmissionRecord(
                    submission_id=flag.submission_id,
                    user_id=flag.user_id,
                    challenge_id=flag.challenge_id,
                    flagged_at=flag.flagged_at,
                    flag_reason=flag.flag_reason,
                    severity=flag.severity.value,
                    review_status=flag.review_status.value,
                    reviewed_by=flag.reviewed_by,
                    reviewed_at=flag.reviewed_at,
                    review_notes=flag.review_notes,
                    automatic_flags=list(flag.automatic_flags),
                    manual_flags=list(flag.manual_flags),
                    fraud_score=flag.fraud_score,
                    flag_metadata=flag.model_dump(mode="json")["metadata"],
                ))
        except IntegrityError:
            # Concurrent flag for the same submission won the insert
            logger.info(f"Submission {flag.submission_id} already flagged")
            return self.get_flag(flag.submission_id)
        return flag

    def get_flag(self, submission_id: str) -> Optional[FlaggedSubmission]:
        with self._session() as db:
            record = db.get(FlaggedSubmissionRecord, submission_id)
            return self._to_flag(record) if record else None

    def list_flags(self, status=None, limit=None) -> List[FlaggedSubmission]:
        with self._session() as db:
            query = db.query(FlaggedSubmissionRecord)
            if status is not None:
                query = query.filter(FlaggedSubmissionRecord.review_status == ReviewStatus(status).value)
            query = query.order_by(FlaggedSubmissionRecord.flagged_at.desc())
            if limit is not None:
                query = query.limit(limit)
            return [self._to_flag(r) for r in query.all()]

    def review_flag(self, submission_id, status, reviewed_by, reviewed_at, notes) -> Optional[FlaggedSubmission]:
        with self._session() as db:
            updated = db.query(FlaggedSubmissionRecord).filter(
                FlaggedSubmissionRecord.submission_id == submission_id,
                FlaggedSubmissionRecord.review_status == ReviewStatus.pending.value
            ).update({
                "review_status": ReviewStatus(status).value,
                "reviewed_by": reviewed_by,
                "reviewed_at": reviewed_at,
                "review_notes": notes,
            }, synchronize_session=False)
            if updated != 1:
                return None
            db.expire_all()
            return self._to_flag(db.get(FlaggedSubmissionRecord, submission_id))

    # Alerts
    def add_alert(self, alert: SecurityAlert) -> None:
        with self._session() as db:
            db.add(SecurityAlertRecord(
                id=alert.id,
                alert_type=alert.alert_type.value,
                title=alert.title,
                description=alert.description,
                severity=alert.severity.value,
                triggered_at=alert.triggered_at,
                acknowledged=alert.acknowledged,
                acknowledged_by=alert.acknowledged_by,
                acknowledged_at=alert.acknowledged_at,
                related_events=list(alert.related_events),
                action_required=alert.action_required,
                suggested_actions=list(alert.suggested_actions),
            ))

    def get_alert(self, alert_id: str) -> Optional[SecurityAlert]:
        with self._session() as db:
            record = db.get(SecurityAlertRecord, alert_id)
            return self._to_alert(record) if record else None

    def list_alerts(self, active_only: bool = True) -> List[SecurityAlert]:
        with self._session() as db:
            query = db.query(SecurityAlertRecord)
            if active_only:
                query = query.filter(SecurityAlertRecord.acknowledged == False)  # noqa: E712
            query = query.order_by(SecurityAlertRecord.triggered_at.desc())
            return [self._to_alert(r) for r in query.all()]

    def acknowledge_alert(self, alert_id, acknowledged_by, acknowledged_at) -> Optional[SecurityAlert]:
        with self._session() as db:
            updated = db.query(SecurityAlertRecord).filter(
                SecurityAlertRecord.id == alert_id,
                SecurityAlertRecord.acknowledged == False  # noqa: E712
            ).update({
                "acknowledged": True,
                "acknowledged_by": acknowledged_by,
                "acknowledged_at": acknowledged_at,
            }, synchronize_session=False)
            if updated != 1:
                return None
            db.expire_all()
            return self._to_alert(db.get(SecurityAlertRecord, alert_id))

    # Record -> schema (naive datetimes from SQLite are read back as UTC by the schemas)
    @staticmethod
    def _to_event(record: SecurityEventRecord) -> SecurityEvent:
        return SecurityEvent(
            id=record.id,
            type=record.type,
            severity=record.severity,
            user_id=record.user_id,
            challenge_id=record.challenge_id,
            submission_id=record.submission_id,
            timestamp=record.timestamp,
            description=record.description or "",
            metadata=record.event_metadata or {},
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            resolved=bool(record.resolved),
            resolved_by=record.resolved_by,
            resolved_at=record.resolved_at,
            resolution_notes=record.resolution_notes,
        )

    @staticmethod
    def _to_flag(record: FlaggedSubmissionRecord) -> FlaggedSubmission:
        return FlaggedSubmission(
            submission_id=record.submission_id,
            user_id=record.user_id,
            challenge_id=record.challenge_id,
            flagged_at=record.flagged_at,
            flag_reason=record.flag_reason,
            severity=record.severity,
            review_status=record.review_status,
            reviewed_by=record.reviewed_by,
            reviewed_at=record.reviewed_at,
            review_notes=record.review_notes,
            automatic_flags=record.automatic_flags or [],
            manual_flags=record.manual_flags or [],
            fraud_score=record.fraud_score or 0.0,
            metadata=record.flag_metadata or {},
        )

    @staticmethod
    def _to_alert(record: SecurityAlertRecord) -> SecurityAlert:
        return SecurityAlert(
            id=record.id,
            alert_type=record.alert_type,
            title=record.title,
            description=record.description,
            severity=record.severity,
            triggered_at=record.triggered_at,
            acknowledged=bool(record.acknowledged),
            acknowledged_by=record.acknowledged_by,
            acknowledged_at=record.acknowledged_at,
            related_events=record.related_events or [],
            action_required=bool(record.action_required),
            suggested_actions=record.suggested_actions or [],
        )


def build_security_repository(store: Optional[str] = None) -> SecurityRepository:
    """Pick the store named by SECURITY_STORE ("memory" or "database")."""
    store = (store or settings.SECURITY_STORE).lower()
    if store == "memory":
        return InMemorySecurityRepository()
    if store == "database":
        from visit_trust.db.database import SessionLocal
        return SqlSecurityRepository(SessionLocal)
    raise ValueError(f"Unknown SECURITY_STORE '{store}', expected 'memory' or 'database'")
