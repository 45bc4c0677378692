"""
SQLAlchemy ORM Models for the security monitor
"""
from sqlalchemy import Column, String, Text, Float, Boolean, DateTime, JSON, Index
from visit_trust.db.database import Base


class SecurityEventRecord(Base):
    """Append-only security event log"""
    __tablename__ = "security_events"

    id = Column(String(64), primary_key=True)
    type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False)
    user_id = Column(String(255), nullable=False)
    challenge_id = Column(String(255))
    submission_id = Column(String(255))
    timestamp = Column(DateTime(timezone=True), nullable=False)
    description = Column(Text, default="")
    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSON, default=dict)
    ip_address = Column(String(64))
    user_agent = Column(String(512))
    # Resolution (the only mutable part)
    resolved = Column(Boolean, default=False, nullable=False)
    resolved_by = Column(String(255))
    resolved_at = Column(DateTime(timezone=True))
    resolution_notes = Column(Text)

    __table_args__ = (
        Index('idx_security_event_time', 'timestamp'),
        Index('idx_security_event_user_time', 'user_id', 'timestamp'),
    )


class FlaggedSubmissionRecord(Base):
    """Human review queue"""
    __tablename__ = "flagged_submissions"

    submission_id = Column(String(255), primary_key=True)
    user_id = Column(String(255), nullable=False)
    challenge_id = Column(String(255), nullable=False)
    flagged_at = Column(DateTime(timezone=True), nullable=False)
    flag_reason = Column(Text, nullable=False)
    severity = Column(String(20), nullable=False)
    review_status = Column(String(20), nullable=False, default="pending")
    reviewed_by = Column(String(255))
    reviewed_at = Column(DateTime(timezone=True))
    review_notes = Column(Text)
    automatic_flags = Column(JSON, default=list)
    manual_flags = Column(JSON, default=list)
    fraud_score = Column(Float, default=0.0)
    flag_metadata = Column("metadata", JSON, default=dict)

    __table_args__ = (
        Index('idx_flagged_status_time', 'review_status', 'flagged_at'),
    )


class SecurityAlertRecord(Base):
    __tablename__ = "security_alerts"

    id = Column(String(64), primary_key=True)
    alert_type = Column(String(30), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    severity = Column(String(20), nullable=False)
    triggered_at = Column(DateTime(timezone=True), nullable=False)
    acknowledged = Column(Boolean, default=False, nullable=False)
    acknowledged_by = Column(String(255))
    acknowledged_at = Column(DateTime(timezone=True))
    related_events = Column(JSON, default=list)
    action_required = Column(Boolean, default=True)
    suggested_actions = Column(JSON, default=list)

    __table_args__ = (
        Index('idx_security_alert_ack', 'acknowledged', 'triggered_at'),
    )
