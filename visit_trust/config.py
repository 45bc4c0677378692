"""
Configuration module for the Visit Trust service
Loads environment variables and provides settings
"""
from functools import lru_cache
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_ENV: str = "development"
    APP_DEBUG: bool = False
    API_KEY: str = "internal-api-key"

    # Database
    DATABASE_URL: str = "sqlite:///./visit_trust.db"
    # "memory" keeps the security log in-process, "database" uses DATABASE_URL
    SECURITY_STORE: str = "memory"
    # In-memory events older than this are dropped; must cover the month metrics window
    SECURITY_EVENT_RETENTION_DAYS: int = 90

    # Celery
    CELERY_BROKER_URL: str = "redis://redis:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://redis:6379/0"

    # Alert delivery (empty URL disables delivery)
    ALERT_WEBHOOK_URL: str = ""
    ALERT_WEBHOOK_TIMEOUT_SEC: float = 10.0

    # Rate limiting / duplicate policy
    VALIDATION_MAX_DAILY_SUBMISSIONS: int = 50
    VALIDATION_MIN_SUBMISSION_INTERVAL_SEC: int = 60
    VALIDATION_DUPLICATE_PREVENTION_ENABLED: bool = True
    VALIDATION_RATE_LIMITING_ENABLED: bool = True

    # Proof checks
    VALIDATION_PHOTO_VALIDATION_ENABLED: bool = True
    VALIDATION_MAX_PHOTO_SIZE_BYTES: int = 10 * 1024 * 1024
    VALIDATION_ALLOWED_IMAGE_TYPES: List[str] = ["image/jpeg", "image/png", "image/webp"]
    VALIDATION_RECEIPT_MAX_AGE_HOURS: float = 24.0
    VALIDATION_MIN_ANSWER_LENGTH: int = 2

    # GPS accuracy (meters)
    FRAUD_GPS_ACCURACY_THRESHOLD_M: float = 100.0
    FRAUD_GOOD_GPS_ACCURACY_M: float = 10.0
    FRAUD_MIN_REALISTIC_ACCURACY_M: float = 0.5

    # Travel speed (meters per second)
    FRAUD_MAX_TRAVEL_SPEED_MPS: float = 200.0
    FRAUD_SUSPICIOUS_TRAVEL_SPEED_MPS: float = 50.0

    # Behavioral patterns
    FRAUD_REGULAR_INTERVAL_TOLERANCE_SEC: float = 5.0
    FRAUD_MIN_COMPLETION_TIME_SEC: float = 30.0
    FRAUD_MIN_HISTORY_FOR_LOW_RISK: int = 5
    FRAUD_SPOOF_COORDINATE_TOLERANCE_DEG: float = 0.0001

    # Alert thresholds
    ALERT_FRAUD_EVENTS_PER_HOUR: int = 10
    ALERT_GPS_SPOOFING_EVENTS_PER_HOUR: int = 5
    ALERT_RATE_LIMIT_VIOLATIONS_PER_HOUR: int = 20
    ALERT_HIGH_SEVERITY_EVENTS_PER_HOUR: int = 3
    ALERT_UNIQUE_USERS_WITH_FRAUD_PER_DAY: int = 5

    # Metrics
    METRICS_TOP_USERS: int = 10

    class Config:
        env_file = ".env"
        extra = "allow"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
