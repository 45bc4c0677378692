"""
Services package - Business logic layer
"""
from visit_trust.services.fraud_detection_service import fraud_detection_service
from visit_trust.services.security_monitoring_service import security_monitoring_service
from visit_trust.services.submission_validation_service import submission_validation_service

__all__ = [
    "fraud_detection_service",
    "security_monitoring_service",
    "submission_validation_service"
]
