"""
API routers package
"""
from visit_trust.api import (
    system,
    validation,
    security
)

__all__ = [
    "system",
    "validation",
    "security"
]
