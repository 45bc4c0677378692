"""
Shared fixtures: a controllable clock, a business location in Detroit and
factories for submissions, challenges and histories.
"""
from datetime import datetime, timedelta, timezone

import pytest

from visit_trust.db.repository import InMemorySecurityRepository
from visit_trust.schemas.submission import (
    GPSCoordinate, Submission, UserSubmissionHistory, Challenge, ChallengeLocation,
    ProofRequirements, ProofSubmission, ProofType
)
from visit_trust.services.fraud_detection_service import FraudDetectionService
from visit_trust.services.security_monitoring_service import SecurityMonitoringService
from visit_trust.services.submission_validation_service import SubmissionValidationService

NOW = datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)

# Corner Cafe, downtown Detroit
BUSINESS = GPSCoordinate(latitude=42.3314, longitude=-83.0458)
# About 40m from the cafe
NEARBY = (42.3317, -83.0460)
# Ann Arbor, about 57km west
ANN_ARBOR = (42.2808, -83.7430)
# Chicago, about 380km west
CHICAGO = (41.8781, -87.6298)
# A pair of antipodal fixes
ANTIPODE_WEST = (-11.056008330198168, -90.24960879264873)
ANTIPODE_EAST = (11.056008330198168, 89.75039120735127)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def business_location():
    return ChallengeLocation(
        business_name="Corner Cafe",
        coordinates=BUSINESS,
        verification_radius=100.0,
        address="1 Woodward Ave, Detroit, MI"
    )


@pytest.fixture
def make_submission():
    def _make(
        id="sub_current",
        user_id="user_1",
        challenge_id="ch_current",
        position=NEARBY,
        accuracy=12.0,
        submitted_at=NOW,
        proof_type=ProofType.gps_checkin,
        gps_timestamp=None,
        challenge_viewed_at=None,
        gps=True,
    ):
        coords = None
        if gps:
            lat, lon = position
            coords = GPSCoordinate(latitude=lat, longitude=lon, accuracy=accuracy, timestamp=gps_timestamp)
        return Submission(
            id=id,
            user_id=user_id,
            challenge_id=challenge_id,
            proof_type=proof_type,
            gps_coordinates=coords,
            submitted_at=submitted_at,
            challenge_viewed_at=challenge_viewed_at,
        )
    return _make


@pytest.fixture
def make_history():
    def _make(user_id="user_1", submissions=(), suspicious_activity_count=0, total_submissions=None):
        submissions = list(submissions)
        return UserSubmissionHistory(
            user_id=user_id,
            submissions=submissions,
            last_submission_at=max((s.submitted_at for s in submissions), default=None),
            total_submissions=len(submissions) if total_submissions is None else total_submissions,
            suspicious_activity_count=suspicious_activity_count,
        )
    return _make


@pytest.fixture
def established_history(make_submission, make_history):
    """Six earlier visits on distinct challenges at irregular, relaxed intervals."""
    offsets_hours = [150, 121, 97, 70, 49, 26]
    submissions = [
        make_submission(
            id=f"sub_prior_{i}",
            challenge_id=f"ch_prior_{i}",
            submitted_at=NOW - timedelta(hours=hours),
        )
        for i, hours in enumerate(offsets_hours)
    ]
    return make_history(submissions=submissions)


@pytest.fixture
def challenge(business_location):
    return Challenge(
        id="ch_current",
        title="Visit the Corner Cafe",
        start_date=NOW - timedelta(days=30),
        end_date=NOW + timedelta(days=30),
        points=50,
        location=business_location,
        proof_requirements=ProofRequirements(types=list(ProofType)),
    )


@pytest.fixture
def gps_proof():
    lat, lon = NEARBY
    return ProofSubmission(
        type=ProofType.gps_checkin,
        data={
            "coordinates": {"latitude": lat, "longitude": lon, "accuracy": 12.0},
            "check_in_time": NOW.isoformat(),
        }
    )


@pytest.fixture
def monitor(clock):
    return SecurityMonitoringService(repository=InMemorySecurityRepository(), clock=clock)


@pytest.fixture
def detector():
    return FraudDetectionService()


@pytest.fixture
def validator(detector, monitor):
    return SubmissionValidationService(fraud_detector=detector, security_monitor=monitor)
