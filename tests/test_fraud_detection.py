"""
Tests for the rule-based GPS fraud detector
"""
from datetime import timedelta

import pytest

from visit_trust.schemas.fraud import RiskLevel, RecommendedAction, FraudSignalCode as Code
from visit_trust.schemas.submission import GPSCoordinate, ProofType
from visit_trust.schemas.validation import ValidationConfig

from conftest import NOW, BUSINESS, NEARBY, ANN_ARBOR, CHICAGO, ANTIPODE_WEST, ANTIPODE_EAST


class TestCleanSubmissions:
    def test_established_user_nearby_is_low_risk(
        self, detector, make_submission, established_history, business_location
    ):
        result = detector.assess(make_submission(), established_history, business_location)

        assert result.is_valid
        assert result.fraud_risk == RiskLevel.low
        assert result.recommended_action == RecommendedAction.approve
        assert result.signals == []
        assert result.reasons == []
        assert result.risk_score == 0.0
        assert 0.0 < result.confidence <= 1.0

    def test_new_user_is_never_low_risk(self, detector, make_submission, make_history, business_location):
        result = detector.assess(make_submission(), make_history(), business_location)

        assert result.is_valid
        assert result.fraud_risk == RiskLevel.medium
        assert result.recommended_action == RecommendedAction.review
        assert result.signal_codes() == [Code.LIMITED_HISTORY]

    def test_accepts_bare_coordinate_as_location(self, detector, make_submission, established_history):
        result = detector.assess(make_submission(), established_history, BUSINESS)
        assert result.fraud_risk == RiskLevel.low

    def test_one_reason_per_signal(self, detector, make_submission, make_history, business_location):
        submission = make_submission(accuracy=None)
        result = detector.assess(submission, make_history(), business_location)

        assert len(result.reasons) == len(result.signals)
        assert result.reasons == [s.message for s in result.signals]


class TestGPSLocation:
    @pytest.mark.parametrize("latitude,longitude", [
        (95.0, -83.0),
        (42.0, -190.0),
        (None, -83.0),
        (float("nan"), -83.0),
    ])
    def test_invalid_coordinates_are_high_risk(
        self, detector, make_submission, established_history, business_location, latitude, longitude
    ):
        submission = make_submission().model_copy(update={
            "gps_coordinates": GPSCoordinate(latitude=latitude, longitude=longitude, accuracy=10)
        })
        result = detector.assess(submission, established_history, business_location)

        assert not result.is_valid
        assert result.fraud_risk == RiskLevel.high
        assert result.recommended_action == RecommendedAction.reject
        assert Code.INVALID_COORDINATES in result.signal_codes()
        assert "Invalid GPS coordinates" in result.reasons

    def test_missing_coordinates_do_not_raise(
        self, detector, make_submission, established_history, business_location
    ):
        result = detector.assess(make_submission(gps=False), established_history, business_location)
        assert Code.INVALID_COORDINATES in result.signal_codes()

    def test_exact_target_match(self, detector, make_submission, established_history, business_location):
        submission = make_submission(position=(BUSINESS.latitude, BUSINESS.longitude))
        result = detector.assess(submission, established_history, business_location)

        assert result.fraud_risk == RiskLevel.high
        assert Code.EXACT_TARGET_MATCH in result.signal_codes()

    def test_unrealistic_accuracy(self, detector, make_submission, established_history, business_location):
        result = detector.assess(make_submission(accuracy=0.2), established_history, business_location)

        assert result.fraud_risk == RiskLevel.high
        assert Code.UNREALISTIC_ACCURACY in result.signal_codes()

    def test_known_spoof_coordinate(self, detector, make_submission, established_history, business_location):
        submission = make_submission(position=(37.7749, -122.4194))
        result = detector.assess(submission, established_history, business_location)

        assert Code.KNOWN_SPOOF_COORDINATE in result.signal_codes()
        assert result.fraud_risk == RiskLevel.high

    def test_spoof_denylist_is_configurable(
        self, detector, make_submission, established_history, business_location
    ):
        policy = ValidationConfig(spoof_coordinates=[NEARBY])
        result = detector.assess(make_submission(), established_history, business_location, policy)
        assert Code.KNOWN_SPOOF_COORDINATE in result.signal_codes()


class TestGPSAccuracy:
    def test_unreported_accuracy_is_medium(
        self, detector, make_submission, established_history, business_location
    ):
        result = detector.assess(make_submission(accuracy=None), established_history, business_location)

        assert result.signal_codes() == [Code.ACCURACY_UNREPORTED]
        assert result.fraud_risk == RiskLevel.medium

    def test_poor_accuracy_is_medium(self, detector, make_submission, established_history, business_location):
        result = detector.assess(make_submission(accuracy=250.0), established_history, business_location)

        assert result.signal_codes() == [Code.POOR_ACCURACY]
        assert result.is_valid

    def test_good_accuracy_raises_confidence(
        self, detector, make_submission, established_history, business_location
    ):
        sharp = detector.assess(make_submission(accuracy=5.0), established_history, business_location)
        fuzzy = detector.assess(make_submission(accuracy=60.0), established_history, business_location)
        assert sharp.confidence > fuzzy.confidence


class TestTravelSpeed:
    def test_impossible_travel(
        self, detector, make_submission, make_history, established_history, business_location
    ):
        previous = make_submission(
            id="sub_chicago", challenge_id="ch_chicago", position=CHICAGO,
            submitted_at=NOW - timedelta(minutes=1)
        )
        history = make_history(submissions=established_history.submissions + [previous])
        result = detector.assess(make_submission(), history, business_location)

        assert not result.is_valid
        assert Code.IMPOSSIBLE_TRAVEL in result.signal_codes()
        assert "Impossible travel speed detected" in result.reasons
        signal = next(s for s in result.signals if s.code == Code.IMPOSSIBLE_TRAVEL)
        assert signal.details["previous_submission_id"] == "sub_chicago"
        assert signal.details["speed_mps"] > ValidationConfig().max_travel_speed

    def test_jump_to_antipode(
        self, detector, make_submission, make_history, established_history, business_location
    ):
        previous = make_submission(
            id="sub_west", challenge_id="ch_west", position=ANTIPODE_WEST,
            submitted_at=NOW - timedelta(hours=2)
        )
        history = make_history(submissions=established_history.submissions + [previous])
        result = detector.assess(make_submission(position=ANTIPODE_EAST), history, business_location)

        assert Code.IMPOSSIBLE_TRAVEL in result.signal_codes()
        assert result.fraud_risk == RiskLevel.high

    def test_high_travel_speed_is_medium(
        self, detector, make_submission, make_history, established_history, business_location
    ):
        previous = make_submission(
            id="sub_ann_arbor", challenge_id="ch_ann_arbor", position=ANN_ARBOR,
            submitted_at=NOW - timedelta(minutes=10)
        )
        history = make_history(submissions=established_history.submissions + [previous])
        result = detector.assess(make_submission(), history, business_location)

        assert Code.HIGH_TRAVEL_SPEED in result.signal_codes()
        assert Code.IMPOSSIBLE_TRAVEL not in result.signal_codes()
        assert result.fraud_risk == RiskLevel.medium

    def test_uses_gps_capture_times_when_present(
        self, detector, make_submission, make_history, established_history, business_location
    ):
        # Submitted 10 minutes apart but the fixes were captured 5 hours apart
        previous = make_submission(
            id="sub_ann_arbor", challenge_id="ch_ann_arbor", position=ANN_ARBOR,
            submitted_at=NOW - timedelta(minutes=10),
            gps_timestamp=NOW - timedelta(hours=5)
        )
        history = make_history(submissions=established_history.submissions + [previous])
        current = make_submission(gps_timestamp=NOW)
        result = detector.assess(current, history, business_location)

        assert Code.HIGH_TRAVEL_SPEED not in result.signal_codes()
        assert Code.IMPOSSIBLE_TRAVEL not in result.signal_codes()

    def test_previous_without_gps_cannot_be_verified(
        self, detector, make_submission, make_history, established_history, business_location
    ):
        previous = make_submission(
            id="sub_no_gps", challenge_id="ch_no_gps", gps=False,
            submitted_at=NOW - timedelta(hours=3)
        )
        history = make_history(submissions=established_history.submissions + [previous])
        result = detector.assess(make_submission(), history, business_location)

        assert Code.TRAVEL_UNVERIFIED in result.signal_codes()
        assert result.fraud_risk == RiskLevel.medium

    def test_later_submissions_are_not_the_previous_one(
        self, detector, make_submission, make_history, established_history, business_location
    ):
        later = make_submission(
            id="sub_later", challenge_id="ch_later", position=CHICAGO,
            submitted_at=NOW + timedelta(minutes=2)
        )
        history = make_history(submissions=established_history.submissions + [later])
        result = detector.assess(make_submission(), history, business_location)

        assert Code.IMPOSSIBLE_TRAVEL not in result.signal_codes()


class TestSubmissionTiming:
    def test_daily_limit(self, detector, make_submission, make_history, business_location):
        prior = [
            make_submission(
                id=f"sub_{i}", challenge_id=f"ch_{i}",
                submitted_at=NOW - timedelta(minutes=20 * (i + 1))
            )
            for i in range(60)
        ]
        result = detector.assess(make_submission(), make_history(submissions=prior), business_location)

        assert Code.DAILY_LIMIT_EXCEEDED in result.signal_codes()
        assert result.fraud_risk == RiskLevel.high

    def test_rapid_submission(
        self, detector, make_submission, make_history, established_history, business_location
    ):
        previous = make_submission(id="sub_quick", challenge_id="ch_quick", submitted_at=NOW - timedelta(seconds=30))
        history = make_history(submissions=established_history.submissions + [previous])
        result = detector.assess(make_submission(), history, business_location)

        assert Code.RAPID_SUBMISSION in result.signal_codes()
        assert not result.is_valid

    def test_last_submission_at_counts_as_activity(
        self, detector, make_submission, make_history, established_history, business_location
    ):
        history = established_history.model_copy(update={"last_submission_at": NOW - timedelta(seconds=10)})
        result = detector.assess(make_submission(), history, business_location)
        assert Code.RAPID_SUBMISSION in result.signal_codes()

    def test_regular_intervals(self, detector, make_submission, make_history, business_location):
        prior = [
            make_submission(
                id=f"sub_{i}", challenge_id=f"ch_{i}",
                submitted_at=NOW - timedelta(minutes=10 * (i + 1))
            )
            for i in range(6)
        ]
        result = detector.assess(make_submission(), make_history(submissions=prior), business_location)

        assert Code.REGULAR_INTERVALS in result.signal_codes()

    def test_burst_pattern(self, detector, make_submission, make_history, business_location):
        offsets = [75, 110, 150, 200, 400]
        prior = [
            make_submission(id=f"sub_{i}", challenge_id=f"ch_{i}", submitted_at=NOW - timedelta(seconds=s))
            for i, s in enumerate(offsets)
        ]
        result = detector.assess(make_submission(), make_history(submissions=prior), business_location)

        assert Code.BURST_PATTERN in result.signal_codes()

    def test_rate_limiting_disabled_skips_timing(
        self, detector, make_submission, make_history, established_history, business_location
    ):
        previous = make_submission(id="sub_quick", challenge_id="ch_quick", submitted_at=NOW - timedelta(seconds=30))
        history = make_history(submissions=established_history.submissions + [previous])
        policy = ValidationConfig(rate_limiting_enabled=False)
        result = detector.assess(make_submission(), history, business_location, policy)

        assert Code.RAPID_SUBMISSION not in result.signal_codes()


class TestSubmissionPattern:
    def test_duplicate_challenge(
        self, detector, make_submission, make_history, established_history, business_location
    ):
        earlier = make_submission(id="sub_first", challenge_id="ch_current", submitted_at=NOW - timedelta(hours=5))
        history = make_history(submissions=established_history.submissions + [earlier])
        result = detector.assess(make_submission(), history, business_location)

        assert Code.DUPLICATE_CHALLENGE in result.signal_codes()
        assert result.fraud_risk == RiskLevel.high

    def test_submission_itself_in_history_is_ignored(
        self, detector, make_submission, make_history, established_history, business_location
    ):
        current = make_submission()
        history = make_history(submissions=established_history.submissions + [current])
        result = detector.assess(current, history, business_location)

        assert Code.DUPLICATE_CHALLENGE not in result.signal_codes()
        assert result.fraud_risk == RiskLevel.low

    def test_proof_type_homogeneity(self, detector, make_submission, make_history, business_location):
        offsets_hours = [300, 270, 251, 222, 190, 171, 140, 118, 95, 71, 48, 26]
        prior = [
            make_submission(
                id=f"sub_{i}", challenge_id=f"ch_{i}", proof_type=ProofType.photo,
                submitted_at=NOW - timedelta(hours=h)
            )
            for i, h in enumerate(offsets_hours)
        ]
        submission = make_submission(proof_type=ProofType.photo)
        result = detector.assess(submission, make_history(submissions=prior), business_location)

        assert Code.PROOF_TYPE_HOMOGENEITY in result.signal_codes()

    def test_fast_completion(self, detector, make_submission, make_history, business_location):
        offsets_hours = [72, 49, 26]
        prior = [
            make_submission(
                id=f"sub_{i}", challenge_id=f"ch_{i}",
                submitted_at=NOW - timedelta(hours=h),
                challenge_viewed_at=NOW - timedelta(hours=h, seconds=8)
            )
            for i, h in enumerate(offsets_hours)
        ]
        result = detector.assess(make_submission(), make_history(submissions=prior), business_location)

        assert Code.FAST_COMPLETION in result.signal_codes()

    def test_prior_suspicious_activity(
        self, detector, make_submission, make_history, established_history, business_location
    ):
        history = established_history.model_copy(update={"suspicious_activity_count": 2})
        result = detector.assess(make_submission(), history, business_location)

        assert result.signal_codes() == [Code.PRIOR_SUSPICIOUS_ACTIVITY]
        assert result.fraud_risk == RiskLevel.medium

    def test_total_submissions_beyond_window_count_as_history(
        self, detector, make_submission, make_history, business_location
    ):
        history = make_history(total_submissions=40)
        result = detector.assess(make_submission(), history, business_location)
        assert Code.LIMITED_HISTORY not in result.signal_codes()


class TestScoring:
    def test_risk_score_is_capped(self, detector, make_submission, make_history, business_location):
        submission = make_submission(position=(37.7749, -122.4194), accuracy=0.1)
        earlier = make_submission(id="sub_first", challenge_id="ch_current", submitted_at=NOW - timedelta(seconds=5))
        result = detector.assess(submission, make_history(submissions=[earlier]), business_location)

        assert result.risk_score == 1.0
        assert 0.0 <= result.confidence <= 1.0

    def test_signals_carry_stable_codes_and_details(
        self, detector, make_submission, established_history, business_location
    ):
        result = detector.assess(make_submission(accuracy=250.0), established_history, business_location)
        signal = result.signals[0]

        assert signal.code == Code.POOR_ACCURACY
        assert signal.risk == RiskLevel.medium
        assert signal.details["accuracy"] == 250.0
        assert signal.details["threshold"] == ValidationConfig().gps_accuracy_threshold

    def test_deeper_history_is_more_confident(
        self, detector, make_submission, make_history, established_history, business_location
    ):
        deep = established_history.model_copy(update={"total_submissions": 30})
        shallow = detector.assess(make_submission(), established_history, business_location)
        rich = detector.assess(make_submission(), deep, business_location)

        assert rich.confidence > shallow.confidence
