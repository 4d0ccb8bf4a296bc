"""Unit tests for core/policy.py -- pure decision logic, inline data only."""

from core.models import Assessment
from core.policy import AssessmentPolicy, PolicyDenied

NOW = 1_700_000_000.0
IP = "203.0.113.7"


def _assessment(**overrides) -> Assessment:
    fields = {"issued_at": NOW, "is_anonymized": False, "client_identity": None, "service_name": None}
    fields.update(overrides)
    return Assessment(**fields)


class TestExemption:
    def test_exempted_anonymizer_is_allowed(self):
        policy = AssessmentPolicy({"WARP_VPN"})
        decision = policy.decide(_assessment(is_anonymized=True, service_name="WARP_VPN"), IP, NOW)
        assert decision.allowed
        assert decision.service_name == "WARP_VPN"

    def test_same_anonymizer_without_exemption_is_denied(self):
        policy = AssessmentPolicy(set())
        decision = policy.decide(_assessment(is_anonymized=True, service_name="WARP_VPN"), IP, NOW)
        assert not decision.allowed
        assert decision.reason == "anonymized"
        assert decision.service_name == "WARP_VPN"

    def test_exemption_overrides_staleness(self):
        policy = AssessmentPolicy({"ICLOUD_RELAY_PROXY"})
        stale = _assessment(issued_at=NOW - 60, is_anonymized=True, service_name="ICLOUD_RELAY_PROXY")
        assert policy.decide(stale, IP, NOW).allowed

    def test_unknown_anonymizer_denied_even_with_other_exemptions(self):
        policy = AssessmentPolicy({"WARP_VPN"})
        decision = policy.decide(_assessment(is_anonymized=True, service_name="SOME_PROXY"), IP, NOW)
        assert not decision.allowed

    def test_missing_service_name_is_never_exempt(self):
        policy = AssessmentPolicy({""})
        assert not policy.decide(_assessment(is_anonymized=True), IP, NOW).allowed

    def test_exemption_set_is_immutable_copy(self):
        source = {"WARP_VPN"}
        policy = AssessmentPolicy(source)
        source.add("SOME_PROXY")
        assert policy.exempted_services == frozenset({"WARP_VPN"})


class TestFreshness:
    def test_ten_seconds_old_is_denied(self):
        decision = AssessmentPolicy().decide(_assessment(issued_at=NOW - 10), IP, NOW)
        assert not decision.allowed
        assert decision.reason == "stale"

    def test_two_seconds_old_is_allowed(self):
        assert AssessmentPolicy().decide(_assessment(issued_at=NOW - 2), IP, NOW).allowed

    def test_boundary_is_inclusive(self):
        assert AssessmentPolicy().decide(_assessment(issued_at=NOW - 5), IP, NOW).allowed

    def test_future_timestamp_counts_as_stale(self):
        # |now - issued_at| -- a bundle from the future is as suspicious as an old one
        assert not AssessmentPolicy().decide(_assessment(issued_at=NOW + 10), IP, NOW).allowed

    def test_custom_tolerance(self):
        policy = AssessmentPolicy(tolerance_seconds=30)
        assert policy.decide(_assessment(issued_at=NOW - 20), IP, NOW).allowed


class TestIdentityBinding:
    def test_matching_identity_is_allowed(self):
        assert AssessmentPolicy().decide(_assessment(client_identity=IP), IP, NOW).allowed

    def test_mismatched_identity_is_denied(self):
        decision = AssessmentPolicy().decide(_assessment(client_identity="198.51.100.1"), IP, NOW)
        assert not decision.allowed
        assert decision.reason == "identity_mismatch"

    def test_mismatch_not_overridden_by_exemption(self):
        policy = AssessmentPolicy({"WARP_VPN"})
        replayed = _assessment(client_identity="198.51.100.1", is_anonymized=True, service_name="WARP_VPN")
        assert not policy.decide(replayed, IP, NOW).allowed

    def test_bound_assessment_with_unknown_caller_is_denied(self):
        assert not AssessmentPolicy().decide(_assessment(client_identity=IP), None, NOW).allowed

    def test_unbound_assessment_skips_identity_check(self):
        assert AssessmentPolicy().decide(_assessment(client_identity=None), "198.51.100.1", NOW).allowed


def test_policy_denied_carries_decision():
    decision = AssessmentPolicy().decide(_assessment(is_anonymized=True, service_name="TOR"), IP, NOW)
    err = PolicyDenied(decision)
    assert err.decision is decision
    assert "TOR" in str(err)


def test_nan_timestamp_is_stale():
    decision = AssessmentPolicy().decide(_assessment(issued_at=float("nan")), IP, NOW)
    assert not decision.allowed
    assert decision.reason == "stale"
