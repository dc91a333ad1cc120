from datetime import datetime

import pytest

from services.policy_engine import Decision, PolicyResult, compute_risk_score, decide, evaluate_policy
from services.signals import ClientInfo, Origin, Posture, SignalSnapshot

HEALTHY = Posture(os_updated=True, antivirus_present=True, disk_encrypted=True, screen_lock_enabled=True)


def snapshot(country="United States", isp="Comcast", failed_attempts=0, device_approved=True, posture=HEALTHY, hour=14):
    return SignalSnapshot(
        origin=Origin(ip="203.0.113.7", country=country, isp=isp),
        client=ClientInfo(),
        login_time=datetime(2024, 3, 4, hour, 0),
        login_hour=hour,
        failed_attempts=failed_attempts,
        device_approved=device_approved,
        posture=posture,
    )


class TestRiskScore:
    def test_clean_signals_score_zero(self):
        assert compute_risk_score(snapshot()) == 0

    @pytest.mark.parametrize("kwargs, expected", [
        ({"country": "Russia"}, 30),
        ({"failed_attempts": 1}, 10),
        ({"failed_attempts": 7}, 30),
        ({"device_approved": False}, 15),
        ({"posture": Posture(antivirus_present=True, disk_encrypted=True, screen_lock_enabled=True)}, 8),
        ({"posture": Posture(os_updated=True, disk_encrypted=True, screen_lock_enabled=True)}, 10),
        ({"posture": Posture(os_updated=True, antivirus_present=True, screen_lock_enabled=True)}, 7),
        ({"posture": Posture(os_updated=True, antivirus_present=True, disk_encrypted=True)}, 5),
        ({"hour": 3}, 10),
        ({"hour": 23}, 10),
        ({"hour": 22}, 0),
        ({"hour": 6}, 0),
        ({"isp": "NordVPN Hosting"}, 15),
        ({"isp": "TOR exit"}, 15),
    ])
    def test_single_contributions(self, kwargs, expected):
        assert compute_risk_score(snapshot(**kwargs)) == expected

    def test_score_is_clamped(self):
        worst = snapshot(country="North Korea", isp="proxy", failed_attempts=9, device_approved=False,
                         posture=Posture(), hour=2)
        assert compute_risk_score(worst) == 100

    def test_adding_a_risk_factor_never_lowers_the_score(self):
        base = snapshot(device_approved=False)
        riskier = [
            snapshot(device_approved=False, country="Iran"),
            snapshot(device_approved=False, failed_attempts=2),
            snapshot(device_approved=False, posture=Posture()),
            snapshot(device_approved=False, hour=1),
            snapshot(device_approved=False, isp="vpn"),
        ]
        for signals in riskier:
            assert compute_risk_score(signals) >= compute_risk_score(base)

    def test_worked_example(self):
        signals = snapshot(failed_attempts=3, device_approved=False, country="Unknown",
                           posture=Posture(os_updated=True, disk_encrypted=True, screen_lock_enabled=True))
        result = evaluate_policy(signals)
        assert result.risk_score == 55
        assert result.decision is Decision.STEP_UP_MFA
        assert result.reasons == ["Device not approved", "Multiple failed login attempts", "No antivirus detected"]


class TestDecision:
    @pytest.mark.parametrize("score, decision", [
        (0, Decision.ALLOW),
        (30, Decision.ALLOW),
        (31, Decision.STEP_UP_MFA),
        (60, Decision.STEP_UP_MFA),
        (61, Decision.BLOCK),
        (100, Decision.BLOCK),
    ])
    def test_thresholds(self, score, decision):
        assert decide(score) is decision

    def test_reasons_may_accompany_allow(self):
        result = evaluate_policy(snapshot(device_approved=False))
        assert result.decision is Decision.ALLOW
        assert result.reasons == ["Device not approved"]

    def test_block_reasons_order(self):
        result = evaluate_policy(snapshot(country="China", isp="Hosting Co", device_approved=False, posture=Posture()))
        assert result.blocked
        assert result.reasons == [
            "Risk score exceeds threshold",
            "Device not approved",
            "No antivirus detected",
            "Disk not encrypted",
            "High-risk location",
            "Suspicious ISP/VPN detected",
        ]

    def test_result_survives_serialization(self):
        result = evaluate_policy(snapshot(failed_attempts=1))
        assert PolicyResult.from_dict(result.to_dict()) == result
