from dataclasses import dataclass, field
from enum import Enum

from services.signals import SignalSnapshot

HIGH_RISK_COUNTRIES = frozenset({"Russia", "China", "North Korea", "Iran", "Syria"})
SUSPICIOUS_ISP_MARKERS = ("tor", "vpn", "proxy", "hosting")

ALLOW_MAX = 30
STEP_UP_MAX = 60


class Decision(str, Enum):
    ALLOW = "allow"
    STEP_UP_MFA = "step_up_mfa"
    BLOCK = "block"


@dataclass(frozen=True)
class PolicyResult:
    decision: Decision
    risk_score: int
    reasons: list = field(default_factory=list)
    signals: SignalSnapshot | None = None

    @property
    def blocked(self) -> bool:
        return self.decision is Decision.BLOCK

    def to_dict(self) -> dict:
        return {
            "decision": self.decision.value,
            "risk_score": self.risk_score,
            "reasons": list(self.reasons),
            "signals": self.signals.to_dict() if self.signals else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PolicyResult":
        signals = data.get("signals")
        return cls(
            decision=Decision(data["decision"]),
            risk_score=data["risk_score"],
            reasons=list(data.get("reasons", [])),
            signals=SignalSnapshot.from_dict(signals) if signals else None,
        )


def is_high_risk_country(country: str) -> bool:
    return country in HIGH_RISK_COUNTRIES


def is_suspicious_isp(isp: str) -> bool:
    name = (isp or "").lower()
    return any(marker in name for marker in SUSPICIOUS_ISP_MARKERS)


def compute_risk_score(signals: SignalSnapshot) -> int:
    score = 0
    if is_high_risk_country(signals.origin.country):
        score += 30
    score += min(max(signals.failed_attempts, 0) * 10, 30)
    if not signals.device_approved:
        score += 15

    posture = signals.posture
    if not posture.os_updated:
        score += 8
    if not posture.antivirus_present:
        score += 10
    if not posture.disk_encrypted:
        score += 7
    if not posture.screen_lock_enabled:
        score += 5

    if signals.login_hour < 6 or signals.login_hour > 22:
        score += 10
    if is_suspicious_isp(signals.origin.isp):
        score += 15
    return min(score, 100)


def decide(score: int) -> Decision:
    if score <= ALLOW_MAX:
        return Decision.ALLOW
    if score <= STEP_UP_MAX:
        return Decision.STEP_UP_MFA
    return Decision.BLOCK


def explain(score: int, signals: SignalSnapshot) -> list[str]:
    # Informational; checked independently of which score terms fired.
    reasons = []
    if score > STEP_UP_MAX:
        reasons.append("Risk score exceeds threshold")
    if not signals.device_approved:
        reasons.append("Device not approved")
    if signals.failed_attempts > 2:
        reasons.append("Multiple failed login attempts")
    if not signals.posture.antivirus_present:
        reasons.append("No antivirus detected")
    if not signals.posture.disk_encrypted:
        reasons.append("Disk not encrypted")
    if is_high_risk_country(signals.origin.country):
        reasons.append("High-risk location")
    if is_suspicious_isp(signals.origin.isp):
        reasons.append("Suspicious ISP/VPN detected")
    return reasons


def evaluate_policy(signals: SignalSnapshot) -> PolicyResult:
    score = compute_risk_score(signals)
    return PolicyResult(decision=decide(score), risk_score=score, reasons=explain(score, signals), signals=signals)
