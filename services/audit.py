import threading
from collections import Counter

import structlog

from database import db
from models import AUDIT_SCHEMA_VERSION, AuditAction, AuditEvent, Outcome

logger = structlog.get_logger(__name__)


class AuditSink:
    """Append-only event log kept as a ring of the newest ``capacity`` rows."""

    def __init__(self, clock, capacity: int = 500):
        self.clock = clock
        self.capacity = capacity
        self._lock = threading.Lock()

    def record(self, action: AuditAction, outcome: Outcome, details: str = "", *, account=None,
               account_id: int | None = None, account_email: str = "", risk_score: int | None = None,
               origin=None) -> AuditEvent:
        if account is not None:
            account_id, account_email = account.id, account.email
        event = AuditEvent(
            schema_version=AUDIT_SCHEMA_VERSION,
            account_id=account_id,
            account_email=account_email or "",
            action=AuditAction(action).value,
            details=details,
            risk_score=risk_score,
            ip=origin.ip if origin else "",
            location=origin.location if origin else "",
            outcome=Outcome(outcome).value,
        )
        with self._lock:
            event.ts = self.clock.now()
            db.session.add(event)
            db.session.flush()
            self._evict()
            db.session.commit()
        logger.info("audit", action=AuditAction(action).value, outcome=Outcome(outcome).value,
                    account=account_email, risk_score=risk_score, details=details)
        return event

    def _evict(self) -> None:
        cutoff = db.session.execute(
            db.select(AuditEvent.id).order_by(AuditEvent.id.desc()).offset(self.capacity).limit(1)
        ).scalar()
        if cutoff is not None:
            db.session.execute(db.delete(AuditEvent).where(AuditEvent.id <= cutoff))

    def recent(self, limit: int = 100, query: str | None = None, outcome: str | None = None) -> list[AuditEvent]:
        stmt = db.select(AuditEvent).order_by(AuditEvent.id.desc())
        if query:
            pattern = f"%{query}%"
            stmt = stmt.where(db.or_(
                AuditEvent.action.ilike(pattern),
                AuditEvent.account_email.ilike(pattern),
                AuditEvent.details.ilike(pattern),
            ))
        if outcome:
            stmt = stmt.where(AuditEvent.outcome == Outcome(outcome).value)
        return list(db.session.scalars(stmt.limit(limit)))

    def suspicious(self, limit: int = 100) -> list[AuditEvent]:
        return [e for e in self.recent(self.capacity) if _is_suspicious(e)][:limit]

    def summary(self) -> dict:
        rows = self.recent(self.capacity)
        actions = Counter(r.action for r in rows)
        outcomes = Counter(r.outcome for r in rows)
        scored = [r.risk_score for r in rows if r.risk_score is not None]
        return {
            "counts": {
                "actions": dict(actions),
                "outcomes": dict(outcomes),
                "total": len(rows),
            },
            "stats": {
                "total": len(rows),
                "success": outcomes[Outcome.SUCCESS.value],
                "failures": outcomes[Outcome.FAILURE.value],
                "blocked": outcomes[Outcome.BLOCKED.value],
                "avg_risk": round(sum(scored) / len(scored)) if scored else 0,
                "login_failures": actions[AuditAction.LOGIN_FAIL.value],
                "otp_failures": actions[AuditAction.OTP_FAIL.value],
                "locked_accounts": actions[AuditAction.ACCOUNT_LOCKED.value],
                "new_devices": actions[AuditAction.NEW_DEVICE.value],
                "policy_blocks": actions[AuditAction.ACCESS_BLOCKED.value],
            },
        }


def _is_suspicious(event: AuditEvent) -> bool:
    return (
        event.outcome == Outcome.BLOCKED.value
        or event.action in (AuditAction.ACCOUNT_LOCKED.value, AuditAction.ACCESS_BLOCKED.value)
        or (event.risk_score or 0) > 50
    )
