"""Per-client authentication progress and where it is kept between requests."""
from dataclasses import dataclass

from services.policy_engine import PolicyResult


@dataclass(frozen=True)
class PendingChallenge:
    account_id: int
    purpose: str
    email: str
    mobile: str

    def to_dict(self) -> dict:
        return {"account_id": self.account_id, "purpose": self.purpose, "email": self.email, "mobile": self.mobile}


@dataclass(frozen=True)
class SessionContext:
    pending: PendingChallenge | None = None
    account_id: int | None = None
    email: str = ""
    role: str = ""
    device_id: int | None = None
    token: str | None = None
    jti: str | None = None
    last_policy: PolicyResult | None = None
    blocked: PolicyResult | None = None  # kept after a policy block for the access-denied view

    @property
    def authenticated(self) -> bool:
        return self.account_id is not None and self.jti is not None

    def to_dict(self) -> dict:
        return {
            "pending": self.pending.to_dict() if self.pending else None,
            "account_id": self.account_id,
            "email": self.email,
            "role": self.role,
            "device_id": self.device_id,
            "token": self.token,
            "jti": self.jti,
            "last_policy": self.last_policy.to_dict() if self.last_policy else None,
            "blocked": self.blocked.to_dict() if self.blocked else None,
        }

    @classmethod
    def from_dict(cls, data) -> "SessionContext":
        if not data:
            return cls()
        pending = data.get("pending")
        last_policy = data.get("last_policy")
        blocked = data.get("blocked")
        return cls(
            pending=PendingChallenge(**pending) if pending else None,
            account_id=data.get("account_id"),
            email=data.get("email", ""),
            role=data.get("role", ""),
            device_id=data.get("device_id"),
            token=data.get("token"),
            jti=data.get("jti"),
            last_policy=PolicyResult.from_dict(last_policy) if last_policy else None,
            blocked=PolicyResult.from_dict(blocked) if blocked else None,
        )


class SessionStore:
    def load(self) -> SessionContext:
        raise NotImplementedError

    def save(self, ctx: SessionContext) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        self.save(SessionContext())


class MemorySessionStore(SessionStore):
    def __init__(self, ctx: SessionContext | None = None):
        self._ctx = ctx or SessionContext()

    def load(self) -> SessionContext:
        return self._ctx

    def save(self, ctx: SessionContext) -> None:
        self._ctx = ctx


class CookieSessionStore(SessionStore):
    """Keeps the context in a dict-like session, e.g. Flask's signed cookie session."""

    KEY = "zt"

    def __init__(self, session):
        self.session = session

    def load(self) -> SessionContext:
        return SessionContext.from_dict(self.session.get(self.KEY))

    def save(self, ctx: SessionContext) -> None:
        self.session[self.KEY] = ctx.to_dict()
