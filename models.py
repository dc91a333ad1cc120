from datetime import datetime, timezone
from enum import Enum

from database import db
from services.signals import Posture


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPERADMIN = "SUPERADMIN"
    IT = "IT"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    PENDING_VERIFICATION = "pending_verification"
    DISABLED = "disabled"
    LOCKED = "locked"


class Purpose(str, Enum):
    REGISTRATION = "registration"
    LOGIN = "login"


class Channel(str, Enum):
    EMAIL = "email"
    MOBILE = "mobile"
    BOTH = "both"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    BLOCKED = "blocked"


class AuditAction(str, Enum):
    """Every kind of event the audit log can hold (schema version 1)."""

    REGISTER = "REGISTER"
    OTP_SENT = "OTP_SENT"
    OTP_RESENT = "OTP_RESENT"
    OTP_FAIL = "OTP_FAIL"
    OTP_EXPIRED = "OTP_EXPIRED"
    OTP_LOCKED = "OTP_LOCKED"
    OTP_VERIFIED = "OTP_VERIFIED"
    RATE_LIMITED = "RATE_LIMITED"
    LOGIN_FAIL = "LOGIN_FAIL"
    LOGIN_CREDENTIALS_OK = "LOGIN_CREDENTIALS_OK"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_AUTO_UNLOCKED = "ACCOUNT_AUTO_UNLOCKED"
    NEW_DEVICE = "NEW_DEVICE"
    ZERO_TRUST_CHECK = "ZERO_TRUST_CHECK"
    POLICY_DECISION = "POLICY_DECISION"
    ACCESS_BLOCKED = "ACCESS_BLOCKED"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGOUT = "LOGOUT"
    DEVICE_APPROVAL_REQUEST = "DEVICE_APPROVAL_REQUEST"
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    ROLE_CHANGED = "ROLE_CHANGED"
    USER_STATUS_CHANGED = "USER_STATUS_CHANGED"
    USER_UNLOCKED = "USER_UNLOCKED"
    USER_DELETED = "USER_DELETED"
    DEVICE_APPROVED = "DEVICE_APPROVED"
    DEVICE_DENIED = "DEVICE_DENIED"


AUDIT_SCHEMA_VERSION = 1


class Account(db.Model):
    __tablename__ = "accounts"
    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, nullable=False)
    mobile = db.Column(db.String(32), nullable=False, default="")
    pass_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(32), nullable=False, default=Role.USER.value)
    status = db.Column(db.String(32), nullable=False, default=AccountStatus.PENDING_VERIFICATION.value)
    failed_attempts = db.Column(db.Integer, nullable=False, default=0)
    locked_until = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "mobile": self.mobile,
            "role": self.role,
            "status": self.status,
            "failed_attempts": self.failed_attempts,
            "locked_until": _iso(self.locked_until),
            "created_at": _iso(self.created_at),
        }


class Device(db.Model):
    __tablename__ = "devices"
    __table_args__ = (db.UniqueConstraint("account_id", "fingerprint", name="uq_device_account_fingerprint"),)
    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    fingerprint = db.Column(db.String(128), nullable=False)  # client supplied, untrusted
    user_agent = db.Column(db.String(512), nullable=False, default="")
    os = db.Column(db.String(64), nullable=False, default="Unknown")
    browser = db.Column(db.String(64), nullable=False, default="Unknown")
    approved = db.Column(db.Boolean, nullable=False, default=False)
    approved_by = db.Column(db.Integer, nullable=True)
    os_updated = db.Column(db.Boolean, nullable=False, default=False)
    antivirus_present = db.Column(db.Boolean, nullable=False, default=False)
    disk_encrypted = db.Column(db.Boolean, nullable=False, default=False)
    screen_lock_enabled = db.Column(db.Boolean, nullable=False, default=False)
    first_seen = db.Column(db.DateTime, nullable=False, default=utcnow)

    @property
    def posture(self):
        return Posture(
            os_updated=self.os_updated,
            antivirus_present=self.antivirus_present,
            disk_encrypted=self.disk_encrypted,
            screen_lock_enabled=self.screen_lock_enabled,
        )

    def to_dict(self):
        return {
            "id": self.id,
            "account_id": self.account_id,
            "fingerprint": self.fingerprint,
            "user_agent": self.user_agent,
            "os": self.os,
            "browser": self.browser,
            "approved": self.approved,
            "approved_by": self.approved_by,
            "posture": self.posture.to_dict(),
            "first_seen": _iso(self.first_seen),
        }


class OtpChallenge(db.Model):
    __tablename__ = "otp_challenges"
    __table_args__ = (db.UniqueConstraint("account_id", "purpose", name="uq_otp_account_purpose"),)
    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)
    purpose = db.Column(db.String(16), nullable=False)  # registration | login
    code = db.Column(db.String(6), nullable=False)
    channel = db.Column(db.String(16), nullable=False)  # email | mobile | both
    issued_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    attempts = db.Column(db.Integer, nullable=False, default=0)


class SessionToken(db.Model):
    __tablename__ = "session_tokens"
    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)
    device_id = db.Column(db.Integer, nullable=True)
    jti = db.Column(db.String(64), index=True, unique=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    revoked = db.Column(db.Boolean, nullable=False, default=False)


class RateWindow(db.Model):
    __tablename__ = "rate_windows"
    key = db.Column(db.String(320), primary_key=True)  # "{action}:{identity}"
    hits = db.Column(db.JSON, nullable=False, default=list)  # ISO timestamps, oldest first


class AuditEvent(db.Model):
    __tablename__ = "audit_events"
    id = db.Column(db.Integer, primary_key=True)
    schema_version = db.Column(db.Integer, nullable=False, default=AUDIT_SCHEMA_VERSION)
    ts = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    account_id = db.Column(db.Integer, nullable=True)
    account_email = db.Column(db.String(255), nullable=False, default="")
    action = db.Column(db.String(64), nullable=False)
    details = db.Column(db.Text, nullable=False, default="")
    risk_score = db.Column(db.Integer, nullable=True)
    ip = db.Column(db.String(64), nullable=False, default="")
    location = db.Column(db.String(255), nullable=False, default="")
    outcome = db.Column(db.String(16), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "schema_version": self.schema_version,
            "timestamp": _iso(self.ts),
            "account_id": self.account_id,
            "account_email": self.account_email,
            "action": self.action,
            "details": self.details,
            "risk_score": self.risk_score,
            "ip": self.ip,
            "location": self.location,
            "outcome": self.outcome,
        }
