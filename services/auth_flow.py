"""Account and session state machine.

registration ─► pending_verification ──(registration OTP)──► active
login: credentials ─► choose channel ─► login OTP ─► device ─► risk policy ─► session | blocked

Every operation takes the caller's ``SessionContext`` and returns
``(Result, SessionContext)``. Failures are results, never exceptions; the
returned context is what the caller should store next.
"""
import math
import re
from dataclasses import replace

import jwt
import structlog
from sqlalchemy.exc import IntegrityError

from database import db
from models import Account, AccountStatus, AuditAction, Channel, Outcome, Purpose, Role, SessionToken
from services.notifications import deliver_quietly, mask
from services.policy_engine import Decision, evaluate_policy
from services.repository import Repository
from services.session_store import PendingChallenge, SessionContext
from services.signals import DeviceClaim, SignalSource, collect_signals
from utils.jwt_tokens import decode_token, issue_session
from utils.locks import KeyedLock
from utils.results import Failure, Result
from utils.security import hash_password, verify_password

logger = structlog.get_logger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
CODE_RE = re.compile(r"^\d{6}$")
MIN_PASSWORD_LENGTH = 6


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_profile(full_name: str, email: str, mobile: str, password: str | None) -> str | None:
    if not (full_name or "").strip():
        return "Full name is required"
    if not EMAIL_RE.match(email):
        return "A valid email address is required"
    if not (mobile or "").strip():
        return "Mobile number is required"
    if password is not None and len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    return None


def has_role(role: str, required) -> bool:
    if role == Role.SUPERADMIN.value:
        return True
    return role in {Role(r).value for r in required}


class AuthService:
    def __init__(self, *, clock, audit, otp, devices, limiter, notifier, settings, locks: KeyedLock | None = None):
        self.clock = clock
        self.audit = audit
        self.otp = otp
        self.devices = devices
        self.limiter = limiter
        self.notifier = notifier
        self.settings = settings
        self.locks = locks or KeyedLock()
        self.accounts = Repository(Account)
        self.tokens = Repository(SessionToken)

    # ------------------------------------------------------------------ register

    def register(self, ctx: SessionContext, full_name: str, email: str, mobile: str, password: str,
                 source: SignalSource):
        email = normalize_email(email)
        problem = validate_profile(full_name, email, mobile, password)
        if problem:
            return Result.fail(Failure.VALIDATION, problem), ctx

        with self.locks.hold(f"email:{email}"):
            if self.accounts.find(email=email) is not None:
                return Result.fail(Failure.DUPLICATE_EMAIL, "Email already registered"), ctx
            account = Account(
                full_name=full_name.strip(),
                email=email,
                mobile=mobile.strip(),
                pass_hash=hash_password(password),
                role=Role.USER.value,
                status=AccountStatus.PENDING_VERIFICATION.value,
                failed_attempts=0,
                created_at=self.clock.now(),
            )
            try:
                self.accounts.upsert(account)
            except IntegrityError:
                db.session.rollback()
                return Result.fail(Failure.DUPLICATE_EMAIL, "Email already registered"), ctx

        origin = source.current_origin()
        self.audit.record(AuditAction.REGISTER, Outcome.SUCCESS, "New user registration", account=account, origin=origin)
        code = self.otp.issue(account.id, Purpose.REGISTRATION, Channel.BOTH)
        deliver_quietly(self.notifier, account.email, account.mobile, code, Purpose.REGISTRATION.value, Channel.BOTH)
        self.audit.record(AuditAction.OTP_SENT, Outcome.SUCCESS, "Registration OTP sent to email & mobile",
                          account=account, origin=origin)

        pending = PendingChallenge(account.id, Purpose.REGISTRATION.value, account.email, account.mobile)
        return Result.success(account, "Verification code sent"), SessionContext(pending=pending, blocked=ctx.blocked)

    # --------------------------------------------------------------------- login

    def login(self, ctx: SessionContext, email: str, password: str, source: SignalSource):
        email = normalize_email(email)
        origin = source.current_origin()

        allowed = self.limiter.hit("login", email, self.settings["LOGIN_RATE_LIMIT"], self.settings["LOGIN_RATE_WINDOW"])
        if not allowed:
            self.audit.record(AuditAction.RATE_LIMITED, Outcome.BLOCKED, "Login rate limit exceeded",
                              account_email=email, origin=origin)
            return allowed, ctx

        found = self.accounts.find(email=email)
        if found is None:
            return Result.fail(Failure.INVALID_CREDENTIALS, "Invalid credentials"), ctx

        with self.locks.hold(f"account:{found.id}"):
            account = self.accounts.get(found.id, fresh=True)
            if account is None:
                return Result.fail(Failure.INVALID_CREDENTIALS, "Invalid credentials"), ctx
            denied = self._check_credentials(account, password, origin)
        if denied is not None:
            return denied, ctx

        self.audit.record(AuditAction.LOGIN_CREDENTIALS_OK, Outcome.SUCCESS,
                          "Password verified, waiting for OTP channel selection", account=account, origin=origin)
        pending = PendingChallenge(account.id, Purpose.LOGIN.value, account.email, account.mobile)
        return Result.success(message="Choose where to receive your code"), SessionContext(pending=pending, blocked=ctx.blocked)

    def _check_credentials(self, account: Account, password: str, origin) -> Result | None:
        # caller holds the account lock
        now = self.clock.now()
        threshold = self.settings["LOCKOUT_THRESHOLD"]

        if account.status == AccountStatus.LOCKED.value:
            if account.locked_until and now < account.locked_until:
                minutes = math.ceil((account.locked_until - now).total_seconds() / 60)
                return Result.fail(Failure.ACCOUNT_LOCKED, f"Account locked. Try again in {minutes} minute(s).")
            account.status = AccountStatus.ACTIVE.value
            account.failed_attempts = 0
            account.locked_until = None
            self.accounts.upsert(account)
            self.audit.record(AuditAction.ACCOUNT_AUTO_UNLOCKED, Outcome.SUCCESS, "Lockout period elapsed",
                              account=account, origin=origin)

        if not verify_password(account.pass_hash, password or ""):
            account.failed_attempts += 1
            attempts = account.failed_attempts
            # only an active account can move to locked; pending and disabled keep their status
            locked = attempts >= threshold and account.status == AccountStatus.ACTIVE.value
            if locked:
                account.status = AccountStatus.LOCKED.value
                account.locked_until = now + self.settings["LOCKOUT_DURATION"]
            self.accounts.upsert(account)
            self.audit.record(AuditAction.LOGIN_FAIL, Outcome.FAILURE,
                              f"Invalid password (attempt {attempts}/{threshold})", account=account, origin=origin)
            if locked:
                minutes = int(self.settings["LOCKOUT_DURATION"].total_seconds() // 60)
                self.audit.record(AuditAction.ACCOUNT_LOCKED, Outcome.BLOCKED,
                                  f"Account locked after {threshold} failed attempts", account=account, origin=origin)
                logger.warning("account_locked", account_id=account.id, minutes=minutes)
                return Result.fail(Failure.ACCOUNT_LOCKED,
                                   f"Account locked after {threshold} failed attempts. Try again in {minutes} minutes.")
            return Result.fail(Failure.INVALID_CREDENTIALS,
                               f"Invalid credentials ({max(threshold - attempts, 0)} attempts remaining)")

        if account.status == AccountStatus.DISABLED.value:
            return Result.fail(Failure.ACCOUNT_DISABLED, "Account disabled by administrator")
        if account.status == AccountStatus.PENDING_VERIFICATION.value:
            return Result.fail(Failure.NOT_VERIFIED, "Account not verified. Complete OTP verification first.")

        account.failed_attempts = 0
        self.accounts.upsert(account)
        return None

    # ----------------------------------------------------------------------- OTP

    def send_login_otp(self, ctx: SessionContext, channel: str, source: SignalSource):
        pending = ctx.pending
        if pending is None or pending.purpose != Purpose.LOGIN.value:
            return Result.fail(Failure.NO_PENDING_CHALLENGE, "No pending login. Sign in again."), ctx
        if channel not in (Channel.EMAIL.value, Channel.MOBILE.value):
            return Result.fail(Failure.VALIDATION, "Channel must be email or mobile"), ctx
        channel = Channel(channel)

        code = self.otp.issue(pending.account_id, Purpose.LOGIN, channel)
        deliver_quietly(self.notifier, pending.email, pending.mobile, code, Purpose.LOGIN.value, channel)
        dest = pending.mobile if channel is Channel.MOBILE else pending.email
        self.audit.record(AuditAction.OTP_SENT, Outcome.SUCCESS, f"Login OTP sent via {channel.value} to {mask(dest)}",
                          account_id=pending.account_id, account_email=pending.email, origin=source.current_origin())
        return Result.success(channel.value, f"Code sent via {channel.value}"), ctx

    def resend_otp(self, ctx: SessionContext, source: SignalSource):
        pending = ctx.pending
        if pending is None:
            return Result.fail(Failure.NO_PENDING_CHALLENGE, "No pending verification"), ctx
        code, channel = self.otp.resend(pending.account_id, pending.purpose).value
        deliver_quietly(self.notifier, pending.email, pending.mobile, code, pending.purpose, channel)
        self.audit.record(AuditAction.OTP_RESENT, Outcome.SUCCESS, f"{pending.purpose.title()} OTP resent via {channel}",
                          account_id=pending.account_id, account_email=pending.email, origin=source.current_origin())
        return Result.success(channel, f"Code resent via {channel}"), ctx

    def verify_otp(self, ctx: SessionContext, code: str, claim: DeviceClaim, source: SignalSource):
        pending = ctx.pending
        if pending is None:
            return Result.fail(Failure.NO_PENDING_CHALLENGE, "No pending OTP"), ctx
        code = (code or "").strip()
        if not CODE_RE.match(code):
            return Result.fail(Failure.VALIDATION, "Enter the 6-digit code"), ctx
        if not (claim.fingerprint or "").strip():
            return Result.fail(Failure.VALIDATION, "Device fingerprint is required"), ctx

        origin = source.current_origin()
        checked = self.otp.verify(pending.account_id, pending.purpose, code)
        if not checked:
            self._audit_otp_failure(pending, checked, origin)
            return checked, ctx

        account = self.accounts.get(pending.account_id, fresh=True)
        if account is None:
            return Result.fail(Failure.NOT_FOUND, "Account no longer exists"), SessionContext()

        if pending.purpose == Purpose.REGISTRATION.value:
            with self.locks.hold(f"account:{account.id}"):
                account = self.accounts.get(account.id, fresh=True)
                if account.status == AccountStatus.PENDING_VERIFICATION.value:
                    account.status = AccountStatus.ACTIVE.value
                    self.accounts.upsert(account)

        device, created = self.devices.register_if_absent(account.id, claim.fingerprint, source.current_client(), claim.posture)
        if created:
            self.audit.record(AuditAction.NEW_DEVICE, Outcome.SUCCESS,
                              f"New device detected: {device.browser} on {device.os}", account=account, origin=origin)

        signals = collect_signals(source, failed_attempts=account.failed_attempts, device_approved=device.approved,
                                  posture=device.posture, now=self.clock.now())
        policy = evaluate_policy(signals)
        score = policy.risk_score
        posture = device.posture

        self.audit.record(AuditAction.OTP_VERIFIED, Outcome.SUCCESS, f"OTP verified via {checked.value}",
                          account=account, risk_score=score, origin=origin)
        self.audit.record(
            AuditAction.ZERO_TRUST_CHECK, Outcome.SUCCESS,
            f"Signals: IP={origin.ip}, ISP={origin.isp}, Device={'Trusted' if device.approved else 'Untrusted'}, "
            f"Posture: OS={posture.os_updated}, AV={posture.antivirus_present}, Encrypted={posture.disk_encrypted}, "
            f"ScreenLock={posture.screen_lock_enabled}",
            account=account, risk_score=score, origin=origin,
        )
        self.audit.record(
            AuditAction.POLICY_DECISION, Outcome.BLOCKED if policy.blocked else Outcome.SUCCESS,
            f"Decision: {policy.decision.value.upper()} | Risk: {score}/100 | {'; '.join(policy.reasons) or 'No risk factors'}",
            account=account, risk_score=score, origin=origin,
        )

        if policy.blocked:
            self.audit.record(AuditAction.ACCESS_BLOCKED, Outcome.BLOCKED, f"Access denied: {', '.join(policy.reasons)}",
                              account=account, risk_score=score, origin=origin)
            logger.warning("access_blocked", account_id=account.id, risk_score=score, reasons=policy.reasons)
            return Result.fail(Failure.POLICY_BLOCKED, "Access denied by risk policy", value=policy), SessionContext(blocked=policy)

        token, jti, exp = issue_session(account.id, account.role, device.id, self.settings["JWT_SECRET"],
                                        self.settings["SESSION_TTL"], self.clock.now())
        self.tokens.upsert(SessionToken(account_id=account.id, device_id=device.id, jti=jti, expires_at=exp))
        self.audit.record(AuditAction.LOGIN_SUCCESS, Outcome.SUCCESS,
                          f"Login from {device.browser}/{device.os} | session issued", account=account,
                          risk_score=score, origin=origin)

        message = "Additional verification recommended" if policy.decision is Decision.STEP_UP_MFA else "Signed in"
        session = SessionContext(account_id=account.id, email=account.email, role=account.role, device_id=device.id,
                                 token=token, jti=jti, last_policy=policy)
        return Result.success(policy, message), session

    def _audit_otp_failure(self, pending: PendingChallenge, checked: Result, origin) -> None:
        actions = {
            Failure.CODE_MISMATCH: AuditAction.OTP_FAIL,
            Failure.OTP_EXPIRED: AuditAction.OTP_EXPIRED,
            Failure.OTP_ATTEMPTS_EXCEEDED: AuditAction.OTP_LOCKED,
        }
        details = checked.message
        if checked.failure is Failure.CODE_MISMATCH:
            details = f"Invalid OTP (attempt {checked.value}/{self.otp.max_attempts})"
        self.audit.record(actions.get(checked.failure, AuditAction.OTP_FAIL), Outcome.FAILURE, details,
                          account_id=pending.account_id, account_email=pending.email, origin=origin)

    # ------------------------------------------------------------------- session

    def logout(self, ctx: SessionContext, source: SignalSource):
        if ctx.account_id is not None:
            if ctx.jti:
                self._revoke(ctx.jti)
            self.audit.record(AuditAction.LOGOUT, Outcome.SUCCESS, "User logged out", account_id=ctx.account_id,
                              account_email=ctx.email, origin=source.current_origin())
        return Result.success(message="Signed out"), SessionContext()

    def _revoke(self, jti: str) -> None:
        token = self.tokens.find(jti=jti, fresh=True)
        if token is not None and not token.revoked:
            token.revoked = True
            self.tokens.upsert(token)

    def restore(self, ctx: SessionContext) -> SessionContext:
        """Drop an established session whose account or token is no longer valid."""
        if not ctx.authenticated:
            return ctx
        account = self.accounts.get(ctx.account_id, fresh=True)
        token = self.tokens.find(jti=ctx.jti, fresh=True)
        if (account is None or account.status != AccountStatus.ACTIVE.value or token is None
                or token.revoked or token.expires_at <= self.clock.now()):
            return SessionContext(blocked=ctx.blocked)
        if account.role != ctx.role or account.email != ctx.email:
            return replace(ctx, role=account.role, email=account.email)
        return ctx

    def authenticate_token(self, token: str) -> Result:
        """Resolve a bearer token to its account; value is ``(account, session_token)``."""
        try:
            payload = decode_token(token, self.settings["JWT_SECRET"], now=self.clock.now())
        except jwt.PyJWTError:
            return Result.fail(Failure.INVALID_CREDENTIALS, "Invalid or expired session")
        session = self.tokens.find(jti=payload.get("jti"), fresh=True)
        if session is None or session.revoked:
            return Result.fail(Failure.INVALID_CREDENTIALS, "Session revoked")
        account = self.accounts.get(session.account_id, fresh=True)
        if account is None or account.status != AccountStatus.ACTIVE.value:
            return Result.fail(Failure.INVALID_CREDENTIALS, "Account unavailable")
        return Result.success((account, session))

    def request_device_approval(self, ctx: SessionContext, source: SignalSource) -> Result:
        if not ctx.authenticated or ctx.device_id is None:
            return Result.fail(Failure.NO_PENDING_CHALLENGE, "Sign in first")
        device = self.devices.get(ctx.device_id)
        if device is None:
            return Result.fail(Failure.NOT_FOUND, "Device not found")
        if device.approved:
            return Result.success(device, "Device already approved")
        self.audit.record(AuditAction.DEVICE_APPROVAL_REQUEST, Outcome.SUCCESS, f"{device.browser}/{device.os}",
                          account_id=ctx.account_id, account_email=ctx.email, origin=source.current_origin())
        return Result.success(device, "Approval requested")
