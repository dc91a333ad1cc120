from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from database import db
from models import Account, AccountStatus, AuditAction, Outcome, Role, SessionToken
from services.auth_flow import normalize_email, validate_profile
from services.repository import Repository
from services.signals import Origin
from utils.locks import KeyedLock
from utils.results import Failure, Result
from utils.security import hash_password


@dataclass(frozen=True)
class Operator:
    """Who performed an administrative action. Role checks happen before we get here."""

    account_id: int | None = None
    email: str = "system"
    origin: Origin | None = None


class AdminService:
    def __init__(self, *, clock, audit, devices, otp, settings, locks: KeyedLock | None = None):
        self.clock = clock
        self.audit = audit
        self.devices = devices
        self.otp = otp
        self.settings = settings
        self.locks = locks or KeyedLock()
        self.accounts = Repository(Account)
        self.tokens = Repository(SessionToken)

    def _record(self, operator: Operator, action: AuditAction, details: str) -> None:
        self.audit.record(action, Outcome.SUCCESS, details, account_id=operator.account_id,
                          account_email=operator.email, origin=operator.origin)

    def list_accounts(self) -> list[Account]:
        return self.accounts.list(Account.created_at)

    def get_account(self, account_id: int) -> Account | None:
        return self.accounts.get(account_id, fresh=True)

    def create_account(self, operator: Operator, full_name: str, email: str, mobile: str, password: str,
                       role: str = Role.USER.value) -> Result:
        email = normalize_email(email)
        problem = validate_profile(full_name, email, mobile, password)
        if problem:
            return Result.fail(Failure.VALIDATION, problem)
        try:
            role = Role(role).value
        except ValueError:
            return Result.fail(Failure.VALIDATION, f"Unknown role: {role}")

        with self.locks.hold(f"email:{email}"):
            if self.accounts.find(email=email) is not None:
                return Result.fail(Failure.DUPLICATE_EMAIL, "Email already exists")
            account = Account(full_name=full_name.strip(), email=email, mobile=mobile.strip(),
                              pass_hash=hash_password(password), role=role, status=AccountStatus.ACTIVE.value,
                              failed_attempts=0, created_at=self.clock.now())
            try:
                self.accounts.upsert(account)
            except IntegrityError:
                db.session.rollback()
                return Result.fail(Failure.DUPLICATE_EMAIL, "Email already exists")
        self._record(operator, AuditAction.USER_CREATED, f"Created user: {email} [{role}]")
        return Result.success(account)

    def update_account(self, operator: Operator, account_id: int, **changes) -> Result:
        """Apply any of full_name, email, mobile, role, status."""
        unknown = set(changes) - {"full_name", "email", "mobile", "role", "status"}
        if unknown:
            return Result.fail(Failure.VALIDATION, f"Cannot update: {', '.join(sorted(unknown))}")

        with self.locks.hold(f"account:{account_id}"):
            account = self.get_account(account_id)
            if account is None:
                return Result.fail(Failure.NOT_FOUND, "Account not found")

            if "email" in changes:
                email = normalize_email(changes["email"])
                other = self.accounts.find(email=email)
                if other is not None and other.id != account.id:
                    return Result.fail(Failure.DUPLICATE_EMAIL, "Email already exists")
                changes["email"] = email
            problem = validate_profile(changes.get("full_name", account.full_name), changes.get("email", account.email),
                                       changes.get("mobile", account.mobile), None)
            if problem:
                return Result.fail(Failure.VALIDATION, problem)
            try:
                if "role" in changes:
                    changes["role"] = Role(changes["role"]).value
                if "status" in changes:
                    changes["status"] = AccountStatus(changes["status"]).value
            except ValueError as e:
                return Result.fail(Failure.VALIDATION, str(e))

            for field, value in changes.items():
                setattr(account, field, value.strip() if isinstance(value, str) else value)
            if "status" in changes:
                self._apply_status(account, changes["status"])
            try:
                self.accounts.upsert(account)
            except IntegrityError:
                db.session.rollback()
                return Result.fail(Failure.DUPLICATE_EMAIL, "Email already exists")
            email = account.email
        self._record(operator, AuditAction.USER_UPDATED, f"Updated user: {email}")
        return Result.success(account)

    def _apply_status(self, account: Account, status: str) -> None:
        account.status = status
        if status == AccountStatus.LOCKED.value:
            account.locked_until = self.clock.now() + self.settings["LOCKOUT_DURATION"]
        elif status == AccountStatus.ACTIVE.value:
            account.failed_attempts = 0
            account.locked_until = None

    def change_role(self, operator: Operator, account_id: int, role: str) -> Result:
        try:
            role = Role(role).value
        except ValueError:
            return Result.fail(Failure.VALIDATION, f"Unknown role: {role}")
        with self.locks.hold(f"account:{account_id}"):
            account = self.get_account(account_id)
            if account is None:
                return Result.fail(Failure.NOT_FOUND, "Account not found")
            account.role = role
            self.accounts.upsert(account)
            email = account.email
        self._record(operator, AuditAction.ROLE_CHANGED, f"{email} -> {role}")
        return Result.success(account)

    def toggle_status(self, operator: Operator, account_id: int) -> Result:
        """Flip active and disabled; any other status becomes active."""
        with self.locks.hold(f"account:{account_id}"):
            account = self.get_account(account_id)
            if account is None:
                return Result.fail(Failure.NOT_FOUND, "Account not found")
            target = AccountStatus.DISABLED if account.status == AccountStatus.ACTIVE.value else AccountStatus.ACTIVE
            self._apply_status(account, target.value)
            self.accounts.upsert(account)
            email = account.email
        self._record(operator, AuditAction.USER_STATUS_CHANGED, f"{email} -> {target.value}")
        return Result.success(account)

    def set_status(self, operator: Operator, account_id: int, status: str) -> Result:
        try:
            status = AccountStatus(status).value
        except ValueError:
            return Result.fail(Failure.VALIDATION, f"Unknown status: {status}")
        with self.locks.hold(f"account:{account_id}"):
            account = self.get_account(account_id)
            if account is None:
                return Result.fail(Failure.NOT_FOUND, "Account not found")
            self._apply_status(account, status)
            self.accounts.upsert(account)
            email = account.email
        self._record(operator, AuditAction.USER_STATUS_CHANGED, f"{email} -> {status}")
        return Result.success(account)

    def unlock(self, operator: Operator, account_id: int) -> Result:
        with self.locks.hold(f"account:{account_id}"):
            account = self.get_account(account_id)
            if account is None:
                return Result.fail(Failure.NOT_FOUND, "Account not found")
            self._apply_status(account, AccountStatus.ACTIVE.value)
            self.accounts.upsert(account)
            email = account.email
        self._record(operator, AuditAction.USER_UNLOCKED, f"{email} unlocked by admin")
        return Result.success(account)

    def delete_account(self, operator: Operator, account_id: int) -> Result:
        with self.locks.hold(f"account:{account_id}"):
            account = self.get_account(account_id)
            if account is None:
                return Result.fail(Failure.NOT_FOUND, "Account not found")
            email = account.email
            self.otp.discard_all(account_id)
            self.devices.forget_account(account_id)
            self.tokens.delete_where(account_id=account_id)
            self.accounts.delete(account)
        self._record(operator, AuditAction.USER_DELETED, f"Deleted: {email}")
        return Result.success(email)

    def list_devices(self, account_id: int | None = None):
        return self.devices.list_devices(account_id)

    def approve_device(self, operator: Operator, device_id: int) -> Result:
        result = self.devices.approve(device_id, operator.account_id)
        if result:
            self._record(operator, AuditAction.DEVICE_APPROVED, f"Device {device_id} approved")
        return result

    def deny_device(self, operator: Operator, device_id: int) -> Result:
        result = self.devices.deny(device_id)
        if result:
            self._record(operator, AuditAction.DEVICE_DENIED, f"Device {device_id} removed")
        return result
