import pytest

from app import DEMO_ACCOUNTS, DEMO_PASSWORD, seed_demo
from models import AccountStatus, Device, OtpChallenge
from services.admin import Operator
from services.session_store import SessionContext
from services.signals import ClientInfo, Posture
from utils.results import Failure
from utils.security import verify_password

OPERATOR = Operator(account_id=1, email="root@example.com")


@pytest.fixture
def created(engine):
    return engine.admin.create_account(OPERATOR, "Alan Turing", "alan@example.com", "+15550003333", "Secret@123", "ADMIN").value


class TestAccounts:
    def test_create_is_active_and_audited(self, engine, created):
        assert (created.status, created.role) == (AccountStatus.ACTIVE.value, "ADMIN")
        event = engine.audit.recent(1)[0]
        assert (event.action, event.account_email) == ("USER_CREATED", "root@example.com")
        assert event.details == "Created user: alan@example.com [ADMIN]"

    def test_create_rejects_bad_input(self, engine, created):
        assert engine.admin.create_account(OPERATOR, "A", "alan@example.com", "+1", "Secret@123").failure is Failure.DUPLICATE_EMAIL
        assert engine.admin.create_account(OPERATOR, "A", "b@example.com", "+1", "Secret@123", "ROOT").failure is Failure.VALIDATION

    def test_update(self, engine, created):
        result = engine.admin.update_account(OPERATOR, created.id, full_name="Alan M. Turing", email="TURING@example.com")
        assert result.ok
        assert result.value.email == "turing@example.com"
        assert engine.admin.update_account(OPERATOR, created.id, pass_hash="x").failure is Failure.VALIDATION
        assert engine.admin.update_account(OPERATOR, 404, full_name="x").failure is Failure.NOT_FOUND

    def test_update_rejects_taken_email(self, engine, created):
        engine.admin.create_account(OPERATOR, "Other", "other@example.com", "+1", "Secret@123")
        result = engine.admin.update_account(OPERATOR, created.id, email="other@example.com")
        assert result.failure is Failure.DUPLICATE_EMAIL

    def test_toggle_status(self, engine, created):
        assert engine.admin.toggle_status(OPERATOR, created.id).value.status == "disabled"
        assert engine.admin.toggle_status(OPERATOR, created.id).value.status == "active"

    def test_unlock_clears_lockout(self, engine, source, created):
        for _ in range(5):
            engine.auth.login(SessionContext(), "alan@example.com", "nope", source)
        assert engine.admin.get_account(created.id).status == "locked"
        account = engine.admin.unlock(OPERATOR, created.id).value
        assert (account.status, account.failed_attempts, account.locked_until) == ("active", 0, None)
        assert engine.auth.login(SessionContext(), "alan@example.com", "Secret@123", source)[0].ok

    def test_delete_removes_dependents(self, engine, created):
        account_id = created.id
        engine.otp.issue(account_id, "login", "email")
        engine.devices.register_if_absent(account_id, "fp", ClientInfo(), Posture())
        assert engine.admin.delete_account(OPERATOR, account_id).value == "alan@example.com"
        assert engine.admin.get_account(account_id) is None
        assert OtpChallenge.query.filter_by(account_id=account_id).count() == 0
        assert Device.query.filter_by(account_id=account_id).count() == 0
        assert engine.admin.delete_account(OPERATOR, account_id).failure is Failure.NOT_FOUND


class TestDevices:
    def test_approve_and_deny_are_audited(self, engine, created):
        device, _ = engine.devices.register_if_absent(created.id, "fp", ClientInfo(), Posture())
        assert engine.admin.approve_device(OPERATOR, device.id).value.approved
        assert engine.audit.recent(1)[0].action == "DEVICE_APPROVED"
        assert engine.admin.deny_device(OPERATOR, device.id).ok
        assert engine.audit.recent(1)[0].action == "DEVICE_DENIED"
        assert engine.admin.list_devices(created.id) == []


def test_seed_demo_is_idempotent(app, engine):
    assert seed_demo(app) == len(DEMO_ACCOUNTS)
    assert seed_demo(app) == 0
    emails = {a.email for a in engine.admin.list_accounts()}
    assert emails == {email for _, email, _, _ in DEMO_ACCOUNTS}
    assert all(verify_password(a.pass_hash, DEMO_PASSWORD) for a in engine.admin.list_accounts())
