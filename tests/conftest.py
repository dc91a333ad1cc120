"""Shared fixtures: a throwaway SQLite file, a frozen clock and captured OTPs."""
import threading
from datetime import datetime, timedelta

import pytest

from app import create_app
from config import Config
from database import db
from services.notifications import Notifier
from services.session_store import SessionContext
from services.signals import ClientInfo, DeviceClaim, Origin, Posture, StaticSignalSource

CHROME_ON_WINDOWS = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"
HEALTHY = Posture(os_updated=True, antivirus_present=True, disk_encrypted=True, screen_lock_enabled=True)
PASSWORD = "Secret@123"


class FrozenClock:
    def __init__(self, moment=datetime(2024, 3, 4, 14, 0, 0)):
        self.moment = moment

    def now(self):
        return self.moment

    def advance(self, **kwargs):
        self.moment += timedelta(**kwargs)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def deliver(self, destination, code, purpose, channel):
        self.sent.append({"destination": destination, "code": code, "purpose": purpose, "channel": channel})

    @property
    def last_code(self):
        return self.sent[-1]["code"]


def make_source(country="United States", isp="Comcast", ip="203.0.113.7", timezone="", user_agent=CHROME_ON_WINDOWS):
    origin = Origin(ip=ip, country=country, city="Springfield", isp=isp, timezone=timezone)
    return StaticSignalSource(origin, ClientInfo.from_user_agent(user_agent))


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(tmp_path, clock, notifier):
    class TestConfig(Config):
        TESTING = True
        SECRET_KEY = "test-secret"
        JWT_SECRET = "test-jwt-secret"
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'zerotrust-test.db'}"
        GEOIP_URL = ""
        LOG_LEVEL = "WARNING"
        LOG_JSON = False

    app = create_app(TestConfig, clock=clock, notifier=notifier)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def engine(app):
    return app.extensions["zerotrust"]


@pytest.fixture
def source():
    return make_source()


@pytest.fixture
def active_account(engine, notifier, source):
    """A verified USER account; its registration device is left unapproved."""
    result, ctx = engine.auth.register(SessionContext(), "Ada Lovelace", "ada@example.com", "+15550001111", PASSWORD, source)
    assert result.ok
    verified, _ = engine.auth.verify_otp(ctx, notifier.last_code, DeviceClaim("fp-registration", HEALTHY), source)
    assert verified.ok
    return result.value


def sign_in(engine, notifier, email, password, claim, source, channel="email"):
    """Run login -> send OTP -> verify and return the final ``(result, ctx)``."""
    result, ctx = engine.auth.login(SessionContext(), email, password, source)
    if not result:
        return result, ctx
    sent, ctx = engine.auth.send_login_otp(ctx, channel, source)
    assert sent.ok
    return engine.auth.verify_otp(ctx, notifier.last_code, claim, source)


def run_concurrently(app, count, work):
    """Release ``count`` threads into ``work()`` at once, each in its own app context; return what they got."""
    barrier = threading.Barrier(count)
    results, errors = [], []

    def worker():
        with app.app_context():
            barrier.wait()
            try:
                results.append(work())
            except Exception as e:
                errors.append(e)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    if errors:
        raise errors[0]
    return results
