from dataclasses import dataclass

from services.admin import AdminService
from services.attestation import DeviceRegistry
from services.audit import AuditSink
from services.auth_flow import AuthService
from services.notifications import LogNotifier
from services.otp import OtpManager
from services.rate_limit import SlidingWindowLimiter
from utils.clock import SystemClock
from utils.locks import KeyedLock


@dataclass
class Engine:
    auth: AuthService
    admin: AdminService
    audit: AuditSink
    devices: DeviceRegistry
    otp: OtpManager
    limiter: SlidingWindowLimiter


def build_engine(settings, clock=None, notifier=None) -> Engine:
    """Wire the services together. ``settings`` is any mapping with the ``Config`` keys."""
    clock = clock or SystemClock()
    locks = KeyedLock()
    audit = AuditSink(clock, capacity=settings["AUDIT_CAPACITY"])
    otp = OtpManager(clock, ttl=settings["OTP_TTL"], max_attempts=settings["OTP_MAX_ATTEMPTS"], locks=locks)
    devices = DeviceRegistry(clock, locks=locks)
    limiter = SlidingWindowLimiter(clock, locks=locks)
    auth = AuthService(clock=clock, audit=audit, otp=otp, devices=devices, limiter=limiter,
                       notifier=notifier or LogNotifier(), settings=settings, locks=locks)
    admin = AdminService(clock=clock, audit=audit, devices=devices, otp=otp, settings=settings, locks=locks)
    return Engine(auth=auth, admin=admin, audit=audit, devices=devices, otp=otp, limiter=limiter)
