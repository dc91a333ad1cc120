"""Device registry.

A device is whatever fingerprint the client presents together with the posture
it attests to. Neither is verified here: both are caller supplied and can be
forged, so approval by an operator is the only trust this module grants.
"""
import structlog
from sqlalchemy.exc import IntegrityError

from database import db
from models import Device
from services.repository import Repository
from services.signals import ClientInfo, Posture
from utils.locks import KeyedLock
from utils.results import Failure, Result

logger = structlog.get_logger(__name__)


class DeviceRegistry:
    def __init__(self, clock, locks: KeyedLock | None = None):
        self.clock = clock
        self.locks = locks or KeyedLock()
        self.devices = Repository(Device)

    def resolve(self, account_id: int, fingerprint: str) -> Device | None:
        return self.devices.find(account_id=account_id, fingerprint=fingerprint, fresh=True)

    def get(self, device_id: int) -> Device | None:
        return self.devices.get(device_id, fresh=True)

    def list_devices(self, account_id: int | None = None) -> list[Device]:
        if account_id is None:
            return self.devices.list(Device.first_seen.desc())
        return self.devices.list(Device.first_seen.desc(), account_id=account_id)

    def register_if_absent(self, account_id: int, fingerprint: str, client: ClientInfo, posture: Posture) -> tuple[Device, bool]:
        """Return ``(device, created)``; ``created`` is True for exactly one caller per pair."""
        with self.locks.hold(f"device:{account_id}:{fingerprint}"):
            device = self.resolve(account_id, fingerprint)
            if device is not None:
                return device, False
            device = Device(
                account_id=account_id,
                fingerprint=fingerprint,
                user_agent=client.user_agent[:512],
                os=client.os,
                browser=client.browser,
                approved=False,
                os_updated=posture.os_updated,
                antivirus_present=posture.antivirus_present,
                disk_encrypted=posture.disk_encrypted,
                screen_lock_enabled=posture.screen_lock_enabled,
                first_seen=self.clock.now(),
            )
            try:
                self.devices.upsert(device)
            except IntegrityError:
                # another worker process inserted the same pair first
                db.session.rollback()
                return self.resolve(account_id, fingerprint), False
        logger.info("device_registered", account_id=account_id, device_id=device.id, os=device.os, browser=device.browser)
        return device, True

    def approve(self, device_id: int, approver_id: int | None) -> Result:
        device = self.get(device_id)
        if device is None:
            return Result.fail(Failure.NOT_FOUND, "Device not found")
        device.approved = True
        device.approved_by = approver_id
        self.devices.upsert(device)
        return Result.success(device)

    def deny(self, device_id: int) -> Result:
        # destructive: the next sighting of this fingerprint is a brand-new device
        device = self.get(device_id)
        if device is None:
            return Result.fail(Failure.NOT_FOUND, "Device not found")
        summary = device.to_dict()
        self.devices.delete(device)
        return Result.success(summary)

    def forget_account(self, account_id: int) -> int:
        return self.devices.delete_where(account_id=account_id)
