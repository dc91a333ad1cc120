import hmac
import secrets
from datetime import timedelta

import structlog

from models import Channel, OtpChallenge, Purpose
from services.repository import Repository
from utils.locks import KeyedLock
from utils.results import Failure, Result

logger = structlog.get_logger(__name__)


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


class OtpManager:
    """One active challenge per (account, purpose); every touch of it is serialized."""

    def __init__(self, clock, ttl: timedelta = timedelta(minutes=5), max_attempts: int = 5, locks: KeyedLock | None = None):
        self.clock = clock
        self.ttl = ttl
        self.max_attempts = max_attempts
        self.locks = locks or KeyedLock()
        self.challenges = Repository(OtpChallenge)

    @staticmethod
    def _key(account_id: int, purpose: str) -> str:
        return f"otp:{account_id}:{purpose}"

    def active(self, account_id: int, purpose) -> OtpChallenge | None:
        return self.challenges.find(account_id=account_id, purpose=Purpose(purpose).value, fresh=True)

    def issue(self, account_id: int, purpose, channel) -> str:
        purpose, channel = Purpose(purpose).value, Channel(channel).value
        with self.locks.hold(self._key(account_id, purpose)):
            code = self._replace(account_id, purpose, channel)
        logger.info("otp_issued", account_id=account_id, purpose=purpose, channel=channel)
        return code

    def resend(self, account_id: int, purpose) -> Result:
        """Reissue on the channel chosen last time; value is ``(code, channel)``."""
        purpose = Purpose(purpose).value
        with self.locks.hold(self._key(account_id, purpose)):
            prior = self.active(account_id, purpose)
            channel = prior.channel if prior else Channel.EMAIL.value
            code = self._replace(account_id, purpose, channel)
        logger.info("otp_resent", account_id=account_id, purpose=purpose, channel=channel)
        return Result.success((code, channel))

    def _replace(self, account_id: int, purpose: str, channel: str) -> str:
        # updated in place so the (account, purpose) row never exists twice
        now = self.clock.now()
        code = generate_code()
        challenge = self.active(account_id, purpose) or OtpChallenge(account_id=account_id, purpose=purpose)
        challenge.code = code
        challenge.channel = channel
        challenge.issued_at = now
        challenge.expires_at = now + self.ttl
        challenge.attempts = 0
        self.challenges.upsert(challenge)
        return code

    def verify(self, account_id: int, purpose, submitted: str) -> Result:
        """On success the value is the channel the code was delivered on."""
        purpose = Purpose(purpose).value
        with self.locks.hold(self._key(account_id, purpose)):
            challenge = self.active(account_id, purpose)
            if challenge is None:
                return Result.fail(Failure.NOT_FOUND, "OTP expired or not sent. Please request a new one.")
            if challenge.attempts >= self.max_attempts:
                self.challenges.delete(challenge)
                return Result.fail(Failure.OTP_ATTEMPTS_EXCEEDED, "Too many attempts. Request a new OTP.")
            if self.clock.now() > challenge.expires_at:
                self.challenges.delete(challenge)
                return Result.fail(Failure.OTP_EXPIRED, "OTP expired. Request a new one.")
            if not hmac.compare_digest(challenge.code.encode(), str(submitted or "").strip().encode()):
                challenge.attempts += 1
                attempts = challenge.attempts
                self.challenges.upsert(challenge)
                remaining = max(self.max_attempts - attempts, 0)
                return Result.fail(Failure.CODE_MISMATCH, f"Invalid OTP ({remaining} attempts remaining)", value=attempts)
            channel = challenge.channel
            self.challenges.delete(challenge)
        return Result.success(channel)

    def discard_all(self, account_id: int) -> None:
        for purpose in Purpose:
            with self.locks.hold(self._key(account_id, purpose.value)):
                self.challenges.delete_where(account_id=account_id, purpose=purpose.value)
