from datetime import datetime, timedelta

import structlog

from models import RateWindow
from services.repository import Repository
from utils.locks import KeyedLock
from utils.results import Failure, Result

logger = structlog.get_logger(__name__)


class SlidingWindowLimiter:
    """Sliding-window attempt counter keyed by ``action:identity``.

    ``hit`` prunes expired timestamps, decides, and records the attempt in one
    locked step so a burst of parallel requests cannot slip past the limit.
    Denied attempts are not recorded.
    """

    def __init__(self, clock, locks: KeyedLock | None = None):
        self.clock = clock
        self.locks = locks or KeyedLock()
        self.windows = Repository(RateWindow)

    @staticmethod
    def key(action: str, identity: str) -> str:
        return f"{action}:{(identity or '').strip().lower()}"

    def hit(self, action: str, identity: str, limit: int, window: timedelta) -> Result:
        key = self.key(action, identity)
        with self.locks.hold(f"rate:{key}"):
            now = self.clock.now()
            row = self.windows.get(key, fresh=True) or RateWindow(key=key, hits=[])
            recent = [t for t in (row.hits or []) if now - datetime.fromisoformat(t) < window]
            if len(recent) >= limit:
                row.hits = recent
                self.windows.upsert(row)
                logger.warning("rate_limited", key=key, attempts=len(recent), limit=limit)
                seconds = int(window.total_seconds())
                return Result.fail(Failure.RATE_LIMITED, f"Too many attempts. Wait {seconds} seconds before retrying.")
            recent.append(now.isoformat())
            row.hits = recent
            self.windows.upsert(row)
        return Result.success(len(recent))
