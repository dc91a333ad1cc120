from datetime import datetime, timezone


class SystemClock:
    """Wall clock in naive UTC, the form every stored timestamp uses."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)
