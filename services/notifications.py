import structlog

from models import Channel

logger = structlog.get_logger(__name__)


class Notifier:
    """Outbound channel for one-time passcodes."""

    def deliver(self, destination: str, code: str, purpose: str, channel: str) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Stand-in delivery: the code only ever reaches the application log."""

    def deliver(self, destination: str, code: str, purpose: str, channel: str) -> None:
        logger.info("otp_delivery", destination=destination, code=code, purpose=purpose, channel=channel)


def destinations(email: str, mobile: str, channel) -> list[tuple[str, str]]:
    channel = Channel(channel)
    if channel is Channel.EMAIL:
        return [(email, Channel.EMAIL.value)]
    if channel is Channel.MOBILE:
        return [(mobile, Channel.MOBILE.value)]
    return [(email, Channel.EMAIL.value), (mobile, Channel.MOBILE.value)]


def deliver_quietly(notifier: Notifier, email: str, mobile: str, code: str, purpose: str, channel) -> int:
    """Fire and forget; returns how many destinations accepted the code."""
    delivered = 0
    for destination, via in destinations(email, mobile, channel):
        try:
            notifier.deliver(destination, code, purpose, via)
            delivered += 1
        except Exception:
            logger.exception("otp_delivery_failed", destination=mask(destination), purpose=purpose, channel=via)
    return delivered


def mask(destination: str) -> str:
    if not destination:
        return ""
    if "@" in destination:
        name, _, domain = destination.partition("@")
        return f"{name[:1]}***@{domain}"
    return f"***{destination[-4:]}"
