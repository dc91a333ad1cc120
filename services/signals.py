"""Contextual signals for one authentication attempt.

Everything here is best effort: a failed geolocation lookup degrades to
``Origin.unknown()`` instead of failing the login. The fingerprint and posture
a client reports arrive through ``DeviceClaim`` and are untrusted input; the
risk score only ever reflects what the caller claimed.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests
import structlog

logger = structlog.get_logger(__name__)

UNKNOWN = "Unknown"


@dataclass(frozen=True)
class Origin:
    ip: str = "0.0.0.0"
    country: str = UNKNOWN
    city: str = UNKNOWN
    region: str = ""
    isp: str = UNKNOWN
    timezone: str = ""
    lat: float = 0.0
    lon: float = 0.0

    @classmethod
    def unknown(cls, ip: str = "0.0.0.0") -> "Origin":
        return cls(ip=ip or "0.0.0.0")

    @property
    def location(self) -> str:
        return f"{self.city}, {self.country}"

    def to_dict(self) -> dict:
        return asdict(self)


def detect_os(user_agent: str) -> str:
    ua = user_agent or ""
    if "Windows" in ua:
        return "Windows"
    if "Android" in ua:
        return "Android"
    if "iPhone" in ua or "iPad" in ua or "iOS" in ua:
        return "iOS"
    if "Mac" in ua:
        return "macOS"
    if "Linux" in ua:
        return "Linux"
    return UNKNOWN


def detect_browser(user_agent: str) -> str:
    ua = user_agent or ""
    if "Edg" in ua:
        return "Edge"
    if "Chrome" in ua:
        return "Chrome"
    if "Firefox" in ua:
        return "Firefox"
    if "Safari" in ua:
        return "Safari"
    return UNKNOWN


@dataclass(frozen=True)
class ClientInfo:
    user_agent: str = ""
    os: str = UNKNOWN
    browser: str = UNKNOWN

    @classmethod
    def from_user_agent(cls, user_agent: str) -> "ClientInfo":
        return cls(user_agent=user_agent or "", os=detect_os(user_agent), browser=detect_browser(user_agent))

    def to_dict(self) -> dict:
        return asdict(self)


# Alternate keys accepted from browser clients
_POSTURE_ALIASES = {
    "os_updated": ("os_updated", "hasUpdatedOS"),
    "antivirus_present": ("antivirus_present", "hasAV"),
    "disk_encrypted": ("disk_encrypted", "diskEncrypted"),
    "screen_lock_enabled": ("screen_lock_enabled", "screenLockEnabled"),
}


@dataclass(frozen=True)
class Posture:
    """Device hygiene as attested by the client. Missing flags count as failing."""

    os_updated: bool = False
    antivirus_present: bool = False
    disk_encrypted: bool = False
    screen_lock_enabled: bool = False

    @classmethod
    def from_dict(cls, data) -> "Posture":
        if not isinstance(data, dict):
            data = {}
        values = {}
        for name, keys in _POSTURE_ALIASES.items():
            values[name] = any(bool(data.get(k)) for k in keys)
        return cls(**values)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DeviceClaim:
    fingerprint: str
    posture: Posture = field(default_factory=Posture)


@dataclass(frozen=True)
class SignalSnapshot:
    origin: Origin
    client: ClientInfo
    login_time: datetime
    login_hour: int
    failed_attempts: int
    device_approved: bool
    posture: Posture

    def to_dict(self) -> dict:
        return {
            "origin": self.origin.to_dict(),
            "client": self.client.to_dict(),
            "login_time": self.login_time.isoformat(),
            "login_hour": self.login_hour,
            "failed_attempts": self.failed_attempts,
            "device_approved": self.device_approved,
            "posture": self.posture.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SignalSnapshot":
        return cls(
            origin=Origin(**data["origin"]),
            client=ClientInfo(**data["client"]),
            login_time=datetime.fromisoformat(data["login_time"]),
            login_hour=data["login_hour"],
            failed_attempts=data["failed_attempts"],
            device_approved=data["device_approved"],
            posture=Posture(**data["posture"]),
        )


class SignalSource:
    """Where a login attempt came from. Implementations must not raise."""

    def current_origin(self) -> Origin:
        raise NotImplementedError

    def current_client(self) -> ClientInfo:
        raise NotImplementedError


class StaticSignalSource(SignalSource):
    def __init__(self, origin: Origin | None = None, client: ClientInfo | None = None):
        self.origin = origin or Origin.unknown()
        self.client = client or ClientInfo()

    def current_origin(self) -> Origin:
        return self.origin

    def current_client(self) -> ClientInfo:
        return self.client


def _float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class IpApiSignalSource(SignalSource):
    """Resolves the caller's IP through an ipapi.co compatible endpoint, once."""

    def __init__(self, ip: str, user_agent: str, url: str = "https://ipapi.co/{ip}/json/",
                 timeout: float = 3.0, session=None):
        self.ip = ip or "0.0.0.0"
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._client = ClientInfo.from_user_agent(user_agent)
        self._origin = None

    def current_client(self) -> ClientInfo:
        return self._client

    def current_origin(self) -> Origin:
        if self._origin is None:
            self._origin = self._lookup()
        return self._origin

    def _lookup(self) -> Origin:
        try:
            resp = self._session.get(self.url.format(ip=self.ip), timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("geoip_lookup_failed", ip=self.ip, error=str(e))
            return Origin.unknown(self.ip)
        if not isinstance(data, dict) or data.get("error"):
            # private and reserved ranges come back as {"error": true, "reason": ...}
            logger.info("geoip_no_data", ip=self.ip)
            return Origin.unknown(self.ip)
        return Origin(
            ip=data.get("ip") or self.ip,
            country=data.get("country_name") or data.get("country") or UNKNOWN,
            city=data.get("city") or UNKNOWN,
            region=data.get("region") or "",
            isp=data.get("org") or UNKNOWN,
            timezone=data.get("timezone") or "",
            lat=_float(data.get("latitude")),
            lon=_float(data.get("longitude")),
        )


def local_hour(moment: datetime, tz_name: str) -> int:
    """Hour of ``moment`` (naive UTC) on the wall clock of ``tz_name``; UTC if unknown."""
    if not tz_name:
        return moment.hour
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return moment.hour
    return moment.replace(tzinfo=timezone.utc).astimezone(zone).hour


def collect_signals(source: SignalSource, *, failed_attempts: int, device_approved: bool,
                    posture: Posture, now: datetime) -> SignalSnapshot:
    origin = source.current_origin()
    return SignalSnapshot(
        origin=origin,
        client=source.current_client(),
        login_time=now,
        login_hour=local_hour(now, origin.timezone),
        failed_attempts=failed_attempts,
        device_approved=device_approved,
        posture=posture,
    )
