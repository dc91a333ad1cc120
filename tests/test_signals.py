from datetime import datetime

import pytest
import requests

from services.notifications import Notifier, deliver_quietly, mask
from services.signals import IpApiSignalSource, Origin, Posture, detect_browser, detect_os, local_hour


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status}")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def get(self, url, timeout):
        self.calls.append(url)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


class TestUserAgent:
    @pytest.mark.parametrize("ua, os_name, browser", [
        ("Mozilla/5.0 (Windows NT 10.0) Chrome/120.0 Safari/537.36 Edg/120.0", "Windows", "Edge"),
        ("Mozilla/5.0 (Linux; Android 14) Chrome/120.0 Mobile Safari/537.36", "Android", "Chrome"),
        ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Safari/604.1", "iOS", "Safari"),
        ("Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) Gecko/20100101 Firefox/121.0", "macOS", "Firefox"),
        ("Mozilla/5.0 (X11; Linux x86_64) Gecko/20100101 Firefox/121.0", "Linux", "Firefox"),
        ("curl/8.4.0", "Unknown", "Unknown"),
    ])
    def test_detection(self, ua, os_name, browser):
        assert (detect_os(ua), detect_browser(ua)) == (os_name, browser)


class TestPosture:
    def test_missing_flags_fail(self):
        assert Posture.from_dict(None) == Posture()
        assert Posture.from_dict({"hasAV": True}) == Posture(antivirus_present=True)

    def test_non_mapping_claims_fail_every_check(self):
        for claim in ("yes", ["hasAV"], 1, True):
            assert Posture.from_dict(claim) == Posture()

    def test_snake_case_keys(self):
        posture = Posture.from_dict({"os_updated": 1, "disk_encrypted": True})
        assert posture.os_updated and posture.disk_encrypted
        assert not posture.screen_lock_enabled


class TestIpApiSignalSource:
    def test_lookup_is_cached(self):
        session = FakeSession(FakeResponse({
            "ip": "8.8.8.8", "country_name": "United States", "city": "Mountain View", "org": "GOOGLE",
            "timezone": "America/Los_Angeles", "latitude": 37.4, "longitude": "-122.1",
        }))
        source = IpApiSignalSource("8.8.8.8", "curl/8", session=session)
        origin = source.current_origin()
        assert source.current_origin() is origin
        assert len(session.calls) == 1
        assert session.calls[0] == "https://ipapi.co/8.8.8.8/json/"
        assert (origin.country, origin.isp, origin.lon) == ("United States", "GOOGLE", -122.1)
        assert origin.location == "Mountain View, United States"

    @pytest.mark.parametrize("response", [
        requests.ConnectionError("down"),
        requests.Timeout("slow"),
        FakeResponse({}, status=429),
        FakeResponse(ValueError("not json")),
        FakeResponse({"error": True, "reason": "Reserved IP Address"}),
    ])
    def test_failures_fall_back_to_unknown(self, response):
        origin = IpApiSignalSource("10.0.0.1", "", session=FakeSession(response)).current_origin()
        assert origin == Origin.unknown("10.0.0.1")


def test_local_hour():
    moment = datetime(2024, 1, 1, 14, 30)
    assert local_hour(moment, "") == 14
    assert local_hour(moment, "Not/AZone") == 14
    assert local_hour(moment, "America/New_York") == 9


class TestNotifications:
    def test_failures_do_not_propagate(self):
        class Flaky(Notifier):
            def __init__(self):
                self.sent = []

            def deliver(self, destination, code, purpose, channel):
                if channel == "mobile":
                    raise RuntimeError("sms gateway down")
                self.sent.append(destination)

        notifier = Flaky()
        assert deliver_quietly(notifier, "a@example.com", "+15550001111", "123456", "login", "both") == 1
        assert notifier.sent == ["a@example.com"]

    def test_mask(self):
        assert mask("ada@example.com") == "a***@example.com"
        assert mask("+15550001111") == "***1111"
        assert mask("") == ""
