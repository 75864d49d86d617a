from __future__ import annotations

from datetime import datetime, timezone

import pytest
import requests

from punch_core.models import Identity, LocationInfo, Success, WifiInfo
from punch_core.state import AttendanceState

ORG_ID = "3f1c2a4e-8b7d-4c1a-9e2f-5a6b7c8d9e0f"
USER_ID = "9a8b7c6d-5e4f-4a3b-8c2d-1e0f9a8b7c6d"

OFFICE_WIFI = WifiInfo(
    ssid="Office-5G",
    bssid="aa:bb:cc:dd:ee:ff",
    local_ip="192.168.1.20",
    public_ip="203.0.113.7",
    is_valid=True,
)
OFFICE_LOCATION = LocationInfo(
    latitude=19.07, longitude=72.87, address="Linking Road Mumbai Maharashtra", is_valid=True,
)
PUNCH_TIME = datetime(2026, 10, 19, 9, 1, 30, tzinfo=timezone.utc)


# ─── HTTP fakes ──────────────────────────────────────────────────

class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=""):
        self.status_code = status_code
        self._json = json_data
        self.text = text

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)


class FakeSession:
    def __init__(self, post_response=None, get_responses=None, post_error=None, get_error=None):
        self.headers = {"Authorization": "Bearer token-123"}
        self.post_response = post_response or FakeResponse(200, {"status": "success"})
        self.get_responses = list(get_responses or [])
        self.post_error = post_error
        self.get_error = get_error
        self.calls = []

    def post(self, url, **kwargs):
        files = kwargs.get("files") or {}
        self.calls.append(("POST", url, kwargs, {k: (v[0], v[2]) for k, v in files.items()}))
        if self.post_error is not None:
            raise self.post_error
        return self.post_response

    def get(self, url, **kwargs):
        self.calls.append(("GET", url, kwargs, None))
        if self.get_error is not None:
            raise self.get_error
        if len(self.get_responses) > 1:
            return self.get_responses.pop(0)
        return self.get_responses[0]


# ─── Pipeline fakes ──────────────────────────────────────────────

class FakeNetworkProbe:
    """Returns the queued WifiInfo values in order; the last one repeats."""

    def __init__(self, *results, connected=True):
        self.results = list(results) or [OFFICE_WIFI]
        self.connected = connected
        self.calls = []

    def resolve(self, announce_failures=False):
        self.calls.append(announce_failures)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]

    def is_connected(self):
        return self.connected


class FakeLocationProbe:
    def __init__(self, result=OFFICE_LOCATION, side_effect=None):
        self.result = result
        self.side_effect = side_effect
        self.calls = 0

    def resolve(self):
        self.calls += 1
        return self.result

    def resolve_with_address(self):
        self.calls += 1
        if self.side_effect is not None:
            self.side_effect()
        return self.result


class FakeCapture:
    def __init__(self, uri="file:///tmp/attendance_photo.jpg", error=None, side_effect=None):
        self.uri = uri
        self.error = error
        self.side_effect = side_effect
        self.calls = 0

    def capture(self):
        self.calls += 1
        if self.side_effect is not None:
            self.side_effect()
        if self.error is not None:
            raise self.error
        return self.uri


class FakeClient:
    source = "mobile"
    server_url = "https://hr.example.com"

    def __init__(self, outcome=None, today_state=None, side_effect=None):
        self.outcome = outcome if outcome is not None else Success()
        self.today_state = today_state
        self.side_effect = side_effect
        self.submitted = []
        self.log_fetches = []

    def submit(self, attempt, identity):
        self.submitted.append((attempt, identity))
        if self.side_effect is not None:
            self.side_effect()
        return self.outcome

    def fetch_today_logs(self, organization_id, user_id, force=False, today=None):
        self.log_fetches.append(force)
        if self.today_state is None:
            raise requests.ConnectionError("offline")
        return self.today_state

    def fetch_server_time(self):
        return PUNCH_TIME


class FakeClock:
    name = "clock-sync"
    synced = True

    def __init__(self, now=PUNCH_TIME):
        self._now = now
        self.resyncs = 0

    def now(self):
        return self._now

    def resync(self):
        self.resyncs += 1
        return True

    def start(self):
        pass

    def stop(self, timeout=5):
        pass


# ─── Fixtures ────────────────────────────────────────────────────

@pytest.fixture
def identity():
    return Identity(organization_id=ORG_ID, user_id=USER_ID)


@pytest.fixture
def state():
    return AttendanceState()


@pytest.fixture
def photo(tmp_path):
    path = tmp_path / "selfie.jpg"
    path.write_bytes(b"\xff\xd8\xff\xe0fake-jpeg\xff\xd9")
    return path.as_uri()


@pytest.fixture(autouse=True)
def agent_home(tmp_path, monkeypatch):
    monkeypatch.setenv("PUNCH_AGENT_HOME", str(tmp_path / "home"))
    return tmp_path / "home"
