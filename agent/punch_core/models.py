"""
Value objects passed between the probes, the orchestrator, and the API client.

Probe results are frozen: a PunchAttempt keeps the exact WifiInfo and
LocationInfo it was built with, whatever the background re-probe does later.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple


class PunchMode(str, Enum):
    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"

    @property
    def label(self) -> str:
        return "Check-in" if self is PunchMode.CHECK_IN else "Check-out"


class ErrorKind(str, Enum):
    WIFI_UNAVAILABLE = "wifi_unavailable"
    PERMISSION_DENIED = "permission_denied"
    LOCATION_UNAVAILABLE = "location_unavailable"
    CAPTURE_FAILED = "capture_failed"
    INVALID_IDENTIFIER = "invalid_identifier"
    NETWORK_UNREACHABLE = "network_unreachable"
    TIMEOUT = "timeout"
    SERVER_REJECTED = "server_rejected"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class WifiInfo:
    ssid: str = ""
    bssid: str = ""
    local_ip: str = ""
    public_ip: str = ""
    is_valid: bool = False

    @classmethod
    def invalid(cls, local_ip="", public_ip=""):
        return cls(local_ip=local_ip, public_ip=public_ip, is_valid=False)


@dataclass(frozen=True)
class LocationInfo:
    latitude: float = 0.0
    longitude: float = 0.0
    address: str = ""
    is_valid: bool = False
    permission_denied: bool = False

    @classmethod
    def denied(cls):
        return cls(is_valid=False, permission_denied=True)

    @classmethod
    def unavailable(cls):
        return cls(is_valid=False)


@dataclass(frozen=True)
class Identity:
    organization_id: str
    user_id: str


@dataclass(frozen=True)
class PunchAttempt:
    mode: PunchMode
    captured_image_uri: str
    wifi: WifiInfo
    location: LocationInfo
    device_info: str
    started_at: datetime


@dataclass(frozen=True)
class LogEntry:
    type: str
    timestamp: Optional[datetime]
    raw: dict = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data):
        return cls(
            type=str(data.get("type") or ""),
            timestamp=parse_timestamp(data.get("timestamp")),
            raw=dict(data),
        )


# ─── Submission outcomes ─────────────────────────────────────────

@dataclass(frozen=True)
class Success:
    pass


@dataclass(frozen=True)
class Anomaly:
    reasons: Tuple[str, ...] = ()

    @property
    def reason_text(self) -> str:
        return ", ".join(self.reasons) if self.reasons else "unknown reason"


@dataclass(frozen=True)
class Other:
    status: str


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str = ""
    status_code: Optional[int] = None


# ─── Timestamps ──────────────────────────────────────────────────

def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 string from the server. Naive values are UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")
