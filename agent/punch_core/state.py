"""
AttendanceState — single source of truth for what the user sees.

Mutated only by a finished punch (success or anomaly) or by reconciling
with today's logs from the server. Never changed speculatively: the
check-in/out affordance must not show a state the server has not confirmed.
"""

import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import List, Optional

from .constants import LOG_TYPE_CHECK_OUT
from .models import LocationInfo, LogEntry, PunchMode, WifiInfo, parse_timestamp


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _utc_date(value: datetime) -> date:
    return value.astimezone(timezone.utc).date()


def derive_checked_in(punch_in_time: Optional[datetime], logs: List[LogEntry], today: date) -> bool:
    """Checked in iff a punch-in exists for today and no check-out is dated today."""
    has_check_in_today = punch_in_time is not None and _utc_date(punch_in_time) == today
    has_check_out_today = any(
        entry.type == LOG_TYPE_CHECK_OUT
        and entry.timestamp is not None
        and _utc_date(entry.timestamp) == today
        for entry in logs
    )
    return has_check_in_today and not has_check_out_today


@dataclass
class AttendanceState:
    # ── Server-confirmed attendance ──────────────────────────
    is_checked_in: bool = False
    punch_in_time: Optional[datetime] = None
    last_punch_time: Optional[datetime] = None
    todays_logs: List[LogEntry] = field(default_factory=list)

    # ── Submission lifecycle (at most one in flight) ──────────
    is_submitting: bool = False
    # Bumped when a submission starts and when it ends.
    submission_generation: int = 0

    # ── Last background validation ───────────────────────────
    last_wifi: WifiInfo = field(default_factory=WifiInfo)
    last_location: LocationInfo = field(default_factory=LocationInfo)

    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @classmethod
    def from_today_logs(cls, data, today=None):
        """Build a state from a `/attendance/today-logs` payload."""
        today = today or utc_today()
        logs = [LogEntry.from_dict(item) for item in (data.get("logs") or [])]
        punch_in_time = parse_timestamp(data.get("punchInTime"))
        return cls(
            is_checked_in=derive_checked_in(punch_in_time, logs, today),
            punch_in_time=punch_in_time,
            last_punch_time=parse_timestamp(data.get("lastPunch")),
            todays_logs=logs,
        )

    # ── Derived flags ────────────────────────────────────────

    @property
    def is_validated(self) -> bool:
        return self.last_wifi.is_valid and self.last_location.is_valid

    @property
    def can_check_in(self) -> bool:
        return not self.is_checked_in and not self.is_submitting and self.is_validated

    @property
    def can_check_out(self) -> bool:
        return self.is_checked_in and not self.is_submitting and self.is_validated

    # ── Mutations ────────────────────────────────────────────

    def apply_punch(self, mode: PunchMode, timestamp: datetime):
        """A punch the server recorded (success or anomaly)."""
        with self._lock:
            if mode is PunchMode.CHECK_IN:
                self.is_checked_in = True
                self.punch_in_time = timestamp
            else:
                self.is_checked_in = False
            self.last_punch_time = timestamp

    def reconcile(self, fetched: "AttendanceState", generation: Optional[int] = None) -> bool:
        """
        Adopt the server's view from a freshly fetched state. With `generation`
        (read before the fetch started) the fetch is dropped when a submission
        began or ended since, or is still running. Returns True when adopted.
        """
        with self._lock:
            if generation is not None and (
                    self.is_submitting or generation != self.submission_generation):
                return False
            self.is_checked_in = fetched.is_checked_in
            self.punch_in_time = fetched.punch_in_time
            self.last_punch_time = fetched.last_punch_time
            self.todays_logs = list(fetched.todays_logs)
            return True

    def update_validation(self, wifi: Optional[WifiInfo] = None,
                          location: Optional[LocationInfo] = None):
        with self._lock:
            if wifi is not None:
                self.last_wifi = wifi
            if location is not None:
                self.last_location = location

    def begin_submission(self) -> bool:
        """Claim the single submission slot. False if one is already running."""
        with self._lock:
            if self.is_submitting:
                return False
            self.is_submitting = True
            self.submission_generation += 1
            return True

    def end_submission(self):
        with self._lock:
            self.is_submitting = False
            self.submission_generation += 1

    # ── Display ──────────────────────────────────────────────

    def working_hours(self, now: Optional[datetime] = None) -> str:
        """Time since punch-in as 'H:MM:SS hours', frozen at today's check-out."""
        if self.punch_in_time is None:
            return "0:00:00 hours"
        now = now or datetime.now(timezone.utc)
        today = _utc_date(now)
        checked_out_today = any(
            e.type == LOG_TYPE_CHECK_OUT and e.timestamp is not None and _utc_date(e.timestamp) == today
            for e in self.todays_logs
        )
        if (checked_out_today or not self.is_checked_in) and self.last_punch_time is not None:
            end = self.last_punch_time
        else:
            end = now
        total = max(0, int((end - self.punch_in_time).total_seconds()))
        hours, rest = divmod(total, 3600)
        minutes, seconds = divmod(rest, 60)
        return f"{hours}:{minutes:02d}:{seconds:02d} hours"

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "isCheckedIn": self.is_checked_in,
                "punchInTime": self.punch_in_time.isoformat() if self.punch_in_time else None,
                "lastPunch": self.last_punch_time.isoformat() if self.last_punch_time else None,
                "logs": len(self.todays_logs),
                "isSubmitting": self.is_submitting,
                "wifiValid": self.last_wifi.is_valid,
                "wifiSsid": self.last_wifi.ssid,
                "locationValid": self.last_location.is_valid,
                "locationPermissionDenied": self.last_location.permission_denied,
                "canCheckIn": self.can_check_in,
                "canCheckOut": self.can_check_out,
                "workingHours": self.working_hours(),
            }
