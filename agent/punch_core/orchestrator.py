"""
PunchOrchestrator — drives one check-in or check-out attempt end to end.

  IDLE → WIFI_GATING → CAPTURING → REVERIFYING → LOCATION_RESOLVING → SUBMITTING
       → SUCCEEDED | ANOMALY_ACCEPTED | REJECTED | CANCELLED

One instance runs exactly once. A retry is a new instance starting from
IDLE, so a stale photo is never paired with fresh WiFi/location (or the
other way round). Probe results are copied into a frozen PunchAttempt; the
background revalidator cannot touch them.

Only SUCCEEDED and ANOMALY_ACCEPTED change AttendanceState.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .config import log
from .errors import CaptureCancelled, InvalidIdentifierError, PunchError
from .models import (
    Anomaly, ErrorKind, Failure, Other, PunchAttempt, PunchMode, Success,
)
from .api import validate_identifiers
from . import platform_info


class PunchStage(str, Enum):
    IDLE = "idle"
    WIFI_GATING = "wifi_gating"
    CAPTURING = "capturing"
    REVERIFYING = "reverifying"
    LOCATION_RESOLVING = "location_resolving"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    ANOMALY_ACCEPTED = "anomaly_accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TERMINAL_STAGES = frozenset({
    PunchStage.SUCCEEDED, PunchStage.ANOMALY_ACCEPTED, PunchStage.REJECTED, PunchStage.CANCELLED,
})

# Stages from which the user can still back out (the capture screen is open).
CANCELLABLE_STAGES = frozenset({PunchStage.IDLE, PunchStage.WIFI_GATING, PunchStage.CAPTURING})


MESSAGES = {
    ErrorKind.WIFI_UNAVAILABLE: "WiFi required. Please connect to the office WiFi network.",
    ErrorKind.CAPTURE_FAILED: "Capture failed. Please take the photo again.",
    ErrorKind.PERMISSION_DENIED: (
        "Location permission required. Please enable location access in settings."),
    ErrorKind.LOCATION_UNAVAILABLE: (
        "Location unavailable. Please ensure location services are enabled and try again."),
    ErrorKind.INVALID_IDENTIFIER: (
        "Invalid account identifiers. Please contact your administrator."),
    ErrorKind.NETWORK_UNREACHABLE: (
        "No network connection available. Please check your internet connection."),
    ErrorKind.TIMEOUT: "Request timeout. Please try again with a better connection.",
}

SERVER_REJECTED_PREFIX = "Server rejected the punch: "
UNKNOWN_PREFIX = "Attendance failed: "


def failure_message(kind, detail=""):
    """Specific text for local kinds, normalised prefix for server/unknown."""
    if kind is ErrorKind.SERVER_REJECTED:
        return SERVER_REJECTED_PREFIX + (detail or "no details given.")
    if kind is ErrorKind.UNKNOWN:
        return UNKNOWN_PREFIX + (detail or "please try again.")
    if kind is ErrorKind.INVALID_IDENTIFIER and detail:
        return detail
    return MESSAGES[kind]


@dataclass(frozen=True)
class PunchResult:
    stage: PunchStage
    mode: PunchMode
    message: str
    error_kind: Optional[ErrorKind] = None
    outcome: object = None
    attempt: Optional[PunchAttempt] = None

    @property
    def recorded(self):
        return self.stage in (PunchStage.SUCCEEDED, PunchStage.ANOMALY_ACCEPTED)


def _utc_now():
    return datetime.now(timezone.utc)


class PunchOrchestrator:
    """
    Collaborators are injected: identity, API client, both probes, the
    capture device, the state to update, and the clock used for timestamps.
    """

    def __init__(self, identity, client, network_probe, location_probe, capture, state,
                 clock=None, device_info=None, source=None, on_stage=None, on_finish=None):
        self.identity = identity
        self.client = client
        self.network_probe = network_probe
        self.location_probe = location_probe
        self.capture = capture
        self.state = state
        self.clock = clock or _utc_now
        self.device_info = device_info or platform_info.device_info
        self.source = source or getattr(client, "source", "mobile")
        self.on_stage = on_stage
        self.on_finish = on_finish

        self._lock = threading.Lock()
        self._done = threading.Event()
        self._stage = PunchStage.IDLE
        self._cancel_requested = False
        self.mode = None
        self.attempt = None
        self.result = None

    # ── Handle API ───────────────────────────────────────────

    @property
    def stage(self):
        return self._stage

    @property
    def done(self):
        return self._done.is_set()

    def wait(self, timeout=None):
        """Block until the attempt reaches a terminal stage. Returns the result."""
        self._done.wait(timeout)
        return self.result

    def cancel(self):
        """
        Back out of the attempt. Honoured up to the capture step; once the
        attempt has moved past capture it runs to a terminal state.
        """
        with self._lock:
            if self._stage not in CANCELLABLE_STAGES:
                log.info("Cancel ignored at stage %s", self._stage.value)
                return False
            self._cancel_requested = True
            return True

    # ── Run ──────────────────────────────────────────────────

    def run(self, mode):
        with self._lock:
            if self._stage is not PunchStage.IDLE or self.mode is not None:
                raise RuntimeError("PunchOrchestrator instances run once; start a new attempt")
            self.mode = PunchMode(mode)

        try:
            result = self._run()
        except PunchError as e:
            log.error("Punch attempt failed: %s", e)
            result = self._reject(e.kind, e.message)
        except Exception as e:
            log.error("Punch attempt crashed: %s", e, exc_info=True)
            result = self._reject(ErrorKind.UNKNOWN, str(e) or e.__class__.__name__)
        self.result = result
        if self.on_finish is not None:
            try:
                self.on_finish(result)
            except Exception as e:
                log.warning("on_finish callback failed: %s", e)
        self._done.set()
        log.info("%s attempt finished: %s | %s", self.mode.label, result.stage.value, result.message)
        return result

    def _run(self):
        mode = self.mode

        # Identifiers are checked locally before anything else; a malformed id
        # is never sent and no photo is taken for a punch that cannot succeed.
        try:
            validate_identifiers(self.identity, self.source)
        except InvalidIdentifierError as e:
            return self._reject(e.kind, e.message)

        # 1. Pre-flight WiFi gate: no capture without a network to submit on.
        if not self._enter(PunchStage.WIFI_GATING):
            return self._cancelled()
        if not self.network_probe.resolve(announce_failures=True).is_valid:
            return self._reject(ErrorKind.WIFI_UNAVAILABLE)

        # 2. Capture
        if not self._enter(PunchStage.CAPTURING):
            return self._cancelled()
        try:
            image_uri = self.capture.capture()
        except CaptureCancelled:
            return self._cancelled()
        except Exception as e:
            log.error("Capture failed: %s", e)
            image_uri = None
        if not image_uri and not self._cancel_requested:
            return self._reject(ErrorKind.CAPTURE_FAILED)
        started_at = self.clock()

        # 3. WiFi may have dropped while the camera was open.
        if not self._enter(PunchStage.REVERIFYING):
            return self._cancelled()
        wifi = self.network_probe.resolve(announce_failures=True)
        if not wifi.is_valid:
            return self._reject(ErrorKind.WIFI_UNAVAILABLE)

        # 4. Location
        self._enter(PunchStage.LOCATION_RESOLVING)
        location = self.location_probe.resolve_with_address()
        if location.permission_denied:
            return self._reject(ErrorKind.PERMISSION_DENIED)
        if not location.is_valid:
            return self._reject(ErrorKind.LOCATION_UNAVAILABLE)

        self.attempt = PunchAttempt(
            mode=mode,
            captured_image_uri=image_uri,
            wifi=wifi,
            location=location,
            device_info=self.device_info(),
            started_at=started_at,
        )

        # 5. Submit. No abort past this point.
        self._enter(PunchStage.SUBMITTING)
        if not self.network_probe.is_connected():
            return self._reject(ErrorKind.NETWORK_UNREACHABLE)
        try:
            outcome = self.client.submit(self.attempt, self.identity)
        except InvalidIdentifierError as e:
            return self._reject(e.kind, e.message)

        # 6. Classify
        return self._finish(outcome)

    # ── Transitions ──────────────────────────────────────────

    def _enter(self, stage):
        """Move to `stage`. Returns False instead when a cancel is pending."""
        with self._lock:
            if self._cancel_requested and stage not in TERMINAL_STAGES:
                return False
            self._stage = stage
        log.info("%s attempt -> %s", self.mode.label, stage.value)
        if self.on_stage is not None:
            try:
                self.on_stage(stage)
            except Exception as e:
                log.warning("on_stage callback failed: %s", e)
        return True

    def _finish(self, outcome):
        mode = self.mode
        if isinstance(outcome, Success):
            self.state.apply_punch(mode, self.attempt.started_at)
            self._enter(PunchStage.SUCCEEDED)
            return self._result(
                PunchStage.SUCCEEDED,
                f"{mode.label} successful! Your attendance has been recorded.",
                outcome=outcome,
            )
        if isinstance(outcome, Anomaly):
            # Still a recorded attendance event, only flagged.
            self.state.apply_punch(mode, self.attempt.started_at)
            self._enter(PunchStage.ANOMALY_ACCEPTED)
            return self._result(
                PunchStage.ANOMALY_ACCEPTED,
                f"{mode.label} recorded but flagged for review: {outcome.reason_text}.",
                outcome=outcome,
            )
        if isinstance(outcome, Other):
            # Undefined server semantics: inform, leave state alone.
            self._enter(PunchStage.REJECTED)
            return self._result(
                PunchStage.REJECTED,
                f"Attendance status '{outcome.status or 'empty'}' was not recognised. "
                "Please ensure you are connected to the office Wi-Fi or within the office "
                "premises. Contact the administrator if the issue persists.",
                outcome=outcome,
            )
        if isinstance(outcome, Failure):
            return self._reject(outcome.kind, outcome.message, outcome=outcome)
        return self._reject(ErrorKind.UNKNOWN, f"unexpected outcome {outcome!r}")

    def _reject(self, kind, detail="", outcome=None):
        self._enter(PunchStage.REJECTED)
        return self._result(PunchStage.REJECTED, failure_message(kind, detail),
                            error_kind=kind, outcome=outcome)

    def _cancelled(self):
        self._enter(PunchStage.CANCELLED)
        return self._result(PunchStage.CANCELLED, f"{self.mode.label} cancelled.")

    def _result(self, stage, message, error_kind=None, outcome=None):
        return PunchResult(
            stage=stage,
            mode=self.mode,
            message=message,
            error_kind=error_kind,
            outcome=outcome,
            attempt=self.attempt,
        )
