"""
Server API calls — attendance submission, today's logs, server time.

All calls are blocking (run from worker/background threads). The submission
is a single multipart POST with its own, longer timeout and is never retried
automatically. Transport and HTTP errors come back as Failure outcomes; only
identifier validation raises, and it does so before any I/O.
"""

import re
import threading
import time

import requests

from .config import log
from .constants import (
    API_TIMEOUT_DEFAULT, API_TIMEOUT_SUBMIT, ATTENDANCE_LOG_PATH, TODAY_LOGS_PATH,
    SERVER_TIME_PATH, LOGS_CACHE_TTL_SEC, VALID_SOURCES, DEFAULT_SOURCE, UUID_PATTERN,
    PHOTO_FIELD, PHOTO_FILENAME, PHOTO_CONTENT_TYPE,
)
from .capture import uri_to_path
from .errors import InvalidIdentifierError
from .models import (
    Anomaly, ErrorKind, Failure, Other, Success, format_timestamp, parse_timestamp,
)
from .state import AttendanceState
from . import http_client

_UUID_RE = re.compile(UUID_PATTERN, re.IGNORECASE)


# ─── Payload ─────────────────────────────────────────────────────

def validate_identifiers(identity, source):
    """Raise InvalidIdentifierError for anything the server would 400 on."""
    if not _UUID_RE.match(identity.organization_id or ""):
        raise InvalidIdentifierError("Invalid organization ID. Please contact your administrator.")
    if not _UUID_RE.match(identity.user_id or ""):
        raise InvalidIdentifierError("Invalid user ID. Please contact your administrator.")
    if source not in VALID_SOURCES:
        raise InvalidIdentifierError(
            "Invalid source configuration. Please contact your administrator.")


def _flag(value):
    return "true" if value else "false"


def build_payload(attempt, identity, source=DEFAULT_SOURCE):
    """Multipart metadata fields, all as strings. Validates identifiers first."""
    validate_identifiers(identity, source)
    location = attempt.location
    return {
        "organizationId": identity.organization_id,
        "userId": identity.user_id,
        "source": source,
        "timestamp": format_timestamp(attempt.started_at),
        "latitude": repr(float(location.latitude)),
        "longitude": repr(float(location.longitude)),
        "locationAddress": location.address,
        "wifiSsid": attempt.wifi.ssid,
        "wifiBssid": attempt.wifi.bssid,
        "deviceInfo": attempt.device_info,
        "enableFaceValidation": _flag(True),
        "enableWifiValidation": _flag(True),
        "enableGPSValidation": _flag(True),
        "type": attempt.mode.value,
    }


# ─── Classification ──────────────────────────────────────────────

def server_message(status_code, body):
    """User-facing text for a non-2xx answer."""
    message = body.get("message") if isinstance(body, dict) else None
    if status_code == 400:
        if isinstance(message, list):
            return "Validation Error: " + ", ".join(str(m) for m in message)
        return message or "Invalid request data."
    if status_code == 401:
        return "Authentication failed. Please login again."
    if status_code == 403:
        return "Access denied. Please contact administrator."
    if status_code == 413:
        return "Image size too large. Please try again."
    if status_code == 500:
        return "Server error. Please try again later."
    return message or f"Server error ({status_code}). Please try again."


def _json_body(resp):
    try:
        return resp.json()
    except ValueError:
        return None


def classify_response(resp):
    """Map an HTTP response to Success / Anomaly / Other / Failure."""
    body = _json_body(resp)
    if not 200 <= resp.status_code < 300:
        return Failure(
            ErrorKind.SERVER_REJECTED,
            server_message(resp.status_code, body),
            status_code=resp.status_code,
        )
    if not isinstance(body, dict):
        return Failure(ErrorKind.UNKNOWN, "Unreadable response from server.",
                       status_code=resp.status_code)

    status = str(body.get("status") or "")
    if status == "success":
        return Success()
    if status == "anomaly":
        reasons = body.get("reasons") or []
        if isinstance(reasons, str):
            reasons = [reasons]
        return Anomaly(tuple(str(r) for r in reasons))
    return Other(status)


def classify_exception(exc):
    """Map a requests exception to a Failure."""
    if isinstance(exc, requests.Timeout):
        return Failure(ErrorKind.TIMEOUT, "Request timeout. Please try again with a better connection.")
    if isinstance(exc, requests.ConnectionError):
        return Failure(ErrorKind.NETWORK_UNREACHABLE,
                       "No response from server. Please check your connection.")
    return Failure(ErrorKind.UNKNOWN, str(exc) or exc.__class__.__name__)


# ─── Client ──────────────────────────────────────────────────────

class AttendanceLogClient:

    def __init__(self, server_url, access_token=None, session=None, source=DEFAULT_SOURCE,
                 timeout=API_TIMEOUT_DEFAULT, submit_timeout=API_TIMEOUT_SUBMIT,
                 logs_ttl=LOGS_CACHE_TTL_SEC, on_unauthorized=None, monotonic=time.monotonic):
        self.server_url = server_url.rstrip("/")
        self.session = session if session is not None else http_client.create_session(access_token)
        self.source = source
        self.timeout = timeout
        self.submit_timeout = submit_timeout
        self.logs_ttl = logs_ttl
        self.on_unauthorized = on_unauthorized
        self._monotonic = monotonic
        self._cache_lock = threading.Lock()
        self._logs_cache = {}
        self._logs_generation = 0

    def _url(self, path):
        return f"{self.server_url}{path}"

    # ── Submission ──────────────────────────────────────────

    def submit(self, attempt, identity):
        """
        POST /attendance/log. Raises InvalidIdentifierError (no request sent)
        for malformed ids; every other problem is returned as a Failure.
        """
        fields = build_payload(attempt, identity, self.source)

        try:
            photo = open(uri_to_path(attempt.captured_image_uri), "rb")
        except OSError as e:
            log.error("Captured photo unreadable: %s", e)
            return Failure(ErrorKind.CAPTURE_FAILED, "Image capture failed. Please take the photo again.")

        url = self._url(ATTENDANCE_LOG_PATH)
        log.info("Submitting %s | ssid=%s | lat=%s lon=%s",
                 attempt.mode.value, attempt.wifi.ssid, fields["latitude"], fields["longitude"])
        started = time.monotonic()
        try:
            with photo:
                resp = self.session.post(
                    url,
                    data=fields,
                    files={PHOTO_FIELD: (PHOTO_FILENAME, photo, PHOTO_CONTENT_TYPE)},
                    timeout=self.submit_timeout,
                )
        except requests.RequestException as e:
            log.warning("Attendance submission network error: %s", e)
            return classify_exception(e)
        finally:
            self.invalidate_logs()

        outcome = classify_response(resp)
        log.info("Attendance submission answered HTTP %d in %.0fms -> %s",
                 resp.status_code, (time.monotonic() - started) * 1000, outcome)
        if resp.status_code == 401:
            self._unauthorized()
        return outcome

    # ── Today's logs ─────────────────────────────────────────

    def fetch_today_logs(self, organization_id, user_id, force=False, today=None):
        """
        GET /attendance/today-logs -> AttendanceState. The raw payload is cached
        for `logs_ttl` seconds; the checked-in flag is derived again on every call.
        Raises requests.RequestException on failure.
        """
        key = (organization_id, user_id)
        data = None if force else self._cached_logs(key)
        if data is None:
            with self._cache_lock:
                generation = self._logs_generation
            resp = self.session.get(
                self._url(TODAY_LOGS_PATH),
                params={"organizationId": organization_id, "userId": user_id},
                timeout=self.timeout,
            )
            if resp.status_code == 401:
                self._unauthorized()
            resp.raise_for_status()
            data = resp.json() or {}
            with self._cache_lock:
                # A submission since the GET started makes this payload stale.
                if generation == self._logs_generation:
                    self._logs_cache[key] = (self._monotonic(), data)
        return AttendanceState.from_today_logs(data, today=today)

    def invalidate_logs(self):
        with self._cache_lock:
            self._logs_cache.clear()
            self._logs_generation += 1

    def _cached_logs(self, key):
        with self._cache_lock:
            entry = self._logs_cache.get(key)
            if entry is None:
                return None
            stored_at, data = entry
            if self._monotonic() - stored_at > self.logs_ttl:
                del self._logs_cache[key]
                return None
            return data

    # ── Server time ──────────────────────────────────────────

    def fetch_server_time(self):
        """GET /common/time/now -> aware datetime. Raises on failure."""
        resp = self.session.get(self._url(SERVER_TIME_PATH), timeout=self.timeout)
        resp.raise_for_status()
        value = parse_timestamp((resp.json() or {}).get("isoTime"))
        if value is None:
            raise ValueError("Server time missing from response")
        return value

    def _unauthorized(self):
        log.error("Request REJECTED (401) — token expired or revoked")
        http_client.clear_token(self.session)
        if self.on_unauthorized is not None:
            try:
                self.on_unauthorized()
            except Exception as e:
                log.warning("on_unauthorized hook failed: %s", e)
