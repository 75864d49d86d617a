"""
PunchApp — wires the probes, clock, API client, and state together.

Background threads: ClockSync, PeriodicRevalidator, LogRefresher, plus one
short-lived worker per punch attempt. At most one attempt is in flight at a
time: the backend has no idempotency key, so a second concurrent submission
would double-log attendance.
"""

import threading
import time

from .config import log, safe_print, save_config
from .constants import DEFAULT_SOURCE, REVALIDATE_INTERVAL_SEC, SUBMIT_DEBOUNCE_SEC
from .api import AttendanceLogClient
from .clock import ClockSync
from .location import LocationProbe, consent_from_config
from .models import Identity, PunchMode
from .network import NetworkProbe, is_online
from .orchestrator import PunchOrchestrator
from .revalidator import LogRefresher, PeriodicRevalidator
from .state import AttendanceState


def console_notifier(title, message):
    safe_print(f"[{title}] {message}")


class PunchApp:
    """
    Owns the background loops and hands out punch attempts:
      ClockSync           — display clock, server resync       (1s / 120s)
      PeriodicRevalidator — WiFi + location affordances         (30s)
      LogRefresher        — today's logs reconciliation         (60s)
    """

    def __init__(self, config, capture=None, client=None, network_probe=None,
                 location_probe=None, clock=None, notifier=None, monotonic=time.monotonic):
        self._config = config
        self._monotonic = monotonic
        self.identity = Identity(
            organization_id=str(config.get("organizationId") or ""),
            user_id=str(config.get("userId") or ""),
        )
        self.state = AttendanceState()
        self.notifier = notifier or console_notifier
        self.client = client or AttendanceLogClient(
            config["serverUrl"],
            access_token=config.get("accessToken") or None,
            source=config.get("source") or DEFAULT_SOURCE,
            on_unauthorized=self._on_unauthorized,
        )
        self.network_probe = network_probe or NetworkProbe(notifier=self.notifier)
        self.location_probe = location_probe or LocationProbe(
            permission=consent_from_config(config))
        self.clock = clock or ClockSync(self.client.fetch_server_time)
        self.capture = capture

        self.revalidator = PeriodicRevalidator(
            self.network_probe, self.location_probe, self.state,
            interval=config.get("revalidateIntervalSec") or REVALIDATE_INTERVAL_SEC,
        )
        self.log_refresher = LogRefresher(self.client, self.identity, self.state)

        self._submit_lock = threading.Lock()
        self._last_submission = None
        self.current_attempt = None

    # ─── Lifecycle ────────────────────────────────────────────

    def start(self):
        self.clock.start()
        self.revalidator.start()
        self.log_refresher.start()

    def stop(self):
        for loop in (self.log_refresher, self.revalidator, self.clock):
            try:
                loop.stop()
            except Exception as e:
                log.warning("Stopping %s failed: %s", loop.name, e)

    def refresh(self):
        """Pull-to-refresh: fresh probes, fresh logs, fresh server time."""
        self.revalidator.run_once()
        logs_ok = self.log_refresher.refresh(force=True)
        self.clock.resync()
        return logs_ok

    # ─── Punch attempts ───────────────────────────────────────

    def start_attempt(self, mode, capture=None):
        """
        Start a fresh attempt on a worker thread and return its handle
        (a PunchOrchestrator; call .wait() for the result). Returns None while
        another attempt is in flight or within the debounce window.
        """
        mode = PunchMode(mode)
        with self._submit_lock:
            now = self._monotonic()
            if (self._last_submission is not None
                    and now - self._last_submission < SUBMIT_DEBOUNCE_SEC):
                log.info("%s ignored — last submission %.1fs ago", mode.label,
                         now - self._last_submission)
                return None
            if not self.state.begin_submission():
                log.info("%s ignored — a punch is already in flight", mode.label)
                return None
            self._last_submission = now

        orchestrator = PunchOrchestrator(
            identity=self.identity,
            client=self.client,
            network_probe=self.network_probe,
            location_probe=self.location_probe,
            capture=capture or self.capture,
            state=self.state,
            clock=self.clock.now,
            source=self.client.source,
            on_finish=self._on_attempt_finished,
        )
        self.current_attempt = orchestrator
        threading.Thread(
            target=orchestrator.run, args=(mode,), daemon=False, name=f"punch-{mode.value}",
        ).start()
        return orchestrator

    def punch(self, mode, capture=None, timeout=None):
        """
        Blocking convenience: start an attempt and wait for its result.
        Returns None only when the attempt was refused. When `timeout` runs out
        the attempt is cancelled if it is still capturing; past capture it
        cannot be aborted, so this keeps waiting for the server's answer.
        """
        mode = PunchMode(mode)
        handle = self.start_attempt(mode, capture=capture)
        if handle is None:
            return None
        result = handle.wait(timeout)
        if result is None:
            if handle.cancel():
                log.warning("%s timed out after %ss, cancelling", mode.label, timeout)
            else:
                log.warning("%s timed out at %s, waiting for the server",
                            mode.label, handle.stage.value)
            result = handle.wait()
        return result

    def check_in(self, capture=None, timeout=None):
        return self.punch(PunchMode.CHECK_IN, capture=capture, timeout=timeout)

    def check_out(self, capture=None, timeout=None):
        return self.punch(PunchMode.CHECK_OUT, capture=capture, timeout=timeout)

    def _on_attempt_finished(self, result):
        self.state.end_submission()
        if result.recorded:
            self.log_refresher.refresh(force=True)

    # ─── Status ───────────────────────────────────────────────

    def status(self, check_server=True):
        data = self.state.snapshot()
        data["clock"] = self.clock.now().isoformat()
        data["clockSynced"] = self.clock.synced
        if check_server:
            data["serverReachable"] = is_online(self.client.server_url)
        return data

    def _on_unauthorized(self):
        """Token rejected: forget it so the next run asks for a new one."""
        self._config["accessToken"] = ""
        try:
            save_config(self._config)
        except OSError as e:
            log.warning("Could not persist token removal: %s", e)
        self.notifier("Session Expired", "Authentication failed. Please login again.")
