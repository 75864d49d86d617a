"""
ClockSync — display clock anchored on server time.

The clock ticks locally from a monotonic reference and re-anchors on the
server's "now" every CLOCK_RESYNC_SEC. A failed resync keeps the previous
anchor: the device clock may be wrong, which is why the server is asked at all.
"""

import threading
import time
from datetime import datetime, timedelta, timezone

from .config import log
from .constants import CLOCK_TICK_SEC, CLOCK_RESYNC_SEC
from .scheduling import BackgroundLoop


def _utc_now():
    return datetime.now(timezone.utc)


class ClockSync(BackgroundLoop):
    name = "clock-sync"

    def __init__(self, fetch_server_time, tick_sec=CLOCK_TICK_SEC, resync_sec=CLOCK_RESYNC_SEC,
                 on_tick=None, monotonic=time.monotonic, wall_clock=_utc_now):
        super().__init__(interval=tick_sec)
        self._fetch_server_time = fetch_server_time
        self.resync_sec = resync_sec
        self.on_tick = on_tick
        self._monotonic = monotonic
        self._lock = threading.Lock()
        self._anchor = wall_clock()
        self._anchor_mono = monotonic()
        self._last_attempt_mono = None
        self._resync_in_flight = False
        self.synced = False

    def now(self):
        with self._lock:
            return self._anchor_now_locked()

    def resync(self):
        """Fetch server time and re-anchor. Returns True on success."""
        self._last_attempt_mono = self._monotonic()
        try:
            server_now = self._fetch_server_time()
        except Exception as e:
            log.warning("Clock resync failed, keeping last anchor: %s", e)
            return False
        if server_now is None:
            log.warning("Clock resync returned no time, keeping last anchor")
            return False
        if server_now.tzinfo is None:
            server_now = server_now.replace(tzinfo=timezone.utc)
        with self._lock:
            drift = (server_now - self._anchor_now_locked()).total_seconds()
            self._anchor = server_now
            self._anchor_mono = self._monotonic()
        self.synced = True
        log.info("Clock resynced (drift %+.1fs)", drift)
        return True

    def resync_due(self):
        if self._last_attempt_mono is None:
            return True
        return self._monotonic() - self._last_attempt_mono >= self.resync_sec

    def run_once(self):
        if self.resync_due() and not self._resync_in_flight:
            self._resync_in_flight = True
            self._last_attempt_mono = self._monotonic()

            def do_resync():
                try:
                    self.resync()
                finally:
                    self._resync_in_flight = False

            threading.Thread(target=do_resync, daemon=True).start()

        if self.on_tick is not None:
            self.on_tick(self.now())

    def _anchor_now_locked(self):
        return self._anchor + timedelta(seconds=self._monotonic() - self._anchor_mono)
