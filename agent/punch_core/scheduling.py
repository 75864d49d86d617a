"""
BackgroundLoop — a daemon thread that calls run_once() every `interval`
seconds until stopped. Errors are logged and the loop keeps going.
"""

import threading

from .config import log


class BackgroundLoop:
    name = "loop"
    interval = 1.0

    def __init__(self, interval=None):
        if interval is not None:
            self.interval = interval
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._thread.start()
        log.info("%s started (interval=%ss)", self.name, self.interval)

    def stop(self, timeout=5):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        log.info("%s stopped", self.name)

    def run_once(self):
        raise NotImplementedError

    def _run(self):
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                log.error("%s error: %s", self.name, e, exc_info=True)
            self._stop_event.wait(self.interval)
