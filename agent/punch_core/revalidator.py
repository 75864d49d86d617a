"""
Background re-validation and log reconciliation.

PeriodicRevalidator refreshes the WiFi/location affordances every 30s. It
only writes AttendanceState.last_wifi / last_location; an attempt in flight
holds its own frozen copies and never sees these writes.

LogRefresher re-reads today's logs every minute so the checked-in flag
follows the server (another device, an admin correction, a new day).
"""

import requests

from .config import log
from .constants import REVALIDATE_INTERVAL_SEC, LOGS_REFRESH_SEC
from .scheduling import BackgroundLoop


class PeriodicRevalidator(BackgroundLoop):
    name = "revalidator"

    def __init__(self, network_probe, location_probe, state, interval=REVALIDATE_INTERVAL_SEC):
        super().__init__(interval=interval)
        self.network_probe = network_probe
        self.location_probe = location_probe
        self.state = state

    def run_once(self):
        wifi = self.network_probe.resolve(announce_failures=False)
        location = self.location_probe.resolve()
        self.state.update_validation(wifi=wifi, location=location)
        log.debug("Revalidated | wifi=%s | location=%s", wifi.is_valid, location.is_valid)
        return wifi, location


class LogRefresher(BackgroundLoop):
    name = "log-refresher"

    def __init__(self, client, identity, state, interval=LOGS_REFRESH_SEC):
        super().__init__(interval=interval)
        self.client = client
        self.identity = identity
        self.state = state

    def refresh(self, force=False):
        """Reconcile with the server. Returns True when the state was refreshed."""
        generation = self.state.submission_generation
        try:
            fetched = self.client.fetch_today_logs(
                self.identity.organization_id, self.identity.user_id, force=force,
            )
        except (requests.RequestException, ValueError) as e:
            log.warning("Today's logs refresh failed: %s", e)
            return False
        if not self.state.reconcile(fetched, generation=generation):
            log.info("Today's logs fetched across a punch, discarding")
            return False
        log.info("Today's logs: %d entries | checked_in=%s",
                 len(fetched.todays_logs), fetched.is_checked_in)
        return True

    def run_once(self):
        if self.state.is_submitting:
            log.debug("Punch in flight — skipping logs refresh")
            return
        self.refresh()
