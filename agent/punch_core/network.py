"""
Network utilities — WiFi probe and server reachability.

NetworkProbe resolves WiFi details through ordered fallback chains. Each
chain is a plain list of callables (tried in order, first usable value
wins), so the fallback order is data that callers and tests can inspect.

The probe never raises: missing data is reported as WifiInfo(is_valid=False).
"""

import socket
from functools import partial
from urllib.parse import urlsplit

from .config import log
from .constants import PUBLIC_IP_SERVICES, SERVER_CONNECT_TIMEOUT
from .models import WifiInfo
from . import platform_info


# ─── Fallback chain ──────────────────────────────────────────────

def first_result(sources, label, accept=bool):
    """
    Call each source in order and return the first value `accept` approves.
    Failures are logged and swallowed; returns None when every source fails.
    """
    for source in sources:
        name = getattr(source, "__name__", None) or getattr(
            getattr(source, "func", None), "__name__", repr(source))
        try:
            value = source()
        except Exception as e:
            log.warning("%s source %s failed: %s", label, name, e)
            continue
        if accept(value):
            return value
        log.debug("%s source %s returned nothing", label, name)
    return None


def default_public_ip_sources(session=None):
    return [
        partial(platform_info.fetch_public_ip, url, session)
        for url in PUBLIC_IP_SERVICES
    ]


def _has_ssid(value):
    return bool(value) and bool(value[0])


def _log_notifier(title, message):
    log.warning("%s: %s", title, message)


# ─── WiFi probe ──────────────────────────────────────────────────

class NetworkProbe:
    """
    resolve() steps (each runs only if the previous one left no usable value):
      1. network state — must be connected, over WiFi
      2. local IP      — mandatory
      3. public IP     — echo services in order, empty on total failure
      4. SSID/BSSID    — platform sources in order
      5. no SSID       — invalid; missing BSSID falls back to the local IP
    """

    def __init__(self, network_state=None, local_ip=None, public_ip_sources=None,
                 wifi_sources=None, notifier=None):
        self.network_state = network_state or platform_info.get_network_state
        self.local_ip = local_ip or platform_info.get_local_ip
        self.public_ip_sources = list(
            public_ip_sources if public_ip_sources is not None
            else default_public_ip_sources()
        )
        self.wifi_sources = list(
            wifi_sources if wifi_sources is not None
            else platform_info.default_wifi_sources()
        )
        self.notifier = notifier or _log_notifier

    def resolve(self, announce_failures=False):
        try:
            return self._resolve(announce_failures)
        except Exception as e:
            log.error("WiFi probe error: %s", e, exc_info=True)
            if announce_failures:
                self._announce("WiFi Error",
                               "Failed to detect WiFi. Please check your connection and try again.")
            return WifiInfo.invalid()

    def _resolve(self, announce_failures):
        state = self.network_state()
        if not state.is_connected:
            log.info("WiFi probe: device not connected to any network")
            if announce_failures:
                self._announce("Network Required", "Please connect to a network and try again.")
            return WifiInfo.invalid()
        if state.type != platform_info.WIFI:
            log.info("WiFi probe: connected over %s, not WiFi", state.type)
            if announce_failures:
                self._announce("WiFi Required", "Please connect to the office WiFi network.")
            return WifiInfo.invalid()

        local_ip = self.local_ip()
        if not local_ip:
            log.info("WiFi probe: no local IP address")
            if announce_failures:
                self._announce("WiFi Error",
                               "Unable to retrieve WiFi details. Please check your connection.")
            return WifiInfo.invalid()

        public_ip = first_result(self.public_ip_sources, "Public IP") or ""

        ssid, bssid = first_result(
            self.wifi_sources, "WiFi info", accept=_has_ssid) or ("", "")
        if not ssid:
            log.info("WiFi probe: no SSID from any source")
            if announce_failures:
                self._announce(
                    "WiFi Error",
                    "Unable to detect WiFi network name. Please ensure you're connected to WiFi.",
                )
            return WifiInfo.invalid(local_ip=local_ip, public_ip=public_ip)

        info = WifiInfo(
            ssid=ssid,
            bssid=bssid or local_ip,
            local_ip=local_ip,
            public_ip=public_ip,
            is_valid=True,
        )
        log.info("WiFi probe OK | ssid=%s | bssid=%s | ip=%s", info.ssid, info.bssid, local_ip)
        return info

    def is_connected(self):
        """Cheap state check used right before a submission (no full probe)."""
        try:
            return bool(self.network_state().is_connected)
        except Exception as e:
            log.warning("Network state check failed: %s", e)
            return False

    def _announce(self, title, message):
        try:
            self.notifier(title, message)
        except Exception as e:
            log.warning("Notifier failed: %s", e)


# ─── Server reachability ─────────────────────────────────────────

def server_address(server_url):
    """(host, port) of the backend; the port defaults from the scheme."""
    parts = urlsplit(server_url)
    if not parts.hostname:
        raise ValueError(f"No host in server URL {server_url!r}")
    return parts.hostname, parts.port or (443 if parts.scheme == "https" else 80)


def is_online(server_url, timeout=SERVER_CONNECT_TIMEOUT):
    """TCP connect to the backend. Says nothing about the API itself."""
    try:
        host, port = server_address(server_url)
    except ValueError as e:
        log.warning("Server reachability check skipped: %s", e)
        return False
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as e:
        log.info("Server %s:%d unreachable: %s", host, port, e)
        return False
