"""
Platform collaborators consumed by the probes:
  - Network state (connected? over WiFi?) and local IP
  - SSID/BSSID sources (nmcli / iwgetid on Linux, netsh on Windows)
  - Public IP echo services
  - Position fix (IP geolocation) and reverse geocoding
  - Device info string

Every function here is best effort: it returns None (or an empty value)
instead of raising, except where noted.
"""

import os
import re
import sys
import socket
import platform
import subprocess
from dataclasses import dataclass

import requests

from .config import log
from .constants import (
    AGENT_VERSION, PLATFORM_CMD_TIMEOUT, PUBLIC_IP_TIMEOUT,
    IP_GEOLOCATION_URL, REVERSE_GEOCODE_URL, GEOCODE_TIMEOUT, LOCATION_FIX_TIMEOUT,
)

WIFI = "wifi"
ETHERNET = "ethernet"
NONE = "none"
UNKNOWN = "unknown"


@dataclass(frozen=True)
class NetworkState:
    is_connected: bool
    type: str


def _run(cmd):
    """Run a platform command. Returns stdout or None."""
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=PLATFORM_CMD_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError) as e:
        log.debug("%s unavailable: %s", cmd[0], e)
        return None
    if result.returncode != 0:
        return None
    return result.stdout


# ─── Network state ───────────────────────────────────────────────

def get_local_ip():
    """
    IP of the interface that carries the default route.
    UDP connect sends no packet; it only makes the kernel pick a source address.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            ip = sock.getsockname()[0]
    except OSError:
        return None
    if not ip or ip.startswith("0.") or ip.startswith("127."):
        return None
    return ip


def default_route_interface(route_table="/proc/net/route"):
    """Linux: name of the interface holding the default route."""
    try:
        with open(route_table, "r") as f:
            lines = f.read().splitlines()[1:]
    except OSError:
        return None
    for line in lines:
        fields = line.split()
        if len(fields) > 1 and fields[1] == "00000000":
            return fields[0]
    return None


def _linux_connection_type():
    iface = default_route_interface()
    if not iface:
        return NONE
    if os.path.isdir(f"/sys/class/net/{iface}/wireless"):
        return WIFI
    return ETHERNET


def _windows_connection_type():
    info = parse_netsh_wlan(_run(["netsh", "wlan", "show", "interfaces"]) or "")
    if info.get("state", "").lower() == "connected":
        return WIFI
    return ETHERNET


def get_network_state():
    """Connected at all, and over which kind of link."""
    if not get_local_ip():
        return NetworkState(False, NONE)
    try:
        if sys.platform.startswith("linux"):
            kind = _linux_connection_type()
        elif sys.platform == "win32":
            kind = _windows_connection_type()
        else:
            kind = UNKNOWN
    except Exception as e:
        log.warning("Connection type detection failed: %s", e)
        kind = UNKNOWN
    return NetworkState(kind != NONE, kind)


# ─── SSID / BSSID sources ────────────────────────────────────────

_NMCLI_SPLIT = re.compile(r"(?<!\\):")


def parse_nmcli_wifi(output):
    """
    Parse `nmcli -t -f ACTIVE,SSID,BSSID dev wifi`.
    Terse mode escapes the colons inside the BSSID as '\\:'.
    """
    for line in (output or "").splitlines():
        fields = [f.replace("\\:", ":") for f in _NMCLI_SPLIT.split(line)]
        if len(fields) >= 3 and fields[0] == "yes" and fields[1]:
            return fields[1], fields[2]
    return None


def wifi_from_nmcli():
    return parse_nmcli_wifi(_run(["nmcli", "-t", "-f", "ACTIVE,SSID,BSSID", "dev", "wifi"]))


def wifi_from_iwgetid():
    ssid = (_run(["iwgetid", "-r"]) or "").strip()
    if not ssid:
        return None
    bssid = (_run(["iwgetid", "-a", "-r"]) or "").strip()
    return ssid, bssid


def parse_netsh_wlan(output):
    """Parse `netsh wlan show interfaces` into lowercase keys (first interface)."""
    info = {}
    for line in (output or "").splitlines():
        if ":" not in line:
            continue
        key, _, value = line.partition(":")
        key = key.strip().lower()
        if key in info:
            continue
        info[key] = value.strip()
    return info


def wifi_from_netsh():
    info = parse_netsh_wlan(_run(["netsh", "wlan", "show", "interfaces"]))
    ssid = info.get("ssid", "")
    if not ssid:
        return None
    return ssid, info.get("ap bssid") or info.get("bssid", "")


def default_wifi_sources():
    """Connectivity-info source first, platform-specific secondary after it."""
    if sys.platform == "win32":
        return [wifi_from_netsh]
    if sys.platform.startswith("linux"):
        return [wifi_from_nmcli, wifi_from_iwgetid]
    return []


# ─── Public IP ───────────────────────────────────────────────────

def fetch_public_ip(url, session=None, timeout=PUBLIC_IP_TIMEOUT):
    """Ask an IP echo service. Raises on transport errors (the probe logs them)."""
    getter = session.get if session is not None else requests.get
    resp = getter(url, timeout=timeout)
    resp.raise_for_status()
    try:
        return str(resp.json().get("ip") or "").strip() or None
    except ValueError:
        return resp.text.strip() or None


# ─── Location ────────────────────────────────────────────────────

def fix_from_ip_geolocation(session=None, timeout=LOCATION_FIX_TIMEOUT):
    """Coarse (city level) fix from the public IP. Returns (lat, lon) or None."""
    getter = session.get if session is not None else requests.get
    resp = getter(IP_GEOLOCATION_URL, timeout=timeout)
    resp.raise_for_status()
    data = resp.json()
    if data.get("status") != "success":
        return None
    return float(data["lat"]), float(data["lon"])


def reverse_geocode(latitude, longitude, session=None, timeout=GEOCODE_TIMEOUT):
    """Street/city/region for a coordinate pair. Returns a string or None."""
    getter = session.get if session is not None else requests.get
    resp = getter(
        REVERSE_GEOCODE_URL,
        params={"format": "jsonv2", "lat": latitude, "lon": longitude},
        headers={"User-Agent": f"punch-agent/{AGENT_VERSION}"},
        timeout=timeout,
    )
    resp.raise_for_status()
    address = resp.json().get("address") or {}
    return format_address(
        address.get("road") or address.get("street"),
        address.get("city") or address.get("town") or address.get("village"),
        address.get("state") or address.get("region"),
    )


def format_address(street, city, region):
    parts = [p for p in (street, city, region) if p]
    return " ".join(parts).strip() or None


# ─── Device ──────────────────────────────────────────────────────

def device_info():
    return f"{platform.system()} {platform.release()}".strip() or "unknown"
