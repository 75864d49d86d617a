"""
LocationProbe — permission, coordinate fix, best-effort address.

Validity means "permission granted and a fix obtained". The address never
affects validity: a failed reverse geocode degrades to "lat, lon".
"""

import time
from functools import partial

from .config import log
from .constants import (
    LOCATION_FIX_ATTEMPTS, LOCATION_FIX_RETRY_DELAY, LOCATION_FIX_TIMEOUT, GEOCODE_TIMEOUT,
)
from .models import LocationInfo
from . import platform_info


def coordinate_text(latitude, longitude):
    return f"{latitude:.6f}, {longitude:.6f}"


def consent_from_config(config):
    """Desktop stand-in for the foreground location permission prompt."""
    return lambda: bool(config.get("locationConsent", True))


class LocationProbe:

    def __init__(self, permission=None, fix=None, geocoder=None,
                 fix_attempts=LOCATION_FIX_ATTEMPTS, retry_delay=LOCATION_FIX_RETRY_DELAY,
                 sleep=time.sleep):
        self.permission = permission or (lambda: True)
        self.fix = fix or partial(platform_info.fix_from_ip_geolocation,
                                  timeout=LOCATION_FIX_TIMEOUT)
        self.geocoder = geocoder or partial(platform_info.reverse_geocode,
                                            timeout=GEOCODE_TIMEOUT)
        self.fix_attempts = max(1, fix_attempts)
        self.retry_delay = retry_delay
        self._sleep = sleep

    def resolve(self):
        """Permission + coordinates, no address."""
        try:
            granted = bool(self.permission())
        except Exception as e:
            log.warning("Location permission request failed: %s", e)
            granted = False
        if not granted:
            log.info("Location permission not granted")
            return LocationInfo.denied()

        coords = self._get_fix()
        if coords is None:
            return LocationInfo.unavailable()

        latitude, longitude = coords
        return LocationInfo(latitude=latitude, longitude=longitude, is_valid=True)

    def resolve_with_address(self):
        info = self.resolve()
        if not info.is_valid:
            return info

        address = None
        try:
            address = self.geocoder(info.latitude, info.longitude)
        except Exception as e:
            log.info("Reverse geocoding failed, using coordinates: %s", e)
        if not address:
            address = coordinate_text(info.latitude, info.longitude)

        return LocationInfo(
            latitude=info.latitude,
            longitude=info.longitude,
            address=address,
            is_valid=True,
        )

    def _get_fix(self):
        for attempt in range(1, self.fix_attempts + 1):
            try:
                coords = self.fix()
                if coords is not None:
                    latitude, longitude = float(coords[0]), float(coords[1])
                    log.info("Location fix on attempt %d: %.5f, %.5f", attempt, latitude, longitude)
                    return latitude, longitude
                log.warning("Location fix attempt %d/%d returned nothing",
                            attempt, self.fix_attempts)
            except Exception as e:
                log.warning("Location fix attempt %d/%d failed: %s",
                            attempt, self.fix_attempts, e)
            if attempt < self.fix_attempts:
                self._sleep(self.retry_delay)
        log.error("Unable to fetch location after %d attempts", self.fix_attempts)
        return None
