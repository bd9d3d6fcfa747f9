"""IP geolocation for click events.

Lookups run inside the background click recorder, never on the redirect path.
A missing database, a private address or a lookup error all yield an empty
``GeoLocation``; geolocation can never fail a click.
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import Protocol

import geoip2.database
from geoip2.errors import GeoIP2Error

from shortlinks.config import Settings

__all__ = [
    "GeoLocation",
    "GeoLocator",
    "MaxMindGeoLocator",
    "NullGeoLocator",
    "build_geo_locator",
    "resolve_geo",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoLocation:
    country: str | None = None
    region: str | None = None
    city: str | None = None


EMPTY_LOCATION = GeoLocation()


class GeoLocator(Protocol):
    def locate(self, ip_address: str) -> GeoLocation: ...

    def close(self) -> None: ...


class NullGeoLocator:
    def locate(self, ip_address: str) -> GeoLocation:
        return EMPTY_LOCATION

    def close(self) -> None:
        pass


class MaxMindGeoLocator:
    """City lookups against a local GeoLite2/GeoIP2 City database."""

    def __init__(self, database_path: str) -> None:
        # MODE_MEMORY: load the whole database into memory
        self._reader = geoip2.database.Reader(database_path, mode=geoip2.database.MODE_MEMORY)

    def locate(self, ip_address: str) -> GeoLocation:
        response = self._reader.city(ip_address)
        return GeoLocation(
            country=response.country.iso_code,
            region=response.subdivisions.most_specific.name,
            city=response.city.name,
        )

    def close(self) -> None:
        self._reader.close()


def _is_public(ip_address: str) -> bool:
    try:
        address = ipaddress.ip_address(ip_address)
    except ValueError:
        return False
    return address.is_global


def resolve_geo(locator: GeoLocator, ip_address: str | None) -> GeoLocation:
    if not ip_address or not _is_public(ip_address):
        return EMPTY_LOCATION
    try:
        return locator.locate(ip_address)
    except (GeoIP2Error, ValueError) as exc:
        logger.debug(f"GeoIP lookup failed for {ip_address}: {exc}")
    except Exception as exc:
        logger.exception(f"geoIP computation error: {exc}")
    return EMPTY_LOCATION


def build_geo_locator(settings: Settings) -> GeoLocator:
    if not settings.ENABLE_GEOLOCATION:
        return NullGeoLocator()
    if not settings.GEOIP_DATABASE_PATH:
        logger.warning("ENABLE_GEOLOCATION is set but GEOIP_DATABASE_PATH is empty; geolocation disabled")
        return NullGeoLocator()
    try:
        return MaxMindGeoLocator(settings.GEOIP_DATABASE_PATH)
    except (OSError, ValueError) as exc:
        # Don't bring down the app over a missing or corrupt database file
        logger.error(f"Could not open GeoIP database {settings.GEOIP_DATABASE_PATH}: {exc}")
        return NullGeoLocator()
