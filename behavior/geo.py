"""IP geolocation for rapid-location-change detection.

Anything with ``lookup(ip) -> GeoLocation | None`` will do.  ``None`` means
"could not place this address" and callers fall back to comparing raw IPs.
"""

import ipaddress
import logging
from typing import NamedTuple, Protocol

import geoip2.database
import geoip2.errors

logger = logging.getLogger(__name__)


class GeoLookupError(Exception):
    """The geo backend failed for a reason other than an unknown address."""

    def __init__(self, ip, cause=None):
        self.ip = ip
        self.cause = cause
        super().__init__(f"geo lookup failed for {ip}: {cause}")


class GeoLocation(NamedTuple):
    country: str | None
    city: str | None

    def __str__(self):
        return f"{self.city or 'Unknown'}, {self.country or 'Unknown'}"


class GeoResolver(Protocol):
    def lookup(self, ip: str) -> GeoLocation | None: ...


def is_public_ip(ip: str) -> bool:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return address.is_global


class GeoIP2Resolver:
    """MaxMind City database lookups through geoip2.

    Private, loopback and otherwise non-routable addresses never hit the
    database and resolve to None, as do addresses the database does not
    know.  Results are cached per address for the life of the resolver.
    """

    def __init__(self, db_path, reader=None):
        self.db_path = str(db_path)
        self._reader = reader if reader is not None else geoip2.database.Reader(self.db_path)
        self._cache: dict[str, GeoLocation | None] = {}

    def lookup(self, ip: str) -> GeoLocation | None:
        if ip in self._cache:
            return self._cache[ip]
        if not is_public_ip(ip):
            self._cache[ip] = None
            return None

        try:
            response = self._reader.city(ip)
        except geoip2.errors.AddressNotFoundError:
            location = None
        except (geoip2.errors.GeoIP2Error, ValueError) as e:
            raise GeoLookupError(ip, e) from e
        else:
            location = GeoLocation(response.country.iso_code, response.city.name)

        self._cache[ip] = location
        return location

    def close(self):
        self._reader.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class StaticGeoResolver:
    """Fixed ip -> (country, city) table."""

    def __init__(self, table: dict):
        self._table = {ip: GeoLocation(*loc) for ip, loc in table.items()}

    def lookup(self, ip: str) -> GeoLocation | None:
        return self._table.get(ip)


class NullGeoResolver:
    """No geo data: every rapid IP change takes the IP-only path."""

    def lookup(self, ip: str) -> GeoLocation | None:
        return None


def open_resolver(db_path=None) -> GeoResolver:
    """GeoIP2Resolver for *db_path*, or NullGeoResolver if there is no database."""
    if not db_path:
        return NullGeoResolver()
    try:
        resolver = GeoIP2Resolver(db_path)
    except (OSError, RuntimeError, ValueError) as e:
        logger.warning("GeoIP database %s unavailable, location checks use IPs only: %s", db_path, e)
        return NullGeoResolver()
    logger.info("GeoIP database loaded: %s", db_path)
    return resolver
