"""Tests for the geo resolvers.  GeoIP2Resolver runs against a fake reader."""

from types import SimpleNamespace

import geoip2.errors
import pytest

from behavior.geo import (
    GeoIP2Resolver,
    GeoLocation,
    GeoLookupError,
    NullGeoResolver,
    StaticGeoResolver,
    is_public_ip,
    open_resolver,
)


class _FakeReader:
    def __init__(self, table=None, error=None):
        self.table = table or {}
        self.error = error
        self.calls = []

    def city(self, ip):
        self.calls.append(ip)
        if self.error is not None:
            raise self.error
        if ip not in self.table:
            raise geoip2.errors.AddressNotFoundError(f"{ip} not in database")
        country, city = self.table[ip]
        return SimpleNamespace(
            country=SimpleNamespace(iso_code=country),
            city=SimpleNamespace(name=city),
        )

    def close(self):
        pass


class TestGeoIP2Resolver:
    def test_lookup(self):
        reader = _FakeReader({"8.8.8.8": ("US", "Mountain View")})
        resolver = GeoIP2Resolver("unused.mmdb", reader=reader)
        assert resolver.lookup("8.8.8.8") == GeoLocation("US", "Mountain View")

    def test_results_are_cached(self):
        reader = _FakeReader({"8.8.8.8": ("US", "Mountain View")})
        resolver = GeoIP2Resolver("unused.mmdb", reader=reader)
        resolver.lookup("8.8.8.8")
        resolver.lookup("8.8.8.8")
        resolver.lookup("1.1.1.1")
        resolver.lookup("1.1.1.1")
        assert reader.calls == ["8.8.8.8", "1.1.1.1"]

    @pytest.mark.parametrize("ip", ["10.1.2.3", "192.168.0.1", "127.0.0.1", "not-an-ip", "::1"])
    def test_non_public_addresses_skip_the_database(self, ip):
        reader = _FakeReader()
        resolver = GeoIP2Resolver("unused.mmdb", reader=reader)
        assert resolver.lookup(ip) is None
        assert reader.calls == []

    def test_backend_errors_raise_lookup_error(self):
        reader = _FakeReader(error=geoip2.errors.GeoIP2Error("boom"))
        resolver = GeoIP2Resolver("unused.mmdb", reader=reader)
        with pytest.raises(GeoLookupError, match="8.8.8.8"):
            resolver.lookup("8.8.8.8")


class TestHelpers:
    def test_is_public_ip(self):
        assert is_public_ip("8.8.8.8")
        assert not is_public_ip("172.16.0.1")

    def test_static_and_null(self):
        assert StaticGeoResolver({"1.1.1.1": ("AU", "Sydney")}).lookup("1.1.1.1").city == "Sydney"
        assert StaticGeoResolver({}).lookup("1.1.1.1") is None
        assert NullGeoResolver().lookup("8.8.8.8") is None

    def test_open_resolver_without_database(self, tmp_path):
        assert isinstance(open_resolver(None), NullGeoResolver)
        assert isinstance(open_resolver(tmp_path / "missing.mmdb"), NullGeoResolver)

    def test_location_str(self):
        assert str(GeoLocation("US", None)) == "Unknown, US"
