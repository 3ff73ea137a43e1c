"""Tests for clamd_sdk.models."""

from datetime import datetime

import pytest

from clamd_sdk.models import Endpoint, ScanResult, VersionInfo


class TestScanResult:
    def test_clean(self):
        r = ScanResult.clean()
        assert r.status == "OK"
        assert r.signature == ""
        assert r.is_clean is True
        assert str(r) == "OK"

    def test_infected(self):
        r = ScanResult.infected("Eicar-Test-Signature")
        assert r.status == "FOUND"
        assert r.is_clean is False
        assert str(r) == "Eicar-Test-Signature FOUND"

    def test_never_both(self):
        with pytest.raises(ValueError):
            ScanResult(status="OK", signature="Eicar")
        with pytest.raises(ValueError):
            ScanResult(status="FOUND")

    def test_unknown_status(self):
        with pytest.raises(ValueError):
            ScanResult(status="ERROR", signature="boom")

    def test_frozen(self):
        r = ScanResult.clean()
        with pytest.raises(AttributeError):
            r.status = "FOUND"  # type: ignore[misc]


class TestEndpoint:
    def test_defaults(self):
        assert Endpoint() == Endpoint("localhost", 3310)

    def test_str(self):
        assert str(Endpoint("10.0.0.5", 3311)) == "10.0.0.5:3311"


class TestVersionInfo:
    def test_fields(self):
        v = VersionInfo("ClamAV 0.98.1", 19209, datetime(2015, 6, 10, 8, 23, 45))
        assert v.client_version == "ClamAV 0.98.1"
        assert v.database_version == 19209
        assert v.database_time.year == 2015
