"""Data models for clamd SDK responses."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

OK = "OK"
FOUND = "FOUND"


@dataclass(frozen=True, slots=True)
class Endpoint:
    """Address of a clamd daemon listening on TCP.

    Attributes:
        host: Hostname or IP address.
        port: TCP port (clamd listens on ``3310`` by default).
    """

    host: str = "localhost"
    port: int = 3310

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True, slots=True)
class ScanResult:
    """Outcome of an INSTREAM scan.

    A result is either clean (``status="OK"``, empty signature) or infected
    (``status="FOUND"`` with the signature name), never both.

    Attributes:
        status: ``"OK"`` or ``"FOUND"``.
        signature: Name of the matched signature; empty when clean.
    """

    status: str
    signature: str = ""

    def __post_init__(self) -> None:
        if self.status not in (OK, FOUND):
            raise ValueError(f"unknown scan status: {self.status!r}")
        if self.status == OK and self.signature:
            raise ValueError("a clean result carries no signature")
        if self.status == FOUND and not self.signature:
            raise ValueError("an infected result needs a signature name")

    @classmethod
    def clean(cls) -> ScanResult:
        return cls(status=OK)

    @classmethod
    def infected(cls, signature: str) -> ScanResult:
        return cls(status=FOUND, signature=signature)

    @property
    def is_clean(self) -> bool:
        return self.status == OK

    def __str__(self) -> str:
        return OK if self.is_clean else f"{self.signature} {FOUND}"


@dataclass(frozen=True, slots=True)
class VersionInfo:
    """Program and signature database versions reported by ``VERSION``.

    Attributes:
        client_version: Engine version string (e.g. ``"ClamAV 0.98.1"``).
        database_version: Signature database number; higher is newer.
        database_time: When the loaded database was published.
    """

    client_version: str
    database_version: int
    database_time: datetime
