"""Exception hierarchy for the clamd SDK."""

from __future__ import annotations


class ClamAVError(Exception):
    """Base exception for all clamd SDK errors."""


class ClamAVConnectionError(ClamAVError):
    """Raised when the daemon cannot be reached or the socket fails mid-exchange.

    Also raised when the daemon closes the connection before sending a
    complete (NUL-terminated) response.
    """


class ClamAVTimeoutError(ClamAVError):
    """Raised when no complete response arrives within the read timeout."""


class ClamAVProtocolError(ClamAVError):
    """Raised when the daemon reply is neither a clean nor a ``FOUND`` status.

    Attributes:
        status: The raw status text received from the daemon.
    """

    def __init__(self, status: str) -> None:
        super().__init__(status)
        self.status = status


class ClamAVMalformedVersionError(ClamAVError):
    """Raised when a ``VERSION`` reply is not ``<client>/<db version>/<db date>``."""


class ClamAVChunkTooLargeError(ClamAVError):
    """Raised when a chunk length does not fit the 4-byte INSTREAM size prefix."""
