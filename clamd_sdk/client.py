"""Synchronous clamd client speaking INSTREAM, PING and VERSION over TCP."""

from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import BinaryIO, Union

from clamd_sdk import transport
from clamd_sdk.exceptions import ClamAVConnectionError, ClamAVError
from clamd_sdk.models import Endpoint, ScanResult, VersionInfo
from clamd_sdk.protocol import (
    CHUNK_SIZE,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT,
    INSTREAM,
    MAX_CHUNK_LENGTH,
    PING,
    PONG,
    TERMINATOR,
    VERSION,
    encode_chunk_size,
    iter_frames,
    parse_scan_response,
    parse_version,
)

logger = logging.getLogger(__name__)


class ClamdClient:
    """Blocking client for a clamd daemon.

    Every call opens its own connection and closes it before returning, so
    one instance may be shared by several threads.

    Args:
        host: Hostname of the daemon.
        port: TCP port of the daemon.
        timeout: Read timeout in milliseconds; ``0`` waits forever.

    Example::

        client = ClamdClient("localhost", 3310, timeout=30_000)
        result = client.scan_file("/tmp/sample.txt")
        print(result)
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        self._endpoint = Endpoint(host, port)
        self.timeout = timeout

    @property
    def endpoint(self) -> Endpoint:
        return self._endpoint

    @endpoint.setter
    def endpoint(self, value: Endpoint) -> None:
        self._endpoint = value

    @property
    def timeout(self) -> int:
        return self._timeout

    @timeout.setter
    def timeout(self, value: int) -> None:
        transport.timeout_seconds(value)
        self._timeout = value

    def ping(self) -> bool:
        """Check whether the daemon answers ``PING`` with ``PONG``.

        Never raises: any failure is reported as ``False``.
        """
        try:
            return self._command(PING) == PONG
        except ClamAVError as exc:
            logger.debug("ping to %s failed: %s", self._endpoint, exc)
            return False

    def version(self) -> VersionInfo:
        """Retrieve the engine and signature database versions.

        Raises:
            ClamAVMalformedVersionError: If the reply does not parse.
            ClamAVConnectionError: If the daemon is unreachable.
            ClamAVTimeoutError: If the daemon does not answer in time.
        """
        return parse_version(self._command(VERSION))

    def scan_stream(self, source: Union[bytes, BinaryIO]) -> ScanResult:
        """Scan *source* by streaming it in size-prefixed chunks.

        Args:
            source: Raw bytes or a readable binary stream, read to its end.

        Returns:
            A :class:`ScanResult` with the scan outcome.

        Raises:
            ClamAVProtocolError: If the daemon replies with an error status.
            ClamAVConnectionError: If the connection fails.
            ClamAVTimeoutError: If the daemon does not answer in time.
        """
        stream: BinaryIO = io.BytesIO(source) if isinstance(source, bytes) else source
        endpoint, timeout = self._endpoint, self._timeout
        with transport.connect(endpoint) as sock:
            transport.send(sock, INSTREAM)
            for frame in iter_frames(stream, CHUNK_SIZE):
                transport.send(sock, frame)
            status = transport.read_response(sock, timeout)
        logger.debug("INSTREAM reply from %s: %r", endpoint, status)
        return parse_scan_response(status)

    def scan_bytes(self, data: bytes) -> ScanResult:
        """Scan in-memory bytes."""
        return self.scan_stream(data)

    def scan_file(self, file_path: Union[str, Path]) -> ScanResult:
        """Scan a file on disk, handing its descriptor straight to the socket.

        The file goes out as one chunk (or one per 4 GiB segment) through
        :meth:`socket.socket.sendfile` instead of the 4 KiB chunk buffer.

        Raises:
            FileNotFoundError: If *file_path* does not exist.
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        endpoint, timeout = self._endpoint, self._timeout
        with open(path, "rb") as fh, transport.connect(endpoint) as sock:
            transport.send(sock, INSTREAM)
            _send_file(sock, fh)
            status = transport.read_response(sock, timeout)
        logger.debug("INSTREAM reply from %s for %s: %r", endpoint, path, status)
        return parse_scan_response(status)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _command(self, command: bytes) -> str:
        with transport.connect(self._endpoint) as sock:
            transport.send(sock, command)
            return transport.read_response(sock, self._timeout)


def _send_file(sock, fh: BinaryIO) -> None:
    offset = fh.tell()
    remaining = os.fstat(fh.fileno()).st_size - offset
    while remaining > 0:
        count = min(remaining, MAX_CHUNK_LENGTH)
        transport.send(sock, encode_chunk_size(count))
        try:
            sent = sock.sendfile(fh, offset, count)
        except OSError as exc:
            raise ClamAVConnectionError(f"write to clamd failed: {exc}") from exc
        if sent != count:
            raise ClamAVConnectionError(f"file shrank during transfer: sent {sent} of {count} bytes")
        offset += count
        remaining -= count
    transport.send(sock, TERMINATOR)
