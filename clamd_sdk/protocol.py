"""Wire format of the clamd INSTREAM, PING and VERSION exchanges.

Everything here is pure: command bytes, chunk framing, and parsers that
turn NUL-terminated daemon replies into models.  Both the blocking client
and the non-blocking session build their traffic from these helpers, so
they produce identical bytes on the wire.
"""

from __future__ import annotations

import re
import struct
from datetime import datetime
from typing import BinaryIO, Iterator, Optional

from clamd_sdk.exceptions import (
    ClamAVChunkTooLargeError,
    ClamAVMalformedVersionError,
    ClamAVProtocolError,
)
from clamd_sdk.models import ScanResult, VersionInfo

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3310
DEFAULT_TIMEOUT = 0  # milliseconds; 0 waits forever

INSTREAM = b"zINSTREAM\0"
PING = b"zPING\0"
VERSION = b"zVERSION\0"
PONG = "PONG"

SENTINEL = b"\0"
CHUNK_SIZE = 4096  # client-side read buffer, not a protocol limit
MAX_CHUNK_LENGTH = 0xFFFFFFFF
MAX_RESPONSE_SIZE = 1024

OK_STATUS = "stream: OK"
FOUND_PATTERN = re.compile(r"stream: (.+) FOUND")

VERSION_DATE_FORMAT = "%a %b %d %H:%M:%S %Y"
_MAX_DATABASE_VERSION = 2**64 - 1

_SIZE = struct.Struct("!I")
TERMINATOR = _SIZE.pack(0)


def encode_chunk_size(length: int) -> bytes:
    """Return the 4-byte big-endian prefix announcing a chunk of *length* bytes.

    Raises:
        ClamAVChunkTooLargeError: If *length* does not fit in 32 unsigned bits.
    """
    if length < 0:
        raise ValueError(f"chunk length cannot be negative: {length}")
    if length > MAX_CHUNK_LENGTH:
        raise ClamAVChunkTooLargeError(
            f"chunk of {length} bytes exceeds the {MAX_CHUNK_LENGTH}-byte size prefix"
        )
    return _SIZE.pack(length)


def read_chunk(source: BinaryIO, buffer: bytearray) -> int:
    """Fill *buffer* from *source* and return the byte count (0 at end of stream)."""
    readinto = getattr(source, "readinto", None)
    if readinto is not None:
        return readinto(buffer) or 0
    data = source.read(len(buffer))
    buffer[: len(data)] = data
    return len(data)


def iter_frames(source: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield the INSTREAM body for *source*: size-prefixed chunks, then the terminator.

    The command header is not included.
    """
    buffer = bytearray(chunk_size)
    while True:
        n = read_chunk(source, buffer)
        if n == 0:
            break
        yield encode_chunk_size(n) + buffer[:n]
    yield TERMINATOR


def split_response(data: bytes | bytearray) -> Optional[str]:
    """Return the text before the first NUL in *data*, or ``None`` if it has not arrived."""
    end = data.find(SENTINEL)
    if end < 0:
        return None
    return bytes(data[:end]).decode("utf-8", "replace")


def parse_scan_response(status: str) -> ScanResult:
    """Map an INSTREAM status line to a :class:`ScanResult`.

    Raises:
        ClamAVProtocolError: For anything other than ``stream: OK`` or
            ``stream: <name> FOUND``; the raw text is kept on the error.
    """
    if status == OK_STATUS:
        return ScanResult.clean()
    match = FOUND_PATTERN.fullmatch(status)
    if match:
        return ScanResult.infected(match.group(1))
    raise ClamAVProtocolError(status)


def parse_version(reply: str) -> VersionInfo:
    """Parse ``<client version>/<database version>/<database date>``.

    Raises:
        ClamAVMalformedVersionError: If the reply has the wrong number of
            fields or a field does not parse.
    """
    fields = reply.split("/")
    if len(fields) != 3:
        raise ClamAVMalformedVersionError(f"expected 3 '/'-separated fields: {reply!r}")
    client_version, database_version, database_date = fields

    if not (database_version.isascii() and database_version.isdigit()):
        raise ClamAVMalformedVersionError(f"database version is not a number: {database_version!r}")
    number = int(database_version)
    if number > _MAX_DATABASE_VERSION:
        raise ClamAVMalformedVersionError(f"database version out of range: {database_version!r}")

    try:
        published = datetime.strptime(database_date.strip(), VERSION_DATE_FORMAT)
    except ValueError as exc:
        raise ClamAVMalformedVersionError(f"unparseable database date: {database_date!r}") from exc

    return VersionInfo(
        client_version=client_version,
        database_version=number,
        database_time=published,
    )
