"""TCP transport to the clamd daemon.

Blocking helpers serve :class:`~clamd_sdk.client.ClamdClient`; the
coroutines at the bottom issue one non-blocking operation at a time for
:mod:`clamd_sdk.session`.  Every low-level :class:`OSError` is translated
into the SDK hierarchy here.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import time
from typing import Optional

from clamd_sdk.exceptions import (
    ClamAVConnectionError,
    ClamAVProtocolError,
    ClamAVTimeoutError,
)
from clamd_sdk.models import Endpoint
from clamd_sdk.protocol import MAX_RESPONSE_SIZE, split_response

logger = logging.getLogger(__name__)


def timeout_seconds(timeout_ms: int) -> Optional[float]:
    """Convert a millisecond timeout to socket seconds; ``0`` means no limit."""
    if timeout_ms < 0:
        raise ValueError(f"timeout cannot be negative: {timeout_ms}")
    return timeout_ms / 1000 if timeout_ms else None


def check_response_size(buffer: bytes | bytearray) -> None:
    if len(buffer) >= MAX_RESPONSE_SIZE:
        raise ClamAVProtocolError(bytes(buffer).decode("utf-8", "replace"))


# ------------------------------------------------------------------
# Blocking primitives
# ------------------------------------------------------------------


def connect(endpoint: Endpoint) -> socket.socket:
    """Open a blocking TCP connection to *endpoint*.

    Connect is not bounded by the read timeout.
    """
    try:
        sock = socket.create_connection((endpoint.host, endpoint.port))
    except OSError as exc:
        raise ClamAVConnectionError(f"cannot connect to {endpoint}: {exc}") from exc
    logger.debug("connected to clamd at %s", endpoint)
    return sock


def send(sock: socket.socket, data: bytes | bytearray | memoryview) -> None:
    """Write all of *data*, blocking until the kernel has accepted it."""
    try:
        sock.sendall(data)
    except OSError as exc:
        raise ClamAVConnectionError(f"write to clamd failed: {exc}") from exc


def read_response(sock: socket.socket, timeout_ms: int) -> str:
    """Read until the NUL sentinel and return the text before it.

    Raises:
        ClamAVTimeoutError: If the sentinel has not arrived within *timeout_ms*.
        ClamAVConnectionError: On a socket error or premature end of stream.
        ClamAVProtocolError: If the reply outgrows the response buffer.
    """
    limit = timeout_seconds(timeout_ms)
    deadline = None if limit is None else time.monotonic() + limit
    buffer = bytearray()
    while True:
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ClamAVTimeoutError(f"no response from clamd within {timeout_ms} ms")
            sock.settimeout(remaining)
        else:
            sock.settimeout(None)
        try:
            data = sock.recv(MAX_RESPONSE_SIZE)
        except socket.timeout as exc:
            raise ClamAVTimeoutError(f"no response from clamd within {timeout_ms} ms") from exc
        except OSError as exc:
            raise ClamAVConnectionError(f"read from clamd failed: {exc}") from exc
        if not data:
            raise ClamAVConnectionError("clamd closed the connection before responding")
        buffer.extend(data)
        status = split_response(buffer)
        if status is not None:
            return status
        check_response_size(buffer)


# ------------------------------------------------------------------
# Non-blocking primitives (must run on a selector event loop)
# ------------------------------------------------------------------


async def open_connection(endpoint: Endpoint) -> socket.socket:
    """Connect a non-blocking socket to *endpoint*, trying each resolved address."""
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(endpoint.host, endpoint.port, type=socket.SOCK_STREAM)
    except OSError as exc:
        raise ClamAVConnectionError(f"cannot resolve {endpoint}: {exc}") from exc

    last_exc: Optional[OSError] = None
    for family, type_, proto, _, address in infos:
        sock = socket.socket(family, type_, proto)
        sock.setblocking(False)
        try:
            await loop.sock_connect(sock, address)
        except OSError as exc:
            sock.close()
            last_exc = exc
            continue
        except BaseException:
            sock.close()
            raise
        logger.debug("connected to clamd at %s", endpoint)
        return sock
    raise ClamAVConnectionError(f"cannot connect to {endpoint}: {last_exc}") from last_exc


async def send_some(sock: socket.socket, data: memoryview) -> int:
    """Issue a single non-blocking write and return how many bytes it took.

    The caller resubmits the unwritten remainder.
    """
    try:
        return sock.send(data)
    except (BlockingIOError, InterruptedError):
        pass
    except OSError as exc:
        raise ClamAVConnectionError(f"write to clamd failed: {exc}") from exc

    loop = asyncio.get_running_loop()
    written: asyncio.Future[int] = loop.create_future()
    fd = sock.fileno()

    def on_writable() -> None:
        if written.done():
            return
        try:
            n = sock.send(data)
        except (BlockingIOError, InterruptedError):
            return
        except OSError as exc:
            written.set_exception(ClamAVConnectionError(f"write to clamd failed: {exc}"))
        else:
            written.set_result(n)

    loop.add_writer(fd, on_writable)
    try:
        return await written
    finally:
        loop.remove_writer(fd)


async def recv_some(sock: socket.socket) -> bytes:
    """Issue a single non-blocking read; an empty result means end of stream."""
    loop = asyncio.get_running_loop()
    try:
        return await loop.sock_recv(sock, MAX_RESPONSE_SIZE)
    except OSError as exc:
        raise ClamAVConnectionError(f"read from clamd failed: {exc}") from exc
