"""Non-blocking INSTREAM session.

A :class:`StreamSession` is one in-flight scan: its private buffers, its
socket and an explicit :class:`SessionState`.  :meth:`StreamSession.advance`
is the whole transition table; it consumes the outcome of the previous
I/O step and never performs I/O itself, so it can be driven by hand in
tests.  :func:`run_session` is the driver that performs the I/O each state
asks for, one operation at a time, on a selector event loop.

Transitions::

    CONNECTING          -> SENDING_HEADER
    SENDING_HEADER      -> SENDING_HEADER (partial write) | READING_NEXT_CHUNK
    READING_NEXT_CHUNK  -> SENDING_CHUNK_SIZE
    SENDING_CHUNK_SIZE  -> SENDING_CHUNK_SIZE (partial write)
                         | SENDING_CHUNK_DATA (size > 0)
                         | AWAITING_RESPONSE (size == 0, terminator sent)
    SENDING_CHUNK_DATA  -> SENDING_CHUNK_DATA (partial write) | READING_NEXT_CHUNK
    AWAITING_RESPONSE   -> AWAITING_RESPONSE (no sentinel yet) | COMPLETED

Any state may move to FAILED.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import socket
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Optional, Protocol, Union

from clamd_sdk import transport
from clamd_sdk.exceptions import ClamAVConnectionError, ClamAVError, ClamAVTimeoutError
from clamd_sdk.models import Endpoint, ScanResult
from clamd_sdk.protocol import (
    CHUNK_SIZE,
    INSTREAM,
    encode_chunk_size,
    parse_scan_response,
    read_chunk,
    split_response,
)

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    SENDING_HEADER = "sending_header"
    READING_NEXT_CHUNK = "reading_next_chunk"
    SENDING_CHUNK_SIZE = "sending_chunk_size"
    SENDING_CHUNK_DATA = "sending_chunk_data"
    AWAITING_RESPONSE = "awaiting_response"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.FAILED)

    @property
    def writing(self) -> bool:
        return self in _WRITING_STATES


_WRITING_STATES = frozenset(
    {
        SessionState.SENDING_HEADER,
        SessionState.SENDING_CHUNK_SIZE,
        SessionState.SENDING_CHUNK_DATA,
    }
)

Outcome = Union[None, int, bytes]


class ScanCallback(Protocol):
    """Receives the outcome of an asynchronous scan, possibly on a worker thread."""

    def completed(self, result: ScanResult, attachment: Any) -> None: ...

    def failed(self, error: BaseException, attachment: Any) -> None: ...


@dataclass(eq=False)
class StreamSession:
    """Mutable state of one asynchronous INSTREAM scan.

    Attributes:
        source: Stream being uploaded.
        endpoint: Daemon address captured when the scan was submitted.
        timeout: Read timeout in milliseconds captured at submission.
        state: Current protocol state.
        pending: Unwritten remainder of the write in progress.
        result: Set once the session is ``COMPLETED``.
        error: Set once the session is ``FAILED``.
    """

    source: BinaryIO
    endpoint: Endpoint
    timeout: int = 0
    state: SessionState = SessionState.CONNECTING
    read_buffer: bytearray = field(default_factory=lambda: bytearray(CHUNK_SIZE))
    chunk: memoryview = field(default_factory=lambda: memoryview(b""))
    size_prefix: bytes = b""
    response: bytearray = field(default_factory=bytearray)
    pending: memoryview = field(default_factory=lambda: memoryview(b""))
    sock: Optional[socket.socket] = None
    result: Optional[ScanResult] = None
    error: Optional[BaseException] = None
    closed: bool = False

    def advance(self, outcome: Outcome = None) -> SessionState:
        """Apply the outcome of the I/O the current state requested.

        * ``CONNECTING``: ``None`` once the socket is connected.
        * writing states: number of bytes the last write accepted.
        * ``READING_NEXT_CHUNK``: bytes placed in :attr:`read_buffer` (0 at end).
        * ``AWAITING_RESPONSE``: bytes received (empty at end of stream).

        Returns:
            The new state.
        """
        state = self.state
        if state.terminal:
            raise RuntimeError(f"session already {state.value}")

        if state is SessionState.CONNECTING:
            self._start_write(SessionState.SENDING_HEADER, memoryview(INSTREAM))
        elif state.writing:
            self._written(_as_count(outcome))
        elif state is SessionState.READING_NEXT_CHUNK:
            n = _as_count(outcome)
            self.chunk = memoryview(self.read_buffer)[:n]
            self.size_prefix = encode_chunk_size(n)
            self._start_write(SessionState.SENDING_CHUNK_SIZE, memoryview(self.size_prefix))
        else:
            self._received(outcome)
        return self.state

    def fail(self, error: BaseException) -> SessionState:
        """Move to ``FAILED`` unless a terminal state was already reached."""
        if not self.state.terminal:
            self.error = error
            self._move(SessionState.FAILED)
        return self.state

    def close(self) -> None:
        """Close the socket; later calls do nothing."""
        if self.closed:
            return
        self.closed = True
        if self.sock is not None:
            self.sock.close()
            logger.debug("closed connection to %s", self.endpoint)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _move(self, state: SessionState) -> None:
        if state is not self.state:
            logger.debug("session %x: %s -> %s", id(self), self.state.value, state.value)
            self.state = state

    def _start_write(self, state: SessionState, data: memoryview) -> None:
        self.pending = data
        self._move(state)

    def _written(self, n: int) -> None:
        self.pending = self.pending[n:]
        if self.pending:
            return
        if self.state is SessionState.SENDING_HEADER:
            self._move(SessionState.READING_NEXT_CHUNK)
        elif self.state is SessionState.SENDING_CHUNK_SIZE:
            if self.chunk:
                self._start_write(SessionState.SENDING_CHUNK_DATA, self.chunk)
            else:
                self._move(SessionState.AWAITING_RESPONSE)
        else:
            self._move(SessionState.READING_NEXT_CHUNK)

    def _received(self, data: Outcome) -> None:
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError(f"expected received bytes, got {type(data).__name__}")
        if not data:
            self.fail(ClamAVConnectionError("clamd closed the connection before responding"))
            return
        self.response.extend(data)
        status = split_response(self.response)
        try:
            if status is None:
                transport.check_response_size(self.response)
                return
            self.result = parse_scan_response(status)
        except ClamAVError as exc:
            self.fail(exc)
            return
        self._move(SessionState.COMPLETED)


def _as_count(outcome: Outcome) -> int:
    if not isinstance(outcome, int) or outcome < 0:
        raise TypeError(f"expected a byte count, got {outcome!r}")
    return outcome


# ------------------------------------------------------------------
# Driver
# ------------------------------------------------------------------


async def run_session(
    session: StreamSession,
    callback: Optional[ScanCallback] = None,
    attachment: Any = None,
) -> ScanResult:
    """Drive *session* to a terminal state, then close it and notify *callback*.

    The callback is invoked exactly once, after the socket is closed.

    Returns:
        The :class:`ScanResult` of a completed session.

    Raises:
        The error of a failed session.
    """
    try:
        await _drive(session)
    except BaseException as exc:
        session.fail(exc)
    session.close()
    _notify(session, callback, attachment)
    if session.state is SessionState.FAILED:
        raise session.error  # type: ignore[misc]
    return session.result  # type: ignore[return-value]


async def _drive(session: StreamSession) -> None:
    loop = asyncio.get_running_loop()
    limit = transport.timeout_seconds(session.timeout)
    deadline: Optional[float] = None

    while not session.state.terminal:
        state = session.state
        if state is SessionState.CONNECTING:
            session.sock = await transport.open_connection(session.endpoint)
            session.advance()
        elif state.writing:
            session.advance(await transport.send_some(session.sock, session.pending))
        elif state is SessionState.READING_NEXT_CHUNK:
            session.advance(read_chunk(session.source, session.read_buffer))
        else:
            if deadline is None and limit is not None:
                deadline = loop.time() + limit
            session.advance(await _receive(session, loop, deadline))


async def _receive(
    session: StreamSession,
    loop: asyncio.AbstractEventLoop,
    deadline: Optional[float],
) -> bytes:
    if deadline is None:
        return await transport.recv_some(session.sock)
    remaining = deadline - loop.time()
    try:
        if remaining <= 0:
            raise asyncio.TimeoutError
        return await asyncio.wait_for(transport.recv_some(session.sock), remaining)
    except asyncio.TimeoutError as exc:
        raise ClamAVTimeoutError(
            f"no response from clamd within {session.timeout} ms"
        ) from exc


def _notify(session: StreamSession, callback: Optional[ScanCallback], attachment: Any) -> None:
    if callback is None:
        return
    try:
        if session.state is SessionState.COMPLETED:
            callback.completed(session.result, attachment)  # type: ignore[arg-type]
        else:
            callback.failed(session.error, attachment)  # type: ignore[arg-type]
    except Exception:
        logger.exception("scan callback for %s raised", session.endpoint)
