"""Asynchronous clamd client driving INSTREAM sessions on a worker pool."""

from __future__ import annotations

import asyncio
import concurrent.futures
import io
import logging
from typing import Any, BinaryIO, Optional, Union

from clamd_sdk import transport
from clamd_sdk.client import ClamdClient
from clamd_sdk.models import Endpoint, ScanResult, VersionInfo
from clamd_sdk.pool import EventLoopPool
from clamd_sdk.protocol import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_TIMEOUT
from clamd_sdk.session import ScanCallback, StreamSession, run_session

logger = logging.getLogger(__name__)


class AsyncClamdClient:
    """Non-blocking client for a clamd daemon.

    Scans are submitted to a fixed pool of event-loop threads and proceed
    concurrently, each over its own connection.  Completion is reported
    through a callback object, the returned future, or both; callbacks run
    on a pool thread.

    Args:
        host: Hostname of the daemon.
        port: TCP port of the daemon.
        timeout: Read timeout in milliseconds; ``0`` waits forever.  Also
            bounds how long :meth:`close` waits for outstanding scans.
        workers: Pool size; defaults to the number of CPUs.

    Example::

        with AsyncClamdClient("localhost", 3310) as client:
            future = client.scan(open("sample.bin", "rb"), callback, "sample.bin")
            print(future.result())
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        timeout: int = DEFAULT_TIMEOUT,
        workers: Optional[int] = None,
    ) -> None:
        self._blocking = ClamdClient(host, port, timeout)
        self._pool = EventLoopPool(workers)

    @property
    def endpoint(self) -> Endpoint:
        return self._blocking.endpoint

    @endpoint.setter
    def endpoint(self, value: Endpoint) -> None:
        self._blocking.endpoint = value

    @property
    def timeout(self) -> int:
        return self._blocking.timeout

    @timeout.setter
    def timeout(self, value: int) -> None:
        self._blocking.timeout = value

    def scan(
        self,
        source: Union[bytes, BinaryIO],
        callback: Optional[ScanCallback] = None,
        attachment: Any = None,
    ) -> concurrent.futures.Future[ScanResult]:
        """Start scanning *source* and return without waiting.

        Args:
            source: Raw bytes or a readable binary stream.  The caller keeps
                ownership of the stream and closes it after completion.
            callback: Optional object whose ``completed(result, attachment)``
                or ``failed(error, attachment)`` is called exactly once.
            attachment: Opaque value handed back to the callback.

        Returns:
            A future resolving to the :class:`ScanResult` or raising the
            session's error.

        Raises:
            RuntimeError: If the client has been closed.
        """
        stream: BinaryIO = io.BytesIO(source) if isinstance(source, bytes) else source
        session = StreamSession(source=stream, endpoint=self.endpoint, timeout=self.timeout)
        return self._pool.submit(run_session(session, callback, attachment))

    async def scan_async(self, source: Union[bytes, BinaryIO]) -> ScanResult:
        """Scan *source* on the pool and await the result from asyncio code."""
        return await asyncio.wrap_future(self.scan(source))

    def ping(self) -> bool:
        """Blocking ``PING`` check; ``False`` on any failure."""
        return self._blocking.ping()

    def version(self) -> VersionInfo:
        """Blocking ``VERSION`` query."""
        return self._blocking.version()

    def close(self) -> None:
        """Wait for outstanding scans, then stop the worker pool."""
        if not self._pool.shutdown(transport.timeout_seconds(self.timeout)):
            logger.warning("closed clamd client with scans still in flight")

    def __enter__(self) -> AsyncClamdClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
