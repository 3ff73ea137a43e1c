"""Shared test fixtures."""

from __future__ import annotations

import hashlib
import socket
import socketserver
import struct
import threading
import time
from dataclasses import dataclass

import pytest

EICAR = b"X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"
VERSION_REPLY = b"ClamAV 0.98.1/19209/Wed Jun 10 08:23:45 2015"


@dataclass
class Upload:
    """What the mock daemon received on one INSTREAM connection."""

    sizes: list[int]
    payload: bytes


def eicar_responder(payload: bytes) -> bytes:
    if EICAR in payload:
        return b"stream: Eicar-Test-Signature FOUND"
    return b"stream: OK"


def digest_responder(payload: bytes) -> bytes:
    """Names the 'signature' after the payload so each client can check its own reply."""
    return b"stream: " + hashlib.sha1(payload).hexdigest().encode() + b" FOUND"


class _ClamdHandler(socketserver.StreamRequestHandler):
    def handle(self) -> None:
        server: MockClamd = self.server  # type: ignore[assignment]
        command = self._read_command()
        if command == b"zPING\0":
            self._reply(server.ping_reply)
        elif command == b"zVERSION\0":
            self._reply(server.version_reply)
        elif command == b"zINSTREAM\0":
            self._instream(server)

    def _instream(self, server: MockClamd) -> None:
        sizes: list[int] = []
        payload = bytearray()
        while True:
            prefix = self.rfile.read(4)
            if len(prefix) < 4:
                return
            (size,) = struct.unpack("!I", prefix)
            sizes.append(size)
            if size == 0:
                break
            data = self.rfile.read(size)
            if len(data) < size:
                return
            payload.extend(data)
        with server.lock:
            server.uploads.append(Upload(sizes, bytes(payload)))

        if server.silent:
            # hold the connection until the client gives up and closes it
            self.rfile.read()
            server.peer_closed.set()
            return
        if server.hangup:
            return
        self._reply(server.responder(bytes(payload)))

    def _read_command(self) -> bytes:
        command = bytearray()
        while not command.endswith(b"\0"):
            byte = self.rfile.read(1)
            if not byte:
                break
            command.extend(byte)
        return bytes(command)

    def _reply(self, status: bytes) -> None:
        data = status + b"\0"
        if not self.server.trickle:  # type: ignore[attr-defined]
            self.wfile.write(data)
            return
        for index in range(len(data)):
            self.wfile.write(data[index : index + 1])
            time.sleep(0.002)


class MockClamd(socketserver.ThreadingTCPServer):
    """In-process clamd speaking just enough INSTREAM, PING and VERSION."""

    allow_reuse_address = True
    daemon_threads = True
    request_queue_size = 128

    def __init__(self) -> None:
        super().__init__(("127.0.0.1", 0), _ClamdHandler)
        self.responder = eicar_responder
        self.ping_reply = b"PONG"
        self.version_reply = VERSION_REPLY
        self.silent = False
        self.hangup = False
        self.trickle = False
        self.lock = threading.Lock()
        self.uploads: list[Upload] = []
        self.peer_closed = threading.Event()

    @property
    def host(self) -> str:
        return self.server_address[0]

    @property
    def port(self) -> int:
        return self.server_address[1]


@pytest.fixture()
def clamd_server():
    server = MockClamd()
    thread = threading.Thread(target=server.serve_forever, kwargs={"poll_interval": 0.05}, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture()
def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture()
def sample_bytes() -> bytes:
    return b"Hello, ClamAV!"


@pytest.fixture()
def eicar_bytes() -> bytes:
    """EICAR anti-malware test string (safe; every AV recognises it)."""
    return EICAR
