"""clamd SDK: Python client for the clamd INSTREAM, PING and VERSION protocol."""

from clamd_sdk.async_client import AsyncClamdClient
from clamd_sdk.client import ClamdClient
from clamd_sdk.exceptions import (
    ClamAVChunkTooLargeError,
    ClamAVConnectionError,
    ClamAVError,
    ClamAVMalformedVersionError,
    ClamAVProtocolError,
    ClamAVTimeoutError,
)
from clamd_sdk.models import Endpoint, ScanResult, VersionInfo
from clamd_sdk.session import ScanCallback, SessionState, StreamSession

__all__ = [
    "ClamdClient",
    "AsyncClamdClient",
    "Endpoint",
    "ScanResult",
    "VersionInfo",
    "ScanCallback",
    "SessionState",
    "StreamSession",
    "ClamAVError",
    "ClamAVConnectionError",
    "ClamAVTimeoutError",
    "ClamAVProtocolError",
    "ClamAVMalformedVersionError",
    "ClamAVChunkTooLargeError",
]
