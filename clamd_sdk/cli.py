"""``clamd-scan`` command line: scan files or directories through clamd INSTREAM."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence, TextIO

from clamd_sdk.async_client import AsyncClamdClient
from clamd_sdk.client import ClamdClient
from clamd_sdk.exceptions import ClamAVError
from clamd_sdk.models import ScanResult
from clamd_sdk.protocol import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

EXIT_CLEAN = 0
EXIT_INFECTED = 1
EXIT_ERROR = 2


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clamd-scan",
        description="Stream files to a clamd daemon and report the verdicts.",
    )
    parser.add_argument("--host", default=os.environ.get("CLAMD_HOST", DEFAULT_HOST))
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("CLAMD_PORT", DEFAULT_PORT)),
    )
    parser.add_argument(
        "--timeout",
        type=_non_negative_int,
        default=int(os.environ.get("CLAMD_TIMEOUT", DEFAULT_TIMEOUT)),
        help="read timeout in milliseconds, 0 waits forever",
    )
    parser.add_argument("--ping", action="store_true", help="only check that clamd is alive")
    parser.add_argument(
        "--daemon-version",
        action="store_true",
        help="print the engine and signature database versions",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--sendfile",
        action="store_true",
        help="hand each file descriptor to the socket instead of chunking",
    )
    mode.add_argument(
        "--async",
        dest="use_async",
        action="store_true",
        help="scan files concurrently on a worker pool",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("path", nargs="?", type=Path, help="file or directory to scan")
    return parser


def iter_files(path: Path) -> Iterator[Path]:
    """Yield *path* itself, or every file below it when it is a directory."""
    if not path.is_dir():
        yield path
        return
    for root, dirs, files in os.walk(path):
        dirs.sort()
        for name in sorted(files):
            yield Path(root) / name


class _Report:
    """Prints one line per file and folds the outcomes into an exit status."""

    def __init__(self, out: TextIO) -> None:
        self._out = out
        self._lock = threading.Lock()
        self.status = EXIT_CLEAN

    def result(self, path: Any, result: ScanResult) -> None:
        self._emit(f"{path}: {result}", EXIT_CLEAN if result.is_clean else EXIT_INFECTED)

    def error(self, path: Any, error: BaseException) -> None:
        logger.debug("scan of %s failed", path, exc_info=error)
        self._emit(f"{path}: {error}", EXIT_ERROR)

    def _emit(self, line: str, status: int) -> None:
        with self._lock:
            print(line, file=self._out, flush=True)
            self.status = max(self.status, status)


class _ReportCallback:
    def __init__(self, report: _Report) -> None:
        self._report = report

    def completed(self, result: ScanResult, attachment: Any) -> None:
        path, fh = attachment
        fh.close()
        self._report.result(path, result)

    def failed(self, error: BaseException, attachment: Any) -> None:
        path, fh = attachment
        fh.close()
        self._report.error(path, error)


def _scan_blocking(client: ClamdClient, files: Iterator[Path], sendfile: bool, report: _Report) -> None:
    for path in files:
        try:
            if sendfile:
                result = client.scan_file(path)
            else:
                with open(path, "rb") as fh:
                    result = client.scan_stream(fh)
        except (ClamAVError, OSError) as exc:
            report.error(path, exc)
            continue
        report.result(path, result)


def _scan_concurrently(client: AsyncClamdClient, files: Iterator[Path], report: _Report) -> None:
    callback = _ReportCallback(report)
    with client:
        for path in files:
            try:
                fh = open(path, "rb")
            except OSError as exc:
                report.error(path, exc)
                continue
            client.scan(fh, callback, (path, fh))


def main(argv: Optional[Sequence[str]] = None, out: Optional[TextIO] = None) -> int:
    out = out or sys.stdout
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    client = ClamdClient(args.host, args.port, args.timeout)
    if args.ping:
        alive = client.ping()
        print(f"{client.endpoint}: {'ALIVE' if alive else 'DOWN'}", file=out)
        return EXIT_CLEAN if alive else EXIT_ERROR

    if args.daemon_version:
        try:
            info = client.version()
        except ClamAVError as exc:
            print(f"{client.endpoint}: {exc}", file=out)
            return EXIT_ERROR
        print(
            f"{info.client_version} database {info.database_version} "
            f"({info.database_time:%Y-%m-%d %H:%M:%S})",
            file=out,
        )
        return EXIT_CLEAN

    if args.path is None:
        parser.error("a file or directory to scan is required")

    report = _Report(out)
    files = iter_files(args.path)
    if args.use_async:
        _scan_concurrently(AsyncClamdClient(args.host, args.port, args.timeout), files, report)
    else:
        _scan_blocking(client, files, args.sendfile, report)
    return report.status
