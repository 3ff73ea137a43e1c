"""Tests for the clamd-scan command line."""

from __future__ import annotations

import io

import pytest

from clamd_sdk.cli import EXIT_CLEAN, EXIT_ERROR, EXIT_INFECTED, iter_files, main


def run(*argv: str) -> tuple[int, list[str]]:
    out = io.StringIO()
    status = main(list(argv), out=out)
    return status, out.getvalue().splitlines()


@pytest.fixture()
def tree(tmp_path, eicar_bytes: bytes):
    (tmp_path / "a.txt").write_bytes(b"clean")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "eicar.com").write_bytes(eicar_bytes)
    (tmp_path / "sub" / "z.txt").write_bytes(b"")
    return tmp_path


def daemon_args(server) -> list[str]:
    return ["--host", server.host, "--port", str(server.port), "--timeout", "5000"]


class TestPing:
    def test_alive(self, clamd_server):
        status, lines = run(*daemon_args(clamd_server), "--ping")
        assert status == EXIT_CLEAN
        assert lines == [f"{clamd_server.host}:{clamd_server.port}: ALIVE"]

    def test_down(self, unused_port: int):
        status, lines = run("--host", "127.0.0.1", "--port", str(unused_port), "--ping")
        assert status == EXIT_ERROR
        assert lines == [f"127.0.0.1:{unused_port}: DOWN"]


class TestDaemonVersion:
    def test_prints_version(self, clamd_server):
        status, lines = run(*daemon_args(clamd_server), "--daemon-version")
        assert status == EXIT_CLEAN
        assert lines == ["ClamAV 0.98.1 database 19209 (2015-06-10 08:23:45)"]

    def test_malformed(self, clamd_server):
        clamd_server.version_reply = b"garbage"
        status, _ = run(*daemon_args(clamd_server), "--daemon-version")
        assert status == EXIT_ERROR


class TestScan:
    def test_single_clean_file(self, clamd_server, tree):
        status, lines = run(*daemon_args(clamd_server), str(tree / "a.txt"))
        assert status == EXIT_CLEAN
        assert lines == [f"{tree / 'a.txt'}: OK"]

    @pytest.mark.parametrize("mode", [[], ["--sendfile"]])
    def test_directory(self, clamd_server, tree, mode):
        status, lines = run(*daemon_args(clamd_server), *mode, str(tree))
        assert status == EXIT_INFECTED
        assert lines == [
            f"{tree / 'a.txt'}: OK",
            f"{tree / 'sub' / 'eicar.com'}: Eicar-Test-Signature FOUND",
            f"{tree / 'sub' / 'z.txt'}: OK",
        ]

    def test_async(self, clamd_server, tree):
        status, lines = run(*daemon_args(clamd_server), "--async", str(tree))
        assert status == EXIT_INFECTED
        assert sorted(lines) == sorted(
            [
                f"{tree / 'a.txt'}: OK",
                f"{tree / 'sub' / 'eicar.com'}: Eicar-Test-Signature FOUND",
                f"{tree / 'sub' / 'z.txt'}: OK",
            ]
        )

    def test_error_does_not_stop_other_files(self, clamd_server, tree):
        clamd_server.responder = lambda payload: (
            b"INSTREAM size limit exceeded. ERROR" if payload == b"clean" else b"stream: OK"
        )
        status, lines = run(*daemon_args(clamd_server), str(tree))
        assert status == EXIT_ERROR
        assert lines[0] == f"{tree / 'a.txt'}: INSTREAM size limit exceeded. ERROR"
        assert len(lines) == 3

    def test_missing_path(self, clamd_server, tmp_path):
        status, lines = run(*daemon_args(clamd_server), str(tmp_path / "nope"))
        assert status == EXIT_ERROR
        assert lines[0].startswith(f"{tmp_path / 'nope'}: ")

    def test_missing_path_async(self, clamd_server, tmp_path):
        status, _ = run(*daemon_args(clamd_server), "--async", str(tmp_path / "nope"))
        assert status == EXIT_ERROR

    def test_unreachable_daemon(self, unused_port: int, tree):
        status, lines = run("--host", "127.0.0.1", "--port", str(unused_port), str(tree / "a.txt"))
        assert status == EXIT_ERROR
        assert "cannot connect" in lines[0]


class TestArguments:
    def test_path_required(self):
        with pytest.raises(SystemExit) as excinfo:
            main([])
        assert excinfo.value.code == 2

    def test_negative_timeout(self):
        with pytest.raises(SystemExit):
            main(["--timeout", "-5", "--ping"])

    def test_sendfile_and_async_exclusive(self, tmp_path):
        with pytest.raises(SystemExit):
            main(["--sendfile", "--async", str(tmp_path)])

    def test_environment_defaults(self, monkeypatch, clamd_server):
        monkeypatch.setenv("CLAMD_HOST", clamd_server.host)
        monkeypatch.setenv("CLAMD_PORT", str(clamd_server.port))
        status, lines = run("--ping")
        assert status == EXIT_CLEAN
        assert lines[0].endswith("ALIVE")


class TestIterFiles:
    def test_file(self, tree):
        assert list(iter_files(tree / "a.txt")) == [tree / "a.txt"]

    def test_directory_is_walked_in_order(self, tree):
        assert list(iter_files(tree)) == [tree / "a.txt", tree / "sub" / "eicar.com", tree / "sub" / "z.txt"]
