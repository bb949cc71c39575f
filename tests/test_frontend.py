"""Tests for devloop.frontend — pty-backed supervision of the client watcher."""

from __future__ import annotations

import asyncio
import io
import os
import shutil

import pytest

from devloop.cancellation import ShutdownContext
from devloop.errors import FrontEndExited
from devloop.frontend import DEFAULT_MARKER, FrontEndSession, MarkerScanner

SHELL = shutil.which("bash") or "sh"


# ═══════════════════════════════════════════════════════════════════════════
# MarkerScanner
# ═══════════════════════════════════════════════════════════════════════════


class TestMarkerScanner:
    def test_single_chunk(self):
        scanner = MarkerScanner("ready")
        assert scanner.feed(b"compiling...\r\n") is False
        assert scanner.feed(b"\x1b[32mready\x1b[0m\r\n") is True
        assert scanner.found is True

    def test_marker_split_across_chunks(self):
        scanner = MarkerScanner(DEFAULT_MARKER)
        assert scanner.feed(b"12:00:01 - Found 0 errors. Watching for f") is False
        assert scanner.feed(b"ile changes.\r\n") is True

    def test_split_across_many_chunks(self):
        scanner = MarkerScanner("abcdef")
        results = [scanner.feed(bytes([c])) for c in b"xxabcdefyy"]
        assert results.count(True) == 1
        assert results[7] is True

    def test_only_first_match_counts(self):
        scanner = MarkerScanner("ready")
        assert scanner.feed(b"ready") is True
        assert scanner.feed(b"ready") is False

    def test_single_char_marker(self):
        scanner = MarkerScanner("$")
        assert scanner.feed(b"abc") is False
        assert scanner.feed(b"$") is True


# ═══════════════════════════════════════════════════════════════════════════
# FrontEndSession with a real pty
# ═══════════════════════════════════════════════════════════════════════════


@pytest.mark.process
class TestFrontEndSession:
    @pytest.mark.asyncio
    async def test_readiness_and_relay(self, tmp_path):
        out = io.BytesIO()
        session = FrontEndSession(
            "echo starting; echo 'Watching for file changes.'; sleep 30",
            tmp_path, shell=SHELL, output=out, kill_timeout_s=1.0,
        )
        ready = await session.start()
        try:
            await asyncio.wait_for(ready, 10)
            assert b"starting" in out.getvalue()
            assert b"Watching for file changes" in out.getvalue()
        finally:
            await session.stop()

    @pytest.mark.asyncio
    async def test_runs_inside_a_terminal(self, tmp_path):
        out = io.BytesIO()
        session = FrontEndSession(
            "test -t 1 && echo \"tty:$TERM:$(stty size)\"; echo READY; sleep 30",
            tmp_path, marker="READY", shell=SHELL, output=out, cols=80, rows=30,
            kill_timeout_s=1.0,
        )
        ready = await session.start()
        try:
            await asyncio.wait_for(ready, 10)
        finally:
            await session.stop()
        assert b"tty:xterm-256color:30 80" in out.getvalue()

    @pytest.mark.asyncio
    async def test_pty_is_controlling_terminal(self, tmp_path):
        out = io.BytesIO()
        session = FrontEndSession(
            "if (exec 3</dev/tty) 2>/dev/null; then echo ctty:yes; else echo ctty:no; fi; "
            "echo READY; sleep 30",
            tmp_path, marker="READY", shell=SHELL, output=out, kill_timeout_s=1.0,
        )
        ready = await session.start()
        try:
            await asyncio.wait_for(ready, 10)
        finally:
            await session.stop()
        assert b"ctty:yes" in out.getvalue()

    @pytest.mark.asyncio
    async def test_exit_before_marker_fails_readiness(self, tmp_path):
        session = FrontEndSession(
            "echo 'npm ERR! missing script: watch:client'; exit 1",
            tmp_path, shell=SHELL, output=io.BytesIO(),
        )
        ready = await session.start()
        with pytest.raises(FrontEndExited):
            await asyncio.wait_for(ready, 10)
        await session.stop()

    @pytest.mark.asyncio
    async def test_no_output_after_stop(self, tmp_path):
        out = io.BytesIO()
        session = FrontEndSession(
            "echo READY; while true; do echo tick; sleep 0.05; done",
            tmp_path, marker="READY", shell=SHELL, output=out, kill_timeout_s=1.0,
        )
        ready = await session.start()
        await asyncio.wait_for(ready, 10)
        code = await session.stop()
        assert code is not None
        size = len(out.getvalue())
        await asyncio.sleep(0.2)
        assert len(out.getvalue()) == size

    @pytest.mark.asyncio
    async def test_shutdown_context_stops_session(self, tmp_path):
        shutdown = ShutdownContext()
        session = FrontEndSession(
            "echo READY; sleep 30", tmp_path, marker="READY", shell=SHELL,
            output=io.BytesIO(), shutdown=shutdown, kill_timeout_s=1.0,
        )
        ready = await session.start()
        await asyncio.wait_for(ready, 10)
        pid = session.pid

        shutdown.trigger()
        for _ in range(100):
            await asyncio.sleep(0.05)
            try:
                os.kill(pid, 0)
            except ProcessLookupError:
                break
        else:
            pytest.fail("front-end process survived shutdown")
        await session.stop()

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, tmp_path):
        session = FrontEndSession("sleep 30", tmp_path, shell=SHELL, output=io.BytesIO())
        await session.start()
        try:
            with pytest.raises(RuntimeError):
                await session.start()
        finally:
            await session.stop()
