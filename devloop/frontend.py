"""Front-end process supervisor — the client's own watch command, inside a pty.

Running the companion tool inside a pseudo-terminal keeps its colored,
interactive output intact.  Everything it prints is relayed to stdout as it
arrives; the first occurrence of the readiness marker resolves the future
returned by ``start()``.

POSIX only (``pty``, ``termios``, ``fcntl``).
"""

from __future__ import annotations

import asyncio
import fcntl
import logging
import os
import pty
import struct
import sys
import termios
from pathlib import Path
from typing import BinaryIO

from devloop import runner
from devloop.cancellation import ShutdownContext
from devloop.errors import FrontEndExited

logger = logging.getLogger(__name__)

DEFAULT_MARKER: str = "Watching for file changes"
DEFAULT_SHELL: str = "bash"


def set_winsize(fd: int, rows: int, cols: int) -> None:
    """Give the terminal behind *fd* a fixed window size."""
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


def claim_terminal() -> None:
    """Make stdin (the pty slave) the controlling terminal of a new session.

    Runs in the child between ``setsid()`` and ``exec``.
    """
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


class MarkerScanner:
    """Detect a marker in a byte stream, including one split across chunks."""

    __slots__ = ("_marker", "_tail", "found")

    def __init__(self, marker: str) -> None:
        self._marker = marker.encode()
        self._tail = b""
        self.found = False

    def feed(self, chunk: bytes) -> bool:
        """Feed one chunk.  Returns True only for the chunk that completes the first match."""
        if self.found:
            return False
        window = self._tail + chunk
        if self._marker in window:
            self.found = True
            self._tail = b""
            return True
        keep = len(self._marker) - 1
        self._tail = window[-keep:] if keep > 0 else b""
        return False


class FrontEndSession:
    """One pty-backed child process running the client watch command."""

    def __init__(
        self,
        command: str,
        cwd: str | Path,
        *,
        marker: str = DEFAULT_MARKER,
        shell: str = DEFAULT_SHELL,
        cols: int = 80,
        rows: int = 30,
        kill_timeout_s: float = runner.DEFAULT_KILL_TIMEOUT_S,
        shutdown: ShutdownContext | None = None,
        output: BinaryIO | None = None,
    ) -> None:
        self.command = command
        self.cwd = Path(cwd)
        self.shell = shell
        self.cols = cols
        self.rows = rows
        self.kill_timeout_s = kill_timeout_s
        self._scanner = MarkerScanner(marker)
        self._output = output
        self._proc: asyncio.subprocess.Process | None = None
        self._master: int | None = None
        self._ready: asyncio.Future | None = None
        self._stopping: asyncio.Task | None = None
        if shutdown is not None:
            shutdown.on_shutdown("frontend", self.request_stop)

    @property
    def ready(self) -> asyncio.Future | None:
        return self._ready

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    async def start(self) -> asyncio.Future:
        """Spawn the watch command in a fresh pty and return the readiness future."""
        if self._proc is not None:
            raise RuntimeError("front-end session already started")
        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()

        master, slave = pty.openpty()
        set_winsize(slave, self.rows, self.cols)
        env = {**os.environ, "TERM": "xterm-256color"}
        logger.info("Starting front-end watcher: %s", self.command)
        try:
            self._proc = await asyncio.create_subprocess_exec(
                self.shell, "-c", self.command,
                stdin=slave, stdout=slave, stderr=slave,
                cwd=str(self.cwd), env=env, start_new_session=True,
                preexec_fn=claim_terminal,
            )
        except OSError:
            os.close(master)
            raise
        finally:
            os.close(slave)

        os.set_blocking(master, False)
        self._master = master
        loop.add_reader(master, self._on_readable)
        return self._ready

    def _sink(self) -> BinaryIO:
        return self._output if self._output is not None else getattr(sys.stdout, "buffer", sys.stdout)

    def _on_readable(self) -> None:
        try:
            chunk = os.read(self._master, runner.CHUNK_SIZE)
        except BlockingIOError:
            return
        except OSError:
            # EIO: every process holding the terminal has exited.
            chunk = b""
        if not chunk:
            self._detach()
            self._fail_ready()
            return
        sink = self._sink()
        sink.write(chunk)
        sink.flush()
        if self._scanner.feed(chunk) and self._ready is not None and not self._ready.done():
            logger.debug("Front-end watcher is ready")
            self._ready.set_result(None)

    def _fail_ready(self) -> None:
        if self._ready is None or self._ready.done():
            return
        code = self._proc.returncode if self._proc is not None else None
        self._ready.set_exception(FrontEndExited(code))

    def _detach(self) -> None:
        if self._master is None:
            return
        asyncio.get_running_loop().remove_reader(self._master)
        os.close(self._master)
        self._master = None

    def request_stop(self) -> None:
        """Schedule ``stop()`` without waiting for it (shutdown callback)."""
        if self._stopping is None:
            self._stopping = asyncio.get_running_loop().create_task(self.stop())

    async def stop(self) -> int | None:
        """Detach the relay and terminate the child.  Returns its exit code."""
        self._detach()
        if self._ready is not None and not self._ready.done():
            self._ready.cancel()
        if self._proc is None:
            return None
        logger.debug("Stopping front-end watcher (pid %d)", self._proc.pid)
        return await runner.terminate(self._proc, timeout_s=self.kill_timeout_s)


__all__ = [
    "DEFAULT_MARKER",
    "FrontEndSession",
    "MarkerScanner",
    "claim_terminal",
    "set_winsize",
]
