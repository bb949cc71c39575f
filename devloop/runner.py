"""Command runner — spawn build commands, relay their output, stop them.

Provides ``spawn()`` for launching a shell command in its own process
group, ``relay()`` for copying a child's output to the orchestrator's
own streams as it arrives, and ``terminate()`` for the
request-then-force stop policy used on cancellation and shutdown.

Output is relayed byte-for-byte and never buffered or truncated.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CHUNK_SIZE: int = 4096
DEFAULT_KILL_TIMEOUT_S: float = 2.0

_POSIX: bool = os.name == "posix"


# ---------------------------------------------------------------------------
# Spawning
# ---------------------------------------------------------------------------


async def spawn(command: str, cwd: str | Path) -> asyncio.subprocess.Process:
    """Start *command* through the shell in *cwd* with piped output.

    On POSIX the child leads a new session so that ``terminate()`` can
    signal the shell together with everything it started (``cargo`` and
    its ``rustc`` children).
    """
    kwargs: dict = {}
    if _POSIX:
        kwargs["start_new_session"] = True
    logger.debug("Spawning %r in %s", command, cwd)
    return await asyncio.create_subprocess_shell(
        command,
        cwd=str(cwd),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Output relay
# ---------------------------------------------------------------------------


def _binary(stream) -> BinaryIO:
    return getattr(stream, "buffer", stream)


async def pump(source: asyncio.StreamReader, sink: BinaryIO) -> None:
    """Copy *source* into *sink* chunk by chunk until EOF, flushing each chunk."""
    while True:
        chunk = await source.read(CHUNK_SIZE)
        if not chunk:
            return
        sink.write(chunk)
        sink.flush()


async def relay(
    proc: asyncio.subprocess.Process,
    *,
    stdout: BinaryIO | None = None,
    stderr: BinaryIO | None = None,
) -> int:
    """Relay both output streams of *proc* live, then return its exit code.

    *stdout* / *stderr* default to the binary buffers of ``sys.stdout``
    and ``sys.stderr`` at call time.
    """
    out = stdout if stdout is not None else _binary(sys.stdout)
    err = stderr if stderr is not None else _binary(sys.stderr)
    pumps = []
    if proc.stdout is not None:
        pumps.append(pump(proc.stdout, out))
    if proc.stderr is not None:
        pumps.append(pump(proc.stderr, err))
    await asyncio.gather(*pumps)
    return await proc.wait()


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------


def send_signal(pid: int, sig: int) -> None:
    """Deliver *sig* to the process group led by *pid* (or just *pid* off POSIX)."""
    try:
        if _POSIX:
            os.killpg(pid, sig)
        else:
            os.kill(pid, sig)
    except ProcessLookupError:
        pass


async def terminate(
    proc: asyncio.subprocess.Process,
    *,
    timeout_s: float = DEFAULT_KILL_TIMEOUT_S,
) -> int | None:
    """Ask *proc* to exit, escalating to a forced kill after *timeout_s*.

    Returns the exit code, or ``None`` when the process could not be
    reaped even after the kill.
    """
    if proc.returncode is not None:
        return proc.returncode

    send_signal(proc.pid, signal.SIGTERM)
    try:
        return await asyncio.wait_for(proc.wait(), timeout_s)
    except asyncio.TimeoutError:
        logger.warning("Process %d ignored SIGTERM for %.1fs, killing it", proc.pid, timeout_s)

    send_signal(proc.pid, signal.SIGKILL if _POSIX else signal.SIGTERM)
    try:
        return await asyncio.wait_for(proc.wait(), timeout_s)
    except asyncio.TimeoutError:
        logger.error("Process %d could not be reaped", proc.pid)
        return None


__all__ = [
    "CHUNK_SIZE",
    "DEFAULT_KILL_TIMEOUT_S",
    "pump",
    "relay",
    "send_signal",
    "spawn",
    "terminate",
]
