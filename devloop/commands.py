"""Single-keystroke command input.

``raw_terminal()`` puts the controlling terminal in character-at-a-time
mode with echo and signal generation off, so Ctrl-C and Ctrl-D arrive as
plain bytes.  ``KeyboardReader`` turns stdin into an async stream of raw
chunks and ``parse_command()`` maps each chunk to a ``Command``.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import os
import sys
import termios
from typing import AsyncIterator, Iterator

logger = logging.getLogger(__name__)

# ^C and ^D as delivered with ISIG/ICANON off.
INTERRUPT_BYTES: frozenset[int] = frozenset({0x03, 0x04})


class Command(str, enum.Enum):
    QUIT = "quit"
    RELOAD = "reload"
    UNKNOWN = "unknown"


def parse_command(chunk: bytes) -> Command:
    """Map one raw stdin chunk to a command.

    An empty chunk means stdin was closed and is treated like ``q``.
    """
    if not chunk:
        return Command.QUIT
    if len(chunk) == 1 and chunk[0] in INTERRUPT_BYTES:
        return Command.QUIT
    text = chunk.decode("utf-8", errors="replace")
    if text == "q":
        return Command.QUIT
    if text == "r":
        return Command.RELOAD
    return Command.UNKNOWN


@contextlib.contextmanager
def raw_terminal(fd: int | None = None) -> Iterator[bool]:
    """Switch the terminal on *fd* (default stdin) to raw key input.

    Output processing is left alone so relayed child output still renders.
    Yields False and changes nothing when *fd* is not a terminal.
    """
    fd = sys.stdin.fileno() if fd is None else fd
    if not os.isatty(fd):
        yield False
        return
    saved = termios.tcgetattr(fd)
    mode = termios.tcgetattr(fd)
    mode[0] &= ~(termios.ICRNL | termios.IXON)
    mode[3] &= ~(termios.ECHO | termios.ICANON | termios.IEXTEN | termios.ISIG)
    mode[6][termios.VMIN] = 1
    mode[6][termios.VTIME] = 0
    termios.tcsetattr(fd, termios.TCSANOW, mode)
    try:
        yield True
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


class KeyboardReader:
    """Async stream of raw chunks read from a file descriptor.

    The stream ends with one empty chunk once the descriptor reaches EOF,
    or straight away when it cannot be polled at all.
    """

    def __init__(self, fd: int | None = None, *, chunk_size: int = 1024) -> None:
        self.fd = sys.stdin.fileno() if fd is None else fd
        self.chunk_size = chunk_size

    async def chunks(self) -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[bytes] = asyncio.Queue()

        def _on_readable() -> None:
            try:
                data = os.read(self.fd, self.chunk_size)
            except BlockingIOError:
                return
            except OSError as exc:
                logger.debug("stdin read failed: %s", exc)
                data = b""
            if not data:
                loop.remove_reader(self.fd)
            queue.put_nowait(data)

        try:
            loop.add_reader(self.fd, _on_readable)
        except OSError as exc:
            # /dev/null and regular files cannot be polled; nothing will ever arrive.
            logger.warning("Keyboard input unavailable (%s); treating it as closed", exc)
            yield b""
            return
        try:
            while True:
                data = await queue.get()
                yield data
                if not data:
                    return
        finally:
            loop.remove_reader(self.fd)


__all__ = [
    "Command",
    "INTERRUPT_BYTES",
    "KeyboardReader",
    "parse_command",
    "raw_terminal",
]
