"""Cancellation primitives — per-build tokens and the shared shutdown context.

``CancelToken`` is created fresh for every build request and handed to the
code that owns the child process; cancelling it never waits for anything.

``ShutdownContext`` is built once by the orchestrator and passed to every
long-lived component at construction time.  Components either watch its
``event`` (filesystem watchers) or register a teardown callback with
``on_shutdown()`` (builders, the front-end supervisor).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)


class CancelToken:
    """One-shot, idempotent cancellation flag that can be awaited."""

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> bool:
        """Flip the token.  Returns False if it was already cancelled."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Why the token was cancelled (``None`` while still live)."""
        return self._reason

    async def wait(self) -> str | None:
        """Suspend until the token is cancelled, then return the reason."""
        await self._event.wait()
        return self._reason


class ShutdownContext:
    """Process-wide shutdown state shared by every long-lived task."""

    def __init__(self) -> None:
        self.event = asyncio.Event()
        self._callbacks: list[tuple[str, Callable[[], object]]] = []

    @property
    def triggered(self) -> bool:
        return self.event.is_set()

    def on_shutdown(self, name: str, callback: Callable[[], object]) -> None:
        """Register *callback* to run (once) when shutdown is triggered."""
        self._callbacks.append((name, callback))

    def trigger(self) -> bool:
        """Run every registered callback and set the event.

        Returns False when shutdown had already been triggered.  A failing
        callback is logged and does not stop the remaining ones.
        """
        if self.event.is_set():
            return False
        self.event.set()
        for name, callback in self._callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Shutdown callback %s failed", name)
        return True


__all__ = [
    "CancelToken",
    "ShutdownContext",
]
