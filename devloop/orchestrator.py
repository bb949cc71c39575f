"""Orchestrator — startup sequence, watchers, command loop and shutdown.

Startup order:

1. Start the front-end watcher and wait for its readiness marker
   (skipped when ``START_CLIENT`` is off).
2. Run one full library → server → publish chain.
3. Print the banner.
4. Run both filesystem watchers and the keyboard command loop until
   ``die()`` is called.

``die()`` triggers the shared ``ShutdownContext`` (cancelling both builders'
in-flight builds, stopping the front-end watcher and ending the watch
streams), waits ``grace_s`` so the child processes see their termination
requests, and lets ``run()`` return.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import signal
from typing import Awaitable, Callable, ContextManager

from devloop.builder import Builder
from devloop.cancellation import ShutdownContext
from devloop.chain import BuildChain
from devloop.commands import Command, KeyboardReader, parse_command, raw_terminal
from devloop.config import Settings
from devloop.errors import DevLoopError, WatchFatal
from devloop.frontend import FrontEndSession
from devloop.watcher import WatchSession

logger = logging.getLogger(__name__)

BANNER: str = "Watching sources. Press 'q' quit, 'r' to reload"


class Orchestrator:
    """Owns every long-lived component of the dev loop and drives its lifecycle."""

    def __init__(
        self,
        chain: BuildChain,
        library_watch: WatchSession,
        server_watch: WatchSession,
        *,
        shutdown: ShutdownContext,
        frontend: FrontEndSession | None = None,
        keyboard: KeyboardReader | None = None,
        terminal: Callable[[], ContextManager] | None = None,
        grace_s: float = 0.1,
        echo: Callable[[str], None] | None = None,
    ) -> None:
        self.chain = chain
        self.library_watch = library_watch
        self.server_watch = server_watch
        self.shutdown = shutdown
        self.frontend = frontend
        self.keyboard = keyboard
        self.terminal = terminal
        self.grace_s = grace_s
        self.echo = echo or functools.partial(print, flush=True)
        self.exit_code = 0
        self._exited = asyncio.Event()
        self._dying = False
        self._tasks: list[asyncio.Task] = []
        self.chain.on_error = self._report

    @classmethod
    def from_settings(cls, settings: Settings) -> Orchestrator:
        """Wire the production component graph described by *settings*."""
        shutdown = ShutdownContext()
        library = Builder(
            settings.library_target(), kill_timeout_s=settings.KILL_TIMEOUT_S, shutdown=shutdown,
        )
        server = Builder(
            settings.server_target(), kill_timeout_s=settings.KILL_TIMEOUT_S, shutdown=shutdown,
        )
        chain = BuildChain(library, server, settings.artifact())

        watch_options = {
            "extensions": settings.WATCH_EXTENSIONS,
            "stop_event": shutdown.event,
            "ignore_dirs": settings.IGNORE_DIRS,
            "debounce_ms": settings.WATCH_DEBOUNCE_MS,
        }
        frontend = None
        if settings.START_CLIENT:
            frontend = FrontEndSession(
                settings.CLIENT_COMMAND,
                settings.resolve(settings.CLIENT_DIR),
                marker=settings.READINESS_MARKER,
                shell=settings.CLIENT_SHELL,
                cols=settings.PTY_COLS,
                rows=settings.PTY_ROWS,
                kill_timeout_s=settings.KILL_TIMEOUT_S,
                shutdown=shutdown,
            )
        return cls(
            chain,
            WatchSession(library.target.directory, **watch_options),
            WatchSession(server.target.directory, **watch_options),
            shutdown=shutdown,
            frontend=frontend,
            keyboard=KeyboardReader(),
            terminal=raw_terminal,
            grace_s=settings.SHUTDOWN_GRACE_S,
        )

    # -- lifecycle -----------------------------------------------------------

    async def run(self) -> int:
        """Run the whole dev loop; returns the process exit status."""
        self._install_signal_handlers()
        try:
            if self.frontend is not None and not await self._startup_frontend():
                return self.exit_code
            if not await self._unless_shutdown(self._initial_build()):
                return self.exit_code

            self.echo(BANNER)
            with contextlib.ExitStack() as stack:
                if self.terminal is not None and self.keyboard is not None:
                    stack.enter_context(self.terminal())
                self._start(
                    self.watch(self.library_watch, self.chain.trigger_library, "library"),
                    "watch:library",
                )
                self._start(
                    self.watch(self.server_watch, self.chain.trigger_server, "server"),
                    "watch:server",
                )
                if self.keyboard is not None:
                    self._start(self.command_loop(), "commands")
                await self._exited.wait()
            return self.exit_code
        finally:
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._remove_signal_handlers()

    async def die(self) -> None:
        """Shut everything down; only the first call has any effect."""
        if self._dying:
            return
        self._dying = True
        self.echo("Exiting...")
        self.shutdown.trigger()
        await asyncio.sleep(self.grace_s)
        self._exited.set()

    # -- tasks ---------------------------------------------------------------

    async def watch(
        self,
        session: WatchSession,
        trigger: Callable[[], object],
        label: str,
    ) -> None:
        """Invoke *trigger* for every relevant change reported by *session*."""
        try:
            async for path in session.changes():
                logger.info("%s changed, rebuilding %s...", path, label)
                trigger()
        except WatchFatal as exc:
            logger.error("%s; %s will no longer rebuild automatically", exc, label)

    async def command_loop(self) -> None:
        """Dispatch keystrokes until quit or end of input."""
        async for chunk in self.keyboard.chunks():
            command = parse_command(chunk)
            if command is Command.QUIT:
                await self.die()
                return
            if command is Command.RELOAD:
                self.echo("Reloading...")
                self.chain.trigger_library()
            else:
                text = chunk.decode("utf-8", errors="replace")
                self.echo(f'Unrecognized command "{text}".')

    # -- internals -----------------------------------------------------------

    async def _startup_frontend(self) -> bool:
        try:
            ready = await self.frontend.start()
            return await self._unless_shutdown(ready)
        except DevLoopError as exc:
            logger.error("%s; continuing without the front-end watcher", exc)
            return not self.shutdown.triggered
        except OSError as exc:
            logger.error("Could not start front-end watcher: %s", exc)
            return not self.shutdown.triggered

    async def _initial_build(self) -> None:
        try:
            await self.chain.build_library()
        except DevLoopError as exc:
            self._report(exc)

    async def _unless_shutdown(self, awaitable: Awaitable) -> bool:
        """Await *awaitable* unless shutdown comes first.  True if it finished."""
        work = asyncio.ensure_future(awaitable)
        stop = asyncio.ensure_future(self.shutdown.event.wait())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
        if self.shutdown.triggered:
            if not work.done():
                work.cancel()
            await asyncio.wait({work})
            if not work.cancelled() and work.exception() is not None:
                logger.debug("Ignored during shutdown: %s", work.exception())
            await self._exited.wait()
            return False
        work.result()
        return True

    def _start(self, coro: Awaitable, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.append(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        logger.error("%s stopped: %r", task.get_name(), task.exception())
        # A dead command loop leaves no way to quit from the keyboard.
        if task.get_name() == "commands":
            self._start(self.die(), "die")

    def _report(self, exc: BaseException) -> None:
        self.echo(f"Error: {exc}")

    def _on_signal(self) -> None:
        self._start(self.die(), "die")

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal)
            except (NotImplementedError, RuntimeError, ValueError):
                logger.debug("Cannot install handler for %s", sig)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
                loop.remove_signal_handler(sig)


__all__ = [
    "BANNER",
    "Orchestrator",
]
