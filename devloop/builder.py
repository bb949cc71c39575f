"""Cancellable builder — single-flight execution of one target's build command.

Requests travel through a per-builder queue consumed by ``Builder.serve()``.
Taking a request off the queue cancels the token of whatever build is in
flight, so the last request always wins:

* the superseded requester resolves as ``BuildOutcome.SUPERSEDED`` at once,
* its child process is terminated in the background (SIGTERM, then SIGKILL
  after ``kill_timeout_s``),
* nothing it produces afterwards has any effect.

A build that exits non-zero without being superseded raises ``BuildFailed``
in the requester.

Usage::

    builder = Builder(BuildTarget(name="server", directory=path, command="cargo build"))
    builder.start()
    outcome = await builder.request_build()
    ...
    await builder.aclose()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass, field
from typing import BinaryIO

from devloop import runner
from devloop.cancellation import CancelToken, ShutdownContext
from devloop.contracts import BuildOutcome, BuildTarget
from devloop.errors import BuildFailed

logger = logging.getLogger(__name__)


@dataclass
class BuildRequest:
    """One queued build request and the future its requester awaits."""

    future: asyncio.Future
    token: CancelToken = field(default_factory=CancelToken)
    generation: int = 0


class Builder:
    """Single-flight, cancellable executor for one ``BuildTarget``."""

    def __init__(
        self,
        target: BuildTarget,
        *,
        kill_timeout_s: float = runner.DEFAULT_KILL_TIMEOUT_S,
        shutdown: ShutdownContext | None = None,
        stdout: BinaryIO | None = None,
        stderr: BinaryIO | None = None,
    ) -> None:
        self.target = target
        self.kill_timeout_s = kill_timeout_s
        self._stdout = stdout
        self._stderr = stderr
        self._requests: asyncio.Queue[BuildRequest] = asyncio.Queue()
        self._current: BuildRequest | None = None
        self._consumer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._generation = 0
        self._closed = False
        if shutdown is not None:
            shutdown.on_shutdown(f"builder:{target.name}", self.close)

    # -- state ---------------------------------------------------------------

    @property
    def name(self) -> str:
        return self.target.name

    @property
    def in_flight(self) -> bool:
        """True while a non-cancelled build is running or about to run."""
        current = self._current
        return (
            current is not None
            and not current.token.cancelled
            and not current.future.done()
        )

    @property
    def closed(self) -> bool:
        return self._closed

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Start the request consumer (idempotent)."""
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.get_running_loop().create_task(
                self.serve(), name=f"builder:{self.name}",
            )

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel the build in flight, if any.  Returns True if one was cancelled."""
        current = self._current
        if current is None or current.future.done():
            return False
        self._supersede(current, reason)
        return True

    def close(self) -> None:
        """Refuse further requests and cancel the build in flight."""
        self._closed = True
        self.cancel("exiting")

    async def aclose(self) -> None:
        """Close, stop the consumer and wait for in-flight child processes to be reaped."""
        self.close()
        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None
        # Unserved requests would otherwise wait forever.
        while not self._requests.empty():
            self._resolve(self._requests.get_nowait(), BuildOutcome.SUPERSEDED)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # -- requests ------------------------------------------------------------

    async def request_build(self) -> BuildOutcome:
        """Request a build and wait for its outcome.

        Raises
        ------
        BuildFailed
            When the build command exits non-zero and was not superseded.
        """
        loop = asyncio.get_running_loop()
        self._generation += 1
        request = BuildRequest(future=loop.create_future(), generation=self._generation)
        if self._closed:
            request.token.cancel("exiting")
            return BuildOutcome.SUPERSEDED
        self.start()
        self._requests.put_nowait(request)
        try:
            return await request.future
        except asyncio.CancelledError:
            request.token.cancel("abandoned")
            raise

    async def serve(self) -> None:
        """Consume the request queue forever, superseding older requests."""
        while True:
            request = await self._requests.get()
            previous, self._current = self._current, request
            if previous is not None and not previous.future.done():
                self._supersede(previous, "superseded")
            if request.token.cancelled or self._closed:
                self._resolve(request, BuildOutcome.SUPERSEDED)
                continue
            self._track(self._execute(request))

    # -- internals -----------------------------------------------------------

    def _supersede(self, request: BuildRequest, reason: str) -> None:
        request.token.cancel(reason)
        self._resolve(request, BuildOutcome.SUPERSEDED)
        logger.debug("%s build #%d %s", self.name, request.generation, reason)

    @staticmethod
    def _resolve(request: BuildRequest, outcome: BuildOutcome) -> None:
        if not request.future.done():
            request.future.set_result(outcome)

    @staticmethod
    def _fail(request: BuildRequest, exc: BaseException) -> None:
        if not request.future.done():
            request.future.set_exception(exc)

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _execute(self, request: BuildRequest) -> None:
        token = request.token
        if token.cancelled:
            self._resolve(request, BuildOutcome.SUPERSEDED)
            return

        logger.info("Building %s (#%d): %s", self.name, request.generation, self.target.command)
        try:
            proc = await runner.spawn(self.target.command, self.target.directory)
        except OSError as exc:
            logger.error("Could not start %s build: %s", self.name, exc)
            if token.cancelled:
                self._resolve(request, BuildOutcome.SUPERSEDED)
            else:
                self._fail(request, BuildFailed(self.name, str(self.target.directory), -1))
            return

        exit_task = asyncio.ensure_future(
            runner.relay(proc, stdout=self._stdout, stderr=self._stderr),
        )
        cancel_task = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({exit_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            token.cancel("exiting")
            self._resolve(request, BuildOutcome.SUPERSEDED)
            runner.send_signal(proc.pid, signal.SIGTERM)
            exit_task.cancel()
            raise
        finally:
            cancel_task.cancel()

        if token.cancelled:
            self._resolve(request, BuildOutcome.SUPERSEDED)
            await runner.terminate(proc, timeout_s=self.kill_timeout_s)
            exit_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, OSError):
                await exit_task
            return

        if self._current is request:
            self._current = None

        try:
            exit_code = exit_task.result()
        except OSError as exc:
            logger.error("Lost output of %s build: %s", self.name, exc)
            exit_code = await proc.wait()

        if exit_code != 0:
            self._fail(request, BuildFailed(self.name, str(self.target.directory), exit_code))
            return
        logger.info("%s build #%d succeeded", self.name, request.generation)
        self._resolve(request, BuildOutcome.SUCCEEDED)


__all__ = [
    "BuildRequest",
    "Builder",
]
