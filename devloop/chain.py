"""Build dependency graph — library → server → publish.

``build_library()`` and ``build_server()`` await the whole chain and return
its final outcome.  ``trigger_library()`` / ``trigger_server()`` schedule the
same coroutines as tracked background tasks so that a filesystem watcher
never blocks on a running chain: a second change simply requests a new
build, which supersedes whatever stage of the chain is running.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from typing import Awaitable, Callable

from devloop.builder import Builder
from devloop.contracts import Artifact, BuildOutcome
from devloop.errors import BuildFailed, PublishFailed

logger = logging.getLogger(__name__)


class BuildChain:
    """Two builders joined by a success edge, ending in an artifact publish."""

    def __init__(self, library: Builder, server: Builder, artifact: Artifact) -> None:
        self.library = library
        self.server = server
        self.artifact = artifact
        self._tasks: set[asyncio.Task] = set()
        self.on_error: Callable[[BaseException], None] | None = None

    # -- awaited entry points ------------------------------------------------

    async def build_server(self) -> BuildOutcome:
        """Build the server; publish its executable only if the build succeeded.

        Raises
        ------
        PublishFailed
            When the copy to the publish location fails.
        """
        outcome = await self._attempt(self.server)
        if outcome is BuildOutcome.SUCCEEDED:
            self.publish()
        return outcome

    async def build_library(self) -> BuildOutcome:
        """Build the library and, only if it succeeded, the server chain.

        A server build still running from an earlier chain links against
        the old library, so it is superseded before the library starts.
        """
        self.server.cancel("superseded")
        outcome = await self._attempt(self.library)
        if outcome is not BuildOutcome.SUCCEEDED:
            return outcome
        return await self.build_server()

    def publish(self) -> None:
        """Copy the built executable to its publish location."""
        source, destination = self.artifact.source, self.artifact.destination
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, destination)
        except OSError as exc:
            raise PublishFailed(str(source), str(destination), exc) from exc
        logger.info("Published %s", destination)

    # -- fire-and-forget entry points ----------------------------------------

    def trigger_library(self) -> asyncio.Task:
        return self._spawn(self.build_library, "chain:library")

    def trigger_server(self) -> asyncio.Task:
        return self._spawn(self.build_server, "chain:server")

    @property
    def pending(self) -> int:
        """Number of scheduled chains that have not finished yet."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled chain to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- internals -----------------------------------------------------------

    @staticmethod
    async def _attempt(builder: Builder) -> BuildOutcome:
        try:
            return await builder.request_build()
        except BuildFailed as exc:
            logger.warning("%s", exc)
            return BuildOutcome.FAILED

    def _spawn(self, entry: Callable[[], Awaitable[BuildOutcome]], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(entry(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error("%s failed: %s", task.get_name(), exc)
        if self.on_error is not None:
            self.on_error(exc)


__all__ = [
    "BuildChain",
]
