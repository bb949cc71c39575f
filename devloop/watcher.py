"""Filesystem change watcher — filtered, restartable change stream for one tree.

``WatchSession.changes()`` is an infinite async iterator of relative paths
whose extension is in the session's accepted set.  It ends only when the
shutdown event is set, and raises ``WatchFatal`` on an unrecoverable watch
failure.

Two build tools touching overlapping paths can make the underlying watch
handle report its root as missing for a moment.  When that happens and the
directory is still on disk, the watch is re-established after a short
delay without emitting anything.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import random
from pathlib import Path
from typing import AsyncIterator, Callable, Iterable, Iterator

from watchfiles import Change, DefaultFilter, awatch

from devloop.errors import WatchFatal

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS: int = 50
CARGO_EXTENSIONS: frozenset[str] = frozenset({"rs", "toml"})


# ---------------------------------------------------------------------------
# Relevance
# ---------------------------------------------------------------------------


def extension_of(path: str | None) -> str | None:
    """Return the substring after the last ``.`` of *path*, or ``None``."""
    if not path or "." not in path:
        return None
    return path.rsplit(".", 1)[1] or None


def is_relevant(path: str | None, extensions: Iterable[str]) -> bool:
    """True when *path* carries one of the accepted *extensions*."""
    ext = extension_of(path)
    return ext is not None and ext in extensions


def is_transient(exc: BaseException) -> bool:
    """True for the "watched directory is missing" class of failure."""
    return isinstance(exc, FileNotFoundError) or (
        isinstance(exc, OSError) and exc.errno == errno.ENOENT
    )


class BuildTreeFilter(DefaultFilter):
    """``DefaultFilter`` that also skips build-output directories such as ``target``."""

    def __init__(self, ignore_dirs: Iterable[str] = ()) -> None:
        super().__init__(ignore_dirs=(*self.ignore_dirs, *ignore_dirs))


def restart_delays(initial_s: float = 0.05, max_s: float = 2.0) -> Iterator[float]:
    """Yield doubling, jittered delays capped at *max_s*; never stops."""
    delay = initial_s
    while True:
        yield round(delay * random.uniform(0.5, 1.0), 4)
        delay = min(delay * 2, max_s)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class WatchSession:
    """Restartable, filtered, recursive watch of one directory tree.

    Parameters
    ----------
    directory:
        Root of the tree to watch.
    extensions:
        Accepted extensions without the leading dot (``{"rs", "toml"}``).
    stop_event:
        When set, the change stream ends cleanly.
    ignore_dirs:
        Extra directory names to ignore on top of ``DefaultFilter``'s.
    debounce_ms:
        Batching window handed to ``watchfiles``.
    watch:
        Factory with ``awatch``'s signature; replaced in tests.
    """

    def __init__(
        self,
        directory: str | Path,
        extensions: Iterable[str] = CARGO_EXTENSIONS,
        *,
        stop_event: asyncio.Event | None = None,
        ignore_dirs: Iterable[str] = (),
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        watch: Callable[..., AsyncIterator[set[tuple[Change, str]]]] = awatch,
    ) -> None:
        self.directory = Path(directory)
        self.extensions = frozenset(e.lstrip(".") for e in extensions)
        self.stop_event = stop_event
        self.debounce_ms = debounce_ms
        self.restarts = 0
        self._filter = BuildTreeFilter(ignore_dirs)
        self._watch = watch

    def relative(self, path: str) -> str:
        """Express an absolute event path relative to the watched directory."""
        try:
            return Path(path).relative_to(self.directory.resolve()).as_posix()
        except ValueError:
            try:
                return Path(path).relative_to(self.directory).as_posix()
            except ValueError:
                return Path(path).as_posix()

    async def changes(self) -> AsyncIterator[str]:
        """Yield the relative path of every relevant change, forever."""
        delays = restart_delays()
        while True:
            try:
                async for batch in self._watch(
                    self.directory,
                    watch_filter=self._filter,
                    stop_event=self.stop_event,
                    debounce=self.debounce_ms,
                    recursive=True,
                ):
                    delays = restart_delays()
                    for _change, raw_path in batch:
                        if not raw_path:
                            continue
                        rel = self.relative(raw_path)
                        if is_relevant(rel, self.extensions):
                            yield rel
                return
            except Exception as exc:
                if not (is_transient(exc) and self.directory.is_dir()):
                    raise WatchFatal(str(self.directory), exc) from exc
                self.restarts += 1
                delay = next(delays)
                logger.debug(
                    "Watch on %s lost its handle (%s); restarting in %.2fs",
                    self.directory, exc, delay,
                )
                await asyncio.sleep(delay)
            if self.stop_event is not None and self.stop_event.is_set():
                return


__all__ = [
    "BuildTreeFilter",
    "CARGO_EXTENSIONS",
    "WatchSession",
    "extension_of",
    "is_relevant",
    "is_transient",
    "restart_delays",
]
