"""Shared test fixtures — reduces boilerplate across test modules.

Provides:
- ``py_command`` — shell command running a Python snippet with this interpreter
- ``sink`` — a ``BytesIO`` standing in for stdout / stderr
- ``FakeBuilder`` — scripted stand-in for ``devloop.builder.Builder``
- ``fake_watch`` — factory producing an ``awatch`` replacement fed from a list
"""

from __future__ import annotations

import asyncio
import io
import shlex
import sys
from typing import Callable

import pytest

from devloop.contracts import BuildOutcome, BuildTarget
from devloop.errors import BuildFailed


# ---------------------------------------------------------------------------
# Marker registration
# ---------------------------------------------------------------------------


def pytest_configure(config):
    """Register custom markers.

    Tests that spawn real child processes or real filesystem watches are
    decorated with ``@pytest.mark.process``.  Run with ``-m 'not process'``
    for the fast, fully in-memory subset.
    """
    config.addinivalue_line(
        "markers",
        "process: tests that spawn real subprocesses, ptys or watches",
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def python_command(code: str) -> str:
    """Return a shell command that runs *code* with the current interpreter."""
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


@pytest.fixture
def py_command() -> Callable[[str], str]:
    return python_command


@pytest.fixture
def sink() -> io.BytesIO:
    return io.BytesIO()


class FakeBuilder:
    """Builder stand-in whose outcomes are scripted per call.

    Each entry of *script* is a ``BuildOutcome`` or ``"fail"`` (raise
    ``BuildFailed``).  Once the script is exhausted every call succeeds.
    An optional *gate* event holds every call until it is set.
    """

    def __init__(self, name: str, script: list | None = None, gate: asyncio.Event | None = None):
        self.target = BuildTarget(name=name, directory=".", command="true")
        self.name = name
        self.script = list(script or [])
        self.gate = gate
        self.calls = 0
        self.cancels: list[str] = []
        self.closed = False

    async def request_build(self) -> BuildOutcome:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        step = self.script.pop(0) if self.script else BuildOutcome.SUCCEEDED
        if step == "fail":
            raise BuildFailed(self.name, ".", 101)
        return step

    def cancel(self, reason: str = "cancelled") -> bool:
        self.cancels.append(reason)
        return False

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_builder() -> type[FakeBuilder]:
    return FakeBuilder


def make_fake_watch(batches: list, *, hold: bool = True):
    """Build an ``awatch`` replacement.

    *batches* is consumed across restarts: each item is either a set of
    ``(change, path)`` pairs to yield, or an exception instance to raise.
    When the list runs out the fake waits for ``stop_event`` (if *hold*)
    and then ends.
    """
    calls: list[dict] = []

    async def _watch(path, *, stop_event=None, **kwargs):
        calls.append({"path": path, **kwargs})
        while batches:
            item = batches.pop(0)
            if isinstance(item, BaseException):
                raise item
            yield item
        if hold and stop_event is not None:
            await stop_event.wait()

    _watch.calls = calls  # type: ignore[attr-defined]
    return _watch


@pytest.fixture
def fake_watch():
    return make_fake_watch
