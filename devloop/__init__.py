"""Development-loop orchestrator — watch, rebuild, chain, publish.

Public API
----------
Contracts (Pydantic models)::

    BuildTarget, BuildOutcome, Artifact,

Builder::

    Builder, BuildRequest  — single-flight, cancellable build execution

Dependency chain::

    BuildChain  — library → server → publish

Watching::

    WatchSession, extension_of, is_relevant,

Front-end supervision::

    FrontEndSession, MarkerScanner,

Commands::

    Command, parse_command, KeyboardReader, raw_terminal,

Cancellation::

    CancelToken, ShutdownContext,

Orchestration::

    Orchestrator, Settings, load_settings,

Errors::

    DevLoopError, BuildFailed, WatchFatal, PublishFailed,
    FrontEndExited, ConfigError,
"""

from devloop.builder import Builder, BuildRequest
from devloop.cancellation import CancelToken, ShutdownContext
from devloop.chain import BuildChain
from devloop.commands import Command, KeyboardReader, parse_command, raw_terminal
from devloop.config import Settings, load_settings
from devloop.contracts import Artifact, BuildOutcome, BuildTarget
from devloop.errors import (
    BuildFailed,
    ConfigError,
    DevLoopError,
    FrontEndExited,
    PublishFailed,
    WatchFatal,
)
from devloop.frontend import FrontEndSession, MarkerScanner
from devloop.orchestrator import Orchestrator
from devloop.watcher import WatchSession, extension_of, is_relevant

__all__ = [
    # Contracts
    "Artifact",
    "BuildOutcome",
    "BuildTarget",
    # Builder
    "Builder",
    "BuildRequest",
    # Dependency chain
    "BuildChain",
    # Watching
    "WatchSession",
    "extension_of",
    "is_relevant",
    # Front-end supervision
    "FrontEndSession",
    "MarkerScanner",
    # Commands
    "Command",
    "KeyboardReader",
    "parse_command",
    "raw_terminal",
    # Cancellation
    "CancelToken",
    "ShutdownContext",
    # Orchestration
    "Orchestrator",
    "Settings",
    "load_settings",
    # Errors
    "DevLoopError",
    "BuildFailed",
    "WatchFatal",
    "PublishFailed",
    "FrontEndExited",
    "ConfigError",
]
