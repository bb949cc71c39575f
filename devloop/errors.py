"""Dev-loop error hierarchy.

Every error carries typed fields (not just a message string),
supports ``to_dict()`` for structured logging, and has a readable
``__str__``.
"""

from __future__ import annotations


class DevLoopError(Exception):
    """Base error for all dev-loop failures."""

    def __init__(self, message: str, *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message, **self.detail}

    def __str__(self) -> str:
        return self.message


class BuildFailed(DevLoopError):
    """A build command exited non-zero without being superseded."""

    def __init__(self, target: str, directory: str, exit_code: int) -> None:
        self.target = target
        self.directory = directory
        self.exit_code = exit_code
        super().__init__(
            f"Build of '{target}' failed with exit code {exit_code}",
            detail={"target": target, "directory": directory, "exit_code": exit_code},
        )


class WatchFatal(DevLoopError):
    """The filesystem watch for a directory cannot continue."""

    def __init__(self, directory: str, cause: BaseException) -> None:
        self.directory = directory
        self.cause = cause
        super().__init__(
            f"Watching '{directory}' failed: {cause}",
            detail={"directory": directory, "cause": type(cause).__name__},
        )


class PublishFailed(DevLoopError):
    """Copying the built executable to its publish location failed."""

    def __init__(self, source: str, destination: str, cause: BaseException) -> None:
        self.source = source
        self.destination = destination
        self.cause = cause
        super().__init__(
            f"Could not publish '{source}' to '{destination}': {cause}",
            detail={
                "source": source,
                "destination": destination,
                "cause": type(cause).__name__,
            },
        )


class FrontEndExited(DevLoopError):
    """The supervised front-end process closed its terminal before it was ready."""

    def __init__(self, exit_code: int | None) -> None:
        self.exit_code = exit_code
        super().__init__(
            f"Front-end watcher exited before becoming ready (exit code {exit_code})",
            detail={"exit_code": exit_code},
        )


class ConfigError(DevLoopError):
    """A setting is invalid or points at something that does not exist."""

    def __init__(self, setting: str, reason: str) -> None:
        self.setting = setting
        self.reason = reason
        super().__init__(
            f"Invalid setting {setting}: {reason}",
            detail={"setting": setting, "reason": reason},
        )
