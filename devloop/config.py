"""Dev-loop configuration loaded from environment variables.

Uses ``pydantic-settings`` for env-var loading (prefix ``DEVLOOP_``), type
coercion and ``.env`` file support.  Relative directories are resolved
against ``ROOT``, which defaults to the current working directory.
"""

from __future__ import annotations

import sys
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from devloop.contracts import Artifact, BuildTarget
from devloop.errors import ConfigError


class Settings(BaseSettings):
    """Dev-loop settings — sourced from environment / ``.env`` file."""

    model_config = SettingsConfigDict(
        env_prefix="DEVLOOP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    ROOT: Path = Field(default_factory=Path.cwd)

    # -- project layout --
    # The interpreter checkout sits next to this repo; the language server
    # and the editor client live inside it.
    LIBRARY_DIR: Path = Path("../orchid")
    SERVER_DIR: Path = Path("server")
    CLIENT_DIR: Path = Path("client")
    PUBLISH_DIR: Path = Path("client/public")

    # -- commands --
    BUILD_COMMAND: str = "cargo build --color always"
    CLIENT_COMMAND: str = "npm run watch:client"
    CLIENT_SHELL: str = "bash"
    READINESS_MARKER: str = "Watching for file changes"

    # -- artifact --
    EXE_NAME: str = "orchid-ls"
    BUILD_PROFILE: str = "debug"

    # -- watching --
    WATCH_EXTENSIONS: list[str] = ["rs", "toml"]
    IGNORE_DIRS: list[str] = ["target", ".git", "node_modules"]
    WATCH_DEBOUNCE_MS: int = Field(default=50, ge=1)

    # -- process control --
    SHUTDOWN_GRACE_S: float = Field(default=0.1, gt=0)
    KILL_TIMEOUT_S: float = Field(default=2.0, gt=0)
    PTY_COLS: int = Field(default=80, ge=1)
    PTY_ROWS: int = Field(default=30, ge=1)
    START_CLIENT: bool = True

    LOG_LEVEL: str = "INFO"

    @field_validator("BUILD_COMMAND", "CLIENT_COMMAND", "READINESS_MARKER")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("WATCH_EXTENSIONS")
    @classmethod
    def _strip_dots(cls, value: list[str]) -> list[str]:
        cleaned = [ext.strip().lstrip(".") for ext in value if ext.strip()]
        if not cleaned:
            raise ValueError("at least one extension is required")
        return cleaned

    # -- derived values --------------------------------------------------------

    def resolve(self, path: Path) -> Path:
        """Anchor *path* at ``ROOT`` unless it is already absolute."""
        return path if path.is_absolute() else (self.ROOT / path).resolve()

    @property
    def exe_file_name(self) -> str:
        return f"{self.EXE_NAME}.exe" if sys.platform == "win32" else self.EXE_NAME

    def library_target(self) -> BuildTarget:
        return BuildTarget(
            name="library",
            directory=self.resolve(self.LIBRARY_DIR),
            command=self.BUILD_COMMAND,
        )

    def server_target(self) -> BuildTarget:
        return BuildTarget(
            name="server",
            directory=self.resolve(self.SERVER_DIR),
            command=self.BUILD_COMMAND,
        )

    def artifact(self) -> Artifact:
        server = self.resolve(self.SERVER_DIR)
        return Artifact(
            source=server / "target" / self.BUILD_PROFILE / self.exe_file_name,
            destination=self.resolve(self.PUBLISH_DIR) / self.exe_file_name,
        )

    def validate_layout(self) -> None:
        """Fail fast when a project directory the loop needs is missing.

        Raises
        ------
        ConfigError
            Naming the first missing directory.
        """
        required = [("LIBRARY_DIR", self.LIBRARY_DIR), ("SERVER_DIR", self.SERVER_DIR)]
        if self.START_CLIENT:
            required.append(("CLIENT_DIR", self.CLIENT_DIR))
        for setting, path in required:
            resolved = self.resolve(path)
            if not resolved.is_dir():
                raise ConfigError(setting, f"directory {resolved} does not exist")


def load_settings(**overrides) -> Settings:
    """Build ``Settings`` from the environment, applying keyword *overrides*."""
    return Settings(**overrides)


__all__ = [
    "Settings",
    "load_settings",
]
