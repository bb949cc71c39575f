"""Dev-loop contracts — Pydantic models shared between components.

All models are frozen (immutable after creation).
"""

from __future__ import annotations

import enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BuildOutcome(str, enum.Enum):
    """Terminal result of one build invocation."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SUPERSEDED = "superseded"


class BuildTarget(BaseModel):
    """One independently buildable project directory with a fixed command."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Short label used in logs")
    directory: Path = Field(..., description="Project root the command runs in")
    command: str = Field(..., description="Shell command that builds the project")

    @field_validator("command")
    @classmethod
    def _command_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command must not be empty")
        return value


class Artifact(BaseModel):
    """The executable produced by the downstream build and where it is published."""

    model_config = ConfigDict(frozen=True)

    source: Path = Field(..., description="Build-output location of the executable")
    destination: Path = Field(..., description="Publish location read by the editor")


__all__ = [
    "Artifact",
    "BuildOutcome",
    "BuildTarget",
]
