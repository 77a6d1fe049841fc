# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(eq=False)
class ShellError(Exception):
    """
    Structured error with enough context for:
      - clean CLI output
      - programmatic inspection (stage index, command, job)
    """
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    kind = "ShellError"

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass(eq=False)
class CompositionError(ShellError):
    """Invalid pipeline assembly, e.g. binding an endpoint twice."""
    kind = "CompositionError"


@dataclass(eq=False)
class PipelineSpawnError(ShellError):
    """
    A stage could not be started.

    `jobs` holds the stages that were already running when stage `stage`
    failed; they are left running.
    """
    stage: Optional[int] = None
    command: Optional[str] = None
    jobs: List[Any] = field(default_factory=list)

    kind = "PipelineSpawnError"

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.stage is not None:
            lines.append(f"stage={self.stage}")
        if self.command:
            lines.append(f"command={self.command}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class CommandNotFound(PipelineSpawnError):
    kind = "CommandNotFound"


class InputFileMissing(PipelineSpawnError):
    kind = "InputFileMissing"


class OutputOpenError(PipelineSpawnError):
    kind = "OutputOpenError"


class DirectoryStackEmpty(ShellError):
    kind = "DirectoryStackEmpty"


class JobNotFound(ShellError):
    kind = "JobNotFound"


class SignalDeliveryFailed(ShellError):
    kind = "SignalDeliveryFailed"
