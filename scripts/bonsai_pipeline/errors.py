"""
Error taxonomy shared by every pipeline stage.

All errors raised by the pipeline derive from PipelineError so the CLI can
report them as `[ERROR] (<stage>): <message>` without a traceback.
"""

from pathlib import Path
from typing import List, Optional, Sequence, Union


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def with_stage(self, stage: str) -> "PipelineError":
        """Tag the error with the stage it surfaced in, keeping an earlier tag."""
        if self.stage is None:
            self.stage = stage
        return self

    def __str__(self) -> str:
        return self.message


class ValidationError(PipelineError):
    """Bad or missing input (project layout, manifest, sprite keys)."""


class FileSystemError(PipelineError):
    """A filesystem operation failed; carries the offending path."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None,
                 stage: Optional[str] = None):
        super().__init__(message, stage)
        self.path = Path(path) if path is not None else None


class ProcessError(PipelineError):
    """An external tool could not be spawned."""

    def __init__(self, message: str, command: Optional[str] = None,
                 stage: Optional[str] = None):
        super().__init__(message, stage)
        self.command = command


class BuildError(PipelineError):
    """An external tool exited non-zero, or a packing invariant was violated."""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        stdout_lines: Optional[List[str]] = None,
        stderr_lines: Optional[List[str]] = None,
        stage: Optional[str] = None,
    ):
        super().__init__(message, stage)
        self.command = list(command) if command else []
        self.stdout_lines = stdout_lines or []
        self.stderr_lines = stderr_lines or []

    @property
    def stderr(self) -> str:
        return "\n".join(self.stderr_lines)
