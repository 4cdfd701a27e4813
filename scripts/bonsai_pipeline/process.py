"""
Supervision of external tool invocations.

Every compiler, archiver, shader compiler and user script runs through
ProcessSupervisor: both output streams are piped and drained concurrently,
each line is forwarded to the log with the caller's tag, and a non-zero exit
becomes a BuildError carrying the captured output.
"""

import contextlib
import logging
import os
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Dict, List, Optional, Sequence, Union

from rich.markup import escape

from .errors import BuildError, ProcessError
from .utils.console import tagged

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Seconds to wait for output readers once a timed out tool has been killed.
READER_JOIN_TIMEOUT = 5.0


@dataclass
class CompileJobResult:
    """Captured outcome of one external tool invocation."""
    command: List[str]
    returncode: int
    stdout_lines: List[str] = field(default_factory=list)
    stderr_lines: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def stdout(self) -> str:
        return "\n".join(self.stdout_lines)

    @property
    def stderr(self) -> str:
        return "\n".join(self.stderr_lines)


class ProcessSupervisor:
    """Runs external tools with concurrently drained, tagged output."""

    def __init__(self, default_timeout: Optional[float] = None):
        """
        Initialize the supervisor.

        Args:
            default_timeout: Seconds to wait for a tool before killing it;
                None waits indefinitely
        """
        self.default_timeout = default_timeout

    def run(
        self,
        command: PathLike,
        args: Sequence[PathLike] = (),
        *,
        tag: str = "",
        color: str = "white",
        cwd: Optional[PathLike] = None,
        env: Optional[Dict[str, str]] = None,
        echo: bool = True,
        check: bool = True,
        timeout: Optional[float] = None,
    ) -> CompileJobResult:
        """
        Run a tool to completion.

        Args:
            command: Executable name or path
            args: Arguments passed to the executable
            tag: Prefix put in front of every forwarded output line
            color: Rich color used for the tag
            cwd: Working directory for the child
            env: Extra environment variables layered over the current environment
            echo: Forward output lines to the log as they arrive
            check: Raise BuildError on a non-zero exit status
            timeout: Overrides the supervisor's default timeout

        Returns:
            CompileJobResult with the exit status and every captured line

        Raises:
            ProcessError: If the executable cannot be spawned
            BuildError: If the tool exits non-zero (with check) or times out
        """
        cmd_list = [str(command)] + [str(arg) for arg in args]
        name = Path(str(command)).name

        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        logger.debug(f"Running: {escape(' '.join(cmd_list))}")

        try:
            proc = subprocess.Popen(
                cmd_list,
                cwd=str(cwd) if cwd is not None else None,
                env=run_env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            raise ProcessError(f"Failed to start {name}: {e.strerror or e}", command=str(command)) from e

        stdout_lines: List[str] = []
        stderr_lines: List[str] = []
        readers = [
            threading.Thread(
                target=self._drain,
                args=(proc.stdout, stdout_lines, tag, color, logging.INFO, echo),
                daemon=True,
            ),
            threading.Thread(
                target=self._drain,
                args=(proc.stderr, stderr_lines, tag, color, logging.ERROR, echo),
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()

        wait_timeout = timeout if timeout is not None else self.default_timeout
        try:
            returncode = proc.wait(timeout=wait_timeout)
        except subprocess.TimeoutExpired:
            self._kill(proc)
            for reader in readers:
                reader.join(READER_JOIN_TIMEOUT)
            raise BuildError(
                f"{name} timed out after {wait_timeout} seconds",
                command=cmd_list,
                stdout_lines=stdout_lines,
                stderr_lines=stderr_lines,
            )
        except KeyboardInterrupt:
            # The child has its own session and does not see the terminal's SIGINT.
            self._kill(proc)
            raise

        for reader in readers:
            reader.join()

        result = CompileJobResult(cmd_list, returncode, stdout_lines, stderr_lines)

        if check and returncode != 0:
            raise BuildError(
                f"{name} failed with exit code {returncode}",
                command=cmd_list,
                stdout_lines=stdout_lines,
                stderr_lines=stderr_lines,
            )

        return result

    def run_first_available(
        self,
        candidates: Sequence[Sequence[PathLike]],
        **kwargs,
    ) -> CompileJobResult:
        """
        Run the first candidate command that can be spawned.

        Each candidate is a full command line. The next candidate is tried only
        when the previous one could not be started; a candidate that starts and
        then fails ends the search with its BuildError.

        Raises:
            ProcessError: If no candidate could be spawned (the last failure)
        """
        last_error: Optional[ProcessError] = None
        for candidate in candidates:
            command, *args = candidate
            try:
                return self.run(command, args, **kwargs)
            except ProcessError as e:
                logger.debug(f"{escape(str(command))} unavailable, trying next candidate")
                last_error = e

        if last_error is None:
            raise ProcessError("No candidate commands to run")
        raise last_error

    def is_available(self, command: PathLike, args: Sequence[PathLike] = ()) -> bool:
        """Check that a tool can be spawned, regardless of its exit status."""
        try:
            self.run(command, args, echo=False, check=False)
        except ProcessError:
            return False
        return True

    def _kill(self, proc: subprocess.Popen) -> None:
        """Kill a child together with the processes it spawned."""
        if os.name == "posix":
            with contextlib.suppress(ProcessLookupError):
                os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
        proc.wait()

    def _drain(
        self,
        stream: IO[str],
        sink: List[str],
        tag: str,
        color: str,
        level: int,
        echo: bool,
    ) -> None:
        with stream:
            for raw in stream:
                line = raw.rstrip("\r\n")
                sink.append(line)
                if echo:
                    logger.log(level, tagged(tag, line, color) if tag else escape(line))
