"""
Runner for the project's utility scripts (`utils/`), executed before asset stages.
"""

import logging
from pathlib import Path
from typing import List, Union

from ..errors import BuildError
from ..process import ProcessSupervisor
from ..toolchains.base import HostPlatform

logger = logging.getLogger(__name__)


class UtilityScriptRunner:
    """Runs every Python, Odin and Rust script found under a directory tree."""

    def __init__(self, supervisor: ProcessSupervisor, host: HostPlatform):
        self.supervisor = supervisor
        self.host = host

    def run_all(self, utils_dir: Union[str, Path]) -> List[Path]:
        """
        Run the scripts in sorted path order.

        Files with other extensions are ignored. A missing directory is a no-op.

        Returns:
            Scripts that were run
        """
        utils_dir = Path(utils_dir)
        if not utils_dir.is_dir():
            return []

        logger.debug("Scanning for utility scripts...")
        ran = []
        for path in sorted(p for p in utils_dir.rglob("*") if p.is_file()):
            handler = {
                ".py": self.run_python,
                ".odin": self.run_odin,
                ".rs": self.run_rust,
            }.get(path.suffix)
            if handler is None:
                continue
            handler(path)
            ran.append(path)
        return ran

    def run_python(self, path: Path) -> None:
        self.supervisor.run_first_available(
            [["python3", path], ["python", path]],
            tag="[PYTHON]",
            color="yellow",
        )

    def run_odin(self, path: Path) -> None:
        self.supervisor.run("odin", ["run", path, "-file"], tag="[ODIN]", color="blue")

    def run_rust(self, path: Path) -> None:
        """Compile a single-file Rust script next to itself, run it, then delete the binary."""
        logger.info(f"[bright_red]\\[RUST][/bright_red] Running Rust script: {path}")
        binary = path.with_name(path.stem + self.host.executable_suffix)

        try:
            self.supervisor.run("rustc", [path, "-o", binary], tag="[RUSTC]", color="bright_red")
        except BuildError as e:
            raise BuildError(f"Failed to compile {path}", e.command,
                             e.stdout_lines, e.stderr_lines) from e

        try:
            self.supervisor.run(binary, tag="[RUST]", color="bright_red")
        except BuildError as e:
            raise BuildError(f"Rust script {path} failed", e.command,
                             e.stdout_lines, e.stderr_lines) from e
        finally:
            binary.unlink(missing_ok=True)
            if self.host.is_windows:
                binary.with_suffix(".pdb").unlink(missing_ok=True)
