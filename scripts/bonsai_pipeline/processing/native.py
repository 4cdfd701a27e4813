"""
Parallel compilation of the sokol native libraries.

The build matrix is the cross product of modules with backends (desktop) or
with both profiles (web). Each cell is compiled and archived independently
on a bounded thread pool.
"""

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from ..config import PipelineConfig
from ..errors import BuildError, FileSystemError, PipelineError, ValidationError
from ..process import ProcessSupervisor
from ..toolchains import select_toolchain
from ..toolchains.base import BuildTask, HostPlatform, Profile, Target, Toolchain
from ..utils.console import tagged

logger = logging.getLogger(__name__)

MARKER_MODULE = "sokol_app"


class NativeBuildMatrix:
    """Builds every (module, backend, profile) static library for a target."""

    def __init__(
        self,
        sokol_dir: Union[str, Path],
        modules: Sequence[str],
        supervisor: ProcessSupervisor,
        host: Optional[HostPlatform] = None,
        max_workers: Optional[int] = None,
        toolchain_factory: Callable[..., Toolchain] = select_toolchain,
    ):
        """
        Initialize the build matrix.

        Args:
            sokol_dir: Root holding `c/<module>.c` sources and per-module output folders
            modules: Module names, e.g. `sokol_gfx`
            supervisor: Runs compilers and archivers
            host: Host platform, detected when omitted
            max_workers: Worker pool size; host CPU count when omitted
            toolchain_factory: Called as (target, host, supervisor, sokol_dir)
        """
        self.sokol_dir = Path(sokol_dir)
        self.modules = list(modules)
        self.supervisor = supervisor
        self.host = host or HostPlatform.detect()
        self.max_workers = max_workers or os.cpu_count() or 1
        self.toolchain_factory = toolchain_factory

    @classmethod
    def from_config(cls, config: PipelineConfig, supervisor: ProcessSupervisor,
                    host: Optional[HostPlatform] = None) -> "NativeBuildMatrix":
        return cls(
            sokol_dir=config.resolve(config.sokol_dir),
            modules=config.sokol_modules,
            supervisor=supervisor,
            host=host,
            max_workers=config.worker_count(),
        )

    def tasks(self, target: Target, profile: Profile) -> List[BuildTask]:
        """Every cell of the matrix, in deterministic order."""
        if target is Target.WEB:
            return [BuildTask(module, None, prof, self.host, Target.WEB)
                    for module in self.modules for prof in Profile]
        return [BuildTask(module, backend, profile, self.host)
                for module in self.modules for backend in self.host.desktop_backends()]

    def marker_path(self, target: Target, profile: Profile) -> Path:
        """Artifact whose presence means the whole matrix is already built."""
        if target is Target.WEB:
            task = BuildTask(MARKER_MODULE, None, profile, self.host, Target.WEB)
        else:
            task = BuildTask(MARKER_MODULE, self.host.desktop_backends()[0], profile, self.host)
        return task.artifact_path(self.sokol_dir)

    def compile(self, target: Target, profile: Profile, force_clean: bool = False) -> List[Path]:
        """
        Build the matrix for a target.

        Args:
            target: Desktop or web
            profile: Requested profile; web always builds both
            force_clean: Purge previous artifacts and rebuild everything

        Returns:
            Written library paths, sorted; empty when the matrix was skipped

        Raises:
            ProcessError: If the toolchain is not installed
            ValidationError: If the sokol directory does not exist
            BuildError: The first task failure observed
        """
        toolchain = self.toolchain_factory(target, self.host, self.supervisor, self.sokol_dir)
        toolchain.check_available()

        if not self.sokol_dir.is_dir():
            raise ValidationError(f"Sokol directory not found: {self.sokol_dir}")

        if not force_clean and self.marker_path(target, profile).exists():
            logger.debug("Sokol compilation skipped (already compiled).")
            return []

        if force_clean:
            logger.info("Cleaning sokol artifacts...")
            self.clean()

        tasks = self.tasks(target, profile)
        if target is Target.WEB:
            logger.info("Compiling sokol (WASM)...")
        else:
            logger.info(f"Compiling sokol for {self.host.os} [{self.host.arch}]...")

        try:
            return self._run_parallel(toolchain, tasks)
        except PipelineError:
            self._drop_markers(tasks)
            raise

    def clean(self) -> List[Path]:
        """Delete build artifacts from every module folder, keeping `.odin` bindings."""
        removed = []
        for module in self.modules:
            folder = BuildTask(module, None, Profile.DEBUG, self.host).folder
            module_dir = self.sokol_dir / folder
            if not module_dir.is_dir():
                continue
            for entry in module_dir.iterdir():
                if entry.is_file() and entry.suffix != ".odin":
                    try:
                        entry.unlink()
                    except OSError as e:
                        raise FileSystemError(f"Failed to remove {entry}: {e}", entry) from e
                    removed.append(entry)
        return removed

    def _run_parallel(self, toolchain: Toolchain, tasks: List[BuildTask]) -> List[Path]:
        results: List[Path] = []
        failures: List[Tuple[BuildTask, PipelineError]] = []

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures: Dict[Future, BuildTask] = {
                executor.submit(toolchain.compile_one, task): task for task in tasks
            }
            for future in as_completed(futures):
                if future.cancelled():
                    continue
                task = futures[future]
                try:
                    results.append(future.result())
                except PipelineError as e:
                    if not failures:
                        # Queued tasks are dropped; running ones finish on their own.
                        for pending in futures:
                            pending.cancel()
                    failures.append((task, e))
                    self._report_failure(task, e)

        if failures:
            if len(failures) > 1:
                logger.error(f"{len(failures)} native build tasks failed")
            raise failures[0][1]

        return sorted(results)

    def _drop_markers(self, tasks: List[BuildTask]) -> None:
        """Remove marker libraries so a partially built matrix is rebuilt next time."""
        for task in tasks:
            if task.module != MARKER_MODULE:
                continue
            marker = task.artifact_path(self.sokol_dir)
            try:
                marker.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove {marker}: {e}")

    def _report_failure(self, task: BuildTask, error: PipelineError) -> None:
        logger.error(f"Failed: {task.describe()}: {error}")
        if isinstance(error, BuildError):
            for line in error.stdout_lines + error.stderr_lines:
                logger.error(tagged(f"[{task.folder}]", line, "red"))
