"""
Abstract base for native C toolchains.
Defines build targets, profiles, backends and the per-task compile/archive interface.
"""

import logging
import platform
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import BuildError, FileSystemError, ProcessError, ValidationError
from ..process import ProcessSupervisor

logger = logging.getLogger(__name__)


class Target(str, Enum):
    """Final build target."""
    DESKTOP = "desktop"
    WEB = "web"


class Profile(str, Enum):
    """Optimization profile."""
    DEBUG = "debug"
    RELEASE = "release"


@dataclass(frozen=True)
class Backend:
    """Graphics backend a sokol module is compiled for."""
    name: str
    define: str
    suffix: str


D3D11 = Backend("D3D11", "SOKOL_D3D11", "d3d11")
METAL = Backend("Metal", "SOKOL_METAL", "metal")
GLCORE = Backend("GL", "SOKOL_GLCORE", "gl")
GLES3 = Backend("GLES3", "SOKOL_GLES3", "gl")

DESKTOP_BACKENDS = {
    "windows": [D3D11, GLCORE],
    "macos": [METAL, GLCORE],
    "linux": [GLCORE],
}


@dataclass(frozen=True)
class HostPlatform:
    """Operating system and CPU architecture of the build host."""
    os: str
    arch: str

    @classmethod
    def detect(cls) -> "HostPlatform":
        """
        Detect the current host.

        Raises:
            ValidationError: On an operating system the pipeline cannot build on
        """
        system = platform.system()
        os_name = {"Windows": "windows", "Darwin": "macos", "Linux": "linux"}.get(system)
        if os_name is None:
            raise ValidationError(f"Unsupported OS: {system}")
        machine = platform.machine().lower()
        arch = "x64" if machine in ("x86_64", "amd64") else "arm64"
        return cls(os_name, arch)

    @property
    def is_windows(self) -> bool:
        return self.os == "windows"

    @property
    def is_macos(self) -> bool:
        return self.os == "macos"

    @property
    def library_extension(self) -> str:
        return "lib" if self.is_windows else "a"

    @property
    def executable_suffix(self) -> str:
        return ".exe" if self.is_windows else ".bin"

    def desktop_backends(self) -> List[Backend]:
        """Backends built for desktop; the first one is the default."""
        return list(DESKTOP_BACKENDS[self.os])


@dataclass(frozen=True)
class BuildTask:
    """One (module, backend, profile) cell of the native build matrix."""
    module: str
    backend: Optional[Backend]
    profile: Profile
    platform: HostPlatform
    target: Target = Target.DESKTOP

    @property
    def folder(self) -> str:
        """Module directory name: the module name without its `sokol_` prefix."""
        return self.module[len("sokol_"):] if self.module.startswith("sokol_") else self.module

    @property
    def backend_suffix(self) -> str:
        return self.backend.suffix if self.backend else GLES3.suffix

    @property
    def artifact_name(self) -> str:
        prof = self.profile.value
        if self.target is Target.WEB:
            return f"{self.module}_wasm_gl_{prof}.a"
        return (f"{self.module}_{self.platform.os}_{self.platform.arch}_"
                f"{self.backend_suffix}_{prof}.{self.platform.library_extension}")

    def artifact_path(self, sokol_dir: Path) -> Path:
        return Path(sokol_dir) / self.folder / self.artifact_name

    def source_path(self, sokol_dir: Path) -> Path:
        return Path(sokol_dir) / "c" / f"{self.module}.c"

    def describe(self) -> str:
        backend = self.backend.name if self.backend else "wasm"
        return f"{self.module} [{backend}, {self.profile.value}]"


class Toolchain(ABC):
    """Compiles one BuildTask into a static library with a compiler and an archiver."""

    name: str = ""
    compiler: str = ""
    archiver: str = ""
    probe_args: List[str] = []
    install_hint: str = ""

    def __init__(self, supervisor: ProcessSupervisor, sokol_dir: Path, host: HostPlatform):
        self.supervisor = supervisor
        self.sokol_dir = Path(sokol_dir)
        self.host = host

    def check_available(self) -> None:
        """
        Verify the compiler can be spawned.

        Raises:
            ProcessError: With instructions for installing the toolchain
        """
        if not self.supervisor.is_available(self.compiler, self.probe_args):
            raise ProcessError(self.install_hint, command=self.compiler)

    @abstractmethod
    def object_path(self, task: BuildTask) -> Path:
        """Intermediate object file for a task; unique per task."""

    @abstractmethod
    def compile_command(self, task: BuildTask) -> List[str]:
        """Full compiler command line for a task."""

    @abstractmethod
    def archive_command(self, task: BuildTask) -> List[str]:
        """Full archiver command line for a task."""

    def compile_env(self, task: BuildTask) -> Optional[Dict[str, str]]:
        return None

    def compile_one(self, task: BuildTask) -> Path:
        """
        Compile and archive one task.

        Returns:
            Path of the written static library

        Raises:
            ProcessError: If the compiler or archiver cannot be spawned
            BuildError: If either exits non-zero
            FileSystemError: If the module directory cannot be created
        """
        library = task.artifact_path(self.sokol_dir)
        obj = self.object_path(task)

        try:
            library.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileSystemError(f"Failed to create directory {library.parent}: {e}",
                                  library.parent) from e

        logger.debug(f"Compiling {task.describe()}")
        for step, command, env in (
            ("compilation", self.compile_command(task), self.compile_env(task)),
            ("archiving", self.archive_command(task), None),
        ):
            try:
                self.supervisor.run(command[0], command[1:], tag=f"[{self.name}]",
                                    env=env, echo=False)
            except BuildError as e:
                raise BuildError(
                    f"{self.name} {step} failed for {task.describe()}",
                    command=e.command,
                    stdout_lines=e.stdout_lines,
                    stderr_lines=e.stderr_lines,
                ) from e

        obj.unlink(missing_ok=True)
        return library
