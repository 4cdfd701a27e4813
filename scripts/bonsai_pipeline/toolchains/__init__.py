"""
Native toolchain strategies and the shader compiler installer.
"""

from pathlib import Path
from typing import Dict, List, Type

from ..process import ProcessSupervisor
from .base import (
    Backend,
    BuildTask,
    HostPlatform,
    Profile,
    Target,
    Toolchain,
)
from .clang import ClangToolchain
from .emscripten import EmscriptenToolchain
from .msvc import MsvcToolchain
from .shdc import ShdcInstaller


class ToolchainFactory:
    """Factory selecting the toolchain for a (target, host) pair once per build."""

    TOOLCHAINS: Dict[str, Type[Toolchain]] = {
        "msvc": MsvcToolchain,
        "clang": ClangToolchain,
        "emscripten": EmscriptenToolchain,
    }

    @classmethod
    def toolchain_name(cls, target: Target, host: HostPlatform) -> str:
        if target is Target.WEB:
            return "emscripten"
        if host.is_windows:
            return "msvc"
        return "clang"

    @classmethod
    def create(cls, target: Target, host: HostPlatform, supervisor: ProcessSupervisor,
               sokol_dir: Path) -> Toolchain:
        """Create the toolchain instance for a target on a host."""
        toolchain_class = cls.TOOLCHAINS[cls.toolchain_name(target, host)]
        return toolchain_class(supervisor, sokol_dir, host)

    @classmethod
    def list_toolchains(cls) -> List[str]:
        return list(cls.TOOLCHAINS.keys())


def select_toolchain(target: Target, host: HostPlatform, supervisor: ProcessSupervisor,
                     sokol_dir: Path) -> Toolchain:
    return ToolchainFactory.create(target, host, supervisor, sokol_dir)


__all__ = [
    "Backend",
    "BuildTask",
    "HostPlatform",
    "Profile",
    "Target",
    "Toolchain",
    "ClangToolchain",
    "EmscriptenToolchain",
    "MsvcToolchain",
    "ShdcInstaller",
    "ToolchainFactory",
    "select_toolchain",
]
