"""
Clang toolchain (clang + ar) for Linux and macOS desktop builds.
"""

from pathlib import Path
from typing import Dict, List, Optional

from .base import BuildTask, Profile, Toolchain

MACOSX_DEPLOYMENT_TARGET = "10.13"


class ClangToolchain(Toolchain):
    """Builds sokol modules with clang; Objective-C on macOS, position-independent C elsewhere."""

    name = "CLANG"
    compiler = "clang"
    archiver = "ar"
    probe_args = ["--version"]
    install_hint = (
        "The 'clang' command was not found.\n"
        "Install clang from your package manager (or the Xcode command line tools on macOS)"
    )

    def object_path(self, task: BuildTask) -> Path:
        return self.sokol_dir / f"{task.module}_{task.backend_suffix}_{task.profile.value}.o"

    def compile_command(self, task: BuildTask) -> List[str]:
        cmd = [self.compiler, "-c"]
        if task.platform.is_macos:
            mac_arch = "arm64" if task.platform.arch == "arm64" else "x86_64"
            cmd += ["-x", "objective-c", "-arch", mac_arch]
        else:
            cmd += ["-x", "c", "-fPIC"]

        cmd += ["-DIMPL", f"-D{task.backend.define}"]
        if task.profile is Profile.DEBUG:
            cmd.append("-g")
        else:
            cmd += ["-O2", "-DNDEBUG"]

        cmd += [str(task.source_path(self.sokol_dir)), "-o", str(self.object_path(task))]
        return cmd

    def compile_env(self, task: BuildTask) -> Optional[Dict[str, str]]:
        if task.platform.is_macos:
            return {"MACOSX_DEPLOYMENT_TARGET": MACOSX_DEPLOYMENT_TARGET}
        return None

    def archive_command(self, task: BuildTask) -> List[str]:
        return [self.archiver, "rcs", str(task.artifact_path(self.sokol_dir)),
                str(self.object_path(task))]
