"""
MSVC toolchain (cl + lib) for Windows desktop builds.
"""

from pathlib import Path
from typing import List

from .base import BuildTask, Profile, Toolchain


class MsvcToolchain(Toolchain):
    """Builds sokol modules with the Visual Studio command-line tools."""

    name = "MSVC"
    compiler = "cl"
    archiver = "lib"
    probe_args = ["/?"]
    install_hint = (
        "The 'cl' command (MSVC compiler) was not found.\n"
        "For Sokol compilation on Windows, you must run this tool from the "
        "'Visual Studio Developer Command Prompt' or a terminal with Build Tools initialized"
    )

    def object_path(self, task: BuildTask) -> Path:
        return self.sokol_dir / (
            f"{task.module}_{task.platform.arch}_{task.backend_suffix}_{task.profile.value}.obj"
        )

    def compile_command(self, task: BuildTask) -> List[str]:
        cmd = [self.compiler, "/c", "/DIMPL", f"/D{task.backend.define}"]
        if task.profile is Profile.DEBUG:
            cmd += ["/D_DEBUG", "/Z7"]
        else:
            cmd += ["/O2", "/DNDEBUG"]
        cmd.append(f"/Fo{self.object_path(task)}")
        cmd.append(str(task.source_path(self.sokol_dir)))
        return cmd

    def archive_command(self, task: BuildTask) -> List[str]:
        return [
            self.archiver,
            f"/OUT:{task.artifact_path(self.sokol_dir)}",
            str(self.object_path(task)),
        ]
