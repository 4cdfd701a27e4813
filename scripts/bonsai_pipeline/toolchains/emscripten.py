"""
Emscripten toolchain (emcc + emar) for WebAssembly builds.
"""

from pathlib import Path
from typing import List

from .base import GLES3, BuildTask, HostPlatform, Profile, Toolchain

PROFILE_FLAGS = {
    Profile.DEBUG: ["-g"],
    Profile.RELEASE: ["-O2", "-DNDEBUG"],
}


class EmscriptenToolchain(Toolchain):
    """Builds the sokol web libraries; always GLES3, no backend axis."""

    name = "EMCC"
    probe_args = ["--version"]
    install_hint = (
        "The 'emcc' command was not found.\n"
        "Please install the Emscripten SDK and run 'emsdk_env' to add it to your PATH"
    )

    def __init__(self, supervisor, sokol_dir: Path, host: HostPlatform):
        super().__init__(supervisor, sokol_dir, host)
        self.compiler = "emcc.bat" if host.is_windows else "emcc"
        self.archiver = "emar.bat" if host.is_windows else "emar"

    def object_path(self, task: BuildTask) -> Path:
        return self.sokol_dir / f"{task.module}_{task.profile.value}.o"

    def compile_command(self, task: BuildTask) -> List[str]:
        return [
            self.compiler, "-c", "-DIMPL", f"-D{GLES3.define}",
            *PROFILE_FLAGS[task.profile],
            str(task.source_path(self.sokol_dir)),
            "-o", str(self.object_path(task)),
        ]

    def archive_command(self, task: BuildTask) -> List[str]:
        return [self.archiver, "rcs", str(task.artifact_path(self.sokol_dir)),
                str(self.object_path(task))]
