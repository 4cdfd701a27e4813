"""
Build pipeline driver.
Sequences dependency checks, utility scripts, atlas packing, shader and native
library compilation, the final Odin compile and target packaging.
"""

import logging
import os
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from .config import PipelineConfig
from .errors import BuildError, FileSystemError, PipelineError, ProcessError, ValidationError
from .manifest import Manifest
from .process import ProcessSupervisor
from .processing.atlas import AtlasConfig, AtlasPacker
from .processing.native import NativeBuildMatrix
from .processing.shaders import ShaderCompiler
from .staleness import is_stale
from .toolchains.base import HostPlatform, Profile, Target
from .toolchains.shdc import ShdcInstaller
from .utils.scripts import UtilityScriptRunner

logger = logging.getLogger(__name__)

ODIN_INSTALL_URL = "https://odin-lang.org/docs/install"
EMSDK_INSTALL_URL = "https://emscripten.org/docs/getting_started/downloads.html"

SOURCE_DIR = "source"
BONSAI_COLLECTION = "./bonsai"
GAME_COLLECTION = "./source/game"
WEB_BINARY_NAME = "game.wasm.o"
DESKTOP_BINARY_STEM = "game_desktop"

WEB_SOKOL_LIBS = ["app", "glue", "gfx", "shape", "log", "gl", "audio"]
STB_OBJECTS = ["stb_image", "stb_image_write", "stb_rect_pack", "stb_truetype"]

EMSCRIPTEN_FLAGS = [
    "-sWASM_BIGINT",
    "-sWARN_ON_UNDEFINED_SYMBOLS=0",
    "-sALLOW_MEMORY_GROWTH",
    "-sINITIAL_MEMORY=67108864",
    "-sMAX_WEBGL_VERSION=2",
    "-sASSERTIONS",
    "--shell-file", "bonsai/core/platform/web/index.html",
    "--preload-file", "bonsai/core/render/atlas",
    "--preload-file", "assets/audio",
    "--preload-file", "assets/fonts",
    "--preload-file", "bonsai/core/ui/PixelCode.ttf",
]


class PipelineStep(Enum):
    """Enumeration of pipeline steps, in execution order."""
    DEPENDENCIES = "dependencies"
    UTILS = "utils"
    MANIFEST = "manifest"
    ATLAS = "atlas"
    SHADERS = "shaders"
    NATIVE_LIBS = "native_libs"
    COMPILE = "compile"
    PACKAGE = "package"


PREPARE_STEPS = [
    PipelineStep.DEPENDENCIES,
    PipelineStep.UTILS,
    PipelineStep.MANIFEST,
    PipelineStep.ATLAS,
    PipelineStep.SHADERS,
]

BUILD_STEPS = PREPARE_STEPS + [
    PipelineStep.NATIVE_LIBS,
    PipelineStep.COMPILE,
    PipelineStep.PACKAGE,
]


@dataclass
class StepResult:
    """Result of a pipeline step execution."""
    step: PipelineStep
    success: bool
    duration: float
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)


@dataclass
class PipelineState:
    """Current state of the pipeline execution."""
    current_step: Optional[PipelineStep] = None
    completed_steps: Set[PipelineStep] = field(default_factory=set)
    failed_steps: Set[PipelineStep] = field(default_factory=set)
    step_results: Dict[PipelineStep, StepResult] = field(default_factory=dict)
    start_time: Optional[float] = None


@dataclass
class BuildResult:
    """Outcome of a full build."""
    target: Target
    profile: Profile
    output_path: Path
    state: PipelineState


def find_emsdk(environ: Optional[Dict[str, str]] = None,
               search_paths: Optional[List[str]] = None) -> Path:
    """
    Locate the Emscripten SDK.

    The EMSDK environment variable wins when it points at an existing
    directory; otherwise well-known folders under the home directory are
    searched for an emsdk_env script.

    Raises:
        BuildError: If no SDK is found
    """
    environ = os.environ if environ is None else environ
    search_paths = search_paths or ["repos/emsdk", "emsdk", "tools/emsdk", ".emsdk"]

    emsdk = environ.get("EMSDK")
    if emsdk and Path(emsdk).exists():
        return Path(emsdk)

    home = environ.get("HOME") or environ.get("USERPROFILE")
    if home:
        for sub_path in search_paths:
            attempt = Path(home) / sub_path
            if (attempt / "emsdk_env.sh").exists() or (attempt / "emsdk_env.bat").exists():
                return attempt

    raise BuildError(
        "Could not find Emscripten SDK.\n"
        f"Please install it ({EMSDK_INSTALL_URL})\n"
        "and set the 'EMSDK' environment variable to its installation folder"
    )


def copy_tree_incremental(src: Path, dest: Path) -> int:
    """
    Mirror src into dest, copying only files missing or older at the destination.

    Returns:
        Number of files copied
    """
    copied = 0
    for path in sorted(src.rglob("*")):
        target = dest / path.relative_to(src)
        if path.is_dir():
            target.mkdir(parents=True, exist_ok=True)
            continue
        if is_stale(path, target):
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, target)
            copied += 1
    return copied


class PipelineDriver:
    """
    Main pipeline coordinator that sequences every build stage.

    Stages communicate only through the filesystem and each decides on its
    own whether it has work to do, so an interrupted build resumes where it
    stopped. The first failing stage aborts the build.
    """

    def __init__(
        self,
        config: PipelineConfig,
        supervisor: Optional[ProcessSupervisor] = None,
        host: Optional[HostPlatform] = None,
        manifest_sync: Optional[Callable[[Path], None]] = None,
        shdc_resolver: Optional[Callable[[], Path]] = None,
    ):
        """
        Initialize the pipeline driver.

        Args:
            config: Pipeline configuration; paths resolve against config.project_dir
            supervisor: Process supervisor shared by every stage
            host: Host platform, detected when omitted
            manifest_sync: Hook that brings bonsai.toml in line with installed
                systems before it is read
            shdc_resolver: Returns the sokol-shdc path; installs it into the
                tools directory by default
        """
        self.config = config
        self.supervisor = supervisor or ProcessSupervisor(config.tool_timeout)
        self.host = host or HostPlatform.detect()
        self.manifest_sync = manifest_sync
        self.shdc_resolver = shdc_resolver or ShdcInstaller(config.tools_path, self.host).get_or_install
        self.state = PipelineState()
        self.manifest: Optional[Manifest] = None

        self._target = Target.DESKTOP
        self._profile = Profile.DEBUG
        self._clean = False
        self._compiled_output: Optional[Path] = None
        self._final_output: Optional[Path] = None

        self._step_handlers: Dict[PipelineStep, Callable[[], Dict[str, Any]]] = {
            PipelineStep.DEPENDENCIES: self._execute_dependencies_step,
            PipelineStep.UTILS: self._execute_utils_step,
            PipelineStep.MANIFEST: self._execute_manifest_step,
            PipelineStep.ATLAS: self._execute_atlas_step,
            PipelineStep.SHADERS: self._execute_shaders_step,
            PipelineStep.NATIVE_LIBS: self._execute_native_libs_step,
            PipelineStep.COMPILE: self._execute_compile_step,
            PipelineStep.PACKAGE: self._execute_package_step,
        }

    @property
    def project_dir(self) -> Path:
        return self.config.project_path

    def validate_project(self) -> None:
        """
        Check that the project directory exists and holds a manifest.

        Raises:
            ValidationError: If either is missing
        """
        if not self.project_dir.is_dir():
            raise ValidationError(f"Directory '{self.project_dir}' does not exist")
        if not (self.project_dir / self.config.manifest_name).is_file():
            raise ValidationError(
                f"Not a bonsai project: '{self.project_dir}'. (Missing {self.config.manifest_name})"
            )

    def build(self, target: Target, profile: Profile, clean: bool = False) -> BuildResult:
        """
        Run the full pipeline for a target.

        Args:
            target: Desktop executable or web bundle
            profile: Debug or release
            clean: Remove previous outputs and rebuild native libraries from scratch

        Returns:
            BuildResult pointing at the executable or index.html

        Raises:
            PipelineError: From the first failing step, tagged with the step name
        """
        self.validate_project()
        self._target = target
        self._profile = profile
        self._clean = clean

        logger.info(f"Building project in: '{self.project_dir}'")
        if clean:
            self.clean_build()

        logger.info(f"Building for {target.value} ({profile.value})")
        state = self.run_steps(BUILD_STEPS)

        logger.info("Build completed successfully.")
        return BuildResult(target, profile, self._final_output, state)

    def prepare(self) -> PipelineState:
        """Run the pre-build steps only (dependencies through shaders)."""
        self.validate_project()
        return self.run_steps(PREPARE_STEPS)

    def run_steps(self, steps: List[PipelineStep]) -> PipelineState:
        """Execute steps in order, stopping at the first failure."""
        self.state = PipelineState(start_time=time.time())
        for step in steps:
            self._execute_step(step)
        self._generate_execution_summary()
        return self.state

    def clean_build(self) -> List[Path]:
        """Remove build outputs, the compiled core shader and utility script caches."""
        removed = []
        core_output = self.config.resolve(self.config.core_shader).with_suffix(".odin")
        utils_dir = self.config.resolve(self.config.utils_dir)

        for path in (self.config.resolve(self.config.build_dir), core_output,
                     utils_dir / "__pycache__", utils_dir / "target"):
            if not path.exists():
                continue
            try:
                if path.is_dir():
                    shutil.rmtree(path)
                else:
                    path.unlink()
            except OSError as e:
                raise FileSystemError(f"Failed to remove {path}: {e}", path) from e
            logger.debug(f"Cleaned {path}")
            removed.append(path)
        return removed

    def _execute_step(self, step: PipelineStep) -> None:
        """
        Execute a single pipeline step with error handling and timing.

        Args:
            step: Step to execute
        """
        self.state.current_step = step
        logger.debug(f"Executing step: {step.value}")
        start_time = time.time()

        try:
            try:
                result = self._step_handlers[step]()
            except OSError as e:
                raise FileSystemError(str(e), e.filename) from e
        except PipelineError as e:
            duration = time.time() - start_time
            self.state.step_results[step] = StepResult(
                step=step,
                success=False,
                duration=duration,
                message=f"Step {step.value} failed: {e}",
                errors=[str(e)],
            )
            self.state.failed_steps.add(step)
            logger.debug(f"Step {step.value} failed after {duration:.2f}s")
            raise e.with_stage(step.value)

        duration = time.time() - start_time
        self.state.step_results[step] = StepResult(
            step=step,
            success=True,
            duration=duration,
            message=f"Step {step.value} completed successfully",
            data=result or {},
        )
        self.state.completed_steps.add(step)
        logger.debug(f"Step {step.value} completed in {duration:.2f}s")

    # Step execution methods
    def _execute_dependencies_step(self) -> Dict[str, Any]:
        if not self.supervisor.is_available("odin", ["version"]):
            raise ProcessError(
                f"Odin compiler not found in PATH. Please install it from {ODIN_INSTALL_URL}",
                command="odin",
            )
        return {"odin": True}

    def _execute_utils_step(self) -> Dict[str, Any]:
        runner = UtilityScriptRunner(self.supervisor, self.host)
        scripts = runner.run_all(self.config.resolve(self.config.utils_dir))
        return {"scripts_run": len(scripts)}

    def _execute_manifest_step(self) -> Dict[str, Any]:
        manifest_path = self.project_dir / self.config.manifest_name
        if self.manifest_sync is not None:
            self.manifest_sync(manifest_path)
        self.manifest = Manifest.load(manifest_path)
        return {"web_libs": len(self.manifest.web_libs)}

    def _execute_atlas_step(self) -> Dict[str, Any]:
        packer = AtlasPacker(AtlasConfig.from_pipeline_config(self.config))
        output = packer.pack(self.config.resolve(self.config.images_dir),
                             self.config.resolve(self.config.atlas_dir))
        if output is None:
            return {"repacked": False}
        return {"repacked": True, "sprites": len(output.sprites),
                "size": [output.width, output.height]}

    def _execute_shaders_step(self) -> Dict[str, Any]:
        compiler = ShaderCompiler.from_config(self.config, self.supervisor,
                                              self.shdc_resolver, self.host)
        compiled = compiler.compile_all(self.config.resolve(self.config.core_shader),
                                        self.config.resolve(self.config.game_shader_dir))
        return {"shaders_compiled": len(compiled)}

    def _execute_native_libs_step(self) -> Dict[str, Any]:
        matrix = NativeBuildMatrix.from_config(self.config, self.supervisor, self.host)
        libraries = matrix.compile(self._target, self._profile, force_clean=self._clean)
        return {"libraries_built": len(libraries)}

    def _execute_compile_step(self) -> Dict[str, Any]:
        out_relative = self._compile_output_relative()
        (self.project_dir / out_relative).parent.mkdir(parents=True, exist_ok=True)

        args = ["build", SOURCE_DIR, "-vet", "-strict-style"]
        if self._target is Target.WEB:
            args += ["-target:js_wasm32", "-build-mode:obj"]
        if self._profile is Profile.DEBUG:
            args.append("-debug")
        else:
            args += ["-o:speed", "-no-bounds-check"]
        args += [
            f"-out:{out_relative}",
            f"-collection:bonsai={BONSAI_COLLECTION}",
            f"-collection:game={GAME_COLLECTION}",
        ]

        self.supervisor.run("odin", args, tag="[ODIN]", color="blue", cwd=self.project_dir)
        self._compiled_output = self.project_dir / out_relative
        return {"output": str(self._compiled_output)}

    def _execute_package_step(self) -> Dict[str, Any]:
        if self._target is Target.WEB:
            return self._package_web()
        return self._package_desktop()

    def _compile_output_relative(self) -> str:
        build_dir = Path(self.config.build_dir)
        if self._target is Target.WEB:
            return (build_dir / "web" / WEB_BINARY_NAME).as_posix()
        name = DESKTOP_BINARY_STEM + (".exe" if self.host.is_windows else ".bin")
        return (build_dir / "desktop" / name).as_posix()

    def _copy_assets(self, out_dir: Path) -> int:
        assets_src = self.config.resolve(self.config.assets_dir)
        if not assets_src.is_dir():
            return 0
        logger.info("Copying assets...")
        return copy_tree_incremental(assets_src, out_dir / Path(self.config.assets_dir).name)

    def _package_desktop(self) -> Dict[str, Any]:
        executable = self._compiled_output
        copied = self._copy_assets(executable.parent)
        self._final_output = executable
        return {"executable": str(executable), "assets_copied": copied}

    def _package_web(self) -> Dict[str, Any]:
        object_file = self._compiled_output
        out_dir = object_file.parent

        logger.info("Copying runtime files...")
        try:
            root = self.supervisor.run("odin", ["root"], echo=False)
        except ProcessError as e:
            raise BuildError("Could not find 'odin' to get root path") from e
        odin_js = Path(root.stdout.strip()) / "core" / "sys" / "wasm" / "js" / "odin.js"
        shutil.copyfile(odin_js, out_dir / "odin.js")

        copied = self._copy_assets(out_dir)

        logger.info("Linking with Emscripten...")
        emsdk = find_emsdk(search_paths=self.config.emsdk_search_paths)
        libraries = self._web_libraries(object_file)
        index_html = (Path(self.config.build_dir) / "web" / "index.html").as_posix()
        emcc = ["emcc", "-o", index_html, *libraries, *EMSCRIPTEN_FLAGS, "-g"]
        self._run_in_emsdk(emcc, emsdk)

        object_file.unlink(missing_ok=True)
        self._final_output = self.project_dir / index_html
        logger.info("Web build created in build/web.")
        return {"index": str(self._final_output), "libraries": len(libraries),
                "assets_copied": copied}

    def _web_libraries(self, object_file: Path) -> List[str]:
        sokol_dir = Path(self.config.sokol_dir)
        stb_dir = Path(self.config.stb_dir)

        libraries = [object_file.relative_to(self.project_dir).as_posix()]
        libraries += [(sokol_dir / module / f"sokol_{module}_wasm_gl_release.a").as_posix()
                      for module in WEB_SOKOL_LIBS]
        libraries += [(stb_dir / f"{name}_wasm.o").as_posix() for name in STB_OBJECTS]

        manifest = self.manifest or Manifest.load(self.project_dir / self.config.manifest_name)
        if manifest.web_libs:
            logger.info(f"  + Adding {len(manifest.web_libs)} external libraries from manifest.")
            manifest.resolve_web_libs(self.project_dir)
            libraries += [Path(lib).as_posix() for lib in manifest.web_libs]
        return libraries

    def _run_in_emsdk(self, command: List[str], emsdk: Path) -> None:
        emsdk_str = emsdk.as_posix()
        if self.host.is_windows:
            shell = ["cmd", "/C",
                     f"call {emsdk_str}/emsdk_env.bat >nul && {subprocess.list2cmdline(command)}"]
        else:
            shell = ["bash", "-c", f"source \"{emsdk_str}/emsdk_env.sh\" && {shlex.join(command)}"]

        try:
            self.supervisor.run(shell[0], shell[1:], tag="[EMCC]", color="magenta",
                                cwd=self.project_dir, env={"EMSDK_QUIET": "1"})
        except BuildError as e:
            raise BuildError(f"Emscripten command failed: {' '.join(command)}", e.command,
                             e.stdout_lines, e.stderr_lines) from e

    def _generate_execution_summary(self) -> None:
        total_duration = time.time() - (self.state.start_time or time.time())
        logger.debug(f"Total execution time: {total_duration:.2f}s")
        for step, result in self.state.step_results.items():
            status = "ok" if result.success else "failed"
            logger.debug(f"  {step.value}: {status} in {result.duration:.2f}s")
