"""
Shader cross-compilation with sokol-shdc.

Sources are copied into a flat cache directory next to the shared include
fragments so that `@include` directives resolve by file name, then compiled
to Odin bindings beside the original source.
"""

import logging
import shutil
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from ..config import PipelineConfig
from ..errors import FileSystemError, ValidationError
from ..process import ProcessSupervisor
from ..staleness import is_stale, iter_sources, shader_sources
from ..toolchains.base import HostPlatform

logger = logging.getLogger(__name__)

CORE_TAG = "[CORE SHDC]"
CORE_COLOR = "cyan"
GAME_TAG = "[GAME SHDC]"
GAME_COLOR = "bright_blue"

OUTPUT_FORMAT = "sokol_odin"


def shader_dialects(host: HostPlatform) -> str:
    """Target shading languages, colon separated as sokol-shdc expects."""
    if host.is_windows:
        return "glsl300es:hlsl4:glsl430"
    return "metal_macos:glsl300es:hlsl4:glsl430"


class ShaderCompiler:
    """Compiles the core shader and every stale game shader."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        shdc_resolver: Callable[[], Path],
        cache_dir: Union[str, Path],
        include_dir: Union[str, Path],
        includes: Sequence[str],
        host: Optional[HostPlatform] = None,
        extensions: Sequence[str] = (".glsl", ".vert", ".frag"),
    ):
        """
        Initialize the shader compiler.

        Args:
            supervisor: Runs sokol-shdc
            shdc_resolver: Returns the sokol-shdc path; called at most once and
                only when a shader actually needs compiling
            cache_dir: Flat working directory rebuilt on every run
            include_dir: Root of the shared include fragments
            includes: Include fragments, relative to include_dir
            host: Host platform, detected when omitted
            extensions: Game shader source extensions
        """
        self.supervisor = supervisor
        self.shdc_resolver = shdc_resolver
        self.cache_dir = Path(cache_dir)
        self.include_dir = Path(include_dir)
        self.includes = list(includes)
        self.host = host or HostPlatform.detect()
        self.extensions = tuple(extensions)
        self._shdc_path: Optional[Path] = None

    @classmethod
    def from_config(cls, config: PipelineConfig, supervisor: ProcessSupervisor,
                    shdc_resolver: Callable[[], Path],
                    host: Optional[HostPlatform] = None) -> "ShaderCompiler":
        return cls(
            supervisor=supervisor,
            shdc_resolver=shdc_resolver,
            cache_dir=config.resolve(config.shader_cache_dir),
            include_dir=config.resolve(config.shader_include_dir),
            includes=config.shader_includes,
            host=host,
            extensions=config.shader_extensions,
        )

    def compile_all(self, core_shader: Union[str, Path],
                    game_shader_tree: Union[str, Path]) -> List[Path]:
        """
        Compile the core shader and the game shader tree, skipping fresh outputs.

        Args:
            core_shader: Framework shader source; its output is `<stem>.odin`
            game_shader_tree: Root of the game's shader sources

        Returns:
            Output paths that were (re)compiled

        Raises:
            ValidationError: If the core shader is missing
            FileSystemError: If the cache cannot be prepared
            BuildError: If sokol-shdc fails on any shader
        """
        core_shader = Path(core_shader)
        if not core_shader.is_file():
            raise ValidationError(f"Core shader not found: {core_shader}")

        self._prepare_cache()
        compiled: List[Path] = []

        core_output = core_shader.with_suffix(".odin")
        if is_stale(core_shader, core_output):
            self._compile(core_shader, core_output, CORE_TAG, CORE_COLOR)
            compiled.append(core_output)
        else:
            logger.debug("Core shader compilation skipped (already compiled).")

        for source in iter_sources(game_shader_tree, shader_sources(self.extensions)):
            output = source.with_suffix(".odin")
            if not is_stale(source, output):
                continue
            self._compile(source, output, GAME_TAG, GAME_COLOR)
            compiled.append(output)

        return compiled

    def _prepare_cache(self) -> None:
        try:
            if self.cache_dir.exists():
                shutil.rmtree(self.cache_dir)
            self.cache_dir.mkdir(parents=True)
            for include in self.includes:
                source = self.include_dir / include
                shutil.copyfile(source, self.cache_dir / source.name)
        except OSError as e:
            raise FileSystemError(f"Failed to prepare shader cache {self.cache_dir}: {e}",
                                  self.cache_dir) from e

    def _shdc(self) -> Path:
        if self._shdc_path is None:
            self._shdc_path = self.shdc_resolver()
        return self._shdc_path

    def _compile(self, source: Path, output: Path, tag: str, color: str) -> None:
        cached = self.cache_dir / source.name
        try:
            shutil.copyfile(source, cached)
        except OSError as e:
            raise FileSystemError(f"Failed to copy {source} into shader cache: {e}", source) from e

        logger.info(f"Compiling shader: {source}")
        self.supervisor.run(
            self._shdc(),
            ["-i", cached, "-o", output, "-l", shader_dialects(self.host), "-f", OUTPUT_FORMAT],
            tag=tag,
            color=color,
        )
