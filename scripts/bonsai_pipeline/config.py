"""
Configuration management for the bonsai build pipeline.
Supports TOML and JSON configuration files with environment overrides and validation.
"""

import os
import json
import tomllib
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Union
from pathlib import Path


DEFAULT_SOKOL_MODULES = [
    "sokol_log",
    "sokol_gfx",
    "sokol_app",
    "sokol_glue",
    "sokol_time",
    "sokol_audio",
    "sokol_debugtext",
    "sokol_shape",
    "sokol_gl",
]

DEFAULT_SHADER_INCLUDES = [
    "shader_vs_core/shader_vs_core.glsl",
    "shader_fs_core/shader_fs_core.glsl",
    "shader_utils/shader_utils.glsl",
    "shader_header/shader_header.glsl",
]


@dataclass
class PipelineConfig:
    """Main configuration class for the build pipeline."""

    # Project layout
    project_dir: str = "."
    manifest_name: str = "bonsai.toml"
    assets_dir: str = "assets"
    images_dir: str = "assets/images"
    tilesets_dir_name: str = "tilesets"
    atlas_dir: str = "bonsai/core/render/atlas"
    atlas_name: str = "atlas.png"
    build_dir: str = "build"
    utils_dir: str = "utils"

    # Atlas settings
    atlas_max_size: tuple[int, int] = (2048, 2048)
    atlas_border_padding: int = 2
    atlas_texture_padding: int = 2
    default_tile_size: int = 16
    extrude_sprites: bool = True
    metadata_format: str = "json"

    # Shader settings
    core_shader: str = "bonsai/shaders/shader.glsl"
    shader_include_dir: str = "bonsai/shaders/include"
    shader_includes: List[str] = field(default_factory=lambda: list(DEFAULT_SHADER_INCLUDES))
    game_shader_dir: str = "source/game/shaders"
    shader_cache_dir: str = ".bonsai/cache/shaders"
    shader_extensions: List[str] = field(default_factory=lambda: [".glsl", ".vert", ".frag"])

    # Native library settings
    sokol_dir: str = "bonsai/libs/sokol"
    stb_dir: str = "bonsai/libs/stb/lib"
    sokol_modules: List[str] = field(default_factory=lambda: list(DEFAULT_SOKOL_MODULES))
    max_workers: Optional[int] = None

    # External tools
    tools_dir: str = "~/.bonsai/bin"
    tool_timeout: Optional[float] = None
    emsdk_search_paths: List[str] = field(
        default_factory=lambda: ["repos/emsdk", "emsdk", "tools/emsdk", ".emsdk"]
    )

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "PipelineConfig":
        """Load configuration from TOML or JSON file."""
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        if config_path.suffix.lower() == '.toml':
            return cls._from_toml(config_path)
        elif config_path.suffix.lower() == '.json':
            return cls._from_json(config_path)
        else:
            raise ValueError(f"Unsupported configuration format: {config_path.suffix}")

    @classmethod
    def _from_toml(cls, config_path: Path) -> "PipelineConfig":
        with open(config_path, 'rb') as f:
            data = tomllib.load(f)
        return cls._from_dict(data)

    @classmethod
    def _from_json(cls, config_path: Path) -> "PipelineConfig":
        with open(config_path, 'r') as f:
            data = json.load(f)
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Create configuration from a dictionary of config sections."""
        defaults = cls()
        config_data: Dict[str, Any] = {}

        if 'paths' in data:
            paths = data['paths']
            for key in ('project_dir', 'manifest_name', 'assets_dir', 'images_dir',
                        'tilesets_dir_name', 'atlas_dir', 'build_dir', 'utils_dir'):
                config_data[key] = paths.get(key, getattr(defaults, key))

        if 'atlas' in data:
            atlas = data['atlas']
            if 'max_size' in atlas:
                config_data['atlas_max_size'] = tuple(atlas['max_size'])
            config_data['atlas_border_padding'] = atlas.get('border_padding', 2)
            config_data['atlas_texture_padding'] = atlas.get('texture_padding', 2)
            config_data['default_tile_size'] = atlas.get('default_tile_size', 16)
            config_data['extrude_sprites'] = atlas.get('extrude_sprites', True)
            config_data['metadata_format'] = atlas.get('metadata_format', 'json')

        if 'shaders' in data:
            shaders = data['shaders']
            config_data['core_shader'] = shaders.get('core_shader', defaults.core_shader)
            config_data['shader_include_dir'] = shaders.get('include_dir', defaults.shader_include_dir)
            config_data['game_shader_dir'] = shaders.get('game_dir', defaults.game_shader_dir)
            config_data['shader_cache_dir'] = shaders.get('cache_dir', defaults.shader_cache_dir)
            if 'includes' in shaders:
                config_data['shader_includes'] = list(shaders['includes'])
            if 'extensions' in shaders:
                config_data['shader_extensions'] = list(shaders['extensions'])

        if 'native' in data:
            native = data['native']
            config_data['sokol_dir'] = native.get('sokol_dir', defaults.sokol_dir)
            config_data['stb_dir'] = native.get('stb_dir', defaults.stb_dir)
            config_data['max_workers'] = native.get('max_workers')
            if 'modules' in native:
                config_data['sokol_modules'] = list(native['modules'])

        if 'tools' in data:
            tools = data['tools']
            config_data['tools_dir'] = tools.get('install_dir', defaults.tools_dir)
            config_data['tool_timeout'] = tools.get('timeout')
            if 'emsdk_search_paths' in tools:
                config_data['emsdk_search_paths'] = list(tools['emsdk_search_paths'])

        return cls(**config_data)

    @classmethod
    def default(cls) -> "PipelineConfig":
        """Create default configuration with environment variable overrides."""
        return cls._apply_env_overrides(cls())

    @classmethod
    def _apply_env_overrides(cls, config: "PipelineConfig") -> "PipelineConfig":
        """Apply BONSAI_* environment variable overrides to configuration."""

        # Paths
        if os.getenv('BONSAI_PROJECT_DIR'):
            config.project_dir = os.getenv('BONSAI_PROJECT_DIR', '.')

        if os.getenv('BONSAI_IMAGES_DIR'):
            config.images_dir = os.getenv('BONSAI_IMAGES_DIR', 'assets/images')

        if os.getenv('BONSAI_ATLAS_DIR'):
            config.atlas_dir = os.getenv('BONSAI_ATLAS_DIR', 'bonsai/core/render/atlas')

        if os.getenv('BONSAI_SOKOL_DIR'):
            config.sokol_dir = os.getenv('BONSAI_SOKOL_DIR', 'bonsai/libs/sokol')

        if os.getenv('BONSAI_BUILD_DIR'):
            config.build_dir = os.getenv('BONSAI_BUILD_DIR', 'build')

        # Atlas settings
        if os.getenv('BONSAI_ATLAS_PADDING'):
            config.atlas_texture_padding = int(os.getenv('BONSAI_ATLAS_PADDING', '2'))

        if os.getenv('BONSAI_ATLAS_BORDER_PADDING'):
            config.atlas_border_padding = int(os.getenv('BONSAI_ATLAS_BORDER_PADDING', '2'))

        if os.getenv('BONSAI_ATLAS_MAX_WIDTH') and os.getenv('BONSAI_ATLAS_MAX_HEIGHT'):
            config.atlas_max_size = (
                int(os.getenv('BONSAI_ATLAS_MAX_WIDTH', '2048')),
                int(os.getenv('BONSAI_ATLAS_MAX_HEIGHT', '2048'))
            )

        if os.getenv('BONSAI_TILE_SIZE'):
            config.default_tile_size = int(os.getenv('BONSAI_TILE_SIZE', '16'))

        if os.getenv('BONSAI_EXTRUDE_SPRITES'):
            config.extrude_sprites = os.getenv('BONSAI_EXTRUDE_SPRITES', 'true').lower() == 'true'

        if os.getenv('BONSAI_METADATA_FORMAT'):
            config.metadata_format = os.getenv('BONSAI_METADATA_FORMAT', 'json')

        # Native builds and tools
        if os.getenv('BONSAI_MAX_WORKERS'):
            config.max_workers = int(os.getenv('BONSAI_MAX_WORKERS', '0')) or None

        if os.getenv('BONSAI_TOOL_TIMEOUT'):
            config.tool_timeout = float(os.getenv('BONSAI_TOOL_TIMEOUT', '0')) or None

        if os.getenv('BONSAI_TOOLS_DIR'):
            config.tools_dir = os.getenv('BONSAI_TOOLS_DIR', '~/.bonsai/bin')

        return config

    def resolve(self, relative: Union[str, Path]) -> Path:
        """Resolve a configured path against the project directory."""
        path = Path(relative).expanduser()
        if path.is_absolute():
            return path
        return Path(self.project_dir) / path

    @property
    def project_path(self) -> Path:
        return Path(self.project_dir)

    @property
    def tools_path(self) -> Path:
        return Path(self.tools_dir).expanduser()

    def worker_count(self) -> int:
        """Number of parallel compile workers (host CPU count unless configured)."""
        if self.max_workers:
            return self.max_workers
        return os.cpu_count() or 1

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.atlas_max_size[0] <= 0 or self.atlas_max_size[1] <= 0:
            errors.append("atlas_max_size must have positive dimensions")

        if self.atlas_border_padding < 0 or self.atlas_texture_padding < 0:
            errors.append("atlas paddings must not be negative")

        if self.default_tile_size <= 0:
            errors.append("default_tile_size must be positive")

        if self.metadata_format.lower() not in ['json', 'toml']:
            errors.append("metadata_format must be json or toml")

        if not self.sokol_modules:
            errors.append("sokol_modules must list at least one module")

        for module in self.sokol_modules:
            if not module.startswith("sokol_"):
                errors.append(f"sokol module '{module}' must start with 'sokol_'")

        for ext in self.shader_extensions:
            if not ext.startswith("."):
                errors.append(f"shader extension '{ext}' must start with '.'")

        if self.max_workers is not None and self.max_workers <= 0:
            errors.append("max_workers must be positive")

        if self.tool_timeout is not None and self.tool_timeout <= 0:
            errors.append("tool_timeout must be positive")

        return errors
