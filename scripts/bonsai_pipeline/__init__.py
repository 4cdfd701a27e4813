"""
Build pipeline for bonsai games

Packs sprites and tilesets into a texture atlas, cross-compiles shaders with
sokol-shdc, builds the sokol native libraries in parallel and drives the Odin
compiler and Emscripten linker for desktop and web targets.
"""

__version__ = "0.3.0"
__author__ = "Bonsai Development Team"

from .config import PipelineConfig
from .errors import BuildError, FileSystemError, PipelineError, ProcessError, ValidationError
from .pipeline import PipelineDriver, PipelineStep
from .process import ProcessSupervisor
from .processing.atlas import AtlasPacker
from .processing.native import NativeBuildMatrix
from .processing.shaders import ShaderCompiler
from .staleness import is_stale

__all__ = [
    "PipelineConfig",
    "PipelineDriver",
    "PipelineStep",
    "ProcessSupervisor",
    "AtlasPacker",
    "ShaderCompiler",
    "NativeBuildMatrix",
    "is_stale",
    "PipelineError",
    "ValidationError",
    "FileSystemError",
    "ProcessError",
    "BuildError",
]
