"""
Build stages: atlas packing, sprite table generation, shader and native library compilation.
"""

from .atlas import AtlasConfig, AtlasOutput, AtlasPacker, AtlasValidator, SkylinePacker
from .metadata import MetadataGenerator
from .native import NativeBuildMatrix
from .shaders import ShaderCompiler

__all__ = [
    "AtlasConfig",
    "AtlasOutput",
    "AtlasPacker",
    "AtlasValidator",
    "SkylinePacker",
    "MetadataGenerator",
    "NativeBuildMatrix",
    "ShaderCompiler",
]
