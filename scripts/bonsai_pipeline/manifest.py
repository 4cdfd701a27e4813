"""
Read access to the project manifest (bonsai.toml).

Only the fields the build needs are parsed; editing the manifest is owned
by the dependency management commands.
"""

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Union

from .errors import FileSystemError, ValidationError


@dataclass
class Manifest:
    """Build-relevant subset of bonsai.toml."""
    path: Path
    web_libs: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Manifest":
        """
        Parse a manifest file.

        Raises:
            ValidationError: If the file is missing or malformed
            FileSystemError: If the file cannot be read
        """
        path = Path(path)
        if not path.is_file():
            raise ValidationError(f"Manifest not found: {path}")

        try:
            with open(path, 'rb') as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValidationError(f"Invalid manifest: {e}") from e
        except OSError as e:
            raise FileSystemError(f"Failed to read manifest {path}: {e}", path) from e

        build = data.get("build", {})
        if not isinstance(build, dict):
            raise ValidationError("Invalid manifest: [build] must be a table")

        web_libs = build.get("web_libs", [])
        if not isinstance(web_libs, list) or not all(isinstance(lib, str) for lib in web_libs):
            raise ValidationError("Invalid manifest: build.web_libs must be a list of strings")

        return cls(path=path, web_libs=list(web_libs), raw=data)

    def resolve_web_libs(self, project_dir: Union[str, Path]) -> List[Path]:
        """
        Resolve web_libs against the project directory.

        Raises:
            ValidationError: If a listed library does not exist
        """
        resolved = []
        for lib in self.web_libs:
            lib_path = Path(project_dir) / lib
            if not lib_path.exists():
                raise ValidationError(f"External library not found: {lib}")
            resolved.append(lib_path)
        return resolved
