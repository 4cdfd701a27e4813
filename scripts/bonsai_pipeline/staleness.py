"""
Timestamp-based staleness checks shared by every build stage.

Each stage asks the same question: is this output older than any of the
sources that produce it? Only file metadata is read, never contents.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple, Union

from .errors import FileSystemError


@dataclass(frozen=True)
class SourceAsset:
    """Snapshot of a file's modification time, taken when a stage evaluates staleness."""
    path: Path
    mtime: float

    @classmethod
    def snapshot(cls, path: Union[str, Path]) -> "SourceAsset":
        """
        Read the modification time of a file.

        Raises:
            FileSystemError: If the timestamp cannot be read
        """
        path = Path(path)
        try:
            stat = os.stat(path)
        except OSError as e:
            raise FileSystemError(f"Cannot read timestamp of {path}: {e.strerror or e}", path) from e
        return cls(path, stat.st_mtime)


@dataclass(frozen=True)
class SourceFilter:
    """Predicate deciding which files in a source tree are relevant to a stage."""
    extensions: Tuple[str, ...] = ()
    exclude_names: Tuple[str, ...] = field(default_factory=tuple)

    def accepts(self, path: Path) -> bool:
        if path.name in self.exclude_names:
            return False
        if not self.extensions:
            return True
        return path.suffix.lower() in self.extensions


def png_sources(exclude: Iterable[str] = ("atlas.png",)) -> SourceFilter:
    """Filter for sprite sources: every PNG except the packed atlas itself."""
    return SourceFilter(extensions=(".png",), exclude_names=tuple(exclude))


def shader_sources(extensions: Iterable[str] = (".glsl", ".vert", ".frag")) -> SourceFilter:
    """Filter for shader sources."""
    return SourceFilter(extensions=tuple(ext.lower() for ext in extensions))


def iter_sources(root: Union[str, Path], accept: Optional[SourceFilter] = None) -> Iterator[Path]:
    """
    Yield files under root accepted by the filter, in sorted path order.

    Directories are never yielded. A missing root yields nothing.
    """
    root = Path(root)
    if not root.is_dir():
        return
    accept = accept or SourceFilter()
    for path in sorted(root.rglob("*")):
        if path.is_file() and accept.accepts(path):
            yield path


def is_stale(
    sources: Union[str, Path],
    output: Union[str, Path],
    accept: Optional[SourceFilter] = None,
) -> bool:
    """
    Decide whether output must be rebuilt from sources.

    Args:
        sources: A single source file, or the root of a source tree
        output: The artifact built from sources
        accept: Source filter for trees; passing one marks sources as a tree
            even when it does not exist yet

    Returns:
        True if the output is missing or any relevant source is strictly newer
        than it. Equal timestamps count as up to date.

    Raises:
        FileSystemError: If a timestamp cannot be read, including a missing
            single source file
    """
    sources = Path(sources)
    output = Path(output)

    if not output.exists():
        return True

    output_mtime = SourceAsset.snapshot(output).mtime

    if sources.is_dir() or accept is not None:
        if not sources.exists():
            return False
        for path in iter_sources(sources, accept):
            if path == output:
                continue
            if SourceAsset.snapshot(path).mtime > output_mtime:
                return True
        return False

    return SourceAsset.snapshot(sources).mtime > output_mtime
