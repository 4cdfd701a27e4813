"""
Texture atlas packing for sprites and tilesets.

Every PNG under the images directory becomes one or more atlas entries:
tilesets are sliced into tiles, everything is flipped vertically to match the
renderer's bottom-left UV origin, then extruded by one pixel and placed with a
skyline bin packer.
"""

import json
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import tomli_w
from PIL import Image

from ..config import PipelineConfig
from ..errors import BuildError, FileSystemError, ValidationError
from ..staleness import is_stale, iter_sources, png_sources
from ..utils.image import ImageUtils

logger = logging.getLogger(__name__)


class AtlasGenerationError(BuildError):
    """Exception raised when a sprite cannot be placed or the packed atlas is invalid."""


@dataclass
class AtlasConfig:
    """Configuration for atlas packing."""
    max_size: tuple[int, int] = (2048, 2048)
    border_padding: int = 2
    texture_padding: int = 2
    default_tile_size: int = 16
    tilesets_dir_name: str = "tilesets"
    atlas_name: str = "atlas.png"
    extrude_sprites: bool = True
    metadata_format: str = "json"

    @classmethod
    def from_pipeline_config(cls, config: PipelineConfig) -> "AtlasConfig":
        return cls(
            max_size=config.atlas_max_size,
            border_padding=config.atlas_border_padding,
            texture_padding=config.atlas_texture_padding,
            default_tile_size=config.default_tile_size,
            tilesets_dir_name=config.tilesets_dir_name,
            atlas_name=config.atlas_name,
            extrude_sprites=config.extrude_sprites,
            metadata_format=config.metadata_format,
        )

    def layout_settings(self) -> Dict[str, Union[int, bool, List[int]]]:
        """Settings that change the packed layout, recorded in the frame map."""
        return {
            "max_size": list(self.max_size),
            "border_padding": self.border_padding,
            "texture_padding": self.texture_padding,
            "default_tile_size": self.default_tile_size,
            "extrude_sprites": self.extrude_sprites,
        }


@dataclass
class Rectangle:
    """Axis-aligned rectangle in atlas pixel coordinates."""
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def contains_point(self, x: int, y: int) -> bool:
        """Check if point is inside rectangle."""
        return self.x <= x < self.right and self.y <= y < self.bottom

    def intersects(self, other: 'Rectangle') -> bool:
        """Check if this rectangle intersects with another."""
        return not (self.right <= other.x or other.right <= self.x or
                    self.bottom <= other.y or other.bottom <= self.y)


@dataclass
class PackedSprite:
    """One entry of the atlas sprite table."""
    key: str
    rect: Rectangle
    source_size: tuple[int, int]
    extruded: bool = False

    @property
    def content_rect(self) -> Rectangle:
        """Region holding the original pixels, excluding the extruded border."""
        if not self.extruded:
            return self.rect
        return Rectangle(self.rect.x + 1, self.rect.y + 1,
                         self.rect.width - 2, self.rect.height - 2)


@dataclass
class AtlasOutput:
    """Packed atlas image plus its sprite table."""
    width: int
    height: int
    image: Image.Image
    sprites: Dict[str, PackedSprite] = field(default_factory=dict)

    def save_atlas(self, path: Union[str, Path]) -> None:
        """Save atlas image to file."""
        ImageUtils.save_image(self.image, path)

    def to_frame_map(self) -> Dict[str, Dict[str, Union[int, bool]]]:
        frame_map = {}
        for key, sprite in self.sprites.items():
            frame_map[key] = {
                "x": sprite.rect.x,
                "y": sprite.rect.y,
                "w": sprite.rect.width,
                "h": sprite.rect.height,
                "source_w": sprite.source_size[0],
                "source_h": sprite.source_size[1],
                "extruded": sprite.extruded,
            }
        return frame_map

    def save_frame_map(self, path: Union[str, Path], format: str = "json",
                       settings: Optional[Dict] = None) -> None:
        """Save the sprite table to a JSON or TOML sidecar."""
        atlas_data = {
            "frames": self.to_frame_map(),
            "meta": {
                "size": {"w": self.width, "h": self.height},
                "format": self.image.mode,
                "scale": 1,
            }
        }
        if settings is not None:
            atlas_data["meta"]["settings"] = settings

        if format.lower() == "toml":
            with open(path, 'wb') as f:
                tomli_w.dump(atlas_data, f)
        else:
            with open(path, 'w') as f:
                json.dump(atlas_data, f, indent=2)


@dataclass
class Skyline:
    """One horizontal segment of the packer's skyline."""
    x: int
    y: int
    width: int

    @property
    def right(self) -> int:
        return self.x + self.width


class SkylinePacker:
    """
    Bottom-left skyline bin packer.

    Placement reserves `texture_padding` pixels to the right and below every
    rect, and the whole packing area is inset by `border_padding` on each side.
    No rotation is performed.
    """

    def __init__(self, max_size: Tuple[int, int], border_padding: int = 0, texture_padding: int = 0):
        self.border_padding = border_padding
        self.texture_padding = texture_padding
        self.inner_width = max_size[0] - 2 * border_padding
        self.inner_height = max_size[1] - 2 * border_padding
        self.skylines: List[Skyline] = [Skyline(0, 0, max(0, self.inner_width))]
        self.placed: List[Rectangle] = []

    def pack(self, width: int, height: int) -> Optional[Rectangle]:
        """
        Find a place for a width x height rect.

        Returns:
            The placed rect in atlas coordinates, or None if it does not fit
        """
        padded_w = width + self.texture_padding
        padded_h = height + self.texture_padding

        best_index = -1
        best_y = 0
        best_bottom = None
        best_width = None

        for index in range(len(self.skylines)):
            y = self._fit(index, padded_w, padded_h)
            if y is None:
                continue
            bottom = y + padded_h
            segment_width = self.skylines[index].width
            if (best_bottom is None or bottom < best_bottom or
                    (bottom == best_bottom and segment_width < best_width)):
                best_index = index
                best_y = y
                best_bottom = bottom
                best_width = segment_width

        if best_index < 0:
            return None

        x = self.skylines[best_index].x
        self._split(best_index, Rectangle(x, best_y, padded_w, padded_h))
        self._merge()

        rect = Rectangle(x + self.border_padding, best_y + self.border_padding, width, height)
        self.placed.append(rect)
        return rect

    def used_size(self) -> Tuple[int, int]:
        """Atlas size needed to hold every placed rect plus the border."""
        if not self.placed:
            return (0, 0)
        width = max(rect.right for rect in self.placed) + self.border_padding
        height = max(rect.bottom for rect in self.placed) + self.border_padding
        return (width, height)

    def _fit(self, index: int, width: int, height: int) -> Optional[int]:
        x = self.skylines[index].x
        if x + width > self.inner_width:
            return None

        y = self.skylines[index].y
        width_left = width
        i = index
        while width_left > 0:
            if i >= len(self.skylines):
                return None
            y = max(y, self.skylines[i].y)
            if y + height > self.inner_height:
                return None
            width_left -= self.skylines[i].width
            i += 1
        return y

    def _split(self, index: int, rect: Rectangle) -> None:
        self.skylines.insert(index, Skyline(rect.x, rect.bottom, rect.width))

        i = index + 1
        while i < len(self.skylines):
            previous = self.skylines[i - 1]
            current = self.skylines[i]
            if current.x >= previous.right:
                break
            shrink = previous.right - current.x
            current.x += shrink
            current.width -= shrink
            if current.width <= 0:
                del self.skylines[i]
                continue
            break

    def _merge(self) -> None:
        i = 1
        while i < len(self.skylines):
            previous = self.skylines[i - 1]
            current = self.skylines[i]
            if previous.y == current.y:
                previous.width += current.width
                del self.skylines[i]
            else:
                i += 1


@dataclass
class _AtlasEntry:
    key: str
    image: Image.Image
    source_size: tuple[int, int]
    extruded: bool
    kind: str


class AtlasPacker:
    """Packs the sprite source tree into a single atlas image."""

    def __init__(self, config: Optional[AtlasConfig] = None, metadata_generator=None):
        """
        Initialize the packer.

        Args:
            config: Atlas configuration
            metadata_generator: Writes the runtime sprite table; a
                MetadataGenerator with the bundled templates by default
        """
        self.config = config or AtlasConfig()
        if metadata_generator is None:
            from .metadata import MetadataGenerator
            metadata_generator = MetadataGenerator()
        self.metadata_generator = metadata_generator

    def pack(self, images_dir: Union[str, Path], output_dir: Union[str, Path],
             force: bool = False) -> Optional[AtlasOutput]:
        """
        Pack every PNG under images_dir into output_dir/atlas.png.

        Args:
            images_dir: Sprite source root; its `tilesets/` folder holds tilesets
            output_dir: Directory receiving the atlas and its sidecars
            force: Repack even when the atlas is up to date

        Returns:
            The packed atlas, or None when the existing atlas is up to date

        Raises:
            ValidationError: On unreadable images or duplicate sprite keys
            AtlasGenerationError: If a sprite does not fit in the atlas
            FileSystemError: If the outputs cannot be written
        """
        images_dir = Path(images_dir)
        output_dir = Path(output_dir)
        atlas_path = output_dir / self.config.atlas_name
        source_filter = png_sources((self.config.atlas_name,))

        if (not force and not is_stale(images_dir, atlas_path, source_filter)
                and self._outputs_current(output_dir)):
            logger.info("Atlas is up to date. Skipping packing.")
            return None

        logger.info("Packing texture atlas...")

        entries = self._collect_entries(images_dir, list(iter_sources(images_dir, source_filter)))
        output = self._pack_entries(entries)

        errors = AtlasValidator(self.config).validate(output)
        if errors:
            raise AtlasGenerationError(f"Atlas validation failed: {'; '.join(errors)}")

        self._write_outputs(output, output_dir)
        logger.info(f"Atlas generated at {atlas_path} ({output.width}x{output.height}, "
                    f"{len(output.sprites)} sprites)")
        return output

    def _collect_entries(self, images_dir: Path, files: List[Path]) -> List[_AtlasEntry]:
        tilesets_dir = images_dir / self.config.tilesets_dir_name
        entries: List[_AtlasEntry] = []
        seen: Dict[str, Path] = {}

        for path in files:
            try:
                image = ImageUtils.load_image(path)
            except ValueError as e:
                raise ValidationError(f"Failed to load {path}: {e}") from e

            if tilesets_dir in path.parents:
                new_entries = self._slice_tileset(path, image)
            else:
                new_entries = [self._flat_sprite(path, image)]

            for entry in new_entries:
                if entry.key in seen:
                    raise ValidationError(
                        f"Duplicate sprite key '{entry.key}' from {path} and {seen[entry.key]}"
                    )
                seen[entry.key] = path
                entries.append(entry)

        return entries

    def _slice_tileset(self, path: Path, image: Image.Image) -> List[_AtlasEntry]:
        logger.debug(f"Slicing tileset found: {path.name}")
        default = self.config.default_tile_size
        tile_size = ImageUtils.parse_grid_size(path.stem) or (default, default)

        if image.width % tile_size[0] or image.height % tile_size[1]:
            logger.warning(
                f"Tileset {path.name} ({image.width}x{image.height}) is not a multiple of "
                f"{tile_size[0]}x{tile_size[1]}; trailing partial tiles are dropped"
            )

        entries = []
        for index, tile in ImageUtils.iter_grid(image, tile_size):
            flipped = ImageUtils.flip_vertical(tile)
            entries.append(_AtlasEntry(
                key=f"{path.stem}_{index}",
                image=ImageUtils.extrude(flipped),
                source_size=tile.size,
                extruded=True,
                kind="tile",
            ))
        return entries

    def _flat_sprite(self, path: Path, image: Image.Image) -> _AtlasEntry:
        flipped = ImageUtils.flip_vertical(image)
        if self.config.extrude_sprites:
            flipped = ImageUtils.extrude(flipped)
        return _AtlasEntry(
            key=path.stem,
            image=flipped,
            source_size=image.size,
            extruded=self.config.extrude_sprites,
            kind="sprite",
        )

    def _pack_entries(self, entries: List[_AtlasEntry]) -> AtlasOutput:
        packer = SkylinePacker(self.config.max_size, self.config.border_padding,
                               self.config.texture_padding)
        sprites: Dict[str, PackedSprite] = {}

        for entry in entries:
            rect = packer.pack(entry.image.width, entry.image.height)
            if rect is None:
                raise AtlasGenerationError(f"Failed to pack {entry.kind} '{entry.key}'. Atlas full?")
            sprites[entry.key] = PackedSprite(entry.key, rect, entry.source_size, entry.extruded)

        width, height = packer.used_size()
        if not sprites:
            width, height = 1, 1

        image = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        for entry in entries:
            rect = sprites[entry.key].rect
            image.paste(entry.image, (rect.x, rect.y))

        return AtlasOutput(width, height, image, sprites)

    def frame_map_path(self, output_dir: Union[str, Path]) -> Path:
        fmt = self.config.metadata_format.lower()
        return Path(output_dir) / f"{Path(self.config.atlas_name).stem}.{fmt}"

    def _outputs_current(self, output_dir: Path) -> bool:
        """
        Check that the sidecars exist and were packed with the current settings.

        An atlas image alone is not enough to skip packing: a deleted sprite
        table or frame map, or a layout setting changed since the last pack,
        forces a repack.
        """
        from .metadata import SPRITE_TABLE_NAME

        frame_map = self.frame_map_path(output_dir)
        if not frame_map.is_file() or not (output_dir / SPRITE_TABLE_NAME).is_file():
            return False

        try:
            if frame_map.suffix == ".toml":
                with open(frame_map, "rb") as f:
                    data = tomllib.load(f)
            else:
                with open(frame_map) as f:
                    data = json.load(f)
        except (OSError, ValueError) as e:
            logger.debug(f"Unreadable frame map {frame_map}: {e}")
            return False

        if not isinstance(data, dict):
            return False
        return data.get("meta", {}).get("settings") == self.config.layout_settings()

    def _write_outputs(self, output: AtlasOutput, output_dir: Path) -> None:
        # The atlas image is removed first and written last, so a failure in
        # between leaves the atlas stale for the next run.
        atlas_path = output_dir / self.config.atlas_name
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            atlas_path.unlink(missing_ok=True)
        except OSError as e:
            raise FileSystemError(f"Failed to write atlas to {output_dir}: {e}", output_dir) from e

        self.metadata_generator.write_sprite_table(output, output_dir)

        try:
            output.save_frame_map(self.frame_map_path(output_dir), self.config.metadata_format,
                                  settings=self.config.layout_settings())
            output.save_atlas(atlas_path)
        except OSError as e:
            atlas_path.unlink(missing_ok=True)
            raise FileSystemError(f"Failed to write atlas to {output_dir}: {e}", output_dir) from e


class AtlasValidator:
    """Validation checks for packed atlases."""

    def __init__(self, config: AtlasConfig):
        self.config = config

    def validate(self, output: AtlasOutput) -> List[str]:
        """Run every check and return all error messages."""
        errors = []
        errors.extend(self.validate_dimensions(output))
        errors.extend(self.validate_frame_boundaries(output))
        errors.extend(self.validate_overlaps(output))
        return errors

    def validate_dimensions(self, output: AtlasOutput) -> List[str]:
        errors = []
        max_w, max_h = self.config.max_size
        if output.image.size != (output.width, output.height):
            errors.append(f"Atlas image size {output.image.size} does not match "
                          f"recorded size {(output.width, output.height)}")
        if output.width > max_w or output.height > max_h:
            errors.append(f"Atlas size {output.width}x{output.height} exceeds maximum {max_w}x{max_h}")
        if output.image.mode != "RGBA":
            errors.append(f"Atlas mode {output.image.mode} is not RGBA")
        return errors

    def validate_frame_boundaries(self, output: AtlasOutput) -> List[str]:
        """
        Validate that every sprite lies inside the atlas.

        Returns:
            List of validation error messages
        """
        errors = []
        for key, sprite in output.sprites.items():
            rect = sprite.rect
            if rect.x < 0 or rect.y < 0:
                errors.append(f"Sprite '{key}' has negative position ({rect.x}, {rect.y})")
            if rect.right > output.width or rect.bottom > output.height:
                errors.append(f"Sprite '{key}' extends beyond atlas bounds "
                              f"({rect.right}, {rect.bottom}) > ({output.width}, {output.height})")
            if rect.width <= 0 or rect.height <= 0:
                errors.append(f"Sprite '{key}' has invalid size {rect.width}x{rect.height}")
        return errors

    def validate_overlaps(self, output: AtlasOutput) -> List[str]:
        """Validate that no two sprites share a pixel."""
        errors = []
        ordered = sorted(output.sprites.values(), key=lambda s: (s.rect.x, s.rect.y))
        for i, sprite in enumerate(ordered):
            for other in ordered[i + 1:]:
                if other.rect.x >= sprite.rect.right:
                    break
                if sprite.rect.intersects(other.rect):
                    errors.append(f"Sprites '{sprite.key}' and '{other.key}' overlap")
        return errors
