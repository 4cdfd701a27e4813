"""
Image processing utilities for atlas packing.
"""

from pathlib import Path
from typing import Iterator, Optional, Tuple, Union

import numpy as np
from PIL import Image


class ImageUtils:
    """Utility class for the pixel operations the atlas packer needs."""

    @staticmethod
    def load_image(path: Union[str, Path]) -> Image.Image:
        """
        Load an image file as RGBA.

        Args:
            path: Image file path

        Returns:
            Fully loaded RGBA image

        Raises:
            ValueError: If the file cannot be decoded as an image
        """
        try:
            with Image.open(path) as img:
                img.load()
                return ImageUtils.ensure_rgba(img)
        except (OSError, SyntaxError) as e:
            raise ValueError(f"Cannot load image from path '{path}': {e}") from e

    @staticmethod
    def save_image(image: Image.Image, path: Union[str, Path], compress_level: int = 6) -> None:
        """Save image as PNG, creating parent directories."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        image.save(path, format="PNG", optimize=True, compress_level=compress_level)

    @staticmethod
    def ensure_rgba(image: Image.Image) -> Image.Image:
        """Convert image to RGBA mode if not already."""
        if image.mode != 'RGBA':
            return image.convert('RGBA')
        return image.copy()

    @staticmethod
    def flip_vertical(image: Image.Image) -> Image.Image:
        """Mirror the image top to bottom (atlas UV origin is bottom-left)."""
        return image.transpose(Image.Transpose.FLIP_TOP_BOTTOM)

    @staticmethod
    def extrude(image: Image.Image) -> Image.Image:
        """
        Grow the image by one pixel on every side, replicating edge pixels.

        The result is (w+2, h+2) with the original at (1, 1). Border rows and
        columns repeat the nearest original edge and the four corners repeat
        the original corner pixels, so bilinear sampling at sprite edges never
        bleeds in neighbouring sprites.
        """
        pixels = np.asarray(ImageUtils.ensure_rgba(image))
        padded = np.pad(pixels, ((1, 1), (1, 1), (0, 0)), mode="edge")
        return Image.fromarray(padded)

    @staticmethod
    def iter_grid(image: Image.Image, tile_size: Tuple[int, int]) -> Iterator[Tuple[int, Image.Image]]:
        """
        Slice an image into whole tiles, row-major from the top-left.

        Trailing partial rows and columns are not yielded.

        Yields:
            (index, tile) pairs where index = col + row * columns
        """
        tile_w, tile_h = tile_size
        cols = image.width // tile_w
        rows = image.height // tile_h

        for row in range(rows):
            for col in range(cols):
                box = (col * tile_w, row * tile_h, (col + 1) * tile_w, (row + 1) * tile_h)
                yield col + row * cols, image.crop(box)

    @staticmethod
    def parse_grid_size(stem: str) -> Optional[Tuple[int, int]]:
        """
        Parse a tile size from the last `_`-separated part of a file stem.

        `forest_16x16` gives (16, 16); `forest` and `forest_big` give None.
        Zero sizes are rejected.
        """
        last = stem.split("_")[-1]
        width, sep, height = last.partition("x")
        if not sep or not width.isdigit() or not height.isdigit():
            return None
        size = (int(width), int(height))
        if size[0] == 0 or size[1] == 0:
            return None
        return size
