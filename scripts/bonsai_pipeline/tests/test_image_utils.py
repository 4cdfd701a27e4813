"""
Tests for image utilities used by the atlas packer.
"""

import shutil
import tempfile
import unittest
from pathlib import Path

from PIL import Image

from ..utils.image import ImageUtils


class TestImageUtils(unittest.TestCase):
    """Test cases for ImageUtils."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _two_tone(self, width=4, height=4):
        """Red top half, blue bottom half."""
        image = Image.new("RGBA", (width, height), (0, 0, 255, 255))
        for x in range(width):
            for y in range(height // 2):
                image.putpixel((x, y), (255, 0, 0, 255))
        return image

    def test_load_image_converts_to_rgba(self):
        path = self.temp_dir / "rgb.png"
        Image.new("RGB", (3, 2), (10, 20, 30)).save(path)

        image = ImageUtils.load_image(path)

        self.assertEqual(image.mode, "RGBA")
        self.assertEqual(image.size, (3, 2))
        self.assertEqual(image.getpixel((0, 0)), (10, 20, 30, 255))

    def test_load_image_rejects_non_images(self):
        path = self.temp_dir / "broken.png"
        path.write_bytes(b"not a png")
        with self.assertRaises(ValueError):
            ImageUtils.load_image(path)

    def test_save_image_creates_parents(self):
        path = self.temp_dir / "a" / "b" / "out.png"
        ImageUtils.save_image(Image.new("RGBA", (1, 1)), path)
        self.assertTrue(path.exists())

    def test_flip_vertical(self):
        flipped = ImageUtils.flip_vertical(self._two_tone())
        self.assertEqual(flipped.getpixel((0, 0)), (0, 0, 255, 255))
        self.assertEqual(flipped.getpixel((0, 3)), (255, 0, 0, 255))

    def test_extrude_replicates_edges_and_corners(self):
        image = Image.new("RGBA", (2, 2))
        image.putpixel((0, 0), (1, 0, 0, 255))
        image.putpixel((1, 0), (2, 0, 0, 255))
        image.putpixel((0, 1), (3, 0, 0, 255))
        image.putpixel((1, 1), (4, 0, 0, 255))

        extruded = ImageUtils.extrude(image)

        self.assertEqual(extruded.size, (4, 4))
        self.assertEqual(extruded.mode, "RGBA")
        # Original sits at (1, 1)
        for x in range(2):
            for y in range(2):
                self.assertEqual(extruded.getpixel((x + 1, y + 1)), image.getpixel((x, y)))
        # Corners
        self.assertEqual(extruded.getpixel((0, 0)), (1, 0, 0, 255))
        self.assertEqual(extruded.getpixel((3, 0)), (2, 0, 0, 255))
        self.assertEqual(extruded.getpixel((0, 3)), (3, 0, 0, 255))
        self.assertEqual(extruded.getpixel((3, 3)), (4, 0, 0, 255))
        # Edges
        self.assertEqual(extruded.getpixel((1, 0)), (1, 0, 0, 255))
        self.assertEqual(extruded.getpixel((3, 2)), (4, 0, 0, 255))
        self.assertEqual(extruded.getpixel((0, 2)), (3, 0, 0, 255))

    def test_iter_grid_row_major(self):
        image = Image.new("RGBA", (48, 32))
        image.putpixel((16, 16), (9, 9, 9, 255))

        tiles = list(ImageUtils.iter_grid(image, (16, 16)))

        self.assertEqual([index for index, _ in tiles], [0, 1, 2, 3, 4, 5])
        self.assertTrue(all(tile.size == (16, 16) for _, tile in tiles))
        # (col 1, row 1) is index 4
        self.assertEqual(tiles[4][1].getpixel((0, 0)), (9, 9, 9, 255))

    def test_iter_grid_drops_partial_tiles(self):
        tiles = list(ImageUtils.iter_grid(Image.new("RGBA", (40, 20)), (16, 16)))
        self.assertEqual(len(tiles), 2)

    def test_parse_grid_size(self):
        self.assertEqual(ImageUtils.parse_grid_size("forest_16x16"), (16, 16))
        self.assertEqual(ImageUtils.parse_grid_size("dungeon_walls_8x32"), (8, 32))
        self.assertIsNone(ImageUtils.parse_grid_size("forest"))
        self.assertIsNone(ImageUtils.parse_grid_size("forest_big"))
        self.assertIsNone(ImageUtils.parse_grid_size("forest_0x16"))
        self.assertIsNone(ImageUtils.parse_grid_size("forest_16x"))


if __name__ == '__main__':
    unittest.main()
