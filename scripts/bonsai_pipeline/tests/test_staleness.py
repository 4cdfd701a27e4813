"""
Tests for timestamp-based staleness checks.
"""

import os
import shutil
import tempfile
import unittest
from pathlib import Path

from ..errors import FileSystemError
from ..staleness import (
    SourceAsset,
    SourceFilter,
    is_stale,
    iter_sources,
    png_sources,
    shader_sources,
)


def touch(path: Path, mtime: float) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x")
    os.utime(path, (mtime, mtime))
    return path


class TestIsStaleSingleFile(unittest.TestCase):
    """Truth table for a single source file."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.source = self.temp_dir / "shader.glsl"
        self.output = self.temp_dir / "shader.odin"

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_missing_output_is_stale(self):
        touch(self.source, 1000)
        self.assertTrue(is_stale(self.source, self.output))

    def test_newer_source_is_stale(self):
        touch(self.output, 1000)
        touch(self.source, 2000)
        self.assertTrue(is_stale(self.source, self.output))

    def test_older_source_is_fresh(self):
        touch(self.source, 1000)
        touch(self.output, 2000)
        self.assertFalse(is_stale(self.source, self.output))

    def test_equal_timestamps_are_fresh(self):
        touch(self.source, 1500)
        touch(self.output, 1500)
        self.assertFalse(is_stale(self.source, self.output))

    def test_missing_single_source_raises(self):
        touch(self.output, 1000)
        with self.assertRaises(FileSystemError) as ctx:
            is_stale(self.source, self.output)
        self.assertEqual(ctx.exception.path, self.source)


class TestIsStaleTree(unittest.TestCase):
    """Staleness of an output against a source tree."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.images = self.temp_dir / "images"
        self.output = self.temp_dir / "out" / "atlas.png"

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_nested_newer_file_makes_output_stale(self):
        touch(self.images / "a.png", 1000)
        touch(self.images / "deep" / "nested" / "b.png", 3000)
        touch(self.output, 2000)
        self.assertTrue(is_stale(self.images, self.output, png_sources()))

    def test_all_older_is_fresh(self):
        touch(self.images / "a.png", 1000)
        touch(self.images / "tilesets" / "t_16x16.png", 1200)
        touch(self.output, 2000)
        self.assertFalse(is_stale(self.images, self.output, png_sources()))

    def test_filter_ignores_other_extensions(self):
        touch(self.images / "a.png", 1000)
        touch(self.images / "notes.txt", 5000)
        touch(self.output, 2000)
        self.assertFalse(is_stale(self.images, self.output, png_sources()))

    def test_output_inside_tree_is_not_its_own_source(self):
        output = touch(self.images / "atlas.png", 2000)
        touch(self.images / "a.png", 1000)
        self.assertFalse(is_stale(self.images, output, SourceFilter((".png",))))

    def test_missing_tree_with_existing_output_is_fresh(self):
        touch(self.output, 2000)
        self.assertFalse(is_stale(self.images, self.output, png_sources()))

    def test_missing_output_is_stale_even_without_sources(self):
        self.assertTrue(is_stale(self.images, self.output, png_sources()))


class TestSourceFilters(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_png_filter_excludes_atlas(self):
        accept = png_sources()
        self.assertTrue(accept.accepts(Path("hero.png")))
        self.assertTrue(accept.accepts(Path("HERO.PNG")))
        self.assertFalse(accept.accepts(Path("atlas.png")))
        self.assertFalse(accept.accepts(Path("hero.jpg")))

    def test_shader_filter(self):
        accept = shader_sources()
        for name in ("a.glsl", "b.vert", "c.frag"):
            self.assertTrue(accept.accepts(Path(name)))
        self.assertFalse(accept.accepts(Path("a.odin")))

    def test_empty_filter_accepts_everything(self):
        self.assertTrue(SourceFilter().accepts(Path("anything.bin")))

    def test_iter_sources_is_sorted_and_skips_directories(self):
        touch(self.temp_dir / "b.png", 1000)
        touch(self.temp_dir / "a" / "c.png", 1000)
        touch(self.temp_dir / "a.png", 1000)
        (self.temp_dir / "empty_dir.png").mkdir()

        found = [p.relative_to(self.temp_dir).as_posix()
                 for p in iter_sources(self.temp_dir, png_sources())]

        self.assertEqual(found, ["a/c.png", "a.png", "b.png"])

    def test_iter_sources_missing_root(self):
        self.assertEqual(list(iter_sources(self.temp_dir / "missing")), [])

    def test_snapshot_reads_mtime(self):
        path = touch(self.temp_dir / "x.png", 1234)
        self.assertEqual(SourceAsset.snapshot(path).mtime, 1234)


if __name__ == '__main__':
    unittest.main()
