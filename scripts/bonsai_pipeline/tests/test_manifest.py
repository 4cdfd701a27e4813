"""
Tests for reading bonsai.toml.
"""

import shutil
import tempfile
import unittest
from pathlib import Path

from ..errors import ValidationError
from ..manifest import Manifest


class TestManifest(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.path = self.temp_dir / "bonsai.toml"

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_load_web_libs(self):
        self.path.write_text('[project]\nname = "game"\n\n[build]\nweb_libs = ["libs/box2d/box2d_wasm.o"]\n')

        manifest = Manifest.load(self.path)

        self.assertEqual(manifest.web_libs, ["libs/box2d/box2d_wasm.o"])
        self.assertEqual(manifest.raw["project"]["name"], "game")

    def test_manifest_without_build_section(self):
        self.path.write_text('[project]\nname = "game"\n')
        self.assertEqual(Manifest.load(self.path).web_libs, [])

    def test_missing_manifest(self):
        with self.assertRaises(ValidationError):
            Manifest.load(self.path)

    def test_malformed_manifest(self):
        self.path.write_text("[build\nweb_libs = ")
        with self.assertRaises(ValidationError) as ctx:
            Manifest.load(self.path)
        self.assertIn("Invalid manifest", str(ctx.exception))

    def test_web_libs_must_be_strings(self):
        self.path.write_text("[build]\nweb_libs = [1, 2]\n")
        with self.assertRaises(ValidationError):
            Manifest.load(self.path)

    def test_resolve_web_libs(self):
        lib = self.temp_dir / "libs" / "extra.a"
        lib.parent.mkdir()
        lib.write_bytes(b"")
        manifest = Manifest(self.path, ["libs/extra.a"])

        self.assertEqual(manifest.resolve_web_libs(self.temp_dir), [lib])

        manifest.web_libs.append("libs/missing.a")
        with self.assertRaises(ValidationError) as ctx:
            manifest.resolve_web_libs(self.temp_dir)
        self.assertEqual(str(ctx.exception), "External library not found: libs/missing.a")


if __name__ == '__main__':
    unittest.main()
