"""
Tests for the utility script runner.
"""

import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock

from ..errors import BuildError
from ..toolchains.base import HostPlatform
from ..utils.scripts import UtilityScriptRunner

LINUX = HostPlatform("linux", "x64")
WINDOWS = HostPlatform("windows", "x64")


class TestUtilityScriptRunner(unittest.TestCase):
    """Test cases for UtilityScriptRunner."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.utils_dir = self.temp_dir / "utils"
        self.utils_dir.mkdir()
        self.supervisor = Mock()
        self.runner = UtilityScriptRunner(self.supervisor, LINUX)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _script(self, relative: str) -> Path:
        path = self.utils_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("")
        return path

    def test_dispatch_by_extension_in_sorted_order(self):
        gen = self._script("b_gen.py")
        tool = self._script("a_tool.odin")
        self._script("notes.md")

        ran = self.runner.run_all(self.utils_dir)

        self.assertEqual(ran, [tool, gen])
        self.supervisor.run.assert_called_once_with("odin", ["run", tool, "-file"],
                                                    tag="[ODIN]", color="blue")
        self.supervisor.run_first_available.assert_called_once_with(
            [["python3", gen], ["python", gen]], tag="[PYTHON]", color="yellow",
        )

    def test_missing_directory_is_a_no_op(self):
        self.assertEqual(self.runner.run_all(self.temp_dir / "missing"), [])

    def test_rust_script_binary_is_removed(self):
        script = self._script("gen.rs")
        binary = script.with_name("gen.bin")

        def fake_run(command, args=(), **kwargs):
            if command == "rustc":
                binary.write_bytes(b"bin")

        self.supervisor.run.side_effect = fake_run

        self.runner.run_rust(script)

        commands = [c.args[0] for c in self.supervisor.run.call_args_list]
        self.assertEqual(commands, ["rustc", binary])
        self.assertFalse(binary.exists())

    def test_rust_failure_still_removes_binary(self):
        script = self._script("gen.rs")
        runner = UtilityScriptRunner(self.supervisor, WINDOWS)
        binary = script.with_name("gen.exe")
        pdb = script.with_name("gen.pdb")

        def fake_run(command, args=(), **kwargs):
            if command == "rustc":
                binary.write_bytes(b"bin")
                pdb.write_bytes(b"pdb")
                return
            raise BuildError("gen.exe failed with exit code 1")

        self.supervisor.run.side_effect = fake_run

        with self.assertRaises(BuildError) as ctx:
            runner.run_rust(script)

        self.assertIn("Rust script", str(ctx.exception))
        self.assertFalse(binary.exists())
        self.assertFalse(pdb.exists())


if __name__ == '__main__':
    unittest.main()
