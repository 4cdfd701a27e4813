"""
Tests for the pipeline driver with mocked external tools.
"""

import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from ..config import PipelineConfig
from ..errors import BuildError, PipelineError, ProcessError, ValidationError
from ..pipeline import (
    EMSCRIPTEN_FLAGS,
    PipelineDriver,
    PipelineStep,
    copy_tree_incremental,
    find_emsdk,
)
from ..process import CompileJobResult
from ..toolchains.base import HostPlatform, Profile, Target

LINUX = HostPlatform("linux", "x64")


class PipelineTestCase(unittest.TestCase):
    """Creates a minimal bonsai project and a driver whose heavy stages are stubbed."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.project = self.temp_dir / "game"
        self.project.mkdir()
        (self.project / "bonsai.toml").write_text('[project]\nname = "game"\n')

        self.calls = []
        self.supervisor = Mock()
        self.supervisor.is_available.return_value = True
        self.supervisor.run.side_effect = self._fake_run

        self.config = PipelineConfig(project_dir=str(self.project))
        self.driver = PipelineDriver(self.config, supervisor=self.supervisor, host=LINUX,
                                     shdc_resolver=Mock())
        self.stubbed = []
        for step in (PipelineStep.UTILS, PipelineStep.ATLAS, PipelineStep.SHADERS,
                     PipelineStep.NATIVE_LIBS):
            self._stub(step)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _stub(self, step):
        def handler():
            self.stubbed.append(step)
            return {}
        self.driver._step_handlers[step] = handler

    def _fake_run(self, command, args=(), **kwargs):
        args = list(args)
        self.calls.append((command, args, kwargs))
        if command == "odin" and args[0] == "build":
            out = next(arg for arg in args if arg.startswith("-out:"))[len("-out:"):]
            (self.project / out).write_bytes(b"binary")
        if command == "odin" and args[0] == "root":
            return CompileJobResult(["odin", "root"], 0, [f"{self.odin_root}  "])
        return CompileJobResult([str(command), *map(str, args)], 0)


class TestProjectValidation(PipelineTestCase):

    def test_missing_directory(self):
        self.config.project_dir = str(self.temp_dir / "nope")
        with self.assertRaises(ValidationError) as ctx:
            self.driver.build(Target.DESKTOP, Profile.DEBUG)
        self.assertEqual(str(ctx.exception), f"Directory '{self.temp_dir / 'nope'}' does not exist")

    def test_missing_manifest(self):
        (self.project / "bonsai.toml").unlink()
        with self.assertRaises(ValidationError) as ctx:
            self.driver.build(Target.DESKTOP, Profile.DEBUG)
        self.assertEqual(str(ctx.exception),
                         f"Not a bonsai project: '{self.project}'. (Missing bonsai.toml)")


class TestDesktopBuild(PipelineTestCase):

    def test_steps_run_in_order(self):
        result = self.driver.build(Target.DESKTOP, Profile.DEBUG)

        self.assertEqual(list(result.state.step_results), list(PipelineStep))
        self.assertEqual(result.state.completed_steps, set(PipelineStep))
        self.assertEqual(self.stubbed, [PipelineStep.UTILS, PipelineStep.ATLAS,
                                        PipelineStep.SHADERS, PipelineStep.NATIVE_LIBS])

    def test_odin_command_line(self):
        result = self.driver.build(Target.DESKTOP, Profile.DEBUG)

        command, args, kwargs = self.calls[0]
        self.assertEqual(command, "odin")
        self.assertEqual(args, [
            "build", "source", "-vet", "-strict-style", "-debug",
            "-out:build/desktop/game_desktop.bin",
            "-collection:bonsai=./bonsai", "-collection:game=./source/game",
        ])
        self.assertEqual(kwargs["cwd"], self.project)
        self.assertEqual(kwargs["tag"], "[ODIN]")
        self.assertEqual(result.output_path, self.project / "build" / "desktop" / "game_desktop.bin")

    def test_release_flags(self):
        self.driver.build(Target.DESKTOP, Profile.RELEASE)
        args = self.calls[0][1]
        self.assertIn("-o:speed", args)
        self.assertIn("-no-bounds-check", args)
        self.assertNotIn("-debug", args)

    def test_assets_are_copied_next_to_executable(self):
        sound = self.project / "assets" / "audio" / "jump.ogg"
        sound.parent.mkdir(parents=True)
        sound.write_bytes(b"ogg")

        self.driver.build(Target.DESKTOP, Profile.DEBUG)

        copied = self.project / "build" / "desktop" / "assets" / "audio" / "jump.ogg"
        self.assertEqual(copied.read_bytes(), b"ogg")

    def test_missing_odin(self):
        self.supervisor.is_available.return_value = False

        with self.assertRaises(ProcessError) as ctx:
            self.driver.build(Target.DESKTOP, Profile.DEBUG)

        self.assertEqual(ctx.exception.stage, "dependencies")
        self.assertIn("https://odin-lang.org/docs/install", str(ctx.exception))
        self.assertIn(PipelineStep.DEPENDENCIES, self.driver.state.failed_steps)
        self.assertEqual(self.stubbed, [])

    def test_failing_step_is_tagged_and_stops_pipeline(self):
        def broken():
            raise BuildError("sokol-shdc failed with exit code 1")
        self.driver._step_handlers[PipelineStep.SHADERS] = broken

        with self.assertRaises(BuildError) as ctx:
            self.driver.build(Target.DESKTOP, Profile.DEBUG)

        self.assertEqual(ctx.exception.stage, "shaders")
        self.assertNotIn(PipelineStep.NATIVE_LIBS, self.driver.state.step_results)
        self.assertFalse(self.driver.state.step_results[PipelineStep.SHADERS].success)

    def test_os_error_becomes_filesystem_error(self):
        def broken():
            raise PermissionError(13, "Permission denied", "assets")
        self.driver._step_handlers[PipelineStep.ATLAS] = broken

        with self.assertRaises(PipelineError) as ctx:
            self.driver.build(Target.DESKTOP, Profile.DEBUG)

        self.assertEqual(ctx.exception.stage, "atlas")
        self.assertEqual(ctx.exception.path, Path("assets"))

    def test_manifest_sync_runs_before_read(self):
        sync = Mock()
        driver = PipelineDriver(self.config, supervisor=self.supervisor, host=LINUX,
                                manifest_sync=sync, shdc_resolver=Mock())

        driver.run_steps([PipelineStep.MANIFEST])

        sync.assert_called_once_with(self.project / "bonsai.toml")

    def test_prepare_runs_pre_build_steps_only(self):
        state = self.driver.prepare()

        self.assertEqual(list(state.step_results), [
            PipelineStep.DEPENDENCIES, PipelineStep.UTILS, PipelineStep.MANIFEST,
            PipelineStep.ATLAS, PipelineStep.SHADERS,
        ])
        self.assertEqual(self.calls, [])


class TestWebBuild(PipelineTestCase):

    def setUp(self):
        super().setUp()
        self.odin_root = self.temp_dir / "odin"
        odin_js = self.odin_root / "core" / "sys" / "wasm" / "js" / "odin.js"
        odin_js.parent.mkdir(parents=True)
        odin_js.write_text("// odin runtime")

        self.emsdk = self.temp_dir / "emsdk"
        self.emsdk.mkdir()

        (self.project / "bonsai.toml").write_text('[build]\nweb_libs = ["libs/extra_wasm.a"]\n')
        (self.project / "libs").mkdir()
        (self.project / "libs" / "extra_wasm.a").write_bytes(b"")

    def _build(self, profile=Profile.RELEASE):
        with patch.dict(os.environ, {"EMSDK": str(self.emsdk)}):
            return self.driver.build(Target.WEB, profile)

    def test_odin_builds_wasm_object(self):
        self._build()

        args = self.calls[0][1]
        self.assertIn("-target:js_wasm32", args)
        self.assertIn("-build-mode:obj", args)
        self.assertIn("-out:build/web/game.wasm.o", args)

    def test_link_and_runtime_files(self):
        result = self._build()

        web_dir = self.project / "build" / "web"
        self.assertEqual((web_dir / "odin.js").read_text(), "// odin runtime")
        self.assertFalse((web_dir / "game.wasm.o").exists())
        self.assertEqual(result.output_path, web_dir / "index.html")

        command, args, kwargs = self.calls[-1]
        self.assertEqual(command, "bash")
        self.assertEqual(args[0], "-c")
        script = args[1]
        self.assertTrue(script.startswith(f'source "{self.emsdk.as_posix()}/emsdk_env.sh" && emcc -o build/web/index.html '))
        libraries = script.split(" && ", 1)[1].split()
        self.assertEqual(libraries[3], "build/web/game.wasm.o")
        self.assertEqual(libraries[4], "bonsai/libs/sokol/app/sokol_app_wasm_gl_release.a")
        self.assertIn("bonsai/libs/stb/lib/stb_truetype_wasm.o", libraries)
        self.assertIn("libs/extra_wasm.a", libraries)
        self.assertEqual(libraries[-1], "-g")
        self.assertIn(" ".join(EMSCRIPTEN_FLAGS[:6]), script)
        self.assertEqual(kwargs["env"], {"EMSDK_QUIET": "1"})
        self.assertEqual(kwargs["cwd"], self.project)

    def test_missing_manifest_library(self):
        (self.project / "libs" / "extra_wasm.a").unlink()

        with self.assertRaises(ValidationError) as ctx:
            self._build()

        self.assertEqual(ctx.exception.stage, "package")
        self.assertIn("External library not found", str(ctx.exception))

    def test_emcc_failure(self):
        def failing(command, args=(), **kwargs):
            if command == "bash":
                raise BuildError("bash failed with exit code 1", stderr_lines=["emcc: error"])
            return self._fake_run(command, args, **kwargs)
        self.supervisor.run.side_effect = failing

        with self.assertRaises(BuildError) as ctx:
            self._build()

        self.assertIn("Emscripten command failed", str(ctx.exception))
        self.assertEqual(ctx.exception.stderr_lines, ["emcc: error"])


class TestCleanBuild(PipelineTestCase):

    def test_removes_outputs_and_caches(self):
        targets = [
            self.project / "build" / "desktop" / "game_desktop.bin",
            self.project / "bonsai" / "shaders" / "shader.odin",
            self.project / "utils" / "__pycache__" / "gen.cpython-311.pyc",
            self.project / "utils" / "target" / "debug" / "gen",
        ]
        for path in targets:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"")
        source = self.project / "bonsai" / "shaders" / "shader.glsl"
        source.write_text("// core")

        removed = self.driver.clean_build()

        self.assertEqual(len(removed), 4)
        self.assertFalse((self.project / "build").exists())
        self.assertFalse(targets[1].exists())
        self.assertFalse((self.project / "utils" / "__pycache__").exists())
        self.assertFalse((self.project / "utils" / "target").exists())
        self.assertTrue(source.exists())

    def test_clean_on_empty_project(self):
        self.assertEqual(self.driver.clean_build(), [])

    def test_build_with_clean_cleans_first(self):
        stale = self.project / "build" / "desktop" / "old.txt"
        stale.parent.mkdir(parents=True)
        stale.write_text("old")

        self.driver.build(Target.DESKTOP, Profile.DEBUG, clean=True)

        self.assertFalse(stale.exists())


class TestHelpers(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_find_emsdk_from_env(self):
        self.assertEqual(find_emsdk({"EMSDK": str(self.temp_dir)}), self.temp_dir)

    def test_find_emsdk_in_home(self):
        sdk = self.temp_dir / "tools" / "emsdk"
        sdk.mkdir(parents=True)
        (sdk / "emsdk_env.sh").write_text("")

        environ = {"EMSDK": str(self.temp_dir / "gone"), "HOME": str(self.temp_dir)}
        self.assertEqual(find_emsdk(environ), sdk)

    def test_find_emsdk_uses_userprofile(self):
        sdk = self.temp_dir / ".emsdk"
        sdk.mkdir()
        (sdk / "emsdk_env.bat").write_text("")
        self.assertEqual(find_emsdk({"USERPROFILE": str(self.temp_dir)}), sdk)

    def test_find_emsdk_not_found(self):
        with self.assertRaises(BuildError) as ctx:
            find_emsdk({"HOME": str(self.temp_dir)})
        self.assertTrue(str(ctx.exception).startswith("Could not find Emscripten SDK."))
        self.assertIn("'EMSDK' environment variable", str(ctx.exception))

    def test_copy_tree_incremental(self):
        src = self.temp_dir / "src"
        dest = self.temp_dir / "dest"
        (src / "fonts").mkdir(parents=True)
        (src / "fonts" / "a.ttf").write_bytes(b"font")
        (src / "b.png").write_bytes(b"png")

        self.assertEqual(copy_tree_incremental(src, dest), 2)
        self.assertEqual((dest / "fonts" / "a.ttf").read_bytes(), b"font")
        self.assertEqual(copy_tree_incremental(src, dest), 0)

        (src / "b.png").write_bytes(b"png2")
        mtime = (dest / "b.png").stat().st_mtime + 10
        os.utime(src / "b.png", (mtime, mtime))
        self.assertEqual(copy_tree_incremental(src, dest), 1)
        self.assertEqual((dest / "b.png").read_bytes(), b"png2")


if __name__ == '__main__':
    unittest.main()
