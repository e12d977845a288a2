"""Tests for modcompile.compiler — subprocess binding and the compiler driver."""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from modcompile.archive import ModArchive
from modcompile.compiler import Compiler, CompilerDriver, SubprocessCompiler
from modcompile.exceptions import BuildError, CompileError, EnvironmentNotReadyError
from modcompile.models import Diagnostic, LaunchConfig, ModDescriptor, Severity, Variant
from modcompile.references import ReferenceTable
from modcompile.registry import BuildingMod
from modcompile.status import RecordingBuildStatus

from conftest import FakeCompiler, write_mod


def building(folder: Path, **fields) -> BuildingMod:
    return BuildingMod(
        archive=ModArchive(folder.parent / f"{folder.name}.tmod"),
        descriptor=ModDescriptor(name=folder.name, **fields),
        path=folder,
    )


ERROR = Diagnostic(message="; expected", file="Mod.cs", line=1, column=5, code="CS1002")
WARNING = Diagnostic(message="unused variable", severity=Severity.WARNING, code="CS0168")


# ---------------------------------------------------------------------------
# SubprocessCompiler
# ---------------------------------------------------------------------------


class TestSubprocessCompiler:
    def test_writes_request_and_parses_diagnostics(self, tmp_path: Path) -> None:
        compiler = SubprocessCompiler(["roslyn-wrapper"])
        output = tmp_path / "ExampleMod.XNA.dll"
        completed = subprocess.CompletedProcess(
            args=[], returncode=0, stdout=json.dumps([WARNING.model_dump(mode="json")]).encode(), stderr=b""
        )

        with patch("modcompile.compiler.subprocess.run", return_value=completed) as run:
            diagnostics = compiler.compile(
                "ExampleMod",
                output,
                [tmp_path / "a.cs"],
                [tmp_path / "Terraria.exe"],
                ["XNA", "DEBUG"],
                include_debug=True,
                allow_unsafe=False,
            )

        assert diagnostics == [WARNING]
        cmd = run.call_args.args[0]
        request_path = Path(cmd[-1])
        assert cmd[0] == "roslyn-wrapper"
        request = json.loads(request_path.read_text())
        assert request["name"] == "ExampleMod"
        assert request["output"] == str(output)
        assert request["symbols"] == ["XNA", "DEBUG"]
        assert request["include_debug"] is True
        assert request["allow_unsafe"] is False

    def test_unreadable_output_is_build_error(self, tmp_path: Path) -> None:
        completed = subprocess.CompletedProcess(args=[], returncode=3, stdout=b"", stderr=b"crash\nboom")
        with patch("modcompile.compiler.subprocess.run", return_value=completed):
            with pytest.raises(BuildError, match="exited with code 3") as exc_info:
                SubprocessCompiler(["wrapper"]).compile(
                    "M", tmp_path / "M.XNA.dll", [], [], [], include_debug=False, allow_unsafe=False
                )
        assert "boom" in str(exc_info.value)

    def test_missing_executable(self, tmp_path: Path) -> None:
        compiler = SubprocessCompiler([str(tmp_path / "no-such-compiler")])
        with pytest.raises(EnvironmentNotReadyError, match="Compiler not found"):
            compiler.compile("M", tmp_path / "M.XNA.dll", [], [], [], include_debug=False, allow_unsafe=False)

    def test_empty_command_rejected(self) -> None:
        with pytest.raises(ValueError):
            SubprocessCompiler([])

    def test_satisfies_protocol(self) -> None:
        assert isinstance(SubprocessCompiler(["x"]), Compiler)
        assert isinstance(FakeCompiler(), Compiler)


# ---------------------------------------------------------------------------
# CompilerDriver
# ---------------------------------------------------------------------------


class TestSourceFiles:
    def test_filters_ignored_and_output_folders(self, tmp_path: Path) -> None:
        folder = write_mod(
            tmp_path,
            "ExampleMod",
            files={
                "Items/Sword.cs": "",
                "obj/Debug/Gen.cs": "",
                "bin/Old.cs": "",
                ".vs/Temp.cs": "",
                "Scratch/Draft.cs": "",
                "notes.txt": "",
            },
        )
        mod = building(folder, build_ignore=("Scratch/*",))
        driver = CompilerDriver(FakeCompiler(), RecordingBuildStatus())

        rel = [p.relative_to(folder).as_posix() for p in driver.source_files(mod)]
        assert rel == ["ExampleMod.cs", "Items/Sword.cs"]


class TestCompile:
    def test_success_returns_warnings_and_reports(self, tmp_path: Path) -> None:
        folder = write_mod(tmp_path, "ExampleMod")
        compiler = FakeCompiler()
        compiler.diagnostics = [WARNING]
        status = RecordingBuildStatus()
        driver = CompilerDriver(compiler, status, LaunchConfig(defines=["DEBUG"], allow_unsafe=True))

        out = tmp_path / "ExampleMod.FNA.dll"
        result = driver.compile(building(folder), out, ReferenceTable(), Variant.FNA)

        assert result == [WARNING]
        assert out.is_file()
        call = compiler.calls[0]
        assert call["symbols"] == ["FNA", "DEBUG"]
        assert call["allow_unsafe"] is True
        assert call["include_debug"] is True
        assert "Compiling ExampleMod.FNA.dll..." in status.statuses
        assert status.compiler_lines[0] == ("Compilation result: 0 errors, 1 warnings", logging.INFO)
        assert status.compiler_lines[1] == (str(WARNING), logging.WARNING)

    def test_errors_raise_compile_error(self, tmp_path: Path) -> None:
        folder = write_mod(tmp_path, "ExampleMod")
        compiler = FakeCompiler()
        compiler.diagnostics = [WARNING, ERROR]
        status = RecordingBuildStatus()
        driver = CompilerDriver(compiler, status)

        with pytest.raises(CompileError) as exc_info:
            driver.compile(building(folder), tmp_path / "ExampleMod.XNA.dll", ReferenceTable(), Variant.XNA)

        exc = exc_info.value
        assert exc.errors == [ERROR]
        assert exc.warnings == [WARNING]
        assert exc.first_error == ERROR
        assert "1 errors and 1 warnings" in str(exc)
        assert (str(ERROR), logging.ERROR) in status.compiler_lines

    def test_include_debug_follows_manifest(self, tmp_path: Path) -> None:
        folder = write_mod(tmp_path, "ExampleMod")
        compiler = FakeCompiler()
        driver = CompilerDriver(compiler, RecordingBuildStatus())
        driver.compile(building(folder, include_pdb=False), tmp_path / "out.dll", ReferenceTable(), Variant.XNA)
        assert compiler.calls[0]["include_debug"] is False

    def test_environment_not_ready(self, tmp_path: Path) -> None:
        folder = write_mod(tmp_path, "ExampleMod")
        compiler = FakeCompiler()
        driver = CompilerDriver(compiler, RecordingBuildStatus(), ready=lambda: (False, "toolchain missing"))

        with pytest.raises(EnvironmentNotReadyError, match="toolchain missing"):
            driver.compile(building(folder), tmp_path / "out.dll", ReferenceTable(), Variant.XNA)
        assert compiler.calls == []


class TestLocatePrecompiled:
    def test_all_binary_preferred(self, tmp_path: Path) -> None:
        folder = write_mod(tmp_path, "ExampleMod", files={"ExampleMod.All.dll": b"all", "ExampleMod.XNA.dll": b"x"})
        status = RecordingBuildStatus()
        driver = CompilerDriver(FakeCompiler(), status)

        assert driver.locate_precompiled(building(folder), Variant.XNA) == folder / "ExampleMod.All.dll"
        assert status.statuses == ["Loading precompiled ExampleMod.XNA.dll from ExampleMod.All.dll"]

    def test_variant_binary(self, tmp_path: Path) -> None:
        folder = write_mod(tmp_path, "ExampleMod", files={"ExampleMod.FNA.dll": b"f"})
        driver = CompilerDriver(FakeCompiler(), RecordingBuildStatus())
        assert driver.locate_precompiled(building(folder), Variant.FNA) == folder / "ExampleMod.FNA.dll"

    def test_missing_binary_never_compiles(self, tmp_path: Path) -> None:
        folder = write_mod(tmp_path, "ExampleMod", files={"ExampleMod.FNA.dll": b"f"})
        compiler = FakeCompiler()
        driver = CompilerDriver(compiler, RecordingBuildStatus())

        with pytest.raises(BuildError, match="Error loading precompiled binary"):
            driver.locate_precompiled(building(folder), Variant.XNA)
        assert compiler.calls == []
