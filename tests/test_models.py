"""Tests for modcompile.models — references, descriptors, diagnostics, launch options."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from modcompile.models import (
    BuildResult,
    Diagnostic,
    LaunchConfig,
    ModDescriptor,
    ModReference,
    Severity,
    Variant,
)


class TestVariant:
    def test_dll_name(self) -> None:
        assert Variant.XNA.dll_name("ExampleMod") == "ExampleMod.XNA.dll"
        assert Variant.FNA.dll_name("ExampleMod") == "ExampleMod.FNA.dll"

    def test_other(self) -> None:
        assert Variant.XNA.other is Variant.FNA
        assert Variant.FNA.other is Variant.XNA


class TestModReference:
    def test_parse_name_only(self) -> None:
        ref = ModReference.parse("CoreLib")
        assert ref.name == "CoreLib"
        assert ref.version is None
        assert str(ref) == "CoreLib"

    def test_parse_with_version(self) -> None:
        ref = ModReference.parse(" CoreLib@1.2 ", weak=True)
        assert ref.name == "CoreLib"
        assert ref.version == "1.2"
        assert ref.weak is True
        assert str(ref) == "CoreLib@1.2"

    @pytest.mark.parametrize("text", ["", "Core Lib", "CoreLib@not-a-version"])
    def test_parse_invalid(self, text: str) -> None:
        with pytest.raises(ValueError):
            ModReference.parse(text)


class TestModDescriptor:
    def test_defaults(self) -> None:
        desc = ModDescriptor(name="ExampleMod")
        assert desc.version == "1.0"
        assert desc.include_pdb is True
        assert desc.include_source is False
        assert desc.no_compile is False

    def test_invalid_version_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ModDescriptor(name="ExampleMod", version="one")

    def test_invalid_host_version_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ModDescriptor(name="ExampleMod", host_version="~~0.11")

    def test_frozen(self) -> None:
        desc = ModDescriptor(name="ExampleMod")
        with pytest.raises(ValidationError):
            desc.version = "2.0"  # type: ignore[misc]

    def test_ref_names_strong_then_weak(self) -> None:
        desc = ModDescriptor(
            name="ExampleMod",
            mod_references=(ModReference(name="A"), ModReference(name="B")),
            weak_references=(ModReference(name="C", weak=True),),
        )
        assert desc.ref_names(include_weak=False) == ["A", "B"]
        assert desc.ref_names(include_weak=True) == ["A", "B", "C"]
        assert desc.is_weak("C")
        assert not desc.is_weak("A")

    @pytest.mark.parametrize(
        "rel_path, expected",
        [
            ("art.psd", True),
            ("Assets/raw/tree.png", True),
            ("Assets\\raw\\tree.png", True),
            ("Assets/tree.png", False),
            ("notes/readme.md", True),
        ],
    )
    def test_ignore_file(self, rel_path: str, expected: bool) -> None:
        desc = ModDescriptor(name="ExampleMod", build_ignore=("*.psd", "Assets/raw/*", "notes/*"))
        assert desc.ignore_file(rel_path) is expected

    def test_bytes_roundtrip(self) -> None:
        desc = ModDescriptor(
            name="ExampleMod",
            version="0.3",
            mod_references=(ModReference(name="CoreLib", version="1.1"),),
            dll_references=("Newtonsoft.Json",),
            host_version=">=0.11",
        )
        assert ModDescriptor.from_bytes(desc.to_bytes()) == desc

    def test_copy_with_eac_path(self) -> None:
        desc = ModDescriptor(name="ExampleMod")
        updated = desc.model_copy(update={"eac_path": "/build/ExampleMod.pdb"})
        assert updated.eac_path == "/build/ExampleMod.pdb"
        assert desc.eac_path is None


class TestDiagnostic:
    def test_str_with_location(self) -> None:
        diag = Diagnostic(message="; expected", file="Mod.cs", line=3, column=7, code="CS1002")
        assert str(diag) == "Mod.cs(3,7): error CS1002: ; expected"

    def test_str_without_location(self) -> None:
        diag = Diagnostic(message="unused", severity=Severity.WARNING)
        assert str(diag) == "warning: unused"
        assert not diag.is_error

    def test_build_result_warnings(self, tmp_path) -> None:
        warn = Diagnostic(message="unused", severity=Severity.WARNING)
        result = BuildResult(
            mod="ExampleMod",
            archive_path=tmp_path / "ExampleMod.tmod",
            diagnostics={Variant.XNA: [warn], Variant.FNA: []},
        )
        assert result.warnings == [warn]


class TestLaunchConfig:
    def test_defines_split_on_semicolons_and_spaces(self) -> None:
        launch = LaunchConfig(defines=["DEBUG;TRACE", "EXTRA FEATURE"])
        assert launch.defines == ["DEBUG", "TRACE", "EXTRA", "FEATURE"]

    def test_single_string_define(self) -> None:
        assert LaunchConfig(defines="DEBUG").defines == ["DEBUG"]
