"""Tests for modcompile.verifier — identity rules of a compiled mod binary."""

from __future__ import annotations

import pytest

from modcompile.exceptions import BuildError, VerificationError, VerificationRule
from modcompile.inspector import AssemblyMetadata, TypeInfo
from modcompile.models import HostConfig
from modcompile.verifier import verify_mod_assembly

BASE = "Terraria.ModLoader.Mod"


def metadata(name: str, *types: tuple[str, str, str | None]) -> AssemblyMetadata:
    return AssemblyMetadata(
        name=name,
        types=[TypeInfo(full_name=f, namespace=ns, base_type=base) for f, ns, base in types],
    )


@pytest.fixture
def host() -> HostConfig:
    return HostConfig()


class TestVerifyModAssembly:
    def test_valid_binary(self, host: HostConfig) -> None:
        verify_mod_assembly(
            "ExampleMod",
            metadata(
                "ExampleMod",
                ("ExampleMod.ExampleMod", "ExampleMod", BASE),
                ("ExampleMod.Items.Sword", "ExampleMod.Items", "Terraria.ModLoader.ModItem"),
            ),
            host,
        )

    def test_nested_namespace_accepted(self, host: HostConfig) -> None:
        verify_mod_assembly("ExampleMod", metadata("ExampleMod", ("ExampleMod.Core.Main", "ExampleMod.Core", BASE)), host)

    def test_name_mismatch(self, host: HostConfig) -> None:
        with pytest.raises(VerificationError) as exc_info:
            verify_mod_assembly("ExampleMod", metadata("Other", ("ExampleMod.M", "ExampleMod", BASE)), host)
        assert exc_info.value.rule == VerificationRule.NAME_MISMATCH
        assert isinstance(exc_info.value, BuildError)

    @pytest.mark.parametrize("name", ["Terraria", "terraria", "TERRARIA"])
    def test_reserved_name(self, host: HostConfig, name: str) -> None:
        with pytest.raises(VerificationError) as exc_info:
            verify_mod_assembly(name, metadata(name, (f"{name}.M", name, BASE)), host)
        assert exc_info.value.rule == VerificationRule.RESERVED_NAME

    def test_no_mod_class(self, host: HostConfig) -> None:
        with pytest.raises(VerificationError, match="found none") as exc_info:
            verify_mod_assembly("ExampleMod", metadata("ExampleMod", ("ExampleMod.Helper", "ExampleMod", None)), host)
        assert exc_info.value.rule == VerificationRule.MOD_CLASS

    def test_two_mod_classes(self, host: HostConfig) -> None:
        with pytest.raises(VerificationError) as exc_info:
            verify_mod_assembly(
                "ExampleMod",
                metadata("ExampleMod", ("ExampleMod.A", "ExampleMod", BASE), ("ExampleMod.B", "ExampleMod", BASE)),
                host,
            )
        assert exc_info.value.rule == VerificationRule.MOD_CLASS
        assert "ExampleMod.A, ExampleMod.B" in str(exc_info.value)

    def test_namespace_mismatch(self, host: HostConfig) -> None:
        with pytest.raises(VerificationError) as exc_info:
            verify_mod_assembly("ExampleMod", metadata("ExampleMod", ("Other.ExampleMod", "Other", BASE)), host)
        assert exc_info.value.rule == VerificationRule.NAMESPACE_MISMATCH

    def test_global_namespace_mismatch(self, host: HostConfig) -> None:
        with pytest.raises(VerificationError, match=r"\(global\)"):
            verify_mod_assembly("ExampleMod", metadata("ExampleMod", ("ExampleMod", "", BASE)), host)

    def test_rules_checked_in_order(self, host: HostConfig) -> None:
        # Breaks every rule; the name check comes first.
        with pytest.raises(VerificationError) as exc_info:
            verify_mod_assembly("Terraria", metadata("Other"), host)
        assert exc_info.value.rule == VerificationRule.NAME_MISMATCH

    def test_custom_host(self) -> None:
        host = HostConfig(name="Game", base_mod_type="Game.Modding.Mod")
        with pytest.raises(VerificationError) as exc_info:
            verify_mod_assembly("ExampleMod", metadata("ExampleMod", ("ExampleMod.M", "ExampleMod", BASE)), host)
        assert exc_info.value.rule == VerificationRule.MOD_CLASS
