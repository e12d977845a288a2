"""Identity checks on a compiled mod binary.

A binary is only accepted when it is unmistakably the mod it claims to be:

1. its assembly name equals the mod (folder) name,
2. the mod is not named after the host itself, in any letter case,
3. exactly one top-level type extends the host's base mod type,
4. that type's top-level namespace equals the mod name.

Rules are checked in that order and the first violation is raised.
"""

from __future__ import annotations

from modcompile.exceptions import VerificationError, VerificationRule
from modcompile.inspector import AssemblyMetadata
from modcompile.models import HostConfig


def verify_mod_assembly(mod_name: str, metadata: AssemblyMetadata, host: HostConfig) -> None:
    """Raise :class:`VerificationError` if *metadata* breaks an identity rule."""
    if metadata.name != mod_name:
        raise VerificationError(
            VerificationRule.NAME_MISMATCH,
            f"mod name {mod_name} does not match assembly name {metadata.name}",
        )

    if mod_name.casefold() == host.name.casefold():
        raise VerificationError(
            VerificationRule.RESERVED_NAME, f"mods cannot be named {host.name}"
        )

    mod_classes = [t for t in metadata.types if t.base_type == host.base_mod_type]
    if len(mod_classes) != 1:
        found = ", ".join(t.full_name for t in mod_classes) or "none"
        raise VerificationError(
            VerificationRule.MOD_CLASS,
            f"expected exactly one class extending {host.base_mod_type}, found {found}",
        )

    top_namespace = mod_classes[0].namespace.split(".")[0]
    if top_namespace != mod_name:
        raise VerificationError(
            VerificationRule.NAMESPACE_MISMATCH,
            f"namespace {mod_classes[0].namespace or '(global)'} does not start with {mod_name}",
        )
