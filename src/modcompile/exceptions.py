"""Exception hierarchy for modcompile.

All exceptions inherit from :class:`ModCompileError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`modcompile.exit_codes`
and an optional ``mod`` attribute naming the mod whose build raised it. The
orchestrator sets ``mod`` on the way out of a single mod's build and then
re-raises the same exception, so the kind of failure is never lost.

Subclass hierarchy::

    ModCompileError (exit 1)
    +-- ConfigError
    +-- EnvironmentNotReadyError
    +-- ManifestReadError
    +-- DependencyError
    |   +-- DependencyCycleError
    |   +-- MissingDependencyError
    |   +-- VersionMismatchError
    +-- ReferenceMissingError
    +-- BuildError
    |   +-- CompileError
    |   +-- VerificationError
    +-- PackagingIOError
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Optional

from modcompile.exit_codes import EXIT_GENERIC_FAILURE

if TYPE_CHECKING:
    from modcompile.models import Diagnostic


class ModCompileError(Exception):
    """Base exception for all modcompile errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
        mod: Name of the mod being built when the error was raised.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        mod: Optional[str] = None,
    ):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code
        self.mod = mod


class ConfigError(ModCompileError):
    """Raised for configuration problems (invalid JSON, bad overrides)."""


class EnvironmentNotReadyError(ModCompileError):
    """Raised when the compile toolchain or reference assemblies are not available."""


class ManifestReadError(ModCompileError):
    """Raised when a mod's ``build.txt`` is missing or cannot be parsed."""


class DependencyError(ModCompileError):
    """Common base for dependency resolution failures."""


class DependencyCycleError(DependencyError):
    """Raised when the dependency graph has no valid build order.

    Args:
        cycle: Mod names along the detected cycle, first name repeated last.
    """

    def __init__(self, cycle: list[str]):
        super().__init__("Dependency cycle: " + " -> ".join(cycle))
        self.cycle = cycle


class MissingDependencyError(DependencyError):
    """Raised when a strong dependency is absent from the combined mod set."""

    def __init__(self, mod_name: str, dependency: str):
        super().__init__(f"Missing mod: {dependency} required by {mod_name}")
        self.dependency = dependency
        self.dependent = mod_name


class VersionMismatchError(DependencyError):
    """Raised when a mod's minimum-version or host-version constraint is violated."""


class ReferenceMissingError(ModCompileError):
    """Raised when a declared external library cannot be located."""

    def __init__(self, library: str, mod_name: str, searched: str):
        super().__init__(f"Missing dll reference: {searched} (library '{library}' of mod {mod_name})")
        self.library = library
        self.mod = mod_name


class BuildError(ModCompileError):
    """Raised for failures inside a build stage (e.g. a missing precompiled binary)."""


class CompileError(BuildError):
    """Raised when the compiler reports at least one error-severity diagnostic.

    Args:
        output_name: File name of the binary being compiled.
        diagnostics: Every diagnostic the compiler produced, warnings included.
    """

    def __init__(self, output_name: str, diagnostics: list[Diagnostic]):
        self.diagnostics = diagnostics
        self.errors = [d for d in diagnostics if d.is_error]
        self.warnings = [d for d in diagnostics if not d.is_error]
        first = self.errors[0] if self.errors else None
        message = (
            f"Compilation of {output_name} failed with "
            f"{len(self.errors)} errors and {len(self.warnings)} warnings"
        )
        if first is not None:
            message += f"\nError: {first}"
        super().__init__(message)
        self.first_error = first


class VerificationRule(str, enum.Enum):
    """The identity rules a compiled mod binary must satisfy, in check order."""

    NAME_MISMATCH = "name mismatch"
    RESERVED_NAME = "reserved name"
    MOD_CLASS = "missing or ambiguous mod class"
    NAMESPACE_MISMATCH = "namespace mismatch"


class VerificationError(BuildError):
    """Raised when a compiled binary breaks one of the :class:`VerificationRule` checks."""

    def __init__(self, rule: VerificationRule, detail: str = ""):
        message = rule.value if not detail else f"{rule.value}: {detail}"
        super().__init__(message)
        self.rule = rule


class PackagingIOError(ModCompileError):
    """Raised when reading resources or writing the archive fails."""
