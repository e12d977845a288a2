"""Compiler driver.

The pipeline never links against a compiler. It talks to a :class:`Compiler`
capability: give it sources, references and preprocessor symbols, get back
a list of diagnostics. :class:`SubprocessCompiler` is the stock binding; it
writes a JSON request file and runs the configured compiler wrapper::

    <command...> <request.json>

The wrapper prints a JSON list of diagnostics on stdout, each shaped like
:class:`~modcompile.models.Diagnostic`.

:class:`CompilerDriver` sits on top: it picks the source files, assembles
the symbol list, reports the result through the build status sink and turns
error diagnostics into :class:`~modcompile.exceptions.CompileError`. It also
locates precompiled binaries for mods that opt out of compiling.
"""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Callable, Optional, Protocol, runtime_checkable

from pydantic import TypeAdapter, ValidationError

from modcompile.exceptions import (
    BuildError,
    CompileError,
    EnvironmentNotReadyError,
)
from modcompile.models import Diagnostic, LaunchConfig, Variant
from modcompile.packager import ignore_completely
from modcompile.references import ReferenceTable
from modcompile.registry import BuildingMod
from modcompile.status import BuildStatus

logger = logging.getLogger(__name__)

_DIAGNOSTICS = TypeAdapter(list[Diagnostic])


@runtime_checkable
class Compiler(Protocol):
    """The external compile capability."""

    def compile(
        self,
        name: str,
        output_path: Path,
        sources: list[Path],
        references: list[Path],
        symbols: list[str],
        *,
        include_debug: bool,
        allow_unsafe: bool,
    ) -> list[Diagnostic]:
        """Compile *sources* into *output_path* and return every diagnostic."""
        ...


class SubprocessCompiler:
    """Runs an external compiler wrapper once per compile.

    There is no timeout: a wrapper that hangs stalls the build.
    """

    def __init__(self, command: list[str]) -> None:
        if not command:
            raise ValueError("Compiler command must not be empty")
        self._command = list(command)

    def compile(
        self,
        name: str,
        output_path: Path,
        sources: list[Path],
        references: list[Path],
        symbols: list[str],
        *,
        include_debug: bool,
        allow_unsafe: bool,
    ) -> list[Diagnostic]:
        request = {
            "name": name,
            "output": str(output_path),
            "sources": [str(p) for p in sources],
            "references": [str(p) for p in references],
            "symbols": symbols,
            "include_debug": include_debug,
            "allow_unsafe": allow_unsafe,
        }
        request_path = output_path.with_name(f"{output_path.name}.request.json")
        request_path.parent.mkdir(parents=True, exist_ok=True)
        request_path.write_text(json.dumps(request, indent=2), encoding="utf-8")

        cmd = [*self._command, str(request_path)]
        logger.debug("Running compiler: %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True)
        except FileNotFoundError as exc:
            raise EnvironmentNotReadyError(f"Compiler not found: {cmd[0]}") from exc

        try:
            return _DIAGNOSTICS.validate_json(result.stdout)
        except ValidationError as exc:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            tail = "\n".join(stderr.splitlines()[-20:])
            raise BuildError(
                f"Compiler exited with code {result.returncode} without a readable "
                f"diagnostics list:\n{tail or exc}"
            ) from exc


class CompilerDriver:
    """Produces one binary per variant for a mod.

    Args:
        compiler: The compile capability.
        status: Build status sink.
        launch: Launch options (unsafe code, extra symbols).
        ready: Environment check run before every compile; returns
            ``(ok, message)``.
    """

    def __init__(
        self,
        compiler: Compiler,
        status: BuildStatus,
        launch: Optional[LaunchConfig] = None,
        ready: Optional[Callable[[], tuple[bool, str]]] = None,
    ) -> None:
        self.compiler = compiler
        self.status = status
        self.launch = launch or LaunchConfig()
        self._ready = ready

    def locate_precompiled(self, mod: BuildingMod, variant: Variant) -> Path:
        """Find the binary of a ``noCompile`` mod.

        ``<name>.All.dll`` takes priority over ``<name>.<Variant>.dll``.

        Raises:
            BuildError: If neither exists. Compiling is never attempted.
        """
        path = mod.path / f"{mod.name}.All.dll"
        if not path.is_file():
            path = mod.path / variant.dll_name(mod.name)
        if not path.is_file():
            raise BuildError(f"Error loading precompiled binary: {path} not found")
        self.status.set_status(f"Loading precompiled {variant.dll_name(mod.name)} from {path.name}")
        return path

    def source_files(self, mod: BuildingMod) -> list[Path]:
        """Every ``.cs`` file of *mod* that packaging would not skip entirely."""
        return sorted(
            p
            for p in mod.path.rglob("*.cs")
            if p.is_file() and not ignore_completely(mod, p.relative_to(mod.path).as_posix())
        )

    def symbols(self, variant: Variant) -> list[str]:
        return [variant.value, *self.launch.defines]

    def compile(
        self, mod: BuildingMod, output_path: Path, references: ReferenceTable, variant: Variant
    ) -> list[Diagnostic]:
        """Compile *mod* for *variant* into *output_path*.

        Returns:
            The diagnostics, all warnings.

        Raises:
            EnvironmentNotReadyError: If the environment check fails.
            CompileError: If any diagnostic is an error.
        """
        self.status.set_status(f"Compiling {output_path.name}...")
        if self._ready is not None:
            ok, msg = self._ready()
            if not ok:
                raise EnvironmentNotReadyError(msg)

        diagnostics = self.compiler.compile(
            mod.name,
            output_path,
            self.source_files(mod),
            references.paths(),
            self.symbols(variant),
            include_debug=mod.descriptor.include_pdb,
            allow_unsafe=self.launch.allow_unsafe,
        )

        num_errors = sum(1 for d in diagnostics if d.is_error)
        num_warnings = len(diagnostics) - num_errors
        self.status.log_compiler_line(
            f"Compilation result: {num_errors} errors, {num_warnings} warnings", logging.INFO
        )
        for diagnostic in diagnostics:
            level = logging.ERROR if diagnostic.is_error else logging.WARNING
            self.status.log_compiler_line(str(diagnostic), level)

        if num_errors:
            raise CompileError(output_path.name, diagnostics)
        return diagnostics
