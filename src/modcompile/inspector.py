"""Binary metadata inspection and debug rewriting.

Verification and symbol reconciliation need only a handful of operations on
a compiled binary: read its assembly name, list its top-level types with
their base types, write a debug-rewritten copy with symbols in a chosen
format, read the debug header of such a copy, and pull embedded libraries
out of the host binary. :class:`AssemblyInspector` is that narrow contract.

:class:`SubprocessInspector` binds it to an external metadata tool invoked
once per operation::

    <tool> inspect <binary>                         -> JSON AssemblyMetadata
    <tool> rewrite <binary> --out <dest> --symbols <format>
    <tool> debug-header <binary>                    -> raw bytes on stdout
    <tool> resources <binary>                       -> JSON list of names
    <tool> resource <binary> <name>                 -> raw bytes on stdout

Reading or writing metadata may need the binary's own references (constant
values from another library used as parameter defaults, for instance), so
``--search-dir`` and ``--reference`` options are appended when a reference
table is supplied. The tool cannot call back into this process, so every
table entry is materialised first.
"""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field, ValidationError

from modcompile.exceptions import BuildError, EnvironmentNotReadyError
from modcompile.models import SymbolFormat

if TYPE_CHECKING:
    from modcompile.references import ReferenceTable

logger = logging.getLogger(__name__)


class TypeInfo(BaseModel):
    """A top-level type defined in a binary."""

    full_name: str
    namespace: str = ""
    base_type: Optional[str] = Field(default=None, description="Full name of the direct base type")


class AssemblyMetadata(BaseModel):
    """The structural metadata the verifier looks at."""

    name: str
    types: list[TypeInfo] = Field(default_factory=list)


def symbol_path(binary: Path, symbol_format: SymbolFormat) -> Path:
    """Where a rewrite of *binary* leaves its symbols.

    PDB formats replace the extension (``Mod.XNA.pdb``); MDB appends one
    (``Mod.FNA.dll.mdb``).
    """
    if symbol_format == SymbolFormat.MDB:
        return binary.with_name(binary.name + ".mdb")
    return binary.with_suffix(".pdb")


@runtime_checkable
class AssemblyInspector(Protocol):
    """Metadata operations on compiled binaries."""

    def read_metadata(
        self, path: Path, references: Optional[ReferenceTable] = None
    ) -> AssemblyMetadata:
        ...

    def rewrite(
        self,
        source: Path,
        dest: Path,
        symbol_format: SymbolFormat,
        references: Optional[ReferenceTable] = None,
    ) -> None:
        """Write a debug-rewritten copy of *source* to *dest*.

        Symbols land at :func:`symbol_path` of *dest*. *source* is read in
        full before anything is written, so *source* and *dest* may be the
        same file.
        """
        ...

    def read_debug_header(self, path: Path) -> bytes:
        ...

    def embedded_libraries(self, path: Path) -> list[str]:
        """Names of the ``.dll`` resources embedded in the binary at *path*."""
        ...

    def read_embedded(self, path: Path, name: str) -> bytes:
        ...


class SubprocessInspector:
    """Runs an external metadata tool for every operation.

    Args:
        command: Tool command line prefix, e.g. ``["dotnet", "CecilTool.dll"]``.
    """

    def __init__(self, command: list[str]) -> None:
        if not command:
            raise ValueError("Inspector command must not be empty")
        self._command = list(command)

    def _run(
        self, args: list[str], references: Optional[ReferenceTable] = None
    ) -> subprocess.CompletedProcess[bytes]:
        cmd = [*self._command, *args]
        if references is not None:
            if references.overlay is not None:
                cmd += ["--search-dir", str(references.overlay)]
            for path in references.paths():
                cmd += ["--reference", str(path)]

        logger.debug("Running metadata tool: %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True)
        except FileNotFoundError as exc:
            raise EnvironmentNotReadyError(f"Metadata tool not found: {cmd[0]}") from exc
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            tail = "\n".join(stderr.splitlines()[-20:])
            raise BuildError(f"Metadata tool '{args[0]}' failed on {args[1]}:\n{tail}")
        return result

    def read_metadata(
        self, path: Path, references: Optional[ReferenceTable] = None
    ) -> AssemblyMetadata:
        result = self._run(["inspect", str(path)], references)
        try:
            return AssemblyMetadata.model_validate_json(result.stdout)
        except ValidationError as exc:
            raise BuildError(f"Unreadable metadata for {path.name}: {exc}") from exc

    def rewrite(
        self,
        source: Path,
        dest: Path,
        symbol_format: SymbolFormat,
        references: Optional[ReferenceTable] = None,
    ) -> None:
        self._run(
            ["rewrite", str(source), "--out", str(dest), "--symbols", symbol_format.value],
            references,
        )

    def read_debug_header(self, path: Path) -> bytes:
        return self._run(["debug-header", str(path)]).stdout

    def embedded_libraries(self, path: Path) -> list[str]:
        result = self._run(["resources", str(path)])
        try:
            names = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise BuildError(f"Unreadable resource list for {path.name}: {exc}") from exc
        return [name for name in names if str(name).endswith(".dll")]

    def read_embedded(self, path: Path, name: str) -> bytes:
        return self._run(["resource", str(path), name]).stdout
