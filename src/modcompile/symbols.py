"""Debug symbol reconciliation.

Reading and re-writing a binary regenerates its debug information, so the
symbols shipped with a mod have to come from such a rewrite, not from the
compiler. Two cases follow:

* the binary was compiled into the mod's temp folder, which is also where
  the rewrite goes. The packaged binary is then replaced by the rewritten
  one, whose debug header matches the new symbols.
* the binary came from elsewhere (precompiled, or an external build). It is
  packaged as-is and the rewrite's debug header is shipped next to it, so
  the loader can splice it in.

The primary symbol format is native PDB when the host runs on .NET
Framework and portable PDB otherwise. FNA builds additionally ship MDB
symbols for Mono. Every rewrite of a variant reads the same untouched copy
of the input binary, so the MDB describes the same image as the PDB.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional

from modcompile.archive import ModArchive
from modcompile.exceptions import BuildError
from modcompile.inspector import AssemblyInspector, symbol_path
from modcompile.models import BuildArtifact, Framework, SymbolFormat, Variant
from modcompile.references import ReferenceTable

logger = logging.getLogger(__name__)

DEBUG_HEADER_SUFFIX = ".debugheader"


def _read(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise BuildError(f"Debug rewrite did not produce {path.name}: {exc}") from exc


class SymbolReconciler:
    def __init__(self, inspector: AssemblyInspector, framework: Framework) -> None:
        self.inspector = inspector
        self.framework = framework

    @property
    def primary_format(self) -> SymbolFormat:
        if self.framework == Framework.NET_FRAMEWORK:
            return SymbolFormat.NATIVE_PDB
        return SymbolFormat.PORTABLE_PDB

    def reconcile(
        self,
        dll_name: str,
        dll_path: Path,
        temp_dir: Path,
        variant: Variant,
        references: Optional[ReferenceTable] = None,
    ) -> BuildArtifact:
        """Rewrite *dll_path* into *temp_dir* and collect what must be packaged."""
        target = temp_dir / dll_name
        in_place = dll_path.resolve() == target.resolve()

        # The first rewrite may overwrite dll_path.
        source = temp_dir / "input" / dll_name
        source.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copyfile(dll_path, source)
        except OSError as exc:
            raise BuildError(f"Cannot copy {dll_path} for debug rewrite: {exc}") from exc

        self.inspector.rewrite(source, target, self.primary_format, references)
        symbols = _read(symbol_path(target, self.primary_format))

        binary: Optional[bytes] = None
        debug_header: Optional[bytes] = None
        if in_place:
            binary = _read(target)
        else:
            debug_header = self.inspector.read_debug_header(target)

        secondary: Optional[bytes] = None
        if variant == Variant.FNA:
            self.inspector.rewrite(source, target, SymbolFormat.MDB, references)
            secondary = _read(symbol_path(target, SymbolFormat.MDB))

        logger.debug(
            "Reconciled symbols for %s (%s, rewritten binary: %s)",
            dll_name,
            self.primary_format.value,
            in_place,
        )
        return BuildArtifact(
            variant=variant,
            dll_name=dll_name,
            binary=binary,
            symbols=symbols,
            secondary_symbols=secondary,
            debug_header=debug_header,
        )

    @staticmethod
    def apply(archive: ModArchive, artifact: BuildArtifact) -> None:
        """Add the artifact's entries to *archive*."""
        name = artifact.dll_name
        if artifact.binary is not None:
            archive.add_file(name, artifact.binary)
        if artifact.symbols is not None:
            archive.add_file(Path(name).with_suffix(".pdb").name, artifact.symbols)
        if artifact.debug_header is not None:
            archive.add_file(name + DEBUG_HEADER_SUFFIX, artifact.debug_header)
        if artifact.secondary_symbols is not None:
            archive.add_file(name + ".mdb", artifact.secondary_symbols)
