"""Reference resolution: every binary a mod compiles against.

A :class:`ReferenceTable` maps a file name (``Foo.dll``) to a lazily
computed location on disk. Most entries are plain files that already exist;
others (libraries embedded in the host binary, other mods' binaries inside
their archives) must be extracted first. Extraction is deferred until an
entry is first resolved and runs exactly once per entry, however many
threads ask for it at the same time.

Compiling resolves every entry, but metadata inspection of a precompiled
binary usually needs only a few, so the laziness matters: a mod built with
``noCompile`` against an IDE's output folder never extracts anything it
does not use. For the same reason a table can carry an *overlay* directory
(the active build-output folder): a same-named file there always wins over
the computed entry.

:class:`ReferencesFolder` maintains the shared references directory that IDE
project files point at. It is refreshed at most once per process, and again
whenever the host binary's modification time changes.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Callable, Generic, Iterable, Optional, TypeVar
from xml.sax.saxutils import escape

from modcompile.config import HostPaths
from modcompile.environment import find_reference_assemblies
from modcompile.exceptions import ReferenceMissingError
from modcompile.inspector import AssemblyInspector
from modcompile.models import GlobalConfig, Variant
from modcompile.registry import BuildingMod

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENGINE_LIBRARIES = (
    "Microsoft.Xna.Framework.dll",
    "Microsoft.Xna.Framework.Game.dll",
    "Microsoft.Xna.Framework.Graphics.dll",
    "Microsoft.Xna.Framework.Xact.dll",
    "FNA.dll",
)

_SKIPPED_FRAMEWORK_SUFFIXES = ("Thunk.dll", "Wrapper.dll")


class Memo(Generic[T]):
    """A single-assignment lazy value.

    The supplier runs at most once. Concurrent first callers block until it
    finishes and then all see the same value, or the same exception.
    """

    def __init__(self, supplier: Callable[[], T]) -> None:
        self._supplier: Optional[Callable[[], T]] = supplier
        self._lock = threading.Lock()
        self._done = False
        self._value: Optional[T] = None
        self._error: Optional[Exception] = None

    @classmethod
    def of(cls, value: T) -> Memo[T]:
        """An already computed value."""
        memo = cls(lambda: value)
        memo.get()
        return memo

    @property
    def done(self) -> bool:
        return self._done

    def get(self) -> T:
        if not self._done:
            with self._lock:
                if not self._done:
                    assert self._supplier is not None
                    try:
                        self._value = self._supplier()
                    except Exception as exc:
                        self._error = exc
                    self._supplier = None
                    self._done = True
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]


def _extract(dest: Path, read: Callable[[], bytes]) -> Path:
    """Write the bytes from *read* to *dest* atomically and return *dest*.

    The file only appears under its final name once complete, so a reader
    probing the folder never sees a partial library.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    data = read()
    with tempfile.NamedTemporaryFile(
        dir=dest.parent, prefix=f".{dest.name}.", suffix=".part", delete=False
    ) as fd:
        fd.write(data)
    os.replace(fd.name, dest)
    return dest


class ReferenceTable:
    """File name -> lazily resolved path.

    Args:
        overlay: Build-output folder whose files shadow same-named entries.
    """

    def __init__(self, overlay: Optional[Path] = None) -> None:
        self.overlay = overlay
        self._entries: dict[str, Memo[Path]] = {}

    def add_file(self, path: Path, name: Optional[str] = None) -> None:
        """Add an existing file under *name* (default: its file name)."""
        self._entries[name or path.name] = Memo.of(Path(path))

    def add_lazy(self, name: str, supplier: Callable[[], Path]) -> None:
        self._entries[name] = Memo(supplier)

    def update(self, other: ReferenceTable) -> None:
        """Copy every entry of *other*, sharing its memos."""
        self._entries.update(other._entries)

    def remove(self, name: str) -> None:
        self._entries.pop(name, None)

    def names(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _overlay_file(self, name: str) -> Optional[Path]:
        if self.overlay is None:
            return None
        candidate = self.overlay / name
        return candidate if candidate.is_file() else None

    def resolve(self, name: str) -> Path:
        """Return the location of *name*, extracting it on first use.

        Raises:
            KeyError: If *name* is neither in the overlay nor in the table.
        """
        shadow = self._overlay_file(name)
        if shadow is not None:
            return shadow
        return self._entries[name].get()

    def paths(self) -> list[Path]:
        """Resolve every entry, in insertion order."""
        return [self.resolve(name) for name in self._entries]

    def find_assembly(self, assembly_name: str) -> Optional[Path]:
        """Resolve an assembly by simple name, trying ``.dll`` then ``.exe``."""
        for ext in (".dll", ".exe"):
            name = assembly_name + ext
            if name in self._entries or self._overlay_file(name) is not None:
                return self.resolve(name)
        return None


def dll_ref_path(
    mod_path: Path,
    library: str,
    variant: Optional[Variant],
    eac_path: Optional[Path] = None,
    mod_name: Optional[str] = None,
) -> Path:
    """Locate declared library *library* of the mod at *mod_path*.

    Looks for ``lib/<library>.<Variant>.dll``, then ``lib/<library>.dll``,
    then ``<library>.dll`` next to the externally built binary *eac_path*.

    Raises:
        ReferenceMissingError: If none of those exist.
    """
    base = mod_path / "lib" / library
    if variant is not None:
        specific = base.with_name(f"{library}.{variant.value}.dll")
        if specific.is_file():
            return specific

    path = base.with_name(f"{library}.dll")
    if path.is_file():
        return path

    if eac_path is not None:
        copied = Path(eac_path).parent / f"{library}.dll"
        if copied.is_file():
            return copied

    raise ReferenceMissingError(library, mod_name or mod_path.name, str(path))


class ReferenceResolver:
    """Builds the :class:`ReferenceTable` a mod variant compiles against.

    Args:
        config: Effective configuration.
        paths: Resolved host folders.
        inspector: Used to list and read libraries embedded in host binaries.
        references_folder: The shared references folder. Once it is up to
            date, its extracted libraries are reused instead of extracting
            the native host binary's embedded libraries again.
        eac_path: Externally built binary whose folder is searched for
            declared libraries.
    """

    def __init__(
        self,
        config: GlobalConfig,
        paths: HostPaths,
        inspector: AssemblyInspector,
        references_folder: Optional[ReferencesFolder] = None,
        eac_path: Optional[Path] = None,
    ) -> None:
        self.config = config
        self.paths = paths
        self.inspector = inspector
        self.references_folder = references_folder
        self.eac_path = eac_path

    @property
    def host_reference_name(self) -> str:
        return f"{self.config.host.name}.exe"

    def _add_embedded(
        self, table: ReferenceTable, host_binary: Path, extract_dir: Path
    ) -> None:
        for resource in self.inspector.embedded_libraries(host_binary):
            file_name = resource.replace("\\", "/").rsplit("/", 1)[-1]
            read = partial(self.inspector.read_embedded, host_binary, resource)
            table.add_lazy(file_name, partial(_extract, extract_dir / file_name, read))

    def host_references(self, variant: Variant, temp_dir: Optional[Path]) -> ReferenceTable:
        """The host application's API surface for *variant*.

        The native variant uses the installed host binary, engine libraries
        from the install folder, and extracts embedded libraries into the
        shared references folder. The other variant uses the host binary
        shipped with the compile toolchain and extracts into *temp_dir*.
        """
        table = ReferenceTable()
        host = self.config.host

        if variant == host.native_variant:
            host_binary = self.paths.executable
            table.add_file(host_binary, self.host_reference_name)
            for lib in ENGINE_LIBRARIES:
                path = self.paths.install_dir / lib
                if path.is_file():
                    table.add_file(path)

            folder = self.references_folder
            if folder is not None and folder.is_current():
                for path in sorted(folder.directory.glob("*.dll")):
                    table.add_file(path)
                return table
            self._add_embedded(table, host_binary, self.paths.references_dir)
            return table

        if temp_dir is None:
            raise ValueError(f"A temp dir is needed to extract {variant.value} host libraries")
        host_binary = self.paths.variant_host_binary(variant.value)
        table.add_file(host_binary, self.host_reference_name)
        for lib in ENGINE_LIBRARIES:
            path = self.paths.compile_dir / lib
            if path.is_file():
                table.add_file(path)
        self._add_embedded(table, host_binary, temp_dir)
        return table

    def framework_references(self) -> list[Path]:
        """Framework reference assemblies, or nothing when none are installed."""
        directory = find_reference_assemblies(self.config, self.paths)
        if directory is None:
            return []
        return sorted(
            p
            for p in directory.rglob("*.dll")
            if not p.name.endswith(_SKIPPED_FRAMEWORK_SUFFIXES)
        )

    def resolve(
        self,
        mod: BuildingMod,
        variant: Variant,
        temp_dir: Path,
        build_dir: Optional[Path] = None,
    ) -> ReferenceTable:
        """Every reference of *mod* for *variant*.

        Args:
            mod: The mod being built, with its referenced mods filled in.
            variant: Target variant.
            temp_dir: The mod's private temp folder; lazily extracted
                libraries land here.
            build_dir: Folder of the binary being processed; its files
                shadow computed entries.

        Raises:
            ReferenceMissingError: If a declared library cannot be found.
        """
        table = ReferenceTable(overlay=build_dir)
        table.update(self.host_references(variant, temp_dir))

        for path in self.framework_references():
            table.add_file(path)

        for lib in mod.descriptor.dll_references:
            table.add_file(dll_ref_path(mod.path, lib, variant, self.eac_path, mod.name))

        for ref_mod in mod.ref_mods:
            main = f"{ref_mod.name}.dll"
            read = partial(ref_mod.archive.get_mod_binary, variant)
            table.add_lazy(main, partial(_extract, temp_dir / main, read))
            for lib in ref_mod.descriptor.dll_references:
                name = f"{lib}.dll"
                read = partial(ref_mod.archive.get_library, lib, variant)
                table.add_lazy(name, partial(_extract, temp_dir / name, read))

        logger.debug("Resolved %d references for %s (%s)", len(table), mod.name, variant.value)
        return table

    def update_references_folder(self) -> None:
        if self.references_folder is not None:
            self.references_folder.update(self)


# --- Shared references folder ---


TOUCH_FILE = "touch"
TARGETS_FILE = "tModLoader.targets"


def _make_reference(path: str, directory: Path, name: Optional[str] = None) -> str:
    if name is None:
        name = Path(path).stem
    if Path(path).parent == directory:
        path = "$(MSBuildThisFileDirectory)" + Path(path).name
    return (
        f'    <Reference Include="{escape(name)}">\n'
        f"      <HintPath>{escape(path)}</HintPath>\n"
        f"    </Reference>"
    )


def render_targets(
    host_name: str, host_binary: Path, references: Iterable[Path], directory: Path
) -> str:
    """MSBuild targets file pointing IDE projects at the extracted references."""
    items = [_make_reference("$(HostPath)", directory, host_name)]
    items.extend(_make_reference(str(p), directory) for p in references)
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<Project ToolsVersion="14.0" '
        'xmlns="http://schemas.microsoft.com/developer/msbuild/2003">\n'
        "  <PropertyGroup>\n"
        f"    <HostDir>{escape(str(host_binary.parent))}</HostDir>\n"
        f"    <HostPath>{escape(str(host_binary))}</HostPath>\n"
        "  </PropertyGroup>\n"
        "  <ItemGroup>\n"
        + "\n".join(items)
        + "\n  </ItemGroup>\n"
        "</Project>\n"
    )


class ReferencesFolder:
    """The shared folder of extracted host references.

    Args:
        directory: The references folder.
        host_binary: Installed host binary; its modification time keys the
            folder's freshness.
    """

    def __init__(self, directory: Path, host_binary: Path) -> None:
        self.directory = directory
        self.host_binary = host_binary
        self._lock = threading.Lock()
        self._stamp: Optional[str] = None

    @property
    def touch_file(self) -> Path:
        return self.directory / TOUCH_FILE

    @property
    def targets_file(self) -> Path:
        return self.directory / TARGETS_FILE

    def current_stamp(self) -> str:
        mtime = datetime.fromtimestamp(self.host_binary.stat().st_mtime)
        return f"{self.host_binary} @ {mtime.isoformat()}"

    def is_current(self) -> bool:
        """True once :meth:`update` ran for the current host binary."""
        if self._stamp is None:
            return False
        try:
            return self._stamp == self.current_stamp()
        except OSError:
            return False

    def update(self, resolver: ReferenceResolver) -> None:
        """Bring the folder up to date with the installed host binary.

        Extracts the native host's embedded libraries, deletes libraries no
        longer provided, and rewrites the targets file. Does nothing when the
        touch stamp already matches.
        """
        with self._lock:
            stamp = self.current_stamp()
            if self._stamp == stamp:
                return
            self.directory.mkdir(parents=True, exist_ok=True)
            last = self.touch_file.read_text(encoding="utf-8") if self.touch_file.is_file() else None
            if last == stamp:
                self._stamp = stamp
                return

            logger.info("Updating references folder %s", self.directory)
            self._stamp = None
            native = resolver.config.host.native_variant
            libs = resolver.host_references(native, temp_dir=None)

            for path in self.directory.glob("*.dll"):
                if path.name not in libs:
                    logger.debug("Removing stale reference %s", path.name)
                    path.unlink()

            libs.remove(resolver.host_reference_name)
            targets = render_targets(
                resolver.config.host.name, self.host_binary, libs.paths(), self.directory
            )
            self.targets_file.write_text(targets, encoding="utf-8")
            self.touch_file.write_text(stamp, encoding="utf-8")
            self._stamp = stamp


_folders: dict[Path, ReferencesFolder] = {}
_folders_lock = threading.Lock()


def get_references_folder(paths: HostPaths) -> ReferencesFolder:
    """Return the process-wide :class:`ReferencesFolder` for *paths*."""
    key = paths.references_dir.resolve()
    with _folders_lock:
        folder = _folders.get(key)
        if folder is None or folder.host_binary != paths.executable:
            folder = ReferencesFolder(paths.references_dir, paths.executable)
            _folders[key] = folder
        return folder


def reset_references_folders() -> None:
    """Forget every shared folder (used by tests)."""
    with _folders_lock:
        _folders.clear()
