"""Packaging: fill a mod's archive with its metadata and resources.

Every file under the mod folder is a resource unless a filter rejects it.
:func:`ignore_completely` is shared with the compiler driver (a file hidden
from packaging is hidden from compiling too); :func:`ignore_resource` adds
the rules that only apply to packaging.

Resources are read and converted on a thread pool. The archive and the
progress counter are the only state the workers share, and both are
guarded.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path, PurePosixPath
from typing import Optional

from modcompile.converters import ConverterManager
from modcompile.exceptions import PackagingIOError
from modcompile.manifest import BUILD_FILE
from modcompile.models import Variant
from modcompile.references import dll_ref_path
from modcompile.registry import BuildingMod
from modcompile.status import BuildStatus

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS = frozenset({".cs", ".csproj", ".sln"})
THUMBNAIL_CACHE = "Thumbs.db"


def ignore_completely(mod: BuildingMod, rel_path: str) -> bool:
    """Skip for both compiling and packaging.

    Matches ``buildIgnore`` patterns, paths starting with a dot, and the
    ``bin/`` and ``obj/`` build-output folders.
    """
    rel_path = rel_path.replace("\\", "/")
    return (
        mod.descriptor.ignore_file(rel_path)
        or rel_path.startswith(".")
        or rel_path.startswith("bin/")
        or rel_path.startswith("obj/")
    )


def _precompiled_names(name: str) -> set[str]:
    return {f"{name}.All.dll", *(variant.dll_name(name) for variant in Variant)}


def ignore_resource(mod: BuildingMod, rel_path: str) -> bool:
    """Skip for packaging.

    On top of :func:`ignore_completely`: the manifest, source files unless
    the mod ships its source, thumbnail caches, and the precompiled binaries
    of a ``noCompile`` mod, which are already packaged as its mod binaries.
    """
    rel_path = rel_path.replace("\\", "/")
    path = PurePosixPath(rel_path)
    return (
        ignore_completely(mod, rel_path)
        or rel_path == BUILD_FILE
        or (not mod.descriptor.include_source and path.suffix in SOURCE_EXTENSIONS)
        or path.name == THUMBNAIL_CACHE
        or (mod.descriptor.no_compile and rel_path in _precompiled_names(mod.name))
    )


class Packager:
    """Writes a mod's metadata and resources into its archive.

    Args:
        status: Build status sink; receives the packaging progress.
        converters: Resource converters; ``None`` packages every file raw.
        max_workers: Worker thread count (default: CPU count).
        eac_path: Externally built binary whose folder may supply declared
            libraries. Such libraries are packaged under ``lib/``.
    """

    def __init__(
        self,
        status: BuildStatus,
        converters: Optional[ConverterManager] = None,
        max_workers: Optional[int] = None,
        eac_path: Optional[Path] = None,
    ) -> None:
        self.status = status
        self.converters = converters
        self.max_workers = max_workers or os.cpu_count() or 1
        self.eac_path = eac_path
        self._count = 0
        self._count_lock = threading.Lock()

    def resources(self, mod: BuildingMod) -> list[tuple[Path, str]]:
        """``(path, rel_path)`` of every resource to package, sorted by path."""
        found = []
        for path in mod.path.rglob("*"):
            if not path.is_file():
                continue
            rel = path.relative_to(mod.path).as_posix()
            if not ignore_resource(mod, rel):
                found.append((path, rel))
        return sorted(found, key=lambda item: item[1])

    def package(self, mod: BuildingMod) -> None:
        """Add the metadata entry, every resource, and outside libraries.

        Raises:
            PackagingIOError: If a resource cannot be read or converted, or
                collides with an entry already in the archive.
            ReferenceMissingError: If a declared library has disappeared.
        """
        self.status.set_status(f"Packaging: {mod.name}")
        self.status.set_progress(0, 1)

        mod.archive.set_descriptor(mod.descriptor)

        resources = self.resources(mod)
        with self._count_lock:
            self._count = 0
        self.status.set_progress(0, len(resources))

        if resources:
            workers = min(self.max_workers, len(resources))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="package") as pool:
                futures = [pool.submit(self._add_resource, mod, path, rel) for path, rel in resources]
                for future in futures:
                    future.result()

        lib_folder = mod.path / "lib"
        for lib in mod.descriptor.dll_references:
            path = dll_ref_path(mod.path, lib, None, self.eac_path, mod.name)
            if lib_folder not in path.parents:
                logger.debug("Packaging outside library %s for %s", path, mod.name)
                mod.archive.add_file(f"lib/{path.name}", self._read(path))

    @staticmethod
    def _read(path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as exc:
            raise PackagingIOError(f"Cannot read {path}: {exc}") from exc

    def _add_resource(self, mod: BuildingMod, path: Path, rel_path: str) -> None:
        data = self._read(path)
        if self.converters is not None:
            converted = self.converters.convert(rel_path, data)
            if converted is not None:
                rel_path, data = converted

        # Info and the mod binaries are already in the archive.
        mod.archive.add_file(rel_path, data, replace=False)
        with self._count_lock:
            self._count += 1
            count = self._count
        self.status.set_progress(count)
