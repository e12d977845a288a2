"""The packaged mod archive (``<name>.tmod``).

An archive is an ordered set of uniquely named byte entries stored as a zip
file. Exactly one entry, ``Info``, holds the serialised
:class:`~modcompile.models.ModDescriptor`. The other entries are:

* ``<name>.<Variant>.dll`` -- the main binary for each variant
* ``<name>.<Variant>.pdb`` -- primary debug symbols (optional)
* ``<name>.<Variant>.dll.debugheader`` -- debug header token (optional)
* ``<name>.<Variant>.dll.mdb`` -- secondary debug symbols (optional)
* ``lib/<library>`` -- libraries supplied from outside the mod folder
* every packaged resource at its source-relative path

Archives under construction live in memory; :meth:`ModArchive.save` commits
them in a single atomic rename, so a half-written archive never replaces a
good one. Entries are written with the metadata entry first and the rest
sorted by path with fixed timestamps, which keeps the bytes reproducible for
identical inputs regardless of the order packaging threads added them.
"""

from __future__ import annotations

import os
import tempfile
import threading
import zipfile
from pathlib import Path
from typing import Optional

from modcompile.exceptions import PackagingIOError
from modcompile.models import ModDescriptor, Variant

INFO_ENTRY = "Info"

_FIXED_DATE = (1980, 1, 1, 0, 0, 0)


def _normalize(name: str) -> str:
    name = name.replace("\\", "/").lstrip("/")
    if not name:
        raise ValueError("Archive entry name must not be empty")
    return name


class ModArchive:
    """A mod archive, either being built in memory or opened from disk.

    Args:
        path: Where the archive is (or will be) stored.
        source: An existing archive file to read entries from. Entries added
            in memory shadow entries of the same name in *source*.

    Example::

        archive = ModArchive(mods_dir / "ExampleMod.tmod")
        archive.set_descriptor(descriptor)
        archive.add_file("ExampleMod.XNA.dll", dll_bytes)
        archive.save()

        installed = ModArchive.open(mods_dir / "ExampleMod.tmod")
        installed.descriptor().version
    """

    def __init__(self, path: str | Path, source: Optional[Path] = None) -> None:
        self.path = Path(path)
        self._source = source
        self._entries: dict[str, bytes] = {}
        self._lock = threading.Lock()
        self._source_names: Optional[list[str]] = None
        self._descriptor: Optional[ModDescriptor] = None

    @classmethod
    def open(cls, path: str | Path) -> ModArchive:
        """Open an archive on disk for reading.

        Raises:
            PackagingIOError: If the file is missing or is not a valid archive.
        """
        path = Path(path)
        archive = cls(path, source=path)
        archive.file_names()
        return archive

    # ------------------------------------------------------------------ #
    # Writing
    # ------------------------------------------------------------------ #

    def add_file(self, name: str, data: bytes, replace: bool = True) -> None:
        """Add or replace entry *name*. Safe to call from several threads.

        Raises:
            PackagingIOError: If *replace* is false and *name* was already
                added.
        """
        name = _normalize(name)
        with self._lock:
            if not replace and name in self._entries:
                raise PackagingIOError(f"Duplicate archive entry {name} in {self.path.name}")
            self._entries[name] = bytes(data)
            if name == INFO_ENTRY:
                self._descriptor = None

    def set_descriptor(self, descriptor: ModDescriptor) -> None:
        """Write the metadata entry."""
        self.add_file(INFO_ENTRY, descriptor.to_bytes())

    def save(self) -> None:
        """Commit the archive to :attr:`path` atomically.

        Raises:
            PackagingIOError: If the metadata entry is missing or the file
                cannot be written.
        """
        names = self.file_names()
        if INFO_ENTRY not in names:
            raise PackagingIOError(f"Cannot save {self.path.name}: no {INFO_ENTRY} entry")
        ordered = [INFO_ENTRY] + sorted(n for n in names if n != INFO_ENTRY)

        tmp_path: Optional[str] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as fd:
                tmp_path = fd.name
                with zipfile.ZipFile(fd, "w") as zf:
                    for name in ordered:
                        info = zipfile.ZipInfo(name, date_time=_FIXED_DATE)
                        info.compress_type = zipfile.ZIP_DEFLATED
                        info.external_attr = 0o644 << 16
                        zf.writestr(info, self.get_file(name))
                fd.flush()
                os.fsync(fd.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except (OSError, zipfile.BadZipFile) as exc:
            raise PackagingIOError(f"Failed to write {self.path}: {exc}") from exc
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass

        with self._lock:
            self._source = self.path
            self._source_names = ordered

    # ------------------------------------------------------------------ #
    # Reading
    # ------------------------------------------------------------------ #

    def _read_source_names(self) -> list[str]:
        if self._source is None:
            return []
        if self._source_names is None:
            try:
                with zipfile.ZipFile(self._source) as zf:
                    self._source_names = zf.namelist()
            except (OSError, zipfile.BadZipFile) as exc:
                raise PackagingIOError(f"Cannot read archive {self._source}: {exc}") from exc
        return self._source_names

    def file_names(self) -> list[str]:
        """Every entry name, in-memory entries first."""
        with self._lock:
            names = list(self._entries)
        names.extend(n for n in self._read_source_names() if n not in names)
        return names

    def has_file(self, name: str) -> bool:
        return _normalize(name) in self.file_names()

    def get_file(self, name: str) -> bytes:
        """Return the bytes of entry *name*.

        Raises:
            PackagingIOError: If the entry does not exist or cannot be read.
        """
        name = _normalize(name)
        with self._lock:
            if name in self._entries:
                return self._entries[name]
        if name not in self._read_source_names():
            raise PackagingIOError(f"{self.path.name} has no entry '{name}'")
        try:
            with zipfile.ZipFile(self._source) as zf:
                return zf.read(name)
        except (OSError, zipfile.BadZipFile, KeyError) as exc:
            raise PackagingIOError(f"Cannot read '{name}' from {self._source}: {exc}") from exc

    def descriptor(self) -> ModDescriptor:
        """Parse and cache the metadata entry."""
        if self._descriptor is None:
            data = self.get_file(INFO_ENTRY)
            try:
                self._descriptor = ModDescriptor.from_bytes(data)
            except ValueError as exc:
                raise PackagingIOError(f"Invalid {INFO_ENTRY} entry in {self.path}: {exc}") from exc
        return self._descriptor

    def get_mod_binary(self, variant: Variant) -> bytes:
        """Main binary of the archived mod for *variant*."""
        return self.get_file(variant.dll_name(self.descriptor().name))

    def get_library(self, library: str, variant: Variant) -> bytes:
        """Bytes of declared library *library*, preferring the variant-specific build."""
        specific = f"lib/{library}.{variant.value}.dll"
        if self.has_file(specific):
            return self.get_file(specific)
        return self.get_file(f"lib/{library}.dll")

    def __len__(self) -> int:
        return len(self.file_names())

    def __repr__(self) -> str:
        return f"ModArchive({str(self.path)!r})"
