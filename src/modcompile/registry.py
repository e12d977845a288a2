"""Installed-mod registry.

The build pipeline needs three things from whatever manages installed mods:
look up an installed mod by name, list all installed mods, and swap a newly
built archive in for the previous version. :class:`ModRegistry` is that
contract; :class:`DirectoryModRegistry` implements it over a mods folder of
``<name>.tmod`` archives with an ``enabled.json`` list of active mods.

Parsing an archive's ``Info`` entry means opening a zip file, which adds up
when a batch build walks a large mods folder. Parsed descriptors are cached
with :mod:`diskcache`, keyed by archive path, size and modification time so
a rebuilt archive is never served stale.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import diskcache

from modcompile.archive import ModArchive
from modcompile.config import _atomic_write
from modcompile.exceptions import ConfigError, ModCompileError
from modcompile.models import ModDescriptor

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tmod"
ENABLED_FILE = "enabled.json"


@dataclass
class LocalMod:
    """An installed mod: its archive and the descriptor read from it."""

    archive: ModArchive
    descriptor: ModDescriptor

    @property
    def name(self) -> str:
        return self.descriptor.name


@dataclass
class BuildingMod(LocalMod):
    """A mod being built from its source folder.

    ``archive`` is the in-memory archive under construction and ``ref_mods``
    the installed mods it compiles against.
    """

    path: Path
    ref_mods: list[LocalMod] = field(default_factory=list)


@runtime_checkable
class ModRegistry(Protocol):
    """What the build pipeline needs from the installed-mod registry."""

    def find(self, name: str) -> Optional[LocalMod]:
        """Return the installed mod called *name*, or ``None`` when absent."""
        ...

    def find_all(self) -> list[LocalMod]:
        ...

    def archive_path(self, name: str) -> Path:
        """Where the archive of mod *name* is installed."""
        ...

    def unload(self, name: str) -> None:
        """Deactivate any previously active version of mod *name*."""
        ...

    def activate(self, name: str) -> None:
        """Mark the freshly built mod *name* as available for use."""
        ...


class DirectoryModRegistry:
    """Registry over a folder of ``.tmod`` archives.

    Args:
        mods_dir: Folder holding installed archives and ``enabled.json``.
        cache_dir: Root folder for the descriptor cache, or ``None`` to
            disable caching.
    """

    def __init__(self, mods_dir: str | Path, cache_dir: Optional[str | Path] = None) -> None:
        self.mods_dir = Path(mods_dir)
        self._cache: Optional[diskcache.Cache] = None
        if cache_dir is not None:
            self._cache = diskcache.Cache(str(Path(cache_dir) / "descriptors"))

    def archive_path(self, name: str) -> Path:
        return self.mods_dir / f"{name}{ARCHIVE_SUFFIX}"

    def find(self, name: str) -> Optional[LocalMod]:
        path = self.archive_path(name)
        if not path.is_file():
            return None
        return self._load(path)

    def find_all(self) -> list[LocalMod]:
        """Every readable archive in the mods folder, sorted by file name.

        Archives that cannot be read are logged and skipped.
        """
        if not self.mods_dir.is_dir():
            return []
        mods: list[LocalMod] = []
        for path in sorted(self.mods_dir.glob(f"*{ARCHIVE_SUFFIX}")):
            try:
                mods.append(self._load(path))
            except ModCompileError as exc:
                logger.warning("Skipping unreadable mod archive %s: %s", path.name, exc)
        return mods

    def _load(self, path: Path) -> LocalMod:
        archive = ModArchive.open(path)
        stat = path.stat()
        key = f"{path.resolve()}|{stat.st_size}|{stat.st_mtime_ns}"

        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                return LocalMod(archive, ModDescriptor.from_bytes(cached))

        descriptor = archive.descriptor()
        if self._cache is not None:
            self._cache.set(key, descriptor.to_bytes())
        return LocalMod(archive, descriptor)

    # ------------------------------------------------------------------ #
    # Activation
    # ------------------------------------------------------------------ #

    def enabled_mods(self) -> list[str]:
        """Names listed in ``enabled.json`` (empty when the file is absent).

        Raises:
            ConfigError: If the file exists but is not a JSON list of names.
        """
        path = self.mods_dir / ENABLED_FILE
        if not path.is_file():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Invalid enabled mods list at {path}: {exc}") from exc
        if not isinstance(data, list):
            raise ConfigError(f"Invalid enabled mods list at {path}: expected a list")
        return [str(name) for name in data]

    def _save_enabled(self, names: list[str]) -> None:
        _atomic_write(self.mods_dir / ENABLED_FILE, json.dumps(sorted(names), indent=2) + "\n")

    def unload(self, name: str) -> None:
        enabled = self.enabled_mods()
        if name in enabled:
            logger.info("Unloading previous version of %s", name)
            enabled.remove(name)
            self._save_enabled(enabled)

    def activate(self, name: str) -> None:
        enabled = self.enabled_mods()
        if name not in enabled:
            enabled.append(name)
            self._save_enabled(enabled)

    def close(self) -> None:
        """Close the descriptor cache and release resources."""
        if self._cache is not None:
            self._cache.close()
