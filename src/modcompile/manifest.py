"""Read a mod's ``build.txt`` into a :class:`~modcompile.models.ModDescriptor`.

The manifest is a line-oriented ``key = value`` file::

    displayName = Example Mod
    version = 0.2
    modReferences = CoreLib@1.1, Helpers
    weakReferences = CrossoverMod
    dllReferences = Newtonsoft.Json
    buildIgnore = *.psd, Assets/raw/*
    includeSource = true

Blank lines and lines starting with ``#`` are skipped. List values are comma
separated. The mod's name is never read from the file: it is the name of the
folder holding it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from modcompile.exceptions import ManifestReadError
from modcompile.models import ModDescriptor, ModReference

logger = logging.getLogger(__name__)

BUILD_FILE = "build.txt"

_LIST_KEYS = {
    "dllReferences": "dll_references",
    "buildIgnore": "build_ignore",
}
_REFERENCE_KEYS = {
    "modReferences": ("mod_references", False),
    "weakReferences": ("weak_references", True),
}
_BOOL_KEYS = {
    "includeSource": "include_source",
    "includePDB": "include_pdb",
    "noCompile": "no_compile",
}
_TEXT_KEYS = {
    "displayName": "display_name",
    "author": "author",
    "version": "version",
    "hostVersion": "host_version",
}


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_bool(key: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ValueError(f"'{key}' must be true or false, got {value!r}")


def parse_build_file(text: str, mod_name: str) -> ModDescriptor:
    """Parse manifest *text* for the mod named *mod_name*.

    Raises:
        ValueError: On malformed lines, bad booleans, bad references or
            invalid versions.
    """
    fields: dict[str, Any] = {"name": mod_name}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            raise ValueError(f"line {lineno}: expected 'key = value', got {raw!r}")
        key = key.strip()
        value = value.strip()

        if key in _TEXT_KEYS:
            fields[_TEXT_KEYS[key]] = value
        elif key in _BOOL_KEYS:
            fields[_BOOL_KEYS[key]] = _parse_bool(key, value)
        elif key in _LIST_KEYS:
            fields[_LIST_KEYS[key]] = _split_list(value)
        elif key in _REFERENCE_KEYS:
            field, weak = _REFERENCE_KEYS[key]
            fields[field] = [ModReference.parse(item, weak=weak) for item in _split_list(value)]
        else:
            logger.debug("Ignoring unknown build property '%s' in %s", key, mod_name)

    return ModDescriptor.model_validate(fields)


def read_build_file(mod_folder: str | Path) -> ModDescriptor:
    """Read ``<mod_folder>/build.txt``.

    A missing manifest is treated as empty, so a bare folder of sources still
    builds with default properties.

    Raises:
        ManifestReadError: If the file cannot be read or parsed.
    """
    folder = Path(mod_folder)
    path = folder / BUILD_FILE
    try:
        text = path.read_text(encoding="utf-8-sig") if path.is_file() else ""
        return parse_build_file(text, folder.name)
    except (OSError, ValueError, ValidationError) as exc:
        raise ManifestReadError(f"Failed to load {path}: {exc}", mod=folder.name) from exc


def find_mod_sources(sources_dir: Path) -> list[Path]:
    """Return every non-hidden mod source folder directly under *sources_dir*, sorted by name."""
    sources_dir.mkdir(parents=True, exist_ok=True)
    return sorted(
        (p for p in sources_dir.iterdir() if p.is_dir() and not p.name.startswith(".")),
        key=lambda p: p.name,
    )
