"""Converter manager -- discovery and dispatch of resource converters.

:class:`ConverterManager` always registers the built-in
:class:`~modcompile.converters.rawimg.RawImageConverter`, then discovers
additional converters registered as Python entry points in the
``modcompile.converters`` group::

    [project.entry-points."modcompile.converters"]
    my-converter = "my_package.convert:MyConverter"

The *enabled* and *disabled* lists of
:class:`~modcompile.models.ConvertersConfig` filter discovered entry points:
when *enabled* is non-empty only those are loaded, otherwise everything not
in *disabled* is.
"""

from __future__ import annotations

import importlib.metadata
import logging
from pathlib import PurePosixPath
from typing import Optional

from modcompile.converters.base import ContentConverter
from modcompile.converters.rawimg import RawImageConverter
from modcompile.exceptions import ConfigError, PackagingIOError
from modcompile.models import ConvertersConfig

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "modcompile.converters"


class ConverterManager:
    """Registry of converters keyed by file extension.

    Example::

        manager = ConverterManager()
        manager.discover(config.converters)
        converted = manager.convert("Items/Sword.png", png_bytes)
    """

    def __init__(self, builtins: bool = True) -> None:
        self._converters: dict[str, ContentConverter] = {}
        self._by_extension: dict[str, ContentConverter] = {}
        if builtins:
            self.register(RawImageConverter())

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover(self, config: ConvertersConfig) -> list[str]:
        """Load converters from entry points; return the names loaded.

        Converters that fail to load are logged and skipped.
        """
        loaded: list[str] = []
        enabled_set = set(config.enabled)
        disabled_set = set(config.disabled)

        for ep in importlib.metadata.entry_points().select(group=ENTRY_POINT_GROUP):
            name = ep.name
            if enabled_set and name not in enabled_set:
                logger.debug("Converter '%s' not in enabled list, skipping", name)
                continue
            if name in disabled_set:
                logger.debug("Converter '%s' is disabled, skipping", name)
                continue

            try:
                converter: ContentConverter = ep.load()()
                self.register(converter)
                loaded.append(name)
            except Exception as exc:
                logger.warning("Failed to load converter '%s': %s", name, exc)

        return loaded

    def register(self, converter: ContentConverter) -> None:
        """Register *converter*; later registrations win per extension.

        Raises:
            ConfigError: If a converter with the same name is registered.
        """
        if converter.name in self._converters:
            raise ConfigError(f"Converter '{converter.name}' is already registered")
        self._converters[converter.name] = converter
        for ext in converter.extensions:
            self._by_extension[ext.lower()] = converter
        logger.debug("Registered converter '%s' v%s", converter.name, converter.version)

    # ------------------------------------------------------------------
    # Querying
    # ------------------------------------------------------------------

    def get(self, extension: str) -> Optional[ContentConverter]:
        return self._by_extension.get(extension.lower())

    def list_converters(self) -> list[dict[str, str]]:
        return [
            {
                "name": c.name,
                "extensions": ", ".join(c.extensions),
                "description": c.description,
            }
            for c in self._converters.values()
        ]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def convert(self, rel_path: str, data: bytes) -> Optional[tuple[str, bytes]]:
        """Run the converter for *rel_path*'s extension, if any.

        Raises:
            PackagingIOError: If the converter fails.
        """
        converter = self.get(PurePosixPath(rel_path).suffix)
        if converter is None:
            return None
        try:
            return converter.convert(rel_path, data)
        except Exception as exc:
            raise PackagingIOError(
                f"Converter '{converter.name}' failed on {rel_path}: {exc}"
            ) from exc
