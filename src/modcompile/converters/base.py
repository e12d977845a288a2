"""Abstract base class for resource converters.

A converter turns a mod resource into the form the host loads at runtime
while the mod is packaged, for example a PNG image into raw pixel data.
Each converter claims a set of file extensions and may still decline a
particular file by returning ``None`` from :meth:`ContentConverter.convert`,
in which case the resource is packaged unchanged.

Converters are registered as entry points in the ``modcompile.converters``
group and discovered by :class:`~modcompile.converters.manager.ConverterManager`.

Example:
    Minimal converter::

        class UpperCaseText(ContentConverter):
            @property
            def name(self) -> str:
                return "upper-text"

            @property
            def extensions(self) -> tuple[str, ...]:
                return (".txt",)

            def convert(self, rel_path, data):
                return rel_path, data.upper()
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional


class ContentConverter(ABC):
    """Base class for all resource converters.

    Converters are called from several packaging threads at once, so
    :meth:`convert` must not mutate shared state.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique converter name used for discovery, filtering and logging."""
        ...

    @property
    @abstractmethod
    def extensions(self) -> tuple[str, ...]:
        """Lower-case file extensions (with the dot) this converter handles."""
        ...

    @property
    def version(self) -> str:
        return "0.1.0"

    @property
    def description(self) -> str:
        return ""

    @abstractmethod
    def convert(self, rel_path: str, data: bytes) -> Optional[tuple[str, bytes]]:
        """Convert one resource.

        Args:
            rel_path: Forward-slash path of the resource inside the mod.
            data: The resource's bytes.

        Returns:
            The archive path and bytes to package instead, or ``None`` to
            package the resource unchanged.
        """
        ...
