"""Resource converters applied while packaging a mod.

* :class:`ContentConverter` -- abstract base class every converter extends.
* :class:`ConverterManager` -- registers the built-in converters, discovers
  third-party ones and dispatches resources by extension.
* :class:`RawImageConverter` -- built-in PNG to ``.rawimg`` converter.
"""

from modcompile.converters.base import ContentConverter
from modcompile.converters.manager import ConverterManager
from modcompile.converters.rawimg import RawImageConverter

__all__ = ["ContentConverter", "ConverterManager", "RawImageConverter"]
