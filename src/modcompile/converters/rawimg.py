"""PNG to raw image conversion.

The host loads ``.rawimg`` textures far faster than PNGs: the file is a
little-endian header of three 32-bit integers (format version ``1``, width,
height) followed by the pixels as RGBA bytes, row by row. Fully transparent
pixels are written as ``0, 0, 0, 0`` so the colour of invisible pixels
never bleeds into filtering.

The mod icon is left as PNG; it is shown by tools that read the archive
directly.
"""

from __future__ import annotations

import io
import struct
from pathlib import PurePosixPath
from typing import Optional

from PIL import Image

from modcompile.converters.base import ContentConverter

RAWIMG_VERSION = 1
ICON_FILE = "icon.png"


def png_to_rawimg(data: bytes) -> bytes:
    """Decode *data* with Pillow and return ``.rawimg`` bytes."""
    with Image.open(io.BytesIO(data)) as source:
        image = source.convert("RGBA")

    clear = image.getchannel("A").point(lambda a: 255 if a == 0 else 0)
    image.paste((0, 0, 0, 0), mask=clear)

    width, height = image.size
    return struct.pack("<iii", RAWIMG_VERSION, width, height) + image.tobytes()


def read_rawimg(data: bytes) -> Image.Image:
    """Decode ``.rawimg`` bytes back into an RGBA image."""
    version, width, height = struct.unpack_from("<iii", data)
    if version != RAWIMG_VERSION:
        raise ValueError(f"Unsupported rawimg version {version}")
    return Image.frombytes("RGBA", (width, height), data[12:])


class RawImageConverter(ContentConverter):
    """Packs ``.png`` resources as ``.rawimg``."""

    @property
    def name(self) -> str:
        return "rawimg"

    @property
    def extensions(self) -> tuple[str, ...]:
        return (".png",)

    @property
    def description(self) -> str:
        return "Convert PNG images to raw RGBA pixel data"

    def convert(self, rel_path: str, data: bytes) -> Optional[tuple[str, bytes]]:
        if rel_path == ICON_FILE:
            return None
        return str(PurePosixPath(rel_path).with_suffix(".rawimg")), png_to_rawimg(data)
