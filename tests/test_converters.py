"""Tests for modcompile.converters — rawimg conversion and converter discovery."""

from __future__ import annotations

import io
import struct
from typing import Optional
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from modcompile.converters import ContentConverter, ConverterManager, RawImageConverter
from modcompile.converters.rawimg import png_to_rawimg, read_rawimg
from modcompile.exceptions import ConfigError, PackagingIOError
from modcompile.models import ConvertersConfig


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def png_bytes(pixels: list[tuple[int, int, int, int]], size: tuple[int, int]) -> bytes:
    image = Image.new("RGBA", size)
    image.putdata(pixels)
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


class UpperText(ContentConverter):
    @property
    def name(self) -> str:
        return "upper-text"

    @property
    def extensions(self) -> tuple[str, ...]:
        return (".txt",)

    def convert(self, rel_path: str, data: bytes) -> Optional[tuple[str, bytes]]:
        return rel_path, data.upper()


class Exploding(UpperText):
    @property
    def name(self) -> str:
        return "exploding"

    def convert(self, rel_path: str, data: bytes) -> Optional[tuple[str, bytes]]:
        raise RuntimeError("decoder crashed")


def _entry_point(name: str, cls: type) -> MagicMock:
    ep = MagicMock()
    ep.name = name
    ep.load.return_value = cls
    return ep


# ---------------------------------------------------------------------------
# rawimg
# ---------------------------------------------------------------------------


class TestRawImage:
    def test_header_and_pixels(self) -> None:
        data = png_to_rawimg(png_bytes([(255, 0, 0, 255), (0, 255, 0, 128)], (2, 1)))

        assert struct.unpack_from("<iii", data) == (1, 2, 1)
        assert data[12:] == bytes([255, 0, 0, 255, 0, 255, 0, 128])

    def test_transparent_pixels_zeroed(self) -> None:
        data = png_to_rawimg(png_bytes([(12, 34, 56, 0), (1, 2, 3, 4)], (2, 1)))
        assert data[12:16] == bytes([0, 0, 0, 0])
        assert data[16:20] == bytes([1, 2, 3, 4])

    def test_palette_images_converted_to_rgba(self) -> None:
        image = Image.new("P", (3, 2))
        buf = io.BytesIO()
        image.save(buf, format="PNG")
        data = png_to_rawimg(buf.getvalue())
        assert len(data) == 12 + 3 * 2 * 4

    def test_read_back(self) -> None:
        pixels = [(10, 20, 30, 255), (0, 0, 0, 0), (5, 6, 7, 8), (9, 9, 9, 9)]
        image = read_rawimg(png_to_rawimg(png_bytes(pixels, (2, 2))))
        assert image.size == (2, 2)
        assert list(image.getdata()) == pixels

    def test_read_rejects_unknown_version(self) -> None:
        with pytest.raises(ValueError, match="Unsupported rawimg version"):
            read_rawimg(struct.pack("<iii", 2, 1, 1) + b"\x00" * 4)

    def test_converter_renames(self) -> None:
        result = RawImageConverter().convert("Items/Sword.png", png_bytes([(1, 1, 1, 1)], (1, 1)))
        assert result is not None
        assert result[0] == "Items/Sword.rawimg"

    def test_icon_left_alone(self) -> None:
        assert RawImageConverter().convert("icon.png", b"ignored") is None

    def test_nested_icon_converted(self) -> None:
        result = RawImageConverter().convert("UI/icon.png", png_bytes([(1, 1, 1, 1)], (1, 1)))
        assert result is not None
        assert result[0] == "UI/icon.rawimg"


# ---------------------------------------------------------------------------
# ConverterManager
# ---------------------------------------------------------------------------


class TestConverterManager:
    def test_builtin_registered(self) -> None:
        manager = ConverterManager()
        assert isinstance(manager.get(".PNG"), RawImageConverter)
        assert manager.list_converters()[0]["name"] == "rawimg"

    def test_without_builtins(self) -> None:
        assert ConverterManager(builtins=False).get(".png") is None

    def test_duplicate_name_rejected(self) -> None:
        manager = ConverterManager()
        with pytest.raises(ConfigError, match="already registered"):
            manager.register(RawImageConverter())

    def test_convert_dispatch(self) -> None:
        manager = ConverterManager(builtins=False)
        manager.register(UpperText())
        assert manager.convert("Lang/en.txt", b"hello") == ("Lang/en.txt", b"HELLO")
        assert manager.convert("Sounds/hit.wav", b"RIFF") is None

    def test_converter_failure_wrapped(self) -> None:
        manager = ConverterManager(builtins=False)
        manager.register(Exploding())
        with pytest.raises(PackagingIOError, match="Converter 'exploding' failed on a.txt"):
            manager.convert("a.txt", b"x")

    def test_corrupt_png_is_packaging_error(self) -> None:
        with pytest.raises(PackagingIOError):
            ConverterManager().convert("Items/Sword.png", b"not a png")


class TestDiscovery:
    def _discover(self, config: ConvertersConfig, *eps: MagicMock) -> tuple[ConverterManager, list[str]]:
        manager = ConverterManager(builtins=False)
        selected = MagicMock()
        selected.select.return_value = list(eps)
        with patch("modcompile.converters.manager.importlib.metadata.entry_points", return_value=selected):
            loaded = manager.discover(config)
        return manager, loaded

    def test_loads_entry_points(self) -> None:
        manager, loaded = self._discover(ConvertersConfig(), _entry_point("upper-text", UpperText))
        assert loaded == ["upper-text"]
        assert manager.get(".txt") is not None

    def test_disabled_list(self) -> None:
        _, loaded = self._discover(ConvertersConfig(disabled=["upper-text"]), _entry_point("upper-text", UpperText))
        assert loaded == []

    def test_enabled_list_is_exclusive(self) -> None:
        _, loaded = self._discover(
            ConvertersConfig(enabled=["exploding"]),
            _entry_point("upper-text", UpperText),
            _entry_point("exploding", Exploding),
        )
        assert loaded == ["exploding"]

    def test_broken_entry_point_skipped(self) -> None:
        broken = MagicMock()
        broken.name = "broken"
        broken.load.side_effect = ImportError("no module named broken_pkg")
        _, loaded = self._discover(ConvertersConfig(), broken, _entry_point("upper-text", UpperText))
        assert loaded == ["upper-text"]
