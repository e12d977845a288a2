"""Shared test fixtures for modcompile.

Provides an isolated config environment, a fake host install with a
compile toolchain, fake compiler and metadata-tool bindings, helpers for
writing mod source folders, and a ready-to-use build pipeline. These
fixtures are discovered automatically by pytest.

The fake compiler writes a small JSON document as the "binary"; the fake
metadata tool reads that JSON back as :class:`AssemblyMetadata`. That keeps
the whole pipeline runnable without any external toolchain.
"""

from __future__ import annotations

import json
import sys
import threading
from pathlib import Path
from typing import Any, Optional

import pytest

from modcompile.config import HostPaths, resolve_paths
from modcompile.inspector import AssemblyMetadata, symbol_path
from modcompile.models import (
    Diagnostic,
    Framework,
    GlobalConfig,
    HostConfig,
    LaunchConfig,
    SymbolFormat,
    ToolsConfig,
    Variant,
)
from modcompile.output import OutputFormat, OutputManager, reset_output, set_output
from modcompile.references import ReferencesFolder, reset_references_folders
from modcompile.registry import DirectoryModRegistry
from modcompile.status import RecordingBuildStatus

BASE_MOD_TYPE = "Terraria.ModLoader.Mod"


# ---------------------------------------------------------------------------
# Auto-reset global state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _reset_references_folders() -> None:
    yield
    reset_references_folders()


# ---------------------------------------------------------------------------
# Fake binaries
# ---------------------------------------------------------------------------


def mod_types(name: str, namespace: Optional[str] = None, count: int = 1) -> list[dict[str, Any]]:
    """Top-level types of a well-formed mod binary."""
    namespace = name if namespace is None else namespace
    types = [
        {"full_name": f"{namespace}.{name}Mod{i or ''}", "namespace": namespace, "base_type": BASE_MOD_TYPE}
        for i in range(count)
    ]
    types.append({"full_name": f"{namespace}.Items.Sword", "namespace": f"{namespace}.Items", "base_type": "Terraria.ModLoader.ModItem"})
    return types


def fake_binary(name: str, types: Optional[list[dict[str, Any]]] = None, **extra: Any) -> bytes:
    """Bytes of a fake binary the fake metadata tool understands."""
    payload = {"name": name, "types": mod_types(name) if types is None else types, **extra}
    return json.dumps(payload, sort_keys=True).encode("utf-8")


class FakeCompiler:
    """Writes a fake binary named after the mod and returns canned diagnostics."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.diagnostics: list[Diagnostic] = []
        self.binary_name: Optional[str] = None
        self.types: Optional[list[dict[str, Any]]] = None

    def compile(
        self,
        name: str,
        output_path: Path,
        sources: list[Path],
        references: list[Path],
        symbols: list[str],
        *,
        include_debug: bool,
        allow_unsafe: bool,
    ) -> list[Diagnostic]:
        self.calls.append(
            {
                "name": name,
                "output_path": output_path,
                "sources": list(sources),
                "references": list(references),
                "symbols": list(symbols),
                "include_debug": include_debug,
                "allow_unsafe": allow_unsafe,
            }
        )
        if not any(d.is_error for d in self.diagnostics):
            output_path.write_bytes(
                fake_binary(self.binary_name or name, self.types, symbols=symbols)
            )
        return list(self.diagnostics)


class FakeInspector:
    """Metadata tool over fake binaries.

    ``rewrite`` bumps a ``rewritten`` counter inside the JSON so rewritten
    bytes differ from the compiler's output.
    """

    def __init__(self) -> None:
        self.embedded: dict[str, dict[str, bytes]] = {}
        self.rewrites: list[tuple[Path, Path, SymbolFormat]] = []
        self.rewrite_inputs: list[bytes] = []
        self.extractions: list[str] = []
        self._lock = threading.Lock()

    def read_metadata(self, path: Path, references: Any = None) -> AssemblyMetadata:
        return AssemblyMetadata.model_validate_json(path.read_bytes())

    def rewrite(self, source: Path, dest: Path, symbol_format: SymbolFormat, references: Any = None) -> None:
        data = source.read_bytes()
        self.rewrite_inputs.append(data)
        payload = json.loads(data)
        payload["rewritten"] = payload.get("rewritten", 0) + 1
        dest.write_bytes(json.dumps(payload, sort_keys=True).encode("utf-8"))
        symbol_path(dest, symbol_format).write_bytes(f"{symbol_format.value}:{dest.name}".encode())
        self.rewrites.append((source, dest, symbol_format))

    def read_debug_header(self, path: Path) -> bytes:
        return b"header:" + path.name.encode()

    def embedded_libraries(self, path: Path) -> list[str]:
        return list(self.embedded.get(path.name, {}))

    def read_embedded(self, path: Path, name: str) -> bytes:
        with self._lock:
            self.extractions.append(name)
        return self.embedded[path.name][name]


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME, XDG_CACHE_HOME, and XDG_DATA_HOME to
    subdirectories of tmp_path so that tests never touch real user
    config. Clears all MODCOMPILE_* environment variables and changes
    the working directory to tmp_path.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in [
        "MODCOMPILE_CONFIG",
        "MODCOMPILE_HOST_DIR",
        "MODCOMPILE_MODS_DIR",
        "MODCOMPILE_SOURCES_DIR",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Fake host install
# ---------------------------------------------------------------------------


@pytest.fixture
def host_config(isolated_config: Path) -> GlobalConfig:
    """A host install with a matching compile toolchain and reference assemblies.

    The native variant is XNA, the framework Mono (portable PDBs), and the
    external tool commands point at the running interpreter so they count
    as available.
    """
    root = isolated_config
    install = root / "host"
    compile_dir = install / "ModCompile"
    compile_dir.mkdir(parents=True)
    (install / "tModLoader.exe").write_bytes(b"native host")
    (install / "Microsoft.Xna.Framework.dll").write_bytes(b"xna")
    (compile_dir / "version").write_text("v0.11.8.2")
    (compile_dir / "tModLoader.FNA.exe").write_bytes(b"fna host")
    (compile_dir / "FNA.dll").write_bytes(b"fna")

    ref_asm = root / "refasm"
    (ref_asm / "Facades").mkdir(parents=True)
    (ref_asm / "mscorlib.dll").write_bytes(b"corlib")
    (ref_asm / "Facades" / "System.Runtime.dll").write_bytes(b"runtime")
    (ref_asm / "SomeThunk.dll").write_bytes(b"thunk")
    (ref_asm / "SomeWrapper.dll").write_bytes(b"wrapper")

    return GlobalConfig(
        host=HostConfig(
            install_dir=install,
            save_dir=root / "save",
            native_variant=Variant.XNA,
            framework=Framework.MONO,
            reference_assemblies=ref_asm,
        ),
        tools=ToolsConfig(compiler_command=[sys.executable], inspector_command=[sys.executable]),
    )


@pytest.fixture
def host_paths(host_config: GlobalConfig) -> HostPaths:
    return resolve_paths(host_config)


# ---------------------------------------------------------------------------
# Mod sources
# ---------------------------------------------------------------------------


def write_mod(
    parent: Path,
    name: str,
    build_txt: str = "",
    files: Optional[dict[str, bytes | str]] = None,
) -> Path:
    """Create a mod source folder with a manifest and a source file."""
    folder = parent / name
    folder.mkdir(parents=True, exist_ok=True)
    (folder / "build.txt").write_text(build_txt, encoding="utf-8")
    all_files: dict[str, bytes | str] = {f"{name}.cs": f"namespace {name} {{ class {name}Mod : Mod {{}} }}"}
    all_files.update(files or {})
    for rel, content in all_files.items():
        path = folder / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            path.write_text(content, encoding="utf-8")
        else:
            path.write_bytes(content)
    return folder


# ---------------------------------------------------------------------------
# Pipeline fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def status() -> RecordingBuildStatus:
    return RecordingBuildStatus()


@pytest.fixture
def compiler() -> FakeCompiler:
    return FakeCompiler()


@pytest.fixture
def inspector() -> FakeInspector:
    return FakeInspector()


@pytest.fixture
def registry(host_paths: HostPaths) -> DirectoryModRegistry:
    reg = DirectoryModRegistry(host_paths.mods_dir)
    yield reg
    reg.close()


@pytest.fixture
def make_pipeline(
    host_config: GlobalConfig,
    host_paths: HostPaths,
    status: RecordingBuildStatus,
    registry: DirectoryModRegistry,
    compiler: FakeCompiler,
    inspector: FakeInspector,
    quiet_output: OutputManager,
):
    """Factory for :class:`ModCompile` over the fake host and fake tools."""
    from modcompile.orchestrator import ModCompile

    def _make(launch: Optional[LaunchConfig] = None, **kwargs: Any) -> ModCompile:
        kwargs.setdefault("check_environment", False)
        return ModCompile(
            host_config,
            status,
            registry,
            compiler,
            inspector,
            launch=launch,
            paths=host_paths,
            references_folder=ReferencesFolder(host_paths.references_dir, host_paths.executable),
            **kwargs,
        )

    return _make


@pytest.fixture
def pipeline(make_pipeline):
    return make_pipeline()


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner with the built-in commands registered."""
    from typer.testing import CliRunner

    from modcompile.app import register_commands

    register_commands()
    return CliRunner()
