"""Canonical Pydantic models shared across all modcompile modules.

This is the single source of truth for data shapes in the project. The models
fall into three groups:

**Mod models** -- what a mod *is*:
    :class:`ModReference` and :class:`ModDescriptor`. A descriptor is read once
    per build from ``build.txt`` (or from the ``Info`` entry of an installed
    archive) and never mutated afterwards; build-time additions produce a copy.

**Build models** -- what a build *produces*:
    :class:`Variant`, :class:`SymbolFormat`, :class:`Severity`,
    :class:`Diagnostic`, :class:`BuildArtifact` and :class:`BuildResult`.

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`HostConfig`, :class:`ToolsConfig`, :class:`CacheConfig`,
    :class:`ConvertersConfig`, :class:`GlobalConfig`, plus the per-invocation
    :class:`LaunchConfig`.
"""

from __future__ import annotations

import enum
import fnmatch
import json
import re
import sys
from pathlib import Path
from typing import Optional

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version
from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Build enums ---


class Variant(str, enum.Enum):
    """The two runtime backends every mod is compiled for.

    The value doubles as the preprocessor symbol passed to the compiler and
    as the middle segment of the packaged binary name (``Name.XNA.dll``).
    """

    XNA = "XNA"
    FNA = "FNA"

    @property
    def other(self) -> Variant:
        return Variant.FNA if self is Variant.XNA else Variant.XNA

    def dll_name(self, mod_name: str) -> str:
        """Return the packaged binary name for *mod_name* on this variant."""
        return f"{mod_name}.{self.value}.dll"


class SymbolFormat(str, enum.Enum):
    """Debug symbol formats the metadata rewriter can emit."""

    NATIVE_PDB = "native-pdb"
    PORTABLE_PDB = "portable-pdb"
    MDB = "mdb"


class Framework(str, enum.Enum):
    """Runtime flavour the host application runs on."""

    NET_FRAMEWORK = "netframework"
    MONO = "mono"


class Severity(str, enum.Enum):
    ERROR = "error"
    WARNING = "warning"


class Diagnostic(BaseModel):
    """A single compiler diagnostic.

    ``str(diagnostic)`` renders the familiar ``file(line,col): error CODE: msg``
    form used in build logs.
    """

    message: str
    severity: Severity = Severity.ERROR
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    code: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def __str__(self) -> str:
        location = ""
        if self.file:
            location = self.file
            if self.line is not None:
                location += f"({self.line},{self.column or 0})"
            location += ": "
        code = f" {self.code}" if self.code else ""
        return f"{location}{self.severity.value}{code}: {self.message}"


# --- Mod models ---


_NAME_VERSION_RE = re.compile(r"^(?P<name>[^@\s]+)(?:@(?P<version>\S+))?$")


class ModReference(BaseModel):
    """A dependency on another mod, optionally with a minimum version.

    Written in manifests as ``Name`` or ``Name@1.2``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: Optional[str] = Field(
        default=None, description="Minimum version of the referenced mod"
    )
    weak: bool = False

    @classmethod
    def parse(cls, text: str, weak: bool = False) -> ModReference:
        """Parse ``Name`` or ``Name@version``.

        Raises:
            ValueError: If *text* is empty or the version is not a valid
                PEP 440 version.
        """
        match = _NAME_VERSION_RE.match(text.strip())
        if match is None:
            raise ValueError(f"Invalid mod reference: {text!r}")
        version = match.group("version")
        if version is not None:
            Version(version)
        return cls(name=match.group("name"), version=version, weak=weak)

    def __str__(self) -> str:
        return self.name if self.version is None else f"{self.name}@{self.version}"


class ModDescriptor(BaseModel):
    """Build properties of one mod.

    Immutable once loaded. The orchestrator records the external debug-binary
    override path by producing a copy with ``model_copy(update=...)``.

    The descriptor is serialised into the archive's ``Info`` entry with
    :meth:`to_bytes` and read back with :meth:`from_bytes`.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str = "1.0"
    display_name: Optional[str] = None
    author: Optional[str] = None
    mod_references: tuple[ModReference, ...] = ()
    weak_references: tuple[ModReference, ...] = ()
    dll_references: tuple[str, ...] = ()
    host_version: str = Field(
        default="", description="PEP 440 specifier the host version must satisfy"
    )
    build_ignore: tuple[str, ...] = ()
    include_source: bool = False
    include_pdb: bool = True
    no_compile: bool = False
    eac_path: Optional[str] = Field(
        default=None,
        description="Symbol path of an externally built binary (set at build time)",
    )

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        try:
            Version(value)
        except InvalidVersion as exc:
            raise ValueError(f"Invalid version {value!r}") from exc
        return value

    @field_validator("host_version")
    @classmethod
    def _check_host_version(cls, value: str) -> str:
        try:
            SpecifierSet(value)
        except InvalidSpecifier as exc:
            raise ValueError(f"Invalid host version range {value!r}") from exc
        return value

    @property
    def parsed_version(self) -> Version:
        return Version(self.version)

    @property
    def references(self) -> tuple[ModReference, ...]:
        """Strong references followed by weak references."""
        return self.mod_references + self.weak_references

    def ref_names(self, include_weak: bool) -> list[str]:
        """Names of referenced mods, strong first, optionally including weak ones."""
        names = [ref.name for ref in self.mod_references]
        if include_weak:
            names.extend(ref.name for ref in self.weak_references)
        return names

    def is_weak(self, name: str) -> bool:
        return any(ref.name == name for ref in self.weak_references)

    def ignore_file(self, rel_path: str) -> bool:
        """Return True if *rel_path* matches one of the ``buildIgnore`` patterns.

        Patterns use ``*`` and ``?`` wildcards and are matched against the
        whole forward-slash relative path; ``*`` also crosses directory
        separators.
        """
        rel_path = rel_path.replace("\\", "/")
        return any(
            fnmatch.fnmatchcase(rel_path, pattern.replace("\\", "/"))
            for pattern in self.build_ignore
        )

    def to_bytes(self) -> bytes:
        data = self.model_dump(mode="json")
        return json.dumps(data, indent=2, sort_keys=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> ModDescriptor:
        return cls.model_validate_json(data)


# --- Build output models ---


class BuildArtifact(BaseModel):
    """Per-variant symbol reconciliation output.

    ``binary`` is set only when the packaged binary must be replaced by its
    debug-rewritten copy; ``debug_header`` is set only when it must not.
    """

    variant: Variant
    dll_name: str
    binary: Optional[bytes] = None
    symbols: Optional[bytes] = None
    secondary_symbols: Optional[bytes] = None
    debug_header: Optional[bytes] = None


class BuildResult(BaseModel):
    """Outcome of a successful mod build."""

    mod: str
    archive_path: Path
    diagnostics: dict[Variant, list[Diagnostic]] = Field(default_factory=dict)

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for diags in self.diagnostics.values() for d in diags if not d.is_error]


# --- Configuration models ---


def _default_native_variant() -> Variant:
    return Variant.XNA if sys.platform == "win32" else Variant.FNA


def _default_framework() -> Framework:
    return Framework.NET_FRAMEWORK if sys.platform == "win32" else Framework.MONO


class HostConfig(BaseModel):
    """Where the host application lives and what it expects from mods.

    Directory fields left as ``None`` are derived by
    :func:`~modcompile.config.resolve_paths`.
    """

    name: str = Field(default="Terraria", description="Reserved host name; no mod may use it")
    base_mod_type: str = Field(
        default="Terraria.ModLoader.Mod",
        description="Full name of the type every mod class must extend",
    )
    version: str = Field(default="0.11.8", description="Host application version")
    install_dir: Optional[Path] = None
    executable: str = Field(default="tModLoader.exe", description="Host binary file name")
    compile_dir: Optional[Path] = Field(
        default=None, description="Compile toolchain folder (default: <install_dir>/ModCompile)"
    )
    native_variant: Variant = Field(default_factory=_default_native_variant)
    framework: Framework = Field(default_factory=_default_framework)
    reference_assemblies: Optional[Path] = None
    save_dir: Optional[Path] = None
    mods_dir: Optional[Path] = None
    sources_dir: Optional[Path] = None
    references_dir: Optional[Path] = None


class ToolsConfig(BaseModel):
    """Command lines of the external compile and metadata tools.

    ``{compile_dir}`` in any argument is replaced with the resolved compile
    toolchain folder.
    """

    compiler_command: list[str] = Field(
        default_factory=lambda: ["dotnet", "{compile_dir}/RoslynWrapper.dll"]
    )
    inspector_command: list[str] = Field(
        default_factory=lambda: ["dotnet", "{compile_dir}/CecilTool.dll"]
    )


class CacheConfig(BaseModel):
    """Installed-mod metadata cache settings stored in :class:`GlobalConfig`."""

    enabled: bool = Field(default=True, description="Cache parsed archive descriptors")


class ConvertersConfig(BaseModel):
    """Explicit resource-converter allow/deny lists stored in :class:`GlobalConfig`."""

    enabled: list[str] = Field(default_factory=list)
    disabled: list[str] = Field(default_factory=list)


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/modcompile/config.json``.

    Loaded and saved by :func:`~modcompile.config.load_global_config` and
    :func:`~modcompile.config.save_global_config`. See
    :func:`~modcompile.config.resolve_config` for the precedence chain.
    """

    host: HostConfig = Field(default_factory=HostConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    converters: ConvertersConfig = Field(default_factory=ConvertersConfig)
    max_workers: Optional[int] = Field(
        default=None, description="Packaging worker count (default: CPU count)"
    )


class LaunchConfig(BaseModel):
    """Per-invocation build options given on the command line."""

    allow_unsafe: bool = False
    defines: list[str] = Field(default_factory=list)
    eac_path: Optional[Path] = Field(
        default=None, description="Externally built binary used instead of compiling"
    )

    @field_validator("defines", mode="before")
    @classmethod
    def _split_defines(cls, value: object) -> object:
        if isinstance(value, str):
            value = [value]
        if isinstance(value, (list, tuple)):
            return [sym for item in value for sym in re.split(r"[; ]", str(item)) if sym]
        return value
