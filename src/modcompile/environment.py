"""Developer environment readiness checks.

Building mods needs three things besides the mod sources: the external
compile toolchain in a version matching the host, the external tools on the
command line, and a set of framework reference assemblies to compile
against. :func:`developer_mode_ready` answers the single question the build
pipeline asks ("can we build, and if not, why?"); :func:`environment_report`
runs every check for the ``check`` command.
"""

from __future__ import annotations

import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Callable, Optional

from packaging.version import InvalidVersion, Version

from modcompile.config import HostPaths, expand_command, resolve_paths
from modcompile.models import GlobalConfig

logger = logging.getLogger(__name__)

BUNDLED_REFERENCE_ASSEMBLIES = "v4.5 Reference Assemblies"

Check = Callable[[GlobalConfig, HostPaths], tuple[bool, str]]


# --- Reference assemblies ---


def _platform_reference_assemblies() -> Optional[Path]:
    """Where the platform installs .NET 4.5 reference assemblies, if anywhere."""
    if sys.platform == "win32":
        program_files = os.environ.get("ProgramFiles(x86)", r"C:\Program Files (x86)")
        return (
            Path(program_files)
            / "Reference Assemblies"
            / "Microsoft"
            / "Framework"
            / ".NETFramework"
            / "v4.5"
        )
    if sys.platform == "darwin":
        return Path("/Library/Frameworks/Mono.framework/Versions/Current/lib/mono/4.5-api")
    if sys.platform.startswith("linux"):
        return Path("/usr/lib/mono/4.5-api")
    return None


def find_reference_assemblies(config: GlobalConfig, paths: HostPaths) -> Optional[Path]:
    """Locate the framework reference assemblies folder.

    Order: the configured override (used exclusively when set), the platform
    install location, then the copy bundled with the compile toolchain. The
    bundled folder only counts once it holds a finished (non-``.tmp``) file,
    since an interrupted download leaves temp files behind.
    """
    override = config.host.reference_assemblies
    if override is not None:
        override = override.expanduser()
        return override if override.is_dir() else None

    platform_dir = _platform_reference_assemblies()
    if platform_dir is not None and platform_dir.is_dir():
        return platform_dir

    bundled = paths.compile_dir / BUNDLED_REFERENCE_ASSEMBLIES
    if bundled.is_dir() and any(
        f.is_file() and f.suffix != ".tmp" for f in bundled.iterdir()
    ):
        return bundled
    return None


# --- Individual checks ---


def read_compile_tool_version(paths: HostPaths) -> Optional[tuple[int, int, int, int]]:
    """Parse ``<compile_dir>/version`` (``v1.2.3``) into a 4-part tuple.

    Returns ``None`` when the file is missing or unreadable.
    """
    path = paths.compile_version_file
    if not path.is_file():
        return None
    try:
        text = path.read_text(encoding="utf-8").strip()
        parts = [int(p) for p in text.lstrip("vV").split(".")[:4]]
    except (OSError, ValueError) as exc:
        logger.error("Cannot read compile toolchain version from %s: %s", path, exc)
        return None
    parts += [0] * (4 - len(parts))
    return parts[0], parts[1], parts[2], parts[3]


def check_compile_tool_version(config: GlobalConfig, paths: HostPaths) -> tuple[bool, str]:
    """The toolchain must match the host on major, minor and build numbers."""
    try:
        release = Version(config.host.version).release
    except InvalidVersion:
        return False, f"Invalid host version {config.host.version!r} in configuration"
    host = (tuple(release) + (0, 0, 0, 0))[:4]

    version = read_compile_tool_version(paths)
    if version is None:
        return False, f"Compile toolchain missing: no version file in {paths.compile_dir}"
    if version > host:
        logger.warning(
            "Compile toolchain version is above host version: %s vs %s",
            ".".join(map(str, version)),
            config.host.version,
        )
    if version[:3] == host[:3]:
        return True, "Compile toolchain version matches the host"
    return False, (
        f"Compile toolchain version {'.'.join(map(str, version))} does not match "
        f"host version {config.host.version}; update the toolchain"
    )


def check_reference_assemblies(config: GlobalConfig, paths: HostPaths) -> tuple[bool, str]:
    found = find_reference_assemblies(config, paths)
    if found is not None:
        return True, f"Reference assemblies found at {found}"
    return False, (
        "Framework reference assemblies are missing; install them or extract them to "
        f"{paths.compile_dir / BUNDLED_REFERENCE_ASSEMBLIES}"
    )


def _tool_available(label: str, command: list[str]) -> tuple[bool, str]:
    if not command:
        return False, f"No {label} command configured"
    program = command[0]
    if shutil.which(program) is not None or Path(program).is_file():
        return True, f"{label.capitalize()} available: {program}"
    return False, f"{label.capitalize()} '{program}' not found on PATH"


def check_compiler(config: GlobalConfig, paths: HostPaths) -> tuple[bool, str]:
    return _tool_available("compiler", expand_command(config.tools.compiler_command, paths))


def check_inspector(config: GlobalConfig, paths: HostPaths) -> tuple[bool, str]:
    return _tool_available("metadata tool", expand_command(config.tools.inspector_command, paths))


_CHECKS: list[tuple[str, Check]] = [
    ("compiler", check_compiler),
    ("metadata tool", check_inspector),
    ("toolchain version", check_compile_tool_version),
    ("reference assemblies", check_reference_assemblies),
]


# --- Public API ---


def environment_report(
    config: GlobalConfig, paths: Optional[HostPaths] = None
) -> list[tuple[str, bool, str]]:
    """Run every check and return ``(name, ok, message)`` rows."""
    paths = paths or resolve_paths(config)
    return [(name, *check(config, paths)) for name, check in _CHECKS]


def developer_mode_ready(
    config: GlobalConfig, paths: Optional[HostPaths] = None
) -> tuple[bool, str]:
    """Return ``(True, message)`` when mods can be built, else the first failure."""
    paths = paths or resolve_paths(config)
    msg = ""
    for _name, check in _CHECKS:
        ok, msg = check(config, paths)
        if not ok:
            return False, msg
    return True, msg
