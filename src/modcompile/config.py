"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for modcompile:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.modcompile/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_cache_dir`, :func:`get_data_dir`.
* **Global config** -- A single :class:`~modcompile.models.GlobalConfig`
  JSON file describing the host install, external tools, cache and
  resource converters.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables and the config file into the effective configuration.
* **Host paths** -- :func:`resolve_paths` derives every folder the build
  pipeline touches (mods, mod sources, shared references, compile toolchain,
  build lock) from the effective configuration.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from modcompile.exceptions import ConfigError
from modcompile.models import GlobalConfig

_APP_NAME = "modcompile"
_CONFIG_FILENAME = "config.json"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/modcompile/`` (default ``~/.config/modcompile/``).
    On macOS/Windows: ``~/.modcompile/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the cache directory, creating it if necessary.

    Holds the installed-mod descriptor cache. Cached data can be safely
    deleted at any time.

    On Linux/BSD: ``$XDG_CACHE_HOME/modcompile/`` (default ``~/.cache/modcompile/``).
    On macOS/Windows: ``~/.modcompile/cache/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    else:
        path = _fallback_base_dir() / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (mods, mod sources, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/modcompile/`` (default ``~/.local/share/modcompile/``).
    On macOS/Windows: ``~/.modcompile/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def global_config_path() -> Path:
    """Path to the global config file, honouring ``MODCOMPILE_CONFIG``."""
    override = os.environ.get("MODCOMPILE_CONFIG")
    if override:
        return Path(override).expanduser()
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration.

    Returns:
        The deserialised :class:`~modcompile.models.GlobalConfig`, or a
        default instance when no file exists.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    data = config.model_dump(mode="json")
    _atomic_write(global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def resolve_config(
    cli_host_dir: Optional[str] = None,
    cli_mods_dir: Optional[str] = None,
    cli_sources_dir: Optional[str] = None,
) -> GlobalConfig:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_host_dir``, ``cli_mods_dir``, ``cli_sources_dir``)
        2. Environment variables (``MODCOMPILE_HOST_DIR``,
           ``MODCOMPILE_MODS_DIR``, ``MODCOMPILE_SOURCES_DIR``)
        3. User config (``~/.config/modcompile/config.json``)
        4. Defaults
    """
    config = load_global_config()
    host = config.host

    overrides = {
        "install_dir": cli_host_dir or os.environ.get("MODCOMPILE_HOST_DIR"),
        "mods_dir": cli_mods_dir or os.environ.get("MODCOMPILE_MODS_DIR"),
        "sources_dir": cli_sources_dir or os.environ.get("MODCOMPILE_SOURCES_DIR"),
    }
    for field, value in overrides.items():
        if value:
            setattr(host, field, Path(value).expanduser())

    return config


# --- Host paths ---


@dataclass(frozen=True)
class HostPaths:
    """Every folder the build pipeline reads from or writes to."""

    install_dir: Path
    executable: Path
    compile_dir: Path
    save_dir: Path
    mods_dir: Path
    sources_dir: Path
    references_dir: Path

    @property
    def compile_version_file(self) -> Path:
        return self.compile_dir / "version"

    @property
    def lock_file(self) -> Path:
        return self.compile_dir / "buildlock"

    def variant_host_binary(self, variant_value: str) -> Path:
        """Host binary of a non-native variant, shipped with the compile toolchain."""
        return self.compile_dir / f"tModLoader.{variant_value}.exe"


def resolve_paths(config: GlobalConfig) -> HostPaths:
    """Derive :class:`HostPaths` from *config*, filling in defaults.

    The install directory defaults to the current working directory and the
    save directory to :func:`get_data_dir`.
    """
    host = config.host
    install_dir = (host.install_dir or Path.cwd()).expanduser()
    save_dir = (host.save_dir or get_data_dir()).expanduser()
    return HostPaths(
        install_dir=install_dir,
        executable=install_dir / host.executable,
        compile_dir=(host.compile_dir or install_dir / "ModCompile").expanduser(),
        save_dir=save_dir,
        mods_dir=(host.mods_dir or save_dir / "Mods").expanduser(),
        sources_dir=(host.sources_dir or save_dir / "Mod Sources").expanduser(),
        references_dir=(host.references_dir or save_dir / "references").expanduser(),
    )


def expand_command(command: list[str], paths: HostPaths) -> list[str]:
    """Substitute ``{compile_dir}`` placeholders in an external tool command line."""
    return [arg.replace("{compile_dir}", str(paths.compile_dir)) for arg in command]
