"""Build commands -- ``modcompile build`` and ``modcompile build-all``.

Both commands assemble the production pipeline: the effective configuration
from :func:`~modcompile.config.resolve_config`, a
:class:`~modcompile.registry.DirectoryModRegistry` over the mods folder,
the external compiler and metadata tool from the configured command lines,
and every enabled resource converter.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from modcompile.compiler import SubprocessCompiler
from modcompile.config import expand_command, get_cache_dir, resolve_config, resolve_paths
from modcompile.converters import ConverterManager
from modcompile.environment import developer_mode_ready
from modcompile.exceptions import ModCompileError
from modcompile.exit_codes import EXIT_GENERIC_FAILURE
from modcompile.inspector import SubprocessInspector
from modcompile.locking import build_lock
from modcompile.models import LaunchConfig
from modcompile.orchestrator import ModCompile, build_mod_command_line, report_result
from modcompile.output import debug, error, info, success
from modcompile.registry import DirectoryModRegistry
from modcompile.status import ConsoleBuildStatus


def create_pipeline(
    ctx: typer.Context, launch: LaunchConfig
) -> tuple[ModCompile, DirectoryModRegistry]:
    """Build a :class:`ModCompile` from the global CLI options in *ctx*.

    The caller owns the returned registry and must close it.
    """
    obj = ctx.obj or {}
    config = resolve_config(obj.get("host_dir"), obj.get("mods_dir"), obj.get("sources_dir"))
    paths = resolve_paths(config)

    cache_dir = get_cache_dir() if config.cache.enabled else None
    registry = DirectoryModRegistry(paths.mods_dir, cache_dir)

    converters = ConverterManager()
    loaded = converters.discover(config.converters)
    if loaded:
        debug(f"Loaded converters: {', '.join(loaded)}")

    pipeline = ModCompile(
        config,
        ConsoleBuildStatus(),
        registry,
        SubprocessCompiler(expand_command(config.tools.compiler_command, paths)),
        SubprocessInspector(expand_command(config.tools.inspector_command, paths)),
        launch=launch,
        paths=paths,
        converters=converters,
    )
    return pipeline, registry


def build_command(
    ctx: typer.Context,
    path: Path = typer.Argument(help="Mod source folder to build."),
    unsafe: bool = typer.Option(False, "--unsafe", help="Allow unsafe code."),
    define: Optional[list[str]] = typer.Option(
        None, "--define", "-D", help="Extra preprocessor symbols (repeatable, ';' separated)."
    ),
    eac: Optional[Path] = typer.Option(
        None, "--eac", help="Externally built binary to package instead of compiling."
    ),
) -> None:
    """Build a single mod and install its archive.

    Exits with code 0 on success and 1 on any failure.

    Example::

        modcompile build "Mod Sources/ExampleMod"
        modcompile build ExampleMod --define DEBUG --unsafe
    """
    launch = LaunchConfig(allow_unsafe=unsafe, defines=define or [], eac_path=eac)
    pipeline, registry = create_pipeline(ctx, launch)
    try:
        code = build_mod_command_line(path, pipeline)
    finally:
        registry.close()
    raise typer.Exit(code=code)


def build_all_command(
    ctx: typer.Context,
    unsafe: bool = typer.Option(False, "--unsafe", help="Allow unsafe code."),
    define: Optional[list[str]] = typer.Option(
        None, "--define", "-D", help="Extra preprocessor symbols (repeatable, ';' separated)."
    ),
) -> None:
    """Build every mod in the mod sources folder, in dependency order.

    Stops at the first failing mod.
    """
    launch = LaunchConfig(allow_unsafe=unsafe, defines=define or [])
    pipeline, registry = create_pipeline(ctx, launch)
    try:
        ok, msg = developer_mode_ready(pipeline.config, pipeline.paths)
        if not ok:
            error(f"Developer Mode is not ready: {msg}")
            raise typer.Exit(code=EXIT_GENERIC_FAILURE)

        with build_lock(pipeline.paths.lock_file, notify=info):
            results = pipeline.build_all()
    except ModCompileError as exc:
        prefix = f"Building {exc.mod} failed: " if exc.mod else ""
        error(f"{prefix}{exc}")
        raise typer.Exit(code=exc.exit_code) from None
    finally:
        registry.close()

    for result in results:
        report_result(result)
    success(f"Built {len(results)} mods")
