"""Environment commands -- ``modcompile check`` and ``modcompile sources``."""

from __future__ import annotations

import typer

from modcompile.config import resolve_config, resolve_paths
from modcompile.environment import environment_report
from modcompile.exceptions import ManifestReadError
from modcompile.exit_codes import EXIT_GENERIC_FAILURE
from modcompile.manifest import find_mod_sources, read_build_file
from modcompile.models import GlobalConfig
from modcompile.output import info, print_table, suggest


def _config(ctx: typer.Context) -> GlobalConfig:
    obj = ctx.obj or {}
    return resolve_config(obj.get("host_dir"), obj.get("mods_dir"), obj.get("sources_dir"))


def check_command(ctx: typer.Context) -> None:
    """Report whether mods can be built on this machine.

    Exits with code 1 when any check fails.
    """
    config = _config(ctx)
    paths = resolve_paths(config)
    report = environment_report(config, paths)

    print_table(
        ["Check", "Status", "Details"],
        [[name, "ok" if ok else "FAILED", msg] for name, ok, msg in report],
        title="Developer environment",
    )
    if not all(ok for _name, ok, _msg in report):
        suggest(f"Compile toolchain folder: {paths.compile_dir}")
        raise typer.Exit(code=EXIT_GENERIC_FAILURE)


def sources_command(ctx: typer.Context) -> None:
    """List the mod source folders and their versions."""
    config = _config(ctx)
    paths = resolve_paths(config)
    folders = find_mod_sources(paths.sources_dir)
    if not folders:
        info(f"No mod sources in {paths.sources_dir}")
        return

    rows = []
    for folder in folders:
        try:
            version = read_build_file(folder).version
        except ManifestReadError as exc:
            version = f"invalid build.txt ({exc.__cause__})"
        rows.append([folder.name, version, str(folder)])
    print_table(["Mod", "Version", "Path"], rows, title="Mod sources")
