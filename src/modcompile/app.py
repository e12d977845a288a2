"""Typer application and CLI entry point for modcompile.

This module defines the top-level Typer application and its global options,
and registers the built-in commands (``build``, ``build-all``, ``check``,
``sources``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers, registers commands and
invokes the Typer app. Unhandled exceptions are written to a crash log under
the data directory.

See Also:
    :mod:`modcompile.config`: Configuration resolution.
    :mod:`modcompile.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer

from modcompile import __version__
from modcompile.exit_codes import EXIT_GENERIC_FAILURE, EXIT_INTERRUPTED


app = typer.Typer(
    name="modcompile",
    help="Build host-application mods from source into installable archives.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"modcompile {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    host_dir: Optional[str] = typer.Option(
        None, "--host-dir", help="Host application install folder."
    ),
    mods_dir: Optional[str] = typer.Option(
        None, "--mods-dir", help="Folder of installed mod archives."
    ),
    sources_dir: Optional[str] = typer.Option(
        None, "--sources-dir", help="Folder of mod source folders."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~modcompile.output.OutputManager` from
    CLI flags and stores the folder overrides in ``ctx.obj`` for
    :func:`~modcompile.config.resolve_config`.
    """
    from modcompile.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))

    ctx.ensure_object(dict)
    ctx.obj["host_dir"] = host_dir
    ctx.obj["mods_dir"] = mods_dir
    ctx.obj["sources_dir"] = sources_dir
    ctx.obj["verbose"] = verbose


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from modcompile.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def register_commands() -> None:
    """Attach the built-in commands to :data:`app` (idempotent)."""
    if getattr(app, "_modcompile_registered", False):
        return
    from modcompile.commands.build import build_all_command, build_command
    from modcompile.commands.env import check_command, sources_command

    app.command("build")(build_command)
    app.command("build-all")(build_all_command)
    app.command("check")(check_command)
    app.command("sources")(sources_command)
    app._modcompile_registered = True  # type: ignore[attr-defined]


def main() -> None:
    """CLI entry point invoked by the ``modcompile`` console script.

    Unhandled :class:`~modcompile.exceptions.ModCompileError` instances cause
    a clean exit with the error's ``exit_code``. All other exceptions produce
    a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        register_commands()
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as exc:
        from modcompile.exceptions import ModCompileError
        from modcompile.output import error

        if isinstance(exc, ModCompileError):
            error(str(exc))
            if exc.__cause__ is not None:
                error(str(exc.__cause__))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
