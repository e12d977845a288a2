"""modcompile -- Build and package mods for a moddable host application.

This package turns a mod source folder into a single distributable archive.
It resolves inter-mod dependencies, compiles the mod's sources for both
runtime backends (*variants*), verifies the resulting binaries, reconciles
debug symbols across the two variants, and packages everything together
with the mod's resources.

Typical workflow::

    modcompile check                       # is the toolchain ready?
    modcompile build "Mod Sources/ExampleMod"
    modcompile build-all                   # every folder under Mod Sources

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the entire package.
    config: XDG-aware configuration resolution.
    orchestrator: Per-mod and batch build sequencing.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
