"""Build orchestration: from a mod source folder to an installed archive.

:class:`ModCompile` runs one mod through every stage:

1. read the manifest (:meth:`ModCompile.read_build_info`),
2. find the installed mods it compiles against,
3. build the XNA variant, then the FNA variant. Each variant is
   compiled (or located, when precompiled or built externally), added to
   the archive, verified, and its debug symbols reconciled,
4. package resources,
5. unload the previous version, save the archive, activate the new one.

:meth:`ModCompile.build_all` builds every mod source folder in dependency
order. Batches are sequential: a mod always builds against the finished
archives of the mods before it. The first failure aborts the batch.

Any exception escaping a single mod's build is tagged with the mod's name
(its ``mod`` attribute) and re-raised unchanged.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from modcompile.archive import ModArchive
from modcompile.compiler import Compiler, CompilerDriver
from modcompile.config import HostPaths, resolve_paths
from modcompile.converters import ConverterManager
from modcompile.dependencies import find_referenced_mods, resolve_build_order
from modcompile.environment import developer_mode_ready
from modcompile.exceptions import BuildError, ManifestReadError, ModCompileError
from modcompile.exit_codes import EXIT_GENERIC_FAILURE, EXIT_SUCCESS
from modcompile.inspector import AssemblyInspector
from modcompile.locking import build_lock
from modcompile.manifest import find_mod_sources, read_build_file
from modcompile.models import (
    BuildResult,
    Diagnostic,
    GlobalConfig,
    LaunchConfig,
    Variant,
)
from modcompile.output import error, info, success, warning
from modcompile.packager import Packager
from modcompile.references import ReferenceResolver, ReferencesFolder, get_references_folder
from modcompile.registry import BuildingMod, ModRegistry
from modcompile.status import BuildStatus
from modcompile.symbols import SymbolReconciler
from modcompile.verifier import verify_mod_assembly

logger = logging.getLogger(__name__)

BUILD_VARIANTS = (Variant.XNA, Variant.FNA)


class ModCompile:
    """Builds mods from source.

    Args:
        config: Effective configuration.
        status: Build status sink.
        registry: Installed-mod registry.
        compiler: External compile capability.
        inspector: External binary metadata capability.
        launch: Per-invocation options.
        paths: Resolved host folders (default: derived from *config*).
        converters: Resource converters (default: built-ins only).
        references_folder: Shared references folder (default: the
            process-wide one for ``paths.references_dir``).
        check_environment: Run the environment check before compiling.
    """

    def __init__(
        self,
        config: GlobalConfig,
        status: BuildStatus,
        registry: ModRegistry,
        compiler: Compiler,
        inspector: AssemblyInspector,
        launch: Optional[LaunchConfig] = None,
        paths: Optional[HostPaths] = None,
        converters: Optional[ConverterManager] = None,
        references_folder: Optional[ReferencesFolder] = None,
        check_environment: bool = True,
    ) -> None:
        self.config = config
        self.status = status
        self.registry = registry
        self.inspector = inspector
        self.launch = launch or LaunchConfig()
        self.paths = paths or resolve_paths(config)

        ready = self._environment_ready if check_environment else None
        self.driver = CompilerDriver(compiler, status, self.launch, ready)
        self.resolver = ReferenceResolver(
            config,
            self.paths,
            inspector,
            references_folder or get_references_folder(self.paths),
            self.launch.eac_path,
        )
        self.reconciler = SymbolReconciler(inspector, config.host.framework)
        self.packager = Packager(
            status,
            converters if converters is not None else ConverterManager(),
            config.max_workers,
            self.launch.eac_path,
        )

    def _environment_ready(self) -> tuple[bool, str]:
        return developer_mode_ready(self.config, self.paths)

    # ------------------------------------------------------------------ #
    # Single mod
    # ------------------------------------------------------------------ #

    def read_build_info(self, mod_folder: str | Path) -> BuildingMod:
        """Read the manifest of *mod_folder* and prepare an empty archive.

        Raises:
            ManifestReadError: If the folder is missing or the manifest is
                invalid.
        """
        folder = Path(mod_folder)
        name = folder.name
        self.status.set_status(f"Reading properties: {name}")
        if not folder.is_dir():
            raise ManifestReadError(f"Mod source folder not found: {folder}", mod=name)

        descriptor = read_build_file(folder)
        archive = ModArchive(self.registry.archive_path(name))
        return BuildingMod(archive=archive, descriptor=descriptor, path=folder)

    def build(self, mod_folder: str | Path) -> BuildResult:
        return self.build_mod(self.read_build_info(mod_folder))

    def build_mod(self, mod: BuildingMod) -> BuildResult:
        """Build, package and install *mod*."""
        try:
            self.status.set_status(f"Building {mod.name}...")
            mod.ref_mods = find_referenced_mods(mod.descriptor, self.registry)

            diagnostics: dict[Variant, list[Diagnostic]] = {}
            for variant in BUILD_VARIANTS:
                diagnostics[variant] = self.build_variant(mod, variant)

            if self.launch.eac_path is not None:
                eac_symbols = Path(self.launch.eac_path).with_suffix(".pdb")
                mod.descriptor = mod.descriptor.model_copy(update={"eac_path": str(eac_symbols)})
                self.status.set_status(f"Using external debug symbols at {eac_symbols}")

            self.packager.package(mod)

            self.registry.unload(mod.name)
            mod.archive.save()
            self.registry.activate(mod.name)
        except Exception as exc:
            if getattr(exc, "mod", None) is None:
                exc.mod = mod.name  # type: ignore[attr-defined]
            raise

        return BuildResult(mod=mod.name, archive_path=mod.archive.path, diagnostics=diagnostics)

    def _binary_path(self, mod: BuildingMod, variant: Variant, temp_dir: Path) -> tuple[Path, bool]:
        """Where the variant's binary comes from, and whether it must be compiled."""
        dll_name = variant.dll_name(mod.name)
        if mod.descriptor.no_compile:
            return self.driver.locate_precompiled(mod, variant), False

        eac_path = self.launch.eac_path
        if eac_path is not None and variant == self.config.host.native_variant:
            eac_path = Path(eac_path)
            if not eac_path.is_file():
                raise BuildError(f"Error loading externally built binary: {eac_path} not found")
            self.status.set_status(f"Loading precompiled {dll_name} from {eac_path.name}")
            return eac_path, False

        return temp_dir / dll_name, True

    def build_variant(self, mod: BuildingMod, variant: Variant) -> list[Diagnostic]:
        """Produce, verify and add *mod*'s binary for *variant*.

        Returns:
            The compiler's warnings (empty when nothing was compiled).
        """
        self.status.set_progress(BUILD_VARIANTS.index(variant), len(BUILD_VARIANTS))
        temp_dir = Path(tempfile.mkdtemp(prefix=f"modcompile-{mod.name}-{variant.value}-"))
        try:
            dll_name = variant.dll_name(mod.name)
            dll_path, needs_compile = self._binary_path(mod, variant, temp_dir)

            diagnostics: list[Diagnostic] = []
            if needs_compile:
                self.resolver.update_references_folder()
            references = self.resolver.resolve(mod, variant, temp_dir, dll_path.parent)
            if needs_compile:
                diagnostics = self.driver.compile(mod, dll_path, references, variant)

            try:
                mod.archive.add_file(dll_name, dll_path.read_bytes())
            except OSError as exc:
                raise BuildError(f"Cannot read compiled binary {dll_path}: {exc}") from exc

            metadata = self.inspector.read_metadata(dll_path, references)
            verify_mod_assembly(mod.name, metadata, self.config.host)

            if mod.descriptor.include_pdb:
                artifact = self.reconciler.reconcile(dll_name, dll_path, temp_dir, variant, references)
                self.reconciler.apply(mod.archive, artifact)
            return diagnostics
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

    # ------------------------------------------------------------------ #
    # Batch
    # ------------------------------------------------------------------ #

    def build_all(self) -> list[BuildResult]:
        """Build every mod source folder in dependency order.

        Raises:
            DependencyError: If the batch is inconsistent; nothing is built.
        """
        mods = [self.read_build_info(folder) for folder in find_mod_sources(self.paths.sources_dir)]
        installed = self.registry.find_all()
        order = resolve_build_order(mods, installed, self.config.host.version)
        logger.info("Build order: %s", ", ".join(mod.name for mod in order))

        results: list[BuildResult] = []
        for num, mod in enumerate(order):
            self.status.set_progress(num, len(order))
            results.append(self.build_mod(mod))
        self.status.set_progress(len(order), len(order))
        return results


def report_result(result: BuildResult) -> None:
    """Print a build's warnings and the installed archive path."""
    for diagnostic in result.warnings:
        warning(str(diagnostic))
    success(f"Built {result.mod} -> {result.archive_path}")


def build_mod_command_line(mod_folder: str | Path, pipeline: ModCompile) -> int:
    """Build one mod for the command line and return the process exit code.

    Checks the environment first, then holds the cross-process build lock
    for the duration of the build. Build failures are printed to stderr and
    yield exit code 1.
    """
    ok, msg = developer_mode_ready(pipeline.config, pipeline.paths)
    if not ok:
        error(f"Developer Mode is not ready: {msg}")
        return EXIT_GENERIC_FAILURE

    try:
        with build_lock(pipeline.paths.lock_file, notify=info):
            result = pipeline.build(mod_folder)
    except ModCompileError as exc:
        error(str(exc))
        if exc.__cause__ is not None:
            error(str(exc.__cause__))
        return exc.exit_code

    report_result(result)
    return EXIT_SUCCESS
