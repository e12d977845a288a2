"""Dependency resolution and build ordering.

Two questions are answered here:

1. *Batch level* -- given the mods being built and the mods already installed,
   which installed mods must join the set, is the combined set consistent,
   and in what order must the building mods be built? See
   :func:`resolve_build_order`.
2. *Mod level* -- which installed mods does one mod compile against? See
   :func:`find_referenced_mods`.

Strong references are required and always expanded. Weak references are
optional: an absent weak reference is never an error and imposes no
ordering, while a present one orders the dependent after it exactly like a
strong reference does. When completing the batch set, weak references are
followed only from the mods being built, never from installed mods pulled in
along the way.
"""

from __future__ import annotations

import heapq
import logging
from typing import Optional, Protocol, Sequence, TypeVar

from packaging.specifiers import SpecifierSet
from packaging.version import Version

from modcompile.exceptions import (
    BuildError,
    DependencyCycleError,
    MissingDependencyError,
    ModCompileError,
    VersionMismatchError,
)
from modcompile.models import ModDescriptor
from modcompile.registry import LocalMod, ModRegistry

logger = logging.getLogger(__name__)


class ModNode(Protocol):
    """Anything with a name and a descriptor: building or installed mods."""

    @property
    def name(self) -> str: ...

    @property
    def descriptor(self) -> ModDescriptor: ...


M = TypeVar("M", bound=ModNode)


# ------------------------------------------------------------------ #
# Batch level
# ------------------------------------------------------------------ #


def complete_build_set(building: Sequence[ModNode], installed: Sequence[LocalMod]) -> list[ModNode]:
    """Return *building* plus the installed mods needed to build it.

    Installed mods that share a name with a building mod are ignored; the
    building version wins.
    """
    building_names = {mod.name for mod in building}
    available = {mod.name: mod for mod in installed if mod.name not in building_names}
    required: dict[str, LocalMod] = {}

    def require(mod: ModNode, include_weak: bool) -> None:
        for dep in mod.descriptor.ref_names(include_weak):
            dep_mod = available.get(dep)
            if dep_mod is not None and dep not in required:
                required[dep] = dep_mod
                require(dep_mod, False)

    for mod in building:
        require(mod, True)

    return list(building) + list(required.values())


def ensure_dependencies_exist(mods: Sequence[ModNode]) -> None:
    """Raise :class:`MissingDependencyError` for the first absent strong reference."""
    names = {mod.name for mod in mods}
    for mod in mods:
        for dep in mod.descriptor.ref_names(include_weak=False):
            if dep not in names:
                raise MissingDependencyError(mod.name, dep)


def ensure_target_versions_met(mods: Sequence[ModNode], host_version: Optional[str] = None) -> None:
    """Check minimum reference versions and host version ranges.

    Raises:
        VersionMismatchError: If a present reference is older than the
            version a mod asks for, or *host_version* falls outside a mod's
            ``host_version`` range.
    """
    by_name = {mod.name: mod for mod in mods}
    for mod in mods:
        for ref in mod.descriptor.references:
            dep = by_name.get(ref.name)
            if ref.version is None or dep is None:
                continue
            if dep.descriptor.parsed_version < Version(ref.version):
                raise VersionMismatchError(
                    f"{mod.name} requires {ref.name} version {ref.version} or greater, "
                    f"but version {dep.descriptor.version} is present",
                    mod=mod.name,
                )

        targets = mod.descriptor.host_version
        if host_version and targets:
            if not SpecifierSet(targets).contains(Version(host_version), prereleases=True):
                raise VersionMismatchError(
                    f"{mod.name} targets host version {targets}, but the host is {host_version}",
                    mod=mod.name,
                )


def _find_cycle(remaining: dict[str, list[str]]) -> list[str]:
    """Return one cycle among *remaining* (name -> dependencies still unsorted)."""
    visited: set[str] = set()
    for start in sorted(remaining):
        if start in visited:
            continue
        stack: list[str] = []
        on_stack: set[str] = set()
        iterators = {}
        node = start
        stack.append(node)
        on_stack.add(node)
        iterators[node] = iter(sorted(remaining[node]))
        while stack:
            node = stack[-1]
            nxt = next(iterators[node], None)
            if nxt is None:
                stack.pop()
                on_stack.discard(node)
                visited.add(node)
                continue
            if nxt in on_stack:
                return stack[stack.index(nxt):] + [nxt]
            if nxt in visited or nxt not in remaining:
                continue
            stack.append(nxt)
            on_stack.add(nxt)
            iterators[nxt] = iter(sorted(remaining[nxt]))
    # Kahn's algorithm only leaves nodes behind when a cycle exists.
    raise AssertionError("no cycle found among unsorted mods")


def sort_mods(mods: Sequence[M]) -> list[M]:
    """Order *mods* so every mod follows everything it references that is present.

    Ties are broken by name, so the order is deterministic.

    Raises:
        DependencyCycleError: If no valid order exists.
    """
    by_name = {mod.name: mod for mod in mods}
    deps: dict[str, list[str]] = {
        name: [d for d in mod.descriptor.ref_names(include_weak=True) if d in by_name]
        for name, mod in by_name.items()
    }
    dependents: dict[str, list[str]] = {name: [] for name in by_name}
    indegree = {name: 0 for name in by_name}
    for name, names in deps.items():
        for dep in set(names):
            dependents[dep].append(name)
            indegree[name] += 1

    ready = [name for name, count in indegree.items() if count == 0]
    heapq.heapify(ready)
    order: list[M] = []
    while ready:
        name = heapq.heappop(ready)
        order.append(by_name[name])
        for dependent in dependents[name]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(order) < len(by_name):
        sorted_names = {mod.name for mod in order}
        remaining = {
            name: [d for d in names if d not in sorted_names]
            for name, names in deps.items()
            if name not in sorted_names
        }
        raise DependencyCycleError(_find_cycle(remaining))
    return order


def resolve_build_order(
    building: Sequence[M],
    installed: Sequence[LocalMod],
    host_version: Optional[str] = None,
) -> list[M]:
    """Complete, check and order the batch; return only the mods to build.

    Installed mods pulled into the set take part in validation and ordering
    but are never rebuilt.
    """
    mods = complete_build_set(building, installed)
    ensure_dependencies_exist(mods)
    ensure_target_versions_met(mods, host_version)
    building_names = {mod.name for mod in building}
    return [mod for mod in sort_mods(mods) if mod.name in building_names]  # type: ignore[misc]


# ------------------------------------------------------------------ #
# Mod level
# ------------------------------------------------------------------ #


def find_referenced_mods(descriptor: ModDescriptor, registry: ModRegistry) -> list[LocalMod]:
    """Return every installed mod *descriptor* compiles against, transitively.

    Raises:
        MissingDependencyError: If a strong reference is not installed.
        BuildError: If an installed reference cannot be read.
    """
    mods: dict[str, LocalMod] = {}

    def visit(desc: ModDescriptor, top_level: bool) -> None:
        for ref_name in desc.ref_names(include_weak=True):
            if ref_name in mods or ref_name == descriptor.name:
                continue
            try:
                mod = registry.find(ref_name)
            except ModCompileError as exc:
                raise BuildError(f"Error loading mod reference {ref_name}: {exc}") from exc
            if mod is None:
                if desc.is_weak(ref_name):
                    if top_level:
                        logger.info("Weak reference %s of %s is not installed", ref_name, desc.name)
                    continue
                raise MissingDependencyError(desc.name, ref_name)
            mods[ref_name] = mod
            visit(mod.descriptor, False)

    visit(descriptor, True)
    return list(mods.values())
