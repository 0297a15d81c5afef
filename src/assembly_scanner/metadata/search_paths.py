"""Search-location collection for metadata-only inspection.

The collector gathers every binary the metadata reader may need to resolve
cross-assembly references from three sources, in order:

1. platform assemblies (the shared framework matching the manifest's runtime
   target, else the configured runtime fallbacks),
2. binaries beside the artifact,
3. binaries declared by the dependency manifest (package cache or output
   directory).

Each source is a fallible strategy returning ``None`` on failure. Missing or
malformed auxiliary files never raise here; an incomplete set surfaces later
as a load failure.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from assembly_scanner.metadata.deps_manifest import (
    DepsManifest,
    manifest_assembly_paths,
    manifest_path_for,
    package_cache_root,
    read_deps_manifest,
)
from assembly_scanner.obs.tracing import ScopeName, stage_span
from assembly_scanner.serde_msgspec import StructBaseStrict
from assembly_scanner.utils.env_utils import env_path

logger = logging.getLogger(__name__)

BINARY_GLOB = "*.dll"
SHARED_FRAMEWORK = ("shared", "Microsoft.NETCore.App")
CORE_LIBRARY = "System.Private.CoreLib.dll"

_DEFAULT_DOTNET_ROOTS: tuple[str, ...] = (
    "/usr/share/dotnet",
    "/usr/lib/dotnet",
    "/usr/local/share/dotnet",
    "/opt/dotnet",
    "~/.dotnet",
    r"C:\Program Files\dotnet",
)

type LocationStrategy = Callable[[], list[Path] | None]


class RuntimeLocations(StructBaseStrict, frozen=True):
    """Fallback platform locations, passed explicitly to the collector.

    ``core_library_dir`` mirrors the directory of the hosting runtime's core
    library, ``runtime_dir`` the runtime's reported binary directory and
    ``base_dir`` the process base directory. ``dotnet_roots`` are install
    roots searched for a shared framework matching a manifest's runtime
    target.
    """

    core_library_dir: Path | None = None
    runtime_dir: Path | None = None
    base_dir: Path | None = None
    dotnet_roots: tuple[Path, ...] = ()


@dataclass(frozen=True)
class SearchLocationSet:
    """Immutable, case-insensitively deduplicated set of binary paths."""

    paths: tuple[Path, ...]

    @classmethod
    def from_paths(cls, paths: Iterable[Path]) -> SearchLocationSet:
        """Build a set keeping the first path for each case-folded spelling.

        Returns
        -------
        SearchLocationSet
            Deduplicated location set in first-seen order.
        """
        seen: dict[str, Path] = {}
        for path in paths:
            absolute = Path(os.path.abspath(path))
            seen.setdefault(str(absolute).casefold(), absolute)
        return cls(paths=tuple(seen.values()))

    def __iter__(self) -> Iterator[Path]:
        """Iterate over the paths in first-seen order.

        Returns
        -------
        Iterator[Path]
            Path iterator.
        """
        return iter(self.paths)

    def __len__(self) -> int:
        """Return the number of unique paths.

        Returns
        -------
        int
            Path count.
        """
        return len(self.paths)

    def __contains__(self, item: object) -> bool:
        """Return whether a path is present, ignoring case.

        Returns
        -------
        bool
            Membership result.
        """
        if not isinstance(item, (str, Path)):
            return False
        key = os.path.abspath(item).casefold()
        return any(str(path).casefold() == key for path in self.paths)

    def find_assembly(self, assembly_name: str) -> Path | None:
        """Return the first binary whose file stem matches an assembly name.

        Returns
        -------
        Path | None
            Matching binary path, or ``None``.
        """
        wanted = assembly_name.casefold()
        for path in self.paths:
            if path.stem.casefold() == wanted:
                return path
        return None


def _list_binaries(directory: Path | None) -> list[Path] | None:
    if directory is None or not directory.is_dir():
        return None
    try:
        return sorted(directory.glob(BINARY_GLOB))
    except OSError as exc:
        logger.debug("Could not list binaries in %s: %s", directory, exc)
        return None


def _version_key(name: str) -> tuple[int, ...]:
    parts: list[int] = []
    for piece in name.split("-", 1)[0].split("."):
        if not piece.isdigit():
            break
        parts.append(int(piece))
    return tuple(parts)


def _installed_framework_dirs(dotnet_roots: Sequence[Path]) -> list[Path]:
    found: list[Path] = []
    for root in dotnet_roots:
        shared = root.joinpath(*SHARED_FRAMEWORK)
        if not shared.is_dir():
            continue
        try:
            found.extend(child for child in shared.iterdir() if child.is_dir())
        except OSError as exc:
            logger.debug("Could not list shared frameworks in %s: %s", shared, exc)
    return sorted(found, key=lambda path: _version_key(path.name), reverse=True)


def _framework_dir_for(
    dotnet_roots: Sequence[Path],
    *,
    runtime_version: str | None,
    moniker: str | None,
) -> Path | None:
    installed = _installed_framework_dirs(dotnet_roots)
    if runtime_version:
        for directory in installed:
            if directory.name == runtime_version:
                return directory
    if moniker and moniker.startswith("net") and not moniker.startswith("netstandard"):
        wanted = _version_key(moniker[len("net") :])
        if len(wanted) >= 2:
            for directory in installed:
                if _version_key(directory.name)[:2] == wanted[:2]:
                    return directory
    return None


def _which_dotnet_root() -> Path | None:
    executable = shutil.which("dotnet")
    if executable is None:
        return None
    return Path(executable).resolve().parent


def default_runtime_locations() -> RuntimeLocations:
    """Resolve fallback platform locations from the environment.

    Install roots come from ``DOTNET_ROOT``, the ``dotnet`` executable on
    ``PATH`` and the standard install directories. The core-library directory
    is the newest installed shared framework; ``ASSEMBLY_SCANNER_RUNTIME_DIR``
    overrides the runtime directory; the base directory is the current
    working directory.

    Returns
    -------
    RuntimeLocations
        Locations resolved for the current process.
    """
    candidates: list[Path] = []
    env_root = env_path("DOTNET_ROOT")
    if env_root is not None:
        candidates.append(env_root)
    which_root = _which_dotnet_root()
    if which_root is not None:
        candidates.append(which_root)
    candidates.extend(Path(raw).expanduser() for raw in _DEFAULT_DOTNET_ROOTS)
    roots = tuple(dict.fromkeys(path for path in candidates if path.is_dir()))
    installed = _installed_framework_dirs(roots)
    core_dir = next((path for path in installed if (path / CORE_LIBRARY).is_file()), None)
    runtime_dir = env_path("ASSEMBLY_SCANNER_RUNTIME_DIR")
    return RuntimeLocations(
        core_library_dir=core_dir,
        runtime_dir=runtime_dir,
        base_dir=Path.cwd(),
        dotnet_roots=roots,
    )


def _platform_assemblies(
    manifest: DepsManifest | None,
    runtime: RuntimeLocations,
) -> list[Path]:
    if manifest is not None and manifest.target_name is not None:
        framework_dir = _framework_dir_for(
            runtime.dotnet_roots,
            runtime_version=manifest.runtime_version,
            moniker=manifest.target_framework_moniker,
        )
        targeted = _list_binaries(framework_dir)
        if targeted:
            logger.debug("Using target platform assemblies from %s", framework_dir)
            return targeted
    fallbacks: list[LocationStrategy] = [
        lambda: _list_binaries(runtime.core_library_dir),
        lambda: _list_binaries(runtime.runtime_dir),
        lambda: _list_binaries(runtime.base_dir),
    ]
    paths: list[Path] = []
    for strategy in fallbacks:
        found = strategy()
        if found:
            paths.extend(found)
    return paths


def _manifest_assemblies(manifest: DepsManifest | None, artifact_dir: Path) -> list[Path]:
    if manifest is None:
        return []
    candidates = manifest_assembly_paths(
        manifest,
        artifact_dir=artifact_dir,
        package_root=package_cache_root(),
    )
    return [path for path in candidates if path.is_file()]


def collect_search_locations(
    artifact_path: Path,
    *,
    runtime: RuntimeLocations | None = None,
) -> SearchLocationSet:
    """Collect the binaries needed to resolve an artifact's metadata.

    Parameters
    ----------
    artifact_path
        Path to the compiled artifact.
    runtime
        Platform fallback locations; defaults to
        :func:`default_runtime_locations`.

    Returns
    -------
    SearchLocationSet
        Deduplicated search locations.
    """
    runtime = runtime or default_runtime_locations()
    artifact_dir = artifact_path.parent
    with stage_span(
        "metadata.search_locations",
        stage="search_locations",
        scope_name=ScopeName.METADATA,
        attributes={"artifact": artifact_path},
    ) as span:
        manifest = read_deps_manifest(manifest_path_for(artifact_path))
        locations = SearchLocationSet.from_paths(
            [
                *_platform_assemblies(manifest, runtime),
                *(_list_binaries(artifact_dir) or []),
                *_manifest_assemblies(manifest, artifact_dir),
            ]
        )
        span.set_attribute("search_locations.count", len(locations))
    return locations


__all__ = [
    "RuntimeLocations",
    "SearchLocationSet",
    "collect_search_locations",
    "default_runtime_locations",
]
