"""Dependency manifest (``<assembly>.deps.json``) decoding."""

from __future__ import annotations

import logging
from pathlib import Path

import msgspec

from assembly_scanner.serde_msgspec import StructBaseCompat, loads_json, validation_error_payload
from assembly_scanner.utils.env_utils import env_path

logger = logging.getLogger(__name__)

MANIFEST_SUFFIX = ".deps.json"
PACKAGE_KIND = "package"
PROJECT_KIND = "project"

_FRAMEWORK_PREFIXES: tuple[tuple[str, str], ...] = (
    (".NETCoreApp,Version=v", "net"),
    (".NETStandard,Version=v", "netstandard"),
    (".NETFramework,Version=v", "net"),
)
_RUNTIME_LIBRARY_PREFIXES = ("Microsoft.NETCore.App/", "Microsoft.NETCore.App.Runtime.")


class RuntimeTarget(StructBaseCompat, frozen=True):
    """Runtime target declaration, e.g. ``.NETCoreApp,Version=v8.0``."""

    name: str | None = None


class TargetLibrary(StructBaseCompat, frozen=True):
    """Per-target library entry listing its runtime binaries."""

    runtime: dict[str, object] = msgspec.field(default_factory=dict)


class LibraryInfo(StructBaseCompat, frozen=True):
    """Library metadata: kind (package/project) and package-relative base path."""

    type: str | None = None
    path: str | None = None


class DepsManifest(StructBaseCompat, frozen=True, rename="camel"):
    """Decoded dependency manifest."""

    runtime_target: RuntimeTarget | None = None
    targets: dict[str, dict[str, TargetLibrary]] = msgspec.field(default_factory=dict)
    libraries: dict[str, LibraryInfo] = msgspec.field(default_factory=dict)

    @property
    def target_name(self) -> str | None:
        """Return the declared runtime-target identifier.

        Returns
        -------
        str | None
            Target identifier, or ``None`` when absent or blank.
        """
        if self.runtime_target is None or not self.runtime_target.name:
            return None
        return self.runtime_target.name

    @property
    def target_libraries(self) -> dict[str, TargetLibrary]:
        """Return the library entries of the declared runtime target.

        Returns
        -------
        dict[str, TargetLibrary]
            Libraries keyed by ``name/version``; empty when unresolved.
        """
        name = self.target_name
        if name is None:
            return {}
        return self.targets.get(name, {})

    @property
    def target_framework_moniker(self) -> str | None:
        """Return the moniker derived from the runtime target, e.g. ``net8.0``.

        Returns
        -------
        str | None
            Derived moniker, or ``None`` for unknown frameworks.
        """
        name = self.target_name
        if name is None:
            return None
        return target_framework_moniker(name)

    @property
    def runtime_version(self) -> str | None:
        """Return the shared runtime version pinned by the manifest, if any.

        Returns
        -------
        str | None
            Version such as ``8.0.4``, or ``None`` when not declared.
        """
        for library_name in self.target_libraries:
            if not library_name.startswith(_RUNTIME_LIBRARY_PREFIXES):
                continue
            _, sep, version = library_name.rpartition("/")
            if sep and version:
                return version
        return None


def target_framework_moniker(target_name: str) -> str | None:
    """Translate a runtime-target identifier to a platform moniker.

    Parameters
    ----------
    target_name
        Identifier such as ``.NETCoreApp,Version=v8.0/linux-x64``.

    Returns
    -------
    str | None
        ``net8.0``, ``netstandard2.0``, ``net472``; ``None`` when unknown.
    """
    framework = target_name.split("/", 1)[0]
    lowered = framework.lower()
    for prefix, moniker in _FRAMEWORK_PREFIXES:
        if not lowered.startswith(prefix.lower()):
            continue
        version = framework[len(prefix) :]
        if prefix.startswith(".NETFramework"):
            version = version.replace(".", "")
        return f"{moniker}{version}"
    return None


def manifest_path_for(artifact_path: Path) -> Path:
    """Return the companion manifest path beside an artifact.

    Returns
    -------
    Path
        ``<dir>/<stem>.deps.json``.
    """
    return artifact_path.with_name(f"{artifact_path.stem}{MANIFEST_SUFFIX}")


def read_deps_manifest(path: Path) -> DepsManifest | None:
    """Decode a manifest, returning ``None`` when missing or malformed.

    Malformed content is reported at warning level; callers fall back to a
    smaller search set.

    Returns
    -------
    DepsManifest | None
        Decoded manifest, or ``None``.
    """
    if not path.is_file():
        return None
    try:
        return loads_json(path.read_bytes(), target_type=DepsManifest)
    except OSError as exc:
        logger.warning("Unreadable dependency manifest %s: %s", path, exc)
    except msgspec.ValidationError as exc:
        logger.warning("Invalid dependency manifest %s: %s", path, validation_error_payload(exc))
    except msgspec.DecodeError as exc:
        logger.warning("Malformed dependency manifest %s: %s", path, exc)
    return None


def package_cache_root() -> Path:
    """Return the package cache root.

    ``NUGET_PACKAGES`` wins when it names an existing directory; otherwise the
    user-profile default ``~/.nuget/packages`` is used.

    Returns
    -------
    Path
        Package cache root directory.
    """
    override = env_path("NUGET_PACKAGES", must_exist=True)
    if override is not None:
        return override
    return Path.home() / ".nuget" / "packages"


def manifest_assembly_paths(
    manifest: DepsManifest,
    *,
    artifact_dir: Path,
    package_root: Path,
) -> list[Path]:
    """Translate manifest runtime entries into absolute binary paths.

    Package libraries resolve against ``package_root / <library path>``;
    project libraries resolve to ``artifact_dir / <file name>`` because
    project-reference outputs are copied beside the artifact at build time.

    Returns
    -------
    list[Path]
        Candidate paths in manifest order (existence is not checked).
    """
    paths: list[Path] = []
    for library_name, target_library in manifest.target_libraries.items():
        info = manifest.libraries.get(library_name)
        if info is None:
            continue
        for entry in target_library.runtime:
            relative = entry.replace("\\", "/")
            if info.type == PACKAGE_KIND and info.path:
                paths.append(package_root / info.path / relative)
            elif info.type == PROJECT_KIND:
                paths.append(artifact_dir / Path(relative).name)
    return paths


__all__ = [
    "DepsManifest",
    "LibraryInfo",
    "RuntimeTarget",
    "TargetLibrary",
    "manifest_assembly_paths",
    "manifest_path_for",
    "package_cache_root",
    "read_deps_manifest",
    "target_framework_moniker",
]
