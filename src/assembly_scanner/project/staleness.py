"""Timestamp-based staleness detection for compiled artifacts.

Two tiers of checks run against each scoped root:

- directory timestamps, walked recursively. Adding, deleting or renaming an
  entry updates the containing directory's mtime on conventional
  filesystems, so this catches structural changes without opening files;
- file timestamps (opt-in via ``check_for_edit``), which catch in-place edits
  that leave the parent directory's mtime untouched.

Filesystems that do not bump directory mtimes on entry removal will
under-detect deletions when ``check_for_edit`` is off.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator, Sequence
from pathlib import Path

from assembly_scanner.errors import StalenessCheckError
from assembly_scanner.options import DEFAULT_EXCLUDED_DIRS, DEFAULT_SOURCE_SUFFIXES

logger = logging.getLogger(__name__)


def _raise_walk_error(exc: OSError) -> None:
    raise exc


def _iter_scope_dirs(root: Path, excluded_dirs: Sequence[str]) -> Iterator[tuple[Path, list[str]]]:
    for current, dirs, files in os.walk(root, onerror=_raise_walk_error):
        dirs[:] = [name for name in dirs if name not in excluded_dirs]
        yield Path(current), files


def _mtime_ns(path: Path) -> int:
    return path.stat().st_mtime_ns


def _has_modified_directories(root: Path, artifact_ns: int, excluded_dirs: Sequence[str]) -> bool:
    for directory, _files in _iter_scope_dirs(root, excluded_dirs):
        if _mtime_ns(directory) > artifact_ns:
            logger.debug("Directory %s is newer than the artifact", directory)
            return True
    return False


def _has_modified_files(
    root: Path,
    artifact_ns: int,
    *,
    excluded_dirs: Sequence[str],
    source_suffixes: Sequence[str],
) -> bool:
    for directory, files in _iter_scope_dirs(root, excluded_dirs):
        for filename in files:
            if not filename.endswith(tuple(source_suffixes)):
                continue
            path = directory / filename
            if _mtime_ns(path) > artifact_ns:
                logger.debug("Source file %s is newer than the artifact", path)
                return True
    return False


def _root_is_stale(
    root: Path,
    artifact_ns: int,
    *,
    check_for_edit: bool,
    excluded_dirs: Sequence[str],
    source_suffixes: Sequence[str],
) -> bool:
    if root.is_file():
        return _mtime_ns(root) > artifact_ns
    if not root.is_dir():
        return False
    if _has_modified_directories(root, artifact_ns, excluded_dirs):
        return True
    if not check_for_edit:
        return False
    return _has_modified_files(
        root,
        artifact_ns,
        excluded_dirs=excluded_dirs,
        source_suffixes=source_suffixes,
    )


def _scope_roots(
    project_dir: Path,
    paths_to_check: Sequence[str] | None,
    excluded_dirs: Sequence[str],
) -> list[Path]:
    if not paths_to_check:
        return [project_dir]
    roots: list[Path] = []
    for relative in paths_to_check:
        relative_path = Path(relative)
        if any(part in excluded_dirs for part in relative_path.parts):
            continue
        roots.append(project_dir / relative_path)
    return roots


def is_stale(
    descriptor_path: Path,
    artifact_path: Path,
    paths_to_check: Sequence[str] | None = None,
    check_for_edit: bool = False,
    *,
    excluded_dirs: Sequence[str] = DEFAULT_EXCLUDED_DIRS,
    source_suffixes: Sequence[str] = DEFAULT_SOURCE_SUFFIXES,
) -> bool:
    """Return whether the artifact no longer reflects its sources.

    Parameters
    ----------
    descriptor_path
        Path to the project descriptor.
    artifact_path
        Path to the compiled artifact.
    paths_to_check
        Relative paths (files or directories) under the project directory that
        scope the source check. ``None`` or empty checks the whole project.
        Scoped paths that do not exist are skipped.
    check_for_edit
        Also compare every source file timestamp under each scoped directory.
    excluded_dirs
        Build-intermediate directory names pruned at any depth.
    source_suffixes
        File suffixes treated as source files by the edit check.

    Returns
    -------
    bool
        ``True`` when the artifact is missing or older than any checked input.

    Raises
    ------
    StalenessCheckError
        Raised when the filesystem walk fails.
    """
    if not artifact_path.is_file():
        return True
    project_dir = descriptor_path.parent
    try:
        artifact_ns = _mtime_ns(artifact_path)
        if _mtime_ns(descriptor_path) > artifact_ns:
            logger.debug("Project file %s is newer than the artifact", descriptor_path)
            return True
        for root in _scope_roots(project_dir, paths_to_check, excluded_dirs):
            if _root_is_stale(
                root,
                artifact_ns,
                check_for_edit=check_for_edit,
                excluded_dirs=excluded_dirs,
                source_suffixes=source_suffixes,
            ):
                return True
    except OSError as exc:
        msg = f"Failed to check for stale files in {project_dir}"
        raise StalenessCheckError(msg) from exc
    return False


__all__ = ["is_stale"]
