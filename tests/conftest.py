"""Shared fixtures for assembly-scanner tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from tests.test_helpers.project_files import (
    ARTIFACT_NS,
    age_tree,
    set_mtime,
    write_artifact,
    write_project,
)


@pytest.fixture
def built_project(tmp_path: Path) -> Callable[..., tuple[Path, Path]]:
    """Return a factory producing a project whose artifact is fresh.

    Every entry is aged to ``OLD_NS`` and the artifact is stamped
    ``ARTIFACT_NS`` so tests can bump single paths to ``NEW_NS``.
    """

    def _factory(sources: dict[str, str] | None = None) -> tuple[Path, Path]:
        project_dir = tmp_path / "App"
        descriptor = write_project(project_dir)
        for relative, content in (sources or {"Program.cs": "class Program {}"}).items():
            path = project_dir / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        artifact = write_artifact(descriptor)
        age_tree(project_dir)
        set_mtime(artifact, ARTIFACT_NS)
        return descriptor, artifact

    return _factory
