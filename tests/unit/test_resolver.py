"""Tests for the resolution orchestrator using an in-process build double."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest

from assembly_scanner.errors import ResolutionError, ScanValidationError
from assembly_scanner.options import BuildStrategy, ResolverOptions
from assembly_scanner.project.builder import BuildResult
from assembly_scanner.project.resolver import (
    ResolutionResult,
    prepare_assembly,
    prepare_assembly_sync,
)
from tests.test_helpers.project_files import NEW_NS, set_mtime, write_project

ProjectFactory = Callable[..., tuple[Path, Path]]


class FakeBuilder:
    """Build double that optionally writes the artifact."""

    def __init__(
        self,
        artifact: Path | None,
        *,
        success: bool = True,
        errors: str = "",
    ) -> None:
        self.artifact = artifact
        self.success = success
        self.errors = errors
        self.calls: list[tuple[Path, str]] = []

    async def __call__(
        self,
        descriptor_path: Path,
        configuration: str,
        cancel_event: asyncio.Event | None = None,
    ) -> BuildResult:
        _ = cancel_event
        self.calls.append((descriptor_path, configuration))
        if self.success and self.artifact is not None:
            self.artifact.parent.mkdir(parents=True, exist_ok=True)
            self.artifact.write_bytes(b"MZ")
        return BuildResult(success=self.success, output="Build succeeded.", errors=self.errors)


class WaitingBuilder:
    """Build double that blocks until its cancel event is set."""

    def __init__(self) -> None:
        self.waiting = asyncio.Event()
        self.calls = 0

    async def __call__(
        self,
        descriptor_path: Path,
        configuration: str,
        cancel_event: asyncio.Event | None = None,
    ) -> BuildResult:
        _ = (descriptor_path, configuration)
        self.calls += 1
        if cancel_event is None:
            msg = "cancel_event was not forwarded"
            raise AssertionError(msg)
        self.waiting.set()
        await cancel_event.wait()
        raise asyncio.CancelledError


def _artifact_for(descriptor: Path, configuration: str = "Debug") -> Path:
    return descriptor.parent / "bin" / configuration / "net8.0" / f"{descriptor.stem}.dll"


def test_auto_builds_once_then_reuses(tmp_path: Path) -> None:
    """Build a missing artifact, then skip the build while it stays fresh."""
    descriptor = write_project(tmp_path / "App")
    builder = FakeBuilder(_artifact_for(descriptor))
    started: list[str] = []
    options = ResolverOptions(on_build_start=lambda: started.append("build"))

    first = asyncio.run(prepare_assembly(descriptor, options, builder=builder))
    assert first.built_automatically is True
    assert first.build_output == "Build succeeded."
    assert first.artifact_path == _artifact_for(descriptor)

    second = asyncio.run(prepare_assembly(descriptor, options, builder=builder))
    assert second.built_automatically is False
    assert second.build_output is None
    assert len(builder.calls) == 1
    assert started == ["build"]


def test_always_rebuilds_fresh_artifact(built_project: ProjectFactory) -> None:
    """Rebuild on every call with the always strategy."""
    descriptor, artifact = built_project()
    builder = FakeBuilder(artifact)
    options = ResolverOptions(build_strategy=BuildStrategy.ALWAYS)
    for _ in range(2):
        result = prepare_assembly_sync(descriptor, options, builder=builder)
        assert result.built_automatically is True
    assert len(builder.calls) == 2


def test_never_returns_fresh_artifact(built_project: ProjectFactory) -> None:
    """Return a fresh artifact without building under the never strategy."""
    descriptor, artifact = built_project()
    builder = FakeBuilder(artifact)
    result = prepare_assembly_sync(
        descriptor,
        ResolverOptions(build_strategy=BuildStrategy.NEVER),
        builder=builder,
    )
    assert result == ResolutionResult(artifact_path=artifact)
    assert builder.calls == []


def test_never_raises_when_stale(built_project: ProjectFactory) -> None:
    """Raise without building or notifying when stale under never."""
    descriptor, artifact = built_project()
    set_mtime(descriptor, NEW_NS)
    builder = FakeBuilder(artifact)
    started: list[str] = []
    options = ResolverOptions(
        build_strategy=BuildStrategy.NEVER,
        on_build_start=lambda: started.append("build"),
    )
    with pytest.raises(ResolutionError, match="building is disabled"):
        prepare_assembly_sync(descriptor, options, builder=builder)
    assert builder.calls == []
    assert started == []


def test_never_raises_when_missing(tmp_path: Path) -> None:
    """Raise when the artifact was never built under never."""
    descriptor = write_project(tmp_path / "App")
    with pytest.raises(ResolutionError, match="has not been built"):
        prepare_assembly_sync(
            descriptor,
            ResolverOptions(build_strategy=BuildStrategy.NEVER),
            builder=FakeBuilder(None),
        )


def test_build_failure_carries_errors(tmp_path: Path) -> None:
    """Surface the captured error stream on build failure."""
    descriptor = write_project(tmp_path / "App")
    builder = FakeBuilder(None, success=False, errors="CS1002: ; expected")
    with pytest.raises(ResolutionError, match="CS1002"):
        prepare_assembly_sync(descriptor, builder=builder)


def test_missing_artifact_after_build(tmp_path: Path) -> None:
    """Flag a descriptor/output mismatch when the build leaves no artifact."""
    descriptor = write_project(tmp_path / "App")
    with pytest.raises(ResolutionError, match="artifact not found at expected path"):
        prepare_assembly_sync(descriptor, builder=FakeBuilder(None))


def test_configuration_passed_to_builder(tmp_path: Path) -> None:
    """Pass the configured build configuration through to the invoker."""
    descriptor = write_project(tmp_path / "App")
    builder = FakeBuilder(_artifact_for(descriptor, "Release"))
    result = prepare_assembly_sync(
        descriptor,
        ResolverOptions(configuration="Release"),
        builder=builder,
    )
    assert builder.calls == [(descriptor, "Release")]
    assert result.artifact_path.parent.name == "net8.0"


def test_relative_descriptor_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Resolve relative descriptor paths against the working directory."""
    descriptor = write_project(tmp_path / "App")
    monkeypatch.chdir(tmp_path)
    builder = FakeBuilder(_artifact_for(descriptor))
    result = prepare_assembly_sync(Path("App") / "App.csproj", builder=builder)
    assert result.artifact_path == _artifact_for(descriptor)


@pytest.mark.parametrize("raw", ["", "   ", Path("")])
def test_blank_descriptor_path_rejected(raw: str | Path) -> None:
    """Reject blank paths before touching the filesystem."""
    with pytest.raises(ScanValidationError):
        prepare_assembly_sync(raw)


def test_missing_descriptor_rejected(tmp_path: Path) -> None:
    """Raise a resolution error for a nonexistent descriptor."""
    with pytest.raises(ResolutionError, match="Project file not found"):
        prepare_assembly_sync(tmp_path / "Nope.csproj")


def test_result_invariant_enforced(tmp_path: Path) -> None:
    """Require build output exactly when a build happened."""
    with pytest.raises(ValueError, match="build_output"):
        ResolutionResult(artifact_path=tmp_path / "a.dll", built_automatically=True)
    with pytest.raises(ValueError, match="build_output"):
        ResolutionResult(artifact_path=tmp_path / "a.dll", build_output="x")


def test_cancel_event_aborts_pending_build(tmp_path: Path) -> None:
    """Surface a cancelled build as CancelledError after one build start."""
    descriptor = write_project(tmp_path / "App")
    builder = WaitingBuilder()
    started: list[str] = []
    options = ResolverOptions(on_build_start=lambda: started.append("build"))

    async def _run() -> None:
        cancel_event = asyncio.Event()
        task = asyncio.create_task(
            prepare_assembly(descriptor, options, builder=builder, cancel_event=cancel_event)
        )
        await builder.waiting.wait()
        cancel_event.set()
        await task

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(_run())
    assert started == ["build"]
    assert builder.calls == 1
    assert not _artifact_for(descriptor).exists()


def test_sync_facade_forwards_cancel_event(tmp_path: Path) -> None:
    """Abort a synchronous resolution whose cancel event is already set."""
    descriptor = write_project(tmp_path / "App")
    builder = WaitingBuilder()
    cancel_event = asyncio.Event()
    cancel_event.set()
    with pytest.raises(asyncio.CancelledError):
        prepare_assembly_sync(descriptor, builder=builder, cancel_event=cancel_event)
    assert builder.calls == 1
