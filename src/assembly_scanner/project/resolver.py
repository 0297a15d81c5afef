"""Resolve a project descriptor to a fresh compiled artifact.

The resolver is not safe for concurrent calls against the same project:
parallel staleness checks and builds share output paths. Serialize calls per
project when running them concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from assembly_scanner.errors import ResolutionError, require_text
from assembly_scanner.obs.tracing import ScopeName, stage_span
from assembly_scanner.options import BuildStrategy, ResolverOptions
from assembly_scanner.project.builder import BuildInvoker, DotnetBuilder
from assembly_scanner.project.descriptor import read_descriptor
from assembly_scanner.project.locator import artifact_path_for
from assembly_scanner.project.staleness import is_stale
from assembly_scanner.serde_msgspec import StructBaseStrict

logger = logging.getLogger(__name__)


class ResolutionResult(StructBaseStrict, frozen=True):
    """Artifact path plus whether (and how) it was rebuilt."""

    artifact_path: Path
    built_automatically: bool = False
    build_output: str | None = None

    def __post_init__(self) -> None:
        """Keep ``build_output`` present exactly when a build happened.

        Raises
        ------
        ValueError
            Raised when ``build_output`` and ``built_automatically`` disagree.
        """
        if self.built_automatically != (self.build_output is not None):
            msg = "build_output must be set if and only if built_automatically is true"
            raise ValueError(msg)


def _descriptor_text(descriptor_path: str | Path | None) -> str | None:
    if isinstance(descriptor_path, Path):
        # Path("") normalizes to "."
        return str(descriptor_path) if descriptor_path.parts else None
    return descriptor_path


def _absolute_descriptor_path(descriptor_path: str | Path) -> Path:
    raw = require_text(_descriptor_text(descriptor_path), field="Project file path")
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = path.resolve()
    if not path.is_file():
        msg = f"Project file not found: {path}"
        raise ResolutionError(msg)
    return path


def _should_build(stale: bool, strategy: BuildStrategy) -> bool:
    if strategy is BuildStrategy.ALWAYS:
        return True
    return stale and strategy is BuildStrategy.AUTO


async def prepare_assembly(
    descriptor_path: str | Path,
    options: ResolverOptions | None = None,
    *,
    builder: BuildInvoker | None = None,
    cancel_event: asyncio.Event | None = None,
) -> ResolutionResult:
    """Resolve the artifact for a project, building it when the strategy allows.

    Parameters
    ----------
    descriptor_path
        Absolute or relative path to the project descriptor.
    options
        Resolution options; defaults build automatically when stale.
    builder
        Build invoker; defaults to :class:`DotnetBuilder`.
    cancel_event
        Optional event that aborts a pending build when set.

    Returns
    -------
    ResolutionResult
        Artifact path and build metadata.

    Raises
    ------
    ResolutionError
        Raised when the project cannot be located, parsed, or built, when the
        artifact is stale and building is disabled, or when a successful build
        leaves no artifact at the expected path.
    """
    options = options or ResolverOptions()
    path = _absolute_descriptor_path(descriptor_path)
    artifact_path = artifact_path_for(read_descriptor(path), options.configuration)
    with stage_span(
        "resolution.staleness",
        stage="staleness",
        scope_name=ScopeName.RESOLUTION,
        attributes={"project": path, "artifact": artifact_path},
    ):
        stale = is_stale(
            path,
            artifact_path,
            options.paths_to_check,
            options.check_for_edit,
            excluded_dirs=options.excluded_dirs,
            source_suffixes=options.source_suffixes,
        )
    if stale and options.build_strategy is BuildStrategy.NEVER:
        msg = (
            f"Project {path} has not been built (or is stale) and building is disabled. "
            "Build the project first or use the 'auto' build strategy."
        )
        raise ResolutionError(msg)
    if not _should_build(stale, options.build_strategy):
        return ResolutionResult(artifact_path=artifact_path)

    if options.on_build_start is not None:
        options.on_build_start()
    logger.info("Building %s (%s)", path, options.configuration)
    invoker = builder or DotnetBuilder()
    result = await invoker(path, options.configuration, cancel_event)
    if not result.success:
        msg = f"Failed to build project {path}. Errors: {result.errors or result.output}"
        raise ResolutionError(msg)
    if not artifact_path.is_file():
        msg = (
            f"Build succeeded but artifact not found at expected path: {artifact_path}. "
            "Project may have custom OutputPath or AssemblyName."
        )
        raise ResolutionError(msg)
    return ResolutionResult(
        artifact_path=artifact_path,
        built_automatically=True,
        build_output=result.output,
    )


def prepare_assembly_sync(
    descriptor_path: str | Path,
    options: ResolverOptions | None = None,
    *,
    builder: BuildInvoker | None = None,
    cancel_event: asyncio.Event | None = None,
) -> ResolutionResult:
    """Run :func:`prepare_assembly` to completion on a fresh event loop.

    A ``cancel_event`` set before the call, or set from a callback running on
    that loop, aborts the build with :class:`asyncio.CancelledError`.

    Returns
    -------
    ResolutionResult
        Artifact path and build metadata.
    """
    return asyncio.run(
        prepare_assembly(descriptor_path, options, builder=builder, cancel_event=cancel_event)
    )


__all__ = ["ResolutionResult", "prepare_assembly", "prepare_assembly_sync"]
