"""Project descriptor resolution, staleness detection and builds."""

from __future__ import annotations

from assembly_scanner.project.builder import BuildInvoker, BuildResult, DotnetBuilder
from assembly_scanner.project.descriptor import ProjectDescriptor, read_descriptor
from assembly_scanner.project.locator import artifact_path_for, locate_artifact
from assembly_scanner.project.resolver import (
    ResolutionResult,
    prepare_assembly,
    prepare_assembly_sync,
)
from assembly_scanner.project.staleness import is_stale

__all__ = [
    "BuildInvoker",
    "BuildResult",
    "DotnetBuilder",
    "ProjectDescriptor",
    "ResolutionResult",
    "artifact_path_for",
    "is_stale",
    "locate_artifact",
    "prepare_assembly",
    "prepare_assembly_sync",
    "read_descriptor",
]
