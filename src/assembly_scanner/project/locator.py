"""Artifact path resolution from a parsed project descriptor."""

from __future__ import annotations

import os
from pathlib import Path

from assembly_scanner.project.descriptor import ProjectDescriptor, read_descriptor

ARTIFACT_SUFFIX = ".dll"
DEFAULT_BASE_OUTPUT = "bin"


def _normalize_path(project_dir: Path, raw: str) -> Path:
    # Descriptors written on Windows use backslash separators.
    candidate = Path(raw.strip().replace("\\", "/"))
    if not candidate.is_absolute():
        candidate = project_dir / candidate
    return Path(os.path.normpath(os.path.abspath(candidate)))


def resolve_output_dir(descriptor: ProjectDescriptor, configuration: str) -> Path:
    """Return the absolute output directory for a configuration.

    An explicit output path override is used verbatim (configuration and
    moniker are ignored); otherwise the base output directory is combined
    with the configuration name and platform moniker.

    Parameters
    ----------
    descriptor
        Parsed project descriptor.
    configuration
        Build configuration name, for example ``Debug``.

    Returns
    -------
    Path
        Absolute output directory.
    """
    project_dir = descriptor.project_dir
    if descriptor.output_path_override:
        return _normalize_path(project_dir, descriptor.output_path_override)
    base_output = descriptor.base_output_override or DEFAULT_BASE_OUTPUT
    combined = os.path.join(base_output, configuration, descriptor.platform_moniker)
    return _normalize_path(project_dir, combined)


def artifact_path_for(descriptor: ProjectDescriptor, configuration: str) -> Path:
    """Return the expected artifact path for a descriptor and configuration.

    Returns
    -------
    Path
        Absolute path of the compiled artifact.
    """
    output_dir = resolve_output_dir(descriptor, configuration)
    return output_dir / f"{descriptor.assembly_name}{ARTIFACT_SUFFIX}"


def locate_artifact(descriptor_path: Path, configuration: str) -> Path:
    """Read a descriptor and return its expected artifact path.

    Returns
    -------
    Path
        Absolute path of the compiled artifact.
    """
    return artifact_path_for(read_descriptor(descriptor_path), configuration)


__all__ = ["ARTIFACT_SUFFIX", "artifact_path_for", "locate_artifact", "resolve_output_dir"]
