"""Project descriptor (``.csproj``) reading."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path

from assembly_scanner.errors import ResolutionError
from assembly_scanner.serde_msgspec import StructBaseStrict

TARGET_FRAMEWORK = "TargetFramework"
TARGET_FRAMEWORKS = "TargetFrameworks"
ASSEMBLY_NAME = "AssemblyName"
OUTPUT_PATH = "OutputPath"
BASE_OUTPUT_PATH = "BaseOutputPath"


class ProjectDescriptor(StructBaseStrict, frozen=True):
    """Settings parsed from a project descriptor that locate its artifact."""

    path: Path
    platform_monikers: tuple[str, ...]
    assembly_name_override: str | None = None
    output_path_override: str | None = None
    base_output_override: str | None = None

    @property
    def platform_moniker(self) -> str:
        """Return the moniker used for output resolution (the first one).

        Returns
        -------
        str
            First declared target platform moniker.
        """
        return self.platform_monikers[0]

    @property
    def assembly_name(self) -> str:
        """Return the assembly name, defaulting to the descriptor file stem.

        Returns
        -------
        str
            Effective assembly name.
        """
        return self.assembly_name_override or self.path.stem

    @property
    def project_dir(self) -> Path:
        """Return the directory containing the descriptor.

        Returns
        -------
        Path
            Descriptor directory.
        """
        return self.path.parent


def _local_name(tag: object) -> str:
    if not isinstance(tag, str):
        return ""
    _, _, local = tag.rpartition("}")
    return local


def _property_value(root: ET.Element, element_name: str) -> str | None:
    for node in root.iter():
        if _local_name(node.tag) != element_name:
            continue
        value = "".join(node.itertext()).strip()
        return value or None
    return None


def _load_document(path: Path) -> ET.Element:
    try:
        return ET.parse(path).getroot()
    except (ET.ParseError, OSError) as exc:
        msg = f"Failed to parse project file: {path}"
        raise ResolutionError(msg) from exc


def _platform_monikers(root: ET.Element) -> tuple[str, ...]:
    single = _property_value(root, TARGET_FRAMEWORK)
    if single is not None:
        return (single,)
    multi = _property_value(root, TARGET_FRAMEWORKS)
    if multi is None:
        return ()
    return tuple(part.strip() for part in multi.split(";") if part.strip())


def read_descriptor(path: Path) -> ProjectDescriptor:
    """Parse a project descriptor into the settings needed to locate its artifact.

    Elements are matched by local name, so SDK-style projects and legacy
    projects carrying the MSBuild XML namespace read the same way. The first
    matching element in document order wins; blank elements count as absent.

    Parameters
    ----------
    path
        Absolute path to the project descriptor.

    Returns
    -------
    ProjectDescriptor
        Parsed descriptor settings.

    Raises
    ------
    ResolutionError
        Raised when the descriptor cannot be parsed or declares no target
        platform moniker.
    """
    root = _load_document(path)
    monikers = _platform_monikers(root)
    if not monikers:
        msg = (
            f"Could not determine target framework from {path}. "
            f"Ensure the project contains <{TARGET_FRAMEWORK}> or <{TARGET_FRAMEWORKS}> element."
        )
        raise ResolutionError(msg)
    return ProjectDescriptor(
        path=path,
        platform_monikers=monikers,
        assembly_name_override=_property_value(root, ASSEMBLY_NAME),
        output_path_override=_property_value(root, OUTPUT_PATH),
        base_output_override=_property_value(root, BASE_OUTPUT_PATH),
    )


__all__ = ["ProjectDescriptor", "read_descriptor"]
