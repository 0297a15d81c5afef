"""Metadata-only type index: search locations, loading and queries."""

from __future__ import annotations

from assembly_scanner.metadata.deps_manifest import DepsManifest, read_deps_manifest
from assembly_scanner.metadata.loader import (
    DEFAULT_CORE_ASSEMBLY,
    LoadedModule,
    ModuleLoader,
    load_module,
)
from assembly_scanner.metadata.records import TypeName, TypeRecord
from assembly_scanner.metadata.scanner import MetadataScanner
from assembly_scanner.metadata.search_paths import (
    RuntimeLocations,
    SearchLocationSet,
    collect_search_locations,
    default_runtime_locations,
)

__all__ = [
    "DEFAULT_CORE_ASSEMBLY",
    "DepsManifest",
    "LoadedModule",
    "MetadataScanner",
    "ModuleLoader",
    "RuntimeLocations",
    "SearchLocationSet",
    "TypeName",
    "TypeRecord",
    "collect_search_locations",
    "default_runtime_locations",
    "load_module",
    "read_deps_manifest",
]
