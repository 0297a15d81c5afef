"""Resolve .NET projects to fresh compiled artifacts and query their types metadata-only."""

from __future__ import annotations

import logging

from assembly_scanner.config_loader import ScannerConfig, load_scanner_config
from assembly_scanner.errors import (
    MetadataLoadError,
    ResolutionError,
    ScanError,
    ScanValidationError,
    StalenessCheckError,
)
from assembly_scanner.metadata import (
    MetadataScanner,
    RuntimeLocations,
    SearchLocationSet,
    TypeName,
    TypeRecord,
    collect_search_locations,
    default_runtime_locations,
)
from assembly_scanner.options import BuildStrategy, ResolverOptions, ScanOptions
from assembly_scanner.project import (
    BuildResult,
    DotnetBuilder,
    ResolutionResult,
    is_stale,
    locate_artifact,
    prepare_assembly,
    prepare_assembly_sync,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "BuildResult",
    "BuildStrategy",
    "DotnetBuilder",
    "MetadataLoadError",
    "MetadataScanner",
    "ResolutionError",
    "ResolutionResult",
    "ResolverOptions",
    "RuntimeLocations",
    "ScanError",
    "ScanOptions",
    "ScanValidationError",
    "ScannerConfig",
    "SearchLocationSet",
    "StalenessCheckError",
    "TypeName",
    "TypeRecord",
    "collect_search_locations",
    "default_runtime_locations",
    "is_stale",
    "load_scanner_config",
    "locate_artifact",
    "prepare_assembly",
    "prepare_assembly_sync",
]
