"""Options for artifact resolution and metadata scanning."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from assembly_scanner.serde_msgspec import StructBaseStrict

DEFAULT_CONFIGURATION = "Debug"
DEFAULT_EXCLUDED_DIRS: tuple[str, ...] = ("bin", "obj")
DEFAULT_SOURCE_SUFFIXES: tuple[str, ...] = (".cs",)


class BuildStrategy(StrEnum):
    """When the resolver is allowed to invoke the build toolchain."""

    NEVER = "never"
    AUTO = "auto"
    ALWAYS = "always"


class ScanOptions(StructBaseStrict, frozen=True):
    """Inclusion and name-matching switches for type queries.

    All switches default to ``False``, the most restrictive behavior: only
    public, concrete, top-level reference types are considered and names are
    compared by their simple (unqualified) form.
    """

    match_full_name: bool = False
    include_abstract: bool = False
    include_non_public: bool = False
    include_structs: bool = False
    include_nested_types: bool = False


DEFAULT_SCAN_OPTIONS = ScanOptions()


@dataclass(frozen=True)
class ResolverOptions:
    """Options for resolving a project descriptor to its compiled artifact.

    ``paths_to_check`` scopes the staleness check to a subset of relative
    paths under the project directory; ``None`` or an empty sequence checks
    the whole project. ``check_for_edit`` additionally compares every source
    file timestamp, catching in-place edits that do not touch the parent
    directory's timestamp.
    """

    build_strategy: BuildStrategy = BuildStrategy.AUTO
    configuration: str = DEFAULT_CONFIGURATION
    paths_to_check: Sequence[str] | None = None
    check_for_edit: bool = False
    on_build_start: Callable[[], None] | None = None
    excluded_dirs: tuple[str, ...] = field(default=DEFAULT_EXCLUDED_DIRS)
    source_suffixes: tuple[str, ...] = field(default=DEFAULT_SOURCE_SUFFIXES)


__all__ = [
    "DEFAULT_CONFIGURATION",
    "DEFAULT_EXCLUDED_DIRS",
    "DEFAULT_SCAN_OPTIONS",
    "DEFAULT_SOURCE_SUFFIXES",
    "BuildStrategy",
    "ResolverOptions",
    "ScanOptions",
]
