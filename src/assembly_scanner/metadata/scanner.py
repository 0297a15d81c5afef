"""Metadata-only type index over one compiled module."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from types import TracebackType
from typing import Self

from assembly_scanner.errors import MetadataLoadError, ScanError
from assembly_scanner.metadata.loader import (
    DEFAULT_CORE_ASSEMBLY,
    LoadedModule,
    ModuleLoader,
    load_module,
)
from assembly_scanner.metadata.queries import (
    derives_from_any,
    find_all,
    find_first,
    implements_any,
)
from assembly_scanner.metadata.records import TypeRecord
from assembly_scanner.metadata.search_paths import RuntimeLocations, collect_search_locations
from assembly_scanner.options import DEFAULT_SCAN_OPTIONS, ScanOptions

logger = logging.getLogger(__name__)


class MetadataScanner:
    """Answer interface and inheritance queries over a module's types.

    Construction opens the module metadata-only and snapshots its types;
    queries are side-effect free and safe to run concurrently. The scanner
    owns the opened images until :meth:`close`.

    Parameters
    ----------
    artifact_path
        Compiled module to inspect.
    runtime
        Platform fallback locations used when the dependency manifest does
        not pin a shared framework.
    core_assembly
        Assembly anchoring fundamental types.
    loader
        Module loader; defaults to :func:`load_module`.
    options
        Scan options applied to queries that do not pass their own.

    Raises
    ------
    MetadataLoadError
        Raised when the module or its core assembly cannot be loaded.
    """

    def __init__(
        self,
        artifact_path: str | Path,
        *,
        runtime: RuntimeLocations | None = None,
        core_assembly: str = DEFAULT_CORE_ASSEMBLY,
        loader: ModuleLoader | None = None,
        options: ScanOptions | None = None,
    ) -> None:
        self.options = options if options is not None else DEFAULT_SCAN_OPTIONS
        self.artifact_path = Path(artifact_path).resolve()
        if not self.artifact_path.is_file():
            msg = f"Assembly not found: {self.artifact_path}"
            raise MetadataLoadError(msg)
        search_locations = collect_search_locations(self.artifact_path, runtime=runtime)
        load = loader or load_module
        self._module: LoadedModule | None = load(
            self.artifact_path,
            search_locations,
            core_assembly=core_assembly,
        )

    def __enter__(self) -> Self:
        """Return the scanner for use in a ``with`` block.

        Returns
        -------
        Self
            This scanner.
        """
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Close the scanner on context exit."""
        self.close()

    @property
    def closed(self) -> bool:
        """Return whether the scanner has been closed.

        Returns
        -------
        bool
            ``True`` after :meth:`close`.
        """
        return self._module is None

    @property
    def types(self) -> tuple[TypeRecord, ...]:
        """Return every enumerated type in module order.

        Returns
        -------
        tuple[TypeRecord, ...]
            Type snapshot.
        """
        return self._require_module().types

    def _require_module(self) -> LoadedModule:
        if self._module is None:
            msg = f"Scanner for {self.artifact_path} is closed"
            raise ScanError(msg)
        return self._module

    def _options_for(self, options: ScanOptions | None) -> ScanOptions:
        return options if options is not None else self.options

    def find_types_implementing(
        self,
        names: str | Sequence[str],
        options: ScanOptions | None = None,
    ) -> list[TypeRecord]:
        """Return included types implementing any of ``names``.

        Returns
        -------
        list[TypeRecord]
            Matching types in module order.
        """
        return find_all(self.types, names, implements_any, self._options_for(options))

    def find_types_derived_from(
        self,
        names: str | Sequence[str],
        options: ScanOptions | None = None,
    ) -> list[TypeRecord]:
        """Return included types deriving, directly or transitively, from any of ``names``.

        Returns
        -------
        list[TypeRecord]
            Matching types in module order.
        """
        return find_all(self.types, names, derives_from_any, self._options_for(options))

    def find_type_by_name_implementing(
        self,
        target: str,
        names: str | Sequence[str],
        options: ScanOptions | None = None,
        *,
        match_target_full_name: bool = False,
    ) -> TypeRecord | None:
        """Return the first type named ``target`` that implements any of ``names``.

        ``match_target_full_name`` selects the matching mode for ``target``
        independently of ``options.match_full_name``.

        Returns
        -------
        TypeRecord | None
            Matching type, or ``None``.
        """
        return find_first(
            self.types,
            target,
            names,
            implements_any,
            self._options_for(options),
            match_target_full_name=match_target_full_name,
        )

    def find_type_by_name_derived_from(
        self,
        target: str,
        names: str | Sequence[str],
        options: ScanOptions | None = None,
        *,
        match_target_full_name: bool = False,
    ) -> TypeRecord | None:
        """Return the first type named ``target`` deriving from any of ``names``.

        Returns
        -------
        TypeRecord | None
            Matching type, or ``None``.
        """
        return find_first(
            self.types,
            target,
            names,
            derives_from_any,
            self._options_for(options),
            match_target_full_name=match_target_full_name,
        )

    def close(self) -> None:
        """Release the loaded module; closing twice is a no-op."""
        module, self._module = self._module, None
        if module is not None:
            module.close()
            logger.debug("Closed scanner for %s", self.artifact_path)


__all__ = ["MetadataScanner"]
