"""Scanner configuration loading from TOML files and the environment.

Lookup order for file configuration: an explicit path, else
``assembly-scanner.toml`` found by walking up from the working directory,
else a ``[tool.assembly-scanner]`` table in the nearest ``pyproject.toml``.
Environment variables override file values.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import cast

import msgspec

from assembly_scanner.errors import ScanValidationError
from assembly_scanner.metadata.loader import DEFAULT_CORE_ASSEMBLY, ModuleLoader
from assembly_scanner.metadata.scanner import MetadataScanner
from assembly_scanner.metadata.search_paths import RuntimeLocations
from assembly_scanner.options import (
    DEFAULT_CONFIGURATION,
    DEFAULT_EXCLUDED_DIRS,
    DEFAULT_SOURCE_SUFFIXES,
    BuildStrategy,
    ResolverOptions,
    ScanOptions,
)
from assembly_scanner.serde_msgspec import (
    StructBaseStrict,
    convert,
    loads_toml,
    validation_error_payload,
)
from assembly_scanner.utils.env_utils import env_enum, env_value

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "assembly-scanner.toml"
PYPROJECT_FILENAME = "pyproject.toml"
TOOL_TABLE = "assembly-scanner"

ENV_CONFIGURATION = "ASSEMBLY_SCANNER_CONFIGURATION"
ENV_BUILD_STRATEGY = "ASSEMBLY_SCANNER_BUILD_STRATEGY"


class ScannerConfig(StructBaseStrict, frozen=True):
    """File-level defaults for resolution and scanning."""

    build_strategy: BuildStrategy = BuildStrategy.AUTO
    configuration: str = DEFAULT_CONFIGURATION
    paths_to_check: tuple[str, ...] | None = None
    check_for_edit: bool = False
    excluded_dirs: tuple[str, ...] = DEFAULT_EXCLUDED_DIRS
    source_suffixes: tuple[str, ...] = DEFAULT_SOURCE_SUFFIXES
    core_assembly: str = DEFAULT_CORE_ASSEMBLY
    scan: ScanOptions = msgspec.field(default_factory=ScanOptions)

    def resolver_options(
        self,
        on_build_start: Callable[[], None] | None = None,
    ) -> ResolverOptions:
        """Return resolver options derived from this configuration.

        Returns
        -------
        ResolverOptions
            Options for :func:`assembly_scanner.project.prepare_assembly`.
        """
        return ResolverOptions(
            build_strategy=self.build_strategy,
            configuration=self.configuration,
            paths_to_check=self.paths_to_check,
            check_for_edit=self.check_for_edit,
            on_build_start=on_build_start,
            excluded_dirs=self.excluded_dirs,
            source_suffixes=self.source_suffixes,
        )

    def open_scanner(
        self,
        artifact_path: str | Path,
        *,
        runtime: RuntimeLocations | None = None,
        loader: ModuleLoader | None = None,
    ) -> MetadataScanner:
        """Open a scanner using the configured core assembly and scan options.

        Returns
        -------
        MetadataScanner
            Scanner whose queries default to ``self.scan``.
        """
        return MetadataScanner(
            artifact_path,
            runtime=runtime,
            core_assembly=self.core_assembly,
            loader=loader,
            options=self.scan,
        )


def _find_in_parents(filename: str, start: Path | None = None) -> Path | None:
    path = (start or Path.cwd()).resolve()
    while True:
        candidate = path / filename
        if candidate.is_file():
            return candidate
        if path.parent == path:
            return None
        path = path.parent


def _read_toml(path: Path) -> dict[str, object]:
    try:
        payload = loads_toml(path.read_bytes(), target_type=object)
    except msgspec.DecodeError as exc:
        msg = f"Invalid TOML in {path}: {exc}"
        raise ScanValidationError(msg) from exc
    if not isinstance(payload, dict):
        msg = f"Expected TOML mapping in {path}, got {type(payload).__name__}."
        raise ScanValidationError(msg)
    return cast("dict[str, object]", payload)


def _extract_tool_config(pyproject: Mapping[str, object]) -> Mapping[str, object] | None:
    tool = pyproject.get("tool")
    if not isinstance(tool, Mapping):
        return None
    nested = tool.get(TOOL_TABLE)
    if not isinstance(nested, Mapping):
        return None
    return cast("Mapping[str, object]", nested)


def _decode_config(raw: Mapping[str, object], *, location: str) -> ScannerConfig:
    try:
        return convert(raw, target_type=ScannerConfig, strict=True)
    except msgspec.ValidationError as exc:
        details = validation_error_payload(exc)
        msg = f"Config validation failed for {location}: {details}"
        raise ScanValidationError(msg) from exc


def _load_file_config(config_file: str | Path | None, start: Path | None) -> ScannerConfig:
    if config_file is not None:
        path = Path(config_file)
        if not path.is_file():
            msg = f"Config file not found: {path}"
            raise ScanValidationError(msg)
        raw = _read_toml(path)
        if path.name == PYPROJECT_FILENAME:
            nested = _extract_tool_config(raw)
            return _decode_config(nested or {}, location=f"{path}:tool.{TOOL_TABLE}")
        return _decode_config(raw, location=str(path))

    config_path = _find_in_parents(CONFIG_FILENAME, start)
    if config_path is not None:
        return _decode_config(_read_toml(config_path), location=str(config_path))

    pyproject_path = _find_in_parents(PYPROJECT_FILENAME, start)
    if pyproject_path is not None:
        nested = _extract_tool_config(_read_toml(pyproject_path))
        if nested is not None:
            return _decode_config(nested, location=f"{pyproject_path}:tool.{TOOL_TABLE}")
    return ScannerConfig()


def _apply_env_overrides(config: ScannerConfig) -> ScannerConfig:
    updates: dict[str, object] = {}
    configuration = env_value(ENV_CONFIGURATION)
    if configuration is not None:
        updates["configuration"] = configuration
    strategy = env_enum(ENV_BUILD_STRATEGY, BuildStrategy)
    if strategy is not None:
        updates["build_strategy"] = strategy
    if not updates:
        return config
    return msgspec.structs.replace(config, **updates)


def load_scanner_config(
    config_file: str | Path | None = None,
    *,
    start: Path | None = None,
) -> ScannerConfig:
    """Load scanner configuration with environment overrides applied.

    Parameters
    ----------
    config_file
        Optional explicit TOML file; a ``pyproject.toml`` path is read from
        its ``[tool.assembly-scanner]`` table.
    start
        Directory to start the parent walk from; defaults to the working
        directory.

    Returns
    -------
    ScannerConfig
        Effective configuration.

    Raises
    ------
    ScanValidationError
        Raised when a config file is missing, malformed or fails validation.
    """
    config = _apply_env_overrides(_load_file_config(config_file, start))
    logger.debug("Loaded scanner config: %s", config)
    return config


__all__ = ["CONFIG_FILENAME", "ScannerConfig", "load_scanner_config"]
