"""Pure query functions over an enumerated type snapshot."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import Protocol

from assembly_scanner.errors import ScanValidationError, require_text
from assembly_scanner.metadata.records import TypeName, TypeRecord
from assembly_scanner.options import DEFAULT_SCAN_OPTIONS, ScanOptions

GENERIC_ARGUMENTS_START = "["

type Conformance = Callable[[TypeRecord, Sequence[str], bool], bool]


class NamedType(Protocol):
    """Anything carrying the name triple used for matching."""

    @property
    def name(self) -> str: ...

    @property
    def full_name(self) -> str: ...

    @property
    def is_generic(self) -> bool: ...


def normalize_names(names: str | Sequence[str], *, field: str = "Type names") -> tuple[str, ...]:
    """Validate query names and return them as a tuple.

    Raises
    ------
    ScanValidationError
        Raised when no names are given or any name is blank.

    Returns
    -------
    tuple[str, ...]
        Query names, unchanged.
    """
    if isinstance(names, str):
        names = (names,)
    values = tuple(names)
    if not values:
        msg = f"{field} cannot be empty"
        raise ScanValidationError(msg)
    for value in values:
        require_text(value, field="Type name")
    return values


def should_include(record: TypeRecord, options: ScanOptions = DEFAULT_SCAN_OPTIONS) -> bool:
    """Apply the kind, abstract, visibility and nesting filters.

    Returns
    -------
    bool
        ``True`` when the type passes every enabled filter.
    """
    if not record.is_class and not (options.include_structs and record.is_value_type):
        return False
    if record.is_abstract and not options.include_abstract:
        return False
    if not record.is_visible and not options.include_non_public:
        return False
    return not (record.is_nested and not options.include_nested_types)


def matches_type_name(candidate: NamedType, name: str, *, match_full_name: bool) -> bool:
    """Compare a type against a query name.

    In full-name mode the qualified name of a generic type is cut at its
    argument list, so ``Ns.ICommand`1`` matches ``Ns.ICommand`1[[...]]``.

    Returns
    -------
    bool
        ``True`` on an exact match in the selected mode.
    """
    if not match_full_name:
        return candidate.name == name
    full_name = candidate.full_name or candidate.name
    if candidate.is_generic:
        bracket = full_name.find(GENERIC_ARGUMENTS_START)
        if bracket > 0:
            full_name = full_name[:bracket]
    return full_name == name


def _any_match(types: Iterable[TypeName], names: Sequence[str], match_full_name: bool) -> bool:
    return any(
        matches_type_name(candidate, name, match_full_name=match_full_name)
        for candidate in types
        for name in names
    )


def implements_any(record: TypeRecord, names: Sequence[str], match_full_name: bool) -> bool:
    """Return whether any flattened interface matches any query name.

    Returns
    -------
    bool
        Conformance result.
    """
    return _any_match(record.interfaces, names, match_full_name)


def derives_from_any(record: TypeRecord, names: Sequence[str], match_full_name: bool) -> bool:
    """Return whether any ancestor in the base chain matches any query name.

    Returns
    -------
    bool
        Conformance result.
    """
    return _any_match(record.base_types, names, match_full_name)


def find_all(
    types: Iterable[TypeRecord],
    names: str | Sequence[str],
    conformance: Conformance,
    options: ScanOptions | None = None,
) -> list[TypeRecord]:
    """Return every included type satisfying ``conformance``, in snapshot order.

    Returns
    -------
    list[TypeRecord]
        Matching types.
    """
    values = normalize_names(names)
    options = options or DEFAULT_SCAN_OPTIONS
    return [
        record
        for record in types
        if should_include(record, options)
        and conformance(record, values, options.match_full_name)
    ]


def find_first(
    types: Iterable[TypeRecord],
    target: str,
    names: str | Sequence[str],
    conformance: Conformance,
    options: ScanOptions | None = None,
    *,
    match_target_full_name: bool = False,
) -> TypeRecord | None:
    """Return the first type named ``target`` satisfying ``conformance``.

    Iteration stops at the first match.

    Returns
    -------
    TypeRecord | None
        Matching type, or ``None``.
    """
    require_text(target, field="Target type name")
    values = normalize_names(names)
    options = options or DEFAULT_SCAN_OPTIONS
    for record in types:
        if not matches_type_name(record, target, match_full_name=match_target_full_name):
            continue
        if not should_include(record, options):
            continue
        if conformance(record, values, options.match_full_name):
            return record
    return None


__all__ = [
    "Conformance",
    "NamedType",
    "derives_from_any",
    "find_all",
    "find_first",
    "implements_any",
    "matches_type_name",
    "normalize_names",
    "should_include",
]
