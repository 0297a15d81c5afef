"""Immutable type descriptors enumerated from a module's metadata."""

from __future__ import annotations

from assembly_scanner.serde_msgspec import StructBaseHotPath

GENERIC_ARITY_MARKER = "`"


class TypeName(StructBaseHotPath, frozen=True):
    """Name of a referenced type (interface or base type).

    ``full_name`` is namespace-qualified and, for instantiated generics,
    carries the argument list, e.g. ``Ns.ICommand`1[[Ns.Dto, App]]``.
    """

    name: str
    full_name: str
    is_generic: bool = False


class TypeRecord(StructBaseHotPath, frozen=True):
    """Shape of one declared type, as needed by the query engine."""

    name: str
    full_name: str
    namespace: str = ""
    assembly_name: str = ""
    generic_arity: int = 0
    is_abstract: bool = False
    is_interface: bool = False
    is_value_type: bool = False
    is_public: bool = False
    is_nested_public: bool = False
    is_nested: bool = False
    interfaces: tuple[TypeName, ...] = ()
    base_types: tuple[TypeName, ...] = ()

    @property
    def is_class(self) -> bool:
        """Return whether the type is a reference type other than an interface.

        Returns
        -------
        bool
            ``True`` for classes (including delegates and records).
        """
        return not self.is_interface and not self.is_value_type

    @property
    def is_generic(self) -> bool:
        """Return whether the type declares generic parameters.

        Returns
        -------
        bool
            ``True`` when ``generic_arity`` is positive.
        """
        return self.generic_arity > 0

    @property
    def is_visible(self) -> bool:
        """Return whether the type is visible outside its assembly.

        Returns
        -------
        bool
            ``True`` for public or nested-public types.
        """
        return self.is_public or self.is_nested_public


def generic_arity_of(name: str) -> int:
    """Return the arity encoded in a CLR type name's backtick suffix.

    Returns
    -------
    int
        Parsed arity, ``0`` when the name carries no valid suffix.
    """
    _, marker, suffix = name.rpartition(GENERIC_ARITY_MARKER)
    if not marker or not suffix.isdigit():
        return 0
    return int(suffix)


__all__ = ["GENERIC_ARITY_MARKER", "TypeName", "TypeRecord", "generic_arity_of"]
