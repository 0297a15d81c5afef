"""Metadata-only module loading backed by ``dnfile``.

The loader parses the PE image and ECMA-335 tables of the target module and
of every dependency it needs to resolve base types and interfaces. No code
is executed and no runtime is hosted. Cross-assembly references are resolved
by assembly name against a :class:`SearchLocationSet`, following type
forwarders and decoding generic instantiations from signature blobs.

Types whose base chain or interface set cannot be resolved are dropped from
the snapshot; failure to open the target module or the core assembly is a
hard :class:`MetadataLoadError`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import dnfile
import pefile

from assembly_scanner.errors import MetadataLoadError, describe_exception
from assembly_scanner.metadata.records import TypeName, TypeRecord, generic_arity_of
from assembly_scanner.metadata.search_paths import SearchLocationSet
from assembly_scanner.metadata.signatures import (
    SigArray,
    SigGenericInst,
    SigGenericParam,
    SigNode,
    SigPointer,
    SigPrimitive,
    SigTypeRef,
    decode_type_signature,
)
from assembly_scanner.obs.tracing import ScopeName, stage_span

logger = logging.getLogger(__name__)

DEFAULT_CORE_ASSEMBLY = "System.Runtime"
MODULE_PSEUDO_TYPE = "<Module>"
NESTED_SEPARATOR = "+"
VALUE_TYPE_BASES = frozenset({"System.ValueType", "System.Enum"})

VISIBILITY_MASK = 0x07
VISIBILITY_PUBLIC = 0x01
VISIBILITY_NESTED_PUBLIC = 0x02
FLAG_INTERFACE = 0x20
FLAG_ABSTRACT = 0x80

_MAX_FORWARD_DEPTH = 16

type CodedRef = tuple[str, int]


class _UnresolvedTypeError(LookupError):
    """A referenced type or assembly could not be found."""


class LoadedModule:
    """Opaque handle over an enumerated type snapshot and its open images."""

    def __init__(self, types: tuple[TypeRecord, ...], closer: Callable[[], None]) -> None:
        self._types = types
        self._closer: Callable[[], None] | None = closer

    @property
    def types(self) -> tuple[TypeRecord, ...]:
        """Return the enumerated type snapshot.

        Returns
        -------
        tuple[TypeRecord, ...]
            Types in module enumeration order.
        """
        return self._types

    def close(self) -> None:
        """Release the underlying images; later calls are no-ops."""
        closer, self._closer = self._closer, None
        if closer is not None:
            closer()


class ModuleLoader(Protocol):
    """Callable that opens a module against a search-location set."""

    def __call__(
        self,
        artifact_path: Path,
        search_locations: SearchLocationSet,
        *,
        core_assembly: str = DEFAULT_CORE_ASSEMBLY,
    ) -> LoadedModule:
        """Open ``artifact_path`` metadata-only and enumerate its types."""
        ...


def _text(value: object) -> str:
    raw = getattr(value, "value", value)
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


def _index(value: object) -> int:
    return int(getattr(value, "row_index", 0) or 0)


def _coded(value: object) -> CodedRef | None:
    row = _index(value)
    table_name = getattr(getattr(value, "table", None), "name", None)
    if row <= 0 or not table_name:
        return None
    return str(table_name), row


def _rows(tables: object, name: str) -> list[object]:
    table = getattr(tables, name, None)
    if table is None:
        return []
    return list(table.rows)


def _qualify(namespace: str, name: str) -> str:
    return f"{namespace}.{name}" if namespace else name


class _Module:
    """Indexed view over one opened image's metadata tables."""

    def __init__(self, path: Path, pe: dnfile.dnPE) -> None:
        self.path = path
        self.pe = pe
        tables = pe.net.mdtables
        self._typedefs = _rows(tables, "TypeDef")
        self._typerefs = _rows(tables, "TypeRef")
        self._typespecs = _rows(tables, "TypeSpec")
        self._assembly_refs = _rows(tables, "AssemblyRef")
        assembly = _rows(tables, "Assembly")
        self.assembly_name = _text(assembly[0].Name) if assembly else path.stem
        self.enclosing: dict[int, int] = {}
        for row in _rows(tables, "NestedClass"):
            self.enclosing[_index(row.NestedClass)] = _index(row.EnclosingClass)
        self._interface_impls: dict[int, list[CodedRef]] = {}
        for row in _rows(tables, "InterfaceImpl"):
            ref = _coded(row.Interface)
            if ref is not None:
                self._interface_impls.setdefault(_index(row.Class), []).append(ref)
        self._top_level: dict[tuple[str, str], int] = {}
        self._nested: dict[tuple[int, str], int] = {}
        for position, row in enumerate(self._typedefs, start=1):
            name = _text(row.TypeName)
            outer = self.enclosing.get(position)
            if outer is None:
                self._top_level.setdefault((_text(row.TypeNamespace), name), position)
            else:
                self._nested.setdefault((outer, name), position)
        self._forwarders: dict[tuple[str, str], int] = {}
        for row in _rows(tables, "ExportedType"):
            ref = _coded(row.Implementation)
            if ref is not None and ref[0] == "AssemblyRef":
                key = (_text(row.TypeNamespace), _text(row.TypeName))
                self._forwarders.setdefault(key, ref[1])

    def close(self) -> None:
        self.pe.close()

    def _row(self, rows: list[object], index: int, table: str) -> object:
        if not 1 <= index <= len(rows):
            msg = f"{table} row {index} out of range in {self.assembly_name}"
            raise _UnresolvedTypeError(msg)
        return rows[index - 1]

    def typedef(self, index: int) -> object:
        return self._row(self._typedefs, index, "TypeDef")

    def typeref(self, index: int) -> object:
        return self._row(self._typerefs, index, "TypeRef")

    def typespec_blob(self, index: int) -> bytes:
        row = self._row(self._typespecs, index, "TypeSpec")
        raw = getattr(row.Signature, "value", row.Signature)
        return bytes(raw or b"")

    def assembly_ref_name(self, index: int) -> str:
        return _text(self._row(self._assembly_refs, index, "AssemblyRef").Name)

    def typedef_rows(self) -> Iterator[int]:
        return iter(range(1, len(self._typedefs) + 1))

    def interface_refs(self, index: int) -> list[CodedRef]:
        return self._interface_impls.get(index, [])

    def find_top_level(self, namespace: str, name: str) -> int | None:
        return self._top_level.get((namespace, name))

    def find_nested(self, enclosing: int, name: str) -> int | None:
        return self._nested.get((enclosing, name))

    def forwarder(self, namespace: str, name: str) -> int | None:
        return self._forwarders.get((namespace, name))

    def simple_name(self, index: int) -> str:
        return _text(self.typedef(index).TypeName)

    def namespace(self, index: int) -> str:
        outer = self.enclosing.get(index)
        if outer is not None:
            return self.namespace(outer)
        return _text(self.typedef(index).TypeNamespace)

    def full_name(self, index: int) -> str:
        outer = self.enclosing.get(index)
        name = self.simple_name(index)
        if outer is not None:
            return f"{self.full_name(outer)}{NESTED_SEPARATOR}{name}"
        return _qualify(_text(self.typedef(index).TypeNamespace), name)

    def flags(self, index: int) -> int:
        return int(self.typedef(index).struct.Flags)


def _open_module(path: Path) -> _Module:
    pe = dnfile.dnPE(str(path))
    if pe.net is None or pe.net.mdtables is None:
        pe.close()
        msg = f"{path} is not a .NET module"
        raise ValueError(msg)
    return _Module(path, pe)


@dataclass(frozen=True)
class _Param:
    index: int
    is_method: bool = False


@dataclass(frozen=True)
class _Primitive:
    name: str


@dataclass(frozen=True)
class _Array:
    element: _Arg
    rank: int = 1
    sz: bool = True


@dataclass(frozen=True)
class _Pointer:
    element: _Arg
    by_ref: bool = False


@dataclass(frozen=True)
class _Inst:
    module: _Module
    row: int
    args: tuple[_Arg, ...] = ()


type _Arg = _Inst | _Param | _Primitive | _Array | _Pointer


@dataclass(frozen=True)
class _Shape:
    base_chain: tuple[_Inst, ...]
    interfaces: tuple[_Inst, ...]


def _substitute(arg: _Arg, args: tuple[_Arg, ...]) -> _Arg:
    if isinstance(arg, _Param):
        if not arg.is_method and arg.index < len(args):
            return args[arg.index]
        return arg
    if isinstance(arg, _Inst):
        if not arg.args:
            return arg
        return _Inst(arg.module, arg.row, tuple(_substitute(a, args) for a in arg.args))
    if isinstance(arg, _Array):
        return _Array(_substitute(arg.element, args), arg.rank, arg.sz)
    if isinstance(arg, _Pointer):
        return _Pointer(_substitute(arg.element, args), arg.by_ref)
    return arg


def _substitute_inst(inst: _Inst, args: tuple[_Arg, ...]) -> _Inst:
    if not inst.args:
        return inst
    return _Inst(inst.module, inst.row, tuple(_substitute(a, args) for a in inst.args))


def _is_open(arg: _Arg) -> bool:
    if isinstance(arg, _Param):
        return True
    if isinstance(arg, _Inst):
        return any(_is_open(a) for a in arg.args)
    if isinstance(arg, (_Array, _Pointer)):
        return _is_open(arg.element)
    return False


class AssemblySet:
    """Opened images keyed by assembly name, loaded on demand."""

    def __init__(self, search_locations: SearchLocationSet) -> None:
        self._search = search_locations
        self._modules: dict[str, _Module] = {}
        self._missing: set[str] = set()

    def add(self, module: _Module) -> None:
        self._modules.setdefault(module.assembly_name.casefold(), module)

    def open(self, assembly_name: str) -> _Module:
        key = assembly_name.casefold()
        module = self._modules.get(key)
        if module is not None:
            return module
        if key in self._missing:
            msg = f"Assembly '{assembly_name}' could not be loaded"
            raise _UnresolvedTypeError(msg)
        path = self._search.find_assembly(assembly_name)
        if path is None:
            self._missing.add(key)
            msg = f"Assembly '{assembly_name}' not found in search locations"
            raise _UnresolvedTypeError(msg)
        try:
            module = _open_module(path)
        except (OSError, ValueError, pefile.PEFormatError) as exc:
            self._missing.add(key)
            msg = f"Assembly '{assembly_name}' at {path} could not be loaded"
            raise _UnresolvedTypeError(msg) from exc
        self._modules[key] = module
        logger.debug("Opened dependency %s from %s", assembly_name, path)
        return module

    def close(self) -> None:
        modules = list(self._modules.values())
        self._modules.clear()
        for module in modules:
            module.close()


class _TypeResolver:
    """Resolves references to type definitions and computes type shapes."""

    def __init__(self, assemblies: AssemblySet, core_assembly_name: str) -> None:
        self._assemblies = assemblies
        self._core_assembly_name = core_assembly_name
        self._typerefs: dict[tuple[int, int], _Inst] = {}
        self._shapes: dict[tuple[int, int], _Shape] = {}
        self._in_progress: set[tuple[int, int]] = set()

    def _find_top_level(self, module: _Module, namespace: str, name: str) -> _Inst:
        current = module
        for _ in range(_MAX_FORWARD_DEPTH):
            row = current.find_top_level(namespace, name)
            if row is not None:
                return _Inst(current, row)
            forwarded = current.forwarder(namespace, name)
            if forwarded is None:
                break
            current = self._assemblies.open(current.assembly_ref_name(forwarded))
        msg = f"Type {_qualify(namespace, name)} not found in {current.assembly_name}"
        raise _UnresolvedTypeError(msg)

    def resolve_typeref(self, module: _Module, index: int) -> _Inst:
        key = (id(module), index)
        cached = self._typerefs.get(key)
        if cached is not None:
            return cached
        row = module.typeref(index)
        namespace, name = _text(row.TypeNamespace), _text(row.TypeName)
        scope = _coded(row.ResolutionScope)
        if scope is not None and scope[0] == "AssemblyRef":
            target = self._assemblies.open(module.assembly_ref_name(scope[1]))
            resolved = self._find_top_level(target, namespace, name)
        elif scope is not None and scope[0] == "TypeRef":
            outer = self.resolve_typeref(module, scope[1])
            nested = outer.module.find_nested(outer.row, name)
            if nested is None:
                msg = f"Nested type {name} not found in {outer.module.full_name(outer.row)}"
                raise _UnresolvedTypeError(msg)
            resolved = _Inst(outer.module, nested)
        else:
            resolved = self._find_top_level(module, namespace, name)
        self._typerefs[key] = resolved
        return resolved

    def resolve(self, module: _Module, ref: CodedRef) -> _Arg:
        table, index = ref
        if table == "TypeDef":
            module.typedef(index)
            return _Inst(module, index)
        if table == "TypeRef":
            return self.resolve_typeref(module, index)
        if table == "TypeSpec":
            try:
                node = decode_type_signature(module.typespec_blob(index))
            except ValueError as exc:
                msg = f"Undecodable TypeSpec {index} in {module.assembly_name}"
                raise _UnresolvedTypeError(msg) from exc
            return self._from_signature(module, node)
        msg = f"Unexpected {table} reference in {module.assembly_name}"
        raise _UnresolvedTypeError(msg)

    def _from_signature(self, module: _Module, node: SigNode) -> _Arg:
        if isinstance(node, SigPrimitive):
            return _Primitive(node.name)
        if isinstance(node, SigTypeRef):
            return self.resolve(module, (node.table, node.row))
        if isinstance(node, SigGenericParam):
            return _Param(node.index, node.is_method)
        if isinstance(node, SigGenericInst):
            generic = self.resolve(module, (node.generic.table, node.generic.row))
            if not isinstance(generic, _Inst):
                msg = f"Generic instantiation over a non-type in {module.assembly_name}"
                raise _UnresolvedTypeError(msg)
            args = tuple(self._from_signature(module, arg) for arg in node.arguments)
            return _Inst(generic.module, generic.row, args)
        if isinstance(node, SigArray):
            return _Array(self._from_signature(module, node.element), node.rank, node.sz)
        if isinstance(node, SigPointer):
            return _Pointer(self._from_signature(module, node.element), node.by_ref)
        msg = f"Unsupported signature node {type(node).__name__}"
        raise _UnresolvedTypeError(msg)

    def _resolve_inst(self, module: _Module, ref: CodedRef) -> _Inst:
        resolved = self.resolve(module, ref)
        if not isinstance(resolved, _Inst):
            msg = f"{ref[0]} {ref[1]} in {module.assembly_name} does not name a type definition"
            raise _UnresolvedTypeError(msg)
        return resolved

    def shape(self, module: _Module, index: int) -> _Shape:
        """Return the base chain and flattened interfaces of a definition.

        Generic arguments in the result are expressed in terms of the
        definition's own parameters.
        """
        key = (id(module), index)
        cached = self._shapes.get(key)
        if cached is not None:
            return cached
        if key in self._in_progress:
            msg = f"Circular inheritance involving {module.full_name(index)}"
            raise _UnresolvedTypeError(msg)
        self._in_progress.add(key)
        try:
            shape = self._compute_shape(module, index)
        finally:
            self._in_progress.discard(key)
        self._shapes[key] = shape
        return shape

    def _compute_shape(self, module: _Module, index: int) -> _Shape:
        base_chain: list[_Inst] = []
        inherited: list[_Inst] = []
        extends = _coded(module.typedef(index).Extends)
        if extends is not None:
            base = self._resolve_inst(module, extends)
            base_shape = self.shape(base.module, base.row)
            base_chain.append(base)
            base_chain.extend(_substitute_inst(b, base.args) for b in base_shape.base_chain)
            inherited.extend(_substitute_inst(i, base.args) for i in base_shape.interfaces)
        declared: list[_Inst] = []
        for ref in module.interface_refs(index):
            iface = self._resolve_inst(module, ref)
            iface_shape = self.shape(iface.module, iface.row)
            declared.append(iface)
            declared.extend(_substitute_inst(i, iface.args) for i in iface_shape.interfaces)
        interfaces = tuple(dict.fromkeys([*declared, *inherited]))
        return _Shape(base_chain=tuple(base_chain), interfaces=interfaces)

    def _assembly_of(self, arg: _Arg) -> str:
        if isinstance(arg, _Inst):
            return arg.module.assembly_name
        if isinstance(arg, (_Array, _Pointer)):
            return self._assembly_of(arg.element)
        return self._core_assembly_name

    def _arg_full_name(self, arg: _Arg) -> str:
        if isinstance(arg, _Inst):
            return self.full_name(arg)
        if isinstance(arg, _Primitive):
            return f"System.{arg.name}"
        if isinstance(arg, _Array):
            suffix = "[]" if arg.sz else f"[{',' * (arg.rank - 1)}]"
            return f"{self._arg_full_name(arg.element)}{suffix}"
        if isinstance(arg, _Pointer):
            return f"{self._arg_full_name(arg.element)}{'&' if arg.by_ref else '*'}"
        return f"{'!!' if arg.is_method else '!'}{arg.index}"

    def full_name(self, inst: _Inst) -> str:
        """Render a qualified name; closed instantiations carry their arguments."""
        base = inst.module.full_name(inst.row)
        if not inst.args or _is_open(inst):
            return base
        rendered = ",".join(
            f"[{self._arg_full_name(arg)}, {self._assembly_of(arg)}]" for arg in inst.args
        )
        return f"{base}[{rendered}]"

    def type_name(self, inst: _Inst) -> TypeName:
        name = inst.module.simple_name(inst.row)
        return TypeName(
            name=name,
            full_name=self.full_name(inst),
            is_generic=generic_arity_of(name) > 0 or bool(inst.args),
        )

    def record(self, module: _Module, index: int) -> TypeRecord:
        shape = self.shape(module, index)
        name = module.simple_name(index)
        full_name = module.full_name(index)
        flags = module.flags(index)
        visibility = flags & VISIBILITY_MASK
        base_types = tuple(self.type_name(base) for base in shape.base_chain)
        is_value_type = (
            bool(base_types)
            and base_types[0].full_name in VALUE_TYPE_BASES
            and full_name != "System.Enum"
        )
        return TypeRecord(
            name=name,
            namespace=module.namespace(index),
            full_name=full_name,
            assembly_name=module.assembly_name,
            generic_arity=generic_arity_of(name),
            is_abstract=bool(flags & FLAG_ABSTRACT),
            is_interface=bool(flags & FLAG_INTERFACE),
            is_value_type=is_value_type,
            is_public=visibility == VISIBILITY_PUBLIC,
            is_nested_public=visibility == VISIBILITY_NESTED_PUBLIC,
            is_nested=visibility > VISIBILITY_PUBLIC or index in module.enclosing,
            interfaces=tuple(self.type_name(iface) for iface in shape.interfaces),
            base_types=base_types,
        )


def _enumerate_types(resolver: _TypeResolver, module: _Module) -> tuple[TypeRecord, ...]:
    records: list[TypeRecord] = []
    dropped = 0
    for index in module.typedef_rows():
        if module.simple_name(index) == MODULE_PSEUDO_TYPE:
            continue
        try:
            records.append(resolver.record(module, index))
        except _UnresolvedTypeError as exc:
            dropped += 1
            logger.debug("Dropping type %s: %s", module.full_name(index), exc)
    if dropped:
        logger.debug("Dropped %d unresolvable types from %s", dropped, module.path)
    return tuple(records)


def load_module(
    artifact_path: Path,
    search_locations: SearchLocationSet,
    *,
    core_assembly: str = DEFAULT_CORE_ASSEMBLY,
) -> LoadedModule:
    """Open a module metadata-only and enumerate its declared types.

    Parameters
    ----------
    artifact_path
        Compiled module to inspect.
    search_locations
        Binaries available for resolving cross-assembly references.
    core_assembly
        Assembly anchoring fundamental types; it must be resolvable.

    Returns
    -------
    LoadedModule
        Handle owning the opened images and the type snapshot.

    Raises
    ------
    MetadataLoadError
        Raised when the target module or the core assembly cannot be loaded.
    """
    with stage_span(
        "metadata.load",
        stage="load",
        scope_name=ScopeName.METADATA,
        attributes={"artifact": artifact_path, "core_assembly": core_assembly},
    ) as span:
        try:
            module = _open_module(artifact_path)
        except (OSError, ValueError, pefile.PEFormatError) as exc:
            msg = f"Failed to load assembly metadata from {artifact_path}. {describe_exception(exc)}"
            raise MetadataLoadError(msg) from exc
        assemblies = AssemblySet(search_locations)
        assemblies.add(module)
        try:
            core = assemblies.open(core_assembly)
        except _UnresolvedTypeError as exc:
            assemblies.close()
            msg = (
                f"Failed to load assembly metadata from {artifact_path}: core assembly "
                f"'{core_assembly}' is unavailable. {describe_exception(exc)}"
            )
            raise MetadataLoadError(msg) from exc
        try:
            types = _enumerate_types(_TypeResolver(assemblies, core.assembly_name), module)
        except BaseException:
            assemblies.close()
            raise
        span.set_attribute("types.count", len(types))
    logger.debug("Enumerated %d types from %s", len(types), artifact_path)
    return LoadedModule(types, assemblies.close)


__all__ = [
    "DEFAULT_CORE_ASSEMBLY",
    "AssemblySet",
    "LoadedModule",
    "ModuleLoader",
    "load_module",
]
