"""Decoding of ECMA-335 type signature blobs (``TypeSpec`` rows).

Only the type-signature grammar is supported; method, field and local
signatures are never needed to answer conformance queries. Decoding is pure:
table references are returned as ``(table, row)`` pairs and resolved by the
loader.
"""

from __future__ import annotations

from typing import Final

from assembly_scanner.serde_msgspec import StructBaseHotPath

ELEMENT_VOID: Final = 0x01
ELEMENT_STRING: Final = 0x0E
ELEMENT_PTR: Final = 0x0F
ELEMENT_BYREF: Final = 0x10
ELEMENT_VALUETYPE: Final = 0x11
ELEMENT_CLASS: Final = 0x12
ELEMENT_VAR: Final = 0x13
ELEMENT_ARRAY: Final = 0x14
ELEMENT_GENERICINST: Final = 0x15
ELEMENT_TYPEDBYREF: Final = 0x16
ELEMENT_I: Final = 0x18
ELEMENT_U: Final = 0x19
ELEMENT_FNPTR: Final = 0x1B
ELEMENT_OBJECT: Final = 0x1C
ELEMENT_SZARRAY: Final = 0x1D
ELEMENT_MVAR: Final = 0x1E
ELEMENT_CMOD_REQD: Final = 0x1F
ELEMENT_CMOD_OPT: Final = 0x20
ELEMENT_PINNED: Final = 0x45

PRIMITIVE_TYPES: Final[dict[int, str]] = {
    ELEMENT_VOID: "Void",
    0x02: "Boolean",
    0x03: "Char",
    0x04: "SByte",
    0x05: "Byte",
    0x06: "Int16",
    0x07: "UInt16",
    0x08: "Int32",
    0x09: "UInt32",
    0x0A: "Int64",
    0x0B: "UInt64",
    0x0C: "Single",
    0x0D: "Double",
    ELEMENT_STRING: "String",
    ELEMENT_TYPEDBYREF: "TypedReference",
    ELEMENT_I: "IntPtr",
    ELEMENT_U: "UIntPtr",
    ELEMENT_OBJECT: "Object",
}

TYPE_DEF_OR_REF_TABLES: Final = ("TypeDef", "TypeRef", "TypeSpec")


class SigPrimitive(StructBaseHotPath, frozen=True, tag=True):
    """Built-in type from the ``System`` namespace of the core library."""

    name: str


class SigTypeRef(StructBaseHotPath, frozen=True, tag=True):
    """Reference to a ``TypeDef``, ``TypeRef`` or ``TypeSpec`` row (1-based)."""

    table: str
    row: int
    is_value_type: bool = False


class SigGenericParam(StructBaseHotPath, frozen=True, tag=True):
    """Type (``!n``) or method (``!!n``) generic parameter by position."""

    index: int
    is_method: bool = False


class SigGenericInst(StructBaseHotPath, frozen=True, tag=True):
    """Generic instantiation: an open generic plus its type arguments."""

    generic: SigTypeRef
    arguments: tuple[SigNode, ...]


class SigArray(StructBaseHotPath, frozen=True, tag=True):
    """Array of ``element``; rank 1 with ``sz=True`` is a vector (``T[]``)."""

    element: SigNode
    rank: int = 1
    sz: bool = True


class SigPointer(StructBaseHotPath, frozen=True, tag=True):
    """Unmanaged pointer (``T*``) or managed reference (``T&``)."""

    element: SigNode
    by_ref: bool = False


type SigNode = SigPrimitive | SigTypeRef | SigGenericParam | SigGenericInst | SigArray | SigPointer


def read_compressed_uint(data: bytes, offset: int) -> tuple[int, int]:
    """Read an ECMA-335 compressed unsigned integer.

    Parameters
    ----------
    data
        Blob bytes.
    offset
        Position of the first encoded byte.

    Returns
    -------
    tuple[int, int]
        Decoded value and the offset just past it.

    Raises
    ------
    ValueError
        Raised for truncated data or an invalid leading byte.
    """
    if offset >= len(data):
        msg = "Truncated compressed integer."
        raise ValueError(msg)
    first = data[offset]
    if first & 0x80 == 0:
        return first, offset + 1
    if first & 0xC0 == 0x80:
        if offset + 2 > len(data):
            msg = "Truncated 2-byte compressed integer."
            raise ValueError(msg)
        return ((first & 0x3F) << 8) | data[offset + 1], offset + 2
    if first & 0xE0 == 0xC0:
        if offset + 4 > len(data):
            msg = "Truncated 4-byte compressed integer."
            raise ValueError(msg)
        value = (
            ((first & 0x1F) << 24)
            | (data[offset + 1] << 16)
            | (data[offset + 2] << 8)
            | data[offset + 3]
        )
        return value, offset + 4
    msg = f"Invalid compressed integer lead byte 0x{first:02x}."
    raise ValueError(msg)


def decode_type_def_or_ref(encoded: int) -> tuple[str, int]:
    """Split a ``TypeDefOrRefOrSpecEncoded`` value into table and row.

    Returns
    -------
    tuple[str, int]
        Table name and 1-based row index.

    Raises
    ------
    ValueError
        Raised for the reserved tag value.
    """
    tag = encoded & 0x03
    if tag >= len(TYPE_DEF_OR_REF_TABLES):
        msg = f"Invalid TypeDefOrRef tag {tag}."
        raise ValueError(msg)
    return TYPE_DEF_OR_REF_TABLES[tag], encoded >> 2


class _SignatureReader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def byte(self) -> int:
        if self.offset >= len(self.data):
            msg = "Unexpected end of signature blob."
            raise ValueError(msg)
        value = self.data[self.offset]
        self.offset += 1
        return value

    def uint(self) -> int:
        value, self.offset = read_compressed_uint(self.data, self.offset)
        return value

    def type_ref(self, *, is_value_type: bool) -> SigTypeRef:
        table, row = decode_type_def_or_ref(self.uint())
        return SigTypeRef(table=table, row=row, is_value_type=is_value_type)

    def type(self) -> SigNode:
        element = self.byte()
        while element in {ELEMENT_CMOD_REQD, ELEMENT_CMOD_OPT, ELEMENT_PINNED}:
            if element != ELEMENT_PINNED:
                self.uint()
            element = self.byte()
        primitive = PRIMITIVE_TYPES.get(element)
        if primitive is not None:
            return SigPrimitive(name=primitive)
        if element in {ELEMENT_CLASS, ELEMENT_VALUETYPE}:
            return self.type_ref(is_value_type=element == ELEMENT_VALUETYPE)
        if element in {ELEMENT_VAR, ELEMENT_MVAR}:
            return SigGenericParam(index=self.uint(), is_method=element == ELEMENT_MVAR)
        if element == ELEMENT_GENERICINST:
            kind = self.byte()
            if kind not in {ELEMENT_CLASS, ELEMENT_VALUETYPE}:
                msg = f"Invalid generic instantiation kind 0x{kind:02x}."
                raise ValueError(msg)
            generic = self.type_ref(is_value_type=kind == ELEMENT_VALUETYPE)
            count = self.uint()
            arguments = tuple(self.type() for _ in range(count))
            return SigGenericInst(generic=generic, arguments=arguments)
        if element == ELEMENT_SZARRAY:
            return SigArray(element=self.type())
        if element == ELEMENT_ARRAY:
            return self.array()
        if element in {ELEMENT_PTR, ELEMENT_BYREF}:
            return SigPointer(element=self.type(), by_ref=element == ELEMENT_BYREF)
        msg = f"Unsupported element type 0x{element:02x}."
        raise ValueError(msg)

    def array(self) -> SigArray:
        element = self.type()
        rank = self.uint()
        for _ in range(self.uint()):
            self.uint()
        for _ in range(self.uint()):
            self.uint()
        return SigArray(element=element, rank=rank, sz=False)


def decode_type_signature(blob: bytes) -> SigNode:
    """Decode a type signature blob into a signature tree.

    Parameters
    ----------
    blob
        Raw ``TypeSpec`` signature bytes.

    Returns
    -------
    SigNode
        Root of the decoded signature.

    Raises
    ------
    ValueError
        Raised for malformed or unsupported signatures (e.g. function
        pointers).
    """
    return _SignatureReader(bytes(blob)).type()


__all__ = [
    "PRIMITIVE_TYPES",
    "SigArray",
    "SigGenericInst",
    "SigGenericParam",
    "SigNode",
    "SigPointer",
    "SigPrimitive",
    "SigTypeRef",
    "decode_type_def_or_ref",
    "decode_type_signature",
    "read_compressed_uint",
]
