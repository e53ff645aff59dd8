# isopod/tags.py
from __future__ import annotations

from enum import Enum
import math
from typing import Any, Optional

__all__ = [
    "TypeTag",
    "SPECIAL_TAGS",
    "special_tag_of",
    "special_value",
    "Symbol",
]


class TypeTag(str, Enum):
    """Closed set of node types. The value is the wire string."""

    # special primitives
    NONE = "None"
    UNDEFINED = "undefined"  # decode-only: Python has a single null
    NAN = "NaN"
    INFINITY = "Infinity"
    NEG_INFINITY = "-Infinity"

    # composites
    OBJECT = "Object"
    MAP = "Map"
    ARRAY = "Array"
    TUPLE = "Tuple"
    SET = "Set"
    FROZENSET = "FrozenSet"
    INSTANCE = "Instance"
    CLASS = "Class"

    # callables
    FUNCTION = "Function"
    METHOD = "Method"
    DESCRIPTOR = "Descriptor"  # staticmethod / classmethod / property

    # atoms with identity
    SYMBOL = "Symbol"
    PATTERN = "Pattern"
    EXCEPTION = "Exception"
    DATETIME = "DateTime"

    # buffers
    BYTES = "Bytes"
    BYTEARRAY = "ByteArray"
    MEMORYVIEW = "MemoryView"
    NDARRAY = "NDArray"

    HOST_GLOBAL = "HostGlobal"
    UNSUPPORTED = "Unsupported"

    def __str__(self) -> str:
        return self.value


SPECIAL_TAGS = frozenset(
    {TypeTag.NONE, TypeTag.UNDEFINED, TypeTag.NAN, TypeTag.INFINITY, TypeTag.NEG_INFINITY}
)


def special_tag_of(value: Any) -> Optional[TypeTag]:
    """Return the fixed tag of a special primitive, or None for anything else."""
    if value is None:
        return TypeTag.NONE
    if type(value) is float:
        if math.isnan(value):
            return TypeTag.NAN
        if math.isinf(value):
            return TypeTag.INFINITY if value > 0 else TypeTag.NEG_INFINITY
    return None


def special_value(tag: TypeTag) -> Any:
    if tag is TypeTag.NAN:
        return math.nan
    if tag is TypeTag.INFINITY:
        return math.inf
    if tag is TypeTag.NEG_INFINITY:
        return -math.inf
    return None


class Symbol:
    """
    Opaque identity token built from an optional label.

    Two symbols with the same label are distinct; equality is identity.
    A bare ``object()`` sentinel is treated as an unlabelled token as well.
    """

    __slots__ = ("description",)

    def __init__(self, description: Optional[str] = None) -> None:
        self.description = description

    def __repr__(self) -> str:
        if self.description is None:
            return "Symbol()"
        return f"Symbol({self.description!r})"
