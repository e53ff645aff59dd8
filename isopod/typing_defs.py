from __future__ import annotations

import math
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    TypeGuard,
    TypedDict,
    Union,
)

__all__ = [
    "Primitive",
    "Ref",
    "DehydratedNode",
    "ReferenceGraph",
    "is_ref",
    "make_ref",
    "ref_slot",
    "is_graph",
    "is_primitive",
    "node_type",
]


# ----------------------------- Wire shapes -----------------------------------

Primitive = Union[bool, int, float, str]

# A Ref is a one-element list holding a slot index. Lists are never inlined in
# a node, so this shape is unambiguous wherever a Ref may appear.
Ref = List[int]


class DehydratedNode(TypedDict, total=False):
    """
    One slot of a reference graph.
      - type:   wire string of a TypeTag (always present)
      - source: type-specific payload (see registry handlers)
      - keys:   extra named entries, values are Primitive or Ref
    """
    type: str
    source: Any
    keys: Dict[str, Any]


ReferenceGraph = List[DehydratedNode]


# ----------------------------- Type guards -----------------------------------

def is_primitive(value: Any) -> TypeGuard[Primitive]:
    """
    Values carried verbatim: bool, int, str and finite floats.
    None, NaN and the infinities are special values and get their own nodes.
    """
    t = type(value)
    if t is bool or t is int or t is str:
        return True
    if t is float:
        return math.isfinite(value)
    return False


def make_ref(slot: int) -> Ref:
    return [slot]


def is_ref(value: Any) -> TypeGuard[Ref]:
    return (
        isinstance(value, list)
        and len(value) == 1
        and isinstance(value[0], int)
        and not isinstance(value[0], bool)
    )


def ref_slot(ref: Ref) -> int:
    return ref[0]


def is_graph(payload: Any) -> TypeGuard[ReferenceGraph]:
    """
    True if `payload` is the graph form of a serialized value (anything else is
    a primitive passthrough). Individual nodes are validated by graph_utils.
    """
    return isinstance(payload, list)


def node_type(node: Mapping[str, Any]) -> str:
    return str(node.get("type"))
