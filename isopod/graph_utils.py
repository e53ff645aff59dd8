# isopod/graph_utils.py
from __future__ import annotations

from typing import Any, Iterator, List, Tuple

from .errors import DecodeError, OrphanRefError
from .registry import ref_positions
from .tags import TypeTag
from .typing_defs import is_ref, ref_slot

__all__ = [
    "iter_refs_with_paths",
    "find_orphan_refs",
    "validate_graph",
    "ensure_valid_graph",
]

_TAGS = {t.value: t for t in TypeTag}


def _node_tag(node: Any) -> TypeTag | None:
    if not isinstance(node, dict):
        return None
    return _TAGS.get(node.get("type"))


def iter_refs_with_paths(graph: List[Any]) -> Iterator[Tuple[str, int]]:
    """
    Yield (json_path, slot) for every Ref in `graph`, in `source` positions
    and in `keys` values, e.g. ("$[0].keys.b", 1) or ("$[2].source[0][1]", 5).

    Nodes with an unknown type or a malformed source are skipped here;
    `validate_graph` reports them.
    """
    for i, node in enumerate(graph):
        tag = _node_tag(node)
        if tag is None:
            continue
        try:
            for suffix, v in ref_positions(tag, node.get("source")):
                if is_ref(v):
                    yield (f"$[{i}].source{suffix}", ref_slot(v))
        except (TypeError, KeyError, ValueError):
            pass
        keys = node.get("keys")
        if isinstance(keys, dict):
            for k, v in keys.items():
                if is_ref(v):
                    yield (f"$[{i}].keys.{k}", ref_slot(v))


def find_orphan_refs(graph: List[Any]) -> list[tuple[str, int]]:
    """
    Return a list of (json_path, slot) for every Ref pointing outside `graph`.

    Examples
    --------
    For `[{"type": "Object", "keys": {"b": [7]}}]` the function returns
    `[("$[0].keys.b", 7)]`.
    """
    size = len(graph)
    return [(p, slot) for (p, slot) in iter_refs_with_paths(graph) if not 0 <= slot < size]


def validate_graph(graph: Any) -> List[str]:
    """
    Structural check of an incoming reference graph. Returns one text message
    per problem (empty list when the graph is usable):
      - empty-graph / not-a-graph
      - bad-node:     a slot that is not a mapping
      - unknown-type: a `type` outside the closed tag set
      - bad-keys:     `keys` present but not a mapping
      - bad-class:    a `__class__` entry that is not a Ref
      - bad-source:   a source whose shape does not fit its tag
      - orphan-ref:   a Ref outside the node sequence
    """
    if not isinstance(graph, list):
        return ["not-a-graph: payload is not a list"]
    if not graph:
        return ["empty-graph: no root node"]

    msgs: List[str] = []
    for i, node in enumerate(graph):
        if not isinstance(node, dict):
            msgs.append(f"bad-node: path=$[{i}] ({type(node).__name__})")
            continue
        tag = _node_tag(node)
        if tag is None:
            msgs.append(f"unknown-type: path=$[{i}].type value={node.get('type')!r}")
            continue
        keys = node.get("keys", {})
        if not isinstance(keys, dict):
            msgs.append(f"bad-keys: path=$[{i}].keys ({type(keys).__name__})")
        elif "__class__" in keys and not is_ref(keys["__class__"]):
            msgs.append(f"bad-class: path=$[{i}].keys.__class__ value={keys['__class__']!r}")
        try:
            for _ in ref_positions(tag, node.get("source")):
                pass
        except (TypeError, KeyError, ValueError) as exc:
            msgs.append(f"bad-source: path=$[{i}].source ({exc!r})")

    for (p, slot) in find_orphan_refs(graph):
        msgs.append(f"orphan-ref: path={p} ref={slot}")
    return msgs


def ensure_valid_graph(graph: Any) -> None:
    """
    Raise if `graph` cannot be reconstructed.

    Raises
    ------
    OrphanRefError
        If some Refs point outside the graph (all offending paths are listed).
    DecodeError
        For any other structural problem reported by `validate_graph`.
    """
    msgs = validate_graph(graph)
    if not msgs:
        return
    orphans = find_orphan_refs(graph) if isinstance(graph, list) else []
    if orphans:
        raise OrphanRefError(orphans=orphans, size=len(graph))
    raise DecodeError("invalid reference graph: " + "; ".join(msgs))
