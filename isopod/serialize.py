# isopod/serialize.py
"""
ReferenceGraphBuilder: flatten an arbitrary object graph into a list of nodes.

- every non-primitive value gets exactly one slot (identity-keyed cache),
- a slot is reserved before any child is visited, so cycles and aliases come
  back as Refs `[slot]`,
- an explicit work stack replaces recursion: depth is bounded by memory only.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
import logging

from .config import Settings, resolve_settings
from .errors import SerializeError, UnsupportedTypeError
from .hostglobals import HostGlobalIndex, get_host_index
from .registry import classify, encode_bytes, handler_for_tag, needs_class_entry
from .tags import SPECIAL_TAGS, TypeTag
from .typing_defs import DehydratedNode, ReferenceGraph, is_primitive, make_ref

__all__ = ["ReferenceGraphBuilder", "serialize"]

_log = logging.getLogger("isopod.serialize")


def _type_name(value: Any) -> str:
    t = type(value)
    return f"{t.__module__}.{getattr(t, '__qualname__', t.__name__)}"


class ReferenceGraphBuilder:
    """
    Single-use builder; `build(root)` returns the root's primitive value or
    the node list.
    """

    def __init__(
        self,
        *,
        index: Optional[HostGlobalIndex] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = resolve_settings(settings)
        self.index = index if index is not None else get_host_index(self.settings)
        self.nodes: ReferenceGraph = []
        self._slots: Dict[int, int] = {}
        self._specials: Dict[TypeTag, int] = {}
        self._buffers: Dict[int, int] = {}
        # keeps every cached value alive so its id() cannot be recycled mid-call
        self._keep: List[Any] = []
        self._pending: List[Tuple[int, Any, TypeTag]] = []

    # ----------------------------------------------------------------- slots

    def _reserve(self, node: DehydratedNode) -> int:
        self.nodes.append(node)
        return len(self.nodes) - 1

    def walk(self, value: Any) -> Any:
        """Dehydrate one value: primitive as-is, else a Ref to its (maybe new) slot."""
        if is_primitive(value):
            return value

        cached = self._slots.get(id(value))
        if cached is not None:
            return make_ref(cached)

        tag = classify(value, self.index)

        if tag in SPECIAL_TAGS:
            slot = self._specials.get(tag)
            if slot is None:
                slot = self._specials[tag] = self._reserve({"type": tag.value})
            return make_ref(slot)

        if tag is TypeTag.UNSUPPORTED and self.settings.serialize_on_unsupported == "raise":
            raise UnsupportedTypeError(type(value))

        slot = self._reserve({"type": tag.value})
        self._slots[id(value)] = slot
        self._keep.append(value)

        if tag is TypeTag.HOST_GLOBAL:
            self.nodes[slot]["source"] = self.index.path_of(value)
        elif tag is TypeTag.UNSUPPORTED:
            _log.info("tagging unsupported value of type %s (slot %d)", _type_name(value), slot)
            self.nodes[slot]["source"] = _type_name(value)
        else:
            self._pending.append((slot, value, tag))
        return make_ref(slot)

    def synthetic_buffer(self, owner: Any, data: bytes) -> Any:
        """
        Ref to a `ByteArray` node standing for memory owned by `owner` (an
        array that allocated its own block). One node per owner, so every
        view on that block shares it.
        """
        slot = self._buffers.get(id(owner))
        if slot is None:
            slot = self._reserve({"type": TypeTag.BYTEARRAY.value, "source": encode_bytes(data)})
            self._buffers[id(owner)] = slot
            self._keep.append(owner)
        return make_ref(slot)

    # ------------------------------------------------------------- population

    def _populate(self, slot: int, value: Any, tag: TypeTag) -> None:
        handler = handler_for_tag(tag)
        if handler is None:
            raise SerializeError(f"no handler for node type {tag.value!r} (slot {slot})")
        node = self.nodes[slot]

        if handler.extract is not None:
            source = handler.extract(value, self)
            if source is not None:
                node["source"] = source

        keys: Dict[str, Any] = {}
        if needs_class_entry(handler, value):
            keys["__class__"] = self.walk(type(value))
        for name, attr in handler.attributes(value).items():
            if not isinstance(name, str) or name == "__class__":
                continue
            keys[name] = self.walk(attr)
        if keys:
            node["keys"] = keys

    def build(self, root: Any) -> Any:
        if is_primitive(root):
            return root
        self.walk(root)
        while self._pending:
            slot, value, tag = self._pending.pop()
            self._populate(slot, value, tag)
        _log.debug("serialized %s into %d node(s)", _type_name(root), len(self.nodes))
        return self.nodes


def serialize(
    root: Any,
    *,
    index: Optional[HostGlobalIndex] = None,
    settings: Optional[Settings] = None,
) -> Any:
    """
    Convert `root` into its reference-graph form.

    Primitives (bool, int, str, finite float) are returned unchanged; anything
    else yields a list of nodes whose slot 0 is `root`.

    Raises
    ------
    UnsupportedTypeError
        If a value has no handler and `serialize.on_unsupported` is "raise".
    """
    return ReferenceGraphBuilder(index=index, settings=settings).build(root)
