# isopod/deserialize.py
"""
Reconstructor: rebuild a live object graph from a reference graph.

Three passes over the slots:
  1) shells      every node that can be created on its own
  2) dependents  nodes that need live values to be created (tuples, frozensets,
                 buffer views, classes, bound methods, anything with a
                 `__class__` entry), in dependency order, together with every
                 node's `keys`; tuples and frozensets wait for the attributes
                 of their elements
  3) contents    fill containers, highest slot first; sets and maps last
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from .config import Settings, resolve_settings
from .errors import DecodeError, IsopodError, ReconstructionError, UnresolvedSingletonError
from .graph_utils import ensure_valid_graph
from .hostglobals import HostGlobalIndex, get_host_index
from .registry import Handler, construction_deps, handler_for_tag, set_attribute, settle_deps
from .sources import ExecCompiler, SourceCompiler
from .tags import SPECIAL_TAGS, TypeTag, special_value
from .typing_defs import ReferenceGraph, is_graph, is_ref, ref_slot

__all__ = ["Reconstructor", "deserialize"]

_log = logging.getLogger("isopod.deserialize")

_UNSET = object()

_PENDING, _VISITING, _DONE, _POSTPONED = 0, 1, 2, 3

# dependent-pass task kinds
_NEW, _KEYS = 0, 1

_NO_CONTENT = SPECIAL_TAGS | {TypeTag.HOST_GLOBAL, TypeTag.UNSUPPORTED}
_HASHED_AT_CONSTRUCTION = frozenset({TypeTag.TUPLE, TypeTag.FROZENSET})
_HASHED_CONTENT = frozenset({TypeTag.SET, TypeTag.MAP})


class Reconstructor:
    """Single-use; `build()` returns the slot-0 value."""

    def __init__(
        self,
        graph: ReferenceGraph,
        *,
        index: Optional[HostGlobalIndex] = None,
        compiler: Optional[SourceCompiler] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.graph = graph
        self.settings = resolve_settings(settings)
        self._index = index
        if compiler is None and self.settings.compile_callables:
            compiler = ExecCompiler()
        self.compiler = compiler
        self.values: List[Any] = [_UNSET] * len(graph)
        self.tags: List[TypeTag] = [TypeTag(node["type"]) for node in graph]

    @property
    def index(self) -> HostGlobalIndex:
        if self._index is None:
            self._index = get_host_index(self.settings)
        return self._index

    # ------------------------------------------------------ handler context

    def resolve(self, item: Any) -> Any:
        """Primitive as-is, Ref → the live value of its slot."""
        if not is_ref(item):
            return item
        value = self.values[ref_slot(item)]
        if value is _UNSET:
            raise DecodeError(f"slot {ref_slot(item)} used before it was constructed")
        return value

    def compile(self, text: str, module: Optional[str]) -> Callable[..., Any]:
        if self.compiler is None:
            raise ReconstructionError("function nodes present but callable compilation is disabled")
        return self.compiler.compile(text, module)

    # ----------------------------------------------------------------- nodes

    def _class_slot(self, slot: int) -> Optional[int]:
        keys = self.graph[slot].get("keys") or {}
        ref = keys.get("__class__")
        return ref_slot(ref) if ref is not None else None

    def _host_global(self, slot: int) -> Any:
        path = self.graph[slot].get("source") or []
        try:
            return self.index.resolve(path)
        except UnresolvedSingletonError:
            if self.settings.deserialize_on_unresolved == "raise":
                raise
            _log.warning("host global %s not found; decoding as None (slot %d)", ".".join(map(str, path)), slot)
            return None

    def _unsupported(self, slot: int) -> Any:
        name = self.graph[slot].get("source")
        if self.settings.deserialize_on_unsupported == "raise":
            raise ReconstructionError(f"graph holds an unsupported value of type {name}", slot=slot, type=TypeTag.UNSUPPORTED.value)
        _log.warning("skipping unsupported value of type %s (slot %d)", name, slot)
        return None

    def _handler(self, slot: int) -> Handler:
        handler = handler_for_tag(self.tags[slot])
        if handler is None:
            raise DecodeError(f"no handler for node type {self.tags[slot].value!r} (slot {slot})")
        return handler

    def _construct(self, slot: int, handler: Handler) -> Any:
        node = self.graph[slot]
        cls_slot = self._class_slot(slot)
        cls = self.values[cls_slot] if cls_slot is not None else None
        if cls is not None and not isinstance(cls, type):
            raise ReconstructionError(f"__class__ entry is not a class ({type(cls).__name__})", slot=slot, type=node["type"])
        try:
            return handler.construct(node.get("source"), cls, self)
        except IsopodError:
            raise
        except Exception as exc:
            raise ReconstructionError(f"cannot construct value: {exc!r}", slot=slot, type=node["type"]) from exc

    # ---------------------------------------------------------------- passes

    def _shell_pass(self) -> List[int]:
        deferred: List[int] = []
        for slot, tag in enumerate(self.tags):
            if tag in SPECIAL_TAGS:
                self.values[slot] = special_value(tag)
            elif tag is TypeTag.HOST_GLOBAL:
                self.values[slot] = self._host_global(slot)
            elif tag is TypeTag.UNSUPPORTED:
                self.values[slot] = self._unsupported(slot)
            else:
                handler = self._handler(slot)
                if handler.deferred or self._class_slot(slot) is not None:
                    deferred.append(slot)
                else:
                    self.values[slot] = self._construct(slot, handler)
        return deferred

    def _entries(self, slot: int) -> Dict[str, Any]:
        keys = self.graph[slot].get("keys") or {}
        return {name: item for name, item in keys.items() if name != "__class__"}

    def _apply_keys(self, slot: int) -> None:
        tag = self.tags[slot]
        value = self.values[slot]
        handler = self._handler(slot)
        try:
            for name, item in self._entries(slot).items():
                if tag is TypeTag.OBJECT:
                    value[name] = self.resolve(item)
                else:
                    set_attribute(value, name, self.resolve(item))
            if handler.settle is not None:
                handler.settle(value, self.graph[slot].get("source"), self)
        except IsopodError:
            raise
        except Exception as exc:
            raise ReconstructionError(f"cannot fill value: {exc!r}", slot=slot, type=tag.value) from exc

    def _task_deps(self, task: Tuple[int, int]) -> Tuple[List[Tuple[int, int]], List[Tuple[int, int]]]:
        """(hard, soft) prerequisites of one dependent-pass task."""
        kind, slot = task
        if kind == _NEW:
            hard = [(_NEW, d) for d in construction_deps(self.tags[slot], self.graph[slot].get("source"))]
            cls_slot = self._class_slot(slot)
            if cls_slot is not None:
                hard.append((_NEW, cls_slot))
            soft: List[Tuple[int, int]] = []
            if self.tags[slot] in _HASHED_AT_CONSTRUCTION:
                # elements get their attributes before they are hashed
                soft = [(_KEYS, d) for _, d in hard]
            return hard, soft
        refs = [ref_slot(item) for item in self._entries(slot).values() if is_ref(item)]
        refs += settle_deps(self.tags[slot], self.graph[slot].get("source"))
        # attribute values and the class may take part in this value's hash
        soft = [(_KEYS, r) for r in refs]
        cls_slot = self._class_slot(slot)
        if cls_slot is not None:
            soft.append((_KEYS, cls_slot))
        return [(_NEW, slot)] + [(_NEW, r) for r in refs], soft

    def _run_task(self, task: Tuple[int, int]) -> None:
        kind, slot = task
        if kind == _NEW:
            self.values[slot] = self._construct(slot, self._handler(slot))
        else:
            self._apply_keys(slot)

    def _break_cycle(
        self,
        stack: List[Tuple[int, int]],
        state: Dict[Tuple[int, int], int],
        target: Tuple[int, int],
        postponed: List[int],
    ) -> None:
        """
        `stack[-1]` needs `target`, which is still in progress lower in the
        stack. Postpone the innermost keys task on that path and unwind to it;
        with none on the path the cycle is real.
        """
        low = max(i for i, t in enumerate(stack) if t == target)
        for i in range(len(stack) - 1, low, -1):
            task = stack[i]
            if task[0] == _KEYS and state[task] == _VISITING:
                for above in stack[i + 1 :]:
                    if state[above] == _VISITING:
                        state[above] = _PENDING
                state[task] = _POSTPONED
                postponed.append(task[1])
                del stack[i:]
                return
        cur = stack[-1][1]
        raise DecodeError(
            f"construction cycle between slots {target[1]} and {cur} "
            f"({self.tags[target[1]].value} / {self.tags[cur].value})"
        )

    def _dependent_pass(self, deferred: List[int]) -> None:
        """
        Construct deferred nodes and apply every node's `keys`, each task
        after its prerequisites. Tuples and frozensets are built after their
        elements have their attributes; keys tasks caught in a cycle are
        applied at the end of the pass instead.
        """
        state: Dict[Tuple[int, int], int] = {(_NEW, s): _PENDING for s in deferred}
        keyed = [
            (_KEYS, s)
            for s, tag in enumerate(self.tags)
            if tag not in _NO_CONTENT and self.graph[s].get("keys")
        ]
        state.update((t, _PENDING) for t in keyed)
        postponed: List[int] = []

        for start in [(_NEW, s) for s in deferred] + keyed:
            stack = [start]
            while stack:
                cur = stack[-1]
                if state[cur] in (_DONE, _POSTPONED):
                    stack.pop()
                    continue
                state[cur] = _VISITING
                hard, soft = self._task_deps(cur)
                busy = next((d for d in hard if state.get(d, _DONE) == _VISITING), None)
                if busy is not None:
                    self._break_cycle(stack, state, busy, postponed)
                    continue
                missing = [d for d in hard + soft if state.get(d, _DONE) == _PENDING]
                if missing:
                    stack.extend(missing)
                    continue
                self._run_task(cur)
                state[cur] = _DONE
                stack.pop()

        for slot in sorted(postponed, reverse=True):
            self._apply_keys(slot)

    def _content_pass(self) -> None:
        # sets and maps hash their members, so they go last
        order = [s for s in range(len(self.graph) - 1, -1, -1) if self.tags[s] not in _NO_CONTENT]
        order.sort(key=lambda s: self.tags[s] in _HASHED_CONTENT)
        for slot in order:
            tag = self.tags[slot]
            node = self.graph[slot]
            try:
                self._handler(slot).hydrate(self.values[slot], node.get("source"), self)
            except IsopodError:
                raise
            except Exception as exc:
                raise ReconstructionError(f"cannot fill value: {exc!r}", slot=slot, type=tag.value) from exc

    def build(self) -> Any:
        deferred = self._shell_pass()
        self._dependent_pass(deferred)
        self._content_pass()
        _log.debug("deserialized %d node(s) (%d deferred)", len(self.graph), len(deferred))
        return self.values[0]


def deserialize(
    graph: Any,
    *,
    index: Optional[HostGlobalIndex] = None,
    compiler: Optional[SourceCompiler] = None,
    settings: Optional[Settings] = None,
) -> Any:
    """
    Rebuild the value described by `graph`.

    Anything that is not a list is a primitive and is returned unchanged.

    Raises
    ------
    OrphanRefError
        If a Ref points outside the graph.
    DecodeError
        For malformed graphs and construction cycles.
    UnresolvedSingletonError
        If a host global is missing here and `deserialize.on_unresolved` is "raise".
    ReconstructionError
        If a node cannot be turned back into a value (compilation failure,
        unsupported node under the "raise" policy...).
    """
    if not is_graph(graph):
        return graph
    ensure_valid_graph(graph)
    return Reconstructor(graph, index=index, compiler=compiler, settings=settings).build()
