# isopod/hostglobals.py
from __future__ import annotations

from collections import deque
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import importlib
import logging
import threading
import types

from .config import DEFAULT_HOST_ROOTS, Settings, resolve_settings
from .errors import UnresolvedSingletonError
from .typing_defs import is_primitive

__all__ = [
    "HostGlobalIndex",
    "get_host_index",
    "reset_host_index",
]

_log = logging.getLogger("isopod.hostglobals")

Path_ = Tuple[str, ...]

_MISSING = object()


def _is_reference(value: Any) -> bool:
    if isinstance(value, Enum):
        return True
    # immutable containers may be shared by the interpreter (e.g. every `()`)
    return value is not None and not is_primitive(value) and not isinstance(value, (float, bytes, tuple, frozenset))


def _own_names(obj: Any) -> List[str]:
    """Public attribute names of `obj`; private members are not part of a stable path."""
    try:
        names = list(vars(obj))
    except TypeError:
        return []
    return [n for n in names if not n.startswith("_")]


class HostGlobalIndex:
    """
    Bidirectional index of well-known values reachable from a few root modules.

    Forward (`path_of`) answers "is this value a host global, and by which path?";
    the serializer uses it to emit a `HostGlobal` node instead of cloning the value.
    Reverse (`resolve`) turns a path back into the live value in this process.

    A path is `(module_name, attr, attr, ...)`.

    The breadth-first build is lazy (first lookup) and happens once. Indexed
    values are kept alive by the index, so their `id()` cannot be recycled.
    """

    def __init__(self, roots: Iterable[str] = DEFAULT_HOST_ROOTS, *, max_depth: int = 3) -> None:
        self.roots: Tuple[str, ...] = tuple(roots)
        self.max_depth = max_depth
        self._by_id: Dict[int, Tuple[Any, Path_]] = {}
        self._by_path: Dict[Path_, Any] = {}
        self._built = False
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "HostGlobalIndex":
        s = resolve_settings(settings)
        return cls(s.host_roots, max_depth=s.host_max_depth)

    # ------------------------------------------------------------------ build

    def _ensure_built(self) -> None:
        if self._built:
            return
        with self._lock:
            if not self._built:
                self._build()
                self._built = True

    def _add(self, value: Any, path: Path_) -> bool:
        if id(value) in self._by_id:
            return False
        self._by_id[id(value)] = (value, path)
        self._by_path.setdefault(path, value)
        return True

    def _build(self) -> None:
        queue: deque[Tuple[Any, Path_, int]] = deque()
        for name in self.roots:
            try:
                mod = importlib.import_module(name)
            except ImportError as exc:
                _log.info("host index: skipping root %s (%s)", name, exc)
                continue
            queue.append((mod, (name,), 0))

        while queue:
            obj, path, depth = queue.popleft()
            if not self._add(obj, path):
                continue
            # only the configured roots are descended into; other modules are leaves
            if isinstance(obj, types.ModuleType) and depth > 0:
                continue
            if depth >= self.max_depth:
                continue
            for name in _own_names(obj):
                try:
                    child = getattr(obj, name)
                    again = getattr(obj, name)
                except Exception:
                    continue
                if not _is_reference(child):
                    continue
                # bound methods and other per-access objects have no stable identity
                if child is not again:
                    continue
                if id(child) in self._by_id:
                    continue
                queue.append((child, path + (name,), depth + 1))

        _log.debug("host index built: %d value(s) from roots %s", len(self._by_id), ", ".join(self.roots))

    # ---------------------------------------------------------------- lookups

    def __len__(self) -> int:
        self._ensure_built()
        return len(self._by_id)

    def __contains__(self, value: Any) -> bool:
        return self.path_of(value) is not None

    def path_of(self, value: Any) -> Optional[List[str]]:
        """
        Return the path of `value` if it is a host global, else None.

        Besides the breadth-first index, classes, functions and enum members
        defined at module level are recognised through `__module__` and
        `__qualname__` when that path resolves back to the very same object.
        """
        if not _is_reference(value):
            return None
        self._ensure_built()
        hit = self._by_id.get(id(value))
        if hit is not None and hit[0] is value:
            return list(hit[1])
        path = _qualified_path(value)
        if path is not None and _lookup(path, default=_MISSING) is value:
            return list(path)
        return None

    def resolve(self, path: Sequence[str]) -> Any:
        """
        Return the live value for `path`.

        Raises
        ------
        UnresolvedSingletonError
            If the module cannot be imported or an attribute is missing.
        """
        key = tuple(str(p) for p in path)
        if not key:
            raise UnresolvedSingletonError(key, "empty path")
        self._ensure_built()
        if key in self._by_path:
            return self._by_path[key]
        value = _lookup(key, default=_MISSING)
        if value is _MISSING:
            raise UnresolvedSingletonError(key, "not found in this process")
        return value


def _qualified_path(value: Any) -> Optional[Path_]:
    if isinstance(value, Enum):
        cls_path = _qualified_path(type(value))
        return None if cls_path is None else cls_path + (value.name,)
    if not isinstance(value, (type, types.FunctionType, types.BuiltinFunctionType)):
        return None
    module = getattr(value, "__module__", None)
    qualname = getattr(value, "__qualname__", None)
    if not isinstance(module, str) or not isinstance(qualname, str):
        return None
    if "<locals>" in qualname or "<lambda>" in qualname:
        return None
    return (module, *qualname.split("."))


def _lookup(path: Path_, *, default: Any) -> Any:
    """Import `path[0]` and getattr through the remainder (like a pickle global)."""
    try:
        obj = importlib.import_module(path[0])
    except Exception:
        return default
    for name in path[1:]:
        try:
            obj = getattr(obj, name)
        except Exception:
            return default
    return obj


_index: Optional[HostGlobalIndex] = None
_index_lock = threading.Lock()


def get_host_index(settings: Optional[Settings] = None) -> HostGlobalIndex:
    """
    Process-wide index, created on first use from `settings` (or the default
    layered settings). Concurrent first calls build it at most once.
    """
    global _index
    if _index is None:
        with _index_lock:
            if _index is None:
                _index = HostGlobalIndex.from_settings(settings)
    return _index


def reset_host_index() -> None:
    global _index
    with _index_lock:
        _index = None
