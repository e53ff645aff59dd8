# isopod/registry.py
"""
Type classification and the per-kind handler table.

Every supported kind is one `Handler` in `HANDLERS`:

- ``match(value)``          does this handler own `value`? (first match wins)
- ``extract(value, d)``     build the node `source`; nested values go through `d.walk`
- ``attributes(value)``     named entries for `keys` (own attributes by default)
- ``construct(source, cls, ctx)``  empty/placeholder instance (`cls` is the resolved
                            `__class__` entry, or None for the canonical type)
- ``hydrate(value, source, ctx)``  fill contents once every slot has a value
- ``positions(source)``     (json_path, value) pairs where `source` may hold a Ref
- ``needs(source)``         the subset of positions `construct` reads (default: all)
- ``settle(value, source, ctx)``  last step once `keys` are applied (classes)

Handlers flagged ``deferred`` need live values at construction time (tuple
elements, a view's buffer, a class's bases...) and are built by the
Reconstructor's dependency pass instead of the shell pass.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Protocol,
    Tuple,
)
import base64
import dataclasses
import inspect
import re
import traceback
import types

import numpy as np

from .errors import ReconstructionError, RemoteTraceback
from .hostglobals import HostGlobalIndex
from .sources import function_source
from .tags import Symbol, TypeTag, special_tag_of
from .typing_defs import is_ref, ref_slot

__all__ = [
    "Handler",
    "HANDLERS",
    "classify",
    "handler_for_tag",
    "object_attributes",
    "ref_positions",
    "construction_deps",
    "settle_deps",
    "needs_class_entry",
    "set_attribute",
    "encode_bytes",
]


class Dehydrator(Protocol):
    def walk(self, value: Any) -> Any: ...

    def synthetic_buffer(self, owner: Any, data: bytes) -> Any: ...


class DecodeContext(Protocol):
    def resolve(self, item: Any) -> Any: ...

    def compile(self, text: str, module: Optional[str]) -> Callable[..., Any]: ...


Positions = Iterator[Tuple[str, Any]]


def _no_positions(source: Any) -> Positions:
    return iter(())


def _no_attributes(value: Any) -> Dict[str, Any]:
    return {}


def _no_hydrate(value: Any, source: Any, ctx: DecodeContext) -> None:
    return None


# ------------------------------- attributes -----------------------------------

def _slot_names(cls: type) -> List[str]:
    names: List[str] = []
    for klass in cls.__mro__:
        slots = klass.__dict__.get("__slots__", ())
        if isinstance(slots, str):
            slots = (slots,)
        for name in slots:
            if name not in ("__dict__", "__weakref__") and name not in names:
                names.append(name)
    return names


def object_attributes(obj: Any) -> Dict[str, Any]:
    """Own attributes of `obj`: its `__dict__` plus any set `__slots__` members."""
    attrs: Dict[str, Any] = {}
    d = getattr(obj, "__dict__", None)
    if isinstance(d, dict):
        attrs.update(d)
    for name in _slot_names(type(obj)):
        if name in attrs:
            continue
        try:
            attrs[name] = getattr(obj, name)
        except AttributeError:
            pass
    return attrs


_CLASS_NAMESPACE_SKIP = frozenset({"__dict__", "__weakref__", "__slots__"})


def _class_attributes(cls: type) -> Dict[str, Any]:
    slots = cls.__dict__.get("__slots__", ())
    if isinstance(slots, str):
        slots = (slots,)
    # member descriptors are recreated by __slots__ itself
    skip = _CLASS_NAMESPACE_SKIP.union(slots)
    attrs = {k: v for k, v in vars(cls).items() if k not in skip}
    if _is_own_dataclass(cls):
        attrs = {k: v for k, v in attrs.items() if k not in _DATACLASS_MEMBERS and not _is_generated(k, v)}
    attrs["__qualname__"] = cls.__qualname__
    return attrs


def set_attribute(obj: Any, name: str, value: Any) -> None:
    """`object.__setattr__` first (bypasses custom __setattr__), then plain setattr."""
    try:
        object.__setattr__(obj, name, value)
    except (AttributeError, TypeError):
        setattr(obj, name, value)


# ------------------------------- containers ----------------------------------

def _extract_items(value: Any, d: Dehydrator) -> List[Any]:
    return [d.walk(x) for x in value]


def _item_positions(source: Any) -> Positions:
    for i, x in enumerate(source):
        yield f"[{i}]", x


def _new(cls: Optional[type], default: type) -> Any:
    klass = cls if cls is not None else default
    try:
        return klass.__new__(klass)
    except Exception as exc:
        raise ReconstructionError(f"cannot create an empty {klass.__qualname__}: {exc}") from exc


def _is_plain_object(value: Any) -> bool:
    return type(value) is dict and "__class__" not in value and all(type(k) is str for k in value)


def _hydrate_list(value: Any, source: Any, ctx: DecodeContext) -> None:
    for x in source:
        value.append(ctx.resolve(x))


def _hydrate_set(value: Any, source: Any, ctx: DecodeContext) -> None:
    for x in source:
        value.add(ctx.resolve(x))


def _extract_pairs(value: Any, d: Dehydrator) -> List[List[Any]]:
    return [[d.walk(k), d.walk(v)] for k, v in value.items()]


def _pair_positions(source: Any) -> Positions:
    for i, (k, v) in enumerate(source):
        yield f"[{i}][0]", k
        yield f"[{i}][1]", v


def _hydrate_map(value: Any, source: Any, ctx: DecodeContext) -> None:
    for k, v in source:
        value[ctx.resolve(k)] = ctx.resolve(v)


def _construct_tuple(source: Any, cls: Optional[type], ctx: DecodeContext) -> Any:
    items = [ctx.resolve(x) for x in source]
    return tuple.__new__(cls or tuple, items)


def _construct_frozenset(source: Any, cls: Optional[type], ctx: DecodeContext) -> Any:
    items = [ctx.resolve(x) for x in source]
    return frozenset.__new__(cls or frozenset, items)


# -------------------------------- callables ----------------------------------

def _extract_function(fn: Any, d: Dehydrator) -> Dict[str, Any]:
    return {"text": function_source(fn), "module": fn.__module__}


def _construct_function(source: Any, cls: Optional[type], ctx: DecodeContext) -> Any:
    text = source.get("text")
    if not text:
        raise ReconstructionError("function source text was not available at serialization time")
    return ctx.compile(text, source.get("module"))


def _extract_method(m: Any, d: Dehydrator) -> Dict[str, Any]:
    return {"function": d.walk(m.__func__), "self": d.walk(m.__self__)}


def _method_positions(source: Any) -> Positions:
    yield ".function", source["function"]
    yield ".self", source["self"]


def _construct_method(source: Any, cls: Optional[type], ctx: DecodeContext) -> Any:
    return types.MethodType(ctx.resolve(source["function"]), ctx.resolve(source["self"]))


def _extract_descriptor(v: Any, d: Dehydrator) -> List[Any]:
    if isinstance(v, property):
        return [d.walk(v.fget), d.walk(v.fset), d.walk(v.fdel), d.walk(v.__doc__)]
    return [d.walk(v.__func__)]


def _construct_descriptor(source: Any, cls: Optional[type], ctx: DecodeContext) -> Any:
    if cls is None:
        raise ReconstructionError("descriptor node without a __class__ entry")
    return cls(*[ctx.resolve(x) for x in source])


# ------------------------------- dataclasses ---------------------------------

_DATACLASS_FLAGS = ("init", "repr", "eq", "order", "unsafe_hash", "frozen")

# written by the dataclass decorator, which runs again on decode
_DATACLASS_MEMBERS = frozenset(
    {
        "__dataclass_fields__",
        "__dataclass_params__",
        "__match_args__",
        "__annotations__",
        "__annotate__",
        "__annotate_func__",
        "__annotations_cache__",
    }
)


def _is_own_dataclass(cls: type) -> bool:
    return "__dataclass_fields__" in cls.__dict__


def _is_generated(name: str, value: Any) -> bool:
    if name == "__hash__" and value is None:
        return True
    return isinstance(value, types.FunctionType) and function_source(value) is None


def _annotation(value: Any) -> Any:
    if isinstance(value, (type, str, dataclasses.InitVar)):
        return value
    return repr(value)


def _extract_dataclass(cls: type, d: Dehydrator) -> Dict[str, Any]:
    """Decorator arguments, own field annotations and default factories of `cls`."""
    params = cls.__dataclass_params__
    own = inspect.get_annotations(cls)
    fields = [f for f in dataclasses.fields(cls) if f.name in own]
    flags = {name: getattr(params, name) for name in _DATACLASS_FLAGS}
    flags["match_args"] = "__match_args__" in cls.__dict__
    flags["kw_only"] = bool(fields) and all(f.kw_only is True for f in fields)
    factories: List[List[Any]] = []
    # a factory default would replace a slot's member descriptor
    if "__slots__" not in cls.__dict__:
        factories = [
            [f.name, d.walk(f.default_factory)]
            for f in fields
            if f.default_factory is not dataclasses.MISSING
        ]
    return {
        "flags": flags,
        "fields": [[name, d.walk(_annotation(ann))] for name, ann in own.items()],
        "factories": factories,
    }


def _settle_dataclass(cls: type, spec: Dict[str, Any], ctx: DecodeContext) -> None:
    cls.__annotations__ = {name: ctx.resolve(ann) for name, ann in spec["fields"]}
    for name, factory in spec["factories"]:
        setattr(cls, name, dataclasses.field(default_factory=ctx.resolve(factory)))
    dataclasses.dataclass(cls, **spec["flags"])


# --------------------------------- classes -----------------------------------

def _is_dynamic_class(value: Any) -> bool:
    return isinstance(value, type) and value.__module__ != "builtins"


def _extract_class(cls: type, d: Dehydrator) -> Dict[str, Any]:
    slots = cls.__dict__.get("__slots__")
    if isinstance(slots, str):
        slots = [slots]
    source: Dict[str, Any] = {
        "name": cls.__name__,
        "bases": [d.walk(b) for b in cls.__bases__],
        "slots": list(slots) if slots is not None else None,
    }
    if _is_own_dataclass(cls):
        source["dataclass"] = _extract_dataclass(cls, d)
    return source


def _base_positions(source: Any) -> Positions:
    for i, b in enumerate(source["bases"]):
        yield f".bases[{i}]", b


def _class_positions(source: Any) -> Positions:
    yield from _base_positions(source)
    spec = source.get("dataclass")
    if spec is not None:
        for i, (_, ann) in enumerate(spec["fields"]):
            yield f".dataclass.fields[{i}][1]", ann
        for i, (_, factory) in enumerate(spec["factories"]):
            yield f".dataclass.factories[{i}][1]", factory


def _construct_class(source: Any, cls: Optional[type], ctx: DecodeContext) -> Any:
    meta = cls or type
    bases = tuple(ctx.resolve(b) for b in source["bases"])
    namespace: Dict[str, Any] = {}
    if source.get("slots") is not None:
        namespace["__slots__"] = tuple(source["slots"])
    try:
        return meta(source["name"], bases, namespace)
    except Exception as exc:
        raise ReconstructionError(f"cannot recreate class {source['name']!r}: {exc}") from exc


def _settle_class(cls: type, source: Any, ctx: DecodeContext) -> None:
    spec = source.get("dataclass")
    if spec is not None:
        _settle_dataclass(cls, spec, ctx)


# ---------------------------------- atoms ------------------------------------

def _extract_symbol(v: Any, d: Dehydrator) -> Optional[str]:
    return v.description if isinstance(v, Symbol) else None


def _construct_symbol(source: Any, cls: Optional[type], ctx: DecodeContext) -> Any:
    if cls is object:
        return object()
    return Symbol(source)


def _extract_pattern(p: re.Pattern, d: Dehydrator) -> Dict[str, Any]:
    binary = isinstance(p.pattern, bytes)
    return {
        "pattern": p.pattern.decode("latin-1") if binary else p.pattern,
        "flags": p.flags,
        "binary": binary,
    }


def _construct_pattern(source: Any, cls: Optional[type], ctx: DecodeContext) -> Any:
    pattern = source["pattern"]
    if source.get("binary"):
        pattern = pattern.encode("latin-1")
    return re.compile(pattern, source["flags"])


def _extract_exception(exc: BaseException, d: Dehydrator) -> Dict[str, Any]:
    tb = None
    if exc.__traceback__ is not None:
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return {
        "message": str(exc),
        "args": [d.walk(a) for a in exc.args],
        "traceback": tb,
    }


def _exception_positions(source: Any) -> Positions:
    for i, a in enumerate(source["args"]):
        yield f".args[{i}]", a


def _construct_exception(source: Any, cls: Optional[type], ctx: DecodeContext) -> Any:
    return _new(cls, Exception)


def _hydrate_exception(value: Any, source: Any, ctx: DecodeContext) -> None:
    value.args = tuple(ctx.resolve(a) for a in source["args"])
    tb = source.get("traceback")
    if tb and value.__cause__ is None:
        value.__cause__ = RemoteTraceback(tb)


_EPOCH_NAIVE = datetime(1970, 1, 1)
_EPOCH_UTC = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)


def _extract_datetime(value: datetime, d: Dehydrator) -> Dict[str, Any]:
    offset = value.utcoffset()
    if offset is None:
        return {"epoch": (value - _EPOCH_NAIVE) // _MICROSECOND, "utcoffset": None}
    return {"epoch": (value - _EPOCH_UTC) // _MICROSECOND, "utcoffset": offset.total_seconds()}


def _construct_datetime(source: Any, cls: Optional[type], ctx: DecodeContext) -> Any:
    delta = timedelta(microseconds=source["epoch"])
    offset = source.get("utcoffset")
    if offset is None:
        return _EPOCH_NAIVE + delta
    return (_EPOCH_UTC + delta).astimezone(timezone(timedelta(seconds=offset)))


# --------------------------------- buffers -----------------------------------

def encode_bytes(data: Any) -> str:
    """Raw bytes as base64 text."""
    return base64.b64encode(bytes(data)).decode("ascii")


def _decode_bytes(text: str) -> bytes:
    return base64.b64decode(text, validate=True)


def _extract_bytes(value: Any, d: Dehydrator) -> str:
    return encode_bytes(value)


def _address(buf: Any) -> int:
    if isinstance(buf, np.ndarray):
        return buf.__array_interface__["data"][0]
    return np.frombuffer(buf, dtype=np.uint8).__array_interface__["data"][0]


def _byte_offset(view: Any, raw: Any) -> int:
    if len(raw) == 0 or view.nbytes == 0:
        return 0
    return _address(view) - _address(raw)


def _is_buffer_view(value: Any) -> bool:
    return (
        isinstance(value, memoryview)
        and isinstance(value.obj, (bytes, bytearray))
        and value.c_contiguous
    )


def _extract_memoryview(mv: memoryview, d: Dehydrator) -> Dict[str, Any]:
    raw = mv.obj
    return {
        "buffer": d.walk(raw),
        "byteOffset": _byte_offset(mv, raw),
        "length": mv.nbytes,
        "format": mv.format,
        "shape": d.walk(tuple(mv.shape or ())),
        "readonly": mv.readonly,
    }


def _view_positions(source: Any) -> Positions:
    yield ".buffer", source["buffer"]
    yield ".shape", source["shape"]


def _array_positions(source: Any) -> Positions:
    yield from _view_positions(source)
    yield ".strides", source["strides"]


def _construct_memoryview(source: Any, cls: Optional[type], ctx: DecodeContext) -> Any:
    raw = ctx.resolve(source["buffer"])
    start = source["byteOffset"]
    view = memoryview(raw)[start : start + source["length"]]
    fmt = source["format"]
    shape = list(ctx.resolve(source["shape"]))
    if fmt != "B" or shape != [source["length"]]:
        view = view.cast(fmt, shape)
    if source.get("readonly") and not view.readonly:
        view = view.toreadonly()
    return view


def _is_numeric_ndarray(value: Any) -> bool:
    return isinstance(value, np.ndarray) and not value.dtype.hasobject


def _extract_ndarray(arr: np.ndarray, d: Dehydrator) -> Dict[str, Any]:
    # read through the canonical ndarray lens: subclasses may override attributes
    plain = arr.view(np.ndarray)
    owner = plain
    while isinstance(owner.base, np.ndarray):
        owner = owner.base
    raw = owner.base
    if isinstance(raw, memoryview) and isinstance(raw.obj, (bytes, bytearray)):
        raw = raw.obj

    if isinstance(raw, (bytes, bytearray)):
        buffer = d.walk(raw)
        offset = _byte_offset(plain, raw)
        strides = plain.strides
    elif raw is None:
        # the owner allocated its own block: ship the block, keyed by the owner
        buffer = d.synthetic_buffer(owner, owner.tobytes(order="A"))
        offset = _address(plain) - _address(owner) if plain.nbytes else 0
        strides = plain.strides
    else:
        # foreign memory (mmap, ctypes...): a private compact copy
        compact = np.array(plain, order="C", copy=True)
        buffer = d.synthetic_buffer(arr, compact.tobytes())
        offset = 0
        strides = compact.strides

    dtype: Any = plain.dtype.descr if plain.dtype.fields else plain.dtype.str
    return {
        "buffer": buffer,
        "byteOffset": offset,
        "length": int(plain.size),
        "dtype": dtype,
        "shape": d.walk(tuple(plain.shape)),
        "strides": d.walk(tuple(strides)),
    }


def _construct_ndarray(source: Any, cls: Optional[type], ctx: DecodeContext) -> Any:
    raw = ctx.resolve(source["buffer"])
    dtype = source["dtype"]
    if isinstance(dtype, list):
        dtype = np.dtype([tuple(field) for field in dtype])
    arr = np.ndarray(
        shape=ctx.resolve(source["shape"]),
        dtype=dtype,
        buffer=raw,
        offset=source["byteOffset"],
        strides=ctx.resolve(source["strides"]),
    )
    if cls is not None and cls is not np.ndarray:
        arr = arr.view(cls)
    return arr


# --------------------------------- handlers ----------------------------------

@dataclass(frozen=True)
class Handler:
    tag: TypeTag
    match: Callable[[Any], bool]
    construct: Callable[[Any, Optional[type], DecodeContext], Any]
    extract: Optional[Callable[[Any, Dehydrator], Any]] = None
    canonical: Tuple[type, ...] = ()
    attributes: Callable[[Any], Dict[str, Any]] = object_attributes
    hydrate: Callable[[Any, Any, DecodeContext], None] = _no_hydrate
    positions: Callable[[Any], Positions] = _no_positions
    deferred: bool = False
    needs: Optional[Callable[[Any], Positions]] = None
    settle: Optional[Callable[[Any, Any, DecodeContext], None]] = None


HANDLERS: Tuple[Handler, ...] = (
    Handler(
        TypeTag.OBJECT,
        match=_is_plain_object,
        construct=lambda source, cls, ctx: {},
        canonical=(dict,),
        attributes=dict,
    ),
    Handler(
        TypeTag.MAP,
        match=lambda v: isinstance(v, dict),
        construct=lambda source, cls, ctx: _new(cls, dict),
        extract=_extract_pairs,
        canonical=(dict,),
        hydrate=_hydrate_map,
        positions=_pair_positions,
    ),
    Handler(
        TypeTag.ARRAY,
        match=lambda v: isinstance(v, list),
        construct=lambda source, cls, ctx: _new(cls, list),
        extract=_extract_items,
        canonical=(list,),
        hydrate=_hydrate_list,
        positions=_item_positions,
    ),
    Handler(
        TypeTag.TUPLE,
        match=lambda v: isinstance(v, tuple),
        construct=_construct_tuple,
        extract=_extract_items,
        canonical=(tuple,),
        positions=_item_positions,
        deferred=True,
    ),
    Handler(
        TypeTag.SET,
        match=lambda v: isinstance(v, set),
        construct=lambda source, cls, ctx: _new(cls, set),
        extract=_extract_items,
        canonical=(set,),
        hydrate=_hydrate_set,
        positions=_item_positions,
    ),
    Handler(
        TypeTag.FROZENSET,
        match=lambda v: isinstance(v, frozenset),
        construct=_construct_frozenset,
        extract=_extract_items,
        canonical=(frozenset,),
        positions=_item_positions,
        deferred=True,
    ),
    Handler(
        TypeTag.FUNCTION,
        match=lambda v: isinstance(v, types.FunctionType),
        construct=_construct_function,
        extract=_extract_function,
        canonical=(types.FunctionType,),
    ),
    Handler(
        TypeTag.METHOD,
        match=lambda v: isinstance(v, types.MethodType),
        construct=_construct_method,
        extract=_extract_method,
        canonical=(types.MethodType,),
        attributes=_no_attributes,
        positions=_method_positions,
        deferred=True,
    ),
    Handler(
        TypeTag.DESCRIPTOR,
        match=lambda v: isinstance(v, (staticmethod, classmethod, property)),
        construct=_construct_descriptor,
        extract=_extract_descriptor,
        attributes=_no_attributes,
        positions=_item_positions,
        deferred=True,
    ),
    Handler(
        TypeTag.CLASS,
        match=_is_dynamic_class,
        construct=_construct_class,
        extract=_extract_class,
        canonical=(type,),
        attributes=_class_attributes,
        positions=_class_positions,
        deferred=True,
        needs=_base_positions,
        settle=_settle_class,
    ),
    Handler(
        TypeTag.SYMBOL,
        match=lambda v: type(v) is Symbol or type(v) is object,
        construct=_construct_symbol,
        extract=_extract_symbol,
        canonical=(Symbol,),
        attributes=_no_attributes,
    ),
    Handler(
        TypeTag.PATTERN,
        match=lambda v: type(v) is re.Pattern,
        construct=_construct_pattern,
        extract=_extract_pattern,
        canonical=(re.Pattern,),
        attributes=_no_attributes,
    ),
    Handler(
        TypeTag.EXCEPTION,
        match=lambda v: isinstance(v, BaseException),
        construct=_construct_exception,
        extract=_extract_exception,
        canonical=(Exception,),
        hydrate=_hydrate_exception,
        positions=_exception_positions,
    ),
    Handler(
        TypeTag.DATETIME,
        match=lambda v: type(v) is datetime,
        construct=_construct_datetime,
        extract=_extract_datetime,
        canonical=(datetime,),
        attributes=_no_attributes,
    ),
    Handler(
        TypeTag.BYTES,
        match=lambda v: type(v) is bytes,
        construct=lambda source, cls, ctx: _decode_bytes(source),
        extract=_extract_bytes,
        canonical=(bytes,),
        attributes=_no_attributes,
    ),
    Handler(
        TypeTag.BYTEARRAY,
        match=lambda v: type(v) is bytearray,
        construct=lambda source, cls, ctx: bytearray(_decode_bytes(source)),
        extract=_extract_bytes,
        canonical=(bytearray,),
        attributes=_no_attributes,
    ),
    Handler(
        TypeTag.MEMORYVIEW,
        match=_is_buffer_view,
        construct=_construct_memoryview,
        extract=_extract_memoryview,
        canonical=(memoryview,),
        attributes=_no_attributes,
        positions=_view_positions,
        deferred=True,
    ),
    Handler(
        TypeTag.NDARRAY,
        match=_is_numeric_ndarray,
        construct=_construct_ndarray,
        extract=_extract_ndarray,
        canonical=(np.ndarray,),
        positions=_array_positions,
        deferred=True,
    ),
    Handler(
        TypeTag.INSTANCE,
        match=lambda v: not isinstance(v, (type, types.ModuleType))
        and (hasattr(v, "__dict__") or bool(_slot_names(type(v)))),
        construct=lambda source, cls, ctx: _new(cls, object),
    ),
)

_BY_TAG: Dict[TypeTag, Handler] = {h.tag: h for h in HANDLERS}


def classify(value: Any, index: HostGlobalIndex) -> TypeTag:
    """
    Map `value` to its node tag:
      1) special primitives (None, NaN, ±inf),
      2) host globals,
      3) first matching handler,
      4) Unsupported.
    """
    special = special_tag_of(value)
    if special is not None:
        return special
    if index.path_of(value) is not None:
        return TypeTag.HOST_GLOBAL
    for h in HANDLERS:
        if h.match(value):
            return h.tag
    return TypeTag.UNSUPPORTED


def handler_for_tag(tag: TypeTag) -> Optional[Handler]:
    return _BY_TAG.get(tag)


def ref_positions(tag: TypeTag, source: Any) -> Positions:
    """(json_path_suffix, value) for every place in `source` that may hold a Ref."""
    h = _BY_TAG.get(tag)
    if h is None or source is None:
        return iter(())
    return h.positions(source)


def construction_deps(tag: TypeTag, source: Any) -> List[int]:
    """Slots that must already be live before a deferred node can be constructed."""
    h = _BY_TAG.get(tag)
    if h is None or not h.deferred or source is None:
        return []
    positions = h.needs or h.positions
    return [ref_slot(v) for _, v in positions(source) if is_ref(v)]


def settle_deps(tag: TypeTag, source: Any) -> List[int]:
    """Slots read by a node's `settle` step, which runs once its `keys` are applied."""
    h = _BY_TAG.get(tag)
    if h is None or h.settle is None or source is None:
        return []
    return [ref_slot(v) for _, v in h.positions(source) if is_ref(v)]


def needs_class_entry(handler: Handler, value: Any) -> bool:
    return type(value) not in handler.canonical
