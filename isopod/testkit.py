# isopod/testkit.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import json
import math
import re
import types

import numpy as np

from .config import Settings
from .deserialize import deserialize
from .hostglobals import HostGlobalIndex
from .registry import object_attributes
from .serialize import serialize
from .sources import SourceCompiler
from .tags import Symbol

__all__ = [
    "are_equivalent",
    "roundtrip",
]


# ---------------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------------

def roundtrip(
    value: Any,
    *,
    through_json: bool = True,
    index: Optional[HostGlobalIndex] = None,
    compiler: Optional[SourceCompiler] = None,
    settings: Optional[Settings] = None,
) -> Any:
    """
    serialize → (JSON text → parse) → deserialize.

    Going through JSON text makes sure the graph survives the transport format
    (tuples become lists, no NaN literals...).
    """
    graph = serialize(value, index=index, settings=settings)
    if through_json:
        graph = json.loads(json.dumps(graph, allow_nan=False))
    return deserialize(graph, index=index, compiler=compiler, settings=settings)


# ---------------------------------------------------------------------------
# Structural equivalence
# ---------------------------------------------------------------------------

def _is_atom(x: Any) -> bool:
    return x is None or type(x) in (bool, int, float, str, complex)


def _atoms_equal(a: Any, b: Any) -> bool:
    if type(a) is not type(b):
        return False
    if type(a) is float and math.isnan(a):
        return math.isnan(b)
    return a == b


def _classes_match(a: type, b: type, pairs: List[Tuple[Any, Any]]) -> bool:
    if a is b:
        return True
    if not (isinstance(a, type) and isinstance(b, type)):
        return False
    if a.__qualname__ != b.__qualname__ or len(a.__bases__) != len(b.__bases__):
        return False
    pairs.extend(zip(a.__bases__, b.__bases__))
    return True


def _ndarrays_equal(a: np.ndarray, b: np.ndarray) -> bool:
    if a.dtype != b.dtype or a.shape != b.shape:
        return False
    nan_ok = a.dtype.kind in "fc"
    return bool(np.array_equal(a, b, equal_nan=nan_ok))


def are_equivalent(a: Any, b: Any) -> bool:
    """
    Structural equivalence of two object graphs.

    - same shape, same types (local classes are matched by qualified name),
    - NaN equals NaN,
    - aliasing must agree: if `a` reuses one object in two places, `b` must
      reuse one object in the matching places (identity maps are bijective),
    - cycles are fine (pairs already under comparison are assumed equal),
    - functions are matched by name only; behaviour is for the caller to check.

    Iterative: deep chains do not hit the recursion limit.
    Sets are compared in iteration order, which matches for value-hashed
    elements.
    """
    fwd: Dict[int, int] = {}
    back: Dict[int, int] = {}
    pairs: List[Tuple[Any, Any]] = [(a, b)]

    while pairs:
        x, y = pairs.pop()

        if _is_atom(x) or _is_atom(y):
            if not _atoms_equal(x, y):
                return False
            continue

        # aliasing: one object on the left ↔ one object on the right
        seen = fwd.get(id(x))
        if seen is not None or id(y) in back:
            if seen != id(y) or back.get(id(y)) != id(x):
                return False
            continue
        fwd[id(x)] = id(y)
        back[id(y)] = id(x)

        if isinstance(x, type):
            if not _classes_match(x, y, pairs):
                return False
            continue
        if not _classes_match(type(x), type(y), pairs):
            return False

        if isinstance(x, dict):
            if len(x) != len(y):
                return False
            for (kx, vx), (ky, vy) in zip(x.items(), y.items()):
                pairs.append((kx, ky))
                pairs.append((vx, vy))
        elif isinstance(x, (list, tuple, set, frozenset)):
            if len(x) != len(y):
                return False
            pairs.extend(zip(x, y))
        elif isinstance(x, np.ndarray):
            if not _ndarrays_equal(x, y):
                return False
        elif isinstance(x, memoryview):
            if (x.format, x.shape, x.readonly) != (y.format, y.shape, y.readonly) or x.tobytes() != y.tobytes():
                return False
            continue
        elif isinstance(x, (bytes, bytearray, datetime)):
            if x != y:
                return False
            continue
        elif isinstance(x, re.Pattern):
            if (x.pattern, x.flags) != (y.pattern, y.flags):
                return False
            continue
        elif isinstance(x, Symbol):
            if x.description != y.description:
                return False
            continue
        elif isinstance(x, BaseException):
            if len(x.args) != len(y.args):
                return False
            pairs.extend(zip(x.args, y.args))
        elif isinstance(x, types.FunctionType):
            if x.__name__ != y.__name__:
                return False
        elif isinstance(x, types.MethodType):
            pairs.append((x.__func__, y.__func__))
            pairs.append((x.__self__, y.__self__))
            continue

        ax, ay = object_attributes(x), object_attributes(y)
        if ax.keys() != ay.keys():
            return False
        for name in ax:
            pairs.append((ax[name], ay[name]))

    return True
