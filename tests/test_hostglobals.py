# tests/test_hostglobals.py
import collections
import enum
import functools
import math
import os
import threading

import pytest

import isopod
import isopod.hostglobals as hg
from isopod.config import Settings
from isopod.errors import UnresolvedSingletonError
from isopod.hostglobals import HostGlobalIndex


class Shade(enum.Enum):
    DARK = 1


def helper():
    return None


@pytest.fixture
def math_index():
    return HostGlobalIndex(roots=["math"], max_depth=1)


def test_breadth_first_paths(math_index):
    assert math_index.path_of(math.sqrt) == ["math", "sqrt"]
    assert math_index.resolve(["math", "sqrt"]) is math.sqrt
    assert math.sqrt in math_index
    assert len(math_index) > 1


def test_primitives_are_never_host_globals(math_index):
    assert math_index.path_of(math.pi) is None
    assert math_index.path_of("math") is None
    assert math_index.path_of(None) is None


def test_fresh_containers_are_not_host_globals(math_index):
    assert math_index.path_of([1]) is None
    assert math_index.path_of({"a": 1}) is None


def test_qualified_name_fallback_for_module_level_objects(math_index):
    assert math_index.path_of(helper) == [__name__, "helper"]
    assert math_index.path_of(Shade) == [__name__, "Shade"]
    assert math_index.path_of(Shade.DARK) == [__name__, "Shade", "DARK"]
    assert math_index.path_of(collections.OrderedDict) == ["collections", "OrderedDict"]


def test_local_objects_are_not_host_globals(math_index):
    def local():
        return 1

    class Local:
        pass

    assert math_index.path_of(local) is None
    assert math_index.path_of(Local) is None
    assert math_index.path_of(lambda: 0) is None


def test_non_root_modules_are_leaves():
    idx = HostGlobalIndex(roots=["os"], max_depth=3)
    # os.path is indexed but its own names are not walked
    assert idx.path_of(os.path) == ["os", "path"]
    assert not [p for p in idx._by_path if p[:2] == ("os", "path") and len(p) > 2]


def test_depth_bound():
    shallow = HostGlobalIndex(roots=["collections"], max_depth=0)
    assert len(shallow) == 1


def test_resolve_imports_unindexed_modules(math_index):
    assert math_index.resolve(["collections", "OrderedDict"]) is collections.OrderedDict


def test_resolve_errors(math_index):
    with pytest.raises(UnresolvedSingletonError):
        math_index.resolve(["no_such_module_for_isopod"])
    with pytest.raises(UnresolvedSingletonError):
        math_index.resolve(["math", "no_such_attribute"])
    with pytest.raises(UnresolvedSingletonError):
        math_index.resolve([])


def test_missing_root_is_skipped():
    idx = HostGlobalIndex(roots=["no_such_module_for_isopod", "math"], max_depth=1)
    assert idx.path_of(math.floor) == ["math", "floor"]


def test_from_settings_uses_configured_roots():
    idx = HostGlobalIndex.from_settings(Settings(host_roots=("math",), host_max_depth=1))
    assert idx.roots == ("math",) and idx.max_depth == 1


def test_process_index_is_built_once_under_contention(monkeypatch):
    hg.reset_host_index()
    built = []
    real_build = HostGlobalIndex._build

    def counting_build(self):
        built.append(self)
        real_build(self)

    monkeypatch.setattr(HostGlobalIndex, "_build", counting_build)
    settings = Settings(host_roots=("math",), host_max_depth=1)
    seen = []

    def worker():
        idx = hg.get_host_index(settings)
        seen.append(idx)
        len(idx)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len({id(i) for i in seen}) == 1
    assert len(built) == 1
    hg.reset_host_index()


def test_interned_tuples_are_not_host_globals():
    idx = HostGlobalIndex(roots=["functools", "collections"], max_depth=3)
    assert idx.path_of(()) is None
    assert idx.path_of(frozenset()) is None
    graph = isopod.serialize((), index=idx)
    assert graph == [{"type": "Tuple", "source": []}]
    assert isopod.deserialize(graph) == ()


def test_private_names_are_not_indexed():
    idx = HostGlobalIndex(roots=["functools"], max_depth=2)
    assert len(idx) > 1
    assert all(not part.startswith("_") for path in idx._by_path for part in path[1:])
    assert idx.path_of(functools.partial) == ["functools", "partial"]
