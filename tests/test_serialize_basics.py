# tests/test_serialize_basics.py
import enum
import math

import pytest

import isopod
from isopod.hostglobals import HostGlobalIndex
from isopod.registry import classify
from isopod.tags import TypeTag


@pytest.fixture(scope="module")
def small_index():
    # enough for builtins; module-level classes resolve through __qualname__
    return HostGlobalIndex(roots=["builtins"], max_depth=1)


class Level(enum.IntEnum):
    LOW = 1
    HIGH = 2


class Point:
    def __init__(self, x, y):
        self.x = x
        self.y = y


# --- Primitives & specials ---------------------------------------------------

@pytest.mark.parametrize("value", [5, 0, -3, True, False, "x", "", 1.5, -0.0])
def test_primitives_pass_through_unchanged(value):
    out = isopod.serialize(value)
    assert out == value and type(out) is type(value)


def test_special_values_get_their_own_nodes():
    assert isopod.serialize(None) == [{"type": "None"}]
    assert isopod.serialize(math.inf) == [{"type": "Infinity"}]
    assert isopod.serialize(-math.inf) == [{"type": "-Infinity"}]
    assert isopod.serialize(float("nan")) == [{"type": "NaN"}]


def test_nan_roundtrips_to_nan():
    out = isopod.deserialize(isopod.serialize(float("nan")))
    assert isinstance(out, float) and math.isnan(out)


def test_special_values_share_one_slot_per_kind():
    nan_a, nan_b = float("nan"), float("nan")
    assert nan_a is not nan_b
    graph = isopod.serialize([nan_a, nan_b, None, None])
    assert graph == [
        {"type": "Array", "source": [[1], [1], [2], [2]]},
        {"type": "NaN"},
        {"type": "None"},
    ]


# --- Concrete graph shapes ---------------------------------------------------

def test_plain_mapping_with_list():
    graph = isopod.serialize({"a": 1, "b": [1, 2, 3]})
    assert graph == [
        {"type": "Object", "keys": {"a": 1, "b": [1]}},
        {"type": "Array", "source": [1, 2, 3]},
    ]


def test_empty_containers_omit_source_and_keys():
    assert isopod.serialize({}) == [{"type": "Object"}]
    assert isopod.serialize([]) == [{"type": "Array", "source": []}]


def test_self_cycle_is_a_ref_to_slot_zero():
    x = {}
    x["self"] = x
    assert isopod.serialize(x) == [{"type": "Object", "keys": {"self": [0]}}]


def test_aliases_share_a_slot():
    shared = [1]
    graph = isopod.serialize({"x": shared, "y": shared})
    assert graph[0]["keys"] == {"x": [1], "y": [1]}
    assert len(graph) == 2


def test_non_string_keys_make_a_map():
    graph = isopod.serialize({1: "a", (1, 2): "b"})
    assert graph[0]["type"] == "Map"
    assert graph[0]["source"] == [[1, "a"], [[1], "b"]]
    assert graph[1] == {"type": "Tuple", "source": [1, 2]}


def test_dunder_class_key_forces_map_form():
    # a str key "__class__" would collide with the class link in `keys`
    graph = isopod.serialize({"__class__": "not a class"})
    assert graph == [{"type": "Map", "source": [["__class__", "not a class"]]}]


def test_instance_records_class_and_attributes():
    graph = isopod.serialize(Point(1, 2))
    node = graph[0]
    assert node["type"] == "Instance"
    assert node["keys"]["x"] == 1 and node["keys"]["y"] == 2
    cls_slot = node["keys"]["__class__"][0]
    assert graph[cls_slot] == {"type": "HostGlobal", "source": [__name__, "Point"]}


def test_canonical_types_carry_no_class_entry():
    graph = isopod.serialize([(1,), {2}, frozenset({3})])
    for node in graph:
        assert "__class__" not in node.get("keys", {})


def test_host_global_node_holds_the_path():
    assert isopod.serialize(len) == [{"type": "HostGlobal", "source": ["builtins", "len"]}]


def test_intenum_members_are_references_not_ints():
    graph = isopod.serialize([Level.LOW])
    assert graph[0]["source"] == [[1]]
    assert graph[1] == {"type": "HostGlobal", "source": [__name__, "Level", "LOW"]}


# --- Classification ----------------------------------------------------------

def test_classify_order(small_index):
    assert classify(None, small_index) is TypeTag.NONE
    assert classify(float("nan"), small_index) is TypeTag.NAN
    assert classify(len, small_index) is TypeTag.HOST_GLOBAL
    assert classify(Point, small_index) is TypeTag.HOST_GLOBAL
    assert classify({"a": 1}, small_index) is TypeTag.OBJECT
    assert classify({1: 2}, small_index) is TypeTag.MAP
    assert classify([], small_index) is TypeTag.ARRAY
    assert classify((1,), small_index) is TypeTag.TUPLE
    assert classify(Point(0, 0), small_index) is TypeTag.INSTANCE
    assert classify(ValueError("x"), small_index) is TypeTag.EXCEPTION
    assert classify(isopod.Symbol("s"), small_index) is TypeTag.SYMBOL
    assert classify((i for i in ()), small_index) is TypeTag.UNSUPPORTED


def test_serialize_uses_injected_index(small_index):
    graph = isopod.serialize([abs], index=small_index)
    assert graph[1] == {"type": "HostGlobal", "source": ["builtins", "abs"]}
