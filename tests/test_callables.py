# tests/test_callables.py
import pytest

import isopod
from isopod.config import Settings
from isopod.errors import ReconstructionError
from isopod.sources import ExecCompiler, function_source
from isopod.testkit import roundtrip

FACTOR = 3


def pick(fn):
    return fn


def mark(fn):
    fn.marked = True
    return fn


def module_level(x):
    return x + 1


# --- Source extraction -------------------------------------------------------

def test_function_source_strips_decorators_and_dedents():
    @mark
    def inner(a):
        return a * 2

    text = function_source(inner)
    assert text.startswith("def inner(a):")
    assert "@mark" not in text


def test_function_source_cuts_lambda_out_of_its_line():
    f = pick(lambda pair: pair[1])
    assert function_source(f) == "lambda pair: pair[1]"


def test_function_source_unavailable_for_exec_code():
    ns = {}
    exec("def made(x):\n    return x\n", ns)
    assert function_source(ns["made"]) is None


# --- Round trips -------------------------------------------------------------

def test_nested_function_roundtrip():
    def add(a, b):
        return a + b

    out = roundtrip(add)
    assert out is not add
    assert out(2, 3) == 5


def test_lambda_roundtrip():
    sq = lambda v: v * v  # noqa: E731
    out = roundtrip({"f": sq})
    assert out["f"](7) == 49


def test_function_sees_module_globals():
    def triple(x):
        return x * FACTOR

    assert roundtrip(triple)(3) == 9


def test_recursive_function():
    def fact(n):
        return 1 if n <= 1 else n * fact(n - 1)

    assert roundtrip(fact)(5) == 120


def test_function_attributes_are_preserved():
    @mark
    def flagged():
        return "ok"

    flagged.extra = [1, 2]
    out = roundtrip(flagged)
    assert out() == "ok"
    assert out.marked is True and out.extra == [1, 2]


def test_module_level_function_is_a_host_global():
    graph = isopod.serialize(module_level)
    assert graph[0]["type"] == "HostGlobal"
    assert roundtrip(module_level) is module_level


def test_aliased_function_is_compiled_once():
    def one():
        return 1

    out = roundtrip([one, one])
    assert out[0] is out[1]


def test_bound_method_keeps_its_receiver():
    class Counter:
        def __init__(self):
            self.n = 0

        def bump(self):
            self.n += 1
            return self.n

    c = Counter()
    c.bump()
    out = roundtrip({"c": c, "bump": c.bump})
    assert out["bump"]() == 2
    assert out["c"].n == 2
    assert out["bump"].__self__ is out["c"]


# --- Failures & policies -----------------------------------------------------

def test_missing_source_fails_on_decode():
    ns = {}
    exec("def made(x):\n    return x\n", ns)
    graph = isopod.serialize(ns["made"])
    assert graph[0]["source"]["text"] is None
    with pytest.raises(ReconstructionError):
        isopod.deserialize(graph)


def test_invalid_source_raises_reconstruction_error():
    graph = [{"type": "Function", "source": {"text": "def broken(:\n", "module": None}}]
    with pytest.raises(ReconstructionError):
        isopod.deserialize(graph)


def test_compile_disabled_by_settings():
    def f():
        return 1

    graph = isopod.serialize(f)
    with pytest.raises(ReconstructionError):
        isopod.deserialize(graph, settings=Settings(compile_callables=False))


def test_injected_compiler_is_used():
    seen = []

    class Recording:
        def compile(self, text, module=None):
            seen.append((text, module))
            return lambda *a: "stub"

    def g(x):
        return x

    out = isopod.deserialize(isopod.serialize(g), compiler=Recording())
    assert out() == "stub"
    assert seen and seen[0][0].startswith("def g(x):")
    assert seen[0][1] == __name__


def test_exec_compiler_namespace_overrides():
    compiler = ExecCompiler(namespace={"K": 10})
    fn = compiler.compile("def h(x):\n    return x + K\n")
    assert fn(1) == 11
    with pytest.raises(ReconstructionError):
        compiler.compile("x = 1\n")
    with pytest.raises(ReconstructionError):
        compiler.compile("42")
