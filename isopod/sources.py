# isopod/sources.py
from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable
import ast
import importlib
import inspect
import logging
import textwrap

from .errors import ReconstructionError

__all__ = [
    "function_source",
    "SourceCompiler",
    "ExecCompiler",
]

_log = logging.getLogger("isopod.sources")


# ------------------------- extraction (serialize side) -------------------------

def _lambda_segment(text: str, fn: Any) -> Optional[str]:
    """
    Cut the lambda expression defining `fn` out of the source lines that
    contain it (e.g. `key=lambda x: x[1]` inside a call).
    """
    try:
        tree = ast.parse(text)
    except SyntaxError:
        # the line(s) may be a fragment of a larger statement
        try:
            tree = ast.parse(f"(\n{text}\n)")
            text = f"(\n{text}\n)"
        except SyntaxError:
            return None
    code = fn.__code__
    wanted = list(code.co_varnames[: code.co_argcount + code.co_kwonlyargcount])
    candidates = [n for n in ast.walk(tree) if isinstance(n, ast.Lambda)]
    for node in candidates:
        a = node.args
        names = [x.arg for x in (*a.posonlyargs, *a.args, *a.kwonlyargs)]
        if names == wanted:
            return ast.get_source_segment(text, node)
    if len(candidates) == 1:
        return ast.get_source_segment(text, candidates[0])
    return None


def function_source(fn: Any) -> Optional[str]:
    """
    Return the dedented source text of a Python function, decorators removed,
    or None when the source is not available (REPL, exec'd code, C functions).

    Lambdas are returned as the bare `lambda ...: ...` expression.
    """
    try:
        text = textwrap.dedent(inspect.getsource(fn))
    except (OSError, TypeError):
        return None

    if fn.__name__ == "<lambda>":
        return _lambda_segment(text, fn)

    try:
        tree = ast.parse(text)
    except SyntaxError:
        return text
    node = tree.body[0] if tree.body else None
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.decorator_list:
        # node.lineno points at the `def` line, after the decorators
        lines = text.splitlines(keepends=True)
        text = "".join(lines[node.lineno - 1 :])
    return text


# ----------------------- compilation (deserialize side) ------------------------

@runtime_checkable
class SourceCompiler(Protocol):
    """
    Capability injected into `deserialize` to turn function source text back
    into a callable. Implementations must raise `ReconstructionError` on failure.
    """

    def compile(self, text: str, module: Optional[str] = None) -> Callable[..., Any]:
        ...


class ExecCompiler:
    """
    Compile function source with `exec`.

    Globals are a copy of the defining module's namespace when that module can
    be imported here (so module-level names keep working), otherwise a fresh
    namespace. `namespace` entries are layered on top.

    Not a sandbox: only feed it graphs you trust.
    """

    def __init__(self, namespace: Optional[Dict[str, Any]] = None) -> None:
        self.namespace = dict(namespace or {})

    def _globals_for(self, module: Optional[str]) -> Dict[str, Any]:
        env: Dict[str, Any] = {}
        if module:
            try:
                env.update(vars(importlib.import_module(module)))
            except ImportError:
                _log.debug("compile: module %s not importable, using a fresh namespace", module)
        env.update(self.namespace)
        env.setdefault("__name__", module or "__isopod__")
        return env

    def compile(self, text: str, module: Optional[str] = None) -> Callable[..., Any]:
        env = self._globals_for(module)
        try:
            tree = ast.parse(text)
        except SyntaxError as exc:
            raise ReconstructionError(f"invalid function source: {exc}") from exc

        if len(tree.body) == 1 and isinstance(tree.body[0], ast.Expr):
            try:
                fn = eval(compile(ast.Expression(tree.body[0].value), "<isopod>", "eval"), env)
            except Exception as exc:
                raise ReconstructionError(f"cannot evaluate function source: {exc}") from exc
        else:
            defs = [n for n in tree.body if isinstance(n, (ast.FunctionDef, ast.AsyncFunctionDef))]
            if len(defs) != 1:
                raise ReconstructionError("function source must define exactly one function")
            # defined into env: recursive calls resolve through __globals__
            try:
                exec(compile(tree, "<isopod>", "exec"), env)
            except Exception as exc:
                raise ReconstructionError(f"cannot execute function source: {exc}") from exc
            fn = env[defs[0].name]

        if not callable(fn):
            raise ReconstructionError(f"function source evaluated to non-callable {type(fn).__name__}")
        return fn
