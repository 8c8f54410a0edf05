"""Evaluation of ``func`` node bodies.

A func body is the source of a Python function body. It is compiled into
a function whose parameters are the binding names (context, chunk, row,
helpers) and called once per unit. If the body ends with a bare
expression, that expression is the return value:

    words = chunk.split()
    return {"word_count": len(words)}

RestrictedPythonEvaluator only runs code that passes an AST allow-list:
no imports, no global/nonlocal, no class or async definitions, no dunder
names, no attributes starting with an underscore, and no frame or code
introspection attributes. Builtins are limited to SAFE_BUILTINS plus small
json and re facades. Runaway loops are not interrupted.
"""

import ast
import builtins
import json
import logging
import re
import textwrap
from functools import lru_cache
from types import CodeType, SimpleNamespace
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)

FUNC_NAME = "workbench_func"


class EvaluationError(RuntimeError):
    """The func body was rejected, failed to compile, or raised."""


class ScriptEvaluator(Protocol):
    """Pluggable evaluator for func node bodies."""

    def evaluate(self, source: str, bindings: dict[str, Any]) -> Any:
        ...


SAFE_BUILTINS: dict[str, Any] = {
    name: getattr(builtins, name)
    for name in (
        "abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter",
        "float", "int", "isinstance", "len", "list", "map", "max", "min",
        "range", "repr", "reversed", "round", "set", "sorted", "str", "sum",
        "tuple", "zip",
        "Exception", "KeyError", "IndexError", "TypeError", "ValueError",
    )
}

JSON_FACADE = SimpleNamespace(
    loads=json.loads,
    dumps=json.dumps,
    JSONDecodeError=json.JSONDecodeError,
)

RE_FACADE = SimpleNamespace(
    compile=re.compile,
    escape=re.escape,
    findall=re.findall,
    finditer=re.finditer,
    fullmatch=re.fullmatch,
    match=re.match,
    search=re.search,
    split=re.split,
    sub=re.sub,
    IGNORECASE=re.IGNORECASE,
    MULTILINE=re.MULTILINE,
    DOTALL=re.DOTALL,
    I=re.I,
    M=re.M,
    S=re.S,
)

_FORBIDDEN_NODES = (
    ast.Import,
    ast.ImportFrom,
    ast.Global,
    ast.Nonlocal,
    ast.ClassDef,
    ast.AsyncFunctionDef,
    ast.AsyncFor,
    ast.AsyncWith,
    ast.Await,
)

# Attributes that reach frames, code objects or str.format field traversal
_FORBIDDEN_ATTRIBUTES = {
    "format",
    "format_map",
    "mro",
    "gi_frame",
    "gi_code",
    "gi_yieldfrom",
    "cr_frame",
    "cr_code",
    "ag_frame",
    "ag_code",
    "f_back",
    "f_builtins",
    "f_globals",
    "f_locals",
    "f_code",
    "tb_frame",
    "tb_next",
}


def _check_tree(func_def: ast.FunctionDef) -> None:
    for node in ast.walk(func_def):
        if node is func_def:
            continue
        if isinstance(node, _FORBIDDEN_NODES):
            raise EvaluationError(f"'{type(node).__name__}' is not allowed in func bodies")
        if isinstance(node, ast.Name) and node.id.startswith("__"):
            raise EvaluationError(f"Name '{node.id}' is not allowed in func bodies")
        if isinstance(node, ast.Attribute) and (
            node.attr.startswith("_") or node.attr in _FORBIDDEN_ATTRIBUTES
        ):
            raise EvaluationError(f"Attribute '{node.attr}' is not allowed in func bodies")
        if isinstance(node, ast.FunctionDef) and node.name.startswith("__"):
            raise EvaluationError(f"Function name '{node.name}' is not allowed")


@lru_cache(maxsize=256)
def _compile_body(source: str, param_names: tuple[str, ...]) -> CodeType:
    body = textwrap.dedent(source).strip("\n")
    if not body.strip():
        body = "return None"

    wrapped = f"def {FUNC_NAME}({', '.join(param_names)}):\n{textwrap.indent(body, '    ')}\n"
    try:
        module = ast.parse(wrapped, filename="<func>", mode="exec")
    except SyntaxError as e:
        line = (e.lineno or 1) - 1
        raise EvaluationError(f"Syntax error in func body (line {line}): {e.msg}") from e

    func_def = module.body[0]
    assert isinstance(func_def, ast.FunctionDef)
    _check_tree(func_def)

    # A trailing bare expression is the return value
    last = func_def.body[-1]
    if isinstance(last, ast.Expr):
        func_def.body[-1] = ast.copy_location(ast.Return(value=last.value), last)
        ast.fix_missing_locations(module)

    logger.debug(f"Compiled func body: {len(body.splitlines())} lines")

    try:
        return compile(module, filename="<func>", mode="exec")
    except SyntaxError as e:
        line = (e.lineno or 1) - 1
        raise EvaluationError(f"Syntax error in func body (line {line}): {e.msg}") from e


class RestrictedPythonEvaluator:
    """Runs func bodies as restricted Python functions."""

    def __init__(self, extra_globals: Optional[dict[str, Any]] = None):
        self.extra_globals = dict(extra_globals or {})

    def check(self, source: str, binding_names: tuple[str, ...]) -> None:
        """Compile *source* without running it; raises EvaluationError."""
        _compile_body(source, binding_names)

    def evaluate(self, source: str, bindings: dict[str, Any]) -> Any:
        names = tuple(bindings)
        for name in names:
            if not name.isidentifier() or name.startswith("_"):
                raise EvaluationError(f"Invalid binding name: {name!r}")

        code = _compile_body(source, names)
        namespace: dict[str, Any] = {
            "__builtins__": SAFE_BUILTINS,
            "json": JSON_FACADE,
            "re": RE_FACADE,
            **self.extra_globals,
        }
        exec(code, namespace)
        func = namespace[FUNC_NAME]

        try:
            return func(**bindings)
        except EvaluationError:
            raise
        except Exception as e:
            raise EvaluationError(f"{type(e).__name__}: {e}") from e
