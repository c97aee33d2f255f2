"""
Restricted Python evaluator run as a worker process.

The ``sandbox`` executor starts this file as a script with the server's
interpreter and writes a JSON payload to its standard input::

    {"code": "...", "allowed_modules": ["math", ...]}

The worker checks the source, evaluates it with a restricted builtins
table and writes program output straight to its own stdout, so the parent
sees ``print`` output as it happens.  Errors are written to stderr as a
single ``Type: message (line N)`` line and the worker exits with status 1.

The policy applied before anything runs:

* names and attributes starting with an underscore are rejected, as are
  the public attributes that reach frames, code objects or resolve
  attributes from strings (``format``, ``string.Formatter.get_field``...);
* builtins are a fixed table without ``open``, ``eval``, ``exec``,
  ``compile``, ``input``, ``getattr`` and friends;
* ``import`` only resolves a small allowlist of pure modules.

If the last statement is an expression whose value is not ``None``, its
``repr`` is printed, the way an interactive prompt echoes it.

The deadline is not enforced here: the parent kills the worker's process
group when the budget runs out, which also covers code stuck in a single C
call.  This module only imports the standard library so that it can run
without the package on ``sys.path``.
"""

from __future__ import annotations

import ast
import builtins
import json
import sys
import traceback
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, TextIO, Tuple


SANDBOX_FILENAME = "<sandbox>"

SAFE_BUILTIN_NAMES: Tuple[str, ...] = (
    "abs", "all", "any", "ascii", "bin", "bool", "bytearray", "bytes", "callable",
    "chr", "classmethod", "complex", "dict", "divmod", "enumerate", "filter",
    "float", "format", "frozenset", "hasattr", "hash", "hex", "id", "int",
    "isinstance", "issubclass", "iter", "len", "list", "map", "max", "min",
    "next", "object", "oct", "ord", "pow", "property", "range", "repr",
    "reversed", "round", "set", "slice", "sorted", "staticmethod", "str", "sum",
    "super", "tuple", "type", "zip",
    "ArithmeticError", "AssertionError", "AttributeError", "Exception",
    "IndexError", "KeyError", "LookupError", "NameError", "NotImplementedError",
    "OverflowError", "RecursionError", "RuntimeError", "StopIteration",
    "TypeError", "ValueError", "ZeroDivisionError",
)

DEFAULT_ALLOWED_MODULES: FrozenSet[str] = frozenset(
    {
        "bisect", "cmath", "collections", "datetime", "decimal", "fractions",
        "functools", "heapq", "itertools", "json", "math", "random", "re",
        "statistics", "textwrap",
    }
)

# Public attributes that lead to frames, code objects or the class graph,
# or that look up attributes by name from a string.
BLOCKED_ATTRIBUTES: FrozenSet[str] = frozenset(
    {
        "ag_code", "ag_frame", "convert_field", "cr_code", "cr_frame", "f_back",
        "f_builtins", "f_code", "f_globals", "f_locals", "format", "format_field",
        "format_map", "get_field", "get_value", "gi_code", "gi_frame", "mro",
        "tb_frame", "tb_next", "vformat",
    }
)


class SandboxPolicyError(Exception):
    """The snippet uses a construct the sandbox does not allow."""

    def __init__(self, message: str, lineno: Optional[int]) -> None:
        super().__init__(message)
        self.lineno = lineno


def check_policy(tree: ast.AST) -> None:
    """Reject private names, private attributes and attribute-reaching helpers."""
    for node in ast.walk(tree):
        lineno = getattr(node, "lineno", None)
        if isinstance(node, ast.Attribute):
            if node.attr.startswith("_") or node.attr in BLOCKED_ATTRIBUTES:
                raise SandboxPolicyError(f"Access to attribute '{node.attr}' is not allowed", lineno)
        elif isinstance(node, ast.Name) and node.id.startswith("_") and node.id != "_":
            raise SandboxPolicyError(f"Use of name '{node.id}' is not allowed", lineno)
        elif isinstance(node, (ast.Import, ast.ImportFrom)):
            names = [alias.name for alias in node.names]
            if isinstance(node, ast.ImportFrom):
                names = [n for n in names if n != "*"]
            if any(name.startswith("_") for name in names):
                raise SandboxPolicyError("Importing private names is not allowed", lineno)


def split_tail_expression(tree: ast.Module) -> Tuple[ast.Module, Optional[ast.Expression]]:
    """Detach a trailing expression statement so its value can be echoed."""
    if tree.body and isinstance(tree.body[-1], ast.Expr):
        tail = tree.body.pop()
        return tree, ast.Expression(body=tail.value)
    return tree, None


def describe(exc: BaseException) -> str:
    frames = [f for f in traceback.extract_tb(exc.__traceback__) if f.filename == SANDBOX_FILENAME]
    message = f"{type(exc).__name__}: {exc}"
    if frames:
        message += f" (line {frames[-1].lineno})"
    return message


def build_builtins(allowed_modules: Iterable[str], out: TextIO) -> Dict[str, Any]:
    table: Dict[str, Any] = {name: getattr(builtins, name) for name in SAFE_BUILTIN_NAMES}
    # Required by the compiler for ``class`` statements.
    table["__build_class__"] = builtins.__build_class__
    table["__import__"] = _make_import(frozenset(allowed_modules))
    table["print"] = _make_print(out)
    return table


def _make_import(allowed: FrozenSet[str]) -> Callable[..., Any]:
    def _safe_import(name, globals=None, locals=None, fromlist=(), level=0):
        root = name.split(".")[0]
        if level != 0 or root not in allowed:
            raise ImportError(f"Import '{name}' is not allowed in the sandbox")
        return builtins.__import__(name, globals, locals, fromlist, level)

    return _safe_import


def _make_print(out: TextIO) -> Callable[..., None]:
    def _print(*args: Any, sep: Optional[str] = " ", end: Optional[str] = "\n", file: Any = None, flush: bool = False) -> None:
        sep = " " if sep is None else sep
        end = "\n" if end is None else end
        out.write(sep.join(str(arg) for arg in args) + end)
        out.flush()

    return _print


def evaluate(code: str, allowed_modules: Iterable[str], out: TextIO, err: TextIO) -> int:
    """Check and run ``code``; return the exit status for the worker."""
    try:
        tree = ast.parse(code, filename=SANDBOX_FILENAME, mode="exec")
        check_policy(tree)
        body_tree, tail_tree = split_tail_expression(tree)
        body = compile(body_tree, SANDBOX_FILENAME, "exec")
        tail = compile(tail_tree, SANDBOX_FILENAME, "eval") if tail_tree is not None else None
    except SyntaxError as exc:
        err.write(f"SyntaxError: {exc.msg} (line {exc.lineno})")
        return 1
    except SandboxPolicyError as exc:
        err.write(f"PolicyError: {exc} (line {exc.lineno})")
        return 1

    namespace: Dict[str, Any] = {
        "__builtins__": build_builtins(allowed_modules, out),
        "__name__": "__sandbox__",
    }
    try:
        exec(body, namespace)
        if tail is not None:
            value = eval(tail, namespace)
            if value is not None:
                out.write(repr(value) + "\n")
    except Exception as exc:
        out.flush()
        err.write(describe(exc))
        return 1
    return 0


def main() -> int:
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")
    payload = json.loads(sys.stdin.read() or "{}")
    allowed = payload.get("allowed_modules")
    status = evaluate(
        payload.get("code", ""),
        DEFAULT_ALLOWED_MODULES if allowed is None else allowed,
        sys.stdout,
        sys.stderr,
    )
    sys.stdout.flush()
    sys.stderr.flush()
    return status


if __name__ == "__main__":
    raise SystemExit(main())
