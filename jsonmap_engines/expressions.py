"""
jsonmap_engines.expressions -- Interpreter for the restricted expression grammar.

Responsibility:
    Evaluate custom-function and conditional expressions over a mapping's
    resolved source value, the input record and the in-progress output.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Grammar and static checks live in ``jsonmap_kernel.domain.expression_ast``.

Invariants enforced:
    - Only trees accepted by ``parse_expression`` are interpreted; the
      interpreter walks the AST itself, nothing reaches ``eval``/``exec``.
    - Context roots are read-only: ``value``, ``data``, ``output``.
    - Attribute access on a mapping is a key lookup; a missing key, or any
      attribute on a non-object, yields ``None``.
    - String and list results are bounded by ``MAX_SEQUENCE_LENGTH``; growing
      operations (``*``, ``zfill``, ``replace``, ``join``) are sized before
      they run.  ``%`` string formatting is refused.

Failure modes:
    - ``ExpressionError`` when the expression is outside the grammar.
    - ``TransformationError`` (tagged with the mapping target) for any error
      raised while evaluating a valid expression.
"""

from __future__ import annotations

import ast
import functools
import operator
from collections.abc import Callable
from typing import Any

from jsonmap_engines.paths import get_path
from jsonmap_kernel.domain.expression_ast import MAX_SEQUENCE_LENGTH, parse_expression
from jsonmap_kernel.domain.values import to_number, to_text
from jsonmap_kernel.exceptions import ExpressionError, JsonMapError, TransformationError

_BIN_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_COMPARE_OPS: dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}


def _to_int(value: Any) -> int:
    number = to_number(value)
    if number is None:
        raise ValueError(f"cannot convert {to_text(value)!r} to int")
    return int(number)


def _to_float(value: Any) -> float:
    number = to_number(value)
    if number is None:
        raise ValueError(f"cannot convert {to_text(value)!r} to float")
    return float(number)


def _coalesce(*values: Any) -> Any:
    for v in values:
        if v is not None:
            return v
    return None


def _get(record: Any, path: str, default: Any = None) -> Any:
    return get_path(record, path, default)


_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "len": len,
    "str": to_text,
    "int": _to_int,
    "float": _to_float,
    "bool": bool,
    "abs": abs,
    "round": round,
    "min": min,
    "max": max,
    "sum": sum,
    "lower": lambda v: to_text(v).lower(),
    "upper": lambda v: to_text(v).upper(),
    "strip": lambda v: to_text(v).strip(),
    "get": _get,
    "coalesce": _coalesce,
}


def _oversize() -> ValueError:
    return ValueError(f"result length exceeds {MAX_SEQUENCE_LENGTH}")


def _check_size(result: Any) -> Any:
    if isinstance(result, (str, list, tuple)) and len(result) > MAX_SEQUENCE_LENGTH:
        raise _oversize()
    return result


def _projected_length(receiver: str, method: str, args: list[Any]) -> int:
    """Length a growing string method would produce, computed before calling it."""
    if method == "zfill" and args and isinstance(args[0], int):
        return max(len(receiver), args[0])
    if method == "replace" and len(args) >= 2 and isinstance(args[0], str) and isinstance(args[1], str):
        old, new = args[0], args[1]
        hits = receiver.count(old) if old else len(receiver) + 1
        if len(args) > 2 and isinstance(args[2], int) and args[2] >= 0:
            hits = min(hits, args[2])
        return len(receiver) + hits * (len(new) - len(old))
    if method == "join" and args and isinstance(args[0], (str, list, tuple)):
        parts = args[0]
        text = sum(len(p) if isinstance(p, str) else 0 for p in parts)
        return text + len(receiver) * max(len(parts) - 1, 0)
    return len(receiver)


@functools.lru_cache(maxsize=256)
def compile_expression(expression: str) -> ast.expr:
    """Parse and validate ``expression``; raise ExpressionError if rejected."""
    tree, errors = parse_expression(expression)
    if errors or tree is None:
        raise ExpressionError(expression, [e.message for e in errors])
    return tree


class _Interpreter:
    """Walks a validated expression tree against one evaluation context."""

    def __init__(self, context: dict[str, Any]):
        self._context = context

    def eval(self, node: ast.AST) -> Any:
        handler = getattr(self, f"_eval_{type(node).__name__}", None)
        if handler is None:
            raise TypeError(f"unsupported expression node {type(node).__name__}")
        return handler(node)

    def _eval_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def _eval_Name(self, node: ast.Name) -> Any:
        return self._context.get(node.id)

    def _eval_Attribute(self, node: ast.Attribute) -> Any:
        base = self.eval(node.value)
        if isinstance(base, dict):
            return base.get(node.attr)
        return None

    def _eval_Subscript(self, node: ast.Subscript) -> Any:
        base = self.eval(node.value)
        if isinstance(node.slice, ast.Slice):
            parts = [
                None if p is None else self.eval(p)
                for p in (node.slice.lower, node.slice.upper, node.slice.step)
            ]
            return base[slice(*parts)]
        key = self.eval(node.slice)
        if isinstance(base, dict):
            return base.get(key)
        if isinstance(base, (list, tuple, str)):
            if not isinstance(key, int) or isinstance(key, bool):
                raise TypeError(f"index must be an integer, got {type(key).__name__}")
            return base[key] if -len(base) <= key < len(base) else None
        if base is None:
            return None
        raise TypeError(f"'{type(base).__name__}' is not subscriptable")

    def _eval_BoolOp(self, node: ast.BoolOp) -> Any:
        result: Any = None
        if isinstance(node.op, ast.And):
            for part in node.values:
                result = self.eval(part)
                if not result:
                    return result
            return result
        for part in node.values:
            result = self.eval(part)
            if result:
                return result
        return result

    def _eval_UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.eval(node.operand)
        if isinstance(node.op, ast.Not):
            return not operand
        if isinstance(node.op, ast.USub):
            return -operand
        return +operand

    def _eval_BinOp(self, node: ast.BinOp) -> Any:
        left = self.eval(node.left)
        right = self.eval(node.right)
        if isinstance(node.op, ast.Mult):
            for seq, count in ((left, right), (right, left)):
                if (
                    isinstance(seq, (str, list, tuple))
                    and isinstance(count, int)
                    and len(seq) * count > MAX_SEQUENCE_LENGTH
                ):
                    raise _oversize()
        if isinstance(node.op, ast.Mod) and isinstance(left, str):
            raise TypeError("string formatting with % is not supported")
        return _check_size(_BIN_OPS[type(node.op)](left, right))

    def _eval_Compare(self, node: ast.Compare) -> bool:
        left = self.eval(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.eval(comparator)
            if not _COMPARE_OPS[type(op)](left, right):
                return False
            left = right
        return True

    def _eval_IfExp(self, node: ast.IfExp) -> Any:
        return self.eval(node.body) if self.eval(node.test) else self.eval(node.orelse)

    def _eval_List(self, node: ast.List) -> list:
        return [self.eval(e) for e in node.elts]

    def _eval_Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self.eval(e) for e in node.elts)

    def _eval_Dict(self, node: ast.Dict) -> dict:
        return {self.eval(k): self.eval(v) for k, v in zip(node.keys, node.values)}

    def _eval_Call(self, node: ast.Call) -> Any:
        args = [self.eval(a) for a in node.args]
        if isinstance(node.func, ast.Name):
            return _check_size(_FUNCTIONS[node.func.id](*args))
        receiver = self.eval(node.func.value)
        if not isinstance(receiver, str):
            raise TypeError(
                f"method {node.func.attr}() needs a string, got {type(receiver).__name__}"
            )
        if _projected_length(receiver, node.func.attr, args) > MAX_SEQUENCE_LENGTH:
            raise _oversize()
        return _check_size(getattr(receiver, node.func.attr)(*args))


def evaluate_expression(
    expression: str,
    *,
    value: Any = None,
    data: Any = None,
    output: Any = None,
    target: str = "",
) -> Any:
    """Evaluate ``expression`` with ``value``, ``data`` and ``output`` bound."""
    tree = compile_expression(expression)
    interpreter = _Interpreter({"value": value, "data": data, "output": output})
    try:
        return interpreter.eval(tree)
    except JsonMapError:
        raise
    except Exception as e:
        raise TransformationError(target, f"{type(e).__name__}: {e}") from e


def evaluate_predicate(
    expression: str,
    *,
    value: Any = None,
    data: Any = None,
    output: Any = None,
    target: str = "",
) -> bool:
    """Truthiness of ``expression`` under the same rules as evaluate_expression."""
    return bool(
        evaluate_expression(expression, value=value, data=data, output=output, target=target)
    )
