"""
Restricted AST for custom-function and conditional expressions.

Mapping functions and predicates are authored by users and stored as text.
They are parsed as Python expressions and checked against a fixed node and
name whitelist.  Nothing outside the whitelist is ever evaluated; the
interpreter in ``jsonmap_engines.expressions`` walks the validated tree
itself and never calls ``eval``/``exec``.

Allowed:
  - Names: value, data, output, True, False, None
  - Field access: data.customer.id (any depth), data["a"][0], slices
  - Arithmetic: + - * / // %  (no power operator)
  - Comparisons: <, <=, >, >=, ==, !=, is, is not, in, not in
  - Logical: and, or, not; unary + and -
  - Conditional: ternary (a if b else c)
  - Literals: numbers, strings, booleans, None, lists, tuples, dicts
  - Functions: see ALLOWED_FUNCTIONS
  - String methods: see ALLOWED_METHODS

Rejected:
  - imports, lambdas, comprehensions, walrus, f-strings, starred args,
    arbitrary names and calls, dunder attributes

Bounds:
  - MAX_EXPRESSION_LENGTH characters of source text
  - MAX_NODES AST nodes
"""

import ast
from dataclasses import dataclass

MAX_EXPRESSION_LENGTH = 2000
MAX_NODES = 250
MAX_SEQUENCE_LENGTH = 100_000

# Roots bound by the interpreter
CONTEXT_ROOTS: frozenset[str] = frozenset({"value", "data", "output"})

ALLOWED_NAMES: frozenset[str] = frozenset({"True", "False", "None"} | CONTEXT_ROOTS)

ALLOWED_FUNCTIONS: frozenset[str] = frozenset({
    "len", "str", "int", "float", "bool", "abs", "round", "min", "max", "sum",
    "lower", "upper", "strip", "get", "coalesce",
})

ALLOWED_METHODS: frozenset[str] = frozenset({
    "upper", "lower", "strip", "lstrip", "rstrip", "title", "capitalize",
    "replace", "split", "startswith", "endswith", "zfill", "join",
})

_COMPARE_OPS = (
    ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE,
    ast.In, ast.NotIn, ast.Is, ast.IsNot,
)
_BIN_OPS = (ast.Add, ast.Sub, ast.Mult, ast.Div, ast.FloorDiv, ast.Mod)
_UNARY_OPS = (ast.Not, ast.USub, ast.UAdd)


@dataclass(frozen=True)
class ExpressionASTError:
    """A validation error found in an expression."""

    expression: str
    message: str
    node_type: str = ""


def parse_expression(expression: str) -> tuple[ast.expr | None, list[ExpressionASTError]]:
    """Parse and validate; return the expression body and any errors."""
    if not isinstance(expression, str) or not expression.strip():
        return None, [ExpressionASTError(expression=str(expression), message="Empty expression")]
    if len(expression) > MAX_EXPRESSION_LENGTH:
        return None, [
            ExpressionASTError(
                expression=expression[:80],
                message=f"Expression longer than {MAX_EXPRESSION_LENGTH} characters",
            )
        ]

    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        return None, [ExpressionASTError(expression=expression, message=f"Syntax error: {e.msg}")]

    node_count = sum(1 for _ in ast.walk(tree.body))
    if node_count > MAX_NODES:
        return None, [
            ExpressionASTError(
                expression=expression,
                message=f"Expression has {node_count} nodes (limit {MAX_NODES})",
            )
        ]

    errors: list[ExpressionASTError] = []
    _validate_node(tree.body, expression, errors)
    return tree.body, errors


def validate_expression(expression: str) -> list[ExpressionASTError]:
    """Validate an expression against the restricted AST.

    Returns a list of errors. Empty list means the expression is valid.
    """
    _, errors = parse_expression(expression)
    return errors


def _validate_node(node: ast.AST, expression: str, errors: list[ExpressionASTError]) -> None:
    """Recursively validate an AST node."""

    def reject(message: str, node_type: str) -> None:
        errors.append(ExpressionASTError(expression=expression, message=message, node_type=node_type))

    if isinstance(node, ast.BoolOp):
        for value in node.values:
            _validate_node(value, expression, errors)

    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, _UNARY_OPS):
            reject(f"Disallowed unary operator: {type(node.op).__name__}", type(node.op).__name__)
        _validate_node(node.operand, expression, errors)

    elif isinstance(node, ast.Compare):
        _validate_node(node.left, expression, errors)
        for comparator in node.comparators:
            _validate_node(comparator, expression, errors)
        for op in node.ops:
            if not isinstance(op, _COMPARE_OPS):
                reject(f"Disallowed comparison: {type(op).__name__}", type(op).__name__)

    elif isinstance(node, ast.BinOp):
        if isinstance(node.op, _BIN_OPS):
            _validate_node(node.left, expression, errors)
            _validate_node(node.right, expression, errors)
        else:
            reject(f"Disallowed binary operator: {type(node.op).__name__}", type(node.op).__name__)

    elif isinstance(node, ast.Call):
        if node.keywords:
            reject("Keyword arguments are not allowed", "Call")
        for arg in node.args:
            if isinstance(arg, ast.Starred):
                reject("Starred arguments are not allowed", "Starred")
            else:
                _validate_node(arg, expression, errors)
        if isinstance(node.func, ast.Name):
            if node.func.id not in ALLOWED_FUNCTIONS:
                reject(f"Disallowed function call: {node.func.id}", "Call")
        elif isinstance(node.func, ast.Attribute):
            if node.func.attr not in ALLOWED_METHODS:
                reject(f"Disallowed method call: {node.func.attr}", "Call")
            _validate_node(node.func.value, expression, errors)
        else:
            reject(f"Disallowed function call: {_get_name(node.func)}", "Call")

    elif isinstance(node, ast.Attribute):
        if node.attr.startswith("_"):
            reject(f"Disallowed attribute access: {node.attr}", "Attribute")
        if _root_name(node) not in CONTEXT_ROOTS:
            reject(
                f"Disallowed attribute access: {_get_name(node)}. "
                f"Only {', '.join(sorted(CONTEXT_ROOTS))}.field access is allowed.",
                "Attribute",
            )
        _validate_node(node.value, expression, errors)

    elif isinstance(node, ast.Subscript):
        _validate_node(node.value, expression, errors)
        _validate_node(node.slice, expression, errors)

    elif isinstance(node, ast.Slice):
        for part in (node.lower, node.upper, node.step):
            if part is not None:
                _validate_node(part, expression, errors)

    elif isinstance(node, ast.Name):
        if node.id not in ALLOWED_NAMES:
            reject(f"Disallowed name: {node.id}", "Name")

    elif isinstance(node, ast.Constant):
        if not isinstance(node.value, (int, float, str, bool, type(None))):
            reject(f"Disallowed constant type: {type(node.value).__name__}", "Constant")

    elif isinstance(node, (ast.List, ast.Tuple)):
        for elt in node.elts:
            _validate_node(elt, expression, errors)

    elif isinstance(node, ast.Dict):
        for key in node.keys:
            if key is None:
                reject("Dict unpacking is not allowed", "Dict")
            else:
                _validate_node(key, expression, errors)
        for val in node.values:
            _validate_node(val, expression, errors)

    elif isinstance(node, ast.IfExp):
        _validate_node(node.test, expression, errors)
        _validate_node(node.body, expression, errors)
        _validate_node(node.orelse, expression, errors)

    elif isinstance(node, ast.Lambda):
        reject("Lambda expressions are not allowed", "Lambda")

    else:
        reject(f"Disallowed AST node type: {type(node).__name__}", type(node).__name__)


def _root_name(node: ast.AST) -> str | None:
    """Name at the bottom of an attribute/subscript chain."""
    while isinstance(node, (ast.Attribute, ast.Subscript)):
        node = node.value
    return node.id if isinstance(node, ast.Name) else None


def _get_name(node: ast.AST) -> str:
    """Extract a human-readable name from an AST node."""
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return f"{_get_name(node.value)}.{node.attr}"
    return type(node).__name__
