"""Restricted evaluator for workflow branch conditions.

Conditions are small boolean expressions over a single variable, ``result``
(the output of the step that just ran)::

    result.status === "ok" && result.count > 3
    !result.failed
    "error" in result

JavaScript-style operators (``===``, ``!==``, ``&&``, ``||``, ``!``) and the
literals ``true``, ``false``, ``null`` and ``undefined`` are accepted next to
their Python spellings. Expressions are parsed with :mod:`ast` and walked
node by node; anything outside the small grammar below is rejected, there is
no general-purpose evaluation.
"""

import ast
import operator
from typing import Any, Callable, Dict

import structlog

from gateway.domain.errors import ConditionError

logger = structlog.get_logger(__name__)

_LITERAL_NAMES: Dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
    "True": True,
    "False": False,
    "None": None,
}

_COMPARISONS: Dict[type, Callable[[Any, Any], bool]] = {
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

_ARITHMETIC: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Mod: operator.mod,
}

_STRING_METHODS: Dict[str, Callable[[Any, Any], bool]] = {
    "includes": lambda target, arg: arg in target,
    "startsWith": lambda target, arg: target.startswith(arg),
    "endsWith": lambda target, arg: target.endswith(arg),
}


def normalize(expression: str) -> str:
    """Rewrite JavaScript operators to Python ones, leaving string literals alone"""
    out = []
    quote = None
    i = 0
    n = len(expression)
    while i < n:
        ch = expression[i]
        if quote:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(expression[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue

        if ch in ("'", '"'):
            quote = ch
            out.append(ch)
        elif expression.startswith("===", i):
            out.append("==")
            i += 3
            continue
        elif expression.startswith("!==", i):
            out.append("!=")
            i += 3
            continue
        elif expression.startswith("&&", i):
            out.append(" and ")
            i += 2
            continue
        elif expression.startswith("||", i):
            out.append(" or ")
            i += 2
            continue
        elif ch == "!" and not expression.startswith("!=", i):
            out.append(" not ")
        else:
            out.append(ch)
        i += 1
    return "".join(out).strip()


def _lookup(target: Any, key: Any) -> Any:
    # Missing keys read as null, like property access on a plain object
    if isinstance(target, dict):
        return target.get(key)
    if isinstance(target, (list, tuple, str)):
        if key == "length":
            return len(target)
        if isinstance(key, int) and -len(target) <= key < len(target):
            return target[key]
        return None
    return None


class _Evaluator:
    def __init__(self, result: Any):
        self.result = result

    def visit(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Expression):
            return self.visit(node.body)

        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.Name):
            if node.id == "result":
                return self.result
            if node.id in _LITERAL_NAMES:
                return _LITERAL_NAMES[node.id]
            raise ConditionError(f"Unknown name: {node.id}")

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                value: Any = True
                for operand in node.values:
                    value = self.visit(operand)
                    if not value:
                        return value
                return value
            value = False
            for operand in node.values:
                value = self.visit(operand)
                if value:
                    return value
            return value

        if isinstance(node, ast.UnaryOp):
            operand = self.visit(node.operand)
            if isinstance(node.op, ast.Not):
                return not operand
            if isinstance(node.op, ast.USub):
                return -operand
            raise ConditionError(f"Unsupported unary operator: {type(node.op).__name__}")

        if isinstance(node, ast.Compare):
            left = self.visit(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                compare = _COMPARISONS.get(type(op))
                if compare is None:
                    raise ConditionError(f"Unsupported comparison: {type(op).__name__}")
                right = self.visit(comparator)
                if not compare(left, right):
                    return False
                left = right
            return True

        if isinstance(node, ast.BinOp):
            apply = _ARITHMETIC.get(type(node.op))
            if apply is None:
                raise ConditionError(f"Unsupported operator: {type(node.op).__name__}")
            return apply(self.visit(node.left), self.visit(node.right))

        if isinstance(node, ast.Attribute):
            return _lookup(self.visit(node.value), node.attr)

        if isinstance(node, ast.Subscript):
            return _lookup(self.visit(node.value), self.visit(node.slice))

        if isinstance(node, (ast.List, ast.Tuple)):
            return [self.visit(element) for element in node.elts]

        if isinstance(node, ast.Call):
            func = node.func
            if (
                isinstance(func, ast.Attribute)
                and func.attr in _STRING_METHODS
                and len(node.args) == 1
                and not node.keywords
            ):
                target = self.visit(func.value)
                if not isinstance(target, str) and not (func.attr == "includes" and isinstance(target, list)):
                    return False
                return _STRING_METHODS[func.attr](target, self.visit(node.args[0]))
            raise ConditionError("Function calls are not allowed")

        raise ConditionError(f"Unsupported expression: {type(node).__name__}")


def evaluate_condition(condition: str, result: Any) -> bool:
    """Evaluate ``condition`` against ``result``; invalid expressions are false"""
    try:
        tree = ast.parse(normalize(condition), mode="eval")
        return bool(_Evaluator(result).visit(tree))
    except (ConditionError, SyntaxError, TypeError, ValueError, ZeroDivisionError) as e:
        logger.info("Condition evaluation failed", condition=condition, error=str(e))
        return False
