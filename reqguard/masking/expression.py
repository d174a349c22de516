"""Bypass-expression evaluation for mask rules.

Expressions use a template form: ``${...}`` wraps a restricted Python
expression. Text without ``${`` is a literal and therefore never ``True``.

    ${headers.get('x-internal-view') == 'true'}
    ${env.get('MASKING_DISABLED') == '1' and path.startswith('/admin')}

The evaluator walks the parsed AST and only accepts literals, names,
boolean and comparison operators, mapping/attribute lookups, subscripts and
a short list of calls. Nothing is passed to ``eval``.
"""

from __future__ import annotations

import ast
import operator
import os
import re
import tempfile
import time
import uuid
from collections.abc import Callable, Mapping
from contextvars import ContextVar, Token
from datetime import date, datetime, timezone
from typing import Any

import structlog

from reqguard.exceptions import ExpressionError

logger = structlog.get_logger()

_TEMPLATE_RE = re.compile(r"\$\{(.*?)\}", re.DOTALL)
_FULL_TEMPLATE_RE = re.compile(r"^\s*\$\{(.*)\}\s*$", re.DOTALL)

_MAX_EXPRESSION_LENGTH = 1024

_COMPARE_OPS: dict[type[ast.cmpop], Callable[[Any, Any], bool]] = {
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

_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "len": len,
    "str": str,
    "int": int,
    "bool": bool,
    "lower": lambda s: str(s).lower(),
    "upper": lambda s: str(s).upper(),
}

_METHODS: dict[type, frozenset[str]] = {
    str: frozenset({"lower", "upper", "startswith", "endswith", "strip"}),
    dict: frozenset({"get"}),
}

_CONSTANTS = {"true": True, "false": False, "null": None}

# Request-scoped variables, bound per request by the ASGI adapter.
_current_scope: ContextVar[Mapping[str, Any] | None] = ContextVar("mask_scope", default=None)


def bind_scope(scope: Mapping[str, Any]) -> Token:
    """Make *scope* the expression scope for the current request."""
    return _current_scope.set(scope)


def reset_scope(token: Token) -> None:
    _current_scope.reset(token)


def current_scope() -> Mapping[str, Any]:
    return _current_scope.get() or {}


class _Evaluator:
    def __init__(self, variables: Mapping[str, Any], source: str) -> None:
        self._variables = variables
        self._source = source

    def _fail(self, message: str) -> ExpressionError:
        return ExpressionError(message, expression=self._source)

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise self._fail(f"Unsupported syntax: {type(node).__name__}")
        return method(node)

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in _CONSTANTS:
            return _CONSTANTS[node.id]
        if node.id in self._variables:
            return self._variables[node.id]
        raise self._fail(f"Unknown variable: {node.id}")

    def visit_List(self, node: ast.List) -> Any:
        return [self.visit(e) for e in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> Any:
        return tuple(self.visit(e) for e in node.elts)

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.visit(node.operand)
        if isinstance(node.op, ast.Not):
            return not operand
        if isinstance(node.op, ast.USub):
            return -operand
        raise self._fail(f"Unsupported operator: {type(node.op).__name__}")

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            fn = _COMPARE_OPS.get(type(op))
            if fn is None:
                raise self._fail(f"Unsupported comparison: {type(op).__name__}")
            right = self.visit(comparator)
            try:
                ok = fn(left, right)
            except TypeError as exc:
                raise self._fail(f"Invalid comparison: {exc}") from exc
            if not ok:
                return False
            left = right
        return True

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        if node.attr.startswith("_"):
            raise self._fail(f"Access to private attribute: {node.attr}")
        target = self.visit(node.value)
        if isinstance(target, Mapping):
            return target.get(node.attr)
        raise self._fail(f"Attribute access is only allowed on mappings: {node.attr}")

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        target = self.visit(node.value)
        key = self.visit(node.slice)
        try:
            if isinstance(target, Mapping):
                return target.get(key)
            return target[key]
        except (IndexError, KeyError, TypeError) as exc:
            raise self._fail(f"Invalid subscript: {exc}") from exc

    def visit_Call(self, node: ast.Call) -> Any:
        if node.keywords:
            raise self._fail("Keyword arguments are not supported")
        args = [self.visit(a) for a in node.args]
        func = node.func
        if isinstance(func, ast.Name):
            fn = _FUNCTIONS.get(func.id)
            if fn is None:
                raise self._fail(f"Unknown function: {func.id}")
            return fn(*args)
        if isinstance(func, ast.Attribute):
            target = self.visit(func.value)
            for kind, allowed in _METHODS.items():
                if isinstance(target, kind) and func.attr in allowed:
                    return getattr(target, func.attr)(*args)
            if isinstance(target, Mapping) and func.attr == "get":
                return target.get(*args)
            raise self._fail(f"Method not allowed: {func.attr}")
        raise self._fail("Unsupported call target")


def _builtin_variables() -> dict[str, Any]:
    environ = dict(os.environ)
    now = datetime.now().astimezone()
    now_utc = datetime.now(timezone.utc)
    return {
        "env": environ,
        "environment": environ,
        "temp_dir": tempfile.gettempdir(),
        "zone_id": time.tzname[0],
        "uuid": str(uuid.uuid4()),
        "now": now.isoformat(),
        "now_utc": now_utc.isoformat(),
        "today": date.today().isoformat(),
        "today_utc": now_utc.date().isoformat(),
    }


class ExpressionResolver:
    """Resolves ``${...}`` templates against built-in and request-scoped variables.

    *properties* is exposed to expressions as ``props``; pass the application
    property lookup so expressions can read configuration.
    """

    def __init__(self, properties: Callable[[], Mapping[str, Any]] | None = None) -> None:
        self._properties = properties

    def variables(self, scope: Mapping[str, Any] | None = None) -> dict[str, Any]:
        variables = _builtin_variables()
        variables["props"] = dict(self._properties()) if self._properties else {}
        variables.update(current_scope())
        if scope:
            variables.update(scope)
        return variables

    def evaluate(self, expression: str, scope: Mapping[str, Any] | None = None) -> Any:
        """Evaluate a bare expression (no ``${}``)."""
        if len(expression) > _MAX_EXPRESSION_LENGTH:
            raise ExpressionError("Expression too long", expression=expression[:64])
        try:
            tree = ast.parse(expression.strip(), mode="eval")
        except SyntaxError as exc:
            raise ExpressionError(f"Invalid expression: {exc.msg}", expression=expression) from exc
        result = _Evaluator(self.variables(scope), expression).visit(tree)
        logger.debug("expression_resolved", expression=expression, result_type=type(result).__name__)
        return result

    def resolve(self, value: str | None, scope: Mapping[str, Any] | None = None) -> Any:
        """Resolve a template.

        ``"${expr}"`` returns the value of ``expr`` (any type); text with
        embedded templates returns the interpolated string; other text is
        returned unchanged.
        """
        if value is None or not value.strip():
            return value
        full = _FULL_TEMPLATE_RE.match(value)
        if full and "${" not in full.group(1):
            return self.evaluate(full.group(1), scope)
        if "${" not in value:
            return value
        return _TEMPLATE_RE.sub(lambda m: str(self.evaluate(m.group(1), scope)), value)
