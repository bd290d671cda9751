from __future__ import annotations

import difflib
from typing import Any, Callable, Dict, List, Optional, Sequence

from wowverbs.errors import WowVerbsUserError
from wowverbs.models.expr import Expr
from wowverbs.parser import Node, parse_expression

Row = Dict[str, Any]
RowFn = Callable[[Row, Optional[List[Row]]], Any]


def _looks_number(v: Any) -> bool:
    if v is None or isinstance(v, bool):
        return False
    if isinstance(v, (int, float)):
        return True
    if isinstance(v, str):
        s = v.strip()
        if s == "":
            return False
        try:
            float(s)
            return True
        except ValueError:
            return False
    return False


def _to_number(v: Any) -> Any:
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return v
    s = v.strip()
    try:
        return int(s)
    except ValueError:
        return float(s)


def _numeric(op: str, v: Any) -> Any:
    if not _looks_number(v):
        raise WowVerbsUserError(
            "E_EXPR_TYPE",
            f"Operator '{op}' expects numbers but got {v!r}.",
            hint="Cast the column to a number, or check the expression.",
        )
    return _to_number(v)


def _arith(op: str, a: Any, b: Any) -> Any:
    if a is None or b is None:
        return None
    if op == "+" and isinstance(a, str) and isinstance(b, str) and not (_looks_number(a) and _looks_number(b)):
        return a + b
    x = _numeric(op, a)
    y = _numeric(op, b)
    if op == "+":
        return x + y
    if op == "-":
        return x - y
    if op == "*":
        return x * y
    if y == 0:
        return None
    if op == "/":
        return x / y
    return x % y


def _compare(op: str, a: Any, b: Any) -> bool:
    if op in ("==", "!="):
        if _looks_number(a) and _looks_number(b):
            a, b = _to_number(a), _to_number(b)
        return (a == b) if op == "==" else (a != b)
    if a is None or b is None:
        return False
    if _looks_number(a) and _looks_number(b):
        a, b = _to_number(a), _to_number(b)
    elif not (isinstance(a, str) and isinstance(b, str)):
        raise WowVerbsUserError(
            "E_EXPR_TYPE",
            f"Type mismatch in comparison: {a!r} {op} {b!r}.",
            hint="Compare numbers with numbers and text with text.",
        )
    if op == ">":
        return a > b
    if op == ">=":
        return a >= b
    if op == "<":
        return a < b
    return a <= b


def _nonnull(values: List[Any]) -> List[Any]:
    return [v for v in values if v is not None]


def _mean(values: List[Any]) -> Any:
    nums = [_numeric("mean", v) for v in _nonnull(values)]
    return sum(nums) / len(nums) if nums else None


AGGREGATES: Dict[str, Callable[[List[Any]], Any]] = {
    "count": lambda vs: len(_nonnull(vs)),
    "sum": lambda vs: sum(_numeric("sum", v) for v in _nonnull(vs)),
    "mean": _mean,
    "min": lambda vs: min(_nonnull(vs), default=None),
    "max": lambda vs: max(_nonnull(vs), default=None),
    "distinct": lambda vs: len(set(_nonnull(vs))),
}

FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "abs": lambda x: None if x is None else abs(_numeric("abs", x)),
    "round": lambda x, nd=0: None if x is None else round(_numeric("round", x), int(nd)),
    "lower": lambda s: None if s is None else str(s).lower(),
    "upper": lambda s: None if s is None else str(s).upper(),
    "length": lambda s: None if s is None else len(s),
    "coalesce": lambda *xs: next((x for x in xs if x is not None), None),
}


def compile_expr(e: Expr, columns: Sequence[str], *, label: str = "expression") -> RowFn:
    """Compile an expression into fn(row, group) over dict rows.

    `group` is the list of rows aggregate functions range over; None means the row alone.
    """
    columns = list(columns)
    if e.kind == "func" or (e.kind == "source" and e.func is not None):
        fn = e.func
        return lambda row, group: fn(row)
    if e.kind == "name":
        return compile_node({"type": "Column", "name": e.text}, columns, label=label)
    if e.kind == "source":
        return compile_node(parse_expression(e.text, label), columns, label=label)
    return compile_node(e.tree, columns, label=label)


def compile_node(tree: Node, columns: Sequence[str], *, label: str = "expression") -> RowFn:
    colset = set(columns)

    def _suggest(name: str) -> str:
        matches = difflib.get_close_matches(name, columns, n=3, cutoff=0.6)
        if matches:
            return f"Did you mean {matches[0]!r}?"
        return "Available columns: " + ", ".join(columns)

    def _check(node: Any) -> None:
        # resolve column names up front so mistakes surface before any row is read
        if not isinstance(node, dict):
            return
        typ = node.get("type")
        if typ == "Column" and node.get("name") not in colset:
            raise WowVerbsUserError(
                "E_EXPR_UNKNOWN_COL",
                f"Unknown column {node.get('name')!r} in {label}.",
                hint=_suggest(str(node.get("name"))),
            )
        if typ == "CallExpression":
            callee = node.get("callee")
            if callee not in AGGREGATES and callee not in FUNCTIONS:
                raise WowVerbsUserError(
                    "E_EXPR_UNKNOWN_FN",
                    f"Unknown function {callee!r} in {label}.",
                    hint="Functions: " + ", ".join(sorted({*AGGREGATES, *FUNCTIONS})),
                )
        for key in ("left", "right", "argument"):
            _check(node.get(key))
        for arg in node.get("arguments") or []:
            _check(arg)

    def _eval(node: Node, row: Row, group: Optional[List[Row]]) -> Any:
        typ = node.get("type")
        if typ == "Literal":
            return node.get("value")
        if typ == "Column":
            return row.get(node["name"])
        if typ == "LogicalExpression":
            if node["operator"] == "and":
                return bool(_eval(node["left"], row, group)) and bool(_eval(node["right"], row, group))
            return bool(_eval(node["left"], row, group)) or bool(_eval(node["right"], row, group))
        if typ == "UnaryExpression":
            v = _eval(node["argument"], row, group)
            if node["operator"] == "not":
                return not bool(v)
            return None if v is None else -_numeric("-", v)
        if typ == "BinaryExpression":
            op = node["operator"]
            a = _eval(node["left"], row, group)
            b = _eval(node["right"], row, group)
            if op in ("==", "!=", ">", ">=", "<", "<="):
                return _compare(op, a, b)
            return _arith(op, a, b)
        if typ == "CallExpression":
            callee = node["callee"]
            args = node.get("arguments") or []
            if callee in AGGREGATES:
                rows = group if group is not None else [row]
                if not args:
                    return len(rows)
                return AGGREGATES[callee]([_eval(args[0], r, None) for r in rows])
            return FUNCTIONS[callee](*[_eval(a, row, group) for a in args])
        raise WowVerbsUserError(
            "E_EXPR_UNSUPPORTED",
            f"Unsupported construct {typ!r} in {label}.",
            hint="Use columns, literals, arithmetic, comparisons, and/or/not and function calls.",
        )

    _check(tree)
    return lambda row, group: _eval(tree, row, group)
