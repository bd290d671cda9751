from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from wowverbs.errors import UnparsableExpressionError
from wowverbs.util import KEYWORDS, _is_identifier

# =========================
# Shared expression language (tokenizer + parser + formatter)
# Nodes are plain dicts so that a parsed tree is JSON-safe as-is.
# =========================

Node = Dict[str, Any]

NODE_TYPES = frozenset({
    "Column", "Literal", "UnaryExpression", "BinaryExpression", "LogicalExpression", "CallExpression",
})

_re_ws = re.compile(r"\s+")
_re_ident = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_re_number = re.compile(r"(?:\d+\.\d*|\d*\.\d+|\d+)(?:[eE][+-]?\d+)?")

OPS_2 = {"==", "!=", ">=", "<="}
OPS_1 = {">", "<", "(", ")", "+", "-", "*", "/", "%", ","}
CMP_OPS = {"==", "!=", ">=", "<=", ">", "<"}


class _ExprTok:
    __slots__ = ("typ", "val", "pos")

    def __init__(self, typ: str, val: Any, pos: int):
        self.typ = typ
        self.val = val
        self.pos = pos


def _caret(src: str, pos: int) -> str:
    return f"At position {pos}: {src}\n" + (" " * (pos + len(f"At position {pos}: "))) + "^"


def _parse_error(message: str, src: str, pos: int) -> UnparsableExpressionError:
    return UnparsableExpressionError(message, hint=_caret(src, pos), code="E_EXPR_PARSE")


def _read_quoted(src: str, i: int) -> tuple:
    """Read a quoted run starting at src[i]; returns (text, next_index)."""
    q = src[i]
    j = i + 1
    n = len(src)
    buf = []
    while j < n:
        ch = src[j]
        if ch == "\\" and j + 1 < n:
            buf.append(src[j + 1])
            j += 2
            continue
        if ch == q:
            return "".join(buf), j + 1
        buf.append(ch)
        j += 1
    raise _parse_error("Unterminated quoted text in expression.", src, i)


def _expr_tokenize(src: str) -> List[_ExprTok]:
    out: List[_ExprTok] = []
    i = 0
    n = len(src)

    while i < n:
        m = _re_ws.match(src, i)
        if m:
            i = m.end()
            continue

        if src[i] in ("'", '"'):
            text, j = _read_quoted(src, i)
            out.append(_ExprTok("STR", text, i))
            i = j
            continue

        if src[i] == "`":
            text, j = _read_quoted(src, i)
            out.append(_ExprTok("IDENT", text, i))
            i = j
            continue

        two = src[i: i + 2]
        if two in OPS_2:
            out.append(_ExprTok("OP", two, i))
            i += 2
            continue

        if src[i] in OPS_1:
            out.append(_ExprTok("OP", src[i], i))
            i += 1
            continue

        m = _re_number.match(src, i)
        if m:
            s = m.group(0)
            out.append(_ExprTok("NUM", float(s) if ("." in s or "e" in s or "E" in s) else int(s), i))
            i = m.end()
            continue

        m = _re_ident.match(src, i)
        if m:
            s = m.group(0)
            low = s.lower()
            if low in KEYWORDS:
                out.append(_ExprTok("KW", low, i))
            else:
                out.append(_ExprTok("IDENT", s, i))
            i = m.end()
            continue

        raise _parse_error(f"Unexpected character {src[i]!r} in expression.", src, i)

    out.append(_ExprTok("EOF", None, n))
    return out


def parse_expression(src: str, kind: Optional[str] = None) -> Node:
    """Parse expression source text into a JSON-safe syntax tree.

    `kind` is the parameter kind the expression belongs to; it is only used to
    make error messages more specific.
    """
    if not isinstance(src, str) or not src.strip():
        raise UnparsableExpressionError(
            f"Expected non-empty expression source text{_for_kind(kind)}.",
            hint="Example: \"price * quantity\" or \"sum(amount)\".",
            code="E_EXPR_PARSE",
        )
    toks = _expr_tokenize(src)
    k = 0

    def _peek() -> _ExprTok:
        return toks[k]

    def _is_op(*vals: str) -> bool:
        t = toks[k]
        return t.typ == "OP" and t.val in vals

    def _is_kw(val: str) -> bool:
        t = toks[k]
        return t.typ == "KW" and t.val == val

    def _eat(expected_typ: str, expected_val: Optional[str] = None) -> _ExprTok:
        nonlocal k
        t = toks[k]
        if t.typ != expected_typ:
            raise _parse_error(f"Expected {expected_typ} but found {t.typ}{_for_kind(kind)}.", src, t.pos)
        if expected_val is not None and t.val != expected_val:
            raise _parse_error(f"Expected '{expected_val}' but found '{t.val}'{_for_kind(kind)}.", src, t.pos)
        k += 1
        return t

    def parse_expr() -> Node:
        return parse_or()

    def parse_or() -> Node:
        node = parse_and()
        while _is_kw("or"):
            _eat("KW", "or")
            node = {"type": "LogicalExpression", "operator": "or", "left": node, "right": parse_and()}
        return node

    def parse_and() -> Node:
        node = parse_cmp()
        while _is_kw("and"):
            _eat("KW", "and")
            node = {"type": "LogicalExpression", "operator": "and", "left": node, "right": parse_cmp()}
        return node

    def parse_cmp() -> Node:
        left = parse_add()
        if _is_op(*CMP_OPS):
            op_tok = _eat("OP")
            right = parse_add()
            return {"type": "BinaryExpression", "operator": op_tok.val, "left": left, "right": right}
        return left

    def parse_add() -> Node:
        node = parse_mul()
        while _is_op("+", "-"):
            op_tok = _eat("OP")
            node = {"type": "BinaryExpression", "operator": op_tok.val, "left": node, "right": parse_mul()}
        return node

    def parse_mul() -> Node:
        node = parse_unary()
        while _is_op("*", "/", "%"):
            op_tok = _eat("OP")
            node = {"type": "BinaryExpression", "operator": op_tok.val, "left": node, "right": parse_unary()}
        return node

    def parse_unary() -> Node:
        if _is_kw("not"):
            _eat("KW", "not")
            return {"type": "UnaryExpression", "operator": "not", "argument": parse_unary()}
        if _is_op("-"):
            _eat("OP", "-")
            return {"type": "UnaryExpression", "operator": "-", "argument": parse_unary()}
        return parse_atom()

    def parse_call(name: str) -> Node:
        _eat("OP", "(")
        args: List[Node] = []
        if not _is_op(")"):
            args.append(parse_expr())
            while _is_op(","):
                _eat("OP", ",")
                args.append(parse_expr())
        _eat("OP", ")")
        return {"type": "CallExpression", "callee": name, "arguments": args}

    def parse_atom() -> Node:
        t = _peek()
        if t.typ == "OP" and t.val == "(":
            _eat("OP", "(")
            node = parse_expr()
            _eat("OP", ")")
            return node
        if t.typ == "IDENT":
            _eat("IDENT")
            if _is_op("(") and src[t.pos] != "`":
                return parse_call(t.val)
            return {"type": "Column", "name": t.val}
        if t.typ in ("NUM", "STR"):
            _eat(t.typ)
            return {"type": "Literal", "value": t.val}
        if t.typ == "KW" and t.val in {"true", "false", "null"}:
            _eat("KW")
            return {"type": "Literal", "value": {"true": True, "false": False, "null": None}[t.val]}
        raise _parse_error(f"Unexpected token '{t.val}' in expression{_for_kind(kind)}.", src, t.pos)

    ast = parse_expr()
    _eat("EOF")
    return ast


def _for_kind(kind: Optional[str]) -> str:
    if kind is None:
        return ""
    return f" (parameter kind: {getattr(kind, 'value', kind)})"


# ---------------- Formatter (tree -> source text) ----------------

_PRECEDENCE = {
    "or": 1,
    "and": 2,
    "==": 3, "!=": 3, ">=": 3, "<=": 3, ">": 3, "<": 3,
    "+": 4, "-": 4,
    "*": 5, "/": 5, "%": 5,
}
_UNARY_PRECEDENCE = 6


def _format_literal(value: Any) -> str:
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, int):
        return repr(value)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise UnparsableExpressionError(f"Non-finite number {value!r} cannot be written as expression source.")
        return repr(value)
    if isinstance(value, str):
        return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
    raise UnparsableExpressionError(
        f"Literal of type {type(value).__name__} cannot be written as expression source.",
        hint="Literals may be null, booleans, numbers or strings.",
    )


def _format_column(name: Any) -> str:
    if _is_identifier(name):
        return name
    if not isinstance(name, str):
        raise UnparsableExpressionError(f"Column node has a non-string name: {name!r}.")
    return "`" + name.replace("\\", "\\\\").replace("`", "\\`") + "`"


def format_expression(node: Node) -> str:
    """Write a syntax tree back to source text that `parse_expression` accepts."""
    text, _ = _format(node)
    return text


def _format(node: Any) -> tuple:
    """Returns (text, precedence) for the node."""
    typ = node.get("type") if isinstance(node, dict) else None
    if typ == "Column":
        return _format_column(node.get("name")), 99
    if typ == "Literal":
        value = node.get("value")
        prec = _UNARY_PRECEDENCE if isinstance(value, (int, float)) and not isinstance(value, bool) and value < 0 else 99
        return _format_literal(value), prec
    if typ == "CallExpression":
        args = ", ".join(_format(a)[0] for a in node.get("arguments") or [])
        return f"{node.get('callee')}({args})", 99
    if typ == "UnaryExpression":
        op = node.get("operator")
        arg, arg_prec = _format(node.get("argument"))
        if arg_prec < _UNARY_PRECEDENCE:
            arg = f"({arg})"
        return (f"not {arg}" if op == "not" else f"-{arg}"), _UNARY_PRECEDENCE
    if typ in ("BinaryExpression", "LogicalExpression"):
        op = node.get("operator")
        prec = _PRECEDENCE.get(op)
        if prec is None:
            raise UnparsableExpressionError(f"Unsupported operator {op!r} in syntax tree.")
        left, left_prec = _format(node.get("left"))
        right, right_prec = _format(node.get("right"))
        # left-associative: equal precedence on the right needs parentheses
        if left_prec < prec or (prec == 3 and left_prec == 3):
            left = f"({left})"
        if right_prec <= prec:
            right = f"({right})"
        return f"{left} {op} {right}", prec
    raise UnparsableExpressionError(
        f"Unsupported syntax tree node: {typ!r}.",
        hint="Supported node types: Column, Literal, UnaryExpression, BinaryExpression, "
             "LogicalExpression, CallExpression.",
    )
