from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from wowverbs.errors import UnparsableExpressionError, WowVerbsUserError
from wowverbs.parser import NODE_TYPES, Node, _format_column, format_expression, parse_expression
from wowverbs.util import _is_identifier, _plain

Parser = Callable[[str, Any], Node]


@dataclass(frozen=True)
class Expr:
    """A table expression.

    - kind="name":   a bare column name (`text`)
    - kind="source": parseable source text (`text`), optionally with an equivalent live `func`
    - kind="func":   a live callable without source text
    - kind="node":   an already-parsed syntax tree (`tree`)

    `meta` carries JSON-safe extras that travel with the expression descriptor.
    """
    kind: str
    text: Optional[str] = None
    func: Optional[Callable[..., Any]] = None
    tree: Optional[Node] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.kind not in ("name", "source", "func", "node"):
            raise WowVerbsUserError("E_EXPR_KIND", f"Unknown expression kind {self.kind!r}.")
        if self.kind in ("name", "source") and not isinstance(self.text, str):
            raise WowVerbsUserError(
                "E_EXPR_TYPE",
                f"A {self.kind} expression requires text, got {type(self.text).__name__}.",
            )
        if self.kind == "func" and not callable(self.func):
            raise WowVerbsUserError("E_EXPR_TYPE", "A func expression requires a callable.")
        if self.kind == "node" and not isinstance(self.tree, dict):
            raise WowVerbsUserError("E_EXPR_TYPE", "A node expression requires a syntax tree mapping.")

    @property
    def is_name(self) -> bool:
        return self.kind == "name"

    def label(self) -> str:
        """A readable column label for this expression."""
        if self.kind in ("name", "source"):
            return self.text
        if self.kind == "node":
            try:
                return format_expression(self.tree)
            except UnparsableExpressionError:
                return str(self.tree.get("type"))
        return getattr(self.func, "__name__", "func")

    # ---------- plain-object form ----------
    def to_object(self) -> Any:
        if self.kind == "name":
            return self.text
        if self.kind == "source":
            d: Dict[str, Any] = {"expr": self.text}
            d.update(_plain(self.meta, where="expression meta"))
            if self.func is not None:
                d["func"] = True
            return d
        if self.kind == "node":
            d = {"expr": format_expression(self.tree)}
            d.update(_plain(self.meta, where="expression meta"))
            return d
        raise UnparsableExpressionError(
            f"Expression {self.label()!r} is a callable without source text and has no plain-object form.",
            hint="Build it with expr('source text', func=...) so the source travels with it.",
        )

    @classmethod
    def from_object(cls, obj: Any) -> "Expr":
        """Read the plain-object form written by to_object.

        A bare string is always a column name; source text travels as {"expr": ...}.
        """
        if isinstance(obj, str):
            return cls("name", text=obj)
        if isinstance(obj, Mapping) and isinstance(obj.get("expr"), str):
            meta = {k: v for k, v in obj.items() if k not in ("expr", "func")}
            return cls("source", text=obj["expr"], meta=meta)
        raise WowVerbsUserError(
            "E_EXPR_OBJECT",
            f"Cannot read an expression from {obj!r}.",
            hint="Expressions serialize as a column name string or a descriptor like {'expr': 'a + 1'}.",
        )

    # ---------- syntax-tree form ----------
    def to_ast(self, parser: Optional[Parser] = None, kind: Any = None) -> Node:
        parser = parser or parse_expression
        if self.kind == "name":
            return parser(_format_column(self.text), kind)
        if self.kind == "source":
            node = parser(self.text, kind)
            if self.meta:
                node = dict(node, meta=_plain(self.meta, where="expression meta"))
            return node
        if self.kind == "node":
            return copy.deepcopy(self.tree)
        raise UnparsableExpressionError(
            f"Expression {self.label()!r} is a callable without source text and cannot be parsed.",
            hint="Build it with expr('source text', func=...) so the source travels with it.",
        )

    def __str__(self) -> str:
        return self.label()


@dataclass(frozen=True)
class Desc:
    """Descending-order marker around an ordering expression."""
    expr: Expr


def col(name: str) -> Expr:
    """Reference a column by name, including names that are not identifiers."""
    return Expr("name", text=name)


def expr(text: str, func: Optional[Callable[..., Any]] = None, **meta: Any) -> Expr:
    """Expression given by source text, optionally paired with an equivalent callable."""
    return Expr("source", text=text, func=func, meta=dict(meta))


def desc(value: Any) -> Desc:
    return Desc(as_expr(value))


def as_expr(value: Any) -> Expr:
    """Coerce user input into an Expr.

    Identifier strings are column names; any other string is source text. This
    shorthand applies to live inputs only: Expr.from_object reads every bare
    string as a column name. A mapping is a syntax tree only when its `type` is
    one of NODE_TYPES.
    """
    if isinstance(value, Expr):
        return value
    if isinstance(value, str):
        return col(value) if _is_identifier(value) else expr(value)
    if isinstance(value, Mapping):
        if "expr" in value:
            return Expr.from_object(value)
        if str(value.get("type")) in NODE_TYPES:
            return Expr("node", tree=dict(value))
    if callable(value):
        return Expr("func", func=value)
    if isinstance(value, (bool, int, float)):
        return Expr("node", tree={"type": "Literal", "value": value})
    raise WowVerbsUserError(
        "E_EXPR_TYPE",
        f"Cannot use {type(value).__name__} value {value!r} as an expression.",
        hint="Use a column name, source text like 'a + 1', a callable, or a parsed syntax tree.",
    )

