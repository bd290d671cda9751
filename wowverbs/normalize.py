from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, List, Optional, Tuple

from wowverbs.errors import MismatchedJoinArityError, WowVerbsUserError
from wowverbs.models.expr import Desc, Expr, as_expr, col
from wowverbs.parser import NODE_TYPES
from wowverbs.util import _is_identifier

ASC = "asc"
DESC = "desc"


@dataclass(frozen=True)
class JoinKeys:
    """Paired key expressions; left[i] is matched against right[i]."""
    left: Tuple[Expr, ...]
    right: Tuple[Expr, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "left", tuple(self.left))
        object.__setattr__(self, "right", tuple(self.right))


@dataclass(frozen=True)
class JoinValues:
    """Output columns of a join: picked from each side, or computed over the joined row."""
    left: Tuple[Expr, ...] = ()
    right: Tuple[Expr, ...] = ()
    values: Mapping[str, Expr] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "left", tuple(self.left))
        object.__setattr__(self, "right", tuple(self.right))
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))


@dataclass(frozen=True)
class OrderKey:
    expr: Expr
    direction: str = ASC

    def __post_init__(self) -> None:
        if self.direction not in (ASC, DESC):
            raise WowVerbsUserError(
                "E_ORDERBY_DIRECTION",
                f"Ordering direction must be 'asc' or 'desc', got {self.direction!r}.",
            )


def _is_expr_mapping(value: Any) -> bool:
    """Dicts that denote a single expression (descriptor or syntax tree) rather than a key map."""
    return isinstance(value, Mapping) and (
        isinstance(value.get("expr"), str) or str(value.get("type")) in NODE_TYPES
    )


def _is_pair(value: Any) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) == 2
        and all(isinstance(v, (list, tuple)) for v in value)
    )


def _paired(left: List[Expr], right: List[Expr]) -> tuple:
    if len(left) != len(right):
        raise MismatchedJoinArityError([e.label() for e in left], [e.label() for e in right])
    return left, right


def normalize_join_keys(keys: Any) -> Optional[JoinKeys]:
    """Canonicalize join keys.

    Accepts a single key (shared by both sides), a list of shared keys, a
    [left_keys, right_keys] pair, or a {left_key: right_key} mapping. None means
    "join on all shared column names" and is kept as None.
    """
    if keys is None or isinstance(keys, JoinKeys):
        return keys
    if _is_pair(keys):
        left, right = _paired([as_expr(k) for k in keys[0]], [as_expr(k) for k in keys[1]])
        return JoinKeys(left, right)
    if isinstance(keys, Mapping) and not _is_expr_mapping(keys):
        return JoinKeys([as_expr(k) for k in keys.keys()], [as_expr(v) for v in keys.values()])
    if isinstance(keys, (list, tuple)):
        shared = [as_expr(k) for k in keys]
        return JoinKeys(shared, list(shared))
    key = as_expr(keys)
    return JoinKeys([key], [key])


def normalize_join_values(values: Any) -> Optional[JoinValues]:
    """Canonicalize join output values.

    Same shapes as join keys, except that a mapping is a combined projection
    {output_name: expression} evaluated over the joined row. None keeps all columns.
    """
    if values is None or isinstance(values, JoinValues):
        return values
    if _is_pair(values):
        left, right = _paired([as_expr(v) for v in values[0]], [as_expr(v) for v in values[1]])
        return JoinValues(left, right)
    if isinstance(values, Mapping) and not _is_expr_mapping(values):
        return JoinValues(values={str(k): as_expr(v) for k, v in values.items()})
    if isinstance(values, (list, tuple)):
        shared = [as_expr(v) for v in values]
        return JoinValues(shared, list(shared))
    value = as_expr(values)
    return JoinValues([value], [value])


def _order_key(item: Any) -> OrderKey:
    if isinstance(item, OrderKey):
        return item
    if isinstance(item, Desc):
        return OrderKey(item.expr, DESC)
    if isinstance(item, Mapping) and "direction" in item:
        return OrderKey(as_expr(item.get("expr")), item.get("direction"))
    if isinstance(item, str) and item.startswith("-") and _is_identifier(item[1:]):
        return OrderKey(col(item[1:]), DESC)
    e = as_expr(item)
    tree = e.tree if e.kind == "node" else None
    if tree and tree.get("type") == "UnaryExpression" and tree.get("operator") == "-":
        arg = tree.get("argument") or {}
        if arg.get("type") == "Column":
            return OrderKey(col(arg.get("name")), DESC)
    return OrderKey(e, ASC)


def normalize_orderby_keys(keys: Any) -> List[OrderKey]:
    """Canonicalize ordering keys into (expression, direction) pairs.

    A key is descending when wrapped with desc(...), written as "-name", or given
    as a unary-minus syntax tree over a column.
    """
    if keys is None:
        return []
    if not isinstance(keys, (list, tuple)):
        keys = [keys]
    return [_order_key(k) for k in keys]
