from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from wowverbs.errors import WowVerbsUserError
from wowverbs.models.expr import Expr, Parser, as_expr
from wowverbs.normalize import (
    JoinKeys,
    JoinValues,
    OrderKey,
    _is_expr_mapping,
    normalize_join_keys,
    normalize_join_values,
    normalize_orderby_keys,
)
from wowverbs.util import _plain, _table_name


class ParamKind(str, Enum):
    PLAIN = "plain"
    EXPRESSION = "expression"
    EXPRESSION_LIST = "expression-list"
    EXPRESSION_MAP = "expression-map"
    EXPRESSION_NUMBER = "expression-number"
    JOIN_KEYS = "join-keys"
    JOIN_VALUES = "join-values"
    ORDERBY_KEYS = "orderby-keys"
    OPTION_BAG = "option-bag"
    TABLE_REF = "table-ref"
    TABLE_REF_LIST = "table-ref-list"


SubKinds = Optional[Mapping]


def _identity(value: Any, sub_kinds: SubKinds = None) -> Any:
    return value


@dataclass(frozen=True)
class KindCodec:
    """Behaviors owned by a parameter kind.

    normalize runs at verb construction; the other three convert a normalized
    value to its plain-object form, back, and to its syntax-tree form.
    """
    to_object: Callable[[Any, SubKinds], Any]
    from_object: Callable[[Any, SubKinds], Any]
    to_ast: Callable[[Any, SubKinds, Parser], Any]
    normalize: Callable[[Any, SubKinds], Any] = _identity


KIND_REGISTRY: Dict[ParamKind, KindCodec] = {}


def register_kind(kind: ParamKind, codec: KindCodec) -> KindCodec:
    KIND_REGISTRY[ParamKind(kind)] = codec
    return codec


def kind_codec(kind: Any) -> KindCodec:
    try:
        return KIND_REGISTRY[ParamKind(kind)]
    except (ValueError, KeyError):
        raise WowVerbsUserError(
            "E_KIND_UNKNOWN",
            f"Unknown parameter kind {kind!r}.",
            hint="Supported kinds: " + ", ".join(k.value for k in ParamKind),
        ) from None


# None means "parameter not given" in every representation.

def normalize_value(kind: Any, value: Any, sub_kinds: SubKinds = None) -> Any:
    return None if value is None else kind_codec(kind).normalize(value, sub_kinds)


def value_to_object(kind: Any, value: Any, sub_kinds: SubKinds = None) -> Any:
    return None if value is None else kind_codec(kind).to_object(value, sub_kinds)


def value_from_object(kind: Any, obj: Any, sub_kinds: SubKinds = None) -> Any:
    return None if obj is None else kind_codec(kind).from_object(obj, sub_kinds)


def value_to_ast(kind: Any, value: Any, sub_kinds: SubKinds, parser: Parser) -> Any:
    return None if value is None else kind_codec(kind).to_ast(value, sub_kinds, parser)


def _literal(value: Any) -> Dict[str, Any]:
    return {"type": "Literal", "value": _plain(value, where="literal")}


def _exprs_from_object(obj: Any) -> Any:
    """Read plain-object expressions nested in lists, leaving other values alone."""
    if isinstance(obj, (list, tuple)):
        return [_exprs_from_object(o) for o in obj]
    if isinstance(obj, str) or _is_expr_mapping(obj):
        return Expr.from_object(obj)
    return obj


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ---------------- plain ----------------

register_kind(ParamKind.PLAIN, KindCodec(
    to_object=lambda v, sk: _plain(v, where="plain parameter"),
    from_object=_identity,
    to_ast=lambda v, sk, parser: _literal(v),
))


# ---------------- expression ----------------

register_kind(ParamKind.EXPRESSION, KindCodec(
    normalize=lambda v, sk: as_expr(v),
    to_object=lambda v, sk: v.to_object(),
    from_object=lambda o, sk: Expr.from_object(o),
    to_ast=lambda v, sk, parser: v.to_ast(parser, ParamKind.EXPRESSION),
))


# ---------------- expression-list ----------------

def _expr_list(value: Any, sub_kinds: SubKinds = None) -> List[Expr]:
    if not isinstance(value, (list, tuple)):
        value = [value]
    return [as_expr(v) for v in value]


register_kind(ParamKind.EXPRESSION_LIST, KindCodec(
    normalize=_expr_list,
    to_object=lambda v, sk: [e.to_object() for e in v],
    from_object=lambda o, sk: [Expr.from_object(x) for x in (o if isinstance(o, list) else [o])],
    to_ast=lambda v, sk, parser: [e.to_ast(parser, ParamKind.EXPRESSION_LIST) for e in v],
))


# ---------------- expression-map ----------------
# A {name: expression} mapping, or a single expression.

def _expr_map(value: Any, sub_kinds: SubKinds = None) -> Any:
    if isinstance(value, Mapping) and not _is_expr_mapping(value):
        return {str(k): as_expr(v) for k, v in value.items()}
    return as_expr(value)


def _expr_map_from_object(obj: Any, sub_kinds: SubKinds = None) -> Any:
    if isinstance(obj, Mapping) and not _is_expr_mapping(obj):
        return {k: Expr.from_object(v) for k, v in obj.items()}
    return Expr.from_object(obj)


def _expr_map_to_ast(value: Any, sub_kinds: SubKinds, parser: Parser) -> Any:
    if isinstance(value, Expr):
        return value.to_ast(parser, ParamKind.EXPRESSION_MAP)
    return {
        "type": "ExprObject",
        "values": {k: e.to_ast(parser, ParamKind.EXPRESSION_MAP) for k, e in value.items()},
    }


register_kind(ParamKind.EXPRESSION_MAP, KindCodec(
    normalize=_expr_map,
    to_object=lambda v, sk: v.to_object() if isinstance(v, Expr) else {k: e.to_object() for k, e in v.items()},
    from_object=_expr_map_from_object,
    to_ast=_expr_map_to_ast,
))


# ---------------- expression-number ----------------

register_kind(ParamKind.EXPRESSION_NUMBER, KindCodec(
    normalize=lambda v, sk: v if _is_number(v) else as_expr(v),
    to_object=lambda v, sk: v if _is_number(v) else v.to_object(),
    from_object=lambda o, sk: o if _is_number(o) else Expr.from_object(o),
    to_ast=lambda v, sk, parser: _literal(v) if _is_number(v) else v.to_ast(parser, ParamKind.EXPRESSION_NUMBER),
))


# ---------------- join-keys ----------------

def _join_keys_from_object(obj: Any, sub_kinds: SubKinds = None) -> JoinKeys:
    if isinstance(obj, Mapping) and isinstance(obj.get("left"), list) and isinstance(obj.get("right"), list):
        return normalize_join_keys([_exprs_from_object(obj["left"]), _exprs_from_object(obj["right"])])
    return normalize_join_keys(_exprs_from_object(obj))


register_kind(ParamKind.JOIN_KEYS, KindCodec(
    normalize=lambda v, sk: normalize_join_keys(v),
    to_object=lambda v, sk: {"left": [e.to_object() for e in v.left], "right": [e.to_object() for e in v.right]},
    from_object=_join_keys_from_object,
    to_ast=lambda v, sk, parser: {
        "type": "JoinKeys",
        "left": [e.to_ast(parser, ParamKind.JOIN_KEYS) for e in v.left],
        "right": [e.to_ast(parser, ParamKind.JOIN_KEYS) for e in v.right],
    },
))


# ---------------- join-values ----------------

def _join_values_from_object(obj: Any, sub_kinds: SubKinds = None) -> JoinValues:
    if isinstance(obj, Mapping) and isinstance(obj.get("left"), list) and isinstance(obj.get("right"), list):
        pair = normalize_join_values([_exprs_from_object(obj["left"]), _exprs_from_object(obj["right"])])
        values = {k: Expr.from_object(v) for k, v in (obj.get("values") or {}).items()}
        return JoinValues(pair.left, pair.right, values)
    if isinstance(obj, Mapping) and not _is_expr_mapping(obj):
        return JoinValues(values={k: Expr.from_object(v) for k, v in obj.items()})
    return normalize_join_values(_exprs_from_object(obj))


register_kind(ParamKind.JOIN_VALUES, KindCodec(
    normalize=lambda v, sk: normalize_join_values(v),
    to_object=lambda v, sk: {
        "left": [e.to_object() for e in v.left],
        "right": [e.to_object() for e in v.right],
        "values": {k: e.to_object() for k, e in v.values.items()},
    },
    from_object=_join_values_from_object,
    to_ast=lambda v, sk, parser: {
        "type": "JoinValues",
        "left": [e.to_ast(parser, ParamKind.JOIN_VALUES) for e in v.left],
        "right": [e.to_ast(parser, ParamKind.JOIN_VALUES) for e in v.right],
        "values": {k: e.to_ast(parser, ParamKind.JOIN_VALUES) for k, e in v.values.items()},
    },
))


# ---------------- orderby-keys ----------------

def _orderby_from_object(obj: Any, sub_kinds: SubKinds = None) -> List[OrderKey]:
    # wire strings are column names here too; "-name" is a constructor shorthand only
    items = obj if isinstance(obj, list) else [obj]
    keys = []
    for item in items:
        if isinstance(item, Mapping) and "direction" in item:
            keys.append(OrderKey(Expr.from_object(item.get("expr")), item.get("direction")))
        else:
            keys.append(OrderKey(Expr.from_object(item)))
    return normalize_orderby_keys(keys)


register_kind(ParamKind.ORDERBY_KEYS, KindCodec(
    normalize=lambda v, sk: normalize_orderby_keys(v),
    to_object=lambda v, sk: [{"expr": k.expr.to_object(), "direction": k.direction} for k in v],
    from_object=_orderby_from_object,
    to_ast=lambda v, sk, parser: {
        "type": "OrderbyKeys",
        "keys": [
            {"expr": k.expr.to_ast(parser, ParamKind.ORDERBY_KEYS), "direction": k.direction} for k in v
        ],
    },
))


# ---------------- option-bag ----------------
# Options are plain data unless sub_kinds declares a kind for a property.

def _options_normalize(value: Any, sub_kinds: SubKinds = None) -> Dict[str, Any]:
    if not isinstance(value, Mapping):
        raise WowVerbsUserError(
            "E_OPTIONS_TYPE",
            f"Options must be a mapping, got {type(value).__name__}.",
            hint="Example: Sample(10, {'replace': True, 'weight': 'w'})",
        )
    sub_kinds = sub_kinds or {}
    return {
        k: normalize_value(sub_kinds[k], v) if k in sub_kinds else v
        for k, v in value.items()
    }


def _options_to_object(value: Mapping, sub_kinds: SubKinds = None) -> Dict[str, Any]:
    sub_kinds = sub_kinds or {}
    return {
        k: value_to_object(sub_kinds[k], v) if k in sub_kinds else _plain(v, where=f"options.{k}")
        for k, v in value.items()
    }


def _options_from_object(obj: Any, sub_kinds: SubKinds = None) -> Dict[str, Any]:
    if not isinstance(obj, Mapping):
        return _options_normalize(obj, sub_kinds)
    sub_kinds = sub_kinds or {}
    return {
        k: value_from_object(sub_kinds[k], v) if k in sub_kinds else v
        for k, v in obj.items()
    }


def _options_to_ast(value: Mapping, sub_kinds: SubKinds, parser: Parser) -> Dict[str, Any]:
    sub_kinds = sub_kinds or {}
    return {
        "type": "Options",
        "options": {
            k: value_to_ast(sub_kinds[k], v, None, parser) if k in sub_kinds else _literal(v)
            for k, v in value.items()
        },
    }


register_kind(ParamKind.OPTION_BAG, KindCodec(
    normalize=_options_normalize,
    to_object=_options_to_object,
    from_object=_options_from_object,
    to_ast=_options_to_ast,
))


# ---------------- table-ref / table-ref-list ----------------

def _table_refs(value: Any, sub_kinds: SubKinds = None) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else [value]


register_kind(ParamKind.TABLE_REF, KindCodec(
    to_object=lambda v, sk: _table_name(v),
    from_object=_identity,
    to_ast=lambda v, sk, parser: {"type": "TableRef", "name": _table_name(v)},
))

register_kind(ParamKind.TABLE_REF_LIST, KindCodec(
    normalize=_table_refs,
    to_object=lambda v, sk: [_table_name(t) for t in v],
    from_object=_table_refs,
    to_ast=lambda v, sk, parser: [{"type": "TableRef", "name": _table_name(t)} for t in v],
))
