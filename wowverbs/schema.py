from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

from wowverbs.errors import UnknownVerbError
from wowverbs.kinds import ParamKind

IR_VERSION = 0


@dataclass(frozen=True)
class FieldSpec:
    """One positional verb parameter: its name, kind, default, and per-option kinds."""
    name: str
    kind: ParamKind
    default: Any = None
    sub_kinds: Optional[Mapping[str, ParamKind]] = None


VerbSchema = Tuple[FieldSpec, ...]

K = ParamKind

# Field order is the positional parameter order; never reorder a published schema.
REIFY_SCHEMA: VerbSchema = ()

VERB_SCHEMAS: Mapping[str, VerbSchema] = MappingProxyType({
    "count": (
        FieldSpec("options", K.OPTION_BAG),
    ),
    "dedupe": (
        FieldSpec("keys", K.EXPRESSION_LIST, default=[]),
    ),
    "derive": (
        FieldSpec("values", K.EXPRESSION_MAP),
    ),
    "filter": (
        FieldSpec("criteria", K.EXPRESSION_MAP),
    ),
    "groupby": (
        FieldSpec("keys", K.EXPRESSION_LIST),
    ),
    "orderby": (
        FieldSpec("keys", K.ORDERBY_KEYS),
    ),
    "rollup": (
        FieldSpec("values", K.EXPRESSION_MAP),
    ),
    "sample": (
        FieldSpec("size", K.EXPRESSION_NUMBER),
        FieldSpec("options", K.OPTION_BAG, sub_kinds=MappingProxyType({"weight": K.EXPRESSION})),
    ),
    "select": (
        FieldSpec("columns", K.EXPRESSION_LIST),
    ),
    "ungroup": (),
    "unorder": (),
    "fold": (
        FieldSpec("values", K.EXPRESSION_LIST),
        FieldSpec("options", K.OPTION_BAG),
    ),
    "pivot": (
        FieldSpec("keys", K.EXPRESSION_LIST),
        FieldSpec("values", K.EXPRESSION_LIST),
        FieldSpec("options", K.OPTION_BAG),
    ),
    "spread": (
        FieldSpec("values", K.EXPRESSION_LIST),
        FieldSpec("options", K.OPTION_BAG),
    ),
    "unroll": (
        FieldSpec("values", K.EXPRESSION_LIST),
        FieldSpec("options", K.OPTION_BAG, sub_kinds=MappingProxyType({"drop": K.EXPRESSION_LIST})),
    ),
    "lookup": (
        FieldSpec("table", K.TABLE_REF),
        FieldSpec("on", K.JOIN_KEYS),
        FieldSpec("values", K.EXPRESSION_LIST),
    ),
    "join": (
        FieldSpec("table", K.TABLE_REF),
        FieldSpec("on", K.JOIN_KEYS),
        FieldSpec("values", K.JOIN_VALUES),
        FieldSpec("options", K.OPTION_BAG),
    ),
    "cross": (
        FieldSpec("table", K.TABLE_REF),
        FieldSpec("values", K.JOIN_VALUES),
        FieldSpec("options", K.OPTION_BAG),
    ),
    "semijoin": (
        FieldSpec("table", K.TABLE_REF),
        FieldSpec("on", K.JOIN_KEYS),
    ),
    "antijoin": (
        FieldSpec("table", K.TABLE_REF),
        FieldSpec("on", K.JOIN_KEYS),
    ),
    "concat": (
        FieldSpec("tables", K.TABLE_REF_LIST),
    ),
    "union": (
        FieldSpec("tables", K.TABLE_REF_LIST),
    ),
    "intersect": (
        FieldSpec("tables", K.TABLE_REF_LIST),
    ),
    "except": (
        FieldSpec("tables", K.TABLE_REF_LIST),
    ),
})


def verb_schema(name: Any) -> VerbSchema:
    """Look up the schema for a verb name."""
    schema = VERB_SCHEMAS.get(name) if isinstance(name, str) else None
    if schema is None:
        raise UnknownVerbError(
            name,
            hint="Supported verbs: " + ", ".join(sorted(VERB_SCHEMAS.keys())),
        )
    return schema
