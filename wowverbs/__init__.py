from wowverbs.errors import (
    MismatchedJoinArityError,
    UnknownVerbError,
    UnparsableExpressionError,
    UnresolvedTableError,
    WowVerbsUserError,
)
from wowverbs.kinds import ParamKind
from wowverbs.models.expr import Expr, as_expr, col, desc, expr
from wowverbs.models.query import Query, query
from wowverbs.models.table import PetlTable
from wowverbs.models.verb import (
    VERBS,
    Antijoin,
    Concat,
    Count,
    Cross,
    Dedupe,
    Derive,
    Except,
    Filter,
    Fold,
    Groupby,
    Intersect,
    Join,
    Lookup,
    Orderby,
    Pivot,
    Reify,
    Rollup,
    Sample,
    Select,
    Semijoin,
    Spread,
    Ungroup,
    Union,
    Unorder,
    Unroll,
    Verb,
    VerbFactory,
)
from wowverbs.normalize import normalize_join_keys, normalize_join_values, normalize_orderby_keys
from wowverbs.parser import format_expression, parse_expression
from wowverbs.schema import FieldSpec, VERB_SCHEMAS, verb_schema

__all__ = [
    "Antijoin", "Concat", "Count", "Cross", "Dedupe", "Derive", "Except", "Expr", "FieldSpec", "Filter",
    "Fold", "Groupby", "Intersect", "Join", "Lookup", "MismatchedJoinArityError", "Orderby", "ParamKind",
    "PetlTable", "Pivot", "Query", "Reify", "Rollup", "Sample", "Select", "Semijoin", "Spread", "Ungroup",
    "Union", "UnknownVerbError", "Unorder", "UnparsableExpressionError", "UnresolvedTableError", "Unroll",
    "VERBS", "VERB_SCHEMAS", "Verb", "VerbFactory", "WowVerbsUserError", "as_expr", "col", "desc", "expr",
    "format_expression", "normalize_join_keys", "normalize_join_values", "normalize_orderby_keys",
    "parse_expression", "query", "verb_schema",
]
