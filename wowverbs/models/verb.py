from __future__ import annotations

import copy
import keyword
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence

from wowverbs.errors import WowVerbsUserError
from wowverbs.kinds import (
    ParamKind,
    normalize_value,
    value_from_object,
    value_to_ast,
    value_to_object,
)
from wowverbs.models.expr import Parser
from wowverbs.parser import parse_expression
from wowverbs.schema import REIFY_SCHEMA, VERB_SCHEMAS, VerbSchema, verb_schema
from wowverbs.util import Catalog, _get_table

logger = logging.getLogger(__name__)


def _freeze(value: Any) -> Any:
    """Read-only copy of a normalized field value: lists become tuples, dicts read-only mappings."""
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    return value


@dataclass(frozen=True)
class Verb:
    """A table verb modeled as a serializable object.

    Field values are normalized once at construction and stored read-only. A verb can be
    evaluated against a table, written to a JSON-compatible object (and read back with
    Verb.from_object), or written to a fully parsed syntax tree.
    """
    name: str
    schema: VerbSchema = field(repr=False)
    fields: Mapping[str, Any]

    @classmethod
    def construct(cls, name: str, schema: Sequence = (), params: Sequence = ()) -> "Verb":
        """Build a verb from positional parameters in schema order.

        Missing (None) parameters take the field default.
        """
        schema = tuple(schema)
        params = list(params)
        if len(params) > len(schema):
            raise WowVerbsUserError(
                "E_VERB_ARITY",
                f"Verb '{name}' accepts at most {len(schema)} parameter(s), got {len(params)}.",
                hint="Parameters: " + (", ".join(s.name for s in schema) or "(none)"),
            )
        values: Dict[str, Any] = {}
        for i, spec in enumerate(schema):
            param = params[i] if i < len(params) else None
            if param is None:
                param = copy.deepcopy(spec.default)
            values[spec.name] = _freeze(normalize_value(spec.kind, param, spec.sub_kinds))
        logger.debug("constructed verb %s(%s)", name, ", ".join(values))
        return cls(name, schema, MappingProxyType(values))

    @classmethod
    def create(cls, name: str, *params: Any) -> "Verb":
        """Build a registered verb by name."""
        return cls.construct(name, verb_schema(name), params)

    @classmethod
    def from_object(cls, obj: Mapping[str, Any]) -> "Verb":
        """Create a verb from its serialized object form (see Verb.to_object).

        Bare strings in expression positions are column names, never source text or
        "-name" ordering shorthand; source travels as {"expr": ...}.
        """
        if not isinstance(obj, Mapping):
            raise WowVerbsUserError(
                "E_VERB_OBJECT",
                f"A serialized verb must be a mapping, got {type(obj).__name__}.",
                hint="Example: {'verb': 'filter', 'criteria': {'expr': 'a > 1'}}",
            )
        name = obj.get("verb")
        schema = verb_schema(name)
        unknown = set(obj) - {"verb"} - {s.name for s in schema}
        if unknown:
            logger.warning("ignoring unknown keys for verb %r: %s", name, sorted(unknown))
        params = [value_from_object(s.kind, obj.get(s.name), s.sub_kinds) for s in schema]
        return cls.construct(name, schema, params)

    def __hash__(self) -> int:
        return hash(self.name)

    def __getitem__(self, key: str) -> Any:
        return self.fields[key]

    def __getattr__(self, key: str) -> Any:
        fields = self.__dict__.get("fields")
        if fields is not None and key in fields:
            return fields[key]
        raise AttributeError(f"{type(self).__name__} {self.__dict__.get('name')!r} has no field {key!r}")

    def evaluate(self, table: Any, catalog: Optional[Catalog] = None) -> Any:
        """Apply this verb to a table.

        Table references are resolved through `catalog`; everything else is passed to the
        table's method of the same name as positional parameters in schema order.
        """
        params = []
        for spec in self.schema:
            value = self.fields[spec.name]
            if spec.kind == ParamKind.TABLE_REF:
                value = _get_table(catalog, value)
            elif spec.kind == ParamKind.TABLE_REF_LIST:
                value = [_get_table(catalog, t) for t in value]
            params.append(value)

        method = getattr(table, self.name, None)
        if method is None and keyword.iskeyword(self.name):
            method = getattr(table, self.name + "_", None)
        if not callable(method):
            raise WowVerbsUserError(
                "E_TABLE_VERB",
                f"Table of type {type(table).__name__} does not support verb '{self.name}'.",
                hint="Evaluate against a table object that implements this verb, e.g. PetlTable.",
            )
        logger.debug("evaluating verb %s on %s", self.name, type(table).__name__)
        return method(*params)

    def to_object(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible object accepted by Verb.from_object."""
        obj: Dict[str, Any] = {"verb": self.name}
        for spec in self.schema:
            obj[spec.name] = value_to_object(spec.kind, self.fields[spec.name], spec.sub_kinds)
        return obj

    def to_ast(self, parser: Optional[Parser] = None) -> Dict[str, Any]:
        """Serialize to a JSON-compatible syntax tree.

        Every expression is parsed (with `parser`, default parse_expression) so the
        result carries no callables or unparsed source, which makes it suitable for
        translating verbs to other data processing platforms.
        """
        parser = parser or parse_expression
        obj: Dict[str, Any] = {"verb": self.name}
        for spec in self.schema:
            obj[spec.name] = value_to_ast(spec.kind, self.fields[spec.name], spec.sub_kinds, parser)
        return obj

    def __str__(self) -> str:
        return f"Verb({self.name}, {dict(self.fields)})"


@dataclass(frozen=True)
class VerbFactory:
    """Constructor for one verb: call it with positional parameters."""
    name: str
    schema: VerbSchema = field(repr=False)

    def __call__(self, *params: Any) -> Verb:
        return Verb.construct(self.name, self.schema, params)


def _factory(name: str) -> VerbFactory:
    return VerbFactory(name, VERB_SCHEMAS[name])


Reify = VerbFactory("reify", REIFY_SCHEMA)
Count = _factory("count")
Dedupe = _factory("dedupe")
Derive = _factory("derive")
Filter = _factory("filter")
Groupby = _factory("groupby")
Orderby = _factory("orderby")
Rollup = _factory("rollup")
Sample = _factory("sample")
Select = _factory("select")
Ungroup = _factory("ungroup")
Unorder = _factory("unorder")
Fold = _factory("fold")
Pivot = _factory("pivot")
Spread = _factory("spread")
Unroll = _factory("unroll")
Lookup = _factory("lookup")
Join = _factory("join")
Cross = _factory("cross")
Semijoin = _factory("semijoin")
Antijoin = _factory("antijoin")
Concat = _factory("concat")
Union = _factory("union")
Intersect = _factory("intersect")
Except = _factory("except")

# Lookup table of verb constructors by name.
VERBS: Mapping[str, VerbFactory] = MappingProxyType({name: _factory(name) for name in VERB_SCHEMAS})
