from __future__ import annotations

import dataclasses
import logging
import math
import random
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import petl as etl

from wowverbs.errors import WowVerbsUserError
from wowverbs.evaluator import Row, RowFn, compile_expr
from wowverbs.models.expr import Expr, as_expr
from wowverbs.normalize import DESC, JoinKeys, JoinValues, OrderKey, normalize_join_keys

logger = logging.getLogger(__name__)


def _hashable(v: Any) -> Any:
    if isinstance(v, list):
        return tuple(_hashable(x) for x in v)
    if isinstance(v, dict):
        return tuple(sorted((k, _hashable(x)) for k, x in v.items()))
    return v


def _as_petl(t: Any) -> Any:
    return t.table if isinstance(t, PetlTable) else t


def _sort_key(v: Any) -> Tuple[bool, Any]:
    # nulls last (ascending)
    return (v is None, v if v is not None else 0)


@dataclass(frozen=True)
class PetlTable:
    """A table engine over a petl table.

    Every verb method returns a new PetlTable; grouping set by `groupby` is carried along
    until `ungroup` or an aggregation.
    """
    table: Any
    name: Optional[str] = None
    groups: Tuple[Expr, ...] = ()

    # ---------- construction / inspection ----------
    @classmethod
    def from_rows(cls, header: Sequence[str], rows: Iterable[Sequence[Any]], *, name: Optional[str] = None) -> "PetlTable":
        return cls(etl.wrap([tuple(header), *[tuple(r) for r in rows]]), name=name)

    @classmethod
    def from_csv(cls, path: str, *, name: Optional[str] = None, **options: Any) -> "PetlTable":
        return cls(etl.fromcsv(path, **options), name=name)

    def to_petl(self) -> Any:
        return self.table

    def header(self) -> List[str]:
        try:
            return list(etl.header(self.table))
        except Exception as e:
            raise WowVerbsUserError(
                "E_TABLE_READ",
                f"Could not read table header: {type(e).__name__}: {e}",
                hint="Ensure the table is tabular and readable (CSV delimiter/encoding).",
            ) from e

    def rows(self) -> List[Row]:
        return [dict(r) for r in etl.dicts(self.table)]

    def _with(self, header: Sequence[str], rows: Iterable[Row], *, groups: Optional[Tuple[Expr, ...]] = None) -> "PetlTable":
        header = list(header)
        data = [tuple(header), *[tuple(r.get(h) for h in header) for r in rows]]
        return dataclasses.replace(
            self,
            table=etl.wrap(data),
            groups=self.groups if groups is None else groups,
        )

    def _compile(self, e: Any, header: Optional[Sequence[str]] = None, *, label: str) -> RowFn:
        return compile_expr(as_expr(e), self.header() if header is None else header, label=label)

    def _partition(self, rows: List[Row]) -> List[Tuple[Tuple[Any, ...], List[Row]]]:
        """Split rows by the current grouping, keeping first-appearance order."""
        if not self.groups:
            return [((), rows)]
        header = self.header()
        fns = [self._compile(g, header, label="groupby key") for g in self.groups]
        parts: Dict[Any, Tuple[Tuple[Any, ...], List[Row]]] = {}
        for r in rows:
            key = tuple(fn(r, None) for fn in fns)
            parts.setdefault(_hashable(key), (key, []))[1].append(r)
        return list(parts.values())

    def _group_lookup(self, rows: List[Row]) -> Dict[int, List[Row]]:
        """Map id(row) -> rows of its group, for aggregates evaluated per row."""
        out: Dict[int, List[Row]] = {}
        for _, members in self._partition(rows):
            for r in members:
                out[id(r)] = members
        return out

    def _group_labels(self) -> List[str]:
        return [g.label() for g in self.groups]

    def __str__(self) -> str:
        return str(etl.look(self.table))

    # ---------- single-table verbs ----------
    def reify(self) -> "PetlTable":
        return self._with(self.header(), self.rows())

    def filter(self, criteria: Any) -> "PetlTable":
        if criteria is None:
            raise WowVerbsUserError(
                "E_FILTER_PARAMS",
                "filter requires criteria.",
                hint="Example: Filter('age >= 30')",
            )
        header = self.header()
        exprs = list(criteria.values()) if isinstance(criteria, Mapping) else [criteria]
        fns = [self._compile(e, header, label="filter criteria") for e in exprs]
        rows = self.rows()
        groups = self._group_lookup(rows)
        kept = [r for r in rows if all(fn(r, groups[id(r)]) for fn in fns)]
        return self._with(header, kept)

    def derive(self, values: Any) -> "PetlTable":
        if not isinstance(values, Mapping) or not values:
            raise WowVerbsUserError(
                "E_DERIVE_PARAMS",
                "derive requires a mapping of new column names to expressions.",
                hint="Example: Derive({'total': 'price * quantity'})",
            )
        header = self.header()
        fns = {name: self._compile(e, header, label=f"derive '{name}'") for name, e in values.items()}
        rows = self.rows()
        groups = self._group_lookup(rows)
        out = [{**r, **{name: fn(r, groups[id(r)]) for name, fn in fns.items()}} for r in rows]
        return self._with(header + [n for n in values if n not in header], out)

    def select(self, columns: Sequence[Expr]) -> "PetlTable":
        header = self.header()
        names = []
        for c in columns or []:
            if not c.is_name:
                raise WowVerbsUserError(
                    "E_SELECT_PARAMS",
                    f"select expects column names, got expression {c.label()!r}.",
                    hint="Use Derive to compute new columns, then Select them by name.",
                )
            self._compile(c, header, label="select")
            names.append(c.text)
        if not names:
            raise WowVerbsUserError(
                "E_SELECT_PARAMS",
                "select requires at least one column.",
                hint="Example: Select(['person_id', 'age'])",
            )
        return dataclasses.replace(self, table=etl.cut(self.table, *names))

    def orderby(self, keys: Sequence[OrderKey]) -> "PetlTable":
        header = self.header()
        rows = self.rows()
        # stable sorts applied from the least to the most significant key
        for key in reversed(list(keys or [])):
            fn = self._compile(key.expr, header, label="orderby key")
            rows.sort(key=lambda r: _sort_key(fn(r, None)), reverse=key.direction == DESC)
        return self._with(header, rows)

    def unorder(self) -> "PetlTable":
        return self

    def dedupe(self, keys: Sequence[Expr]) -> "PetlTable":
        header = self.header()
        fns = [self._compile(k, header, label="dedupe key") for k in keys or []]
        seen = set()
        out = []
        for r in self.rows():
            key = tuple(fn(r, None) for fn in fns) if fns else tuple(r.get(h) for h in header)
            key = _hashable(key)
            if key not in seen:
                seen.add(key)
                out.append(r)
        return self._with(header, out)

    def groupby(self, keys: Sequence[Expr]) -> "PetlTable":
        if not keys:
            raise WowVerbsUserError(
                "E_GROUPBY_PARAMS",
                "groupby requires at least one key.",
                hint="Example: Groupby(['country'])",
            )
        header = self.header()
        for k in keys:
            self._compile(k, header, label="groupby key")
        return dataclasses.replace(self, groups=tuple(keys))

    def ungroup(self) -> "PetlTable":
        return dataclasses.replace(self, groups=())

    def rollup(self, values: Any) -> "PetlTable":
        if not isinstance(values, Mapping):
            raise WowVerbsUserError(
                "E_ROLLUP_PARAMS",
                "rollup requires a mapping of output names to aggregate expressions.",
                hint="Example: Rollup({'total': 'sum(amount)', 'n': 'count()'})",
            )
        header = self.header()
        fns = {name: self._compile(e, header, label=f"rollup '{name}'") for name, e in values.items()}
        labels = self._group_labels()
        out = []
        for key, members in self._partition(self.rows()):
            first = members[0] if members else {}
            row = dict(zip(labels, key))
            row.update({name: fn(first, members) for name, fn in fns.items()})
            out.append(row)
        return self._with(labels + [n for n in values if n not in labels], out, groups=())

    def count(self, options: Optional[Dict[str, Any]]) -> "PetlTable":
        name = (options or {}).get("as", "count")
        return self.rollup({name: Expr("node", tree={"type": "CallExpression", "callee": "count", "arguments": []})})

    def sample(self, size: Any, options: Optional[Dict[str, Any]]) -> "PetlTable":
        if size is None:
            raise WowVerbsUserError(
                "E_SAMPLE_PARAMS",
                "sample requires a size.",
                hint="Example: Sample(10) or Sample('count() / 2')",
            )
        options = options or {}
        header = self.header()
        rng = random.Random(options.get("seed"))
        replace = bool(options.get("replace", False))
        weight = options.get("weight")
        weight_fn = self._compile(weight, header, label="sample weight") if weight is not None else None
        size_fn = None if isinstance(size, (int, float)) else self._compile(size, header, label="sample size")

        out: List[Row] = []
        for _, members in self._partition(self.rows()):
            if not members:
                continue
            n = size if size_fn is None else size_fn(members[0], members)
            n = max(0, int(n or 0))
            weights = [float(weight_fn(r, members) or 0) for r in members] if weight_fn else None
            if replace:
                out.extend(rng.choices(members, weights=weights, k=n))
            elif weights is None:
                out.extend(rng.sample(members, min(n, len(members))))
            else:
                # weighted sampling without replacement (Efraimidis-Spirakis keys)
                keyed = [
                    (math.log(rng.random()) / w if w > 0 else -math.inf, i)
                    for i, w in enumerate(weights)
                ]
                keyed.sort(reverse=True)
                out.extend(members[i] for _, i in keyed[:n])
        return self._with(header, out)

    def fold(self, values: Sequence[Expr], options: Optional[Dict[str, Any]]) -> "PetlTable":
        key_name, value_name = (options or {}).get("as", ["key", "value"])
        header = self.header()
        names = self._names(values, header, verb="fold")
        keep = [h for h in header if h not in names]
        out = []
        for r in self.rows():
            for n in names:
                out.append({**{h: r.get(h) for h in keep}, key_name: n, value_name: r.get(n)})
        return self._with(keep + [key_name, value_name], out)

    def pivot(self, keys: Sequence[Expr], values: Sequence[Expr], options: Optional[Dict[str, Any]]) -> "PetlTable":
        sep = (options or {}).get("keySeparator", "_")
        header = self.header()
        key_fns = [self._compile(k, header, label="pivot key") for k in keys or []]
        value_fns = [(v.label(), self._compile(v, header, label="pivot value")) for v in values or []]
        if not key_fns or not value_fns:
            raise WowVerbsUserError(
                "E_PIVOT_PARAMS",
                "pivot requires at least one key and one value.",
                hint="Example: Pivot(['year'], ['sum(amount)'])",
            )
        rows = self.rows()
        pivot_names: List[str] = []
        for r in rows:
            name = sep.join(str(fn(r, None)) for fn in key_fns)
            if name not in pivot_names:
                pivot_names.append(name)

        labels = self._group_labels()
        out_header = list(labels)
        for vlabel, _ in value_fns:
            for pname in pivot_names:
                out_header.append(pname if len(value_fns) == 1 else f"{vlabel}{sep}{pname}")

        out = []
        for gkey, members in self._partition(rows):
            row = dict(zip(labels, gkey))
            for vlabel, vfn in value_fns:
                for pname in pivot_names:
                    subset = [r for r in members if sep.join(str(fn(r, None)) for fn in key_fns) == pname]
                    col_name = pname if len(value_fns) == 1 else f"{vlabel}{sep}{pname}"
                    row[col_name] = vfn(subset[0], subset) if subset else None
            out.append(row)
        return self._with(out_header, out, groups=())

    def spread(self, values: Sequence[Expr], options: Optional[Dict[str, Any]]) -> "PetlTable":
        options = options or {}
        header = self.header()
        names = self._names(values, header, verb="spread")
        rows = self.rows()
        limit = options.get("limit")
        as_names = options.get("as")
        drop = options.get("drop", True)
        out_header = [h for h in header if not (drop and h in names)]
        for n in names:
            width = max((len(r.get(n) or []) for r in rows), default=0)
            if limit is not None:
                width = min(width, int(limit))
            cols = list(as_names) if (as_names and len(names) == 1) else [f"{n}_{i + 1}" for i in range(width)]
            out_header.extend(cols)
            for r in rows:
                seq = list(r.get(n) or [])
                for i, c in enumerate(cols):
                    r[c] = seq[i] if i < len(seq) else None
        return self._with(out_header, rows)

    def unroll(self, values: Sequence[Expr], options: Optional[Dict[str, Any]]) -> "PetlTable":
        options = options or {}
        header = self.header()
        names = self._names(values, header, verb="unroll")
        drop = {d.text for d in map(as_expr, options.get("drop") or []) if d.is_name}
        index = options.get("index")
        index_name = index if isinstance(index, str) else ("index" if index else None)
        out_header = [h for h in header if h not in drop] + ([index_name] if index_name else [])
        out = []
        for r in self.rows():
            seqs = {n: list(r.get(n) or []) for n in names}
            for i in range(max((len(s) for s in seqs.values()), default=0)):
                row = {**r, **{n: (s[i] if i < len(s) else None) for n, s in seqs.items()}}
                if index_name:
                    row[index_name] = i
                out.append(row)
        return self._with(out_header, out)

    def _names(self, values: Sequence[Expr], header: Sequence[str], *, verb: str) -> List[str]:
        names = []
        for v in values or []:
            if not v.is_name:
                raise WowVerbsUserError(
                    "E_TABLE_PARAMS",
                    f"{verb} expects column names, got expression {v.label()!r}.",
                )
            self._compile(v, header, label=verb)
            names.append(v.text)
        return names

    # ---------- join verbs ----------
    def _join_keys(self, other: "PetlTable", on: Optional[JoinKeys]) -> Tuple[RowFn, RowFn, List[Tuple[str, str]]]:
        left_header = self.header()
        right_header = other.header()
        if on is None:
            shared = [h for h in left_header if h in right_header]
            if not shared:
                raise WowVerbsUserError(
                    "E_JOIN_NO_KEYS",
                    "join keys were not given and the tables share no column names.",
                    hint="Pass keys explicitly, e.g. Join('other', [['id'], ['person_id']]).",
                )
            on = normalize_join_keys(shared)
        lfns = [compile_expr(e, left_header, label="left join key") for e in on.left]
        rfns = [compile_expr(e, right_header, label="right join key") for e in on.right]
        same_named = [
            (le.text, re.text) for le, re in zip(on.left, on.right)
            if le.is_name and re.is_name and le.text == re.text
        ]

        def lkey(r: Row, group: Any = None) -> Any:
            return _hashable(tuple(fn(r, None) for fn in lfns))

        def rkey(r: Row, group: Any = None) -> Any:
            return _hashable(tuple(fn(r, None) for fn in rfns))

        return lkey, rkey, same_named

    def _join_rows(self, other: "PetlTable", pairs: Iterable[Tuple[Optional[Row], Optional[Row]]],
                   values: Optional[JoinValues], options: Optional[Dict[str, Any]],
                   same_named: Sequence[Tuple[str, str]] = ()) -> "PetlTable":
        options = options or {}
        suffix = options.get("suffix", ["_1", "_2"])
        left_header = self.header()
        right_header = other.header()
        merged_keys = {r for _, r in same_named}

        picks = values is not None and bool(values.left or values.right)
        if picks:
            left_cols = self._names(values.left, left_header, verb="join values")
            right_cols = other._names(values.right, right_header, verb="join values")
        else:
            left_cols = list(left_header)
            right_cols = [h for h in right_header if h not in merged_keys]
        collide = set(left_cols) & set(right_cols)
        left_out = {c: c + suffix[0] if c in collide else c for c in left_cols}
        right_out = {c: c + suffix[1] if c in collide else c for c in right_cols}

        combined = {}
        if values is not None and values.values:
            merged_header = list(left_out.values()) + list(right_out.values())
            combined = {
                name: compile_expr(e, merged_header, label=f"join value '{name}'")
                for name, e in values.values.items()
            }

        out = []
        for lrow, rrow in pairs:
            row: Row = {}
            for c, o in left_out.items():
                row[o] = lrow.get(c) if lrow is not None else None
            for c, o in right_out.items():
                row[o] = rrow.get(c) if rrow is not None else None
            if lrow is None and rrow is not None:
                for lname, rname in same_named:
                    if lname in left_out:
                        row[left_out[lname]] = rrow.get(rname)
            row.update({name: fn(row, None) for name, fn in combined.items()})
            out.append(row)

        if combined and not picks:
            out_header = list(combined)
        else:
            out_header = list(left_out.values()) + list(right_out.values()) + list(combined)
        return self._with(out_header, out, groups=())

    def join(self, table: Any, on: Optional[JoinKeys], values: Optional[JoinValues],
             options: Optional[Dict[str, Any]]) -> "PetlTable":
        other = table if isinstance(table, PetlTable) else PetlTable(table)
        options = options or {}
        lkey, rkey, same_named = self._join_keys(other, on)
        right_rows = other.rows()
        index: Dict[Any, List[int]] = {}
        for i, r in enumerate(right_rows):
            index.setdefault(rkey(r), []).append(i)

        pairs: List[Tuple[Optional[Row], Optional[Row]]] = []
        matched = set()
        for lrow in self.rows():
            hits = index.get(lkey(lrow), [])
            for i in hits:
                matched.add(i)
                pairs.append((lrow, right_rows[i]))
            if not hits and options.get("left"):
                pairs.append((lrow, None))
        if options.get("right"):
            pairs.extend((None, r) for i, r in enumerate(right_rows) if i not in matched)
        logger.debug("join matched %d row pair(s)", len(pairs))
        return self._join_rows(other, pairs, values, options, same_named)

    def cross(self, table: Any, values: Optional[JoinValues], options: Optional[Dict[str, Any]]) -> "PetlTable":
        other = table if isinstance(table, PetlTable) else PetlTable(table)
        right_rows = other.rows()
        pairs = [(lrow, rrow) for lrow in self.rows() for rrow in right_rows]
        return self._join_rows(other, pairs, values, options)

    def lookup(self, table: Any, on: Optional[JoinKeys], values: Sequence[Expr]) -> "PetlTable":
        other = table if isinstance(table, PetlTable) else PetlTable(table)
        lkey, rkey, _ = self._join_keys(other, on)
        names = other._names(values, other.header(), verb="lookup")
        index: Dict[Any, Row] = {}
        for r in other.rows():
            index.setdefault(rkey(r), r)
        header = self.header()
        out = []
        for r in self.rows():
            hit = index.get(lkey(r))
            out.append({**r, **{n: (hit.get(n) if hit is not None else None) for n in names}})
        return self._with(header + [n for n in names if n not in header], out)

    def _filter_join(self, table: Any, on: Optional[JoinKeys], *, keep_matches: bool) -> "PetlTable":
        other = table if isinstance(table, PetlTable) else PetlTable(table)
        lkey, rkey, _ = self._join_keys(other, on)
        keys = {rkey(r) for r in other.rows()}
        return self._with(self.header(), [r for r in self.rows() if (lkey(r) in keys) == keep_matches])

    def semijoin(self, table: Any, on: Optional[JoinKeys]) -> "PetlTable":
        return self._filter_join(table, on, keep_matches=True)

    def antijoin(self, table: Any, on: Optional[JoinKeys]) -> "PetlTable":
        return self._filter_join(table, on, keep_matches=False)

    # ---------- set verbs ----------
    def concat(self, tables: Sequence[Any]) -> "PetlTable":
        return dataclasses.replace(self, table=etl.cat(self.table, *[_as_petl(t) for t in tables]))

    def _row_sets(self, tables: Sequence[Any]) -> Tuple[List[str], List[Row], List[set]]:
        header = self.header()
        others = []
        for t in tables:
            other = t if isinstance(t, PetlTable) else PetlTable(t)
            others.append({_hashable(tuple(r.get(h) for h in header)) for r in other.rows()})
        return header, self.rows(), others

    def _distinct(self, header: List[str], rows: Iterable[Row]) -> List[Row]:
        seen = set()
        out = []
        for r in rows:
            key = _hashable(tuple(r.get(h) for h in header))
            if key not in seen:
                seen.add(key)
                out.append(r)
        return out

    def union(self, tables: Sequence[Any]) -> "PetlTable":
        cat = self.concat(tables)
        return cat._with(cat.header(), cat._distinct(cat.header(), cat.rows()))

    def intersect(self, tables: Sequence[Any]) -> "PetlTable":
        header, rows, others = self._row_sets(tables)
        kept = [r for r in rows if all(_hashable(tuple(r.get(h) for h in header)) in s for s in others)]
        return self._with(header, self._distinct(header, kept))

    def except_(self, tables: Sequence[Any]) -> "PetlTable":
        header, rows, others = self._row_sets(tables)
        kept = [r for r in rows if not any(_hashable(tuple(r.get(h) for h in header)) in s for s in others)]
        return self._with(header, self._distinct(header, kept))
