import json

import petl as etl
import pytest

from wowverbs import (
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
    PetlTable,
    Pivot,
    Reify,
    Rollup,
    Sample,
    Select,
    Semijoin,
    Spread,
    Ungroup,
    Union,
    Unroll,
    UnresolvedTableError,
    Verb,
    WowVerbsUserError,
    desc,
)


def _people():
    return PetlTable.from_rows(
        ["id", "name", "age"],
        [(1, "A", 30), (2, "B", 40), (3, "C", 25)],
        name="people",
    )


def _catalog():
    return {
        "people": _people(),
        "orders": PetlTable.from_rows(["pid", "amount"], [(1, 10), (1, 5), (2, 7)]),
        "payments": PetlTable.from_rows(["id", "amount"], [(1, 10), (2, 7), (9, 99)]),
        "more": PetlTable.from_rows(["id", "name", "age"], [(4, "D", 50), (1, "A", 30)]),
    }


def _column(table, name):
    return [r[name] for r in table.rows()]


def test_filter_expression():
    out = Filter("age >= 30").evaluate(_people())
    assert _column(out, "id") == [1, 2]


def test_filter_criteria_mapping_requires_all():
    out = Filter({"old": "age > 26", "not_b": "name != 'B'"}).evaluate(_people())
    assert _column(out, "name") == ["A"]


def test_filter_with_callable():
    out = Filter(lambda r: r["age"] < 30).evaluate(_people())
    assert _column(out, "name") == ["C"]


def test_derive_appends_columns():
    out = Derive({"age2": "age * 2"}).evaluate(_people())
    assert out.header() == ["id", "name", "age", "age2"]
    assert _column(out, "age2") == [60, 80, 50]


def test_derive_column_named_type():
    v = Derive({"type": "name"})
    out = v.evaluate(_people())
    assert out.header() == ["id", "name", "age", "type"]
    assert _column(out, "type") == ["A", "B", "C"]
    assert Verb.from_object(v.to_object()).evaluate(_people()).rows() == out.rows()


def test_unknown_column_suggests_a_name():
    with pytest.raises(WowVerbsUserError) as ex:
        Derive({"x": "agee + 1"}).evaluate(_people())
    assert getattr(ex.value, "code", None) == "E_EXPR_UNKNOWN_COL"
    assert "age" in ex.value.hint


def test_select_and_orderby():
    out = Orderby(["-age"]).evaluate(Select(["name", "age"]).evaluate(_people()))
    assert out.header() == ["name", "age"]
    assert _column(out, "name") == ["B", "A", "C"]


def test_orderby_multiple_keys():
    t = PetlTable.from_rows(["g", "v"], [("x", 2), ("y", 1), ("x", 1)])
    out = Orderby(["g", desc("v")]).evaluate(t)
    assert [(r["g"], r["v"]) for r in out.rows()] == [("x", 2), ("x", 1), ("y", 1)]


def test_dedupe_by_key_and_whole_row():
    t = PetlTable.from_rows(["a", "b"], [(1, "x"), (1, "y"), (2, "z"), (2, "z")])
    assert _column(Dedupe(["a"]).evaluate(t), "b") == ["x", "z"]
    assert len(Dedupe().evaluate(t).rows()) == 3


def test_groupby_rollup_and_count():
    t = PetlTable.from_rows(["g", "v"], [("x", 1), ("y", 2), ("x", 3)])
    grouped = Groupby(["g"]).evaluate(t)
    out = Rollup({"n": "count()", "total": "sum(v)"}).evaluate(grouped)
    assert out.header() == ["g", "n", "total"]
    assert out.rows() == [{"g": "x", "n": 2, "total": 4}, {"g": "y", "n": 1, "total": 2}]
    assert Count().evaluate(grouped).rows() == [{"g": "x", "count": 2}, {"g": "y", "count": 1}]
    assert Count({"as": "n"}).evaluate(Ungroup().evaluate(grouped)).rows() == [{"n": 3}]


def test_grouped_derive_uses_group_aggregates():
    t = PetlTable.from_rows(["g", "v"], [("x", 1), ("y", 2), ("x", 3)])
    out = Derive({"share": "v / sum(v)"}).evaluate(Groupby(["g"]).evaluate(t))
    assert _column(out, "share") == [0.25, 1.0, 0.75]


def test_sample_is_seeded():
    a = Sample(2, {"seed": 7}).evaluate(_people()).rows()
    b = Sample(2, {"seed": 7}).evaluate(_people()).rows()
    assert a == b
    assert len(a) == 2
    assert all(r in _people().rows() for r in a)


def test_fold_and_pivot():
    t = PetlTable.from_rows(["id", "a", "b"], [(1, 10, 20)])
    folded = Fold(["a", "b"]).evaluate(t)
    assert folded.header() == ["id", "key", "value"]
    assert [(r["key"], r["value"]) for r in folded.rows()] == [("a", 10), ("b", 20)]

    kv = PetlTable.from_rows(["k", "v"], [("x", 1), ("y", 2), ("x", 3)])
    assert Pivot(["k"], ["sum(v)"]).evaluate(kv).rows() == [{"x": 4, "y": 2}]


def test_spread_and_unroll():
    t = PetlTable.from_rows(["id", "xs"], [(1, ["a", "b"]), (2, ["c"])])
    spread = Spread(["xs"]).evaluate(t)
    assert spread.header() == ["id", "xs_1", "xs_2"]
    assert spread.rows()[1] == {"id": 2, "xs_1": "c", "xs_2": None}

    unrolled = Unroll(["xs"], {"index": True}).evaluate(t)
    assert unrolled.header() == ["id", "xs", "index"]
    assert [(r["id"], r["xs"], r["index"]) for r in unrolled.rows()] == [(1, "a", 0), (1, "b", 1), (2, "c", 0)]


def test_join_on_differently_named_keys():
    out = Join("orders", [["id"], ["pid"]]).evaluate(_people(), _catalog())
    assert out.header() == ["id", "name", "age", "pid", "amount"]
    assert [(r["name"], r["amount"]) for r in out.rows()] == [("A", 10), ("A", 5), ("B", 7)]


def test_join_on_shared_key_keeps_one_key_column():
    out = Join("payments", "id", None, {"left": True}).evaluate(_people(), _catalog())
    assert out.header() == ["id", "name", "age", "amount"]
    assert out.rows()[-1] == {"id": 3, "name": "C", "age": 25, "amount": None}


def test_right_outer_join_fills_key_from_right():
    out = Join("payments", "id", None, {"right": True}).evaluate(_people(), _catalog())
    assert out.rows()[-1] == {"id": 9, "name": None, "age": None, "amount": 99}


def test_join_combined_values():
    out = Join("payments", "id", {"who": "name", "twice": "amount * 2"}).evaluate(_people(), _catalog())
    assert out.header() == ["who", "twice"]
    assert out.rows() == [{"who": "A", "twice": 20}, {"who": "B", "twice": 14}]


def test_join_combined_values_named_type():
    out = Join("payments", "id", {"type": "name"}).evaluate(_people(), _catalog())
    assert out.rows() == [{"type": "A"}, {"type": "B"}]


def test_join_picked_values_with_suffix():
    out = Join("more", "id", [["name"], ["name"]]).evaluate(_people(), _catalog())
    assert out.header() == ["name_1", "name_2"]


def test_cross_join():
    t = PetlTable.from_rows(["k"], [("x",), ("y",)])
    out = Cross(t).evaluate(_people())
    assert len(out.rows()) == 6


def test_lookup_semijoin_antijoin():
    catalog = _catalog()
    looked = Lookup("payments", "id", ["amount"]).evaluate(_people(), catalog)
    assert _column(looked, "amount") == [10, 7, None]
    assert _column(Semijoin("payments", "id").evaluate(_people(), catalog), "id") == [1, 2]
    assert _column(Antijoin("payments", "id").evaluate(_people(), catalog), "id") == [3]


def test_set_verbs():
    catalog = _catalog()
    assert _column(Concat(["more"]).evaluate(_people(), catalog), "id") == [1, 2, 3, 4, 1]
    assert _column(Union(["more"]).evaluate(_people(), catalog), "id") == [1, 2, 3, 4]
    assert _column(Intersect(["more"]).evaluate(_people(), catalog), "id") == [1]
    assert _column(Except(["more"]).evaluate(_people(), catalog), "id") == [2, 3]


def test_reify_materializes_rows():
    t = PetlTable(etl.wrap([("a",), (1,), (2,)]))
    assert Reify().evaluate(t).rows() == [{"a": 1}, {"a": 2}]


def test_unresolved_table_reference():
    with pytest.raises(UnresolvedTableError) as ex:
        Join("missing", "id").evaluate(_people(), {})
    assert getattr(ex.value, "code", None) == "E_TABLE_UNRESOLVED"
    with pytest.raises(UnresolvedTableError):
        Semijoin("missing", "id").evaluate(_people(), lambda name: None)
    with pytest.raises(UnresolvedTableError):
        Concat(["missing"]).evaluate(_people())


def test_callable_catalog():
    catalog = _catalog()
    out = Semijoin("payments", "id").evaluate(_people(), catalog.get)
    assert _column(out, "id") == [1, 2]


def test_catalog_lookup_error_is_unresolved():
    with pytest.raises(UnresolvedTableError) as ex:
        Semijoin("missing", "id").evaluate(_people(), _catalog().__getitem__)
    assert getattr(ex.value, "code", None) == "E_TABLE_UNRESOLVED"
    assert "KeyError" in ex.value.hint


def test_table_without_the_verb():
    with pytest.raises(WowVerbsUserError) as ex:
        Filter("a").evaluate(object())
    assert getattr(ex.value, "code", None) == "E_TABLE_VERB"


@pytest.mark.parametrize(
    "verb",
    [
        Filter("age > 26"),
        Derive({"x": "age + 1", "loud": "upper(name)"}),
        Select(["name", "age"]),
        Orderby(["name", desc("age")]),
        Dedupe(),
        Join("payments", "id"),
        Join("orders", [["id"], ["pid"]], {"who": "name"}, {"left": True}),
        Lookup("payments", "id", ["amount"]),
        Semijoin("payments", "id"),
        Antijoin("payments", "id"),
        Concat(["more"]),
        Union(["more"]),
        Intersect(["more"]),
        Except(["more"]),
        Sample(2, {"seed": 3, "weight": "age"}),
        Count(),
    ],
)
def test_round_trip_evaluates_identically(verb):
    catalog = _catalog()
    again = Verb.from_object(json.loads(json.dumps(verb.to_object())))
    expected = verb.evaluate(_people(), catalog)
    actual = again.evaluate(_people(), catalog)
    assert actual.header() == expected.header()
    assert actual.rows() == expected.rows()


def test_from_csv_compares_text_numbers(tmp_path):
    p = tmp_path / "people.csv"
    p.write_text("id,name,age\n1,A,30\n2,B,40\n3,C,25\n", encoding="utf-8")
    t = PetlTable.from_csv(str(p), name="people")
    assert t.header() == ["id", "name", "age"]
    assert _column(Filter("age > 26").evaluate(t), "name") == ["A", "B"]
    assert "name" in str(t)
