import dataclasses
import json

import pytest

from wowverbs import (
    VERB_SCHEMAS,
    VERBS,
    Concat,
    Count,
    Dedupe,
    Derive,
    Filter,
    Join,
    Lookup,
    Orderby,
    ParamKind,
    PetlTable,
    Reify,
    Sample,
    Unroll,
    UnknownVerbError,
    UnparsableExpressionError,
    Verb,
    WowVerbsUserError,
    col,
    desc,
    expr,
)
from wowverbs.kinds import KIND_REGISTRY
from wowverbs.normalize import OrderKey
from wowverbs.util import _is_identifier


def _assert_plain(value):
    if isinstance(value, dict):
        assert all(isinstance(k, str) for k in value)
        for v in value.values():
            _assert_plain(v)
    elif isinstance(value, list):
        for v in value:
            _assert_plain(v)
    else:
        assert value is None or isinstance(value, (bool, int, float, str)), repr(value)


def test_every_kind_has_a_codec():
    assert set(KIND_REGISTRY) == set(ParamKind)


def test_verbs_lookup_matches_schemas():
    assert list(VERBS) == list(VERB_SCHEMAS)
    assert "reify" not in VERBS
    assert VERBS["filter"]("a > 1").name == "filter"


def test_schemas_are_read_only():
    with pytest.raises(TypeError):
        VERB_SCHEMAS["extra"] = ()  # type: ignore[index]


def test_dedupe_defaults_to_empty_keys():
    assert Dedupe()["keys"] == ()


def test_missing_parameters_are_none():
    v = Join("people")
    assert v["on"] is None
    assert v.values is None
    assert v.options is None


def test_construction_does_not_parse():
    v = Filter("a ==")
    assert v.criteria == expr("a ==")


def test_verbs_are_immutable():
    v = Dedupe(["a"])
    with pytest.raises(dataclasses.FrozenInstanceError):
        v.name = "other"  # type: ignore[misc]
    with pytest.raises(TypeError):
        v.fields["keys"] = []  # type: ignore[index]
    with pytest.raises(AttributeError):
        v.keys.append("b")
    with pytest.raises(TypeError):
        Count({"as": "n"}).options["as"] = "m"  # type: ignore[index]


def test_verbs_are_hashable():
    assert hash(Dedupe(["a"])) == hash(Dedupe(["a"]))
    assert len({Filter("a > 1"), Filter("a > 1"), Dedupe()}) == 2


def test_too_many_parameters():
    with pytest.raises(WowVerbsUserError) as ex:
        Filter("a", "b")
    assert getattr(ex.value, "code", None) == "E_VERB_ARITY"


def test_create_by_name():
    v = Verb.create("derive", {"total": "price * qty"})
    assert v.to_object() == Derive({"total": "price * qty"}).to_object()


def test_from_object_unknown_verb():
    with pytest.raises(UnknownVerbError) as ex:
        Verb.from_object({"verb": "unknown_verb"})
    assert getattr(ex.value, "code", None) == "E_VERB_UNKNOWN"


def test_from_object_rejects_non_mapping():
    with pytest.raises(WowVerbsUserError) as ex:
        Verb.from_object(["filter"])
    assert getattr(ex.value, "code", None) == "E_VERB_OBJECT"


def test_reify_is_not_looked_up_by_name():
    assert Reify().to_object() == {"verb": "reify"}
    with pytest.raises(UnknownVerbError):
        Verb.from_object({"verb": "reify"})


def test_from_object_ignores_unknown_keys():
    v = Verb.from_object({"verb": "dedupe", "keys": ["a"], "colour": "red"})
    assert v.to_object() == {"verb": "dedupe", "keys": ["a"]}


def test_to_object_filter_and_derive():
    assert Filter("a > 1").to_object() == {"verb": "filter", "criteria": {"expr": "a > 1"}}
    assert Derive({"total": "price * qty", "p": "price"}).to_object() == {
        "verb": "derive",
        "values": {"total": {"expr": "price * qty"}, "p": "price"},
    }


def test_to_object_join():
    assert Join("right", "id", None, {"left": True}).to_object() == {
        "verb": "join",
        "table": "right",
        "on": {"left": ["id"], "right": ["id"]},
        "values": None,
        "options": {"left": True},
    }


def test_to_object_orderby():
    assert Orderby(["a", "-b", desc("c")]).to_object() == {
        "verb": "orderby",
        "keys": [
            {"expr": "a", "direction": "asc"},
            {"expr": "b", "direction": "desc"},
            {"expr": "c", "direction": "desc"},
        ],
    }


def test_to_object_option_sub_kinds():
    assert Sample(10, {"weight": "w", "replace": True}).to_object() == {
        "verb": "sample",
        "size": 10,
        "options": {"weight": "w", "replace": True},
    }
    assert Unroll(["xs"], {"drop": ["ys"]}).to_object()["options"] == {"drop": ["ys"]}


def test_to_object_rejects_non_json_options():
    with pytest.raises(WowVerbsUserError) as ex:
        Count({"as": object()}).to_object()
    assert getattr(ex.value, "code", None) == "E_OBJECT_NOT_JSON"


def test_to_object_names_live_tables():
    people = PetlTable.from_rows(["id"], [(1,)], name="people")
    more = PetlTable.from_rows(["id"], [(2,)], name="more")
    assert Lookup(people, "id", ["age"]).to_object()["table"] == "people"
    assert Concat([more, "other"]).to_object()["tables"] == ["more", "other"]


def test_to_object_unnamed_table_handle():
    anonymous = PetlTable.from_rows(["id"], [(1,)])
    with pytest.raises(WowVerbsUserError) as ex:
        Lookup(anonymous, "id", ["age"]).to_object()
    assert getattr(ex.value, "code", None) == "E_TABLE_REF_NAME"


def test_to_object_is_json_safe():
    verbs = [
        Filter({"adult": "age >= 18", "named": "name"}),
        Join("people", [["id"], ["pid"]], {"who": "name"}, {"suffix": ["_l", "_r"]}),
        Orderby([desc("age"), "name"]),
        Sample("count() / 2", {"seed": 1, "weight": "w"}),
        Derive({"x": expr("a + 1", func=lambda r: r["a"] + 1)}),
        Concat(["a", "b"]),
        Count(),
    ]
    for v in verbs:
        obj = v.to_object()
        _assert_plain(obj)
        assert json.loads(json.dumps(obj)) == obj


def test_source_with_func_marks_func():
    v = Derive({"x": expr("a + 1", func=lambda r: r["a"] + 1)})
    assert v.to_object()["values"]["x"] == {"expr": "a + 1", "func": True}


def test_lambda_without_source_is_unparsable():
    with pytest.raises(UnparsableExpressionError):
        Derive({"x": lambda r: 1}).to_object()
    with pytest.raises(UnparsableExpressionError):
        Filter(lambda r: True).to_ast()


def test_module_function_without_source_has_no_object_form():
    with pytest.raises(UnparsableExpressionError):
        Filter(_is_identifier).to_object()


def test_descriptors_never_import_code():
    v = Verb.from_object(json.loads('{"verb": "filter", "criteria": {"expr": "sys:exit", "ref": true}}'))
    assert v.criteria == expr("sys:exit", ref=True)
    with pytest.raises(UnparsableExpressionError) as ex:
        v.evaluate(PetlTable.from_rows(["a"], [(1,)]))
    assert getattr(ex.value, "code", None) == "E_EXPR_PARSE"


def test_wire_strings_are_column_names():
    assert Verb.from_object({"verb": "filter", "criteria": "a > 1"}).criteria == col("a > 1")
    keys = Verb.from_object({"verb": "orderby", "keys": ["-b"]}).keys
    assert keys == (OrderKey(col("-b"), "asc"),)
    assert Orderby(["-b"]).keys == (OrderKey(col("b"), "desc"),)


@pytest.mark.parametrize(
    "verb",
    [
        Filter("a > 1"),
        Derive({"total": "price * qty", "p": "price"}),
        Dedupe(),
        Orderby(["a", "-b"]),
        Join("t", [["id"], ["pid"]], {"total": "a + b"}, {"left": True}),
        Join("t", "id", [["x"], ["y"]]),
        Sample(3, {"weight": "w", "seed": 2}),
        Unroll(["xs"], {"drop": ["ys"], "index": "i"}),
        Concat(["a", "b"]),
        Count({"as": "n"}),
    ],
)
def test_object_round_trip(verb):
    obj = verb.to_object()
    again = Verb.from_object(json.loads(json.dumps(obj)))
    assert again.name == verb.name
    assert again.to_object() == obj


def test_to_ast_column_name():
    assert Filter("x").to_ast() == {"verb": "filter", "criteria": {"type": "Column", "name": "x"}}


def test_to_ast_expression_map():
    assert Derive({"t": "a * 2"}).to_ast() == {
        "verb": "derive",
        "values": {
            "type": "ExprObject",
            "values": {
                "t": {
                    "type": "BinaryExpression",
                    "operator": "*",
                    "left": {"type": "Column", "name": "a"},
                    "right": {"type": "Literal", "value": 2},
                },
            },
        },
    }


def test_to_ast_options_and_numbers():
    assert Sample(5, {"weight": "w", "replace": False}).to_ast() == {
        "verb": "sample",
        "size": {"type": "Literal", "value": 5},
        "options": {
            "type": "Options",
            "options": {
                "weight": {"type": "Column", "name": "w"},
                "replace": {"type": "Literal", "value": False},
            },
        },
    }


def test_to_ast_join_parts():
    ast = Join("people", [["id"], ["pid"]]).to_ast()
    assert ast["table"] == {"type": "TableRef", "name": "people"}
    assert ast["on"] == {
        "type": "JoinKeys",
        "left": [{"type": "Column", "name": "id"}],
        "right": [{"type": "Column", "name": "pid"}],
    }
    assert ast["values"] is None
    assert ast["options"] is None


def test_to_ast_orderby():
    assert Orderby(["a", "-b"]).to_ast()["keys"] == {
        "type": "OrderbyKeys",
        "keys": [
            {"expr": {"type": "Column", "name": "a"}, "direction": "asc"},
            {"expr": {"type": "Column", "name": "b"}, "direction": "desc"},
        ],
    }


def test_to_ast_uses_supplied_parser():
    def parser(text, kind):
        return {"type": "Raw", "text": text, "kind": kind.value}

    assert Filter("a > 1").to_ast(parser)["criteria"] == {"type": "Raw", "text": "a > 1", "kind": "expression-map"}


def test_to_ast_reports_unparsable_source():
    with pytest.raises(UnparsableExpressionError) as ex:
        Filter("a ==").to_ast()
    assert getattr(ex.value, "code", None) == "E_EXPR_PARSE"


def test_to_ast_is_json_safe():
    ast = Join("people", "id", {"who": "name"}, {"left": True}).to_ast()
    _assert_plain(ast)
