# tests/unit/expressions/test_dynamic.py
"""Tests for translating annotation expressions into dynamic EDM JSON expressions."""

from __future__ import annotations

from typing import Any

import pytest

from edmc.contracts.diagnostics import MessageSink
from edmc.core.config import CompilerOptions
from edmc.expressions.dynamic import xpr_to_edm_json
from edmc.model.schema import SchemaGraph
from tests.conftest import model

A = {"ref": ["a"]}
B = {"ref": ["b"]}
ONE = {"val": 1}
TWO = {"val": 2}
LOCATION = ("definitions", "S.E")


def _graph() -> SchemaGraph:
    return SchemaGraph.from_dict(
        model({"S.Amount": {"kind": "type", "type": "cds.Decimal", "precision": 5, "scale": 1}})
    )


def _translate(value: Any, sink: MessageSink | None = None, **opts: Any) -> tuple[Any, bool]:
    return xpr_to_edm_json(
        value,
        anno="@UI.Hidden",
        location=LOCATION,
        options=CompilerOptions(**opts),
        graph=_graph(),
        sink=sink if sink is not None else MessageSink(),
    )


def _xpr(*tokens: Any) -> dict[str, Any]:
    return {"=": "source", "xpr": list(tokens)}


def _edm(value: Any, **opts: Any) -> Any:
    result, ok = _translate(value, **opts)
    assert ok
    return result["$edmJson"]


class TestSimpleExpressions:
    def test_path(self) -> None:
        assert _edm({"=": "a.b", "ref": ["$self", "a", "b"]}) == {"$Path": "a/b"}

    def test_null_literal(self) -> None:
        assert _edm(_xpr(A, "=", {"val": None})) == {"$Eq": [{"$Path": "a"}, {"$Null": True}]}

    def test_logical_operators(self) -> None:
        result = _edm(_xpr(A, "=", ONE, "or", "not", B, "<", TWO))
        assert result == {
            "$Or": [
                {"$Eq": [{"$Path": "a"}, 1]},
                {"$Not": {"$Lt": [{"$Path": "b"}, 2]}},
            ]
        }

    @pytest.mark.parametrize(
        ("op", "tag"),
        [("<>", "$Ne"), ("!=", "$Ne"), (">=", "$Ge"), ("*", "$Mul"), ("/", "$DivBy"), ("+", "$Add"), ("-", "$Sub")],
    )
    def test_binary_tags(self, op: str, tag: str) -> None:
        assert _edm(_xpr(A, op, ONE)) == {tag: [{"$Path": "a"}, 1]}

    def test_negation(self) -> None:
        assert _edm(_xpr("-", A)) == {"$Neg": {"$Path": "a"}}

    def test_concat_operator(self) -> None:
        assert _edm(_xpr(A, "||", B)) == {"$Apply": [{"$Path": "a"}, {"$Path": "b"}], "$Function": "odata.concat"}

    def test_between(self) -> None:
        assert _edm(_xpr(A, "between", ONE, "and", TWO)) == {
            "$And": [{"$Le": [1, {"$Path": "a"}]}, {"$Le": [{"$Path": "a"}, 2]}]
        }

    def test_in_list(self) -> None:
        assert _edm(_xpr(A, "in", {"list": [ONE, TWO]})) == {"$In": [{"$Path": "a"}, [1, 2]]}

    def test_searched_case(self) -> None:
        result = _edm(_xpr("case", "when", A, "=", ONE, "then", {"val": "x"}, "else", {"val": "y"}, "end"))
        assert result == {"$If": [{"$Eq": [{"$Path": "a"}, 1]}, "x", "y"]}

    def test_simple_case_without_else(self) -> None:
        result = _edm(_xpr("case", A, "when", ONE, "then", {"val": "x"}, "when", TWO, "then", {"val": "y"}, "end"))
        assert result == {
            "$If": [
                {"$Eq": [{"$Path": "a"}, 1]},
                "x",
                {"$If": [{"$Eq": [{"$Path": "a"}, 2]}, "y"]},
            ]
        }

    def test_nested_in_record(self) -> None:
        value = {"Value": {"=": "a", "ref": ["a"]}, "Label": "Name", "Items": [{"=": "b", "ref": ["b"]}]}
        result, ok = _translate(value)
        assert ok
        assert result == {
            "Value": {"$edmJson": {"$Path": "a"}},
            "Label": "Name",
            "Items": [{"$edmJson": {"$Path": "b"}}],
        }

    def test_plain_values_untouched(self) -> None:
        assert _translate({"Label": "x", "Count": 3}) == ({"Label": "x", "Count": 3}, True)


class TestCast:
    def test_cast_with_facets(self) -> None:
        value = {"=": "cast", "ref": ["price"], "cast": {"type": "cds.Decimal", "precision": 10, "scale": 2}}
        assert _edm(value) == {"$Cast": [{"$Path": "price"}], "$Type": "Edm.Decimal", "$Precision": 10, "$Scale": 2}

    def test_cast_to_derived_type(self) -> None:
        value = {"=": "cast", "ref": ["price"], "cast": {"type": "S.Amount"}}
        assert _edm(value) == {"$Cast": [{"$Path": "price"}], "$Type": "Edm.Decimal", "$Precision": 5, "$Scale": 1}

    def test_decimal_without_facets_is_variable(self) -> None:
        value = {"=": "cast", "ref": ["price"], "cast": {"type": "cds.Decimal"}}
        assert _edm(value)["$Scale"] == "variable"
        v2 = _edm(value, odata_version="v2")
        assert "$Scale" not in v2
        assert v2["@sap.variable.scale"] is True

    def test_string_length(self) -> None:
        value = {"=": "cast", "ref": ["name"], "cast": {"type": "cds.String", "length": 20}}
        assert _edm(value) == {"$Cast": [{"$Path": "name"}], "$Type": "Edm.String", "$MaxLength": 20}

    def test_scale_larger_than_precision(self) -> None:
        sink = MessageSink()
        value = {"=": "cast", "ref": ["p"], "cast": {"type": "cds.Decimal", "precision": 2, "scale": 4}}
        _translate(value, sink)
        [error] = sink.by_id("odata-invalid-scale")
        assert error.variant == "anno"

    def test_unsupported_cast_type(self) -> None:
        sink = MessageSink()
        value = {"=": "cast", "ref": ["p"], "cast": {"type": "cds.Vector"}}
        result, ok = _translate(value, sink)
        assert not ok
        assert result == {"$edmJson": None}
        assert [d.msg_id for d in sink.diagnostics] == ["ref-unsupported-type"]

    def test_explicit_cast_function(self) -> None:
        value = _xpr({"func": "$Cast", "args": [A, {"func": "String", "args": [{"val": 10}]}]})
        assert _edm(value) == {"$Cast": [{"$Path": "a"}], "$Type": "Edm.String", "$MaxLength": 10}

    def test_explicit_isof_with_type_call(self) -> None:
        value = _xpr({"func": "IsOf", "args": [A, {"func": "Type", "args": [{"val": "Edm.Int32"}]}]})
        assert _edm(value) == {"$IsOf": [{"$Path": "a"}], "$Type": "Edm.Int32"}


class TestFunctions:
    def test_canonical_function(self) -> None:
        value = _xpr({"func": "odata.toupper", "args": [A]})
        assert _edm(value) == {"$Apply": [{"$Path": "a"}], "$Function": "odata.toupper"}

    def test_wrong_arity_fails(self) -> None:
        sink = MessageSink()
        result, ok = _translate(_xpr({"func": "odata.ceiling", "args": [A, B]}), sink)

        assert not ok
        [error] = sink.diagnostics
        assert error.msg_id == "odata-anno-xpr-args"
        assert error.variant == "exactly"
        assert error.args == {"anno": "@UI.Hidden", "op": "odata.ceiling(…)", "count": 1}
        assert result["$edmJson"]["$Function"] == "odata.ceiling"

    @pytest.mark.parametrize(
        ("name", "count", "variant"),
        [("substring", 1, "atleast"), ("substring", 4, "atmost"), ("concat", 1, "atleast"), ("now", 1, "std")],
    )
    def test_arity_variants(self, name: str, count: int, variant: str) -> None:
        sink = MessageSink()
        _, ok = _translate(_xpr({"func": name, "args": [A] * count}), sink)
        assert not ok
        assert [d.variant for d in sink.diagnostics] == [variant]

    def test_legacy_spelling(self) -> None:
        sink = MessageSink()
        _, ok = _translate(_xpr({"func": "isof", "args": [A]}), sink)
        assert not ok
        [error] = sink.diagnostics
        assert (error.msg_id, error.variant) == ("odata-anno-xpr", "use")
        assert error.args["code"] == "IsOf(…)"

    def test_unknown_function(self) -> None:
        sink = MessageSink()
        _, ok = _translate(_xpr({"func": "upper", "args": [A]}), sink)
        assert not ok
        [error] = sink.diagnostics
        assert (error.msg_id, error.variant) == ("odata-anno-xpr", "notadynexpr")
        assert error.args["op"] == "upper(…)"

    def test_apply_with_named_function(self) -> None:
        value = _xpr({"func": "Apply", "args": [A, B, {"func": "Function", "args": [{"val": "odata.concat"}]}]})
        assert _edm(value) == {"$Apply": [{"$Path": "a"}, {"$Path": "b"}], "$Function": "odata.concat"}

    def test_path_function(self) -> None:
        assert _edm(_xpr({"func": "$Path", "args": [{"val": "to_x/y"}]})) == {"$Path": "to_x/y"}

    def test_labeled_element_reference(self) -> None:
        value = _xpr({"func": "LabeledElementReference", "args": [{"val": "S.label"}]})
        assert _edm(value) == {"$LabeledElementReference": "S.label"}


class TestNotDynamic:
    @pytest.mark.parametrize(
        ("tokens", "op"),
        [
            ((A, "like", B), "like"),
            ((A, "is", "null"), "is null"),
            (("exists", A), "exists"),
            (({"#": "open"},), "#"),
        ],
    )
    def test_reported(self, tokens: tuple[Any, ...], op: str) -> None:
        sink = MessageSink()
        _, ok = _translate(_xpr(*tokens), sink)
        assert not ok
        [error] = sink.diagnostics
        assert error.variant == "notadynexpr"
        assert error.args["op"] == op

    def test_ref_with_arguments(self) -> None:
        sink = MessageSink()
        _, ok = _translate({"=": "x", "ref": [{"id": "to_x", "args": {"p": ONE}}]}, sink)
        assert not ok
        assert sink.diagnostics[0].msg_id == "odata-anno-xpr-ref"
