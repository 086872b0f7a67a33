# tests/unit/passes/test_finalize.py
"""Tests for the finishing passes: descriptions, Edm types, enums, defaults, parameters, capabilities."""

from __future__ import annotations

from typing import Any

from edmc.passes.finalize import NAVIGATION_RESTRICTIONS, merge_into_navigation_entry
from tests.conftest import backlink, bookshop, composition, element, entity, key, managed, model, prepare, service


def _with_member(**members: Any) -> dict[str, Any]:
    return model({"S": service(), "S.E": entity({"ID": key(), **members})})


class TestFinalizeDefinition:
    def test_doc_becomes_description(self) -> None:
        prepared = prepare(bookshop())
        title = prepared.graph["CatalogService.Books"].elements["title"]
        assert prepared.state.annotation(title, "@Core.Description") == "Title of the book"

    def test_explicit_description_wins(self) -> None:
        prepared = prepare(_with_member(x=element(doc="doc text", **{"@Core.Description": "explicit"})))
        x = prepared.graph["S.E"].elements["x"]
        assert prepared.state.annotation(x, "@Core.Description") == "explicit"

    def test_edm_type_and_facets(self) -> None:
        prepared = prepare(bookshop())
        title = prepared.state.element(prepared.graph["CatalogService.Books"].elements["title"])
        assert title.edm_type == "Edm.String"
        assert title.facets == {"MaxLength": 111}

    def test_collection_marked(self) -> None:
        prepared = prepare(_with_member(tags={"items": {"type": "cds.String", "notNull": True}}))
        tags = prepared.state.element(prepared.graph["S.E"].elements["tags"])
        assert tags.is_collection
        assert tags.not_null_collection
        assert tags.edm_type == "Edm.String"

    def test_unsupported_type_is_an_error(self) -> None:
        prepared = prepare(_with_member(embedding=element("cds.Vector")))
        [error] = prepared.sink.by_id("ref-unsupported-type")
        assert error.location == ("definitions", "S.E", "elements", "embedding")
        assert prepared.state.element(prepared.graph["S.E"].elements["embedding"]).edm_type == "Edm.PrimitiveType"

    def test_ignored_element_with_unsupported_type_is_silent(self) -> None:
        prepared = prepare(_with_member(embedding=element("cds.Vector", **{"@cds.api.ignore": True})))
        assert prepared.sink.by_id("ref-unsupported-type") == []


class TestAllowedValues:
    def test_string_enum_defaults_to_symbol_name(self) -> None:
        status = element(enum={"open": {}, "closed": {"val": "C", "@description": "Done"}})
        prepared = prepare(_with_member(status=status))
        node = prepared.graph["S.E"].elements["status"]
        assert prepared.state.annotation(node, "@Validation.AllowedValues") == [
            {"@Core.SymbolicName": "open", "Value": "open"},
            {"@Core.SymbolicName": "closed", "Value": "C", "@Core.Description": "Done"},
        ]

    def test_integer_enum_needs_values(self) -> None:
        level = element("cds.Integer", enum={"low": {"val": 1}, "high": {}})
        prepared = prepare(_with_member(level=level))
        node = prepared.graph["S.E"].elements["level"]

        [warning] = prepared.sink.by_id("odata-enum-missing-value")
        assert warning.args["name"] == "high"
        assert prepared.state.annotation(node, "@Validation.AllowedValues") == [
            {"@Core.SymbolicName": "low", "Value": 1}
        ]

    def test_symbol_references_resolved(self) -> None:
        level = element("cds.Integer", enum={"low": {"val": 1}, "minimum": {"#": "low"}})
        prepared = prepare(_with_member(level=level))
        values = prepared.state.annotation(prepared.graph["S.E"].elements["level"], "@Validation.AllowedValues")
        assert values == [{"@Core.SymbolicName": "low", "Value": 1}, {"@Core.SymbolicName": "minimum", "Value": 1}]

    def test_enum_type_definitions(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.Status": {"kind": "type", "type": "cds.String", "enum": {"a": {}, "b": {}}},
                "S.E": entity({"ID": key(), "status": element("S.Status")}),
            }
        )
        prepared = prepare(csn)
        values = prepared.state.annotation(prepared.graph["S.E"].elements["status"], "@Validation.AllowedValues")
        assert [v["Value"] for v in values] == ["a", "b"]


class TestComputedDefaults:
    def test_literal_default_is_plain(self) -> None:
        prepared = prepare(_with_member(n=element("cds.Integer", default={"val": 5})))
        n = prepared.graph["S.E"].elements["n"]
        assert prepared.state.annotation(n, "@Core.ComputedDefaultValue") is None

    def test_negative_literal_is_plain(self) -> None:
        prepared = prepare(_with_member(n=element("cds.Integer", default={"xpr": ["-", {"val": 5}]})))
        n = prepared.graph["S.E"].elements["n"]
        assert prepared.state.annotation(n, "@Core.ComputedDefaultValue") is None

    def test_function_default_is_computed(self) -> None:
        prepared = prepare(_with_member(at=element("cds.Timestamp", default={"func": "now"})))
        at = prepared.graph["S.E"].elements["at"]
        assert prepared.state.annotation(at, "@Core.ComputedDefaultValue") is True

    def test_parameter_expression_default_ignored(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.run": {"kind": "action", "params": {"at": element("cds.Timestamp", default={"func": "now"})}},
            }
        )
        prepared = prepare(csn)
        [warning] = prepared.sink.by_id("odata-ignoring-param-default")
        assert warning.variant == "xpr"
        assert warning.location == ("definitions", "S.run", "params", "at")


class TestOptionalParameters:
    def test_default_value_annotated(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.find": {
                    "kind": "function",
                    "params": {"q": element(notNull=True), "limit": element("cds.Integer", default={"val": 10})},
                    "returns": {"type": "cds.String"},
                },
            }
        )
        prepared = prepare(csn)
        limit = prepared.graph["S.find"].params["limit"]  # type: ignore[index]
        assert prepared.state.annotation(limit, "@Core.OptionalParameter.DefaultValue") == 10
        assert prepared.sink.errors() == []

    def test_mandatory_after_optional_function_param(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.find": {
                    "kind": "function",
                    "params": {"limit": element("cds.Integer", default={"val": 10}), "q": element()},
                    "returns": {"type": "cds.String"},
                },
            }
        )
        prepared = prepare(csn)
        [error] = prepared.sink.errors()
        assert error.msg_id == "odata-parameter-order"
        assert error.location == ("definitions", "S.find", "params", "q")

    def test_action_parameters_may_be_nullable(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.E": entity(
                    {"ID": key()},
                    actions={"approve": {"kind": "action", "params": {"note": element(), "level": element(notNull=True)}}},
                ),
            }
        )
        prepared = prepare(csn)
        assert prepared.sink.errors() == []

    def test_boolean_shorthand_expanded(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.run": {
                    "kind": "action",
                    "params": {"mode": element(default={"val": "fast"}, **{"@Core.OptionalParameter": True})},
                },
            }
        )
        prepared = prepare(csn)
        mode = prepared.graph["S.run"].params["mode"]  # type: ignore[index]
        assert prepared.state.annotation(mode, "@Core.OptionalParameter") == {"DefaultValue": "fast"}
        assert mode.annotations["@Core.OptionalParameter"] is True

    def test_nothing_in_v2(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.find": {
                    "kind": "function",
                    "params": {"limit": element("cds.Integer", default={"val": 10}), "q": element()},
                    "returns": {"type": "cds.String"},
                },
            }
        )
        prepared = prepare(csn, odata_version="v2")
        limit = prepared.graph["S.find"].params["limit"]  # type: ignore[index]
        assert prepared.state.annotation(limit, "@Core.OptionalParameter.DefaultValue") is None
        assert prepared.sink.errors() == []


class TestCapabilitiesPullUp:
    def _csn(self) -> dict[str, Any]:
        return model(
            {
                "S": service(),
                "S.Orders": entity(
                    {
                        "ID": key(),
                        "items": composition("S.Items", backlink("items", "up_"), cardinality={"max": "*"}),
                    }
                ),
                "S.Items": entity(
                    {"up_": managed("S.Orders", "ID", key=True), "pos": key()},
                    **{
                        "@Capabilities.InsertRestrictions.Insertable": False,
                        "@Capabilities.DeleteRestrictions.Deletable": False,
                    },
                ),
            }
        )

    def test_containee_capabilities_move_to_root(self) -> None:
        prepared = prepare(self._csn(), odata_containment=True, odata_capabilities_pullup=True)
        orders = prepared.graph["S.Orders"]
        assert orders.annotations.get(NAVIGATION_RESTRICTIONS) is None
        assert prepared.state.annotation(orders, NAVIGATION_RESTRICTIONS) == [
            {
                "NavigationProperty": {"=": "items"},
                "InsertRestrictions": {"Insertable": False},
                "DeleteRestrictions": {"Deletable": False},
            }
        ]

    def test_recursive_hierarchy_collects_on_itself(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.Node": entity(
                    {
                        "ID": key(),
                        "parent": managed("S.Node", "ID"),
                        "children": composition("S.Node", backlink("children", "parent"), cardinality={"max": "*"}),
                    },
                    **{"@Capabilities.InsertRestrictions.Insertable": False},
                ),
            }
        )
        prepared = prepare(csn, odata_containment=True, odata_capabilities_pullup=True)
        node = prepared.graph["S.Node"]
        assert prepared.state.annotation(node, NAVIGATION_RESTRICTIONS) == [
            {"NavigationProperty": {"=": "children"}, "InsertRestrictions": {"Insertable": False}}
        ]

    def test_containee_does_not_collect(self) -> None:
        prepared = prepare(self._csn(), odata_containment=True, odata_capabilities_pullup=True)
        assert prepared.state.annotation(prepared.graph["S.Items"], NAVIGATION_RESTRICTIONS) is None

    def test_disabled_by_default(self) -> None:
        prepared = prepare(self._csn(), odata_containment=True)
        assert prepared.state.annotation(prepared.graph["S.Orders"], NAVIGATION_RESTRICTIONS) is None

    def test_merge_keeps_existing_properties(self) -> None:
        entry: dict[str, Any] = {"NavigationProperty": {"=": "items"}, "InsertRestrictions": {"Insertable": True}}
        added = merge_into_navigation_entry(
            "@Capabilities.InsertRestrictions",
            entry,
            ("items",),
            {"@Capabilities.InsertRestrictions.Insertable": False, "@Capabilities.InsertRestrictions.MaxLevels": 2},
        )
        assert not added
        assert entry["InsertRestrictions"] == {"Insertable": True, "MaxLevels": 2}

    def test_read_by_key_restrictions_nested(self) -> None:
        entry: dict[str, Any] = {"NavigationProperty": {"=": "items"}}
        added = merge_into_navigation_entry(
            "@Capabilities.ReadRestrictions",
            entry,
            ("items",),
            {
                "@Capabilities.ReadRestrictions.Readable": True,
                "@Capabilities.ReadRestrictions.ReadByKeyRestrictions.Readable": False,
            },
        )
        assert added
        assert entry["ReadRestrictions"] == {"Readable": True, "ReadByKeyRestrictions": {"Readable": False}}

    def test_paths_made_relative_to_root(self) -> None:
        entry: dict[str, Any] = {"NavigationProperty": {"=": "items"}}
        merge_into_navigation_entry(
            "@Capabilities.FilterRestrictions",
            entry,
            ("items",),
            {"@Capabilities.FilterRestrictions.RequiredProperties": [{"=": "pos"}]},
        )
        assert entry["FilterRestrictions"] == {"RequiredProperties": [{"=": "items.pos"}]}
