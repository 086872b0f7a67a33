# tests/unit/model/test_schema.py
"""Tests for loading and querying the schema graph."""

from __future__ import annotations

from typing import Any

import pytest

from edmc.contracts.enums import DefinitionKind
from edmc.contracts.errors import ModelLoadError
from edmc.model.schema import SchemaGraph, iter_all_elements, walk_elements
from tests.conftest import element, entity, key, managed, model, service, unmanaged


def _load(definitions: dict[str, Any]) -> SchemaGraph:
    return SchemaGraph.from_dict(model(definitions))


class TestFromDict:
    """Structural loading and rejection of malformed input."""

    def test_requires_definitions(self) -> None:
        with pytest.raises(ModelLoadError, match="no 'definitions'"):
            SchemaGraph.from_dict({})

    def test_unknown_kind(self) -> None:
        with pytest.raises(ModelLoadError, match="Unknown definition kind") as exc_info:
            _load({"S.X": {"kind": "view"}})
        assert exc_info.value.location == ("definitions", "S.X")

    def test_definition_must_be_mapping(self) -> None:
        with pytest.raises(ModelLoadError, match="Definition must be a mapping"):
            _load({"S.X": ["entity"]})

    def test_association_needs_keys_or_on(self) -> None:
        with pytest.raises(ModelLoadError, match="either 'keys' or 'on'") as exc_info:
            _load({"S.E": entity({"a": {"target": "S.T"}})})
        assert exc_info.value.location == ("definitions", "S.E", "elements", "a")

    def test_arrays_of_arrays_rejected(self) -> None:
        with pytest.raises(ModelLoadError, match="Arrays of arrays"):
            _load({"S.E": entity({"a": {"items": {"items": {"type": "cds.String"}}}})})

    def test_association_items_rejected(self) -> None:
        with pytest.raises(ModelLoadError, match="can't be array items"):
            _load({"S.E": entity({"a": {"items": {"type": "cds.Association", "target": "S.T", "keys": []}}})})

    def test_bound_actions_only_on_entities(self) -> None:
        with pytest.raises(ModelLoadError, match="Only entities can have bound actions"):
            _load({"S.T": {"kind": "type", "actions": {"a": {"kind": "action"}}}})

    def test_foreign_key_needs_ref(self) -> None:
        with pytest.raises(ModelLoadError, match="non-empty 'ref'"):
            _load({"S.E": entity({"a": {"target": "S.T", "keys": [{"as": "x"}]}})})

    def test_kinds_and_annotations(self) -> None:
        graph = _load({"S": service(path="/browse"), "S.E": entity({"ID": key()}, **{"@UI.Hidden": True})})
        assert graph["S"].kind is DefinitionKind.SERVICE
        assert graph["S"].anno("@path") == "/browse"
        assert graph["S.E"].annotations == {"@UI.Hidden": True}
        assert len(graph) == 2
        assert "S.E" in graph

    def test_target_without_type_is_association(self) -> None:
        graph = _load({"S.E": entity({"a": {"target": "S.T", "keys": [{"ref": ["ID"]}]}})})
        assoc = graph["S.E"].elements["a"]
        assert assoc.type == "cds.Association"
        assert assoc.is_association and assoc.is_managed and not assoc.is_unmanaged

    def test_generated_foreign_key_names(self) -> None:
        graph = _load(
            {
                "S.E": entity(
                    {
                        "a": {
                            "target": "S.T",
                            "keys": [
                                {"ref": ["ID"]},
                                {"ref": ["sub", "code"]},
                                {"ref": ["x"], "as": "alias"},
                                {"ref": ["y"], "$generatedFieldName": "given"},
                            ],
                        }
                    }
                )
            }
        )
        names = [fk.generated_name for fk in graph["S.E"].elements["a"].keys or []]
        assert names == ["a_ID", "a_sub_code", "a_alias", "given"]

    def test_bound_actions(self) -> None:
        graph = _load(
            {
                "S.E": entity(
                    {"ID": key()},
                    actions={"approve": {"kind": "action", "params": {"reason": element()}}},
                )
            }
        )
        action = (graph["S.E"].actions or {})["approve"]
        assert action.bound_to == "S.E"
        assert action.location == ("definitions", "S.E", "actions", "approve")
        assert action.is_callable
        assert (action.params or {})["reason"].location == ("definitions", "S.E", "actions", "approve", "params", "reason")

    def test_enum_symbols(self) -> None:
        graph = _load({"S.Status": {"kind": "type", "type": "cds.Integer", "enum": {"open": {"val": 1}, "closed": {"#": "open"}, "none": {}}}})
        enum = graph["S.Status"].enum or {}
        assert enum["open"].has_val and enum["open"].val == 1
        assert enum["closed"].symbol_ref == "open"
        assert not enum["none"].has_val

    def test_element_paths(self) -> None:
        graph = _load({"S.E": entity({"addr": {"elements": {"street": element()}}})})
        street = (graph["S.E"].elements["addr"].elements or {})["street"]
        assert street.owner == "S.E"
        assert street.element_path == ("addr", "street")
        assert street.location == ("definitions", "S.E", "elements", "addr", "elements", "street")
        assert street.abs_path == ("S.E", "addr", "street")


class TestQueries:
    """element_at, renames and type resolution."""

    @pytest.fixture
    def graph(self) -> SchemaGraph:
        return _load(
            {
                "S.Name": {"kind": "type", "type": "cds.String", "length": 40},
                "S.Short": {"kind": "type", "type": "S.Name", "length": 10},
                "S.Address": {"kind": "type", "elements": {"street": element(), "city": element("S.Name")}},
                "S.E": entity(
                    {
                        "ID": key(),
                        "name": element("S.Short"),
                        "home": element("S.Address"),
                        "tags": {"items": {"type": "cds.String"}},
                        "other": managed("S.T", "ID"),
                    },
                    actions={"f": {"kind": "function", "returns": element("cds.Integer")}},
                ),
                "S.T": entity({"ID": key(), "back": unmanaged("S.E", [{"ref": ["back", "other"]}, "=", {"ref": ["$self"]}])}),
            }
        )

    def test_element_at(self, graph: SchemaGraph) -> None:
        assert graph.element_at(("definitions", "S.E", "elements", "name")) is graph["S.E"].elements["name"]
        assert graph.element_at(("definitions", "S.E", "elements", "tags", "items")) is graph["S.E"].elements["tags"].items

    def test_element_at_returns_of_bound_function(self, graph: SchemaGraph) -> None:
        function = (graph["S.E"].actions or {})["f"]
        assert graph.element_at(("definitions", "S.E", "actions", "f", "returns")) is function.returns

    def test_element_at_unknown(self, graph: SchemaGraph) -> None:
        assert graph.element_at(("definitions", "S.E", "elements", "nope")) is None
        assert graph.element_at(("definitions", "S.E")) is None
        assert graph.element_at(("other", "S.E")) is None

    def test_effective_type_closest_facet_wins(self, graph: SchemaGraph) -> None:
        final = graph.effective_type(graph["S.E"].elements["name"])
        assert final.type == "cds.String"
        assert final.length == 10

    def test_structured_elements_follow_named_types(self, graph: SchemaGraph) -> None:
        members = graph.structured_elements(graph["S.E"].elements["home"])
        assert members is not None and list(members) == ["street", "city"]
        assert graph.is_structured(graph["S.E"].elements["home"])
        assert not graph.is_structured(graph["S.E"].elements["other"])

    def test_type_definition(self, graph: SchemaGraph) -> None:
        assert graph.type_definition(graph["S.E"].elements["name"]) is graph["S.Short"]
        assert graph.type_definition(graph["S.E"].elements["ID"]) is None

    def test_rename_rewrites_references(self, graph: SchemaGraph) -> None:
        graph.rename_definition("S.T", "S.Target")
        assert "S.T" not in graph
        assert graph["S.E"].elements["other"].target == "S.Target"
        assert graph["S.Target"].elements["ID"].location == ("definitions", "S.Target", "elements", "ID")
        assert graph["S.Target"].elements["ID"].owner == "S.Target"

    def test_rename_to_existing_name_rejected(self, graph: SchemaGraph) -> None:
        with pytest.raises(ValueError, match="already exists"):
            graph.rename_definition("S.T", "S.E")

    def test_add_existing_definition_rejected(self, graph: SchemaGraph) -> None:
        with pytest.raises(ValueError, match="already exists"):
            graph.add_definition(graph["S.E"])

    def test_walk_elements_yields_nested_paths(self) -> None:
        nested = _load({"S.E": entity({"a": {"elements": {"b": element()}}})})
        paths = [path for _, path in walk_elements(nested["S.E"])]
        assert ("a",) in paths and ("a", "b") in paths

    def test_iter_all_elements_includes_action_members(self, graph: SchemaGraph) -> None:
        names = {e.name for e in iter_all_elements(graph["S.E"])}
        assert {"ID", "name", "tags", "other"} <= names
