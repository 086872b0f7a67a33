# tests/unit/passes/test_entity_sets.py
"""Tests for entity set decisions and the parameterized entity split."""

from __future__ import annotations

from typing import Any

import pytest

from edmc.contracts.errors import CompilerAssertion
from edmc.passes.entity_sets import determine_entity_set
from tests.conftest import bookshop, element, entity, key, make_context, managed, model, prepare, service


def _parameterized() -> dict[str, Any]:
    return model(
        {
            "S": service(),
            "S.Sales": entity(
                {"ID": key(), "amount": element("cds.Decimal", precision=10, scale=2)},
                params={"year": element("cds.Integer"), "region": element()},
            ),
            "S.Report": entity({"ID": key(), "sales": managed("S.Sales", "ID")}),
        }
    )


class TestDetermineEntitySet:
    def test_plain_entities_get_sets(self) -> None:
        prepared = prepare(bookshop())
        sets = [s.name for s in prepared.compiled_service("CatalogService").entity_sets]
        assert sets == ["Books", "Authors", "Orders", "OrderItems"]

    def test_containees_have_no_set_in_v4(self) -> None:
        prepared = prepare(bookshop(), odata_containment=True)
        assert not prepared.state.of(prepared.graph["CatalogService.OrderItems"]).has_entity_set
        assert prepared.state.of(prepared.graph["CatalogService.Orders"]).has_entity_set

    def test_decided_once(self) -> None:
        ctx = make_context(model({"S": service(), "S.E": entity({"ID": key()})}))
        definition = ctx.graph["S.E"]
        determine_entity_set(ctx, definition)
        determine_entity_set(ctx, definition)
        assert ctx.state.of(definition).has_entity_set
        with pytest.raises(CompilerAssertion):
            ctx.state.of(definition).decide_entity_set(False)

    def test_singleton(self) -> None:
        csn = model({"S": service(), "S.Config": entity({"ID": key()}, **{"@odata.singleton": True})})
        [entity_set] = prepare(csn).compiled_service("S").entity_sets
        assert entity_set.is_singleton
        assert entity_set.name == "Config"


class TestParameterizedSplit:
    def test_names(self) -> None:
        prepared = prepare(_parameterized())
        state = prepared.state.of(prepared.graph["S.Sales"])
        assert state.origin == "S.SalesParameters"
        assert state.edm_name == "S.SalesType"
        assert state.entity_set_name == "S.SalesSet"
        assert "S.SalesParameters" in prepared.requested

    def test_parameter_entity(self) -> None:
        prepared = prepare(_parameterized())
        parameters = prepared.graph["S.SalesParameters"]
        param_state = prepared.state.of(parameters)

        assert param_state.is_param_entity
        assert param_state.entity_set_name == "S.Sales"
        assert parameters.annotations["@sap.semantics"] == "parameters"
        assert list(parameters.elements) == ["year", "region", "Set"]
        assert list(param_state.keys) == ["year", "region"]
        assert param_state.key_paths == ["year", "region"]
        assert prepared.state.annotation(parameters.elements["year"], "@Common.FieldControl") == {"#": "Mandatory"}

    def test_set_and_back_associations(self) -> None:
        prepared = prepare(_parameterized())
        sales = prepared.graph["S.Sales"]
        parameters = prepared.graph["S.SalesParameters"]

        assert parameters.elements["Set"].target == "S.Sales"
        assert parameters.elements["Set"].annotations["@odata.contained"] is True
        assert sales.elements["Parameters"].target == "S.SalesParameters"
        assert prepared.state.of(sales).container_names == ["S.SalesParameters"]

    def test_inbound_associations_redirected(self) -> None:
        prepared = prepare(_parameterized())
        sales = prepared.graph["S.Report"].elements["sales"]
        assoc_state = prepared.state.assoc(sales)

        assert sales.target == "S.SalesParameters"
        assert assoc_state.original_target == "S.Sales"
        assert assoc_state.constraints is not None
        assert assoc_state.constraints.constraints == {}

    def test_v4_type_entity_reached_through_parameters(self) -> None:
        sets = {s.name: s.entity_type for s in prepare(_parameterized()).compiled_service("S").entity_sets}
        assert sets == {"Report": "S.Report", "Sales": "S.SalesParameters"}

    def test_v2_parameters_and_sets(self) -> None:
        prepared = prepare(_parameterized(), odata_version="v2")
        parameters = prepared.graph["S.SalesParameters"]
        assert prepared.state.annotation(parameters.elements["year"], "@sap.parameter") == "mandatory"
        sets = {s.name for s in prepared.compiled_service("S").entity_sets}
        assert sets == {"Sales", "SalesSet", "Report"}

    def test_type_name_clash_is_an_error(self) -> None:
        csn = _parameterized()
        csn["definitions"]["S.SalesType"] = entity({"ID": key()})
        prepared = prepare(csn)
        [error] = prepared.sink.by_id("odata-duplicate-definition")
        assert error.location == ("definitions", "S.Sales")
