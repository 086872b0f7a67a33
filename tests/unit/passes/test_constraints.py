# tests/unit/passes/test_constraints.py
"""Tests for referential constraints, backlink partnership and multiplicities."""

from __future__ import annotations

import pytest

from edmc.model.schema import Cardinality
from edmc.model.state import ConstraintPair
from edmc.passes.constraints import determine_multiplicity, effective_target_cardinality
from edmc.passes.context import CompilerContext
from tests.conftest import backlink, bookshop, element, entity, key, managed, model, prepare, service, unmanaged


def _ctx(prepared) -> CompilerContext:  # type: ignore[no-untyped-def]
    return CompilerContext(
        graph=prepared.graph,
        state=prepared.state,
        options=prepared.options,
        sink=prepared.sink,
        services=prepared.services,
        requested=prepared.requested,
    )


def _two_key_model() -> dict:
    return model(
        {
            "S": service(),
            "S.A": entity({"ID": key(), "b": managed("S.B", "id1", "id2")}),
            "S.B": entity({"id1": key(), "id2": key("cds.String")}),
        }
    )


class TestManagedConstraints:
    def test_one_pair_per_foreign_key(self) -> None:
        prepared = prepare(_two_key_model())
        assoc = prepared.graph["S.A"].elements["b"]
        constraints = prepared.state.assoc(assoc).constraints

        assert constraints is not None
        assert constraints.finalized
        assert list(constraints.constraints.values()) == [
            ConstraintPair(dependent=("b_id1",), principal=("id1",)),
            ConstraintPair(dependent=("b_id2",), principal=("id2",)),
        ]

    def test_non_key_reference_gives_no_pair(self) -> None:
        prepared = prepare(
            model(
                {
                    "S": service(),
                    "S.A": entity({"ID": key(), "b": managed("S.B", "code")}),
                    "S.B": entity({"ID": key(), "code": element()}),
                }
            )
        )
        assoc = prepared.graph["S.A"].elements["b"]
        assert prepared.state.assoc(assoc).constraints.constraints == {}  # type: ignore[union-attr]

    def test_v2_partial_key_coverage_cleared(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.A": entity({"ID": key(), "b": managed("S.B", "id1")}),
                "S.B": entity({"id1": key(), "id2": key("cds.String")}),
            }
        )
        prepared = prepare(csn, odata_version="v2")
        assoc = prepared.graph["S.A"].elements["b"]
        assert prepared.state.assoc(assoc).constraints.constraints == {}  # type: ignore[union-attr]

        partial = prepare(csn, odata_version="v2", odata_v2_partial_constraints=True)
        assoc = partial.graph["S.A"].elements["b"]
        assert list(partial.state.assoc(assoc).constraints.constraints) == ["b_id1,id1"]  # type: ignore[union-attr]
        [info] = partial.sink.by_id("odata-incomplete-constraints")
        assert info.location == ("definitions", "S.A", "elements", "b")

    def test_v4_keeps_partial_coverage(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.A": entity({"ID": key(), "b": managed("S.B", "id1")}),
                "S.B": entity({"id1": key(), "id2": key("cds.String")}),
            }
        )
        prepared = prepare(csn)
        assoc = prepared.graph["S.A"].elements["b"]
        assert list(prepared.state.assoc(assoc).constraints.constraints) == ["b_id1,id1"]  # type: ignore[union-attr]


class TestBacklinks:
    def test_order_items_partnership(self) -> None:
        prepared = prepare(bookshop())
        items = prepared.graph["CatalogService.Orders"].elements["items"]
        parent = prepared.graph["CatalogService.OrderItems"].elements["parent"]

        items_state = prepared.state.assoc(items)
        assert items_state.constraints is not None
        assert items_state.constraints.partner == parent.location
        assert items_state.constraints.selfs == [("parent",)]
        assert prepared.state.assoc(parent).self_references == [items.location]

    def test_partnership_is_symmetric(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.Order": entity(
                    {"ID": key(), "item": unmanaged("S.Item", backlink("item", "order"), cardinality={"min": 1, "max": 1})}
                ),
                "S.Item": entity({"ID": key(), "order": managed("S.Order", "ID")}),
            }
        )
        prepared = prepare(csn)
        ctx = _ctx(prepared)
        item = prepared.graph["S.Order"].elements["item"]
        order = prepared.graph["S.Item"].elements["order"]

        assert ctx.partner_of(item) is order
        assert ctx.partner_of(order) is None
        assert prepared.state.assoc(order).self_references == [item.location]
        assert prepared.state.assoc(order).cardinality == Cardinality(src=1, srcmin=1)
        assert determine_multiplicity(ctx, order) == ("1", "0..1")

    def test_partner_source_cardinality_mirrored(self) -> None:
        prepared = prepare(bookshop())
        parent = prepared.graph["CatalogService.OrderItems"].elements["parent"]
        card = prepared.state.assoc(parent).cardinality
        assert card is not None
        assert card.src == "*"
        assert parent.cardinality is None

    def test_multiplicities(self) -> None:
        prepared = prepare(bookshop())
        ctx = _ctx(prepared)
        items = prepared.graph["CatalogService.Orders"].elements["items"]
        parent = prepared.graph["CatalogService.OrderItems"].elements["parent"]
        author = prepared.graph["CatalogService.Books"].elements["author"]
        books = prepared.graph["CatalogService.Authors"].elements["books"]

        assert determine_multiplicity(ctx, items) == ("1", "*")
        assert determine_multiplicity(ctx, parent) == ("*", "0..1")
        assert determine_multiplicity(ctx, author) == ("*", "0..1")
        assert determine_multiplicity(ctx, books) == ("*", "*")

    def test_effective_cardinality_prefers_partner(self) -> None:
        prepared = prepare(bookshop())
        ctx = _ctx(prepared)
        items = prepared.graph["CatalogService.Orders"].elements["items"]
        assert effective_target_cardinality(ctx, items) == (0, "*")

    def test_managed_constraint_of_backlinked_association(self) -> None:
        prepared = prepare(bookshop())
        parent = prepared.graph["CatalogService.OrderItems"].elements["parent"]
        assert list(prepared.state.assoc(parent).constraints.constraints) == ["parent_ID,ID"]  # type: ignore[union-attr]

    def test_conflicting_partner_cardinality_warns(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.A": entity({"ID": key(), "bs": unmanaged("S.B", backlink("bs", "a"), cardinality={"max": "*"})}),
                "S.B": entity({"ID": key(), "a": managed("S.A", "ID", cardinality={"src": 1})}),
            }
        )
        prepared = prepare(csn)
        [warning] = prepared.sink.by_id("odata-unexpected-cardinality")
        assert warning.location == ("definitions", "S.A", "elements", "bs")

    def test_unresolved_backlink_warns(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.A": entity({"ID": key(), "bs": unmanaged("S.B", backlink("bs", "nothing"))}),
                "S.B": entity({"ID": key()}),
            }
        )
        prepared = prepare(csn)
        assert len(prepared.sink.by_id("odata-unresolved-backlink")) == 1


class TestUnmanagedConstraints:
    def test_explicit_on_condition_pair(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.A": entity(
                    {
                        "ID": key(),
                        "b_ID": element("cds.Integer"),
                        "b": unmanaged("S.B", [{"ref": ["b", "ID"]}, "=", {"ref": ["b_ID"]}]),
                    }
                ),
                "S.B": entity({"ID": key()}),
            }
        )
        prepared = prepare(csn)
        assoc = prepared.graph["S.A"].elements["b"]
        assert list(prepared.state.assoc(assoc).constraints.constraints.values()) == [  # type: ignore[union-attr]
            ConstraintPair(dependent=("b_ID",), principal=("ID",))
        ]

    @pytest.mark.parametrize("token", ["<", "or", "like"])
    def test_non_equality_terms_give_no_pairs(self, token: str) -> None:
        csn = model(
            {
                "S": service(),
                "S.A": entity(
                    {
                        "ID": key(),
                        "b_ID": element("cds.Integer"),
                        "b": unmanaged("S.B", [{"ref": ["b", "ID"]}, token, {"ref": ["b_ID"]}]),
                    }
                ),
                "S.B": entity({"ID": key()}),
            }
        )
        prepared = prepare(csn)
        assoc = prepared.graph["S.A"].elements["b"]
        assert prepared.state.assoc(assoc).constraints.constraints == {}  # type: ignore[union-attr]
