# tests/unit/passes/test_structure.py
"""Tests for foreign key materialization and key collection."""

from __future__ import annotations

from edmc.passes.structure import FOREIGN_KEY_ANNOTATION, init_structure, materialize_foreign_keys
from tests.conftest import element, entity, key, make_context, managed, model, service


def _csn() -> dict:
    return model(
        {
            "S": service(),
            "S.E": entity(
                {
                    "ID": key(),
                    "t": managed("S.T", "id1", "id2", **{"@Common.Label": "Target", "@assert": {"=": "x", "ref": ["x"]}}),
                    "name": element(),
                }
            ),
            "S.T": entity({"id1": key(), "id2": key("cds.String", length=10), "text": element()}),
        }
    )


class TestMaterializeForeignKeys:
    def test_inserted_right_after_association(self) -> None:
        ctx = make_context(_csn())
        materialize_foreign_keys(ctx, ctx.graph["S.E"])
        assert list(ctx.graph["S.E"].elements) == ["ID", "t", "t_id1", "t_id2", "name"]

    def test_foreign_key_copies_target_type(self) -> None:
        ctx = make_context(_csn())
        materialize_foreign_keys(ctx, ctx.graph["S.E"])
        fk = ctx.graph["S.E"].elements["t_id2"]
        assert fk.type == "cds.String"
        assert fk.length == 10
        assert fk.annotations[FOREIGN_KEY_ANNOTATION] == "t"
        assert fk.location == ("definitions", "S.E", "elements", "t_id2")
        assert ctx.graph.element_at(fk.location) is fk

    def test_key_association_gives_key_foreign_keys(self) -> None:
        ctx = make_context(
            model({"S.E": entity({"t": managed("S.T", "ID", key=True)}), "S.T": entity({"ID": key("cds.UUID")})})
        )
        materialize_foreign_keys(ctx, ctx.graph["S.E"])
        fk = ctx.graph["S.E"].elements["t_ID"]
        assert fk.key
        assert fk.type == "cds.UUID"

    def test_existing_foreign_keys_kept(self) -> None:
        ctx = make_context(
            model(
                {
                    "S.E": entity({"t": managed("S.T", "ID"), "t_ID": element("cds.Integer", **{"@marker": 1})}),
                    "S.T": entity({"ID": key()}),
                }
            )
        )
        materialize_foreign_keys(ctx, ctx.graph["S.E"])
        assert ctx.graph["S.E"].elements["t_ID"].annotations == {"@marker": 1}

    def test_key_association_in_target_expands_one_level(self) -> None:
        ctx = make_context(
            model(
                {
                    "S.A": entity({"b": managed("S.B", "c")}),
                    "S.B": entity({"c": managed("S.C", "ID", key=True)}),
                    "S.C": entity({"ID": key()}),
                }
            )
        )
        materialize_foreign_keys(ctx, ctx.graph["S.A"])
        assert "b_c_ID" in ctx.graph["S.A"].elements

    def test_unknown_target_adds_nothing(self) -> None:
        ctx = make_context(model({"S.E": entity({"t": managed("S.Missing", "ID")})}))
        materialize_foreign_keys(ctx, ctx.graph["S.E"])
        assert list(ctx.graph["S.E"].elements) == ["t"]


class TestInitStructure:
    def test_collects_top_level_keys(self) -> None:
        ctx = make_context(_csn())
        target = ctx.graph["S.T"]
        init_structure(ctx, target)
        assert list(ctx.state.of(target).keys) == ["id1", "id2"]

    def test_foreign_keys_inherit_plain_annotations(self) -> None:
        ctx = make_context(_csn())
        source = ctx.graph["S.E"]
        materialize_foreign_keys(ctx, source)
        init_structure(ctx, source)
        fk = source.elements["t_id1"]
        assert ctx.state.annotation(fk, "@Common.Label") == "Target"
        assert ctx.state.annotation(fk, "@assert") is None

    def test_valid_keys_become_alternate_keys(self) -> None:
        ctx = make_context(
            model({"S.E": entity({"ID": key(), "validFrom": element("cds.DateTime", **{"@cds.valid.key": True})})})
        )
        definition = ctx.graph["S.E"]
        init_structure(ctx, definition)
        assert ctx.state.annotation(definition, "@Core.AlternateKeys") == [
            {"Key": [{"Name": "validFrom", "Alias": "validFrom"}]}
        ]

    def test_association_state_created(self) -> None:
        ctx = make_context(_csn())
        source = ctx.graph["S.E"]
        init_structure(ctx, source)
        assert source.elements["t"].location in ctx.state.associations
