# tests/unit/passes/test_linking.py
"""Tests for schema assignment and association target checks."""

from __future__ import annotations

from edmc.passes.linking import assign_schemas, link_association_targets
from tests.conftest import composition, element, entity, key, make_context, managed, model, service


def _csn() -> dict:
    return model(
        {
            "S": service(),
            "S.E": entity({"ID": key(), "t": managed("S.T", "ID")}),
            "S.T": entity({"ID": key()}),
            "S.Lost": entity({"ID": key(), "gone": managed("S.Missing", "ID")}),
            "S.Mixin": {"kind": "aspect", "elements": {"x": element()}},
            "Other.E": entity({"ID": key()}),
        }
    )


class TestAssignSchemas:
    def test_requested_definitions(self) -> None:
        ctx = make_context(_csn())
        assert "S.E" in ctx.requested
        assert "S.T" in ctx.requested
        assert "S.Mixin" not in ctx.requested
        assert "Other.E" not in ctx.requested

    def test_schema_name_recorded(self) -> None:
        ctx = make_context(_csn())
        assert ctx.state.of(ctx.graph["S.E"]).schema_name == "S"

    def test_service_filter(self) -> None:
        ctx = make_context(
            model({"A": service(), "A.E": entity({"ID": key()}), "B": service(), "B.E": entity({"ID": key()})}),
            service_names=("B",),
        )
        assert "B.E" in ctx.requested
        assert "A.E" not in ctx.requested

    def test_idempotent(self) -> None:
        ctx = make_context(_csn())
        before = dict(ctx.requested)
        assign_schemas(ctx)
        assert ctx.requested == before


class TestLinkAssociationTargets:
    def test_undefined_target_is_an_error(self) -> None:
        ctx = make_context(_csn())
        for definition in ctx.graph:
            link_association_targets(ctx, definition)

        [error] = ctx.sink.errors()
        assert error.msg_id == "ref-undefined-def"
        assert error.location == ("definitions", "S.Lost", "elements", "gone")
        assert "S.Missing" in error.message

    def test_parameterized_targets_remember_sources(self) -> None:
        ctx = make_context(
            model(
                {
                    "S": service(),
                    "S.P": entity({"ID": key()}, params={"year": element("cds.Integer")}),
                    "S.E": entity({"ID": key(), "p": managed("S.P", "ID")}),
                }
            )
        )
        link_association_targets(ctx, ctx.graph["S.E"])
        assert ctx.state.of(ctx.graph["S.P"]).sources == {"S.E.p": ("definitions", "S.E", "elements", "p")}

    def test_compositions_contained_in_v4_containment_mode(self) -> None:
        csn = model(
            {
                "S": service(),
                "S.O": entity(
                    {
                        "ID": key(),
                        "items": composition("S.I", [{"ref": ["items", "up_"]}, "=", {"ref": ["$self"]}]),
                        "notes": composition("S.I", [{"ref": ["notes", "up_"]}, "=", {"ref": ["$self"]}], **{"@odata.contained": False}),
                    }
                ),
                "S.I": entity({"ID": key(), "up_": managed("S.O", "ID")}),
            }
        )
        ctx = make_context(csn, odata_containment=True)
        link_association_targets(ctx, ctx.graph["S.O"])
        members = ctx.graph["S.O"].elements
        assert ctx.state.annotation(members["items"], "@odata.contained") is True
        assert ctx.state.annotation(members["notes"], "@odata.contained") is False

        plain = make_context(csn)
        link_association_targets(plain, plain.graph["S.O"])
        assert plain.state.annotation(plain.graph["S.O"].elements["items"], "@odata.contained") is None
