# tests/unit/passes/test_naming.py
"""Tests for renaming dotted definitions below a service."""

from __future__ import annotations

from edmc.passes.naming import rename_dotted_definitions
from tests.conftest import entity, key, make_context, managed, model, service


class TestRenameDottedDefinitions:
    def test_dots_below_service_become_underscores(self) -> None:
        ctx = make_context(
            model(
                {
                    "S": service(),
                    "S.A.B": entity({"ID": key()}),
                    "S.X": entity({"ID": key(), "b": managed("S.A.B", "ID")}),
                }
            )
        )
        renames = rename_dotted_definitions(ctx)

        assert renames == {"S.A.B": "S.A_B"}
        assert "S.A_B" in ctx.graph
        assert "S.A.B" not in ctx.graph
        assert ctx.graph["S.X"].elements["b"].target == "S.A_B"
        assert ctx.graph["S.A_B"].location == ("definitions", "S.A_B")

    def test_direct_members_keep_their_name(self) -> None:
        ctx = make_context(model({"S": service(), "S.E": entity({"ID": key()})}))
        assert rename_dotted_definitions(ctx) == {}

    def test_context_scopes_the_rename(self) -> None:
        ctx = make_context(
            model({"S": service(), "S.ctx": {"kind": "context"}, "S.ctx.a.E": entity({"ID": key()})})
        )
        assert rename_dotted_definitions(ctx) == {"S.ctx.a.E": "S.ctx.a_E"}

    def test_conflicting_name_is_an_error(self) -> None:
        ctx = make_context(
            model({"S": service(), "S.A.B": entity({"ID": key()}), "S.A_B": entity({"ID": key()})})
        )
        renames = rename_dotted_definitions(ctx)

        assert renames == {}
        [error] = ctx.sink.by_id("odata-duplicate-definition")
        assert error.location == ("definitions", "S.A.B")
        assert "S.A_B" in error.message
        assert "S.A.B" in ctx.graph

    def test_definitions_outside_services_untouched(self) -> None:
        ctx = make_context(model({"lib.a.E": entity({"ID": key()})}))
        assert rename_dotted_definitions(ctx) == {}
