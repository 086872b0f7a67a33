# src/edmc/passes/naming.py
"""Rename dotted definitions below a service or context.

OData names can't contain dots inside a schema, so 'S.A.B' below service
'S' becomes 'S.A_B'. Type and target references are rewritten along.
"""

from __future__ import annotations

from edmc.contracts.enums import DefinitionKind
from edmc.model.services import schema_prefix
from edmc.passes.context import CompilerContext

_SCOPE_KINDS = (DefinitionKind.SERVICE, DefinitionKind.CONTEXT)
_RENAMED_KINDS = (DefinitionKind.ENTITY, DefinitionKind.TYPE, DefinitionKind.ACTION, DefinitionKind.FUNCTION)


def _scope_root(ctx: CompilerContext, name: str) -> str | None:
    """Closest enclosing service or context name."""
    head, dot, _ = name.rpartition(".")
    while dot:
        definition = ctx.graph.get(head)
        if definition is not None and definition.kind in _SCOPE_KINDS:
            return head
        head, dot, _ = head.rpartition(".")
    return None


def rename_dotted_definitions(ctx: CompilerContext) -> dict[str, str]:
    """Rename dotted definitions; returns the old -> new name mapping."""
    renames: dict[str, str] = {}
    for definition in ctx.graph:
        if definition.kind not in _RENAMED_KINDS:
            continue
        name = definition.name
        root = _scope_root(ctx, name)
        if root is None or root == schema_prefix(name):
            continue
        new_name = f"{root}.{name[len(root) + 1 :].replace('.', '_')}"
        if new_name in ctx.graph:
            ctx.sink.error(
                "odata-duplicate-definition",
                definition.location,
                {"name": new_name},
                text="Artifact name containing dots can't be mapped to an OData compliant name "
                "because it conflicts with existing definition {name}",
            )
            continue
        ctx.graph.rename_definition(name, new_name)
        renames[name] = new_name
    return renames
