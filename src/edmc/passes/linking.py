# src/edmc/passes/linking.py
"""Schema membership, requested definitions and association targets."""

from __future__ import annotations

from edmc.contracts.enums import DefinitionKind
from edmc.model.schema import Definition, iter_all_elements
from edmc.passes.context import CompilerContext

_NOT_REQUESTED = (DefinitionKind.ASPECT, DefinitionKind.EVENT)


def assign_schemas(ctx: CompilerContext) -> None:
    """Record each definition's schema and collect the requested ones."""
    for definition in ctx.graph:
        schema = ctx.services.schema_of(definition.name)
        if schema is not None:
            ctx.state.of(definition).schema_name = schema
        if ctx.services.is_requested(definition.name) and definition.kind not in _NOT_REQUESTED:
            ctx.requested[definition.name] = definition


def link_association_targets(ctx: CompilerContext, definition: Definition) -> None:
    """Check association targets and remember inbound edges of parameterized targets.

    In V4 containment mode, compositions become containment edges unless
    annotated otherwise.
    """
    for element in iter_all_elements(definition):
        if element.target is not None:
            target = ctx.graph.get(element.target)
            if target is None:
                ctx.sink.error(
                    "ref-undefined-def",
                    element.location,
                    {"name": element.target},
                    text="Target {name} can't be found in the model",
                )
            elif target.is_entity and target.params:
                source = f"{definition.name}.{'.'.join(element.element_path)}"
                ctx.state.of(target).sources[source] = element.location
        if (
            ctx.options.odata_containment
            and ctx.options.is_v4
            and element.is_composition
            and "@odata.contained" not in element.annotations
        ):
            ctx.state.assign_annotation(element, "@odata.contained", True)
