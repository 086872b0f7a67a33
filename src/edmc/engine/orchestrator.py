# src/edmc/engine/orchestrator.py
"""Pass orchestrator: runs the preprocessing passes in dependency order.

Every pass visits all definitions it applies to before the next pass
starts. The order matters:

- foreign keys are materialized before any ON condition is resolved
- constraints are finalized only after ignored properties were muted
- proxies are merged after every requested definition was exposed
- binding targets are collected for all entities before bindings are built

A pass that records an error for one definition continues with the
rest; compile_model never raises on user errors, the caller runs the
throw_if_errors() checkpoint.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from edmc.contracts.diagnostics import MessageSink
from edmc.core.config import CompilerOptions
from edmc.core.logging import get_logger
from edmc.engine.types import PreparedModel
from edmc.model.graph import ContainmentGraph
from edmc.model.schema import Definition, SchemaGraph
from edmc.model.services import ServiceIndex
from edmc.model.state import ModelState, SchemaInfo
from edmc.passes.bindings import init_binding_paths, init_binding_targets
from edmc.passes.constraints import finalize_constraints, init_constraints
from edmc.passes.containment import init_containments
from edmc.passes.context import CompilerContext
from edmc.passes.entity_sets import determine_entity_set, split_parameterized_entity
from edmc.passes.finalize import annotate_optional_params, finalize_definition, pull_up_capabilities
from edmc.passes.keys import init_key_ref_paths
from edmc.passes.linking import assign_schemas, link_association_targets
from edmc.passes.naming import rename_dotted_definitions
from edmc.passes.proxies import ProxyGenerator, convert_foreign_service_schemas
from edmc.passes.structure import init_structure, materialize_foreign_keys
from edmc.passes.visibility import ignore_properties

logger = get_logger(__name__)

type DefinitionPass = Callable[[CompilerContext, Definition], None]


def _run(ctx: CompilerContext, name: str, definitions: Iterable[Definition], *passes: DefinitionPass) -> None:
    """Apply the passes to each definition in turn (snapshot of the iterable)."""
    snapshot = list(definitions)
    before = len(ctx.sink.diagnostics)
    for definition in snapshot:
        for run_pass in passes:
            run_pass(ctx, definition)
    logger.debug(
        "pass finished",
        pass_name=name,
        definitions=len(snapshot),
        diagnostics=len(ctx.sink.diagnostics) - before,
    )


def compile_model(graph: SchemaGraph, options: CompilerOptions, sink: MessageSink) -> PreparedModel:
    """Run all preprocessing passes over the graph.

    The graph is transformed in place (renames, synthesized definitions,
    retargeted associations); everything else lands in the returned
    model's side table.

    Args:
        graph: Schema graph loaded from the input model
        options: Compiler options
        sink: Receives every diagnostic of the run

    Returns:
        PreparedModel with the graph, side table and requested definitions
    """
    ctx = CompilerContext(
        graph=graph,
        state=ModelState(options),
        options=options,
        sink=sink,
        services=ServiceIndex(graph, options.service_names),
    )
    logger.debug("compiling model", definitions=len(graph), services=ctx.services.requested)

    renames = rename_dotted_definitions(ctx)
    if renames:
        logger.debug("renamed dotted definitions", count=len(renames))
    assign_schemas(ctx)
    for root in ctx.services.requested:
        ctx.state.schemas[root] = SchemaInfo(name=root)
    _run(ctx, "link_association_targets", graph, link_association_targets)

    _run(ctx, "init_containments", ctx.requested.values(), init_containments)
    _run(ctx, "split_parameterized_entity", ctx.requested.values(), split_parameterized_entity)
    _run(ctx, "init_structure", graph, materialize_foreign_keys, init_structure)
    _run(ctx, "init_constraints", ctx.requested.values(), init_constraints)
    if options.is_v4:
        _run(ctx, "ignore_properties", ctx.requested.values(), ignore_properties)
    _run(ctx, "finalize_constraints", ctx.requested.values(), finalize_constraints)
    convert_foreign_service_schemas(ctx)

    proxies = ProxyGenerator(ctx)
    _run(
        ctx,
        "expose",
        ctx.requested.values(),
        lambda c, d: proxies.expose(d),
        determine_entity_set,
        annotate_optional_params,
    )
    proxies.merge()

    ctx.containment = ContainmentGraph.from_state(graph, ctx.state, ctx.requested)
    logger.debug(
        "containment graph built",
        nodes=ctx.containment.node_count,
        edges=ctx.containment.edge_count,
        cycles=ctx.containment.cycles(),
    )

    if options.is_v4:
        _run(ctx, "init_binding_targets", ctx.requested.values(), init_binding_targets)
        _run(ctx, "pull_up_capabilities", ctx.requested.values(), pull_up_capabilities)
    _run(ctx, "finalize", ctx.requested.values(), init_key_ref_paths, init_binding_paths, finalize_definition)

    prepared = PreparedModel(
        graph=graph,
        state=ctx.state,
        options=options,
        services=ctx.services,
        sink=sink,
        requested=ctx.requested,
    )
    logger.debug("model compiled", requested=len(ctx.requested), diagnostics=len(sink.diagnostics))
    return prepared
