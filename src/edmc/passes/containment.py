# src/edmc/passes/containment.py
"""Containment graph builder.

A container entity owns associations annotated @odata.contained. For each
such edge the container records (path, association), the containee
records the container's name, and associations of the containee pointing
back to the container are marked to-container unless they are
containment edges themselves (the down-link of a hierarchy).
"""

from __future__ import annotations

from edmc.model.schema import Definition, Element
from edmc.model.state import ContainmentEntry
from edmc.passes.context import CompilerContext


def is_contained(ctx: CompilerContext, element: Element) -> bool:
    return bool(ctx.state.annotation(element, "@odata.contained"))


def init_containments(ctx: CompilerContext, container: Definition) -> None:
    if not container.is_entity:
        return
    _collect(ctx, container, container.elements, (), set())


def _collect(
    ctx: CompilerContext,
    container: Definition,
    members: dict[str, Element],
    prefix: tuple[str, ...],
    visited: set[str],
) -> None:
    for name, element in members.items():
        path = (*prefix, name)
        if element.target is not None and is_contained(ctx, element):
            _add_edge(ctx, container, element, path)
        elif element.target is None:
            if element.elements:
                _collect(ctx, container, element.elements, path, visited)
                continue
            type_def = ctx.graph.type_definition(element)
            nested = ctx.graph.structured_elements(element)
            if type_def is not None and nested and type_def.name not in visited:
                visited.add(type_def.name)
                _collect(ctx, container, nested, path, visited)
                visited.discard(type_def.name)


def _add_edge(ctx: CompilerContext, container: Definition, assoc: Element, path: tuple[str, ...]) -> None:
    container_state = ctx.state.of(container)
    container_state.containees.append(ContainmentEntry(path=path, assoc=assoc.location))
    containee = ctx.graph.get(assoc.target)
    if containee is None:
        return
    containee_state = ctx.state.of(containee)
    if containee_state.container_names is None:
        containee_state.container_names = []
    if container.name not in containee_state.container_names:
        containee_state.container_names.append(container.name)
    _mark_to_container(ctx, container.name, containee.elements, set())


def _mark_to_container(
    ctx: CompilerContext, container_name: str, members: dict[str, Element], visited: set[str]
) -> None:
    for element in members.values():
        if element.target is not None:
            if element.target == container_name and not is_contained(ctx, element):
                ctx.state.assoc(element).is_to_container = True
            continue
        if element.elements:
            _mark_to_container(ctx, container_name, element.elements, visited)
            continue
        type_def = ctx.graph.type_definition(element)
        nested = ctx.graph.structured_elements(element)
        if type_def is not None and nested and type_def.name not in visited:
            visited.add(type_def.name)
            _mark_to_container(ctx, container_name, nested, visited)
            visited.discard(type_def.name)


def is_containee(ctx: CompilerContext, definition: Definition) -> bool:
    return ctx.state.of(definition).is_containee


def finalize_proxy_containments(ctx: CompilerContext, proxy: Definition) -> None:
    """Recompute containment of a merged proxy and prune unreachable restrictions.

    Containment edges of the proxy's origin may point to entities that were
    not exposed; NavigationRestrictions entries for such paths are dropped.
    """
    proxy_state = ctx.state.of(proxy)
    proxy_state.containees.clear()
    init_containments(ctx, proxy)
    restrictions = proxy.annotations.get("@Capabilities.NavigationRestrictions.RestrictedProperties")
    if not isinstance(restrictions, list):
        return
    reachable = {".".join(entry.path) for entry in proxy_state.containees}
    kept = [
        r
        for r in restrictions
        if isinstance(r, dict)
        and isinstance(r.get("NavigationProperty"), dict)
        and r["NavigationProperty"].get("=") in reachable
    ]
    if kept:
        proxy.annotations["@Capabilities.NavigationRestrictions.RestrictedProperties"] = kept
    else:
        del proxy.annotations["@Capabilities.NavigationRestrictions.RestrictedProperties"]
