# src/edmc/passes/bindings.py
"""Navigation property bindings (V4).

Starting at every entity with an entity set, associations are followed
depth first. Targets without an entity set (containees) are drilled
through and remember the path by which they were reached; the first
target with an entity set (or a recorded containment path) terminates a
binding.
"""

from __future__ import annotations

from edmc.model.schema import Definition, Element
from edmc.model.services import base_name
from edmc.model.state import NavigationBinding
from edmc.passes.context import CompilerContext


def _members(definition: Definition) -> dict[str, Element]:
    if definition.items is not None and definition.items.elements:
        return definition.items.elements
    return definition.elements


def _drills_into(ctx: CompilerContext, element: Element, target: Definition, current: Definition) -> bool:
    assoc_state = ctx.state.assoc(element)
    return (
        not assoc_state.external_ref
        and not ctx.state.of(target).has_entity_set
        and not assoc_state.is_to_container
        and current is not target
    )


def init_binding_targets(ctx: CompilerContext, definition: Definition) -> None:
    """Record on each set-less target the paths by which it is reachable."""
    if not ctx.state.of(definition).has_entity_set:
        return
    root = (base_name(definition.name, ctx.state.of(definition).schema_name),)
    visited: set[int] = set()
    for element in _members(definition).values():
        _produce_target_path(ctx, root, element, definition, visited)


def _produce_target_path(
    ctx: CompilerContext, prefix: tuple[str, ...], element: Element, current: Definition, visited: set[int]
) -> None:
    path = (*prefix, element.name)
    if not ctx.state.is_rendered(element):
        return
    if element.target is not None:
        target = ctx.target_of(element)
        if target is None or id(element) in visited or not _drills_into(ctx, element, target, current):
            return
        visited.add(id(element))
        ctx.state.of(target).target_paths.append(path)
        for sub in list(target.elements.values()):
            _produce_target_path(ctx, path, sub, target, visited)
        visited.discard(id(element))
        return
    members = ctx.graph.structured_elements(element)
    if members and id(members) not in visited:
        visited.add(id(members))
        for sub in list(members.values()):
            _produce_target_path(ctx, path, sub, current, visited)
        visited.discard(id(members))


def init_binding_paths(ctx: CompilerContext, definition: Definition) -> None:
    state = ctx.state.of(definition)
    if not (ctx.options.is_v4 and state.has_entity_set):
        return
    bindings: list[NavigationBinding] = []
    visited: set[int] = set()
    for element in _members(definition).values():
        bindings.extend(_produce_navigation_path(ctx, element, definition, definition, visited))
    state.nav_bindings = bindings


def _produce_navigation_path(
    ctx: CompilerContext, element: Element, current: Definition, root: Definition, visited: set[int]
) -> list[NavigationBinding]:
    if not ctx.state.is_rendered(element):
        return []
    found: list[NavigationBinding] = []
    if element.target is not None:
        target = ctx.target_of(element)
        if target is None or id(element) in visited:
            return []
        if _drills_into(ctx, element, target, current):
            visited.add(id(element))
            for sub in list(target.elements.values()):
                found.extend(_produce_navigation_path(ctx, sub, target, root, visited))
            visited.discard(id(element))
        elif ctx.options.odata_containment and ctx.state.annotation(element, "@odata.contained"):
            return []
        else:
            binding = _terminal_binding(ctx, element, target, root)
            return [binding] if binding is not None else []
    else:
        members = ctx.graph.structured_elements(element)
        if members and id(members) not in visited:
            visited.add(id(members))
            for sub in list(members.values()):
                found.extend(_produce_navigation_path(ctx, sub, current, root, visited))
            visited.discard(id(members))
    return [NavigationBinding(path=f"{element.name}/{b.path}", target=b.target) for b in found]


def _terminal_binding(
    ctx: CompilerContext, element: Element, target: Definition, root: Definition
) -> NavigationBinding | None:
    """Binding at the end of a navigation; none for external references and to-many singletons."""
    assoc_state = ctx.state.assoc(element)
    if assoc_state.external_ref:
        return None
    cardinality = assoc_state.cardinality
    if cardinality is not None and cardinality.is_to_many() and ctx.state.is_singleton(target):
        return None

    target_state = ctx.state.of(target)
    root_state = ctx.state.of(root)
    path: tuple[str, ...] | None = None
    if target_state.target_paths:
        root_name = base_name(root.name, root_state.schema_name)
        path = next((p for p in target_state.target_paths if p[0] == root_name), target_state.target_paths[0])
    elif target_state.has_entity_set:
        set_name = base_name(target_state.entity_set_name or target.name, target_state.schema_name)
        if target_state.schema_name == root_state.schema_name:
            path = (set_name,)
        else:
            path = (f"{target_state.schema_name}.EntityContainer", set_name)
    if path is None:
        return None
    return NavigationBinding(path=element.name, target="/".join(path))
