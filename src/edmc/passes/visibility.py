# src/edmc/passes/visibility.py
"""V4 property muting that depends on resolved ON conditions.

Foreign keys of container associations are hidden unless foreign keys are
rendered explicitly; with containment, rendered container foreign keys
leave the key vector because the container key already identifies them.
"""

from __future__ import annotations

from edmc.model.schema import Definition, Element, walk_elements
from edmc.passes.context import CompilerContext
from edmc.passes.structure import FOREIGN_KEY_ANNOTATION, is_structured_artifact, members_of


def ignore_properties(ctx: CompilerContext, definition: Definition) -> None:
    if not is_structured_artifact(definition):
        return
    render_fk = ctx.options.render_foreign_keys
    containment = ctx.options.odata_containment
    keys = ctx.state.of(definition).keys if definition.is_entity else None

    for element, _ in walk_elements(definition):
        if element.target is not None:
            if containment and element.anno("@odata.containment.ignore") and not render_fk:
                ctx.state.assign_annotation(element, "@odata.navigable", False)
            continue

        fk_of = element.anno(FOREIGN_KEY_ANNOTATION)
        if fk_of:
            assoc = _resolve_foreign_key_assoc(members_of(definition), str(fk_of))
            is_container_assoc = assoc is not None and _is_container_assoc(ctx, assoc)
            if (not is_container_assoc and not ctx.state.is_rendered(element)) or (
                is_container_assoc and not render_fk
            ):
                ctx.state.assign_annotation(element, "@cds.api.ignore", True)
            elif containment and is_container_assoc and keys is not None:
                keys.pop(element.name, None)

        if containment and element.anno("@odata.containment.ignore"):
            if not render_fk:
                ctx.state.assign_annotation(element, "@cds.api.ignore", True)
            elif keys is not None:
                keys.pop(element.name, None)


def _resolve_foreign_key_assoc(members: dict[str, Element], path: str) -> Element | None:
    assoc: Element | None = None
    for step in path.split("."):
        found = (members or {}).get(step)
        if found is not None:
            assoc = found
            members = found.elements or {}
    return assoc


def _is_container_assoc(ctx: CompilerContext, assoc: Element) -> bool:
    state = ctx.state.assoc(assoc)
    return bool((state.is_to_container and state.self_references) or ctx.state.annotation(assoc, "@odata.contained"))
