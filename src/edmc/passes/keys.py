# src/edmc/passes/keys.py
"""Primary key reference paths.

Flat format: every rendered scalar key is one path segment. Structured V4:
structured keys are flattened down to their leaves, and managed
association keys are replaced by their foreign keys (recursively). Every
step along a key path is checked for nullability, arrayness and, in V4,
for a legal key primitive type.
"""

from __future__ import annotations

from edmc.model.builtins import LEGAL_V4_KEY_TYPES, is_builtin_type, map_cds_to_edm
from edmc.model.schema import Definition, Element, Location
from edmc.passes.context import CompilerContext


def init_key_ref_paths(ctx: CompilerContext, definition: Definition) -> None:
    if not definition.is_entity:
        return
    state = ctx.state.of(definition)
    options = ctx.options
    paths: list[str] = []
    for name, key in state.keys.items():
        assoc_state = ctx.state.associations.get(key.location)
        if assoc_state is not None and assoc_state.is_to_container and assoc_state.self_references:
            continue
        if not ctx.state.is_rendered(key):
            continue
        if options.is_v2 and key.anno("@Core.MediaType"):
            continue
        location = (*definition.location, "elements", name)
        if options.is_v4 and options.is_structured:
            if not options.render_foreign_keys or key.target is None:
                paths.extend(_produce_key_paths(ctx, key, name, location, set()))
        elif key.target is None:
            paths.append(name)
        check_key_spec_violations(ctx, key, location, None)
    state.key_paths = paths


def _produce_key_paths(
    ctx: CompilerContext, node: Element | Definition, prefix: str, location: Location, visited: set[int]
) -> list[str]:
    if isinstance(node, Element) and not ctx.state.is_rendered(node):
        return []
    delimiter = ctx.options.path_delimiter
    render_fk = ctx.options.render_foreign_keys
    members = ctx.graph.structured_elements(node) if not (isinstance(node, Element) and node.is_association) else None
    if members:
        paths: list[str] = []
        for name, element in members.items():
            if id(element) in visited:
                ctx.sink.error("odata-key-recursive", location, {"name": prefix})
                continue
            visited.add(id(element))
            found: list[str] = []
            # Nested unmanaged associations never contribute; foreign keys replace associations when rendered
            if (not render_fk or element.target is None) and not (element.target is not None and element.on is not None):
                found = _produce_key_paths(ctx, element, f"{prefix}{delimiter}{name}", location, visited)
            if found:
                paths.extend(found)
                check_key_spec_violations(ctx, element, location, f"{prefix}/{name}")
            visited.discard(id(element))
        return paths

    if isinstance(node, Element) and node.is_managed:
        return _produce_foreign_key_paths(ctx, node, prefix, location, visited)
    return [prefix]


def _produce_foreign_key_paths(
    ctx: CompilerContext, assoc: Element, prefix: str, location: Location, visited: set[int]
) -> list[str]:
    target = ctx.target_of(assoc)
    if target is None:
        return []
    delimiter = ctx.options.path_delimiter
    if ctx.state.of(target).is_param_entity:
        refs = [(k,) for k in ctx.state.of(target).keys]
    else:
        refs = [fk.ref for fk in assoc.keys or []]

    paths: list[str] = []
    for ref in refs:
        art: Element | Definition | None = target
        segment = prefix
        for step in ref:
            members = ctx.graph.structured_elements(art) if art is not None else None
            art = members.get(step) if members else None
            if art is None:
                break
            segment = f"{segment}/{art.name}"
            check_key_spec_violations(ctx, art, location, segment)
        if art is None:
            continue
        if art is assoc:
            ctx.sink.error("odata-key-recursive", location, {"name": prefix}, variant="key")
            continue
        paths.extend(_produce_key_paths(ctx, art, f"{prefix}{delimiter}{delimiter.join(ref)}", location, visited))
    return paths


def check_key_spec_violations(ctx: CompilerContext, element: Element, location: Location, segment: str | None) -> None:
    """Keys must be non-nullable, not arrayed and (V4) of a legal primitive type."""
    options = ctx.options
    name = segment or element.name
    carrier = element.items or element
    if (not element.key and not carrier.not_null) or (element.key and carrier.not_null is False):
        ctx.sink.warning("odata-unexpected-nullable-key", location, {"name": name}, variant="scalar" if segment else "std")

    items = element.items
    if items is None and element.type and not is_builtin_type(element.type):
        type_def = ctx.graph.get(element.type)
        items = type_def.items if type_def is not None else None
    cardinality = ctx.state.assoc(element).cardinality if element.is_association else element.cardinality
    to_many = cardinality is not None and cardinality.max is not None and cardinality.max != 1
    if items is not None or (options.is_structured and not options.odata_foreign_keys and to_many):
        ctx.sink.warning("odata-unexpected-arrayed-key", location, {"name": name})

    if element.elements or not options.is_v4:
        return
    typed: Element | Definition | None = items
    if typed is None:
        typed = element if is_builtin_type(element.type) else ctx.graph.get(element.type)
    if typed is None or (isinstance(typed, Element) and typed.is_association) or not is_builtin_type(typed.type):
        return
    edm_type = map_cds_to_edm(typed.type or "", is_v2=False)
    if edm_type not in LEGAL_V4_KEY_TYPES:
        ctx.sink.warning(
            "odata-invalid-key-type",
            location,
            {"name": name, "type": typed.type, "id": edm_type, "version": options.version_label},
        )
