# src/edmc/passes/finalize.py
"""Finishing passes over requested definitions.

finalize_definition turns doc comments into @Core.Description, marks
collections, assigns Edm types and facets, derives
@Validation.AllowedValues for enums and flags computed defaults.
annotate_optional_params infers @Core.OptionalParameter for V4 callables.
pull_up_capabilities collects @Capabilities restrictions of containees
into NavigationRestrictions of their root container.
"""

from __future__ import annotations

import copy
from typing import Any

from edmc.contracts.enums import DefinitionKind
from edmc.model.builtins import fallback_edm_type, is_builtin_type, map_cds_to_edm, type_facets
from edmc.model.graph import ContainmentGraph
from edmc.model.schema import Definition, Element, EnumSymbol, Location, iter_all_elements
from edmc.passes.context import CompilerContext

NAVIGATION_RESTRICTIONS = "@Capabilities.NavigationRestrictions.RestrictedProperties"

CAPABILITIES: tuple[str, ...] = tuple(
    f"@Capabilities.{term}"
    for term in (
        "FilterFunctions",
        "FilterRestrictions",
        "SearchRestrictions",
        "SortRestrictions",
        "TopSupported",
        "SkipSupported",
        "SelectSupport",
        "IndexableByKey",
        "InsertRestrictions",
        "DeepInsertSupport",
        "UpdateRestrictions",
        "DeepUpdateSupport",
        "DeleteRestrictions",
        "CountRestrictions",
        "ReadRestrictions",
    )
)

_BINDING_PARAMETER_TYPE = "$self"
_OPTIONAL_PARAMETER = "@Core.OptionalParameter"


def finalize_definition(ctx: CompilerContext, definition: Definition) -> None:
    ctx.state.assign_annotation(definition, "@Core.Description", definition.doc)
    _finish_node(ctx, definition, definition.location)
    if definition.returns is not None:
        _finish_node(ctx, definition.returns, definition.returns.location, is_returns=True)
    for action in (definition.actions or {}).values():
        ctx.state.assign_annotation(action, "@Core.Description", action.doc)

    for member in iter_all_elements(definition):
        if member is definition.returns:
            continue
        is_returns = member.location[-1] == "returns"
        ctx.state.assign_annotation(member, "@Core.Description", member.doc)
        _finish_node(ctx, member, member.location, is_returns=is_returns)
        if not is_returns:
            _computed_default_value(ctx, member)


def _finish_node(ctx: CompilerContext, node: Element | Definition, location: Location, *, is_returns: bool = False) -> None:
    _mark_collection(ctx, node, is_returns)
    _map_edm_type(ctx, node)
    _annotate_allowed_values(ctx, node, location)


def _mark_collection(ctx: CompilerContext, node: Element | Definition, is_returns: bool) -> None:
    items = node.items
    if items is None:
        type_def = ctx.graph.type_definition(node)
        items = type_def.items if type_def is not None else None
    if items is None:
        return
    state = ctx.state.element(node)
    state.is_collection = True
    state.not_null_collection = items.not_null if items.not_null is not None else False
    if is_returns and items.type and not is_builtin_type(items.type):
        item_def = ctx.graph.get(items.type)
        state.no_nullable = item_def is not None and item_def.is_entity


def _map_edm_type(ctx: CompilerContext, node: Element | Definition) -> None:
    if node.type == "cds.Map":
        # Rendered as an open structure, no primitive type
        return
    if isinstance(node, Element) and node.is_association:
        return
    state = ctx.state.element(node)
    is_media_type = bool(node.anno("@Core.MediaType"))
    typed: Element | Definition | None = None
    if node.type and is_builtin_type(node.type):
        typed = node
    elif state.is_collection and node.items is not None:
        final = ctx.graph.effective_type(node.items)
        if final.type and is_builtin_type(final.type):
            typed = node.items
    if typed is None:
        return
    final_type = ctx.graph.effective_type(typed)
    edm_type = map_cds_to_edm(final_type.type or "", is_v2=ctx.options.is_v2, is_media_type=is_media_type)
    if edm_type is None:
        if not isinstance(node, Element) or ctx.state.is_rendered(node):
            ctx.sink.error(
                "ref-unsupported-type",
                node.location,
                {"type": final_type.type, "version": ctx.options.version_label},
            )
        edm_type = fallback_edm_type(is_v2=ctx.options.is_v2)
    state.edm_type = edm_type
    state.facets = type_facets(final_type, edm_type, is_v2=ctx.options.is_v2)


def _resolve_symbol(symbols: dict[str, EnumSymbol], name: str) -> EnumSymbol | None:
    """Follow '#' references between symbols of the same enum; None on dead ends or cycles."""
    symbol = symbols.get(name)
    seen: set[str] = set()
    while symbol is not None and symbol.symbol_ref is not None and symbol.name not in seen:
        seen.add(symbol.name)
        symbol = symbols.get(symbol.symbol_ref)
    return symbol


def _annotate_allowed_values(ctx: CompilerContext, node: Element | Definition, location: Location) -> None:
    type_def: Element | Definition | None = node
    if not node.enum and node.type and not is_builtin_type(node.type):
        type_def = ctx.graph.get(node.type)
    if type_def is None or not type_def.enum:
        return
    values: list[dict[str, Any]] = []
    for name in type_def.enum:
        entry: dict[str, Any] = {"@Core.SymbolicName": name}
        symbol = _resolve_symbol(type_def.enum, name)
        if symbol is not None and symbol.has_val:
            entry["Value"] = symbol.val
            values.append(entry)
        elif symbol is not None and type_def.type == "cds.String":
            entry["Value"] = name
            values.append(entry)
        else:
            ctx.sink.warning(
                "odata-enum-missing-value",
                location,
                {"name": name, "anno": "@Validation.AllowedValues", "type": type_def.type},
            )
        if symbol is not None:
            description = (
                symbol.annotations.get("@Core.Description") or symbol.annotations.get("@description") or symbol.doc
            )
            if description:
                entry["@Core.Description"] = description
    if values:
        ctx.state.assign_annotation(node, "@Validation.AllowedValues", values)


def _computed_default_value(ctx: CompilerContext, member: Element) -> None:
    """Defaults that are neither literals nor enum symbols are computed on the server."""
    default = member.default
    if not default:
        return
    has_tail = False
    value: Any = default
    if "xpr" in default:
        tokens = default["xpr"]
        i = 0
        while i < len(tokens) and tokens[i] in ("-", "+"):
            i += 1
        has_tail = i < len(tokens) - 1
        value = tokens[i] if i < len(tokens) else {}
    is_simple = isinstance(value, dict) and (("val" in value and not has_tail) or "#" in value)
    if is_simple:
        return
    if member.location[-2] == "params":
        ctx.sink.warning("odata-ignoring-param-default", member.location, {"name": member.name}, variant="xpr")
    else:
        ctx.state.assign_annotation(member, "@Core.ComputedDefaultValue", True)


# Optional parameters ---------------------------------------------------------


def annotate_optional_params(ctx: CompilerContext, definition: Definition) -> None:
    """Mark optional parameters of actions and functions.

    A parameter is optional when annotated so, when it has a default value
    (null included), or when it is a nullable action parameter. Mandatory
    function parameters must not follow optional ones.
    """
    if definition.is_callable:
        _annotate_params(ctx, definition)
    for action in (definition.actions or {}).values():
        _annotate_params(ctx, action)


def _is_binding_parameter(param: Element) -> bool:
    carrier = param.items or param
    return carrier.type == _BINDING_PARAMETER_TYPE


def _annotate_params(ctx: CompilerContext, action: Definition) -> None:
    is_v4 = ctx.options.is_v4
    optional: list[Element] = []
    for name, param in (action.params or {}).items():
        carrier = param.items or param
        type_def = ctx.graph.get(carrier.type) if carrier.type and not is_builtin_type(carrier.type) else None
        is_struct = type_def is not None and bool(
            type_def.elements or (type_def.items is not None and type_def.items.elements)
        )
        is_items = param.items is not None or (type_def is not None and type_def.items is not None)
        default = param.default or {}
        has_default = "val" in default

        explicit = any(k.startswith(_OPTIONAL_PARAMETER) and v is not None for k, v in param.annotations.items())
        if explicit:
            shorthand = param.annotations.get(_OPTIONAL_PARAMETER)
            if not isinstance(shorthand, bool):
                optional.append(param)
                continue
            # Boolean shorthand becomes a record on the side table
            if shorthand and not _is_binding_parameter(param) and is_v4:
                if has_default and default["val"] is not None and (is_struct or is_items):
                    ctx.sink.warning("odata-ignoring-param-default", param.location, {"name": name}, variant="colitem")
                elif has_default:
                    ctx.state.replace_annotation(param, _OPTIONAL_PARAMETER, {"DefaultValue": default["val"]})
                else:
                    ctx.state.replace_annotation(param, _OPTIONAL_PARAMETER, {"$Type": ""})
                optional.append(param)
            else:
                ctx.state.replace_annotation(param, _OPTIONAL_PARAMETER, None)
            continue

        if _is_binding_parameter(param) or not is_v4:
            continue
        if has_default:
            if default["val"] is not None and (is_struct or is_items):
                ctx.sink.warning("odata-ignoring-param-default", param.location, {"name": name}, variant="colitem")
            else:
                ctx.state.assign_annotation(param, f"{_OPTIONAL_PARAMETER}.DefaultValue", default["val"])
            optional.append(param)
        elif not param.not_null and action.kind is DefinitionKind.ACTION:
            optional.append(param)
        elif action.kind is DefinitionKind.FUNCTION:
            if any(not _is_binding_parameter(p) for p in optional):
                ctx.sink.error("odata-parameter-order", param.location, {"name": name, "target": action.name})
            optional = []


# Capabilities pull-up --------------------------------------------------------


def pull_up_capabilities(ctx: CompilerContext, root: Definition) -> None:
    """Re-home containee capabilities on the root container's navigation restrictions.

    Containees have no entity set in V4 containment mode, so their
    @Capabilities annotations can't be rendered there. Only root
    containers and single-container recursive hierarchies collect.
    """
    if not ctx.options.odata_capabilities_pullup:
        return
    state = ctx.state.of(root)
    if not state.has_entity_set:
        return
    containment = ctx.containment
    if containment is None:
        containment = ContainmentGraph.from_state(ctx.graph, ctx.state, ctx.requested)
    names = state.container_names
    is_recursive = bool(names and len(names) == 1 and names[0] in containment.containees_of(root.name))
    if not (containment.is_root(root.name) or is_recursive):
        return

    collected: list[dict[str, Any]] = []
    _collect_restrictions(ctx, (), root, collected, set())
    if collected:
        ctx.state.replace_annotation(root, NAVIGATION_RESTRICTIONS, collected)


def _collect_restrictions(
    ctx: CompilerContext,
    prefix: tuple[str, ...],
    container: Definition,
    collected: list[dict[str, Any]],
    visited: set[str],
) -> None:
    entries = ctx.state.of(container).containees
    if not entries:
        return
    existing = ctx.state.annotation(container, NAVIGATION_RESTRICTIONS)
    local: list[dict[str, Any]] = copy.deepcopy(existing) if isinstance(existing, list) else []
    if prefix:
        local = [
            _prefix_paths(npe, prefix) if _navigation_property_path(npe) is not None else npe for npe in local
        ]

    visited.add(container.name)
    for entry in entries:
        assoc = ctx.element_at(entry.assoc)
        containee = ctx.target_of(assoc) if assoc is not None else None
        if assoc is None or containee is None:
            continue
        requested = ctx.state.is_navigable(assoc) and ctx.services.is_requested(containee.name)
        if not (requested or ctx.state.of(containee).is_proxy):
            continue
        nav_path = ".".join((*prefix, ".".join(entry.path)))
        nav_entry = next((npe for npe in local if _navigation_property_path(npe) == nav_path), None)
        has_entry = nav_entry is not None
        if nav_entry is None:
            nav_entry = {"NavigationProperty": {"=": nav_path}}

        annotations = ctx.state.annotations_of(containee)
        added = False
        for capability in CAPABILITIES:
            if merge_into_navigation_entry(capability, nav_entry, (*prefix, *entry.path), annotations):
                added = True
        if added and not has_entry:
            local.append(nav_entry)

        if containee.name not in visited:
            _collect_restrictions(ctx, (*prefix, *entry.path), containee, collected, visited)

    collected[0:0] = local
    visited.discard(container.name)


def _navigation_property_path(entry: Any) -> str | None:
    if not isinstance(entry, dict):
        return None
    nav = entry.get("NavigationProperty")
    if isinstance(nav, dict) and isinstance(nav.get("="), str):
        return nav["="]
    return None


def _prefix_paths(value: Any, prefix: tuple[str, ...]) -> Any:
    """Copy of an annotation value with every '=' path made relative to the root."""
    if isinstance(value, list):
        return [_prefix_paths(v, prefix) for v in value]
    if isinstance(value, dict):
        result = {k: _prefix_paths(v, prefix) for k, v in value.items()}
        if isinstance(result.get("="), str):
            result["="] = ".".join((*prefix, result["="]))
        return result
    return value


def merge_into_navigation_entry(
    capability: str, entry: dict[str, Any], prefix: tuple[str, ...], annotations: dict[str, Any]
) -> bool:
    """Merge the flattened '<capability>.<prop>' annotations into a navigation restriction.

    Existing properties are never overwritten. Returns whether a new
    capability record was added to the entry.
    """
    head = f"{capability}."
    found = {k[len(head) :]: _prefix_paths(copy.deepcopy(v), prefix) for k, v in annotations.items() if k.startswith(head)}
    prop = capability.split(".")[1]
    current = entry.get(prop)
    if current:
        if isinstance(current, dict):
            for k, v in found.items():
                if not current.get(k):
                    current[k] = v
        return False
    if not found:
        return False
    if capability == "@Capabilities.ReadRestrictions" and any(k.startswith("ReadByKeyRestrictions.") for k in found):
        chopped: dict[str, Any] = {}
        for k, v in found.items():
            first, _, rest = k.partition(".")
            if first == "ReadByKeyRestrictions" and rest:
                by_key = chopped.setdefault("ReadByKeyRestrictions", {})
                if isinstance(by_key, dict):
                    by_key[rest] = v
            else:
                chopped[k] = v
        entry[prop] = chopped
    else:
        entry[prop] = found
    return True
