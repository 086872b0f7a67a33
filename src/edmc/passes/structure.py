# src/edmc/passes/structure.py
"""Structure initialization: foreign keys, key collection, alternate keys.

Runs before constraint resolution. Managed associations get their foreign
key elements materialized (unless the input already carries them), so
that every later pass can rely on foreign keys being present.
"""

from __future__ import annotations

from typing import Any

from edmc.contracts.enums import DefinitionKind
from edmc.model.schema import Definition, Element, ForeignKey, walk_elements
from edmc.passes.context import CompilerContext

FOREIGN_KEY_ANNOTATION = "@odata.foreignKey4"


def is_structured_artifact(definition: Definition) -> bool:
    if definition.kind is DefinitionKind.ENTITY:
        return True
    if definition.kind is DefinitionKind.TYPE:
        return bool(definition.elements or (definition.items is not None and definition.items.elements))
    return False


def members_of(definition: Definition) -> dict[str, Element]:
    if definition.items is not None and definition.items.elements:
        return definition.items.elements
    return definition.elements


def _is_expression(value: Any) -> bool:
    return isinstance(value, dict) and "=" in value and len(value) > 1


def materialize_foreign_keys(ctx: CompilerContext, definition: Definition) -> None:
    """Add missing foreign key elements right after their managed association."""
    if not is_structured_artifact(definition):
        return
    _materialize_in(ctx, members_of(definition))


def _materialize_in(ctx: CompilerContext, members: dict[str, Element]) -> None:
    for element in list(members.values()):
        if element.elements:
            _materialize_in(ctx, element.elements)
    if not any(e.is_managed for e in members.values()):
        return
    rebuilt: dict[str, Element] = {}
    for name, element in members.items():
        rebuilt[name] = element
        if not element.is_managed or element.virtual:
            continue
        for fk in element.keys or []:
            for fk_element in _foreign_key_elements(ctx, element, fk):
                if fk_element.name not in members and fk_element.name not in rebuilt:
                    rebuilt[fk_element.name] = fk_element
    if list(rebuilt) != list(members):
        members.clear()
        members.update(rebuilt)


def _foreign_key_elements(ctx: CompilerContext, assoc: Element, fk: ForeignKey) -> list[Element]:
    target = ctx.target_of(assoc)
    if target is None:
        return []
    pk = _resolve_ref(ctx, target.elements, fk.ref)
    if pk is None:
        return []
    parent = assoc.location[:-1]
    parent_path = assoc.element_path[:-1]
    if pk.is_managed:
        # Key association in the target: expand its foreign keys one level
        result = []
        for sub in pk.keys or []:
            sub_target = ctx.target_of(pk)
            sub_pk = _resolve_ref(ctx, sub_target.elements, sub.ref) if sub_target else None
            if sub_pk is None or sub_pk.is_association:
                continue
            name = f"{fk.generated_name}_{'_'.join(sub.ref)}"
            result.append(_fk_element(assoc, name, sub_pk, parent, parent_path))
        return result
    if pk.is_association:
        return []
    return [_fk_element(assoc, fk.generated_name, pk, parent, parent_path)]


def _fk_element(
    assoc: Element, name: str, pk: Element, parent: tuple[str, ...], parent_path: tuple[str, ...]
) -> Element:
    return Element(
        name=name,
        location=(*parent, name),
        owner=assoc.owner,
        element_path=(*parent_path, name),
        type=pk.type,
        key=assoc.key,
        not_null=assoc.not_null,
        length=pk.length,
        precision=pk.precision,
        scale=pk.scale,
        srid=pk.srid,
        elements=pk.elements,
        annotations={FOREIGN_KEY_ANNOTATION: ".".join(assoc.element_path)},
    )


def _resolve_ref(ctx: CompilerContext, members: dict[str, Element] | None, ref: tuple[str, ...]) -> Element | None:
    element: Element | None = None
    for step in ref:
        if not members:
            return None
        element = members.get(step)
        if element is None:
            return None
        members = ctx.graph.structured_elements(element) if not element.is_association else None
    return element


def init_structure(ctx: CompilerContext, definition: Definition) -> None:
    """Initialize associations, collect keys and temporal alternate keys."""
    if not is_structured_artifact(definition):
        return
    members = members_of(definition)
    keys: dict[str, Element] = {}
    valid_keys: list[Element] = []
    for element, path in walk_elements(definition):
        if element.anno("@cds.valid.key"):
            valid_keys.append(element)
        _forward_association_annotations(ctx, element)
        if element.is_association:
            ctx.state.assoc(element)
        if element.key and len(path) == 1 and path[0] in members:
            keys[element.name] = element

    if valid_keys:
        ctx.state.assign_annotation(
            definition,
            "@Core.AlternateKeys",
            [{"Key": [{"Name": vk.name, "Alias": vk.name} for vk in valid_keys]}],
        )
    if definition.is_entity:
        ctx.state.of(definition).keys = keys


def _forward_association_annotations(ctx: CompilerContext, element: Element) -> None:
    """Foreign keys inherit the non-expression annotations of their association."""
    assoc_name = element.anno(FOREIGN_KEY_ANNOTATION)
    if not assoc_name:
        return
    assoc = ctx.siblings_of(element).get(str(assoc_name).rpartition(".")[2])
    if assoc is None:
        return
    for name, value in assoc.annotations.items():
        if not _is_expression(value):
            ctx.state.assign_annotation(element, name, value)
